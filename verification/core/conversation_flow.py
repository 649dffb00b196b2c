"""
Conversation Flow - Declarative node table for the verification call

Each node is configuration data: a prompt template, the name of the
handler that interprets the caller's reply, and a map from handler
outcome to the next node. The agent resolves handler names once at
construction via validate_flow_table(), so a broken table fails before
the first utterance rather than mid-call.

Identity gate:
    Nodes flagged gated=True collect contact and financial data. They must
    only be reachable through the identity confirmation node's 'verified'
    outcome. validate_flow_table() walks the graph to enforce this.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Set

logger = logging.getLogger(__name__)

Context = Dict[str, Any]

# Handler outcome that keeps the call on the same node
RETRY = 'retry'
# Outcome that passes the identity gate
VERIFIED = 'verified'

START = 'START'
IDENTITY_VERIFICATION_DOB = 'IDENTITY_VERIFICATION_DOB'
IDENTITY_VERIFICATION_SSN = 'IDENTITY_VERIFICATION_SSN'
IDENTITY_VERIFICATION_CONFIRM = 'IDENTITY_VERIFICATION_CONFIRM'
IDENTITY_VERIFICATION_RETRY = 'IDENTITY_VERIFICATION_RETRY'
IDENTITY_FAILURE_TERMINATION = 'IDENTITY_FAILURE_TERMINATION'
INCORRECT_PERSON_TERMINATION = 'INCORRECT_PERSON_TERMINATION'
CONTACT_INFO_ADDRESS = 'CONTACT_INFO_ADDRESS'
CONTACT_INFO_UNIT = 'CONTACT_INFO_UNIT'
CONTACT_INFO_UNIT_NUMBER = 'CONTACT_INFO_UNIT_NUMBER'
CONTACT_INFO_EMAIL = 'CONTACT_INFO_EMAIL'
EMPLOYMENT_INCOME = 'EMPLOYMENT_INCOME'
EMPLOYMENT_TENURE = 'EMPLOYMENT_TENURE'
TENURE_DISCREPANCY_CHECK = 'TENURE_DISCREPANCY_CHECK'
FINAL_CONFIRMATION = 'FINAL_CONFIRMATION'
COMPLETION = 'COMPLETION'

# Outcomes each handler can return (besides RETRY)
HANDLER_OUTCOMES: Dict[str, Set[str]] = {
    'greeting': {'confirmed', 'denied'},
    'dob': {'next'},
    'ssn': {'next'},
    'identity_confirmation': {VERIFIED, 'mismatch', 'exhausted', 'rejected'},
    'identity_retry': {'both', 'dob_only', 'ssn_only', 'reset'},
    'address': {'next'},
    'unit': {'next', 'ask_number'},
    'unit_number': {'next'},
    'email': {'next'},
    'income': {'next'},
    'tenure': {'next'},
    'tenure_discrepancy': {'next'},
    'final_confirmation': {'confirmed', 'rejected'},
}


class FlowConfigurationError(RuntimeError):
    """Flow table is inconsistent (unknown node, handler or transition)"""


@dataclass(frozen=True)
class FlowNode:
    """
    One step of the call

    Attributes:
        id: Node identifier (must equal its key in the table)
        prompt: Renders the agent's line from a derived context
        handler: Handler name, None for terminal nodes
        transitions: Handler outcome -> next node id
        is_terminal: Call ends here
        gated: Requires a verified identity to be reachable
    """
    id: str
    prompt: Callable[[Context], str]
    handler: Optional[str] = None
    transitions: Mapping[str, str] = field(default_factory=dict)
    is_terminal: bool = False
    gated: bool = False


# ========================
# Prompt templates
# ========================

def _greeting_prompt(context: Context) -> str:
    return (
        "Hello, my name is Sarah, I'm calling from Fuse Finance regarding your "
        "recent vehicle financing application. This call may be recorded for "
        f"quality assurance. Am I speaking with {context.get('applicant_name') or 'the applicant'}?"
    )


def _identity_confirm_prompt(context: Context) -> str:
    return (
        f"Let me confirm this information. Your date of birth is {context.get('dob')}, "
        f"and the last four digits of your Social Security Number are {context.get('ssn')}. "
        "Is that correct?"
    )


def _unit_prompt(context: Context) -> str:
    return (
        f"I have {context.get('address')}. "
        "Is there a unit number or apartment number for this address?"
    )


def _tenure_discrepancy_prompt(context: Context) -> str:
    if not context.get('has_discrepancy'):
        return "Thank you for that information."
    return (
        f"I show on your application that you've been employed for "
        f"{context.get('application_tenure')} months. Can you help me understand the "
        f"difference between what you're telling me now - {context.get('stated_tenure')} "
        "months - and what's shown on the application?"
    )


def _final_confirmation_prompt(context: Context) -> str:
    summary = f"Your date of birth is {context.get('dob', 'not provided')}. "
    summary += f"Your mailing address is {context.get('address', 'not provided')}. "
    summary += f"Your email is {context.get('email', 'No email provided')}. "
    summary += f"Your monthly income is {context.get('monthly_income', '$0')}"

    if context.get('self_employed'):
        summary += ", and you're self-employed"
    elif context.get('job_tenure'):
        summary += f", and you've been with your current employer for {context['job_tenure']}"

    return (
        "Let me summarize the information we've collected today to make sure "
        f"everything is accurate. {summary}. Is all of this information correct?"
    )


# ========================
# Default flow
# ========================

NODES: Dict[str, FlowNode] = {
    START: FlowNode(
        id=START,
        prompt=_greeting_prompt,
        handler='greeting',
        transitions={'confirmed': IDENTITY_VERIFICATION_DOB, 'denied': INCORRECT_PERSON_TERMINATION},
    ),
    IDENTITY_VERIFICATION_DOB: FlowNode(
        id=IDENTITY_VERIFICATION_DOB,
        prompt=lambda context: (
            "For security purposes, I need to verify your identity. Can you please provide "
            "your date of birth? Please give me the month, day, and year."
        ),
        handler='dob',
        transitions={'next': IDENTITY_VERIFICATION_SSN},
    ),
    IDENTITY_VERIFICATION_SSN: FlowNode(
        id=IDENTITY_VERIFICATION_SSN,
        prompt=lambda context: (
            "Thank you. Now I need the last four digits of your Social Security Number."
        ),
        handler='ssn',
        transitions={'next': IDENTITY_VERIFICATION_CONFIRM},
    ),
    IDENTITY_VERIFICATION_CONFIRM: FlowNode(
        id=IDENTITY_VERIFICATION_CONFIRM,
        prompt=_identity_confirm_prompt,
        handler='identity_confirmation',
        transitions={
            VERIFIED: CONTACT_INFO_ADDRESS,
            'mismatch': IDENTITY_VERIFICATION_RETRY,
            'exhausted': IDENTITY_FAILURE_TERMINATION,
            'rejected': IDENTITY_VERIFICATION_DOB,
        },
    ),
    IDENTITY_VERIFICATION_RETRY: FlowNode(
        id=IDENTITY_VERIFICATION_RETRY,
        prompt=lambda context: (
            "I'm unable to verify this information with our records. Let me try once more. "
            "Can you please confirm your date of birth and the last four digits of your "
            "Social Security Number?"
        ),
        handler='identity_retry',
        transitions={
            'both': IDENTITY_VERIFICATION_CONFIRM,
            'dob_only': IDENTITY_VERIFICATION_SSN,
            'ssn_only': IDENTITY_VERIFICATION_CONFIRM,
            'reset': IDENTITY_VERIFICATION_DOB,
        },
    ),
    IDENTITY_FAILURE_TERMINATION: FlowNode(
        id=IDENTITY_FAILURE_TERMINATION,
        prompt=lambda context: (
            "I understand this can be frustrating. However, the last four digits of your "
            "Social Security Number and date of birth are required to proceed with the "
            "verification. Since we're unable to verify this information today, I'll need "
            "to conclude our call. Thank you for your time, and please feel free to call "
            "back when you have this information available."
        ),
        is_terminal=True,
    ),
    INCORRECT_PERSON_TERMINATION: FlowNode(
        id=INCORRECT_PERSON_TERMINATION,
        prompt=lambda context: (
            "I apologize for the confusion. I'm only able to discuss this application with "
            "the applicant. Thank you for your time, and have a good day."
        ),
        is_terminal=True,
    ),
    CONTACT_INFO_ADDRESS: FlowNode(
        id=CONTACT_INFO_ADDRESS,
        prompt=lambda context: (
            "Perfect, your identity has been verified. Now I need to collect your current "
            "mailing address. Please provide your complete address including street, city, "
            "state, and ZIP code."
        ),
        handler='address',
        transitions={'next': CONTACT_INFO_UNIT},
        gated=True,
    ),
    CONTACT_INFO_UNIT: FlowNode(
        id=CONTACT_INFO_UNIT,
        prompt=_unit_prompt,
        handler='unit',
        transitions={'next': CONTACT_INFO_EMAIL, 'ask_number': CONTACT_INFO_UNIT_NUMBER},
        gated=True,
    ),
    CONTACT_INFO_UNIT_NUMBER: FlowNode(
        id=CONTACT_INFO_UNIT_NUMBER,
        prompt=lambda context: "What is the unit or apartment number?",
        handler='unit_number',
        transitions={'next': CONTACT_INFO_EMAIL},
        gated=True,
    ),
    CONTACT_INFO_EMAIL: FlowNode(
        id=CONTACT_INFO_EMAIL,
        prompt=lambda context: (
            "I'll need your email address for our records and future communications. "
            "Please spell it out for me."
        ),
        handler='email',
        transitions={'next': EMPLOYMENT_INCOME},
        gated=True,
    ),
    EMPLOYMENT_INCOME: FlowNode(
        id=EMPLOYMENT_INCOME,
        prompt=lambda context: (
            "Now I need to verify your employment and income information. "
            "What is your monthly income before taxes?"
        ),
        handler='income',
        transitions={'next': EMPLOYMENT_TENURE},
        gated=True,
    ),
    EMPLOYMENT_TENURE: FlowNode(
        id=EMPLOYMENT_TENURE,
        prompt=lambda context: "How long have you been working at your current job?",
        handler='tenure',
        transitions={'next': TENURE_DISCREPANCY_CHECK},
        gated=True,
    ),
    TENURE_DISCREPANCY_CHECK: FlowNode(
        id=TENURE_DISCREPANCY_CHECK,
        prompt=_tenure_discrepancy_prompt,
        handler='tenure_discrepancy',
        transitions={'next': FINAL_CONFIRMATION},
        gated=True,
    ),
    FINAL_CONFIRMATION: FlowNode(
        id=FINAL_CONFIRMATION,
        prompt=_final_confirmation_prompt,
        handler='final_confirmation',
        transitions={'confirmed': COMPLETION, 'rejected': CONTACT_INFO_ADDRESS},
        gated=True,
    ),
    COMPLETION: FlowNode(
        id=COMPLETION,
        prompt=lambda context: (
            "Excellent. Your verification is now complete. Thank you for your time today."
        ),
        is_terminal=True,
        gated=True,
    ),
}


def validate_flow_table(
    nodes: Mapping[str, FlowNode],
    handler_outcomes: Mapping[str, Set[str]] = HANDLER_OUTCOMES,
    start: str = START
) -> None:
    """
    Check a flow table before any call uses it

    Args:
        nodes: Node id -> FlowNode
        handler_outcomes: Handler name -> outcomes it can return
        start: Entry node id

    Raises:
        FlowConfigurationError: On the first inconsistency found
    """
    if start not in nodes:
        raise FlowConfigurationError(f"Start node '{start}' not in flow table")

    for node_id, node in nodes.items():
        if node.id != node_id:
            raise FlowConfigurationError(f"Node keyed '{node_id}' has id '{node.id}'")

        if node.is_terminal:
            if node.handler is not None or node.transitions:
                raise FlowConfigurationError(
                    f"Terminal node '{node_id}' must not have a handler or transitions"
                )
            continue

        if node.handler not in handler_outcomes:
            raise FlowConfigurationError(f"Node '{node_id}' uses unknown handler '{node.handler}'")

        missing = handler_outcomes[node.handler] - set(node.transitions)
        if missing:
            raise FlowConfigurationError(
                f"Node '{node_id}' has no transition for outcomes {sorted(missing)}"
            )

        for outcome, target in node.transitions.items():
            if target not in nodes:
                raise FlowConfigurationError(
                    f"Node '{node_id}' outcome '{outcome}' targets unknown node '{target}'"
                )

    # Identity gate: gated nodes unreachable without the VERIFIED edge
    seen = {start}
    queue = deque([start])
    while queue:
        node = nodes[queue.popleft()]
        if node.gated:
            raise FlowConfigurationError(
                f"Gated node '{node.id}' is reachable without identity verification"
            )
        for outcome, target in node.transitions.items():
            if outcome != VERIFIED and target not in seen:
                seen.add(target)
                queue.append(target)

    logger.debug(f"Flow table validated ({len(nodes)} nodes)")
