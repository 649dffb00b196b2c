"""
Verification Agent - Conversation controller for one verification call

Responsibilities:
- Walk the flow table one caller utterance at a time
- Dispatch each node's handler and follow the outcome it returns
- Store validated field values and track identity attempts
- Enforce the identity gate before contact and financial questions
- Render prompts from a freshly derived context

Design principles:
- Handler names are resolved to bound methods at construction, so an
  inconsistent flow table fails before the call starts
- Recoverable input problems never raise - the handler returns 'retry'
- Deterministic identity check (no LLM involvement)
- Raw DOB/SSN values are never written to the log
"""

import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional

from verification.config import VerificationConfig
from verification.contracts import ApplicantRecord, TurnRecord
from verification.core.conversation_flow import (
    COMPLETION,
    HANDLER_OUTCOMES,
    NODES,
    RETRY,
    START,
    VERIFIED,
    FlowConfigurationError,
    FlowNode,
    validate_flow_table,
)
from verification.core.conversation_state import IDENTITY_COUNTER, ConversationState
from verification.core.entity_extractor import EntityExtractor
from verification.core.prompt_context import SELF_EMPLOYED, derive_context
from verification.utils import validators
from verification.utils.fallback_parsing import contains_any_word

logger = logging.getLogger(__name__)

EMPLOYED = 'employed'

# Handler name (as used in the flow table) -> method name
HANDLERS: Dict[str, str] = {
    'greeting': '_handle_greeting',
    'dob': '_handle_dob',
    'ssn': '_handle_ssn',
    'identity_confirmation': '_handle_identity_confirmation',
    'identity_retry': '_handle_identity_retry',
    'address': '_handle_address',
    'unit': '_handle_unit',
    'unit_number': '_handle_unit_number',
    'email': '_handle_email',
    'income': '_handle_income',
    'tenure': '_handle_tenure',
    'tenure_discrepancy': '_handle_tenure_discrepancy',
    'final_confirmation': '_handle_final_confirmation',
}

# Extraction schemas (field -> description for the LLM prompt)
DOB_SCHEMA = {'date': "The caller's date of birth in YYYY-MM-DD format"}
SSN_SCHEMA = {'ssn': "The last 4 digits of the caller's Social Security Number"}
IDENTITY_SCHEMA = {**DOB_SCHEMA, **SSN_SCHEMA}
ADDRESS_SCHEMA = {
    'street': 'The street address',
    'unit': 'The apartment, suite or unit number, if any',
    'city': 'The city name',
    'state': 'The state name',
    'zip_code': 'The ZIP code',
}
UNIT_SCHEMA = {'unit': 'The apartment, suite or unit number'}
EMAIL_SCHEMA = {'email': "The caller's email address"}
INCOME_SCHEMA = {'income': "The caller's monthly income as a number"}
TENURE_SCHEMA = {'tenure': "The caller's job tenure in months as a number"}

NO_EMAIL_PHRASES = [
    "i don't have an email",
    "i don't have an email address",
    "no email",
    "i don't use email",
    "no email address",
    "don't have email",
]

SELF_EMPLOYED_PHRASES = [
    "i'm self-employed",
    "self-employed",
    "i don't have a traditional job tenure",
    "i work for myself",
    "freelancer",
    "contractor",
    "i'm my own boss",
]

DISCREPANCY_REASON_PHRASES = [
    'promotion',
    'new position',
    'same company',
    'different role',
    'clarify',
    'explain',
    'confusion',
    'understand',
]

FINAL_NEGATIVE_WORDS = {'no', 'not', 'wrong', 'incorrect'}
FINAL_POSITIVE_WORDS = {'yes', 'correct', 'ok', 'okay', 'good', 'right'}


def _normalize(text: str) -> str:
    # Curly apostrophes from speech-to-text
    return text.lower().replace('’', "'")


def _contains_phrase(text: str, phrases: List[str]) -> bool:
    normalized = _normalize(text)
    return any(phrase in normalized for phrase in phrases)


def _to_number(value: Optional[str]) -> Optional[float]:
    """'$6,500' -> 6500; '-6500' -> -6500; None when there is no number"""
    if value is None:
        return None
    cleaned = re.sub(r'[^\d.-]', '', str(value))
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return int(number) if number.is_integer() else number


class VerificationAgent:
    """
    Drives one outbound verification call

    Usage:
        agent = VerificationAgent(applicant)
        print(agent.render_prompt())
        while not agent.is_terminal:
            print(agent.submit(input()))
    """

    def __init__(
        self,
        applicant,
        extractor: Optional[Any] = None,
        config: Optional[VerificationConfig] = None,
        nodes: Optional[Mapping[str, FlowNode]] = None
    ):
        """
        Args:
            applicant: ApplicantRecord, or an application dict
            extractor: Collaborator with extract_entities() and
                get_confirmation(); rule-based EntityExtractor if None
            config: VerificationConfig (defaults if None)
            nodes: Flow table (default NODES)

        Raises:
            TypeError: If applicant or extractor has the wrong shape
            FlowConfigurationError: If the flow table is inconsistent or
                names a handler this agent does not implement
        """
        if isinstance(applicant, Mapping):
            applicant = ApplicantRecord.from_dict(applicant)
        if not isinstance(applicant, ApplicantRecord):
            raise TypeError(
                f"applicant must be ApplicantRecord or dict, got {type(applicant).__name__}"
            )

        extractor = extractor if extractor is not None else EntityExtractor()
        for method in ('extract_entities', 'get_confirmation'):
            if not callable(getattr(extractor, method, None)):
                raise TypeError(f"extractor must have callable {method}() method")

        self.applicant = applicant
        self.extractor = extractor
        self.config = config or VerificationConfig()
        self.nodes = dict(nodes if nodes is not None else NODES)

        try:
            validate_flow_table(self.nodes, HANDLER_OUTCOMES, START)
        except FlowConfigurationError as e:
            logger.error(f"Invalid flow table: {e}")
            raise

        self._handlers = self._resolve_handlers()
        self.state = ConversationState(START)
        self._identity_verified = False

        logger.info(
            f"Verification agent initialized "
            f"(nodes={len(self.nodes)}, tenure_threshold={self.config.job_tenure_threshold_months}, "
            f"max_identity_attempts={self.config.max_identity_attempts})"
        )

    def _resolve_handlers(self) -> Dict[str, Callable[[str], str]]:
        handlers = {}
        for node in self.nodes.values():
            if node.is_terminal:
                continue
            method = getattr(self, HANDLERS.get(node.handler, ''), None)
            if method is None:
                logger.error(f"[{node.id}] No implementation for handler '{node.handler}'")
                raise FlowConfigurationError(
                    f"Node '{node.id}' uses unknown handler '{node.handler}'"
                )
            handlers[node.handler] = method
        return handlers

    # ========================
    # Session contract
    # ========================

    def render_prompt(self) -> str:
        """Render the current node's prompt (no side effects)"""
        node = self._current_node()
        return node.prompt(derive_context(self.state, self.applicant))

    def submit(self, utterance: str) -> str:
        """
        Process one caller utterance

        Args:
            utterance: What the caller said

        Returns:
            str: The next prompt to speak

        Raises:
            TypeError: If utterance is not a string
            FlowConfigurationError: If the current node is missing
        """
        if not isinstance(utterance, str):
            raise TypeError(f"utterance must be string, got {type(utterance).__name__}")

        node = self._current_node()

        if node.is_terminal:
            logger.warning(f"[{node.id}] Input received after call ended, ignoring")
            return self.render_prompt()

        outcome = self._handlers[node.handler](utterance)

        if outcome == RETRY:
            next_node_id = node.id
        elif outcome in node.transitions:
            next_node_id = node.transitions[outcome]
        else:
            logger.error(f"[{node.id}] Handler '{node.handler}' returned unmapped outcome '{outcome}'")
            raise FlowConfigurationError(
                f"Node '{node.id}' has no transition for outcome '{outcome}'"
            )

        self.state.current_node_id = next_node_id
        self.state.record_turn(node.id, utterance, outcome, next_node_id)

        if next_node_id == node.id:
            logger.info(f"[{node.id}] {outcome}, asking again")
        else:
            logger.info(f"[{node.id}] {outcome} -> {next_node_id}")

        return self.render_prompt()

    def validate_identity(self, dob: Optional[str], ssn_last4: Optional[str]) -> bool:
        """Exact match of both identity fields against the application"""
        return validators.validate_identity(dob, ssn_last4, self.applicant)

    # ========================
    # Observers
    # ========================

    @property
    def current_node_id(self) -> str:
        return self.state.current_node_id

    @property
    def collected_data(self) -> Dict[str, Any]:
        return self.state.snapshot()['collected_data']

    @property
    def identity_verified(self) -> bool:
        return self._identity_verified

    @property
    def attempts(self) -> Dict[str, int]:
        return dict(self.state.attempts)

    @property
    def is_terminal(self) -> bool:
        node = self.nodes.get(self.state.current_node_id)
        return bool(node and node.is_terminal)

    @property
    def is_complete(self) -> bool:
        return self.state.current_node_id == COMPLETION

    @property
    def history(self) -> List[TurnRecord]:
        return list(self.state.history)

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe view of the call for logging and the HTTP harness"""
        snapshot = self.state.snapshot(identity_verified=self._identity_verified)
        snapshot['is_terminal'] = self.is_terminal
        snapshot['is_complete'] = self.is_complete
        return snapshot

    def _current_node(self) -> FlowNode:
        node_id = self.state.current_node_id
        node = self.nodes.get(node_id)
        if node is None:
            logger.error(f"Current node not found: {node_id}")
            raise FlowConfigurationError(f"Current node '{node_id}' not in flow table")
        return node

    # ========================
    # Identity handlers
    # ========================

    def _handle_greeting(self, utterance: str) -> str:
        if self.extractor.get_confirmation(utterance):
            return 'confirmed'
        logger.info(f"[{START}] Caller is not the applicant")
        return 'denied'

    def _extract_valid_dob(self, utterance: str) -> Optional[str]:
        dob = self.extractor.extract_entities(utterance, DOB_SCHEMA).get('date')
        return dob if validators.validate_dob(dob) else None

    def _extract_valid_ssn(self, utterance: str) -> Optional[str]:
        ssn = self.extractor.extract_entities(utterance, SSN_SCHEMA).get('ssn')
        ssn = re.sub(r'\D', '', ssn) if ssn else None
        return ssn if validators.validate_ssn_last4(ssn) else None

    def _handle_dob(self, utterance: str) -> str:
        dob = self._extract_valid_dob(utterance)
        if dob is None:
            logger.warning(f"[{self.current_node_id}] No valid date of birth in reply")
            return RETRY
        self.state.set_field('dob', dob)
        return 'next'

    def _handle_ssn(self, utterance: str) -> str:
        ssn = self._extract_valid_ssn(utterance)
        if ssn is None:
            logger.warning(f"[{self.current_node_id}] No valid SSN last four in reply")
            return RETRY
        self.state.set_field('ssn_last4', ssn)
        return 'next'

    def _handle_identity_confirmation(self, utterance: str) -> str:
        node_id = self.current_node_id

        if not self.extractor.get_confirmation(utterance):
            logger.info(f"[{node_id}] Caller rejected read-back, collecting identity again")
            return 'rejected'

        if self.validate_identity(self.state.get_field('dob'), self.state.get_field('ssn_last4')):
            self._identity_verified = True
            logger.info(f"[{node_id}] Identity verified")
            return VERIFIED

        attempts = self.state.increment_attempts(IDENTITY_COUNTER)
        logger.warning(
            f"[{node_id}] Identity mismatch "
            f"(attempt {attempts}/{self.config.max_identity_attempts})"
        )
        if attempts >= self.config.max_identity_attempts:
            logger.info(f"[{node_id}] Identity attempts exhausted, terminating call")
            return 'exhausted'
        return 'mismatch'

    def _handle_identity_retry(self, utterance: str) -> str:
        extracted = self.extractor.extract_entities(utterance, IDENTITY_SCHEMA)

        dob = extracted.get('date')
        dob = dob if validators.validate_dob(dob) else None
        ssn = extracted.get('ssn')
        ssn = re.sub(r'\D', '', ssn) if ssn else None
        ssn = ssn if validators.validate_ssn_last4(ssn) else None

        if dob:
            self.state.set_field('dob', dob)
        if ssn:
            self.state.set_field('ssn_last4', ssn)

        if dob and ssn:
            return 'both'
        if dob:
            return 'dob_only'
        if ssn:
            return 'ssn_only'

        logger.info(f"[{self.current_node_id}] No identity fields in reply, starting over")
        self.state.clear_fields('dob', 'ssn_last4')
        return 'reset'

    # ========================
    # Contact handlers
    # ========================

    def _handle_address(self, utterance: str) -> str:
        extracted = self.extractor.extract_entities(utterance, ADDRESS_SCHEMA)
        address = {
            key: (extracted.get(key) or '').strip()
            for key in ('street', 'city', 'state', 'zip_code')
        }
        if extracted.get('unit'):
            address['unit'] = extracted['unit'].strip()

        if not validators.validate_address(address):
            missing = [key for key, value in address.items() if not value]
            logger.warning(f"[{self.current_node_id}] Incomplete address (missing {missing})")
            return RETRY

        self.state.set_field('address', address)
        return 'next'

    def _store_unit(self, unit: str) -> None:
        address = dict(self.state.get_field('address') or {})
        address['unit'] = unit
        self.state.set_field('address', address)

    def _handle_unit(self, utterance: str) -> str:
        unit = self.extractor.extract_entities(utterance, UNIT_SCHEMA).get('unit')
        if unit:
            self._store_unit(unit.strip())
            return 'next'
        if self.extractor.get_confirmation(utterance):
            return 'ask_number'
        return 'next'

    def _handle_unit_number(self, utterance: str) -> str:
        unit = self.extractor.extract_entities(utterance, UNIT_SCHEMA).get('unit')
        if not unit:
            logger.warning(f"[{self.current_node_id}] No unit number in reply")
            return RETRY
        self._store_unit(unit.strip())
        return 'next'

    def _handle_email(self, utterance: str) -> str:
        if _contains_phrase(utterance, NO_EMAIL_PHRASES):
            logger.info(f"[{self.current_node_id}] Caller has no email")
            self.state.set_field('email', None)
            self.state.set_field('no_email', True)
            return 'next'

        email = self.extractor.extract_entities(utterance, EMAIL_SCHEMA).get('email')
        email = email.strip() if email else None
        if not validators.validate_email(email):
            logger.warning(f"[{self.current_node_id}] Invalid email: {email}")
            return RETRY

        self.state.set_field('email', email)
        self.state.set_field('no_email', False)
        return 'next'

    # ========================
    # Employment handlers
    # ========================

    def _handle_income(self, utterance: str) -> str:
        income = _to_number(self.extractor.extract_entities(utterance, INCOME_SCHEMA).get('income'))
        if not validators.validate_income(income):
            logger.warning(f"[{self.current_node_id}] Invalid monthly income: {income}")
            return RETRY
        self.state.set_field('monthly_income', income)
        return 'next'

    def _handle_tenure(self, utterance: str) -> str:
        node_id = self.current_node_id

        if _contains_phrase(utterance, SELF_EMPLOYED_PHRASES):
            logger.info(f"[{node_id}] Caller is self-employed")
            self.state.set_field('job_tenure', None)
            self.state.set_field('employment_status', SELF_EMPLOYED)
            return 'next'

        tenure = _to_number(self.extractor.extract_entities(utterance, TENURE_SCHEMA).get('tenure'))
        if not validators.validate_tenure(tenure):
            logger.warning(f"[{node_id}] Invalid job tenure: {tenure}")
            return RETRY

        tenure = int(tenure)
        self.state.set_field('job_tenure', tenure)
        self.state.set_field('employment_status', EMPLOYED)

        application_tenure = self.applicant.job_tenure_months
        if (application_tenure is not None
                and abs(tenure - application_tenure) > self.config.job_tenure_threshold_months
                and not self.state.discrepancy_shown):
            logger.info(
                f"[{node_id}] Tenure discrepancy: stated {tenure}, "
                f"application {application_tenure} months"
            )
            self.state.discrepancy_pending = True
            self.state.discrepancy_shown = True

        return 'next'

    def _handle_tenure_discrepancy(self, utterance: str) -> str:
        node_id = self.current_node_id

        if self.state.discrepancy_pending:
            has_reason = _contains_phrase(utterance, DISCREPANCY_REASON_PHRASES)
            logger.info(
                f"[{node_id}] Discrepancy explanation "
                f"({'reason given' if has_reason else 'acknowledged'}): {utterance}"
            )
            self.state.discrepancy_pending = False

        return 'next'

    def _handle_final_confirmation(self, utterance: str) -> str:
        node_id = self.current_node_id

        if contains_any_word(utterance, FINAL_NEGATIVE_WORDS):
            logger.info(f"[{node_id}] Caller rejected summary, collecting contact info again")
            return 'rejected'
        if contains_any_word(utterance, FINAL_POSITIVE_WORDS):
            logger.info(f"[{node_id}] Verification complete")
            return 'confirmed'

        logger.info(f"[{node_id}] Ambiguous final confirmation, asking again")
        return RETRY
