"""
Conversation State - Per-call mutable state for the verification agent

Responsibilities:
- Track the current node, identity attempts and validated field values
- Track whether the tenure clarification was solicited
- Keep an in-memory turn history for observers
- Export a JSON-safe snapshot

Design principles:
- Dumb container - no validation, no transitions (the agent owns both)
- Owned by exactly one agent for the lifetime of one call
- Render strings are never stored here (see prompt_context)
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from verification.contracts import TurnRecord

logger = logging.getLogger(__name__)

IDENTITY_COUNTER = 'identity'


class ConversationState:
    """State for a single verification call"""

    def __init__(self, start_node_id: str):
        """
        Args:
            start_node_id: Entry node of the flow table
        """
        self.current_node_id: str = start_node_id
        self.attempts: Dict[str, int] = {IDENTITY_COUNTER: 0}
        self.collected_data: Dict[str, Any] = {}
        self.discrepancy_shown: bool = False
        self.discrepancy_pending: bool = False
        self.history: List[TurnRecord] = []

    # ========================
    # Collected fields
    # ========================

    def set_field(self, field_name: str, value: Any) -> None:
        """Store an already-validated value"""
        self.collected_data[field_name] = value

    def get_field(self, field_name: str, default: Any = None) -> Any:
        return self.collected_data.get(field_name, default)

    def clear_fields(self, *field_names: str) -> None:
        """Drop fields (identity retry reset only)"""
        for field_name in field_names:
            self.collected_data.pop(field_name, None)
        logger.debug(f"Cleared fields: {list(field_names)}")

    # ========================
    # Counters
    # ========================

    def increment_attempts(self, counter: str = IDENTITY_COUNTER) -> int:
        """
        Increment a failure counter. Counters never decrease.

        Returns:
            int: New counter value
        """
        self.attempts[counter] = self.attempts.get(counter, 0) + 1
        return self.attempts[counter]

    # ========================
    # History and export
    # ========================

    def record_turn(self, node_id: str, utterance: str, outcome: str, next_node_id: str) -> TurnRecord:
        turn = TurnRecord(
            node_id=node_id,
            utterance=utterance,
            outcome=outcome,
            next_node_id=next_node_id,
        )
        self.history.append(turn)
        return turn

    def snapshot(self, identity_verified: Optional[bool] = None) -> Dict[str, Any]:
        """
        JSON-safe deep copy of the call state

        Args:
            identity_verified: Gate flag owned by the agent, included when given
        """
        snapshot = {
            'current_node_id': self.current_node_id,
            'attempts': dict(self.attempts),
            'collected_data': copy.deepcopy(self.collected_data),
            'discrepancy_shown': self.discrepancy_shown,
            'discrepancy_pending': self.discrepancy_pending,
            'history': [turn.to_dict() for turn in self.history],
        }
        if identity_verified is not None:
            snapshot['identity_verified'] = identity_verified
        return snapshot
