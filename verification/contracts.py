"""
Data contracts for the verification call agent.

Immutable structures shared between the agent, its observers and the
HTTP harness. These define shape only - field validation lives in
verification.utils.validators.

Contents:
- ApplicantRecord: Ground truth from the application, read-only per call
- TurnRecord: One processed caller utterance, for observers and logs
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class ApplicantRecord:
    """
    Applicant data on file, supplied once when the call starts.

    The agent compares collected identity fields against this record
    and never mutates it.

    Attributes:
        name: Applicant name used in the greeting
        date_of_birth: YYYY-MM-DD
        ssn_last_four: Four-digit string
        job_tenure_months: Tenure stated on the application (None if absent)
    """
    name: Optional[str]
    date_of_birth: Optional[str]
    ssn_last_four: Optional[str]
    job_tenure_months: Optional[int] = None

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "ApplicantRecord":
        """
        Build from an application record dict.

        Accepts either 'application_job_tenure' or 'job_tenure_months';
        the former wins when both are present.

        Identity fields must already be strings: the identity check is an
        exact string comparison, so 7234 would never match "7234".

        Raises:
            TypeError: If data is not a mapping, or date_of_birth /
                ssn_last_four is not a string
            ValueError: If the tenure is not an integer
        """
        if not isinstance(data, Mapping):
            raise TypeError(f"applicant data must be a mapping, got {type(data).__name__}")

        for key in ('date_of_birth', 'ssn_last_four'):
            if not isinstance(data.get(key), str):
                raise TypeError(f"{key} must be a string, got {type(data.get(key)).__name__}")

        tenure = data.get('application_job_tenure')
        if tenure is None:
            tenure = data.get('job_tenure_months')
        if tenure is not None:
            tenure = int(tenure)

        return ApplicantRecord(
            name=data.get('name'),
            date_of_birth=data.get('date_of_birth'),
            ssn_last_four=data.get('ssn_last_four'),
            job_tenure_months=tenure,
        )


@dataclass(frozen=True)
class TurnRecord:
    """
    One caller utterance and the transition it caused.

    Attributes:
        node_id: Node that handled the utterance
        utterance: What the caller said
        outcome: Handler outcome name ('retry' when the node repeats)
        next_node_id: Node the call moved to
        timestamp: UTC ISO timestamp
    """
    node_id: str
    utterance: str
    outcome: str
    next_node_id: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            'node_id': self.node_id,
            'utterance': self.utterance,
            'outcome': self.outcome,
            'next_node_id': self.next_node_id,
            'timestamp': self.timestamp,
        }
