"""
Configuration for the verification call agent

Explicit value object passed into the agent at construction. Environment
variables are read only by from_env(), called once at the entry point.

Environment variables:
    JOB_TENURE_THRESHOLD_MONTHS   stated vs application tenure gap (default 24)
    MAX_IDENTITY_ATTEMPTS         failed identity confirmations allowed (default 2)
    VERIFICATION_USE_LLM          "1"/"true" to load the HuggingFace model
    VERIFICATION_MODEL_NAME       HuggingFace model identifier
    VERIFICATION_DEVICE           "cpu" or "cuda"
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_MODEL_NAME = "mistralai/Mistral-7B-Instruct-v0.2"

TRUE_STRINGS = {'1', 'true', 'yes', 'on'}


@dataclass(frozen=True)
class VerificationConfig:
    """
    Tunables for one verification call

    Attributes:
        job_tenure_threshold_months: Gap (months) above which the caller is
            asked to explain a tenure discrepancy
        max_identity_attempts: Failed identity confirmations before the
            call is terminated
        use_llm: Load the language model collaborator (rule-based otherwise)
        model_name: HuggingFace model identifier
        device: Inference device for the model
    """
    job_tenure_threshold_months: int = 24
    max_identity_attempts: int = 2
    use_llm: bool = False
    model_name: str = DEFAULT_MODEL_NAME
    device: str = "cpu"

    def __post_init__(self):
        if self.job_tenure_threshold_months < 0:
            raise ValueError(
                f"job_tenure_threshold_months must be >= 0, "
                f"got {self.job_tenure_threshold_months}"
            )
        if self.max_identity_attempts < 1:
            raise ValueError(
                f"max_identity_attempts must be >= 1, got {self.max_identity_attempts}"
            )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VerificationConfig":
        """
        Build config from environment variables, defaults for anything unset

        Raises:
            ValueError: If a numeric variable is not an integer
        """
        environ = os.environ if environ is None else environ

        def _int(name: str, default: int) -> int:
            raw = environ.get(name)
            if raw is None or raw.strip() == '':
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValueError(f"{name} must be an integer, got {raw!r}")

        config = cls(
            job_tenure_threshold_months=_int('JOB_TENURE_THRESHOLD_MONTHS', 24),
            max_identity_attempts=_int('MAX_IDENTITY_ATTEMPTS', 2),
            use_llm=environ.get('VERIFICATION_USE_LLM', '').strip().lower() in TRUE_STRINGS,
            model_name=environ.get('VERIFICATION_MODEL_NAME') or DEFAULT_MODEL_NAME,
            device=environ.get('VERIFICATION_DEVICE') or "cpu",
        )
        logger.info(f"Loaded config: {config}")
        return config
