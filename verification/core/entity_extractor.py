"""
Entity Extractor - Pull structured fields and yes/no answers from caller replies

Responsibilities:
- Build extraction prompts from a field schema
- Call the LLM and parse its JSON output
- Fall back to deterministic rule-based parsing per field
- Classify confirmations (yes/no) with a keyword fallback

Design principles:
- Never raises to the controller: every failure degrades to the fallback
- Always returns exactly the schema keys
- Without an LLM client every call uses the fallback (mock mode)
"""

import json
import logging
from typing import Any, Dict, Optional

from verification.utils.fallback_parsing import classify_confirmation, extract_fields

logger = logging.getLogger(__name__)

ExtractionResult = Dict[str, Optional[str]]

EXTRACTION_PROMPT = """Extract the following fields from the caller's reply.

Fields:
{fields}

Caller reply: "{text}"

Return ONLY a JSON object with exactly these keys. Use null for any field that is not stated.
Dates must be YYYY-MM-DD. Numbers must be plain digits without symbols.

JSON:"""

CONFIRMATION_PROMPT = """Decide whether the caller's reply confirms (yes) or denies (no) the question they were asked.

Caller reply: "{text}"

Return ONLY a JSON object of the form {{"confirmed": true}} or {{"confirmed": false}}.

JSON:"""


class EntityExtractor:
    """LLM-backed field extraction with a rule-based fallback"""

    def __init__(
        self,
        hf_client: Any = None,
        temperature: float = 0.0,
        max_tokens: int = 128
    ) -> None:
        """
        Args:
            hf_client: Loaded model client exposing generate_json(), or None
                for rule-based mode
            temperature: LLM sampling temperature
            max_tokens: Max tokens to generate per call

        Raises:
            TypeError: If hf_client lacks a callable generate_json()
        """
        if hf_client is not None:
            if not hasattr(hf_client, 'generate_json') or not callable(hf_client.generate_json):
                raise TypeError("hf_client must have callable generate_json() method")

        self.hf_client = hf_client
        self.temperature = temperature
        self.max_tokens = max_tokens

        mode = "llm" if hf_client is not None else "rule-based"
        logger.info(
            f"Entity extractor initialized "
            f"(mode={mode}, temp={temperature}, max_tokens={max_tokens})"
        )

    @property
    def uses_llm(self) -> bool:
        return self.hf_client is not None

    def extract_entities(self, text: str, schema: Dict[str, str]) -> ExtractionResult:
        """
        Extract schema fields from a caller utterance

        Args:
            text: Caller utterance
            schema: field name -> short description for the prompt

        Returns:
            dict: Exactly the schema keys, each a string or None

        Examples:
            >>> EntityExtractor().extract_entities("March 15th, 1985", {'date': 'birth date'})
            {'date': '1985-03-15'}
        """
        text = text if isinstance(text, str) else ''
        fallback = extract_fields(text, schema)

        if not self.uses_llm:
            return fallback

        parsed = self._generate(self._build_extraction_prompt(text, schema))
        if parsed is None:
            logger.warning(f"LLM extraction failed, using rule-based fields {list(schema)}")
            return fallback

        result: ExtractionResult = {}
        for key in schema:
            value = parsed.get(key)
            if value is None or str(value).strip() == '':
                if fallback.get(key) is not None:
                    logger.debug(f"Field '{key}' missing from LLM output, using rule-based value")
                result[key] = fallback.get(key)
            else:
                result[key] = str(value).strip()

        return result

    def get_confirmation(self, text: str) -> bool:
        """
        Classify a reply as confirming (True) or not (False)

        Unclear replies count as not confirmed.
        """
        text = text if isinstance(text, str) else ''

        if self.uses_llm:
            parsed = self._generate(CONFIRMATION_PROMPT.format(text=text))
            if parsed is not None and isinstance(parsed.get('confirmed'), bool):
                return parsed['confirmed']
            logger.warning("LLM confirmation unusable, using keyword classification")

        return classify_confirmation(text) is True

    def _build_extraction_prompt(self, text: str, schema: Dict[str, str]) -> str:
        fields = "\n".join(f"- {key}: {description}" for key, description in schema.items())
        return EXTRACTION_PROMPT.format(fields=fields, text=text)

    def _generate(self, prompt: str) -> Optional[Dict[str, Any]]:
        """
        Run the LLM and decode its JSON object

        Returns:
            dict, or None on generation failure, invalid JSON or a non-object
        """
        try:
            llm_output = self.hf_client.generate_json(
                prompt=prompt,
                max_tokens=self.max_tokens,
                temperature=self.temperature
            )
        except Exception as e:
            # Generation failed (CUDA OOM, timeout, etc)
            logger.error(f"LLM generation failed: {type(e).__name__} - {e}")
            return None

        try:
            parsed = json.loads(llm_output)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Invalid JSON from LLM: {e}")
            return None

        if not isinstance(parsed, dict):
            logger.warning(f"LLM returned {type(parsed).__name__}, expected object")
            return None

        return parsed
