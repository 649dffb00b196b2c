"""
HuggingFace Client - Local language model for extraction and confirmation

Responsibilities:
- Load tokenizer and causal LM (optional 4-bit quantization on CUDA)
- Wrap prompts in the model's chat template (or [INST] tags)
- Generate text and JSON completions with repair

Design principles:
- Dependency injection (no singleton, caller owns the instance)
- Fail fast on load errors, surface generation errors to the caller
- Knows nothing about verification fields or prompts
"""

import logging
import time
from typing import Any, Dict, Optional

import torch
from transformers import AutoModelForCausalLM, AutoTokenizer, BitsAndBytesConfig

logger = logging.getLogger(__name__)

DEVICE_CUDA = "cuda"
DEVICE_CPU = "cpu"


def repair_json(text: str) -> str:
    """
    Clean common LLM formatting issues around a JSON object

    Strips markdown fences, keeps the outermost {...} and balances
    braces. Only dict output is handled.

    Args:
        text: Raw model output

    Returns:
        str: Cleaned JSON string (may still fail json.loads)
    """
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    first_brace = text.find('{')
    if first_brace == -1:
        logger.warning("No braces found in JSON repair")
        return text

    last_brace = text.rfind('}')
    text = text[first_brace:last_brace + 1] if last_brace > first_brace else text[first_brace:]

    open_count = text.count('{')
    close_count = text.count('}')
    if open_count > close_count:
        text += '}' * (open_count - close_count)
        logger.debug(f"Added {open_count - close_count} closing braces")
    elif close_count > open_count:
        for _ in range(close_count - open_count):
            last_close = text.rfind('}')
            text = text[:last_close] + text[last_close + 1:]
        logger.debug(f"Removed {close_count - open_count} extra closing braces")

    return text


class HuggingFaceClient:
    """Wrapper for HuggingFace model inference"""

    def __init__(
        self,
        model_name: str,
        device: str = DEVICE_CPU,
        load_in_4bit: bool = False
    ) -> None:
        """
        Load tokenizer and model

        Args:
            model_name: HuggingFace model identifier
            device: "cpu" or "cuda"
            load_in_4bit: NF4 quantization (CUDA only)

        Raises:
            RuntimeError: If CUDA requested but not available
        """
        self.model_name = model_name
        self.device = device
        self.model = None
        self.tokenizer = None

        if device == DEVICE_CUDA and not torch.cuda.is_available():
            raise RuntimeError("CUDA requested but not available. Check nvidia-smi.")

        logger.info(f"Loading model: {model_name} (device={device}, 4-bit={load_in_4bit})")

        quantization_config = None
        if load_in_4bit and device == DEVICE_CUDA:
            quantization_config = BitsAndBytesConfig(
                load_in_4bit=True,
                bnb_4bit_quant_type="nf4",
                bnb_4bit_compute_dtype=torch.bfloat16
            )

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(model_name)
            if self.tokenizer.pad_token is None:
                self.tokenizer.pad_token = self.tokenizer.eos_token
            self.model = AutoModelForCausalLM.from_pretrained(
                model_name,
                quantization_config=quantization_config,
                torch_dtype=torch.bfloat16 if device == DEVICE_CUDA else torch.float32
            )
        except Exception as e:
            logger.error(f"Failed to load model {model_name}: {e}")
            raise

        if quantization_config is None:
            self.model.to(device)
        self.model.eval()
        logger.info("HuggingFace client initialized successfully")

    def is_loaded(self) -> bool:
        """True once model and tokenizer are ready"""
        return self.model is not None and self.tokenizer is not None

    def format_prompt(self, prompt: str) -> str:
        """
        Apply the tokenizer chat template, or [INST] tags without one
        """
        if getattr(self.tokenizer, 'chat_template', None):
            try:
                return self.tokenizer.apply_chat_template(
                    [{"role": "user", "content": prompt}],
                    tokenize=False,
                    add_generation_prompt=True
                )
            except Exception as e:
                logger.warning(f"Chat template failed: {e}. Falling back to [INST] tags")
        return f"[INST] {prompt} [/INST]"

    def generate(
        self,
        prompt: str,
        max_tokens: int = 128,
        temperature: float = 0.0
    ) -> str:
        """
        Generate a completion for a plain-text prompt

        Raises:
            RuntimeError: If model not loaded
        """
        if not self.is_loaded():
            raise RuntimeError("Model not loaded")

        start_time = time.time()
        inputs = self.tokenizer(self.format_prompt(prompt), return_tensors="pt").to(self.device)
        prompt_tokens = inputs.input_ids.shape[1]

        with torch.no_grad():
            outputs = self.model.generate(
                inputs.input_ids,
                attention_mask=inputs.attention_mask,
                max_new_tokens=max_tokens,
                temperature=temperature if temperature > 0 else None,
                do_sample=temperature > 0,
                pad_token_id=self.tokenizer.pad_token_id
            )

        generated_text = self.tokenizer.decode(
            outputs[0][prompt_tokens:],
            skip_special_tokens=True
        )
        elapsed_ms = (time.time() - start_time) * 1000
        logger.debug(f"Generated {len(generated_text)} chars in {elapsed_ms:.0f}ms")
        return generated_text

    def generate_json(
        self,
        prompt: str,
        max_tokens: int = 128,
        temperature: float = 0.0
    ) -> str:
        """
        Generate and repair a JSON object completion

        Note: Returns a string. Caller must json.loads().
        """
        return repair_json(self.generate(prompt, max_tokens=max_tokens, temperature=temperature))

    def get_model_info(self) -> Dict[str, Any]:
        """Model metadata for health endpoints"""
        info: Dict[str, Optional[Any]] = {
            "model_name": self.model_name,
            "device": self.device,
            "is_loaded": self.is_loaded(),
            "has_chat_template": bool(getattr(self.tokenizer, 'chat_template', None)),
        }
        if self.device == DEVICE_CUDA and torch.cuda.is_available():
            info["gpu_memory_allocated_gb"] = torch.cuda.memory_allocated() / 1e9
        return info
