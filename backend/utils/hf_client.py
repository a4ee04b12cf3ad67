"""
HuggingFace Client - Local text generation for guide prose

Responsibilities:
- Load a causal LM (optionally 4-bit quantized) and its tokenizer
- Wrap prompts in the tokenizer's chat template when it has one
- Generate guide prose under a time bound
- Map load/generation failures to TextGenerationError

Design principles:
- Dependency injection (no singleton)
- Same generate() interface as AnthropicClient, so the enricher
  does not know which backend it talks to
- Text only: attachments are rejected (verification needs the remote API)
"""

import logging
import time
from typing import Optional

import torch
from transformers import (
    AutoModelForCausalLM,
    AutoTokenizer,
    BitsAndBytesConfig
)

from backend.contracts import Attachment
from backend.utils.llm_client import (
    ERROR_API,
    ERROR_ATTACHMENT,
    ERROR_NOT_CONFIGURED,
    TextGenerationError,
)

logger = logging.getLogger(__name__)

DEVICE_CUDA = "cuda"
DEVICE_CPU = "cpu"


class HuggingFaceClient:
    """Wrapper for local HuggingFace model inference"""

    def __init__(
        self,
        model_name: str,
        load_in_4bit: bool = True,
        device: str = DEVICE_CUDA,
        max_tokens: int = 4096,
        timeout: float = 120.0,
        temperature: float = 0.3
    ) -> None:
        """
        Initialize model and tokenizer

        Args:
            model_name: HuggingFace model identifier
            load_in_4bit: Use 4-bit quantization (CUDA only)
            device: "cuda" or "cpu"
            max_tokens: Default new-token limit
            timeout: Default generation time limit in seconds
            temperature: Sampling temperature (0.0 = greedy)

        Raises:
            ValueError: If device is neither "cuda" nor "cpu"
            RuntimeError: If CUDA requested but not available
        """
        if device not in (DEVICE_CUDA, DEVICE_CPU):
            raise ValueError(f"device must be {DEVICE_CUDA!r} or {DEVICE_CPU!r}, got: {device!r}")

        self.model_name = model_name
        self.device = device
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.temperature = temperature

        if device == DEVICE_CUDA and not torch.cuda.is_available():
            raise RuntimeError("CUDA requested but not available. Check nvidia-smi.")

        logger.info(f"Loading model: {model_name} (device={device}, 4bit={load_in_4bit})")

        quantization_config = None
        if load_in_4bit and device == DEVICE_CUDA:
            quantization_config = BitsAndBytesConfig(
                load_in_4bit=True,
                bnb_4bit_quant_type="nf4",
                bnb_4bit_compute_dtype=torch.bfloat16,
                bnb_4bit_use_double_quant=True
            )

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(model_name)
            self.model = AutoModelForCausalLM.from_pretrained(
                model_name,
                quantization_config=quantization_config,
                device_map="auto" if device == DEVICE_CUDA else None,
                torch_dtype=torch.bfloat16 if device == DEVICE_CUDA else torch.float32
            )
        except torch.cuda.OutOfMemoryError:
            logger.error("CUDA Out of Memory during model loading")
            raise
        except Exception as e:
            logger.error(f"Failed to load model {model_name}: {e}")
            raise

        self.model.eval()
        self.has_chat_template = getattr(self.tokenizer, "chat_template", None) is not None
        logger.info("HuggingFace client initialized successfully")

    def is_configured(self) -> bool:
        return self.model is not None and self.tokenizer is not None

    def format_prompt(self, prompt: str) -> str:
        """Apply the tokenizer chat template, or pass the prompt through."""
        if not self.has_chat_template:
            return prompt
        return self.tokenizer.apply_chat_template(
            [{"role": "user", "content": prompt}],
            tokenize=False,
            add_generation_prompt=True
        )

    def generate(
        self,
        prompt: str,
        attachment: Optional[Attachment] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> str:
        """
        Generate a completion.

        Args:
            prompt: Complete prompt text
            attachment: Not supported; must be None
            max_tokens: Override the default new-token limit
            timeout: Override the default time limit (seconds); generation
                stops early and returns what it has when the limit is hit

        Returns:
            str: Generated text (prompt tokens excluded)

        Raises:
            TextGenerationError: For an attachment, a missing model or any
                failure inside tokenization or generation (kind api_error)
        """
        if attachment is not None:
            raise TextGenerationError(
                ERROR_ATTACHMENT,
                "Document analysis is not available with the local model."
            )
        if not self.is_configured():
            raise TextGenerationError(ERROR_NOT_CONFIGURED, "Local model not loaded")

        start_time = time.time()
        prompt_tokens = 0

        try:
            inputs = self.tokenizer(self.format_prompt(prompt), return_tensors="pt")
            if self.device == DEVICE_CUDA:
                inputs = inputs.to(DEVICE_CUDA)
            prompt_tokens = inputs.input_ids.shape[1]

            with torch.no_grad():
                outputs = self.model.generate(
                    inputs.input_ids,
                    attention_mask=inputs.attention_mask,
                    max_new_tokens=max_tokens or self.max_tokens,
                    max_time=timeout or self.timeout,
                    temperature=self.temperature,
                    do_sample=self.temperature > 0,
                    pad_token_id=self.tokenizer.eos_token_id
                )

            generated_ids = outputs[0][prompt_tokens:]
            text = self.tokenizer.decode(generated_ids, skip_special_tokens=True)
        except torch.cuda.OutOfMemoryError as e:
            logger.error(f"CUDA OOM during generation (prompt tokens: {prompt_tokens})")
            raise TextGenerationError(ERROR_API, "Local model ran out of memory") from e
        except Exception as e:
            logger.error(f"Local generation failed: {type(e).__name__}: {e}")
            raise TextGenerationError(ERROR_API, f"Local model failed: {type(e).__name__}") from e

        elapsed_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Local generation: {prompt_tokens} prompt tokens, "
            f"{len(generated_ids)} completion tokens, {elapsed_ms:.0f}ms"
        )
        return text
