"""
Anthropic Client - Remote text generation over the Messages API

Responsibilities:
- Send one prompt (optionally with a PDF or image attachment) per call
- Bound every call by a timeout
- Map transport and API failures to TextGenerationError kinds

Design principles:
- Dependency injection (no singleton); httpx client injectable for tests
- Single request/response, no streaming, no retries
- Same generate() interface as the local HuggingFace client
"""

import base64
import logging
from typing import Optional

import httpx

from backend.contracts import Attachment

logger = logging.getLogger(__name__)

API_ENDPOINT = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
DEFAULT_MODEL = "claude-sonnet-4-20250514"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TIMEOUT_S = 120.0

# TextGenerationError kinds
ERROR_NOT_CONFIGURED = "not_configured"
ERROR_INVALID_API_KEY = "invalid_api_key"
ERROR_RATE_LIMITED = "rate_limited"
ERROR_TIMEOUT = "timeout"
ERROR_NETWORK = "network"
ERROR_API = "api_error"
ERROR_INVALID_RESPONSE = "invalid_response"
ERROR_ATTACHMENT = "attachment_rejected"

DOCUMENT_MEDIA_TYPES = ("application/pdf",)
IMAGE_MEDIA_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")
MAX_ATTACHMENT_BYTES = 20 * 1024 * 1024


class TextGenerationError(Exception):
    """
    Text generation failed.

    Attributes:
        kind: One of the ERROR_* constants
        status_code: HTTP status when the API answered, else None
    """

    def __init__(self, kind: str, message: str, status_code: Optional[int] = None):
        self.kind = kind
        self.status_code = status_code
        super().__init__(message)


def attachment_block(attachment: Attachment, max_bytes: int = MAX_ATTACHMENT_BYTES) -> dict:
    """
    Build the Messages API content block for an attachment.

    PDFs become 'document' blocks, supported images 'image' blocks.

    Raises:
        TextGenerationError: kind attachment_rejected for oversize or
            unsupported files
    """
    if len(attachment.data) > max_bytes:
        raise TextGenerationError(ERROR_ATTACHMENT, "File is too large for analysis.")

    if attachment.media_type in DOCUMENT_MEDIA_TYPES:
        block_type = "document"
    elif attachment.media_type in IMAGE_MEDIA_TYPES:
        block_type = "image"
    else:
        raise TextGenerationError(
            ERROR_ATTACHMENT,
            "Unsupported file type. Please upload a PDF, JPG, or PNG."
        )

    return {
        "type": block_type,
        "source": {
            "type": "base64",
            "media_type": attachment.media_type,
            "data": base64.b64encode(attachment.data).decode("ascii"),
        },
    }


class AnthropicClient:
    """Wrapper for the Anthropic Messages API"""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout: float = DEFAULT_TIMEOUT_S,
        http_client: Optional[httpx.Client] = None
    ) -> None:
        """
        Args:
            api_key: Anthropic API key (None or '' leaves the client unconfigured)
            model: Model identifier
            max_tokens: Default response token limit
            timeout: Default per-call timeout in seconds
            http_client: Optional httpx.Client (tests pass a MockTransport client)
        """
        self.api_key = api_key or ""
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._http = http_client or httpx.Client(timeout=timeout)

        logger.info(f"Anthropic client initialized (model={model}, configured={self.is_configured()})")

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def generate(
        self,
        prompt: str,
        attachment: Optional[Attachment] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None
    ) -> str:
        """
        Send one prompt and return the response text.

        Args:
            prompt: Complete prompt text
            attachment: Optional PDF/image sent before the prompt
            max_tokens: Override the default token limit
            timeout: Override the default timeout (seconds)

        Returns:
            str: Text of the first content block

        Raises:
            TextGenerationError: On any failure (see ERROR_* kinds)
        """
        if not self.is_configured():
            raise TextGenerationError(ERROR_NOT_CONFIGURED, "AI is not configured.")

        if attachment is not None:
            content = [attachment_block(attachment), {"type": "text", "text": prompt}]
        else:
            content = prompt

        body = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "messages": [{"role": "user", "content": content}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

        try:
            response = self._http.post(
                API_ENDPOINT,
                json=body,
                headers=headers,
                timeout=timeout or self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.error(f"Anthropic request timed out after {timeout or self.timeout}s")
            raise TextGenerationError(ERROR_TIMEOUT, "The AI service took too long to respond.") from e
        except httpx.HTTPError as e:
            logger.error(f"Anthropic request failed: {e}")
            raise TextGenerationError(ERROR_NETWORK, f"API request failed: {e}") from e

        return self._extract_text(response)

    def _extract_text(self, response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code != 200:
            logger.error(f"Anthropic API returned HTTP {response.status_code}")
            if response.status_code == 401:
                raise TextGenerationError(
                    ERROR_INVALID_API_KEY,
                    "Invalid API key. Please check your configuration.",
                    status_code=401,
                )
            if response.status_code == 429:
                raise TextGenerationError(
                    ERROR_RATE_LIMITED,
                    "Too many requests. Please try again in a moment.",
                    status_code=429,
                )
            message = "API request failed"
            if isinstance(data, dict):
                message = (data.get("error") or {}).get("message") or message
            raise TextGenerationError(ERROR_API, message, status_code=response.status_code)

        try:
            text = data["content"][0]["text"]
        except (KeyError, IndexError, TypeError):
            text = None

        if not isinstance(text, str):
            logger.error("Anthropic API response has no text content")
            raise TextGenerationError(ERROR_INVALID_RESPONSE, "Invalid response from AI service.")

        usage = data.get("usage") or {}
        logger.info(
            f"Anthropic response received "
            f"(input_tokens={usage.get('input_tokens')}, output_tokens={usage.get('output_tokens')})"
        )
        return text

    def close(self):
        self._http.close()
