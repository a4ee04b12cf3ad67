"""
Guide Content Enricher - Orchestration around the text-generation service

Responsibilities:
- Compose prompts (Prompt Builder + knowledge snapshot + call context)
- Call the injected text client with a bounded timeout
- Parse responses into GuideContent (guide sections, verification checklist)
- Translate client failures into EnrichmentUnavailable
- Flag responses without the expected anchors as EnrichmentParseIncomplete

NOT responsible for:
- Falling back to plain templates (Flow Manager decides)
- Persisting results
- Rendering

Design principles:
- Text client is injected; anything with generate(prompt, attachment,
  max_tokens, timeout) works (remote API, local model, test mock)
- Raw response text is never discarded
- Disabled or unconfigured enrichment fails before any network call
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from backend.contracts import Attachment, GuideContent
from backend.core.verification_parser import parse_verification
from backend.utils.llm_client import (
    DOCUMENT_MEDIA_TYPES,
    ERROR_API,
    ERROR_ATTACHMENT,
    ERROR_NETWORK,
    ERROR_NOT_CONFIGURED,
    ERROR_RATE_LIMITED,
    ERROR_TIMEOUT,
    IMAGE_MEDIA_TYPES,
    MAX_ATTACHMENT_BYTES,
    TextGenerationError,
)
from backend.utils.prompt_builder import PromptBuilder, current_date_text

logger = logging.getLogger(__name__)

HEALTH_VERIFICATION = "health-verification"
HEALTH_FOLLOWUP = "health-verification-followup"

RETRYABLE_REASONS = (ERROR_RATE_LIMITED, ERROR_TIMEOUT, ERROR_NETWORK, ERROR_API)

GUIDE_TITLES = {
    "pet-relocation": ("Pet Relocation Guide to France", "Personalized for {name}"),
    "french-mortgages": ("French Mortgage Evaluation Guide", "Prepared for {name}"),
    "apostille": ("Apostille Guide", "Customized for {name}"),
    "bank-ratings": ("French Bank Comparison Guide", "Recommendations for {name}"),
}

SECTION_HEADER = re.compile(r"^\s*#{1,2}\s+(.+?)\s*#*\s*$")


class EnrichmentError(Exception):
    """Base class for enrichment failures."""
    pass


class EnrichmentUnavailable(EnrichmentError):
    """
    Text generation could not be used.

    Attributes:
        reason: not_configured | invalid_api_key | rate_limited | timeout |
            network | api_error | invalid_response | attachment_rejected
        retryable: Whether trying again later may succeed
    """

    def __init__(self, reason: str, message: str, retryable: bool = False):
        self.reason = reason
        self.retryable = retryable
        super().__init__(message)


class EnrichmentParseIncomplete(EnrichmentError):
    """
    Response received but expected anchors were missing.

    Attributes:
        content: GuideContent with raw text and whatever was extracted
    """

    def __init__(self, content: GuideContent, message: str = "Response did not match the expected structure"):
        self.content = content
        super().__init__(message)


class GuideEnricher:
    """
    Compose prompts, call the text client, parse responses.

    Usage:
        enricher = GuideEnricher(AnthropicClient(api_key), knowledge_base)
        content = enricher.enrich("apostille", answers, profile)
    """

    def __init__(
        self,
        text_client,
        knowledge_base,
        prompt_builder: Optional[PromptBuilder] = None,
        enabled: bool = True,
        guide_timeout: Optional[float] = None,
        verify_timeout: Optional[float] = 60.0,
        clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Args:
            text_client: Object with generate() and is_configured(), or None
            knowledge_base: Object with get_snapshot(topic)
            prompt_builder: PromptBuilder (defaults to the built-in templates)
            enabled: Global AI switch
            guide_timeout: Per-call timeout for guides (None = client default)
            verify_timeout: Per-call timeout for document verification
            clock: Returns the current datetime; injected for tests

        Raises:
            TypeError: If collaborators lack the expected interface
        """
        if text_client is not None and not callable(getattr(text_client, "generate", None)):
            raise TypeError("text_client must have callable generate() method")
        if not callable(getattr(knowledge_base, "get_snapshot", None)):
            raise TypeError("knowledge_base must have callable get_snapshot() method")

        self.text_client = text_client
        self.knowledge_base = knowledge_base
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.enabled = enabled
        self.guide_timeout = guide_timeout
        self.verify_timeout = verify_timeout
        self.clock = clock or datetime.now

        logger.info(f"Guide enricher initialized (available={self.is_available()})")

    # =========================================================================
    # Public API
    # =========================================================================

    def is_available(self) -> bool:
        """AI switched on and a configured client injected."""
        if not self.enabled or self.text_client is None:
            return False
        is_configured = getattr(self.text_client, "is_configured", None)
        return is_configured() if callable(is_configured) else True

    def supports(self, guide_type: str) -> bool:
        return guide_type in GUIDE_TITLES and self.prompt_builder.has(guide_type)

    def build_prompt(
        self,
        guide_type: str,
        answers: Optional[dict],
        profile: Optional[dict],
        knowledge_base_snapshot: Optional[dict] = None,
        as_of: Optional[date] = None
    ) -> str:
        """
        Prompt text for a guide; deterministic for fixed inputs and as_of.

        Args:
            knowledge_base_snapshot: Reference data (looked up when None)
            as_of: Date quoted in the prompt (defaults to today)
        """
        snapshot = knowledge_base_snapshot
        if snapshot is None:
            snapshot = self.knowledge_base.get_snapshot(guide_type)
        context = {"current_date": current_date_text(as_of or self.clock().date())}
        return self.prompt_builder.build(guide_type, answers, profile, snapshot, context)

    def parse_response(self, guide_type: str, raw_text: str, profile: Optional[dict] = None) -> GuideContent:
        """
        Parse a response into GuideContent. Never raises on model output.

        Verification responses are parsed by anchor phrase; guide responses
        are split on their '##' section headers. Missing anchors set
        is_structured=False; raw_text is always kept unchanged.
        """
        version = self.prompt_builder.version(guide_type) if self.prompt_builder.has(guide_type) else None

        if guide_type == HEALTH_VERIFICATION:
            result = parse_verification(raw_text)
            return GuideContent(
                guide_type=guide_type,
                raw_text=raw_text,
                structured=result,
                is_structured="ASSESSMENT" not in result["missing_anchors"],
                prompt_version=version,
            )

        sections = _split_sections(raw_text)
        title, subtitle = GUIDE_TITLES.get(guide_type, ("Guide", ""))
        structured = {
            "title": title,
            "subtitle": subtitle.format(name=_member_name(profile)) if subtitle else "",
            "sections": sections,
        }
        return GuideContent(
            guide_type=guide_type,
            raw_text=raw_text,
            structured=structured,
            is_structured=bool(sections),
            prompt_version=version,
        )

    def enrich(self, guide_type: str, answers: Optional[dict], profile: Optional[dict],
               as_of: Optional[date] = None) -> GuideContent:
        """
        Generate AI prose for a guide.

        Returns:
            GuideContent with structured title, subtitle and sections

        Raises:
            EnrichmentUnavailable: Disabled, unconfigured, unsupported type or
                the text client failed
            EnrichmentParseIncomplete: Response had no recognizable sections
        """
        self._require_available()
        if not self.supports(guide_type):
            raise EnrichmentUnavailable(ERROR_NOT_CONFIGURED, f"No AI template for guide type: {guide_type}")

        prompt = self.build_prompt(guide_type, answers, profile, as_of=as_of)
        raw_text = self._generate(prompt, timeout=self.guide_timeout)

        content = self.parse_response(guide_type, raw_text, profile)
        if not content.is_structured:
            raise EnrichmentParseIncomplete(content)

        logger.info(f"Enriched guide {guide_type} ({len(content.structured['sections'])} sections)")
        return content

    def verify_health_document(self, attachment: Attachment, user_context: Optional[dict] = None) -> GuideContent:
        """
        Check a health insurance certificate against French visa requirements.

        Args:
            attachment: PDF or JPEG/PNG/GIF/WEBP, at most 20 MB
            user_context: Optional {'visa_type', 'planned_duration'}

        Returns:
            GuideContent whose structured dict holds status, checklist,
            findings, recommendations and raw_response

        Raises:
            EnrichmentUnavailable: Not available, attachment rejected, or
                the text client failed (no non-AI fallback exists)
            EnrichmentParseIncomplete: ASSESSMENT anchor missing
        """
        self._require_available()

        snapshot = self.knowledge_base.get_snapshot(HEALTH_VERIFICATION)
        self._check_attachment(attachment, snapshot.get("max_attachment_bytes", MAX_ATTACHMENT_BYTES))

        prompt = self.prompt_builder.build(HEALTH_VERIFICATION, user_context or {}, {}, snapshot)
        raw_text = self._generate(prompt, attachment=attachment, timeout=self.verify_timeout)

        content = self.parse_response(HEALTH_VERIFICATION, raw_text)
        if not content.is_structured:
            raise EnrichmentParseIncomplete(content, "Verification response had no ASSESSMENT line")

        logger.info(f"Health document verified: status={content.structured['status']}")
        return content

    def ask_followup(self, question: str, previous_result: Optional[Dict[str, Any]] = None) -> str:
        """
        Answer a follow-up question about a previous verification.

        Args:
            question: Member's question
            previous_result: structured dict from verify_health_document

        Returns:
            Plain-text answer

        Raises:
            ValueError: If question is empty
            EnrichmentUnavailable: Not available or the text client failed
        """
        if not question or not str(question).strip():
            raise ValueError("question must be non-empty")
        self._require_available()

        previous = previous_result or {}
        context = {
            "question": str(question).strip(),
            "status": previous.get("status"),
            "findings": previous.get("findings"),
            "recommendations": previous.get("recommendations"),
        }
        snapshot = self.knowledge_base.get_snapshot(HEALTH_VERIFICATION)
        prompt = self.prompt_builder.build(HEALTH_FOLLOWUP, {}, {}, snapshot, context)

        return self._generate(prompt, timeout=self.verify_timeout).strip()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _require_available(self):
        if not self.is_available():
            raise EnrichmentUnavailable(
                ERROR_NOT_CONFIGURED,
                "AI is not configured. Please contact the site administrator."
            )

    def _check_attachment(self, attachment: Attachment, max_bytes: int):
        if not isinstance(attachment, Attachment) or not attachment.data:
            raise EnrichmentUnavailable(ERROR_ATTACHMENT, "No file was uploaded.")
        if attachment.media_type not in DOCUMENT_MEDIA_TYPES + IMAGE_MEDIA_TYPES:
            raise EnrichmentUnavailable(
                ERROR_ATTACHMENT, "Unsupported file type. Please upload a PDF, JPG, or PNG."
            )
        if len(attachment.data) > max_bytes:
            raise EnrichmentUnavailable(ERROR_ATTACHMENT, "File is too large for analysis.")

    def _generate(self, prompt: str, attachment: Optional[Attachment] = None,
                  timeout: Optional[float] = None) -> str:
        try:
            return self.text_client.generate(prompt, attachment=attachment, timeout=timeout)
        except TextGenerationError as e:
            logger.error(f"Text generation failed ({e.kind}): {e}")
            raise EnrichmentUnavailable(e.kind, str(e), retryable=e.kind in RETRYABLE_REASONS) from e


def _split_sections(raw_text: str) -> list:
    """Split Markdown prose on level-1/2 headers into [{title, body}]."""
    sections = []
    current = None
    for line in (raw_text or "").splitlines():
        match = SECTION_HEADER.match(line)
        if match:
            current = {"title": match.group(1).strip("* "), "body": []}
            sections.append(current)
        elif current is not None:
            current["body"].append(line)

    return [
        {"title": s["title"], "body": "\n".join(s["body"]).strip()}
        for s in sections
    ]


def _member_name(profile: Optional[dict]) -> str:
    profile = profile or {}
    return profile.get("legal_first_name") or profile.get("display_name") or "Member"
