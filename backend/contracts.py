"""
Semantic contracts for the member tools backend.

This module defines immutable data structures that serve as contracts
between modules. These are NOT validators - they define shape and
semantics without enforcing rules.

Design principles:
- Frozen dataclasses (immutable after creation)
- No validation logic (catalog and knowledge base loaders validate)
- No dependencies on other backend modules
- Tuples instead of lists/dicts where immutability matters

Contents:
- Duration: Structured {min, max, unit} time span (lead times, processing times)
- VisibilityRule: Gate that decides whether a question is asked
- QuestionDefinition: One question of a flow catalog
- DocumentDescription: Output of the Template Assembler
- GuideContent: Output of the Guide Content Enricher
- Attachment: Binary file handed to the text-generation collaborator

Usage:
    from backend.contracts import QuestionDefinition, DocumentDescription
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple


# Days per unit, used only for ordering and comparison
DURATION_UNIT_DAYS = {
    "days": 1,
    "weeks": 7,
    "months": 30,
}


@dataclass(frozen=True)
class Duration:
    """
    Structured time span replacing free-text strings such as "2-6 weeks".

    Attributes:
        min: Lower bound (inclusive)
        max: Upper bound (inclusive), >= min
        unit: 'days', 'weeks' or 'months'

    Examples:
        >>> Duration(2, 6, "weeks").label()
        '2-6 weeks'
        >>> Duration(2, 6, "weeks").max_days()
        42
    """
    min: int
    max: int
    unit: str

    def min_days(self) -> int:
        return self.min * DURATION_UNIT_DAYS[self.unit]

    def max_days(self) -> int:
        return self.max * DURATION_UNIT_DAYS[self.unit]

    def label(self) -> str:
        if self.min == self.max:
            return f"{self.min} {self.unit}"
        return f"{self.min}-{self.max} {self.unit}"

    def to_dict(self) -> dict:
        return {"min": self.min, "max": self.max, "unit": self.unit}

    @staticmethod
    def from_dict(data: dict) -> "Duration":
        return Duration(min=int(data["min"]), max=int(data["max"]), unit=data["unit"])


@dataclass(frozen=True)
class VisibilityRule:
    """
    Question is asked only if a prior answer matches one of the accepted values.

    Attributes:
        question_id: Id of an earlier question in the same flow
        accepted: Accepted values. For multi-choice answers the rule
            matches when any selected value is accepted.
    """
    question_id: str
    accepted: Tuple[str, ...]


@dataclass(frozen=True)
class QuestionDefinition:
    """
    Immutable question definition from the Question Catalog.

    Attributes:
        id: Unique within the flow, also the Answer Store key
        prompt: Display text
        type: 'choice', 'multi_choice', 'text' or 'currency'
        options: Ordered (value, label) pairs for choice/multi_choice
        placeholder: Input hint for text/currency
        visible_if: Optional VisibilityRule
        required: Empty answers rejected when True
        profile_field: Profile key used as fallback and pre-fill suggestion
        lead_times: (value, Duration) pairs for options implying a time window

    Note:
        options is a Tuple of pairs, not a dict, to keep catalog order
        and immutability. Use option_values() for membership checks.
    """
    id: str
    prompt: str
    type: str
    options: Tuple[Tuple[str, str], ...] = ()
    placeholder: Optional[str] = None
    visible_if: Optional[VisibilityRule] = None
    required: bool = True
    profile_field: Optional[str] = None
    lead_times: Tuple[Tuple[str, Duration], ...] = ()

    def option_values(self) -> Tuple[str, ...]:
        return tuple(value for value, _ in self.options)

    def option_label(self, value: str) -> str:
        for option_value, label in self.options:
            if option_value == value:
                return label
        return value

    def lead_time(self, value: str) -> Optional[Duration]:
        for option_value, duration in self.lead_times:
            if option_value == value:
                return duration
        return None


@dataclass(frozen=True)
class DocumentDescription:
    """
    Structured description of a generated document or guide.

    Produced fresh by the Template Assembler and consumed once by
    rendering/export. Section dicts carry a 'type' of 'header',
    'paragraph', 'table' or 'checklist'.

    Attributes:
        document_type: Registry key that produced it (e.g. 'cover-letter')
        title: Display title
        language: 'en' or 'fr'
        sections: Ordered section dicts
        subtitle: Optional subtitle
        metadata: Deterministic facts about the inputs (visa type, LTV, ...)
        generated_at: ISO timestamp, the ONLY time-dependent field
    """
    document_type: str
    title: str
    language: str
    sections: Tuple[Dict[str, Any], ...]
    subtitle: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    generated_at: Optional[str] = None

    def paragraphs(self) -> Tuple[str, ...]:
        """Texts of all paragraph sections, in order."""
        return tuple(s["text"] for s in self.sections if s.get("type") == "paragraph")

    def to_dict(self) -> dict:
        return {
            "document_type": self.document_type,
            "title": self.title,
            "subtitle": self.subtitle,
            "language": self.language,
            "sections": [dict(s) for s in self.sections],
            "metadata": dict(self.metadata),
            "generated_at": self.generated_at,
        }

    @staticmethod
    def from_dict(data: dict) -> "DocumentDescription":
        return DocumentDescription(
            document_type=data["document_type"],
            title=data["title"],
            language=data["language"],
            sections=tuple(data.get("sections", [])),
            subtitle=data.get("subtitle"),
            metadata=data.get("metadata", {}),
            generated_at=data.get("generated_at"),
        )


@dataclass(frozen=True)
class GuideContent:
    """
    Parsed output of the text-generation collaborator.

    Attributes:
        guide_type: Prompt template key
        raw_text: Full response text, always preserved unchanged
        structured: Extracted fields (None for free-prose guides)
        is_structured: False when expected anchors were missing
        prompt_version: Version of the template that produced the prompt
    """
    guide_type: str
    raw_text: str
    structured: Optional[Dict[str, Any]] = None
    is_structured: bool = True
    prompt_version: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "guide_type": self.guide_type,
            "raw_text": self.raw_text,
            "structured": self.structured,
            "is_structured": self.is_structured,
            "prompt_version": self.prompt_version,
        }


@dataclass(frozen=True)
class Attachment:
    """
    Binary document sent alongside a prompt (e.g. an insurance certificate).

    Attributes:
        data: Raw bytes
        media_type: MIME type such as 'application/pdf' or 'image/png'
        filename: Original filename, for logging only
    """
    data: bytes
    media_type: str
    filename: Optional[str] = None
