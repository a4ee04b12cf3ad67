"""
Template building blocks shared by document and guide templates

Responsibilities:
- Section constructors (header, paragraph, table, checklist)
- Per-field fallback chain: Answer Store -> Profile Record -> default
- Placeholder policy for personally-identifying fields
- TemplateContext handed to every template function

Design principles:
- Pure functions and frozen data only; no I/O
- Fallback is resolved per field, never globally
- Empty strings and empty lists count as "absent"
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from backend.contracts import Duration
from backend.utils.helpers import split_multi_value

SECTION_HEADER = "header"
SECTION_PARAGRAPH = "paragraph"
SECTION_TABLE = "table"
SECTION_CHECKLIST = "checklist"

# Paragraph roles; only 'body' paragraphs count as letter content
ROLE_BODY = "body"
ROLE_SALUTATION = "salutation"
ROLE_CLOSING = "closing"
ROLE_SIGNATURE = "signature"

# Checklist item statuses
STATUS_DONE = "done"
STATUS_TODO = "todo"
STATUS_OK = "ok"
STATUS_WARNING = "warning"
STATUS_CRITICAL = "critical"
STATUS_INFO = "info"

PRIVACY_PLACEHOLDERS = "placeholders"

# Profile fields that identify a person; never emitted in placeholder mode
PII_PROFILE_FIELDS = (
    "legal_first_name",
    "legal_middle_name",
    "legal_last_name",
    "full_name",
    "display_name",
    "date_of_birth",
    "passport_number",
    "spouse_name",
    "spouse_legal_first_name",
    "spouse_legal_last_name",
    "employer_name",
    "current_address",
    "property_address",
    "host_name",
    "birth_place",
)

_SAME_KEY = object()


# =============================================================================
# Section constructors
# =============================================================================

def header(text: str, level: int = 1, role: Optional[str] = None, lines: Optional[List[str]] = None) -> dict:
    section = {"type": SECTION_HEADER, "text": text, "level": level}
    if role:
        section["role"] = role
    if lines is not None:
        section["lines"] = list(lines)
    return section


def paragraph(text: str, role: str = ROLE_BODY) -> dict:
    return {"type": SECTION_PARAGRAPH, "text": text, "role": role}


def table(columns: List[str], rows: List[List[str]], caption: Optional[str] = None) -> dict:
    section = {
        "type": SECTION_TABLE,
        "columns": list(columns),
        "rows": [list(row) for row in rows],
    }
    if caption:
        section["caption"] = caption
    return section


def checklist(items: List[dict], title: Optional[str] = None) -> dict:
    """
    Args:
        items: dicts with 'label', 'status' and optional 'detail'
        title: Optional checklist heading
    """
    section = {"type": SECTION_CHECKLIST, "items": [dict(item) for item in items]}
    if title:
        section["title"] = title
    return section


def item(label: str, status: str = STATUS_TODO, detail: Optional[str] = None) -> dict:
    entry = {"label": label, "status": status}
    if detail:
        entry["detail"] = detail
    return entry


def join_words(words: List[str], conjunction: str = "and") -> str:
    """['a', 'b', 'c'] -> 'a, b and c'"""
    words = [w for w in words if w]
    if not words:
        return ""
    if len(words) == 1:
        return words[0]
    return f"{', '.join(words[:-1])} {conjunction} {words[-1]}"


# =============================================================================
# Field resolution
# =============================================================================

def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) > 0
    return True


class FieldResolver:
    """
    Resolves template fields through answers, profile and defaults.

    Examples:
        >>> fields = FieldResolver({"applicants": "spouse"}, {"applicants": "alone"})
        >>> fields.value("applicants")
        'spouse'
        >>> FieldResolver({}, {"applicants": "alone"}).value("applicants")
        'alone'
    """

    def __init__(self, answers: Optional[dict], profile: Optional[dict]):
        self.answers = dict(answers or {})
        self.profile = dict(profile or {})

    def value(self, key: str, profile_key: Any = _SAME_KEY, default: Any = None) -> Any:
        """
        Answer Store first, then Profile Record, then default.

        Args:
            key: Answer key
            profile_key: Profile key to fall back to (defaults to key);
                pass None to skip the profile
            default: Hardcoded default, None when the field has none
        """
        if _present(self.answers.get(key)):
            return self.answers[key]

        if profile_key is _SAME_KEY:
            profile_key = key
        if profile_key is not None and _present(self.profile.get(profile_key)):
            return self.profile[profile_key]

        return default

    def from_answers(self, key: str, default: Any = None) -> Any:
        return self.value(key, profile_key=None, default=default)

    def from_profile(self, key: str, default: Any = None) -> Any:
        value = self.profile.get(key)
        return value if _present(value) else default

    def items(self, key: str, profile_key: Any = _SAME_KEY, default: Optional[List[str]] = None) -> List[str]:
        """Multi-select field normalized to a list (comma strings are split)."""
        raw = self.value(key, profile_key=profile_key)
        values = split_multi_value(raw)
        if values:
            return values
        return list(default or [])

    @property
    def use_placeholders(self) -> bool:
        """Placeholder mode unless the user explicitly chose real values."""
        choice = self.from_answers("privacy_choice", default=PRIVACY_PLACEHOLDERS)
        return choice == PRIVACY_PLACEHOLDERS

    def personal(self, key: str, token: str, profile_key: Any = _SAME_KEY) -> str:
        """
        Personally-identifying field.

        Placeholder mode always yields the bracketed token; otherwise the
        normal fallback chain with the token as the last resort.
        """
        if self.use_placeholders:
            return token
        return str(self.value(key, profile_key=profile_key, default=token))

    def full_name(self, token: str = "[YOUR FULL NAME]") -> str:
        """Applicant's legal name from the profile, or the token."""
        if self.use_placeholders:
            return token

        parts = [
            self.from_profile("legal_first_name"),
            self.from_profile("legal_middle_name"),
            self.from_profile("legal_last_name"),
        ]
        name = " ".join(str(p).strip() for p in parts if p)
        if name:
            return name

        return str(self.from_profile("full_name") or self.from_profile("display_name") or token)


# =============================================================================
# Template context
# =============================================================================

@dataclass(frozen=True)
class TemplateContext:
    """
    Everything a template function may read.

    Attributes:
        document_type: Registry key being assembled
        language: 'en' or 'fr', derived from the profile
        fields: FieldResolver over answers + profile
        knowledge: Knowledge-base snapshot for this type (read-only copy)
        as_of: Reference date for date arithmetic
        lead_times: question_id -> {option value -> Duration}
    """
    document_type: str
    language: str
    fields: FieldResolver
    knowledge: Dict[str, Any]
    as_of: date
    lead_times: Dict[str, Dict[str, Duration]] = field(default_factory=dict)

    def lead_time(self, question_id: str, value: Any) -> Optional[Duration]:
        return self.lead_times.get(question_id, {}).get(str(value))
