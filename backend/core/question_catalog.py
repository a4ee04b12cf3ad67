"""
Question Catalog - Static, ordered question definitions per flow type

Responsibilities:
- Load flow definitions (documents and guides) from JSON
- Convert raw question dicts into immutable QuestionDefinition contracts
- Evaluate visibility rules against an answer map
- Validate catalog structure on initialization

Design principles:
- Read-only after load: injected into the state machine, never a singleton
- Deterministic: catalog order is the only ordering
- Fail fast: every structural problem is reported at startup
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from backend.contracts import Duration, QuestionDefinition, VisibilityRule, DURATION_UNIT_DAYS

logger = logging.getLogger(__name__)

QUESTION_TYPES = ("choice", "multi_choice", "text", "currency")
OPTION_TYPES = ("choice", "multi_choice")
FLOW_KINDS = ("document", "guide")


class QuestionCatalog:
    """
    Ordered question definitions for every flow type.

    Holds no per-user state. The same instance is shared by every
    request.
    """

    def __init__(self, catalog_path: str):
        """
        Initialize catalog from JSON file.

        Args:
            catalog_path: Path to question_catalog.json

        Raises:
            FileNotFoundError: If catalog doesn't exist
            ValueError: If catalog fails validation
        """
        self.catalog_path = Path(catalog_path)

        if not self.catalog_path.exists():
            raise FileNotFoundError(f"Question catalog not found: {catalog_path}")

        with open(self.catalog_path, 'r', encoding='utf-8') as f:
            raw = json.load(f)

        self._load(raw)

        logger.info(f"Question catalog {self.version} loaded with {len(self._flows)} flows")

    @classmethod
    def from_dict(cls, raw: dict) -> "QuestionCatalog":
        """Build catalog from an in-memory dict (tests)."""
        instance = cls.__new__(cls)
        instance.catalog_path = None
        instance._load(raw)
        return instance

    def _load(self, raw: dict):
        self.version = raw.get("version", "unversioned")
        raw_flows = raw.get("flows")

        if not isinstance(raw_flows, dict) or not raw_flows:
            raise ValueError("Catalog validation failed:\n  - 'flows' must be a non-empty object")

        self._validate_raw(raw_flows)

        self._flows: Dict[str, dict] = {}
        for flow_type, flow_def in raw_flows.items():
            questions = tuple(_build_question(q) for q in flow_def["questions"])
            self._flows[flow_type] = {
                "kind": flow_def.get("kind", "document"),
                "title": flow_def.get("title", flow_type),
                "questions": questions,
            }

    # =========================================================================
    # Public API
    # =========================================================================

    def flow_types(self, kind: Optional[str] = None) -> List[str]:
        """Flow type keys in catalog order, optionally filtered by kind."""
        return [
            flow_type for flow_type, flow in self._flows.items()
            if kind is None or flow["kind"] == kind
        ]

    def has_flow(self, flow_type: str) -> bool:
        return isinstance(flow_type, str) and flow_type in self._flows

    def kind(self, flow_type: str) -> str:
        return self._flows[flow_type]["kind"]

    def title(self, flow_type: str) -> str:
        return self._flows[flow_type]["title"]

    def questions(self, flow_type: str) -> Tuple[QuestionDefinition, ...]:
        """
        Ordered questions for a flow.

        Raises:
            KeyError: If flow_type is unknown
        """
        return self._flows[flow_type]["questions"]

    def question_ids(self, flow_type: str) -> Tuple[str, ...]:
        return tuple(q.id for q in self.questions(flow_type))

    def profile_display_value(self, profile_field: str, value) -> str:
        """
        Option label for a profile value, taken from any question that
        uses the profile field; the raw value when no option matches.
        """
        for flow in self._flows.values():
            for question in flow["questions"]:
                if question.profile_field != profile_field:
                    continue
                for option_value, label in question.options:
                    if option_value == value:
                        return label
        return str(value)

    def get_question(self, flow_type: str, question_id: str) -> Optional[QuestionDefinition]:
        for question in self.questions(flow_type):
            if question.id == question_id:
                return question
        return None

    @staticmethod
    def is_visible(question: QuestionDefinition, answers: dict) -> bool:
        """
        Evaluate a question's visibility rule against accumulated answers.

        Rules:
        - No rule: always visible
        - Referenced answer absent: not visible
        - Multi-choice answer: visible if any selected value is accepted
        - Scalar answer: visible if the value is accepted

        Args:
            question: Question to test
            answers: Answer map (only answers of visible questions)

        Returns:
            True if the question should be asked
        """
        rule = question.visible_if
        if rule is None:
            return True

        if rule.question_id not in answers:
            return False

        value = answers[rule.question_id]
        if isinstance(value, (list, tuple)):
            return any(str(v) in rule.accepted for v in value)
        return str(value) in rule.accepted

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate_raw(self, raw_flows: dict):
        """
        Validate catalog structure.

        Checks:
        - Every flow has a valid kind and a non-empty question list
        - Question ids are present and unique within a flow
        - Question types are known; choice types declare options
        - Option values are unique within a question
        - visible_if references an EARLIER question in the same flow
        - visible_if accepted values exist in the referenced options
        - lead_time durations are well formed

        Raises:
            ValueError: If validation fails
        """
        errors = []

        for flow_type, flow_def in raw_flows.items():
            kind = flow_def.get("kind", "document")
            if kind not in FLOW_KINDS:
                errors.append(f"{flow_type}: unknown kind '{kind}'")

            questions = flow_def.get("questions")
            if not isinstance(questions, list) or not questions:
                errors.append(f"{flow_type}: 'questions' must be a non-empty list")
                continue

            seen: Dict[str, dict] = {}

            for position, question in enumerate(questions):
                q_id = question.get("id")
                where = f"{flow_type}[{position}]"

                if not q_id:
                    errors.append(f"{where}: question missing 'id'")
                    continue

                where = f"{flow_type}.{q_id}"

                if q_id in seen:
                    errors.append(f"{where}: duplicate question id")

                if not question.get("prompt"):
                    errors.append(f"{where}: missing 'prompt'")

                q_type = question.get("type")
                if q_type not in QUESTION_TYPES:
                    errors.append(f"{where}: unknown type '{q_type}'")

                options = question.get("options", [])
                if q_type in OPTION_TYPES and not options:
                    errors.append(f"{where}: {q_type} question has no options")

                values = [opt.get("value") for opt in options]
                if len(values) != len(set(values)):
                    errors.append(f"{where}: duplicate option values")

                for opt in options:
                    if "lead_time" in opt:
                        errors.extend(_lead_time_errors(opt["lead_time"], f"{where}.{opt.get('value')}"))

                rule = question.get("visible_if")
                if rule is not None:
                    ref = rule.get("question_id")
                    accepted = rule.get("accepted") or []
                    if ref not in seen:
                        errors.append(
                            f"{where}: visible_if references '{ref}', "
                            f"which is not an earlier question"
                        )
                    else:
                        ref_values = [opt.get("value") for opt in seen[ref].get("options", [])]
                        if ref_values:
                            for value in accepted:
                                if value not in ref_values:
                                    errors.append(
                                        f"{where}: visible_if accepts '{value}', "
                                        f"not an option of '{ref}'"
                                    )
                    if not accepted:
                        errors.append(f"{where}: visible_if has no accepted values")

                seen[q_id] = question

        if errors:
            error_msg = "Catalog validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ValueError(error_msg)


def _lead_time_errors(value, where: str) -> list:
    if not isinstance(value, dict):
        return [f"{where}: lead_time must be an object"]
    if value.get("unit") not in DURATION_UNIT_DAYS:
        return [f"{where}: lead_time has unknown unit '{value.get('unit')}'"]
    lo, hi = value.get("min"), value.get("max")
    if not isinstance(lo, int) or not isinstance(hi, int) or lo < 0 or hi < lo:
        return [f"{where}: lead_time expects integers 0 <= min <= max"]
    return []


def _build_question(raw: dict) -> QuestionDefinition:
    """Convert a validated raw question dict into a QuestionDefinition."""
    options = tuple((opt["value"], opt.get("label", opt["value"])) for opt in raw.get("options", []))
    lead_times = tuple(
        (opt["value"], Duration.from_dict(opt["lead_time"]))
        for opt in raw.get("options", [])
        if "lead_time" in opt
    )

    rule = None
    if raw.get("visible_if"):
        rule = VisibilityRule(
            question_id=raw["visible_if"]["question_id"],
            accepted=tuple(raw["visible_if"]["accepted"]),
        )

    return QuestionDefinition(
        id=raw["id"],
        prompt=raw["prompt"],
        type=raw["type"],
        options=options,
        placeholder=raw.get("placeholder"),
        visible_if=rule,
        required=raw.get("required", True),
        profile_field=raw.get("profile_field"),
        lead_times=lead_times,
    )
