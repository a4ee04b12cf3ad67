"""
Flow State Machine - One question at a time over a static catalog

Responsibilities:
- Pick the first visible question of a flow
- Validate and coerce one answer for the current question
- Advance to the next visible question, skipping gated ones
- Detect completion
- Re-derive the client-echoed {step_index, answers} against the catalog

Design principles:
- Stateless: every call receives the full context it needs
- Untrusted cache: echoed answers are pruned and re-validated each call
- Catalog order is the only ordering; visibility is evaluated in that order
- Writes happen only after validation passes (caller persists the result)

States:
    AWAITING_ANSWER(step_index) --valid answer--> AWAITING_ANSWER(j > step_index)
    AWAITING_ANSWER(step_index) --valid answer, nothing visible left--> COMPLETE
    AWAITING_ANSWER(step_index) --invalid answer--> AWAITING_ANSWER(step_index)
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from backend.contracts import QuestionDefinition
from backend.core.question_catalog import QuestionCatalog
from backend.utils.helpers import parse_currency, split_multi_value

logger = logging.getLogger(__name__)

STATUS_AWAITING_ANSWER = "awaiting_answer"
STATUS_COMPLETE = "complete"


class FlowError(Exception):
    """Base class for state machine errors."""
    pass


class InvalidFlowState(FlowError):
    """Flow type or step index does not match the catalog. Restart required."""
    pass


class MissingAnswer(FlowError):
    """Required question answered with an empty value. Re-prompt same step."""

    def __init__(self, question: QuestionDefinition, message: str = None):
        self.question = question
        super().__init__(message or f"An answer is required for '{question.id}'")


class InvalidAnswerType(FlowError):
    """Answer does not fit the question type or options. Re-prompt same step."""

    def __init__(self, question: QuestionDefinition, message: str):
        self.question = question
        super().__init__(message)


@dataclass(frozen=True)
class NextTurn:
    """
    Outcome of start() or submit().

    Attributes:
        flow_type: Flow the turn belongs to
        status: STATUS_AWAITING_ANSWER or STATUS_COMPLETE
        step_index: Catalog position of the question to ask, None when complete
        question: Question to ask, None when complete
        answers: Validated answer map (visible questions only)
        is_last_question: No further visible question after this one
        turn_count: Visible questions answered so far
        remaining: Visible questions left, counting this one (0 when complete)
    """
    flow_type: str
    status: str
    step_index: Optional[int]
    question: Optional[QuestionDefinition]
    answers: Dict[str, Any]
    is_last_question: bool
    turn_count: int
    remaining: int = 0

    @property
    def complete(self) -> bool:
        return self.status == STATUS_COMPLETE


class FlowStateMachine:
    """
    Drives one flow over the injected Question Catalog.

    Holds no per-user state; the same instance serves every request.
    """

    def __init__(self, catalog: QuestionCatalog):
        """
        Args:
            catalog: Loaded QuestionCatalog (read-only)

        Raises:
            TypeError: If catalog lacks the expected interface
        """
        for method in ("questions", "is_visible", "has_flow"):
            if not callable(getattr(catalog, method, None)):
                raise TypeError(f"catalog must have callable {method}() method")

        self.catalog = catalog
        logger.info("Flow state machine initialized")

    # =========================================================================
    # Public API
    # =========================================================================

    def start(self, flow_type: str) -> NextTurn:
        """
        Begin a flow at its first visible question.

        Args:
            flow_type: Catalog key (e.g. 'cover-letter', 'apostille')

        Returns:
            NextTurn with step_index of the first visible question

        Raises:
            InvalidFlowState: If flow_type is not in the catalog
        """
        questions = self._questions(flow_type)
        answers: Dict[str, Any] = {}

        first = self._next_visible_index(questions, -1, answers)
        logger.info(f"Flow started: {flow_type}")

        if first is None:
            return self._complete(flow_type, answers, turn_count=0)

        return self._awaiting(flow_type, questions, first, answers, turn_count=0)

    def resume(self, flow_type: str, saved_answers: Optional[dict]) -> NextTurn:
        """
        Rebuild a turn from a persisted Answer Store.

        Walks the catalog in order and stops at the first visible question
        without a usable saved answer. A saved value that no longer fits
        its question (the catalog changed) is asked again. An empty store
        gives the same turn as start().

        Raises:
            InvalidFlowState: If flow_type is not in the catalog
        """
        questions = self._questions(flow_type)
        raw = saved_answers if isinstance(saved_answers, dict) else {}
        answers: Dict[str, Any] = {}

        for position, question in enumerate(questions):
            if not self.catalog.is_visible(question, answers):
                continue
            if question.id not in raw:
                return self._awaiting(flow_type, questions, position, answers, turn_count=len(answers))
            try:
                answers[question.id] = self.coerce_answer(question, raw[question.id])
            except (MissingAnswer, InvalidAnswerType):
                logger.warning(f"Saved answer for {flow_type}.{question.id} no longer valid; asking again")
                return self._awaiting(flow_type, questions, position, answers, turn_count=len(answers))

        logger.info(f"Flow resumed complete: {flow_type}")
        return self._complete(flow_type, answers, turn_count=len(answers))

    def submit(
        self,
        flow_type: str,
        step_index: int,
        answers_so_far: Optional[dict],
        new_value: Any
    ) -> NextTurn:
        """
        Store an answer for the question at step_index and advance.

        Args:
            flow_type: Catalog key
            step_index: Catalog position of the question being answered
            answers_so_far: Client-echoed answer map (untrusted)
            new_value: Raw answer from the transport

        Returns:
            NextTurn for the next visible question, or a complete turn

        Raises:
            InvalidFlowState: Unknown flow, out-of-range or unreachable step,
                or a tampered answer map
            MissingAnswer: Required question answered with an empty value
            InvalidAnswerType: Value does not fit the question
        """
        questions = self._questions(flow_type)
        self._check_step_index(flow_type, questions, step_index)

        answers = self.reconcile(flow_type, step_index, answers_so_far)

        question = questions[step_index]
        value = self.coerce_answer(question, new_value)

        # Upsert, then drop answers whose gate no longer opens
        answers[question.id] = value
        answers = self._prune(questions, answers)

        turn_count = self._answered_visible_count(questions, step_index, answers)
        next_index = self._next_visible_index(questions, step_index, answers)

        if next_index is None:
            logger.info(f"Flow complete: {flow_type} after {turn_count} answers")
            return self._complete(flow_type, answers, turn_count)

        return self._awaiting(flow_type, questions, next_index, answers, turn_count)

    def is_last_question(self, flow_type: str, step_index: int, answers_so_far: Optional[dict]) -> bool:
        """
        Whether no visible question follows step_index, given known answers.

        Side-effect-free; safe to call speculatively for UI affordances.

        Raises:
            InvalidFlowState: Unknown flow or out-of-range step_index
        """
        questions = self._questions(flow_type)
        self._check_step_index(flow_type, questions, step_index)
        answers = self._prune(questions, dict(answers_so_far or {}))
        return self._next_visible_index(questions, step_index, answers) is None

    def remaining_questions(self, flow_type: str, step_index: int, answers_so_far: Optional[dict]) -> int:
        """
        Visible questions from step_index onward, under the answers known now.

        Questions gated on answers not given yet are not counted, so the
        number can grow when a later answer opens a gate.

        Raises:
            InvalidFlowState: Unknown flow or out-of-range step_index
        """
        questions = self._questions(flow_type)
        self._check_step_index(flow_type, questions, step_index)
        answers = self._prune(questions, dict(answers_so_far or {}))
        return self._count_visible(questions, step_index, answers)

    def reconcile(self, flow_type: str, step_index: int, answers_so_far: Optional[dict]) -> Dict[str, Any]:
        """
        Re-derive a trustworthy answer map from the client-echoed one.

        Walks the catalog in order:
        - keys that are not question ids of this flow are dropped
        - answers of questions not visible under earlier answers are dropped
        - every visible question before step_index must be answered
        - the question at step_index must itself be visible
        - cached values are re-coerced; a value that fails means tampering

        Returns:
            dict: Sanitized answer map

        Raises:
            InvalidFlowState: If step_index is not reachable from the answers
        """
        questions = self._questions(flow_type)
        self._check_step_index(flow_type, questions, step_index)
        return self._sanitize(flow_type, questions, step_index, answers_so_far)

    def completed_answers(self, flow_type: str, answers_so_far: Optional[dict]) -> Dict[str, Any]:
        """
        Re-derive the answer map of a flow that claims to be complete.

        Same walk as reconcile(), with every visible question required.

        Raises:
            InvalidFlowState: Unknown flow, or a visible question is unanswered
        """
        questions = self._questions(flow_type)
        return self._sanitize(flow_type, questions, len(questions), answers_so_far)

    def _sanitize(self, flow_type: str, questions, step_index: int, answers_so_far) -> Dict[str, Any]:
        raw = answers_so_far or {}
        if not isinstance(raw, dict):
            raise InvalidFlowState("answers must be an object")

        known_ids = {q.id for q in questions}
        unknown = sorted(k for k in raw if k not in known_ids)
        if unknown:
            logger.warning(f"Dropping unknown answer keys for {flow_type}: {unknown}")

        sanitized: Dict[str, Any] = {}

        for position, question in enumerate(questions):
            visible = self.catalog.is_visible(question, sanitized)

            if not visible:
                if position == step_index:
                    raise InvalidFlowState(
                        f"Question '{question.id}' at step {step_index} is not reachable "
                        f"with the answers given"
                    )
                if question.id in raw:
                    logger.warning(f"Pruning answer for hidden question {flow_type}.{question.id}")
                continue

            if question.id not in raw:
                if position < step_index:
                    raise InvalidFlowState(
                        f"Step {step_index} skips unanswered question '{question.id}'"
                    )
                continue

            try:
                sanitized[question.id] = self.coerce_answer(question, raw[question.id])
            except (MissingAnswer, InvalidAnswerType) as e:
                raise InvalidFlowState(f"Stored answer for '{question.id}' is invalid: {e}") from e

        return sanitized

    # =========================================================================
    # Answer coercion
    # =========================================================================

    def coerce_answer(self, question: QuestionDefinition, value: Any) -> Any:
        """
        Validate and normalize a raw answer for a question.

        - choice: option value (or its label, case-insensitive) -> value
        - multi_choice: list or comma-joined string -> list of values
        - text: stripped string
        - currency: integer amount ("€500,000" -> 500000)

        Optional questions accept empty answers ('' or []).

        Raises:
            MissingAnswer: Empty value for a required question
            InvalidAnswerType: Value does not fit the type/options
        """
        q_type = question.type

        if q_type == "multi_choice":
            items = split_multi_value(value)
            if not items:
                if question.required:
                    raise MissingAnswer(question)
                return []
            return [self._match_option(question, item) for item in items]

        if isinstance(value, (list, tuple, dict)):
            raise InvalidAnswerType(question, f"'{question.id}' expects a single value")

        text = "" if value is None else str(value).strip()

        if not text:
            if question.required:
                raise MissingAnswer(question)
            return ""

        if q_type == "choice":
            return self._match_option(question, text)

        if q_type == "currency":
            amount = parse_currency(value)
            if amount is None:
                raise InvalidAnswerType(question, f"'{question.id}' expects an amount, e.g. {question.placeholder or '€100,000'}")
            return amount

        return text

    def _match_option(self, question: QuestionDefinition, item: str) -> str:
        for option_value, label in question.options:
            if item == option_value:
                return option_value
        lowered = item.lower()
        for option_value, label in question.options:
            if lowered == label.lower() or lowered == option_value.lower():
                return option_value
        raise InvalidAnswerType(
            question,
            f"'{item}' is not an option for '{question.id}' "
            f"(expected one of: {', '.join(question.option_values())})"
        )

    # =========================================================================
    # Walking helpers
    # =========================================================================

    def _questions(self, flow_type: str) -> Tuple[QuestionDefinition, ...]:
        if not isinstance(flow_type, str):
            raise InvalidFlowState(f"flow_type must be a string, got {type(flow_type).__name__}")
        if not self.catalog.has_flow(flow_type):
            raise InvalidFlowState(f"Unknown flow type: {flow_type}")
        return self.catalog.questions(flow_type)

    def _check_step_index(self, flow_type: str, questions, step_index):
        if isinstance(step_index, bool) or not isinstance(step_index, int):
            raise InvalidFlowState(f"step_index must be an integer, got {step_index!r}")
        if step_index < 0 or step_index >= len(questions):
            raise InvalidFlowState(
                f"step_index {step_index} out of range for {flow_type} "
                f"({len(questions)} questions)"
            )

    def _next_visible_index(self, questions, after: int, answers: dict) -> Optional[int]:
        for position in range(after + 1, len(questions)):
            if self.catalog.is_visible(questions[position], answers):
                return position
        return None

    def _count_visible(self, questions, start: int, answers: dict) -> int:
        return sum(
            1 for question in questions[start:]
            if self.catalog.is_visible(question, answers)
        )

    def _prune(self, questions, answers: dict) -> Dict[str, Any]:
        """Keep only answers of questions visible in catalog order."""
        kept: Dict[str, Any] = {}
        for question in questions:
            if question.id in answers and self.catalog.is_visible(question, kept):
                kept[question.id] = answers[question.id]
        return kept

    def _answered_visible_count(self, questions, up_to: int, answers: dict) -> int:
        return sum(
            1 for question in questions[:up_to + 1]
            if question.id in answers
        )

    def _awaiting(self, flow_type, questions, index, answers, turn_count) -> NextTurn:
        is_last = self._next_visible_index(questions, index, answers) is None
        return NextTurn(
            flow_type=flow_type,
            status=STATUS_AWAITING_ANSWER,
            step_index=index,
            question=questions[index],
            answers=answers,
            is_last_question=is_last,
            turn_count=turn_count,
            remaining=self._count_visible(questions, index, answers),
        )

    def _complete(self, flow_type, answers, turn_count) -> NextTurn:
        return NextTurn(
            flow_type=flow_type,
            status=STATUS_COMPLETE,
            step_index=None,
            question=None,
            answers=answers,
            is_last_question=False,
            turn_count=turn_count,
        )


def question_to_prompt(
    question: QuestionDefinition,
    step_index: int,
    is_last_question: bool,
    suggestion: Any = None
) -> dict:
    """
    Render a question as transport-ready data (no HTML).

    Args:
        question: Question to render
        step_index: Its catalog position, echoed back by the client
        is_last_question: Whether answering it completes the flow
        suggestion: Optional pre-fill value from the profile

    Returns:
        dict with id, prompt, type, options, placeholder, required,
        step_index, is_last_question, suggestion
    """
    return {
        'id': question.id,
        'prompt': question.prompt,
        'type': question.type,
        'options': [{'value': v, 'label': label} for v, label in question.options],
        'placeholder': question.placeholder,
        'required': question.required,
        'step_index': step_index,
        'is_last_question': is_last_question,
        'suggestion': suggestion,
    }
