"""
Flow Manager - Command handler for document and guide flows

Responsibilities:
- Accept commands (StartFlow, ResumeFlow, SubmitAnswer, GenerateOutput)
- Drive the Flow State Machine and persist validated answers
- Re-prompt the same question on validation errors
- Introduce a flow with a profile summary and flag the last few questions
- Assemble completed flows, optionally enriched with AI prose
- Convert every error into a typed result

Design principles:
- Commands in, results out; no exceptions cross handle()
- The state envelope is a cache; the state machine re-validates it
- Persistence writes happen only after validation passes
- Enrichment failure never blocks a plain template guide
"""

import logging
from typing import Any, Optional, Union

from backend.commands import Command, FlowState, GenerateOutput, ResumeFlow, StartFlow, SubmitAnswer
from backend.core.flow_state_machine import (
    STATUS_COMPLETE,
    InvalidAnswerType,
    InvalidFlowState,
    MissingAnswer,
    NextTurn,
    question_to_prompt,
)
from backend.core.guide_enricher import EnrichmentParseIncomplete, EnrichmentUnavailable
from backend.core.template_assembler import preview
from backend.results import IllegalCommand, OutputReady, TemplateNotFound, TurnResult
from backend.utils.helpers import generate_record_id, split_multi_value

logger = logging.getLogger(__name__)

Result = Union[TurnResult, OutputReady, TemplateNotFound, IllegalCommand]

# Profile fields shown back to the member when a flow starts
PROFILE_SUMMARY_FIELDS = (
    ("applicants", "Applying with"),
    ("visa_type", "Visa type"),
    ("employment_status", "Your status"),
    ("application_location", "Applying from"),
    ("target_location", "Target location"),
)

# Progress note once this many visible questions (or fewer) remain
PROGRESS_THRESHOLD = 2


class FlowManager:
    """
    Orchestrates one flow turn per command.

    Holds only stateless collaborators; every per-user fact arrives in
    the command (state envelope) or comes from the store.
    """

    def __init__(self, state_machine, assembler, store=None, enricher=None):
        """
        Args:
            state_machine: FlowStateMachine
            assembler: TemplateAssembler
            store: Persistence collaborator (MemberStore), optional
            enricher: GuideEnricher, optional

        Raises:
            TypeError: If any collaborator lacks the expected interface
        """
        self._validate_modules(state_machine, assembler, store, enricher)

        self.state_machine = state_machine
        self.assembler = assembler
        self.store = store
        self.enricher = enricher

        logger.info("Flow manager initialized")

    def _validate_modules(self, state_machine, assembler, store, enricher):
        """Validate module interfaces"""
        for method in ("start", "resume", "submit", "is_last_question",
                       "remaining_questions", "completed_answers"):
            if not callable(getattr(state_machine, method, None)):
                raise TypeError(f"state_machine must have callable {method}() method")

        if not callable(getattr(assembler, "assemble", None)):
            raise TypeError("assembler must have callable assemble() method")

        if store is not None:
            for method in ("load_answer_store", "save_answer_store", "clear_answer_store",
                           "load_profile", "save_document_description"):
                if not callable(getattr(store, method, None)):
                    raise TypeError(f"store must have callable {method}() method")

        if enricher is not None:
            for method in ("enrich", "supports"):
                if not callable(getattr(enricher, method, None)):
                    raise TypeError(f"enricher must have callable {method}() method")

    # =========================================================================
    # Public API
    # =========================================================================

    def handle(self, command: Command) -> Result:
        """
        Process one command.

        Returns:
            TurnResult: StartFlow / ResumeFlow / SubmitAnswer (including re-prompts)
            OutputReady: GenerateOutput succeeded
            TemplateNotFound: GenerateOutput for a type with no template
            IllegalCommand: State does not match the catalog, the member id
                is unusable, or the command is not valid in the current state
        """
        handlers = {
            StartFlow: self._handle_start,
            ResumeFlow: self._handle_resume,
            SubmitAnswer: self._handle_submit,
            GenerateOutput: self._handle_generate,
        }
        handler = handlers.get(type(command))
        if handler is None:
            return IllegalCommand(
                reason=f"Unknown command: {type(command).__name__}",
                command_type=type(command).__name__,
            )

        # Loading the profile first also validates the member id
        try:
            profile = self._profile(command.user_id)
        except ValueError as e:
            logger.warning(f"Rejected {type(command).__name__}: unusable member id")
            return IllegalCommand(reason=str(e), command_type=type(command).__name__, error_type="InvalidUser")

        return handler(command, profile)

    # =========================================================================
    # Command handlers
    # =========================================================================

    def _handle_start(self, command: StartFlow, profile: dict) -> Result:
        try:
            turn = self.state_machine.start(command.flow_type)
        except InvalidFlowState as e:
            logger.warning(f"Cannot start flow: {e}")
            return IllegalCommand(reason=str(e), command_type="StartFlow", error_type="InvalidFlowState")

        if self._persisting(command.user_id):
            self.store.clear_answer_store(command.user_id, command.flow_type)

        return self._turn_result(turn, generate_record_id(), profile, intro=True)

    def _handle_resume(self, command: ResumeFlow, profile: dict) -> Result:
        if not self._persisting(command.user_id):
            return IllegalCommand(
                reason="Resuming a flow needs a member id and saved answers",
                command_type="ResumeFlow",
                error_type="InvalidUser",
            )

        try:
            saved = self.store.load_answer_store(command.user_id, command.flow_type)
            turn = self.state_machine.resume(command.flow_type, saved)
        except (InvalidFlowState, ValueError) as e:
            logger.warning(f"Cannot resume flow: {e}")
            return IllegalCommand(reason=str(e), command_type="ResumeFlow", error_type="InvalidFlowState")

        logger.info(f"Flow {command.flow_type} resumed at step {turn.step_index} ({turn.turn_count} answers)")
        return self._turn_result(turn, generate_record_id(), profile, intro=True)

    def _handle_submit(self, command: SubmitAnswer, profile: dict) -> Result:
        data = command.state.to_json()
        flow_type = data.get("flow_type")
        step_index = data.get("step_index")
        answers = data.get("answers") or {}

        if data.get("status") == STATUS_COMPLETE:
            return IllegalCommand(
                reason="Flow is already complete; generate the document or start again",
                command_type="SubmitAnswer",
            )

        try:
            turn = self.state_machine.submit(flow_type, step_index, answers, command.value)
        except (MissingAnswer, InvalidAnswerType) as e:
            logger.warning(f"Answer rejected for {flow_type}.{e.question.id}: {type(e).__name__}")
            return self._reprompt(command.state, e, profile)
        except InvalidFlowState as e:
            logger.warning(f"Rejected flow state: {e}")
            return IllegalCommand(reason=str(e), command_type="SubmitAnswer", error_type="InvalidFlowState")

        if self._persisting(command.user_id):
            self.store.save_answer_store(command.user_id, flow_type, turn.answers)

        return self._turn_result(turn, data.get("flow_id"), profile)

    def _handle_generate(self, command: GenerateOutput, profile: dict) -> Result:
        data = command.state.to_json()
        flow_type = data.get("flow_type")

        if data.get("status") != STATUS_COMPLETE:
            return IllegalCommand(
                reason="Flow is not complete; answer the remaining questions first",
                command_type="GenerateOutput",
            )

        try:
            answers = self.state_machine.completed_answers(flow_type, data.get("answers"))
        except InvalidFlowState as e:
            logger.warning(f"Rejected completed state: {e}")
            return IllegalCommand(reason=str(e), command_type="GenerateOutput", error_type="InvalidFlowState")

        description = self.assembler.assemble(flow_type, answers, profile)

        if isinstance(description, TemplateNotFound):
            return description

        guide_content = None
        enriched = False
        warnings = []

        if command.use_ai:
            guide_content, enriched, warning = self._enrich(flow_type, answers, profile)
            if warning:
                warnings.append(warning)

        document_id = None
        if self._persisting(command.user_id):
            document_id = self.store.save_document_description(command.user_id, description, guide_content)

        logger.info(f"Output ready for {flow_type} (enriched={enriched})")

        return OutputReady(
            description=description,
            preview=preview(description),
            document_id=document_id,
            enriched=enriched,
            guide_content=guide_content,
            warnings=tuple(warnings),
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _enrich(self, flow_type: str, answers: dict, profile: dict):
        """Returns (guide_content, enriched, warning)."""
        if self.enricher is None or not self.enricher.supports(flow_type):
            return None, False, "AI guides are not available for this type; showing the standard version"

        try:
            return self.enricher.enrich(flow_type, answers, profile), True, None
        except EnrichmentUnavailable as e:
            logger.warning(f"Enrichment unavailable for {flow_type} ({e.reason}); using template guide")
            return None, False, f"AI guide unavailable ({e.reason}); showing the standard version"
        except EnrichmentParseIncomplete as e:
            logger.warning(f"Enrichment response for {flow_type} was unstructured")
            return e.content, True, "AI guide could not be split into sections; showing it as plain text"

    def _reprompt(self, state: FlowState, error, profile: dict) -> TurnResult:
        """Same question again, same state, with the validation error attached."""
        data = state.to_json()
        flow_type = data["flow_type"]
        step_index = data["step_index"]
        is_last = self.state_machine.is_last_question(flow_type, step_index, data.get("answers"))
        remaining = self.state_machine.remaining_questions(flow_type, step_index, data.get("answers"))

        return TurnResult(
            prompt=question_to_prompt(error.question, step_index, is_last,
                                      self._suggestion(error.question, profile)),
            state=state,
            complete=False,
            is_last_question=is_last,
            turn_metadata=self._metadata(data, remaining),
            error={
                "error_type": type(error).__name__,
                "message": str(error),
                "question_id": error.question.id,
            },
        )

    def _turn_result(self, turn: NextTurn, flow_id: Optional[str], profile: dict, intro: bool = False) -> TurnResult:
        data = {
            "flow_type": turn.flow_type,
            "flow_id": flow_id,
            "status": turn.status,
            "step_index": turn.step_index,
            "answers": turn.answers,
            "turn_count": turn.turn_count,
        }

        prompt = None
        if not turn.complete:
            prompt = question_to_prompt(
                turn.question, turn.step_index, turn.is_last_question,
                self._suggestion(turn.question, profile),
            )
        else:
            logger.info(f"Flow {turn.flow_type} complete ({turn.turn_count} answers)")

        return TurnResult(
            prompt=prompt,
            state=FlowState.from_json(data),
            complete=turn.complete,
            is_last_question=turn.is_last_question,
            turn_metadata=self._metadata(data, turn.remaining),
            intro=self._intro(turn, profile) if intro else None,
            progress_message=None if intro else progress_message(turn.remaining),
        )

    def _intro(self, turn: NextTurn, profile: dict) -> dict:
        """Flow title plus the profile facts the member should confirm."""
        catalog = self.state_machine.catalog
        summary = [
            {
                "field": field,
                "label": label,
                "value": catalog.profile_display_value(field, profile[field]),
            }
            for field, label in PROFILE_SUMMARY_FIELDS
            if profile.get(field) not in (None, "", [])
        ]
        return {
            "flow_type": turn.flow_type,
            "title": catalog.title(turn.flow_type),
            "kind": catalog.kind(turn.flow_type),
            "question_count": turn.remaining,
            "profile_summary": summary,
            "needs_verification": bool(profile),
        }

    def _metadata(self, data: dict, remaining: int = 0) -> dict:
        return {
            "flow_type": data.get("flow_type"),
            "flow_id": data.get("flow_id"),
            "step_index": data.get("step_index"),
            "turn_count": data.get("turn_count", 0),
            "remaining": remaining,
            "status": data.get("status"),
        }

    def _suggestion(self, question, profile: dict) -> Any:
        """Profile value that fits the question, for UI pre-fill."""
        if question is None or not question.profile_field:
            return None

        value = profile.get(question.profile_field)
        if value in (None, "", []):
            return None

        if question.type == "choice":
            return value if value in question.option_values() else None
        if question.type == "multi_choice":
            items = [v for v in split_multi_value(value) if v in question.option_values()]
            return items or None
        return value

    def _profile(self, user_id: Optional[str]) -> dict:
        if not self._persisting(user_id):
            return {}
        return self.store.load_profile(user_id)

    def _persisting(self, user_id: Optional[str]) -> bool:
        return self.store is not None and user_id is not None


def progress_message(remaining: int) -> Optional[str]:
    """
    Soft progress note for the last few questions.

    Examples:
        >>> progress_message(2)
        'Just 2 more questions...'
        >>> progress_message(5) is None
        True
    """
    if remaining <= 0 or remaining > PROGRESS_THRESHOLD:
        return None
    return f"Just {remaining} more question{'s' if remaining > 1 else ''}..."
