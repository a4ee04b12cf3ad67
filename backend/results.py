"""
Result types returned by FlowManager.handle()

These are the ONLY return types from the command handler.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from backend.commands import FlowState
from backend.contracts import DocumentDescription, GuideContent


@dataclass(frozen=True)
class TurnResult:
    """
    Result of starting a flow or submitting an answer.

    Returned by: StartFlow, ResumeFlow, SubmitAnswer

    Attributes:
        prompt: Next question as transport-ready data, None when complete
        state: Opaque state envelope (transport cannot inspect)
        complete: Flow is ready to assemble
        is_last_question: The prompt is the final visible question
        turn_metadata: flow_type, step_index, turn_count, flow_id, remaining
        error: Validation error for the SAME prompt being re-asked
            ({'error_type', 'message', 'question_id'}), None on success
        intro: Flow title and profile summary (StartFlow and ResumeFlow only)
        progress_message: "Just N more question(s)..." near the end of a flow
    """
    prompt: Optional[Dict[str, Any]]
    state: FlowState  # Opaque! Transport cannot inspect.
    complete: bool
    is_last_question: bool
    turn_metadata: Dict[str, Any]
    error: Optional[Dict[str, Any]] = None
    intro: Optional[Dict[str, Any]] = None
    progress_message: Optional[str] = None


@dataclass(frozen=True)
class OutputReady:
    """
    Assembled document or guide.

    Returned by: GenerateOutput

    Attributes:
        description: Structured document description
        preview: Short text preview for the UI
        document_id: Persistence id, None when no store is configured
        enriched: True when AI prose is attached
        guide_content: Enricher output, when enriched
        warnings: Non-fatal notes (e.g. enrichment fell back to template)
    """
    description: DocumentDescription
    preview: str
    document_id: Optional[str] = None
    enriched: bool = False
    guide_content: Optional[GuideContent] = None
    warnings: Tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class TemplateNotFound:
    """
    No template is registered for the requested document or guide type.

    A normal error path, not an exception: transports answer with a
    regular error payload.

    Attributes:
        document_type: Requested type
        reason: Human-readable explanation
    """
    document_type: str
    reason: str


@dataclass(frozen=True)
class IllegalCommand:
    """
    Command rejected by FlowManager.

    Examples:
    - SubmitAnswer with a state that does not match the catalog
    - GenerateOutput before the flow is complete
    - StartFlow for an unknown flow type

    Attributes:
        reason: Human-readable explanation
        command_type: Name of rejected command type
        error_type: Machine-readable category (e.g. 'InvalidFlowState')
    """
    reason: str
    command_type: str
    error_type: str = "IllegalCommand"
