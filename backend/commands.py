"""
Command types for FlowManager control flow.

Commands are the ONLY public interface to FlowManager.
No direct method calls from the transport. Commands only.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import copy


@dataclass(frozen=True)
class FlowState:
    """
    Opaque value object wrapping the round-tripped flow context.

    The client receives this after every turn and sends it back with
    the next answer. It is a cache, not ground truth: FlowManager
    re-validates it against the Question Catalog on every call.

    Rules:
    - No code outside FlowManager/FlowStateMachine inspects _data
    - Immutable after creation
    - Deep copied on construction and serialization
    - Serializable to/from JSON

    This is a sealed envelope, not a model.
    """
    _data: Dict[str, Any]

    @property
    def flow_type(self) -> Optional[str]:
        """Routing key, needed by the transport to label the flow."""
        return self._data.get('flow_type')

    @property
    def turn_count(self) -> int:
        """Operational metadata for turn validation and logging."""
        return self._data.get('turn_count', 0)

    def to_json(self) -> dict:
        """
        Serialize to JSON-safe dict (deep copy).

        Returns:
            dict: Deep copy of internal state
        """
        return copy.deepcopy(self._data)

    @staticmethod
    def from_json(data: dict) -> "FlowState":
        """
        Deserialize from JSON dict.

        Deep copies so no external reference can mutate the envelope.

        Args:
            data: Raw state dict from the client

        Returns:
            FlowState: Sealed envelope
        """
        return FlowState(_data=copy.deepcopy(data))


# Command types

@dataclass(frozen=True)
class StartFlow:
    """
    Start a new document or guide flow.

    No state parameter - FlowManager creates the initial state and
    discards any answer store left from an earlier run of the same flow.
    Returns: TurnResult with first prompt + initial state.
    """
    flow_type: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class ResumeFlow:
    """
    Pick up a flow from the member's saved Answer Store.

    Needs a user_id and a configured store. With nothing saved this
    behaves like StartFlow, except the store is left as it is.
    Returns: TurnResult at the first unanswered question (or complete=True).
    """
    flow_type: str
    user_id: Optional[str] = None


@dataclass(frozen=True)
class SubmitAnswer:
    """
    Submit one answer for the question the state points at.

    Returns: TurnResult with next prompt (or complete=True) + updated state.
    """
    value: Any
    state: FlowState
    user_id: Optional[str] = None


@dataclass(frozen=True)
class GenerateOutput:
    """
    Assemble the document/guide for a completed flow.

    Only valid when the flow is complete.
    Returns: OutputReady, or TemplateNotFound for unregistered types.
    """
    state: FlowState
    user_id: Optional[str] = None
    use_ai: bool = False


# Command union type for type hints
Command = StartFlow | ResumeFlow | SubmitAnswer | GenerateOutput
