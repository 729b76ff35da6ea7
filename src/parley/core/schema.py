"""
Schema definitions for provider <-> orchestrator <-> tool messages.

These data models serve as the contract between the model provider, the orchestration loop, the
tool dispatch pool and the conversation store.  We keep them separate from runtime logic so they can
be imported anywhere without side-effects.

Messages form a closed tagged union keyed on ``role``; the dumped form of every message is the
generic field form (role, content, tool_calls, tool_call_id, name) that is persisted to disk.
"""

from enum import Enum
from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    Field,
    TypeAdapter,
)


# ---------------------------------------------------------------------------
# Tool calls and tool specs
# ---------------------------------------------------------------------------
class FunctionCall(BaseModel):
    """Name and raw (still encoded) argument string of a requested call."""

    name: str
    arguments: str = ""


class ToolCallRequest(BaseModel):
    """A call that the model wants the orchestrator to execute.

    ``arguments`` is kept opaque: it is only decoded by the dispatch pool right before the tool is
    invoked.
    """

    id: str = Field(..., description="Provider-assigned call id")
    type: Literal["function"] = "function"
    function: FunctionCall

    @classmethod
    def build(cls, call_id: str, name: str, arguments: str = "") -> "ToolCallRequest":
        """Shorthand constructor used by the provider adapters."""
        return cls(id=call_id, function=FunctionCall(name=name, arguments=arguments))

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> str:
        return self.function.arguments


class ToolSpec(BaseModel):
    """Name, description and parameter contract of a tool offered to the model."""

    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []},
        description="JSON schema of the argument object",
    )

    @property
    def required(self) -> List[str]:
        return list(self.parameters.get("required", []))

    def to_function(self) -> Dict[str, Any]:
        """Render the spec in the function-calling shape used on the wire and in diagnostics."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------
class SystemMessage(BaseModel):
    """Instructions for the model; also used for durable planner notes."""

    role: Literal["system"] = "system"
    content: str


class UserMessage(BaseModel):
    """Text authored by the user (or injected on the user's behalf by the planner)."""

    role: Literal["user"] = "user"
    content: str


class AssistantMessage(BaseModel):
    """A model turn: either a textual reply or a batch of tool-call requests."""

    role: Literal["assistant"] = "assistant"
    content: Optional[str] = None
    tool_calls: Optional[List[ToolCallRequest]] = None

    @property
    def is_tool_request(self) -> bool:
        return bool(self.tool_calls)


class ToolMessage(BaseModel):
    """The response to exactly one tool-call request."""

    role: Literal["tool"] = "tool"
    tool_call_id: str
    name: str
    content: str


Message = Annotated[
    Union[SystemMessage, UserMessage, AssistantMessage, ToolMessage],
    Field(discriminator="role"),
]

_MESSAGE_LIST = TypeAdapter(List[Message])


def dump_messages(messages: List[Message]) -> List[Dict[str, Any]]:
    """Convert typed messages to the generic role-tagged field form."""
    return [msg.model_dump(exclude_none=True) for msg in messages]


def parse_messages(data: Any) -> List[Message]:
    """Rebuild typed messages from the generic field form.

    Raises
    ------
    pydantic.ValidationError
        If any entry has an unknown role or lacks a role-specific field.
    """
    return _MESSAGE_LIST.validate_python(data)


# ---------------------------------------------------------------------------
# Provider results
# ---------------------------------------------------------------------------
class CompletionResult(BaseModel):
    """Normalised reply of the direct protocol: text *or* tool calls."""

    text: Optional[str] = None
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)


class RunState(str, Enum):
    """Lifecycle states of a hosted run that the poller understands."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    REQUIRES_ACTION = "requires_action"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def parse(cls, status: str) -> Optional["RunState"]:
        """Return the matching state, or *None* for statuses we do not recognise."""
        try:
            return cls(status)
        except ValueError:
            return None


class RunSnapshot(BaseModel):
    """One poll result of a hosted run."""

    id: str
    status: str
    tool_calls: List[ToolCallRequest] = Field(default_factory=list)
    error: Optional[str] = None


class PlannerPhase(str, Enum):
    """Checkpoints at which the planner is consulted."""

    INITIAL = "initial"
    CHECKIN = "checkin"
    FINISH = "finish"
