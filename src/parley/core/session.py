"""
Session state and the per-session configuration object.

A :class:`Session` is owned by one workflow at a time: only the turn engine, the planner checkpoints
and the run poller append to it, and tool results are merged back by a single writer.
"""

from typing import (
    Dict,
    List,
    Optional,
    Tuple,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from parley.config import Settings
from parley.core.schema import (
    AssistantMessage,
    Message,
    UserMessage,
    dump_messages,
)
from parley.tools import ToolRegistry

TESTING_PREFIX = "testing:"
_CHARS_PER_TOKEN = 4


class SessionConfig(BaseModel):
    """Explicit configuration handed to engines at construction time."""

    model: str = "gpt-4o"
    max_tokens: int = 128_000
    planner_model: str = "gpt-4o"
    planner_max_tokens: int = 128_000
    assistant_id: Optional[str] = None
    tool_workers: int = 4
    tool_timeout: Optional[float] = None
    poll_interval: float = 0.5
    poll_timeout: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionConfig":
        return cls(
            model=settings.MODEL,
            max_tokens=settings.MAX_TOKENS,
            planner_model=settings.PLANNER_MODEL,
            planner_max_tokens=settings.PLANNER_MAX_TOKENS,
            assistant_id=settings.ASSISTANT_ID,
            tool_workers=settings.TOOL_WORKERS,
            tool_timeout=settings.TOOL_TIMEOUT,
            poll_interval=settings.POLL_INTERVAL,
            poll_timeout=settings.POLL_TIMEOUT,
        )


class Session(BaseModel):
    """One logical multi-turn exchange with a fixed model, budget and tool registry."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    model: str
    max_tokens: int = 128_000  # advisory only
    tools: ToolRegistry = Field(default_factory=ToolRegistry)
    use_planner: bool = False
    messages: List[Message] = Field(default_factory=list)
    response: Optional[str] = None
    error: Optional[str] = None

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def extend(self, messages: List[Message]) -> None:
        self.messages.extend(messages)

    def question(self) -> Optional[str]:
        """Text of the most recent user message, i.e. the one that started this run."""
        for msg in reversed(self.messages):
            if isinstance(msg, UserMessage):
                return msg.content
        return None

    def is_testing(self) -> bool:
        """True when the initiating user message carries the ``testing:`` sentinel."""
        question = self.question() or ""
        return question.lstrip().lower().startswith(TESTING_PREFIX)

    def planner_enabled(self) -> bool:
        return self.use_planner and not self.is_testing()

    def context_window_usage(self) -> Tuple[str, str]:
        """Rough (label, detail) usage report; the budget is never enforced."""
        chars = len(str(dump_messages(self.messages)))
        tokens = chars // _CHARS_PER_TOKEN
        pct = tokens / self.max_tokens * 100.0 if self.max_tokens else 0.0
        return "Context window usage", f"{pct:.2f}% | {tokens:,} / {self.max_tokens:,}"

    def tools_used(self) -> Dict[str, int]:
        """Count of tool calls per tool name across the transcript."""
        counts: Dict[str, int] = {}
        for msg in self.messages:
            if isinstance(msg, AssistantMessage) and msg.tool_calls:
                for call in msg.tool_calls:
                    counts[call.name] = counts.get(call.name, 0) + 1
        return counts
