"""Scripted stand-ins for the model providers, shared by the test modules."""

import json
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Union,
)

from parley.agent.hosted import HostedProvider
from parley.agent.provider import ChatProvider
from parley.core.schema import (
    CompletionResult,
    Message,
    RunSnapshot,
    ToolCallRequest,
    ToolSpec,
)

Reply = Union[CompletionResult, Exception, Callable[[Sequence[Message]], CompletionResult]]


def text(reply: str) -> CompletionResult:
    return CompletionResult(text=reply)


def call(call_id: str, name: str, args: Optional[Dict[str, Any]] = None) -> ToolCallRequest:
    return ToolCallRequest.build(call_id, name, json.dumps(args or {}))


def calls(*requests: ToolCallRequest) -> CompletionResult:
    return CompletionResult(tool_calls=list(requests))


class ScriptedProvider(ChatProvider):
    """Returns (or raises) the scripted replies in order and records every request."""

    def __init__(self, replies: Sequence[Reply]) -> None:
        self.replies = list(replies)
        self.requests: List[Dict[str, Any]] = []

    def complete(
        self,
        model: str,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec] = (),
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        self.requests.append(
            {"model": model, "messages": list(messages), "tools": [t.name for t in tools]}
        )
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(messages)
        return reply


class ScriptedHostedProvider(HostedProvider):
    """Hosted protocol fake: runs through a scripted list of snapshots."""

    def __init__(self, snapshots: Sequence[RunSnapshot], replies: Sequence[str] = ("done",)):
        self.snapshots = list(snapshots)
        self.replies = list(replies)
        self.threads: List[str] = []
        self.user_messages: List[tuple] = []
        self.runs: List[tuple] = []
        self.submissions: List[tuple] = []
        self.list_calls = 0
        self.cancelled: List[str] = []

    def create_thread(self) -> str:
        thread_id = f"thread_{len(self.threads) + 1}"
        self.threads.append(thread_id)
        return thread_id

    def add_user_message(self, thread_id: str, text: str) -> None:
        self.user_messages.append((thread_id, text))

    def create_run(self, thread_id: str, assistant_id: str) -> str:
        self.runs.append((thread_id, assistant_id))
        return "run_1"

    def get_run(self, thread_id: str, run_id: str) -> RunSnapshot:
        snapshot = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        return snapshot

    def submit_tool_outputs(self, thread_id: str, run_id: str, outputs) -> None:
        self.submissions.append((thread_id, run_id, list(outputs)))

    def list_messages(self, thread_id: str) -> List[Dict[str, str]]:
        self.list_calls += 1
        messages = [{"role": "user", "text": text} for _, text in self.user_messages]
        messages += [{"role": "assistant", "text": reply} for reply in self.replies]
        return messages

    def cancel_run(self, thread_id: str, run_id: str) -> None:
        self.cancelled.append(run_id)
