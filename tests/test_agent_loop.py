"""
Tests for the turn engine.

Run with:
$ pytest -q
"""

import json
import threading

from fakes import (
    ScriptedProvider,
    call,
    calls,
    text,
)

from parley.agent.agent_loop import (
    CANCELLED_MESSAGE,
    Checkpoints,
    TurnEngine,
)
from parley.agent.events import EventLog
from parley.agent.provider import ProviderError
from parley.core.schema import (
    AssistantMessage,
    SystemMessage,
    ToolMessage,
    UserMessage,
)
from parley.core.session import Session
from parley.tools import ToolRegistry


def _registry() -> ToolRegistry:
    registry = ToolRegistry()

    @registry.register("list_files")
    def list_files() -> list:
        """List the project files."""
        return ["a.txt", "b.txt", "c.txt"]

    @registry.register("file_contents")
    def file_contents(path: str) -> str:
        """Read a file."""
        return f"contents of {path}"

    return registry


def _session(question: str, use_planner: bool = False) -> Session:
    return Session(
        model="test-model",
        tools=_registry(),
        use_planner=use_planner,
        messages=[SystemMessage(content="You are a test."), UserMessage(content=question)],
    )


class RecordingCheckpoints(Checkpoints):
    def __init__(self) -> None:
        self.calls = []

    def initial(self, session: Session) -> None:
        self.calls.append("initial")

    def checkin(self, session: Session) -> None:
        self.calls.append("checkin")

    def finish(self, session: Session) -> None:
        self.calls.append("finish")


def test_text_reply_ends_the_loop() -> None:
    """A plain text reply becomes the answer after a single request."""

    provider = ScriptedProvider([text("Hello!")])
    session = _session("hi")

    answer = TurnEngine(provider).run(session)

    assert answer == "Hello!"
    assert session.response == "Hello!"
    assert session.error is None
    assert len(provider.requests) == 1
    assert provider.requests[0]["tools"] == ["list_files", "file_contents"]
    assert isinstance(session.messages[-1], AssistantMessage)


def test_tool_round_appends_request_then_responses_in_order() -> None:
    """One assistant tool-call message followed by one response per request, in order."""

    provider = ScriptedProvider(
        [
            calls(
                call("c1", "file_contents", {"path": "x.py"}),
                call("c2", "list_files"),
            ),
            text("done"),
        ]
    )
    session = _session("what is in x.py?")

    TurnEngine(provider, max_workers=2).run(session)

    tail = session.messages[2:]
    assert isinstance(tail[0], AssistantMessage)
    assert [c.id for c in tail[0].tool_calls] == ["c1", "c2"]
    assert [m.tool_call_id for m in tail[1:3]] == ["c1", "c2"]
    assert all(isinstance(m, ToolMessage) for m in tail[1:3])
    assert tail[1].content == "contents of x.py"
    assert tail[3].content == "done"
    # the second request already saw the whole round
    assert len(provider.requests[1]["messages"]) == 5


def test_provider_error_becomes_diagnostic_answer() -> None:
    """Provider failures end the session with a diagnostic instead of raising."""

    provider = ScriptedProvider(
        [ProviderError("rate limited", http_status=429, code="rate_limit_exceeded")]
    )
    session = _session("hi")
    checkpoints = RecordingCheckpoints()

    answer = TurnEngine(provider).run(session, checkpoints=checkpoints)

    assert answer.startswith("I encountered an error while processing your request.")
    assert "429" in answer
    assert "rate_limit_exceeded" in answer
    assert "rate limited" in answer
    assert session.error == answer
    assert session.messages[-1].content == answer
    assert checkpoints.calls == ["initial"]


def test_missing_argument_lets_the_model_correct_itself() -> None:
    """A bad call yields a diagnostic tool response and the loop carries on."""

    provider = ScriptedProvider(
        [
            calls(call("c1", "file_contents", {"path": ""})),
            calls(call("c2", "file_contents", {"path": "x.py"})),
            text("x.py holds code"),
        ]
    )
    session = _session("read x.py")

    answer = TurnEngine(provider).run(session)

    assert answer == "x.py holds code"
    first, second = [m for m in session.messages if isinstance(m, ToolMessage)]
    assert "missing a required argument, 'path'" in first.content
    assert second.content == "contents of x.py"


def test_checkpoints_fire_around_tool_rounds() -> None:
    """initial once, checkin after each tool round, finish once."""

    provider = ScriptedProvider(
        [calls(call("c1", "list_files")), calls(call("c2", "list_files")), text("ok")]
    )
    checkpoints = RecordingCheckpoints()

    TurnEngine(provider).run(_session("go"), checkpoints=checkpoints)

    assert checkpoints.calls == ["initial", "checkin", "checkin", "finish"]


def test_testing_scenario_lists_three_files() -> None:
    """'Testing:' question: one tool round, one response, one answer and no planner."""

    provider = ScriptedProvider(
        [calls(call("c1", "list_files")), text("Listed a.txt, b.txt and c.txt.")]
    )
    session = _session("Testing: list 3 files", use_planner=True)
    events = EventLog()

    answer = TurnEngine(provider, sink=events).run(session)

    assert answer == "Listed a.txt, b.txt and c.txt."
    assert not session.planner_enabled()
    assert len(provider.requests) == 2
    tool_messages = [m for m in session.messages if isinstance(m, ToolMessage)]
    assert len(tool_messages) == 1
    assert json.loads(tool_messages[0].content) == ["a.txt", "b.txt", "c.txt"]
    final = [m for m in session.messages if isinstance(m, AssistantMessage) and m.content]
    assert len(final) == 1
    assert all(name != "planner" for _, name, _ in events.events)


def test_cancel_event_stops_before_next_request() -> None:
    """A set cancel event ends the session with the cancellation message."""

    provider = ScriptedProvider([text("never sent")])
    cancel = threading.Event()
    cancel.set()
    session = _session("hi")

    answer = TurnEngine(provider).run(session, cancel_event=cancel)

    assert answer == CANCELLED_MESSAGE
    assert session.error == CANCELLED_MESSAGE
    assert provider.requests == []
