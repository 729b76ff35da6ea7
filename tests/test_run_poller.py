"""
Tests for the hosted run-status poller.

Run with:
$ pytest -q
"""

import json
import threading

from fakes import (
    ScriptedHostedProvider,
    call,
)

from parley.agent.agent_loop import CANCELLED_MESSAGE
from parley.agent.provider import ProviderError
from parley.agent.run_poller import (
    LAST_THREAD_ID,
    RunStatusPoller,
)
from parley.core.schema import RunSnapshot
from parley.memory.settings_store import SettingsStore
from parley.tools import ToolRegistry


def _registry() -> ToolRegistry:
    registry = ToolRegistry()

    @registry.register("list_files")
    def list_files() -> list:
        """List the project files."""
        return ["a.txt", "b.txt"]

    return registry


def _poller(provider, tmp_path, **kwargs) -> RunStatusPoller:
    kwargs.setdefault("sleep", lambda _: None)
    return RunStatusPoller(
        provider,
        _registry(),
        assistant_id="asst_1",
        settings_store=SettingsStore(tmp_path / "settings.json"),
        **kwargs,
    )


def test_full_run_submits_once_and_reads_once(tmp_path) -> None:
    """queued -> in_progress -> requires_action -> completed."""

    provider = ScriptedHostedProvider(
        [
            RunSnapshot(id="run_1", status="queued"),
            RunSnapshot(id="run_1", status="in_progress"),
            RunSnapshot(
                id="run_1",
                status="requires_action",
                tool_calls=[call("t1", "list_files"), call("t2", "nope")],
            ),
            RunSnapshot(id="run_1", status="completed"),
        ],
        replies=["first part", "second part"],
    )
    sleeps = []

    answer = _poller(provider, tmp_path, sleep=sleeps.append, poll_interval=0.25).ask("hi")

    assert answer == "first part\n\nsecond part"
    assert sleeps == [0.25, 0.25]
    assert len(provider.submissions) == 1
    assert provider.list_calls == 1
    _, run_id, outputs = provider.submissions[0]
    assert run_id == "run_1"
    assert [o["tool_call_id"] for o in outputs] == ["t1", "t2"]
    assert json.loads(outputs[0]["output"]) == ["a.txt", "b.txt"]
    assert "unknown" in outputs[1]["output"]


def test_failed_status_is_reported(tmp_path) -> None:
    """A failed run resolves to a diagnostic and never reads the thread."""

    provider = ScriptedHostedProvider(
        [RunSnapshot(id="run_1", status="failed", error="server_error")]
    )

    answer = _poller(provider, tmp_path).ask("hi")

    assert answer.startswith("I encountered an error while processing your request.")
    assert "failed" in answer
    assert "server_error" in answer
    assert provider.list_calls == 0


def test_unknown_status_is_terminal(tmp_path) -> None:
    """Statuses outside the known set end the run as failures."""

    provider = ScriptedHostedProvider([RunSnapshot(id="run_1", status="expired")])

    answer = _poller(provider, tmp_path).ask("hi")

    assert "expired" in answer
    assert provider.submissions == []
    assert provider.list_calls == 0


def test_new_thread_is_remembered_and_continued(tmp_path) -> None:
    """The created thread id is stored and reused when continuing."""

    provider = ScriptedHostedProvider([RunSnapshot(id="run_1", status="completed")])
    poller = _poller(provider, tmp_path)

    poller.ask("first")
    poller.ask("second", continue_last=True)
    poller.ask("third")

    assert provider.threads == ["thread_1", "thread_2"]
    assert [t for t, _ in provider.user_messages] == ["thread_1", "thread_1", "thread_2"]
    assert poller.settings_store.get(LAST_THREAD_ID) == "thread_2"


def test_continue_without_stored_thread_creates_one(tmp_path) -> None:
    provider = ScriptedHostedProvider([RunSnapshot(id="run_1", status="completed")])

    _poller(provider, tmp_path).ask("hi", continue_last=True)

    assert provider.threads == ["thread_1"]


def test_unreadable_settings_start_a_new_thread(tmp_path) -> None:
    """A corrupt settings file degrades to "no stored thread" instead of raising."""

    provider = ScriptedHostedProvider([RunSnapshot(id="run_1", status="completed")])
    poller = _poller(provider, tmp_path)
    (tmp_path / "settings.json").write_text("{not json", encoding="utf-8")

    answer = poller.ask("hi", continue_last=True)

    assert answer == "done"
    assert provider.threads == ["thread_1"]
    assert provider.user_messages == [("thread_1", "hi")]


def test_deadline_cancels_the_run(tmp_path) -> None:
    """A run that never finishes is cancelled once the poll deadline passes."""

    provider = ScriptedHostedProvider([RunSnapshot(id="run_1", status="in_progress")])
    now = [0.0]

    def sleep(seconds: float) -> None:
        now[0] += seconds

    poller = _poller(
        provider, tmp_path, sleep=sleep, clock=lambda: now[0], poll_interval=1.0, poll_timeout=5.0
    )

    answer = poller.ask("hi")

    assert "timeout" in answer
    assert provider.cancelled == ["run_1"]
    assert provider.list_calls == 0


def test_cancel_event(tmp_path) -> None:
    provider = ScriptedHostedProvider([RunSnapshot(id="run_1", status="in_progress")])
    cancel = threading.Event()
    cancel.set()

    answer = _poller(provider, tmp_path).ask("hi", cancel_event=cancel)

    assert answer == CANCELLED_MESSAGE
    assert provider.cancelled == ["run_1"]


def test_provider_error_becomes_diagnostic(tmp_path) -> None:
    """Protocol errors are rendered, not raised."""

    class BrokenProvider(ScriptedHostedProvider):
        def create_run(self, thread_id, assistant_id):
            raise ProviderError("no such assistant", http_status=404)

    answer = _poller(BrokenProvider([]), tmp_path).ask("hi")

    assert "HTTP Status: 404" in answer
    assert "no such assistant" in answer
