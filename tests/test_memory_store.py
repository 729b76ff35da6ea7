"""
Tests for conversation persistence, replay and the settings file.

Run with:
$ pytest -q
"""

import json

import pytest

from fakes import call

from parley.agent.events import (
    MESSAGE,
    TOOL_REQUEST,
    TOOL_RESULT,
    NotificationSink,
)
from parley.core.schema import (
    AssistantMessage,
    SystemMessage,
    ToolMessage,
    UserMessage,
)
from parley.memory.memory_store import (
    ConversationStore,
    ReplayDecodeError,
)
from parley.memory.settings_store import (
    SettingsError,
    SettingsStore,
)


class RecordingSink(NotificationSink):
    def __init__(self) -> None:
        self.events = []

    def on_tool_request(self, name, args):
        self.events.append((TOOL_REQUEST, name, dict(args)))

    def on_tool_result(self, name, args, result):
        self.events.append((TOOL_RESULT, name, dict(args), result))

    def on_message(self, role, content):
        self.events.append((MESSAGE, role, content))


def _transcript():
    return [
        SystemMessage(content="You are Parley."),
        UserMessage(content="what is in x.py?"),
        AssistantMessage(tool_calls=[call("c1", "file_contents", {"path": "x.py"})]),
        ToolMessage(tool_call_id="c1", name="file_contents", content="print('hi')"),
        AssistantMessage(content="It prints hi."),
        SystemMessage(content="Saved 1 fact about x.py"),
    ]


def test_round_trip_is_byte_identical(tmp_path) -> None:
    """save(load(x)) reproduces the file exactly."""

    store = ConversationStore(tmp_path)
    path = store.save("conv1", _transcript())
    original = path.read_bytes()

    _, messages = store.read("conv1")
    store.save("conv1", messages)

    assert path.read_bytes() == original
    assert messages == _transcript()


def test_saved_file_layout(tmp_path) -> None:
    store = ConversationStore(tmp_path)
    payload = json.loads(store.save("conv1", _transcript(), agent="answers").read_text())

    assert payload["agent"] == "answers"
    assert payload["messages"][2]["tool_calls"][0]["function"]["name"] == "file_contents"
    assert "content" not in payload["messages"][2]
    assert store.list_ids() == ["conv1"]


def test_save_overwrites(tmp_path) -> None:
    store = ConversationStore(tmp_path)
    store.save("conv1", _transcript())
    store.save("conv1", _transcript()[:2])

    _, messages = store.read("conv1")

    assert len(messages) == 2


def test_replay_narrates_without_executing_tools(tmp_path) -> None:
    """Replay re-emits events in order, skips the opening system prompt and runs no tool."""

    store = ConversationStore(tmp_path)
    store.save("conv1", _transcript())
    sink = RecordingSink()

    messages = store.load("conv1", sink)

    assert len(messages) == 6
    assert sink.events == [
        (MESSAGE, "user", "what is in x.py?"),
        (TOOL_REQUEST, "file_contents", {"path": "x.py"}),
        (TOOL_RESULT, "file_contents", {"path": "x.py"}, "print('hi')"),
        (MESSAGE, "assistant", "It prints hi."),
        (TOOL_RESULT, "planner", {}, "Saved 1 fact about x.py"),
    ]


def test_malformed_json_raises(tmp_path) -> None:
    (tmp_path / "bad.json").write_text("{not json", encoding="utf-8")

    with pytest.raises(ReplayDecodeError):
        ConversationStore(tmp_path).read("bad")


def test_non_utf8_transcript_raises(tmp_path) -> None:
    """Undecodable bytes are a corrupt transcript, not a missing one."""

    (tmp_path / "bad.json").write_bytes(b'{"agent": "x", "messages": [\xff\xfe]}')

    with pytest.raises(ReplayDecodeError):
        ConversationStore(tmp_path).read("bad")


def test_unknown_role_raises(tmp_path) -> None:
    (tmp_path / "bad.json").write_text(
        json.dumps({"agent": "answers", "messages": [{"role": "robot", "content": "x"}]}),
        encoding="utf-8",
    )

    with pytest.raises(ReplayDecodeError):
        ConversationStore(tmp_path).read("bad")


def test_missing_messages_raises(tmp_path) -> None:
    (tmp_path / "bad.json").write_text(json.dumps({"agent": "answers"}), encoding="utf-8")

    with pytest.raises(ReplayDecodeError):
        ConversationStore(tmp_path).read("bad")


def test_missing_conversation(tmp_path) -> None:
    store = ConversationStore(tmp_path)

    assert not store.exists("nope")
    with pytest.raises(FileNotFoundError):
        store.read("nope")


def test_invalid_conversation_id(tmp_path) -> None:
    with pytest.raises(ValueError):
        ConversationStore(tmp_path).path_for("../escape")


# ---------------------------------------------------------------------------
# Settings file
# ---------------------------------------------------------------------------
def test_settings_store_created_empty(tmp_path) -> None:
    path = tmp_path / "nested" / "settings.json"
    SettingsStore(path)

    assert json.loads(path.read_text()) == {}


def test_settings_store_get_set_delete(tmp_path) -> None:
    path = tmp_path / "settings.json"
    store = SettingsStore(path)

    store.set("last_thread_id", "thread_9")
    assert SettingsStore(path).get("last_thread_id") == "thread_9"

    store.delete("last_thread_id")
    store.delete("never_set")
    assert store.get("last_thread_id") is None
    assert store.get("last_thread_id", "fallback") == "fallback"
    assert json.loads(path.read_text()) == {}


def test_settings_store_rejects_non_object(tmp_path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("[]", encoding="utf-8")

    with pytest.raises(SettingsError):
        SettingsStore(path).get("anything")


def test_settings_store_rejects_malformed_json(tmp_path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")
    store = SettingsStore(path)

    with pytest.raises(SettingsError):
        store.get("anything")
    with pytest.raises(SettingsError):
        store.set("last_thread_id", "thread_1")
