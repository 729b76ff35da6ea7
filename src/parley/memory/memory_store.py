"""
Persist and replay conversation transcripts.

Each conversation lives in ``<root>/<conversation_id>.json``:

    {"agent": "<agent name>", "messages": [{"role": ..., "content": ..., ...}, ...]}

Saves always rewrite the whole transcript (never append), through a temporary file and an atomic
rename.  Loading rebuilds typed messages and replays the observability events a fresh session would
have produced, without executing any tool.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Tuple,
)

from pydantic import ValidationError

from parley.agent.events import (
    MESSAGE,
    TOOL_REQUEST,
    TOOL_RESULT,
    NotificationSink,
    notify,
)
from parley.core.schema import (
    AssistantMessage,
    Message,
    SystemMessage,
    ToolMessage,
    UserMessage,
    dump_messages,
    parse_messages,
)

logger = logging.getLogger(__name__)


class ReplayDecodeError(RuntimeError):
    """A persisted transcript could not be decoded."""


class ConversationStore:
    """Directory of conversation transcripts keyed by caller-assigned ids."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def path_for(self, conversation_id: str) -> Path:
        if not conversation_id or "/" in conversation_id or conversation_id.startswith("."):
            raise ValueError(f"Invalid conversation id: {conversation_id!r}")
        return self.root / f"{conversation_id}.json"

    def exists(self, conversation_id: str) -> bool:
        return self.path_for(conversation_id).exists()

    def list_ids(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))

    # ------------------------------------------------------------------ #
    # Save
    # ------------------------------------------------------------------ #
    def save(self, conversation_id: str, messages: List[Message], agent: str = "answers") -> Path:
        """Overwrite the transcript of *conversation_id* with *messages*."""
        path = self.path_for(conversation_id)
        payload = {"agent": agent, "messages": dump_messages(messages)}
        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=f".{conversation_id}-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        logger.debug("Conversation saved to %s (%d messages)", path, len(messages))
        return path

    # ------------------------------------------------------------------ #
    # Load
    # ------------------------------------------------------------------ #
    def read(self, conversation_id: str) -> Tuple[float, List[Message]]:
        """
        Return ``(mtime, messages)`` for *conversation_id*.

        Raises
        ------
        FileNotFoundError
            If the conversation does not exist.
        ReplayDecodeError
            If the file is not a valid transcript.
        """
        path = self.path_for(conversation_id)
        timestamp = path.stat().st_mtime
        try:
            with path.open("r", encoding="utf-8") as f:
                payload: Dict[str, Any] = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ReplayDecodeError(f"{path} is not a valid JSON transcript: {exc}") from exc

        if not isinstance(payload, dict) or not isinstance(payload.get("messages"), list):
            raise ReplayDecodeError(f"{path} has no 'messages' list")
        try:
            messages = parse_messages(payload["messages"])
        except ValidationError as exc:
            raise ReplayDecodeError(f"{path} contains an invalid message: {exc}") from exc
        return timestamp, messages

    def load(
        self, conversation_id: str, sink: Optional[NotificationSink] = None
    ) -> List[Message]:
        """Read *conversation_id* and replay its events into *sink*."""
        _, messages = self.read(conversation_id)
        replay_conversation(messages, sink)
        return messages


def _decode_args(arguments: str) -> Optional[Dict[str, Any]]:
    try:
        args = json.loads(arguments) if arguments else {}
    except json.JSONDecodeError:
        return None
    return args if isinstance(args, dict) else None


def replay_conversation(messages: List[Message], sink: Optional[NotificationSink]) -> None:
    """
    Re-emit the events implied by *messages* so a resumed session narrates like a fresh one.

    The first message is the system prompt and is not narrated.  Later system messages are planner
    notes.  Tools are never executed.
    """
    if sink is None:
        return

    args_by_id: Dict[str, Dict[str, Any]] = {}
    for msg in messages:
        if isinstance(msg, AssistantMessage) and msg.tool_calls:
            for call in msg.tool_calls:
                args_by_id[call.id] = _decode_args(call.arguments) or {}

    for msg in messages[1:]:
        if isinstance(msg, AssistantMessage) and msg.tool_calls:
            for call in msg.tool_calls:
                args = _decode_args(call.arguments)
                if args is not None:
                    notify(sink, TOOL_REQUEST, call.name, args)
        elif isinstance(msg, ToolMessage):
            notify(sink, TOOL_RESULT, msg.name, args_by_id.get(msg.tool_call_id, {}), msg.content)
        elif isinstance(msg, SystemMessage):
            notify(sink, TOOL_RESULT, "planner", {}, msg.content)
        elif isinstance(msg, (AssistantMessage, UserMessage)):
            notify(sink, MESSAGE, msg.role, msg.content or "")
