"""
Notification sinks for tool lifecycle events.

Sinks are purely informational: every hook receives ``(name, args, outcome)`` and may return a
``(label, detail)`` note for display.  :func:`notify` is the only way the core fires a hook, and it
guarantees that a misbehaving sink can never change control flow or results.
"""

import json
import logging
from typing import (
    Any,
    List,
    Mapping,
    Optional,
    Tuple,
)

from parley.common import (
    AnsiColors,
    colored_print,
)
from parley.tools import ToolRegistry

logger = logging.getLogger(__name__)

Note = Tuple[str, str]

TOOL_REQUEST = "tool_request"
TOOL_RESULT = "tool_result"
TOOL_ERROR = "tool_error"
MESSAGE = "message"

_PREVIEW_CHARS = 200


def _preview(text: str) -> str:
    return text if len(text) <= _PREVIEW_CHARS else text[:_PREVIEW_CHARS] + "..."


class NotificationSink:
    """Base sink: all hooks are no-ops."""

    def on_tool_request(self, name: str, args: Mapping[str, Any]) -> Optional[Note]:
        return None

    def on_tool_result(self, name: str, args: Mapping[str, Any], result: str) -> Optional[Note]:
        return None

    def on_tool_error(self, name: str, args: Any, reason: str) -> Optional[Note]:
        return None

    def on_message(self, role: str, content: str) -> None:
        return None

    def display(self, event: str, note: Note) -> None:
        logger.info("%s: %s", *note)


def notify(sink: Optional[NotificationSink], event: str, *args: Any) -> None:
    """Fire hook ``on_<event>`` on *sink* and display any note it returns."""
    if sink is None:
        return
    try:
        note = getattr(sink, f"on_{event}")(*args)
        if note:
            sink.display(event, note)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Notification hook '%s' failed", event)


class ConsoleNotifier(NotificationSink):
    """Prints tool activity to the terminal, using the tools' own display hooks when present."""

    _COLORS = {
        TOOL_REQUEST: AnsiColors.BLUE,
        TOOL_RESULT: AnsiColors.GREEN,
        TOOL_ERROR: AnsiColors.RED,
    }

    def __init__(self, registry: Optional[ToolRegistry] = None, show_messages: bool = False) -> None:
        self.registry = registry
        self.show_messages = show_messages

    def on_tool_request(self, name: str, args: Mapping[str, Any]) -> Optional[Note]:
        tool = self.registry.get(name) if self.registry else None
        if tool and tool.describe_request:
            return tool.describe_request(args)
        return name, json.dumps(args, ensure_ascii=False, default=str)

    def on_tool_result(self, name: str, args: Mapping[str, Any], result: str) -> Optional[Note]:
        tool = self.registry.get(name) if self.registry else None
        if tool and tool.describe_result:
            return tool.describe_result(args, result)
        return f"{name} result", _preview(result)

    def on_tool_error(self, name: str, args: Any, reason: str) -> Optional[Note]:
        return f"Error calling {name}", _preview(reason)

    def on_message(self, role: str, content: str) -> None:
        if self.show_messages:
            color = AnsiColors.BLUE if role == "user" else AnsiColors.YELLOW
            colored_print(f"{'You' if role == 'user' else 'Assistant'}: {content}", color)

    def display(self, event: str, note: Note) -> None:
        label, detail = note
        colored_print(f"{label} {detail}".rstrip(), self._COLORS.get(event, AnsiColors.YELLOW))


class EventLog(NotificationSink):
    """Records every event; used by the HTTP API and handy for inspection."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, str, Any]] = []

    def on_tool_request(self, name: str, args: Mapping[str, Any]) -> Optional[Note]:
        self.events.append((TOOL_REQUEST, name, dict(args)))
        return None

    def on_tool_result(self, name: str, args: Mapping[str, Any], result: str) -> Optional[Note]:
        self.events.append((TOOL_RESULT, name, result))
        return None

    def on_tool_error(self, name: str, args: Any, reason: str) -> Optional[Note]:
        self.events.append((TOOL_ERROR, name, reason))
        return None
