"""Main orchestration loop for Parley: the turn engine."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from parley.agent.events import NotificationSink
from parley.agent.provider import (
    ChatProvider,
    ProviderError,
    format_provider_error,
)
from parley.agent.tool_executor import ToolDispatchPool
from parley.core.schema import (
    AssistantMessage,
    ToolCallRequest,
)
from parley.core.session import Session

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Request cancelled."


class Checkpoints:
    """Injection points around the turn loop.  The base class does nothing."""

    def initial(self, session: Session) -> None:
        """Before the first turn."""

    def checkin(self, session: Session) -> None:
        """Before a new turn that follows a completed tool-call round."""

    def finish(self, session: Session) -> None:
        """After the loop produced a textual answer."""


# ---------------------------------------------------------------------------
# Turn engine
# ---------------------------------------------------------------------------
class TurnEngine:
    """
    Drives request/response cycles with a :class:`ChatProvider` until a textual answer.

    Tool-call replies are executed through a :class:`ToolDispatchPool` scoped to one round; the
    assistant tool-call message and one tool response per request (in request order) are appended
    together after the whole round has finished.  Provider errors end the loop with a diagnostic
    assistant message; there is no retry here.
    """

    def __init__(
        self,
        provider: ChatProvider,
        sink: Optional[NotificationSink] = None,
        max_workers: int = 4,
        tool_timeout: Optional[float] = None,
    ) -> None:
        self.provider = provider
        self.sink = sink
        self.max_workers = max_workers
        self.tool_timeout = tool_timeout

    def run(
        self,
        session: Session,
        checkpoints: Optional[Checkpoints] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Loop until *session* has an answer and return it.  Never raises provider errors."""
        checkpoints = checkpoints or Checkpoints()
        checkpoints.initial(session)

        turns = 0
        while True:
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Session cancelled after %d turn(s)", turns)
                return self._fail(session, CANCELLED_MESSAGE)

            turns += 1
            try:
                result = self.provider.complete(
                    session.model,
                    session.messages,
                    session.tools.specs(),
                    session.max_tokens,
                )
            except ProviderError as exc:
                logger.warning("Provider error on turn %d: %s", turns, exc)
                return self._fail(session, format_provider_error(exc))

            if result.tool_calls:
                self.handle_tool_calls(session, result.tool_calls)
                checkpoints.checkin(session)
                continue

            text = result.text or ""
            session.append(AssistantMessage(content=text))
            session.response = text
            logger.info("Session answered after %d turn(s)", turns)
            break

        checkpoints.finish(session)
        return session.response or ""

    def handle_tool_calls(self, session: Session, requests: list[ToolCallRequest]) -> None:
        """Run one round of tool calls and merge the results into *session*."""
        pool = ToolDispatchPool(
            session.tools, sink=self.sink, max_workers=self.max_workers, timeout=self.tool_timeout
        )
        pairs = pool.run(requests)
        session.append(AssistantMessage(tool_calls=list(requests)))
        session.extend([response for _, response in pairs])

    @staticmethod
    def _fail(session: Session, diagnostic: str) -> str:
        session.append(AssistantMessage(content=diagnostic))
        session.response = diagnostic
        session.error = diagnostic
        return diagnostic
