"""
Run-status poller for the hosted thread/run protocol.

State machine over :class:`~parley.core.schema.RunState`:

* ``queued`` / ``in_progress`` - poll again after ``poll_interval`` seconds.
* ``requires_action`` - execute the embedded batch of tool calls through a
  :class:`~parley.agent.tool_executor.ToolDispatchPool`, submit all outputs at once, keep polling.
* ``completed`` - read the thread back and join the assistant's messages with a blank line.
* ``failed`` or any status we do not recognise - terminal :class:`RunFailedError`.

Like the turn engine, :meth:`RunStatusPoller.ask` always resolves to text: provider and run errors
are rendered as diagnostics rather than raised.
"""

import logging
import threading
import time
from typing import (
    Callable,
    Dict,
    List,
    Optional,
)

from parley.agent.agent_loop import CANCELLED_MESSAGE
from parley.agent.events import NotificationSink
from parley.agent.hosted import HostedProvider
from parley.agent.provider import (
    ProviderError,
    format_provider_error,
)
from parley.agent.tool_executor import ToolDispatchPool
from parley.core.schema import (
    RunSnapshot,
    RunState,
)
from parley.memory.settings_store import (
    SettingsError,
    SettingsStore,
)
from parley.tools import ToolRegistry

logger = logging.getLogger(__name__)

LAST_THREAD_ID = "last_thread_id"


class RunFailedError(RuntimeError):
    """A hosted run ended in ``failed``, an unrecognised status, or missed its deadline."""

    def __init__(self, status: str, detail: Optional[str] = None) -> None:
        super().__init__(f"Run ended with status '{status}'" + (f": {detail}" if detail else ""))
        self.status = status
        self.detail = detail


def format_run_failure(exc: RunFailedError) -> str:
    lines = [
        "I encountered an error while processing your request.",
        "",
        f"- Run status: {exc.status}",
    ]
    if exc.detail:
        lines.append(f"- Message: {exc.detail}")
    return "\n".join(lines)


class _Cancelled(Exception):
    pass


class RunStatusPoller:
    """Answers questions through a hosted assistant, resolving its tool calls locally."""

    def __init__(
        self,
        provider: HostedProvider,
        registry: ToolRegistry,
        assistant_id: str,
        settings_store: Optional[SettingsStore] = None,
        sink: Optional[NotificationSink] = None,
        max_workers: int = 4,
        tool_timeout: Optional[float] = None,
        poll_interval: float = 0.5,
        poll_timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.assistant_id = assistant_id
        self.settings_store = settings_store
        self.sink = sink
        self.max_workers = max_workers
        self.tool_timeout = tool_timeout
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self._sleep = sleep
        self._clock = clock
        self._last_status: Optional[str] = None

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def ask(
        self,
        question: str,
        continue_last: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """Send *question* on a new (or the last) thread and return the assistant's reply."""
        self._last_status = None
        try:
            thread_id = self.thread_id(continue_last)
            self.provider.add_user_message(thread_id, question)
            run_id = self.provider.create_run(thread_id, self.assistant_id)
            self.poll(thread_id, run_id, cancel_event)
            return self.collect(thread_id)
        except _Cancelled:
            return CANCELLED_MESSAGE
        except RunFailedError as exc:
            logger.error("Hosted run failed: %s", exc)
            return format_run_failure(exc)
        except ProviderError as exc:
            logger.error("Hosted protocol error: %s", exc)
            return format_provider_error(exc)

    def thread_id(self, continue_last: bool = False) -> str:
        """Reuse the stored thread when asked to continue, otherwise allocate and remember one."""
        if continue_last and self.settings_store is not None:
            try:
                last = self.settings_store.get(LAST_THREAD_ID)
            except SettingsError as exc:
                logger.warning("Ignoring unreadable settings, starting a new thread: %s", exc)
                last = None
            if last:
                logger.info("Continuing thread %s", last)
                return last

        thread_id = self.provider.create_thread()
        if self.settings_store is not None:
            try:
                self.settings_store.set(LAST_THREAD_ID, thread_id)
            except SettingsError as exc:
                logger.warning("Could not remember thread %s: %s", thread_id, exc)
        logger.info("Started thread %s", thread_id)
        return thread_id

    def poll(
        self, thread_id: str, run_id: str, cancel_event: Optional[threading.Event] = None
    ) -> None:
        """Drive the run to ``completed``.  Raises :class:`RunFailedError` otherwise."""
        deadline = None if self.poll_timeout is None else self._clock() + self.poll_timeout
        while True:
            if cancel_event is not None and cancel_event.is_set():
                self._cancel(thread_id, run_id)
                raise _Cancelled()
            if deadline is not None and self._clock() >= deadline:
                self._cancel(thread_id, run_id)
                raise RunFailedError("timeout", f"no result after {self.poll_timeout} seconds")

            snapshot = self.provider.get_run(thread_id, run_id)
            state = RunState.parse(snapshot.status)

            if state in (RunState.QUEUED, RunState.IN_PROGRESS):
                self._status("Assistant is working")
                self._sleep(self.poll_interval)
            elif state is RunState.REQUIRES_ACTION:
                self._status("Running tool calls")
                outputs = self.tool_outputs(snapshot)
                self.provider.submit_tool_outputs(thread_id, run_id, outputs)
            elif state is RunState.COMPLETED:
                self._status("Run completed")
                return
            else:
                self._status(f"error! API run status: {snapshot.status}")
                raise RunFailedError(snapshot.status, snapshot.error)

    def tool_outputs(self, snapshot: RunSnapshot) -> List[Dict[str, str]]:
        """Execute the batch embedded in a ``requires_action`` snapshot."""
        pool = ToolDispatchPool(
            self.registry, sink=self.sink, max_workers=self.max_workers, timeout=self.tool_timeout
        )
        return [
            {"tool_call_id": request.id, "output": response.content}
            for request, response in pool.run(snapshot.tool_calls)
        ]

    def collect(self, thread_id: str) -> str:
        """Join the text of every assistant message on the thread with a blank line."""
        messages = self.provider.list_messages(thread_id)
        return "\n\n".join(m["text"] for m in messages if m.get("role") == "assistant")

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _status(self, msg: str) -> None:
        if msg != self._last_status:
            logger.info("%s", msg)
            self._last_status = msg

    def _cancel(self, thread_id: str, run_id: str) -> None:
        try:
            self.provider.cancel_run(thread_id, run_id)
        except ProviderError as exc:
            logger.warning("Could not cancel run %s: %s", run_id, exc)
