"""
Hosted thread/run protocol.

Instead of sending the whole history every turn, the provider keeps a *thread* of messages and
executes *runs* of a pre-configured assistant against it.  The orchestrator polls the run, answers
tool calls the run is waiting on, and finally reads the assistant's messages back from the thread.
"""

import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from parley.agent.provider import ProviderError
from parley.core.schema import (
    RunSnapshot,
    ToolCallRequest,
)

logger = logging.getLogger(__name__)


class HostedProvider(ABC):
    """Operations of the hosted protocol.  Every method may raise :class:`ProviderError`."""

    @abstractmethod
    def create_thread(self) -> str:
        """Allocate a new thread and return its id."""

    @abstractmethod
    def add_user_message(self, thread_id: str, text: str) -> None:
        """Append a user message to *thread_id*."""

    @abstractmethod
    def create_run(self, thread_id: str, assistant_id: str) -> str:
        """Start a run of *assistant_id* on *thread_id* and return the run id."""

    @abstractmethod
    def get_run(self, thread_id: str, run_id: str) -> RunSnapshot:
        """Poll the current status of a run."""

    @abstractmethod
    def submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: Sequence[Dict[str, str]]
    ) -> None:
        """Submit ``{"tool_call_id", "output"}`` pairs for a run that requires action."""

    @abstractmethod
    def list_messages(self, thread_id: str) -> List[Dict[str, str]]:
        """Return the thread's messages, oldest first, as ``{"role", "text"}`` dicts."""

    def cancel_run(self, thread_id: str, run_id: str) -> None:
        """Best-effort cancellation; providers without support ignore it."""


class OpenAIAssistantsProvider(HostedProvider):
    """OpenAI Assistants API (threads, runs and tool outputs)."""

    def __init__(self, api_key: str | None = None, timeout: float = 45.0, client: Any = None):
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    def _threads(self) -> Any:
        if self._client is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._client = openai.OpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client.beta.threads

    def _call(self, what: str, fn: Any, *args: Any, **kwargs: Any) -> Any:
        import openai  # pylint: disable=import-outside-toplevel

        try:
            return fn(*args, **kwargs)
        except openai.APIStatusError as exc:
            logger.error("Assistants %s failed (%s): %s", what, exc.status_code, exc.message)
            raise ProviderError(
                exc.message, http_status=exc.status_code, code=getattr(exc, "code", None)
            ) from exc
        except openai.OpenAIError as exc:
            logger.error("Assistants %s error: %s", what, exc)
            raise ProviderError(str(exc)) from exc

    def create_thread(self) -> str:
        return self._call("create-thread", self._threads().create).id

    def add_user_message(self, thread_id: str, text: str) -> None:
        self._call(
            "add-message",
            self._threads().messages.create,
            thread_id=thread_id,
            role="user",
            content=text,
        )

    def create_run(self, thread_id: str, assistant_id: str) -> str:
        run = self._call(
            "create-run", self._threads().runs.create, thread_id=thread_id, assistant_id=assistant_id
        )
        return run.id

    def get_run(self, thread_id: str, run_id: str) -> RunSnapshot:
        run = self._call(
            "poll-run", self._threads().runs.retrieve, run_id=run_id, thread_id=thread_id
        )
        calls: List[ToolCallRequest] = []
        action = getattr(run, "required_action", None)
        if action is not None and action.submit_tool_outputs is not None:
            calls = [
                ToolCallRequest.build(tc.id, tc.function.name, tc.function.arguments or "")
                for tc in action.submit_tool_outputs.tool_calls
            ]
        error = None
        if getattr(run, "last_error", None) is not None:
            error = f"{run.last_error.code}: {run.last_error.message}"
        return RunSnapshot(id=run.id, status=run.status, tool_calls=calls, error=error)

    def submit_tool_outputs(
        self, thread_id: str, run_id: str, outputs: Sequence[Dict[str, str]]
    ) -> None:
        self._call(
            "submit-tool-outputs",
            self._threads().runs.submit_tool_outputs,
            run_id=run_id,
            thread_id=thread_id,
            tool_outputs=list(outputs),
        )

    def list_messages(self, thread_id: str) -> List[Dict[str, str]]:
        page = self._call(
            "list-messages", self._threads().messages.list, thread_id=thread_id, order="asc"
        )
        messages = []
        for msg in page.data:
            text = "".join(
                block.text.value for block in msg.content if getattr(block, "type", "") == "text"
            )
            messages.append({"role": msg.role, "text": text})
        return messages

    def cancel_run(self, thread_id: str, run_id: str) -> None:
        self._call("cancel-run", self._threads().runs.cancel, run_id=run_id, thread_id=thread_id)
