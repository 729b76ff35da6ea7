"""
Dispatches tool calls registered in a :class:`~parley.tools.ToolRegistry` and wraps errors.

A :class:`ToolDispatchPool` runs one batch of tool-call requests with bounded parallelism.  Tool
problems never escape the pool: unknown tools, malformed or incomplete arguments and failures inside
the tool all become ordinary tool-response text so the model can correct itself on its next turn.
"""

import inspect
import json
import logging
import time
from concurrent.futures import (
    Future,
    ThreadPoolExecutor,
)
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from parley.agent.events import (
    TOOL_ERROR,
    TOOL_REQUEST,
    TOOL_RESULT,
    NotificationSink,
    notify,
)
from parley.core.schema import (
    ToolCallRequest,
    ToolMessage,
)
from parley.tools import (
    Tool,
    ToolRegistry,
)

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


class UnknownToolError(ToolExecutionError):
    """The model named a tool that is not in the registry."""

    def __init__(self, tool: str) -> None:
        super().__init__(f"Tool '{tool}' is not registered.")
        self.tool = tool


class ToolArgumentError(ToolExecutionError):
    """The argument payload is malformed or lacks a required key."""

    def __init__(self, tool: str, message: str, key: Optional[str] = None) -> None:
        super().__init__(message)
        self.tool = tool
        self.key = key


# ---------------------------------------------------------------------------
# Argument handling and result serialisation
# ---------------------------------------------------------------------------
def decode_arguments(tool: str, payload: str) -> Dict[str, Any]:
    """Decode the raw argument string of a call into a dict."""
    if not payload or not payload.strip():
        return {}
    try:
        args = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ToolArgumentError(tool, f"Arguments are not valid JSON: {exc}") from exc
    if not isinstance(args, dict):
        raise ToolArgumentError(tool, "Arguments must be a JSON object.")
    return args


def check_required(registry: ToolRegistry, name: str, args: Mapping[str, Any]) -> Tool:
    """
    Ensure every required key of *name* is present and return the tool.

    A key that is absent, ``null`` or an empty string counts as missing.

    Raises
    ------
    UnknownToolError
        If *name* is not registered.
    ToolArgumentError
        Naming the first missing key.
    """
    tool = registry.get(name)
    if tool is None:
        raise UnknownToolError(name)
    for key in tool.spec.required:
        value = args.get(key)
        if value is None or value == "":
            raise ToolArgumentError(name, f"Missing required argument: {key}", key=key)
    return tool


def serialize_result(name: str, result: Any) -> str:
    """Canonical text for a tool result: strings pass through, anything else is JSON."""
    if isinstance(result, str):
        return result
    if result is None:
        return f"{name} completed successfully"
    return json.dumps(result, ensure_ascii=False, default=str)


def execute_tool(registry: ToolRegistry, name: str, args: Dict[str, Any] | None = None) -> Any:
    """
    Look up *name* in *registry* and invoke it with *args*.

    Parameters
    ----------
    registry:
        Where to find the tool.
    name:
        The registered tool name.
    args:
        Keyword arguments to pass verbatim to the tool function.  If *None*,
        an empty dict is assumed.

    Returns
    -------
    Any
        Whatever the tool function returns.

    Raises
    ------
    UnknownToolError
        If the tool is missing.
    ToolArgumentError
        If a required argument is missing or the call signature does not match.
    ToolExecutionError
        If the tool invocation raises an exception.
    """

    if args is None:
        args = {}

    tool = check_required(registry, name, args)
    try:
        inspect.signature(tool.fn).bind(**args)
    except TypeError as exc:
        # Signature mismatch: extra or misnamed keys.
        logger.warning("Argument error for tool '%s': %s", name, exc)
        raise ToolArgumentError(name, f"Invalid arguments for tool '{name}': {exc}") from exc

    try:
        logger.debug("Executing tool '%s' with args=%s", name, args)
        return tool.call(args)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", name)
        raise ToolExecutionError(f"Tool '{name}' raised an error: {exc}") from exc


# ---------------------------------------------------------------------------
# Diagnostics fed back to the model
# ---------------------------------------------------------------------------
def unknown_tool_message(request: ToolCallRequest) -> str:
    return (
        f"Your attempt to call {request.name} failed because the tool '{request.name}' is unknown.\n"
        f"Your tool call request supplied the following arguments: {request.arguments}.\n"
        "Please consult the specifications for your available tools and use only the tools "
        "that are listed."
    )


def missing_argument_message(
    registry: ToolRegistry, request: ToolCallRequest, key: str
) -> str:
    tool = registry.get(request.name)
    spec = json.dumps(tool.spec.to_function()) if tool else "unavailable"
    return (
        f"Your attempt to call {request.name} failed because it was missing a required "
        f"argument, '{key}'.\n"
        f"Your tool call request supplied the following arguments: {request.arguments}.\n"
        f"The parameter `{key}` must be included and cannot be `null` or an empty string.\n"
        f"The correct specification for the tool call is: {spec}"
    )


def invalid_arguments_message(
    registry: ToolRegistry, request: ToolCallRequest, reason: str
) -> str:
    tool = registry.get(request.name)
    spec = json.dumps(tool.spec.to_function()) if tool else "unavailable"
    return (
        f"Your attempt to call {request.name} failed: {reason}\n"
        f"Your tool call request supplied the following arguments: {request.arguments}.\n"
        f"The correct specification for the tool call is: {spec}"
    )


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------
class ToolDispatchPool:
    """
    Executes a batch of tool-call requests with at most *max_workers* running at once.

    Each worker returns an immutable ``(request, response)`` pair; :meth:`run` hands back the pairs
    in request order only once the whole batch has finished, so callers never see a partial batch.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        sink: Optional[NotificationSink] = None,
        max_workers: int = 4,
        timeout: Optional[float] = None,
    ) -> None:
        self.registry = registry
        self.sink = sink
        self.max_workers = max(1, max_workers)
        self.timeout = timeout

    def run(self, requests: Sequence[ToolCallRequest]) -> List[Tuple[ToolCallRequest, ToolMessage]]:
        """Execute *requests* and return one ``(request, response)`` pair per request, in order.

        *timeout* bounds the whole batch.  Calls still running at the deadline are answered with a
        timeout diagnostic and their workers are abandoned.
        """
        if not requests:
            return []

        logger.info(
            "Dispatching %d tool call(s): %s", len(requests), [r.name for r in requests]
        )
        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(requests)), thread_name_prefix="parley-tool"
        )
        futures: List[Future] = [executor.submit(self.dispatch, r) for r in requests]
        deadline = None if self.timeout is None else time.monotonic() + self.timeout
        results: List[Tuple[ToolCallRequest, ToolMessage]] = []
        timed_out = False
        try:
            for request, future in zip(requests, futures):
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                try:
                    results.append(future.result(timeout=remaining))
                except FutureTimeoutError:
                    timed_out = True
                    reason = f"Tool '{request.name}' timed out after {self.timeout} seconds."
                    logger.warning("%s", reason)
                    notify(self.sink, TOOL_ERROR, request.name, request.arguments, reason)
                    results.append((request, self._response(request, reason)))
        finally:
            executor.shutdown(wait=not timed_out, cancel_futures=True)
        return results

    def dispatch(self, request: ToolCallRequest) -> Tuple[ToolCallRequest, ToolMessage]:
        """Execute a single request, converting every tool-level problem into response text."""
        try:
            output = self._perform(request)
        except UnknownToolError as exc:
            notify(self.sink, TOOL_ERROR, request.name, request.arguments, str(exc))
            output = unknown_tool_message(request)
        except ToolArgumentError as exc:
            notify(self.sink, TOOL_ERROR, request.name, request.arguments, str(exc))
            if exc.key is not None:
                output = missing_argument_message(self.registry, request, exc.key)
            else:
                output = invalid_arguments_message(self.registry, request, str(exc))
        except ToolExecutionError as exc:
            notify(self.sink, TOOL_ERROR, request.name, request.arguments, str(exc))
            output = str(exc)
        return request, self._response(request, output)

    def _perform(self, request: ToolCallRequest) -> str:
        if request.name not in self.registry:
            raise UnknownToolError(request.name)
        args = decode_arguments(request.name, request.arguments)
        check_required(self.registry, request.name, args)
        notify(self.sink, TOOL_REQUEST, request.name, args)
        output = serialize_result(request.name, execute_tool(self.registry, request.name, args))
        notify(self.sink, TOOL_RESULT, request.name, args, output)
        return output

    @staticmethod
    def _response(request: ToolCallRequest, content: str) -> ToolMessage:
        return ToolMessage(tool_call_id=request.id, name=request.name, content=content)
