"""
Model provider interface for Parley (direct chat-completion protocol).

This module is the only place that *directly* calls a chat-completion endpoint.  Everything else
(turn engine, planner, tools, memory) stays model-agnostic and only sees
:class:`~parley.core.schema.CompletionResult` values.

We support two back-ends out of the box:

1. **OpenAI** chat completions with function calling.
2. **Anthropic** messages API with tool use.

Additional providers can be added by subclassing :class:`ChatProvider` and registering via
:func:`register_provider`.  The hosted thread/run protocol lives in :mod:`parley.agent.hosted`.
"""

import json
import logging
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Type,
)

from parley.core.schema import (
    AssistantMessage,
    CompletionResult,
    Message,
    SystemMessage,
    ToolCallRequest,
    ToolMessage,
    ToolSpec,
    UserMessage,
)

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """Transport failure or explicit error payload returned by the model provider."""

    def __init__(
        self, message: str, http_status: Optional[int] = None, code: Optional[str] = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.http_status = http_status
        self.code = code


def format_provider_error(exc: ProviderError) -> str:
    """Render *exc* as the diagnostic answer returned to callers."""
    if exc.http_status is not None:
        lines = [
            "I encountered an error while processing your request.",
            "",
            f"- HTTP Status: {exc.http_status}",
        ]
        if exc.code:
            lines.append(f"- Error code: {exc.code}")
        lines.append(f"- Message: {exc.message}")
        return "\n".join(lines)
    return (
        "I encountered an error while processing your request.\n\n"
        "The error message was:\n\n"
        f"{exc.message}"
    )


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PROVIDER_REGISTRY: dict[str, Type["ChatProvider"]] = {}


def register_provider(name: str) -> Callable:
    """Decorator to register a provider class under *name*."""

    def wrapper(cls: Type["ChatProvider"]) -> Type["ChatProvider"]:
        _PROVIDER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_provider(name: str, **kwargs: Any) -> "ChatProvider":
    """
    Factory that returns an instantiated provider.

    Raises
    ------
    ValueError
        If no provider is registered under *name*.
    """
    cls = _PROVIDER_REGISTRY.get(name.lower())
    if cls is None:
        raise ValueError(f"Provider '{name}' is not registered.")
    return cls(**kwargs)


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class ChatProvider(ABC):
    """Abstract provider: full message history + tool specs -> text or tool calls."""

    @abstractmethod
    def complete(
        self,
        model: str,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec] = (),
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        """
        Request one model turn.

        Raises
        ------
        ProviderError
            On transport failures or error payloads.
        """


# ---------------------------------------------------------------------------
# Concrete providers
# ---------------------------------------------------------------------------
def to_openai_message(msg: Message) -> Dict[str, Any]:
    """Wire form of *msg* for the chat completions endpoint."""
    if isinstance(msg, ToolMessage):
        return {"role": "tool", "tool_call_id": msg.tool_call_id, "content": msg.content}
    return msg.model_dump(exclude_none=True)


@register_provider("openai")
class OpenAIChatProvider(ChatProvider):
    """OpenAI chat completions with function calling."""

    def __init__(self, api_key: str | None = None, timeout: float = 45.0, client: Any = None):
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._client = openai.OpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client

    def complete(
        self,
        model: str,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec] = (),
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        import openai  # pylint: disable=import-outside-toplevel

        request: Dict[str, Any] = {
            "model": model,
            "messages": [to_openai_message(m) for m in messages],
        }
        if tools:
            request["tools"] = [spec.to_function() for spec in tools]

        try:
            resp = self._get_client().chat.completions.create(**request)
        except openai.APIStatusError as exc:
            logger.error("OpenAI request failed (%s): %s", exc.status_code, exc.message)
            raise ProviderError(
                exc.message, http_status=exc.status_code, code=getattr(exc, "code", None)
            ) from exc
        except openai.OpenAIError as exc:
            logger.error("OpenAI request error: %s", exc)
            raise ProviderError(str(exc)) from exc

        message = resp.choices[0].message
        if message.tool_calls:
            calls = [
                ToolCallRequest.build(tc.id, tc.function.name, tc.function.arguments or "")
                for tc in message.tool_calls
            ]
            logger.debug("OpenAI requested %d tool call(s)", len(calls))
            return CompletionResult(tool_calls=calls)

        logger.debug("OpenAI response: %s", message.content)
        return CompletionResult(text=message.content or "")


def _append_block(converted: List[Dict[str, Any]], role: str, block: Dict[str, Any]) -> None:
    """Append *block*, merging into the previous message when the role repeats."""
    if converted and converted[-1]["role"] == role:
        converted[-1]["content"].append(block)
    else:
        converted.append({"role": role, "content": [block]})


def to_anthropic_messages(messages: Sequence[Message]) -> tuple[str, List[Dict[str, Any]]]:
    """Split *messages* into Anthropic's ``system`` string and alternating turns."""
    system_parts: List[str] = []
    converted: List[Dict[str, Any]] = []
    for msg in messages:
        if isinstance(msg, SystemMessage):
            system_parts.append(msg.content)
        elif isinstance(msg, UserMessage):
            _append_block(converted, "user", {"type": "text", "text": msg.content})
        elif isinstance(msg, ToolMessage):
            _append_block(
                converted,
                "user",
                {"type": "tool_result", "tool_use_id": msg.tool_call_id, "content": msg.content},
            )
        elif isinstance(msg, AssistantMessage) and msg.tool_calls:
            for call in msg.tool_calls:
                try:
                    tool_input = json.loads(call.arguments) if call.arguments else {}
                except json.JSONDecodeError:
                    tool_input = {}
                _append_block(
                    converted,
                    "assistant",
                    {"type": "tool_use", "id": call.id, "name": call.name, "input": tool_input},
                )
        elif isinstance(msg, AssistantMessage) and msg.content:
            _append_block(converted, "assistant", {"type": "text", "text": msg.content})
    return "\n\n".join(system_parts), converted


@register_provider("anthropic")
class AnthropicChatProvider(ChatProvider):
    """Anthropic Claude messages API with tool use."""

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float = 45.0,
        client: Any = None,
        max_output_tokens: int = 8192,
    ):
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self._max_output_tokens = max_output_tokens

    def _get_client(self) -> Any:
        if self._client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            self._client = anthropic.Anthropic(api_key=self._api_key, timeout=self._timeout)
        return self._client

    def complete(
        self,
        model: str,
        messages: Sequence[Message],
        tools: Sequence[ToolSpec] = (),
        max_tokens: Optional[int] = None,
    ) -> CompletionResult:
        import anthropic  # pylint: disable=import-outside-toplevel

        system_prompt, converted = to_anthropic_messages(messages)
        request: Dict[str, Any] = {
            "model": model,
            "max_tokens": self._max_output_tokens,
            "messages": converted,
        }
        if system_prompt:
            request["system"] = system_prompt
        if tools:
            request["tools"] = [
                {"name": s.name, "description": s.description, "input_schema": s.parameters}
                for s in tools
            ]

        try:
            response = self._get_client().messages.create(**request)
        except anthropic.APIStatusError as exc:
            logger.error("Anthropic request failed (%s): %s", exc.status_code, exc.message)
            body = exc.body if isinstance(exc.body, dict) else {}
            code = (body.get("error") or {}).get("type")
            raise ProviderError(exc.message, http_status=exc.status_code, code=code) from exc
        except anthropic.AnthropicError as exc:
            logger.error("Anthropic request error: %s", exc)
            raise ProviderError(str(exc)) from exc

        calls = [
            ToolCallRequest.build(block.id, block.name, json.dumps(block.input))
            for block in response.content
            if block.type == "tool_use"
        ]
        if calls:
            logger.debug("Anthropic requested %d tool call(s)", len(calls))
            return CompletionResult(tool_calls=calls)

        text = "".join(block.text for block in response.content if block.type == "text")
        logger.debug("Anthropic response: %s", text)
        return CompletionResult(text=text)
