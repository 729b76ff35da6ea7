"""
Tests for the provider adapters, using stand-in SDK clients.

Run with:
$ pytest -q
"""

import json
from types import SimpleNamespace

import pytest

from fakes import call

from parley.agent.provider import (
    AnthropicChatProvider,
    OpenAIChatProvider,
    ProviderError,
    format_provider_error,
    load_provider,
    to_anthropic_messages,
    to_openai_message,
)
from parley.core.schema import (
    AssistantMessage,
    SystemMessage,
    ToolMessage,
    ToolSpec,
    UserMessage,
)


class _Completions:
    def __init__(self, message) -> None:
        self.message = message
        self.requests = []

    def create(self, **request):
        self.requests.append(request)
        return SimpleNamespace(choices=[SimpleNamespace(message=self.message)])


def _openai_client(message):
    completions = _Completions(message)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def test_load_provider() -> None:
    assert isinstance(load_provider("OpenAI", client=object()), OpenAIChatProvider)
    assert isinstance(load_provider("anthropic", client=object()), AnthropicChatProvider)
    with pytest.raises(ValueError):
        load_provider("nobody")


def test_openai_text_reply() -> None:
    client, completions = _openai_client(SimpleNamespace(content="hello", tool_calls=None))
    provider = OpenAIChatProvider(client=client)

    result = provider.complete("gpt-test", [UserMessage(content="hi")])

    assert result.text == "hello"
    assert result.tool_calls == []
    assert completions.requests[0]["messages"] == [{"role": "user", "content": "hi"}]
    assert "tools" not in completions.requests[0]


def test_openai_tool_calls_and_tool_specs() -> None:
    tool_call = SimpleNamespace(
        id="call_1", function=SimpleNamespace(name="list_files", arguments='{"path": "."}')
    )
    client, completions = _openai_client(SimpleNamespace(content=None, tool_calls=[tool_call]))
    spec = ToolSpec(name="list_files", description="List files")

    result = OpenAIChatProvider(client=client).complete(
        "gpt-test", [UserMessage(content="hi")], tools=[spec]
    )

    assert [(c.id, c.name, c.arguments) for c in result.tool_calls] == [
        ("call_1", "list_files", '{"path": "."}')
    ]
    assert completions.requests[0]["tools"] == [spec.to_function()]


def test_openai_tool_message_wire_form() -> None:
    msg = ToolMessage(tool_call_id="c1", name="list_files", content="[]")

    assert to_openai_message(msg) == {"role": "tool", "tool_call_id": "c1", "content": "[]"}


def test_anthropic_messages_merge_consecutive_roles() -> None:
    """Parallel tool calls and their results collapse into one turn per role."""

    system, converted = to_anthropic_messages(
        [
            SystemMessage(content="be brief"),
            UserMessage(content="hi"),
            AssistantMessage(
                tool_calls=[call("c1", "a", {"x": 1}), call("c2", "b")]
            ),
            ToolMessage(tool_call_id="c1", name="a", content="one"),
            ToolMessage(tool_call_id="c2", name="b", content="two"),
            UserMessage(content="From the Planner Agent: answer now"),
            AssistantMessage(content="done"),
        ]
    )

    assert system == "be brief"
    assert [m["role"] for m in converted] == ["user", "assistant", "user", "assistant"]
    assert [b["id"] for b in converted[1]["content"]] == ["c1", "c2"]
    assert converted[1]["content"][0]["input"] == {"x": 1}
    assert [b["type"] for b in converted[2]["content"]] == ["tool_result", "tool_result", "text"]


def test_anthropic_messages_skip_empty_assistant_text() -> None:
    """An empty assistant reply produces no text block, and no empty assistant turn."""

    _, converted = to_anthropic_messages(
        [
            UserMessage(content="hi"),
            AssistantMessage(content=""),
            UserMessage(content="still there?"),
            AssistantMessage(content="yes"),
        ]
    )

    assert [m["role"] for m in converted] == ["user", "assistant"]
    assert converted[0]["content"] == [
        {"type": "text", "text": "hi"},
        {"type": "text", "text": "still there?"},
    ]
    assert converted[1]["content"] == [{"type": "text", "text": "yes"}]


def test_anthropic_tool_use_reply() -> None:
    class _Messages:
        def __init__(self) -> None:
            self.requests = []

        def create(self, **request):
            self.requests.append(request)
            return SimpleNamespace(
                content=[
                    SimpleNamespace(type="text", text="let me look"),
                    SimpleNamespace(type="tool_use", id="tu_1", name="list_files", input={}),
                ]
            )

    messages = _Messages()
    provider = AnthropicChatProvider(client=SimpleNamespace(messages=messages))

    result = provider.complete(
        "claude-test",
        [SystemMessage(content="sys"), UserMessage(content="hi")],
        tools=[ToolSpec(name="list_files")],
    )

    assert [(c.id, c.name, json.loads(c.arguments)) for c in result.tool_calls] == [
        ("tu_1", "list_files", {})
    ]
    assert messages.requests[0]["system"] == "sys"
    assert messages.requests[0]["tools"][0]["input_schema"]["type"] == "object"


def test_format_provider_error() -> None:
    with_status = format_provider_error(ProviderError("slow down", http_status=429, code="rate"))
    without_status = format_provider_error(ProviderError("connection reset"))

    assert with_status.splitlines() == [
        "I encountered an error while processing your request.",
        "",
        "- HTTP Status: 429",
        "- Error code: rate",
        "- Message: slow down",
    ]
    assert without_status.endswith("The error message was:\n\nconnection reset")
