"""
Tool registry for Parley.

This module provides the :class:`ToolRegistry` that maps a tool name to its parameter contract and a
synchronous callable, plus a decorator to register tools.  The orchestration core only looks up
tools, validates required keys, invokes them and serialises whatever they return; it has no
knowledge of a tool's internals.

Tools are functions that are called with keyword arguments:

    @register_tool("my_tool")
    def my_tool(path: str, limit: int = 10) -> str:
        \"\"\"Describe what the tool does.\"\"\"
        ...

When no explicit parameter schema is given, one is derived from the function signature.
"""

import inspect
import logging
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    get_type_hints,
)

from parley.core.schema import ToolSpec

logger = logging.getLogger(__name__)

Note = Tuple[str, str]
"""A (label, detail) pair a tool may offer for display."""

_JSON_TYPES: Dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    list: "array",
    dict: "object",
}


class Tool:
    """A registered capability: spec, callable and optional display hooks."""

    def __init__(
        self,
        spec: ToolSpec,
        fn: Callable[..., Any],
        describe_request: Optional[Callable[[Mapping[str, Any]], Optional[Note]]] = None,
        describe_result: Optional[Callable[[Mapping[str, Any], str], Optional[Note]]] = None,
    ) -> None:
        self.spec = spec
        self.fn = fn
        self.describe_request = describe_request
        self.describe_result = describe_result

    @property
    def name(self) -> str:
        return self.spec.name

    def call(self, args: Mapping[str, Any]) -> Any:
        """Invoke the tool with *args* as keyword arguments."""
        return self.fn(**args)


def build_spec(name: str, fn: Callable[..., Any], description: Optional[str] = None) -> ToolSpec:
    """Derive a :class:`ToolSpec` from *fn*'s signature and docstring."""
    sig = inspect.signature(fn)
    type_hints = get_type_hints(fn)
    properties: Dict[str, Dict[str, Any]] = {}
    required: List[str] = []
    for param_name, param in sig.parameters.items():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        hint = type_hints.get(param_name)
        origin = getattr(hint, "__origin__", hint)
        properties[param_name] = {"type": _JSON_TYPES.get(origin, "string")}  # type: ignore[arg-type]
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    return ToolSpec(
        name=name,
        description=description or inspect.getdoc(fn) or "",
        parameters={"type": "object", "properties": properties, "required": required},
    )


class ToolRegistry:
    """Name -> :class:`Tool` lookup handed to a session."""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: Dict[str, Tool] = {}
        for tool in tools:
            self.add(tool)

    def add(self, tool: Tool) -> Tool:
        """
        Add *tool* to the registry.

        Raises
        ------
        ValueError
            If a tool with the same name is already registered.
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered.")
        logger.debug("Registering tool '%s'", tool.name)
        self._tools[tool.name] = tool
        return tool

    def register(
        self,
        name: str,
        description: Optional[str] = None,
        parameters: Optional[Dict[str, Any]] = None,
        describe_request: Optional[Callable[[Mapping[str, Any]], Optional[Note]]] = None,
        describe_result: Optional[Callable[[Mapping[str, Any], str], Optional[Note]]] = None,
    ) -> Callable:
        """
        Decorator registering a function as tool *name*.

        Parameters
        ----------
        name:
            Unique tool name offered to the model.
        description:
            Overrides the function docstring.
        parameters:
            Explicit JSON schema; derived from the signature when omitted.
        describe_request, describe_result:
            Optional display hooks returning a (label, detail) pair.
        """

        def wrapper(fn: Callable) -> Callable:
            if parameters is None:
                spec = build_spec(name, fn, description)
            else:
                spec = ToolSpec(
                    name=name,
                    description=description or inspect.getdoc(fn) or "",
                    parameters=parameters,
                )
            self.add(Tool(spec, fn, describe_request, describe_result))
            return fn

        return wrapper

    def get(self, name: str) -> Optional[Tool]:
        return self._tools.get(name)

    def specs(self) -> List[ToolSpec]:
        return [tool.spec for tool in self._tools.values()]

    def names(self) -> List[str]:
        return list(self._tools)

    def subset(self, *names: str) -> "ToolRegistry":
        """Return a new registry holding only *names* (unknown names are ignored)."""
        return ToolRegistry(self._tools[n] for n in names if n in self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)


TOOL_REGISTRY = ToolRegistry()
"""Default registry of tools offered to the coordinating agent."""


def register_tool(name: str, **kwargs: Any) -> Callable:
    """Register a function in :data:`TOOL_REGISTRY` (see :meth:`ToolRegistry.register`)."""
    return TOOL_REGISTRY.register(name, **kwargs)
