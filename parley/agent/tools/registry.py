"""Tool registry for dynamic tool management."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable

from parley.agent.tools.base import ToolHandler


@dataclass(frozen=True)
class RegisteredTool:
    name: str
    handler: ToolHandler
    schema: dict[str, Any] | None = None

    def to_schema(self) -> dict[str, Any]:
        """OpenAI function-tool definition; a bare function spec is wrapped."""
        if self.schema is None:
            return {
                "type": "function",
                "function": {
                    "name": self.name,
                    "parameters": {"type": "object", "properties": {}},
                },
            }
        if "function" in self.schema:
            return self.schema
        return {"type": "function", "function": {"name": self.name, **self.schema}}


class ToolRegistry:
    """
    Registry of tool handlers keyed by canonical name.

    Handlers may be plain functions or coroutines with the signature
    ``handler(invocation, conversation, complete, runtime)``.
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def register(self, name: str, handler: ToolHandler, schema: dict[str, Any] | None = None) -> None:
        """Register (or replace) a tool."""
        self._tools[name] = RegisteredTool(name=name, handler=handler, schema=schema)

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions in OpenAI format."""
        return [tool.to_schema() for tool in self._tools.values()]

    def subset(self, names: Iterable[str]) -> ToolRegistry:
        """A new registry holding only the named tools that are registered here."""
        picked = ToolRegistry()
        for name in names:
            tool = self._tools.get(name)
            if tool is not None:
                picked._tools[name] = tool
        return picked

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools.keys())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: str) -> bool:
        return name in self._tools
