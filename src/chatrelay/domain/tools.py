"""Domain Tools - Model-Callable Capabilities and Their Dispatch.

Tools are named async functions the model may call during a turn. The
registry holds every known tool and which ones are active; a fresh
ToolDispatcher is built for each turn from the active set.

Execution Policy (per request, not per tool):
    serial: all calls of one request funnel through one lock, in order
    parallel: calls run independently and concurrently

Failure Isolation:
    A tool that raises never aborts the turn. The dispatcher returns an
    error string instead, so the model can read it and retry.

Best Practices:
    - Clear descriptions (the model sees these!)
    - JSON-schema input with specific property names
    - Return string results (easy for the model to parse)
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .domain_value import ToolSpec
from .session import SessionContext

logger = logging.getLogger(__name__)

ToolExecute = Callable[[dict[str, Any], SessionContext], Awaitable[Any]]
ChatCompleteHook = Callable[[SessionContext], Awaitable[None]]

_UNSAFE_TOOL_CHARS = re.compile(r"[^a-zA-Z0-9_-]")


def sanitize_tool_name(name: str) -> str:
    """Replace characters providers reject in tool names with "_"."""
    return _UNSAFE_TOOL_CHARS.sub("_", name)


class ToolDefinition(BaseModel):
    """A Tool as Registered by Its Owner.

    Attributes:
        name: Display name (may contain "/" or "." - sanitized on dispatch)
        description: What the tool does, shown to the model
        input_schema: JSON schema of the arguments object
        execute: async (args, context) -> str | object
        after_chat_complete: Optional hook awaited after each committed turn
    """

    name: str
    description: str = ""
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object", "properties": {}})
    execute: ToolExecute
    after_chat_complete: ChatCompleteHook | None = None

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @property
    def sanitized_name(self) -> str:
        return sanitize_tool_name(self.name)

    def to_spec(self) -> ToolSpec:
        return ToolSpec(name=self.sanitized_name, description=self.description, input_schema=self.input_schema)


class ToolRegistry:
    """Known Tools and the Active Subset.

    Newly registered tools are active unless registered with active=False.
    """

    def __init__(self, tools: Iterable[ToolDefinition] = ()):
        self._tools: dict[str, ToolDefinition] = {}
        self._active: set[str] = set()
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolDefinition, *, active: bool = True) -> None:
        self._tools[tool.name] = tool
        if active:
            self._active.add(tool.name)

    def enable(self, *names: str) -> None:
        for name in names:
            if name not in self._tools:
                raise KeyError(f"Tool '{name}' not registered")
            self._active.add(name)

    def disable(self, *names: str) -> None:
        for name in names:
            self._active.discard(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def active_tools(self) -> list[ToolDefinition]:
        """Active tools in registration order."""
        return [tool for name, tool in self._tools.items() if name in self._active]

    def dispatcher(self, *, parallel: bool = False) -> ToolDispatcher:
        return ToolDispatcher(self.active_tools(), parallel=parallel)


class ToolDispatcher:
    """Per-Turn Tool Invoker Enforcing the Execution Policy.

    Built once per turn and handed to the model client next to the request.
    Tools are keyed by sanitized name; when two names sanitize to the same
    key the later tool wins, following registration order.

    Cancellation:
        Each call is shielded, so aborting the model stream does not kill a
        side-effecting tool halfway through.
    """

    def __init__(self, tools: Sequence[ToolDefinition], *, parallel: bool = False):
        self.parallel = parallel
        self._tools: dict[str, ToolDefinition] = {}
        for tool in tools:
            self._tools[tool.sanitized_name] = tool
        self._lock = asyncio.Lock()

    @property
    def specs(self) -> dict[str, ToolSpec]:
        return {key: tool.to_spec() for key, tool in self._tools.items()}

    @property
    def tools(self) -> list[ToolDefinition]:
        return list(self._tools.values())

    async def call(self, name: str, args: dict[str, Any], context: SessionContext) -> Any:
        """Invoke a tool by sanitized name; never raises for tool failures."""
        tool = self._tools.get(name)
        if tool is None:
            logger.error("Model requested unknown tool %s", name)
            return f"Error calling tool {name}: no such tool. Available tools: {', '.join(self._tools) or 'none'}."
        return await asyncio.shield(self._run(tool, args, context))

    async def _run(self, tool: ToolDefinition, args: dict[str, Any], context: SessionContext) -> Any:
        if self.parallel:
            return await self._execute(tool, args, context)
        async with self._lock:
            return await self._execute(tool, args, context)

    async def _execute(self, tool: ToolDefinition, args: dict[str, Any], context: SessionContext) -> Any:
        logger.info("Calling tool %s", tool.name)
        try:
            result = await tool.execute(args, context)
        except Exception as exc:
            logger.error("Error calling tool %s(%s): %s", tool.name, json.dumps(args, default=str), exc)
            return (
                f"Error calling tool {tool.name}: {exc}. "
                "Please check your tool call for correctness and retry the function call."
            )
        logger.debug("Tool %s finished", tool.name)
        return result


__all__ = [
    "ToolDefinition",
    "ToolDispatcher",
    "ToolRegistry",
    "sanitize_tool_name",
]
