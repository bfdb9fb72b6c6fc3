"""Tool registration and dispatch.

The registry is a plain name -> tool map built once, at construction. Adding a
tool means writing it and passing it to ``ToolRegistry(...)``; the agent loop
never changes. Two tools with the same name are a programming error, so they
fail here, not halfway through a conversation.

``dispatch`` is the error boundary: whatever happens inside a tool (unknown
name, bad arguments, a store outage) comes back as a ``ToolCallResult`` with
``ok=False`` so the model can read the error and try something else.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Mapping
from typing import Any

from budget_agent.context import AgentContext
from budget_agent.errors import DuplicateToolError
from budget_agent.tools.base import Tool, ToolCallResult, ToolDescriptor

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Immutable collection of tools, keyed by descriptor name."""

    def __init__(self, tools: Iterable[Tool]) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            name = tool.descriptor.name
            if name in self._tools:
                raise DuplicateToolError(f"Tool '{name}' is already registered.")
            self._tools[name] = tool
            logger.debug("Registered tool: %s", name)

    def get_tools(self) -> list[ToolDescriptor]:
        """Descriptors for every registered tool, in registration order."""
        return [tool.descriptor for tool in self._tools.values()]

    def names(self) -> list[str]:
        return list(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def dispatch(
        self,
        context: AgentContext,
        call_id: str,
        name: str,
        arguments: Mapping[str, Any] | None = None,
    ) -> ToolCallResult:
        """Run one tool call and return its result. Never raises ``Exception``."""
        tool = self._tools.get(name)
        if tool is None:
            logger.warning("Tool not found: %s (run %s)", name, context.run_id)
            return ToolCallResult.failure(call_id, name, "Tool not found")

        started = time.perf_counter()
        try:
            payload = await tool(context, arguments or {})
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error executing tool %s (run %s)", name, context.run_id)
            return ToolCallResult.failure(call_id, name, str(exc) or type(exc).__name__)

        logger.info(
            "Tool %s executed in %.0fms (run %s)",
            name,
            (time.perf_counter() - started) * 1000,
            context.run_id,
        )
        return ToolCallResult.success(call_id, name, payload)
