"""Tool descriptors, the tool interface and the tool result container.

Concept - Hand-declared schemas:
    The model only knows a tool through its descriptor: a name, a
    description and a list of typed parameters. We write that descriptor out
    by hand next to each tool instead of deriving it from the function
    signature, so the schema the model sees is an explicit object that tests
    can assert on.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from langchain_core.messages import ToolMessage

from budget_agent.context import AgentContext
from budget_agent.errors import ToolArgumentError

ParameterType = Literal["string", "integer", "number", "boolean"]

_MISSING: Any = object()


@dataclass(frozen=True)
class ToolParameter:
    """One argument a tool accepts."""

    name: str
    type: ParameterType
    description: str
    default: Any = _MISSING

    @property
    def required(self) -> bool:
        return self.default is _MISSING

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": self.type, "description": self.description}
        if not self.required:
            schema["default"] = self.default
        return schema


@dataclass(frozen=True)
class ToolDescriptor:
    """Everything the model is told about a tool."""

    name: str
    description: str
    parameters: tuple[ToolParameter, ...] = ()

    def to_openai_tool(self) -> dict[str, Any]:
        """Render as an OpenAI-style function tool.

        This is the dict format LangChain's ``bind_tools`` accepts for every
        provider (ChatAnthropic converts it to Anthropic's format itself).
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {p.name: p.to_json_schema() for p in self.parameters},
                    "required": [p.name for p in self.parameters if p.required],
                },
            },
        }


class Tool(Protocol):
    """A callable capability the model can invoke.

    Tool objects may be shared across runs, so they must not keep per-user
    state: the caller's identity arrives with every call in ``context``.
    """

    descriptor: ToolDescriptor

    async def __call__(
        self, context: AgentContext, arguments: Mapping[str, Any]
    ) -> dict[str, Any]: ...


@dataclass(frozen=True)
class ToolCallResult:
    """Outcome of one tool call, correlated to the request by ``call_id``.

    ``ok`` is False when the tool was missing or raised; ``payload`` then
    holds ``{"success": False, "error": ...}`` for the model to read.
    """

    call_id: str
    tool_name: str
    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, call_id: str, tool_name: str, payload: dict[str, Any]) -> ToolCallResult:
        return cls(call_id=call_id, tool_name=tool_name, ok=True, payload=payload)

    @classmethod
    def failure(cls, call_id: str, tool_name: str, error: str) -> ToolCallResult:
        return cls(
            call_id=call_id,
            tool_name=tool_name,
            ok=False,
            payload={"success": False, "error": error},
        )

    def to_message(self) -> ToolMessage:
        return ToolMessage(
            content=json.dumps(self.payload, default=str),
            tool_call_id=self.call_id,
            name=self.tool_name,
            status="success" if self.ok else "error",
        )


# ---------------------------------------------------------------------------
# Argument helpers
# ---------------------------------------------------------------------------
# The model's numbers are advisory. These helpers turn whatever it sent into
# a value inside the server's limits, falling back to the default for junk.


def clamp_int(value: Any, default: int, lower: int, upper: int) -> int:
    """Coerce *value* to an int within ``[lower, upper]``."""
    if isinstance(value, bool):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    return max(lower, min(number, upper))


def coerce_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return default


def require_text(arguments: Mapping[str, Any], name: str) -> str:
    """Return a non-blank string argument or raise ``ToolArgumentError``."""
    value = arguments.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ToolArgumentError(f"'{name}' must be a non-empty string")
    return value.strip()
