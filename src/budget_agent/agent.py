"""LangGraph tool-calling loop for the budget agent.

This module is the "brain" of the application. It wires together:
- A chat model (Claude by default) that decides what to do next
- The tool registry, which runs the tools the model asks for
- The run's ``AgentContext``, which tells the tools whose data to read

The loop is a small state machine, built as a LangGraph ``StateGraph`` with
two nodes:

    START -> model -> (tools -> model)* -> END

1. ``model`` sends the whole conversation plus the tool descriptors to the
   model and looks at the single response it gets back.
2. If the response asks for tools, ``tools`` runs every requested call and
   appends one tool message per call (matched by call id), then control goes
   back to ``model``.
3. Otherwise the run ends: COMPLETE on a normal stop, TRUNCATED when the
   model ran out of tokens (or gave a reason we do not recognise), FILTERED
   when its content filter fired.

A hard iteration limit bounds the number of model round-trips; running out
of iterations before a final answer is TRUNCATED, never a success.
Iterations are strictly sequential, but the tool calls inside one step are
independent reads, so they run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import operator
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Annotated, Any, TypedDict
from uuid import uuid4

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langgraph.graph import END, START, StateGraph
from pydantic import SecretStr

from budget_agent import config
from budget_agent.context import AgentContext, CancellationToken
from budget_agent.errors import ModelBackendError
from budget_agent.models import RunOutcome
from budget_agent.tools.base import ToolCallResult, ToolDescriptor
from budget_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Finish reasons
# ---------------------------------------------------------------------------
# Providers report why generation stopped under different keys and names.
# OpenAI-style models put it in response_metadata["finish_reason"],
# Anthropic in response_metadata["stop_reason"]. We fold both into one enum.


class FinishReason(str, Enum):
    STOP = "stop"
    LENGTH = "length"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    UNKNOWN = "unknown"  # reported, but not one we recognise


_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": FinishReason.STOP,
    "end_turn": FinishReason.STOP,
    "stop_sequence": FinishReason.STOP,
    "length": FinishReason.LENGTH,
    "max_tokens": FinishReason.LENGTH,
    "model_context_window_exceeded": FinishReason.LENGTH,
    "tool_calls": FinishReason.TOOL_CALLS,
    "tool_use": FinishReason.TOOL_CALLS,
    "function_call": FinishReason.TOOL_CALLS,
    "content_filter": FinishReason.CONTENT_FILTER,
    "refusal": FinishReason.CONTENT_FILTER,
}


def finish_reason_of(message: AIMessage) -> FinishReason | None:
    """Normalized finish reason, or None if the backend did not report one.

    A reason we do not recognise is UNKNOWN, never None, so it cannot be
    mistaken for a normal stop.
    """
    metadata = message.response_metadata or {}
    raw = metadata.get("finish_reason") or metadata.get("stop_reason")
    if raw is None:
        return None
    return _FINISH_REASONS.get(str(raw).lower(), FinishReason.UNKNOWN)


def message_text(message: BaseMessage) -> str:
    """Plain text of a message whose content may be a list of blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


def _requests_tools(message: AIMessage) -> bool:
    return bool(message.tool_calls or message.invalid_tool_calls)


# ---------------------------------------------------------------------------
# Run state and result
# ---------------------------------------------------------------------------


class AgentState(TypedDict):
    # operator.add makes every node's "messages" update an append
    messages: Annotated[list[BaseMessage], operator.add]
    iterations: int
    outcome: RunOutcome | None
    final_text: str


@dataclass(frozen=True)
class AgentRun:
    """Everything a finished run produced.

    Attributes:
        outcome:    Terminal state (COMPLETE, TRUNCATED or FILTERED).
        final_text: Text of the last model response when COMPLETE, else "".
        messages:   The full conversation, in order.
        iterations: Number of model round-trips performed.
    """

    outcome: RunOutcome
    final_text: str
    messages: tuple[BaseMessage, ...]
    iterations: int

    @property
    def tool_messages(self) -> list[ToolMessage]:
        return [m for m in self.messages if isinstance(m, ToolMessage)]


SystemPromptBuilder = Callable[[Sequence[ToolDescriptor]], str]

# ---------------------------------------------------------------------------
# Loop controller
# ---------------------------------------------------------------------------


class AgentLoop:
    """Runs one bounded tool-calling conversation per ``run()`` call.

    The loop object holds only shared, stateless collaborators (the model and
    the tool registry), so one instance can serve concurrent runs. Everything
    that belongs to a single run (context, messages, counters) lives in the
    graph state created inside ``run()``.
    """

    def __init__(
        self,
        model: BaseChatModel,
        registry: ToolRegistry,
        max_iterations: int = config.AGENT_MAX_ITERATIONS,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self._model = model
        self._registry = registry
        self._max_iterations = max_iterations

    @property
    def max_iterations(self) -> int:
        return self._max_iterations

    async def run(
        self,
        context: AgentContext,
        system_prompt: SystemPromptBuilder,
        user_prompt: str,
        cancel: CancellationToken | None = None,
    ) -> AgentRun:
        """Drive the conversation to a terminal state.

        Args:
            context:       Identity of the user this run acts for.
            system_prompt: Builds the system message from the tool descriptors.
            user_prompt:   The question, or the unattended-flow directive.
            cancel:        Optional token checked before every model/tool call.

        Returns:
            The finished ``AgentRun``.

        Raises:
            ModelBackendError: If the model call fails.
            AgentRunCancelled: If *cancel* fires during the run.
        """
        cancel = cancel or CancellationToken()
        descriptors = self._registry.get_tools()
        model: Any = self._model
        if descriptors:
            model = self._model.bind_tools([d.to_openai_tool() for d in descriptors])

        graph = self._build_graph(context, model, cancel)
        initial: AgentState = {
            "messages": [
                SystemMessage(content=system_prompt(descriptors)),
                HumanMessage(content=user_prompt),
            ],
            "iterations": 0,
            "outcome": None,
            "final_text": "",
        }

        logger.info("Agent run %s started for user %s", context.run_id, context.user_id)
        state = await graph.ainvoke(
            initial, config={"recursion_limit": 2 * self._max_iterations + 4}
        )

        outcome = state["outcome"] or RunOutcome.TRUNCATED
        logger.info(
            "Agent run %s finished: %s after %d iteration(s)",
            context.run_id,
            outcome.value,
            state["iterations"],
        )
        return AgentRun(
            outcome=outcome,
            final_text=state["final_text"],
            messages=tuple(state["messages"]),
            iterations=state["iterations"],
        )

    def _build_graph(self, context: AgentContext, model: Any, cancel: CancellationToken) -> Any:
        max_iterations = self._max_iterations

        async def call_model(state: AgentState) -> dict[str, Any]:
            cancel.raise_if_cancelled()
            iteration = state["iterations"] + 1
            logger.info(
                "Agent iteration %d/%d (run %s)", iteration, max_iterations, context.run_id
            )

            try:
                response = await model.ainvoke(state["messages"])
            except Exception as exc:
                logger.exception("Model call failed (run %s)", context.run_id)
                raise ModelBackendError(f"Model call failed: {exc}") from exc

            update: dict[str, Any] = {"messages": [response], "iterations": iteration}
            if _requests_tools(response):
                return update

            reason = finish_reason_of(response)
            if reason in (None, FinishReason.STOP):
                update["outcome"] = RunOutcome.COMPLETE
                update["final_text"] = message_text(response)
            elif reason is FinishReason.LENGTH:
                logger.warning("Max tokens reached at iteration %d (run %s)", iteration, context.run_id)
                update["outcome"] = RunOutcome.TRUNCATED
            elif reason is FinishReason.CONTENT_FILTER:
                logger.warning("Content filtered at iteration %d (run %s)", iteration, context.run_id)
                update["outcome"] = RunOutcome.FILTERED
            elif reason is FinishReason.UNKNOWN:
                logger.warning(
                    "Unrecognized finish reason %r at iteration %d (run %s)",
                    response.response_metadata,
                    iteration,
                    context.run_id,
                )
                update["outcome"] = RunOutcome.TRUNCATED
            elif iteration >= max_iterations:
                # tool_calls reason without any calls: nothing to dispatch
                update["outcome"] = RunOutcome.TRUNCATED
            return update

        async def dispatch_tools(state: AgentState) -> dict[str, Any]:
            request = state["messages"][-1]
            results = await self._dispatch(context, request, cancel)
            update: dict[str, Any] = {"messages": [r.to_message() for r in results]}
            if state["iterations"] >= max_iterations:
                logger.warning(
                    "Agent reached max iterations (%d) without completion (run %s)",
                    max_iterations,
                    context.run_id,
                )
                update["outcome"] = RunOutcome.TRUNCATED
            return update

        def after_model(state: AgentState) -> str:
            if state["outcome"] is not None:
                return END
            last = state["messages"][-1]
            if isinstance(last, AIMessage) and _requests_tools(last):
                return "tools"
            return "model"

        def after_tools(state: AgentState) -> str:
            return END if state["outcome"] is not None else "model"

        graph = StateGraph(AgentState)
        graph.add_node("model", call_model)
        graph.add_node("tools", dispatch_tools)
        graph.add_edge(START, "model")
        graph.add_conditional_edges("model", after_model, ["tools", "model", END])
        graph.add_conditional_edges("tools", after_tools, ["model", END])
        return graph.compile()

    async def _dispatch(
        self, context: AgentContext, request: AIMessage, cancel: CancellationToken
    ) -> list[ToolCallResult]:
        """Answer every tool call in *request*, in request order."""
        logger.info(
            "Executing %d tool call(s) (run %s)",
            len(request.tool_calls) + len(request.invalid_tool_calls),
            context.run_id,
        )

        async def run_one(call_id: str, name: str, args: dict[str, Any]) -> ToolCallResult:
            cancel.raise_if_cancelled()
            return await self._registry.dispatch(context, call_id, name, args)

        pending = [
            run_one(call.get("id") or f"call_{uuid4().hex}", call["name"], call.get("args") or {})
            for call in request.tool_calls
        ]
        results = list(await asyncio.gather(*pending))

        # Calls whose arguments the provider could not parse still need an answer
        for bad in request.invalid_tool_calls:
            results.append(
                ToolCallResult.failure(
                    bad.get("id") or f"call_{uuid4().hex}",
                    bad.get("name") or "unknown",
                    f"Invalid tool arguments: {bad.get('error') or 'unparseable JSON'}",
                )
            )
        return results


# ---------------------------------------------------------------------------
# Default model
# ---------------------------------------------------------------------------
# Built lazily (on first use) so that importing this module does not fail
# when ANTHROPIC_API_KEY is not set (e.g., in CI).

_model: BaseChatModel | None = None


def get_chat_model() -> BaseChatModel:
    """Create the shared ChatAnthropic client (lazily, on first call).

    Raises:
        ModelBackendError: If no API key is configured.
    """
    global _model  # noqa: PLW0603
    if _model is not None:
        return _model
    if not config.ANTHROPIC_API_KEY:
        raise ModelBackendError("ANTHROPIC_API_KEY is not configured")

    # mypy can't see Pydantic model fields as constructor kwargs
    _model = ChatAnthropic(
        model_name=config.ANTHROPIC_MODEL,  # type: ignore[call-arg]
        anthropic_api_key=SecretStr(config.ANTHROPIC_API_KEY),  # type: ignore[call-arg]
        max_tokens=config.ANTHROPIC_MAX_TOKENS,  # type: ignore[call-arg]
        temperature=0.2,
    )
    return _model
