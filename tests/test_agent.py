"""Tests for the agent loop.

The chat model is a ScriptedChatModel (see conftest.py), so every test
controls exactly what the model "says" on each iteration. The tools run for
real against the in-memory ledger.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from conftest import ALICE, BOB, ScriptedChatModel, ai_text, ai_tool_calls
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from budget_agent.agent import AgentLoop, AgentRun, FinishReason, finish_reason_of, message_text
from budget_agent.context import AgentContext, CancellationToken
from budget_agent.errors import AgentRunCancelled, ModelBackendError
from budget_agent.models import RunOutcome
from budget_agent.prompts import build_query_system_prompt
from budget_agent.tools.registry import ToolRegistry


async def _run(
    model: ScriptedChatModel,
    registry: ToolRegistry,
    user_id: str = ALICE,
    prompt: str = "How much did I spend on coffee?",
    **kwargs: Any,
) -> AgentRun:
    loop = AgentLoop(model, registry, **kwargs)  # type: ignore[arg-type]
    return await loop.run(AgentContext(user_id), build_query_system_prompt, prompt)


# --- Finish reasons ---


@pytest.mark.parametrize(
    ("metadata", "expected"),
    [
        ({"finish_reason": "stop"}, FinishReason.STOP),
        ({"stop_reason": "end_turn"}, FinishReason.STOP),
        ({"stop_reason": "max_tokens"}, FinishReason.LENGTH),
        ({"finish_reason": "length"}, FinishReason.LENGTH),
        ({"stop_reason": "tool_use"}, FinishReason.TOOL_CALLS),
        ({"finish_reason": "content_filter"}, FinishReason.CONTENT_FILTER),
        ({"stop_reason": "model_context_window_exceeded"}, FinishReason.LENGTH),
        ({"stop_reason": "something_new"}, FinishReason.UNKNOWN),
        ({}, None),
    ],
)
def test_finish_reason_of(metadata: dict[str, str], expected: FinishReason | None) -> None:
    assert finish_reason_of(AIMessage(content="", response_metadata=metadata)) is expected


def test_message_text_joins_text_blocks() -> None:
    message = AIMessage(content=["Hello ", {"type": "text", "text": "there"}])
    assert message_text(message) == "Hello there"


# --- Terminal outcomes ---


@pytest.mark.asyncio
async def test_direct_answer_without_tools(registry: ToolRegistry) -> None:
    """A general question is answered on the first iteration, no tools run."""
    model = ScriptedChatModel([ai_text('{"answer": "Hi! How can I help?"}')])
    run = await _run(model, registry, prompt="Hello")

    assert run.outcome is RunOutcome.COMPLETE
    assert run.iterations == 1
    assert run.tool_messages == []
    assert run.final_text == '{"answer": "Hi! How can I help?"}'


@pytest.mark.asyncio
async def test_one_tool_round_then_answer(registry: ToolRegistry) -> None:
    request = ai_tool_calls(("SearchTransactions", {"query": "coffee"}))
    model = ScriptedChatModel([request, ai_text('{"answer": "You spent $11.75 on coffee."}')])

    run = await _run(model, registry)

    assert run.outcome is RunOutcome.COMPLETE
    assert run.iterations == 2
    [tool_message] = run.tool_messages
    assert tool_message.tool_call_id == request.tool_calls[0]["id"]
    assert json.loads(tool_message.content)["count"] == 2

    # The second model call saw the tool result
    second_call = model.calls[1]
    assert isinstance(second_call[-1], ToolMessage)
    assert isinstance(second_call[0], SystemMessage)
    assert isinstance(second_call[1], HumanMessage)


@pytest.mark.asyncio
async def test_parallel_tool_calls_each_get_one_result(registry: ToolRegistry) -> None:
    request = ai_tool_calls(
        ("SearchTransactions", {"query": "coffee"}),
        ("GetCategorySpending", {"topN": 3}),
        ("NoSuchTool", {}),
    )
    model = ScriptedChatModel([request, ai_text('{"answer": "done"}')])

    run = await _run(model, registry)

    results = run.tool_messages
    assert len(results) == 3
    assert [m.tool_call_id for m in results] == [c["id"] for c in request.tool_calls]
    assert [m.status for m in results] == ["success", "success", "error"]
    assert json.loads(results[2].content) == {"success": False, "error": "Tool not found"}


@pytest.mark.asyncio
async def test_tool_error_is_fed_back_to_the_model(registry: ToolRegistry) -> None:
    """A failing tool call does not end the run; the model reads the error."""
    model = ScriptedChatModel(
        [
            ai_tool_calls(("SearchTransactions", {"query": ""})),
            ai_text('{"answer": "Could you tell me what to search for?"}'),
        ]
    )
    run = await _run(model, registry)

    assert run.outcome is RunOutcome.COMPLETE
    assert run.tool_messages[0].status == "error"
    assert "query" in json.loads(run.tool_messages[0].content)["error"]


@pytest.mark.asyncio
async def test_invalid_tool_calls_are_answered(registry: ToolRegistry) -> None:
    bad = AIMessage(
        content="",
        invalid_tool_calls=[
            {
                "name": "SearchTransactions",
                "args": '{"query": "cof',
                "id": "call_bad",
                "error": "Unterminated string",
                "type": "invalid_tool_call",
            }
        ],
        response_metadata={"finish_reason": "tool_calls"},
    )
    model = ScriptedChatModel([bad, ai_text('{"answer": "ok"}')])

    run = await _run(model, registry)

    [tool_message] = run.tool_messages
    assert tool_message.tool_call_id == "call_bad"
    assert tool_message.status == "error"
    assert run.outcome is RunOutcome.COMPLETE


@pytest.mark.asyncio
async def test_iteration_limit_truncates(registry: ToolRegistry) -> None:
    """A model that never stops asking for tools gets exactly max_iterations turns."""
    model = ScriptedChatModel(
        responder=lambda _: ai_tool_calls(("SearchTransactions", {"query": "coffee"}))
    )
    run = await _run(model, registry, max_iterations=5)

    assert run.outcome is RunOutcome.TRUNCATED
    assert run.iterations == 5
    assert len(model.calls) == 5
    assert run.final_text == ""
    # The last turn's calls were still answered
    assert len(run.tool_messages) == 5


@pytest.mark.asyncio
async def test_max_tokens_truncates(registry: ToolRegistry) -> None:
    model = ScriptedChatModel([ai_text('{"answer": "You spent', reason="length")])
    run = await _run(model, registry)

    assert run.outcome is RunOutcome.TRUNCATED
    assert run.final_text == ""


@pytest.mark.asyncio
async def test_context_window_exceeded_truncates(registry: ToolRegistry) -> None:
    message = AIMessage(
        content='{"answer": "You spent',
        response_metadata={"stop_reason": "model_context_window_exceeded"},
    )
    run = await _run(ScriptedChatModel([message]), registry)

    assert run.outcome is RunOutcome.TRUNCATED
    assert run.final_text == ""


@pytest.mark.asyncio
async def test_unrecognized_finish_reason_is_not_complete(registry: ToolRegistry) -> None:
    model = ScriptedChatModel([ai_text('{"answer": "ok"}', reason="mystery")])
    run = await _run(model, registry)

    assert run.outcome is RunOutcome.TRUNCATED
    assert run.final_text == ""


@pytest.mark.asyncio
async def test_content_filter(registry: ToolRegistry) -> None:
    model = ScriptedChatModel([ai_text("", reason="content_filter")])
    run = await _run(model, registry)
    assert run.outcome is RunOutcome.FILTERED


@pytest.mark.asyncio
async def test_missing_finish_reason_counts_as_stop(registry: ToolRegistry) -> None:
    model = ScriptedChatModel([ai_text('{"answer": "ok"}', reason=None)])
    run = await _run(model, registry)
    assert run.outcome is RunOutcome.COMPLETE


@pytest.mark.asyncio
async def test_backend_error_is_fatal(registry: ToolRegistry) -> None:
    model = ScriptedChatModel([ConnectionError("connection refused")])
    with pytest.raises(ModelBackendError, match="connection refused"):
        await _run(model, registry)


@pytest.mark.asyncio
async def test_cancellation_stops_before_tools(registry: ToolRegistry) -> None:
    token = CancellationToken()

    def cancel_then_request_tools(_: list[BaseMessage]) -> AIMessage:
        token.cancel()
        return ai_tool_calls(("SearchTransactions", {"query": "coffee"}))

    model = ScriptedChatModel(responder=cancel_then_request_tools)
    loop = AgentLoop(model, registry)  # type: ignore[arg-type]

    with pytest.raises(AgentRunCancelled):
        await loop.run(AgentContext(ALICE), build_query_system_prompt, "coffee?", cancel=token)
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_cancelled_before_start_never_calls_model(registry: ToolRegistry) -> None:
    token = CancellationToken()
    token.cancel()
    model = ScriptedChatModel([ai_text("{}")])
    loop = AgentLoop(model, registry)  # type: ignore[arg-type]

    with pytest.raises(AgentRunCancelled):
        await loop.run(AgentContext(ALICE), build_query_system_prompt, "hi", cancel=token)
    assert model.calls == []


def test_rejects_non_positive_iteration_limit(registry: ToolRegistry) -> None:
    with pytest.raises(ValueError):
        AgentLoop(ScriptedChatModel(), registry, max_iterations=0)  # type: ignore[arg-type]


# --- Identity ---


@pytest.mark.asyncio
async def test_user_id_never_reaches_the_model(registry: ToolRegistry) -> None:
    model = ScriptedChatModel(
        [
            ai_tool_calls(("SearchTransactions", {"query": "coffee"})),
            ai_text('{"answer": "ok"}'),
        ]
    )
    await _run(model, registry)

    assert model.bound_tools is not None
    assert ALICE not in json.dumps(model.bound_tools)
    for conversation in model.calls:
        for message in conversation:
            assert ALICE not in str(message.content)


def _coffee_responder(messages: list[BaseMessage]) -> AIMessage:
    """Search once, then answer with whatever the search returned."""
    results = [m for m in messages if isinstance(m, ToolMessage)]
    if not results:
        return ai_tool_calls(("SearchTransactions", {"query": "coffee"}))
    return ai_text(str(results[-1].content))


@pytest.mark.asyncio
async def test_concurrent_runs_stay_isolated(registry: ToolRegistry) -> None:
    """Two users run at once on shared tools; each sees only their own rows."""
    model = ScriptedChatModel(responder=_coffee_responder)
    loop = AgentLoop(model, registry)  # type: ignore[arg-type]

    alice_run, bob_run = await asyncio.gather(
        loop.run(AgentContext(ALICE), build_query_system_prompt, "coffee?"),
        loop.run(AgentContext(BOB), build_query_system_prompt, "coffee?"),
    )

    alice_ids = {t["id"] for t in json.loads(alice_run.final_text)["transactions"]}
    bob_ids = {t["id"] for t in json.loads(bob_run.final_text)["transactions"]}
    assert alice_ids == {"t-a2", "t-a4"}
    assert bob_ids == {"t-b1"}



def _spending_responder(messages: list[BaseMessage]) -> AIMessage:
    """Aggregate once, then answer with whatever the aggregation returned."""
    results = [m for m in messages if isinstance(m, ToolMessage)]
    if not results:
        return ai_tool_calls(("GetCategorySpending", {"topN": 5}))
    return ai_text(str(results[-1].content))


@pytest.mark.asyncio
async def test_concurrent_aggregations_stay_isolated(registry: ToolRegistry) -> None:
    model = ScriptedChatModel(responder=_spending_responder)
    loop = AgentLoop(model, registry)  # type: ignore[arg-type]

    alice_run, bob_run = await asyncio.gather(
        loop.run(AgentContext(ALICE), build_query_system_prompt, "Where does my money go?"),
        loop.run(AgentContext(BOB), build_query_system_prompt, "Where does my money go?"),
    )

    alice = {c["name"]: c for c in json.loads(alice_run.final_text)["categories"]}
    bob = {c["name"]: c for c in json.loads(bob_run.final_text)["categories"]}
    assert alice["Dining"] == {"name": "Dining", "total": 11.75, "count": 2}
    assert bob["Dining"]["total"] == 7.0
    assert bob["Dining"]["count"] == 1
    assert "Fitness" not in alice
    assert "Groceries" not in bob


@pytest.mark.asyncio
async def test_replay_is_deterministic(registry: ToolRegistry) -> None:
    """Same script, same tool results: the same conversation every time."""

    def contents(run: AgentRun) -> list[Any]:
        return [m.content for m in run.messages if isinstance(m, ToolMessage)]

    first = await _run(ScriptedChatModel(responder=_coffee_responder), registry)
    second = await _run(ScriptedChatModel(responder=_coffee_responder), registry)

    assert first.outcome is second.outcome is RunOutcome.COMPLETE
    assert contents(first) == contents(second)
    assert first.final_text == second.final_text
