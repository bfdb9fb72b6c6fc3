"""Tests for QueryAssistant.ask: input guards and how run outcomes surface."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
from conftest import ALICE, ScriptedChatModel, ai_text, ai_tool_calls

from budget_agent.context import CancellationToken
from budget_agent.models import RunOutcome
from budget_agent.query import (
    CANCELLED_ANSWER,
    EMPTY_QUESTION_ANSWER,
    FAILED_ANSWER,
    FILTERED_ANSWER,
    NO_USER_ANSWER,
    TRUNCATED_ANSWER,
    QueryAssistant,
)
from budget_agent.tools.registry import ToolRegistry

# --- Input guards: none of these may reach the model ---


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("question", "user_id", "expected"),
    [
        ("", ALICE, EMPTY_QUESTION_ANSWER),
        ("   ", ALICE, EMPTY_QUESTION_ANSWER),
        ("How much on coffee?", "", NO_USER_ANSWER),
        ("x" * 501, ALICE, "Your question is too long. Please keep it under 500 characters."),
    ],
)
async def test_input_guards(
    registry: ToolRegistry, question: str, user_id: str, expected: str
) -> None:
    model = ScriptedChatModel()
    assistant = QueryAssistant(registry, model=model)  # type: ignore[arg-type]

    result = await assistant.ask(question, user_id)

    assert result.answer == expected
    assert model.calls == []


@pytest.mark.asyncio
async def test_placeholder_without_api_key(registry: ToolRegistry) -> None:
    """With no model and no key, the assistant still answers (e.g. in CI)."""
    with patch("budget_agent.config.ANTHROPIC_API_KEY", ""):
        result = await QueryAssistant(registry).ask("Hello", ALICE)
    assert "Hello" in result.answer
    assert "no API key" in result.answer


# --- Outcomes ---


@pytest.mark.asyncio
async def test_immediate_answer_in_one_round_trip(registry: ToolRegistry) -> None:
    final = '{"answer":"You spent $42.50 on coffee","amount":42.50,"transactions":[]}'
    model = ScriptedChatModel([ai_text(final)])
    result = await QueryAssistant(registry, model=model).ask(  # type: ignore[arg-type]
        "How much did I spend on coffee?", ALICE
    )

    assert result.outcome is RunOutcome.COMPLETE
    assert result.answer == "You spent $42.50 on coffee"
    assert result.amount == 42.5
    assert result.transactions == []
    assert len(model.calls) == 1


@pytest.mark.asyncio
async def test_answer_with_tool_data(registry: ToolRegistry) -> None:
    final = {
        "answer": "You spent $11.75 on coffee, mostly at Starbucks.",
        "amount": 11.75,
        "transactions": [{"id": "t-a4", "date": "2024-01-12", "amount": -6.25}],
    }
    model = ScriptedChatModel(
        [
            ai_tool_calls(("SearchTransactions", {"query": "coffee"})),
            ai_text(f"```json\n{json.dumps(final)}\n```"),
        ]
    )
    result = await QueryAssistant(registry, model=model).ask(  # type: ignore[arg-type]
        "How much did I spend on coffee?", ALICE
    )

    assert result.outcome is RunOutcome.COMPLETE
    assert result.answer == final["answer"]
    assert result.amount == 11.75
    assert result.transactions[0].id == "t-a4"


@pytest.mark.asyncio
async def test_unstructured_answer_is_kept(registry: ToolRegistry) -> None:
    model = ScriptedChatModel([ai_text("Hi there! Ask me about your spending.")])
    result = await QueryAssistant(registry, model=model).ask("Hello", ALICE)  # type: ignore[arg-type]

    assert result.outcome is RunOutcome.COMPLETE
    assert result.answer == "Hi there! Ask me about your spending."


@pytest.mark.asyncio
async def test_truncated_run(registry: ToolRegistry) -> None:
    model = ScriptedChatModel(
        responder=lambda _: ai_tool_calls(("GetCategorySpending", {}))
    )
    result = await QueryAssistant(registry, model=model).ask(  # type: ignore[arg-type]
        "Tell me everything", ALICE
    )

    assert result.outcome is RunOutcome.TRUNCATED
    assert result.answer == TRUNCATED_ANSWER
    assert len(model.calls) == 5


@pytest.mark.asyncio
async def test_filtered_run(registry: ToolRegistry) -> None:
    model = ScriptedChatModel([ai_text("", reason="content_filter")])
    result = await QueryAssistant(registry, model=model).ask("...", ALICE)  # type: ignore[arg-type]

    assert result.outcome is RunOutcome.FILTERED
    assert result.answer == FILTERED_ANSWER


@pytest.mark.asyncio
async def test_backend_failure(registry: ToolRegistry) -> None:
    model = ScriptedChatModel([TimeoutError("read timed out")])
    result = await QueryAssistant(registry, model=model).ask("Hello", ALICE)  # type: ignore[arg-type]

    assert result.outcome is RunOutcome.FAILED
    assert result.outcome.is_failure
    assert result.answer == FAILED_ANSWER


@pytest.mark.asyncio
async def test_cancelled(registry: ToolRegistry) -> None:
    token = CancellationToken()
    token.cancel()
    model = ScriptedChatModel([ai_text("{}")])
    result = await QueryAssistant(registry, model=model).ask(  # type: ignore[arg-type]
        "Hello", ALICE, cancel=token
    )

    assert result.outcome is RunOutcome.CANCELLED
    assert result.answer == CANCELLED_ANSWER
    assert model.calls == []
