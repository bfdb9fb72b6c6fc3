"""Shared fixtures: a scripted chat model and a small two-user ledger.

The scripted model stands in for ChatAnthropic. It answers each ``ainvoke``
with the next message from a script, or asks a factory function what to say
given the conversation so far, and records every conversation it was sent
so tests can inspect exactly what the model saw.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import date, datetime, timezone
from typing import Any
from uuid import uuid4

import pytest
from langchain_core.messages import AIMessage, BaseMessage

from budget_agent.models import Transaction
from budget_agent.store import InMemoryLedger
from budget_agent.tools import build_tool_registry
from budget_agent.tools.registry import ToolRegistry

ALICE = "alice-7f3a9c"
BOB = "bob-21d4e8"
IMPORTED_AT = datetime(2024, 1, 21, 9, 0, tzinfo=timezone.utc)

Responder = Callable[[list[BaseMessage]], AIMessage]


class ScriptedChatModel:
    """Minimal async chat model driven by a script or a factory."""

    def __init__(
        self,
        script: Sequence[AIMessage | Exception] = (),
        responder: Responder | None = None,
    ) -> None:
        self._script = list(script)
        self._responder = responder
        self.calls: list[list[BaseMessage]] = []
        self.bound_tools: list[dict[str, Any]] | None = None

    def bind_tools(self, tools: Sequence[dict[str, Any]], **kwargs: Any) -> ScriptedChatModel:
        self.bound_tools = list(tools)
        return self

    async def ainvoke(self, messages: Sequence[BaseMessage], *args: Any, **kwargs: Any) -> AIMessage:
        self.calls.append(list(messages))
        # Yield so concurrent runs actually interleave
        await asyncio.sleep(0)
        if self._responder is not None:
            return self._responder(list(messages))
        if not self._script:
            raise AssertionError("model called more times than scripted")
        item = self._script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def ai_text(text: str, reason: str | None = "stop") -> AIMessage:
    metadata = {"finish_reason": reason} if reason else {}
    return AIMessage(content=text, response_metadata=metadata)


def ai_tool_calls(*calls: tuple[str, dict[str, Any]]) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[
            {"name": name, "args": args, "id": f"call_{uuid4().hex[:8]}", "type": "tool_call"}
            for name, args in calls
        ],
        response_metadata={"finish_reason": "tool_calls"},
    )


def _txn(
    id_: str,
    user_id: str,
    day: int,
    description: str,
    amount: float,
    category: str | None,
    account: str = "Checking",
) -> Transaction:
    return Transaction(
        id=id_,
        user_id=user_id,
        date=date(2024, 1, day),
        description=description,
        amount=amount,
        category=category,
        account=account,
        imported_at=IMPORTED_AT,
    )


ALICE_TRANSACTIONS = [
    _txn("t-a1", ALICE, 5, "NETFLIX.COM subscription", -15.99, "Entertainment"),
    _txn("t-a2", ALICE, 7, "Starbucks coffee", -5.50, "Dining"),
    _txn("t-a3", ALICE, 10, "Whole Foods groceries", -120.00, "Groceries"),
    _txn("t-a4", ALICE, 12, "Starbucks coffee", -6.25, "Dining"),
    _txn("t-a5", ALICE, 15, "Payroll deposit", 3000.00, "Income"),
    _txn("t-a6", ALICE, 18, "Trader Joes groceries", -80.00, "Groceries"),
    _txn("t-a7", ALICE, 20, "ATM withdrawal", -40.00, None),
]

BOB_TRANSACTIONS = [
    _txn("t-b1", BOB, 6, "Blue Bottle coffee", -7.00, "Dining", account="Visa"),
    _txn("t-b2", BOB, 8, "Gym membership", -50.00, "Fitness", account="Visa"),
]


@pytest.fixture
def ledger() -> InMemoryLedger:
    return InMemoryLedger(ALICE_TRANSACTIONS + BOB_TRANSACTIONS)


@pytest.fixture
def registry(ledger: InMemoryLedger) -> ToolRegistry:
    return build_tool_registry(ledger, ledger)
