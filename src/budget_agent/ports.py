"""Interfaces the agent core needs from the rest of the system.

The core never touches a database directly. It reads transactions through
these ports and persists recommendations through ``RecommendationStore``.
They are ``typing.Protocol`` classes, so any object with matching methods
satisfies them; ``budget_agent.store.InMemoryLedger`` implements all of them.

Every read takes the user id explicitly. The tools pass in the id from the
run's ``AgentContext``, which is what keeps concurrent users apart.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol, runtime_checkable

from budget_agent.models import CategoryTotal, Recommendation, Transaction


@runtime_checkable
class TransactionSearch(Protocol):
    """Free-text search over one user's transactions, most relevant first."""

    async def search(
        self, query: str, user_id: str, max_results: int
    ) -> list[Transaction]: ...


@runtime_checkable
class SpendingAggregator(Protocol):
    """Per-category totals for one user, largest magnitude first."""

    async def category_totals(
        self, user_id: str, top_n: int, include_income: bool
    ) -> list[CategoryTotal]: ...


@runtime_checkable
class TransactionStats(Protocol):
    """Cheap facts the recommendation flow checks before running the agent."""

    async def count_transactions(self, user_id: str) -> int: ...
    async def last_imported_at(self, user_id: str) -> datetime | None: ...
    async def user_ids(self) -> list[str]: ...


@runtime_checkable
class RecommendationStore(Protocol):
    """Persistence for generated recommendations."""

    async def replace_active(
        self, user_id: str, recommendations: Sequence[Recommendation]
    ) -> None:
        """Expire the user's active items and insert the new ones atomically."""
        ...

    async def get_active(
        self, user_id: str, now: datetime, limit: int = 5
    ) -> list[Recommendation]: ...
    async def last_generated_at(self, user_id: str) -> datetime | None: ...
    async def expire_stale(self, now: datetime) -> int: ...
    async def purge_older_than(self, cutoff: datetime) -> int: ...
