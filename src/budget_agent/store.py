"""In-memory implementation of every data port.

``InMemoryLedger`` is the reference collaborator: it backs the test suite
and lets the agent run without a database. Search is plain keyword
relevance (how many query words appear in a transaction's text), which is
enough to exercise the tools; a production deployment would plug in a
semantic search behind the same ``TransactionSearch`` port.

Concept - Atomic replacement:
    ``replace_active`` builds the user's new recommendation list off to the
    side and swaps it in with a single assignment while holding a lock.
    There is no ``await`` between expiring the old items and inserting the
    new ones, so a concurrent reader sees either the old set or the new set,
    never a mix.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import datetime

from budget_agent.models import (
    CategoryTotal,
    Recommendation,
    RecommendationStatus,
    Transaction,
)

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[a-z0-9]+")


def _words(text: str) -> set[str]:
    return set(_WORD.findall(text.lower()))


class InMemoryLedger:
    """Transactions and recommendations held in process memory."""

    def __init__(self, transactions: Iterable[Transaction] = ()) -> None:
        self._transactions: list[Transaction] = list(transactions)
        self._recommendations: dict[str, list[Recommendation]] = defaultdict(list)
        self._lock = asyncio.Lock()

    def add_transactions(self, transactions: Iterable[Transaction]) -> None:
        self._transactions.extend(transactions)

    def _for_user(self, user_id: str) -> list[Transaction]:
        return [t for t in self._transactions if t.user_id == user_id]

    # --- TransactionSearch ---

    async def search(
        self, query: str, user_id: str, max_results: int
    ) -> list[Transaction]:
        terms = _words(query)
        if not terms or max_results <= 0:
            return []

        scored: list[tuple[int, Transaction]] = []
        for txn in self._for_user(user_id):
            haystack = _words(f"{txn.description} {txn.category or ''} {txn.account}")
            score = len(terms & haystack)
            if score:
                scored.append((score, txn))

        # Best match first, newest first among equals
        scored.sort(key=lambda pair: (pair[0], pair[1].date), reverse=True)
        return [txn for _, txn in scored[:max_results]]

    # --- SpendingAggregator ---

    async def category_totals(
        self, user_id: str, top_n: int, include_income: bool
    ) -> list[CategoryTotal]:
        totals: dict[str, float] = defaultdict(float)
        counts: dict[str, int] = defaultdict(int)
        for txn in self._for_user(user_id):
            if txn.category is None:
                continue
            if not include_income and txn.amount >= 0:
                continue
            totals[txn.category] += txn.amount
            counts[txn.category] += 1

        groups = [
            CategoryTotal(name=name, total=round(total, 2), count=counts[name])
            for name, total in totals.items()
        ]
        groups.sort(key=lambda g: abs(g.total), reverse=True)
        return groups[: max(top_n, 0)]

    # --- TransactionStats ---

    async def count_transactions(self, user_id: str) -> int:
        return len(self._for_user(user_id))

    async def last_imported_at(self, user_id: str) -> datetime | None:
        imported = [t.imported_at for t in self._for_user(user_id)]
        return max(imported) if imported else None

    async def user_ids(self) -> list[str]:
        return sorted({t.user_id for t in self._transactions})

    # --- RecommendationStore ---

    async def replace_active(
        self, user_id: str, recommendations: Sequence[Recommendation]
    ) -> None:
        async with self._lock:
            expired = [
                r.model_copy(update={"status": RecommendationStatus.EXPIRED})
                if r.status == RecommendationStatus.ACTIVE
                else r
                for r in self._recommendations[user_id]
            ]
            self._recommendations[user_id] = expired + list(recommendations)
        logger.debug(
            "Stored %d recommendation(s) for user %s", len(recommendations), user_id
        )

    async def get_active(
        self, user_id: str, now: datetime, limit: int = 5
    ) -> list[Recommendation]:
        active = [
            r
            for r in self._recommendations.get(user_id, [])
            if r.status == RecommendationStatus.ACTIVE and r.expires_at > now
        ]
        active.sort(key=lambda r: (r.priority.rank, r.generated_at), reverse=True)
        return active[:limit]

    async def all_recommendations(self, user_id: str) -> list[Recommendation]:
        return list(self._recommendations.get(user_id, []))

    async def last_generated_at(self, user_id: str) -> datetime | None:
        generated = [r.generated_at for r in self._recommendations.get(user_id, [])]
        return max(generated) if generated else None

    async def expire_stale(self, now: datetime) -> int:
        changed = 0
        async with self._lock:
            for user_id, items in self._recommendations.items():
                updated = []
                for r in items:
                    if r.status == RecommendationStatus.ACTIVE and r.expires_at <= now:
                        r = r.model_copy(update={"status": RecommendationStatus.EXPIRED})
                        changed += 1
                    updated.append(r)
                self._recommendations[user_id] = updated
        return changed

    async def purge_older_than(self, cutoff: datetime) -> int:
        removed = 0
        async with self._lock:
            for user_id, items in self._recommendations.items():
                kept = [r for r in items if r.generated_at >= cutoff]
                removed += len(items) - len(kept)
                self._recommendations[user_id] = kept
        return removed
