"""Data models shared by the agent loop, the tools and the two callers.

These are Pydantic models so that every result the agent produces can be
serialized to JSON and validated back without losing a field (the callers
persist or return them as-is).
"""

from __future__ import annotations

import datetime as dt
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Records read by the tools
# ---------------------------------------------------------------------------


class Transaction(BaseModel):
    """One imported bank transaction. Negative amounts are expenses."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    date: dt.date
    description: str
    amount: float
    category: str | None = None
    account: str = ""
    imported_at: dt.datetime


class CategoryTotal(BaseModel):
    """Signed sum of one category's transactions."""

    name: str
    total: float
    count: int


# ---------------------------------------------------------------------------
# Run outcome
# ---------------------------------------------------------------------------


class RunOutcome(str, Enum):
    """Terminal state of an agent run."""

    COMPLETE = "complete"
    TRUNCATED = "truncated"  # iteration or token budget ran out
    FILTERED = "filtered"  # the model's content filter fired
    FAILED = "failed"  # backend unavailable
    CANCELLED = "cancelled"

    @property
    def is_failure(self) -> bool:
        return self in (RunOutcome.FILTERED, RunOutcome.FAILED, RunOutcome.CANCELLED)


# ---------------------------------------------------------------------------
# Query flow results
# ---------------------------------------------------------------------------


class TransactionReference(BaseModel):
    """A transaction the model cited in its answer.

    Every field is optional because the model writes these, not the store.
    """

    id: str | None = None
    date: str | None = None
    description: str = ""
    amount: float | None = None
    category: str | None = None
    account: str | None = None


class QueryResult(BaseModel):
    """What ``QueryAssistant.ask`` returns to its caller."""

    answer: str
    amount: float | None = None
    transactions: list[TransactionReference] = Field(default_factory=list)
    outcome: RunOutcome = RunOutcome.COMPLETE


# ---------------------------------------------------------------------------
# Recommendation flow results
# ---------------------------------------------------------------------------


class RecommendationType(str, Enum):
    SPENDING_ALERT = "SpendingAlert"
    SAVINGS_OPPORTUNITY = "SavingsOpportunity"
    BEHAVIORAL_INSIGHT = "BehavioralInsight"
    BUDGET_WARNING = "BudgetWarning"


class RecommendationPriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        """1 (Low) through 4 (Critical), for sorting."""
        return list(RecommendationPriority).index(self) + 1


class RecommendationStatus(str, Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"


class GeneratedRecommendation(BaseModel):
    """One advisory item as parsed from the model's final answer."""

    title: str = Field(max_length=200)
    message: str = Field(max_length=1000)
    type: RecommendationType
    priority: RecommendationPriority


class Recommendation(GeneratedRecommendation):
    """A persisted recommendation, owned by the recommendation store."""

    id: str
    user_id: str
    generated_at: dt.datetime
    expires_at: dt.datetime
    status: RecommendationStatus = RecommendationStatus.ACTIVE
