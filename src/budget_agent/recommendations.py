"""Unattended recommendation generation.

``RecommendationAgent.generate`` runs the agent loop with a generic
"investigate and recommend" directive, parses up to five recommendations
from the final answer, and hands them to the store in one atomic
``replace_active`` call. A run that fails for any reason persists nothing,
so the user's previous recommendations stay in place. Backend and store
failures are logged and re-raised so the batch can count them.

``RecommendationProcessor`` runs ``generate`` for every user that has
transactions; ``budget_agent.scheduler`` triggers it once a day.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from langchain_core.language_models import BaseChatModel

from budget_agent import config
from budget_agent.agent import AgentLoop, get_chat_model
from budget_agent.context import AgentContext, CancellationToken
from budget_agent.errors import AgentRunCancelled, DataStoreError, ModelBackendError
from budget_agent.models import Recommendation, RecommendationStatus, RunOutcome
from budget_agent.parser import parse_recommendations
from budget_agent.ports import RecommendationStore, TransactionStats
from budget_agent.prompts import RECOMMENDATION_DIRECTIVE, build_recommendation_system_prompt
from budget_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RecommendationAgent:
    """Generates and reads a user's recommendations.

    Args:
        registry:         Tools the model may call.
        stats:            Transaction counts and import times.
        store:            Where recommendations are persisted.
        model:            Chat model; defaults to the shared ChatAnthropic client.
        max_iterations:   Upper bound on model round-trips per run.
        min_transactions: Users with fewer transactions are skipped.
        ttl:              How long a new recommendation stays active.
        clock:            Source of "now", replaceable in tests.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        stats: TransactionStats,
        store: RecommendationStore,
        model: BaseChatModel | None = None,
        max_iterations: int = config.AGENT_MAX_ITERATIONS,
        min_transactions: int = config.RECOMMENDATION_MIN_TRANSACTIONS,
        ttl: timedelta = timedelta(days=config.RECOMMENDATION_TTL_DAYS),
        clock: Clock = utc_now,
    ) -> None:
        self._registry = registry
        self._stats = stats
        self._store = store
        self._model = model
        self._max_iterations = max_iterations
        self._min_transactions = min_transactions
        self._ttl = ttl
        self._clock = clock

    async def get_active(self, user_id: str, limit: int = 5) -> list[Recommendation]:
        """Active, unexpired recommendations, most important first."""
        return await self._store.get_active(user_id, self._clock(), limit)

    async def generate(
        self, user_id: str, cancel: CancellationToken | None = None
    ) -> list[Recommendation]:
        """Generate and store fresh recommendations for *user_id*.

        Returns the stored recommendations, or an empty list when the run was
        skipped or the model produced nothing usable. Nothing is written
        unless the run completes and its answer parses.

        Raises:
            ModelBackendError: If the model could not be reached.
            DataStoreError:    If the store failed; nothing was persisted.
            AgentRunCancelled: If *cancel* fires. Nothing is persisted.
        """
        try:
            return await self._generate(user_id, cancel)
        except AgentRunCancelled:
            logger.info("Recommendation run cancelled for user %s", user_id)
            raise
        except (ModelBackendError, DataStoreError):
            logger.exception(
                "Failed to generate recommendations for user %s, nothing stored", user_id
            )
            raise

    async def _generate(
        self, user_id: str, cancel: CancellationToken | None
    ) -> list[Recommendation]:
        if not await self._needs_generation(user_id):
            return []

        model = self._model or get_chat_model()
        loop = AgentLoop(model, self._registry, max_iterations=self._max_iterations)
        run = await loop.run(
            AgentContext(user_id=user_id),
            build_recommendation_system_prompt,
            RECOMMENDATION_DIRECTIVE,
            cancel=cancel,
        )

        if run.outcome is not RunOutcome.COMPLETE:
            logger.warning(
                "Recommendation agent ended %s for user %s, nothing stored",
                run.outcome.value,
                user_id,
            )
            return []

        generated = parse_recommendations(run.final_text)
        if not generated:
            logger.info("Agent generated no recommendations for %s", user_id)
            return []

        now = self._clock()
        recommendations = [
            Recommendation(
                id=uuid4().hex,
                user_id=user_id,
                generated_at=now,
                expires_at=now + self._ttl,
                status=RecommendationStatus.ACTIVE,
                **item.model_dump(),
            )
            for item in generated
        ]
        try:
            await self._store.replace_active(user_id, recommendations)
        except DataStoreError:
            raise
        except Exception as exc:
            raise DataStoreError(f"Failed to store recommendations: {exc}") from exc

        logger.info(
            "Generated %d recommendations for user %s", len(recommendations), user_id
        )
        return recommendations

    async def _needs_generation(self, user_id: str) -> bool:
        last_generated = await self._store.last_generated_at(user_id)
        last_imported = await self._stats.last_imported_at(user_id)
        if (
            last_generated is not None
            and last_imported is not None
            and last_generated >= last_imported
        ):
            logger.info("Skipping generation, no new data for user %s", user_id)
            return False

        count = await self._stats.count_transactions(user_id)
        if count < self._min_transactions:
            logger.info(
                "Insufficient transaction data for user %s (%d < %d)",
                user_id,
                count,
                self._min_transactions,
            )
            return False
        return True


class RecommendationProcessor:
    """Runs recommendation generation for every user with transactions."""

    def __init__(
        self,
        agent: RecommendationAgent,
        stats: TransactionStats,
        pause: float = 0.1,
    ) -> None:
        self._agent = agent
        self._stats = stats
        self._pause = pause

    async def process_user(
        self, user_id: str, cancel: CancellationToken | None = None
    ) -> list[Recommendation]:
        recommendations = await self._agent.generate(user_id, cancel=cancel)
        logger.debug("Processed recommendations for user %s", user_id)
        return recommendations

    async def process_all_users(
        self, cancel: CancellationToken | None = None
    ) -> tuple[int, int]:
        """Generate for every user; one user's failure never stops the batch.

        Returns:
            ``(succeeded, failed)`` user counts.

        Raises:
            AgentRunCancelled: If *cancel* fires; remaining users are skipped.
        """
        user_ids = await self._stats.user_ids()
        logger.info("Processing recommendations for %d users", len(user_ids))

        succeeded = failed = 0
        for user_id in user_ids:
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                await self.process_user(user_id, cancel=cancel)
                succeeded += 1
            except AgentRunCancelled:
                raise
            except Exception:  # noqa: BLE001
                logger.exception("Failed to process recommendations for user %s", user_id)
                failed += 1
            # Small delay to avoid overwhelming the model backend
            await asyncio.sleep(self._pause)

        logger.info(
            "Completed recommendation processing: %d successful, %d errors",
            succeeded,
            failed,
        )
        return succeeded, failed
