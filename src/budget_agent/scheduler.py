"""Daily trigger for the recommendation flow.

``RecommendationScheduler.run`` is a long-lived coroutine: after a short
start-up delay it processes every user, expires and purges old
recommendations, then sleeps until the next ``run_hour_utc`` o'clock. An error
anywhere in a cycle is logged and retried after a back-off instead of
killing the loop. Setting the ``stop`` event ends it promptly, even in the
middle of a wait; a batch in progress is cancelled too.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta

from budget_agent import config
from budget_agent.context import CancellationToken
from budget_agent.errors import AgentRunCancelled
from budget_agent.ports import RecommendationStore
from budget_agent.recommendations import Clock, RecommendationProcessor, utc_now

logger = logging.getLogger(__name__)


class RecommendationScheduler:
    def __init__(
        self,
        processor: RecommendationProcessor,
        store: RecommendationStore,
        run_hour_utc: int = config.RECOMMENDATION_RUN_HOUR_UTC,
        initial_delay: float = 30.0,
        error_backoff: float = 30 * 60.0,
        retention: timedelta = timedelta(days=config.RECOMMENDATION_RETENTION_DAYS),
        clock: Clock = utc_now,
    ) -> None:
        if not 0 <= run_hour_utc <= 23:
            raise ValueError("run_hour_utc must be between 0 and 23")
        self._processor = processor
        self._store = store
        self._run_hour = run_hour_utc
        self._initial_delay = initial_delay
        self._error_backoff = error_backoff
        self._retention = retention
        self._clock = clock

    def next_run_time(self, now: datetime) -> datetime:
        """The next ``run_hour_utc``:00 strictly after *now*."""
        candidate = now.replace(hour=self._run_hour, minute=0, second=0, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate

    async def cleanup(self) -> tuple[int, int]:
        """Expire overdue recommendations and delete ones past retention.

        Failures are logged and reported as ``(0, 0)``; cleanup never stops
        a cycle.

        Returns:
            ``(expired, purged)`` counts.
        """
        now = self._clock()
        try:
            expired = await self._store.expire_stale(now)
            purged = await self._store.purge_older_than(now - self._retention)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to clean up expired recommendations")
            return 0, 0
        if expired:
            logger.info("Marked %d recommendations as expired", expired)
        if purged:
            logger.info("Deleted %d old recommendations", purged)
        return expired, purged

    async def run_once(self, cancel: CancellationToken | None = None) -> tuple[int, int]:
        """One full cycle: every user, then cleanup."""
        counts = await self._processor.process_all_users(cancel=cancel)
        await self.cleanup()
        return counts

    async def run(self, stop: asyncio.Event) -> None:
        if await _wait(stop, self._initial_delay):
            return
        logger.info("Recommendation scheduler started")

        while not stop.is_set():
            # A batch in progress is cancelled as soon as stop is set
            cancel = CancellationToken()
            watcher = asyncio.create_task(_cancel_on(stop, cancel))
            try:
                await self.run_once(cancel)

                now = self._clock()
                next_run = self.next_run_time(now)
                delay = (next_run - now).total_seconds()
                if delay > 0:
                    logger.info("Next recommendation run scheduled for %s", next_run.isoformat())
                else:
                    delay = 60 * 60.0
                if await _wait(stop, delay):
                    break
            except AgentRunCancelled:
                logger.info("Recommendation run cancelled")
                break
            except Exception:  # noqa: BLE001
                logger.exception("Error in recommendation scheduler")
                if await _wait(stop, self._error_backoff):
                    break
            finally:
                watcher.cancel()

        logger.info("Recommendation scheduler stopped")


async def _cancel_on(stop: asyncio.Event, cancel: CancellationToken) -> None:
    await stop.wait()
    cancel.cancel()


async def _wait(stop: asyncio.Event, seconds: float) -> bool:
    """Sleep up to *seconds*; True if *stop* was set meanwhile."""
    try:
        await asyncio.wait_for(stop.wait(), timeout=max(seconds, 0))
    except asyncio.TimeoutError:
        return False
    return True
