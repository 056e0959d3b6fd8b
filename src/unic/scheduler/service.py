"""Long-running contest scheduler owned by the application lifespan.

One instance per process; a Redis lock keeps ticks single-flight across
processes. Started once at boot and stopped on shutdown.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

import redis.asyncio as aioredis
import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from unic.contests.schemas import TickReport
from unic.distribution.engine import PrizeDispatcher
from unic.scheduler.tick import run_scheduler_tick

logger = structlog.get_logger()

LOCK_KEY = "unic:scheduler:lock"

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class ContestScheduler:
    """Runs ``run_scheduler_tick`` on a fixed interval."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: PrizeDispatcher,
        redis_client: aioredis.Redis | None = None,
        interval_seconds: float = 60.0,
        lock_ttl_seconds: int = 120,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.dispatcher = dispatcher
        self.redis = redis_client
        self.interval_seconds = interval_seconds
        self.lock_ttl_seconds = lock_ttl_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self.last_tick_at: datetime | None = None
        self.last_report: TickReport | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background loop. A second call while running is a no-op."""
        if self._task is not None and not self._task.done():
            logger.info("scheduler_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("scheduler_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Signal the loop to stop and wait for the current tick to finish."""
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("scheduler_stopped")

    async def _loop(self) -> None:
        try:
            while self._running:
                try:
                    await self.tick()
                except Exception:
                    logger.exception("scheduler_tick_failed")
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            pass

    async def _acquire_lock(self, token: str) -> bool:
        if self.redis is None:
            return True
        try:
            return bool(
                await self.redis.set(LOCK_KEY, token, nx=True, px=self.lock_ttl_seconds * 1000)
            )
        except Exception:
            logger.warning("scheduler_lock_unavailable", exc_info=True)
            return False

    async def _release_lock(self, token: str) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.eval(_RELEASE_SCRIPT, 1, LOCK_KEY, token)
        except Exception:
            logger.warning("scheduler_lock_release_failed", exc_info=True)

    async def tick(self) -> TickReport | None:
        """Run one tick under the lock. Returns None if another process holds it."""
        tick_id = uuid.uuid4().hex[:12]
        structlog.contextvars.bind_contextvars(tick_id=tick_id)
        try:
            if not await self._acquire_lock(tick_id):
                logger.debug("scheduler_tick_skipped_locked")
                return None
            try:
                async with self.session_factory() as db:
                    report = await run_scheduler_tick(db, self.dispatcher, self.redis, now=self._clock())
            finally:
                await self._release_lock(tick_id)

            self.last_tick_at = self._clock()
            self.last_report = report
            if report.completed or report.recovered or report.second_chance_drawn or report.failed:
                logger.info("scheduler_tick_done", **report.model_dump())
            return report
        finally:
            structlog.contextvars.unbind_contextvars("tick_id")
