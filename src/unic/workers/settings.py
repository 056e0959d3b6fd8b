"""arq worker running the contest scheduler as a cron job.

Import path for arq CLI: arq unic.workers.settings.WorkerSettings

Use this instead of the in-process scheduler (UNIC_SCHEDULER_ENABLED=false
on the API) when ticks should run in a dedicated worker.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from unic.config import get_settings
from unic.database import close_db, init_db, session_scope
from unic.distribution.engine import PrizeDispatcher
from unic.distribution.senders import create_chain_transfer, create_gift_sender
from unic.middleware.logging import setup_logging
from unic.redis_client import create_redis
from unic.scheduler.tick import run_scheduler_tick

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB, Redis and the prize dispatcher on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    redis_client = create_redis(settings.redis_url, max_connections=10)
    ctx["redis_client"] = redis_client
    ctx["dispatcher"] = PrizeDispatcher(
        sender=create_gift_sender(settings),
        chain=create_chain_transfer(settings),
        pacing_seconds=settings.prize_send_pacing_seconds,
        send_timeout_seconds=settings.prize_send_timeout_seconds,
        redis=redis_client,
    )
    logger.info("Contest scheduler worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis_client")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Contest scheduler worker shut down")


async def scheduler_tick(ctx: dict) -> dict:  # type: ignore[type-arg]
    """Scheduled arq task: one scheduler pass every minute."""
    async with session_scope() as db:
        report = await run_scheduler_tick(db, ctx["dispatcher"], ctx.get("redis_client"))
    return report.model_dump()


class WorkerSettings:
    """arq worker settings for the contest scheduler."""

    functions = [scheduler_tick]
    cron_jobs = [
        cron(scheduler_tick, second=0, unique=True, run_at_startup=True),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 1
    job_timeout = 600
