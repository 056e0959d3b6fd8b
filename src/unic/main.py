"""FastAPI application factory."""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from unic.config import get_settings
from unic.database import close_db, get_session_factory, init_db
from unic.distribution.engine import PrizeDispatcher
from unic.distribution.senders import create_chain_transfer, create_gift_sender
from unic.health.router import router as health_router
from unic.middleware import setup_middleware
from unic.redis_client import close_redis, get_redis, init_redis
from unic.scheduler.service import ContestScheduler

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    scheduler: ContestScheduler | None = None
    if settings.scheduler_enabled:
        redis = get_redis()
        dispatcher = PrizeDispatcher(
            sender=create_gift_sender(settings),
            chain=create_chain_transfer(settings),
            pacing_seconds=settings.prize_send_pacing_seconds,
            send_timeout_seconds=settings.prize_send_timeout_seconds,
            redis=redis,
        )
        scheduler = ContestScheduler(
            get_session_factory(),
            dispatcher,
            redis_client=redis,
            interval_seconds=settings.scheduler_interval_seconds,
            lock_ttl_seconds=settings.scheduler_lock_ttl_seconds,
        )
        await scheduler.start()
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        try:
            await asyncio.wait_for(scheduler.stop(), timeout=settings.prize_send_timeout_seconds)
        except TimeoutError:
            logger.warning("scheduler_stop_timeout")
    app.state.scheduler = None

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="UNIC Contest Engine",
        description="Engagement scoring and prize distribution engine",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])

    return app


app = create_app()
