"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from unic.contests.lifecycle import activate_contest, create_contest, submit_for_payment
from unic.database import get_session
from unic.db.base import Base
from unic.distribution.engine import PrizeDispatcher
from unic.distribution.senders import BaseChainTransfer, BasePrizeSender

# Contest clock used across integration tests
T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeSender(BasePrizeSender):
    """Records every gift send; outcomes are popped from *results*, default success."""

    def __init__(self, results: list[bool] | None = None) -> None:
        self.results = list(results or [])
        self.calls: list[tuple[int, str, str]] = []

    async def send(self, recipient_id: int, gift_id: str, message: str) -> bool:
        self.calls.append((recipient_id, gift_id, message))
        if self.results:
            return self.results.pop(0)
        return True


class FakeChain(BaseChainTransfer):
    """Records every transfer; outcomes are popped from *results*, default success."""

    network = "mainnet"

    def __init__(self, results: list[bool] | None = None) -> None:
        self.results = list(results or [])
        self.calls: list[tuple[str, Decimal, str]] = []

    async def transfer(self, address: str, amount: Decimal, memo: str) -> bool:
        self.calls.append((address, amount, memo))
        if self.results:
            return self.results.pop(0)
        return True


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for test assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def dispatcher(sender: FakeSender, chain: FakeChain) -> PrizeDispatcher:
    """Dispatcher with fake collaborators and no pacing delay."""
    return PrizeDispatcher(sender=sender, chain=chain, pacing_seconds=0)


@pytest.fixture
def contest_factory(db_session: AsyncSession) -> Callable[..., Awaitable[int]]:
    """Create a contest and drive it to ``active`` at T0. Returns its id."""

    async def _create(
        winners_count: int = 2,
        prizes: list[dict[str, Any]] | None = None,
        activity_type: str = "all",
        boosts_enabled: bool = True,
        duration: str = "24h",
        second_chance_prize: dict[str, Any] | None = None,
        now: datetime = T0,
    ) -> int:
        if prizes is None:
            prizes = [{"kind": "custom", "name": f"Prize #{i}"} for i in range(1, winners_count + 1)]
        contest = await create_contest(
            db_session,
            channel_id=-1001234567890,
            owner_id=42,
            duration=duration,
            winners_count=winners_count,
            prizes=prizes,
            activity_type=activity_type,
            boosts_enabled=boosts_enabled,
            second_chance_prize=second_chance_prize,
        )
        contest_id = contest.id
        await submit_for_payment(db_session, contest_id)
        await activate_contest(db_session, contest_id, now=now)
        return contest_id

    return _create


@pytest.fixture
def redis_mock() -> AsyncMock:
    redis = AsyncMock()
    redis.ping = AsyncMock(return_value=True)
    return redis


@pytest.fixture
def app(db_session: AsyncSession, redis_mock: AsyncMock, monkeypatch: pytest.MonkeyPatch) -> FastAPI:
    """App backed by the test database and a mocked Redis.

    The lifespan is not run, so no scheduler is started.
    """
    from unic.main import create_app

    monkeypatch.setattr("unic.health.router.get_redis", lambda: redis_mock)
    app = create_app()

    async def _session_override() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_session] = _session_override
    return app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
