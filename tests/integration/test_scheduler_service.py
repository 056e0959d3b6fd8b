"""Tests for the background ContestScheduler and its Redis lock."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from unic.contests.lifecycle import get_contest
from unic.scheduler.service import LOCK_KEY, ContestScheduler
from unic.scoring.points import apply_activity

pytestmark = pytest.mark.asyncio


class TestSchedulerTick:
    """Test a single locked tick."""

    async def test_tick_without_redis(self, session_factory, db_session, contest_factory, dispatcher, t0):
        contest_id = await contest_factory()
        await apply_activity(db_session, contest_id, 1, "reaction", now=t0 + timedelta(minutes=1))

        scheduler = ContestScheduler(session_factory, dispatcher, clock=lambda: t0 + timedelta(hours=25))
        report = await scheduler.tick()

        assert report is not None
        assert report.completed == [contest_id]
        assert scheduler.last_report == report
        assert scheduler.last_tick_at == t0 + timedelta(hours=25)
        assert (await get_contest(db_session, contest_id)).status == "completed"

    async def test_tick_takes_and_releases_lock(self, session_factory, redis_mock, dispatcher, t0):
        redis_mock.set = AsyncMock(return_value=True)
        scheduler = ContestScheduler(session_factory, dispatcher, redis_client=redis_mock, clock=lambda: t0)

        report = await scheduler.tick()
        assert report is not None

        args, kwargs = redis_mock.set.await_args
        assert args[0] == LOCK_KEY
        assert kwargs == {"nx": True, "px": 120_000}
        redis_mock.eval.assert_awaited_once()
        assert redis_mock.eval.await_args.args[2:] == (LOCK_KEY, args[1])

    async def test_tick_skipped_when_locked(
        self, session_factory, db_session, redis_mock, contest_factory, dispatcher, t0
    ):
        """Another process holding the lock means this tick does nothing."""
        contest_id = await contest_factory()
        redis_mock.set = AsyncMock(return_value=None)
        scheduler = ContestScheduler(
            session_factory, dispatcher, redis_client=redis_mock, clock=lambda: t0 + timedelta(hours=25)
        )

        assert await scheduler.tick() is None
        assert scheduler.last_tick_at is None
        redis_mock.eval.assert_not_awaited()
        assert (await get_contest(db_session, contest_id)).status == "active"

    async def test_tick_skipped_when_redis_down(self, session_factory, redis_mock, dispatcher, t0):
        redis_mock.set = AsyncMock(side_effect=ConnectionError("redis down"))
        scheduler = ContestScheduler(session_factory, dispatcher, redis_client=redis_mock, clock=lambda: t0)
        assert await scheduler.tick() is None


class TestSchedulerLoop:
    """Test start/stop of the background task."""

    async def test_start_and_stop(self, session_factory, dispatcher, monkeypatch):
        scheduler = ContestScheduler(session_factory, dispatcher, interval_seconds=3600)
        fake_tick = AsyncMock(return_value=None)
        monkeypatch.setattr(scheduler, "tick", fake_tick)

        await scheduler.start()
        assert scheduler.running
        await asyncio.sleep(0.01)
        fake_tick.assert_awaited_once()

        await scheduler.start()
        await asyncio.sleep(0.01)
        fake_tick.assert_awaited_once()

        await scheduler.stop()
        assert not scheduler.running

    async def test_failing_tick_keeps_loop_alive(self, session_factory, dispatcher, monkeypatch):
        scheduler = ContestScheduler(session_factory, dispatcher, interval_seconds=0.01)
        fake_tick = AsyncMock(side_effect=RuntimeError("boom"))
        monkeypatch.setattr(scheduler, "tick", fake_tick)

        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()
        assert fake_tick.await_count >= 2

    async def test_stop_before_start(self, session_factory, dispatcher):
        scheduler = ContestScheduler(session_factory, dispatcher)
        await scheduler.stop()
        assert not scheduler.running
