"""Integration tests for point accrual, activity gating and signal dedup."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from unic.contests.lifecycle import activate_contest, create_contest, get_contest, submit_for_payment
from unic.db.base import Base
from unic.errors import ContestNotAcceptingActivity
from unic.scoring.comment_validation import CommentCheck
from unic.scoring.points import apply_activity, apply_comment, effective_points
from unic.scoring.stats import get_stats

pytestmark = pytest.mark.asyncio


class TestEffectivePoints:
    """Test base values and rounding of boosted points."""

    def test_base_values(self):
        assert effective_points("reaction", 1.0) == 1
        assert effective_points("comment", 1.0) == 3
        assert effective_points("reply", 1.0) == 2

    def test_rounds_half_up(self):
        """3 x 1.5 = 4.5 is worth 5; 1 x 1.5 = 1.5 is worth 2."""
        assert effective_points("comment", 1.5) == 5
        assert effective_points("reaction", 1.5) == 2
        assert effective_points("reply", 1.5) == 3

    def test_double(self):
        assert effective_points("comment", 2.0) == 6


class TestApplyActivity:
    """Test atomic point accrual on the stats row."""

    async def test_points_and_counters(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        now = t0 + timedelta(hours=1)

        assert await apply_activity(db_session, contest_id, 100, "reaction", now=now) == 1
        assert await apply_activity(db_session, contest_id, 100, "comment", now=now) == 3
        assert await apply_activity(db_session, contest_id, 100, "reply", now=now) == 2

        stats = await get_stats(db_session, 100, contest_id)
        assert stats is not None
        assert stats.points == 6
        assert (stats.reactions_count, stats.comments_count, stats.replies_count) == (1, 1, 1)
        assert stats.last_activity_at == now

        contest = await get_contest(db_session, contest_id)
        assert contest.participants_count == 1
        assert contest.total_reactions == 1
        assert contest.total_comments == 2

    async def test_points_equal_sum_of_deltas(self, db_session, contest_factory, t0):
        """The stored total always equals the sum of awarded deltas."""
        contest_id = await contest_factory()
        kinds = ["reaction", "comment", "reaction", "reply", "comment", "reaction"]
        awarded = [
            await apply_activity(db_session, contest_id, 7, kind, now=t0 + timedelta(minutes=i))
            for i, kind in enumerate(kinds)
        ]
        stats = await get_stats(db_session, 7, contest_id)
        assert stats is not None
        assert stats.points == sum(awarded) == 11

    async def test_participants_counted_once(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        for pid in (1, 2, 1, 3, 2):
            await apply_activity(db_session, contest_id, pid, "reaction", now=t0 + timedelta(minutes=1))
        contest = await get_contest(db_session, contest_id)
        assert contest.participants_count == 3

    async def test_concurrent_signals_all_count(self, tmp_path, t0):
        """Signals scored in parallel sessions for one participant add up exactly."""
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'scoring.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            async with factory() as db:
                contest = await create_contest(
                    db, channel_id=-1001234567890, owner_id=42, duration="24h", winners_count=1,
                    prizes=[{"kind": "custom", "name": "Mug"}],
                )
                contest_id = contest.id
                await submit_for_payment(db, contest_id)
                await activate_contest(db, contest_id, now=t0)

            kinds = ["reaction", "comment", "reply"] * 4

            async def _signal(offset: int, kind: str) -> int:
                async with factory() as db:
                    return await apply_activity(db, contest_id, 7, kind, now=t0 + timedelta(seconds=60 + offset))

            awarded = await asyncio.gather(*(_signal(i, kind) for i, kind in enumerate(kinds)))
            assert sum(awarded) == 24

            async with factory() as db:
                stats = await get_stats(db, 7, contest_id)
                assert stats is not None
                assert stats.points == 24
                assert (stats.reactions_count, stats.comments_count, stats.replies_count) == (4, 4, 4)
                contest = await get_contest(db, contest_id)
                assert contest.participants_count == 1
                assert (contest.total_reactions, contest.total_comments) == (4, 8)
        finally:
            await engine.dispose()


    async def test_unknown_action_kind(self, db_session, contest_factory):
        contest_id = await contest_factory()
        with pytest.raises(ValueError, match="Unknown action kind"):
            await apply_activity(db_session, contest_id, 1, "share")


class TestActivityGating:
    """Test that the contest's activity type filters action kinds."""

    async def test_reactions_only(self, db_session, contest_factory, t0):
        contest_id = await contest_factory(activity_type="reactions")
        now = t0 + timedelta(minutes=5)
        assert await apply_activity(db_session, contest_id, 1, "comment", now=now) == 0
        assert await apply_activity(db_session, contest_id, 1, "reply", now=now) == 0
        assert await get_stats(db_session, 1, contest_id) is None

        assert await apply_activity(db_session, contest_id, 1, "reaction", now=now) == 1

    async def test_comments_only(self, db_session, contest_factory, t0):
        contest_id = await contest_factory(activity_type="comments")
        now = t0 + timedelta(minutes=5)
        assert await apply_activity(db_session, contest_id, 1, "reaction", now=now) == 0
        assert await apply_activity(db_session, contest_id, 1, "comment", now=now) == 3
        assert await apply_activity(db_session, contest_id, 1, "reply", now=now) == 2


class TestNotAccepting:
    """Test that only active, unexpired contests accept signals."""

    async def test_after_end(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        with pytest.raises(ContestNotAcceptingActivity):
            await apply_activity(db_session, contest_id, 1, "reaction", now=t0 + timedelta(hours=24))
        assert await get_stats(db_session, 1, contest_id) is None

    async def test_draft_contest(self, db_session, t0):
        contest = await create_contest(
            db_session,
            channel_id=1,
            owner_id=1,
            duration="24h",
            winners_count=1,
            prizes=[{"kind": "custom", "name": "Mug"}],
        )
        with pytest.raises(ContestNotAcceptingActivity):
            await apply_activity(db_session, contest.id, 1, "reaction", now=t0)

    async def test_unknown_contest(self, db_session):
        with pytest.raises(ContestNotAcceptingActivity):
            await apply_activity(db_session, 999, 1, "reaction")


class TestSignalDedup:
    """Test that redelivered platform signals are scored once."""

    async def test_duplicate_signal_awards_zero(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        now = t0 + timedelta(minutes=1)
        assert await apply_activity(db_session, contest_id, 1, "reaction", message_id=55, now=now) == 1
        assert await apply_activity(db_session, contest_id, 1, "reaction", message_id=55, now=now) == 0

        stats = await get_stats(db_session, 1, contest_id)
        assert stats is not None and stats.points == 1

    async def test_different_action_on_same_message(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        now = t0 + timedelta(minutes=1)
        await apply_activity(db_session, contest_id, 1, "reaction", message_id=55, now=now)
        assert await apply_activity(db_session, contest_id, 1, "comment", message_id=55, now=now) == 3

    async def test_no_message_id_is_not_deduplicated(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        now = t0 + timedelta(minutes=1)
        await apply_activity(db_session, contest_id, 1, "reaction", now=now)
        await apply_activity(db_session, contest_id, 1, "reaction", now=now)
        stats = await get_stats(db_session, 1, contest_id)
        assert stats is not None and stats.points == 2


class TestApplyComment:
    """Test the comment validator in front of scoring."""

    async def test_valid_comment_scores(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        awarded, check = await apply_comment(
            db_session, contest_id, 1, "Really useful breakdown of the update", now=t0 + timedelta(minutes=1)
        )
        assert awarded == 3
        assert check.valid

    async def test_valid_reply_scores_as_reply(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        awarded, _ = await apply_comment(
            db_session, contest_id, 1, "Agree with you on that point", is_reply=True, now=t0 + timedelta(minutes=1)
        )
        assert awarded == 2
        stats = await get_stats(db_session, 1, contest_id)
        assert stats is not None and stats.replies_count == 1

    async def test_rejected_comment_touches_nothing(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        awarded, check = await apply_comment(db_session, contest_id, 1, "+1", now=t0 + timedelta(minutes=1))
        assert awarded == 0
        assert not check.valid
        assert await get_stats(db_session, 1, contest_id) is None

    async def test_custom_validator(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        awarded, check = await apply_comment(
            db_session,
            contest_id,
            1,
            "ok",
            validator=lambda text: CommentCheck(True),
            now=t0 + timedelta(minutes=1),
        )
        assert awarded == 3
        assert check.valid

    async def test_comment_burst_is_rejected(self, db_session, contest_factory, t0):
        """Three comments inside the cooldown window block the next one."""
        contest_id = await contest_factory()
        now = t0 + timedelta(minutes=5)
        recent = [now - timedelta(seconds=s) for s in (5, 12, 20)]
        awarded, check = await apply_comment(
            db_session, contest_id, 1, "Really useful breakdown of the update",
            recent_comment_times=recent, now=now,
        )
        assert awarded == 0
        assert check == CommentCheck(False, "Commenting too fast")
        assert await get_stats(db_session, 1, contest_id) is None

    async def test_spaced_comments_are_scored(self, db_session, contest_factory, t0):
        contest_id = await contest_factory()
        now = t0 + timedelta(minutes=5)
        recent = [now - timedelta(minutes=m) for m in (1, 2, 3)]
        awarded, check = await apply_comment(
            db_session, contest_id, 1, "Really useful breakdown of the update",
            recent_comment_times=recent, now=now,
        )
        assert awarded == 3
        assert check.valid
