"""Live leaderboard queries.

Ranks are always computed from current stats; no stored rank is trusted.
Reads are not locked against concurrent scoring, so a rank taken mid-update
is an eventually-consistent snapshot.
"""

from __future__ import annotations

import logging

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from unic.db.models import ParticipantStats
from unic.leaderboard.ranking import rank_entries
from unic.leaderboard.schemas import LeaderboardEntry, LeaderboardPage, LeaderboardPosition

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 500

_ENTRY_COLUMNS = (
    ParticipantStats.participant_id,
    ParticipantStats.points,
    ParticipantStats.reactions_count,
    ParticipantStats.comments_count,
    ParticipantStats.replies_count,
    ParticipantStats.boost_multiplier,
    ParticipantStats.last_activity_at,
)

_ORDERING = (
    ParticipantStats.points.desc(),
    ParticipantStats.last_activity_at.asc(),
    ParticipantStats.participant_id.asc(),
)


async def count_participants(db: AsyncSession, contest_id: int) -> int:
    total = await db.scalar(
        select(func.count(ParticipantStats.id)).where(ParticipantStats.contest_id == contest_id)
    )
    return int(total or 0)


async def top_participants(db: AsyncSession, contest_id: int, limit: int) -> list[dict]:
    """Top *limit* participants as plain dicts, in rank order."""
    if limit <= 0:
        return []
    result = await db.execute(
        select(*_ENTRY_COLUMNS)
        .where(ParticipantStats.contest_id == contest_id)
        .order_by(*_ORDERING)
        .limit(limit)
    )
    return rank_entries([dict(row._mapping) for row in result])


async def rank(
    db: AsyncSession,
    contest_id: int,
    limit: int = 100,
    offset: int = 0,
) -> LeaderboardPage:
    """One page of the contest leaderboard."""
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)

    result = await db.execute(
        select(*_ENTRY_COLUMNS)
        .where(ParticipantStats.contest_id == contest_id)
        .order_by(*_ORDERING)
        .offset(offset)
        .limit(limit)
    )
    ranked = rank_entries([dict(row._mapping) for row in result], offset=offset)
    return LeaderboardPage(
        contest_id=contest_id,
        entries=[LeaderboardEntry(**entry) for entry in ranked],
        total_participants=await count_participants(db, contest_id),
        limit=limit,
        offset=offset,
    )


async def position_of(
    db: AsyncSession,
    contest_id: int,
    participant_id: int,
) -> LeaderboardPosition | None:
    """Live rank of one participant: ``count(strictly ahead) + 1``.

    Returns None when the participant has no stats in this contest.
    """
    me = (
        await db.execute(
            select(ParticipantStats.points, ParticipantStats.last_activity_at).where(
                ParticipantStats.contest_id == contest_id,
                ParticipantStats.participant_id == participant_id,
            )
        )
    ).one_or_none()
    if me is None:
        return None

    ahead = await db.scalar(
        select(func.count(ParticipantStats.id)).where(
            ParticipantStats.contest_id == contest_id,
            or_(
                ParticipantStats.points > me.points,
                and_(
                    ParticipantStats.points == me.points,
                    ParticipantStats.last_activity_at < me.last_activity_at,
                ),
                and_(
                    ParticipantStats.points == me.points,
                    ParticipantStats.last_activity_at == me.last_activity_at,
                    ParticipantStats.participant_id < participant_id,
                ),
            ),
        )
    )
    return LeaderboardPosition(
        contest_id=contest_id,
        participant_id=participant_id,
        rank=int(ahead or 0) + 1,
        points=me.points,
        total_participants=await count_participants(db, contest_id),
    )
