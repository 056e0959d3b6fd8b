"""Lazy creation of per-(participant, contest) stats rows."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from unic.db.dialect import upsert
from unic.db.models import Contest, ParticipantStats


async def ensure_stats(
    db: AsyncSession,
    participant_id: int,
    contest_id: int,
    now: datetime,
) -> bool:
    """Create the stats row if missing. Returns True when it was created.

    A newly created row bumps the contest's ``participants_count`` in the
    same transaction. Flushes only.
    """
    stmt = (
        upsert(db, ParticipantStats)
        .values(
            participant_id=participant_id,
            contest_id=contest_id,
            points=0,
            reactions_count=0,
            comments_count=0,
            replies_count=0,
            boost_multiplier=1.0,
            last_activity_at=now,
        )
        .on_conflict_do_nothing(index_elements=["participant_id", "contest_id"])
    )
    result = await db.execute(stmt)
    created = result.rowcount == 1
    if created:
        await db.execute(
            update(Contest)
            .where(Contest.id == contest_id)
            .values(participants_count=Contest.participants_count + 1)
            .execution_options(synchronize_session=False)
        )
    return created


async def get_stats(db: AsyncSession, participant_id: int, contest_id: int) -> ParticipantStats | None:
    result = await db.execute(
        select(ParticipantStats)
        .where(
            ParticipantStats.participant_id == participant_id,
            ParticipantStats.contest_id == contest_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
