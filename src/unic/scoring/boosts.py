"""Purchased point multipliers.

At most one active boost per (participant, contest). Expired boosts are
deactivated lazily, the first time they are read past their expiry, instead
of by a background sweep. The participant's stats row caches the current
multiplier so scoring never needs a join.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import ColumnElement, and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from unic.db.models import Boost, Contest, ParticipantStats
from unic.errors import (
    BoostAlreadyActive,
    BoostsDisabled,
    ContestNotAcceptingActivity,
    ContestNotFound,
    InvalidQuantity,
)
from unic.scoring.stats import ensure_stats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoostType:
    name: str
    multiplier: float
    lifetime: timedelta | None
    list_price: int


# lifetime None: bounded only by the contest's own end time
BOOST_TYPES: dict[str, BoostType] = {
    "x2_24h": BoostType("x2_24h", 2.0, timedelta(hours=24), 100),
    "x1.5_forever": BoostType("x1.5_forever", 1.5, None, 200),
}


def active_predicate(now: datetime) -> ColumnElement[bool]:
    """``is_active AND (expires_at IS NULL OR expires_at > now)``."""
    return and_(
        Boost.is_active.is_(True),
        or_(Boost.expires_at.is_(None), Boost.expires_at > now),
    )


async def deactivate_expired(
    db: AsyncSession,
    participant_id: int,
    contest_id: int,
    now: datetime,
) -> int:
    """Flip expired boosts to inactive and reset the cached multiplier.

    Idempotent; flushes only. Returns the number of boosts deactivated.
    """
    result = await db.execute(
        update(Boost)
        .where(
            Boost.participant_id == participant_id,
            Boost.contest_id == contest_id,
            Boost.is_active.is_(True),
            Boost.expires_at.is_not(None),
            Boost.expires_at <= now,
        )
        .values(is_active=False)
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(ParticipantStats)
        .where(
            ParticipantStats.participant_id == participant_id,
            ParticipantStats.contest_id == contest_id,
            ParticipantStats.boost_expires_at.is_not(None),
            ParticipantStats.boost_expires_at <= now,
        )
        .values(boost_multiplier=1.0, boost_expires_at=None)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info(
            "Deactivated %d expired boost(s) for participant %d in contest %d",
            result.rowcount, participant_id, contest_id,
        )
    return result.rowcount or 0


async def get_active_boost(
    db: AsyncSession,
    participant_id: int,
    contest_id: int,
    now: datetime | None = None,
) -> Boost | None:
    """Return the live boost, deactivating an expired one on the way."""
    now = now or datetime.now(timezone.utc)
    if await deactivate_expired(db, participant_id, contest_id, now):
        await db.commit()
    result = await db.execute(
        select(Boost)
        .where(
            Boost.participant_id == participant_id,
            Boost.contest_id == contest_id,
            active_predicate(now),
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def apply_boost(
    db: AsyncSession,
    participant_id: int,
    contest_id: int,
    boost_type: str,
    price_units: int,
    now: datetime | None = None,
) -> Boost:
    """Activate a paid boost for a participant.

    Raises BoostAlreadyActive when a live boost exists; the existing boost
    keeps applying. The cached multiplier on the stats row is updated in the
    same transaction so the next scoring call sees it.
    """
    if boost_type not in BOOST_TYPES:
        raise ValueError(f"Unknown boost type: {boost_type}")
    if isinstance(price_units, bool) or not isinstance(price_units, int) or price_units <= 0:
        raise InvalidQuantity(price_units)

    kind = BOOST_TYPES[boost_type]
    now = now or datetime.now(timezone.utc)

    contest = await db.get(Contest, contest_id, populate_existing=True)
    if contest is None:
        raise ContestNotFound(contest_id)
    if contest.status != "active" or contest.ends_at is None or contest.ends_at <= now:
        raise ContestNotAcceptingActivity(contest_id)
    if not contest.boosts_enabled:
        raise BoostsDisabled(contest_id)

    await deactivate_expired(db, participant_id, contest_id, now)

    existing = await db.scalar(
        select(Boost.id).where(
            Boost.participant_id == participant_id,
            Boost.contest_id == contest_id,
            active_predicate(now),
        )
    )
    if existing is not None:
        await db.commit()
        raise BoostAlreadyActive(participant_id, contest_id)

    expires_at = now + kind.lifetime if kind.lifetime is not None else None
    boost = Boost(
        participant_id=participant_id,
        contest_id=contest_id,
        type=kind.name,
        multiplier=kind.multiplier,
        price_units=price_units,
        activated_at=now,
        expires_at=expires_at,
        is_active=True,
    )
    db.add(boost)
    try:
        await db.flush()
    except IntegrityError:
        # a concurrent purchase won the partial unique index
        await db.rollback()
        raise BoostAlreadyActive(participant_id, contest_id) from None

    await ensure_stats(db, participant_id, contest_id, now)
    await db.execute(
        update(ParticipantStats)
        .where(
            ParticipantStats.participant_id == participant_id,
            ParticipantStats.contest_id == contest_id,
        )
        .values(boost_multiplier=kind.multiplier, boost_expires_at=expires_at)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info(
        "Boost %s (x%.1f) activated for participant %d in contest %d",
        boost.type, boost.multiplier, participant_id, contest_id,
    )
    return boost
