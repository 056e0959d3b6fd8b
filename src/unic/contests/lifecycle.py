"""Contest lifecycle state machine.

State transitions:
  draft -> pending_payment -> active -> completing -> completed
  active -> cancelled (external escape)

Every transition is applied as a conditional UPDATE on the current status,
so two actors racing on the same contest cannot both win.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from unic.contests.prizes import PooledGift, dump_prize, parse_prize, prize_for_position, validate_prizes
from unic.db.models import Contest, SecondChanceEntry
from unic.errors import (
    ContestNotFound,
    InvalidPrizeConfig,
    InvalidTransition,
    SecondChanceNotAllowed,
)
from unic.pool import ledger

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[str, list[str]] = {
    "draft": ["pending_payment"],
    "pending_payment": ["active"],
    "active": ["completing", "cancelled"],
    "completing": ["completed"],
    "completed": [],
    "cancelled": [],
}

DURATIONS: dict[str, timedelta] = {
    "24h": timedelta(hours=24),
    "48h": timedelta(hours=48),
    "72h": timedelta(hours=72),
    "7d": timedelta(days=7),
}

ACTIVITY_TYPES = ("reactions", "comments", "all")

MIN_WINNERS = 1
MAX_WINNERS = 100

SECOND_CHANCE_PRICE = 75


def validate_transition(current_status: str, target_status: str) -> None:
    """Raise InvalidTransition unless current -> target is allowed."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise InvalidTransition(current_status, target_status, valid)


async def get_contest(db: AsyncSession, contest_id: int) -> Contest:
    """Load a contest, always refreshing from the database."""
    result = await db.execute(
        select(Contest).where(Contest.id == contest_id).execution_options(populate_existing=True)
    )
    contest = result.scalar_one_or_none()
    if contest is None:
        raise ContestNotFound(contest_id)
    return contest


async def transition(
    db: AsyncSession,
    contest_id: int,
    target_status: str,
    **values: Any,
) -> Contest:
    """Move a contest to *target_status* with a compare-and-set on its status.

    Extra column *values* are written in the same statement. Flushes only.
    """
    contest = await get_contest(db, contest_id)
    current = contest.status
    validate_transition(current, target_status)

    result = await db.execute(
        update(Contest)
        .where(Contest.id == contest_id, Contest.status == current)
        .values(status=target_status, updated_at=datetime.now(timezone.utc), **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Lost the race; report against the status that won.
        contest = await get_contest(db, contest_id)
        raise InvalidTransition(contest.status, target_status, VALID_TRANSITIONS.get(contest.status, []))

    logger.info("Contest %d: %s -> %s", contest_id, current, target_status)
    return await get_contest(db, contest_id)


async def create_contest(
    db: AsyncSession,
    channel_id: int,
    owner_id: int,
    duration: str,
    winners_count: int,
    prizes: list[dict[str, Any]],
    activity_type: str = "all",
    boosts_enabled: bool = True,
    title: str | None = None,
    second_chance_prize: dict[str, Any] | None = None,
) -> Contest:
    """Create a contest in ``draft`` after validating its configuration."""
    if duration not in DURATIONS:
        raise ValueError(f"Invalid duration: {duration}. Must be one of {list(DURATIONS)}")
    if activity_type not in ACTIVITY_TYPES:
        raise ValueError(f"Invalid activity type: {activity_type}. Must be one of {list(ACTIVITY_TYPES)}")
    if not MIN_WINNERS <= winners_count <= MAX_WINNERS:
        raise ValueError(f"Winners count must be between {MIN_WINNERS} and {MAX_WINNERS}")

    errors = await validate_prizes(db, prizes, winners_count)
    if second_chance_prize is not None:
        errors.extend(await validate_prizes(db, [second_chance_prize], 1))
    if errors:
        raise InvalidPrizeConfig(errors)

    contest = Contest(
        channel_id=channel_id,
        owner_id=owner_id,
        title=title,
        status="draft",
        activity_type=activity_type,
        duration=duration,
        winners_count=winners_count,
        boosts_enabled=boosts_enabled,
        prizes=[dump_prize(parse_prize(p)) for p in prizes],
        second_chance_prize=(
            dump_prize(parse_prize(second_chance_prize)) if second_chance_prize is not None else None
        ),
        winners=[],
    )
    db.add(contest)
    await db.commit()
    logger.info("Created contest %d for channel %d (%s, %d winners)", contest.id, channel_id, duration, winners_count)
    return contest


async def submit_for_payment(db: AsyncSession, contest_id: int) -> Contest:
    contest = await transition(db, contest_id, "pending_payment")
    await db.commit()
    return contest


async def activate_contest(
    db: AsyncSession,
    contest_id: int,
    now: datetime | None = None,
) -> Contest:
    """Start the contest clock and hold pooled prizes against the gift pool.

    A pooled prize the pool cannot fully cover gets no hold; it is sent
    on demand at distribution time.
    """
    now = now or datetime.now(timezone.utc)
    contest = await get_contest(db, contest_id)
    ends_at = now + DURATIONS[contest.duration]
    contest = await transition(db, contest_id, "active", starts_at=now, ends_at=ends_at)

    for position in range(1, contest.winners_count + 1):
        prize = prize_for_position(contest, position)
        if not isinstance(prize, PooledGift):
            continue
        hold = await ledger.hold_for_prize(db, contest_id, position, prize.gift_id, prize.quantity)
        if hold is None:
            logger.warning(
                "Contest %d position %d: pool cannot cover %d x %s, will send on demand",
                contest_id, position, prize.quantity, prize.gift_id,
            )

    await db.commit()
    logger.info("Contest %d active until %s", contest_id, ends_at.isoformat())
    return contest


async def cancel_contest(db: AsyncSession, contest_id: int) -> Contest:
    """Cancel an active contest and return its held gifts to the pool."""
    contest = await transition(db, contest_id, "cancelled")
    await ledger.release_contest_holds(db, contest_id)
    await db.commit()
    return contest


async def enter_second_chance(
    db: AsyncSession,
    contest_id: int,
    participant_id: int,
    proof: str,
) -> SecondChanceEntry:
    """Register a non-winner for the delayed bonus draw.

    *proof* is the eligibility token (e.g. a payment id) and must be unique.
    """
    contest = await get_contest(db, contest_id)
    if contest.status != "completed":
        raise SecondChanceNotAllowed(f"Contest {contest_id} must be completed to enter the second chance draw")
    if contest.second_chance_drawn_at is not None:
        raise SecondChanceNotAllowed(f"Second chance draw for contest {contest_id} already took place")
    if any(w.get("telegram_id") == participant_id for w in contest.winners or []):
        raise SecondChanceNotAllowed(f"Participant {participant_id} already won contest {contest_id}")

    entry = SecondChanceEntry(
        participant_id=participant_id,
        contest_id=contest_id,
        proof=proof,
        is_winner=False,
    )
    db.add(entry)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise SecondChanceNotAllowed(
            f"Participant {participant_id} already has a second chance entry for contest {contest_id}"
        ) from None

    logger.info("Second chance entry for participant %d in contest %d", participant_id, contest_id)
    return entry
