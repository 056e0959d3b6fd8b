"""One pass of the contest lifecycle scheduler.

Idempotent and safe to invoke manually for recovery or testing. Each pass:
  1. resumes contests left in ``completing`` by an interrupted pass
  2. claims ``active`` contests past ``ends_at`` (active -> completing) and
     completes them: top-N become winners, prizes are distributed
  3. sweeps ``completed`` contests whose distribution never finished and
     sends prizes to winners that have no distribution record yet
  4. runs the delayed second-chance draw for contests that are due

A failure on one contest is logged and never aborts the others.
"""

from __future__ import annotations

import logging
import random
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from unic.config import get_settings
from unic.contests.lifecycle import get_contest, transition
from unic.contests.prizes import dump_prize, prize_for_position
from unic.contests.schemas import TickReport, WinnerEntry
from unic.db.models import Contest, ParticipantStats, PrizeDistribution, SecondChanceEntry
from unic.distribution.engine import PrizeDispatcher, distribute
from unic.leaderboard.service import top_participants
from unic.pool import ledger
from unic.redis_client import CONTEST_COMPLETED, SECOND_CHANCE_DRAWN, publish_event

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)


def _winner_entry(
    contest: Contest,
    participant: dict[str, Any],
    position: int,
    second_chance: bool = False,
) -> WinnerEntry:
    prize = prize_for_position(contest, position)
    return WinnerEntry(
        telegram_id=participant["participant_id"],
        points=participant.get("points", 0),
        position=position,
        prize=dump_prize(prize) if prize is not None else None,
        sent=False,
        second_chance=second_chance,
    )


async def _mark_distributed(db: AsyncSession, contest_id: int, now: datetime) -> None:
    await db.execute(
        update(Contest)
        .where(Contest.id == contest_id)
        .values(prizes_distributed_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def complete_contest(
    db: AsyncSession,
    contest_id: int,
    dispatcher: PrizeDispatcher,
    now: datetime,
    redis: Redis | None = None,
    second_chance_delay: timedelta | None = None,
) -> list[WinnerEntry]:
    """Freeze winners for a ``completing`` contest and distribute their prizes.

    The winner list is persisted and the contest marked ``completed`` in one
    commit before any prize is sent.
    """
    if second_chance_delay is None:
        second_chance_delay = timedelta(seconds=get_settings().second_chance_delay_seconds)

    contest = await get_contest(db, contest_id)
    if contest.status != "completing":
        logger.info("Contest %d is %s, nothing to complete", contest_id, contest.status)
        return []

    top = await top_participants(db, contest_id, contest.winners_count)
    winners = [_winner_entry(contest, p, p["rank"]) for p in top]

    await transition(
        db,
        contest_id,
        "completed",
        winners=[w.model_dump(mode="json") for w in winners],
        completed_at=now,
        second_chance_due_at=now + second_chance_delay,
    )
    # Holds for positions nobody reached go back to the pool.
    for position in range(len(winners) + 1, contest.winners_count + 1):
        hold = await ledger.get_hold(db, contest_id, position)
        if hold is not None:
            await ledger.release_hold(db, hold)
    await db.commit()

    logger.info("Contest %d completed with %d winner(s)", contest_id, len(winners))
    await publish_event(
        redis,
        CONTEST_COMPLETED,
        {"contest_id": contest_id, "winners": [w.telegram_id for w in winners]},
    )

    if winners:
        await distribute(db, contest_id, winners, dispatcher)
    await _mark_distributed(db, contest_id, now)
    return winners


async def complete_contest_now(
    db: AsyncSession,
    contest_id: int,
    dispatcher: PrizeDispatcher,
    now: datetime | None = None,
    redis: Redis | None = None,
) -> list[WinnerEntry]:
    """Manual completion trigger: close an active contest immediately."""
    now = now or datetime.now(timezone.utc)
    await transition(db, contest_id, "completing")
    await db.commit()
    return await complete_contest(db, contest_id, dispatcher, now, redis)


async def recover_distribution(
    db: AsyncSession,
    contest_id: int,
    dispatcher: PrizeDispatcher,
    now: datetime,
) -> int:
    """Distribute to winners of a completed contest that have no record yet.

    Returns the number of winners handed to distribution.
    """
    contest = await get_contest(db, contest_id)
    result = await db.execute(
        select(PrizeDistribution.winner_id, PrizeDistribution.position).where(
            PrizeDistribution.contest_id == contest_id
        )
    )
    done = {(row.winner_id, row.position) for row in result}
    missing = [
        WinnerEntry.model_validate(w)
        for w in contest.winners or []
        if (w["telegram_id"], w["position"]) not in done
    ]
    if missing:
        logger.warning("Contest %d: recovering distribution for %d winner(s)", contest_id, len(missing))
        await distribute(db, contest_id, missing, dispatcher)
    await _mark_distributed(db, contest_id, now)
    return len(missing)


async def draw_second_chance(
    db: AsyncSession,
    contest_id: int,
    dispatcher: PrizeDispatcher,
    now: datetime,
    redis: Redis | None = None,
    max_winners: int | None = None,
    rng: random.Random | None = None,
) -> list[WinnerEntry] | None:
    """Run the delayed bonus draw exactly once for a completed contest.

    The draw is claimed by stamping ``second_chance_drawn_at``; the new
    winners, the entries' ``is_winner`` flags and the claim are committed
    together before prizes are sent. Returns None when the draw was not due
    or already taken.
    """
    if max_winners is None:
        max_winners = get_settings().second_chance_max_winners
    rng = rng or secrets.SystemRandom()

    claimed = await db.execute(
        update(Contest)
        .where(
            Contest.id == contest_id,
            Contest.status == "completed",
            Contest.second_chance_drawn_at.is_(None),
            Contest.second_chance_due_at <= now,
        )
        .values(second_chance_drawn_at=now, prizes_distributed_at=None)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await db.rollback()
        return None

    contest = await get_contest(db, contest_id)
    existing = list(contest.winners or [])
    already_won = {w["telegram_id"] for w in existing}

    result = await db.execute(
        select(SecondChanceEntry)
        .where(SecondChanceEntry.contest_id == contest_id, SecondChanceEntry.is_winner.is_(False))
        .order_by(SecondChanceEntry.id)
    )
    eligible = [e for e in result.scalars().all() if e.participant_id not in already_won]
    picked = rng.sample(eligible, min(max_winners, len(eligible)))

    points_result = await db.execute(
        select(ParticipantStats.participant_id, ParticipantStats.points).where(
            ParticipantStats.contest_id == contest_id,
            ParticipantStats.participant_id.in_([e.participant_id for e in picked]),
        )
    )
    points = {row.participant_id: row.points for row in points_result}

    next_position = max((w["position"] for w in existing), default=0) + 1
    new_winners: list[WinnerEntry] = []
    for offset, entry in enumerate(picked):
        participant = {"participant_id": entry.participant_id, "points": points.get(entry.participant_id, 0)}
        new_winners.append(_winner_entry(contest, participant, next_position + offset, second_chance=True))
        entry.is_winner = True

    contest.winners = existing + [w.model_dump(mode="json") for w in new_winners]
    await db.commit()

    logger.info(
        "Contest %d second chance draw: %d winner(s) from %d entries",
        contest_id, len(new_winners), len(eligible),
    )
    await publish_event(
        redis,
        SECOND_CHANCE_DRAWN,
        {"contest_id": contest_id, "winners": [w.telegram_id for w in new_winners]},
    )

    if new_winners:
        await distribute(db, contest_id, new_winners, dispatcher)
    await _mark_distributed(db, contest_id, now)
    return new_winners


async def _ids(db: AsyncSession, *criteria: Any) -> list[int]:
    result = await db.execute(select(Contest.id).where(*criteria).order_by(Contest.id))
    return list(result.scalars().all())


async def run_scheduler_tick(
    db: AsyncSession,
    dispatcher: PrizeDispatcher,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> TickReport:
    """Drive every due contest one step forward. See module docstring."""
    now = now or datetime.now(timezone.utc)
    report = TickReport()

    # 1 + 2: resume interrupted completions, then claim newly expired contests
    to_complete = await _ids(db, Contest.status == "completing")
    for contest_id in await _ids(db, Contest.status == "active", Contest.ends_at < now):
        claimed = await db.execute(
            update(Contest)
            .where(Contest.id == contest_id, Contest.status == "active")
            .values(status="completing", updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        if claimed.rowcount == 1:
            to_complete.append(contest_id)

    if to_complete:
        logger.info("Completing %d ended contest(s)", len(to_complete))
    for contest_id in to_complete:
        try:
            await complete_contest(db, contest_id, dispatcher, now, redis)
            report.completed.append(contest_id)
        except Exception:
            logger.exception("Failed to complete contest %d", contest_id)
            await db.rollback()
            report.failed.append(contest_id)

    # 3: recovery sweep
    pending = await _ids(
        db,
        Contest.status == "completed",
        Contest.prizes_distributed_at.is_(None),
        Contest.id.not_in(report.completed),
    )
    for contest_id in pending:
        try:
            await recover_distribution(db, contest_id, dispatcher, now)
            report.recovered.append(contest_id)
        except Exception:
            logger.exception("Failed to recover distribution for contest %d", contest_id)
            await db.rollback()
            report.failed.append(contest_id)

    # 4: second chance draws
    due = await _ids(
        db,
        Contest.status == "completed",
        Contest.second_chance_drawn_at.is_(None),
        Contest.second_chance_due_at <= now,
    )
    for contest_id in due:
        try:
            if await draw_second_chance(db, contest_id, dispatcher, now, redis) is not None:
                report.second_chance_drawn.append(contest_id)
        except Exception:
            logger.exception("Second chance draw failed for contest %d", contest_id)
            await db.rollback()
            report.failed.append(contest_id)

    return report
