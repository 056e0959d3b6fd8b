"""Prize distribution with bounded, auditable retries.

Each (contest, winner, position) owns exactly one PrizeDistribution record.
The record is looked up before any mutation, so re-entrant scheduler runs
and admin retries never duplicate work. An attempt is claimed with one
conditional UPDATE (``attempts < 3`` and not yet sent) before the external
call is made; a sent record is never touched again.

Winners in one batch are processed strictly in position order with a fixed
pacing delay between sends.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from unic.contests.lifecycle import get_contest
from unic.contests.prizes import (
    BlockchainTransfer,
    CustomReward,
    OnDemandGift,
    PooledGift,
    Prize,
    prize_for_position,
    prize_label,
)
from unic.contests.schemas import DistributionStats, WinnerEntry
from unic.db.dialect import upsert
from unic.db.models import Participant, PrizeDistribution
from unic.distribution.senders import BaseChainTransfer, BasePrizeSender
from unic.errors import (
    AttemptsExhausted,
    DistributionNotFound,
    InvalidTransition,
    InvalidWalletAddress,
    MissingWalletAddress,
    PreconditionError,
    PrizeSendFailed,
)
from unic.pool import ledger
from unic.redis_client import PRIZE_SENT, publish_event

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

POOL_MESSAGE = "🎁 Congratulations! You won a {name} from UNIC Gift Pool"
ON_DEMAND_MESSAGE = "🎁 Congratulations! You won a {name}!"


@dataclass
class PrizeDispatcher:
    """External collaborators and pacing for one distribution run."""

    sender: BasePrizeSender
    chain: BaseChainTransfer | None = None
    pacing_seconds: float = 0.2
    send_timeout_seconds: float = 30.0
    redis: Redis | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def get_distribution(db: AsyncSession, distribution_id: int) -> PrizeDistribution | None:
    result = await db.execute(
        select(PrizeDistribution)
        .where(PrizeDistribution.id == distribution_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _by_key(contest_id: int, winner_id: int, position: int) -> Select[tuple[PrizeDistribution]]:
    return (
        select(PrizeDistribution)
        .where(
            PrizeDistribution.contest_id == contest_id,
            PrizeDistribution.winner_id == winner_id,
            PrizeDistribution.position == position,
        )
        .execution_options(populate_existing=True)
    )


async def find_distribution(
    db: AsyncSession,
    contest_id: int,
    winner_id: int,
    position: int,
) -> PrizeDistribution | None:
    result = await db.execute(_by_key(contest_id, winner_id, position))
    return result.scalar_one_or_none()


async def get_or_create_distribution(
    db: AsyncSession,
    contest_id: int,
    winner_id: int,
    position: int,
    prize_kind: str,
) -> PrizeDistribution:
    """Fetch the record for this key, creating a ``pending`` one if absent."""
    await db.execute(
        upsert(db, PrizeDistribution)
        .values(
            contest_id=contest_id,
            winner_id=winner_id,
            position=position,
            prize_kind=prize_kind,
            status="pending",
            attempts=0,
        )
        .on_conflict_do_nothing(index_elements=["contest_id", "winner_id", "position"])
    )
    await db.commit()
    result = await db.execute(_by_key(contest_id, winner_id, position))
    return result.scalar_one()


async def _mark(db: AsyncSession, distribution_id: int, **values: Any) -> None:
    await db.execute(
        update(PrizeDistribution)
        .where(PrizeDistribution.id == distribution_id, PrizeDistribution.status != "sent")
        .values(updated_at=_utcnow(), **values)
        .execution_options(synchronize_session=False)
    )


async def _wallet_for(db: AsyncSession, participant_id: int, chain: BaseChainTransfer | None) -> str:
    address = await db.scalar(
        select(Participant.wallet_address).where(Participant.telegram_id == participant_id)
    )
    if not address:
        raise MissingWalletAddress(participant_id)
    if chain is None or not chain.validate_address(address):
        raise InvalidWalletAddress(address)
    return address


async def _send_gift(dispatcher: PrizeDispatcher, recipient_id: int, gift_id: str, message: str) -> None:
    try:
        ok = await asyncio.wait_for(
            dispatcher.sender.send(recipient_id, gift_id, message),
            timeout=dispatcher.send_timeout_seconds,
        )
    except TimeoutError:
        raise PrizeSendFailed(
            f"Gift send timed out after {dispatcher.send_timeout_seconds}s"
        ) from None
    if not ok:
        raise PrizeSendFailed(f"Failed to send gift {gift_id}")


async def _record_unit(db: AsyncSession, distribution_id: int, source: str) -> None:
    await db.execute(
        update(PrizeDistribution)
        .where(PrizeDistribution.id == distribution_id)
        .values(units_delivered=PrizeDistribution.units_delivered + 1, source=source, updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def _deliver_pooled(
    db: AsyncSession,
    record: PrizeDistribution,
    prize: PooledGift,
    dispatcher: PrizeDispatcher,
) -> str:
    """Send from the pool when a hold covers the prize, else on demand.

    Returns the source actually used. Each delivered unit is committed on
    the record, so a retry sends only the remainder and keeps the source
    the earlier units came from. On send failure the hold stays in place
    for the next attempt.
    """
    contest_id, position = record.contest_id, record.position
    delivered = record.units_delivered
    hold = None
    if not (delivered and record.source == "on_demand"):
        hold = await ledger.get_hold(db, contest_id, position)
        if hold is None or hold.status == ledger.HOLD_RELEASED:
            hold = await ledger.hold_for_prize(db, contest_id, position, prize.gift_id, prize.quantity)
            await db.commit()

    name = prize.name or "gift"
    if hold is None:
        if not delivered:
            logger.warning(
                "Pool depleted for %s x%d, falling back to on-demand (contest %d, position %d)",
                prize.gift_id, prize.quantity, contest_id, position,
            )
        source, message = "on_demand", ON_DEMAND_MESSAGE.format(name=name)
    else:
        source, message = "pool", POOL_MESSAGE.format(name=name)

    if delivered:
        logger.info(
            "Resuming %s x%d for %d at unit %d (contest %d, position %d)",
            prize.gift_id, prize.quantity, record.winner_id, delivered + 1, contest_id, position,
        )
    for _ in range(delivered, prize.quantity):
        await _send_gift(dispatcher, record.winner_id, prize.gift_id, message)
        await _record_unit(db, record.id, source)

    if hold is not None:
        await ledger.consume_hold(db, hold)
    return source


async def _dispatch(
    db: AsyncSession,
    record: PrizeDistribution,
    prize: Prize,
    dispatcher: PrizeDispatcher,
    wallet: str | None,
) -> str:
    winner_id, contest_id = record.winner_id, record.contest_id
    match prize:
        case PooledGift():
            return await _deliver_pooled(db, record, prize, dispatcher)
        case OnDemandGift(gift_id=gift_id, name=name):
            await _send_gift(dispatcher, winner_id, gift_id, ON_DEMAND_MESSAGE.format(name=name or "gift"))
            return "on_demand"
        case BlockchainTransfer(amount=amount, memo=memo):
            if dispatcher.chain is None or wallet is None:
                raise PrizeSendFailed("No chain transfer configured")
            try:
                ok = await asyncio.wait_for(
                    dispatcher.chain.transfer(wallet, amount, memo),
                    timeout=dispatcher.send_timeout_seconds,
                )
            except TimeoutError:
                raise PrizeSendFailed(
                    f"Transfer timed out after {dispatcher.send_timeout_seconds}s"
                ) from None
            if not ok:
                raise PrizeSendFailed(f"Transfer of {amount} to {wallet} failed")
            return "chain"
        case CustomReward(name=name, description=description):
            logger.info(
                "Custom reward %r queued for manual fulfillment: winner %d, contest %d (%s)",
                name, winner_id, contest_id, description or "N/A",
            )
            return "manual"


async def send_prize(
    db: AsyncSession,
    contest_id: int,
    winner_id: int,
    position: int,
    prize: Prize,
    dispatcher: PrizeDispatcher,
) -> PrizeDistribution:
    """Run one distribution attempt for a winner position.

    Already-sent and exhausted records are returned untouched. A missing or
    malformed wallet for a blockchain prize marks the record failed without
    spending an attempt and raises the precondition error. Send failures are
    captured on the record, never raised.
    """
    record = await get_or_create_distribution(db, contest_id, winner_id, position, prize.kind)
    distribution_id = record.id

    if record.status == "sent":
        logger.info("Prize already sent to %d at position %d (contest %d)", winner_id, position, contest_id)
        return record
    if record.attempts >= MAX_ATTEMPTS:
        logger.error(
            "Max attempts reached for %d at position %d (contest %d); skipping",
            winner_id, position, contest_id,
        )
        return record

    wallet: str | None = None
    if isinstance(prize, BlockchainTransfer):
        try:
            wallet = await _wallet_for(db, winner_id, dispatcher.chain)
        except PreconditionError as exc:
            await _mark(db, distribution_id, status="failed", error=str(exc))
            await db.commit()
            logger.warning("Cannot transfer prize to %d: %s", winner_id, exc)
            raise

    now = _utcnow()
    claimed = await db.execute(
        update(PrizeDistribution)
        .where(
            PrizeDistribution.id == distribution_id,
            PrizeDistribution.status != "sent",
            PrizeDistribution.attempts < MAX_ATTEMPTS,
        )
        .values(
            attempts=PrizeDistribution.attempts + 1,
            status="processing",
            last_attempt_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if claimed.rowcount != 1:
        return await get_distribution(db, distribution_id)  # type: ignore[return-value]

    try:
        source = await _dispatch(db, record, prize, dispatcher, wallet)
        await _mark(db, distribution_id, status="sent", sent_at=_utcnow(), error=None, source=source)
        await db.commit()
        logger.info(
            "Prize %s sent to %d at position %d (contest %d, source=%s)",
            prize_label(prize), winner_id, position, contest_id, source,
        )
    except Exception as exc:
        await db.rollback()
        await _mark(db, distribution_id, status="failed", error=str(exc) or type(exc).__name__)
        await db.commit()
        logger.warning(
            "Prize send to %d at position %d failed (contest %d): %s",
            winner_id, position, contest_id, exc,
        )

    return await get_distribution(db, distribution_id)  # type: ignore[return-value]


async def sync_winner_flags(db: AsyncSession, contest_id: int) -> None:
    """Copy distribution outcomes onto the contest's ``winners`` list."""
    contest = await get_contest(db, contest_id)
    result = await db.execute(
        select(PrizeDistribution.winner_id, PrizeDistribution.position, PrizeDistribution.status).where(
            PrizeDistribution.contest_id == contest_id
        )
    )
    status = {(row.winner_id, row.position): row.status for row in result}
    winners = []
    for raw in contest.winners or []:
        entry = dict(raw)
        entry["sent"] = status.get((entry["telegram_id"], entry["position"])) == "sent"
        winners.append(entry)
    contest.winners = winners
    await db.commit()


async def distribute(
    db: AsyncSession,
    contest_id: int,
    winners: Sequence[WinnerEntry | dict[str, Any]],
    dispatcher: PrizeDispatcher,
) -> list[PrizeDistribution]:
    """Deliver prizes to *winners* sequentially in position order."""
    contest = await get_contest(db, contest_id)
    batch: list[tuple[WinnerEntry, Prize | None]] = []
    for raw in winners:
        winner = raw if isinstance(raw, WinnerEntry) else WinnerEntry.model_validate(raw)
        batch.append((winner, prize_for_position(contest, winner.position)))
    batch.sort(key=lambda item: item[0].position)

    distribution_ids: list[int] = []
    for i, (winner, prize) in enumerate(batch):
        if prize is None:
            logger.error("No prize configured for position %d in contest %d", winner.position, contest_id)
            continue
        if i > 0 and dispatcher.pacing_seconds > 0:
            await asyncio.sleep(dispatcher.pacing_seconds)
        try:
            record = await send_prize(db, contest_id, winner.telegram_id, winner.position, prize, dispatcher)
        except PreconditionError:
            record = await find_distribution(db, contest_id, winner.telegram_id, winner.position)
        if record is not None:
            distribution_ids.append(record.id)

    await sync_winner_flags(db, contest_id)

    # Earlier rollbacks expire loaded records; reload them in batch order.
    result = await db.execute(
        select(PrizeDistribution)
        .where(PrizeDistribution.id.in_(distribution_ids))
        .order_by(PrizeDistribution.position)
        .execution_options(populate_existing=True)
    )
    records = list(result.scalars().all())

    sent = sum(1 for r in records if r.status == "sent")
    logger.info(
        "Contest %d distribution: %d sent, %d not sent", contest_id, sent, len(records) - sent,
    )
    await publish_event(
        dispatcher.redis,
        PRIZE_SENT,
        {"contest_id": contest_id, "sent": sent, "failed": len(records) - sent},
    )
    return records


async def retry(
    db: AsyncSession,
    distribution_id: int,
    dispatcher: PrizeDispatcher,
) -> PrizeDistribution:
    """Admin recovery of a single record, within the same attempt ceiling."""
    record = await get_distribution(db, distribution_id)
    if record is None:
        raise DistributionNotFound(distribution_id)
    if record.status == "sent":
        logger.info("Prize distribution %d already sent", distribution_id)
        return record
    if record.attempts >= MAX_ATTEMPTS:
        raise AttemptsExhausted(distribution_id, record.attempts)

    contest_id, winner_id, position = record.contest_id, record.winner_id, record.position
    contest = await get_contest(db, contest_id)
    prize = prize_for_position(contest, position)
    if prize is None:
        raise DistributionNotFound(distribution_id)

    record = await send_prize(db, contest_id, winner_id, position, prize, dispatcher)
    await sync_winner_flags(db, contest_id)
    return record


async def abandon_distribution(db: AsyncSession, distribution_id: int) -> PrizeDistribution:
    """Give up on an unsent prize and return its held gifts to the pool.

    The record is left ``failed`` with every attempt used up, so neither
    the scheduler nor ``retry`` will touch it again.
    """
    record = await get_distribution(db, distribution_id)
    if record is None:
        raise DistributionNotFound(distribution_id)
    if record.status == "sent":
        raise InvalidTransition("sent", "abandoned", [])

    hold = await ledger.get_hold(db, record.contest_id, record.position)
    if hold is not None:
        await ledger.release_hold(db, hold)

    error = f"abandoned: {record.error}" if record.error else "abandoned"
    await _mark(db, distribution_id, status="failed", attempts=MAX_ATTEMPTS, error=error)
    await db.commit()
    logger.info("Prize distribution %d abandoned", distribution_id)
    return await get_distribution(db, distribution_id)  # type: ignore[return-value]


async def list_failed_distributions(db: AsyncSession, limit: int = 50) -> list[PrizeDistribution]:
    result = await db.execute(
        select(PrizeDistribution)
        .where(PrizeDistribution.status == "failed")
        .order_by(PrizeDistribution.updated_at.desc(), PrizeDistribution.id.desc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def contest_distribution_stats(db: AsyncSession, contest_id: int) -> DistributionStats:
    result = await db.execute(
        select(PrizeDistribution.status, func.count(PrizeDistribution.id))
        .where(PrizeDistribution.contest_id == contest_id)
        .group_by(PrizeDistribution.status)
    )
    counts = {status: int(count) for status, count in result}
    return DistributionStats(total=sum(counts.values()), **counts)
