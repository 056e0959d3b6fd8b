"""Gift pool ledger: atomic reserve / consume / release over fungible gift units.

Every mutation is a single conditional UPDATE evaluated by the database, so
``reserved + consumed <= total`` holds under any interleaving of callers. The
CHECK constraints on ``gift_pool`` back this up at the storage layer.

The public triad (``reserve``, ``consume``, ``release``) commits on its own.
The ``*_hold`` helpers only flush, so callers can fold them into a larger
transaction (contest activation, prize delivery).
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from unic.db.dialect import upsert
from unic.db.models import PoolEntry, PoolReservation
from unic.errors import InsufficientReservation, InvalidQuantity, PoolEntryNotFound

logger = logging.getLogger(__name__)

HOLD_HELD = "held"
HOLD_CONSUMED = "consumed"
HOLD_RELEASED = "released"


def _check_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(quantity)


# ---------------------------------------------------------------------------
# Non-committing primitives
# ---------------------------------------------------------------------------


async def _reserve(db: AsyncSession, gift_id: str, quantity: int) -> bool:
    result = await db.execute(
        update(PoolEntry)
        .where(
            PoolEntry.gift_id == gift_id,
            PoolEntry.total - PoolEntry.reserved - PoolEntry.consumed >= quantity,
        )
        .values(reserved=PoolEntry.reserved + quantity)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _raise_for_missing_reservation(db: AsyncSession, gift_id: str, quantity: int) -> None:
    exists = await db.scalar(select(PoolEntry.id).where(PoolEntry.gift_id == gift_id))
    if exists is None:
        raise PoolEntryNotFound(gift_id)
    raise InsufficientReservation(gift_id, quantity)


async def _consume(db: AsyncSession, gift_id: str, quantity: int) -> None:
    result = await db.execute(
        update(PoolEntry)
        .where(PoolEntry.gift_id == gift_id, PoolEntry.reserved >= quantity)
        .values(
            reserved=PoolEntry.reserved - quantity,
            consumed=PoolEntry.consumed + quantity,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await _raise_for_missing_reservation(db, gift_id, quantity)


async def _release(db: AsyncSession, gift_id: str, quantity: int) -> None:
    result = await db.execute(
        update(PoolEntry)
        .where(PoolEntry.gift_id == gift_id, PoolEntry.reserved >= quantity)
        .values(reserved=PoolEntry.reserved - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await _raise_for_missing_reservation(db, gift_id, quantity)


# ---------------------------------------------------------------------------
# Public triad
# ---------------------------------------------------------------------------


async def reserve(db: AsyncSession, gift_id: str, quantity: int = 1) -> bool:
    """Hold *quantity* units if that many are available.

    Returns False (not an error) when availability is short or the gift
    is unknown. Nothing is written in that case.
    """
    _check_quantity(quantity)
    ok = await _reserve(db, gift_id, quantity)
    if not ok:
        await db.rollback()
        logger.info("Pool reserve refused for %s x%d", gift_id, quantity)
        return False
    await db.commit()
    return True


async def consume(db: AsyncSession, gift_id: str, quantity: int = 1) -> None:
    """Move *quantity* units from reserved to consumed in one step."""
    _check_quantity(quantity)
    try:
        await _consume(db, gift_id, quantity)
    except (InsufficientReservation, PoolEntryNotFound):
        await db.rollback()
        raise
    await db.commit()


async def release(db: AsyncSession, gift_id: str, quantity: int = 1) -> None:
    """Return *quantity* held units to the available balance."""
    _check_quantity(quantity)
    try:
        await _release(db, gift_id, quantity)
    except (InsufficientReservation, PoolEntryNotFound):
        await db.rollback()
        raise
    await db.commit()


async def availability(db: AsyncSession, gift_id: str) -> int:
    """``total - reserved - consumed`` for *gift_id*; 0 when the gift is unknown."""
    value = await db.scalar(
        select(PoolEntry.total - PoolEntry.reserved - PoolEntry.consumed).where(
            PoolEntry.gift_id == gift_id
        )
    )
    return int(value or 0)


async def get_entry(db: AsyncSession, gift_id: str) -> PoolEntry | None:
    result = await db.execute(
        select(PoolEntry)
        .where(PoolEntry.gift_id == gift_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Administration
# ---------------------------------------------------------------------------


async def add_stock(
    db: AsyncSession,
    gift_id: str,
    quantity: int,
    name: str | None = None,
    star_value: int | None = None,
) -> PoolEntry:
    """Create a pool entry or top up an existing one by *quantity* units."""
    _check_quantity(quantity)
    stmt = upsert(db, PoolEntry).values(
        gift_id=gift_id,
        name=name or gift_id,
        star_value=star_value or 0,
        total=quantity,
        reserved=0,
        consumed=0,
    )
    set_: dict[str, Any] = {"total": PoolEntry.total + quantity}
    if name is not None:
        set_["name"] = name
    if star_value is not None:
        set_["star_value"] = star_value
    stmt = stmt.on_conflict_do_update(index_elements=["gift_id"], set_=set_)
    await db.execute(stmt)
    await db.commit()

    entry = (
        await db.execute(
            select(PoolEntry)
            .where(PoolEntry.gift_id == gift_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    logger.info("Added %d x %s to gift pool (total=%d)", quantity, gift_id, entry.total)
    return entry


async def list_available(db: AsyncSession) -> list[PoolEntry]:
    """Entries with at least one unit available, richest first."""
    available = PoolEntry.total - PoolEntry.reserved - PoolEntry.consumed
    result = await db.execute(
        select(PoolEntry)
        .where(available > 0)
        .order_by(available.desc(), PoolEntry.gift_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def pool_stats(db: AsyncSession) -> dict[str, int]:
    """Aggregate counters across the whole pool."""
    row = (
        await db.execute(
            select(
                func.count(PoolEntry.id),
                func.coalesce(func.sum(PoolEntry.total), 0),
                func.coalesce(func.sum(PoolEntry.reserved), 0),
                func.coalesce(func.sum(PoolEntry.consumed), 0),
                func.coalesce(func.sum(PoolEntry.star_value * PoolEntry.total), 0),
            )
        )
    ).one()
    unique_gifts, total, reserved, consumed, star_value = row
    return {
        "unique_gifts": int(unique_gifts),
        "total": int(total),
        "reserved": int(reserved),
        "consumed": int(consumed),
        "available": int(total) - int(reserved) - int(consumed),
        "total_star_value": int(star_value),
    }


# ---------------------------------------------------------------------------
# Contest holds
# ---------------------------------------------------------------------------


async def get_hold(db: AsyncSession, contest_id: int, position: int) -> PoolReservation | None:
    result = await db.execute(
        select(PoolReservation)
        .where(PoolReservation.contest_id == contest_id, PoolReservation.position == position)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def hold_for_prize(
    db: AsyncSession,
    contest_id: int,
    position: int,
    gift_id: str,
    quantity: int = 1,
) -> PoolReservation | None:
    """Reserve the full *quantity* for one prize position, or nothing at all.

    Returns the existing hold when one is already in place (held or consumed),
    None when the pool cannot cover the whole quantity. Flushes only.
    """
    _check_quantity(quantity)
    hold = await get_hold(db, contest_id, position)
    if hold is not None and hold.status in (HOLD_HELD, HOLD_CONSUMED):
        return hold

    if not await _reserve(db, gift_id, quantity):
        return None

    if hold is None:
        hold = PoolReservation(
            contest_id=contest_id,
            position=position,
            gift_id=gift_id,
            quantity=quantity,
            status=HOLD_HELD,
        )
        db.add(hold)
    else:
        hold.gift_id = gift_id
        hold.quantity = quantity
        hold.status = HOLD_HELD
    await db.flush()
    return hold


async def consume_hold(db: AsyncSession, hold: PoolReservation) -> None:
    """Convert a held reservation into consumed stock. Flushes only."""
    if hold.status == HOLD_CONSUMED:
        return
    if hold.status != HOLD_HELD:
        raise InsufficientReservation(hold.gift_id, hold.quantity)
    await _consume(db, hold.gift_id, hold.quantity)
    hold.status = HOLD_CONSUMED
    await db.flush()


async def release_hold(db: AsyncSession, hold: PoolReservation) -> None:
    """Return a held reservation to the pool. Flushes only."""
    if hold.status != HOLD_HELD:
        return
    await _release(db, hold.gift_id, hold.quantity)
    hold.status = HOLD_RELEASED
    await db.flush()


async def release_contest_holds(db: AsyncSession, contest_id: int) -> int:
    """Release every outstanding hold of a contest. Flushes only; returns units released."""
    result = await db.execute(
        select(PoolReservation)
        .where(PoolReservation.contest_id == contest_id, PoolReservation.status == HOLD_HELD)
        .order_by(PoolReservation.position)
        .execution_options(populate_existing=True)
    )
    released = 0
    for hold in result.scalars().all():
        await release_hold(db, hold)
        released += hold.quantity
    if released:
        logger.info("Released %d held gift units for contest %d", released, contest_id)
    return released
