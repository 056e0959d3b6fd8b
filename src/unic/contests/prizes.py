"""Prize configuration as a tagged union over prize kinds.

Each kind carries only its own fields; dispatch happens with ``match`` on the
model class. Prizes are stored on the contest as JSON and parsed on demand.
"""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import TYPE_CHECKING, Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from unic.pool import ledger

if TYPE_CHECKING:
    from unic.db.models import Contest

DEFAULT_MEMO = "UNIC Event Prize"


class _PrizeBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class PooledGift(_PrizeBase):
    """Gift drawn from the shared pool; falls back to on-demand when depleted."""

    kind: Literal["pooled_gift"] = "pooled_gift"
    gift_id: str = Field(min_length=1)
    name: str | None = None
    quantity: int = Field(default=1, gt=0)


class OnDemandGift(_PrizeBase):
    """Gift bought at send time; no reservation."""

    kind: Literal["on_demand_gift"] = "on_demand_gift"
    gift_id: str = Field(min_length=1)
    name: str | None = None


class BlockchainTransfer(_PrizeBase):
    """Coin transfer to the winner's wallet on file."""

    kind: Literal["blockchain_transfer"] = "blockchain_transfer"
    amount: Decimal = Field(gt=0)
    memo: str = DEFAULT_MEMO


class CustomReward(_PrizeBase):
    """Manually fulfilled reward. Marked sent once queued for an operator."""

    kind: Literal["custom"] = "custom"
    name: str = Field(min_length=1)
    description: str | None = None


Prize = Annotated[
    Union[PooledGift, OnDemandGift, BlockchainTransfer, CustomReward],
    Field(discriminator="kind"),
]

_prize_adapter: TypeAdapter[Prize] = TypeAdapter(Prize)


def parse_prize(data: dict[str, Any] | Prize) -> Prize:
    if isinstance(data, (PooledGift, OnDemandGift, BlockchainTransfer, CustomReward)):
        return data
    return _prize_adapter.validate_python(data)


def dump_prize(prize: Prize) -> dict[str, Any]:
    """JSON-safe dict for storage on the contest row."""
    return prize.model_dump(mode="json")


def prize_label(prize: Prize) -> str:
    match prize:
        case PooledGift(name=name, gift_id=gift_id) | OnDemandGift(name=name, gift_id=gift_id):
            return name or gift_id
        case BlockchainTransfer(amount=amount):
            return f"{amount} TON"
        case CustomReward(name=name):
            return name


async def validate_prizes(
    db: AsyncSession,
    prizes: list[dict[str, Any]],
    winners_count: int,
) -> list[str]:
    """Return every problem with a prize list; empty means valid.

    Pooled gifts must be coverable by current pool availability, counting
    the total demanded across all positions for the same gift.
    """
    errors: list[str] = []
    if len(prizes) != winners_count:
        errors.append(f"Prize count ({len(prizes)}) must match winners count ({winners_count})")

    demand: dict[str, int] = defaultdict(int)
    for position, raw in enumerate(prizes, start=1):
        try:
            prize = parse_prize(raw)
        except ValidationError as exc:
            for err in exc.errors():
                loc = ".".join(str(p) for p in err["loc"])
                errors.append(f"Prize position {position}: {loc}: {err['msg']}")
            continue
        if isinstance(prize, PooledGift):
            demand[prize.gift_id] += prize.quantity

    for gift_id, wanted in sorted(demand.items()):
        available = await ledger.availability(db, gift_id)
        if available < wanted:
            errors.append(f"Gift {gift_id} has {available} available in pool, {wanted} required")

    return errors


def prize_for_position(contest: Contest, position: int) -> Prize | None:
    """Prize configured for a winner position.

    Positions past the primary list belong to the second-chance draw and use
    ``second_chance_prize``, or the last configured prize when none is set.
    """
    if position < 1:
        return None
    prizes = contest.prizes or []
    if position <= len(prizes):
        return parse_prize(prizes[position - 1])
    if contest.second_chance_prize:
        return parse_prize(contest.second_chance_prize)
    if prizes:
        return parse_prize(prizes[-1])
    return None
