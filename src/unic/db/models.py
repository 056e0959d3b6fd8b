"""ORM models for contests, scoring, the gift pool and prize distribution.

The same definitions back the Alembic migration in
alembic/versions/001_contest_engine.py.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from unic.db.base import Base, JSONType, UTCDateTime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------


class Participant(Base):
    """Messaging-platform identity plus the payout wallet on file."""

    __tablename__ = "participants"

    telegram_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)


# ---------------------------------------------------------------------------
# Contests
# ---------------------------------------------------------------------------


class Contest(Base):
    """A time-boxed engagement contest tied to one channel."""

    __tablename__ = "contests"
    __table_args__ = (
        CheckConstraint("winners_count BETWEEN 1 AND 100", name="ck_contests_winners_count"),
        CheckConstraint(
            "starts_at IS NULL OR ends_at IS NULL OR starts_at < ends_at",
            name="ck_contests_window",
        ),
        Index("ix_contests_status_ends_at", "status", "ends_at"),
        Index("ix_contests_owner_status", "owner_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    owner_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="draft")
    activity_type: Mapped[str] = mapped_column(String(16), nullable=False, default="all")
    duration: Mapped[str] = mapped_column(String(8), nullable=False)
    winners_count: Mapped[int] = mapped_column(Integer, nullable=False)
    boosts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    starts_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    participants_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_reactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_comments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prizes: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    second_chance_prize: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    winners: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    prizes_distributed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    second_chance_due_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    second_chance_drawn_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class ParticipantStats(Base):
    """Running point total and counters for one participant in one contest."""

    __tablename__ = "participant_stats"
    __table_args__ = (
        UniqueConstraint("participant_id", "contest_id", name="uq_participant_stats_participant_contest"),
        Index("ix_participant_stats_leaderboard", "contest_id", "points", "last_activity_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False)
    participant_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reactions_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    comments_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    replies_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    boost_multiplier: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    boost_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)


class Boost(Base):
    """A purchased point multiplier. At most one active per participant and contest."""

    __tablename__ = "boosts"
    __table_args__ = (
        Index(
            "uq_boosts_one_active",
            "participant_id",
            "contest_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    contest_id: Mapped[int] = mapped_column(Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    multiplier: Mapped[float] = mapped_column(Float, nullable=False)
    price_units: Mapped[int] = mapped_column(Integer, nullable=False)
    activated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ProcessedActivity(Base):
    """Platform signals already scored, keyed by message and action."""

    __tablename__ = "processed_activities"
    __table_args__ = (
        UniqueConstraint(
            "contest_id", "participant_id", "message_id", "action",
            name="uq_processed_activities_signal",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False)
    participant_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    message_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action: Mapped[str] = mapped_column(String(16), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Gift pool
# ---------------------------------------------------------------------------


class PoolEntry(Base):
    """A fungible prize unit in the shared gift inventory."""

    __tablename__ = "gift_pool"
    __table_args__ = (
        CheckConstraint("total >= 0", name="ck_gift_pool_total"),
        CheckConstraint("reserved >= 0", name="ck_gift_pool_reserved"),
        CheckConstraint("consumed >= 0", name="ck_gift_pool_consumed"),
        CheckConstraint("reserved + consumed <= total", name="ck_gift_pool_capacity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    gift_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    star_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consumed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow)


class PoolReservation(Base):
    """Hold placed against the pool for one contest prize position."""

    __tablename__ = "pool_reservations"
    __table_args__ = (
        UniqueConstraint("contest_id", "position", name="uq_pool_reservations_contest_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    gift_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="held")
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# Prize distribution
# ---------------------------------------------------------------------------


class PrizeDistribution(Base):
    """One bounded-retry delivery of a prize to a winner position."""

    __tablename__ = "prize_distributions"
    __table_args__ = (
        UniqueConstraint("contest_id", "winner_id", "position", name="uq_prize_distributions_key"),
        CheckConstraint("attempts BETWEEN 0 AND 3", name="ck_prize_distributions_attempts"),
        Index("ix_prize_distributions_status_attempts", "status", "attempts"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[int] = mapped_column(Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False)
    winner_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    prize_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str | None] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    units_delivered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow, onupdate=_utcnow)


class SecondChanceEntry(Base):
    """Opt-in to the delayed bonus draw among non-winners."""

    __tablename__ = "second_chance_entries"
    __table_args__ = (
        UniqueConstraint("participant_id", "contest_id", name="uq_second_chance_participant_contest"),
        Index("ix_second_chance_contest_winner", "contest_id", "is_winner"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    participant_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    contest_id: Mapped[int] = mapped_column(Integer, ForeignKey("contests.id", ondelete="CASCADE"), nullable=False)
    proof: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    is_winner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=_utcnow)
