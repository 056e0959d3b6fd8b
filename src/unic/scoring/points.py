"""Point accrual for engagement signals.

Every accepted signal is applied with one atomic increment on the
(participant, contest) stats row. Totals are never read back and rewritten,
so concurrent or out-of-order delivery cannot lose updates.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from unic.db.dialect import upsert
from unic.db.models import Contest, ParticipantStats, ProcessedActivity
from unic.errors import ContestNotAcceptingActivity
from unic.scoring.boosts import deactivate_expired
from unic.scoring.comment_validation import CommentCheck, is_comment_burst, validate_comment
from unic.scoring.stats import ensure_stats

logger = logging.getLogger(__name__)

POINTS: dict[str, int] = {
    "reaction": 1,
    "comment": 3,
    "reply": 2,
}

# Which action kinds count for each contest activity type
ACTIVITY_GATES: dict[str, frozenset[str]] = {
    "reactions": frozenset({"reaction"}),
    "comments": frozenset({"comment", "reply"}),
    "all": frozenset(POINTS),
}

_COUNTERS = {
    "reaction": ParticipantStats.reactions_count,
    "comment": ParticipantStats.comments_count,
    "reply": ParticipantStats.replies_count,
}


def effective_points(action_kind: str, multiplier: float) -> int:
    """``base * multiplier`` rounded half up, so a boosted comment (3 x 1.5) is worth 5."""
    return math.floor(POINTS[action_kind] * multiplier + 0.5)


async def apply_activity(
    db: AsyncSession,
    contest_id: int,
    participant_id: int,
    action_kind: str,
    message_id: int | None = None,
    now: datetime | None = None,
) -> int:
    """Score one engagement signal and return the points awarded.

    The contest must be active and before its end time, checked on every
    call. Action kinds excluded by the contest's activity type award 0 and
    record nothing. When *message_id* is given, redelivery of the same
    (contest, participant, message, action) also awards 0.
    """
    if action_kind not in POINTS:
        raise ValueError(f"Unknown action kind: {action_kind}")
    now = now or datetime.now(timezone.utc)

    row = (
        await db.execute(
            select(Contest.activity_type).where(
                Contest.id == contest_id,
                Contest.status == "active",
                Contest.ends_at > now,
            )
        )
    ).one_or_none()
    if row is None:
        raise ContestNotAcceptingActivity(contest_id)

    if action_kind not in ACTIVITY_GATES.get(row.activity_type, frozenset()):
        return 0

    if message_id is not None:
        dedup = await db.execute(
            upsert(db, ProcessedActivity)
            .values(
                contest_id=contest_id,
                participant_id=participant_id,
                message_id=message_id,
                action=action_kind,
                processed_at=now,
            )
            .on_conflict_do_nothing(
                index_elements=["contest_id", "participant_id", "message_id", "action"]
            )
        )
        if dedup.rowcount != 1:
            await db.rollback()
            logger.debug(
                "Duplicate %s signal %d from %d in contest %d",
                action_kind, message_id, participant_id, contest_id,
            )
            return 0

    await ensure_stats(db, participant_id, contest_id, now)

    cached = (
        await db.execute(
            select(ParticipantStats.boost_multiplier, ParticipantStats.boost_expires_at).where(
                ParticipantStats.participant_id == participant_id,
                ParticipantStats.contest_id == contest_id,
            )
        )
    ).one()
    multiplier = cached.boost_multiplier
    if cached.boost_expires_at is not None and cached.boost_expires_at <= now:
        await deactivate_expired(db, participant_id, contest_id, now)
        multiplier = 1.0

    awarded = effective_points(action_kind, multiplier)
    counter = _COUNTERS[action_kind]
    await db.execute(
        update(ParticipantStats)
        .where(
            ParticipantStats.participant_id == participant_id,
            ParticipantStats.contest_id == contest_id,
        )
        .values(
            {
                ParticipantStats.points: ParticipantStats.points + awarded,
                counter: counter + 1,
                ParticipantStats.last_activity_at: now,
            }
        )
        .execution_options(synchronize_session=False)
    )

    total_column = Contest.total_reactions if action_kind == "reaction" else Contest.total_comments
    await db.execute(
        update(Contest)
        .where(Contest.id == contest_id)
        .values({total_column: total_column + 1})
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return awarded


async def apply_comment(
    db: AsyncSession,
    contest_id: int,
    participant_id: int,
    text: str,
    is_reply: bool = False,
    message_id: int | None = None,
    validator: Callable[[str], CommentCheck] = validate_comment,
    recent_comment_times: Iterable[datetime] | None = None,
    now: datetime | None = None,
) -> tuple[int, CommentCheck]:
    """Run the comment through *validator*, then score it as a comment or reply.

    *recent_comment_times* are the participant's previous comment timestamps
    as seen by the caller; a burst of them rejects the comment. Rejected
    comments award 0 and touch nothing.
    """
    now = now or datetime.now(timezone.utc)
    if recent_comment_times is not None and is_comment_burst(recent_comment_times, now):
        check = CommentCheck(False, "Commenting too fast")
    else:
        check = validator(text)
    if not check.valid:
        logger.debug(
            "Comment from %d in contest %d rejected: %s",
            participant_id, contest_id, check.reason,
        )
        return 0, check

    awarded = await apply_activity(
        db,
        contest_id,
        participant_id,
        "reply" if is_reply else "comment",
        message_id=message_id,
        now=now,
    )
    return awarded, check
