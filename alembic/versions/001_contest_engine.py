"""Contest engine schema.

Creates participants, contests, participant_stats, boosts,
processed_activities, gift_pool, pool_reservations, prize_distributions
and second_chance_entries.

Revision ID: 001_contest_engine
Revises: None
Create Date: 2026-10-17
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_contest_engine"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Participants ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS participants (
            telegram_id BIGINT PRIMARY KEY,
            username VARCHAR(64),
            wallet_address VARCHAR(128),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)

    # --- Contests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS contests (
            id SERIAL PRIMARY KEY,
            channel_id BIGINT NOT NULL,
            owner_id BIGINT NOT NULL,
            title VARCHAR(128),
            status VARCHAR(32) NOT NULL DEFAULT 'draft',
            activity_type VARCHAR(16) NOT NULL DEFAULT 'all',
            duration VARCHAR(8) NOT NULL,
            winners_count INTEGER NOT NULL,
            boosts_enabled BOOLEAN NOT NULL DEFAULT TRUE,
            starts_at TIMESTAMPTZ,
            ends_at TIMESTAMPTZ,
            participants_count INTEGER NOT NULL DEFAULT 0,
            total_reactions INTEGER NOT NULL DEFAULT 0,
            total_comments INTEGER NOT NULL DEFAULT 0,
            prizes JSONB NOT NULL DEFAULT '[]'::jsonb,
            second_chance_prize JSONB,
            winners JSONB NOT NULL DEFAULT '[]'::jsonb,
            completed_at TIMESTAMPTZ,
            prizes_distributed_at TIMESTAMPTZ,
            second_chance_due_at TIMESTAMPTZ,
            second_chance_drawn_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_contests_winners_count CHECK (winners_count BETWEEN 1 AND 100),
            CONSTRAINT ck_contests_window CHECK (
                starts_at IS NULL OR ends_at IS NULL OR starts_at < ends_at
            )
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_contests_channel_id ON contests(channel_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_contests_status_ends_at ON contests(status, ends_at)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_contests_owner_status ON contests(owner_id, status)")

    # --- Participant Stats ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS participant_stats (
            id SERIAL PRIMARY KEY,
            contest_id INTEGER NOT NULL REFERENCES contests(id) ON DELETE CASCADE,
            participant_id BIGINT NOT NULL,
            points INTEGER NOT NULL DEFAULT 0,
            reactions_count INTEGER NOT NULL DEFAULT 0,
            comments_count INTEGER NOT NULL DEFAULT 0,
            replies_count INTEGER NOT NULL DEFAULT 0,
            boost_multiplier DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            boost_expires_at TIMESTAMPTZ,
            last_activity_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_participant_stats_participant_contest UNIQUE (participant_id, contest_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_participant_stats_leaderboard
        ON participant_stats(contest_id, points DESC, last_activity_at ASC)
    """)

    # --- Boosts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS boosts (
            id SERIAL PRIMARY KEY,
            participant_id BIGINT NOT NULL,
            contest_id INTEGER NOT NULL REFERENCES contests(id) ON DELETE CASCADE,
            type VARCHAR(16) NOT NULL,
            multiplier DOUBLE PRECISION NOT NULL,
            price_units INTEGER NOT NULL,
            activated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            expires_at TIMESTAMPTZ,
            is_active BOOLEAN NOT NULL DEFAULT TRUE
        )
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_boosts_one_active
        ON boosts(participant_id, contest_id) WHERE is_active
    """)

    # --- Processed Activities ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS processed_activities (
            id SERIAL PRIMARY KEY,
            contest_id INTEGER NOT NULL REFERENCES contests(id) ON DELETE CASCADE,
            participant_id BIGINT NOT NULL,
            message_id BIGINT NOT NULL,
            action VARCHAR(16) NOT NULL,
            processed_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_processed_activities_signal
                UNIQUE (contest_id, participant_id, message_id, action)
        )
    """)

    # --- Gift Pool ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS gift_pool (
            id SERIAL PRIMARY KEY,
            gift_id VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL DEFAULT '',
            star_value INTEGER NOT NULL DEFAULT 0,
            total INTEGER NOT NULL DEFAULT 0,
            reserved INTEGER NOT NULL DEFAULT 0,
            consumed INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_gift_pool_total CHECK (total >= 0),
            CONSTRAINT ck_gift_pool_reserved CHECK (reserved >= 0),
            CONSTRAINT ck_gift_pool_consumed CHECK (consumed >= 0),
            CONSTRAINT ck_gift_pool_capacity CHECK (reserved + consumed <= total)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS pool_reservations (
            id SERIAL PRIMARY KEY,
            contest_id INTEGER NOT NULL REFERENCES contests(id) ON DELETE CASCADE,
            position INTEGER NOT NULL,
            gift_id VARCHAR(64) NOT NULL,
            quantity INTEGER NOT NULL DEFAULT 1,
            status VARCHAR(16) NOT NULL DEFAULT 'held',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_pool_reservations_contest_position UNIQUE (contest_id, position)
        )
    """)

    # --- Prize Distributions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS prize_distributions (
            id SERIAL PRIMARY KEY,
            contest_id INTEGER NOT NULL REFERENCES contests(id) ON DELETE CASCADE,
            winner_id BIGINT NOT NULL,
            position INTEGER NOT NULL,
            prize_kind VARCHAR(32) NOT NULL,
            source VARCHAR(16),
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            attempts INTEGER NOT NULL DEFAULT 0,
            units_delivered INTEGER NOT NULL DEFAULT 0,
            last_attempt_at TIMESTAMPTZ,
            sent_at TIMESTAMPTZ,
            error TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_prize_distributions_key UNIQUE (contest_id, winner_id, position),
            CONSTRAINT ck_prize_distributions_attempts CHECK (attempts BETWEEN 0 AND 3)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_prize_distributions_status_attempts
        ON prize_distributions(status, attempts)
    """)

    # --- Second Chance ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS second_chance_entries (
            id SERIAL PRIMARY KEY,
            participant_id BIGINT NOT NULL,
            contest_id INTEGER NOT NULL REFERENCES contests(id) ON DELETE CASCADE,
            proof VARCHAR(128) UNIQUE NOT NULL,
            is_winner BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_second_chance_participant_contest UNIQUE (participant_id, contest_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_second_chance_contest_winner
        ON second_chance_entries(contest_id, is_winner)
    """)


def downgrade() -> None:
    for table in (
        "second_chance_entries",
        "prize_distributions",
        "pool_reservations",
        "gift_pool",
        "processed_activities",
        "boosts",
        "participant_stats",
        "contests",
        "participants",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE")
