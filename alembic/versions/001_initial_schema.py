"""Initial schema: users, crews, quests, runs, medals, moderation, escrow ledger.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-03-01
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id SERIAL CONSTRAINT pk_users PRIMARY KEY,
            email VARCHAR(320) CONSTRAINT uq_users_email UNIQUE,
            social_id VARCHAR(128),
            social_provider VARCHAR(16),
            wallet_address VARCHAR(42) NOT NULL CONSTRAINT uq_users_wallet_address UNIQUE,
            custody_type VARCHAR(16) NOT NULL DEFAULT 'custodial',
            nickname VARCHAR(64),
            region VARCHAR(64),
            locale VARCHAR(16) NOT NULL DEFAULT 'ko-KR',
            timezone VARCHAR(64) NOT NULL DEFAULT 'Asia/Seoul',
            is_admin BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_users_social_identity UNIQUE (social_id, social_provider),
            CONSTRAINT ck_users_social_provider_valid
                CHECK (social_provider IN ('apple', 'google', 'kakao')),
            CONSTRAINT ck_users_custody_type_valid
                CHECK (custody_type IN ('custodial', 'non_custodial'))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_users_wallet_address ON users(wallet_address)")

    # --- Crews ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS crews (
            id SERIAL CONSTRAINT pk_crews PRIMARY KEY,
            name VARCHAR(64) NOT NULL,
            description TEXT,
            region VARCHAR(64),
            is_private BOOLEAN NOT NULL DEFAULT false,
            leader_id INTEGER NOT NULL CONSTRAINT fk_crews_leader_id_users REFERENCES users(id),
            max_members INTEGER NOT NULL DEFAULT 50,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS crew_memberships (
            id SERIAL CONSTRAINT pk_crew_memberships PRIMARY KEY,
            crew_id INTEGER NOT NULL CONSTRAINT fk_crew_memberships_crew_id_crews REFERENCES crews(id),
            user_id INTEGER NOT NULL CONSTRAINT fk_crew_memberships_user_id_users REFERENCES users(id),
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            joined_at TIMESTAMPTZ NOT NULL,
            left_at TIMESTAMPTZ,
            CONSTRAINT uq_crew_memberships_crew_user UNIQUE (crew_id, user_id),
            CONSTRAINT ck_crew_memberships_status_valid CHECK (status IN ('pending', 'active', 'left'))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_crew_memberships_crew_id ON crew_memberships(crew_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_crew_memberships_user_id ON crew_memberships(user_id)")

    # --- Quests ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS quests (
            id SERIAL CONSTRAINT pk_quests PRIMARY KEY,
            crew_id INTEGER NOT NULL CONSTRAINT fk_quests_crew_id_crews REFERENCES crews(id),
            creator_id INTEGER NOT NULL CONSTRAINT fk_quests_creator_id_users REFERENCES users(id),
            title VARCHAR(128) NOT NULL,
            description TEXT,
            start_at TIMESTAMPTZ NOT NULL,
            end_at TIMESTAMPTZ NOT NULL,
            distance_km DOUBLE PRECISION NOT NULL,
            times_per_week INTEGER NOT NULL,
            stake_token VARCHAR(16) NOT NULL DEFAULT 'USDC',
            stake_amount NUMERIC(18, 6) NOT NULL,
            max_slots INTEGER NOT NULL DEFAULT 20,
            participant_count INTEGER NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'draft',
            success_rate_bps INTEGER NOT NULL DEFAULT 8000,
            dao_rate_bps INTEGER NOT NULL DEFAULT 1000,
            protocol_fee_rate_bps INTEGER NOT NULL DEFAULT 1000,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_quests_status_valid
                CHECK (status IN ('draft', 'open', 'active', 'completed', 'cancelled')),
            CONSTRAINT ck_quests_rates_sum_to_whole
                CHECK (success_rate_bps + dao_rate_bps + protocol_fee_rate_bps = 10000),
            CONSTRAINT ck_quests_slots_not_exceeded CHECK (participant_count <= max_slots),
            CONSTRAINT ck_quests_window_ordered CHECK (end_at > start_at)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_quests_crew_id ON quests(crew_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_quests_status ON quests(status)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS participations (
            id SERIAL CONSTRAINT pk_participations PRIMARY KEY,
            quest_id INTEGER NOT NULL CONSTRAINT fk_participations_quest_id_quests REFERENCES quests(id),
            user_id INTEGER NOT NULL CONSTRAINT fk_participations_user_id_users REFERENCES users(id),
            status VARCHAR(16) NOT NULL DEFAULT 'active',
            stake_amount NUMERIC(18, 6) NOT NULL,
            stake_token VARCHAR(16) NOT NULL,
            completed_sessions INTEGER NOT NULL DEFAULT 0,
            total_distance_km DOUBLE PRECISION NOT NULL DEFAULT 0,
            joined_at TIMESTAMPTZ NOT NULL,
            completed_at TIMESTAMPTZ,
            CONSTRAINT uq_participations_quest_user UNIQUE (quest_id, user_id),
            CONSTRAINT ck_participations_status_valid
                CHECK (status IN ('active', 'success', 'fail', 'forfeit'))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_participations_quest_id ON participations(quest_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_participations_user_id ON participations(user_id)")

    # --- Runs ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS run_records (
            id SERIAL CONSTRAINT pk_run_records PRIMARY KEY,
            user_id INTEGER NOT NULL CONSTRAINT fk_run_records_user_id_users REFERENCES users(id),
            provider VARCHAR(16) NOT NULL,
            external_id VARCHAR(128) NOT NULL,
            started_at TIMESTAMPTZ NOT NULL,
            duration_sec INTEGER NOT NULL,
            distance_km DOUBLE PRECISION NOT NULL,
            avg_pace_sec_per_km DOUBLE PRECISION,
            gps_path JSON,
            hr_series JSON,
            integrity_score DOUBLE PRECISION NOT NULL DEFAULT 1.0,
            is_suspicious BOOLEAN NOT NULL DEFAULT false,
            fraud_flags JSON NOT NULL DEFAULT '[]',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_run_records_user_provider_external UNIQUE (user_id, provider, external_id),
            CONSTRAINT ck_run_records_provider_valid
                CHECK (provider IN ('strava', 'garmin', 'apple_health', 'google_fit')),
            CONSTRAINT ck_run_records_integrity_in_range
                CHECK (integrity_score >= 0 AND integrity_score <= 1)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_run_records_user_id ON run_records(user_id)")
    op.execute("CREATE INDEX IF NOT EXISTS ix_run_records_started_at ON run_records(started_at)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS quest_runs (
            id SERIAL CONSTRAINT pk_quest_runs PRIMARY KEY,
            quest_id INTEGER NOT NULL CONSTRAINT fk_quest_runs_quest_id_quests REFERENCES quests(id),
            user_id INTEGER NOT NULL CONSTRAINT fk_quest_runs_user_id_users REFERENCES users(id),
            run_record_id INTEGER NOT NULL
                CONSTRAINT fk_quest_runs_run_record_id_run_records REFERENCES run_records(id),
            is_valid BOOLEAN NOT NULL DEFAULT true,
            validation_reason VARCHAR(256),
            reviewed_by INTEGER CONSTRAINT fk_quest_runs_reviewed_by_users REFERENCES users(id),
            reviewed_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT uq_quest_runs_quest_run UNIQUE (quest_id, run_record_id)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_quest_runs_quest_id ON quest_runs(quest_id)")

    # --- Medals ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS medals (
            id SERIAL CONSTRAINT pk_medals PRIMARY KEY,
            user_id INTEGER NOT NULL CONSTRAINT fk_medals_user_id_users REFERENCES users(id),
            quest_id INTEGER CONSTRAINT fk_medals_quest_id_quests REFERENCES quests(id),
            medal_type VARCHAR(16) NOT NULL,
            rarity VARCHAR(16) NOT NULL DEFAULT 'common',
            is_winner BOOLEAN NOT NULL DEFAULT false,
            is_upgradeable BOOLEAN NOT NULL DEFAULT false,
            upgrade_level INTEGER NOT NULL DEFAULT 0,
            session_count INTEGER NOT NULL DEFAULT 0,
            total_participants INTEGER NOT NULL DEFAULT 0,
            distance_km DOUBLE PRECISION NOT NULL DEFAULT 0,
            story TEXT,
            title VARCHAR(128),
            description TEXT,
            image_uri VARCHAR(512),
            metadata_uri VARCHAR(512),
            source_medal_ids JSON NOT NULL DEFAULT '[]',
            minted_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT ck_medals_medal_type_valid CHECK (medal_type IN ('gold', 'grey', 'special')),
            CONSTRAINT ck_medals_rarity_valid
                CHECK (rarity IN ('common', 'uncommon', 'rare', 'epic', 'legendary'))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_medals_user_id ON medals(user_id)")

    # --- Kudos / moderation ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS kudos (
            id SERIAL CONSTRAINT pk_kudos PRIMARY KEY,
            from_user_id INTEGER NOT NULL CONSTRAINT fk_kudos_from_user_id_users REFERENCES users(id),
            to_user_id INTEGER NOT NULL CONSTRAINT fk_kudos_to_user_id_users REFERENCES users(id),
            amount INTEGER NOT NULL DEFAULT 1,
            message VARCHAR(280),
            quest_id INTEGER CONSTRAINT fk_kudos_quest_id_quests REFERENCES quests(id),
            crew_id INTEGER CONSTRAINT fk_kudos_crew_id_crews REFERENCES crews(id),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_kudos_not_self CHECK (from_user_id != to_user_id),
            CONSTRAINT ck_kudos_amount_positive CHECK (amount >= 1)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_kudos_to_user_id ON kudos(to_user_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS abuse_reports (
            id SERIAL CONSTRAINT pk_abuse_reports PRIMARY KEY,
            reporter_id INTEGER NOT NULL CONSTRAINT fk_abuse_reports_reporter_id_users REFERENCES users(id),
            target_user_id INTEGER CONSTRAINT fk_abuse_reports_target_user_id_users REFERENCES users(id),
            quest_id INTEGER CONSTRAINT fk_abuse_reports_quest_id_quests REFERENCES quests(id),
            run_record_id INTEGER
                CONSTRAINT fk_abuse_reports_run_record_id_run_records REFERENCES run_records(id),
            reason VARCHAR(16) NOT NULL,
            description TEXT,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            resolved_by INTEGER CONSTRAINT fk_abuse_reports_resolved_by_users REFERENCES users(id),
            resolution TEXT,
            resolved_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT ck_abuse_reports_reason_valid
                CHECK (reason IN ('cheating', 'spam', 'inappropriate', 'other')),
            CONSTRAINT ck_abuse_reports_status_valid
                CHECK (status IN ('pending', 'reviewing', 'resolved', 'dismissed'))
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_abuse_reports_status ON abuse_reports(status)")

    # --- Escrow ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS settlements (
            id SERIAL CONSTRAINT pk_settlements PRIMARY KEY,
            quest_id INTEGER NOT NULL CONSTRAINT fk_settlements_quest_id_quests REFERENCES quests(id),
            batch_number INTEGER NOT NULL DEFAULT 1,
            winners JSON NOT NULL DEFAULT '[]',
            losers JSON NOT NULL DEFAULT '[]',
            winners_count INTEGER NOT NULL,
            losers_count INTEGER NOT NULL,
            stake_token VARCHAR(16) NOT NULL,
            total_stake_amount NUMERIC(18, 6) NOT NULL,
            distributable_amount NUMERIC(18, 6) NOT NULL,
            winner_payout NUMERIC(18, 6) NOT NULL,
            per_winner_amount NUMERIC(18, 6) NOT NULL,
            dao_payout NUMERIC(18, 6) NOT NULL,
            protocol_fee NUMERIC(18, 6) NOT NULL,
            dust_amount NUMERIC(18, 6) NOT NULL,
            completed_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT uq_settlements_quest_batch UNIQUE (quest_id, batch_number)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_settlements_quest_id ON settlements(quest_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS escrow_records (
            id SERIAL CONSTRAINT pk_escrow_records PRIMARY KEY,
            quest_id INTEGER NOT NULL CONSTRAINT fk_escrow_records_quest_id_quests REFERENCES quests(id),
            user_id INTEGER NOT NULL CONSTRAINT fk_escrow_records_user_id_users REFERENCES users(id),
            token VARCHAR(16) NOT NULL,
            amount NUMERIC(18, 6) NOT NULL,
            locked_amount NUMERIC(18, 6) NOT NULL,
            is_locked BOOLEAN NOT NULL DEFAULT true,
            deposited_at TIMESTAMPTZ NOT NULL,
            released_at TIMESTAMPTZ,
            CONSTRAINT uq_escrow_records_quest_user UNIQUE (quest_id, user_id),
            CONSTRAINT ck_escrow_records_locked_within_amount
                CHECK (locked_amount >= 0 AND locked_amount <= amount)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_escrow_records_quest_id ON escrow_records(quest_id)")

    op.execute("""
        CREATE TABLE IF NOT EXISTS vault_balances (
            token VARCHAR(16) CONSTRAINT pk_vault_balances PRIMARY KEY,
            custodied NUMERIC(18, 6) NOT NULL DEFAULT 0,
            locked NUMERIC(18, 6) NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ,
            CONSTRAINT ck_vault_balances_locked_within_custody
                CHECK (locked >= 0 AND locked <= custodied)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS vault_transfers (
            id SERIAL CONSTRAINT pk_vault_transfers PRIMARY KEY,
            token VARCHAR(16) NOT NULL,
            amount NUMERIC(18, 6) NOT NULL,
            kind VARCHAR(32) NOT NULL,
            quest_id INTEGER CONSTRAINT fk_vault_transfers_quest_id_quests REFERENCES quests(id),
            recipient_user_id INTEGER
                CONSTRAINT fk_vault_transfers_recipient_user_id_users REFERENCES users(id),
            recipient_address VARCHAR(42),
            created_at TIMESTAMPTZ NOT NULL,
            CONSTRAINT ck_vault_transfers_kind_valid CHECK (kind IN (
                'reward', 'stake_return', 'refund', 'dao_share', 'protocol_fee', 'emergency_withdraw'
            )),
            CONSTRAINT ck_vault_transfers_amount_positive CHECK (amount > 0)
        )
    """)
    op.execute("CREATE INDEX IF NOT EXISTS ix_vault_transfers_quest_id ON vault_transfers(quest_id)")


def downgrade() -> None:
    for table in (
        "vault_transfers",
        "vault_balances",
        "escrow_records",
        "settlements",
        "abuse_reports",
        "kudos",
        "medals",
        "quest_runs",
        "run_records",
        "participations",
        "quests",
        "crew_memberships",
        "crews",
        "users",
    ):
        op.execute(f"DROP TABLE IF EXISTS {table}")
