"""ORM models for the RUN DAO schema.

Mirrors the SQL in ``alembic/versions``. Every enumerated status/type column
carries a CHECK constraint so SQLite and Postgres reject bad values alike.
Amounts are ``Numeric(18, 6)``; settlement rates are integer basis points.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rundao.clock import utcnow
from rundao.db.base import Base

Amount = Numeric(18, 6)

SOCIAL_PROVIDERS = ("apple", "google", "kakao")
CUSTODY_TYPES = ("custodial", "non_custodial")
MEMBERSHIP_STATUSES = ("pending", "active", "left")
QUEST_STATUSES = ("draft", "open", "active", "completed", "cancelled")
PARTICIPATION_STATUSES = ("active", "success", "fail", "forfeit")
RUN_PROVIDERS = ("strava", "garmin", "apple_health", "google_fit")
MEDAL_TYPES = ("gold", "grey", "special")
MEDAL_RARITIES = ("common", "uncommon", "rare", "epic", "legendary")
REPORT_REASONS = ("cheating", "spam", "inappropriate", "other")
REPORT_STATUSES = ("pending", "reviewing", "resolved", "dismissed")
TRANSFER_KINDS = ("reward", "stake_return", "refund", "dao_share", "protocol_fee", "emergency_withdraw")


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Platform identity. Unique on email, social identity and wallet."""

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("social_id", "social_provider", name="uq_users_social_identity"),
        CheckConstraint(_in("social_provider", SOCIAL_PROVIDERS), name="social_provider_valid"),
        CheckConstraint(_in("custody_type", CUSTODY_TYPES), name="custody_type_valid"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, nullable=True)
    social_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    social_provider: Mapped[str | None] = mapped_column(String(16), nullable=True)
    wallet_address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False, index=True)
    custody_type: Mapped[str] = mapped_column(String(16), nullable=False, default="custodial")
    nickname: Mapped[str | None] = mapped_column(String(64), nullable=True)
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    locale: Mapped[str] = mapped_column(String(16), nullable=False, default="ko-KR")
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="Asia/Seoul")
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    memberships: Mapped[list[CrewMembership]] = relationship("CrewMembership", back_populates="user")


# ---------------------------------------------------------------------------
# Crews
# ---------------------------------------------------------------------------


class Crew(Base):
    """A named running group led by one user."""

    __tablename__ = "crews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    region: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    leader_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    max_members: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    leader: Mapped[User] = relationship("User")
    memberships: Mapped[list[CrewMembership]] = relationship("CrewMembership", back_populates="crew")
    quests: Mapped[list[Quest]] = relationship("Quest", back_populates="crew")


class CrewMembership(Base):
    """Append-only membership row; leaving is a status change, never a delete."""

    __tablename__ = "crew_memberships"
    __table_args__ = (
        UniqueConstraint("crew_id", "user_id", name="uq_crew_memberships_crew_user"),
        CheckConstraint(_in("status", MEMBERSHIP_STATUSES), name="status_valid"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    crew_id: Mapped[int] = mapped_column(Integer, ForeignKey("crews.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    left_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    crew: Mapped[Crew] = relationship("Crew", back_populates="memberships")
    user: Mapped[User] = relationship("User", back_populates="memberships")


# ---------------------------------------------------------------------------
# Quests
# ---------------------------------------------------------------------------


class Quest(Base):
    """Staking challenge owned by a crew."""

    __tablename__ = "quests"
    __table_args__ = (
        CheckConstraint(_in("status", QUEST_STATUSES), name="status_valid"),
        CheckConstraint(
            "success_rate_bps + dao_rate_bps + protocol_fee_rate_bps = 10000",
            name="rates_sum_to_whole",
        ),
        CheckConstraint("participant_count <= max_slots", name="slots_not_exceeded"),
        CheckConstraint("end_at > start_at", name="window_ordered"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    crew_id: Mapped[int] = mapped_column(Integer, ForeignKey("crews.id"), nullable=False, index=True)
    creator_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    times_per_week: Mapped[int] = mapped_column(Integer, nullable=False)
    stake_token: Mapped[str] = mapped_column(String(16), nullable=False, default="USDC")
    stake_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    max_slots: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    participant_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft", index=True)
    success_rate_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=8000)
    dao_rate_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    protocol_fee_rate_bps: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    crew: Mapped[Crew] = relationship("Crew", back_populates="quests")
    participations: Mapped[list[Participation]] = relationship("Participation", back_populates="quest")


class Participation(Base):
    """One user's enrollment and progress in one quest."""

    __tablename__ = "participations"
    __table_args__ = (
        UniqueConstraint("quest_id", "user_id", name="uq_participations_quest_user"),
        CheckConstraint(_in("status", PARTICIPATION_STATUSES), name="status_valid"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quest_id: Mapped[int] = mapped_column(Integer, ForeignKey("quests.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    stake_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    stake_token: Mapped[str] = mapped_column(String(16), nullable=False)
    completed_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_distance_km: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    quest: Mapped[Quest] = relationship("Quest", back_populates="participations")
    user: Mapped[User] = relationship("User")


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


class RunRecord(Base):
    """Activity imported from a fitness provider. Immutable apart from fraud review."""

    __tablename__ = "run_records"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", "external_id", name="uq_run_records_user_provider_external"),
        CheckConstraint(_in("provider", RUN_PROVIDERS), name="provider_valid"),
        CheckConstraint("integrity_score >= 0 AND integrity_score <= 1", name="integrity_in_range"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider: Mapped[str] = mapped_column(String(16), nullable=False)
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    duration_sec: Mapped[int] = mapped_column(Integer, nullable=False)
    distance_km: Mapped[float] = mapped_column(Float, nullable=False)
    avg_pace_sec_per_km: Mapped[float | None] = mapped_column(Float, nullable=True)
    gps_path: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    hr_series: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    integrity_score: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    is_suspicious: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fraud_flags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class QuestRun(Base):
    """Attribution of a run to a quest. Invalidated by moderation, never deleted."""

    __tablename__ = "quest_runs"
    __table_args__ = (
        UniqueConstraint("quest_id", "run_record_id", name="uq_quest_runs_quest_run"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quest_id: Mapped[int] = mapped_column(Integer, ForeignKey("quests.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    run_record_id: Mapped[int] = mapped_column(Integer, ForeignKey("run_records.id"), nullable=False)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    validation_reason: Mapped[str | None] = mapped_column(String(256), nullable=True)
    reviewed_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    run: Mapped[RunRecord] = relationship("RunRecord")


# ---------------------------------------------------------------------------
# Medals
# ---------------------------------------------------------------------------


class Medal(Base):
    """Achievement record. The primary key doubles as the token id."""

    __tablename__ = "medals"
    __table_args__ = (
        CheckConstraint(_in("medal_type", MEDAL_TYPES), name="medal_type_valid"),
        CheckConstraint(_in("rarity", MEDAL_RARITIES), name="rarity_valid"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    quest_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("quests.id"), nullable=True)
    medal_type: Mapped[str] = mapped_column(String(16), nullable=False)
    rarity: Mapped[str] = mapped_column(String(16), nullable=False, default="common")
    is_winner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_upgradeable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    upgrade_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    session_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_participants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    distance_km: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    story: Mapped[str | None] = mapped_column(Text, nullable=True)
    title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)
    metadata_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)
    source_medal_ids: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    minted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Social / moderation
# ---------------------------------------------------------------------------


class Kudos(Base):
    """Peer recognition between two different users."""

    __tablename__ = "kudos"
    __table_args__ = (
        CheckConstraint("from_user_id != to_user_id", name="not_self"),
        CheckConstraint("amount >= 1", name="amount_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    from_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    to_user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    message: Mapped[str | None] = mapped_column(String(280), nullable=True)
    quest_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("quests.id"), nullable=True)
    crew_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("crews.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class AbuseReport(Base):
    """User report awaiting or past moderation."""

    __tablename__ = "abuse_reports"
    __table_args__ = (
        CheckConstraint(_in("reason", REPORT_REASONS), name="reason_valid"),
        CheckConstraint(_in("status", REPORT_STATUSES), name="status_valid"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    reporter_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    target_user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    quest_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("quests.id"), nullable=True)
    run_record_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("run_records.id"), nullable=True)
    reason: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    resolved_by: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ---------------------------------------------------------------------------
# Escrow / settlement ledger
# ---------------------------------------------------------------------------


class Settlement(Base):
    """One immutable payout batch per quest completion."""

    __tablename__ = "settlements"
    __table_args__ = (
        UniqueConstraint("quest_id", "batch_number", name="uq_settlements_quest_batch"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quest_id: Mapped[int] = mapped_column(Integer, ForeignKey("quests.id"), nullable=False, index=True)
    batch_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    winners: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    losers: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    winners_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    losers_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stake_token: Mapped[str] = mapped_column(String(16), nullable=False)
    total_stake_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    distributable_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    winner_payout: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    per_winner_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    dao_payout: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    protocol_fee: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    dust_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class EscrowRecord(Base):
    """Stake held for one participant of one quest."""

    __tablename__ = "escrow_records"
    __table_args__ = (
        UniqueConstraint("quest_id", "user_id", name="uq_escrow_records_quest_user"),
        CheckConstraint("locked_amount >= 0 AND locked_amount <= amount", name="locked_within_amount"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    quest_id: Mapped[int] = mapped_column(Integer, ForeignKey("quests.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    token: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    locked_amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deposited_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class VaultBalance(Base):
    """Per-token custody totals. available = custodied - locked."""

    __tablename__ = "vault_balances"
    __table_args__ = (
        CheckConstraint("locked >= 0 AND locked <= custodied", name="locked_within_custody"),
    )

    token: Mapped[str] = mapped_column(String(16), primary_key=True)
    custodied: Mapped[Decimal] = mapped_column(Amount, nullable=False, default=Decimal("0"))
    locked: Mapped[Decimal] = mapped_column(Amount, nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class VaultTransfer(Base):
    """Append-only payout ledger entry leaving the vault."""

    __tablename__ = "vault_transfers"
    __table_args__ = (
        CheckConstraint(_in("kind", TRANSFER_KINDS), name="kind_valid"),
        CheckConstraint("amount > 0", name="amount_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(16), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Amount, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    quest_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("quests.id"), nullable=True, index=True)
    recipient_user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    recipient_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
