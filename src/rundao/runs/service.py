"""Run ingestion and fraud review.

A RunRecord never changes after ingestion except through ``flag_run``.
Quest attributions are invalidated by review, never deleted; while the
quest is still running the invalidated run stops counting toward the
participant's sessions and distance.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.clock import ensure_utc, utcnow
from rundao.db.models import RUN_PROVIDERS, Participation, Quest, QuestRun, RunRecord, User
from rundao.errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError

logger = logging.getLogger(__name__)


def compute_pace(duration_sec: int, distance_km: float) -> float:
    """Average pace in seconds per kilometre."""
    if distance_km <= 0:
        raise ValidationError("distance_km must be positive")
    return round(duration_sec / distance_km, 2)


async def get_run(db: AsyncSession, run_id: int) -> RunRecord:
    run = await db.get(RunRecord, run_id)
    if run is None:
        raise NotFoundError("Run not found")
    return run


async def ingest_run(
    db: AsyncSession,
    user: User,
    *,
    provider: str,
    external_id: str,
    started_at: datetime,
    duration_sec: int,
    distance_km: float,
    gps_path: list[dict[str, Any]] | None = None,
    hr_series: list[dict[str, Any]] | None = None,
) -> RunRecord:
    """Store an activity imported from a fitness provider."""
    if provider not in RUN_PROVIDERS:
        raise ValidationError(f"Unknown provider: {provider}")
    if duration_sec <= 0:
        raise ValidationError("duration_sec must be positive")

    existing = await db.execute(
        select(RunRecord.id).where(
            RunRecord.user_id == user.id,
            RunRecord.provider == provider,
            RunRecord.external_id == external_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise StateConflictError(f"Run {provider}:{external_id} was already imported")

    run = RunRecord(
        user_id=user.id,
        provider=provider,
        external_id=external_id,
        started_at=ensure_utc(started_at),
        duration_sec=duration_sec,
        distance_km=distance_km,
        avg_pace_sec_per_km=compute_pace(duration_sec, distance_km),
        gps_path=gps_path,
        hr_series=hr_series,
        integrity_score=1.0,
        is_suspicious=False,
        fraud_flags=[],
    )
    db.add(run)
    await db.flush()

    logger.info("Run ingested: id=%d user=%d %s:%s %.2fkm", run.id, user.id, provider, external_id, distance_km)
    return run


async def flag_run(
    db: AsyncSession,
    run_id: int,
    reviewer: User,
    *,
    integrity_score: float,
    is_suspicious: bool,
    fraud_flags: list[str],
) -> RunRecord:
    """Record a fraud review result on a run (administrators only)."""
    if not reviewer.is_admin:
        raise AuthorizationError("Only administrators can review runs")
    if not 0 <= integrity_score <= 1:
        raise ValidationError("integrity_score must be between 0 and 1")

    run = await get_run(db, run_id)
    run.integrity_score = integrity_score
    run.is_suspicious = is_suspicious
    run.fraud_flags = list(fraud_flags)
    await db.flush()

    logger.info("Run %d flagged by %d: score=%.2f suspicious=%s", run_id, reviewer.id, integrity_score, is_suspicious)
    return run


async def _invalidate(
    db: AsyncSession,
    quest_run: QuestRun,
    reviewer: User,
    reason: str,
    now: datetime,
) -> None:
    was_valid = quest_run.is_valid
    quest_run.is_valid = False
    quest_run.validation_reason = reason
    quest_run.reviewed_by = reviewer.id
    quest_run.reviewed_at = now
    if not was_valid:
        return

    quest = await db.get(Quest, quest_run.quest_id)
    if quest is None or quest.status == "completed":
        return
    result = await db.execute(
        select(Participation).where(
            Participation.quest_id == quest_run.quest_id,
            Participation.user_id == quest_run.user_id,
        )
    )
    participation = result.scalar_one_or_none()
    run = await db.get(RunRecord, quest_run.run_record_id)
    if participation is not None and run is not None:
        participation.completed_sessions = max(0, participation.completed_sessions - 1)
        participation.total_distance_km = max(0.0, participation.total_distance_km - run.distance_km)


async def invalidate_quest_run(
    db: AsyncSession,
    quest_run_id: int,
    reviewer: User,
    reason: str,
    now: datetime | None = None,
) -> QuestRun:
    """Mark a quest attribution invalid (administrators only)."""
    if not reviewer.is_admin:
        raise AuthorizationError("Only administrators can invalidate quest runs")

    quest_run = await db.get(QuestRun, quest_run_id)
    if quest_run is None:
        raise NotFoundError("Quest run not found")

    await _invalidate(db, quest_run, reviewer, reason, now or utcnow())
    await db.flush()
    logger.info("Quest run %d invalidated by %d: %s", quest_run_id, reviewer.id, reason)
    return quest_run


async def invalidate_run_attributions(
    db: AsyncSession,
    run_record_id: int,
    reviewer: User,
    reason: str,
    now: datetime | None = None,
) -> list[QuestRun]:
    """Invalidate every quest attribution of one run."""
    now = now or utcnow()
    result = await db.execute(
        select(QuestRun).where(QuestRun.run_record_id == run_record_id).order_by(QuestRun.id)
    )
    quest_runs = list(result.scalars().all())
    for quest_run in quest_runs:
        await _invalidate(db, quest_run, reviewer, reason, now)
    await db.flush()
    return quest_runs
