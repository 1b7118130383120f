"""Kudos and abuse reports.

Resolving a cheating report that names a run invalidates every quest
attribution of that run.
"""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.clock import utcnow
from rundao.db.models import (
    REPORT_REASONS,
    AbuseReport,
    Crew,
    Kudos,
    Quest,
    RunRecord,
    User,
)
from rundao.errors import AuthorizationError, NotFoundError, StateConflictError, ValidationError
from rundao.runs.service import invalidate_run_attributions

logger = logging.getLogger(__name__)

RESOLUTION_STATUSES = ("reviewing", "resolved", "dismissed")


async def _require(db: AsyncSession, model: type, entity_id: int | None, label: str) -> None:
    if entity_id is not None and await db.get(model, entity_id) is None:
        raise NotFoundError(f"{label} not found")


async def give_kudos(
    db: AsyncSession,
    sender: User,
    to_user_id: int,
    *,
    amount: int = 1,
    message: str | None = None,
    quest_id: int | None = None,
    crew_id: int | None = None,
) -> Kudos:
    if to_user_id == sender.id:
        raise ValidationError("You cannot give kudos to yourself")
    if amount < 1:
        raise ValidationError("Kudos amount must be at least 1")
    await _require(db, User, to_user_id, "User")
    await _require(db, Quest, quest_id, "Quest")
    await _require(db, Crew, crew_id, "Crew")

    kudos = Kudos(
        from_user_id=sender.id,
        to_user_id=to_user_id,
        amount=amount,
        message=message,
        quest_id=quest_id,
        crew_id=crew_id,
    )
    db.add(kudos)
    await db.flush()
    logger.info("Kudos: %d -> %d (x%d)", sender.id, to_user_id, amount)
    return kudos


async def report_abuse(
    db: AsyncSession,
    reporter: User,
    reason: str,
    *,
    target_user_id: int | None = None,
    quest_id: int | None = None,
    run_record_id: int | None = None,
    description: str | None = None,
) -> AbuseReport:
    """File a report. It must point at a user, a quest or a run."""
    if reason not in REPORT_REASONS:
        raise ValidationError(f"Unknown report reason: {reason}")
    if target_user_id is None and quest_id is None and run_record_id is None:
        raise ValidationError("A report must reference a user, quest or run")
    await _require(db, User, target_user_id, "User")
    await _require(db, Quest, quest_id, "Quest")
    await _require(db, RunRecord, run_record_id, "Run")

    report = AbuseReport(
        reporter_id=reporter.id,
        target_user_id=target_user_id,
        quest_id=quest_id,
        run_record_id=run_record_id,
        reason=reason,
        description=description,
        status="pending",
    )
    db.add(report)
    await db.flush()
    logger.info("Abuse report %d filed by %d (%s)", report.id, reporter.id, reason)
    return report


async def list_reports(db: AsyncSession, status: str | None = None) -> list[AbuseReport]:
    query = select(AbuseReport).order_by(AbuseReport.created_at.asc(), AbuseReport.id.asc())
    if status is not None:
        query = query.where(AbuseReport.status == status)
    result = await db.execute(query)
    return list(result.scalars().all())


async def resolve_report(
    db: AsyncSession,
    report_id: int,
    admin: User,
    status: str,
    resolution: str | None = None,
    now: datetime | None = None,
) -> AbuseReport:
    """Move a report through moderation (administrators only)."""
    if not admin.is_admin:
        raise AuthorizationError("Only administrators can resolve reports")
    if status not in RESOLUTION_STATUSES:
        raise ValidationError(f"Status must be one of {', '.join(RESOLUTION_STATUSES)}")

    report = await db.get(AbuseReport, report_id)
    if report is None:
        raise NotFoundError("Report not found")
    if report.status in ("resolved", "dismissed"):
        raise StateConflictError(f"Report is already {report.status}")

    now = now or utcnow()
    report.status = status
    report.resolution = resolution
    if status in ("resolved", "dismissed"):
        report.resolved_by = admin.id
        report.resolved_at = now

    if status == "resolved" and report.reason == "cheating" and report.run_record_id is not None:
        invalidated = await invalidate_run_attributions(
            db, report.run_record_id, admin, f"Cheating report #{report.id}", now
        )
        logger.info("Report %d invalidated %d quest runs", report.id, len(invalidated))

    await db.flush()
    logger.info("Report %d -> %s by %d", report.id, status, admin.id)
    return report
