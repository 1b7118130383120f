"""Kudos and moderation endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.auth.dependencies import get_admin_user, get_current_user
from rundao.database import get_session
from rundao.db.models import User
from rundao.social.schemas import (
    GiveKudosRequest,
    KudosEnvelope,
    KudosResponse,
    ReportAbuseRequest,
    ReportEnvelope,
    ReportListResponse,
    ReportResponse,
    ResolveReportRequest,
)
from rundao.social.service import give_kudos, list_reports, report_abuse, resolve_report

router = APIRouter(prefix="/api", tags=["Social"])


@router.post("/kudos", response_model=KudosEnvelope, status_code=201)
async def give_kudos_endpoint(
    body: GiveKudosRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> KudosEnvelope:
    kudos = await give_kudos(db, user, **body.model_dump())
    await db.commit()
    return KudosEnvelope(kudos=KudosResponse.model_validate(kudos))


@router.post("/reports", response_model=ReportEnvelope, status_code=201)
async def report_abuse_endpoint(
    body: ReportAbuseRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ReportEnvelope:
    """Report a user, quest or run for moderation."""
    report = await report_abuse(db, user, **body.model_dump())
    await db.commit()
    return ReportEnvelope(report=ReportResponse.model_validate(report))


@router.get("/reports", response_model=ReportListResponse)
async def list_reports_endpoint(
    status: str | None = Query(None),
    _admin: User = Depends(get_admin_user),
    db: AsyncSession = Depends(get_session),
) -> ReportListResponse:
    """Moderation queue (administrators)."""
    reports = await list_reports(db, status)
    return ReportListResponse(
        reports=[ReportResponse.model_validate(r) for r in reports],
        count=len(reports),
    )


@router.post("/reports/{report_id}/resolve", response_model=ReportEnvelope)
async def resolve_report_endpoint(
    report_id: int,
    body: ResolveReportRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ReportEnvelope:
    report = await resolve_report(db, report_id, user, body.status, body.resolution)
    await db.commit()
    return ReportEnvelope(report=ReportResponse.model_validate(report))
