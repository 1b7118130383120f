"""Pydantic schemas for kudos and abuse reports."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class GiveKudosRequest(BaseModel):
    to_user_id: int
    amount: int = Field(1, ge=1, le=100)
    message: str | None = Field(None, max_length=280)
    quest_id: int | None = None
    crew_id: int | None = None


class KudosResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    from_user_id: int
    to_user_id: int
    amount: int
    message: str | None = None
    quest_id: int | None = None
    crew_id: int | None = None
    created_at: datetime


class KudosEnvelope(BaseModel):
    kudos: KudosResponse


class ReportAbuseRequest(BaseModel):
    reason: Literal["cheating", "spam", "inappropriate", "other"]
    target_user_id: int | None = None
    quest_id: int | None = None
    run_record_id: int | None = None
    description: str | None = Field(None, max_length=2000)


class ResolveReportRequest(BaseModel):
    status: Literal["reviewing", "resolved", "dismissed"]
    resolution: str | None = Field(None, max_length=2000)


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    reporter_id: int
    target_user_id: int | None = None
    quest_id: int | None = None
    run_record_id: int | None = None
    reason: str
    description: str | None = None
    status: str
    resolved_by: int | None = None
    resolution: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime


class ReportEnvelope(BaseModel):
    report: ReportResponse


class ReportListResponse(BaseModel):
    reports: list[ReportResponse]
    count: int
