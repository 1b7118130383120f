"""Pydantic schemas for run ingestion and review."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

RunProvider = Literal["strava", "garmin", "apple_health", "google_fit"]


class GpsPoint(BaseModel):
    """One GPS fix, ``t`` seconds after the run started."""

    t: int = Field(..., ge=0)
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    alt: float | None = None


class HeartRateSample(BaseModel):
    t: int = Field(..., ge=0)
    bpm: int = Field(..., ge=20, le=250)


class IngestRunRequest(BaseModel):
    provider: RunProvider
    external_id: str = Field(..., min_length=1, max_length=128)
    started_at: datetime
    duration_sec: int = Field(..., gt=0)
    distance_km: float = Field(..., gt=0)
    gps_path: list[GpsPoint] | None = None
    hr_series: list[HeartRateSample] | None = None


class FlagRunRequest(BaseModel):
    integrity_score: float = Field(..., ge=0, le=1)
    is_suspicious: bool
    fraud_flags: list[str] = Field(default_factory=list)


class InvalidateQuestRunRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=256)


class RunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    provider: str
    external_id: str
    started_at: datetime
    duration_sec: int
    distance_km: float
    avg_pace_sec_per_km: float | None = None
    gps_path: list[GpsPoint] | None = None
    hr_series: list[HeartRateSample] | None = None
    integrity_score: float
    is_suspicious: bool
    fraud_flags: list[str] = []


class RunEnvelope(BaseModel):
    run: RunResponse
