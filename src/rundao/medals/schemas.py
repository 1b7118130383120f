"""Pydantic schemas for medal endpoints."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class MedalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    quest_id: int | None = None
    medal_type: str
    rarity: str
    is_winner: bool
    is_upgradeable: bool
    upgrade_level: int
    session_count: int
    total_participants: int
    distance_km: float
    story: str | None = None
    title: str | None = None
    description: str | None = None
    image_uri: str | None = None
    metadata_uri: str | None = None
    source_medal_ids: list[int] = []
    minted_at: datetime


class MedalEnvelope(BaseModel):
    medal: MedalResponse


class MedalListResponse(BaseModel):
    medals: list[MedalResponse]
    count: int
    counts: dict[str, int]

    @classmethod
    def build(cls, medals: Sequence[Any], counts: dict[str, int]) -> MedalListResponse:
        return cls(
            medals=[MedalResponse.model_validate(m) for m in medals],
            count=len(medals),
            counts=counts,
        )


class UpgradeMedalsRequest(BaseModel):
    source_medal_ids: list[int] = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(None, max_length=1000)
    image_uri: str | None = Field(None, max_length=512)


class UpdateMedalRequest(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=128)
    description: str | None = Field(None, max_length=1000)
    image_uri: str | None = Field(None, max_length=512)
    metadata_uri: str | None = Field(None, max_length=512)
