"""Pydantic schemas for crew endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CreateCrewRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=64)
    description: str | None = Field(None, max_length=1000)
    region: str | None = Field(None, max_length=64)
    is_private: bool = False
    max_members: int | None = Field(None, ge=1, le=1000)


class CrewResponse(BaseModel):
    id: int
    name: str
    description: str | None = None
    region: str | None = None
    is_private: bool
    max_members: int
    leader_id: int
    leader_name: str | None = None
    member_count: int
    created_at: datetime | None = None


class CrewMemberResponse(BaseModel):
    user_id: int
    nickname: str | None = None
    joined_at: datetime
    is_leader: bool


class CrewDetailResponse(BaseModel):
    crew: CrewResponse
    members: list[CrewMemberResponse]


class CrewListResponse(BaseModel):
    crews: list[CrewResponse]
    count: int


class MembershipResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    crew_id: int
    user_id: int
    status: str
    joined_at: datetime
    left_at: datetime | None = None


class MembershipEnvelope(BaseModel):
    membership: MembershipResponse
