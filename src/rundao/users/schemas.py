"""Pydantic schemas for user endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class CreateUserRequest(BaseModel):
    email: str | None = Field(None, max_length=320, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    social_id: str | None = Field(None, max_length=128)
    social_provider: Literal["apple", "google", "kakao"] | None = None
    wallet_address: str | None = None
    custody_type: Literal["custodial", "non_custodial"] = "custodial"
    nickname: str | None = Field(None, min_length=1, max_length=64)
    region: str | None = Field(None, max_length=64)
    locale: str = Field("ko-KR", max_length=16)
    timezone: str = Field("Asia/Seoul", max_length=64)


class UpdateProfileRequest(BaseModel):
    nickname: str | None = Field(None, min_length=1, max_length=64)
    region: str | None = Field(None, max_length=64)
    locale: str | None = Field(None, max_length=16)
    timezone: str | None = Field(None, max_length=64)


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    nickname: str | None = None
    region: str | None = None
    wallet_address: str
    custody_type: str
    created_at: datetime | None = None


class UserEnvelope(BaseModel):
    user: UserResponse


class UserListResponse(BaseModel):
    users: list[UserResponse]
    count: int


class SignupResponse(BaseModel):
    user: UserResponse
    access_token: str
    token_type: str = "bearer"
