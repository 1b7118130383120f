"""Pydantic schemas for vault endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class VaultBalanceResponse(BaseModel):
    token: str
    custodied: Decimal
    locked: Decimal
    available: Decimal


class VaultBalanceListResponse(BaseModel):
    balances: list[VaultBalanceResponse]
    count: int


class EmergencyWithdrawRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=16)
    amount: Decimal
    to_address: str = Field(..., min_length=1, max_length=42)


class TransferResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    token: str
    amount: Decimal
    kind: str
    quest_id: int | None = None
    recipient_user_id: int | None = None
    recipient_address: str | None = None
    created_at: datetime


class TransferEnvelope(BaseModel):
    transfer: TransferResponse


class TransferListResponse(BaseModel):
    transfers: list[TransferResponse]
    count: int
