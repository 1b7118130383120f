"""Pydantic schemas for quest endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class CreateQuestRequest(BaseModel):
    crew_id: int
    title: str = Field(..., min_length=1, max_length=128)
    description: str | None = Field(None, max_length=2000)
    start_at: datetime
    end_at: datetime
    distance_km: float
    times_per_week: int
    stake_amount: Decimal
    stake_token: str = Field("USDC", max_length=16)
    max_slots: int | None = None
    success_rate_bps: int | None = None
    dao_rate_bps: int | None = None
    protocol_fee_rate_bps: int | None = None
    publish: bool = True


class JoinQuestRequest(BaseModel):
    stake_amount: Decimal


class RecordRunRequest(BaseModel):
    run_record_id: int


class CompleteQuestRequest(BaseModel):
    winners: list[int] = Field(default_factory=list)


class QuestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    crew_id: int
    creator_id: int
    title: str
    description: str | None = None
    start_at: datetime
    end_at: datetime
    distance_km: float
    times_per_week: int
    stake_token: str
    stake_amount: Decimal
    max_slots: int
    participant_count: int
    status: str
    success_rate_bps: int
    dao_rate_bps: int
    protocol_fee_rate_bps: int


class QuestEnvelope(BaseModel):
    quest: QuestResponse


class QuestListResponse(BaseModel):
    quests: list[QuestResponse]
    count: int


class ParticipantResponse(BaseModel):
    user_id: int
    nickname: str | None = None
    status: str
    stake_amount: Decimal
    stake_token: str
    completed_sessions: int
    total_distance_km: float
    meets_target: bool
    joined_at: datetime
    completed_at: datetime | None = None


class QuestDetailResponse(BaseModel):
    quest: QuestResponse
    required_sessions: int
    participants: list[ParticipantResponse]


class ParticipationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quest_id: int
    user_id: int
    status: str
    stake_amount: Decimal
    stake_token: str
    completed_sessions: int
    total_distance_km: float
    joined_at: datetime


class ParticipationEnvelope(BaseModel):
    participation: ParticipationResponse


class QuestRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quest_id: int
    user_id: int
    run_record_id: int
    is_valid: bool
    validation_reason: str | None = None
    reviewed_by: int | None = None
    reviewed_at: datetime | None = None


class QuestRunEnvelope(BaseModel):
    quest_run: QuestRunResponse


class SettlementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    quest_id: int
    batch_number: int
    winners: list[int]
    losers: list[int]
    winners_count: int
    losers_count: int
    stake_token: str
    total_stake_amount: Decimal
    distributable_amount: Decimal
    winner_payout: Decimal
    per_winner_amount: Decimal
    dao_payout: Decimal
    protocol_fee: Decimal
    dust_amount: Decimal
    completed_at: datetime


class SettlementEnvelope(BaseModel):
    settlement: SettlementResponse


class CompleteQuestResponse(BaseModel):
    quest: QuestResponse
    settlement: SettlementResponse
