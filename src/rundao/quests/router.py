"""Quest router: all /api/quests/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.auth.dependencies import get_current_user
from rundao.database import get_session
from rundao.db.models import User
from rundao.quests.schemas import (
    CompleteQuestRequest,
    CompleteQuestResponse,
    CreateQuestRequest,
    JoinQuestRequest,
    ParticipantResponse,
    ParticipationEnvelope,
    ParticipationResponse,
    QuestDetailResponse,
    QuestEnvelope,
    QuestResponse,
    QuestRunEnvelope,
    QuestRunResponse,
    RecordRunRequest,
    SettlementEnvelope,
    SettlementResponse,
)
from rundao.quests.service import (
    cancel_quest,
    complete_quest,
    create_quest,
    get_quest_detail,
    get_quest_settlement,
    join_quest,
    publish_quest,
    record_run,
)

router = APIRouter(prefix="/api/quests", tags=["Quests"])


@router.post("", response_model=QuestEnvelope, status_code=201)
async def create_quest_endpoint(
    body: CreateQuestRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> QuestEnvelope:
    """Create a quest for a crew the caller belongs to."""
    params = body.model_dump(exclude={"crew_id"})
    quest = await create_quest(db, user, body.crew_id, **params)
    await db.commit()
    return QuestEnvelope(quest=QuestResponse.model_validate(quest))


@router.get("/{quest_id}", response_model=QuestDetailResponse)
async def get_quest_endpoint(
    quest_id: int,
    db: AsyncSession = Depends(get_session),
) -> QuestDetailResponse:
    """Quest detail with participants and whether each meets the session target."""
    quest, needed, participants = await get_quest_detail(db, quest_id)
    await db.commit()
    return QuestDetailResponse(
        quest=QuestResponse.model_validate(quest),
        required_sessions=needed,
        participants=[
            ParticipantResponse(
                user_id=p.user_id,
                nickname=u.nickname,
                status=p.status,
                stake_amount=p.stake_amount,
                stake_token=p.stake_token,
                completed_sessions=p.completed_sessions,
                total_distance_km=p.total_distance_km,
                meets_target=p.completed_sessions >= needed,
                joined_at=p.joined_at,
                completed_at=p.completed_at,
            )
            for p, u in participants
        ],
    )


@router.post("/{quest_id}/publish", response_model=QuestEnvelope)
async def publish_quest_endpoint(
    quest_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> QuestEnvelope:
    quest = await publish_quest(db, quest_id, user)
    await db.commit()
    return QuestEnvelope(quest=QuestResponse.model_validate(quest))


@router.post("/{quest_id}/join", response_model=ParticipationEnvelope, status_code=201)
async def join_quest_endpoint(
    quest_id: int,
    body: JoinQuestRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> ParticipationEnvelope:
    """Stake into a quest and claim a slot."""
    participation = await join_quest(db, quest_id, user, body.stake_amount)
    await db.commit()
    return ParticipationEnvelope(participation=ParticipationResponse.model_validate(participation))


@router.post("/{quest_id}/runs", response_model=QuestRunEnvelope, status_code=201)
async def record_run_endpoint(
    quest_id: int,
    body: RecordRunRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> QuestRunEnvelope:
    """Attribute one of the caller's runs to this quest."""
    quest_run = await record_run(db, quest_id, user, body.run_record_id)
    await db.commit()
    return QuestRunEnvelope(quest_run=QuestRunResponse.model_validate(quest_run))


@router.post("/{quest_id}/complete", response_model=CompleteQuestResponse)
async def complete_quest_endpoint(
    quest_id: int,
    body: CompleteQuestRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> CompleteQuestResponse:
    """Settle a finished quest with the given winners and mint medals."""
    quest, settlement = await complete_quest(db, quest_id, user, body.winners)
    await db.commit()
    return CompleteQuestResponse(
        quest=QuestResponse.model_validate(quest),
        settlement=SettlementResponse.model_validate(settlement),
    )


@router.post("/{quest_id}/cancel", response_model=QuestEnvelope)
async def cancel_quest_endpoint(
    quest_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> QuestEnvelope:
    """Cancel before start; every stake is refunded."""
    quest = await cancel_quest(db, quest_id, user)
    await db.commit()
    return QuestEnvelope(quest=QuestResponse.model_validate(quest))


@router.get("/{quest_id}/settlement", response_model=SettlementEnvelope)
async def get_settlement_endpoint(
    quest_id: int,
    db: AsyncSession = Depends(get_session),
) -> SettlementEnvelope:
    settlement = await get_quest_settlement(db, quest_id)
    return SettlementEnvelope(settlement=SettlementResponse.model_validate(settlement))
