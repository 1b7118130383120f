"""Crew router: all /api/crews/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.auth.dependencies import get_current_user
from rundao.config import get_settings
from rundao.crews.schemas import (
    CreateCrewRequest,
    CrewDetailResponse,
    CrewListResponse,
    CrewMemberResponse,
    CrewResponse,
    MembershipEnvelope,
    MembershipResponse,
)
from rundao.crews.service import (
    approve_member,
    create_crew,
    get_crew,
    join_crew,
    leave_crew,
    list_active_members,
    list_crews,
)
from rundao.database import get_session
from rundao.db.models import Crew, User
from rundao.quests.schemas import QuestListResponse, QuestResponse
from rundao.quests.service import list_crew_quests

router = APIRouter(prefix="/api/crews", tags=["Crews"])


def _crew_response(crew: Crew, leader_name: str | None, member_count: int) -> CrewResponse:
    return CrewResponse(
        id=crew.id,
        name=crew.name,
        description=crew.description,
        region=crew.region,
        is_private=crew.is_private,
        max_members=crew.max_members,
        leader_id=crew.leader_id,
        leader_name=leader_name,
        member_count=member_count,
        created_at=crew.created_at,
    )


async def _crew_detail(db: AsyncSession, crew: Crew) -> CrewDetailResponse:
    members = await list_active_members(db, crew.id)
    leader_name = next((u.nickname for _m, u in members if u.id == crew.leader_id), None)
    return CrewDetailResponse(
        crew=_crew_response(crew, leader_name, len(members)),
        members=[
            CrewMemberResponse(
                user_id=u.id,
                nickname=u.nickname,
                joined_at=m.joined_at,
                is_leader=u.id == crew.leader_id,
            )
            for m, u in members
        ],
    )


@router.get("", response_model=CrewListResponse)
async def list_crews_endpoint(db: AsyncSession = Depends(get_session)) -> CrewListResponse:
    """All crews with leader name and member count."""
    rows = await list_crews(db)
    return CrewListResponse(
        crews=[_crew_response(crew, leader, count) for crew, leader, count in rows],
        count=len(rows),
    )


@router.post("", response_model=CrewDetailResponse, status_code=201)
async def create_crew_endpoint(
    body: CreateCrewRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> CrewDetailResponse:
    """Create a crew led by the caller."""
    max_members = body.max_members or get_settings().default_crew_max_members
    crew = await create_crew(
        db,
        user.id,
        body.name,
        description=body.description,
        region=body.region,
        is_private=body.is_private,
        max_members=max_members,
    )
    await db.commit()
    return await _crew_detail(db, crew)


@router.get("/{crew_id}", response_model=CrewDetailResponse)
async def get_crew_endpoint(
    crew_id: int,
    db: AsyncSession = Depends(get_session),
) -> CrewDetailResponse:
    crew = await get_crew(db, crew_id)
    return await _crew_detail(db, crew)


@router.post("/{crew_id}/join", response_model=MembershipEnvelope)
async def join_crew_endpoint(
    crew_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> MembershipEnvelope:
    """Join a crew; private crews leave the request pending."""
    membership = await join_crew(db, crew_id, user.id)
    await db.commit()
    return MembershipEnvelope(membership=MembershipResponse.model_validate(membership))


@router.post("/{crew_id}/leave", response_model=MembershipEnvelope)
async def leave_crew_endpoint(
    crew_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> MembershipEnvelope:
    membership = await leave_crew(db, crew_id, user.id)
    await db.commit()
    return MembershipEnvelope(membership=MembershipResponse.model_validate(membership))


@router.post("/{crew_id}/members/{user_id}/approve", response_model=MembershipEnvelope)
async def approve_member_endpoint(
    crew_id: int,
    user_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> MembershipEnvelope:
    """Leader approves a pending join request."""
    membership = await approve_member(db, crew_id, user.id, user_id)
    await db.commit()
    return MembershipEnvelope(membership=MembershipResponse.model_validate(membership))


@router.get("/{crew_id}/quests", response_model=QuestListResponse)
async def list_crew_quests_endpoint(
    crew_id: int,
    db: AsyncSession = Depends(get_session),
) -> QuestListResponse:
    quests = await list_crew_quests(db, crew_id)
    return QuestListResponse(
        quests=[QuestResponse.model_validate(q) for q in quests],
        count=len(quests),
    )
