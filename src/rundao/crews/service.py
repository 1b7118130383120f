"""Crew business logic.

Rules:
- The creator becomes leader with an active membership
- Public crews admit immediately, private crews put joiners in 'pending'
- Active membership count never exceeds max_members
- Leaving flips status to 'left'; rows are never deleted
- A leaving leader hands over to the longest-serving active member
- A sole leader cannot leave while the crew has open or active quests
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.clock import utcnow
from rundao.db.models import Crew, CrewMembership, Quest, User
from rundao.errors import (
    AuthorizationError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)


async def get_crew(db: AsyncSession, crew_id: int) -> Crew:
    """Fetch a crew or raise NotFoundError."""
    crew = await db.get(Crew, crew_id)
    if crew is None:
        raise NotFoundError("Crew not found")
    return crew


async def get_membership(db: AsyncSession, crew_id: int, user_id: int) -> CrewMembership | None:
    result = await db.execute(
        select(CrewMembership).where(
            CrewMembership.crew_id == crew_id,
            CrewMembership.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def is_active_member(db: AsyncSession, crew_id: int, user_id: int) -> bool:
    membership = await get_membership(db, crew_id, user_id)
    return membership is not None and membership.status == "active"


async def count_active_members(db: AsyncSession, crew_id: int) -> int:
    result = await db.execute(
        select(func.count(CrewMembership.id)).where(
            CrewMembership.crew_id == crew_id,
            CrewMembership.status == "active",
        )
    )
    return int(result.scalar_one())


async def list_crews(db: AsyncSession) -> list[tuple[Crew, str | None, int]]:
    """All crews with leader nickname and active member count, newest first."""
    member_count = (
        select(func.count(CrewMembership.id))
        .where(CrewMembership.crew_id == Crew.id, CrewMembership.status == "active")
        .correlate(Crew)
        .scalar_subquery()
    )
    result = await db.execute(
        select(Crew, User.nickname, member_count)
        .join(User, User.id == Crew.leader_id)
        .order_by(Crew.created_at.desc(), Crew.id.desc())
    )
    return [(crew, nickname, int(count)) for crew, nickname, count in result.all()]


async def list_active_members(db: AsyncSession, crew_id: int) -> list[tuple[CrewMembership, User]]:
    result = await db.execute(
        select(CrewMembership, User)
        .join(User, User.id == CrewMembership.user_id)
        .where(CrewMembership.crew_id == crew_id, CrewMembership.status == "active")
        .order_by(CrewMembership.joined_at.asc(), CrewMembership.id.asc())
    )
    return [(m, u) for m, u in result.all()]


async def create_crew(
    db: AsyncSession,
    leader_id: int,
    name: str,
    *,
    description: str | None = None,
    region: str | None = None,
    is_private: bool = False,
    max_members: int = 50,
) -> Crew:
    """Create a crew. The creator becomes its leader."""
    if max_members < 1:
        raise ValidationError("max_members must be at least 1")

    now = utcnow()
    crew = Crew(
        name=name,
        description=description,
        region=region,
        is_private=is_private,
        leader_id=leader_id,
        max_members=max_members,
    )
    db.add(crew)
    await db.flush()

    db.add(CrewMembership(crew_id=crew.id, user_id=leader_id, status="active", joined_at=now))
    await db.flush()
    await db.refresh(crew)

    logger.info("Crew created: %s (id=%d, leader=%d)", name, crew.id, leader_id)
    return crew


async def join_crew(db: AsyncSession, crew_id: int, user_id: int) -> CrewMembership:
    """Join a crew. Private crews leave the membership pending leader approval."""
    crew = await get_crew(db, crew_id)
    membership = await get_membership(db, crew_id, user_id)
    if membership is not None and membership.status in ("active", "pending"):
        raise StateConflictError(f"Membership is already {membership.status}")

    status = "pending" if crew.is_private else "active"
    if status == "active" and await count_active_members(db, crew_id) >= crew.max_members:
        raise StateConflictError(f"This crew is full ({crew.max_members} members maximum)")

    now = utcnow()
    if membership is None:
        membership = CrewMembership(crew_id=crew_id, user_id=user_id, status=status, joined_at=now)
        db.add(membership)
    else:
        membership.status = status
        membership.joined_at = now
        membership.left_at = None

    await db.flush()
    logger.info("User %d joined crew %d (%s)", user_id, crew_id, status)
    return membership


async def approve_member(
    db: AsyncSession,
    crew_id: int,
    leader_id: int,
    user_id: int,
) -> CrewMembership:
    """Leader approves a pending membership."""
    crew = await get_crew(db, crew_id)
    if crew.leader_id != leader_id:
        raise AuthorizationError("Only the crew leader can approve members")

    membership = await get_membership(db, crew_id, user_id)
    if membership is None or membership.status != "pending":
        raise StateConflictError("No pending membership for this user")

    if await count_active_members(db, crew_id) >= crew.max_members:
        raise StateConflictError(f"This crew is full ({crew.max_members} members maximum)")

    membership.status = "active"
    await db.flush()
    return membership


async def leave_crew(db: AsyncSession, crew_id: int, user_id: int) -> CrewMembership:
    """Leave a crew (status transition, never a delete)."""
    crew = await get_crew(db, crew_id)
    membership = await get_membership(db, crew_id, user_id)
    if membership is None or membership.status == "left":
        raise StateConflictError("You are not a member of this crew")

    if crew.leader_id == user_id:
        members = [m for m, _u in await list_active_members(db, crew_id) if m.user_id != user_id]
        if members:
            crew.leader_id = members[0].user_id
            logger.info("Crew %d leadership passed to user %d", crew_id, crew.leader_id)
        else:
            running = await db.execute(
                select(func.count(Quest.id)).where(
                    Quest.crew_id == crew_id,
                    Quest.status.in_(("open", "active")),
                )
            )
            if running.scalar_one() > 0:
                raise StateConflictError("The last leader cannot leave while quests are open or active")

    membership.status = "left"
    membership.left_at = utcnow()
    await db.flush()
    logger.info("User %d left crew %d", user_id, crew_id)
    return membership
