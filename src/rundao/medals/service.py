"""Medal issuance and upgrades.

Minting only ever appends rows. Upgrading validates every source medal
before touching any of them, so an ownership/type/count violation leaves
the caller's medals exactly as they were.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.clock import utcnow
from rundao.db.models import MEDAL_TYPES, Medal, User
from rundao.errors import AuthorizationError, NotFoundError, ValidationError
from rundao.escrow.guard import guard
from rundao.medals.rarity import (
    MIN_UPGRADE_SOURCES,
    is_upgradeable,
    quest_medal_rarity,
    upgrade_rarity,
)

logger = logging.getLogger(__name__)


async def get_medal(db: AsyncSession, medal_id: int) -> Medal:
    medal = await db.get(Medal, medal_id)
    if medal is None:
        raise NotFoundError(f"Medal {medal_id} not found")
    return medal


async def list_user_medals(db: AsyncSession, user_id: int) -> list[Medal]:
    result = await db.execute(
        select(Medal).where(Medal.user_id == user_id).order_by(Medal.minted_at.desc(), Medal.id.desc())
    )
    return list(result.scalars().all())


async def medal_counts(db: AsyncSession, user_id: int) -> dict[str, int]:
    """Per-type medal counts for a user (every type present, zero if none)."""
    result = await db.execute(
        select(Medal.medal_type, func.count(Medal.id))
        .where(Medal.user_id == user_id)
        .group_by(Medal.medal_type)
    )
    counts = dict.fromkeys(MEDAL_TYPES, 0)
    for medal_type, count in result.all():
        counts[medal_type] = int(count)
    return counts


async def mint_quest_medal(
    db: AsyncSession,
    *,
    recipient_id: int,
    quest_id: int | None,
    medal_type: str,
    session_count: int,
    total_participants: int,
    distance_km: float,
    story: str | None = None,
    is_winner: bool = False,
    title: str | None = None,
) -> Medal:
    """Mint a medal for a quest outcome with its deterministic rarity."""
    if medal_type not in MEDAL_TYPES:
        raise ValidationError(f"Unknown medal type: {medal_type}")

    with guard.hold("mint", recipient_id):
        medal = Medal(
            user_id=recipient_id,
            quest_id=quest_id,
            medal_type=medal_type,
            rarity=quest_medal_rarity(medal_type, session_count, total_participants),
            is_winner=is_winner,
            is_upgradeable=is_upgradeable(medal_type),
            upgrade_level=0,
            session_count=session_count,
            total_participants=total_participants,
            distance_km=distance_km,
            story=story,
            title=title,
            source_medal_ids=[],
            minted_at=utcnow(),
        )
        db.add(medal)
        await db.flush()

    logger.info(
        "Medal minted: id=%d user=%d quest=%s type=%s rarity=%s",
        medal.id, recipient_id, quest_id, medal_type, medal.rarity,
    )
    return medal


async def upgrade_medals(
    db: AsyncSession,
    owner: User,
    source_medal_ids: list[int],
    *,
    title: str,
    description: str | None = None,
    image_uri: str | None = None,
) -> Medal:
    """Burn several upgradeable medals of one type and mint a special medal.

    The new medal carries the summed distance and sessions of the sources,
    a rarity from the upgrade table, upgrade level 1, and the burned ids.
    """
    if len(set(source_medal_ids)) != len(source_medal_ids):
        raise ValidationError("Source medals must be distinct")
    if len(source_medal_ids) < MIN_UPGRADE_SOURCES:
        raise ValidationError(f"At least {MIN_UPGRADE_SOURCES} medals are required to upgrade")

    with guard.hold("mint", owner.id):
        result = await db.execute(select(Medal).where(Medal.id.in_(source_medal_ids)))
        sources = list(result.scalars().all())

        found = {m.id for m in sources}
        missing = [i for i in source_medal_ids if i not in found]
        if missing:
            raise NotFoundError(f"Medals not found: {missing}")
        if any(m.user_id != owner.id for m in sources):
            raise AuthorizationError("You can only upgrade medals you own")
        source_types = {m.medal_type for m in sources}
        if len(source_types) != 1:
            raise ValidationError("All source medals must be of the same type")
        if not all(m.is_upgradeable for m in sources):
            raise ValidationError("Every source medal must be upgradeable")

        source_type = source_types.pop()
        try:
            rarity = upgrade_rarity(source_type, len(sources))
        except ValueError as e:
            raise ValidationError(str(e)) from e

        total_distance = sum(m.distance_km for m in sources)
        total_sessions = sum(m.session_count for m in sources)
        burned_ids = sorted(found)

        for medal in sources:
            await db.delete(medal)

        upgraded = Medal(
            user_id=owner.id,
            quest_id=None,
            medal_type="special",
            rarity=rarity,
            is_winner=False,
            is_upgradeable=False,
            upgrade_level=1,
            session_count=total_sessions,
            total_participants=0,
            distance_km=total_distance,
            title=title,
            description=description,
            image_uri=image_uri,
            source_medal_ids=burned_ids,
            minted_at=utcnow(),
        )
        db.add(upgraded)
        await db.flush()

    logger.info("Medals upgraded: user=%d burned=%s new=%d rarity=%s", owner.id, burned_ids, upgraded.id, rarity)
    return upgraded


async def update_medal_metadata(
    db: AsyncSession,
    medal_id: int,
    actor: User,
    *,
    title: str | None = None,
    description: str | None = None,
    image_uri: str | None = None,
    metadata_uri: str | None = None,
) -> Medal:
    """Update display metadata (owner or administrator). Stats never change."""
    medal = await get_medal(db, medal_id)
    if medal.user_id != actor.id and not actor.is_admin:
        raise AuthorizationError("Only the medal owner or an administrator can edit it")

    if title is not None:
        medal.title = title
    if description is not None:
        medal.description = description
    if image_uri is not None:
        medal.image_uri = image_uri
    if metadata_uri is not None:
        medal.metadata_uri = metadata_uri
    await db.flush()
    return medal
