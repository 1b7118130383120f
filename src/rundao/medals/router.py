"""Medal endpoints: upgrade and metadata edits."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.auth.dependencies import get_current_user
from rundao.database import get_session
from rundao.db.models import User
from rundao.medals.schemas import (
    MedalEnvelope,
    MedalResponse,
    UpdateMedalRequest,
    UpgradeMedalsRequest,
)
from rundao.medals.service import get_medal, update_medal_metadata, upgrade_medals

router = APIRouter(prefix="/api/medals", tags=["Medals"])


@router.get("/{medal_id}", response_model=MedalEnvelope)
async def get_medal_endpoint(
    medal_id: int,
    db: AsyncSession = Depends(get_session),
) -> MedalEnvelope:
    medal = await get_medal(db, medal_id)
    return MedalEnvelope(medal=MedalResponse.model_validate(medal))


@router.post("/upgrade", response_model=MedalEnvelope, status_code=201)
async def upgrade_medals_endpoint(
    body: UpgradeMedalsRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> MedalEnvelope:
    """Burn the given medals and mint one special medal."""
    medal = await upgrade_medals(
        db,
        user,
        body.source_medal_ids,
        title=body.title,
        description=body.description,
        image_uri=body.image_uri,
    )
    await db.commit()
    return MedalEnvelope(medal=MedalResponse.model_validate(medal))


@router.patch("/{medal_id}", response_model=MedalEnvelope)
async def update_medal_endpoint(
    medal_id: int,
    body: UpdateMedalRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> MedalEnvelope:
    medal = await update_medal_metadata(db, medal_id, user, **body.model_dump())
    await db.commit()
    return MedalEnvelope(medal=MedalResponse.model_validate(medal))
