"""User router: all /api/users/* endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.auth.dependencies import get_current_user
from rundao.auth.jwt import create_access_token
from rundao.database import get_session
from rundao.db.models import User
from rundao.medals.schemas import MedalListResponse
from rundao.medals.service import list_user_medals, medal_counts
from rundao.users.schemas import (
    CreateUserRequest,
    SignupResponse,
    UpdateProfileRequest,
    UserEnvelope,
    UserListResponse,
    UserResponse,
)
from rundao.users.service import (
    create_user,
    get_user,
    get_user_by_wallet,
    list_users,
    update_profile,
)

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("", response_model=UserListResponse)
async def list_users_endpoint(db: AsyncSession = Depends(get_session)) -> UserListResponse:
    """List all users, newest first."""
    users = await list_users(db)
    return UserListResponse(users=[UserResponse.model_validate(u) for u in users], count=len(users))


@router.post("", response_model=SignupResponse, status_code=201)
async def signup_endpoint(
    body: CreateUserRequest,
    db: AsyncSession = Depends(get_session),
) -> SignupResponse:
    """Register a user and hand back a session token."""
    user = await create_user(db, **body.model_dump())
    await db.commit()
    return SignupResponse(
        user=UserResponse.model_validate(user),
        access_token=create_access_token(user.id, user.wallet_address),
    )


@router.patch("/me", response_model=UserEnvelope)
async def update_me_endpoint(
    body: UpdateProfileRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> UserEnvelope:
    """Update own profile metadata."""
    user = await update_profile(db, user, **body.model_dump())
    await db.commit()
    return UserEnvelope(user=UserResponse.model_validate(user))


@router.get("/wallet/{address}", response_model=UserEnvelope)
async def get_user_by_wallet_endpoint(
    address: str,
    db: AsyncSession = Depends(get_session),
) -> UserEnvelope:
    """Look a user up by wallet address."""
    user = await get_user_by_wallet(db, address)
    return UserEnvelope(user=UserResponse.model_validate(user))


@router.get("/{user_id}", response_model=UserEnvelope)
async def get_user_endpoint(
    user_id: int,
    db: AsyncSession = Depends(get_session),
) -> UserEnvelope:
    user = await get_user(db, user_id)
    return UserEnvelope(user=UserResponse.model_validate(user))


@router.get("/{user_id}/medals", response_model=MedalListResponse)
async def list_user_medals_endpoint(
    user_id: int,
    db: AsyncSession = Depends(get_session),
) -> MedalListResponse:
    """A user's live medals plus per-type counts."""
    await get_user(db, user_id)
    medals = await list_user_medals(db, user_id)
    return MedalListResponse.build(medals, await medal_counts(db, user_id))
