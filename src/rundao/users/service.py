"""User signup and lookup.

Rules:
- email, (social_id, social_provider) and wallet_address are each unique
- custodial users without a wallet get a platform-managed address
- non-custodial users must bring their own wallet
- identity fields never change after signup; only profile metadata does
"""

from __future__ import annotations

import logging
import re
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.db.models import User
from rundao.errors import NotFoundError, StateConflictError, ValidationError

logger = logging.getLogger(__name__)

_WALLET_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def normalize_wallet_address(address: str) -> str:
    """Validate an EVM address and return its lowercase form."""
    candidate = address.strip()
    if not _WALLET_RE.match(candidate):
        raise ValidationError("Wallet address must be 0x followed by 40 hex characters")
    return candidate.lower()


def generate_custodial_address() -> str:
    return "0x" + secrets.token_hex(20)


async def list_users(db: AsyncSession) -> list[User]:
    result = await db.execute(select(User).order_by(User.created_at.desc(), User.id.desc()))
    return list(result.scalars().all())


async def get_user(db: AsyncSession, user_id: int) -> User:
    """Fetch a user or raise NotFoundError."""
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def get_user_by_wallet(db: AsyncSession, address: str) -> User:
    wallet = normalize_wallet_address(address)
    result = await db.execute(select(User).where(User.wallet_address == wallet))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return user


async def create_user(
    db: AsyncSession,
    *,
    email: str | None = None,
    social_id: str | None = None,
    social_provider: str | None = None,
    wallet_address: str | None = None,
    custody_type: str = "custodial",
    nickname: str | None = None,
    region: str | None = None,
    locale: str = "ko-KR",
    timezone: str = "Asia/Seoul",
    is_admin: bool = False,
) -> User:
    """Register a new user."""
    if (social_id is None) != (social_provider is None):
        raise ValidationError("social_id and social_provider must be given together")

    if wallet_address is not None:
        wallet = normalize_wallet_address(wallet_address)
    elif custody_type == "custodial":
        wallet = generate_custodial_address()
    else:
        raise ValidationError("Non-custodial users must provide a wallet address")

    email = email.strip().lower() if email else None

    if email:
        existing = await db.execute(select(User.id).where(User.email == email))
        if existing.scalar_one_or_none() is not None:
            raise StateConflictError("Email is already registered")

    if social_id is not None:
        existing = await db.execute(
            select(User.id).where(User.social_id == social_id, User.social_provider == social_provider)
        )
        if existing.scalar_one_or_none() is not None:
            raise StateConflictError("Social account is already registered")

    existing = await db.execute(select(User.id).where(User.wallet_address == wallet))
    if existing.scalar_one_or_none() is not None:
        raise StateConflictError("Wallet address is already registered")

    user = User(
        email=email,
        social_id=social_id,
        social_provider=social_provider,
        wallet_address=wallet,
        custody_type=custody_type,
        nickname=nickname,
        region=region,
        locale=locale,
        timezone=timezone,
        is_admin=is_admin,
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("User registered: id=%d custody=%s", user.id, custody_type)
    return user


async def update_profile(
    db: AsyncSession,
    user: User,
    *,
    nickname: str | None = None,
    region: str | None = None,
    locale: str | None = None,
    timezone: str | None = None,
) -> User:
    """Update profile metadata. Identity fields are not touched."""
    if nickname is not None:
        user.nickname = nickname
    if region is not None:
        user.region = region
    if locale is not None:
        user.locale = locale
    if timezone is not None:
        user.timezone = timezone
    await db.flush()
    await db.refresh(user)
    return user
