"""HS256 JWT access tokens.

Tokens carry the user id (``sub``) and wallet address. Social login and
wallet signing happen upstream; this service only issues and verifies the
session token handed out at signup.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from rundao.config import get_settings


def create_access_token(user_id: int, wallet_address: str) -> str:
    """
    Create an access token.

    Args:
        user_id: The user's database ID.
        wallet_address: The user's wallet address.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "address": wallet_address,
        "iss": settings.jwt_issuer,
        "iat": now,
        "exp": now + timedelta(minutes=settings.jwt_access_token_expire_minutes),
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> dict[str, Any]:
    """
    Decode and verify an access token.

    Raises:
        jwt.InvalidTokenError: On bad signature, expiry, issuer or token type.
    """
    settings = get_settings()
    payload: dict[str, Any] = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
        options={"require": ["sub", "exp", "iss"]},
    )
    if payload.get("type") != "access":
        msg = "Invalid token type"
        raise jwt.InvalidTokenError(msg)
    return payload
