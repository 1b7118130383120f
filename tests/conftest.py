"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

DAO_TREASURY = "0x" + "d" * 40
FEE_RECIPIENT = "0x" + "f" * 40

os.environ["RUNDAO_REDIS_URL"] = ""
os.environ["RUNDAO_LOG_FORMAT"] = "console"
os.environ["RUNDAO_DAO_TREASURY_ADDRESS"] = DAO_TREASURY
os.environ["RUNDAO_PROTOCOL_FEE_RECIPIENT"] = FEE_RECIPIENT

from rundao.auth.jwt import create_access_token  # noqa: E402
from rundao.config import get_settings  # noqa: E402
from rundao.crews.service import create_crew, join_crew  # noqa: E402
from rundao.database import close_db, create_schema, get_session_factory, init_db  # noqa: E402
from rundao.db.models import Crew, Quest, User  # noqa: E402
from rundao.main import create_app  # noqa: E402
from rundao.quests.service import create_quest  # noqa: E402
from rundao.users.service import create_user  # noqa: E402

get_settings.cache_clear()

# Fixed clock for service-level tests: quests start a day after T0 and run two weeks.
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
START = T0 + timedelta(days=1)
END = START + timedelta(days=14)


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[None, None]:
    """Fresh SQLite file per test, schema created from the models."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'rundao_test.db'}")
    await create_schema()
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for service calls and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def client(database) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client against the same database."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def make_user(db: AsyncSession, nickname: str, *, is_admin: bool = False) -> User:
    """Create a custodial user directly through the service."""
    return await create_user(db, nickname=nickname, is_admin=is_admin)


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.wallet_address)}"}


async def make_crew(db: AsyncSession, leader: User, *members: User, name: str = "Han River Runners") -> Crew:
    crew = await create_crew(db, leader.id, name, region="Seoul")
    for member in members:
        await join_crew(db, crew.id, member.id)
    return crew


async def make_quest(
    db: AsyncSession,
    creator: User,
    crew: Crew,
    *,
    stake: str = "10",
    max_slots: int = 2,
    distance_km: float = 5.0,
    times_per_week: int = 2,
    publish: bool = True,
    **overrides,
) -> Quest:
    """Open quest starting at START and ending at END on the fixed clock."""
    return await create_quest(
        db,
        creator,
        crew.id,
        title=overrides.pop("title", "Two weeks of 5k"),
        start_at=overrides.pop("start_at", START),
        end_at=overrides.pop("end_at", END),
        distance_km=distance_km,
        times_per_week=times_per_week,
        stake_amount=Decimal(stake),
        max_slots=max_slots,
        publish=publish,
        now=T0,
        **overrides,
    )


@pytest_asyncio.fixture
async def runners(db_session: AsyncSession) -> dict[str, User]:
    """Alice (crew leader), Bob and Carol in one crew, plus an admin."""
    alice = await make_user(db_session, "alice")
    bob = await make_user(db_session, "bob")
    carol = await make_user(db_session, "carol")
    admin = await make_user(db_session, "admin", is_admin=True)
    await db_session.commit()
    return {"alice": alice, "bob": bob, "carol": carol, "admin": admin}


@pytest_asyncio.fixture
async def crew(db_session: AsyncSession, runners: dict[str, User]) -> Crew:
    crew = await make_crew(db_session, runners["alice"], runners["bob"], runners["carol"])
    await db_session.commit()
    return crew
