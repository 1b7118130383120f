"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rundao.config import get_settings
from rundao.crews.router import router as crews_router
from rundao.database import close_db, create_schema, get_session_factory, init_db
from rundao.escrow.router import router as vault_router
from rundao.health.router import router as health_router
from rundao.medals.router import router as medals_router
from rundao.middleware import setup_middleware
from rundao.quests.router import router as quests_router
from rundao.quests.service import activate_due_quests
from rundao.redis_client import close_redis, init_redis
from rundao.runs.router import quest_runs_router
from rundao.runs.router import router as runs_router
from rundao.social.router import router as social_router
from rundao.users.router import router as users_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.create_schema_on_startup:
        await create_schema()
    if settings.redis_url:
        await init_redis(settings.redis_url)

    # Catch up on quests whose start time passed while the service was down
    async with get_session_factory()() as db:
        moved = await activate_due_quests(db)
        await db.commit()
    if moved:
        logger.info("Applied start transitions to %d quests", len(moved))

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="RUN DAO API",
        description="Backend API for RUN DAO: running crews, staked quests and medals",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(users_router)
    app.include_router(crews_router)
    app.include_router(quests_router)
    app.include_router(runs_router)
    app.include_router(quest_runs_router)
    app.include_router(medals_router)
    app.include_router(social_router)
    app.include_router(vault_router)

    return app


app = create_app()
