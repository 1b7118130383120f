"""Run endpoints: ingestion, fraud flags and quest-run review."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.auth.dependencies import get_current_user
from rundao.database import get_session
from rundao.db.models import User
from rundao.quests.schemas import QuestRunEnvelope, QuestRunResponse
from rundao.runs.schemas import (
    FlagRunRequest,
    IngestRunRequest,
    InvalidateQuestRunRequest,
    RunEnvelope,
    RunResponse,
)
from rundao.runs.service import flag_run, get_run, ingest_run, invalidate_quest_run

router = APIRouter(prefix="/api/runs", tags=["Runs"])
quest_runs_router = APIRouter(prefix="/api/quest-runs", tags=["Runs"])


@router.post("", response_model=RunEnvelope, status_code=201)
async def ingest_run_endpoint(
    body: IngestRunRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RunEnvelope:
    """Import an activity from a fitness provider."""
    run = await ingest_run(db, user, **body.model_dump())
    await db.commit()
    return RunEnvelope(run=RunResponse.model_validate(run))


@router.get("/{run_id}", response_model=RunEnvelope)
async def get_run_endpoint(
    run_id: int,
    db: AsyncSession = Depends(get_session),
) -> RunEnvelope:
    run = await get_run(db, run_id)
    return RunEnvelope(run=RunResponse.model_validate(run))


@router.post("/{run_id}/flags", response_model=RunEnvelope)
async def flag_run_endpoint(
    run_id: int,
    body: FlagRunRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> RunEnvelope:
    """Record a fraud review (administrators)."""
    run = await flag_run(db, run_id, user, **body.model_dump())
    await db.commit()
    return RunEnvelope(run=RunResponse.model_validate(run))


@quest_runs_router.post("/{quest_run_id}/invalidate", response_model=QuestRunEnvelope)
async def invalidate_quest_run_endpoint(
    quest_run_id: int,
    body: InvalidateQuestRunRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> QuestRunEnvelope:
    """Stop a run from counting toward a quest (administrators)."""
    quest_run = await invalidate_quest_run(db, quest_run_id, user, body.reason)
    await db.commit()
    return QuestRunEnvelope(quest_run=QuestRunResponse.model_validate(quest_run))
