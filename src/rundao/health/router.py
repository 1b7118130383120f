"""Health and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rundao.config import get_settings
from rundao.database import get_session
from rundao.db.models import User

router = APIRouter(prefix="/api")


@router.get("/health")
async def health(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Liveness plus a database round-trip."""
    checks: dict[str, object] = {}
    try:
        result = await db.execute(select(func.count(User.id)))
        checks["database"] = "ok"
        checks["users"] = int(result.scalar_one())
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": status, "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
