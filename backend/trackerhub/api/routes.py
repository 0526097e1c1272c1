"""Service-level routes outside the versioned resource API."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from . import deps

health_router = APIRouter()


@health_router.get("/", summary="Readiness probe", tags=["health"])
async def healthcheck(db_session: AsyncSession = Depends(deps.get_db_session)) -> dict[str, str]:
    """Report readiness once the tracker store answers a trivial query."""

    await db_session.execute(text("SELECT 1"))
    return {"status": "ok"}
