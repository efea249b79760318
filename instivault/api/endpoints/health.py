"""
Health check endpoints.
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from instivault.core.config import settings
from instivault.infrastructure.database.base import get_session_factory

router = APIRouter()


@router.get("/health")
async def health_check(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> Dict[str, Any]:
    """
    Health check including the database.

    Returns:
        Health status
    """
    database = "healthy"
    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        database = "unhealthy"

    return {
        "status": "healthy" if database == "healthy" else "degraded",
        "service": "instivault-api",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "components": {"database": database},
    }
