"""Health check endpoint."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.api.deps import get_session
from backend.models.asset import Asset
from backend.version import __version__

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    database: str


async def _asset_store_status(session: AsyncSession) -> str:
    """Read from the assets table; any database error reports ``error``."""
    try:
        await session.execute(select(Asset.id).limit(1))
    except SQLAlchemyError:
        logger.warning("Health check could not read the assets table", exc_info=True)
        return "error"
    return "ok"


@router.get("/api/health", response_model=HealthResponse)
async def health_check(
    session: Annotated[AsyncSession, Depends(get_session)],
) -> HealthResponse:
    database = await _asset_store_status(session)
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=__version__,
        database=database,
    )
