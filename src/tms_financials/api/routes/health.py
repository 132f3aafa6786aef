"""Health check endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tms_financials.api.dependencies import AppSettings, DbSession
from tms_financials.services.outbox import FinancialsOutbox

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


class OutboxBacklog(BaseModel):
    pending: int
    parked: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    database: str
    engine_version: str
    outbox: OutboxBacklog | None = None


async def _backlog(db: AsyncSession) -> OutboxBacklog | None:
    outbox = FinancialsOutbox(db)
    try:
        return OutboxBacklog(pending=await outbox.pending_count(), parked=await outbox.parked_count())
    except Exception:
        logger.warning("outbox backlog query failed", exc_info=True)
        return None


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
)
async def health_check(db: DbSession, settings: AppSettings) -> HealthResponse:
    """Report store reachability and the recompute backlog.

    Parked entries need an operator (usually a credit note) before they
    can run again, so a growing ``parked`` count is worth alerting on.
    """
    backlog = await _backlog(db)
    return HealthResponse(
        status="healthy" if backlog is not None else "degraded",
        timestamp=datetime.now(timezone.utc),
        database="healthy" if backlog is not None else "unhealthy",
        engine_version=settings.engine_version,
        outbox=backlog,
    )


@router.get("/ready", status_code=status.HTTP_200_OK)
async def readiness_check(db: DbSession, response: Response) -> dict[str, str]:
    """Ready once the outbox table can be read."""
    if await _backlog(db) is None:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unavailable"}
    return {"status": "ready"}


@router.get("/live", status_code=status.HTTP_200_OK)
async def liveness_check() -> dict[str, str]:
    """Liveness check for container orchestration."""
    return {"status": "alive"}
