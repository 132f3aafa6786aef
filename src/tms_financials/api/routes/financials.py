"""Snapshot, outbox and promotion endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, status
from sqlalchemy import select

from tms_financials.api.dependencies import AppSettings, DbSession, SessionFactory
from tms_financials.api.schemas import (
    DrainEntryError,
    DrainRequest,
    DrainResponse,
    EnqueueRequest,
    EnqueueResponse,
    ErrorResponse,
    PromoteResponse,
    SnapshotResponse,
    TimesheetIdsRequest,
)
from tms_financials.models import TimesheetFinancial
from tms_financials.services.outbox import FinancialsOutbox
from tms_financials.services.promotion_service import PromotionService
from tms_financials.services.worker import OutboxWorker

router = APIRouter(prefix="/financials", tags=["financials"])


# ============================================================================
# Outbox
# ============================================================================


@router.post(
    "/enqueue",
    response_model=EnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={422: {"model": ErrorResponse}},
)
async def enqueue_recompute(db: DbSession, payload: EnqueueRequest) -> EnqueueResponse:
    """Request recomputation of the given timesheets, or of a whole client."""
    if not payload.timesheet_ids and payload.client_id is None:
        raise HTTPException(
            status_code=422,
            detail="timesheet_ids or client_id is required",
        )

    outbox = FinancialsOutbox(db)
    enqueued = await outbox.enqueue_many(payload.timesheet_ids, payload.reason)
    if payload.client_id is not None:
        enqueued += await outbox.enqueue_for_client(payload.client_id, payload.reason)
    await db.commit()
    return EnqueueResponse(enqueued=enqueued)


@router.post("/drain", response_model=DrainResponse)
async def drain_outbox(
    factory: SessionFactory,
    settings: AppSettings,
    payload: DrainRequest | None = None,
) -> DrainResponse:
    """Run one worker cycle synchronously."""
    worker = OutboxWorker(factory, settings)
    result = await worker.run_once(payload.limit if payload else None)
    return DrainResponse(
        leased=result.leased,
        succeeded=result.succeeded,
        failed={k: DrainEntryError.model_validate(v) for k, v in result.failed.items()},
        parked={k: DrainEntryError.model_validate(v) for k, v in result.parked.items()},
    )


# ============================================================================
# Snapshots
# ============================================================================


@router.get(
    "/{timesheet_id}",
    response_model=SnapshotResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_current_snapshot(
    db: DbSession,
    timesheet_id: Annotated[UUID, Path()],
) -> SnapshotResponse:
    """Get the current financial snapshot of a timesheet."""
    result = await db.execute(
        select(TimesheetFinancial).where(
            TimesheetFinancial.timesheet_id == timesheet_id,
            TimesheetFinancial.is_current.is_(True),
        )
    )
    snapshot = result.scalar_one_or_none()
    if snapshot is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No current snapshot for timesheet",
        )
    return SnapshotResponse.model_validate(snapshot)


# ============================================================================
# Promotion
# ============================================================================


@router.post("/promote", response_model=PromoteResponse)
async def promote_snapshots(db: DbSession, payload: TimesheetIdsRequest) -> PromoteResponse:
    """Promote READY_FOR_HR snapshots to READY_FOR_INVOICE."""
    result = await PromotionService(db).promote(payload.timesheet_ids)
    await db.commit()
    return PromoteResponse(promoted=result.promoted, blocked=result.blocked)
