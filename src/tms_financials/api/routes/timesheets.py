"""Timesheet submission and revocation endpoints."""

from fastapi import APIRouter, HTTPException, status

from tms_financials.api.dependencies import AppSettings, DbSession
from tms_financials.api.schemas import (
    ErrorResponse,
    TimesheetRevokeRequest,
    TimesheetRevokeResponse,
    TimesheetSubmitRequest,
    TimesheetSubmitResponse,
)
from tms_financials.services.timesheet_service import (
    TimesheetConflictError,
    TimesheetNotFoundError,
    TimesheetService,
    TimesheetSubmission,
    break_ok,
)

router = APIRouter(prefix="/timesheets", tags=["timesheets"])


@router.post(
    "",
    response_model=TimesheetSubmitResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def submit_timesheet(
    db: DbSession,
    settings: AppSettings,
    payload: TimesheetSubmitRequest,
) -> TimesheetSubmitResponse:
    """Store an authorised shift as the booking's new current version."""
    try:
        timesheet = await TimesheetService(db).submit(TimesheetSubmission(**payload.model_dump()))
    except TimesheetConflictError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    await db.commit()

    return TimesheetSubmitResponse(
        timesheet_id=timesheet.timesheet_id,
        booking_id=timesheet.booking_id,
        version=timesheet.version,
        status=timesheet.status,
        week_ending_date=timesheet.week_ending_date,
        break_minutes=timesheet.break_minutes,
        break_ok=break_ok(timesheet.break_minutes, settings.break_expected_minutes),
    )


@router.post(
    "/revoke",
    response_model=TimesheetRevokeResponse,
    responses={404: {"model": ErrorResponse}},
)
async def revoke_timesheet(
    db: DbSession,
    payload: TimesheetRevokeRequest,
) -> TimesheetRevokeResponse:
    """Revoke the booking's current version so it can be resubmitted."""
    try:
        result = await TimesheetService(db).revoke(
            payload.booking_id, reason=payload.reason, actor=payload.actor
        )
    except TimesheetNotFoundError as e:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    await db.commit()

    return TimesheetRevokeResponse(
        booking_id=result.booking_id,
        timesheet_id=result.timesheet_id,
        revoked_version=result.revoked_version,
        next_version=result.next_version,
    )
