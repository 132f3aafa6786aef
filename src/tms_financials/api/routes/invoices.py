"""Invoice and credit-note endpoints."""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, status
from fastapi.responses import JSONResponse

from tms_financials.api.dependencies import DbSession
from tms_financials.api.schemas import (
    CreditNoteRequest,
    CreditNoteResponse,
    ErrorResponse,
    InvoiceCreateResponse,
    InvoiceResponse,
    TimesheetIdsRequest,
)
from tms_financials.services.credit_note_service import (
    CreditNoteRejectedError,
    CreditNoteService,
)
from tms_financials.services.invoice_service import (
    InvoiceNotFoundError,
    InvoiceRejectedError,
    InvoiceService,
)

router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.post(
    "",
    response_model=InvoiceCreateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": InvoiceCreateResponse}, 422: {"model": ErrorResponse}},
)
async def create_invoice(db: DbSession, payload: TimesheetIdsRequest) -> Any:
    """Invoice READY_FOR_INVOICE snapshots of one client and lock them."""
    try:
        result = await InvoiceService(db).create_invoice(payload.timesheet_ids)
    except InvoiceRejectedError as e:
        await db.rollback()
        raise HTTPException(
            status_code=422,
            detail={
                "detail": str(e),
                "code": e.reason,
                "timesheet_ids": [str(t) for t in e.timesheet_ids],
            },
        )
    await db.commit()

    response = InvoiceCreateResponse(
        invoice_id=result.invoice_id,
        invoice_number=result.invoice_number,
        locked=result.locked,
        conflicts=result.conflicts,
        voided=result.voided,
    )
    if result.voided:
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get(
    "/{invoice_id}",
    response_model=InvoiceResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_invoice(
    db: DbSession,
    invoice_id: Annotated[UUID, Path()],
) -> InvoiceResponse:
    """Get an invoice or credit note with its lines."""
    try:
        invoice = await InvoiceService(db).get_invoice(invoice_id)
    except InvoiceNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found",
        )
    return InvoiceResponse.model_validate(invoice)


@router.get(
    "/{invoice_id}/render-payload",
    responses={404: {"model": ErrorResponse}},
)
async def get_render_payload(
    db: DbSession,
    invoice_id: Annotated[UUID, Path()],
) -> dict[str, Any]:
    """Plain payload handed to the external document renderer."""
    try:
        return await InvoiceService(db).render_payload(invoice_id)
    except InvoiceNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found",
        )


@router.post(
    "/{invoice_id}/credit-note",
    response_model=CreditNoteResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def issue_credit_note(
    db: DbSession,
    invoice_id: Annotated[UUID, Path()],
    payload: CreditNoteRequest | None = None,
) -> CreditNoteResponse:
    """Credit an invoice in full and release its snapshots for recompute."""
    try:
        result = await CreditNoteService(db).issue_credit_note(
            invoice_id, payload.reason if payload else None
        )
    except CreditNoteRejectedError as e:
        await db.rollback()
        raise HTTPException(
            status_code=(
                status.HTTP_404_NOT_FOUND if e.reason == "not found" else status.HTTP_409_CONFLICT
            ),
            detail=str(e),
        )
    await db.commit()
    return CreditNoteResponse(
        credit_note_id=result.credit_note_id,
        credit_note_number=result.credit_note_number,
        invoice_id=result.invoice_id,
        unlocked=result.unlocked,
    )
