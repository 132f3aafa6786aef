"""Credit notes: reverse an invoice and release its snapshots for recompute."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tms_financials.calculators.types import BUCKETS
from tms_financials.models import Invoice, InvoiceLine, TimesheetFinancial, utcnow
from tms_financials.services.invoice_service import make_invoice_number
from tms_financials.services.outbox import FinancialsOutbox

logger = logging.getLogger(__name__)

CREDIT_REQUEUE_REASON = "version-rotated"

# Money columns negated on mirrored lines; hours and rates are copied as-is.
_NEGATED_LINE_FIELDS = ("pay_ex_vat", "charge_ex_vat", "margin_ex_vat", "vat_amount", "charge_inc_vat")
_NEGATED_HEADER_FIELDS = (
    "total_pay_ex_vat",
    "total_charge_ex_vat",
    "margin_ex_vat",
    "vat_amount",
    "total_inc_vat",
)
_COPIED_LINE_FIELDS = (
    "timesheet_id",
    "financial_id",
    "line_type",
    "description",
    "quantity",
    "unit_pay",
    "unit_charge",
) + tuple(f"{prefix}_{b.value}" for prefix in ("hours", "pay", "charge") for b in BUCKETS)


class CreditNoteRejectedError(Exception):
    """Raised when an invoice cannot be credited."""

    def __init__(self, invoice_id: UUID, reason: str):
        self.invoice_id = invoice_id
        self.reason = reason
        super().__init__(f"Cannot credit invoice {invoice_id}: {reason}")


@dataclass
class CreditNoteResult:
    credit_note_id: UUID
    credit_note_number: str
    invoice_id: UUID
    unlocked: list[UUID] = field(default_factory=list)


def mirror_line(line: InvoiceLine, credit_note_id: UUID) -> InvoiceLine:
    mirrored = InvoiceLine(
        invoice_line_id=uuid4(),
        invoice_id=credit_note_id,
        line_no=line.line_no,
    )
    for name in _COPIED_LINE_FIELDS:
        setattr(mirrored, name, getattr(line, name))
    for name in _NEGATED_LINE_FIELDS:
        setattr(mirrored, name, -getattr(line, name))
    return mirrored


class CreditNoteService:
    """Issues credit notes.

    The credit note mirrors the original lines with negated money so
    reporting nets to zero. Every snapshot locked to the original invoice
    is unlocked, marked stale and queued for recompute.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def issue_credit_note(self, invoice_id: UUID, reason: str | None = None) -> CreditNoteResult:
        """Credit ``invoice_id`` in full.

        Raises:
            CreditNoteRejectedError: If the invoice does not exist, is itself
                a credit note, or is already credited or void.
        """
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.invoice_id == invoice_id)
            .options(selectinload(Invoice.lines))
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise CreditNoteRejectedError(invoice_id, "not found")
        if invoice.kind == "CREDIT_NOTE":
            raise CreditNoteRejectedError(invoice_id, "is a credit note")
        if invoice.status == "CREDITED":
            raise CreditNoteRejectedError(invoice_id, "already credited")
        if invoice.status == "VOID":
            raise CreditNoteRejectedError(invoice_id, "invoice is void")

        now = utcnow()
        credit_note = Invoice(
            invoice_id=uuid4(),
            invoice_number=make_invoice_number("CN", now.date()),
            client_id=invoice.client_id,
            kind="CREDIT_NOTE",
            status="DRAFT",
            credit_of_invoice_id=invoice.invoice_id,
            vat_rate_pct=invoice.vat_rate_pct,
            reason=reason,
        )
        for name in _NEGATED_HEADER_FIELDS:
            setattr(credit_note, name, -getattr(invoice, name))
        self.session.add(credit_note)
        await self.session.flush()

        for line in invoice.lines:
            self.session.add(mirror_line(line, credit_note.invoice_id))

        invoice.status = "CREDITED"
        await self.session.flush()

        locked = await self.session.execute(
            select(TimesheetFinancial.timesheet_id).where(
                TimesheetFinancial.locked_by_invoice_id == invoice.invoice_id
            )
        )
        timesheet_ids = list(dict.fromkeys(locked.scalars().all()))

        stale_reason = f"credited by {credit_note.invoice_number}"
        if reason:
            stale_reason += f": {reason}"
        await self.session.execute(
            update(TimesheetFinancial)
            .where(TimesheetFinancial.locked_by_invoice_id == invoice.invoice_id)
            .values(
                locked_by_invoice_id=None,
                locked_at_utc=None,
                is_stale=True,
                stale_reason=stale_reason,
            )
            .execution_options(synchronize_session=False)
        )

        await FinancialsOutbox(self.session).enqueue_many(timesheet_ids, CREDIT_REQUEUE_REASON)

        logger.info(
            "credit note %s issued for invoice %s; %d snapshots unlocked",
            credit_note.invoice_number,
            invoice.invoice_number,
            len(timesheet_ids),
        )
        return CreditNoteResult(
            credit_note_id=credit_note.invoice_id,
            credit_note_number=credit_note.invoice_number,
            invoice_id=invoice.invoice_id,
            unlocked=timesheet_ids,
        )
