"""Invoice assembly and snapshot locking."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tms_financials.calculators.money import percent_of, round_money
from tms_financials.calculators.policy_resolver import PolicyResolver
from tms_financials.calculators.types import BUCKETS, ZERO
from tms_financials.models import Client, Invoice, InvoiceLine, TimesheetFinancial, utcnow
from tms_financials.services.state_machine import ProcessingStatus, ProcessingStatusMachine

logger = logging.getLogger(__name__)

LOCK_CONFLICT = "LOCK_CONFLICT"


class InvoiceRejectedError(Exception):
    """Raised when an invoice request violates a precondition.

    Nothing is written when this is raised.
    """

    def __init__(self, reason: str, timesheet_ids: Iterable[UUID] = (), detail: str | None = None):
        self.reason = reason
        self.timesheet_ids = list(timesheet_ids)
        self.detail = detail
        msg = f"Invoice rejected: {reason}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class InvoiceNotFoundError(Exception):
    """Raised when an invoice does not exist."""

    def __init__(self, invoice_id: UUID):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} not found")


@dataclass
class InvoiceCreateResult:
    """Outcome of an invoice request.

    If the lock lost a race the invoice is voided, ``voided`` is True and
    ``conflicts`` lists the timesheets that were locked or changed by
    someone else.
    """

    invoice_id: UUID
    invoice_number: str
    locked: list[UUID] = field(default_factory=list)
    conflicts: list[UUID] = field(default_factory=list)
    voided: bool = False


def make_invoice_number(prefix: str = "INV", on: date | None = None) -> str:
    on = on or utcnow().date()
    return f"{prefix}-{on:%Y%m%d}-{uuid4().hex[:8].upper()}"


def _vat(amount: Decimal, vat_rate_pct: Decimal) -> Decimal:
    return percent_of(amount, vat_rate_pct)


def hours_line(snapshot: TimesheetFinancial, line_no: int, vat_rate_pct: Decimal) -> InvoiceLine:
    charge = snapshot.total_charge_ex_vat
    vat = _vat(charge, vat_rate_pct)
    total_hours = sum((getattr(snapshot, f"hours_{b.value}") for b in BUCKETS), ZERO)
    line = InvoiceLine(
        invoice_line_id=uuid4(),
        line_no=line_no,
        timesheet_id=snapshot.timesheet_id,
        financial_id=snapshot.financial_id,
        line_type="HOURS",
        description=" ".join(
            part for part in (f"{total_hours}h", snapshot.role, snapshot.band) if part
        ),
        quantity=total_hours,
        pay_ex_vat=snapshot.total_pay_ex_vat,
        charge_ex_vat=charge,
        margin_ex_vat=charge - snapshot.total_pay_ex_vat,
        vat_amount=vat,
        charge_inc_vat=charge + vat,
    )
    for bucket in BUCKETS:
        for prefix in ("hours", "pay", "charge"):
            name = f"{prefix}_{bucket.value}"
            setattr(line, name, getattr(snapshot, name))
    return line


def expenses_line(snapshot: TimesheetFinancial, line_no: int, vat_rate_pct: Decimal) -> InvoiceLine:
    pay = snapshot.expenses_pay_ex_vat
    charge = snapshot.expenses_charge_ex_vat
    vat = _vat(charge, vat_rate_pct)
    return InvoiceLine(
        invoice_line_id=uuid4(),
        line_no=line_no,
        timesheet_id=snapshot.timesheet_id,
        financial_id=snapshot.financial_id,
        line_type="EXPENSES",
        description="Receipted expenses",
        quantity=Decimal("1"),
        unit_pay=pay,
        unit_charge=charge,
        pay_ex_vat=pay,
        charge_ex_vat=charge,
        margin_ex_vat=charge - pay,
        vat_amount=vat,
        charge_inc_vat=charge + vat,
    )


def mileage_line(snapshot: TimesheetFinancial, line_no: int, vat_rate_pct: Decimal) -> InvoiceLine:
    pay = snapshot.mileage_pay_ex_vat
    charge = snapshot.mileage_charge_ex_vat
    vat = _vat(charge, vat_rate_pct)
    return InvoiceLine(
        invoice_line_id=uuid4(),
        line_no=line_no,
        timesheet_id=snapshot.timesheet_id,
        financial_id=snapshot.financial_id,
        line_type="MILEAGE",
        description=f"Mileage {snapshot.mileage_miles} miles",
        quantity=snapshot.mileage_miles,
        unit_pay=snapshot.mileage_pay_rate,
        unit_charge=snapshot.mileage_charge_rate,
        pay_ex_vat=pay,
        charge_ex_vat=charge,
        margin_ex_vat=charge - pay,
        vat_amount=vat,
        charge_inc_vat=charge + vat,
    )


def build_lines(snapshots: list[TimesheetFinancial], vat_rate_pct: Decimal) -> list[InvoiceLine]:
    """One HOURS line per snapshot, plus EXPENSES and MILEAGE when charged."""
    lines: list[InvoiceLine] = []
    for snapshot in snapshots:
        lines.append(hours_line(snapshot, len(lines) + 1, vat_rate_pct))
        if snapshot.expenses_charge_ex_vat and snapshot.expenses_charge_ex_vat > ZERO:
            lines.append(expenses_line(snapshot, len(lines) + 1, vat_rate_pct))
        if snapshot.mileage_charge_ex_vat and snapshot.mileage_charge_ex_vat > ZERO:
            lines.append(mileage_line(snapshot, len(lines) + 1, vat_rate_pct))
    return lines


def apply_totals(invoice: Invoice, lines: list[InvoiceLine]) -> None:
    """Sum line money into the header."""
    invoice.total_pay_ex_vat = sum((line.pay_ex_vat for line in lines), ZERO)
    invoice.total_charge_ex_vat = sum((line.charge_ex_vat for line in lines), ZERO)
    invoice.margin_ex_vat = sum((line.margin_ex_vat for line in lines), ZERO)
    invoice.vat_amount = sum((line.vat_amount for line in lines), ZERO)
    invoice.total_inc_vat = invoice.total_charge_ex_vat + invoice.vat_amount


def _money(value: Decimal | None) -> str | None:
    return None if value is None else str(round_money(Decimal(value)))


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class InvoiceService:
    """Builds invoices from READY_FOR_INVOICE snapshots and locks them."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _current_snapshots(self, timesheet_ids: list[UUID]) -> dict[UUID, TimesheetFinancial]:
        result = await self.session.execute(
            select(TimesheetFinancial).where(
                TimesheetFinancial.timesheet_id.in_(timesheet_ids),
                TimesheetFinancial.is_current.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        return {row.timesheet_id: row for row in result.scalars().all()}

    async def _check_preconditions(self, timesheet_ids: list[UUID]) -> list[TimesheetFinancial]:
        if not timesheet_ids:
            raise InvoiceRejectedError("EMPTY", detail="no timesheets given")

        by_timesheet = await self._current_snapshots(timesheet_ids)

        missing = [t for t in timesheet_ids if t not in by_timesheet]
        if missing:
            raise InvoiceRejectedError("NO_SNAPSHOT", missing)

        snapshots = [by_timesheet[t] for t in timesheet_ids]
        locked = [s.timesheet_id for s in snapshots if s.is_locked]
        if locked:
            raise InvoiceRejectedError("LOCKED", locked)

        not_ready = [
            s.timesheet_id
            for s in snapshots
            if not ProcessingStatusMachine.is_invoiceable(s.processing_status)
        ]
        if not_ready:
            raise InvoiceRejectedError("NOT_READY_FOR_INVOICE", not_ready)

        client_ids = {s.client_id for s in snapshots}
        if len(client_ids) != 1 or None in client_ids:
            raise InvoiceRejectedError(
                "MULTIPLE_CLIENTS",
                timesheet_ids,
                detail=f"{len(client_ids)} distinct clients",
            )
        return snapshots

    async def effective_vat_rate(self, client_id: UUID, on: date) -> Decimal:
        client = await self.session.get(Client, client_id)
        if client is not None and client.vat_exempt:
            return ZERO
        policy = await PolicyResolver(self.session).resolve(client_id, on)
        return Decimal(policy.vat_rate_pct)

    async def create_invoice(self, timesheet_ids: Iterable[UUID]) -> InvoiceCreateResult:
        """Invoice the given timesheets for one client and lock their snapshots.

        Raises:
            InvoiceRejectedError: If any snapshot is missing, locked, not
                READY_FOR_INVOICE, or the set spans more than one client.
        """
        ids = list(dict.fromkeys(timesheet_ids))
        snapshots = await self._check_preconditions(ids)
        client_id = snapshots[0].client_id
        now = utcnow()

        vat_rate_pct = await self.effective_vat_rate(client_id, now.date())

        invoice = Invoice(
            invoice_id=uuid4(),
            invoice_number=make_invoice_number("INV", now.date()),
            client_id=client_id,
            kind="INVOICE",
            status="DRAFT",
            vat_rate_pct=vat_rate_pct,
            total_pay_ex_vat=ZERO,
            total_charge_ex_vat=ZERO,
            margin_ex_vat=ZERO,
            vat_amount=ZERO,
            total_inc_vat=ZERO,
        )
        self.session.add(invoice)
        await self.session.flush()

        lines = build_lines(snapshots, vat_rate_pct)
        for line in lines:
            line.invoice_id = invoice.invoice_id
            self.session.add(line)
        apply_totals(invoice, lines)
        await self.session.flush()

        financial_ids = [s.financial_id for s in snapshots]
        lock_result = await self.session.execute(
            update(TimesheetFinancial)
            .where(
                TimesheetFinancial.financial_id.in_(financial_ids),
                TimesheetFinancial.is_current.is_(True),
                TimesheetFinancial.locked_by_invoice_id.is_(None),
                TimesheetFinancial.processing_status
                == ProcessingStatus.READY_FOR_INVOICE.value,
            )
            .values(locked_by_invoice_id=invoice.invoice_id, locked_at_utc=now)
            .execution_options(synchronize_session=False)
        )

        result = InvoiceCreateResult(invoice.invoice_id, invoice.invoice_number)
        if lock_result.rowcount == len(financial_ids):
            result.locked = ids
            logger.info(
                "invoice %s created for client %s with %d timesheets",
                invoice.invoice_number,
                client_id,
                len(ids),
            )
            return result

        await self._void_after_conflict(invoice, snapshots, result)
        return result

    async def _void_after_conflict(
        self,
        invoice: Invoice,
        snapshots: list[TimesheetFinancial],
        result: InvoiceCreateResult,
    ) -> None:
        locked_rows = await self.session.execute(
            select(TimesheetFinancial.financial_id).where(
                TimesheetFinancial.locked_by_invoice_id == invoice.invoice_id
            )
        )
        ours = set(locked_rows.scalars().all())
        result.conflicts = [s.timesheet_id for s in snapshots if s.financial_id not in ours]

        await self.session.execute(
            update(TimesheetFinancial)
            .where(TimesheetFinancial.locked_by_invoice_id == invoice.invoice_id)
            .values(locked_by_invoice_id=None, locked_at_utc=None)
            .execution_options(synchronize_session=False)
        )
        invoice.status = "VOID"
        invoice.void_reason = LOCK_CONFLICT
        await self.session.flush()

        result.voided = True
        logger.warning(
            "invoice %s voided: %d timesheets changed during locking",
            invoice.invoice_number,
            len(result.conflicts),
        )

    async def get_invoice(self, invoice_id: UUID) -> Invoice:
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.invoice_id == invoice_id)
            .options(selectinload(Invoice.lines))
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            raise InvoiceNotFoundError(invoice_id)
        return invoice

    async def render_payload(self, invoice_id: UUID) -> dict[str, Any]:
        """JSON-ready header and lines for the external rendering service."""
        invoice = await self.get_invoice(invoice_id)
        client = await self.session.get(Client, invoice.client_id)
        return {
            "invoice_id": str(invoice.invoice_id),
            "invoice_number": invoice.invoice_number,
            "kind": invoice.kind,
            "status": invoice.status,
            "credit_of_invoice_id": _plain(invoice.credit_of_invoice_id),
            "client": {
                "client_id": str(invoice.client_id),
                "name": client.name if client else None,
                "vat_exempt": bool(client.vat_exempt) if client else False,
            },
            "vat_rate_pct": str(invoice.vat_rate_pct),
            "totals": {
                "pay_ex_vat": _money(invoice.total_pay_ex_vat),
                "charge_ex_vat": _money(invoice.total_charge_ex_vat),
                "margin_ex_vat": _money(invoice.margin_ex_vat),
                "vat": _money(invoice.vat_amount),
                "inc_vat": _money(invoice.total_inc_vat),
            },
            "lines": [
                {
                    "line_no": line.line_no,
                    "line_type": line.line_type,
                    "timesheet_id": str(line.timesheet_id),
                    "description": line.description,
                    "hours": {
                        b.value: _plain(getattr(line, f"hours_{b.value}")) for b in BUCKETS
                    },
                    "charge_rates": {
                        b.value: _plain(getattr(line, f"charge_{b.value}")) for b in BUCKETS
                    },
                    "quantity": _plain(line.quantity),
                    "unit_charge": _plain(line.unit_charge),
                    "charge_ex_vat": _money(line.charge_ex_vat),
                    "vat": _money(line.vat_amount),
                    "charge_inc_vat": _money(line.charge_inc_vat),
                }
                for line in invoice.lines
            ],
            "reason": invoice.reason,
            "created_at": _plain(invoice.created_at),
        }
