"""Invoice and credit-note models."""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tms_financials.models.base import Base, TimestampMixin


def _money() -> Any:
    return mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))


def _rate() -> Any:
    return mapped_column(Numeric(12, 4), nullable=True)


class Invoice(Base, TimestampMixin):
    """Invoice (or credit note) for exactly one client."""

    __tablename__ = "invoice"

    invoice_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    client_id: Mapped[UUID] = mapped_column(ForeignKey("client.client_id"), nullable=False)
    kind: Mapped[str] = mapped_column(String, nullable=False, default="INVOICE")
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    credit_of_invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoice.invoice_id"),
        nullable=True,
    )
    vat_rate_pct: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False, default=Decimal("0"))

    total_pay_ex_vat: Mapped[Decimal] = _money()
    total_charge_ex_vat: Mapped[Decimal] = _money()
    margin_ex_vat: Mapped[Decimal] = _money()
    vat_amount: Mapped[Decimal] = _money()
    total_inc_vat: Mapped[Decimal] = _money()

    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("kind IN ('INVOICE', 'CREDIT_NOTE')", name="invoice_kind_check"),
        CheckConstraint("status IN ('DRAFT', 'VOID', 'CREDITED')", name="invoice_status_check"),
    )

    lines: Mapped[list[InvoiceLine]] = relationship(
        back_populates="invoice",
        order_by="InvoiceLine.line_no",
    )


class InvoiceLine(Base):
    """One billed line: hours, receipted expenses or mileage."""

    __tablename__ = "invoice_line"

    invoice_line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_id: Mapped[UUID] = mapped_column(
        ForeignKey("invoice.invoice_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    line_no: Mapped[int] = mapped_column(nullable=False)
    timesheet_id: Mapped[UUID] = mapped_column(nullable=False)
    financial_id: Mapped[UUID] = mapped_column(
        ForeignKey("timesheets_financials.financial_id"),
        nullable=False,
    )
    line_type: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    hours_day: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    hours_night: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    hours_sat: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    hours_sun: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))
    hours_bh: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))

    pay_day: Mapped[Decimal | None] = _rate()
    pay_night: Mapped[Decimal | None] = _rate()
    pay_sat: Mapped[Decimal | None] = _rate()
    pay_sun: Mapped[Decimal | None] = _rate()
    pay_bh: Mapped[Decimal | None] = _rate()
    charge_day: Mapped[Decimal | None] = _rate()
    charge_night: Mapped[Decimal | None] = _rate()
    charge_sat: Mapped[Decimal | None] = _rate()
    charge_sun: Mapped[Decimal | None] = _rate()
    charge_bh: Mapped[Decimal | None] = _rate()

    quantity: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    unit_pay: Mapped[Decimal | None] = _rate()
    unit_charge: Mapped[Decimal | None] = _rate()

    pay_ex_vat: Mapped[Decimal] = _money()
    charge_ex_vat: Mapped[Decimal] = _money()
    margin_ex_vat: Mapped[Decimal] = _money()
    vat_amount: Mapped[Decimal] = _money()
    charge_inc_vat: Mapped[Decimal] = _money()

    __table_args__ = (
        CheckConstraint(
            "line_type IN ('HOURS', 'EXPENSES', 'MILEAGE')",
            name="invoice_line_type_check",
        ),
    )

    invoice: Mapped[Invoice] = relationship(back_populates="lines")
