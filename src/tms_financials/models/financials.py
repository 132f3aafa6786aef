"""Financial snapshot and recompute outbox models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from tms_financials.models.base import Base, TimestampMixin, utcnow

PROCESSING_STATUSES = (
    "UNASSIGNED",
    "CLIENT_UNRESOLVED",
    "RATE_MISSING",
    "PAY_CHANNEL_MISSING",
    "READY_FOR_HR",
    "READY_FOR_INVOICE",
)

OUTBOX_REASONS = (
    "new-authorised",
    "version-rotated",
    "revoked",
    "rate-changed",
    "policy-changed",
    "context-changed",
    "manual",
)


def _money() -> Any:
    return mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))


def _hours() -> Any:
    return mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))


def _rate() -> Any:
    return mapped_column(Numeric(12, 4), nullable=True)


class TimesheetFinancial(Base):
    """Point-in-time financial snapshot of one timesheet version.

    Rows are never deleted. A recompute inserts a new current row and flips
    the previous one to non-current; a row locked by an invoice can only be
    released through a credit note.
    """

    __tablename__ = "timesheets_financials"

    financial_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    timesheet_version: Mapped[int] = mapped_column(Integer, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Resolved context
    candidate_id: Mapped[UUID | None] = mapped_column(nullable=True)
    client_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    role: Mapped[str | None] = mapped_column(String, nullable=True)
    band: Mapped[str | None] = mapped_column(String, nullable=True)
    pay_method: Mapped[str | None] = mapped_column(String, nullable=True)
    rate_source: Mapped[str] = mapped_column(String, nullable=False, default="NONE")

    # Hours per bucket
    hours_day: Mapped[Decimal] = _hours()
    hours_night: Mapped[Decimal] = _hours()
    hours_sat: Mapped[Decimal] = _hours()
    hours_sun: Mapped[Decimal] = _hours()
    hours_bh: Mapped[Decimal] = _hours()

    # Rates actually used
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
    missing_rates: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    # Totals (ex VAT)
    basic_pay_ex_vat: Mapped[Decimal] = _money()
    holiday_pay_ex_vat: Mapped[Decimal] = _money()
    erni_ex_vat: Mapped[Decimal] = _money()
    total_pay_ex_vat: Mapped[Decimal] = _money()
    total_charge_ex_vat: Mapped[Decimal] = _money()
    margin_ex_vat: Mapped[Decimal] = _money()

    # Receipted expenses and mileage
    expenses_pay_ex_vat: Mapped[Decimal] = _money()
    expenses_charge_ex_vat: Mapped[Decimal] = _money()
    expenses_evidence_key: Mapped[str | None] = mapped_column(String, nullable=True)
    mileage_miles: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    mileage_pay_rate: Mapped[Decimal | None] = _rate()
    mileage_charge_rate: Mapped[Decimal | None] = _rate()
    mileage_pay_ex_vat: Mapped[Decimal] = _money()
    mileage_charge_ex_vat: Mapped[Decimal] = _money()
    mileage_evidence_key: Mapped[str | None] = mapped_column(String, nullable=True)

    processing_status: Mapped[str] = mapped_column(String, nullable=False)
    is_stale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    stale_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Invoice lock
    locked_by_invoice_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("invoice.invoice_id"),
        nullable=True,
        index=True,
    )
    locked_at_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    computed_at_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "processing_status IN ('UNASSIGNED', 'CLIENT_UNRESOLVED', 'RATE_MISSING', "
            "'PAY_CHANNEL_MISSING', 'READY_FOR_HR', 'READY_FOR_INVOICE')",
            name="financials_processing_status_check",
        ),
        Index(
            "financials_one_current_idx",
            "timesheet_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
    )

    @property
    def is_locked(self) -> bool:
        return self.locked_by_invoice_id is not None


class FinancialsOutboxEntry(Base, TimestampMixin):
    """Pending recompute request, deduplicated on (timesheet_id, reason)."""

    __tablename__ = "financials_outbox"

    outbox_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Lease
    leased_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    lease_token: Mapped[UUID | None] = mapped_column(nullable=True)
    # Bumped on every enqueue so an in-flight ack cannot swallow a newer request
    generation: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    parked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("timesheet_id", "reason", name="financials_outbox_ts_reason_unique"),
        CheckConstraint(
            "reason IN ('new-authorised', 'version-rotated', 'revoked', 'rate-changed', "
            "'policy-changed', 'context-changed', 'manual')",
            name="financials_outbox_reason_check",
        ),
        Index("financials_outbox_due_idx", "next_attempt_at"),
    )
