"""Timesheet source records and their validation history."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from tms_financials.models.base import Base, TimestampMixin


class Timesheet(Base, TimestampMixin):
    """One version of an authorised shift record.

    ``timesheet_id`` is stable across all versions of a booking. At most one
    version per ``timesheet_id`` is current; a revoked booking has none.
    """

    __tablename__ = "timesheet"

    timesheet_id: Mapped[UUID] = mapped_column(primary_key=True)
    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    booking_id: Mapped[str] = mapped_column(String, nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    occupant_key_norm: Mapped[str] = mapped_column(String, nullable=False)
    hospital_norm: Mapped[str] = mapped_column(String, nullable=False)
    ward_norm: Mapped[str | None] = mapped_column(String, nullable=True)
    role_norm: Mapped[str | None] = mapped_column(String, nullable=True)
    band: Mapped[str | None] = mapped_column(String, nullable=True)
    shift_label_norm: Mapped[str | None] = mapped_column(String, nullable=True)

    worked_start_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    worked_end_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    break_start_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    break_end_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    break_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    week_ending_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[str] = mapped_column(String, nullable=False, default="AUTHORISED")
    auth_name: Mapped[str | None] = mapped_column(String, nullable=True)
    auth_job_title: Mapped[str | None] = mapped_column(String, nullable=True)
    authorised_at_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    revoked_at_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    revoked_by: Mapped[str | None] = mapped_column(String, nullable=True)

    # Optional claims attached to the shift
    expenses_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    expenses_evidence_key: Mapped[str | None] = mapped_column(String, nullable=True)
    mileage_miles: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    mileage_evidence_key: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("booking_id", "version", name="timesheet_booking_version_unique"),
        CheckConstraint(
            "status IN ('SUBMITTED', 'AUTHORISED', 'REVOKED')",
            name="timesheet_status_check",
        ),
        CheckConstraint("worked_end_utc >= worked_start_utc", name="timesheet_worked_order_check"),
        Index(
            "timesheet_one_current_idx",
            "timesheet_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
    )


class TimesheetValidation(Base, TimestampMixin):
    """HR/authoriser validation outcome; the newest row is authoritative."""

    __tablename__ = "timesheet_validation"

    validation_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    timesheet_id: Mapped[UUID] = mapped_column(nullable=False, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'validated', 'overridden', 'rejected')",
            name="timesheet_validation_status_check",
        ),
    )
