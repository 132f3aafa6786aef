"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

OutboxReason = Literal[
    "new-authorised",
    "version-rotated",
    "revoked",
    "rate-changed",
    "policy-changed",
    "context-changed",
    "manual",
]


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None


# ============================================================================
# Outbox schemas
# ============================================================================


class EnqueueRequest(BaseModel):
    """Request recomputes for timesheets or for every snapshot of a client."""

    timesheet_ids: list[UUID] = Field(default_factory=list)
    client_id: UUID | None = None
    reason: OutboxReason = "manual"


class EnqueueResponse(BaseModel):
    enqueued: int


class DrainRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=1000)


class DrainEntryError(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    timesheet_id: UUID
    reason: str
    error: str


class DrainResponse(BaseModel):
    """Result of one worker cycle; failed and parked are keyed by outbox id."""

    leased: int
    succeeded: list[UUID]
    failed: dict[UUID, DrainEntryError]
    parked: dict[UUID, DrainEntryError]


# ============================================================================
# Snapshot schemas
# ============================================================================


class SnapshotResponse(BaseModel):
    """Current financial snapshot of a timesheet."""

    model_config = ConfigDict(from_attributes=True)

    financial_id: UUID
    timesheet_id: UUID
    timesheet_version: int
    is_current: bool
    candidate_id: UUID | None = None
    client_id: UUID | None = None
    role: str | None = None
    band: str | None = None
    pay_method: str | None = None
    rate_source: str

    hours_day: Decimal
    hours_night: Decimal
    hours_sat: Decimal
    hours_sun: Decimal
    hours_bh: Decimal

    pay_day: Decimal | None = None
    pay_night: Decimal | None = None
    pay_sat: Decimal | None = None
    pay_sun: Decimal | None = None
    pay_bh: Decimal | None = None
    charge_day: Decimal | None = None
    charge_night: Decimal | None = None
    charge_sat: Decimal | None = None
    charge_sun: Decimal | None = None
    charge_bh: Decimal | None = None
    missing_rates: list[str] = Field(default_factory=list)

    basic_pay_ex_vat: Decimal
    holiday_pay_ex_vat: Decimal
    erni_ex_vat: Decimal
    total_pay_ex_vat: Decimal
    total_charge_ex_vat: Decimal
    margin_ex_vat: Decimal
    expenses_charge_ex_vat: Decimal
    mileage_charge_ex_vat: Decimal

    processing_status: str
    is_stale: bool
    stale_reason: str | None = None
    locked_by_invoice_id: UUID | None = None
    locked_at_utc: datetime | None = None
    computed_at_utc: datetime


# ============================================================================
# Promotion schemas
# ============================================================================


class TimesheetIdsRequest(BaseModel):
    timesheet_ids: list[UUID] = Field(min_length=1)


class PromoteResponse(BaseModel):
    promoted: list[UUID]
    blocked: dict[UUID, str]


# ============================================================================
# Invoice schemas
# ============================================================================


class InvoiceCreateResponse(BaseModel):
    invoice_id: UUID
    invoice_number: str
    locked: list[UUID]
    conflicts: list[UUID]
    voided: bool


class InvoiceLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    invoice_line_id: UUID
    line_no: int
    timesheet_id: UUID
    financial_id: UUID
    line_type: str
    description: str | None = None
    hours_day: Decimal
    hours_night: Decimal
    hours_sat: Decimal
    hours_sun: Decimal
    hours_bh: Decimal
    quantity: Decimal | None = None
    unit_charge: Decimal | None = None
    pay_ex_vat: Decimal
    charge_ex_vat: Decimal
    margin_ex_vat: Decimal
    vat_amount: Decimal
    charge_inc_vat: Decimal


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    invoice_id: UUID
    invoice_number: str
    client_id: UUID
    kind: str
    status: str
    credit_of_invoice_id: UUID | None = None
    vat_rate_pct: Decimal
    total_pay_ex_vat: Decimal
    total_charge_ex_vat: Decimal
    margin_ex_vat: Decimal
    vat_amount: Decimal
    total_inc_vat: Decimal
    reason: str | None = None
    void_reason: str | None = None
    created_at: datetime
    lines: list[InvoiceLineResponse] = Field(default_factory=list)


class CreditNoteRequest(BaseModel):
    reason: str | None = None


class CreditNoteResponse(BaseModel):
    credit_note_id: UUID
    credit_note_number: str
    invoice_id: UUID
    unlocked: list[UUID]


# ============================================================================
# Timesheet schemas
# ============================================================================


class TimesheetSubmitRequest(BaseModel):
    """An authorised shift; instants must carry an offset."""

    occupant_key: str = Field(min_length=1)
    hospital: str = Field(min_length=1)
    ward: str = ""
    job_title: str = Field(min_length=1)
    worked_start: datetime
    worked_end: datetime
    band: str | None = None
    shift_label: str = ""
    break_start: datetime | None = None
    break_end: datetime | None = None
    auth_name: str | None = None
    auth_job_title: str | None = None
    booking_id: str | None = None
    expenses_amount: Decimal | None = Field(default=None, ge=0)
    expenses_evidence_key: str | None = None
    mileage_miles: Decimal | None = Field(default=None, ge=0)
    mileage_evidence_key: str | None = None


class TimesheetSubmitResponse(BaseModel):
    timesheet_id: UUID
    booking_id: str
    version: int
    status: str
    week_ending_date: date
    break_minutes: int | None = None
    break_ok: bool


class TimesheetRevokeRequest(BaseModel):
    booking_id: str = Field(min_length=1)
    reason: str | None = None
    actor: str = "candidate"


class TimesheetRevokeResponse(BaseModel):
    booking_id: str
    timesheet_id: UUID
    revoked_version: int
    next_version: int
