"""Timesheet submission and revocation (the source side of the outbox)."""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tms_financials.calculators.time_classifier import as_utc, local_date
from tms_financials.models import Timesheet, utcnow
from tms_financials.services.outbox import FinancialsOutbox

logger = logging.getLogger(__name__)

LONDON_TZ = "Europe/London"

_DISALLOWED = re.compile(r"[^\w\s\-@&/,.:]")


def normalize_key(value: object) -> str:
    """Trim, lowercase, collapse whitespace and drop unexpected characters."""
    text = " ".join(str(value or "").strip().lower().split())
    return _DISALLOWED.sub("", text)


def make_booking_id(
    candidate_key: str,
    date_of_shift: date | str,
    hospital: str,
    ward: str,
    job_title: str,
    shift_label: str = "",
) -> str:
    """Deterministic booking id: ``bk_`` + 16 hex chars of a sha256."""
    day = date_of_shift.isoformat() if isinstance(date_of_shift, date) else str(date_of_shift)
    base = "|".join(
        [
            normalize_key(candidate_key),
            day,
            normalize_key(hospital),
            normalize_key(ward),
            normalize_key(job_title),
            normalize_key(shift_label),
        ]
    )
    return f"bk_{hashlib.sha256(base.encode('utf-8')).hexdigest()[:16]}"


def week_ending_sunday(day: date) -> date:
    return day + timedelta(days=6 - day.weekday())


def break_ok(break_minutes: int | None, expected_minutes: int) -> bool:
    """Whether the recorded break matches the expected break length."""
    return break_minutes == expected_minutes


class TimesheetConflictError(Exception):
    """Raised when a booking already has a current timesheet."""

    def __init__(self, booking_id: str, version: int):
        self.booking_id = booking_id
        self.version = version
        super().__init__(
            f"Booking {booking_id} already has current version {version}; revoke before resubmitting"
        )


class TimesheetNotFoundError(Exception):
    """Raised when a booking has no current timesheet."""

    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"No current timesheet for booking {booking_id}")


@dataclass(frozen=True)
class TimesheetSubmission:
    """An authorised shift as captured at the ward."""

    occupant_key: str
    hospital: str
    ward: str
    job_title: str
    worked_start: datetime
    worked_end: datetime
    band: str | None = None
    shift_label: str = ""
    break_start: datetime | None = None
    break_end: datetime | None = None
    auth_name: str | None = None
    auth_job_title: str | None = None
    booking_id: str | None = None
    expenses_amount: Decimal | None = None
    expenses_evidence_key: str | None = None
    mileage_miles: Decimal | None = None
    mileage_evidence_key: str | None = None


@dataclass(frozen=True)
class RevokeResult:
    booking_id: str
    timesheet_id: UUID
    revoked_version: int
    next_version: int


class TimesheetService:
    """Writes timesheet versions and requests recomputes for them."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _current(self, booking_id: str) -> Timesheet | None:
        result = await self.session.execute(
            select(Timesheet).where(
                Timesheet.booking_id == booking_id,
                Timesheet.is_current.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def _max_version(self, booking_id: str) -> tuple[int, UUID | None]:
        result = await self.session.execute(
            select(Timesheet.version, Timesheet.timesheet_id)
            .where(Timesheet.booking_id == booking_id)
            .order_by(Timesheet.version.desc())
            .limit(1)
        )
        row = result.first()
        return (row.version, row.timesheet_id) if row else (0, None)

    async def submit(self, submission: TimesheetSubmission) -> Timesheet:
        """Store a new current version and enqueue its recompute.

        Raises:
            TimesheetConflictError: If the booking already has a current version.
            ValueError: If the worked interval ends before it starts.
        """
        worked_start = as_utc(submission.worked_start)
        worked_end = as_utc(submission.worked_end)
        if worked_end < worked_start:
            raise ValueError("worked_end must not be before worked_start")

        worked_day = local_date(worked_start, LONDON_TZ)
        booking_id = submission.booking_id or make_booking_id(
            submission.occupant_key,
            worked_day,
            submission.hospital,
            submission.ward,
            submission.job_title,
            submission.shift_label,
        )

        current = await self._current(booking_id)
        if current is not None:
            raise TimesheetConflictError(booking_id, current.version)

        max_version, timesheet_id = await self._max_version(booking_id)
        version = max_version + 1

        break_start = as_utc(submission.break_start) if submission.break_start else None
        break_end = as_utc(submission.break_end) if submission.break_end else None
        break_minutes = None
        if break_start is not None and break_end is not None and break_end > break_start:
            break_minutes = int((break_end - break_start).total_seconds() // 60)

        timesheet = Timesheet(
            timesheet_id=timesheet_id or uuid4(),
            version=version,
            booking_id=booking_id,
            is_current=True,
            occupant_key_norm=normalize_key(submission.occupant_key),
            hospital_norm=normalize_key(submission.hospital),
            ward_norm=normalize_key(submission.ward) or None,
            role_norm=normalize_key(submission.job_title) or None,
            band=submission.band,
            shift_label_norm=normalize_key(submission.shift_label) or None,
            worked_start_utc=worked_start,
            worked_end_utc=worked_end,
            break_start_utc=break_start,
            break_end_utc=break_end,
            break_minutes=break_minutes,
            week_ending_date=week_ending_sunday(worked_day),
            status="AUTHORISED",
            auth_name=submission.auth_name,
            auth_job_title=submission.auth_job_title,
            authorised_at_utc=utcnow(),
            expenses_amount=submission.expenses_amount,
            expenses_evidence_key=submission.expenses_evidence_key,
            mileage_miles=submission.mileage_miles,
            mileage_evidence_key=submission.mileage_evidence_key,
        )
        self.session.add(timesheet)
        await self.session.flush()

        reason = "new-authorised" if version == 1 else "version-rotated"
        await FinancialsOutbox(self.session).enqueue(timesheet.timesheet_id, reason)
        logger.info("timesheet %s v%d submitted (%s)", booking_id, version, reason)
        return timesheet

    async def revoke(
        self, booking_id: str, reason: str | None = None, actor: str = "candidate"
    ) -> RevokeResult:
        """Revoke the current version, leaving the booking with none.

        Raises:
            TimesheetNotFoundError: If the booking has no current version.
        """
        current = await self._current(booking_id)
        if current is None:
            raise TimesheetNotFoundError(booking_id)

        result = await self.session.execute(
            update(Timesheet)
            .where(
                Timesheet.timesheet_id == current.timesheet_id,
                Timesheet.version == current.version,
                Timesheet.is_current.is_(True),
            )
            .values(
                is_current=False,
                status="REVOKED",
                revoked_at_utc=utcnow(),
                revoked_reason=reason,
                revoked_by=actor,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TimesheetNotFoundError(booking_id)

        await FinancialsOutbox(self.session).enqueue(current.timesheet_id, "revoked")

        next_version = (
            await self.session.execute(
                select(func.max(Timesheet.version)).where(Timesheet.booking_id == booking_id)
            )
        ).scalar_one() + 1
        logger.info("timesheet %s v%d revoked by %s", booking_id, current.version, actor)
        return RevokeResult(booking_id, current.timesheet_id, current.version, next_version)
