"""Tests for timesheet submission and revocation."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from tms_financials.models import FinancialsOutboxEntry, Timesheet
from tms_financials.services.timesheet_service import (
    TimesheetConflictError,
    TimesheetNotFoundError,
    TimesheetService,
    TimesheetSubmission,
    break_ok,
    make_booking_id,
    normalize_key,
    week_ending_sunday,
)

UTC = timezone.utc


def submission(**overrides) -> TimesheetSubmission:
    values = dict(
        occupant_key="Nurse.One@Example.com ",
        hospital="St Elsewhere  General",
        ward="Ward 7",
        job_title="RGN",
        worked_start=datetime(2024, 1, 16, 8, 0, tzinfo=UTC),
        worked_end=datetime(2024, 1, 16, 16, 0, tzinfo=UTC),
        break_start=datetime(2024, 1, 16, 12, 0, tzinfo=UTC),
        break_end=datetime(2024, 1, 16, 12, 30, tzinfo=UTC),
    )
    values.update(overrides)
    return TimesheetSubmission(**values)


async def queued_reasons(session, timesheet_id) -> list[str]:
    result = await session.execute(
        select(FinancialsOutboxEntry.reason)
        .where(FinancialsOutboxEntry.timesheet_id == timesheet_id)
        .order_by(FinancialsOutboxEntry.reason)
    )
    return list(result.scalars().all())


class TestKeys:
    def test_normalize_key(self):
        assert normalize_key("  St  Elsewhere\tGENERAL ") == "st elsewhere general"
        assert normalize_key(None) == ""
        assert normalize_key("Ward #7!") == "ward 7"

    def test_booking_id_is_deterministic(self):
        a = make_booking_id("Nurse.One@example.com", date(2024, 1, 16), "St Elsewhere", "Ward 7", "RGN")
        b = make_booking_id(" nurse.one@EXAMPLE.com", "2024-01-16", "st elsewhere", "ward 7", "rgn")

        assert a == b
        assert a.startswith("bk_")
        assert len(a) == 19

    def test_shift_label_distinguishes_bookings(self):
        args = ("nurse", date(2024, 1, 16), "h", "w", "rgn")

        assert make_booking_id(*args, shift_label="early") != make_booking_id(*args, shift_label="late")

    def test_week_ending_sunday(self):
        assert week_ending_sunday(date(2024, 1, 16)) == date(2024, 1, 21)
        assert week_ending_sunday(date(2024, 1, 21)) == date(2024, 1, 21)

    def test_break_ok_matches_expected_length(self):
        assert break_ok(60, 60)
        assert not break_ok(30, 60)
        assert not break_ok(None, 60)


class TestSubmit:
    @pytest.mark.asyncio
    async def test_first_version(self, session):
        timesheet = await TimesheetService(session).submit(submission())

        assert timesheet.version == 1
        assert timesheet.is_current
        assert timesheet.occupant_key_norm == "nurse.one@example.com"
        assert timesheet.hospital_norm == "st elsewhere general"
        assert timesheet.role_norm == "rgn"
        assert timesheet.break_minutes == 30
        assert timesheet.week_ending_date == date(2024, 1, 21)
        assert await queued_reasons(session, timesheet.timesheet_id) == ["new-authorised"]

    @pytest.mark.asyncio
    async def test_current_version_blocks_resubmit(self, session):
        service = TimesheetService(session)
        await service.submit(submission())

        with pytest.raises(TimesheetConflictError) as exc_info:
            await service.submit(submission())

        assert exc_info.value.version == 1

    @pytest.mark.asyncio
    async def test_end_before_start_rejected(self, session):
        with pytest.raises(ValueError):
            await TimesheetService(session).submit(
                submission(worked_end=datetime(2024, 1, 16, 7, 0, tzinfo=UTC))
            )

    @pytest.mark.asyncio
    async def test_claims_stored(self, session):
        timesheet = await TimesheetService(session).submit(
            submission(expenses_amount=Decimal("9.99"), mileage_miles=Decimal("12.5"))
        )

        assert timesheet.expenses_amount == Decimal("9.99")
        assert timesheet.mileage_miles == Decimal("12.5")


class TestRevoke:
    @pytest.mark.asyncio
    async def test_revoke_then_resubmit(self, session):
        service = TimesheetService(session)
        first = await service.submit(submission())

        revoked = await service.revoke(first.booking_id, reason="wrong times", actor="ward")

        assert revoked.revoked_version == 1
        assert revoked.next_version == 2
        assert await queued_reasons(session, first.timesheet_id) == ["new-authorised", "revoked"]

        second = await service.submit(
            submission(worked_end=datetime(2024, 1, 16, 15, 0, tzinfo=UTC))
        )

        assert second.version == 2
        assert second.timesheet_id == first.timesheet_id
        assert second.booking_id == first.booking_id
        assert await queued_reasons(session, first.timesheet_id) == [
            "new-authorised",
            "revoked",
            "version-rotated",
        ]
        rows = (
            await session.execute(
                select(Timesheet.version, Timesheet.is_current, Timesheet.status)
                .where(Timesheet.timesheet_id == first.timesheet_id)
                .order_by(Timesheet.version)
            )
        ).all()
        assert [tuple(r) for r in rows] == [(1, False, "REVOKED"), (2, True, "AUTHORISED")]

    @pytest.mark.asyncio
    async def test_revoke_without_current(self, session):
        with pytest.raises(TimesheetNotFoundError):
            await TimesheetService(session).revoke("bk_0000000000000000")
