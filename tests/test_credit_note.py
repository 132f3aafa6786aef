"""Tests for credit notes."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from tms_financials.models import FinancialsOutboxEntry, TimesheetFinancial
from tms_financials.services.credit_note_service import CreditNoteRejectedError, CreditNoteService
from tms_financials.services.financials_engine import FinancialsEngine
from tms_financials.services.invoice_service import InvoiceService
from tms_financials.services.promotion_service import PromotionService


@pytest.fixture
def invoiced(session, test_client, test_candidate, default_rate, timesheet_factory, validate):
    """Invoice a fresh timesheet; returns (timesheet, invoice result)."""

    async def _make(**overrides):
        timesheet = await timesheet_factory(**overrides)
        await FinancialsEngine(session).recompute(timesheet.timesheet_id)
        await validate(timesheet.timesheet_id)
        await PromotionService(session).promote([timesheet.timesheet_id])
        result = await InvoiceService(session).create_invoice([timesheet.timesheet_id])
        return timesheet, result

    return _make


class TestIssueCreditNote:
    @pytest.mark.asyncio
    async def test_mirrors_invoice_with_negated_money(self, session, invoiced):
        timesheet, created = await invoiced()
        service = InvoiceService(session)

        result = await CreditNoteService(session).issue_credit_note(created.invoice_id, "wrong ward")

        assert result.credit_note_number.startswith("CN-")
        credit_note = await service.get_invoice(result.credit_note_id)
        original = await service.get_invoice(created.invoice_id)
        assert credit_note.kind == "CREDIT_NOTE"
        assert credit_note.credit_of_invoice_id == created.invoice_id
        assert credit_note.reason == "wrong ward"
        assert credit_note.total_charge_ex_vat == -original.total_charge_ex_vat
        assert credit_note.total_inc_vat == Decimal("-288.00")
        assert original.status == "CREDITED"

        [line] = credit_note.lines
        [original_line] = original.lines
        assert line.charge_ex_vat == -original_line.charge_ex_vat
        assert line.hours_day == original_line.hours_day
        assert line.charge_day == original_line.charge_day
        assert line.timesheet_id == timesheet.timesheet_id

    @pytest.mark.asyncio
    async def test_unlocks_and_requeues_snapshots(self, session, invoiced):
        timesheet, created = await invoiced()

        result = await CreditNoteService(session).issue_credit_note(created.invoice_id)

        assert result.unlocked == [timesheet.timesheet_id]
        snapshot = (
            await session.execute(
                select(TimesheetFinancial)
                .where(
                    TimesheetFinancial.timesheet_id == timesheet.timesheet_id,
                    TimesheetFinancial.is_current.is_(True),
                )
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        assert snapshot.locked_by_invoice_id is None
        assert snapshot.is_stale
        assert snapshot.stale_reason == f"credited by {result.credit_note_number}"

        queued = (
            await session.execute(
                select(FinancialsOutboxEntry.reason).where(
                    FinancialsOutboxEntry.timesheet_id == timesheet.timesheet_id
                )
            )
        ).scalars().all()
        assert queued == ["version-rotated"]

    @pytest.mark.asyncio
    async def test_recompute_after_credit_replaces_snapshot(self, session, invoiced):
        timesheet, created = await invoiced()
        await CreditNoteService(session).issue_credit_note(created.invoice_id)

        recomputed = await FinancialsEngine(session).recompute(timesheet.timesheet_id)

        assert recomputed.processing_status == "READY_FOR_HR"

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, session):
        with pytest.raises(CreditNoteRejectedError) as exc_info:
            await CreditNoteService(session).issue_credit_note(uuid4())

        assert exc_info.value.reason == "not found"

    @pytest.mark.asyncio
    async def test_cannot_credit_twice(self, session, invoiced):
        _, created = await invoiced()
        service = CreditNoteService(session)
        credit = await service.issue_credit_note(created.invoice_id)

        with pytest.raises(CreditNoteRejectedError) as again:
            await service.issue_credit_note(created.invoice_id)
        with pytest.raises(CreditNoteRejectedError) as of_credit:
            await service.issue_credit_note(credit.credit_note_id)

        assert again.value.reason == "already credited"
        assert of_credit.value.reason == "is a credit note"
