"""Explicit promotion of snapshots from READY_FOR_HR to READY_FOR_INVOICE."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tms_financials.models import Candidate, TimesheetFinancial, TimesheetValidation
from tms_financials.services.financials_engine import resolve_candidate_pay_channel
from tms_financials.services.state_machine import ProcessingStatus, ProcessingStatusMachine

logger = logging.getLogger(__name__)

# Validation statuses that allow promotion
APPROVED_VALIDATIONS = {"validated", "overridden"}


class BlockReason:
    """Reason codes reported for timesheets that were not promoted."""

    NO_SNAPSHOT = "NO_SNAPSHOT"
    NOT_VALIDATED = "NOT_VALIDATED"
    NOT_READY_FOR_HR = "NOT_READY_FOR_HR"
    LOCKED = "LOCKED"
    EXPENSES_EVIDENCE_MISSING = "EXPENSES_EVIDENCE_MISSING"
    MILEAGE_EVIDENCE_MISSING = "MILEAGE_EVIDENCE_MISSING"
    PAY_CHANNEL_MISSING = "PAY_CHANNEL_MISSING"
    CONFLICT = "CONFLICT"


@dataclass
class PromotionResult:
    """Promoted timesheets and the reason each blocked one was refused."""

    promoted: list[UUID] = field(default_factory=list)
    blocked: dict[UUID, str] = field(default_factory=dict)


def _positive(amount: Decimal | None) -> bool:
    return amount is not None and amount > 0


def _blank(value: str | None) -> bool:
    return value is None or not value.strip()


class PromotionService:
    """Moves HR-approved snapshots into the invoiceable state.

    Every check is evaluated per timesheet; only the ones passing all of
    them are promoted, in a single conditional bulk update that also
    requires the row to still be READY_FOR_HR and unlocked.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def latest_validation_status(self, timesheet_id: UUID) -> str | None:
        result = await self.session.execute(
            select(TimesheetValidation.status)
            .where(TimesheetValidation.timesheet_id == timesheet_id)
            .order_by(TimesheetValidation.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def check(self, timesheet_id: UUID) -> tuple[TimesheetFinancial | None, str | None]:
        """Return the current snapshot and the first failing reason code."""
        result = await self.session.execute(
            select(TimesheetFinancial).where(
                TimesheetFinancial.timesheet_id == timesheet_id,
                TimesheetFinancial.is_current.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        snapshot = result.scalar_one_or_none()
        if snapshot is None:
            return None, BlockReason.NO_SNAPSHOT

        if await self.latest_validation_status(timesheet_id) not in APPROVED_VALIDATIONS:
            return snapshot, BlockReason.NOT_VALIDATED
        if snapshot.is_locked:
            return snapshot, BlockReason.LOCKED
        if not ProcessingStatusMachine.can_promote(snapshot.processing_status):
            return snapshot, BlockReason.NOT_READY_FOR_HR
        if _positive(snapshot.expenses_charge_ex_vat) and _blank(snapshot.expenses_evidence_key):
            return snapshot, BlockReason.EXPENSES_EVIDENCE_MISSING
        if _positive(snapshot.mileage_charge_ex_vat) and _blank(snapshot.mileage_evidence_key):
            return snapshot, BlockReason.MILEAGE_EVIDENCE_MISSING

        candidate = (
            await self.session.get(Candidate, snapshot.candidate_id)
            if snapshot.candidate_id
            else None
        )
        channel = await resolve_candidate_pay_channel(self.session, candidate)
        if not channel.ok:
            return snapshot, BlockReason.PAY_CHANNEL_MISSING

        return snapshot, None

    async def promote(self, timesheet_ids: Iterable[UUID]) -> PromotionResult:
        result = PromotionResult()
        eligible: dict[UUID, UUID] = {}

        for timesheet_id in dict.fromkeys(timesheet_ids):
            snapshot, reason = await self.check(timesheet_id)
            if reason is not None:
                result.blocked[timesheet_id] = reason
            else:
                eligible[snapshot.financial_id] = timesheet_id

        if not eligible:
            return result

        update_result = await self.session.execute(
            update(TimesheetFinancial)
            .where(
                TimesheetFinancial.financial_id.in_(list(eligible)),
                TimesheetFinancial.is_current.is_(True),
                TimesheetFinancial.processing_status == ProcessingStatus.READY_FOR_HR.value,
                TimesheetFinancial.locked_by_invoice_id.is_(None),
            )
            .values(processing_status=ProcessingStatus.READY_FOR_INVOICE.value)
            .execution_options(synchronize_session=False)
        )

        if update_result.rowcount == len(eligible):
            result.promoted.extend(eligible.values())
        else:
            # Some rows changed under us; report exactly which ones.
            promoted_rows = await self.session.execute(
                select(TimesheetFinancial.financial_id).where(
                    TimesheetFinancial.financial_id.in_(list(eligible)),
                    TimesheetFinancial.is_current.is_(True),
                    TimesheetFinancial.processing_status
                    == ProcessingStatus.READY_FOR_INVOICE.value,
                    TimesheetFinancial.locked_by_invoice_id.is_(None),
                )
            )
            promoted_ids = set(promoted_rows.scalars().all())
            for financial_id, timesheet_id in eligible.items():
                if financial_id in promoted_ids:
                    result.promoted.append(timesheet_id)
                else:
                    result.blocked[timesheet_id] = BlockReason.CONFLICT

        logger.info(
            "promotion: promoted=%d blocked=%d", len(result.promoted), len(result.blocked)
        )
        return result
