"""Recompute pipeline: timesheet -> financial snapshot."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tms_financials.calculators.money import compute_totals
from tms_financials.calculators.pay_channel import BankDetails, PayChannel, resolve_pay_channel
from tms_financials.calculators.policy_resolver import PolicyResolver
from tms_financials.calculators.rate_resolver import EffectiveRates, RateResolver
from tms_financials.calculators.time_classifier import classify_shift, local_date
from tms_financials.calculators.types import BUCKETS, ZERO, BucketRates, RateSource
from tms_financials.models import (
    Candidate,
    ClientHospital,
    Timesheet,
    TimesheetFinancial,
    Umbrella,
    utcnow,
)
from tms_financials.services.snapshot_writer import SnapshotWriter
from tms_financials.services.state_machine import ProcessingStatusMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecomputeResult:
    """Outcome of recomputing one timesheet."""

    timesheet_id: UUID
    financial_id: UUID | None
    processing_status: str | None
    retired: bool = False


async def find_candidate(session: AsyncSession, key_norm: str | None) -> Candidate | None:
    if not key_norm:
        return None
    result = await session.execute(select(Candidate).where(Candidate.key_norm == key_norm))
    return result.scalar_one_or_none()


async def find_client_id(session: AsyncSession, hospital_norm: str | None) -> UUID | None:
    if not hospital_norm:
        return None
    mapping = await session.get(ClientHospital, hospital_norm)
    return mapping.client_id if mapping else None


async def resolve_candidate_pay_channel(
    session: AsyncSession, candidate: Candidate | None
) -> PayChannel:
    """Load the candidate's umbrella (if any) and resolve the pay channel."""
    if candidate is None:
        return resolve_pay_channel(None, BankDetails())
    candidate_bank = BankDetails(
        account_holder=candidate.account_holder,
        bank_name=candidate.bank_name,
        sort_code=candidate.sort_code,
        account_number=candidate.account_number,
    )
    umbrella_bank = None
    if candidate.umbrella_id is not None:
        umbrella = await session.get(Umbrella, candidate.umbrella_id)
        if umbrella is not None:
            umbrella_bank = BankDetails(
                account_holder=umbrella.name,
                bank_name=umbrella.bank_name,
                sort_code=umbrella.sort_code,
                account_number=umbrella.account_number,
            )
    return resolve_pay_channel(
        candidate.pay_method,
        candidate_bank,
        umbrella_bank,
        has_umbrella_link=candidate.umbrella_id is not None,
    )


class FinancialsEngine:
    """Recomputes the financial snapshot of one timesheet from current inputs.

    Resolution gaps (no candidate, no client, missing rates, no umbrella
    link) are recorded in ``processing_status``, not raised. Recompute is
    idempotent: it always rebuilds from the current timesheet version and
    never patches the previous snapshot.
    """

    def __init__(self, session: AsyncSession, *, default_timezone: str = "Europe/London"):
        self.session = session
        self.default_timezone = default_timezone
        self.policies = PolicyResolver(session)
        self.rates = RateResolver(session)
        self.writer = SnapshotWriter(session)

    async def current_timesheet(self, timesheet_id: UUID) -> Timesheet | None:
        result = await self.session.execute(
            select(Timesheet).where(
                Timesheet.timesheet_id == timesheet_id,
                Timesheet.is_current.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def recompute(self, timesheet_id: UUID) -> RecomputeResult:
        timesheet = await self.current_timesheet(timesheet_id)
        if timesheet is None:
            # Revoked (or never submitted): no replacement snapshot.
            await self.writer.retire(timesheet_id)
            return RecomputeResult(timesheet_id, None, None, retired=True)

        snapshot = await self.build_snapshot(timesheet)
        await self.writer.write(snapshot)
        logger.info(
            "recomputed timesheet %s v%s -> %s",
            timesheet_id,
            timesheet.version,
            snapshot.processing_status,
        )
        return RecomputeResult(timesheet_id, snapshot.financial_id, snapshot.processing_status)

    async def build_snapshot(self, timesheet: Timesheet) -> TimesheetFinancial:
        """Assemble (but do not persist) a snapshot row for ``timesheet``."""
        candidate = await find_candidate(self.session, timesheet.occupant_key_norm)
        client_id = await find_client_id(self.session, timesheet.hospital_norm)

        policy_date = local_date(timesheet.worked_start_utc, self.default_timezone)
        policy = await self.policies.resolve(client_id, policy_date)

        hours = classify_shift(
            timesheet.worked_start_utc,
            timesheet.worked_end_utc,
            policy,
            break_start=timesheet.break_start_utc,
            break_end=timesheet.break_end_utc,
            break_minutes=timesheet.break_minutes,
        )

        rate_date = local_date(timesheet.worked_start_utc, policy.timezone)
        candidate_id = candidate.candidate_id if candidate else None
        if client_id is not None:
            rates = await self.rates.effective_rates(
                candidate_id, client_id, timesheet.role_norm, timesheet.band, rate_date
            )
        else:
            rates = EffectiveRates(RateSource.NONE, BucketRates(), BucketRates())

        missing = [
            f"{kind}_{bucket.value}"
            for bucket in rates.missing_buckets(hours)
            for kind, table in (("pay", rates.pay), ("charge", rates.charge))
            if table.get(bucket) is None
        ]

        pay_method = candidate.pay_method if candidate else None
        status = ProcessingStatusMachine.derive(
            has_candidate=candidate is not None,
            has_client=client_id is not None,
            missing_rates=bool(missing),
            pay_method=pay_method,
            has_umbrella_link=bool(candidate and candidate.umbrella_id is not None),
        )

        totals = compute_totals(
            hours,
            rates.pay,
            rates.charge,
            policy,
            pay_method,
            expenses_amount=timesheet.expenses_amount,
            mileage_miles=timesheet.mileage_miles,
        )

        snapshot = TimesheetFinancial(
            financial_id=uuid4(),
            timesheet_id=timesheet.timesheet_id,
            timesheet_version=timesheet.version,
            is_current=True,
            candidate_id=candidate_id,
            client_id=client_id,
            role=timesheet.role_norm,
            band=timesheet.band,
            pay_method=pay_method,
            rate_source=rates.source.value,
            missing_rates=missing,
            basic_pay_ex_vat=totals.basic_pay,
            holiday_pay_ex_vat=totals.holiday_pay,
            erni_ex_vat=totals.erni,
            total_pay_ex_vat=totals.total_pay,
            total_charge_ex_vat=totals.total_charge,
            margin_ex_vat=totals.margin,
            expenses_pay_ex_vat=totals.expenses_pay,
            expenses_charge_ex_vat=totals.expenses_charge,
            expenses_evidence_key=timesheet.expenses_evidence_key,
            mileage_miles=timesheet.mileage_miles or ZERO,
            mileage_pay_rate=policy.mileage_pay_rate,
            mileage_charge_rate=policy.mileage_charge_rate,
            mileage_pay_ex_vat=totals.mileage_pay,
            mileage_charge_ex_vat=totals.mileage_charge,
            mileage_evidence_key=timesheet.mileage_evidence_key,
            processing_status=status.value,
            is_stale=False,
            stale_reason=None,
            computed_at_utc=utcnow(),
        )
        for bucket in BUCKETS:
            setattr(snapshot, f"hours_{bucket.value}", hours.get(bucket))
            setattr(snapshot, f"pay_{bucket.value}", rates.pay.get(bucket))
            setattr(snapshot, f"charge_{bucket.value}", rates.charge.get(bucket))
        return snapshot
