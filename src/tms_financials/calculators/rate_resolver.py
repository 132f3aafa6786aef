"""Pay/charge rate resolution with NULL-wildcard dimensional matching."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Sequence, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tms_financials.calculators.types import (
    BUCKETS,
    ZERO,
    Bucket,
    BucketHours,
    BucketRates,
    RateSource,
)
from tms_financials.models import CandidateRate, ClientDefaultRate

RateRow = TypeVar("RateRow", CandidateRate, ClientDefaultRate)


def normalize_dimension(value: str | None) -> str | None:
    """Roles and bands compare case-insensitively; blank means unset."""
    if value is None:
        return None
    value = " ".join(str(value).split()).lower()
    return value or None


def dimension_matches(requested: object, stored: object) -> bool:
    """A stored NULL applies regardless of the requested value."""
    if stored is None:
        return True
    if isinstance(stored, str) or isinstance(requested, str):
        return normalize_dimension(stored) == normalize_dimension(requested)
    return stored == requested


def is_active_on(row: CandidateRate | ClientDefaultRate, on: date) -> bool:
    return row.date_from <= on and (row.date_to is None or row.date_to >= on)


def specificity_key(row: CandidateRate | ClientDefaultRate) -> tuple[bool, bool, bool, date]:
    """Sort key: set client, then role, then band beat NULL; then newest date_from."""
    # Client defaults are always scoped to their client
    has_client = row.client_id is not None if isinstance(row, CandidateRate) else True
    return (
        has_client,
        row.role is not None,
        row.band is not None,
        row.date_from,
    )


def pick_most_specific(
    rows: Sequence[RateRow],
    *,
    on: date,
    role: str | None,
    band: str | None,
    client_id: UUID | None = None,
) -> RateRow | None:
    """Return the single best applicable row, or None."""
    applicable = [
        row
        for row in rows
        if is_active_on(row, on)
        and dimension_matches(role, row.role)
        and dimension_matches(band, row.band)
        and (not isinstance(row, CandidateRate) or dimension_matches(client_id, row.client_id))
    ]
    if not applicable:
        return None
    return max(applicable, key=specificity_key)


@dataclass(frozen=True)
class RateResolution:
    """Result of resolving one rate table level."""

    source: RateSource
    pay: BucketRates | None = None
    charge: BucketRates | None = None
    rate_id: UUID | None = None


@dataclass(frozen=True)
class EffectiveRates:
    """Pay and charge rates actually applied to a snapshot."""

    source: RateSource
    pay: BucketRates
    charge: BucketRates

    def missing_buckets(self, hours: BucketHours) -> list[Bucket]:
        """Buckets with hours but lacking a pay or a charge rate."""
        return [
            bucket
            for bucket, qty in hours.items()
            if qty > ZERO and (self.pay.get(bucket) is None or self.charge.get(bucket) is None)
        ]


class RateResolver:
    """Resolves rates for a candidate/client/role/band on a local date.

    Precedence:
    1. Candidate override (pay only), most specific match wins
    2. Client default (charge authoritative, pay as fallback)
    3. NONE
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(
        self,
        candidate_id: UUID | None,
        client_id: UUID,
        role: str | None,
        band: str | None,
        on: date,
    ) -> RateResolution:
        override = await self.find_candidate_override(candidate_id, client_id, role, band, on)
        if override is not None:
            return RateResolution(
                source=RateSource.CANDIDATE_OVERRIDE,
                pay=BucketRates.from_row(override, "pay"),
                charge=None,
                rate_id=override.rate_id,
            )

        default = await self.find_client_default(client_id, role, band, on)
        if default is not None:
            pay = BucketRates.from_row(default, "pay")
            return RateResolution(
                source=RateSource.CLIENT_DEFAULT,
                pay=None if pay.is_empty else pay,
                charge=BucketRates.from_row(default, "charge"),
                rate_id=default.rate_id,
            )

        return RateResolution(source=RateSource.NONE)

    async def effective_rates(
        self,
        candidate_id: UUID | None,
        client_id: UUID,
        role: str | None,
        band: str | None,
        on: date,
    ) -> EffectiveRates:
        """Combine both levels: override pay (bucket-wise fallback to default
        pay) and client default charge."""
        override = await self.find_candidate_override(candidate_id, client_id, role, band, on)
        default = await self.find_client_default(client_id, role, band, on)

        default_pay = BucketRates.from_row(default, "pay") if default else BucketRates()
        charge = BucketRates.from_row(default, "charge") if default else BucketRates()

        if override is not None:
            override_pay = BucketRates.from_row(override, "pay")
            pay = BucketRates(
                **{
                    b.value: override_pay.get(b) if override_pay.get(b) is not None else default_pay.get(b)
                    for b in BUCKETS
                }
            )
            source = RateSource.CANDIDATE_OVERRIDE
        elif default is not None:
            pay = default_pay
            source = RateSource.CLIENT_DEFAULT
        else:
            pay = BucketRates()
            source = RateSource.NONE

        return EffectiveRates(source=source, pay=pay, charge=charge)

    async def find_candidate_override(
        self,
        candidate_id: UUID | None,
        client_id: UUID | None,
        role: str | None,
        band: str | None,
        on: date,
    ) -> CandidateRate | None:
        if candidate_id is None:
            return None
        result = await self.session.execute(
            select(CandidateRate).where(
                CandidateRate.candidate_id == candidate_id,
                CandidateRate.date_from <= on,
                (CandidateRate.date_to.is_(None) | (CandidateRate.date_to >= on)),
            )
        )
        return pick_most_specific(
            list(result.scalars().all()), on=on, role=role, band=band, client_id=client_id
        )

    async def find_client_default(
        self,
        client_id: UUID,
        role: str | None,
        band: str | None,
        on: date,
    ) -> ClientDefaultRate | None:
        result = await self.session.execute(
            select(ClientDefaultRate).where(
                ClientDefaultRate.client_id == client_id,
                ClientDefaultRate.date_from <= on,
                (ClientDefaultRate.date_to.is_(None) | (ClientDefaultRate.date_to >= on)),
            )
        )
        return pick_most_specific(list(result.scalars().all()), on=on, role=role, band=band)
