"""Time-bucket policy resolution (global default + client override)."""

from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tms_financials.calculators.types import Policy
from tms_financials.models import ClientSettings, SettingsDefaults

# Fields a client settings row may override
POLICY_FIELDS = (
    "timezone",
    "day_start",
    "day_end",
    "bank_holidays",
    "vat_rate_pct",
    "holiday_pay_pct",
    "erni_pct",
    "holiday_applies_to",
    "erni_applies_to",
    "mileage_pay_rate",
    "mileage_charge_rate",
)

BUILTIN_DEFAULTS: dict[str, Any] = {
    "timezone": "Europe/London",
    "day_start": time(8, 0),
    "day_end": time(20, 0),
    "bank_holidays": [],
    "vat_rate_pct": Decimal("20"),
    "holiday_pay_pct": Decimal("12.07"),
    "erni_pct": Decimal("13.8"),
    "holiday_applies_to": "PAYE",
    "erni_applies_to": "PAYE",
    "mileage_pay_rate": Decimal("0.45"),
    "mileage_charge_rate": Decimal("0.45"),
}


def parse_bank_holidays(values: Iterable[Any] | None) -> frozenset[date]:
    """Bank holidays are stored as ISO strings in JSON; accept dates too."""
    result: set[date] = set()
    for value in values or ():
        if isinstance(value, date):
            result.add(value)
        else:
            result.add(date.fromisoformat(str(value)[:10]))
    return frozenset(result)


def merge_policy(defaults: dict[str, Any], override: dict[str, Any] | None) -> Policy:
    """Overlay the non-NULL fields of ``override`` on ``defaults``."""
    merged = dict(defaults)
    for name, value in (override or {}).items():
        if name in POLICY_FIELDS and value is not None:
            merged[name] = value
    merged["bank_holidays"] = parse_bank_holidays(merged["bank_holidays"])
    return Policy(**merged)


def _row_fields(row: object | None) -> dict[str, Any] | None:
    if row is None:
        return None
    return {name: getattr(row, name) for name in POLICY_FIELDS}


class PolicyResolver:
    """Loads the policy applicable to a client on a reference date.

    A missing client or missing override always yields the global default.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def resolve(self, client_id: UUID | None, as_of_date: date) -> Policy:
        defaults = _row_fields(await self.session.get(SettingsDefaults, 1))
        base = dict(BUILTIN_DEFAULTS)
        base.update({k: v for k, v in (defaults or {}).items() if v is not None})

        override = None
        if client_id is not None:
            result = await self.session.execute(
                select(ClientSettings)
                .where(
                    ClientSettings.client_id == client_id,
                    ClientSettings.effective_from <= as_of_date,
                )
                .order_by(ClientSettings.effective_from.desc())
                .limit(1)
            )
            override = _row_fields(result.scalar_one_or_none())

        return merge_policy(base, override)
