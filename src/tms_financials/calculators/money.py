"""Money arithmetic for snapshots and invoice lines."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from tms_financials.calculators.types import ZERO, BucketHours, BucketRates, Policy

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def round_money(amount: Decimal) -> Decimal:
    """Round to pennies, half up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def percent_of(amount: Decimal, pct: Decimal) -> Decimal:
    return round_money(amount * pct / HUNDRED)


def extend(hours: BucketHours, rates: BucketRates) -> Decimal:
    """Sum of hours x rate over buckets; buckets without a rate contribute 0."""
    total = ZERO
    for bucket, qty in hours.items():
        rate = rates.get(bucket)
        if rate is not None and qty:
            total += qty * rate
    return round_money(total)


@dataclass(frozen=True)
class SnapshotTotals:
    """Computed money for one snapshot (all ex VAT)."""

    basic_pay: Decimal
    holiday_pay: Decimal
    erni: Decimal
    total_pay: Decimal
    total_charge: Decimal
    margin: Decimal
    expenses_pay: Decimal
    expenses_charge: Decimal
    mileage_pay: Decimal
    mileage_charge: Decimal


def compute_totals(
    hours: BucketHours,
    pay: BucketRates,
    charge: BucketRates,
    policy: Policy,
    pay_method: str | None,
    *,
    expenses_amount: Decimal | None = None,
    mileage_miles: Decimal | None = None,
) -> SnapshotTotals:
    """Totals for hours, holiday uplift, employer NI, expenses and mileage.

    Holiday pay is a percentage of basic pay and employer NI a percentage
    of basic plus holiday, each only when the policy scopes it to the
    candidate's pay method. Receipted expenses are re-charged at cost.
    """
    basic = extend(hours, pay)
    total_charge = extend(hours, charge)

    holiday = ZERO
    if policy.applies_to(policy.holiday_applies_to, pay_method):
        holiday = percent_of(basic, policy.holiday_pay_pct)

    erni = ZERO
    if policy.applies_to(policy.erni_applies_to, pay_method):
        erni = percent_of(basic + holiday, policy.erni_pct)

    total_pay = basic + holiday + erni

    expenses = round_money(expenses_amount) if expenses_amount and expenses_amount > ZERO else ZERO
    miles = mileage_miles if mileage_miles and mileage_miles > ZERO else ZERO

    return SnapshotTotals(
        basic_pay=basic,
        holiday_pay=holiday,
        erni=erni,
        total_pay=total_pay,
        total_charge=total_charge,
        margin=total_charge - total_pay,
        expenses_pay=expenses,
        expenses_charge=expenses,
        mileage_pay=round_money(miles * policy.mileage_pay_rate),
        mileage_charge=round_money(miles * policy.mileage_charge_rate),
    )
