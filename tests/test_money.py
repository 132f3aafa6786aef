"""Tests for snapshot money arithmetic."""

from dataclasses import replace
from decimal import Decimal

from tms_financials.calculators.money import compute_totals, extend, percent_of, round_money
from tms_financials.calculators.types import BucketHours, BucketRates

PAY = BucketRates(day=Decimal("20"), night=Decimal("24"))
CHARGE = BucketRates(day=Decimal("30"), night=Decimal("36"))
EIGHT_DAY = BucketHours(day=Decimal("8.00"))


class TestRounding:
    def test_half_up(self):
        assert round_money(Decimal("1.005")) == Decimal("1.01")
        assert round_money(Decimal("1.004")) == Decimal("1.00")

    def test_percent_of(self):
        assert percent_of(Decimal("160"), Decimal("12.07")) == Decimal("19.31")

    def test_extend_skips_unrated_buckets(self):
        hours = BucketHours(day=Decimal("2.5"), sat=Decimal("3"))

        assert extend(hours, PAY) == Decimal("50.00")


class TestComputeTotals:
    def test_paye_gets_holiday_and_erni(self, london_policy):
        totals = compute_totals(EIGHT_DAY, PAY, CHARGE, london_policy, "PAYE")

        assert totals.basic_pay == Decimal("160.00")
        assert totals.holiday_pay == Decimal("19.31")
        # 13.8% of 179.31
        assert totals.erni == Decimal("24.74")
        assert totals.total_pay == Decimal("204.05")
        assert totals.total_charge == Decimal("240.00")
        assert totals.margin == Decimal("35.95")

    def test_umbrella_outside_default_scope(self, london_policy):
        totals = compute_totals(EIGHT_DAY, PAY, CHARGE, london_policy, "UMBRELLA")

        assert totals.holiday_pay == Decimal("0")
        assert totals.erni == Decimal("0")
        assert totals.total_pay == Decimal("160.00")
        assert totals.margin == Decimal("80.00")

    def test_scope_both_and_none(self, london_policy):
        policy = replace(london_policy, holiday_applies_to="BOTH", erni_applies_to="NONE")

        totals = compute_totals(EIGHT_DAY, PAY, CHARGE, policy, "UMBRELLA")

        assert totals.holiday_pay == Decimal("19.31")
        assert totals.erni == Decimal("0")

    def test_expenses_and_mileage(self, london_policy):
        totals = compute_totals(
            EIGHT_DAY,
            PAY,
            CHARGE,
            london_policy,
            "PAYE",
            expenses_amount=Decimal("12.5"),
            mileage_miles=Decimal("10"),
        )

        assert totals.expenses_pay == Decimal("12.50")
        assert totals.expenses_charge == Decimal("12.50")
        assert totals.mileage_pay == Decimal("4.50")
        assert totals.mileage_charge == Decimal("4.50")
        # Claims sit outside the hours totals
        assert totals.total_charge == Decimal("240.00")

    def test_no_hours(self, london_policy):
        totals = compute_totals(BucketHours(), PAY, CHARGE, london_policy, "PAYE")

        assert totals.total_pay == Decimal("0")
        assert totals.margin == Decimal("0")
