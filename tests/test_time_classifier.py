"""Tests for hour classification into pay buckets."""

from dataclasses import replace
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

from tms_financials.calculators.time_classifier import (
    DAY_RULES,
    classify,
    classify_shift,
    day_windows,
    local_date,
    round_hours,
    split_at_local_midnight,
    subtract_break,
)
from tms_financials.calculators.types import Bucket, Interval

UTC = timezone.utc
LONDON = ZoneInfo("Europe/London")


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestDayNightSplit:
    """Weekday slices split against the day window."""

    def test_shift_inside_day_window_is_all_day(self, london_policy):
        hours = classify_shift(utc(2024, 1, 16, 9), utc(2024, 1, 16, 17), london_policy)

        assert hours.day == Decimal("8.00")
        assert hours.night == hours.sat == hours.sun == hours.bh == Decimal("0")

    def test_overnight_tuesday_to_wednesday(self, london_policy):
        """22:00-07:00 with a 06:00-20:00 window: 8h night, 1h day."""
        policy = replace(london_policy, day_start=time(6, 0), day_end=time(20, 0))

        hours = classify_shift(utc(2024, 1, 16, 22), utc(2024, 1, 17, 7), policy)

        assert hours.night == Decimal("8.00")
        assert hours.day == Decimal("1.00")
        assert hours.sat == hours.sun == hours.bh == Decimal("0")

    def test_window_wrapping_past_midnight(self, london_policy):
        """A 20:00-08:00 window counts the evening as day."""
        policy = replace(london_policy, day_start=time(20, 0), day_end=time(8, 0))

        hours = classify_shift(utc(2024, 1, 16, 18), utc(2024, 1, 16, 22), policy)

        assert hours.night == Decimal("2.00")
        assert hours.day == Decimal("2.00")

    def test_equal_window_bounds_mean_no_day_window(self, london_policy):
        policy = replace(london_policy, day_start=time(8, 0), day_end=time(8, 0))

        hours = classify_shift(utc(2024, 1, 16, 9), utc(2024, 1, 16, 12), policy)

        assert hours.day == Decimal("0")
        assert hours.night == Decimal("3.00")

    def test_zero_length_interval_contributes_nothing(self, london_policy):
        hours = classify_shift(utc(2024, 1, 16, 9), utc(2024, 1, 16, 9), london_policy)

        assert hours.total == Decimal("0")


class TestPrecedence:
    """Bank holiday > Sunday > Saturday > day/night."""

    def test_rule_order(self):
        assert [name for name, _, _ in DAY_RULES] == ["bank_holiday", "sunday", "saturday"]

    def test_bank_holiday_shift(self, london_policy):
        """08:00-16:00 on a listed bank holiday is all bank-holiday hours."""
        hours = classify_shift(utc(2024, 12, 25, 8), utc(2024, 12, 25, 16), london_policy)

        assert hours.bh == Decimal("8.00")
        assert hours.day == hours.night == hours.sat == hours.sun == Decimal("0")

    def test_bank_holiday_beats_weekend(self, london_policy):
        # Sunday 21 January
        policy = replace(london_policy, bank_holidays=frozenset({date(2024, 1, 21)}))

        hours = classify_shift(utc(2024, 1, 21, 10), utc(2024, 1, 21, 12), policy)

        assert hours.bh == Decimal("2.00")
        assert hours.sun == Decimal("0")

    def test_overnight_from_bank_holiday_splits_at_local_midnight(self, london_policy):
        policy = replace(london_policy, bank_holidays=frozenset({date(2024, 12, 25)}))

        # Wed 25th 20:00 -> Thu 26th 04:00 (GMT)
        hours = classify_shift(utc(2024, 12, 25, 20), utc(2024, 12, 26, 4), policy)

        assert hours.bh == Decimal("4.00")
        assert hours.night == Decimal("4.00")
        assert hours.day == Decimal("0")

    def test_friday_night_into_saturday(self, london_policy):
        hours = classify_shift(utc(2024, 1, 19, 22), utc(2024, 1, 20, 6), london_policy)

        assert hours.night == Decimal("2.00")
        assert hours.sat == Decimal("6.00")

    def test_saturday_into_sunday(self, london_policy):
        hours = classify_shift(utc(2024, 1, 20, 20), utc(2024, 1, 21, 8), london_policy)

        assert hours.sat == Decimal("4.00")
        assert hours.sun == Decimal("8.00")


class TestLocalTime:
    """Local calendar days follow British Summer Time."""

    def test_summer_shift_uses_local_clock(self, london_policy):
        # 07:00-15:00 UTC is 08:00-16:00 BST
        hours = classify_shift(utc(2024, 7, 2, 7), utc(2024, 7, 2, 15), london_policy)

        assert hours.day == Decimal("8.00")
        assert hours.night == Decimal("0")

    def test_summer_midnight_is_2300_utc(self, london_policy):
        # Fri 22:00 UTC (23:00 BST) -> Sat 06:00 UTC (07:00 BST)
        hours = classify_shift(utc(2024, 7, 5, 22), utc(2024, 7, 6, 6), london_policy)

        assert hours.night == Decimal("1.00")
        assert hours.sat == Decimal("7.00")

    def test_local_date_in_summer(self):
        assert local_date(utc(2024, 7, 5, 23, 30), "Europe/London") == date(2024, 7, 6)
        assert local_date(utc(2024, 1, 5, 23, 30), "Europe/London") == date(2024, 1, 5)

    def test_naive_values_are_utc(self):
        assert local_date(datetime(2024, 7, 5, 23, 30), "Europe/London") == date(2024, 7, 6)

    def test_clocks_go_forward_night(self, london_policy):
        # Night of Sat 30 -> Sun 31 March 2024: clocks go forward at 01:00 UTC
        hours = classify_shift(utc(2024, 3, 30, 20), utc(2024, 3, 31, 4), london_policy)

        assert hours.sat == Decimal("4.00")
        assert hours.sun == Decimal("4.00")
        assert hours.total == Decimal("8.00")

    def test_split_at_local_midnight_in_summer(self):
        pieces = split_at_local_midnight(
            Interval(utc(2024, 7, 5, 20), utc(2024, 7, 6, 2)), LONDON
        )

        assert [day for day, _ in pieces] == [date(2024, 7, 5), date(2024, 7, 6)]
        assert pieces[0][1].end == utc(2024, 7, 5, 23)
        assert pieces[1][1].start == utc(2024, 7, 5, 23)

    def test_day_window_is_absolute(self, london_policy):
        windows = day_windows(date(2024, 7, 2), london_policy, LONDON)

        assert windows == [Interval(utc(2024, 7, 2, 7), utc(2024, 7, 2, 19))]


class TestBreaks:
    """Break subtraction before classification."""

    def test_explicit_break_is_clipped(self, london_policy):
        hours = classify_shift(
            utc(2024, 1, 16, 8),
            utc(2024, 1, 16, 16),
            london_policy,
            break_start=utc(2024, 1, 16, 12),
            break_end=utc(2024, 1, 16, 12, 30),
        )

        assert hours.day == Decimal("7.50")

    def test_break_minutes_fallback(self, london_policy):
        hours = classify_shift(
            utc(2024, 1, 16, 8), utc(2024, 1, 16, 16), london_policy, break_minutes=60
        )

        assert hours.day == Decimal("7.00")

    def test_break_minutes_cut_from_middle(self):
        worked = [Interval(utc(2024, 1, 16, 8), utc(2024, 1, 16, 16))]

        result = subtract_break(worked, break_minutes=60)

        assert result == [
            Interval(utc(2024, 1, 16, 8), utc(2024, 1, 16, 11, 30)),
            Interval(utc(2024, 1, 16, 12, 30), utc(2024, 1, 16, 16)),
        ]

    def test_break_clipped_against_each_interval(self):
        worked = [
            Interval(utc(2024, 1, 16, 8), utc(2024, 1, 16, 12)),
            Interval(utc(2024, 1, 16, 13), utc(2024, 1, 16, 17)),
        ]

        result = subtract_break(
            worked, break_start=utc(2024, 1, 16, 11), break_end=utc(2024, 1, 16, 14)
        )

        assert result == [
            Interval(utc(2024, 1, 16, 8), utc(2024, 1, 16, 11)),
            Interval(utc(2024, 1, 16, 14), utc(2024, 1, 16, 17)),
        ]

    def test_explicit_break_wins_over_minutes(self, london_policy):
        hours = classify_shift(
            utc(2024, 1, 16, 8),
            utc(2024, 1, 16, 16),
            london_policy,
            break_start=utc(2024, 1, 16, 12),
            break_end=utc(2024, 1, 16, 12, 15),
            break_minutes=60,
        )

        assert hours.day == Decimal("7.75")

    def test_break_longer_than_shift_leaves_nothing(self, london_policy):
        hours = classify_shift(
            utc(2024, 1, 16, 8), utc(2024, 1, 16, 9), london_policy, break_minutes=90
        )

        assert hours.total == Decimal("0")


class TestRounding:
    def test_each_bucket_rounded_on_its_own(self, london_policy):
        # 10 minutes either side of 20:00 on a Friday
        hours = classify_shift(utc(2024, 1, 19, 19, 50), utc(2024, 1, 19, 20, 10), london_policy)

        assert hours.day == Decimal("0.17")
        assert hours.night == Decimal("0.17")
        assert abs(hours.total - Decimal(20) / Decimal(60)) <= Decimal("0.01")

    def test_thirds_across_three_buckets(self, london_policy):
        # 20 minutes each side of 20:00 on a Friday, then 20 minutes of Saturday
        intervals = [
            Interval(utc(2024, 1, 19, 19, 40), utc(2024, 1, 19, 20, 20)),
            Interval(utc(2024, 1, 20, 9), utc(2024, 1, 20, 9, 20)),
        ]

        hours = classify(intervals, london_policy)

        assert (hours.day, hours.night, hours.sat) == (Decimal("0.33"),) * 3
        assert abs(hours.total - Decimal("1")) <= Decimal("0.01")

    def test_round_hours_half_up(self):
        exact = {b: Decimal("0") for b in Bucket}
        exact[Bucket.DAY] = Decimal("7.5")
        exact[Bucket.NIGHT] = Decimal("0.125")

        rounded = round_hours(exact)

        assert rounded[Bucket.DAY] == Decimal("7.50")
        assert rounded[Bucket.NIGHT] == Decimal("0.13")

    def test_multi_day_shift_total(self, london_policy):
        start = utc(2024, 1, 15, 8)
        hours = classify_shift(start, start + timedelta(hours=50), london_policy)

        assert hours.total == Decimal("50.00")
