"""Classification of worked time into pay-rate buckets.

Worked intervals are absolute instants. They are converted to the client's
local zone, cut at local midnight, and each slice is classified by an ordered
rule list:

    bank holiday > Sunday > Saturday > day/night split

Minutes are summed per bucket and returned as hours, each bucket rounded
half-up to 2 dp independently. The rounded buckets may therefore differ from
the rounded total worked time by a cent or so.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable
from zoneinfo import ZoneInfo

from tms_financials.calculators.types import BUCKETS, Bucket, BucketHours, Interval, Policy

CENT = Decimal("0.01")
SECONDS_PER_HOUR = Decimal("3600")

# (name, predicate(local_date, policy), bucket) evaluated in order
SliceRule = tuple[str, Callable[[date, Policy], bool], Bucket]

DAY_RULES: tuple[SliceRule, ...] = (
    ("bank_holiday", lambda d, p: d in p.bank_holidays, Bucket.BH),
    ("sunday", lambda d, p: d.weekday() == 6, Bucket.SUN),
    ("saturday", lambda d, p: d.weekday() == 5, Bucket.SAT),
)


def as_utc(value: datetime) -> datetime:
    """Normalise an instant to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(instant: datetime, tz_name: str) -> date:
    """Calendar date of ``instant`` in the given zone."""
    return as_utc(instant).astimezone(ZoneInfo(tz_name)).date()


def subtract_break(
    intervals: Iterable[Interval],
    break_start: datetime | None = None,
    break_end: datetime | None = None,
    break_minutes: int | None = None,
) -> list[Interval]:
    """Remove the break from the worked intervals.

    Explicit break instants are clipped out of every interval they overlap.
    Without them, ``break_minutes`` is cut symmetrically from the middle of
    the longest interval.
    """
    worked = [Interval(as_utc(i.start), as_utc(i.end)) for i in intervals]
    worked = [i for i in worked if i.end > i.start]

    if break_start is not None and break_end is not None:
        bs, be = as_utc(break_start), as_utc(break_end)
        if be <= bs:
            return worked
        clipped: list[Interval] = []
        for interval in worked:
            if be <= interval.start or bs >= interval.end:
                clipped.append(interval)
                continue
            if bs > interval.start:
                clipped.append(Interval(interval.start, bs))
            if be < interval.end:
                clipped.append(Interval(be, interval.end))
        return clipped

    if not break_minutes or break_minutes <= 0 or not worked:
        return worked

    target = max(worked, key=lambda i: i.end - i.start)
    duration = target.end - target.start
    brk = timedelta(minutes=break_minutes)
    rest: list[Interval] = []
    if brk < duration:
        mid = target.start + duration / 2
        rest = [Interval(target.start, mid - brk / 2), Interval(mid + brk / 2, target.end)]
    result: list[Interval] = []
    for interval in worked:
        if interval is target:
            result.extend(r for r in rest if r.end > r.start)
        else:
            result.append(interval)
    return result


def split_at_local_midnight(interval: Interval, tz: ZoneInfo) -> list[tuple[date, Interval]]:
    """Cut an interval so each piece lies within one local calendar day."""
    slices: list[tuple[date, Interval]] = []
    cursor = as_utc(interval.start)
    end = as_utc(interval.end)
    while cursor < end:
        day = cursor.astimezone(tz).date()
        next_midnight = datetime.combine(day + timedelta(days=1), time(0), tzinfo=tz).astimezone(
            timezone.utc
        )
        piece_end = min(end, next_midnight)
        slices.append((day, Interval(cursor, piece_end)))
        cursor = piece_end
    return slices


def day_windows(day: date, policy: Policy, tz: ZoneInfo) -> list[Interval]:
    """Absolute day-rate windows that fall on a local date.

    A window whose end is not after its start wraps past midnight, giving
    an early-morning tail and an evening head on the same date. Equal start
    and end means no day window at all.
    """

    def at(t: time, on: date) -> datetime:
        return datetime.combine(on, t, tzinfo=tz).astimezone(timezone.utc)

    start, end = policy.day_start, policy.day_end
    if start == end:
        return []
    if start < end:
        return [Interval(at(start, day), at(end, day))]
    midnight = at(time(0), day)
    next_midnight = at(time(0), day + timedelta(days=1))
    return [Interval(midnight, at(end, day)), Interval(at(start, day), next_midnight)]


def _overlap_seconds(a: Interval, b: Interval) -> Decimal:
    lo = max(a.start, b.start)
    hi = min(a.end, b.end)
    if hi <= lo:
        return Decimal("0")
    return Decimal(str((hi - lo).total_seconds()))


def classify_slice(day: date, piece: Interval, policy: Policy, tz: ZoneInfo) -> dict[Bucket, Decimal]:
    """Seconds per bucket for one slice lying within local date ``day``."""
    seconds = Decimal(str((piece.end - piece.start).total_seconds()))
    for _name, applies, bucket in DAY_RULES:
        if applies(day, policy):
            return {bucket: seconds}

    day_seconds = sum((_overlap_seconds(piece, w) for w in day_windows(day, policy, tz)), Decimal("0"))
    return {Bucket.DAY: day_seconds, Bucket.NIGHT: seconds - day_seconds}


def round_hours(exact_hours: dict[Bucket, Decimal]) -> dict[Bucket, Decimal]:
    """Round each bucket half-up to 2 dp on its own."""
    return {b: h.quantize(CENT, rounding=ROUND_HALF_UP) for b, h in exact_hours.items()}


def classify(
    intervals: Iterable[Interval],
    policy: Policy,
    *,
    break_start: datetime | None = None,
    break_end: datetime | None = None,
    break_minutes: int | None = None,
) -> BucketHours:
    """Classify worked intervals (minus break) into hours per bucket."""
    tz = ZoneInfo(policy.timezone)
    worked = subtract_break(intervals, break_start, break_end, break_minutes)

    seconds: dict[Bucket, Decimal] = {b: Decimal("0") for b in BUCKETS}
    for interval in worked:
        for day, piece in split_at_local_midnight(interval, tz):
            for bucket, secs in classify_slice(day, piece, policy, tz).items():
                seconds[bucket] += secs

    hours = round_hours({b: s / SECONDS_PER_HOUR for b, s in seconds.items()})
    return BucketHours(**{b.value: hours[b] for b in BUCKETS})


def classify_shift(
    worked_start: datetime,
    worked_end: datetime,
    policy: Policy,
    *,
    break_start: datetime | None = None,
    break_end: datetime | None = None,
    break_minutes: int | None = None,
) -> BucketHours:
    """Convenience wrapper for a single worked interval."""
    return classify(
        [Interval(worked_start, worked_end)],
        policy,
        break_start=break_start,
        break_end=break_end,
        break_minutes=break_minutes,
    )
