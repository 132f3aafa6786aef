"""Type definitions for the financial calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Iterator


class Bucket(str, Enum):
    """Time-of-work categories used for rate lookup and hour aggregation."""

    DAY = "day"
    NIGHT = "night"
    SAT = "sat"
    SUN = "sun"
    BH = "bh"


BUCKETS: tuple[Bucket, ...] = (Bucket.DAY, Bucket.NIGHT, Bucket.SAT, Bucket.SUN, Bucket.BH)

ZERO = Decimal("0")


class PayMethod(str, Enum):
    """How a candidate is paid."""

    PAYE = "PAYE"
    UMBRELLA = "UMBRELLA"


class RateSource(str, Enum):
    """Which rate table produced a resolution."""

    CANDIDATE_OVERRIDE = "CANDIDATE_OVERRIDE"
    CLIENT_DEFAULT = "CLIENT_DEFAULT"
    NONE = "NONE"


@dataclass(frozen=True)
class Interval:
    """Half-open absolute time interval [start, end)."""

    start: datetime
    end: datetime

    @property
    def minutes(self) -> float:
        return max((self.end - self.start).total_seconds(), 0.0) / 60.0


@dataclass(frozen=True)
class BucketHours:
    """Hours per bucket, rounded to 2 dp."""

    day: Decimal = ZERO
    night: Decimal = ZERO
    sat: Decimal = ZERO
    sun: Decimal = ZERO
    bh: Decimal = ZERO

    def get(self, bucket: Bucket) -> Decimal:
        return getattr(self, bucket.value)

    def items(self) -> Iterator[tuple[Bucket, Decimal]]:
        for bucket in BUCKETS:
            yield bucket, self.get(bucket)

    @property
    def total(self) -> Decimal:
        return self.day + self.night + self.sat + self.sun + self.bh


@dataclass(frozen=True)
class BucketRates:
    """Rate per bucket. A None entry means no rate is defined."""

    day: Decimal | None = None
    night: Decimal | None = None
    sat: Decimal | None = None
    sun: Decimal | None = None
    bh: Decimal | None = None

    def get(self, bucket: Bucket) -> Decimal | None:
        return getattr(self, bucket.value)

    @property
    def is_empty(self) -> bool:
        return all(self.get(b) is None for b in BUCKETS)

    @classmethod
    def from_row(cls, row: object, prefix: str) -> BucketRates:
        """Read ``{prefix}_day`` .. ``{prefix}_bh`` attributes off a model row."""
        return cls(**{b.value: getattr(row, f"{prefix}_{b.value}") for b in BUCKETS})


@dataclass(frozen=True)
class Policy:
    """Time-bucket and percentage policy resolved for a client and date."""

    timezone: str
    day_start: time
    day_end: time
    bank_holidays: frozenset[date] = field(default_factory=frozenset)
    vat_rate_pct: Decimal = Decimal("20")
    holiday_pay_pct: Decimal = Decimal("12.07")
    erni_pct: Decimal = Decimal("13.8")
    holiday_applies_to: str = "PAYE"
    erni_applies_to: str = "PAYE"
    mileage_pay_rate: Decimal = Decimal("0.45")
    mileage_charge_rate: Decimal = Decimal("0.45")

    def applies_to(self, scope: str, pay_method: str | None) -> bool:
        """Whether a percentage scoped to ``scope`` applies to ``pay_method``."""
        if scope == "BOTH":
            return pay_method in (PayMethod.PAYE.value, PayMethod.UMBRELLA.value)
        if scope == "NONE":
            return False
        return scope == pay_method
