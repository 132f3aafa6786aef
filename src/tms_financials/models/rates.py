"""Policy settings and rate card models."""

from __future__ import annotations

from datetime import date, time
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, Date, ForeignKey, Integer, Numeric, String, Time
from sqlalchemy.orm import Mapped, mapped_column

from tms_financials.models.base import Base, TimestampMixin

CHANNEL_SCOPE_CHECK = "IN ('PAYE', 'UMBRELLA', 'BOTH', 'NONE')"


# ===== Time-bucket policy =====


class SettingsDefaults(Base, TimestampMixin):
    """Global default policy. Exactly one row (settings_id = 1)."""

    __tablename__ = "settings_defaults"

    settings_id: Mapped[int] = mapped_column(Integer, primary_key=True, default=1)
    timezone: Mapped[str] = mapped_column(String, nullable=False, default="Europe/London")
    day_start: Mapped[time] = mapped_column(Time, nullable=False, default=time(8, 0))
    day_end: Mapped[time] = mapped_column(Time, nullable=False, default=time(20, 0))
    bank_holidays: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    vat_rate_pct: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False, default=Decimal("20"))
    holiday_pay_pct: Mapped[Decimal] = mapped_column(
        Numeric(6, 3), nullable=False, default=Decimal("12.07")
    )
    erni_pct: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False, default=Decimal("13.8"))
    holiday_applies_to: Mapped[str] = mapped_column(String, nullable=False, default="PAYE")
    erni_applies_to: Mapped[str] = mapped_column(String, nullable=False, default="PAYE")
    mileage_pay_rate: Mapped[Decimal] = mapped_column(
        Numeric(12, 4), nullable=False, default=Decimal("0.45")
    )
    mileage_charge_rate: Mapped[Decimal] = mapped_column(
        Numeric(12, 4), nullable=False, default=Decimal("0.45")
    )

    __table_args__ = (
        CheckConstraint("settings_id = 1", name="settings_defaults_singleton"),
        CheckConstraint(f"holiday_applies_to {CHANNEL_SCOPE_CHECK}", name="settings_holiday_scope"),
        CheckConstraint(f"erni_applies_to {CHANNEL_SCOPE_CHECK}", name="settings_erni_scope"),
    )


class ClientSettings(Base, TimestampMixin):
    """Client-specific policy override. NULL fields fall back to the default."""

    __tablename__ = "client_settings"

    client_settings_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)

    timezone: Mapped[str | None] = mapped_column(String, nullable=True)
    day_start: Mapped[time | None] = mapped_column(Time, nullable=True)
    day_end: Mapped[time | None] = mapped_column(Time, nullable=True)
    bank_holidays: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)
    vat_rate_pct: Mapped[Decimal | None] = mapped_column(Numeric(6, 3), nullable=True)
    holiday_pay_pct: Mapped[Decimal | None] = mapped_column(Numeric(6, 3), nullable=True)
    erni_pct: Mapped[Decimal | None] = mapped_column(Numeric(6, 3), nullable=True)
    holiday_applies_to: Mapped[str | None] = mapped_column(String, nullable=True)
    erni_applies_to: Mapped[str | None] = mapped_column(String, nullable=True)
    mileage_pay_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    mileage_charge_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)


# ===== Rate cards =====


class _BucketPayMixin:
    pay_day: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    pay_night: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    pay_sat: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    pay_sun: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    pay_bh: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)


class ClientDefaultRate(_BucketPayMixin, Base, TimestampMixin):
    """Client rate card: authoritative charge rates, optional default pay.

    ``role`` and ``band`` NULL mean the row applies regardless of that
    dimension.
    """

    __tablename__ = "client_default_rate"

    rate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    client_id: Mapped[UUID] = mapped_column(
        ForeignKey("client.client_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str | None] = mapped_column(String, nullable=True)
    band: Mapped[str | None] = mapped_column(String, nullable=True)
    date_from: Mapped[date] = mapped_column(Date, nullable=False)
    date_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    charge_day: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    charge_night: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    charge_sat: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    charge_sun: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)
    charge_bh: Mapped[Decimal | None] = mapped_column(Numeric(12, 4), nullable=True)

    __table_args__ = (
        CheckConstraint("date_to IS NULL OR date_to >= date_from", name="client_rate_dates_check"),
    )


class CandidateRate(_BucketPayMixin, Base, TimestampMixin):
    """Candidate pay override, optionally scoped to a client, role, band."""

    __tablename__ = "candidate_rate"

    rate_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    candidate_id: Mapped[UUID] = mapped_column(
        ForeignKey("candidate.candidate_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    client_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("client.client_id"),
        nullable=True,
    )
    role: Mapped[str | None] = mapped_column(String, nullable=True)
    band: Mapped[str | None] = mapped_column(String, nullable=True)
    date_from: Mapped[date] = mapped_column(Date, nullable=False)
    date_to: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        CheckConstraint("date_to IS NULL OR date_to >= date_from", name="candidate_rate_dates_check"),
    )