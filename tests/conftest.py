"""Pytest fixtures for financials engine tests."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from tms_financials.calculators.types import Policy
from tms_financials.config import Settings
from tms_financials.database import make_session_factory
from tms_financials.models import (
    Base,
    Candidate,
    Client,
    ClientDefaultRate,
    ClientHospital,
    Timesheet,
    TimesheetValidation,
    Umbrella,
)

UTC = timezone.utc

HOSPITAL = "st elsewhere general"
NURSE_KEY = "nurse.one@example.com"


@pytest.fixture
async def engine(tmp_path):
    """Create a file-backed SQLite engine so separate sessions share data."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'financials.db'}",
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite://",
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        log_level="INFO",
        default_timezone="Europe/London",
        worker_batch_size=25,
        worker_lease_seconds=300,
        worker_poll_seconds=0.01,
        worker_backoff_base_seconds=60,
        worker_backoff_max_seconds=3600,
    )


@pytest.fixture
def london_policy() -> Policy:
    """Default London policy with an 08:00-20:00 day window."""
    return Policy(
        timezone="Europe/London",
        day_start=time(8, 0),
        day_end=time(20, 0),
        bank_holidays=frozenset({date(2024, 12, 25), date(2024, 12, 26)}),
    )


@pytest.fixture
async def test_client(session: AsyncSession) -> Client:
    """Create a client with one mapped hospital."""
    client = Client(client_id=uuid4(), name="St Elsewhere NHS Trust", vat_exempt=False)
    session.add(client)
    await session.flush()
    session.add(ClientHospital(hospital_norm=HOSPITAL, client_id=client.client_id))
    await session.flush()
    return client


@pytest.fixture
async def other_client(session: AsyncSession) -> Client:
    """A second client with its own hospital."""
    client = Client(client_id=uuid4(), name="Riverside Health", vat_exempt=True)
    session.add(client)
    await session.flush()
    session.add(ClientHospital(hospital_norm="riverside", client_id=client.client_id))
    await session.flush()
    return client


@pytest.fixture
async def test_umbrella(session: AsyncSession) -> Umbrella:
    umbrella = Umbrella(
        umbrella_id=uuid4(),
        name="Brolly Ltd",
        bank_name="Umbrella Bank",
        sort_code="20-00-00",
        account_number="55779911",
    )
    session.add(umbrella)
    await session.flush()
    return umbrella


@pytest.fixture
async def test_candidate(session: AsyncSession) -> Candidate:
    """A PAYE candidate with complete bank details."""
    candidate = Candidate(
        candidate_id=uuid4(),
        key_norm=NURSE_KEY,
        display_name="Nurse One",
        pay_method="PAYE",
        account_holder="N ONE",
        bank_name="High Street Bank",
        sort_code="10-20-30",
        account_number="12345678",
    )
    session.add(candidate)
    await session.flush()
    return candidate


@pytest.fixture
async def default_rate(session: AsyncSession, test_client: Client) -> ClientDefaultRate:
    """Client default for any role/band: charge and pay for every bucket."""
    rate = ClientDefaultRate(
        rate_id=uuid4(),
        client_id=test_client.client_id,
        date_from=date(2024, 1, 1),
        pay_day=Decimal("20.00"),
        pay_night=Decimal("24.00"),
        pay_sat=Decimal("26.00"),
        pay_sun=Decimal("28.00"),
        pay_bh=Decimal("40.00"),
        charge_day=Decimal("30.00"),
        charge_night=Decimal("36.00"),
        charge_sat=Decimal("39.00"),
        charge_sun=Decimal("42.00"),
        charge_bh=Decimal("60.00"),
    )
    session.add(rate)
    await session.flush()
    return rate


@pytest.fixture
def timesheet_factory(session: AsyncSession):
    """Build and flush a timesheet version (Tuesday 2024-01-16 08:00-16:00 UTC)."""

    async def _make(**overrides) -> Timesheet:
        values = {
            "timesheet_id": uuid4(),
            "version": 1,
            "booking_id": f"bk_{uuid4().hex[:16]}",
            "is_current": True,
            "occupant_key_norm": NURSE_KEY,
            "hospital_norm": HOSPITAL,
            "ward_norm": "ward 7",
            "role_norm": "rgn",
            "band": None,
            "worked_start_utc": datetime(2024, 1, 16, 8, 0, tzinfo=UTC),
            "worked_end_utc": datetime(2024, 1, 16, 16, 0, tzinfo=UTC),
            "status": "AUTHORISED",
        }
        values.update(overrides)
        timesheet = Timesheet(**values)
        session.add(timesheet)
        await session.flush()
        return timesheet

    return _make


@pytest.fixture
def validate(session: AsyncSession):
    """Record an HR validation outcome for a timesheet."""

    async def _validate(timesheet_id, status: str = "validated", at: datetime | None = None):
        row = TimesheetValidation(
            validation_id=uuid4(),
            timesheet_id=timesheet_id,
            status=status,
            created_at=at or datetime.now(UTC),
        )
        session.add(row)
        await session.flush()
        return row

    return _validate
