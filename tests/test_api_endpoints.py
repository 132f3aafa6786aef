"""API endpoint tests.

Exercises the FastAPI routes against a file-backed SQLite database.
"""

from collections.abc import AsyncGenerator
from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import ASGITransport, AsyncClient

from tms_financials.api.app import create_app
from tms_financials.api.dependencies import get_session_factory
from tms_financials.config import get_settings
from tms_financials.services.outbox import FinancialsOutbox

pytestmark = pytest.mark.asyncio


@pytest.fixture
async def client(session_factory, settings) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client wired to the test database."""
    app = create_app()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_settings] = lambda: settings
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
async def queued_timesheet(session, test_client, test_candidate, default_rate, timesheet_factory):
    """A committed timesheet with a pending recompute."""
    timesheet = await timesheet_factory()
    await FinancialsOutbox(session).enqueue(timesheet.timesheet_id, "new-authorised")
    await session.commit()
    return timesheet


class TestHealthEndpoints:
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["engine_version"] == "test"
        assert data["outbox"] == {"pending": 0, "parked": 0}

    async def test_health_reports_backlog(self, client: AsyncClient):
        await client.post(
            "/api/v1/financials/enqueue",
            json={"timesheet_ids": [str(uuid4()), str(uuid4())], "reason": "manual"},
        )

        response = await client.get("/health")

        assert response.json()["outbox"] == {"pending": 2, "parked": 0}

    async def test_readiness_and_liveness(self, client: AsyncClient):
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}


class TestOutboxEndpoints:
    async def test_enqueue_requires_target(self, client: AsyncClient):
        response = await client.post("/api/v1/financials/enqueue", json={})

        assert response.status_code == 422

    async def test_enqueue_rejects_unknown_reason(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/financials/enqueue",
            json={"timesheet_ids": [str(uuid4())], "reason": "because"},
        )

        assert response.status_code == 422

    async def test_enqueue(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/financials/enqueue",
            json={"timesheet_ids": [str(uuid4()), str(uuid4())], "reason": "manual"},
        )

        assert response.status_code == 202
        assert response.json() == {"enqueued": 2}

    async def test_drain_then_read_snapshot(self, client: AsyncClient, queued_timesheet):
        drain = await client.post("/api/v1/financials/drain", json={"limit": 10})

        assert drain.status_code == 200, drain.text
        assert drain.json()["succeeded"] == [str(queued_timesheet.timesheet_id)]

        response = await client.get(f"/api/v1/financials/{queued_timesheet.timesheet_id}")
        assert response.status_code == 200
        data = response.json()
        assert data["processing_status"] == "READY_FOR_HR"
        assert Decimal(data["total_charge_ex_vat"]) == Decimal("240")
        assert Decimal(data["hours_day"]) == Decimal("8")

    async def test_snapshot_not_found(self, client: AsyncClient):
        response = await client.get(f"/api/v1/financials/{uuid4()}")

        assert response.status_code == 404


class TestInvoiceFlow:
    """Drain, promote, invoice and credit through the API."""

    async def test_full_cycle(self, client: AsyncClient, session, queued_timesheet, validate):
        timesheet_id = str(queued_timesheet.timesheet_id)
        await client.post("/api/v1/financials/drain")
        await validate(queued_timesheet.timesheet_id)
        await session.commit()

        promote = await client.post(
            "/api/v1/financials/promote", json={"timesheet_ids": [timesheet_id]}
        )
        assert promote.status_code == 200
        assert promote.json() == {"promoted": [timesheet_id], "blocked": {}}

        created = await client.post("/api/v1/invoices", json={"timesheet_ids": [timesheet_id]})
        assert created.status_code == 201, created.text
        invoice_id = created.json()["invoice_id"]
        assert created.json()["locked"] == [timesheet_id]

        invoice = await client.get(f"/api/v1/invoices/{invoice_id}")
        assert invoice.status_code == 200
        assert Decimal(invoice.json()["total_inc_vat"]) == Decimal("288.00")
        assert len(invoice.json()["lines"]) == 1

        payload = await client.get(f"/api/v1/invoices/{invoice_id}/render-payload")
        assert payload.status_code == 200
        assert payload.json()["totals"]["charge_ex_vat"] == "240.00"

        credit = await client.post(
            f"/api/v1/invoices/{invoice_id}/credit-note", json={"reason": "duplicate"}
        )
        assert credit.status_code == 201, credit.text
        assert credit.json()["unlocked"] == [timesheet_id]

        again = await client.post(f"/api/v1/invoices/{invoice_id}/credit-note")
        assert again.status_code == 409

        snapshot = await client.get(f"/api/v1/financials/{timesheet_id}")
        assert snapshot.json()["locked_by_invoice_id"] is None
        assert snapshot.json()["is_stale"] is True

    async def test_invoice_rejection_code(self, client: AsyncClient, queued_timesheet):
        await client.post("/api/v1/financials/drain")

        response = await client.post(
            "/api/v1/invoices", json={"timesheet_ids": [str(queued_timesheet.timesheet_id)]}
        )

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "NOT_READY_FOR_INVOICE"

    async def test_invoice_requires_ids(self, client: AsyncClient):
        response = await client.post("/api/v1/invoices", json={"timesheet_ids": []})

        assert response.status_code == 422

    async def test_unknown_invoice(self, client: AsyncClient):
        assert (await client.get(f"/api/v1/invoices/{uuid4()}")).status_code == 404
        assert (await client.post(f"/api/v1/invoices/{uuid4()}/credit-note")).status_code == 404


def shift_payload(**overrides) -> dict:
    payload = {
        "occupant_key": "nurse.one@example.com",
        "hospital": "St Elsewhere General",
        "ward": "Ward 7",
        "job_title": "RGN",
        "worked_start": "2024-01-16T08:00:00Z",
        "worked_end": "2024-01-16T17:00:00Z",
        "break_start": "2024-01-16T12:00:00Z",
        "break_end": "2024-01-16T13:00:00Z",
    }
    payload.update(overrides)
    return payload


class TestTimesheetEndpoints:
    async def test_submit(self, client: AsyncClient):
        response = await client.post("/api/v1/timesheets", json=shift_payload())

        assert response.status_code == 201, response.text
        data = response.json()
        assert data["version"] == 1
        assert data["status"] == "AUTHORISED"
        assert data["booking_id"].startswith("bk_")
        assert data["week_ending_date"] == "2024-01-21"
        assert data["break_minutes"] == 60
        assert data["break_ok"] is True

        queued = await client.post("/api/v1/financials/drain")
        assert queued.json()["leased"] == 1

    async def test_short_break_flagged(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/timesheets", json=shift_payload(break_end="2024-01-16T12:30:00Z")
        )

        assert response.status_code == 201
        assert response.json()["break_minutes"] == 30
        assert response.json()["break_ok"] is False

    async def test_resubmit_conflicts(self, client: AsyncClient):
        await client.post("/api/v1/timesheets", json=shift_payload())

        response = await client.post("/api/v1/timesheets", json=shift_payload())

        assert response.status_code == 409

    async def test_end_before_start(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/timesheets", json=shift_payload(worked_end="2024-01-16T07:00:00Z")
        )

        assert response.status_code == 422

    async def test_revoke_then_resubmit(self, client: AsyncClient):
        first = (await client.post("/api/v1/timesheets", json=shift_payload())).json()

        revoked = await client.post(
            "/api/v1/timesheets/revoke",
            json={"booking_id": first["booking_id"], "reason": "wrong times", "actor": "ward"},
        )
        assert revoked.status_code == 200, revoked.text
        assert revoked.json() == {
            "booking_id": first["booking_id"],
            "timesheet_id": first["timesheet_id"],
            "revoked_version": 1,
            "next_version": 2,
        }

        second = await client.post(
            "/api/v1/timesheets", json=shift_payload(worked_end="2024-01-16T16:00:00Z")
        )
        assert second.status_code == 201
        assert second.json()["version"] == 2
        assert second.json()["timesheet_id"] == first["timesheet_id"]

    async def test_revoke_unknown_booking(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/timesheets/revoke", json={"booking_id": "bk_0000000000000000"}
        )

        assert response.status_code == 404
