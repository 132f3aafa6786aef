"""Persists financial snapshots under the one-current-row invariant."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from tms_financials.models import TimesheetFinancial

logger = logging.getLogger(__name__)


class SnapshotLockedError(Exception):
    """Raised when the current snapshot is held by an invoice."""

    def __init__(self, timesheet_id: UUID, invoice_id: UUID):
        self.timesheet_id = timesheet_id
        self.invoice_id = invoice_id
        super().__init__(
            f"Snapshot for timesheet {timesheet_id} is locked by invoice {invoice_id}"
        )


class SnapshotConflictError(Exception):
    """Raised when the current row changed between read and flip."""

    def __init__(self, timesheet_id: UUID, financial_id: UUID | None):
        self.timesheet_id = timesheet_id
        self.financial_id = financial_id
        super().__init__(
            f"Current snapshot for timesheet {timesheet_id} changed concurrently "
            f"(expected {financial_id})"
        )


@dataclass(frozen=True)
class WriteResult:
    """Outcome of one write or retire."""

    timesheet_id: UUID
    financial_id: UUID | None
    superseded_id: UUID | None


class SnapshotWriter:
    """Supersedes the current snapshot of a timesheet.

    Rows are never updated in place: the previous current row is flipped to
    non-current with a conditional update scoped by its unlocked state, then
    the new row is inserted as current. Zero rows affected by the flip means
    a concurrent lock or recompute won.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def current(self, timesheet_id: UUID) -> TimesheetFinancial | None:
        result = await self.session.execute(
            select(TimesheetFinancial).where(
                TimesheetFinancial.timesheet_id == timesheet_id,
                TimesheetFinancial.is_current.is_(True),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def write(self, snapshot: TimesheetFinancial) -> WriteResult:
        """Insert ``snapshot`` as the new current row for its timesheet."""
        superseded_id = await self._flip_current(snapshot.timesheet_id)

        snapshot.is_current = True
        snapshot.locked_by_invoice_id = None
        snapshot.locked_at_utc = None
        self.session.add(snapshot)
        await self.session.flush()

        logger.debug(
            "wrote snapshot %s for timesheet %s v%s (%s)",
            snapshot.financial_id,
            snapshot.timesheet_id,
            snapshot.timesheet_version,
            snapshot.processing_status,
        )
        return WriteResult(snapshot.timesheet_id, snapshot.financial_id, superseded_id)

    async def retire(self, timesheet_id: UUID) -> WriteResult:
        """Flip the current row to non-current with no replacement."""
        superseded_id = await self._flip_current(timesheet_id)
        if superseded_id is not None:
            logger.info("retired snapshot %s for revoked timesheet %s", superseded_id, timesheet_id)
        return WriteResult(timesheet_id, None, superseded_id)

    async def _flip_current(self, timesheet_id: UUID) -> UUID | None:
        existing = await self.current(timesheet_id)
        if existing is None:
            return None

        if existing.locked_by_invoice_id is not None:
            raise SnapshotLockedError(timesheet_id, existing.locked_by_invoice_id)

        result = await self.session.execute(
            update(TimesheetFinancial)
            .where(
                TimesheetFinancial.financial_id == existing.financial_id,
                TimesheetFinancial.is_current.is_(True),
                TimesheetFinancial.locked_by_invoice_id.is_(None),
            )
            .values(is_current=False)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise SnapshotConflictError(timesheet_id, existing.financial_id)

        set_committed_value(existing, "is_current", False)
        return existing.financial_id
