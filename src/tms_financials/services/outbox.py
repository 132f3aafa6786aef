"""Recompute outbox: deduplicated enqueue, leased dequeue, acknowledgements.

Every state change uses a conditional UPDATE scoped by the expected prior
state and checks the affected row count, so several worker instances can
share the queue without double-processing an entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tms_financials.models import OUTBOX_REASONS, FinancialsOutboxEntry, TimesheetFinancial, utcnow

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


@dataclass(frozen=True)
class LeasedEntry:
    """An outbox entry claimed by one worker for the lease window."""

    outbox_id: UUID
    timesheet_id: UUID
    reason: str
    attempt_count: int
    lease_token: UUID
    generation: int


def backoff_delay(attempt_count: int, base_seconds: int, max_seconds: int) -> timedelta:
    """Exponential backoff: base * 2^(attempt - 1), capped."""
    exponent = max(attempt_count - 1, 0)
    seconds = min(base_seconds * (2 ** min(exponent, 30)), max_seconds)
    return timedelta(seconds=seconds)


class FinancialsOutbox:
    """Queue operations over the financials_outbox table."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        lease_seconds: int = 300,
        backoff_base_seconds: int = 60,
        backoff_max_seconds: int = 3600,
    ):
        self.session = session
        self.lease_seconds = lease_seconds
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(self, timesheet_id: UUID, reason: str) -> FinancialsOutboxEntry:
        """Request a recompute. Repeat requests for the same (timesheet, reason)
        collapse into one entry that becomes due immediately."""
        if reason not in OUTBOX_REASONS:
            raise ValueError(f"Unknown outbox reason '{reason}'")

        now = utcnow()
        result = await self.session.execute(
            select(FinancialsOutboxEntry).where(
                FinancialsOutboxEntry.timesheet_id == timesheet_id,
                FinancialsOutboxEntry.reason == reason,
            )
        )
        entry = result.scalar_one_or_none()

        if entry is None:
            entry = FinancialsOutboxEntry(
                outbox_id=uuid4(),
                timesheet_id=timesheet_id,
                reason=reason,
                attempt_count=0,
                next_attempt_at=now,
                generation=1,
            )
            self.session.add(entry)
            await self.session.flush()
            logger.debug("enqueued %s for timesheet %s", reason, timesheet_id)
            return entry

        await self.session.execute(
            update(FinancialsOutboxEntry)
            .where(FinancialsOutboxEntry.outbox_id == entry.outbox_id)
            .values(
                next_attempt_at=now,
                parked_at=None,
                generation=FinancialsOutboxEntry.generation + 1,
                updated_at=now,
            )
        )
        await self.session.refresh(entry)
        logger.debug("re-enqueued %s for timesheet %s", reason, timesheet_id)
        return entry

    async def enqueue_many(self, timesheet_ids: Iterable[UUID], reason: str) -> int:
        count = 0
        for timesheet_id in dict.fromkeys(timesheet_ids):
            await self.enqueue(timesheet_id, reason)
            count += 1
        return count

    async def enqueue_for_client(self, client_id: UUID, reason: str) -> int:
        """Mark a client's current unlocked snapshots stale and enqueue them
        (after a rate or policy edit)."""
        result = await self.session.execute(
            select(TimesheetFinancial.timesheet_id).where(
                TimesheetFinancial.client_id == client_id,
                TimesheetFinancial.is_current.is_(True),
                TimesheetFinancial.locked_by_invoice_id.is_(None),
            )
        )
        timesheet_ids = list(result.scalars().all())
        if not timesheet_ids:
            return 0

        await self.session.execute(
            update(TimesheetFinancial)
            .where(
                TimesheetFinancial.timesheet_id.in_(timesheet_ids),
                TimesheetFinancial.is_current.is_(True),
                TimesheetFinancial.locked_by_invoice_id.is_(None),
            )
            .values(is_stale=True, stale_reason=reason)
        )
        return await self.enqueue_many(timesheet_ids, reason)

    # ------------------------------------------------------------------
    # Lease
    # ------------------------------------------------------------------

    async def lease_batch(self, limit: int, now: datetime | None = None) -> list[LeasedEntry]:
        """Claim up to ``limit`` due entries.

        Candidates are read first, then each one is claimed with a
        compare-and-swap on its previous lease state. An entry another
        worker claimed in between affects zero rows and is skipped.
        """
        now = now or utcnow()
        result = await self.session.execute(
            select(
                FinancialsOutboxEntry.outbox_id,
                FinancialsOutboxEntry.lease_token,
            )
            .where(
                FinancialsOutboxEntry.parked_at.is_(None),
                FinancialsOutboxEntry.next_attempt_at <= now,
                or_(
                    FinancialsOutboxEntry.leased_until.is_(None),
                    FinancialsOutboxEntry.leased_until < now,
                ),
            )
            .order_by(FinancialsOutboxEntry.next_attempt_at, FinancialsOutboxEntry.created_at)
            .limit(limit)
        )
        candidates = result.all()

        leased: list[LeasedEntry] = []
        lease_until = now + timedelta(seconds=self.lease_seconds)
        for outbox_id, previous_token in candidates:
            token = uuid4()
            token_matches = (
                FinancialsOutboxEntry.lease_token.is_(None)
                if previous_token is None
                else FinancialsOutboxEntry.lease_token == previous_token
            )
            claim = await self.session.execute(
                update(FinancialsOutboxEntry)
                .where(
                    FinancialsOutboxEntry.outbox_id == outbox_id,
                    token_matches,
                    FinancialsOutboxEntry.parked_at.is_(None),
                    or_(
                        FinancialsOutboxEntry.leased_until.is_(None),
                        FinancialsOutboxEntry.leased_until < now,
                    ),
                )
                .values(lease_token=token, leased_until=lease_until)
            )
            if claim.rowcount != 1:
                logger.debug("outbox entry %s leased elsewhere, skipping", outbox_id)
                continue

            row = (
                await self.session.execute(
                    select(
                        FinancialsOutboxEntry.timesheet_id,
                        FinancialsOutboxEntry.reason,
                        FinancialsOutboxEntry.attempt_count,
                        FinancialsOutboxEntry.generation,
                    ).where(FinancialsOutboxEntry.outbox_id == outbox_id)
                )
            ).one()
            leased.append(
                LeasedEntry(
                    outbox_id=outbox_id,
                    timesheet_id=row.timesheet_id,
                    reason=row.reason,
                    attempt_count=row.attempt_count,
                    lease_token=token,
                    generation=row.generation,
                )
            )
        return leased

    # ------------------------------------------------------------------
    # Acknowledge
    # ------------------------------------------------------------------

    async def ack_success(self, entry: LeasedEntry) -> bool:
        """Delete a processed entry.

        If it was re-enqueued while we held the lease, the newer request is
        kept and only the lease is released. Returns True if deleted.
        """
        result = await self.session.execute(
            delete(FinancialsOutboxEntry).where(
                FinancialsOutboxEntry.outbox_id == entry.outbox_id,
                FinancialsOutboxEntry.lease_token == entry.lease_token,
                FinancialsOutboxEntry.generation == entry.generation,
            )
        )
        if result.rowcount == 1:
            return True

        await self._release(entry)
        logger.info(
            "outbox entry %s re-enqueued during processing; kept for another pass",
            entry.outbox_id,
        )
        return False

    async def ack_failure(self, entry: LeasedEntry, error: str) -> datetime | None:
        """Record a failed attempt and schedule the retry. Returns the next
        attempt time, or None if the lease was lost."""
        attempts = entry.attempt_count + 1
        next_attempt = utcnow() + backoff_delay(
            attempts, self.backoff_base_seconds, self.backoff_max_seconds
        )
        result = await self.session.execute(
            update(FinancialsOutboxEntry)
            .where(
                FinancialsOutboxEntry.outbox_id == entry.outbox_id,
                FinancialsOutboxEntry.lease_token == entry.lease_token,
            )
            .values(
                attempt_count=FinancialsOutboxEntry.attempt_count + 1,
                last_error=error[:MAX_ERROR_LENGTH],
                next_attempt_at=next_attempt,
                lease_token=None,
                leased_until=None,
            )
        )
        if result.rowcount != 1:
            logger.warning("lost lease on outbox entry %s before failure ack", entry.outbox_id)
            return None
        return next_attempt

    async def park(self, entry: LeasedEntry, error: str) -> bool:
        """Stop retrying an entry that cannot succeed as-is. A later enqueue
        for the same (timesheet, reason) revives it."""
        result = await self.session.execute(
            update(FinancialsOutboxEntry)
            .where(
                FinancialsOutboxEntry.outbox_id == entry.outbox_id,
                FinancialsOutboxEntry.lease_token == entry.lease_token,
            )
            .values(
                attempt_count=FinancialsOutboxEntry.attempt_count + 1,
                last_error=error[:MAX_ERROR_LENGTH],
                parked_at=utcnow(),
                lease_token=None,
                leased_until=None,
            )
        )
        return result.rowcount == 1

    async def _release(self, entry: LeasedEntry) -> None:
        await self.session.execute(
            update(FinancialsOutboxEntry)
            .where(
                FinancialsOutboxEntry.outbox_id == entry.outbox_id,
                FinancialsOutboxEntry.lease_token == entry.lease_token,
            )
            .values(lease_token=None, leased_until=None)
        )

    async def pending_count(self) -> int:
        """Entries still due to run, leased or not."""
        result = await self.session.execute(
            select(func.count())
            .select_from(FinancialsOutboxEntry)
            .where(FinancialsOutboxEntry.parked_at.is_(None))
        )
        return result.scalar_one()

    async def parked_count(self) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(FinancialsOutboxEntry)
            .where(FinancialsOutboxEntry.parked_at.is_not(None))
        )
        return result.scalar_one()
