"""Outbox worker loop: lease, recompute, acknowledge."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tms_financials.config import Settings, get_settings
from tms_financials.services.financials_engine import FinancialsEngine
from tms_financials.services.outbox import FinancialsOutbox, LeasedEntry
from tms_financials.services.snapshot_writer import SnapshotLockedError

logger = logging.getLogger(__name__)


@dataclass
class EntryError:
    """Why one outbox entry did not complete."""

    timesheet_id: UUID
    reason: str
    error: str


@dataclass
class DrainResult:
    """Per-cycle summary of processed outbox entries.

    ``failed`` and ``parked`` are keyed by outbox id, since one timesheet can
    have several entries (one per reason) in the same cycle.
    """

    leased: int = 0
    succeeded: list[UUID] = field(default_factory=list)
    failed: dict[UUID, EntryError] = field(default_factory=dict)
    parked: dict[UUID, EntryError] = field(default_factory=dict)

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.failed) + len(self.parked)


class OutboxWorker:
    """Drains the financials outbox.

    Each cycle leases a bounded batch in one short transaction, then
    processes every entry in its own session so a failure never rolls back
    or blocks the rest of the batch.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def _outbox(self, session: AsyncSession) -> FinancialsOutbox:
        return FinancialsOutbox(
            session,
            lease_seconds=self.settings.worker_lease_seconds,
            backoff_base_seconds=self.settings.worker_backoff_base_seconds,
            backoff_max_seconds=self.settings.worker_backoff_max_seconds,
        )

    async def run_once(self, limit: int | None = None) -> DrainResult:
        """Run one lease/process/ack cycle."""
        limit = limit or self.settings.worker_batch_size
        async with self.session_factory() as session:
            async with session.begin():
                leased = await self._outbox(session).lease_batch(limit)

        result = DrainResult(leased=len(leased))
        for entry in leased:
            await self._process(entry, result)

        if leased:
            logger.info(
                "outbox cycle: leased=%d succeeded=%d failed=%d parked=%d",
                result.leased,
                len(result.succeeded),
                len(result.failed),
                len(result.parked),
            )
        return result

    async def _process(self, entry: LeasedEntry, result: DrainResult) -> None:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    engine = FinancialsEngine(
                        session, default_timezone=self.settings.default_timezone
                    )
                    await engine.recompute(entry.timesheet_id)
                    await self._outbox(session).ack_success(entry)
            result.succeeded.append(entry.timesheet_id)
        except SnapshotLockedError as exc:
            logger.warning("parking outbox entry %s: %s", entry.outbox_id, exc)
            await self._record_error(entry, str(exc), result, park=True)
        except Exception as exc:
            logger.exception(
                "recompute failed for timesheet %s (reason=%s, attempt=%d)",
                entry.timesheet_id,
                entry.reason,
                entry.attempt_count + 1,
            )
            await self._record_error(
                entry, str(exc), result, park=False, detail=f"{type(exc).__name__}: {exc}"
            )

    async def _record_error(
        self,
        entry: LeasedEntry,
        error: str,
        result: DrainResult,
        *,
        park: bool,
        detail: str | None = None,
    ) -> None:
        outcome = EntryError(timesheet_id=entry.timesheet_id, reason=entry.reason, error=error)
        try:
            await self._ack(entry, detail or error, park=park)
        except Exception:
            # The lease stays in place and expires, so the entry is retried later
            logger.exception("could not record failure for outbox entry %s", entry.outbox_id)
            result.failed[entry.outbox_id] = outcome
            return
        if park:
            result.parked[entry.outbox_id] = outcome
        else:
            result.failed[entry.outbox_id] = outcome

    async def _ack(self, entry: LeasedEntry, error: str, *, park: bool) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                outbox = self._outbox(session)
                if park:
                    await outbox.park(entry, error)
                else:
                    await outbox.ack_failure(entry, error)

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Poll until ``stop_event`` is set."""
        stop_event = stop_event or asyncio.Event()
        logger.info(
            "outbox worker started (batch=%d, poll=%ss)",
            self.settings.worker_batch_size,
            self.settings.worker_poll_seconds,
        )
        while not stop_event.is_set():
            try:
                result = await self.run_once()
            except Exception:
                logger.exception("outbox cycle failed")
                result = DrainResult()

            # A full batch suggests more work is waiting
            if result.leased >= self.settings.worker_batch_size:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.settings.worker_poll_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("outbox worker stopped")
