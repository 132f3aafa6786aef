"""Financials engine services."""

from tms_financials.services.state_machine import ProcessingStatusMachine, ProcessingStatus
from tms_financials.services.outbox import FinancialsOutbox, LeasedEntry
from tms_financials.services.snapshot_writer import SnapshotWriter, SnapshotLockedError, SnapshotConflictError
from tms_financials.services.financials_engine import FinancialsEngine, RecomputeResult
from tms_financials.services.worker import OutboxWorker, DrainResult, EntryError
from tms_financials.services.promotion_service import PromotionService, PromotionResult
from tms_financials.services.invoice_service import InvoiceService, InvoiceRejectedError, InvoiceNotFoundError
from tms_financials.services.credit_note_service import CreditNoteService, CreditNoteRejectedError
from tms_financials.services.timesheet_service import (
    TimesheetService,
    TimesheetConflictError,
    TimesheetNotFoundError,
)

__all__ = [
    "ProcessingStatusMachine",
    "ProcessingStatus",
    "FinancialsOutbox",
    "LeasedEntry",
    "SnapshotWriter",
    "SnapshotLockedError",
    "SnapshotConflictError",
    "FinancialsEngine",
    "RecomputeResult",
    "OutboxWorker",
    "DrainResult",
    "EntryError",
    "PromotionService",
    "PromotionResult",
    "InvoiceService",
    "InvoiceRejectedError",
    "InvoiceNotFoundError",
    "CreditNoteService",
    "CreditNoteRejectedError",
    "TimesheetService",
    "TimesheetConflictError",
    "TimesheetNotFoundError",
]
