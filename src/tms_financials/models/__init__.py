"""ORM models."""

from tms_financials.models.base import Base, TimestampMixin, utcnow
from tms_financials.models.directory import Candidate, Client, ClientHospital, Umbrella
from tms_financials.models.financials import (
    OUTBOX_REASONS,
    PROCESSING_STATUSES,
    FinancialsOutboxEntry,
    TimesheetFinancial,
)
from tms_financials.models.invoice import Invoice, InvoiceLine
from tms_financials.models.rates import (
    CandidateRate,
    ClientDefaultRate,
    ClientSettings,
    SettingsDefaults,
)
from tms_financials.models.timesheet import Timesheet, TimesheetValidation

__all__ = [
    "Base",
    "TimestampMixin",
    "utcnow",
    "Candidate",
    "Client",
    "ClientHospital",
    "Umbrella",
    "OUTBOX_REASONS",
    "PROCESSING_STATUSES",
    "FinancialsOutboxEntry",
    "TimesheetFinancial",
    "Invoice",
    "InvoiceLine",
    "CandidateRate",
    "ClientDefaultRate",
    "ClientSettings",
    "SettingsDefaults",
    "Timesheet",
    "TimesheetValidation",
]
