"""Snapshot processing_status state machine."""

from __future__ import annotations

from enum import Enum


class ProcessingStatus(str, Enum):
    """processing_status values, in resolution order."""

    UNASSIGNED = "UNASSIGNED"
    CLIENT_UNRESOLVED = "CLIENT_UNRESOLVED"
    RATE_MISSING = "RATE_MISSING"
    PAY_CHANNEL_MISSING = "PAY_CHANNEL_MISSING"
    READY_FOR_HR = "READY_FOR_HR"
    READY_FOR_INVOICE = "READY_FOR_INVOICE"


class ProcessingStatusMachine:
    """Derives and guards processing_status.

    Recompute derives the status from scratch every time:
    - UNASSIGNED if no candidate resolves from the occupant key
    - CLIENT_UNRESOLVED if no client resolves from the hospital
    - RATE_MISSING if a bucket with hours lacks a pay or charge rate
    - PAY_CHANNEL_MISSING if UMBRELLA without an umbrella link
    - READY_FOR_HR otherwise

    READY_FOR_INVOICE is only reached by explicit promotion from READY_FOR_HR.
    """

    # Statuses recompute may produce
    DERIVABLE = {
        ProcessingStatus.UNASSIGNED,
        ProcessingStatus.CLIENT_UNRESOLVED,
        ProcessingStatus.RATE_MISSING,
        ProcessingStatus.PAY_CHANNEL_MISSING,
        ProcessingStatus.READY_FOR_HR,
    }

    # Explicit (non-recompute) transitions
    EXPLICIT_TRANSITIONS: dict[str, list[str]] = {
        ProcessingStatus.READY_FOR_HR: [ProcessingStatus.READY_FOR_INVOICE],
    }

    @classmethod
    def derive(
        cls,
        *,
        has_candidate: bool,
        has_client: bool,
        missing_rates: bool,
        pay_method: str | None,
        has_umbrella_link: bool,
    ) -> ProcessingStatus:
        """Evaluate the status rules in order; the first failing check wins."""
        if not has_candidate:
            return ProcessingStatus.UNASSIGNED
        if not has_client:
            return ProcessingStatus.CLIENT_UNRESOLVED
        if missing_rates:
            return ProcessingStatus.RATE_MISSING
        if pay_method == "UMBRELLA" and not has_umbrella_link:
            return ProcessingStatus.PAY_CHANNEL_MISSING
        return ProcessingStatus.READY_FOR_HR

    @classmethod
    def can_promote(cls, status: str) -> bool:
        return ProcessingStatus.READY_FOR_INVOICE in cls.EXPLICIT_TRANSITIONS.get(status, [])

    @classmethod
    def is_invoiceable(cls, status: str) -> bool:
        return status == ProcessingStatus.READY_FOR_INVOICE
