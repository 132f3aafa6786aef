"""Bank-transfer destination resolution for a candidate's pay."""

from __future__ import annotations

from dataclasses import dataclass, field

from tms_financials.calculators.types import PayMethod


@dataclass(frozen=True)
class BankDetails:
    """Bank fields as read from a candidate or umbrella record."""

    account_holder: str | None = None
    bank_name: str | None = None
    sort_code: str | None = None
    account_number: str | None = None


@dataclass(frozen=True)
class PayChannel:
    """Where pay goes, and which required fields are missing."""

    account_holder: str | None
    bank_name: str | None
    sort_code: str | None
    account_number: str | None
    ok: bool
    missing: list[str] = field(default_factory=list)


def _blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def resolve_pay_channel(
    pay_method: str | None,
    candidate_bank: BankDetails,
    umbrella_bank: BankDetails | None = None,
    *,
    has_umbrella_link: bool | None = None,
) -> PayChannel:
    """Resolve the pay destination.

    PAYE pays the candidate's own account; UMBRELLA pays the linked umbrella
    company. Any other pay method cannot be resolved.
    """
    if pay_method == PayMethod.PAYE.value:
        missing = [
            name
            for name in ("sort_code", "account_number")
            if _blank(getattr(candidate_bank, name))
        ]
        return PayChannel(
            account_holder=candidate_bank.account_holder,
            bank_name=candidate_bank.bank_name,
            sort_code=candidate_bank.sort_code,
            account_number=candidate_bank.account_number,
            ok=not missing,
            missing=missing,
        )

    if pay_method == PayMethod.UMBRELLA.value:
        linked = umbrella_bank is not None if has_umbrella_link is None else has_umbrella_link
        if not linked or umbrella_bank is None:
            return PayChannel(None, None, None, None, ok=False, missing=["umbrella_id"])
        missing = [
            f"umbrella.{name}"
            for name in ("sort_code", "account_number")
            if _blank(getattr(umbrella_bank, name))
        ]
        return PayChannel(
            account_holder=umbrella_bank.account_holder,
            bank_name=umbrella_bank.bank_name,
            sort_code=umbrella_bank.sort_code,
            account_number=umbrella_bank.account_number,
            ok=not missing,
            missing=missing,
        )

    return PayChannel(None, None, None, None, ok=False, missing=["pay_method"])
