"""Financial calculation primitives."""

from tms_financials.calculators.pay_channel import BankDetails, PayChannel, resolve_pay_channel
from tms_financials.calculators.policy_resolver import PolicyResolver
from tms_financials.calculators.rate_resolver import EffectiveRates, RateResolution, RateResolver
from tms_financials.calculators.time_classifier import classify, classify_shift

__all__ = [
    "BankDetails",
    "PayChannel",
    "resolve_pay_channel",
    "PolicyResolver",
    "EffectiveRates",
    "RateResolution",
    "RateResolver",
    "classify",
    "classify_shift",
]
