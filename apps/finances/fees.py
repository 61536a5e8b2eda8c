"""Payment fee calculation.

Fees are rounded to ``settings.FEE_ROUNDING_QUANTUM`` (whole currency
units by default) with ROUND_HALF_UP. Every code path that computes a
fee goes through :func:`compute_fee`, so the same inputs always give
the same totals.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from django.conf import settings  # type: ignore

from shared.domain.exceptions import ValidationError

PERCENTAGE = "percentage"
FIXED = "fixed"


@dataclass(frozen=True)
class FeePolicy:
    """``{type: fixed | percentage, value}``."""

    type: str
    value: Decimal

    def __post_init__(self):
        if self.type not in (PERCENTAGE, FIXED):
            raise ValidationError(f"Unknown fee type: {self.type}")
        value = Decimal(str(self.value))
        if value < 0:
            raise ValidationError("Fee value cannot be negative")
        object.__setattr__(self, "value", value)

    @classmethod
    def fixed(cls, value) -> "FeePolicy":
        return cls(FIXED, value)

    @classmethod
    def percentage(cls, value) -> "FeePolicy":
        return cls(PERCENTAGE, value)

    @classmethod
    def none(cls) -> "FeePolicy":
        return cls(FIXED, Decimal("0"))


@dataclass(frozen=True)
class FeeBreakdown:
    fee_amount: Decimal
    total_amount: Decimal
    net_amount: Decimal


def _rounding_quantum() -> Decimal:
    return Decimal(str(getattr(settings, "FEE_ROUNDING_QUANTUM", "1")))


def round_amount(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(_rounding_quantum(), rounding=ROUND_HALF_UP)


def compute_fee(base_amount, fee_policy: FeePolicy, customer_pays_fees: bool) -> FeeBreakdown:
    """
    Compute fee, amount payable and studio net for ``base_amount``.

    Args:
        base_amount: Price before fees
        fee_policy: Fixed amount or percentage of ``base_amount``
        customer_pays_fees: True adds the fee on top of the base amount;
            False keeps the base amount and the studio absorbs the fee

    Returns:
        FeeBreakdown: ``net_amount`` is always ``base_amount - fee_amount``
    """
    base = Decimal(str(base_amount))
    if base < 0:
        raise ValidationError("Base amount cannot be negative")

    if fee_policy.type == FIXED:
        fee = round_amount(fee_policy.value)
    else:
        fee = round_amount(base * fee_policy.value / Decimal("100"))

    total = base + fee if customer_pays_fees else base
    return FeeBreakdown(fee_amount=fee, total_amount=total, net_amount=base - fee)


def format_fee_for_display(fee_policy: FeePolicy) -> str:
    """Human readable fee: ``"2.50%"`` or ``"Rp 4,000"``."""
    if fee_policy.type == FIXED:
        symbol = getattr(settings, "CURRENCY_SYMBOL", "Rp")
        return f"{symbol} {fee_policy.value:,.0f}"
    decimals = int(getattr(settings, "FEE_PERCENTAGE_DECIMALS", 2))
    return f"{fee_policy.value:.{decimals}f}%"


class PaymentMethodFeePolicies:
    """Fee-policy source backed by :class:`PaymentMethod` rows."""

    def policy_for(self, method_code: str | None) -> FeePolicy:
        from .models import PaymentMethod  # Local import keeps this module importable without the app registry

        if not method_code:
            return FeePolicy.none()
        method = PaymentMethod.objects.filter(code=method_code, is_active=True).first()
        if method is None:
            return FeePolicy.none()
        if method.fee_type == PaymentMethod.FeeType.FIXED:
            return FeePolicy.fixed(method.fee_amount)
        return FeePolicy.percentage(method.fee_percentage)
