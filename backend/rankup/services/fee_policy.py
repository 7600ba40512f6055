"""
Platform commission policy.

    app_fee = round(price * 0.15, 2)
    payout  = price - app_fee

Amounts are Decimal and rounded half-up, so 45 -> 6.75 / 38.25 and
55 -> 8.25 exactly, with no binary float drift. Gateway amounts are
expressed in minor units (cents).
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import NamedTuple, Optional, Union

from rankup.core.config import get_settings

CENT = Decimal("0.01")
Number = Union[Decimal, int, float, str]


class FeeBreakdown(NamedTuple):
    app_fee: Decimal
    payout: Decimal


def _as_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 45.1 as 45.1 rather than its binary expansion
    return Decimal(str(value))


def fee_rate() -> Decimal:
    return get_settings().PLATFORM_FEE_RATE


def compute_fee(price: Number, rate: Optional[Decimal] = None) -> FeeBreakdown:
    """Split a session price into platform commission and mentor payout."""
    amount = _as_decimal(price)
    if amount <= 0:
        raise ValueError("price must be positive")

    app_fee = (amount * (rate if rate is not None else fee_rate())).quantize(CENT, rounding=ROUND_HALF_UP)
    return FeeBreakdown(app_fee=app_fee, payout=amount - app_fee)


def to_minor_units(amount: Number) -> int:
    """Major currency units to gateway minor units: round(amount * 100)."""
    return int((_as_decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def application_fee_minor(amount_minor: int, rate: Optional[Decimal] = None) -> int:
    """Marketplace split taken by the platform, in minor units."""
    fee = Decimal(amount_minor) * (rate if rate is not None else fee_rate())
    return int(fee.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
