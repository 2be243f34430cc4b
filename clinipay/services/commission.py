"""
Commission math for appointment payments.

Pure functions only. Money is handled as ``Decimal`` in major units and
truncated to the provider's minor unit (cents); the doctor payout is derived
by subtraction so commission and payout always sum back to the price.
"""

from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

from ..core.exceptions import ValidationException

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class CommissionBreakdown:
    """Split of an appointment price between platform and doctor."""

    appointment_price: Decimal
    commission_percentage: Decimal
    commission_amount: Decimal
    payout_amount: Decimal


def to_decimal(value: Number, field: str = "amount") -> Decimal:
    """Coerce user or database numbers to ``Decimal`` without float artifacts."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationException(f"Invalid {field}: {value!r}", code="INVALID_AMOUNT") from exc
    if not result.is_finite():
        raise ValidationException(f"Invalid {field}: {value!r}", code="INVALID_AMOUNT")
    return result


def quantize_money(amount: Number) -> Decimal:
    """Round a money value to cents (half-up), for amounts entered by people."""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def truncate_to_cent(amount: Number) -> Decimal:
    """Drop fractions of a cent."""
    return to_decimal(amount).quantize(CENT, rounding=ROUND_DOWN)


def to_minor_units(amount: Number) -> int:
    """Convert a major-unit amount to integer cents for the Stripe API."""
    return int((quantize_money(amount) * HUNDRED).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(cents: int) -> Decimal:
    return (Decimal(int(cents)) / HUNDRED).quantize(CENT)


def calculate_commission(price: Number, percentage: Number) -> CommissionBreakdown:
    """
    Split ``price`` into platform commission and doctor payout.

    ``commission = truncate(price * percentage / 100)`` and
    ``payout = price - commission``.

    Raises:
        ValidationException: negative price, or percentage outside 0-100
    """
    price_dec = quantize_money(price)
    pct_dec = to_decimal(percentage, field="percentage")

    if price_dec < 0:
        raise ValidationException(
            "Appointment price cannot be negative",
            code="INVALID_PRICE",
            details={"price": str(price_dec)},
        )
    if pct_dec < 0 or pct_dec > HUNDRED:
        raise ValidationException(
            "Commission percentage must be between 0 and 100",
            code="INVALID_COMMISSION_PERCENTAGE",
            details={"percentage": str(pct_dec)},
        )

    commission = truncate_to_cent(price_dec * pct_dec / HUNDRED)
    return CommissionBreakdown(
        appointment_price=price_dec,
        commission_percentage=pct_dec,
        commission_amount=commission,
        payout_amount=price_dec - commission,
    )
