"""Fixed-point decimal helpers shared by the pricing, collateral and repayment engines.

All money and ratio values are `Decimal`. Computation runs under
`FINANCIAL_CONTEXT` (60 significant digits) so 18-decimal token amounts never
lose precision; values are rounded once, half-up, when they are reported.
"""

from decimal import ROUND_HALF_UP, Context, Decimal, InvalidOperation
from typing import Union

from loan_risk_gateway.domain.exceptions import ValidationError

Number = Union[Decimal, int, str, float]

FINANCIAL_CONTEXT = Context(prec=60, rounding=ROUND_HALF_UP)

PERCENT_PLACES = 2
TOKEN_DECIMALS = 18
BPS_PER_PERCENT = Decimal(100)
BPS_PER_UNIT = Decimal(10_000)

ZERO = Decimal(0)
ONE = Decimal(1)


def to_decimal(value: Number, field: str = "value") -> Decimal:
    """Convert a number to Decimal; floats go through repr so 0.65 stays 0.65"""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be numeric, got bool")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation:
            raise ValidationError(f"{field} is not a number: {value!r}") from None
    else:
        raise ValidationError(f"{field} must be numeric, got {type(value).__name__}")

    if not result.is_finite():
        raise ValidationError(f"{field} must be finite, got {value!r}")
    return result


def quantum(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def round_to(value: Decimal, places: int) -> Decimal:
    """
    Round half-up to `places` decimals.

    Raises:
        ValidationError: the rounded value would need more than the
            context's 60 significant digits
    """
    try:
        return value.quantize(quantum(places), rounding=ROUND_HALF_UP, context=FINANCIAL_CONTEXT)
    except InvalidOperation:
        raise ValidationError(
            f"{value} is too large to represent with {places} decimal places "
            f"(limit {FINANCIAL_CONTEXT.prec} significant digits)"
        ) from None


def round_percent(value: Decimal) -> Decimal:
    """Round a percentage to the 2-place reporting precision"""
    return round_to(value, PERCENT_PLACES)


def round_amount(value: Decimal, decimals: int = TOKEN_DECIMALS) -> Decimal:
    """Round a token amount to its native scale"""
    return round_to(value, decimals)


def percent_to_bps(percent: Decimal) -> int:
    """11.14 -> 1114"""
    return int(round_to(percent * BPS_PER_PERCENT, 0))


def bps_to_percent(bps: int) -> Decimal:
    return Decimal(bps) / BPS_PER_PERCENT


def ratio_to_bps(ratio: Decimal) -> int:
    """1.5 -> 15000"""
    return int(round_to(ratio * BPS_PER_UNIT, 0))


def to_base_units(amount: Decimal, decimals: int = TOKEN_DECIMALS) -> int:
    """Token amount -> integer on-chain units (wei-style)"""
    return int(round_to(amount.scaleb(decimals, context=FINANCIAL_CONTEXT), 0))


def from_base_units(units: int, decimals: int = TOKEN_DECIMALS) -> Decimal:
    return Decimal(units).scaleb(-decimals, context=FINANCIAL_CONTEXT)


def clamp(value: Decimal, lower: Decimal, upper: Decimal) -> Decimal:
    return max(lower, min(upper, value))
