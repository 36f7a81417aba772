"""Exact conversions between human-readable amounts and smallest units."""

from decimal import Decimal, localcontext
from typing import Union

# Enough digits for any uint256 value plus 18 fractional digits
_PRECISION = 100


def to_smallest_unit(amount: Union[str, int, Decimal], decimals: int) -> int:
    """
    Convert a human-readable amount to an integer of smallest units.

    Args:
        amount: Amount in token units, e.g. "100.5"
        decimals: Token decimals

    Returns:
        The amount times 10**decimals

    Raises:
        ValueError: If the amount has more fractional digits than the token supports
    """
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        value = Decimal(str(amount)).scaleb(decimals)
        if value != value.to_integral_value():
            raise ValueError(f"Amount {amount} has more than {decimals} decimal places")
        return int(value)


def from_smallest_unit(units: int, decimals: int) -> Decimal:
    """Convert smallest units back to a Decimal in token units."""
    with localcontext() as ctx:
        ctx.prec = _PRECISION
        return Decimal(int(units)).scaleb(-decimals)


def format_amount(value: Decimal) -> str:
    """Render a Decimal without exponent notation or trailing fractional zeros."""
    text = f"{value:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_native(wei: int) -> str:
    """Format a wei amount in whole native-currency units."""
    return format_amount(from_smallest_unit(wei, 18))
