"""
Tests for amount conversions.
"""

from decimal import Decimal

import pytest

from evm_toolkit.chain.units import format_amount, format_native, from_smallest_unit, to_smallest_unit


@pytest.mark.parametrize("amount, decimals, expected", [
    ("1", 18, 10 ** 18),
    ("100.5", 6, 100_500_000),
    ("0.000001", 6, 1),
    ("0.1", 18, 10 ** 17),
    ("123456789012345678901234567890.123456789012345678", 18,
     123456789012345678901234567890123456789012345678),
    (Decimal("2.50"), 2, 250),
    (7, 0, 7),
])
def test_to_smallest_unit_is_exact(amount, decimals, expected):
    assert to_smallest_unit(amount, decimals) == expected


def test_too_many_decimals_is_rejected():
    with pytest.raises(ValueError, match="decimal places"):
        to_smallest_unit("1.0000001", 6)


def test_from_smallest_unit_and_formatting():
    assert from_smallest_unit(100_500_000, 6) == Decimal("100.5")
    assert format_amount(from_smallest_unit(100_500_000, 6)) == "100.5"
    assert format_amount(Decimal("1E+3")) == "1000"
    assert format_native(21000 * 30 * 10 ** 9) == "0.00063"
