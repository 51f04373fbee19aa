"""Unit tests for fixed-point helpers"""

import pytest
from decimal import Decimal
from loan_risk_gateway.domain.exceptions import ValidationError
from loan_risk_gateway.domain.numeric import (
    bps_to_percent,
    clamp,
    from_base_units,
    percent_to_bps,
    ratio_to_bps,
    round_amount,
    round_percent,
    round_to,
    to_base_units,
    to_decimal,
)


def test_float_keeps_its_shortest_representation():
    """Test 0.65 becomes Decimal('0.65'), not the binary expansion"""
    assert to_decimal(0.65) == Decimal("0.65")


def test_to_decimal_accepts_ints_and_strings():
    assert to_decimal(3) == Decimal(3)
    assert to_decimal("1.25") == Decimal("1.25")


@pytest.mark.parametrize("value", [True, "abc", float("nan"), float("inf"), None])
def test_to_decimal_rejects_non_numbers(value):
    """Test booleans, garbage and non-finite values are rejected"""
    with pytest.raises(ValidationError):
        to_decimal(value, "amount")


def test_round_percent_is_half_up():
    assert round_percent(Decimal("11.135")) == Decimal("11.14")
    assert round_percent(Decimal("11.125")) == Decimal("11.13")
    assert round_percent(Decimal("11.1349")) == Decimal("11.13")


def test_percent_and_bps_conversion():
    assert percent_to_bps(Decimal("11.14")) == 1114
    assert bps_to_percent(1114) == Decimal("11.14")
    assert ratio_to_bps(Decimal("1.5")) == 15000


def test_base_units_conversion():
    """Test token amounts map to 18-decimal integer units and back"""
    assert to_base_units(Decimal("1.5")) == 1_500_000_000_000_000_000
    assert to_base_units(Decimal("0.000000000000000001")) == 1
    assert from_base_units(10**18) == Decimal(1)
    assert to_base_units(Decimal("2.5"), decimals=6) == 2_500_000


def test_round_amount_keeps_eighteen_places():
    value = Decimal("1.0000000000000000004")
    assert round_amount(value) == Decimal("1.000000000000000000")


def test_round_to_rejects_values_beyond_precision():
    with pytest.raises(ValidationError, match="too large"):
        round_amount(Decimal("1e45"))
    assert round_to(Decimal("1e40"), 4) == Decimal("1e40")


def test_clamp():
    assert clamp(Decimal("1"), Decimal("2"), Decimal("50")) == Decimal("2")
    assert clamp(Decimal("60"), Decimal("2"), Decimal("50")) == Decimal("50")
    assert clamp(Decimal("10"), Decimal("2"), Decimal("50")) == Decimal("10")
