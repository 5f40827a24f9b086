from decimal import Decimal

import pytest

from exceptions import FormatError, ValidationError
from money import Money


def test_parse_keeps_full_precision():
    assert Money.parse("10.239").value == Decimal("10.239")
    assert Money.parse(" 5 ").to_string() == "5"


@pytest.mark.parametrize("raw", ["", "   ", "abc", "1,50", "NaN", "Infinity", None])
def test_parse_rejects_malformed_input(raw):
    with pytest.raises(FormatError):
        Money.parse(raw)


def test_format_error_is_a_validation_error():
    with pytest.raises(ValidationError):
        Money.parse("twelve")


def test_truncate_drops_digits_toward_zero():
    assert Money("10.239").truncate().to_string() == "10.23"
    assert Money("-1.239").truncate().to_string() == "-1.23"
    assert Money("7").truncate().to_string() == "7.00"


def test_truncate_never_yields_negative_zero():
    assert Money("-0.001").truncate().to_string() == "0.00"


def test_arithmetic_is_exact():
    total = Money("0.1") + Money("0.2")
    assert total == Money("0.3")
    assert (Money("100.00") - Money("30.00")).to_string() == "70.00"
    assert -Money("5.5") == Money("-5.5")


def test_signed_follows_direction():
    assert Money("12").signed(True) == Money("12")
    assert Money("12").signed(False) == Money("-12")


def test_compare_and_ordering():
    assert Money("1.00").compare(Money("1")) == 0
    assert Money("1.01").compare(Money("1")) == 1
    assert Money("0.99").compare(Money("1")) == -1
    assert Money("100.001") > Money("100.00")
    assert sorted([Money("3"), Money("-1"), Money("2")]) == [
        Money("-1"),
        Money("2"),
        Money("3"),
    ]


def test_floats_are_refused():
    with pytest.raises(TypeError):
        Money(0.1)


def test_zero_and_negative_checks():
    assert Money("0.00").is_zero()
    assert Money("-0.01").is_negative()
    assert not Money("0").is_negative()
