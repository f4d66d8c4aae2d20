from decimal import Decimal
import pytest
from core.money import Money, money_sum

def test_from_decimal_string_rounds_half_away_from_zero():
    assert Money.from_decimal_string("15.994").cents == 1599
    assert Money.from_decimal_string("15.995").cents == 1600
    assert Money.from_decimal_string("0.995").cents == 100
    assert Money.from_decimal_string("-0.995").cents == -100
    assert Money.from_decimal_string("1234.5").cents == 123450

def test_add_then_subtract_is_identity():
    a = Money.from_cents(12345)
    for b in (Money.zero(), Money.from_cents(1), Money.from_cents(-999), Money.from_cents(10**12)):
        assert a.add(b).subtract(b) == a

def test_operations_do_not_mutate():
    a = Money.from_cents(100)
    b = a.add(Money.from_cents(50))
    assert a.cents == 100
    assert b.cents == 150
    with pytest.raises(Exception):
        a.cents = 5

def test_multiply_rounds_half_away_from_zero():
    assert Money.from_cents(15000).multiply(10).cents == 150000
    assert Money.from_cents(5).multiply(Decimal("0.5")).cents == 3
    assert Money.from_cents(-5).multiply(Decimal("0.5")).cents == -3
    assert Money.from_cents(100).multiply(0.2).cents == 20

def test_divide():
    assert Money.from_cents(1000).divide(3).cents == 333
    assert Money.from_cents(1001).divide(2).cents == 501
    assert Money.from_cents(-1001).divide(2).cents == -501

def test_divide_by_zero_raises():
    with pytest.raises(ValueError):
        Money.from_cents(100).divide(0)

def test_non_integer_cents_rejected():
    with pytest.raises(TypeError):
        Money(1.5)
    with pytest.raises(TypeError):
        Money(True)

def test_predicates_and_ordering():
    a, b = Money.from_cents(100), Money.from_cents(200)
    assert a.less_than(b) and b.greater_than(a)
    assert a.less_than_or_equal(a) and a.greater_than_or_equal(a)
    assert a < b and sorted([b, a]) == [a, b]
    assert Money.zero().is_zero()
    assert Money.from_cents(-1).is_negative()
    assert Money.from_cents(1).is_positive()
    assert a.negate().cents == -100
    assert a.equals(Money.from_cents(100))

def test_formatting():
    m = Money.from_cents(123456)
    assert m.to_decimal_string() == "1234.56"
    assert str(Money.from_cents(5)) == "0.05"
    assert Money.from_cents(-5).to_decimal_string() == "-0.05"
    assert m.format() == "1 234,56 €"
    assert m.format("en_US") == "1,234.56 €"
    assert m.format("xx_XX") == "1 234,56 €"

def test_money_sum():
    assert money_sum([]) == Money.zero()
    assert money_sum(Money.from_cents(c) for c in (1, 2, 3)).cents == 6
