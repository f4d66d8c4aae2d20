# core/money.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Union

Multiplier = Union[int, float, Decimal]

_UNIT = Decimal("1")
_CENT = Decimal("0.01")


def _to_decimal(value: Multiplier) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # repr() is the shortest round-tripping literal: 0.2 -> Decimal("0.2")
        return Decimal(repr(value))
    return Decimal(value)


def _round_cents(value: Decimal) -> int:
    # ROUND_HALF_UP in decimal rounds half away from zero for negatives too
    return int(value.quantize(_UNIT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True, order=True)
class Money:
    """
    Immutable amount in integer minor units (cents).
    Every operation returns a new Money; negative amounts are valid (credit notes, refunds).
    """

    cents: int = 0

    def __post_init__(self):
        if isinstance(self.cents, bool) or not isinstance(self.cents, int):
            raise TypeError(f"Money amount must be an int of cents, got {type(self.cents).__name__}")

    # --- Factories ---

    @classmethod
    def from_cents(cls, cents: int) -> "Money":
        return cls(int(cents))

    @classmethod
    def from_decimal_string(cls, amount: str) -> "Money":
        """
        "15.994" -> 1599, "15.995" -> 1600, "-0.995" -> -100.
        """
        return cls(_round_cents(Decimal(str(amount).strip()) * 100))

    @classmethod
    def zero(cls) -> "Money":
        return cls(0)

    # --- Arithmetic ---

    def add(self, other: "Money") -> "Money":
        return Money(self.cents + other.cents)

    def subtract(self, other: "Money") -> "Money":
        return Money(self.cents - other.cents)

    def multiply(self, multiplier: Multiplier) -> "Money":
        return Money(_round_cents(Decimal(self.cents) * _to_decimal(multiplier)))

    def divide(self, divisor: int) -> "Money":
        if divisor == 0:
            raise ValueError("Division by zero")
        return Money(_round_cents(Decimal(self.cents) / Decimal(divisor)))

    def negate(self) -> "Money":
        return Money(-self.cents)

    __add__ = add
    __sub__ = subtract
    __neg__ = negate

    # --- Predicates / comparisons ---

    def equals(self, other: "Money") -> bool:
        return self.cents == other.cents

    def is_zero(self) -> bool:
        return self.cents == 0

    def is_positive(self) -> bool:
        return self.cents > 0

    def is_negative(self) -> bool:
        return self.cents < 0

    def greater_than(self, other: "Money") -> bool:
        return self.cents > other.cents

    def less_than(self, other: "Money") -> bool:
        return self.cents < other.cents

    def greater_than_or_equal(self, other: "Money") -> bool:
        return self.cents >= other.cents

    def less_than_or_equal(self, other: "Money") -> bool:
        return self.cents <= other.cents

    # --- Formatting ---

    def to_decimal(self) -> Decimal:
        return Decimal(self.cents).scaleb(-2).quantize(_CENT)

    def to_decimal_string(self) -> str:
        """Plain "1234.56": period separator, two digits, no grouping."""
        return f"{self.to_decimal():.2f}"

    def format(self, locale: str = "fr_FR") -> str:
        grouped = f"{self.to_decimal():,.2f}"
        if locale.startswith("en"):
            return f"{grouped} €"
        # French (default): space grouping, comma decimals
        return grouped.translate(str.maketrans({",": " ", ".": ","})) + " €"

    def __str__(self) -> str:
        return self.to_decimal_string()


def money_sum(amounts) -> Money:
    total = Money.zero()
    for amount in amounts:
        total = total.add(amount)
    return total
