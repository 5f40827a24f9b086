from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from functools import total_ordering
from typing import Optional, Union

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

from exceptions import FormatError


STORED_PLACES = 2
_PRECISION = 60


@total_ordering
class Money:
    """Fixed-point amount backed by ``Decimal``.

    Arithmetic is exact; rounding only happens through ``truncate``, which
    drops digits toward zero. Floats are refused so binary rounding noise can
    never leak into a balance.
    """

    __slots__ = ("_value",)

    def __init__(self, value: Union["Money", Decimal, int, str] = 0) -> None:
        if isinstance(value, Money):
            value = value._value
        elif isinstance(value, float):
            raise TypeError("Money does not accept float values")
        elif isinstance(value, str):
            value = Money.parse(value)._value
        elif not isinstance(value, Decimal):
            value = Decimal(value)
        self._value = value

    @classmethod
    def parse(cls, raw: Optional[str]) -> "Money":
        if raw is None:
            raise FormatError("Missing amount")
        text = str(raw).strip()
        if not text:
            raise FormatError("Missing amount")
        try:
            value = Decimal(text)
        except InvalidOperation as exc:
            raise FormatError(f"Invalid amount: {raw!r}") from exc
        if not value.is_finite():
            raise FormatError(f"Invalid amount: {raw!r}")
        money = cls.__new__(cls)
        money._value = value
        return money

    @property
    def value(self) -> Decimal:
        return self._value

    def add(self, other: "Money") -> "Money":
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return Money(self._value + Money(other)._value)

    def subtract(self, other: "Money") -> "Money":
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            return Money(self._value - Money(other)._value)

    def negate(self) -> "Money":
        return Money(-self._value)

    def compare(self, other: "Money") -> int:
        return int(self._value.compare(Money(other)._value))

    def truncate(self, places: int = STORED_PLACES) -> "Money":
        with localcontext() as ctx:
            ctx.prec = _PRECISION
            value = self._value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
        if value.is_zero():
            value = value.copy_abs()
        return Money(value)

    def signed(self, is_income: bool) -> "Money":
        """The delta this amount contributes to a balance."""
        return self if is_income else self.negate()

    def is_zero(self) -> bool:
        return self._value.is_zero()

    def is_negative(self) -> bool:
        return self._value < 0

    def to_string(self) -> str:
        return str(self._value)

    def __add__(self, other: "Money") -> "Money":
        return self.add(other)

    def __sub__(self, other: "Money") -> "Money":
        return self.subtract(other)

    def __neg__(self) -> "Money":
        return self.negate()

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Money):
            return self._value == other._value
        if isinstance(other, (Decimal, int)):
            return self._value == other
        return NotImplemented

    def __lt__(self, other: "Money") -> bool:
        if isinstance(other, (Decimal, int)):
            other = Money(other)
        if not isinstance(other, Money):
            return NotImplemented
        return self._value < other._value

    def __hash__(self) -> int:
        return hash(self._value)

    def __str__(self) -> str:
        return self.to_string()

    def __repr__(self) -> str:
        return f"Money('{self._value}')"


ZERO = Money(0)


class MoneyType(TypeDecorator):
    """Stores ``Money`` as its canonical decimal string."""

    impl = String(40)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return Money(value).to_string()

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Money.parse(value)
