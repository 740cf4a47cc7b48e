"""Immutable value types: Money, Percentage, DateRange.

All amounts are Decimal. Money keeps full precision through arithmetic and
is only rounded to 2 places when explicitly quantized for persistence.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


class CurrencyMismatchError(ValueError):
    """Raised when combining Money values of different currencies."""

    def __init__(self, left: str, right: str):
        self.left = left
        self.right = right
        super().__init__(
            f"Cannot perform operation on different currencies: {left} and {right}"
        )


def _to_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, float):
        raise TypeError("Use Decimal or str for monetary values, not float")
    if isinstance(value, Decimal):
        return value
    return Decimal(value)


@dataclass(frozen=True)
class Money:
    """A monetary amount with an ISO 4217 currency code."""

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", _to_decimal(self.amount))
        currency = (self.currency or "").strip().upper()
        if not currency:
            raise ValueError("Currency code is required")
        if len(currency) != 3:
            raise ValueError("Currency code must be 3 characters (ISO 4217)")
        object.__setattr__(self, "currency", currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(Decimal("0"), currency)

    def quantized(self) -> Money:
        """Round half-up to 2 places (the persisted representation)."""
        return Money(self.amount.quantize(CENT, rounding=ROUND_HALF_UP), self.currency)

    def floored(self) -> Money:
        """Round down to 2 places."""
        return Money(self.amount.quantize(CENT, rounding=ROUND_DOWN), self.currency)

    def apply_percentage(self, percentage: Percentage) -> Money:
        return Money(self.amount * percentage.value / HUNDRED, self.currency)

    def is_zero(self) -> bool:
        return self.amount == 0

    def is_positive(self) -> bool:
        return self.amount > 0

    def _check(self, other: Money) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Expected Money, got {type(other).__name__}")
        if self.currency != other.currency:
            raise CurrencyMismatchError(self.currency, other.currency)

    def __add__(self, other: Money) -> Money:
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor: Decimal | int) -> Money:
        return Money(self.amount * _to_decimal(factor), self.currency)

    __rmul__ = __mul__

    def __lt__(self, other: Money) -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        self._check(other)
        return self.amount <= other.amount

    def __gt__(self, other: Money) -> bool:
        self._check(other)
        return self.amount > other.amount

    def __ge__(self, other: Money) -> bool:
        self._check(other)
        return self.amount >= other.amount

    def __str__(self) -> str:
        return f"{self.currency} {self.amount.quantize(CENT, rounding=ROUND_HALF_UP):,}"


@dataclass(frozen=True, order=True)
class Percentage:
    """A non-negative percentage on a 0-100 scale, uncapped above 100."""

    value: Decimal

    def __post_init__(self) -> None:
        value = _to_decimal(self.value)
        if value < 0:
            raise ValueError("Percentage cannot be negative")
        object.__setattr__(self, "value", value)

    @classmethod
    def zero(cls) -> Percentage:
        return cls(Decimal("0"))

    @classmethod
    def full(cls) -> Percentage:
        return cls(HUNDRED)

    @classmethod
    def of(cls, actual: Decimal, target: Decimal) -> Percentage:
        """Percentage of actual relative to target."""
        if target == 0:
            return cls.zero() if actual == 0 else cls.full()
        return cls(_to_decimal(actual) / _to_decimal(target) * HUNDRED)

    def as_fraction(self) -> Decimal:
        return self.value / HUNDRED

    def capped(self, maximum: Decimal) -> Percentage:
        return Percentage(maximum) if self.value > maximum else self

    def rounded(self, places: int = 2) -> Percentage:
        return Percentage(
            self.value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
        )

    def is_full(self) -> bool:
        return self.value >= HUNDRED

    def __str__(self) -> str:
        return f"{self.value.quantize(CENT, rounding=ROUND_HALF_UP)}%"


@dataclass(frozen=True)
class DateRange:
    """An inclusive date window with start strictly before end."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(
                f"Date range start {self.start} must be before end {self.end}"
            )

    @classmethod
    def for_month(cls, year: int, month: int) -> DateRange:
        last_day = calendar.monthrange(year, month)[1]
        return cls(date(year, month, 1), date(year, month, last_day))

    @classmethod
    def for_quarter(cls, year: int, quarter: int) -> DateRange:
        if quarter < 1 or quarter > 4:
            raise ValueError("Quarter must be between 1 and 4")
        start_month = (quarter - 1) * 3 + 1
        end = cls.for_month(year, start_month + 2).end
        return cls(date(year, start_month, 1), end)

    @classmethod
    def for_year(cls, year: int) -> DateRange:
        return cls(date(year, 1, 1), date(year, 12, 31))

    @classmethod
    def for_financial_year(cls, start_year: int) -> DateRange:
        """April 1 to March 31."""
        return cls(date(start_year, 4, 1), date(start_year + 1, 3, 31))

    @property
    def total_days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def overlaps(self, other: DateRange) -> bool:
        return self.start <= other.end and self.end >= other.start

    def is_within(self, other: DateRange) -> bool:
        return self.start >= other.start and self.end <= other.end

    def overlap_days(self, other: DateRange) -> int:
        if not self.overlaps(other):
            return 0
        start = max(self.start, other.start)
        end = min(self.end, other.end)
        return (end - start).days + 1

    def __str__(self) -> str:
        return f"{self.start.isoformat()} to {self.end.isoformat()}"
