"""Money and FX quote value types."""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from payroll_batch.errors import CurrencyMismatchError, NegativeRateError

_CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

MINOR_UNIT = Decimal("0.01")


def validate_currency(currency: str) -> str:
    """Return the ISO-4217 code, raising ValueError if it is malformed."""
    if not isinstance(currency, str) or not _CURRENCY_RE.match(currency):
        raise ValueError(f"Invalid ISO-4217 currency code: {currency!r}")
    return currency


@dataclass(frozen=True)
class Money:
    """An amount in a single currency.

    Arithmetic and ordering are only defined between values of the same
    currency. Anything else raises CurrencyMismatchError.
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))
        validate_currency(self.currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(Decimal("0"), currency)

    @classmethod
    def sum(cls, items: Iterable[Money], currency: str) -> Money:
        """Sum Money values, all of which must be in ``currency``."""
        total = cls.zero(currency)
        for item in items:
            total = total + item
        return total

    def _check(self, other: object) -> Money:
        if not isinstance(other, Money):
            raise TypeError(f"Expected Money, got {type(other).__name__}")
        if other.currency != self.currency:
            raise CurrencyMismatchError(self.currency, other.currency)
        return other

    def __add__(self, other: Money) -> Money:
        other = self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        other = self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __neg__(self) -> Money:
        return Money(-self.amount, self.currency)

    def __lt__(self, other: Money) -> bool:
        return self.amount < self._check(other).amount

    def __le__(self, other: Money) -> bool:
        return self.amount <= self._check(other).amount

    def __gt__(self, other: Money) -> bool:
        return self.amount > self._check(other).amount

    def __ge__(self, other: Money) -> bool:
        return self.amount >= self._check(other).amount

    @property
    def is_negative(self) -> bool:
        return self.amount < 0

    def quantize(self) -> Money:
        """Round to minor units (two decimal places, half-up)."""
        return Money(self.amount.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP), self.currency)

    def to_dict(self) -> dict[str, Any]:
        return {"amount": str(self.amount), "currency": self.currency}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Money:
        return cls(Decimal(str(data["amount"])), data["currency"])

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


@dataclass(frozen=True)
class FXQuote:
    """Rate in quote currency per unit of the snapshot's base currency."""

    currency: str
    rate: Decimal
    fee: Decimal = Decimal("0")

    def __post_init__(self) -> None:
        validate_currency(self.currency)
        if not isinstance(self.rate, Decimal):
            object.__setattr__(self, "rate", Decimal(str(self.rate)))
        if not isinstance(self.fee, Decimal):
            object.__setattr__(self, "fee", Decimal(str(self.fee)))
        if self.rate <= 0:
            raise NegativeRateError(self.currency, self.rate)
        if self.fee < 0:
            raise NegativeRateError(self.currency, self.rate, fee=self.fee)

    def to_dict(self) -> dict[str, Any]:
        return {
            "currency": self.currency,
            "rate": str(self.rate),
            "fee": str(self.fee),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FXQuote:
        return cls(
            currency=data["currency"],
            rate=Decimal(str(data["rate"])),
            fee=Decimal(str(data.get("fee", "0"))),
        )
