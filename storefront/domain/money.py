"""Canonical money representation.

Every amount inside the service is an integer count of minor units tagged
with its currency. Conversion from and to major units (``"12.50"``) happens
only at the boundaries: inbound requests, provider payloads and display.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable

from storefront.core.errors import CalculationError, InvalidAmount, UnsupportedCurrency

CURRENCY_EXPONENTS: dict[str, int] = {"EUR": 2}
CURRENCY_SYMBOLS: dict[str, str] = {"EUR": "€"}


def _check_currency(currency: str) -> str:
    if currency not in CURRENCY_EXPONENTS:
        raise UnsupportedCurrency(f"Unsupported currency '{currency}'", details={"currency": currency})
    return currency


def _is_strict_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True, kw_only=True)
class Money:
    minor_units: int
    currency: str = "EUR"

    def __post_init__(self) -> None:
        if not _is_strict_int(self.minor_units):
            raise CalculationError(
                "Money requires an integer amount of minor units",
                details={"value": repr(self.minor_units)},
            )
        if self.minor_units < 0:
            raise InvalidAmount(
                "Amounts cannot be negative",
                details={"minor_units": self.minor_units},
            )
        _check_currency(self.currency)

    @classmethod
    def zero(cls, currency: str = "EUR") -> Money:
        return cls(minor_units=0, currency=currency)

    def _require_same_currency(self, other: object) -> Money:
        if not isinstance(other, Money):
            raise CalculationError(
                "Only Money values can be combined with Money",
                details={"value": repr(other)},
            )
        if other.currency != self.currency:
            raise CalculationError(
                "Cannot combine amounts in different currencies",
                details={"left": self.currency, "right": other.currency},
            )
        return other

    def __add__(self, other: object) -> Money:
        other = self._require_same_currency(other)
        return Money(minor_units=self.minor_units + other.minor_units, currency=self.currency)

    def __mul__(self, quantity: object) -> Money:
        if not _is_strict_int(quantity):
            raise CalculationError(
                "Money can only be multiplied by an integer quantity",
                details={"quantity": repr(quantity)},
            )
        if quantity < 0:
            raise InvalidAmount("Quantity cannot be negative", details={"quantity": quantity})
        return Money(minor_units=self.minor_units * quantity, currency=self.currency)

    __rmul__ = __mul__

    def __lt__(self, other: object) -> bool:
        other = self._require_same_currency(other)
        return self.minor_units < other.minor_units

    def apply_rate(self, rate: Decimal) -> Money:
        """Multiply by a fractional rate, rounding half-up to a whole minor unit."""
        if not isinstance(rate, Decimal):
            raise CalculationError("Rates must be Decimal values", details={"rate": repr(rate)})
        if rate < 0:
            raise InvalidAmount("Rates cannot be negative", details={"rate": str(rate)})
        amount = (Decimal(self.minor_units) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        return Money(minor_units=int(amount), currency=self.currency)


def sum_money(values: Iterable[Money], currency: str = "EUR") -> Money:
    total = Money.zero(currency)
    for value in values:
        total = total + value
    return total


def to_minor_units(value: str | int | float | Decimal, currency: str = "EUR") -> Money:
    """Convert a major-unit amount (``"12.50"``, ``12.5``, ``12``) into Money.

    The conversion is exact. Values with more precision than the currency's
    minor unit are rejected instead of being rounded away.
    """
    _check_currency(currency)
    if isinstance(value, bool):
        raise InvalidAmount("Boolean is not an amount", details={"value": repr(value)})
    try:
        if isinstance(value, float):
            amount = Decimal(repr(value))
        else:
            amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"Not a valid amount: {value!r}", details={"value": repr(value)}) from exc

    if not amount.is_finite():
        raise InvalidAmount(f"Not a valid amount: {value!r}", details={"value": repr(value)})
    if amount < 0:
        raise InvalidAmount("Amounts cannot be negative", details={"value": str(amount)})

    exponent = CURRENCY_EXPONENTS[currency]
    scaled = amount.scaleb(exponent)
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(
            f"Amount {value!r} has more than {exponent} decimal places",
            details={"value": str(amount)},
        )
    return Money(minor_units=int(scaled), currency=currency)


def to_major_units(money: Money) -> str:
    exponent = CURRENCY_EXPONENTS[money.currency]
    major, minor = divmod(money.minor_units, 10 ** exponent)
    if exponent == 0:
        return str(major)
    return f"{major}.{minor:0{exponent}d}"


def format_amount(money: Money) -> str:
    symbol = CURRENCY_SYMBOLS.get(money.currency, money.currency + " ")
    return f"{symbol}{to_major_units(money)}"


def format_rate(rate: Decimal) -> str:
    percent = (rate * 100).normalize()
    return f"{percent:f}%"
