"""Monetary and quantity helpers for the dual-currency (USD/BS) shop.

All amounts are :class:`~decimal.Decimal` values. Money is rounded to cents
using ``ROUND_HALF_UP`` and quantities to four decimal places so products
sold by weight or fraction keep a predictable precision. Text input may use
either ``.`` or ``,`` as the decimal separator.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from . import log
from .constants import DEFAULT_EXCHANGE_RATE, MONEY_PLACES, QUANTITY_PLACES, Currency
from .errors import InvalidAmount, InvalidInput, InvalidQuantity, InvalidRate

Numeric = Union[Decimal, int, float, str]


def parse_decimal(raw: Numeric, *, field: str = "value") -> Decimal:
    """Coerce user or file input into a finite :class:`Decimal`.

    Args:
        raw (Decimal | int | float | str): Value to convert. Strings are
            stripped and may use ``,`` as the decimal separator.
        field (str): Name used in the error message.

    Returns:
        Decimal: The parsed value, not rounded.

    Raises:
        InvalidInput: If ``raw`` is empty, boolean, non-numeric or not finite.
    """
    if isinstance(raw, bool) or raw is None:
        raise InvalidInput(f"{field} must be a number, got {raw!r}")
    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float)):
        value = Decimal(str(raw))
    else:
        text = str(raw).strip().replace(",", ".")
        if not text:
            raise InvalidInput(f"{field} must not be empty")
        try:
            value = Decimal(text)
        except InvalidOperation as exc:
            raise InvalidInput(f"{field} must be a number, got {raw!r}") from exc
    if not value.is_finite():
        raise InvalidInput(f"{field} must be a finite number, got {raw!r}")
    return value


def round_money(amount: Decimal) -> Decimal:
    """Round ``amount`` to cents."""
    return Decimal(amount).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def round_quantity(quantity: Decimal) -> Decimal:
    """Round ``quantity`` to four decimal places."""
    return Decimal(quantity).quantize(QUANTITY_PLACES, rounding=ROUND_HALF_UP)


def require_positive_rate(rate: Decimal) -> Decimal:
    """Validate that an exchange rate is strictly positive.

    Raises:
        InvalidRate: If ``rate`` is zero, negative or not a number.
    """
    try:
        value = parse_decimal(rate, field="exchange rate")
    except InvalidInput as exc:
        raise InvalidRate(str(exc)) from exc
    if value <= 0:
        log.error("Exchange rate validation failed: %s", rate)
        raise InvalidRate(f"Exchange rate must be greater than zero, got {rate}")
    return value


def to_bs(amount_usd: Decimal, rate: Decimal) -> Decimal:
    """Convert a USD amount to BS using ``rate`` (BS per USD)."""
    return Decimal(amount_usd) * require_positive_rate(rate)


def to_usd(amount_bs: Decimal, rate: Decimal) -> Decimal:
    """Convert a BS amount to USD using ``rate`` (BS per USD)."""
    return Decimal(amount_bs) / require_positive_rate(rate)


def amount_in_usd(amount: Decimal, currency: Currency, rate: Decimal) -> Decimal:
    """Express ``amount`` in USD whatever currency it was tendered in."""
    if Currency(currency) is Currency.BS:
        return to_usd(amount, rate)
    return Decimal(amount)


def parse_quantity(raw: Numeric) -> Decimal:
    """Parse a quantity typed by the operator or read from a file.

    Args:
        raw (Decimal | int | float | str): Quantity, possibly fractional,
            using ``.`` or ``,`` as decimal separator.

    Returns:
        Decimal: Quantity rounded to four decimal places.

    Raises:
        InvalidQuantity: If ``raw`` is non-numeric or not greater than zero
            after rounding.
    """
    try:
        value = parse_decimal(raw, field="quantity")
    except InvalidInput as exc:
        raise InvalidQuantity(str(exc)) from exc
    value = round_quantity(value)
    if value <= 0:
        raise InvalidQuantity(f"Quantity must be greater than zero, got {raw}")
    return value


def parse_amount(raw: Numeric) -> Decimal:
    """Parse a strictly positive monetary amount.

    Raises:
        InvalidAmount: If ``raw`` is non-numeric or not greater than zero.
    """
    try:
        value = parse_decimal(raw, field="amount")
    except InvalidInput as exc:
        raise InvalidAmount(str(exc)) from exc
    if value <= 0:
        raise InvalidAmount(f"Amount must be greater than zero, got {raw}")
    return value


def require_nonnegative_money(amount: Decimal, *, field: str = "amount") -> Decimal:
    """Validate that a monetary value is zero or positive.

    Raises:
        InvalidInput: If ``amount`` is negative or not a number.
    """
    value = parse_decimal(amount, field=field)
    if value < 0:
        log.error("Monetary value validation failed for %s: %s", field, amount)
        raise InvalidInput(f"{field} must be zero or positive, got {amount}")
    return value


def format_money(amount: Decimal, currency: Currency) -> str:
    """Render an amount the way the shop prints it (``$`` or ``Bs.``)."""
    rounded = round_money(amount)
    if Currency(currency) is Currency.BS:
        return f"Bs. {rounded:.2f}"
    return f"${rounded:.2f}"


@dataclass
class ExchangeRate:
    """Process-wide BS-per-USD rate plus the moment it was last updated."""

    value: Decimal = DEFAULT_EXCHANGE_RATE
    updated_at: Optional[datetime] = None

    def update(self, rate: Numeric, *, when: Optional[datetime] = None) -> Decimal:
        """Replace the rate after validating it, stamping the update time."""
        self.value = require_positive_rate(rate)
        self.updated_at = when if when is not None else datetime.now(UTC)
        log.info("Exchange rate set to %s BS/USD", self.value)
        return self.value

    def needs_update(self, today: Optional[date] = None) -> bool:
        """Return ``True`` when the rate was not updated on ``today``."""
        if self.updated_at is None:
            return True
        today = today or datetime.now(UTC).date()
        return self.updated_at.date() != today


__all__ = [
    "parse_decimal",
    "round_money",
    "round_quantity",
    "require_positive_rate",
    "to_bs",
    "to_usd",
    "amount_in_usd",
    "parse_quantity",
    "parse_amount",
    "require_nonnegative_money",
    "format_money",
    "ExchangeRate",
]
