"""Immutable domain records shared by the catalog, cart, ledger and checkout.

Records are frozen dataclasses. Services replace a record with an updated
copy (:func:`dataclasses.replace`) instead of mutating it, which also gives
the cart its snapshot semantics for free: a cart line keeps the product as it
was when added, whatever happens to the catalog afterwards.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Callable, List, Optional, Tuple

from .constants import (
    DEFAULT_CATEGORY,
    DEFAULT_MIN_STOCK,
    Currency,
    CustomerType,
    PaymentMethod,
    PaymentStatus,
    StorageKey,
)
from .money import round_money

ChangeListener = Callable[[StorageKey], None]


class ChangeNotifier:
    """Minimal observer hook for aggregates mirrored to durable storage.

    Aggregates call :meth:`_notify` with the storage key that changed after a
    mutation commits. The aggregate itself knows nothing about persistence.
    """

    def __init__(self) -> None:
        self._listeners: List[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def _notify(self, *keys: StorageKey) -> None:
        for key in keys:
            for listener in list(self._listeners):
                listener(key)


def generate_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable, collision-resistant identifier.

    Args:
        prefix (str): Designator for the record kind (``"P"`` products,
            ``"C"`` customers, ``"S"`` purchases, ``"Y"`` payments).
        when (datetime | None): Timestamp embedded in the identifier. Defaults
            to the current UTC time.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}{hex6}``.

    The random suffix keeps identifiers unique when many records are created
    within the same microsecond, as happens during a bulk import.
    """
    when = when or datetime.now(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True)
class Product:
    """Catalog entry. Prices and costs are expressed in USD."""

    id: str
    name: str
    price: Decimal
    cost: Decimal
    stock: Decimal
    category: str = DEFAULT_CATEGORY
    min_stock: Decimal = DEFAULT_MIN_STOCK
    sales_count: Decimal = Decimal("0")
    unit: Optional[str] = None
    additional_info: Optional[str] = None
    additional_prices: Optional[str] = None
    key: Optional[str] = None

    @property
    def profit_percentage(self) -> Decimal:
        if self.cost > 0:
            return (self.price - self.cost) / self.cost * 100
        return Decimal("0")

    @property
    def profit_margin(self) -> Decimal:
        return self.price - self.cost

    @property
    def is_low_stock(self) -> bool:
        return self.stock <= self.min_stock


@dataclass(frozen=True)
class CartLine:
    """A product snapshot plus the quantity being sold."""

    product: Product
    quantity: Decimal

    @property
    def product_id(self) -> str:
        return self.product.id

    @property
    def total_usd(self) -> Decimal:
        return round_money(self.product.price * self.quantity)

    def total_bs(self, rate: Decimal) -> Decimal:
        return round_money(self.product.price * self.quantity * rate)


@dataclass(frozen=True)
class Purchase:
    """Receipt of a completed checkout. Never mutated once created."""

    id: str
    timestamp: datetime
    total_bs: Decimal
    total_usd: Decimal
    lines: Tuple[CartLine, ...]
    payment_status: PaymentStatus
    payment_method: PaymentMethod
    customer_type: CustomerType
    amount_paid: Optional[Decimal] = None
    customer_id: Optional[str] = None


@dataclass(frozen=True)
class Customer:
    """Ledger entry. ``current_credit`` is what the customer owes in USD.

    A negative balance is an overpayment held in the customer's favor.
    """

    id: str
    name: str
    email: str = ""
    phone: str = ""
    credit_limit: Decimal = Decimal("0")
    current_credit: Decimal = Decimal("0")
    purchase_history: Tuple[Purchase, ...] = ()

    @property
    def credit_limit_exceeded(self) -> bool:
        return self.current_credit > self.credit_limit


@dataclass(frozen=True)
class Payment:
    """A payment received against a customer's balance."""

    id: str
    customer_id: str
    amount: Decimal
    currency: Currency
    timestamp: datetime


__all__ = [
    "ChangeListener",
    "ChangeNotifier",
    "generate_id",
    "Product",
    "CartLine",
    "Purchase",
    "Customer",
    "Payment",
]
