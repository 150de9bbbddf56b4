"""Enumerations and defaults shared across the bodega POS modules.

Centralises domain constants so that the persistence layer, the business
services, and the CLI rely on a single source of truth for identifiers,
storage keys, and fallback values.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating the store.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_EXCHANGE_RATE = Decimal("35.5")
DEFAULT_MIN_STOCK = Decimal("5")
DEFAULT_CATEGORY = "SIN CATEGORÍA"
DEFAULT_UNIT = "UNIDAD"
DEFAULT_CATEGORIES = ("BEBIDA", "ALIMENTOS", "LIMPIEZA", "OTROS")
DEFAULT_TOP_SELLING_LIMIT = 10

MONEY_PLACES = Decimal("0.01")
QUANTITY_PLACES = Decimal("0.0001")


class PaymentMethod(str, Enum):
    """Enumerate the payment methods accepted at checkout."""

    CASH = "cash"
    POINT_OF_SALE = "pos"
    BIOPAYMENT = "biopayment"
    CREDIT = "credit"

    @property
    def label(self) -> str:
        return PAYMENT_METHOD_LABELS[self]


PAYMENT_METHOD_LABELS = {
    PaymentMethod.CASH: "Efectivo",
    PaymentMethod.POINT_OF_SALE: "Punto de Venta",
    PaymentMethod.BIOPAYMENT: "Biopago",
    PaymentMethod.CREDIT: "Crédito",
}


class PaymentStatus(str, Enum):
    """Enumerate how a purchase was settled."""

    PAID = "paid"
    PARTIAL = "partial"
    CREDIT = "credit"


class CustomerType(str, Enum):
    """Enumerate the buyer classification recorded on purchases."""

    REGULAR = "regular"
    OCCASIONAL = "occasional"


class Currency(str, Enum):
    """Enumerate the currencies the shop quotes and accepts."""

    USD = "USD"
    BS = "BS"


class StorageKey(str, Enum):
    """Enumerate the keys persisted in the durable key-value store."""

    PRODUCTS = "business_products"
    CUSTOMERS = "business_customers"
    EXCHANGE_RATE = "business_exchange_rate"
    EXCHANGE_RATE_UPDATE = "business_exchange_rate_update"
    CATEGORIES = "business_categories"


STORAGE_SHEET = "Storage"
STORAGE_COLUMNS = ("Key", "Part", "Value")


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_EXCHANGE_RATE",
    "DEFAULT_MIN_STOCK",
    "DEFAULT_CATEGORY",
    "DEFAULT_UNIT",
    "DEFAULT_CATEGORIES",
    "DEFAULT_TOP_SELLING_LIMIT",
    "MONEY_PLACES",
    "QUANTITY_PLACES",
    "PaymentMethod",
    "PAYMENT_METHOD_LABELS",
    "PaymentStatus",
    "CustomerType",
    "Currency",
    "StorageKey",
    "STORAGE_SHEET",
    "STORAGE_COLUMNS",
]
