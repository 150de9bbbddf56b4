"""Business logic layer for the bodega POS.

This module is the composition root. It loads configuration, rehydrates the
catalog, the customer ledger and the exchange rate from the durable store,
and subscribes a persistence listener so every committed mutation is written
back under its storage key. The administrative operations exposed to the CLI
live here as thin functions over those services.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from . import data_manager, log
from .cart import Cart, ChangeDue
from .catalog import EXPORT_COLUMNS, Catalog
from .checkout import CheckoutCommand, CheckoutOrchestrator, CheckoutResult
from .constants import (
    DEFAULT_TOP_SELLING_LIMIT,
    EXPECTED_SCHEMA_VERSION,
    Currency,
    CustomerType,
    PaymentMethod,
    StorageKey,
)
from .customers import CustomerLedger, PaymentReceipt
from .errors import BusinessRuleViolation, InvalidInput, PersistenceError
from .models import Customer, Product
from .money import ExchangeRate, parse_amount, parse_decimal, require_nonnegative_money, round_money

T = TypeVar("T")


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, storage and the live domain services."""

    settings: data_manager.ConfigSettings
    store: data_manager.KeyValueStore
    catalog: Catalog
    ledger: CustomerLedger
    exchange_rate: ExchangeRate
    cart: Cart
    checkout: CheckoutOrchestrator


@dataclass(frozen=True)
class AddProductCommand:
    """User intent for registering a product priced from cost plus margin."""

    name: str
    cost: Decimal
    profit_percentage: Decimal
    stock: Decimal
    category: Optional[str] = None
    min_stock: Optional[Decimal] = None
    unit: Optional[str] = None
    key: Optional[str] = None


@dataclass(frozen=True)
class SaleCommand:
    """User intent for selling a set of products in a single checkout."""

    items: Tuple[Tuple[str, Decimal], ...]
    payment_method: PaymentMethod
    customer_id: Optional[str] = None
    customer_type: Optional[CustomerType] = None
    amount_paid: Optional[Decimal] = None
    amount_currency: Currency = Currency.USD
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PaymentCommand:
    """User intent for a customer paying down their balance."""

    customer_id: str
    amount: Decimal
    currency: Currency = Currency.USD
    timestamp: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Context lifecycle
# ---------------------------------------------------------------------------


def _load_or_default(loader: Callable[[], Optional[T]], default: T, key: StorageKey) -> T:
    try:
        value = loader()
    except PersistenceError as exc:
        log.error("Discarding unreadable '%s' from storage: %s", key.value, exc)
        return default
    return default if value is None else value


def persist_key(context: RuntimeContext, key: StorageKey) -> None:
    """Write the aggregate behind ``key`` to the store.

    Raises:
        PersistenceWriteFailure: If the store cannot be written.
    """
    store = context.store
    if key is StorageKey.PRODUCTS:
        data_manager.save_products(store, context.catalog.products)
    elif key is StorageKey.CATEGORIES:
        data_manager.save_categories(store, context.catalog.categories)
    elif key is StorageKey.CUSTOMERS:
        data_manager.save_customers(store, context.ledger.customers)
    elif key in (StorageKey.EXCHANGE_RATE, StorageKey.EXCHANGE_RATE_UPDATE):
        data_manager.save_exchange_rate(store, context.exchange_rate)
    log.debug("Persisted '%s'", key.value)


def _persist_quietly(context: RuntimeContext, key: StorageKey) -> None:
    # In-memory state stays authoritative when the store rejects a write.
    try:
        persist_key(context, key)
    except PersistenceError as exc:
        log.error("Failed to persist '%s': %s", key.value, exc)


def build_runtime_context(
    settings: data_manager.ConfigSettings,
    store: data_manager.KeyValueStore,
) -> RuntimeContext:
    """Rehydrate every aggregate from ``store`` and wire persistence.

    Missing keys start from the configured defaults. Keys whose stored value
    cannot be decoded are logged and replaced by the same defaults so the shop
    can keep selling.
    """
    products = _load_or_default(lambda: data_manager.load_products(store), [], StorageKey.PRODUCTS)
    categories = _load_or_default(
        lambda: data_manager.load_categories(store),
        list(settings.default_categories),
        StorageKey.CATEGORIES,
    )
    customers = _load_or_default(lambda: data_manager.load_customers(store), [], StorageKey.CUSTOMERS)
    exchange_rate = _load_or_default(
        lambda: data_manager.load_exchange_rate(store, settings.default_exchange_rate),
        ExchangeRate(value=settings.default_exchange_rate),
        StorageKey.EXCHANGE_RATE,
    )

    catalog = Catalog(products, categories)
    ledger = CustomerLedger(customers)
    cart = Cart(catalog)
    checkout = CheckoutOrchestrator(cart, catalog, ledger, exchange_rate)
    context = RuntimeContext(
        settings=settings,
        store=store,
        catalog=catalog,
        ledger=ledger,
        exchange_rate=exchange_rate,
        cart=cart,
        checkout=checkout,
    )

    catalog.subscribe(lambda key: _persist_quietly(context, key))
    ledger.subscribe(lambda key: _persist_quietly(context, key))

    log.info(
        "Loaded %d products, %d customers, rate %s BS/USD",
        len(catalog),
        len(ledger),
        exchange_rate.value,
    )
    low = catalog.low_stock()
    if low:
        log.warning("%d products are at or below their minimum stock", len(low))
    if exchange_rate.needs_update():
        log.info("Exchange rate has not been updated today")
    return context


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and the workbook store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    store = data_manager.WorkbookStore(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return build_runtime_context(settings, store)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate store compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Store schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Store schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


# ---------------------------------------------------------------------------
# Exchange rate
# ---------------------------------------------------------------------------


def set_exchange_rate(context: RuntimeContext, rate, *, when: Optional[datetime] = None) -> Decimal:
    """Replace the shop-wide BS-per-USD rate and persist it with its timestamp.

    Raises:
        InvalidRate: If ``rate`` is not strictly positive.
    """
    value = context.exchange_rate.update(rate, when=when)
    _persist_quietly(context, StorageKey.EXCHANGE_RATE)
    return value


# ---------------------------------------------------------------------------
# Catalog administration
# ---------------------------------------------------------------------------


def price_from_margin(cost, profit_percentage) -> Decimal:
    """Return ``cost * (1 + profit_percentage / 100)`` rounded to cents.

    Raises:
        InvalidInput: If ``cost`` is negative or the percentage would yield a
            negative price.
    """
    cost_value = require_nonnegative_money(cost, field="cost")
    percentage = parse_decimal(profit_percentage, field="profit percentage")
    if percentage < Decimal("-100"):
        raise InvalidInput(f"Profit percentage must be at least -100, got {profit_percentage}")
    return round_money(cost_value * (1 + percentage / Decimal("100")))


def add_product(context: RuntimeContext, command: AddProductCommand) -> Product:
    """Register a product whose price is derived from cost and margin."""
    price = price_from_margin(command.cost, command.profit_percentage)
    return context.catalog.add_product(
        name=command.name,
        price=price,
        cost=parse_decimal(command.cost, field="cost"),
        stock=command.stock,
        category=command.category,
        min_stock=command.min_stock,
        unit=command.unit,
        key=command.key,
    )


def add_category(context: RuntimeContext, label: str) -> str:
    return context.catalog.add_category(label)


def update_product_stock(context: RuntimeContext, product_id: str, stock) -> Product:
    return context.catalog.update_stock(product_id, stock)


def import_products(context: RuntimeContext, path: Path) -> int:
    """Import products from a JSON or ``.xlsx`` catalog file.

    The whole file is read and parsed before the catalog is touched; a parse
    failure leaves the catalog unchanged.

    Returns:
        int: Number of products added.
    """
    records = data_manager.read_catalog_file(path)
    added = context.catalog.bulk_import(records)
    log.info("Imported %d products from '%s'", added, path)
    return added


def export_products(
    context: RuntimeContext,
    destination: Optional[Path] = None,
    *,
    today: Optional[date] = None,
) -> Path:
    """Write the catalog snapshot to ``destination`` (JSON by default)."""
    if destination is None:
        destination = Path.cwd() / data_manager.default_export_name(today)
    rows = context.catalog.export_all()
    return data_manager.write_catalog_file(rows, destination, EXPORT_COLUMNS)


def list_products(context: RuntimeContext, search: str = "") -> List[Product]:
    return context.catalog.search(search)


def list_low_stock(context: RuntimeContext) -> List[Product]:
    return context.catalog.low_stock()


def list_top_selling(context: RuntimeContext, limit: int = DEFAULT_TOP_SELLING_LIMIT) -> List[Product]:
    return context.catalog.top_selling(limit)


# ---------------------------------------------------------------------------
# Customers
# ---------------------------------------------------------------------------


def add_customer(
    context: RuntimeContext,
    *,
    name: str,
    email: str = "",
    phone: str = "",
    credit_limit=Decimal("0"),
) -> Customer:
    return context.ledger.add_customer(name=name, email=email, phone=phone, credit_limit=credit_limit)


def add_credit(context: RuntimeContext, customer_id: str, amount) -> Customer:
    """Charge ``amount`` (USD) to a customer's balance outside of a sale.

    Raises:
        InvalidAmount: If ``amount`` is not strictly positive.
        CustomerNotFound: If ``customer_id`` is unknown.
    """
    return context.ledger.adjust_credit(customer_id, parse_amount(amount))


def make_payment(context: RuntimeContext, command: PaymentCommand) -> PaymentReceipt:
    """Apply a customer payment at the current exchange rate."""
    return context.ledger.apply_payment(
        command.customer_id,
        command.amount,
        command.currency,
        context.exchange_rate.value,
        when=command.timestamp,
    )


def list_customers(context: RuntimeContext, search: str = "") -> List[Customer]:
    return context.ledger.search(search)


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def fill_cart(context: RuntimeContext, items: Sequence[Tuple[str, Decimal]]) -> Cart:
    """Add each ``(product_id, quantity)`` pair to the context cart.

    The cart is emptied again if any item is rejected.
    """
    cart = context.cart
    try:
        for product_id, quantity in items:
            cart.add(context.catalog.get(product_id), quantity)
    except BusinessRuleViolation:
        cart.clear()
        raise
    return cart


def record_sale(context: RuntimeContext, command: SaleCommand) -> CheckoutResult:
    """Fill the cart with ``command.items`` and complete the checkout.

    A rejected sale leaves the catalog and ledger untouched and the cart empty.
    """
    fill_cart(context, command.items)
    checkout_command = CheckoutCommand(
        payment_method=command.payment_method,
        customer_id=command.customer_id,
        customer_type=command.customer_type,
        amount_paid=command.amount_paid,
        amount_currency=command.amount_currency,
        timestamp=command.timestamp,
    )
    try:
        return context.checkout.complete_purchase(checkout_command)
    except BusinessRuleViolation:
        context.cart.clear()
        raise


def calculate_change(
    context: RuntimeContext,
    items: Sequence[Tuple[str, Decimal]],
    amount_paid,
    currency: Currency = Currency.USD,
) -> ChangeDue:
    """Quote the change for a prospective sale without completing it."""
    cart = fill_cart(context, items)
    try:
        return cart.change_due(amount_paid, currency, context.exchange_rate.value)
    finally:
        cart.clear()


__all__ = [
    "RuntimeContext",
    "AddProductCommand",
    "SaleCommand",
    "PaymentCommand",
    "persist_key",
    "build_runtime_context",
    "load_runtime_context",
    "ensure_schema_version",
    "set_exchange_rate",
    "price_from_margin",
    "add_product",
    "add_category",
    "update_product_stock",
    "import_products",
    "export_products",
    "list_products",
    "list_low_stock",
    "list_top_selling",
    "add_customer",
    "add_credit",
    "make_payment",
    "list_customers",
    "fill_cart",
    "record_sale",
    "calculate_change",
]
