"""Data access layer for the bodega POS.

This module owns every byte that crosses the durable storage boundary.
Business rules belong elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel store with openpyxl.
3. Key-value storage: the :class:`KeyValueStore` contract and its
   workbook-backed implementation, where each key holds JSON text.
4. Record (de)serialization and catalog file import/export.
"""


from __future__ import annotations

import configparser
import json
import zipfile
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_CATEGORIES,
    DEFAULT_EXCHANGE_RATE,
    STORAGE_COLUMNS,
    STORAGE_SHEET,
    CustomerType,
    PaymentMethod,
    PaymentStatus,
    StorageKey,
)
from .errors import InvalidInput, PersistenceReadFailure, PersistenceWriteFailure
from .importer import normalize_document
from .models import CartLine, Customer, Product, Purchase
from .money import ExchangeRate, parse_decimal, require_positive_rate


CONFIG_FILE_NAME = "config.ini"
# Excel refuses cells longer than 32767 characters, so values are split.
CHUNK_SIZE = 32_000


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    default_exchange_rate: Decimal = DEFAULT_EXCHANGE_RATE
    default_categories: Tuple[str, ...] = DEFAULT_CATEGORIES


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory toward the filesystem root looking for a file
    named ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. ``[Defaults]`` is optional and each
    missing option falls back to the package constants. Relative ``DataFile``
    paths are anchored to ``base_path`` (or the working directory).

    Raises:
        KeyError: If a required ``[System]`` entry is missing.
        ValueError: If ``[Defaults] ExchangeRate`` is not a positive number.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    rate_raw = parser.get("Defaults", "ExchangeRate", fallback=None)
    try:
        exchange_rate = require_positive_rate(rate_raw) if rate_raw else DEFAULT_EXCHANGE_RATE
    except InvalidInput as exc:
        raise ValueError(f"Invalid default exchange rate in configuration: {rate_raw}") from exc

    categories_raw = parser.get("Defaults", "Categories", fallback=None)
    if categories_raw:
        categories = tuple(label.strip().upper() for label in categories_raw.split(",") if label.strip())
    else:
        categories = DEFAULT_CATEGORIES

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        default_exchange_rate=exchange_rate,
        default_categories=categories,
    )


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def create_store_workbook() -> Workbook:
    """Build an empty in-memory workbook holding only the storage sheet."""

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)
    sheet = workbook.create_sheet(title=STORAGE_SHEET)
    bold_font = Font(bold=True)
    for column_index, column_name in enumerate(STORAGE_COLUMNS, start=1):
        cell = sheet.cell(row=1, column=column_index)
        cell.value = column_name
        cell.font = bold_font
    return workbook


def open_workbook(data_file: Path) -> Workbook:
    """Open the store workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


# ---------------------------------------------------------------------------
# Key-value storage
# ---------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """Durable storage contract: text values addressed by string keys."""

    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, value: str) -> None:
        ...


class WorkbookStore:
    """Key-value store kept in the ``Storage`` sheet of an Excel workbook.

    Each key occupies one or more rows (``Key | Part | Value``); long values
    are split into :data:`CHUNK_SIZE` pieces. Every :meth:`put` rewrites the
    sheet and saves the workbook so disk mirrors memory after each mutation.
    """

    def __init__(self, data_file: Path, workbook: Optional[Workbook] = None) -> None:
        self.data_file = Path(data_file)
        self.workbook = workbook if workbook is not None else open_workbook(self.data_file)
        if STORAGE_SHEET not in self.workbook.sheetnames:
            raise KeyError(f"Workbook '{self.data_file}' has no '{STORAGE_SHEET}' sheet")

    @property
    def sheet(self):
        return self.workbook[STORAGE_SHEET]

    def _read_all(self) -> Dict[str, str]:
        parts: Dict[str, List[Tuple[int, str]]] = {}
        for row in self.sheet.iter_rows(min_row=2, values_only=True):
            if not any(cell is not None for cell in row):
                continue
            key, part, value = (tuple(row) + (None, None, None))[:3]
            parts.setdefault(str(key), []).append((int(part or 0), "" if value is None else str(value)))
        return {key: "".join(chunk for _, chunk in sorted(chunks)) for key, chunks in parts.items()}

    def get(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def put(self, key: str, value: str) -> None:
        values = self._read_all()
        values[key] = value
        sheet = self.sheet
        if sheet.max_row > 1:
            sheet.delete_rows(2, sheet.max_row - 1)
        row_index = 2
        for stored_key, text in values.items():
            chunks = [text[i:i + CHUNK_SIZE] for i in range(0, len(text), CHUNK_SIZE)] or [""]
            for part, chunk in enumerate(chunks):
                for column_index, cell_value in enumerate((stored_key, part, chunk), start=1):
                    cell = sheet.cell(row=row_index, column=column_index, value=cell_value)
                    if isinstance(cell_value, str):
                        # Chunks starting with "=" stay plain text.
                        cell.data_type = "s"
                row_index += 1
        try:
            save_workbook(self.workbook, self.data_file)
        except (OSError, PermissionError) as exc:
            raise PersistenceWriteFailure(f"Unable to write '{key}' to {self.data_file}: {exc}") from exc


# ---------------------------------------------------------------------------
# Record (de)serialization
# ---------------------------------------------------------------------------


def _text(value: Decimal) -> str:
    return str(value)


def _optional(value: Any) -> Optional[str]:
    return None if value in (None, "") else str(value)


def serialize_product(record: Product) -> Dict[str, Any]:
    """Convert a product into a JSON-ready mapping.

    Decimals are written as strings to keep their exact value. The derived
    profit fields are included for readers of the raw store but ignored when
    loading.
    """

    return {
        "id": record.id,
        "name": record.name,
        "price": _text(record.price),
        "cost": _text(record.cost),
        "profit_percentage": _text(record.profit_percentage),
        "profit_margin": _text(record.profit_margin),
        "stock": _text(record.stock),
        "category": record.category,
        "min_stock": _text(record.min_stock),
        "sales_count": _text(record.sales_count),
        "unit": record.unit,
        "additional_info": record.additional_info,
        "additional_prices": record.additional_prices,
        "key": record.key,
    }


def deserialize_product(raw: Mapping[str, Any]) -> Product:
    """Convert a stored mapping back into a :class:`Product`."""

    return Product(
        id=str(raw["id"]),
        name=str(raw["name"]),
        price=parse_decimal(raw["price"], field="price"),
        cost=parse_decimal(raw.get("cost", 0), field="cost"),
        stock=parse_decimal(raw.get("stock", 0), field="stock"),
        category=str(raw.get("category") or ""),
        min_stock=parse_decimal(raw.get("min_stock", 5), field="min_stock"),
        sales_count=parse_decimal(raw.get("sales_count", 0), field="sales_count"),
        unit=_optional(raw.get("unit")),
        additional_info=_optional(raw.get("additional_info")),
        additional_prices=_optional(raw.get("additional_prices")),
        key=_optional(raw.get("key")),
    )


def serialize_purchase(record: Purchase) -> Dict[str, Any]:
    """Convert a purchase, including its line snapshots, into a mapping."""

    return {
        "id": record.id,
        "date": record.timestamp.isoformat(),
        "total_bs": _text(record.total_bs),
        "total_usd": _text(record.total_usd),
        "items": [
            {"product": serialize_product(line.product), "quantity": _text(line.quantity)}
            for line in record.lines
        ],
        "payment_status": record.payment_status.value,
        "payment_method": record.payment_method.value,
        "amount_paid": None if record.amount_paid is None else _text(record.amount_paid),
        "customer_type": record.customer_type.value,
        "customer_id": record.customer_id,
    }


def deserialize_purchase(raw: Mapping[str, Any]) -> Purchase:
    """Convert a stored mapping back into a :class:`Purchase`."""

    amount_paid = raw.get("amount_paid")
    return Purchase(
        id=str(raw["id"]),
        timestamp=datetime.fromisoformat(raw["date"]),
        total_bs=parse_decimal(raw["total_bs"], field="total_bs"),
        total_usd=parse_decimal(raw["total_usd"], field="total_usd"),
        lines=tuple(
            CartLine(
                product=deserialize_product(item["product"]),
                quantity=parse_decimal(item["quantity"], field="quantity"),
            )
            for item in raw.get("items", [])
        ),
        payment_status=PaymentStatus(raw["payment_status"]),
        payment_method=PaymentMethod(raw["payment_method"]),
        customer_type=CustomerType(raw.get("customer_type", CustomerType.OCCASIONAL.value)),
        amount_paid=None if amount_paid is None else parse_decimal(amount_paid, field="amount_paid"),
        customer_id=_optional(raw.get("customer_id")),
    )


def serialize_customer(record: Customer) -> Dict[str, Any]:
    """Convert a customer and its purchase history into a mapping."""

    return {
        "id": record.id,
        "name": record.name,
        "email": record.email,
        "phone": record.phone,
        "credit_limit": _text(record.credit_limit),
        "current_credit": _text(record.current_credit),
        "purchase_history": [serialize_purchase(purchase) for purchase in record.purchase_history],
    }


def deserialize_customer(raw: Mapping[str, Any]) -> Customer:
    """Convert a stored mapping back into a :class:`Customer`."""

    return Customer(
        id=str(raw["id"]),
        name=str(raw["name"]),
        email=str(raw.get("email") or ""),
        phone=str(raw.get("phone") or ""),
        credit_limit=parse_decimal(raw.get("credit_limit", 0), field="credit_limit"),
        current_credit=parse_decimal(raw.get("current_credit", 0), field="current_credit"),
        purchase_history=tuple(deserialize_purchase(item) for item in raw.get("purchase_history", [])),
    )


# ---------------------------------------------------------------------------
# Aggregate load/save
# ---------------------------------------------------------------------------


_DECODE_ERRORS = (ValueError, TypeError, KeyError, AttributeError, InvalidInput)


def _load_json(store: KeyValueStore, key: StorageKey) -> Optional[Any]:
    text = store.get(key.value)
    if text is None:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise PersistenceReadFailure(f"Malformed JSON stored under '{key.value}': {exc}") from exc


def _save_json(store: KeyValueStore, key: StorageKey, payload: Any) -> None:
    store.put(key.value, json.dumps(payload, ensure_ascii=False))


def load_products(store: KeyValueStore) -> Optional[List[Product]]:
    """Read the product list, or ``None`` when the key is absent.

    Raises:
        PersistenceReadFailure: If the stored value cannot be decoded.
    """

    payload = _load_json(store, StorageKey.PRODUCTS)
    if payload is None:
        return None
    try:
        return [deserialize_product(item) for item in payload]
    except _DECODE_ERRORS as exc:
        raise PersistenceReadFailure(f"Invalid product data: {exc}") from exc


def save_products(store: KeyValueStore, products: Iterable[Product]) -> None:
    _save_json(store, StorageKey.PRODUCTS, [serialize_product(product) for product in products])


def load_customers(store: KeyValueStore) -> Optional[List[Customer]]:
    """Read the customer ledger, or ``None`` when the key is absent.

    Raises:
        PersistenceReadFailure: If the stored value cannot be decoded.
    """

    payload = _load_json(store, StorageKey.CUSTOMERS)
    if payload is None:
        return None
    try:
        return [deserialize_customer(item) for item in payload]
    except _DECODE_ERRORS as exc:
        raise PersistenceReadFailure(f"Invalid customer data: {exc}") from exc


def save_customers(store: KeyValueStore, customers: Iterable[Customer]) -> None:
    _save_json(store, StorageKey.CUSTOMERS, [serialize_customer(customer) for customer in customers])


def load_categories(store: KeyValueStore) -> Optional[List[str]]:
    """Read the category labels, or ``None`` when the key is absent.

    Raises:
        PersistenceReadFailure: If the stored value is not a list of strings.
    """

    payload = _load_json(store, StorageKey.CATEGORIES)
    if payload is None:
        return None
    if not isinstance(payload, list) or not all(isinstance(label, str) for label in payload):
        raise PersistenceReadFailure("Stored categories must be a list of strings")
    return payload


def save_categories(store: KeyValueStore, categories: Iterable[str]) -> None:
    _save_json(store, StorageKey.CATEGORIES, list(categories))


def load_exchange_rate(store: KeyValueStore, default: Decimal = DEFAULT_EXCHANGE_RATE) -> ExchangeRate:
    """Read the exchange rate and its last-update timestamp.

    Missing keys fall back to ``default`` and "never updated". An unreadable
    timestamp is logged and treated as "never updated".

    Raises:
        PersistenceReadFailure: If the stored rate cannot be decoded.
    """

    rate = default
    payload = _load_json(store, StorageKey.EXCHANGE_RATE)
    if payload is not None:
        try:
            rate = require_positive_rate(payload)
        except InvalidInput as exc:
            raise PersistenceReadFailure(f"Invalid stored exchange rate: {payload!r}") from exc

    updated_at: Optional[datetime] = None
    stamp = store.get(StorageKey.EXCHANGE_RATE_UPDATE.value)
    if stamp:
        try:
            updated_at = datetime.fromisoformat(stamp)
        except ValueError:
            log.warning("Ignoring unreadable exchange rate timestamp %r", stamp)
    return ExchangeRate(value=rate, updated_at=updated_at)


def save_exchange_rate(store: KeyValueStore, exchange_rate: ExchangeRate) -> None:
    _save_json(store, StorageKey.EXCHANGE_RATE, str(exchange_rate.value))
    if exchange_rate.updated_at is not None:
        store.put(StorageKey.EXCHANGE_RATE_UPDATE.value, exchange_rate.updated_at.isoformat())


# ---------------------------------------------------------------------------
# Catalog files
# ---------------------------------------------------------------------------


def _read_sheet_records(path: Path) -> List[Dict[str, Any]]:
    workbook = openpyxl.load_workbook(path, read_only=True, data_only=True)
    try:
        sheet = workbook.worksheets[0]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        columns = [str(cell).strip() if cell is not None else "" for cell in header]
        records = []
        for raw in rows:
            if any(cell is not None for cell in raw):
                records.append({column: value for column, value in zip(columns, raw) if column})
        return records
    finally:
        workbook.close()


def read_catalog_file(path: Path) -> Sequence[Any]:
    """Read every candidate product record from a JSON or ``.xlsx`` file.

    The file is fully read and parsed before anything is returned, so a
    failure here never reaches the catalog.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        InvalidInput: If the file cannot be parsed or has an unknown format.
    """

    path = Path(path).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".json":
        try:
            document = json.loads(path.read_text(encoding="utf-8-sig"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            log.error("Failed to parse catalog file '%s': %s", path, exc)
            raise InvalidInput(f"Could not parse catalog file {path.name}: {exc}") from exc
        return normalize_document(document)
    if suffix == ".xlsx":
        try:
            return _read_sheet_records(path)
        except (InvalidFileException, zipfile.BadZipFile, KeyError) as exc:
            log.error("Failed to read catalog sheet '%s': %s", path, exc)
            raise InvalidInput(f"Could not read catalog file {path.name}: {exc}") from exc
    raise InvalidInput(f"Unsupported catalog file format: {path.suffix or '(none)'}")


def default_export_name(today: Optional[date] = None, *, suffix: str = ".json") -> str:
    """Return ``inventario_<YYYY-MM-DD><suffix>``."""

    today = today or date.today()
    return f"inventario_{today.isoformat()}{suffix}"


def write_catalog_file(rows: Sequence[Mapping[str, Any]], destination: Path, columns: Sequence[str]) -> Path:
    """Write exported catalog rows as JSON or as an ``.xlsx`` sheet.

    Raises:
        InvalidInput: If the destination suffix is neither ``.json`` nor
            ``.xlsx``.
    """

    destination = Path(destination).expanduser().resolve()
    destination.parent.mkdir(parents=True, exist_ok=True)
    suffix = destination.suffix.lower()
    if suffix == ".json":
        destination.write_text(json.dumps(list(rows), ensure_ascii=False, indent=2), encoding="utf-8")
    elif suffix == ".xlsx":
        workbook = openpyxl.Workbook()
        sheet = workbook.active
        sheet.title = "Inventario"
        sheet.append(list(columns))
        for cell in sheet[1]:
            cell.font = Font(bold=True)
        for row in rows:
            sheet.append([row.get(column) for column in columns])
        workbook.save(destination)
    else:
        raise InvalidInput(f"Unsupported export format: {destination.suffix or '(none)'}")
    log.info("Exported %d products to '%s'", len(rows), destination)
    return destination


__all__ = [
    "CONFIG_FILE_NAME",
    "ConfigSettings",
    "find_config_file",
    "read_config",
    "parse_settings",
    "create_store_workbook",
    "open_workbook",
    "save_workbook",
    "KeyValueStore",
    "WorkbookStore",
    "serialize_product",
    "deserialize_product",
    "serialize_purchase",
    "deserialize_purchase",
    "serialize_customer",
    "deserialize_customer",
    "load_products",
    "save_products",
    "load_customers",
    "save_customers",
    "load_categories",
    "save_categories",
    "load_exchange_rate",
    "save_exchange_rate",
    "read_catalog_file",
    "default_export_name",
    "write_catalog_file",
]
