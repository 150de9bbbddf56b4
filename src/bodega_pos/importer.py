"""Field coercion for catalog imports.

Import files come in two naming schemes: the shop's spreadsheet export with
Spanish column labels, and a generic English-keyed one. Rather than chaining
fallbacks inline, each scheme is a row of :data:`FIELD_SCHEMAS`; a field is
resolved by trying the schemes in priority order and taking the first
non-blank value. Coercion never touches the catalog, so a file is fully
parsed and validated before any store mutation happens.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import log
from .constants import DEFAULT_CATEGORY, DEFAULT_MIN_STOCK, DEFAULT_UNIT
from .errors import InvalidInput
from .money import parse_decimal, round_quantity

# Priority order matters: spreadsheet labels win over generic keys.
FIELD_SCHEMAS: Tuple[Tuple[str, Mapping[str, str]], ...] = (
    (
        "spreadsheet",
        {
            "name": "Nombre",
            "price": "Precio",
            "cost": "Costo",
            "stock": "Cantidad",
            "min_stock": "Cantidad Mínima",
            "category": "Categoría",
            "unit": "Unidad",
            "key": "Clave",
            "additional_info": "Información Adicional",
            "additional_prices": "Precios Adicionales",
        },
    ),
    (
        "generic",
        {
            "id": "id",
            "name": "name",
            "price": "price",
            "cost": "cost",
            "stock": "stock",
            "min_stock": "min_stock",
            "sales_count": "sales_count",
            "category": "category",
            "unit": "unit",
            "key": "key",
            "additional_info": "additional_info",
            "additional_prices": "additional_prices",
        },
    ),
)


@dataclass(frozen=True)
class ProductDraft:
    """Candidate product produced from one import record."""

    name: str
    price: Decimal
    cost: Decimal
    stock: Decimal
    min_stock: Decimal
    category: str
    unit: str
    key: Optional[str] = None
    additional_info: Optional[str] = None
    additional_prices: Optional[str] = None
    source_id: Optional[str] = None
    sales_count: Decimal = Decimal("0")


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def detect_schema(record: Mapping[str, Any]) -> Optional[str]:
    """Return the tag of the first schema whose labels appear in ``record``."""
    for tag, columns in FIELD_SCHEMAS:
        if any(label in record for label in columns.values()):
            return tag
    return None


def extract_field(record: Mapping[str, Any], field: str) -> Optional[Any]:
    """Resolve ``field`` from ``record`` trying each schema in priority order.

    Returns:
        Any | None: The first non-blank raw value, or ``None`` when no schema
            provides one.
    """
    for _tag, columns in FIELD_SCHEMAS:
        label = columns.get(field)
        if label is None:
            continue
        value = record.get(label)
        if not _is_blank(value):
            return value
    return None


def _optional_decimal(raw: Any) -> Optional[Decimal]:
    if raw is None:
        return None
    try:
        return parse_decimal(raw, field="import value")
    except InvalidInput:
        return None


def _decimal_or_default(raw: Any, default: Decimal) -> Decimal:
    value = _optional_decimal(raw)
    if value is None or value < 0:
        return default
    return value


def _optional_text(raw: Any) -> Optional[str]:
    if _is_blank(raw):
        return None
    return str(raw).strip()


def coerce_record(record: Any) -> Optional[ProductDraft]:
    """Turn one raw import record into a :class:`ProductDraft`.

    A record is usable only when it yields a non-empty name and a
    non-negative numeric price. Other numeric fields fall back to their
    defaults when missing or unparseable: cost and stock to ``0``, minimum
    stock to ``5``. Category labels are uppercased.

    Returns:
        ProductDraft | None: The draft, or ``None`` when the record is unusable.
    """
    if not isinstance(record, Mapping):
        return None

    name = _optional_text(extract_field(record, "name"))
    if name is None:
        return None

    price = _optional_decimal(extract_field(record, "price"))
    if price is None or price < 0:
        return None

    category = _optional_text(extract_field(record, "category"))
    source_id = _optional_text(extract_field(record, "id"))

    return ProductDraft(
        name=name,
        price=price,
        cost=_decimal_or_default(extract_field(record, "cost"), Decimal("0")),
        stock=round_quantity(_decimal_or_default(extract_field(record, "stock"), Decimal("0"))),
        min_stock=_decimal_or_default(extract_field(record, "min_stock"), DEFAULT_MIN_STOCK),
        category=category.upper() if category else DEFAULT_CATEGORY,
        unit=_optional_text(extract_field(record, "unit")) or DEFAULT_UNIT,
        key=_optional_text(extract_field(record, "key")),
        additional_info=_optional_text(extract_field(record, "additional_info")),
        additional_prices=_optional_text(extract_field(record, "additional_prices")),
        source_id=source_id,
        sales_count=_decimal_or_default(extract_field(record, "sales_count"), Decimal("0")),
    )


def coerce_records(records: Iterable[Any]) -> List[ProductDraft]:
    """Coerce every record, dropping the unusable ones."""
    drafts: List[ProductDraft] = []
    schemas: Counter = Counter()
    skipped = 0
    for record in records:
        if isinstance(record, Mapping):
            schemas[detect_schema(record) or "unknown"] += 1
        draft = coerce_record(record)
        if draft is None:
            skipped += 1
            continue
        drafts.append(draft)
    if skipped:
        log.warning("Skipped %d import records without a usable name or price", skipped)
    if schemas:
        log.info("Import records by naming scheme: %s", dict(schemas))
    return drafts


def normalize_document(document: Any) -> Sequence[Any]:
    """Accept a single product object or an array of them.

    Raises:
        InvalidInput: If ``document`` is neither an object nor an array.
    """
    if isinstance(document, Mapping):
        return [document]
    if isinstance(document, list):
        return document
    raise InvalidInput(
        f"Catalog document must be an object or an array, got {type(document).__name__}"
    )


__all__ = [
    "FIELD_SCHEMAS",
    "ProductDraft",
    "detect_schema",
    "extract_field",
    "coerce_record",
    "coerce_records",
    "normalize_document",
]
