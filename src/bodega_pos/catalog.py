"""Catalog store: products, stock levels and the category set.

The :class:`Catalog` owns every :class:`~bodega_pos.models.Product` and the
set of category labels. Products are frozen records; each mutation swaps the
stored record for an updated copy and then notifies subscribers with the
storage key that changed. Derived views (low stock, top sellers, search) are
computed on demand rather than cached.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import log
from .constants import (
    DEFAULT_CATEGORIES,
    DEFAULT_CATEGORY,
    DEFAULT_MIN_STOCK,
    DEFAULT_TOP_SELLING_LIMIT,
    DEFAULT_UNIT,
    StorageKey,
)
from .errors import (
    DuplicateCategory,
    EmptyCatalogFile,
    InvalidInput,
    InvalidStock,
    NoValidRecords,
    ProductNotFound,
)
from .importer import ProductDraft, coerce_records
from .models import CartLine, ChangeNotifier, Product, generate_id
from .money import parse_decimal, parse_quantity, require_nonnegative_money, round_quantity

# Column order of the spreadsheet-style export.
EXPORT_COLUMNS: Tuple[str, ...] = (
    "Clave",
    "Unidad",
    "Nombre",
    "Cantidad",
    "Costo",
    "Precio",
    "Cantidad Mínima",
    "Precios Adicionales",
    "Información Adicional",
    "Categoría",
    "Costo Promedio",
)


def normalize_category(label: Optional[str]) -> str:
    """Trim and uppercase a category label, falling back to the default."""
    if label is None:
        return DEFAULT_CATEGORY
    cleaned = str(label).strip().upper()
    return cleaned or DEFAULT_CATEGORY


def plain_number(value: Decimal) -> Union[int, float]:
    """Convert a :class:`Decimal` to the closest JSON-friendly number."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


class Catalog(ChangeNotifier):
    """In-memory product catalog plus the category set."""

    def __init__(
        self,
        products: Iterable[Product] = (),
        categories: Iterable[str] = DEFAULT_CATEGORIES,
    ) -> None:
        super().__init__()
        self._products: Dict[str, Product] = {product.id: product for product in products}
        self._categories: List[str] = []
        for label in categories:
            normalized = normalize_category(label)
            if normalized not in self._categories:
                self._categories.append(normalized)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def products(self) -> List[Product]:
        return list(self._products.values())

    @property
    def categories(self) -> List[str]:
        return list(self._categories)

    def __len__(self) -> int:
        return len(self._products)

    def get(self, product_id: str) -> Product:
        """Resolve a product by id.

        Raises:
            ProductNotFound: If ``product_id`` is not in the catalog.
        """
        try:
            return self._products[product_id]
        except KeyError as exc:
            log.warning("Product lookup failed for id '%s'", product_id)
            raise ProductNotFound(f"Unknown product id: {product_id}") from exc

    def find_by_name(self, name: str) -> Optional[Product]:
        """Return the product whose name matches ``name`` ignoring case."""
        wanted = name.strip().lower()
        for product in self._products.values():
            if product.name.lower() == wanted:
                return product
        return None

    def search(self, term: str = "") -> List[Product]:
        """Return products whose name contains ``term`` (case-insensitive)."""
        needle = (term or "").strip().lower()
        if not needle:
            return self.products
        return [product for product in self._products.values() if needle in product.name.lower()]

    def low_stock(self) -> List[Product]:
        """Return every product whose stock is at or below its minimum."""
        return [product for product in self._products.values() if product.is_low_stock]

    def top_selling(self, limit: int = DEFAULT_TOP_SELLING_LIMIT) -> List[Product]:
        """Return up to ``limit`` products ordered by units sold, best first."""
        ranked = sorted(self._products.values(), key=lambda product: product.sales_count, reverse=True)
        return ranked[: max(0, limit)]

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    def _register_category(self, label: str) -> bool:
        if label in self._categories:
            return False
        self._categories.append(label)
        log.info("Registered category '%s'", label)
        return True

    def add_category(self, label: str) -> str:
        """Register a new category label (trimmed, uppercased).

        Raises:
            InvalidInput: If the label is empty after trimming.
            DuplicateCategory: If the label is already registered.
        """
        cleaned = (label or "").strip().upper()
        if not cleaned:
            raise InvalidInput("Category must not be empty")
        if cleaned in self._categories:
            raise DuplicateCategory(f"Category '{cleaned}' already exists")
        self._register_category(cleaned)
        self._notify(StorageKey.CATEGORIES)
        return cleaned

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_product(
        self,
        *,
        name: str,
        price: Decimal,
        cost: Decimal,
        stock: Decimal,
        category: Optional[str] = None,
        min_stock: Optional[Decimal] = None,
        unit: Optional[str] = None,
        key: Optional[str] = None,
        additional_info: Optional[str] = None,
        additional_prices: Optional[str] = None,
        when: Optional[datetime] = None,
    ) -> Product:
        """Append a product with a fresh id and ``sales_count`` of zero.

        Names are not checked for uniqueness here; only the import path
        deduplicates. An unseen category is registered on the way.

        Raises:
            InvalidInput: If the name is empty or price/cost are negative.
            InvalidStock: If stock or minimum stock are negative.
        """
        cleaned_name = (name or "").strip()
        if not cleaned_name:
            raise InvalidInput("Product name must not be empty")
        price_value = require_nonnegative_money(price, field="price")
        cost_value = require_nonnegative_money(cost, field="cost")
        stock_value = self._require_stock(stock)
        min_stock_value = DEFAULT_MIN_STOCK if min_stock is None else self._require_stock(min_stock)

        product = Product(
            id=generate_id(prefix="P", when=when),
            name=cleaned_name,
            price=price_value,
            cost=cost_value,
            stock=stock_value,
            category=normalize_category(category),
            min_stock=min_stock_value,
            sales_count=Decimal("0"),
            unit=unit or DEFAULT_UNIT,
            key=key,
            additional_info=additional_info,
            additional_prices=additional_prices,
        )
        self._products[product.id] = product
        new_category = self._register_category(product.category)
        log.info("Added product '%s' (%s) price=%s stock=%s", product.name, product.id, price_value, stock_value)
        if new_category:
            self._notify(StorageKey.CATEGORIES)
        self._notify(StorageKey.PRODUCTS)
        return product

    def bulk_import(self, records: Iterable[Any]) -> int:
        """Import candidate product records, skipping duplicates by name.

        Each record is coerced through :mod:`bodega_pos.importer`. Products
        whose name already exists in the catalog (ignoring case), or appears
        earlier in the same batch, are discarded and the existing entry is
        left untouched. Categories of imported products are registered.

        Args:
            records (Iterable[Any]): Raw records in either field-name scheme.

        Returns:
            int: Number of products actually added.

        Raises:
            EmptyCatalogFile: If ``records`` is empty.
            NoValidRecords: If no record has a usable name and price.
        """
        records = list(records)
        if not records:
            raise EmptyCatalogFile("The catalog source contains no records")
        drafts = coerce_records(records)
        if not drafts:
            raise NoValidRecords("The catalog source contains no valid products")

        seen_names = {product.name.lower() for product in self._products.values()}
        new_products: List[Product] = []
        duplicates = 0
        for draft in drafts:
            lowered = draft.name.lower()
            if lowered in seen_names:
                duplicates += 1
                continue
            seen_names.add(lowered)
            taken_ids = self._products.keys() | {product.id for product in new_products}
            new_products.append(self._product_from_draft(draft, taken_ids))

        new_categories = [
            product.category for product in new_products if product.category not in self._categories
        ]
        for product in new_products:
            self._products[product.id] = product
        registered = [label for label in dict.fromkeys(new_categories) if self._register_category(label)]

        log.info(
            "Imported %d products (%d duplicates discarded, %d new categories)",
            len(new_products),
            duplicates,
            len(registered),
        )
        if registered:
            self._notify(StorageKey.CATEGORIES)
        if new_products:
            self._notify(StorageKey.PRODUCTS)
        return len(new_products)

    def update_stock(self, product_id: str, new_stock: Decimal) -> Product:
        """Replace the stock level of a product.

        Raises:
            InvalidStock: If ``new_stock`` is negative or not a number.
            ProductNotFound: If ``product_id`` is unknown.
        """
        stock_value = self._require_stock(new_stock)
        product = self.get(product_id)
        updated = replace(product, stock=stock_value)
        self._products[product_id] = updated
        log.info("Updated stock for '%s' from %s to %s", product.name, product.stock, stock_value)
        self._notify(StorageKey.PRODUCTS)
        return updated

    def decrement_stock(self, product_id: str, quantity: Decimal) -> Product:
        """Remove sold units from stock, never going below zero.

        ``sales_count`` grows by ``quantity`` regardless of the floor.
        """
        updated = self._apply_decrement(product_id, parse_quantity(quantity))
        self._notify(StorageKey.PRODUCTS)
        return updated

    def record_sale(self, lines: Sequence[CartLine]) -> List[Product]:
        """Decrement stock for every cart line and notify once.

        Every product id is resolved before anything changes, so an unknown
        id leaves the catalog untouched.
        """
        for line in lines:
            self.get(line.product_id)
        updated = [self._apply_decrement(line.product_id, line.quantity) for line in lines]
        if updated:
            self._notify(StorageKey.PRODUCTS)
        return updated

    def export_all(self) -> List[Dict[str, Any]]:
        """Snapshot every product in the spreadsheet-style schema."""
        rows: List[Dict[str, Any]] = []
        for product in self._products.values():
            values = (
                product.key or "",
                product.unit or DEFAULT_UNIT,
                product.name,
                plain_number(product.stock),
                plain_number(product.cost),
                plain_number(product.price),
                plain_number(product.min_stock),
                product.additional_prices or "",
                product.additional_info or "",
                product.category,
                plain_number(product.cost),
            )
            rows.append(dict(zip(EXPORT_COLUMNS, values)))
        return rows

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply_decrement(self, product_id: str, quantity: Decimal) -> Product:
        product = self.get(product_id)
        remaining = max(Decimal("0"), product.stock - quantity)
        updated = replace(
            product,
            stock=round_quantity(remaining),
            sales_count=round_quantity(product.sales_count + quantity),
        )
        self._products[product_id] = updated
        log.info(
            "Sold %s x '%s': stock %s -> %s",
            quantity,
            product.name,
            product.stock,
            updated.stock,
        )
        return updated

    @staticmethod
    def _require_stock(raw: Decimal) -> Decimal:
        try:
            value = parse_decimal(raw, field="stock")
        except InvalidInput as exc:
            raise InvalidStock(str(exc)) from exc
        if value < 0:
            log.error("Stock validation failed: %s", raw)
            raise InvalidStock(f"Stock must not be negative, got {raw}")
        return round_quantity(value)

    @staticmethod
    def _product_from_draft(draft: ProductDraft, taken_ids: Iterable[str]) -> Product:
        product_id = draft.source_id
        if product_id is None or product_id in taken_ids:
            product_id = generate_id(prefix="P")
        return Product(
            id=product_id,
            name=draft.name,
            price=draft.price,
            cost=draft.cost,
            stock=draft.stock,
            category=draft.category,
            min_stock=draft.min_stock,
            sales_count=draft.sales_count,
            unit=draft.unit,
            key=draft.key,
            additional_info=draft.additional_info,
            additional_prices=draft.additional_prices,
        )


__all__ = [
    "EXPORT_COLUMNS",
    "normalize_category",
    "plain_number",
    "Catalog",
]
