"""Cart aggregate for the sale in progress.

Lines hold product snapshots, so later catalog edits never change the price
of something already in the cart. Stock checks on quantity changes go back
to the live catalog when one is attached.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from . import log
from .catalog import Catalog
from .constants import Currency
from .errors import InsufficientStock, InvalidInput, InvalidQuantity, ProductNotFound
from .models import CartLine, Product
from .money import (
    amount_in_usd,
    parse_decimal,
    parse_quantity,
    require_nonnegative_money,
    require_positive_rate,
    round_money,
    round_quantity,
)


@dataclass(frozen=True)
class ChangeDue:
    """Change to hand back, expressed in both currencies."""

    change_usd: Decimal
    change_bs: Decimal


class Cart:
    """Ordered collection of cart lines keyed by product id."""

    def __init__(self, catalog: Optional[Catalog] = None) -> None:
        self._catalog = catalog
        self._lines: Dict[str, CartLine] = {}

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)

    def get(self, product_id: str) -> Optional[CartLine]:
        return self._lines.get(product_id)

    def add(self, product: Product, quantity) -> CartLine:
        """Add ``quantity`` units of ``product``, merging with an existing line.

        Raises:
            InvalidQuantity: If ``quantity`` is non-numeric or not positive.
            InsufficientStock: If the merged quantity exceeds ``product.stock``.
        """
        requested = parse_quantity(quantity)
        existing = self._lines.get(product.id)
        total = round_quantity(requested + existing.quantity) if existing else requested
        if total > product.stock:
            log.warning(
                "Rejected adding %s x '%s' to cart: %s available, %s already in cart",
                requested,
                product.name,
                product.stock,
                existing.quantity if existing else 0,
            )
            raise InsufficientStock(product.name, product.stock, total)

        snapshot = existing.product if existing else product
        line = CartLine(product=snapshot, quantity=total)
        self._lines[product.id] = line
        log.debug("Cart line for '%s' now at %s", product.name, total)
        return line

    def remove(self, product_id: str) -> None:
        """Drop the line for ``product_id``; unknown ids are ignored."""
        self._lines.pop(product_id, None)

    def set_quantity(self, product_id: str, quantity) -> Optional[CartLine]:
        """Replace the quantity of an existing line.

        A quantity of zero or less removes the line. Otherwise the quantity is
        validated against the live catalog stock.

        Returns:
            CartLine | None: The updated line, or ``None`` when it was removed.

        Raises:
            InvalidQuantity: If ``quantity`` is not a number.
            ProductNotFound: If the product has no line in the cart.
            InsufficientStock: If ``quantity`` exceeds the available stock.
        """
        try:
            value = round_quantity(parse_decimal(quantity, field="quantity"))
        except InvalidInput as exc:
            raise InvalidQuantity(str(exc)) from exc
        if value <= 0:
            self.remove(product_id)
            return None

        line = self._lines.get(product_id)
        if line is None:
            raise ProductNotFound(f"Product '{product_id}' is not in the cart")
        live = self._catalog.get(product_id) if self._catalog is not None else line.product
        if value > live.stock:
            log.warning("Rejected quantity %s for '%s': only %s available", value, live.name, live.stock)
            raise InsufficientStock(live.name, live.stock, value)

        updated = CartLine(product=line.product, quantity=value)
        self._lines[product_id] = updated
        return updated

    def clear(self) -> None:
        self._lines.clear()

    def subtotal_usd(self) -> Decimal:
        """Sum of per-line totals, each rounded to cents before summing."""
        return sum((line.total_usd for line in self._lines.values()), Decimal("0.00"))

    def subtotal_bs(self, rate: Decimal) -> Decimal:
        """Sum of per-line BS totals, converted and rounded line by line."""
        rate = require_positive_rate(rate)
        return sum((line.total_bs(rate) for line in self._lines.values()), Decimal("0.00"))

    def change_due(self, amount_paid, currency: Currency, rate: Decimal) -> ChangeDue:
        """Compute the change owed for ``amount_paid``.

        Underpayment yields zero change; deciding what to do about the
        shortfall is the checkout's job.
        """
        rate = require_positive_rate(rate)
        paid = require_nonnegative_money(amount_paid, field="amount paid")
        difference = amount_in_usd(paid, currency, rate) - self.subtotal_usd()
        change = max(Decimal("0"), difference)
        return ChangeDue(change_usd=round_money(change), change_bs=round_money(change * rate))


__all__ = ["ChangeDue", "Cart"]
