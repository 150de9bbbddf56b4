"""Unit tests for the cart aggregate."""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest

from bodega_pos import errors
from bodega_pos.cart import Cart
from bodega_pos.constants import Currency

RATE = Decimal("35.5")


@pytest.fixture
def cart(catalog):
    return Cart(catalog)


def test_add_merges_lines_for_the_same_product(cart, catalog):
    """Adding an existing product grows its line instead of duplicating it."""

    cart.add(catalog.get("P1"), 2)
    line = cart.add(catalog.get("P1"), "1,5")

    assert len(cart) == 1
    assert line.quantity == Decimal("3.5")


def test_add_rejects_more_than_available_stock(cart, catalog):
    """The merged quantity may not exceed the product stock."""

    cart.add(catalog.get("P2"), 2)
    with pytest.raises(errors.InsufficientStock) as excinfo:
        cart.add(catalog.get("P2"), 2)

    assert excinfo.value.available == Decimal("3")
    assert cart.get("P2").quantity == Decimal("2")


@pytest.mark.parametrize("quantity", [0, -1, "abc"])
def test_add_rejects_invalid_quantities(cart, catalog, quantity):
    with pytest.raises(errors.InvalidQuantity):
        cart.add(catalog.get("P1"), quantity)
    assert cart.is_empty


def test_add_accepts_fractional_quantities_within_stock(cart, catalog):
    """Products sold by fraction can be added up to their stock."""

    line = cart.add(catalog.get("P3"), "0.5")
    assert line.quantity == Decimal("0.5")


def test_cart_lines_keep_the_snapshot_taken_when_added(cart, catalog):
    """Catalog changes after adding do not alter the line's price."""

    original = catalog.get("P1")
    cart.add(original, 1)
    cart.add(replace(original, price=Decimal("99")), 1)

    assert cart.get("P1").product.price == Decimal("10")
    assert cart.subtotal_usd() == Decimal("20.00")


def test_set_quantity_replaces_and_removes(cart, catalog):
    """Setting zero or less removes the line; positive values replace it."""

    cart.add(catalog.get("P1"), 1)
    assert cart.set_quantity("P1", 4).quantity == Decimal("4")
    assert cart.set_quantity("P1", 0) is None
    assert cart.is_empty


def test_set_quantity_checks_live_stock(cart, catalog):
    """Quantity updates are validated against the catalog, not the snapshot."""

    cart.add(catalog.get("P1"), 1)
    catalog.update_stock("P1", 2)

    with pytest.raises(errors.InsufficientStock):
        cart.set_quantity("P1", 3)
    assert cart.get("P1").quantity == Decimal("1")


def test_set_quantity_for_missing_line_raises(cart):
    with pytest.raises(errors.ProductNotFound):
        cart.set_quantity("P1", 1)


def test_remove_ignores_unknown_products(cart, catalog):
    cart.add(catalog.get("P1"), 1)
    cart.remove("P9")
    cart.remove("P1")
    assert cart.is_empty


def test_subtotals_round_each_line(cart, catalog, make_product):
    """Line totals are rounded to cents before they are summed."""

    cheap = make_product("X", "Caramelo", price="0.333", stock="10")
    cart.add(cheap, 1)
    cart.add(cheap, 2)
    cart.add(catalog.get("P1"), 3)

    assert cart.subtotal_usd() == Decimal("31.00")
    assert cart.subtotal_bs(RATE) == Decimal("1100.46")


def test_change_due_in_both_currencies(cart, catalog):
    """Change is computed in USD and converted at the current rate."""

    cart.add(catalog.get("P1"), 3)

    change = cart.change_due(Decimal("50"), Currency.USD, RATE)
    assert change.change_usd == Decimal("20.00")
    assert change.change_bs == Decimal("710.00")

    paid_in_bs = cart.change_due(Decimal("1100"), Currency.BS, RATE)
    assert paid_in_bs.change_usd == Decimal("0.99")


def test_change_due_never_negative(cart, catalog):
    cart.add(catalog.get("P1"), 3)
    change = cart.change_due(Decimal("10"), Currency.USD, RATE)
    assert change.change_usd == Decimal("0")
    assert change.change_bs == Decimal("0")


def test_clear_empties_the_cart(cart, catalog):
    cart.add(catalog.get("P1"), 1)
    cart.clear()
    assert cart.is_empty
    assert cart.subtotal_usd() == Decimal("0")
