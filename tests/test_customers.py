"""Unit tests for the customer ledger."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from bodega_pos import errors
from bodega_pos.constants import Currency, CustomerType, PaymentMethod, PaymentStatus, StorageKey
from bodega_pos.customers import CustomerLedger
from bodega_pos.models import Purchase

RATE = Decimal("35.5")


@pytest.fixture
def customer(ledger):
    return ledger.add_customer(name="María Pérez", email="maria@example.com", phone="0414-555", credit_limit="50")


def _purchase(purchase_id: str, customer_id: str) -> Purchase:
    return Purchase(
        id=purchase_id,
        timestamp=datetime(2024, 5, 1, tzinfo=UTC),
        total_bs=Decimal("355.00"),
        total_usd=Decimal("10.00"),
        lines=(),
        payment_status=PaymentStatus.CREDIT,
        payment_method=PaymentMethod.CREDIT,
        customer_type=CustomerType.REGULAR,
        customer_id=customer_id,
    )


def test_add_customer_starts_with_zero_credit(ledger):
    """A supplied initial credit is ignored."""

    listener = Mock()
    ledger.subscribe(listener)
    customer = ledger.add_customer(name=" Juan ", credit_limit=20, current_credit=Decimal("15"))

    assert customer.name == "Juan"
    assert customer.current_credit == Decimal("0")
    assert customer.purchase_history == ()
    assert ledger.get(customer.id) == customer
    listener.assert_called_once_with(StorageKey.CUSTOMERS)


def test_add_customer_requires_a_name(ledger):
    with pytest.raises(errors.InvalidInput):
        ledger.add_customer(name="  ")
    with pytest.raises(errors.InvalidInput):
        ledger.add_customer(name="Ana", credit_limit=-1)
    assert len(ledger) == 0


def test_get_unknown_customer_raises(ledger):
    with pytest.raises(errors.CustomerNotFound):
        ledger.get("C-missing")


def test_search_matches_name_email_or_phone(ledger, customer):
    """Search is case-insensitive over name, email and phone."""

    ledger.add_customer(name="Pedro")
    assert ledger.search("maría") == [customer]
    assert ledger.search("EXAMPLE") == [customer]
    assert ledger.search("0414") == [customer]
    assert len(ledger.search("")) == 2


def test_apply_payment_in_usd_reduces_credit(ledger, customer):
    ledger.adjust_credit(customer.id, Decimal("30"))

    receipt = ledger.apply_payment(customer.id, "20", Currency.USD, RATE)

    assert receipt.new_credit == Decimal("10")
    assert receipt.previous_credit == Decimal("30")
    assert not receipt.overpaid
    assert receipt.payment.amount == Decimal("20")
    assert ledger.get(customer.id).current_credit == Decimal("10")


def test_apply_payment_in_bs_converts_at_rate(ledger, customer):
    ledger.adjust_credit(customer.id, Decimal("30"))

    receipt = ledger.apply_payment(customer.id, "355", Currency.BS, RATE)

    assert receipt.amount_usd == Decimal("10")
    assert ledger.get(customer.id).current_credit == Decimal("20")


def test_overpayment_leaves_negative_balance(ledger, customer):
    """Paying more than owed keeps the excess as credit in favor."""

    ledger.adjust_credit(customer.id, Decimal("10"))

    receipt = ledger.apply_payment(customer.id, "15", Currency.USD, RATE)

    assert ledger.get(customer.id).current_credit == Decimal("-5")
    assert receipt.overpaid
    assert receipt.overpayment_usd == Decimal("5.00")
    assert "$5.00" in receipt.describe("María Pérez")


def test_overpayment_in_bs_is_reported_in_bs(ledger, customer):
    receipt = ledger.apply_payment(customer.id, "71", Currency.BS, RATE)

    assert receipt.overpayment_usd == Decimal("2.00")
    assert receipt.overpayment == Decimal("71.00")


@pytest.mark.parametrize("amount", ["0", "-3", "abc"])
def test_apply_payment_rejects_non_positive_amounts(ledger, customer, amount):
    with pytest.raises(errors.InvalidAmount):
        ledger.apply_payment(customer.id, amount, Currency.USD, RATE)
    assert ledger.get(customer.id).current_credit == Decimal("0")


def test_apply_payment_unknown_customer(ledger):
    with pytest.raises(errors.CustomerNotFound):
        ledger.apply_payment("missing", "5", Currency.USD, RATE)


def test_record_purchase_prepends_history_and_charges_credit(ledger, customer):
    """The newest purchase comes first and the credit delta is applied."""

    first = _purchase("S1", customer.id)
    second = _purchase("S2", customer.id)

    ledger.record_purchase(customer.id, first, credit_delta=Decimal("10"))
    exceeded = ledger.record_purchase(customer.id, second, credit_delta=Decimal("45"))

    stored = ledger.get(customer.id)
    assert [purchase.id for purchase in stored.purchase_history] == ["S2", "S1"]
    assert stored.current_credit == Decimal("55")
    assert exceeded is True


def test_adjust_credit_over_limit_is_not_blocked(ledger, customer):
    """Exceeding the limit is allowed and flagged."""

    updated = ledger.adjust_credit(customer.id, Decimal("60"))
    assert updated.credit_limit_exceeded


def test_balance_stays_in_whole_cents_after_bs_payment(ledger, customer):
    """A BS payment that converts to fractional cents is rounded before it is applied."""

    ledger.adjust_credit(customer.id, Decimal("10"))
    receipt = ledger.apply_payment(customer.id, "100", Currency.BS, Decimal("36.37"))

    stored = ledger.get(customer.id).current_credit
    assert stored == Decimal("7.25")
    assert stored.as_tuple().exponent == -2
    assert receipt.amount_usd == Decimal("2.75")
