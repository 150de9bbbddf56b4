"""Customer ledger: credit balances, limits and purchase history.

``current_credit`` is the amount a customer owes in USD. Payments may push
it below zero; the negative balance is an overpayment kept in the
customer's favor and is never floored. Credit limits are advisory: crossing
one is reported to the caller but never blocks an operation.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from . import log
from .constants import Currency, StorageKey
from .errors import CustomerNotFound, InvalidInput
from .models import ChangeNotifier, Customer, Payment, Purchase, generate_id
from .money import (
    amount_in_usd,
    format_money,
    parse_amount,
    parse_decimal,
    require_nonnegative_money,
    require_positive_rate,
    round_money,
)


@dataclass(frozen=True)
class PaymentReceipt:
    """Outcome of applying a payment to a customer's balance."""

    payment: Payment
    amount_usd: Decimal
    previous_credit: Decimal
    new_credit: Decimal
    overpayment_usd: Decimal
    overpayment: Decimal

    @property
    def overpaid(self) -> bool:
        return self.overpayment_usd > 0

    def describe(self, customer_name: str) -> str:
        """Human-readable summary for the operator."""
        message = (
            f"Registered a payment of {format_money(self.payment.amount, self.payment.currency)} "
            f"for {customer_name}."
        )
        if self.overpaid:
            message += (
                f" The excess of {format_money(self.overpayment, self.payment.currency)} "
                "remains as credit in favor."
            )
        return message


class CustomerLedger(ChangeNotifier):
    """In-memory registry of customers and their balances."""

    def __init__(self, customers: Iterable[Customer] = ()) -> None:
        super().__init__()
        self._customers: Dict[str, Customer] = {customer.id: customer for customer in customers}

    @property
    def customers(self) -> List[Customer]:
        return list(self._customers.values())

    def __len__(self) -> int:
        return len(self._customers)

    def get(self, customer_id: str) -> Customer:
        """Resolve a customer by id.

        Raises:
            CustomerNotFound: If ``customer_id`` is not in the ledger.
        """
        try:
            return self._customers[customer_id]
        except KeyError as exc:
            log.warning("Customer lookup failed for id '%s'", customer_id)
            raise CustomerNotFound(f"Unknown customer id: {customer_id}") from exc

    def search(self, term: str = "") -> List[Customer]:
        """Return customers whose name, email or phone contains ``term``."""
        needle = (term or "").strip().lower()
        if not needle:
            return self.customers
        return [
            customer
            for customer in self._customers.values()
            if needle in customer.name.lower()
            or needle in customer.email.lower()
            or needle in customer.phone.lower()
        ]

    def add_customer(
        self,
        *,
        name: str,
        email: str = "",
        phone: str = "",
        credit_limit: Decimal = Decimal("0"),
        current_credit: Optional[Decimal] = None,
        when: Optional[datetime] = None,
    ) -> Customer:
        """Register a customer with a zero balance and empty history.

        Any ``current_credit`` supplied by the caller is ignored.

        Raises:
            InvalidInput: If the name is empty or the credit limit negative.
        """
        cleaned_name = (name or "").strip()
        if not cleaned_name:
            raise InvalidInput("Customer name is required")
        limit = require_nonnegative_money(credit_limit, field="credit limit")
        if current_credit:
            log.debug("Ignoring initial credit %s supplied for new customer '%s'", current_credit, cleaned_name)

        customer = Customer(
            id=generate_id(prefix="C", when=when),
            name=cleaned_name,
            email=(email or "").strip(),
            phone=(phone or "").strip(),
            credit_limit=limit,
            current_credit=Decimal("0"),
            purchase_history=(),
        )
        self._customers[customer.id] = customer
        log.info("Added customer '%s' (%s) with credit limit %s", customer.name, customer.id, limit)
        self._notify(StorageKey.CUSTOMERS)
        return customer

    def adjust_credit(self, customer_id: str, delta: Decimal) -> Customer:
        """Add ``delta`` (USD) to a customer's balance outside of a purchase."""
        amount = round_money(parse_decimal(delta, field="credit adjustment"))
        customer = self.get(customer_id)
        updated = replace(customer, current_credit=round_money(customer.current_credit + amount))
        self._customers[customer_id] = updated
        log.info(
            "Adjusted credit for '%s' by %s: %s -> %s",
            customer.name,
            amount,
            customer.current_credit,
            updated.current_credit,
        )
        if updated.credit_limit_exceeded:
            log.warning(
                "Customer '%s' is over the credit limit (%s > %s)",
                customer.name,
                updated.current_credit,
                updated.credit_limit,
            )
        self._notify(StorageKey.CUSTOMERS)
        return updated

    def apply_payment(
        self,
        customer_id: str,
        amount,
        currency: Currency,
        rate: Decimal,
        *,
        when: Optional[datetime] = None,
    ) -> PaymentReceipt:
        """Reduce a customer's balance by a payment in USD or BS.

        The balance may become negative; the excess is reported on the
        receipt and kept as credit in favor.

        Raises:
            InvalidAmount: If ``amount`` is not strictly positive.
            InvalidRate: If ``rate`` is not strictly positive.
            CustomerNotFound: If ``customer_id`` is unknown.
        """
        currency = Currency(currency)
        paid = parse_amount(amount)
        rate = require_positive_rate(rate)
        customer = self.get(customer_id)

        amount_usd = round_money(amount_in_usd(paid, currency, rate))
        new_credit = round_money(customer.current_credit - amount_usd)
        overpayment_usd = max(Decimal("0"), -new_credit)
        overpayment = overpayment_usd * rate if currency is Currency.BS else overpayment_usd

        timestamp = when or datetime.now(UTC)
        payment = Payment(
            id=generate_id(prefix="Y", when=timestamp),
            customer_id=customer_id,
            amount=paid,
            currency=currency,
            timestamp=timestamp,
        )
        self._customers[customer_id] = replace(customer, current_credit=new_credit)
        log.info(
            "Applied payment %s %s for '%s': credit %s -> %s",
            paid,
            currency.value,
            customer.name,
            customer.current_credit,
            new_credit,
        )
        self._notify(StorageKey.CUSTOMERS)
        return PaymentReceipt(
            payment=payment,
            amount_usd=amount_usd,
            previous_credit=customer.current_credit,
            new_credit=new_credit,
            overpayment_usd=round_money(overpayment_usd),
            overpayment=round_money(overpayment),
        )

    def record_purchase(
        self,
        customer_id: str,
        purchase: Purchase,
        *,
        credit_delta: Decimal = Decimal("0"),
    ) -> bool:
        """Prepend ``purchase`` to the customer's history.

        ``credit_delta`` is charged to the balance in the same update so a
        checkout touches the ledger once.

        Returns:
            bool: ``True`` when the resulting balance exceeds the credit limit.
        """
        customer = self.get(customer_id)
        updated = replace(
            customer,
            current_credit=round_money(customer.current_credit + credit_delta),
            purchase_history=(purchase, *customer.purchase_history),
        )
        self._customers[customer_id] = updated
        log.info(
            "Recorded purchase '%s' for '%s' (credit %s -> %s)",
            purchase.id,
            customer.name,
            customer.current_credit,
            updated.current_credit,
        )
        self._notify(StorageKey.CUSTOMERS)
        return updated.credit_limit_exceeded


__all__ = ["PaymentReceipt", "CustomerLedger"]
