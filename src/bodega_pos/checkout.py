"""Checkout orchestration: turning the cart into a purchase.

A checkout runs ``IDLE -> VALIDATING -> COMMITTING -> COMPLETED``. Every
precondition is checked while validating, before anything is touched, so a
rejected checkout leaves the cart, the catalog and the ledger exactly as
they were. The commit phase then runs straight through:

1. totals in USD and BS at the current exchange rate;
2. payment status and the credit to charge to the customer;
3. credit-limit check (a warning, never a block);
4. stock decrement and sales count for every line;
5. the immutable :class:`~bodega_pos.models.Purchase`, prepended to the
   customer's history when one is linked;
6. the cart is cleared.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from . import log
from .cart import Cart, ChangeDue
from .catalog import Catalog
from .constants import Currency, CustomerType, PaymentMethod, PaymentStatus
from .customers import CustomerLedger
from .errors import (
    BusinessRuleViolation,
    CustomerRequired,
    EmptyCart,
    InsufficientPayment,
    InsufficientStock,
    InvalidInput,
)
from .models import Customer, Purchase, generate_id
from .money import (
    ExchangeRate,
    amount_in_usd,
    format_money,
    parse_amount,
    require_positive_rate,
    round_money,
)


class CheckoutState(str, Enum):
    """Enumerate the phases a checkout goes through."""

    IDLE = "idle"
    VALIDATING = "validating"
    COMMITTING = "committing"
    COMPLETED = "completed"


@dataclass(frozen=True)
class CheckoutCommand:
    """User intent for completing the sale currently in the cart.

    ``amount_paid`` is only captured for cash sales; point-of-sale and
    biopayment are settled in full and credit sales charge the whole total.
    """

    payment_method: PaymentMethod
    customer_id: Optional[str] = None
    customer_type: Optional[CustomerType] = None
    amount_paid: Optional[Decimal] = None
    amount_currency: Currency = Currency.USD
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CreditLimitExceeded:
    """Non-fatal notice that a checkout pushed a customer over the limit."""

    customer_id: str
    customer_name: str
    current_credit: Decimal
    credit_limit: Decimal

    @property
    def excess(self) -> Decimal:
        return self.current_credit - self.credit_limit


@dataclass(frozen=True)
class CheckoutResult:
    """What the caller needs to print a receipt."""

    purchase: Purchase
    change: Optional[ChangeDue] = None
    credit_limit_warning: Optional[CreditLimitExceeded] = None


@dataclass(frozen=True)
class _CheckoutPlan:
    method: PaymentMethod
    customer: Optional[Customer]
    customer_type: CustomerType
    rate: Decimal
    total_usd: Decimal
    total_bs: Decimal
    paid_usd: Optional[Decimal]
    tendered: Optional[Decimal]
    tendered_currency: Currency
    timestamp: datetime


def derive_payment_status(
    method: PaymentMethod,
    total_usd: Decimal,
    paid_usd: Optional[Decimal],
) -> tuple[PaymentStatus, Decimal]:
    """Derive the payment status and the credit to charge.

    Returns:
        tuple[PaymentStatus, Decimal]: The status and the USD amount that
            goes onto the customer's balance.
    """
    if method is PaymentMethod.CREDIT:
        return PaymentStatus.CREDIT, total_usd
    if method is PaymentMethod.CASH:
        if paid_usd is not None and paid_usd < total_usd:
            return PaymentStatus.PARTIAL, total_usd - paid_usd
        return PaymentStatus.PAID, Decimal("0")
    if method in (PaymentMethod.POINT_OF_SALE, PaymentMethod.BIOPAYMENT):
        return PaymentStatus.PAID, Decimal("0")
    raise BusinessRuleViolation(f"Unsupported payment method: {method}")


class CheckoutOrchestrator:
    """Coordinates the cart, catalog, ledger and rate for one checkout at a time."""

    def __init__(
        self,
        cart: Cart,
        catalog: Catalog,
        ledger: CustomerLedger,
        exchange_rate: ExchangeRate,
    ) -> None:
        self.cart = cart
        self.catalog = catalog
        self.ledger = ledger
        self.exchange_rate = exchange_rate
        self.state = CheckoutState.IDLE

    def complete_purchase(self, command: CheckoutCommand) -> CheckoutResult:
        """Validate and commit the sale currently in the cart.

        Args:
            command (CheckoutCommand): Payment method, optional customer and
                optional cash tendered.

        Returns:
            CheckoutResult: The purchase record, the change owed for cash
                sales, and the credit-limit warning when one applies.

        Raises:
            EmptyCart: If the cart has no lines.
            ProductNotFound: If a line refers to a product the catalog lacks.
            InsufficientStock: If a line asks for more than the live stock.
            CustomerRequired: If a credit sale has no customer.
            CustomerNotFound: If the customer id is unknown.
            InvalidAmount: If the cash tendered is not a positive number.
            InsufficientPayment: If cash tendered is short and there is no
                customer to carry the difference.
            InvalidInput: If the payment method or customer type is invalid.
        """
        self.state = CheckoutState.VALIDATING
        try:
            plan = self._validate(command)
        except BusinessRuleViolation:
            self.state = CheckoutState.IDLE
            raise

        self.state = CheckoutState.COMMITTING
        result = self._commit(plan)
        self.state = CheckoutState.COMPLETED
        return result

    def _validate(self, command: CheckoutCommand) -> _CheckoutPlan:
        if self.cart.is_empty:
            log.warning("Checkout rejected: cart is empty")
            raise EmptyCart("The cart has no products to check out")

        for line in self.cart.lines:
            live = self.catalog.get(line.product_id)
            if line.quantity > live.stock:
                log.warning("Checkout rejected: '%s' has %s in stock", live.name, live.stock)
                raise InsufficientStock(live.name, live.stock, line.quantity)

        try:
            method = PaymentMethod(command.payment_method)
        except ValueError as exc:
            raise InvalidInput(f"Unsupported payment method: {command.payment_method}") from exc

        customer = self.ledger.get(command.customer_id) if command.customer_id else None
        customer_type = self._resolve_customer_type(command.customer_type, customer)

        if method is PaymentMethod.CREDIT and customer is None:
            log.warning("Checkout rejected: credit sale without a customer")
            raise CustomerRequired("A credit sale requires a customer")

        rate = require_positive_rate(self.exchange_rate.value)
        total_usd = self.cart.subtotal_usd()
        total_bs = self.cart.subtotal_bs(rate)

        paid_usd: Optional[Decimal] = None
        tendered: Optional[Decimal] = None
        try:
            currency = Currency(command.amount_currency)
        except ValueError as exc:
            raise InvalidInput(f"Unsupported currency: {command.amount_currency}") from exc
        if command.amount_paid is not None:
            if method is PaymentMethod.CASH:
                tendered = parse_amount(command.amount_paid)
                paid_usd = round_money(amount_in_usd(tendered, currency, rate))
                if currency is Currency.BS and tendered >= total_bs:
                    # The BS total shown to the customer settles the sale.
                    paid_usd = max(paid_usd, total_usd)
                if paid_usd < total_usd and customer is None:
                    log.warning("Checkout rejected: paid %s of %s with no customer", paid_usd, total_usd)
                    raise InsufficientPayment(
                        f"Amount paid {format_money(paid_usd, Currency.USD)} is below the total "
                        f"{format_money(total_usd, Currency.USD)} and no customer was selected for credit"
                    )
            else:
                log.debug("Ignoring amount paid for %s sale; it is settled in full", method.value)

        return _CheckoutPlan(
            method=method,
            customer=customer,
            customer_type=customer_type,
            rate=rate,
            total_usd=total_usd,
            total_bs=total_bs,
            paid_usd=paid_usd,
            tendered=tendered,
            tendered_currency=currency,
            timestamp=command.timestamp or datetime.now(UTC),
        )

    @staticmethod
    def _resolve_customer_type(
        requested: Optional[CustomerType],
        customer: Optional[Customer],
    ) -> CustomerType:
        if requested is None:
            return CustomerType.REGULAR if customer is not None else CustomerType.OCCASIONAL
        try:
            customer_type = CustomerType(requested)
        except ValueError as exc:
            raise InvalidInput(f"Unsupported customer type: {requested}") from exc
        if customer_type is CustomerType.OCCASIONAL and customer is not None:
            raise InvalidInput("Only regular customers can be linked to a purchase")
        return customer_type

    def _commit(self, plan: _CheckoutPlan) -> CheckoutResult:
        status, credit_delta = derive_payment_status(plan.method, plan.total_usd, plan.paid_usd)

        warning: Optional[CreditLimitExceeded] = None
        if plan.customer is not None:
            projected = plan.customer.current_credit + credit_delta
            if projected > plan.customer.credit_limit:
                warning = CreditLimitExceeded(
                    customer_id=plan.customer.id,
                    customer_name=plan.customer.name,
                    current_credit=projected,
                    credit_limit=plan.customer.credit_limit,
                )
                log.warning(
                    "Customer '%s' exceeded the credit limit: %s > %s",
                    plan.customer.name,
                    projected,
                    plan.customer.credit_limit,
                )

        change: Optional[ChangeDue] = None
        if plan.tendered is not None and status is PaymentStatus.PAID:
            change = self.cart.change_due(plan.tendered, plan.tendered_currency, plan.rate)

        lines = tuple(self.cart.lines)
        self.catalog.record_sale(lines)

        purchase = Purchase(
            id=generate_id(prefix="S", when=plan.timestamp),
            timestamp=plan.timestamp,
            total_bs=plan.total_bs,
            total_usd=plan.total_usd,
            lines=lines,
            payment_status=status,
            payment_method=plan.method,
            customer_type=plan.customer_type,
            amount_paid=round_money(plan.paid_usd) if plan.paid_usd is not None else None,
            customer_id=plan.customer.id if plan.customer is not None else None,
        )
        if plan.customer is not None:
            self.ledger.record_purchase(plan.customer.id, purchase, credit_delta=credit_delta)

        self.cart.clear()
        log.info(
            "Completed purchase '%s' for %s (%s) via %s, status %s",
            purchase.id,
            format_money(purchase.total_usd, Currency.USD),
            format_money(purchase.total_bs, Currency.BS),
            plan.method.label,
            status.value,
        )
        return CheckoutResult(purchase=purchase, change=change, credit_limit_warning=warning)


def format_receipt(purchase: Purchase, *, customer_name: Optional[str] = None) -> str:
    """Render a purchase as plain text for printing or the terminal."""
    rows: List[str] = [
        f"Purchase {purchase.id}",
        purchase.timestamp.strftime("%d/%m/%Y %H:%M"),
    ]
    if customer_name:
        rows.append(f"Customer: {customer_name}")
    for line in purchase.lines:
        rows.append(
            f"  {line.quantity.normalize():f} x {line.product.name} "
            f"@ {format_money(line.product.price, Currency.USD)} = {format_money(line.total_usd, Currency.USD)}"
        )
    rows.append(
        f"Total: {format_money(purchase.total_usd, Currency.USD)} "
        f"({format_money(purchase.total_bs, Currency.BS)})"
    )
    rows.append(f"Payment: {purchase.payment_method.label} ({purchase.payment_status.value})")
    if purchase.amount_paid is not None:
        rows.append(f"Paid: {format_money(purchase.amount_paid, Currency.USD)}")
    return "\n".join(rows)


__all__ = [
    "CheckoutState",
    "CheckoutCommand",
    "CreditLimitExceeded",
    "CheckoutResult",
    "derive_payment_status",
    "CheckoutOrchestrator",
    "format_receipt",
]
