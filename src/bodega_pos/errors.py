"""Exception hierarchy for the bodega POS business services.

Every validation failure is raised before any state is mutated, so callers
can correct the input and retry. Persistence failures form a separate branch
because they never invalidate the in-memory state.
"""

from __future__ import annotations


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class InvalidInput(BusinessRuleViolation):
    """Raised when a numeric or text field is malformed or out of range."""


class InvalidQuantity(InvalidInput):
    """Raised when a quantity is non-numeric or not strictly positive."""


class InvalidAmount(InvalidInput):
    """Raised when a monetary amount is non-numeric or not strictly positive."""


class InvalidRate(InvalidInput):
    """Raised when an exchange rate is not strictly positive."""


class InvalidStock(InvalidInput):
    """Raised when a stock level would become negative."""


class DuplicateCategory(BusinessRuleViolation):
    """Raised when a category label is already registered."""


class InsufficientStock(BusinessRuleViolation):
    """Raised when a requested quantity exceeds the available stock."""

    def __init__(self, product_name: str, available, requested) -> None:
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for '{product_name}': only {available} available "
            f"(requested {requested})"
        )


class InsufficientPayment(BusinessRuleViolation):
    """Raised when cash tendered is below the total and nobody absorbs the rest."""


class CustomerRequired(BusinessRuleViolation):
    """Raised when a credit sale is attempted without a customer."""


class EmptyCart(BusinessRuleViolation):
    """Raised when checkout is attempted with no cart lines."""


class EmptyCatalogFile(BusinessRuleViolation):
    """Raised when an import source contains no records at all."""


class NoValidRecords(BusinessRuleViolation):
    """Raised when an import source contains no usable product records."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product or customer is unknown."""


class ProductNotFound(MissingReferenceError):
    """Raised when a product id is not present in the catalog."""


class CustomerNotFound(MissingReferenceError):
    """Raised when a customer id is not present in the ledger."""


class PersistenceError(Exception):
    """Base class for failures at the durable storage boundary."""


class PersistenceWriteFailure(PersistenceError):
    """Raised when the store cannot write a key."""


class PersistenceReadFailure(PersistenceError):
    """Raised when stored data for a key cannot be decoded."""


__all__ = [
    "BusinessRuleViolation",
    "InvalidInput",
    "InvalidQuantity",
    "InvalidAmount",
    "InvalidRate",
    "InvalidStock",
    "DuplicateCategory",
    "InsufficientStock",
    "InsufficientPayment",
    "CustomerRequired",
    "EmptyCart",
    "EmptyCatalogFile",
    "NoValidRecords",
    "MissingReferenceError",
    "ProductNotFound",
    "CustomerNotFound",
    "PersistenceError",
    "PersistenceWriteFailure",
    "PersistenceReadFailure",
]
