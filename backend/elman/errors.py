# Overview: Domain error taxonomy shared by services and routes.

from __future__ import annotations


class DomainError(Exception):
    """Base for errors the API reports to callers verbatim."""

    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(DomainError):
    """400-level input problem. Not retried."""


class NotFoundError(DomainError):
    """404-level missing entity."""

    status_code = 404


class ConflictError(DomainError):
    """409-level business rule conflict. Retry only with corrected input."""

    status_code = 409


class TransientStoreError(DomainError):
    """
    The database transaction could not complete (lock timeout, deadlock,
    lost connection). The operation was atomic, so retrying it unchanged is safe.
    """

    status_code = 503


# =============================================================================
# NOT FOUND
# =============================================================================

class ProductNotFoundError(NotFoundError):
    def __init__(self, product_id):
        super().__init__(f"Product not found: {product_id}", details={"product_id": product_id})


class SaleNotFoundError(NotFoundError):
    def __init__(self, receipt_ref: str):
        super().__init__("Sale not found", details={"receipt_ref": receipt_ref})


class CustomerNotFoundError(NotFoundError):
    def __init__(self, customer_id):
        super().__init__("Customer not found", details={"customer_id": customer_id})


class ExpenseNotFoundError(NotFoundError):
    def __init__(self, expense_id):
        super().__init__("Expense not found", details={"expense_id": expense_id})


class UserNotFoundError(NotFoundError):
    def __init__(self, user_ref):
        super().__init__("User not found", details={"user": user_ref})


# =============================================================================
# CONFLICTS
# =============================================================================

class InsufficientStockError(ConflictError):
    def __init__(self, message: str, *, product_id, requested: int, available: int):
        super().__init__(
            message,
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.available = available


class ProductArchivedError(ConflictError):
    def __init__(self, product_id, name: str):
        super().__init__(f"Product is archived: {name}", details={"product_id": product_id})


class RefundExceedsAvailableError(ConflictError):
    def __init__(self, name: str, *, product_id, requested: int, refundable: int):
        super().__init__(
            f"Refund qty too high for {name}. Max refundable: {refundable}",
            details={"product_id": product_id, "requested": requested, "refundable": refundable},
        )
        self.refundable = refundable


class DuplicateReceiptError(ConflictError):
    def __init__(self, receipt_ref: str):
        super().__init__(
            "Could not allocate a unique receipt reference",
            details={"receipt_ref": receipt_ref},
        )


class ItemNotOnSaleError(ValidationError):
    def __init__(self, product_id, receipt_ref: str):
        super().__init__(
            f"Item not found on sale: {product_id}",
            details={"product_id": product_id, "receipt_ref": receipt_ref},
        )
