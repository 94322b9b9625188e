"""
Sale error taxonomy.

Every error carries a human-readable message naming the offending item and
a details dict (product/offer ids, required vs. available) so the operator
can fix the cart without guessing. Routes map each class to its status.
"""

from __future__ import annotations


class SaleError(Exception):
    """Base for all sale-processing errors."""
    status_code = 400
    code = "SALE_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class InvalidRequestError(SaleError):
    """Malformed cart: empty, non-positive quantity or price, mismatched totals."""
    status_code = 400
    code = "INVALID_REQUEST"


class ForbiddenError(SaleError):
    """Operator has no store assignment or lacks the role."""
    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(SaleError):
    """Unknown product, inventory record or assembly offer."""
    status_code = 404
    code = "NOT_FOUND"


class InsufficientStockError(SaleError):
    """Inventory shortfall detected during validation."""
    status_code = 409
    code = "INSUFFICIENT_STOCK"


class TransactionFailedError(SaleError):
    """The atomic phase failed and was rolled back."""
    status_code = 500
    code = "TRANSACTION_FAILED"
