"""
Typed errors raised by the back-office workflows.

Every error carries a machine-readable ``code`` and the HTTP ``status_code``
the API layer answers with, so callers catch by type instead of parsing
messages:

    BackOfficeError
    +-- NotFoundError               NOT_FOUND
    |   +-- ProductNotFoundError    PRODUCT_NOT_FOUND
    |   +-- CurrencyNotFoundError   CURRENCY_NOT_FOUND
    +-- ValidationError             VALIDATION_ERROR
    |   +-- AmbiguousOrMissingSourceError
    |   +-- MissingRejectionReasonError
    +-- InvalidStateTransitionError INVALID_STATE_TRANSITION
    +-- InsufficientStockError      INSUFFICIENT_STOCK
    +-- PaymentExceedsDueError      PAYMENT_EXCEEDS_DUE
    +-- RefundExceedsRemainingError REFUND_EXCEEDS_REMAINING
    +-- OverReceiptError            OVER_RECEIPT
    +-- CircularCategoryReferenceError
    +-- CrossBranchReferenceError
    +-- CategoryHasChildrenError
    +-- DuplicateKeyError           DUPLICATE_KEY
    +-- ReturnWindowExpiredError    RETURN_WINDOW_EXPIRED
    +-- ShiftNotOpenError           SHIFT_NOT_OPEN
    +-- ZeroBudgetError             ZERO_BUDGET
    +-- ConflictError               CONFLICT
"""
from decimal import Decimal
from typing import Any, Optional


class BackOfficeError(Exception):
    """Base class for every workflow error"""

    code: str = "BACK_OFFICE_ERROR"
    status_code: int = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {"detail": self.message, "code": self.code}
        if self.details:
            payload["context"] = {
                key: str(value) if isinstance(value, Decimal) else value
                for key, value in self.details.items()
            }
        return payload


class NotFoundError(BackOfficeError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any = None):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} not found" if entity_id is None else f"{entity} not found: {entity_id}"
        super().__init__(message, entity=entity, entity_id=entity_id)


class ProductNotFoundError(NotFoundError):
    code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: Any):
        super().__init__("Product", product_id)


class CurrencyNotFoundError(NotFoundError):
    code = "CURRENCY_NOT_FOUND"

    def __init__(self, currency_id: Any):
        super().__init__("Currency", currency_id)


class ValidationError(BackOfficeError):
    code = "VALIDATION_ERROR"
    status_code = 422


class AmbiguousOrMissingSourceError(ValidationError):
    code = "AMBIGUOUS_OR_MISSING_SOURCE"

    def __init__(self, provided: int):
        super().__init__(
            "Exactly one of sale_id, layby_id or quotation_id must be provided",
            provided=provided,
        )


class MissingRejectionReasonError(ValidationError):
    code = "MISSING_REJECTION_REASON"

    def __init__(self):
        super().__init__("A rejection reason is required")


class InvalidStateTransitionError(BackOfficeError):
    code = "INVALID_STATE_TRANSITION"
    status_code = 409

    def __init__(self, entity: str, current: str, action: str, message: Optional[str] = None):
        self.entity = entity
        self.current = current
        self.action = action
        super().__init__(
            message or f"Cannot {action} {entity} in status '{current}'",
            entity=entity,
            current=current,
            action=action,
        )


class InsufficientStockError(BackOfficeError):
    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, branch_id: Any, product_id: Any, available: Decimal, requested: Decimal):
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id} at branch {branch_id}. "
            f"Available: {available}, Requested: {requested}",
            branch_id=branch_id,
            product_id=product_id,
            available=available,
            requested=requested,
        )


class PaymentExceedsDueError(BackOfficeError):
    code = "PAYMENT_EXCEEDS_DUE"
    status_code = 409

    def __init__(self, amount: Decimal, amount_due: Decimal):
        self.amount = amount
        self.amount_due = amount_due
        super().__init__(
            f"Payment amount ({amount}) exceeds amount due ({amount_due})",
            amount=amount,
            amount_due=amount_due,
        )


class RefundExceedsRemainingError(BackOfficeError):
    code = "REFUND_EXCEEDS_REMAINING"
    status_code = 409

    def __init__(self, amount: Decimal, remaining: Decimal):
        self.amount = amount
        self.remaining = remaining
        super().__init__(
            f"Refund amount exceeds remaining refund. Remaining: {remaining}, Requested: {amount}",
            amount=amount,
            remaining=remaining,
        )


class OverReceiptError(BackOfficeError):
    code = "OVER_RECEIPT"
    status_code = 409

    def __init__(self, item_id: Any, ordered: Decimal, would_receive: Decimal):
        super().__init__(
            f"Cannot receive more than ordered quantity for item {item_id} "
            f"(ordered {ordered}, would receive {would_receive})",
            item_id=item_id,
            ordered=ordered,
            would_receive=would_receive,
        )


class CircularCategoryReferenceError(BackOfficeError):
    code = "CIRCULAR_CATEGORY_REFERENCE"
    status_code = 409

    def __init__(self, category_id: Any, parent_id: Any):
        super().__init__(
            "Cannot create circular category reference",
            category_id=category_id,
            parent_id=parent_id,
        )


class CrossBranchReferenceError(BackOfficeError):
    code = "CROSS_BRANCH_REFERENCE"
    status_code = 409


class CategoryHasChildrenError(BackOfficeError):
    code = "CATEGORY_HAS_CHILDREN"
    status_code = 409

    def __init__(self, category_id: Any):
        super().__init__(
            "Cannot delete category with active subcategories. Delete or move subcategories first.",
            category_id=category_id,
        )


class DuplicateKeyError(BackOfficeError):
    code = "DUPLICATE_KEY"
    status_code = 409


class ReturnWindowExpiredError(BackOfficeError):
    code = "RETURN_WINDOW_EXPIRED"
    status_code = 409

    def __init__(self, days_elapsed: int, window_days: int):
        self.days_elapsed = days_elapsed
        self.window_days = window_days
        super().__init__(
            f"Return window expired. This transaction is {days_elapsed} days old, "
            f"but returns are only allowed within {window_days} days.",
            days_elapsed=days_elapsed,
            window_days=window_days,
        )


class ShiftNotOpenError(BackOfficeError):
    code = "SHIFT_NOT_OPEN"
    status_code = 409

    def __init__(self, shift_id: Any, status: str):
        super().__init__(
            "Shift must be open to process cash refunds",
            shift_id=shift_id,
            status=status,
        )


class ZeroBudgetError(BackOfficeError):
    code = "ZERO_BUDGET"
    status_code = 409

    def __init__(self, budget_id: Any):
        super().__init__(
            "Budget amount is zero; utilization is undefined",
            budget_id=budget_id,
        )


class ConflictError(BackOfficeError):
    code = "CONFLICT"
    status_code = 409

    def __init__(self, attempts: int, cause: Optional[BaseException] = None):
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification detected; gave up after {attempts} attempts",
            attempts=attempts,
            cause=type(cause).__name__ if cause is not None else None,
        )
