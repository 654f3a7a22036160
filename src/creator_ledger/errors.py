"""
Error hierarchy for ledger operations.

Every error carries a stable code, a category and the HTTP status the API
layer answers with. Any error aborts the whole operation: nothing it
started writing becomes visible.

The idempotent short-circuits (already owned, already subscribed) are not
errors; see `LedgerOutcome`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class ErrorCategory(str, Enum):
    AUTHENTICATION = "authentication"
    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    PAYMENT = "payment"
    CONFLICT = "conflict"
    DATABASE = "database"


@dataclass
class ErrorContext:
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    account_id: Optional[str] = None
    correlation_id: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


class LedgerError(Exception):
    """Base exception for all ledger failures."""

    def __init__(
        self,
        message: str,
        code: str,
        category: ErrorCategory,
        http_status: int = 500,
        context: Optional[ErrorContext] = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.http_status = http_status
        self.context = context or ErrorContext()
        self.retryable = retryable

    def to_response(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
                "retryable": self.retryable,
                "timestamp": self.context.timestamp.isoformat(),
                "correlation_id": self.context.correlation_id,
            }
        }


class NotAuthenticatedError(LedgerError):
    def __init__(self, context: Optional[ErrorContext] = None) -> None:
        super().__init__(
            "No authenticated account for this operation",
            "NOT_AUTHENTICATED", ErrorCategory.AUTHENTICATION, 401, context,
        )


class NotFoundError(LedgerError):
    def __init__(
        self, resource_type: str, resource_id: str, context: Optional[ErrorContext] = None
    ) -> None:
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            "NOT_FOUND", ErrorCategory.RESOURCE_NOT_FOUND, 404, context,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class InvalidAmountError(LedgerError):
    def __init__(
        self, amount: Any, minimum: int, context: Optional[ErrorContext] = None
    ) -> None:
        super().__init__(
            f"Amount {amount!r} is invalid; minimum is {minimum}",
            "INVALID_AMOUNT", ErrorCategory.VALIDATION, 400, context,
        )
        self.amount = amount
        self.minimum = minimum


class UnsupportedTargetError(LedgerError):
    """Target exists but cannot take this kind of action (or is inactive)."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None) -> None:
        super().__init__(
            message, "UNSUPPORTED_TARGET", ErrorCategory.VALIDATION, 400, context,
        )


class PaymentMethodMissingError(LedgerError):
    def __init__(self, context: Optional[ErrorContext] = None) -> None:
        super().__init__(
            "Register a payment method before purchasing",
            "PAYMENT_METHOD_MISSING", ErrorCategory.PAYMENT, 402, context,
        )


class TransactionConflictError(LedgerError):
    """Raised by a DB manager when a transaction lost a write conflict."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None) -> None:
        super().__init__(
            message, "TRANSACTION_CONFLICT", ErrorCategory.CONFLICT, 409, context,
            retryable=True,
        )


class ConflictRetryExhaustedError(LedgerError):
    def __init__(self, attempts: int, context: Optional[ErrorContext] = None) -> None:
        super().__init__(
            f"Could not commit after {attempts} attempts under contention",
            "CONFLICT_RETRY_EXHAUSTED", ErrorCategory.CONFLICT, 503, context,
            retryable=True,
        )
        self.attempts = attempts


class DuplicateRecordError(LedgerError):
    """Unique key violation reported by a DB manager at commit time."""

    def __init__(self, collection: str, key: Any, context: Optional[ErrorContext] = None) -> None:
        super().__init__(
            f"Duplicate record in {collection} for key {key!r}",
            "DUPLICATE_RECORD", ErrorCategory.DATABASE, 409, context,
        )
        self.collection = collection
        self.key = key
