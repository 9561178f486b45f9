"""
Custom Exceptions for Storefront Billing

Hierarchical exception classes for proper error handling across layers.
"""

from typing import Optional, Dict, Any


class BillingError(Exception):
    """Base exception for all billing errors."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(BillingError):
    """Raised when input validation fails."""
    pass


class InvalidTransitionError(ValidationError):
    """Raised when a subscription status change is not in the transition table."""

    def __init__(
        self,
        from_status: str,
        to_status: str,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"Cannot transition subscription from {from_status} to {to_status}",
            details={"from_status": from_status, "to_status": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


class DatabaseError(BillingError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class NotFoundError(DatabaseError):
    """Raised when a requested resource is not found."""
    pass


class DuplicateError(DatabaseError):
    """Raised when attempting to create a duplicate resource."""
    pass


class ConcurrencyConflictError(DatabaseError):
    """
    Raised when a row changed underneath a compare-and-swap write.

    Callers may retry the whole operation; this is never a validation failure.
    """
    pass


class PaymentGatewayError(BillingError):
    """Raised when the billing gateway rejects or fails an operation."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details, original_error)


class PaymentDeclinedError(PaymentGatewayError):
    """Raised when a charge attempt is declined."""

    def __init__(
        self,
        failure_reason: str,
        operation: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(failure_reason, operation, original_error)
        self.failure_reason = failure_reason


class GatewayUnavailableError(PaymentGatewayError):
    """Raised when the gateway cannot be reached or has no remote object to work on."""
    pass


class NotificationError(BillingError):
    """Raised when an email notification cannot be delivered."""
    pass


class ConfigurationError(BillingError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)
