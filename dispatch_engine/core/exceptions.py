"""
Custom Exception Hierarchy

Four families, matching how callers are expected to react:
- validation / usage errors: reject immediately, nothing was written
- transient store errors: safe to retry, nothing was written
- data-integrity errors: fatal, indicate an upstream provisioning bug
- everything else: unexpected, rendered as a generic 500

Expected-empty outcomes (no partner available, order already settled) are
NOT exceptions; services return them as result values.
"""
from typing import Any
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for API responses"""

    # General errors (1xxx)
    INTERNAL_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"

    # Order errors (2xxx)
    ORDER_NOT_FOUND = "ERR_2001"
    ORDER_INVALID_STATUS = "ERR_2002"
    ORDER_NOT_DISPATCHABLE = "ERR_2003"
    ORDER_NOT_ASSIGNED = "ERR_2004"

    # Partner errors (3xxx)
    PARTNER_NOT_FOUND = "ERR_3001"

    # Wallet / ledger errors (4xxx)
    WALLET_NOT_FOUND = "ERR_4001"
    SETTLEMENT_ORDER_MISSING = "ERR_4002"
    DATA_INTEGRITY = "ERR_4003"

    # Store errors (5xxx)
    STORE_UNAVAILABLE = "ERR_5001"
    STORE_TIMEOUT = "ERR_5002"
    LOCK_TIMEOUT = "ERR_5003"

    # State machine errors (6xxx)
    INVALID_STATE_TRANSITION = "ERR_6001"


class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: dict[str, Any] | None = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response"""
        return {
            "error": {
                "code": self.error_code.value,
                "message": self.message,
                "details": self.details
            }
        }


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )
        if field:
            self.details["field"] = field


class NotFoundException(AppException):
    """Raised when a requested resource is not found"""

    def __init__(
        self,
        resource: str,
        identifier: Any,
        error_code: ErrorCode = ErrorCode.NOT_FOUND
    ):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=error_code,
            status_code=404,
            details={"resource": resource, "identifier": str(identifier)}
        )


class OrderNotFoundError(NotFoundException):
    def __init__(self, order_id: str):
        super().__init__("Order", order_id, error_code=ErrorCode.ORDER_NOT_FOUND)


class PartnerNotFoundError(NotFoundException):
    def __init__(self, partner_id: str):
        super().__init__("Delivery partner", partner_id, error_code=ErrorCode.PARTNER_NOT_FOUND)


class OrderException(AppException):
    """Base exception for order usage errors"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        order_id: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=409,
            details=details
        )
        if order_id:
            self.details["order_id"] = order_id


class OrderStatusError(OrderException):
    """Raised when an order has the wrong status for an operation"""

    def __init__(self, order_id: str, current_status: str, required_statuses: list[str]):
        super().__init__(
            message=(
                f"Order {order_id} has status '{current_status}', "
                f"required one of {', '.join(required_statuses)}"
            ),
            error_code=ErrorCode.ORDER_INVALID_STATUS,
            order_id=order_id,
            details={"current_status": current_status, "required_statuses": required_statuses}
        )


class OrderNotDispatchableError(OrderException):
    """Raised when assigning a courier to an order that never gets one (pickup)"""

    def __init__(self, order_id: str, order_type: str):
        super().__init__(
            message=f"Order {order_id} of type '{order_type}' does not take a delivery partner",
            error_code=ErrorCode.ORDER_NOT_DISPATCHABLE,
            order_id=order_id,
            details={"order_type": order_type}
        )


class OrderNotAssignedError(OrderException):
    """Raised when settling an order that is not assigned to the given partner"""

    def __init__(self, order_id: str, partner_id: str, assigned_partner_id: str | None):
        super().__init__(
            message=f"Order {order_id} is not assigned to partner {partner_id}",
            error_code=ErrorCode.ORDER_NOT_ASSIGNED,
            order_id=order_id,
            details={"partner_id": partner_id, "assigned_partner_id": assigned_partner_id}
        )


class DataIntegrityError(AppException):
    """Raised when stored data contradicts a provisioning guarantee.

    Never retried; the caller surfaces it and operators investigate.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.DATA_INTEGRITY,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=500,
            details=details
        )


class WalletMissingError(DataIntegrityError):
    """Raised when a known courier has no wallet"""

    def __init__(self, partner_id: str):
        super().__init__(
            message=f"Wallet not found for delivery partner {partner_id}",
            error_code=ErrorCode.WALLET_NOT_FOUND,
            details={"partner_id": partner_id}
        )


class SettlementOrderMissingError(DataIntegrityError):
    """Raised when a settlement references an order that does not exist"""

    def __init__(self, order_id: str, partner_id: str):
        super().__init__(
            message=f"Settlement references unknown order {order_id}",
            error_code=ErrorCode.SETTLEMENT_ORDER_MISSING,
            details={"order_id": order_id, "partner_id": partner_id}
        )


class TransientStoreError(AppException):
    """Base exception for retryable data-store failures"""

    def __init__(
        self,
        operation: str,
        message: str,
        error_code: ErrorCode = ErrorCode.STORE_UNAVAILABLE,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=503,
            details=details
        )
        self.details["operation"] = operation
        self.details["retryable"] = True


class StoreUnavailableError(TransientStoreError):
    def __init__(self, operation: str, reason: str):
        super().__init__(
            operation=operation,
            message=f"{operation} failed: data store unavailable",
            error_code=ErrorCode.STORE_UNAVAILABLE,
            details={"reason": reason}
        )


class StoreTimeoutError(TransientStoreError):
    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            operation=operation,
            message=f"{operation} timed out after {timeout_seconds}s",
            error_code=ErrorCode.STORE_TIMEOUT,
            details={"timeout_seconds": timeout_seconds}
        )


class LockTimeoutError(TransientStoreError):
    def __init__(self, key: str, timeout_seconds: float):
        super().__init__(
            operation="lock",
            message=f"Could not acquire lock '{key}' within {timeout_seconds}s",
            error_code=ErrorCode.LOCK_TIMEOUT,
            details={"key": key, "timeout_seconds": timeout_seconds}
        )


class InvalidStateTransitionError(AppException):
    """Raised when an order status transition is not allowed"""

    def __init__(
        self,
        order_id: str,
        current_state: str,
        target_state: str,
        reason: str | None = None
    ):
        message = f"Invalid transition from '{current_state}' to '{target_state}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message=message,
            error_code=ErrorCode.INVALID_STATE_TRANSITION,
            status_code=409,
            details={
                "order_id": order_id,
                "current_state": current_state,
                "target_state": target_state,
            }
        )
        if reason:
            self.details["reason"] = reason
