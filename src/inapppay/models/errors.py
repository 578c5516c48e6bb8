"""Error models for the InAppPay SDK."""
from __future__ import annotations

from typing import Any, Optional

from ..constants import ErrorCodes


class InAppPayError(Exception):
    """Base exception for the InAppPay SDK."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "INAPPPAY_ERROR"
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            }
        }


class InvalidRequestError(InAppPayError):
    """Purchase request rejected locally, before any network call."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, code=ErrorCodes.INVALID_REQUEST, details={"field": field})
        self.field = field


class APIError(InAppPayError):
    """Error response from one of the backend functions."""

    def __init__(
        self,
        message: str,
        status_code: int,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, code or ErrorCodes.API_ERROR, details)
        self.status_code = status_code

    @classmethod
    def from_response(cls, status_code: int, body: Any) -> "APIError":
        """Create APIError from a decoded error body.

        The backend reports ``{"error": "...", "errorCode": "..."}``; status
        helpers report failures under ``message`` instead.
        """
        if isinstance(body, str):
            return cls(
                message=body or "Unknown server error",
                status_code=status_code,
                code=ErrorCodes.UNKNOWN_ERROR,
            )
        if not isinstance(body, dict):
            return cls(
                message="Unknown server error",
                status_code=status_code,
                code=ErrorCodes.UNKNOWN_ERROR,
            )
        message = body.get("error") or body.get("message") or "Validation failed"
        return cls(
            message=str(message),
            status_code=status_code,
            code=str(body.get("errorCode") or ErrorCodes.VALIDATION_FAILED),
            details=body.get("data") if isinstance(body.get("data"), dict) else None,
        )


class NetworkError(InAppPayError):
    """Transport-level failure (connection refused, DNS, timeout)."""

    def __init__(self, message: str, code: str = ErrorCodes.NETWORK_ERROR):
        super().__init__(f"Network error: {message}", code=code)


class TransactionNotFoundError(InAppPayError):
    """No tracked transaction with this id."""

    def __init__(self, transaction_id: str):
        super().__init__(
            f"Transaction not found: {transaction_id}",
            code=ErrorCodes.TRANSACTION_NOT_FOUND,
            details={"transaction_id": transaction_id},
        )
        self.transaction_id = transaction_id


class TransactionStateError(InAppPayError):
    """Operation not permitted in the transaction's current state."""

    def __init__(self, transaction_id: str, state: str, operation: str):
        super().__init__(
            f"Cannot {operation} transaction {transaction_id} in state {state}",
            code=ErrorCodes.INVALID_STATE,
            details={"transaction_id": transaction_id, "state": state, "operation": operation},
        )
        self.transaction_id = transaction_id
        self.state = state
        self.operation = operation
