"""
Centralized constants and configuration defaults for the InAppPay SDK.

All values are organized into logical namespaces using classes.

Usage:
    from inapppay.constants import Timeouts, RetryDefaults, ErrorCodes
"""
from __future__ import annotations

from enum import Enum
from typing import Final

# Python 3.10 compatibility for StrEnum
try:
    from enum import StrEnum
except ImportError:
    class StrEnum(str, Enum):
        """String enum for Python < 3.11 compatibility."""

        def __str__(self) -> str:
            return str(self.value)


DEFAULT_BASE_URL: Final[str] = "https://us-central1-inapppay-47111.cloudfunctions.net"
DEFAULT_CURRENCY: Final[str] = "USD"
USER_AGENT: Final[str] = "inapppay-python/0.1.0"


# =============================================================================
# Timeout Constants (in seconds)
# =============================================================================

class Timeouts:
    """Network timeout configuration."""

    HTTP_DEFAULT: Final[float] = 30.0
    HTTP_CONNECT: Final[float] = 30.0
    HTTP_READ: Final[float] = 30.0
    HTTP_WRITE: Final[float] = 30.0


# =============================================================================
# Retry Configuration
# =============================================================================

class RetryDefaults:
    """Default limits for the purchase attempt loop."""

    MAX_ATTEMPTS: Final[int] = 5
    MAX_ELAPSED_SECONDS: Final[float] = 30.0
    BASE_DELAY: Final[float] = 0.5
    MAX_DELAY: Final[float] = 8.0
    JITTER: Final[float] = 0.2


# =============================================================================
# Backend Endpoints and Headers
# =============================================================================

class Endpoints:
    """Cloud function paths, relative to the base URL."""

    PROCESS_PURCHASE: Final[str] = "processPurchase"
    VALIDATE_ITEM: Final[str] = "validateItemForPurchase"
    CHECK_PURCHASED: Final[str] = "checkUserPurchased"
    CHECK_SUBSCRIBED: Final[str] = "checkUserSubscribed"
    GET_PURCHASES: Final[str] = "getPurchases"
    GET_SUBSCRIPTIONS: Final[str] = "getSubscriptions"


class Headers:
    """HTTP header names."""

    IDEMPOTENCY_KEY: Final[str] = "Idempotency-Key"
    API_KEY: Final[str] = "X-API-Key"
    CONTENT_TYPE: Final[str] = "Content-Type"
    USER_AGENT: Final[str] = "User-Agent"
    RETRY_AFTER: Final[str] = "Retry-After"


class StatusCodes:
    """Classification of backend HTTP status codes."""

    # Business rejections: the backend understood the purchase and said no.
    DECLINE: Final[frozenset[int]] = frozenset({402, 403, 409, 410, 451})
    # 4xx codes that still describe a transient condition.
    TRANSIENT_CLIENT: Final[frozenset[int]] = frozenset({408, 425, 429})


# =============================================================================
# Domain Values
# =============================================================================

class ItemType(StrEnum):
    """Catalog item types returned by item validation."""

    ONETIME = "onetime"
    REPURCHASE = "repurchase"
    SUBSCRIPTION = "subscription"


class PaymentMethod(StrEnum):
    """Supported payment methods."""

    CARD = "card"
    PAYPAL = "paypal"


class CardType(StrEnum):
    """Card brand detected from the leading digit."""

    VISA = "visa"
    MASTERCARD = "mastercard"
    AMEX = "amex"
    DISCOVER = "discover"
    UNKNOWN = "unknown"


SUPPORTED_CURRENCIES: Final[frozenset[str]] = frozenset({
    "USD", "EUR", "GBP", "JPY", "CAD", "AUD", "CHF", "CNY",
    "INR", "MXN", "BRL", "SGD", "HKD", "KRW", "ILS", "SEK",
    "NOK", "DKK", "PLN", "NZD", "ZAR", "TRY",
})


class CardLimits:
    """Card detail validation bounds."""

    MIN_NUMBER_LENGTH: Final[int] = 12
    MAX_NUMBER_LENGTH: Final[int] = 19
    MAX_ITEM_ID_LENGTH: Final[int] = 128
    MAX_METADATA_ENTRIES: Final[int] = 50


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCodes(StrEnum):
    """Machine-readable error codes surfaced to callers."""

    INVALID_REQUEST = "INVALID_REQUEST"
    MISSING_PROJECT_NAME = "MISSING_PROJECT_NAME"
    MISSING_USER_ID = "MISSING_USER_ID"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    ERROR_PARSE_FAILED = "ERROR_PARSE_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    PURCHASE_FAILED = "PURCHASE_FAILED"
    USER_CANCELLED = "USER_CANCELLED"
    MALFORMED_RESPONSE = "MalformedResponse"
    TRANSACTION_NOT_FOUND = "TRANSACTION_NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    API_ERROR = "API_ERROR"
    INVALID_ITEM_TYPE = "INVALID_ITEM_TYPE"
    CHECK_FAILED = "CHECK_FAILED"


# =============================================================================
# Logging Configuration
# =============================================================================

class LoggingConfig:
    """Logging defaults and masking rules."""

    MASK_PATTERN: Final[str] = "***MASKED***"
    MAX_LOG_MESSAGE_LENGTH: Final[int] = 10000
    MAX_BODY_LOG_LENGTH: Final[int] = 2000

    SENSITIVE_FIELDS: Final[frozenset[str]] = frozenset({
        "api_key",
        "apikey",
        "password",
        "secret",
        "token",
        "authorization",
        "cvv",
        "cvc",
        "expiry",
        "card_number",
        "cardnumber",
        "number",
    })


__all__ = [
    "DEFAULT_BASE_URL",
    "DEFAULT_CURRENCY",
    "USER_AGENT",
    "Timeouts",
    "RetryDefaults",
    "Endpoints",
    "Headers",
    "StatusCodes",
    "ItemType",
    "PaymentMethod",
    "CardType",
    "SUPPORTED_CURRENCIES",
    "CardLimits",
    "ErrorCodes",
    "LoggingConfig",
    "StrEnum",
]
