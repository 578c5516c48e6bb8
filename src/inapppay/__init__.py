"""
InAppPay Python SDK

Payment transaction client for in-app purchases: idempotent retries,
tracked transaction lifecycle and exactly-once outcome delivery.
"""

from .client import InAppPayClient, TransactionHandle
from .config import InAppPaySettings, load_settings
from .constants import CardType, ItemType, PaymentMethod
from .models.errors import (
    APIError,
    InAppPayError,
    InvalidRequestError,
    NetworkError,
    TransactionNotFoundError,
    TransactionStateError,
)
from .models.outcome import (
    Cancelled,
    Declined,
    Expired,
    FatalFailure,
    Outcome,
    Success,
    TransientFailure,
)
from .models.purchase import CardDetails, PurchaseRequest
from .models.status import ItemInfo, OwnershipStatus
from .models.transaction import TransactionSnapshot, TransactionState
from .retry import RetryPolicy

__version__ = "0.1.0"

__all__ = [
    # Client
    "InAppPayClient",
    "TransactionHandle",
    "InAppPaySettings",
    "load_settings",
    "RetryPolicy",
    # Errors
    "InAppPayError",
    "InvalidRequestError",
    "APIError",
    "NetworkError",
    "TransactionNotFoundError",
    "TransactionStateError",
    # Outcomes
    "Outcome",
    "Success",
    "Declined",
    "TransientFailure",
    "FatalFailure",
    "Cancelled",
    "Expired",
    # Purchase models
    "PurchaseRequest",
    "CardDetails",
    "PaymentMethod",
    "CardType",
    "TransactionSnapshot",
    "TransactionState",
    # Status models
    "ItemInfo",
    "ItemType",
    "OwnershipStatus",
]
