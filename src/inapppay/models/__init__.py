"""InAppPay SDK models."""
from .base import FrozenModel, InAppPayModel
from .errors import (
    APIError,
    InAppPayError,
    InvalidRequestError,
    NetworkError,
    TransactionNotFoundError,
    TransactionStateError,
)
from .outcome import (
    Cancelled,
    Declined,
    Expired,
    FatalFailure,
    Outcome,
    Success,
    TransientFailure,
    is_retryable,
    outcome_from_dict,
)
from .purchase import CardDetails, PurchaseRequest, detect_card_type
from .status import ItemInfo, OwnershipStatus, ResponseEnvelope
from .transaction import (
    Attempt,
    AttemptRecord,
    Transaction,
    TransactionSnapshot,
    TransactionState,
)

__all__ = [
    "InAppPayModel",
    "FrozenModel",
    "InAppPayError",
    "InvalidRequestError",
    "APIError",
    "NetworkError",
    "TransactionNotFoundError",
    "TransactionStateError",
    "Success",
    "Declined",
    "TransientFailure",
    "FatalFailure",
    "Cancelled",
    "Expired",
    "Outcome",
    "is_retryable",
    "outcome_from_dict",
    "CardDetails",
    "PurchaseRequest",
    "detect_card_type",
    "ItemInfo",
    "OwnershipStatus",
    "ResponseEnvelope",
    "Attempt",
    "AttemptRecord",
    "Transaction",
    "TransactionSnapshot",
    "TransactionState",
]
