"""
Local validation of purchase requests.

Everything here runs before a transaction is created, so a bad request
never produces a network call. Each check raises ``InvalidRequestError``
naming the offending field.

Usage:
    from inapppay.validators import validate_purchase_request

    validate_purchase_request(request)  # Raises InvalidRequestError if invalid
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping, Optional, Pattern

from .constants import SUPPORTED_CURRENCIES, CardLimits, PaymentMethod
from .models.errors import InvalidRequestError
from .models.purchase import CardDetails, PurchaseRequest


# =============================================================================
# Regex Patterns
# =============================================================================

EXPIRY_PATTERN: Pattern[str] = re.compile(r"^(0[1-9]|1[0-2])/([0-9]{2})$")
CVV_PATTERN: Pattern[str] = re.compile(r"^[0-9]{3,4}$")
CURRENCY_PATTERN: Pattern[str] = re.compile(r"^[A-Z]{3}$")


# =============================================================================
# Field Validators
# =============================================================================

def validate_item_id(value: Any, field_name: str = "item_id") -> str:
    """Validate a catalog item id.

    Raises:
        InvalidRequestError: If the id is missing, blank or too long
    """
    if not isinstance(value, str) or not value.strip():
        raise InvalidRequestError(f"{field_name} cannot be empty", field=field_name)

    if len(value) > CardLimits.MAX_ITEM_ID_LENGTH:
        raise InvalidRequestError(
            f"{field_name} must be at most {CardLimits.MAX_ITEM_ID_LENGTH} characters",
            field=field_name,
        )
    return value


def validate_amount(value: Any, field_name: str = "amount") -> Decimal:
    """Validate a purchase amount: a finite decimal strictly greater than zero.

    Raises:
        InvalidRequestError: If the amount is not positive
    """
    if isinstance(value, bool) or value is None:
        raise InvalidRequestError(f"{field_name} must be a number", field=field_name)

    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidRequestError(f"{field_name} must be a number", field=field_name)

    if not amount.is_finite():
        raise InvalidRequestError(f"{field_name} must be finite", field=field_name)

    if amount <= 0:
        raise InvalidRequestError(f"{field_name} must be greater than zero", field=field_name)

    return amount


def validate_currency(value: Any, field_name: str = "currency") -> str:
    """Validate an ISO 4217 currency code against the supported set."""
    if not isinstance(value, str) or not CURRENCY_PATTERN.fullmatch(value):
        raise InvalidRequestError(
            f"{field_name} must be a three-letter ISO 4217 code",
            field=field_name,
        )

    if value not in SUPPORTED_CURRENCIES:
        raise InvalidRequestError(f"Unsupported currency: {value}", field=field_name)

    return value


def validate_metadata(value: Optional[Mapping[str, Any]], field_name: str = "metadata") -> None:
    if not value:
        return

    if len(value) > CardLimits.MAX_METADATA_ENTRIES:
        raise InvalidRequestError(
            f"{field_name} must have at most {CardLimits.MAX_METADATA_ENTRIES} entries",
            field=field_name,
        )

    for key, item in value.items():
        if not isinstance(key, str) or not key:
            raise InvalidRequestError(f"{field_name} keys must be non-empty strings", field=field_name)
        if not isinstance(item, str):
            raise InvalidRequestError(f"{field_name}[{key}] must be a string", field=field_name)


# =============================================================================
# Card Validators
# =============================================================================

def luhn_checksum_valid(number: str) -> bool:
    """Check a digit string against the Luhn checksum.

    >>> luhn_checksum_valid("4111111111111111")
    True
    >>> luhn_checksum_valid("4111111111111112")
    False
    """
    total = 0
    for index, char in enumerate(reversed(number)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def validate_card_number(value: str, field_name: str = "card.number") -> str:
    """Validate a card number and return it with spaces removed."""
    digits = re.sub(r"\s+", "", value or "")

    if not (digits.isascii() and digits.isdigit()):
        raise InvalidRequestError("Card number must contain only digits", field=field_name)

    if not CardLimits.MIN_NUMBER_LENGTH <= len(digits) <= CardLimits.MAX_NUMBER_LENGTH:
        raise InvalidRequestError(
            f"Card number must be {CardLimits.MIN_NUMBER_LENGTH} to "
            f"{CardLimits.MAX_NUMBER_LENGTH} digits",
            field=field_name,
        )

    if not luhn_checksum_valid(digits):
        raise InvalidRequestError("Invalid card number", field=field_name)

    return digits


def validate_expiry(
    value: str,
    field_name: str = "card.expiry",
    now: Optional[datetime] = None,
) -> str:
    """Validate an ``MM/YY`` expiry that is not in the past.

    A card is valid through the last day of its expiry month.
    """
    match = EXPIRY_PATTERN.fullmatch(value or "")
    if not match:
        raise InvalidRequestError("Expiry must be in MM/YY format", field=field_name)

    month = int(match.group(1))
    year = 2000 + int(match.group(2))
    now = now or datetime.now(timezone.utc)

    if (year, month) < (now.year, now.month):
        raise InvalidRequestError("Card has expired", field=field_name)

    return value


def validate_cvv(value: str, field_name: str = "card.cvv") -> str:
    if not CVV_PATTERN.fullmatch(value or ""):
        raise InvalidRequestError("CVV must be 3 or 4 digits", field=field_name)
    return value


def validate_card(card: CardDetails, now: Optional[datetime] = None) -> None:
    """Validate all card fields, in the order a checkout form shows them."""
    validate_card_number(card.number)
    validate_expiry(card.expiry, now=now)
    validate_cvv(card.cvv)

    if not card.holder_name.strip():
        raise InvalidRequestError("Cardholder name cannot be empty", field="card.holder_name")


# =============================================================================
# Request Validation
# =============================================================================

def validate_purchase_request(
    request: PurchaseRequest,
    now: Optional[datetime] = None,
) -> PurchaseRequest:
    """Validate a purchase request before it is submitted.

    Card details are checked only when present; a ``card`` payment without
    them is left for the backend to collect.

    Args:
        request: The purchase intent
        now: Clock override for expiry checks

    Returns:
        The same request, unchanged

    Raises:
        InvalidRequestError: On the first failing field
    """
    validate_item_id(request.item_id)
    validate_amount(request.amount)
    validate_currency(request.currency)
    validate_metadata(request.metadata)

    if request.card is not None:
        if request.payment_method != PaymentMethod.CARD:
            raise InvalidRequestError(
                "Card details given for a non-card payment method",
                field="card",
            )
        validate_card(request.card, now=now)

    return request


__all__ = [
    "EXPIRY_PATTERN",
    "CVV_PATTERN",
    "validate_item_id",
    "validate_amount",
    "validate_currency",
    "validate_metadata",
    "luhn_checksum_valid",
    "validate_card_number",
    "validate_expiry",
    "validate_cvv",
    "validate_card",
    "validate_purchase_request",
]
