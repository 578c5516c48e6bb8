"""Purchase request models."""
from __future__ import annotations

import re
from decimal import Decimal
from types import MappingProxyType
from typing import Any, Mapping, Optional

from pydantic import Field, field_serializer, field_validator

from ..constants import DEFAULT_CURRENCY, CardType, PaymentMethod
from .base import FrozenModel


def detect_card_type(number: Optional[str]) -> CardType:
    """Detect the card brand from the leading digit."""
    if not number:
        return CardType.UNKNOWN

    clean = re.sub(r"\s+", "", number)
    if clean.startswith("4"):
        return CardType.VISA
    if clean.startswith(("5", "2")):
        return CardType.MASTERCARD
    if clean.startswith("3"):
        return CardType.AMEX
    if clean.startswith("6"):
        return CardType.DISCOVER
    return CardType.UNKNOWN


class CardDetails(FrozenModel):
    """Card data collected by the host application."""

    number: str
    expiry: str
    cvv: str
    holder_name: str = ""

    @property
    def card_type(self) -> CardType:
        return detect_card_type(self.number)

    def __repr__(self) -> str:
        return f"CardDetails(card_type={self.card_type.value!r}, last4={self.number[-4:]!r})"

    __str__ = __repr__


class PurchaseRequest(FrozenModel):
    """A purchase intent submitted by the host application.

    Field constraints are checked by ``submit``, which raises
    ``InvalidRequestError`` before any network call. Card details are
    optional and validated only when present.

    Instances are fully immutable, ``metadata`` included, so every retry
    of a transaction sends the body its idempotency key was issued for.
    """

    item_id: str
    amount: Decimal
    currency: str = DEFAULT_CURRENCY
    metadata: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    payment_method: PaymentMethod = PaymentMethod.CARD
    card: Optional[CardDetails] = None

    @field_validator("metadata", mode="after")
    @classmethod
    def freeze_metadata(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(v))

    @field_serializer("metadata")
    def serialize_metadata(self, v: Mapping[str, str]) -> dict[str, Any]:
        return dict(v)
