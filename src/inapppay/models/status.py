"""Models returned by the purchase and subscription status helpers."""
from __future__ import annotations

from typing import Any, Optional

from pydantic import Field

from ..constants import ItemType
from .base import InAppPayModel


class ResponseEnvelope(InAppPayModel):
    """Common response shape of every backend function."""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = Field(default=None, alias="errorCode")
    data: Any = None

    @property
    def error_message(self) -> Optional[str]:
        return self.error or self.message


class ItemInfo(InAppPayModel):
    """Catalog item as returned by item validation."""

    item_id: str
    type: ItemType
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class OwnershipStatus(InAppPayModel):
    """Result of a purchased/subscribed check."""

    item_id: str
    owned: bool
    details: dict[str, Any] = Field(default_factory=dict)
