"""Base model for the InAppPay SDK."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class InAppPayModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert model to a JSON-safe dictionary."""
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "InAppPayModel":
        """Create model from dictionary."""
        return cls.model_validate(data)


class FrozenModel(InAppPayModel):
    """Immutable variant used for values that must not change once created."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        frozen=True,
    )
