"""
Attempt and transaction outcomes.

An outcome is a tagged variant discriminated on ``kind``:

- ``Success``: the backend committed the purchase and issued a receipt
- ``Declined``: business rejection, terminal, never retried
- ``TransientFailure``: network or backend-transient, may be retried
- ``FatalFailure``: retrying with the same input cannot succeed
- ``Cancelled``: the caller cancelled the transaction
- ``Expired``: the caller-supplied deadline passed
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from .base import FrozenModel


class Success(FrozenModel):
    kind: Literal["success"] = "success"
    receipt: str
    message: Optional[str] = None
    data: dict[str, Any] = Field(default_factory=dict)


class Declined(FrozenModel):
    kind: Literal["declined"] = "declined"
    reason: str
    message: Optional[str] = None


class TransientFailure(FrozenModel):
    kind: Literal["transient_failure"] = "transient_failure"
    cause: str
    status_code: Optional[int] = None
    # Seconds the backend asked us to wait (Retry-After), if any.
    retry_after: Optional[float] = None


class FatalFailure(FrozenModel):
    kind: Literal["fatal_failure"] = "fatal_failure"
    cause: str
    status_code: Optional[int] = None


class Cancelled(FrozenModel):
    kind: Literal["cancelled"] = "cancelled"
    reason: str = "Purchase cancelled by user"


class Expired(FrozenModel):
    kind: Literal["expired"] = "expired"
    deadline: Optional[float] = None


Outcome = Annotated[
    Union[Success, Declined, TransientFailure, FatalFailure, Cancelled, Expired],
    Field(discriminator="kind"),
]

_outcome_adapter: TypeAdapter[Outcome] = TypeAdapter(Outcome)


def outcome_from_dict(data: dict[str, Any]) -> Outcome:
    """Rebuild an outcome from its ``to_dict()`` form."""
    return _outcome_adapter.validate_python(data)


def is_retryable(outcome: Outcome) -> bool:
    """Only transient failures are eligible for another attempt."""
    return isinstance(outcome, TransientFailure)


__all__ = [
    "Success",
    "Declined",
    "TransientFailure",
    "FatalFailure",
    "Cancelled",
    "Expired",
    "Outcome",
    "outcome_from_dict",
    "is_retryable",
]
