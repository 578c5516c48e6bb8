"""Transaction lifecycle models."""
from __future__ import annotations

import asyncio
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .base import FrozenModel
from .outcome import Outcome
from .purchase import PurchaseRequest


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_transaction_id() -> str:
    return f"txn_{secrets.token_hex(12)}"


class TransactionState(str, Enum):
    """Lifecycle states of a purchase transaction."""

    CREATED = "created"
    PENDING = "pending"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    DECLINED = "declined"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    TransactionState.SUCCEEDED,
    TransactionState.DECLINED,
    TransactionState.FAILED,
    TransactionState.CANCELLED,
    TransactionState.EXPIRED,
})

# States from which cancel/expire are permitted.
INTERRUPTIBLE_STATES = frozenset({
    TransactionState.CREATED,
    TransactionState.PENDING,
    TransactionState.RETRYING,
})


@dataclass(frozen=True)
class Attempt:
    """One network round trip, recorded in the transaction's audit trail."""

    transaction_id: str
    sequence_number: int
    started_at: datetime
    ended_at: datetime
    result: Outcome


@dataclass
class Transaction:
    """A single purchase, owned by the state machine for its whole life.

    Mutations happen only while holding ``lock``. ``attempts`` is append-only
    and ``terminal_result`` is written exactly once.
    """

    request: PurchaseRequest
    idempotency_key: str
    id: str = field(default_factory=new_transaction_id)
    state: TransactionState = TransactionState.CREATED
    attempts: list[Attempt] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    last_attempt_at: Optional[datetime] = None
    terminal_result: Optional[Outcome] = None
    # Seconds after submission at which the transaction expires, if any.
    deadline: Optional[float] = None
    # Monotonic clock reading of the first send, for the retry budget.
    first_attempt_monotonic: Optional[float] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)
    finished: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def snapshot(self) -> "TransactionSnapshot":
        return TransactionSnapshot(
            id=self.id,
            request=self.request,
            idempotency_key=self.idempotency_key,
            state=self.state,
            attempt_count=self.attempt_count,
            attempts=tuple(
                AttemptRecord(
                    sequence_number=a.sequence_number,
                    started_at=a.started_at,
                    ended_at=a.ended_at,
                    result=a.result,
                )
                for a in self.attempts
            ),
            created_at=self.created_at,
            last_attempt_at=self.last_attempt_at,
            terminal_result=self.terminal_result,
        )


class AttemptRecord(FrozenModel):
    sequence_number: int
    started_at: datetime
    ended_at: datetime
    result: Outcome


class TransactionSnapshot(FrozenModel):
    """Read-only view of a transaction handed to callers."""

    id: str
    request: PurchaseRequest
    idempotency_key: str
    state: TransactionState
    attempt_count: int
    attempts: tuple[AttemptRecord, ...] = ()
    created_at: datetime
    last_attempt_at: Optional[datetime] = None
    terminal_result: Optional[Outcome] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal
