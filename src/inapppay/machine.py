"""
Transaction state machine and attempt loop.

Lifecycle::

    CREATED -> PENDING -> SUCCEEDED | DECLINED | FAILED | CANCELLED | EXPIRED
                  ^  |
                  |  v
                RETRYING

Every state change for a transaction happens while holding that
transaction's lock, and the network call is made without it, so ``cancel``
and ``expire`` can land while an attempt is in flight. Once a transaction is
terminal, later attempt results are only appended to its audit trail.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .constants import Timeouts
from .dispatcher import ResultDispatcher
from .idempotency import IdempotencyKeyManager
from .logging import StructuredLogger, get_logger
from .models.errors import InvalidRequestError, TransactionNotFoundError, TransactionStateError
from .models.outcome import (
    Cancelled,
    Declined,
    Expired,
    FatalFailure,
    Outcome,
    Success,
    TransientFailure,
)
from .models.purchase import PurchaseRequest
from .models.transaction import (
    INTERRUPTIBLE_STATES,
    Attempt,
    Transaction,
    TransactionSnapshot,
    TransactionState,
    new_transaction_id,
)
from .retry import Retry, RetryDecision, RetryPolicy
from .transport import TransportAdapter
from .validators import validate_purchase_request

ProgressListener = Callable[[TransactionSnapshot], Any]

_TERMINAL_STATE_FOR = {
    Success: TransactionState.SUCCEEDED,
    Declined: TransactionState.DECLINED,
    FatalFailure: TransactionState.FAILED,
    TransientFailure: TransactionState.FAILED,
    Cancelled: TransactionState.CANCELLED,
    Expired: TransactionState.EXPIRED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionStateMachine:
    """Owns every in-flight transaction and drives its attempt loop.

    Args:
        transport: Sends one attempt and returns its outcome
        key_manager: Source of the per-transaction idempotency key
        retry_policy: Decides whether a transient failure is retried
        dispatcher: Receives each terminal outcome exactly once
        request_timeout: Timeout for each individual attempt, in seconds
        clock: Monotonic clock used for the retry time budget
    """

    def __init__(
        self,
        transport: TransportAdapter,
        key_manager: IdempotencyKeyManager,
        retry_policy: RetryPolicy,
        dispatcher: ResultDispatcher,
        request_timeout: float = Timeouts.HTTP_DEFAULT,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[StructuredLogger] = None,
    ):
        self._transport = transport
        self._keys = key_manager
        self._policy = retry_policy
        self._dispatcher = dispatcher
        self._request_timeout = request_timeout
        self._clock = clock
        self._logger = logger or get_logger(__name__)

        self._transactions: dict[str, Transaction] = {}
        self._loops: dict[str, asyncio.Task] = {}
        self._deadlines: dict[str, asyncio.TimerHandle] = {}
        self._background: set[asyncio.Task] = set()
        self._progress_listeners: list[ProgressListener] = []

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def submit(
        self,
        request: PurchaseRequest,
        *,
        transaction_id: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> Transaction:
        """Validate ``request``, create its transaction and start the attempt loop.

        Args:
            request: The purchase intent
            transaction_id: Reuse an id from before a restart so that the
                persisted idempotency key is sent again
            deadline: Seconds from now after which the transaction expires

        Raises:
            InvalidRequestError: Before any network call, if the request is invalid
            TransactionStateError: ``transaction_id`` is already being tracked
        """
        validate_purchase_request(request)
        if deadline is not None and deadline <= 0:
            raise InvalidRequestError("deadline must be positive", field="deadline")

        transaction_id = transaction_id or new_transaction_id()
        existing = self._transactions.get(transaction_id)
        if existing is not None:
            raise TransactionStateError(transaction_id, existing.state.value, "submit")

        txn = Transaction(
            request=request,
            idempotency_key=self._keys.key_for(transaction_id),
            id=transaction_id,
            deadline=deadline,
        )
        self._transactions[txn.id] = txn
        self._dispatcher.register(txn.id)

        txn.state = TransactionState.PENDING
        self._logger.info(
            "Transaction submitted",
            transaction_id=txn.id,
            item_id=request.item_id,
            amount=str(request.amount),
            currency=request.currency,
        )

        task = asyncio.create_task(self._run(txn), name=f"inapppay:{txn.id}")
        self._loops[txn.id] = task
        task.add_done_callback(self._on_loop_done(txn.id))

        if deadline is not None:
            loop = asyncio.get_running_loop()
            self._deadlines[txn.id] = loop.call_later(deadline, self._deadline_reached, txn.id)

        return txn

    async def on_attempt_result(
        self,
        transaction_id: str,
        outcome: Outcome,
        started_at: Optional[datetime] = None,
    ) -> Optional[RetryDecision]:
        """Record an attempt and apply its outcome.

        Returns:
            The retry decision for a transient failure, otherwise None
        """
        return await self._apply_result(self._require(transaction_id), outcome, started_at)

    async def _apply_result(
        self,
        txn: Transaction,
        outcome: Outcome,
        started_at: Optional[datetime] = None,
    ) -> Optional[RetryDecision]:
        ended_at = _utcnow()

        async with txn.lock:
            txn.attempts.append(
                Attempt(
                    transaction_id=txn.id,
                    sequence_number=len(txn.attempts) + 1,
                    started_at=started_at or ended_at,
                    ended_at=ended_at,
                    result=outcome,
                )
            )

            if txn.is_terminal:
                self._logger.info(
                    "Late attempt result recorded after termination",
                    transaction_id=txn.id,
                    state=txn.state.value,
                    outcome=outcome.kind,
                )
                return None

            decision: Optional[RetryDecision] = None
            if isinstance(outcome, TransientFailure):
                now = self._clock()
                first = txn.first_attempt_monotonic
                elapsed = now - first if first is not None else 0.0
                decision = self._policy.should_retry(txn.attempt_count, elapsed, outcome)
                if isinstance(decision, Retry):
                    txn.state = TransactionState.RETRYING
                    self._logger.warning(
                        "Transient failure, retrying",
                        transaction_id=txn.id,
                        attempt=txn.attempt_count,
                        cause=outcome.cause,
                        delay=round(decision.delay, 3),
                    )
                else:
                    self._logger.warning(
                        "Giving up on transaction",
                        transaction_id=txn.id,
                        attempt=txn.attempt_count,
                        reason=decision.reason,
                    )
                    self._finalize(txn, outcome)
            else:
                self._finalize(txn, outcome)

        self._notify_progress(txn)
        return decision

    async def cancel(
        self,
        transaction_id: str,
        reason: str = "Purchase cancelled by user",
    ) -> TransactionSnapshot:
        """Cancel a transaction that has not reached a terminal state.

        An attempt already in flight is not aborted; its result is recorded
        when it arrives but cannot change the outcome.

        Raises:
            TransactionNotFoundError: Unknown transaction
            TransactionStateError: The transaction is already terminal
        """
        return await self._interrupt(transaction_id, Cancelled(reason=reason), "cancel")

    async def expire(self, transaction_id: str) -> TransactionSnapshot:
        """Expire a transaction whose deadline passed. Same rules as ``cancel``."""
        txn = self._require(transaction_id)
        return await self._interrupt(transaction_id, Expired(deadline=txn.deadline), "expire")

    def get(self, transaction_id: str) -> TransactionSnapshot:
        return self._require(transaction_id).snapshot()

    def evict(self, transaction_id: str) -> None:
        """Stop tracking a terminal transaction and forget its idempotency key.

        Raises:
            TransactionStateError: The transaction has not finished yet
        """
        txn = self._require(transaction_id)
        if not txn.is_terminal:
            raise TransactionStateError(transaction_id, txn.state.value, "evict")

        del self._transactions[transaction_id]
        self._dispatcher.discard(transaction_id)
        self._keys.forget(transaction_id)
        self._logger.debug("Transaction evicted", transaction_id=transaction_id)

    def add_progress_listener(self, listener: ProgressListener) -> None:
        """Call ``listener(snapshot)`` after every recorded attempt."""
        self._progress_listeners.append(listener)

    def __contains__(self, transaction_id: str) -> bool:
        return transaction_id in self._transactions

    def __len__(self) -> int:
        return len(self._transactions)

    async def shutdown(self) -> None:
        """Cancel every unfinished transaction and stop all attempt loops."""
        for txn in list(self._transactions.values()):
            async with txn.lock:
                if not txn.is_terminal:
                    self._finalize(txn, Cancelled(reason="Client closed"))

        tasks = [*self._loops.values(), *self._background]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, transaction_id: str) -> Transaction:
        try:
            return self._transactions[transaction_id]
        except KeyError:
            raise TransactionNotFoundError(transaction_id) from None

    def _on_loop_done(self, transaction_id: str) -> Callable[[asyncio.Task], None]:
        def done(task: asyncio.Task) -> None:
            # An evicted id may already belong to a newer transaction's loop.
            if self._loops.get(transaction_id) is task:
                del self._loops[transaction_id]
        return done

    def _is_tracked(self, txn: Transaction) -> bool:
        return self._transactions.get(txn.id) is txn

    async def _run(self, txn: Transaction) -> None:
        """Attempt loop for one transaction."""
        log = self._logger.bind(transaction_id=txn.id)
        try:
            while True:
                async with txn.lock:
                    if txn.is_terminal:
                        return
                    txn.state = TransactionState.PENDING
                    if txn.first_attempt_monotonic is None:
                        txn.first_attempt_monotonic = self._clock()
                    started_at = _utcnow()
                    txn.last_attempt_at = started_at

                try:
                    outcome = await self._transport.send(
                        txn.request,
                        txn.idempotency_key,
                        timeout=self._request_timeout,
                        transaction_id=txn.id,
                    )
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    log.exception("Unexpected error during purchase attempt", error=str(e))
                    outcome = FatalFailure(cause=f"{type(e).__name__}: {e}")

                if not self._is_tracked(txn):
                    log.debug("Attempt result arrived after eviction", outcome=outcome.kind)
                    return
                decision = await self._apply_result(txn, outcome, started_at=started_at)
                if not isinstance(decision, Retry):
                    return

                # A cancel or expire during the backoff wakes the loop early.
                try:
                    await asyncio.wait_for(txn.finished.wait(), timeout=decision.delay)
                    return
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.exception("Attempt loop crashed", error=str(e))
            async with txn.lock:
                if not txn.is_terminal and self._is_tracked(txn):
                    self._finalize(txn, FatalFailure(cause=f"{type(e).__name__}: {e}"))

    async def _interrupt(self, transaction_id: str, outcome: Outcome, operation: str) -> TransactionSnapshot:
        txn = self._require(transaction_id)
        async with txn.lock:
            if txn.state not in INTERRUPTIBLE_STATES:
                raise TransactionStateError(transaction_id, txn.state.value, operation)
            self._finalize(txn, outcome)
        return txn.snapshot()

    def _finalize(self, txn: Transaction, outcome: Outcome) -> None:
        """Move to the terminal state for ``outcome``. Caller holds ``txn.lock``."""
        txn.state = _TERMINAL_STATE_FOR[type(outcome)]
        txn.terminal_result = outcome
        txn.finished.set()

        handle = self._deadlines.pop(txn.id, None)
        if handle is not None:
            handle.cancel()

        self._logger.info(
            "Transaction finished",
            transaction_id=txn.id,
            state=txn.state.value,
            attempts=txn.attempt_count,
        )
        self._dispatcher.deliver(txn.id, outcome)

    def _deadline_reached(self, transaction_id: str) -> None:
        self._deadlines.pop(transaction_id, None)
        task = asyncio.ensure_future(self._expire_at_deadline(transaction_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _expire_at_deadline(self, transaction_id: str) -> None:
        try:
            await self.expire(transaction_id)
        except (TransactionNotFoundError, TransactionStateError):
            self._logger.debug("Deadline passed after transaction finished", transaction_id=transaction_id)

    def _notify_progress(self, txn: Transaction) -> None:
        if not self._progress_listeners:
            return
        snapshot = txn.snapshot()
        for listener in self._progress_listeners:
            try:
                listener(snapshot)
            except Exception as e:
                self._logger.error(
                    "Progress listener raised",
                    transaction_id=txn.id,
                    error=str(e),
                )


__all__ = ["TransactionStateMachine", "ProgressListener"]
