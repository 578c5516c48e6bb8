"""
Exactly-once delivery of terminal outcomes.

Each registered transaction owns a single ``asyncio.Future``. Resolving that
future is the one terminal event: the first ``deliver`` sets it, wakes every
waiter and fires every callback, and any later ``deliver`` is refused.
"""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional

from .logging import get_logger
from .models.errors import TransactionNotFoundError
from .models.outcome import Outcome

logger = get_logger(__name__)

TerminalCallback = Callable[[str, Outcome], Any]


class ResultDispatcher:
    """Delivers each transaction's terminal outcome exactly once."""

    def __init__(self) -> None:
        self._futures: dict[str, asyncio.Future[Outcome]] = {}
        self._callbacks: dict[str, list[TerminalCallback]] = {}
        self._tasks: set[asyncio.Task] = set()

    def register(self, transaction_id: str) -> None:
        """Start tracking a transaction. Registering twice is a no-op."""
        if transaction_id in self._futures:
            return
        self._futures[transaction_id] = asyncio.get_running_loop().create_future()
        self._callbacks[transaction_id] = []

    def _future(self, transaction_id: str) -> asyncio.Future[Outcome]:
        try:
            return self._futures[transaction_id]
        except KeyError:
            raise TransactionNotFoundError(transaction_id) from None

    def is_delivered(self, transaction_id: str) -> bool:
        return self._future(transaction_id).done()

    def deliver(self, transaction_id: str, outcome: Outcome) -> bool:
        """Resolve the transaction with ``outcome``.

        Returns:
            True if this call delivered it, False if it was already delivered
        """
        future = self._future(transaction_id)
        if future.done():
            logger.debug(
                "Ignoring duplicate delivery",
                transaction_id=transaction_id,
                outcome=outcome.kind,
            )
            return False

        future.set_result(outcome)
        callbacks = self._callbacks.pop(transaction_id, [])
        logger.info(
            "Delivered terminal outcome",
            transaction_id=transaction_id,
            outcome=outcome.kind,
            callbacks=len(callbacks),
        )
        for callback in callbacks:
            self._invoke(callback, transaction_id, outcome)
        return True

    async def wait(self, transaction_id: str, timeout: Optional[float] = None) -> Outcome:
        """Suspend until the transaction is terminal, then return its outcome.

        Raises:
            TransactionNotFoundError: The transaction was never registered
            asyncio.TimeoutError: ``timeout`` elapsed first; the transaction
                keeps running
        """
        future = self._future(transaction_id)
        if future.done():
            return future.result()
        return await asyncio.wait_for(asyncio.shield(future), timeout)

    def on_terminal(self, transaction_id: str, callback: TerminalCallback) -> None:
        """Run ``callback(transaction_id, outcome)`` once, when the transaction ends.

        Fires immediately if the outcome was already delivered. Coroutine
        callbacks are scheduled as tasks.
        """
        future = self._future(transaction_id)
        if future.done():
            self._invoke(callback, transaction_id, future.result())
            return
        self._callbacks.setdefault(transaction_id, []).append(callback)

    def _invoke(self, callback: TerminalCallback, transaction_id: str, outcome: Outcome) -> None:
        try:
            result = callback(transaction_id, outcome)
        except Exception as e:
            logger.error(
                "Terminal callback raised",
                transaction_id=transaction_id,
                callback=getattr(callback, "__qualname__", repr(callback)),
                error=str(e),
            )
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_callback_task_done(transaction_id))

    def _on_callback_task_done(self, transaction_id: str) -> Callable[[asyncio.Future], None]:
        def done(task: asyncio.Future) -> None:
            self._tasks.discard(task)
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "Terminal callback raised",
                    transaction_id=transaction_id,
                    error=str(task.exception()),
                )
        return done

    def discard(self, transaction_id: str) -> None:
        """Stop tracking a transaction after its outcome was acknowledged."""
        self._futures.pop(transaction_id, None)
        self._callbacks.pop(transaction_id, None)

    def __contains__(self, transaction_id: str) -> bool:
        return transaction_id in self._futures

    def __len__(self) -> int:
        return len(self._futures)


__all__ = ["ResultDispatcher", "TerminalCallback"]
