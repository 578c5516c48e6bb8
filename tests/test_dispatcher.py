"""
Tests for exactly-once outcome delivery.
"""
import asyncio

import pytest

from inapppay.dispatcher import ResultDispatcher
from inapppay.models.errors import TransactionNotFoundError
from inapppay.models.outcome import Cancelled, Declined, Success


@pytest.fixture
def dispatcher():
    return ResultDispatcher()


class TestDeliver:
    """Tests for resolving transactions."""

    async def test_first_delivery_wins(self, dispatcher):
        """Should keep the first outcome and refuse later ones."""
        dispatcher.register("txn_1")

        assert dispatcher.deliver("txn_1", Success(receipt="R1")) is True
        assert dispatcher.deliver("txn_1", Cancelled()) is False
        assert await dispatcher.wait("txn_1") == Success(receipt="R1")
        assert dispatcher.is_delivered("txn_1")

    async def test_register_twice_is_noop(self, dispatcher):
        dispatcher.register("txn_1")
        dispatcher.deliver("txn_1", Success(receipt="R1"))

        dispatcher.register("txn_1")

        assert dispatcher.is_delivered("txn_1")
        assert len(dispatcher) == 1

    async def test_deliver_unknown(self, dispatcher):
        with pytest.raises(TransactionNotFoundError):
            dispatcher.deliver("txn_missing", Success(receipt="R1"))


class TestWait:
    """Tests for suspending until a transaction ends."""

    async def test_wakes_every_waiter(self, dispatcher):
        """Should resume all waiters with the same outcome."""
        dispatcher.register("txn_1")
        waiters = [asyncio.create_task(dispatcher.wait("txn_1")) for _ in range(3)]
        await asyncio.sleep(0)

        dispatcher.deliver("txn_1", Declined(reason="insufficient_funds"))

        results = await asyncio.gather(*waiters)
        assert results == [Declined(reason="insufficient_funds")] * 3

    async def test_timeout_leaves_transaction_pending(self, dispatcher):
        """Should time out without resolving the transaction."""
        dispatcher.register("txn_1")

        with pytest.raises(asyncio.TimeoutError):
            await dispatcher.wait("txn_1", timeout=0.01)

        assert not dispatcher.is_delivered("txn_1")
        dispatcher.deliver("txn_1", Success(receipt="R1"))
        assert await dispatcher.wait("txn_1") == Success(receipt="R1")

    async def test_wait_unknown(self, dispatcher):
        with pytest.raises(TransactionNotFoundError):
            await dispatcher.wait("txn_missing")


class TestOnTerminal:
    """Tests for terminal callbacks."""

    async def test_callback_fires_once(self, dispatcher):
        calls = []
        dispatcher.register("txn_1")
        dispatcher.on_terminal("txn_1", lambda tid, outcome: calls.append((tid, outcome)))

        dispatcher.deliver("txn_1", Success(receipt="R1"))
        dispatcher.deliver("txn_1", Cancelled())

        assert calls == [("txn_1", Success(receipt="R1"))]

    async def test_late_registration_fires_immediately(self, dispatcher):
        """Should call back right away when the outcome is already known."""
        calls = []
        dispatcher.register("txn_1")
        dispatcher.deliver("txn_1", Success(receipt="R1"))

        dispatcher.on_terminal("txn_1", lambda tid, outcome: calls.append(outcome))

        assert calls == [Success(receipt="R1")]

    async def test_failing_callback_does_not_block_others(self, dispatcher):
        """Should log a raising callback and still run the rest."""
        calls = []

        def broken(tid, outcome):
            raise RuntimeError("boom")

        dispatcher.register("txn_1")
        dispatcher.on_terminal("txn_1", broken)
        dispatcher.on_terminal("txn_1", lambda tid, outcome: calls.append(tid))

        assert dispatcher.deliver("txn_1", Success(receipt="R1")) is True
        assert calls == ["txn_1"]

    async def test_coroutine_callback(self, dispatcher):
        """Should schedule coroutine callbacks as tasks."""
        seen = asyncio.Event()

        async def callback(tid, outcome):
            seen.set()

        dispatcher.register("txn_1")
        dispatcher.on_terminal("txn_1", callback)
        dispatcher.deliver("txn_1", Success(receipt="R1"))

        await asyncio.wait_for(seen.wait(), timeout=1.0)

    async def test_on_terminal_unknown(self, dispatcher):
        with pytest.raises(TransactionNotFoundError):
            dispatcher.on_terminal("txn_missing", lambda tid, outcome: None)


class TestDiscard:
    async def test_discard(self, dispatcher):
        dispatcher.register("txn_1")
        dispatcher.deliver("txn_1", Success(receipt="R1"))

        dispatcher.discard("txn_1")

        assert "txn_1" not in dispatcher
        with pytest.raises(TransactionNotFoundError):
            dispatcher.is_delivered("txn_1")
