"""
InAppPay Python SDK

Client for purchasing in-app items against the InAppPay cloud functions.

Example usage:
    ```python
    from decimal import Decimal
    from inapppay import InAppPayClient, PurchaseRequest, Success

    async with InAppPayClient(project_name="my-game", user_id="device-42") as client:
        handle = await client.submit(
            PurchaseRequest(item_id="sku_1", amount=Decimal("4.99"), currency="USD")
        )
        outcome = await handle.result()
        if isinstance(outcome, Success):
            print("Receipt:", outcome.receipt)
        handle.acknowledge()

        # Ownership checks
        status = await client.is_user_purchased("sku_1")
    ```
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional, Union

import httpx
from pydantic import ValidationError

from .codec import RequestCodec
from .config import InAppPaySettings, load_settings
from .constants import (
    DEFAULT_BASE_URL,
    DEFAULT_CURRENCY,
    Endpoints,
    ErrorCodes,
    Headers,
    PaymentMethod,
    Timeouts,
)
from .dispatcher import ResultDispatcher, TerminalCallback
from .idempotency import IdempotencyKeyManager, KeyStore, create_key_store
from .logging import get_logger
from .machine import ProgressListener, TransactionStateMachine
from .models.errors import InAppPayError, InvalidRequestError
from .models.outcome import Outcome
from .models.purchase import CardDetails, PurchaseRequest
from .models.status import ItemInfo, OwnershipStatus
from .models.transaction import TransactionSnapshot
from .retry import RetryPolicy
from .transport import TransportAdapter
from .validators import validate_amount

logger = get_logger(__name__)


class TransactionHandle:
    """Caller-side reference to a submitted transaction."""

    def __init__(self, client: "InAppPayClient", transaction_id: str):
        self._client = client
        self.id = transaction_id

    async def result(self, timeout: Optional[float] = None) -> Outcome:
        """Wait for the terminal outcome."""
        return await self._client.wait(self, timeout=timeout)

    async def cancel(self) -> TransactionSnapshot:
        return await self._client.cancel(self)

    def snapshot(self) -> TransactionSnapshot:
        return self._client.get(self)

    def acknowledge(self) -> None:
        self._client.acknowledge(self)

    def __repr__(self) -> str:
        return f"TransactionHandle(id={self.id!r})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, TransactionHandle) and other.id == self.id

    def __hash__(self) -> int:
        return hash(self.id)


HandleOrId = Union[TransactionHandle, str]


def _transaction_id(handle: HandleOrId) -> str:
    return handle.id if isinstance(handle, TransactionHandle) else handle


class InAppPayClient:
    """
    InAppPay API client.

    Purchases run as tracked transactions: ``submit`` returns immediately
    with a handle, the attempt loop retries transient failures with one
    idempotency key, and the terminal outcome is delivered exactly once
    through ``wait`` or ``on_terminal``.

    Args:
        project_name: Project the purchases belong to
        user_id: Stable id of the purchasing user or device
        base_url: Cloud functions base URL
        api_key: Optional API key, sent as ``X-API-Key``
        http_client: Injected ``httpx.AsyncClient``; the client creates and
            owns one when omitted
        retry_policy: Retry limits for purchase attempts
        key_store: Idempotency key storage (in-memory by default)
        request_timeout: Per-attempt timeout in seconds (default: 30)
        connect_timeout: Connect timeout in seconds (default: 30)
        idempotency_header: Header carrying the idempotency key
    """

    def __init__(
        self,
        project_name: str,
        user_id: str,
        base_url: str = DEFAULT_BASE_URL,
        api_key: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_policy: Optional[RetryPolicy] = None,
        key_store: Optional[KeyStore] = None,
        request_timeout: float = Timeouts.HTTP_DEFAULT,
        connect_timeout: float = Timeouts.HTTP_CONNECT,
        idempotency_header: str = Headers.IDEMPOTENCY_KEY,
    ):
        if not project_name:
            raise ValueError("Project name is required")
        if not user_id:
            raise ValueError("User id is required")

        self.project_name = project_name
        self.user_id = user_id
        self._request_timeout = request_timeout

        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout, connect=connect_timeout),
        )

        self.codec = RequestCodec(
            project_name=project_name,
            user_id=user_id,
            idempotency_header=idempotency_header,
            api_key=api_key,
        )
        self.transport = TransportAdapter(
            self._http,
            self.codec,
            base_url,
            connect_timeout=connect_timeout,
        )
        self.keys = IdempotencyKeyManager(key_store)
        self.retry_policy = retry_policy or RetryPolicy()
        self.dispatcher = ResultDispatcher()
        self.machine = TransactionStateMachine(
            self.transport,
            self.keys,
            self.retry_policy,
            self.dispatcher,
            request_timeout=request_timeout,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Optional[InAppPaySettings] = None,
        **overrides: Any,
    ) -> "InAppPayClient":
        """Build a client from ``INAPPPAY_*`` settings; keyword overrides win."""
        settings = settings or load_settings()
        kwargs: dict[str, Any] = dict(
            project_name=settings.project_name,
            user_id=settings.user_id,
            base_url=settings.base_url,
            api_key=settings.api_key,
            retry_policy=RetryPolicy.from_settings(settings),
            key_store=create_key_store(settings.key_store_dsn),
            request_timeout=settings.request_timeout,
            connect_timeout=settings.connect_timeout,
            idempotency_header=settings.idempotency_header,
        )
        kwargs.update(overrides)
        return cls(**kwargs)

    # ==================== Transactions ====================

    async def submit(
        self,
        request: PurchaseRequest,
        *,
        transaction_id: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> TransactionHandle:
        """
        Submit a purchase and start its attempt loop.

        Args:
            request: The purchase intent
            transaction_id: Resume a purchase started before a restart
            deadline: Seconds after which the purchase expires

        Returns:
            Handle for waiting on, cancelling and acknowledging the purchase

        Raises:
            InvalidRequestError: The request failed local validation; no
                network call was made
        """
        txn = await self.machine.submit(request, transaction_id=transaction_id, deadline=deadline)
        return TransactionHandle(self, txn.id)

    async def cancel(self, handle: HandleOrId) -> TransactionSnapshot:
        return await self.machine.cancel(_transaction_id(handle))

    async def wait(self, handle: HandleOrId, timeout: Optional[float] = None) -> Outcome:
        """Wait for the terminal outcome of a transaction."""
        return await self.dispatcher.wait(_transaction_id(handle), timeout=timeout)

    def on_terminal(self, handle: HandleOrId, callback: TerminalCallback) -> None:
        """Register ``callback(transaction_id, outcome)``, fired exactly once."""
        self.dispatcher.on_terminal(_transaction_id(handle), callback)

    def on_progress(self, listener: ProgressListener) -> None:
        """Register ``listener(snapshot)``, called after every attempt."""
        self.machine.add_progress_listener(listener)

    def get(self, handle: HandleOrId) -> TransactionSnapshot:
        return self.machine.get(_transaction_id(handle))

    def acknowledge(self, handle: HandleOrId) -> None:
        """Confirm the terminal outcome was handled and release the transaction."""
        self.machine.evict(_transaction_id(handle))

    async def purchase(
        self,
        item_id: str,
        amount: Union[Decimal, str, int, float],
        currency: str = DEFAULT_CURRENCY,
        *,
        card: Optional[CardDetails] = None,
        payment_method: PaymentMethod = PaymentMethod.CARD,
        metadata: Optional[dict[str, str]] = None,
        deadline: Optional[float] = None,
    ) -> Outcome:
        """Submit a purchase, wait for its outcome and acknowledge it.

        Raises:
            InvalidRequestError: An argument does not fit the request model.
        """
        try:
            request = PurchaseRequest(
                item_id=item_id,
                amount=validate_amount(amount),
                currency=currency,
                metadata=metadata or {},
                payment_method=payment_method,
                card=card,
            )
        except ValidationError as e:
            error = e.errors()[0]
            field = str(error["loc"][0]) if error["loc"] else None
            raise InvalidRequestError(f"{field}: {error['msg']}", field=field) from e
        handle = await self.submit(request, deadline=deadline)
        outcome = await handle.result()
        handle.acknowledge()
        return outcome

    # ==================== Status helpers ====================

    async def validate_item(self, item_id: str) -> ItemInfo:
        """Check that an item can be bought and return its catalog entry."""
        envelope = await self.transport.post_json(
            Endpoints.VALIDATE_ITEM,
            self.codec.base_payload(productId=item_id),
            timeout=self._request_timeout,
        )
        data = envelope.data if isinstance(envelope.data, dict) else {}
        try:
            return ItemInfo(
                item_id=item_id,
                type=data.get("type"),
                name=data.get("name"),
                description=data.get("description"),
                price=str(data["price"]) if data.get("price") is not None else None,
                data=data,
            )
        except ValidationError as e:
            raise InAppPayError(
                f"Unknown item type: {data.get('type')}",
                code=ErrorCodes.INVALID_ITEM_TYPE,
            ) from e

    async def is_user_purchased(self, item_id: str) -> OwnershipStatus:
        envelope = await self.transport.post_json(
            Endpoints.CHECK_PURCHASED,
            self.codec.base_payload(productId=item_id),
            timeout=self._request_timeout,
            failure_code=ErrorCodes.CHECK_FAILED,
        )
        data = envelope.data if isinstance(envelope.data, dict) else {}
        return OwnershipStatus(
            item_id=item_id,
            owned=data.get("purchased") is True,
            details=data.get("purchaseData") or {},
        )

    async def is_user_subscribed(self, item_id: str) -> OwnershipStatus:
        envelope = await self.transport.post_json(
            Endpoints.CHECK_SUBSCRIBED,
            self.codec.base_payload(productId=item_id),
            timeout=self._request_timeout,
            failure_code=ErrorCodes.CHECK_FAILED,
        )
        data = envelope.data if isinstance(envelope.data, dict) else {}
        return OwnershipStatus(
            item_id=item_id,
            owned=data.get("subscribed") is True,
            details=data.get("subscriptionData") or {},
        )

    async def get_user_subscriptions(self) -> list[dict[str, Any]]:
        envelope = await self.transport.post_json(
            Endpoints.GET_SUBSCRIPTIONS,
            self.codec.base_payload(),
            timeout=self._request_timeout,
            failure_code=ErrorCodes.CHECK_FAILED,
        )
        return _as_records(envelope.data, "subscriptions")

    async def get_user_purchases(self) -> list[dict[str, Any]]:
        envelope = await self.transport.post_json(
            Endpoints.GET_PURCHASES,
            self.codec.base_payload(),
            timeout=self._request_timeout,
            failure_code=ErrorCodes.CHECK_FAILED,
        )
        return _as_records(envelope.data, "purchases")

    # ==================== Lifecycle ====================

    async def close(self) -> None:
        """Cancel unfinished transactions and release the HTTP client."""
        await self.machine.shutdown()
        self.keys.close()
        if self._owns_http and not self._http.is_closed:
            await self._http.aclose()
        logger.debug("Client closed", project=self.project_name)

    async def __aenter__(self) -> "InAppPayClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _as_records(data: Any, key: str) -> list[dict[str, Any]]:
    """Normalize list payloads, which the backend returns bare or wrapped."""
    if isinstance(data, dict):
        data = data.get(key, [])
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


__all__ = ["InAppPayClient", "TransactionHandle"]
