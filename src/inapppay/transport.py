"""
HTTP transport for the purchase backend.

``TransportAdapter.send`` performs exactly one POST for one purchase
attempt and always returns an ``Outcome``: connection failures and timeouts
become ``TransientFailure``, every HTTP response is classified by the codec.
Retrying is not done here; that belongs to the state machine.
"""
from __future__ import annotations

import time
from typing import Any, Optional

import httpx

from .codec import RequestCodec
from .constants import Endpoints, ErrorCodes, Timeouts
from .logging import StructuredLogger, get_logger, log_request, log_response
from .models.errors import APIError, NetworkError
from .models.outcome import Outcome, TransientFailure
from .models.purchase import PurchaseRequest
from .models.status import ResponseEnvelope


class TransportAdapter:
    """Sends purchase attempts and status queries over an injected ``httpx.AsyncClient``.

    Args:
        http_client: Client owned by the caller; the adapter never closes it
        codec: Encoder/decoder for request and response bodies
        base_url: Backend root, e.g. ``https://<region>-<project>.cloudfunctions.net``
        connect_timeout: Connect timeout applied to every request
        logger: Optional logger override
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        codec: RequestCodec,
        base_url: str,
        connect_timeout: float = Timeouts.HTTP_CONNECT,
        logger: Optional[StructuredLogger] = None,
    ):
        self._http = http_client
        self.codec = codec
        self.base_url = base_url.rstrip("/")
        self.connect_timeout = connect_timeout
        self._logger = logger or get_logger(__name__)

    def url_for(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _timeout(self, timeout: float) -> httpx.Timeout:
        return httpx.Timeout(timeout, connect=min(self.connect_timeout, timeout))

    async def send(
        self,
        request: PurchaseRequest,
        idempotency_key: str,
        timeout: float = Timeouts.HTTP_DEFAULT,
        transaction_id: Optional[str] = None,
    ) -> Outcome:
        """Send one purchase attempt and classify the result.

        Never raises for network or HTTP conditions.
        """
        encoded = self.codec.encode(request, idempotency_key)
        url = self.url_for(Endpoints.PROCESS_PURCHASE)
        log = self._logger.bind(transaction_id=transaction_id) if transaction_id else self._logger
        log_request(log, "POST", url, encoded.headers, encoded.body)

        started = time.monotonic()
        try:
            response = await self._http.request(
                "POST",
                url,
                content=encoded.body,
                headers=encoded.headers,
                timeout=self._timeout(timeout),
            )
        except httpx.TimeoutException as e:
            log.warning(
                "Purchase attempt timed out",
                error=str(e) or type(e).__name__,
            )
            return TransientFailure(cause=f"{ErrorCodes.TIMEOUT}: {type(e).__name__}")
        except httpx.RequestError as e:
            log.warning(
                "Purchase attempt failed to reach backend",
                error=str(e) or type(e).__name__,
            )
            return TransientFailure(cause=f"{ErrorCodes.NETWORK_ERROR}: {str(e) or type(e).__name__}")

        duration_ms = (time.monotonic() - started) * 1000
        log_response(log, response.status_code, response.content, duration_ms)
        return self.codec.decode(response.status_code, response.content, response.headers)

    async def post_json(
        self,
        endpoint: str,
        payload: dict[str, Any],
        timeout: float = Timeouts.HTTP_DEFAULT,
        failure_code: str = ErrorCodes.VALIDATION_FAILED,
    ) -> ResponseEnvelope:
        """POST to a status endpoint and return its envelope.

        Raises:
            NetworkError: The backend could not be reached
            APIError: Non-2xx status, or an envelope with ``success: false``
            InAppPayError: The body was not a valid envelope
        """
        url = self.url_for(endpoint)
        headers = self.codec.base_headers()
        log_request(self._logger, "POST", url, headers, payload)

        started = time.monotonic()
        try:
            response = await self._http.request(
                "POST",
                url,
                json=payload,
                headers=headers,
                timeout=self._timeout(timeout),
            )
        except httpx.TimeoutException as e:
            raise NetworkError(str(e) or "request timed out", code=ErrorCodes.TIMEOUT) from e
        except httpx.RequestError as e:
            raise NetworkError(str(e) or type(e).__name__) from e

        log_response(
            self._logger,
            response.status_code,
            response.content,
            (time.monotonic() - started) * 1000,
        )

        if response.status_code >= 400:
            try:
                body: Any = response.json()
            except ValueError:
                body = response.text
            raise APIError.from_response(response.status_code, body)

        envelope = self.codec.decode_envelope(response.content)
        if not envelope.success:
            raise APIError(
                envelope.error_message or f"{endpoint} failed",
                status_code=response.status_code,
                code=envelope.error_code or failure_code,
                details=envelope.data if isinstance(envelope.data, dict) else None,
            )
        return envelope


__all__ = ["TransportAdapter"]
