"""
Request codec for the purchase backend.

Encodes a ``PurchaseRequest`` into the JSON body the ``processPurchase``
function expects, and decodes any HTTP response into an ``Outcome``.
Decoding never raises: whatever the backend sends back maps to exactly
one outcome variant.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional

from pydantic import ValidationError

from .constants import USER_AGENT, ErrorCodes, Headers, PaymentMethod, StatusCodes
from .models.errors import InAppPayError
from .models.outcome import Declined, FatalFailure, Outcome, Success, TransientFailure
from .models.purchase import PurchaseRequest
from .models.status import ResponseEnvelope

# Keys under ``data`` that carry the backend's receipt, in lookup order.
RECEIPT_KEYS = ("receipt", "receiptId", "transactionId", "purchaseId", "id")

_MAX_RAW_REASON = 200


@dataclass(frozen=True)
class EncodedRequest:
    """Wire form of one purchase attempt."""

    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    def json(self) -> dict[str, Any]:
        return json.loads(self.body)


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    """Parse a Retry-After header given as seconds or as an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (when - now).total_seconds())


def _header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    if not headers:
        return None
    for key, value in headers.items():
        if key.lower() == name.lower():
            return value
    return None


def _raw_text(body: bytes) -> str:
    return body.decode("utf-8", errors="replace").strip()[:_MAX_RAW_REASON]


class RequestCodec:
    """Maps purchase requests to wire bodies and responses to outcomes.

    Args:
        project_name: Backend project the purchases belong to
        user_id: Stable id of the purchasing user or device
        idempotency_header: Header carrying the idempotency key
        api_key: Optional key sent as ``X-API-Key``
    """

    def __init__(
        self,
        project_name: str,
        user_id: str,
        idempotency_header: str = Headers.IDEMPOTENCY_KEY,
        api_key: Optional[str] = None,
    ):
        self.project_name = project_name
        self.user_id = user_id
        self.idempotency_header = idempotency_header
        self.api_key = api_key

    # ------------------------------------------------------------------
    # Encoding
    # ------------------------------------------------------------------

    def base_headers(self) -> dict[str, str]:
        headers = {
            Headers.CONTENT_TYPE: "application/json",
            Headers.USER_AGENT: USER_AGENT,
        }
        if self.api_key:
            headers[Headers.API_KEY] = self.api_key
        return headers

    def base_payload(self, **extra: Any) -> dict[str, Any]:
        """Fields every backend function expects, plus ``extra``."""
        payload: dict[str, Any] = {
            "projectName": self.project_name,
            "userId": self.user_id,
        }
        payload.update({k: v for k, v in extra.items() if v is not None})
        return payload

    def encode(self, request: PurchaseRequest, idempotency_key: str) -> EncodedRequest:
        """Build the ``processPurchase`` body for one attempt.

        The idempotency key goes in both the header and the body so the
        backend can deduplicate whichever it reads.
        """
        payload = self.base_payload(
            productId=request.item_id,
            amount=str(request.amount),
            currency=request.currency,
            paymentMethod=str(request.payment_method),
            idempotencyKey=idempotency_key,
        )
        if request.metadata:
            payload["metadata"] = dict(request.metadata)

        if request.card is not None:
            card = request.card
            payload["cardData"] = {
                "cardNumber": card.number.replace(" ", ""),
                "expiry": card.expiry,
                "cvv": card.cvv,
                "name": card.holder_name,
                "cardType": str(card.card_type),
            }
        elif request.payment_method == PaymentMethod.PAYPAL:
            payload["paypalData"] = {}

        headers = self.base_headers()
        headers[self.idempotency_header] = idempotency_key

        body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return EncodedRequest(body=body, headers=headers)

    # ------------------------------------------------------------------
    # Decoding
    # ------------------------------------------------------------------

    def decode_envelope(self, body: bytes) -> ResponseEnvelope:
        """Parse the ``{success, message, error, errorCode, data}`` envelope.

        Raises:
            InAppPayError: ``ERROR_PARSE_FAILED`` if the body is not an envelope
        """
        try:
            parsed = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise InAppPayError(
                f"Failed to parse response: {e}",
                code=ErrorCodes.ERROR_PARSE_FAILED,
            ) from e
        if not isinstance(parsed, dict):
            raise InAppPayError(
                "Failed to parse response: expected a JSON object",
                code=ErrorCodes.ERROR_PARSE_FAILED,
            )
        try:
            return ResponseEnvelope.model_validate(parsed)
        except ValidationError as e:
            raise InAppPayError(
                f"Failed to parse response: {e.error_count()} invalid field(s)",
                code=ErrorCodes.ERROR_PARSE_FAILED,
            ) from e

    def decode(
        self,
        status_code: int,
        body: bytes,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Outcome:
        """Map an HTTP response to an outcome."""
        if 200 <= status_code < 300:
            return self._decode_success(body)

        reason = self._error_reason(body) or f"HTTP {status_code}"

        if status_code >= 500 or status_code in StatusCodes.TRANSIENT_CLIENT:
            return TransientFailure(
                cause=reason,
                status_code=status_code,
                retry_after=parse_retry_after(_header(headers, Headers.RETRY_AFTER)),
            )
        if status_code in StatusCodes.DECLINE:
            return Declined(reason=reason, message=self._error_message(body))
        if 400 <= status_code < 500:
            return FatalFailure(cause=reason, status_code=status_code)
        return FatalFailure(
            cause=f"Unexpected HTTP status {status_code}",
            status_code=status_code,
        )

    def _decode_success(self, body: bytes) -> Outcome:
        try:
            envelope = self.decode_envelope(body)
        except InAppPayError as e:
            return FatalFailure(cause=f"{ErrorCodes.MALFORMED_RESPONSE}: {e.message}")

        if not envelope.success:
            reason = (
                envelope.error_code
                or envelope.error
                or envelope.message
                or ErrorCodes.PURCHASE_FAILED
            )
            return Declined(reason=str(reason), message=envelope.error_message)

        data = envelope.data if isinstance(envelope.data, dict) else {}
        receipt = next((data[k] for k in RECEIPT_KEYS if data.get(k)), None)
        if receipt is None:
            return FatalFailure(
                cause=f"{ErrorCodes.MALFORMED_RESPONSE}: success response without a receipt"
            )
        return Success(receipt=str(receipt), message=envelope.message, data=data)

    @staticmethod
    def _json_object(body: bytes) -> Optional[dict[str, Any]]:
        try:
            parsed = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return None
        return parsed if isinstance(parsed, dict) else None

    def _error_reason(self, body: bytes) -> str:
        parsed = self._json_object(body)
        if parsed is not None:
            for key in ("errorCode", "error", "message"):
                value = parsed.get(key)
                if isinstance(value, str) and value:
                    return value
        return _raw_text(body)

    def _error_message(self, body: bytes) -> Optional[str]:
        parsed = self._json_object(body)
        if parsed is None:
            return _raw_text(body) or None
        value = parsed.get("error") or parsed.get("message")
        return value if isinstance(value, str) else None


__all__ = [
    "EncodedRequest",
    "RequestCodec",
    "RECEIPT_KEYS",
    "parse_retry_after",
]
