"""
Pytest configuration and fixtures for InAppPay SDK tests.
"""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Optional

import httpx
import pytest

from inapppay import InAppPayClient, PurchaseRequest
from inapppay.retry import RetryPolicy


@dataclass
class _MockEntry:
    method: str
    url: str
    response: Optional[httpx.Response] = None
    exception: Optional[Exception] = None
    gate: Optional[asyncio.Event] = None


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Any = None

    def header(self, name: str) -> Optional[str]:
        for key, value in self.headers.items():
            if key.lower() == name.lower():
                return value
        return None


class _LocalHTTPXMock:
    """Scripted replacement for ``httpx.AsyncClient.request``.

    Responses are consumed in order per method and URL. A response added
    with ``gate`` is held until the event is set, which keeps an attempt in
    flight for as long as a test needs.
    """

    def __init__(self) -> None:
        self._entries: list[_MockEntry] = []
        self.requests: list[RecordedRequest] = []

    def add_response(
        self,
        *,
        url: str,
        method: str = "POST",
        status_code: int = 200,
        json: Any = None,
        content: bytes | None = None,
        headers: Optional[dict[str, str]] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        if content is None and json is not None:
            content = json_dumps_bytes(json)
            response_headers = {"content-type": "application/json"}
            if headers:
                response_headers.update(headers)
        else:
            response_headers = headers or {}

        request = httpx.Request(method.upper(), url)
        response = httpx.Response(
            status_code=status_code,
            headers=response_headers,
            content=content or b"",
            request=request,
        )
        self._entries.append(
            _MockEntry(method=method.upper(), url=url, response=response, gate=gate)
        )

    def add_exception(
        self,
        exception: Exception,
        *,
        url: str,
        method: str = "POST",
    ) -> None:
        self._entries.append(
            _MockEntry(method=method.upper(), url=url, exception=exception)
        )

    def _pop_match(self, method: str, url: str) -> _MockEntry:
        normalized_method = method.upper()
        for idx, entry in enumerate(self._entries):
            if entry.method == normalized_method and entry.url == url:
                return self._entries.pop(idx)
        raise AssertionError(
            f"No mocked response for {normalized_method} {url}. "
            f"Available: {[f'{e.method} {e.url}' for e in self._entries]}"
        )

    def requests_to(self, url: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.url == url]

    async def wait_for_requests(self, count: int, timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while len(self.requests) < count:
            if loop.time() > deadline:
                raise AssertionError(f"expected {count} requests, saw {len(self.requests)}")
            await asyncio.sleep(0.005)

    @property
    def pending(self) -> int:
        return len(self._entries)


def json_dumps_bytes(payload: Any) -> bytes:
    return json.dumps(payload, default=str).encode("utf-8")


@pytest.fixture
def httpx_mock(monkeypatch):
    """Patch ``httpx.AsyncClient.request`` with a scripted mock."""
    mock = _LocalHTTPXMock()

    async def _async_request(self, method, url, *, content=None, json=None, headers=None, **kwargs):
        if content is not None:
            body = _decode_json(content)
        else:
            body = json
        mock.requests.append(
            RecordedRequest(
                method=method.upper(),
                url=str(url),
                headers=dict(headers or {}),
                body=body,
            )
        )
        match = mock._pop_match(method, str(url))
        if match.gate is not None:
            await match.gate.wait()
        if match.exception is not None:
            raise match.exception
        assert match.response is not None
        return match.response

    monkeypatch.setattr(httpx.AsyncClient, "request", _async_request)
    return mock


def _decode_json(content: bytes) -> Any:
    try:
        return json.loads(content)
    except ValueError:
        return content


@pytest.fixture
def wait_until():
    """Poll ``predicate`` until it holds, failing after ``timeout`` seconds."""

    async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)

    return _wait_until


# ==================== Test Configuration ====================


@pytest.fixture
def base_url():
    """Test backend base URL."""
    return "https://functions.inapppay.test"


@pytest.fixture
def purchase_url(base_url):
    return f"{base_url}/processPurchase"


@pytest.fixture
def project_name():
    return "demo-game"


@pytest.fixture
def user_id():
    return "device-42"


@pytest.fixture
def fast_policy():
    """Retry policy without delays, so retry tests run instantly."""
    return RetryPolicy(max_attempts=5, max_elapsed=30.0, base_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture
async def client(httpx_mock, base_url, project_name, user_id, fast_policy):
    """Client wired to the mocked backend."""
    client = InAppPayClient(
        project_name=project_name,
        user_id=user_id,
        base_url=base_url,
        retry_policy=fast_policy,
    )
    yield client
    await client.close()


@pytest.fixture
def purchase_request():
    return PurchaseRequest(item_id="sku_1", amount=Decimal("4.99"), currency="USD")


@pytest.fixture
def valid_card_data():
    return {
        "number": "4111 1111 1111 1111",
        "expiry": "12/99",
        "cvv": "123",
        "holder_name": "Ada Lovelace",
    }


# ==================== Response Bodies ====================


def success_body(receipt: str = "R123", **data: Any) -> dict[str, Any]:
    return {
        "success": True,
        "message": "Purchase completed successfully",
        "data": {"receipt": receipt, **data},
    }


@pytest.fixture
def success_response():
    return success_body
