"""
Tests for the resilient transport: retry budget, Retry-After handling and
the backoff delay cap.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest
import pytest_asyncio

from owner_sync.coreutils.config import SyncConfig
from owner_sync.coreutils.errors import RetryExhausted
from owner_sync.coreutils.request import (
    RETRYABLE_STATUS_CODES,
    ApiRequest,
    ResilientTransport,
    compute_delay,
    new_client,
    parse_retry_after,
)


@pytest_asyncio.fixture
async def make_transport():
    """Factory for transports whose server replays `responses` in order"""
    clients = []

    def _make(responses, sleeper, max_retries=3, **kwargs):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            item = responses[min(len(seen) - 1, len(responses) - 1)]
            if isinstance(item, Exception):
                raise item
            if isinstance(item, httpx.Response):
                return item
            return httpx.Response(item, json={"ok": item < 400})

        client = httpx.AsyncClient(
            transport=httpx.MockTransport(handler), base_url="http://crm.test"
        )
        clients.append(client)
        transport = ResilientTransport(
            client,
            "secret",
            max_retries=max_retries,
            jitter=False,
            sleep=sleeper,
            **kwargs,
        )
        return transport, seen

    yield _make

    for client in clients:
        await client.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [200, 201, 204, 400, 401, 403, 404, 409, 422])
async def test_non_retryable_status_returns_on_first_attempt(
    status, sleeper, make_transport
):
    transport, seen = make_transport([status], sleeper)

    response = await transport.send(ApiRequest("GET", "/thing"))

    assert response.status_code == status
    assert len(seen) == 1
    assert sleeper.delays == []


@pytest.mark.asyncio
@pytest.mark.parametrize("status", sorted(RETRYABLE_STATUS_CODES))
async def test_retryable_status_exhausts_budget(status, sleeper, make_transport):
    transport, seen = make_transport([status], sleeper, max_retries=4)

    with pytest.raises(RetryExhausted) as exc_info:
        await transport.send(ApiRequest("GET", "/thing"))

    assert exc_info.value.last_status == status
    assert exc_info.value.attempts == 4
    assert len(seen) == 4, f"Expected 4 attempts, got {len(seen)}"
    # no sleep after the final attempt
    assert len(sleeper.delays) == 3


@pytest.mark.asyncio
async def test_recovers_after_transient_failures(sleeper, make_transport):
    transport, seen = make_transport([503, 429, 200], sleeper, max_retries=5)

    response = await transport.send(ApiRequest("POST", "/search", json={"a": 1}))

    assert response.status_code == 200
    assert len(seen) == 3


@pytest.mark.asyncio
async def test_retry_after_header_sets_delay(sleeper, make_transport):
    transport, _ = make_transport(
        [httpx.Response(429, headers={"Retry-After": "2"}), 200], sleeper
    )

    await transport.send(ApiRequest("GET", "/thing"))

    assert sleeper.delays == [2.0]


@pytest.mark.asyncio
async def test_retry_after_is_capped(sleeper, make_transport):
    transport, _ = make_transport(
        [httpx.Response(429, headers={"Retry-After": "120"}), 200],
        sleeper,
        max_delay_ms=32000,
    )

    await transport.send(ApiRequest("GET", "/thing"))

    assert sleeper.delays == [32.0]


@pytest.mark.asyncio
async def test_transport_errors_use_the_same_budget(sleeper, make_transport):
    transport, seen = make_transport(
        [httpx.ConnectError("refused"), httpx.ReadTimeout("slow"), 200], sleeper
    )

    response = await transport.send(ApiRequest("GET", "/thing"))

    assert response.status_code == 200
    assert len(seen) == 3


@pytest.mark.asyncio
async def test_transport_errors_exhaust_with_no_status(sleeper, make_transport):
    transport, _ = make_transport([httpx.ConnectError("refused")], sleeper, max_retries=2)

    with pytest.raises(RetryExhausted) as exc_info:
        await transport.send(ApiRequest("GET", "/thing"))

    assert exc_info.value.last_status is None


@pytest.mark.asyncio
async def test_sends_bearer_credential_and_json_content_type(sleeper, make_transport):
    transport, seen = make_transport([200], sleeper)

    await transport.send(ApiRequest("GET", "/thing", headers={"X-Trace": "1"}))

    request = seen[0]
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.headers["Content-Type"] == "application/json"
    assert request.headers["X-Trace"] == "1"


@pytest.mark.asyncio
async def test_rejects_empty_retry_budget():
    async with httpx.AsyncClient() as client:
        with pytest.raises(ValueError):
            ResilientTransport(client, "secret", max_retries=0)


@pytest.mark.asyncio
async def test_client_uses_configured_timeout():
    config = SyncConfig(access_token="t", request_timeout_s=5)

    async with new_client(config) as client:
        assert client.timeout == httpx.Timeout(5)


@pytest.mark.asyncio
async def test_slow_server_exhausts_budget_with_no_status(sleeper):
    async def handler(request):
        # honor the per-request read timeout the way a real transport would
        timeout = request.extensions["timeout"]["read"]
        await asyncio.sleep(timeout * 2)
        raise httpx.ReadTimeout("read timed out", request=request)

    config = SyncConfig(
        access_token="t", base_url="http://crm.test", request_timeout_s=0.01
    )

    async with new_client(config, transport=httpx.MockTransport(handler)) as client:
        transport = ResilientTransport(client, "t", max_retries=2, sleep=sleeper)
        with pytest.raises(RetryExhausted) as exc_info:
            await transport.send(ApiRequest("GET", "/thing"))

    assert exc_info.value.last_status is None
    assert exc_info.value.attempts == 2


def test_compute_delay_grows_exponentially():
    delays = [compute_delay(attempt, base_delay_ms=1000) for attempt in (1, 2, 3, 4)]
    assert delays == [1.0, 2.0, 4.0, 8.0]


def test_compute_delay_with_base_one_is_constant():
    delays = {compute_delay(attempt, backoff_base=1.0) for attempt in range(1, 61)}
    assert delays == {1.0}


@pytest.mark.parametrize("jitter", [False, True])
@pytest.mark.parametrize("rand_value", [0.0, 0.5, 0.999])
def test_compute_delay_never_exceeds_cap(jitter, rand_value):
    for attempt in range(1, 61):
        for retry_after in (None, 0.5, 31.9, 33.0, 3600.0):
            delay = compute_delay(
                attempt,
                retry_after=retry_after,
                max_delay_ms=32000,
                jitter=jitter,
                rand=lambda: rand_value,
            )
            assert 0 <= delay <= 32.0


def test_compute_delay_jitter_stays_within_half_to_full():
    low = compute_delay(3, jitter=True, rand=lambda: 0.0)
    high = compute_delay(3, jitter=True, rand=lambda: 0.999)
    assert low == 2.0
    assert 2.0 < high < 4.0


def test_retry_after_overrides_exponential_delay():
    assert compute_delay(10, retry_after=3) == 3.0


@pytest.mark.parametrize(
    "header, expected",
    [("3", 3.0), ("1.5", 1.5), ("-2", 0.0), ("", None), (None, None), ("soon", None)],
)
def test_parse_retry_after(header, expected):
    assert parse_retry_after(header) == expected


def test_parse_retry_after_http_date():
    future = datetime.now(timezone.utc) + timedelta(seconds=30)
    seconds = parse_retry_after(format_datetime(future, usegmt=True))
    assert 25 <= seconds <= 30

    past = datetime.now(timezone.utc) - timedelta(seconds=30)
    assert parse_retry_after(format_datetime(past, usegmt=True)) == 0.0
