import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from .config import SyncConfig
from .errors import RetryExhausted, TransientHttpFailure
from .time import seconds_until

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

USER_AGENT = "owner-sync/1.0"


@dataclass(frozen=True)
class ApiRequest:
    """A single HTTP call: method, target, headers and optional JSON body"""

    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    json: Optional[Any] = None
    params: Optional[Dict[str, Any]] = None


def new_client(
    config: SyncConfig, transport: Optional[httpx.AsyncBaseTransport] = None
) -> httpx.AsyncClient:
    """Create an async HTTP client with the per-request timeout applied"""
    return httpx.AsyncClient(
        base_url=config.base_url,
        timeout=httpx.Timeout(config.request_timeout_s),
        headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        transport=transport,
    )


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header into seconds

    Accepts delta-seconds ("2", "1.5") or an HTTP-date. Returns None when the
    header is absent or unreadable.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return seconds_until(value)
    return max(0.0, seconds)


def compute_delay(
    attempt: int,
    retry_after: Optional[float] = None,
    base_delay_ms: int = 1000,
    max_delay_ms: int = 32000,
    backoff_base: float = 2.0,
    jitter: bool = False,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Delay in seconds before the next attempt

    Args:
        attempt: 1-based number of the attempt that just failed
        retry_after: Server-provided wait in seconds, wins when present
        base_delay_ms: Delay after the first failed attempt
        max_delay_ms: Upper bound for any delay
        backoff_base: Growth factor per attempt (1.0 gives a constant delay)
        jitter: Scale the computed delay by a random factor in [0.5, 1.0)
        rand: Source of randomness in [0, 1)

    Returns:
        float: Seconds to wait, never above max_delay_ms / 1000
    """
    if retry_after is not None:
        delay_ms = retry_after * 1000
    else:
        delay_ms = base_delay_ms * backoff_base ** max(0, attempt - 1)
        if jitter:
            delay_ms *= 0.5 + rand() / 2

    return min(delay_ms, max_delay_ms) / 1000


class ResilientTransport:
    """Sends requests, retrying transient failures and honoring rate limits"""

    def __init__(
        self,
        client: httpx.AsyncClient,
        access_token: str,
        max_retries: int = 60,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 32000,
        backoff_base: float = 2.0,
        jitter: bool = True,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.client = client
        self.access_token = access_token
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.backoff_base = backoff_base
        self.jitter = jitter
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        client: httpx.AsyncClient,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "ResilientTransport":
        return cls(
            client,
            config.access_token,
            max_retries=config.max_retries,
            base_delay_ms=config.base_delay_ms,
            max_delay_ms=config.max_delay_ms,
            backoff_base=config.backoff_base,
            jitter=config.jitter,
            sleep=sleep,
        )

    def _headers(self, request: ApiRequest) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        headers.update(request.headers)
        return headers

    async def send(self, request: ApiRequest) -> httpx.Response:
        """
        Send a request, retrying on transient failures

        Statuses outside RETRYABLE_STATUS_CODES (success or permanent failure)
        are returned as-is on the attempt that produced them. Timeouts and
        connection errors count against the same attempt budget.

        Raises:
            RetryExhausted: After max_retries transient failures in a row
        """
        headers = self._headers(request)
        last_status: Optional[int] = None

        for attempt in range(1, self.max_retries + 1):
            retry_after = None
            try:
                response = await self.client.request(
                    request.method,
                    request.url,
                    headers=headers,
                    json=request.json,
                    params=request.params,
                )
                if response.status_code in RETRYABLE_STATUS_CODES:
                    raise TransientHttpFailure(
                        response.status_code,
                        parse_retry_after(response.headers.get("Retry-After")),
                    )
                return response
            except TransientHttpFailure as e:
                last_status = e.status
                retry_after = e.retry_after
                logger.debug(f"Attempt {attempt} for {request.method} {request.url}: {e}")
            except httpx.TransportError as e:
                last_status = None
                logger.debug(
                    f"Attempt {attempt} for {request.method} {request.url} failed: {e!r}"
                )

            if attempt == self.max_retries:
                break

            delay = compute_delay(
                attempt,
                retry_after=retry_after,
                base_delay_ms=self.base_delay_ms,
                max_delay_ms=self.max_delay_ms,
                backoff_base=self.backoff_base,
                jitter=self.jitter,
            )
            logger.debug(f"Retrying in {delay:.2f}s...")
            await self._sleep(delay)

        logger.error(
            f"Max retries reached for {request.method} {request.url} "
            f"(last status={last_status})"
        )
        raise RetryExhausted(last_status, self.max_retries, request.url)
