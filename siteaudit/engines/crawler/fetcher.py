"""
Fetch collaborators for the crawler.

- HttpxFetcher:    plain HTTP via httpx, byte-capped and wall-clock bounded
- ReliableFetcher: wraps any fetcher with breaker -> throttle -> retry
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import httpx
import structlog

from siteaudit.core.config import get_settings
from siteaudit.core.exceptions import CircuitOpenError, RetryableStatusError
from siteaudit.core.reliability import (
    RETRYABLE_STATUSES,
    ReliabilityRegistry,
    Sleep,
    with_retry,
)
from siteaudit.core.url import origin_of

logger = structlog.get_logger(__name__)


# ─────────────────────────────────────────────
# Contract
# ─────────────────────────────────────────────

@dataclass
class FetchResponse:
    """What the crawler needs from one HTTP exchange."""
    url: str                       # As requested
    status: int
    final_url: str                 # After redirects
    content_type: str = ""
    headers: dict[str, str] = field(default_factory=dict)   # Lower-cased names
    body: str = ""
    ttfb_ms: float = 0.0
    redirect_chain: list[str] = field(default_factory=list)  # URLs that answered 3xx, in order
    truncated: bool = False


@runtime_checkable
class HtmlFetcher(Protocol):
    async def fetch_html(self, url: str, timeout_ms: int, max_bytes: int) -> FetchResponse:
        ...


# ─────────────────────────────────────────────
# httpx implementation
# ─────────────────────────────────────────────

class HttpxFetcher:
    """
    Streams the body and stops reading at `max_bytes`, so a huge page never
    gets buffered whole. TTFB is measured up to the response headers.
    """

    DEFAULT_HEADERS = {
        "Accept": "text/html,application/xhtml+xml,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    }

    def __init__(self, client: httpx.AsyncClient | None = None, user_agent: str | None = None):
        settings = get_settings()
        headers = {"User-Agent": user_agent or settings.CRAWLER_USER_AGENT, **self.DEFAULT_HEADERS}
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers=headers,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )

    async def __aenter__(self) -> HttpxFetcher:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def fetch_html(self, url: str, timeout_ms: int, max_bytes: int) -> FetchResponse:
        timeout_s = timeout_ms / 1000
        return await asyncio.wait_for(self._fetch(url, max_bytes, timeout_s), timeout=timeout_s)

    async def _fetch(self, url: str, max_bytes: int, timeout_s: float) -> FetchResponse:
        start = time.perf_counter()
        async with self.client.stream("GET", url, follow_redirects=True, timeout=timeout_s) as response:
            ttfb_ms = (time.perf_counter() - start) * 1000

            chunks: list[bytes] = []
            received = 0
            truncated = False
            async for chunk in response.aiter_bytes():
                remaining = max_bytes - received
                if len(chunk) >= remaining:
                    chunks.append(chunk[:remaining])
                    truncated = len(chunk) > remaining
                    break
                chunks.append(chunk)
                received += len(chunk)

            return FetchResponse(
                url=url,
                status=response.status_code,
                final_url=str(response.url),
                content_type=response.headers.get("content-type", ""),
                headers={name.lower(): value for name, value in response.headers.items()},
                body=_decode(b"".join(chunks), response.charset_encoding),
                ttfb_ms=ttfb_ms,
                redirect_chain=[str(hop.url) for hop in response.history],
                truncated=truncated,
            )


def _decode(raw: bytes, charset: str | None) -> str:
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


# ─────────────────────────────────────────────
# Reliability wrapper
# ─────────────────────────────────────────────

class ReliableFetcher:
    """
    Composes the reliability primitives around another fetcher:

    1. Fail fast with CircuitOpenError while the origin's circuit is open
    2. Wait out the origin's adaptive throttle delay
    3. Retry transient failures with backoff
    4. Report the outcome to breaker and throttle

    A retryable status that survives every retry is returned as-is so the
    page still records it; network errors are re-raised after the retries.
    """

    def __init__(
        self,
        inner: HtmlFetcher,
        registry: ReliabilityRegistry | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.inner = inner
        self.registry = registry or ReliabilityRegistry.from_settings()
        self._sleep = sleep

    async def fetch_html(self, url: str, timeout_ms: int, max_bytes: int) -> FetchResponse:
        origin = origin_of(url) or url
        breaker = self.registry.breaker_for(origin)
        throttle = self.registry.throttle_for(origin)

        if not breaker.allow_request():
            raise CircuitOpenError(origin)

        delay = throttle.current_delay()
        if delay > 0:
            logger.info("Throttling origin", origin=origin, delay_s=delay)
            await self._sleep(delay)

        async def attempt() -> FetchResponse:
            response = await self.inner.fetch_html(url, timeout_ms, max_bytes)
            if response.status == 429:
                throttle.record_rate_limited()
            elif response.status < 500:
                throttle.record_success()
            if response.status in RETRYABLE_STATUSES:
                raise RetryableStatusError(response, response.status)
            return response

        result = await with_retry(attempt, self.registry.retry_policy, sleep=self._sleep)
        if result.success:
            breaker.record_success()
            return result.value

        breaker.record_failure()
        if isinstance(result.error, RetryableStatusError):
            logger.warning(
                "Retries exhausted",
                url=url,
                status=result.error.status,
                attempts=result.attempts,
            )
            return result.error.response
        raise result.error


class PrefetchedFetcher:
    """
    Hands out responses fetched earlier in the run (the homepage probe) once,
    keyed by requested URL, and delegates everything else to `inner`.
    """

    def __init__(self, inner: HtmlFetcher, responses: list[FetchResponse] | None = None):
        self.inner = inner
        self._responses = {response.url: response for response in responses or ()}

    async def fetch_html(self, url: str, timeout_ms: int, max_bytes: int) -> FetchResponse:
        response = self._responses.pop(url, None)
        if response is not None:
            logger.debug("Reusing prefetched response", url=url)
            return response
        return await self.inner.fetch_html(url, timeout_ms, max_bytes)
