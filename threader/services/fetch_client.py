"""Resilient JSON fetching for the public Mastodon and Bluesky APIs.

One ResilientFetchClient is owned by each platform adapter. It provides:
- per-host FIFO throttling with a minimum gap between dispatches
- a short-TTL response cache keyed by full request URL
- in-flight coalescing of identical concurrent requests
- FetchError / RateLimitError for non-2xx answers (429 carries Retry-After)

Every value handed to a caller is a deep copy, so callers never share
mutable state with the cache or with each other.
"""

import asyncio
import copy
import math
import time
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Union

import httpx
from cachetools import TTLCache
from dateutil import parser as date_parser

from threader.services.errors import FetchError, RateLimitError
from threader.utils.logging import get_logger

logger = get_logger(__name__, prefix="Fetch")

DEFAULT_REQUEST_GAP_MS = 150
DEFAULT_CACHE_TTL_SECONDS = 120.0
DEFAULT_CACHE_MAX_ENTRIES = 512
DEFAULT_RETRY_AFTER_MS = 2_000
MAX_RETRY_AFTER_MS = 60_000

QueryParams = Mapping[str, Union[str, int]]


def parse_retry_after_ms(value: Optional[str], now: Optional[datetime] = None) -> int:
    """Convert a Retry-After header into milliseconds.

    Accepts delta-seconds ("5", "1.5") or an HTTP date. The result is
    clamped to [0, MAX_RETRY_AFTER_MS]; absent or unreadable values give
    DEFAULT_RETRY_AFTER_MS.
    """
    if not value or not value.strip():
        return DEFAULT_RETRY_AFTER_MS
    value = value.strip()

    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None:
        if not math.isfinite(seconds) or seconds < 0:
            return DEFAULT_RETRY_AFTER_MS
        return min(MAX_RETRY_AFTER_MS, max(0, round(seconds * 1000)))

    try:
        when = date_parser.parse(value)
    except (ValueError, OverflowError):
        return DEFAULT_RETRY_AFTER_MS
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    delta_ms = (when - now).total_seconds() * 1000
    return int(min(MAX_RETRY_AFTER_MS, max(0, round(delta_ms))))


def _error_detail(response: httpx.Response, keys: Sequence[str]) -> str:
    """Pull a machine-readable message out of an error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return ""
    if not isinstance(body, dict):
        return ""
    for key in keys:
        detail = body.get(key)
        if detail:
            return str(detail)
    return ""


class ResilientFetchClient:
    """Throttled, caching, coalescing JSON client for one upstream API.

    Args:
        api_name: Human name used in error messages ("Mastodon", "Bluesky").
        request_gap_ms: Minimum spacing between dispatches to the same host.
        cache_ttl_seconds: How long a successful response is served from cache.
        cache_max_entries: Cap on cached responses; the least recently used go first.
        detail_keys: Error-body fields to read a detail message from, in order.
        user_agent: Optional User-Agent header.
        timeout: Per-request timeout in seconds; None disables it.
        transport: httpx transport override (tests use httpx.MockTransport).
        clock: Monotonic clock, used for throttling and cache expiry.
        sleep: Coroutine used to wait out the throttle gap.
    """

    def __init__(
        self,
        api_name: str,
        *,
        request_gap_ms: int = DEFAULT_REQUEST_GAP_MS,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
        cache_max_entries: int = DEFAULT_CACHE_MAX_ENTRIES,
        detail_keys: Sequence[str] = ("error", "message"),
        user_agent: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.api_name = api_name
        self._gap = max(0, request_gap_ms) / 1000.0
        self._detail_keys = tuple(detail_keys)
        self._clock = clock
        self._sleep = sleep

        headers = {"Accept": "application/json"}
        if user_agent:
            headers["User-Agent"] = user_agent
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            transport=transport,
            follow_redirects=True,
        )

        # Expired entries are purged on every write.
        self._cache: TTLCache = TTLCache(
            maxsize=max(1, cache_max_entries), ttl=cache_ttl_seconds, timer=clock
        )
        self._in_flight: Dict[str, "asyncio.Future[Any]"] = {}
        self._host_locks: Dict[str, asyncio.Lock] = {}
        self._host_last_dispatch: Dict[str, float] = {}

    async def get_json(self, url: str, params: Optional[QueryParams] = None) -> Any:
        """GET `url` (with `params`) and return the decoded JSON body.

        Raises:
            RateLimitError: upstream answered 429.
            FetchError: any other non-2xx answer, bad JSON, or transport failure.
        """
        key = str(httpx.URL(url, params=params)) if params else url

        if key in self._cache:
            logger.debug(f"Cache hit for {key}")
            return copy.deepcopy(self._cache[key])

        task = self._in_flight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._dispatch(key))
            self._in_flight[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(key, done))
        else:
            logger.debug(f"Joining in-flight request for {key}")

        value = await asyncio.shield(task)
        return copy.deepcopy(value)

    def _forget(self, key: str, task: "asyncio.Future[Any]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _dispatch(self, url: str) -> Any:
        """Run one request in its host's FIFO queue, honouring the gap."""
        host = httpx.URL(url).host
        lock = self._host_locks.setdefault(host, asyncio.Lock())

        async with lock:
            last = self._host_last_dispatch.get(host)
            if last is not None:
                wait = self._gap - (self._clock() - last)
                if wait > 0:
                    logger.debug(f"Throttling {host} for {wait * 1000:.0f}ms")
                    await self._sleep(wait)
            self._host_last_dispatch[host] = self._clock()
            return await self._request(url)

    async def _request(self, url: str) -> Any:
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"{self.api_name} request to {url} failed: {e}")
            raise FetchError(
                f"{self.api_name} API request failed: {e}", url=url
            ) from e

        status = response.status_code
        if status == 429:
            detail = _error_detail(response, self._detail_keys)
            retry_after_ms = parse_retry_after_ms(response.headers.get("Retry-After"))
            logger.warning(
                "429 from %s (Retry-After=%s, waiting %dms)",
                url,
                response.headers.get("Retry-After"),
                retry_after_ms,
            )
            suffix = f" {detail}" if detail else ""
            raise RateLimitError(
                f"{self.api_name} API is rate limiting requests. Retrying soon.{suffix}",
                retry_after_ms,
                status=status,
                detail=detail,
                url=url,
            )

        if not response.is_success:
            detail = _error_detail(response, self._detail_keys)
            logger.warning(f"{self.api_name} API returned {status} for {url}")
            suffix = f" {detail}" if detail else ""
            raise FetchError(
                f"{self.api_name} API request failed ({status}).{suffix}",
                status=status,
                detail=detail,
                url=url,
            )

        try:
            value = response.json()
        except ValueError as e:
            raise FetchError(
                f"{self.api_name} API returned invalid JSON ({status}).",
                status=status,
                url=url,
            ) from e

        self._cache[url] = value
        return value

    def clear_cache(self) -> None:
        self._cache.clear()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def __aenter__(self) -> "ResilientFetchClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
