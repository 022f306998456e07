"""
Unit tests for ResilientFetchClient.

Upstream APIs are replaced by httpx.MockTransport and time by FakeClock, so
throttle gaps and cache expiry are checked without real waiting.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from tests.factories import FakeUpstream
from threader.services.errors import FetchError, RateLimitError
from threader.services.fetch_client import ResilientFetchClient, parse_retry_after_ms

API = "https://mastodon.example/api/v1/statuses"


def make_client(upstream, clock, **kwargs):
    kwargs.setdefault("request_gap_ms", 0)
    return ResilientFetchClient(
        "Mastodon",
        transport=upstream.transport,
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


@pytest.mark.unit
class TestParseRetryAfter:
    """Tests for Retry-After header parsing."""

    @pytest.mark.parametrize(
        "header,expected",
        [
            ("5", 5000),
            ("1.5", 1500),
            ("0", 0),
            ("120", 60000),
            (None, 2000),
            ("", 2000),
            ("soon", 2000),
            ("-3", 2000),
        ],
    )
    def test_seconds_and_fallbacks(self, header, expected):
        """Should read delta-seconds, clamp them, and default otherwise."""
        assert parse_retry_after_ms(header) == expected

    def test_http_date(self):
        """Should convert an HTTP date into a delay from now."""
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

        assert parse_retry_after_ms("Mon, 01 Jan 2024 12:00:10 GMT", now=now) == 10000

    def test_http_date_in_the_past(self):
        """Should never return a negative delay."""
        now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

        assert parse_retry_after_ms("Mon, 01 Jan 2024 11:00:00 GMT", now=now) == 0

    def test_http_date_far_future_is_clamped(self):
        """Should cap dates further out than a minute."""
        now = datetime.now(timezone.utc)
        later = (now + timedelta(hours=2)).strftime("%a, %d %b %Y %H:%M:%S GMT")

        assert parse_retry_after_ms(later, now=now) == 60000


@pytest.mark.unit
class TestErrors:
    """Tests for non-2xx and transport failures."""

    async def test_rate_limit_raises_with_retry_after(self, upstream, clock):
        """Should raise RateLimitError carrying the requested delay."""
        upstream.add(
            f"{API}/1",
            {"error": "Too many requests"},
            status=429,
            headers={"Retry-After": "5"},
        )
        async with make_client(upstream, clock) as client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.get_json(f"{API}/1")

        error = exc_info.value
        assert error.status == 429
        assert error.retry_after_ms == 5000
        assert error.detail == "Too many requests"
        assert str(error) == (
            "Mastodon API is rate limiting requests. Retrying soon. Too many requests"
        )

    async def test_rate_limit_without_header_uses_default(self, upstream, clock):
        """Should fall back to a two second delay."""
        upstream.add(f"{API}/1", {}, status=429)
        async with make_client(upstream, clock) as client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.get_json(f"{API}/1")

        assert exc_info.value.retry_after_ms == 2000

    async def test_not_found_carries_detail(self, upstream, clock):
        """Should raise FetchError with status and the body's error message."""
        async with make_client(upstream, clock) as client:
            with pytest.raises(FetchError) as exc_info:
                await client.get_json(f"{API}/missing")

        error = exc_info.value
        assert not isinstance(error, RateLimitError)
        assert error.status == 404
        assert error.detail == "Record not found"
        assert "(404)" in str(error)
        assert error.url == f"{API}/missing"

    async def test_transport_failure(self, clock):
        """Should wrap connection errors in FetchError without a status."""

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = ResilientFetchClient(
            "Bluesky", transport=httpx.MockTransport(refuse), clock=clock, sleep=clock.sleep
        )
        async with client:
            with pytest.raises(FetchError) as exc_info:
                await client.get_json("https://public.api.bsky.app/xrpc/x")

        assert exc_info.value.status is None
        assert "Bluesky API request failed" in str(exc_info.value)

    async def test_invalid_json(self, clock):
        """Should raise FetchError for a 2xx body that is not JSON."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>"))
        async with ResilientFetchClient("Mastodon", transport=transport, clock=clock) as client:
            with pytest.raises(FetchError):
                await client.get_json(f"{API}/1")

    async def test_failures_are_not_cached(self, upstream, clock):
        """Should retry a failed URL on the next call."""
        async with make_client(upstream, clock) as client:
            with pytest.raises(FetchError):
                await client.get_json(f"{API}/1")
            upstream.add(f"{API}/1", {"id": "1"})
            assert await client.get_json(f"{API}/1") == {"id": "1"}

        assert upstream.count(f"{API}/1") == 2


@pytest.mark.unit
class TestCache:
    """Tests for the response cache and in-flight coalescing."""

    async def test_cache_hit_returns_independent_copy(self, upstream, clock):
        """Should serve repeats from cache and never share mutable state."""
        upstream.add(f"{API}/1", {"id": "1", "media": []})
        async with make_client(upstream, clock) as client:
            first = await client.get_json(f"{API}/1")
            first["media"].append("mutated")
            second = await client.get_json(f"{API}/1")

        assert second == {"id": "1", "media": []}
        assert len(upstream.calls) == 1

    async def test_cache_expires_after_ttl(self, upstream, clock):
        """Should refetch once the entry is older than the TTL."""
        upstream.add(f"{API}/1", {"id": "1"})
        async with make_client(upstream, clock, cache_ttl_seconds=120) as client:
            await client.get_json(f"{API}/1")
            clock.advance(60)
            await client.get_json(f"{API}/1")
            assert len(upstream.calls) == 1

            clock.advance(61)
            await client.get_json(f"{API}/1")

        assert len(upstream.calls) == 2

    async def test_cache_key_includes_query(self, upstream, clock):
        """Should treat different query strings as different resources."""
        url = "https://public.api.bsky.app/xrpc/app.bsky.actor.getProfile"
        upstream.add(url, {"did": "did:plc:a"}, params={"actor": "a.bsky.social"})
        upstream.add(url, {"did": "did:plc:b"}, params={"actor": "b.bsky.social"})
        async with make_client(upstream, clock) as client:
            a = await client.get_json(url, {"actor": "a.bsky.social"})
            b = await client.get_json(url, {"actor": "b.bsky.social"})

        assert a["did"] == "did:plc:a"
        assert b["did"] == "did:plc:b"

    async def test_concurrent_identical_requests_share_one_call(self, upstream, clock):
        """Should coalesce concurrent requests for the same URL."""
        upstream.add(f"{API}/1", {"id": "1", "tags": ["a"]})
        async with make_client(upstream, clock) as client:
            first, second = await asyncio.gather(
                client.get_json(f"{API}/1"), client.get_json(f"{API}/1")
            )

        assert len(upstream.calls) == 1
        assert first == second
        assert first is not second
        assert first["tags"] is not second["tags"]

    async def test_clear_cache(self, upstream, clock):
        """Should go back upstream after the cache is cleared."""
        upstream.add(f"{API}/1", {"id": "1"})
        async with make_client(upstream, clock) as client:
            await client.get_json(f"{API}/1")
            client.clear_cache()
            await client.get_json(f"{API}/1")

        assert len(upstream.calls) == 2

    async def test_expired_entries_are_purged_on_write(self, upstream, clock):
        """Should drop stale responses for other URLs once a new one is stored."""
        for status_id in range(50):
            upstream.add(f"{API}/{status_id}", {"id": str(status_id)})
        upstream.add(f"{API}/new", {"id": "new"})

        async with make_client(upstream, clock, cache_ttl_seconds=120) as client:
            for status_id in range(50):
                await client.get_json(f"{API}/{status_id}")
            assert len(client._cache) == 50

            clock.advance(3600)
            await client.get_json(f"{API}/new")

            assert len(client._cache) == 1

    async def test_cache_size_is_capped(self, upstream, clock):
        """Should evict the least recently used response past the cap."""
        for status_id in ("1", "2", "3"):
            upstream.add(f"{API}/{status_id}", {"id": status_id})

        async with make_client(upstream, clock, cache_max_entries=2) as client:
            for status_id in ("1", "2", "3"):
                await client.get_json(f"{API}/{status_id}")
            assert len(client._cache) == 2

            await client.get_json(f"{API}/1")

        assert upstream.count(f"{API}/1") == 2
        assert upstream.count(f"{API}/3") == 1


@pytest.mark.unit
class TestThrottle:
    """Tests for per-host request spacing."""

    async def test_enforces_gap_between_same_host_requests(self, upstream, clock):
        """Should wait out the gap before each follow-up dispatch."""
        for status_id in ("1", "2", "3"):
            upstream.add(f"{API}/{status_id}", {"id": status_id})

        async with make_client(upstream, clock, request_gap_ms=150) as client:
            for status_id in ("1", "2", "3"):
                await client.get_json(f"{API}/{status_id}")

        assert clock.sleeps == pytest.approx([0.15, 0.15])

    async def test_no_wait_once_gap_has_elapsed(self, upstream, clock):
        """Should dispatch immediately when enough time has passed."""
        upstream.add(f"{API}/1", {"id": "1"})
        upstream.add(f"{API}/2", {"id": "2"})

        async with make_client(upstream, clock, request_gap_ms=150) as client:
            await client.get_json(f"{API}/1")
            clock.advance(1)
            await client.get_json(f"{API}/2")

        assert clock.sleeps == []

    async def test_hosts_are_throttled_independently(self, upstream, clock):
        """Should not delay a request to a different host."""
        upstream.add(f"{API}/1", {"id": "1"})
        upstream.add("https://other.example/api/v1/statuses/1", {"id": "1"})

        async with make_client(upstream, clock, request_gap_ms=150) as client:
            await client.get_json(f"{API}/1")
            await client.get_json("https://other.example/api/v1/statuses/1")

        assert clock.sleeps == []

    async def test_same_host_requests_dispatch_in_order(self, upstream, clock):
        """Should send queued requests to one host first-in first-out."""
        urls = [f"{API}/{status_id}" for status_id in ("1", "2", "3")]
        for url in urls:
            upstream.add(url, {})

        async with make_client(upstream, clock, request_gap_ms=150) as client:
            await asyncio.gather(*(client.get_json(url) for url in urls))

        assert upstream.calls == urls

    async def test_failure_does_not_block_queue(self, clock):
        """Should keep serving a host after one of its requests fails."""
        upstream = FakeUpstream()
        upstream.add(f"{API}/2", {"id": "2"})

        async with make_client(upstream, clock, request_gap_ms=150) as client:
            failed, succeeded = await asyncio.gather(
                client.get_json(f"{API}/1"),
                client.get_json(f"{API}/2"),
                return_exceptions=True,
            )

        assert isinstance(failed, FetchError)
        assert succeeded == {"id": "2"}
