"""
Pytest configuration and shared fixtures for threader tests.
"""

from typing import Generator

import pytest
from fastapi.testclient import TestClient

from tests.factories import FakeClock, FakeUpstream
from threader.config.settings import Settings
from threader.services.fetch_client import ResilientFetchClient
from threader.services.platforms.bluesky import BlueskyAdapter
from threader.services.platforms.mastodon import MastodonAdapter
from threader.services.platforms.registry import AdapterRegistry


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def mastodon(upstream, clock, settings):
    client = ResilientFetchClient(
        "Mastodon",
        request_gap_ms=0,
        detail_keys=("error",),
        transport=upstream.transport,
        clock=clock,
        sleep=clock.sleep,
    )
    adapter = MastodonAdapter(client, settings=settings)
    yield adapter
    await adapter.aclose()


@pytest.fixture
async def bluesky(upstream, clock, settings):
    client = ResilientFetchClient(
        "Bluesky",
        request_gap_ms=0,
        detail_keys=("message", "error"),
        transport=upstream.transport,
        clock=clock,
        sleep=clock.sleep,
    )
    adapter = BlueskyAdapter(client, settings=settings)
    yield adapter
    await adapter.aclose()


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app(upstream, settings):
    """FastAPI application whose adapters talk to FakeUpstream."""
    from threader.main import create_app

    registry = AdapterRegistry(
        [
            MastodonAdapter(
                ResilientFetchClient(
                    "Mastodon",
                    request_gap_ms=0,
                    detail_keys=("error",),
                    transport=upstream.transport,
                ),
                settings=settings,
            ),
            BlueskyAdapter(
                ResilientFetchClient(
                    "Bluesky",
                    request_gap_ms=0,
                    detail_keys=("message", "error"),
                    transport=upstream.transport,
                ),
                settings=settings,
            ),
        ]
    )
    return create_app(registry=registry)


@pytest.fixture
def client(app) -> Generator[TestClient, None, None]:
    """
    Synchronous test client for API testing.

    Entering the client runs the lifespan, which installs the registry.
    """
    with TestClient(app) as test_client:
        yield test_client


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Pytest configuration hook."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
