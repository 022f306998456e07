"""
Services Layer - Public API

Quick Reference:
    from threader.services import create_default_registry

    registry = create_default_registry()
    adapter = registry.get_adapter_for_url(url)
    result = await adapter.fetch_thread(url)
    more = await adapter.continue_thread(result.thread)
"""

from threader.services.errors import (
    FetchError,
    LinkageError,
    ParseError,
    RateLimitError,
    ThreaderError,
    ThreadPayloadError,
)
from threader.services.fetch_client import ResilientFetchClient, parse_retry_after_ms
from threader.services.mainline import MainlineResult, build_mainline, extend_from_tail
from threader.services.platforms import PlatformAdapter
from threader.services.platforms.bluesky import BlueskyAdapter
from threader.services.platforms.mastodon import MastodonAdapter
from threader.services.platforms.registry import AdapterRegistry, create_default_registry

__all__ = [
    "AdapterRegistry",
    "BlueskyAdapter",
    "FetchError",
    "LinkageError",
    "MainlineResult",
    "MastodonAdapter",
    "ParseError",
    "PlatformAdapter",
    "RateLimitError",
    "ResilientFetchClient",
    "ThreadPayloadError",
    "ThreaderError",
    "build_mainline",
    "create_default_registry",
    "extend_from_tail",
    "parse_retry_after_ms",
]
