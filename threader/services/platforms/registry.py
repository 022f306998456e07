"""Adapter registry - picks the platform adapter for a URL or a Thread."""

from typing import Iterable, List, Optional

from threader.config.settings import Settings, get_settings
from threader.services.platforms import PlatformAdapter
from threader.services.platforms.bluesky import BlueskyAdapter
from threader.services.platforms.mastodon import MastodonAdapter
from threader.utils.logging import get_logger

logger = get_logger(__name__, prefix="Registry")


class AdapterRegistry:
    """Ordered list of adapters, tried first to last."""

    def __init__(self, adapters: Iterable[PlatformAdapter]) -> None:
        self.adapters: List[PlatformAdapter] = list(adapters)

    def get_adapter_for_url(self, url: str) -> Optional[PlatformAdapter]:
        """First adapter that recognizes `url`, or None.

        A recognizer that raises is skipped rather than aborting the lookup.
        """
        for adapter in self.adapters:
            try:
                if adapter.can_handle_url(url):
                    return adapter
            except Exception as e:
                logger.debug(f"{type(adapter).__name__} failed to inspect {url!r}: {e}")
                continue
        return None

    def get_adapter_for_platform(self, platform: str) -> Optional[PlatformAdapter]:
        for adapter in self.adapters:
            if adapter.platform == platform:
                return adapter
        return None

    @property
    def platforms(self) -> List[str]:
        return [adapter.platform for adapter in self.adapters]

    async def aclose(self) -> None:
        for adapter in self.adapters:
            await adapter.aclose()


def create_default_registry(settings: Optional[Settings] = None) -> AdapterRegistry:
    """Registry with the Mastodon and Bluesky adapters, each with its own fetch client."""
    settings = settings or get_settings()
    return AdapterRegistry(
        [MastodonAdapter(settings=settings), BlueskyAdapter(settings=settings)]
    )
