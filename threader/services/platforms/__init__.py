"""Platform adapters for single-author thread reconstruction.

Each platform (Mastodon, Bluesky) implements PlatformAdapter to handle its own
URL format, API calls and wire-format normalization. The shared mainline
builder then picks one linear path regardless of source platform.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from urllib.parse import urlsplit

from threader.models.thread import Thread, ThreadResult
from threader.services.errors import ParseError, ThreadPayloadError
from threader.services.fetch_client import ResilientFetchClient


class PlatformAdapter(ABC):
    """Abstract base for platform-specific thread fetchers.

    Implementors handle:
    - Recognizing and parsing post URLs
    - Fetching the seed post and the reply context around it
    - Transforming platform JSON into Post objects
    - Extending an existing Thread past its current tail
    """

    platform: str = ""

    def __init__(self, fetch_client: ResilientFetchClient) -> None:
        self.fetch_client = fetch_client

    def can_handle_url(self, url: str) -> bool:
        """True when parse_url accepts `url`."""
        try:
            self.parse_url(url)
        except ParseError:
            return False
        return True

    @abstractmethod
    def parse_url(self, url: str) -> Any:
        """Parse a post URL.

        Returns:
            A platform-specific reference exposing `canonical_url`.

        Raises:
            ParseError: the URL is not a post on this platform.
        """

    @abstractmethod
    async def fetch_thread(
        self, url: str, *, initial_context_requests: Optional[int] = None
    ) -> ThreadResult:
        """Resolve the seed post at `url` and build its mainline."""

    @abstractmethod
    async def continue_thread(
        self, thread: Thread, *, max_context_requests: Optional[int] = None
    ) -> ThreadResult:
        """Append further same-author posts below the thread's tail."""

    def ensure_continuable(self, thread: Thread) -> None:
        if thread.platform != self.platform:
            raise ThreadPayloadError(
                f"Cannot continue thread: expected a {self.platform} thread, "
                f"got {thread.platform!r}."
            )

    async def aclose(self) -> None:
        await self.fetch_client.aclose()


def resume_time(retry_after_ms: int) -> datetime:
    """Wall-clock UTC time at which a rate-limited caller may retry."""
    return datetime.now(timezone.utc) + timedelta(milliseconds=retry_after_ms)


def site_name_from_url(url: str) -> str:
    """Host of `url` without a leading www., or "" if it has none."""
    try:
        host = urlsplit(url).hostname or ""
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host
