"""Error taxonomy for thread fetching.

ParseError          - URL is malformed or not a supported post link (fatal).
FetchError          - upstream answered non-2xx, or the request never completed.
RateLimitError      - upstream answered 429; carries the delay it asked for.
LinkageError        - the seed post, profile or thread could not be resolved.
ThreadPayloadError  - continue_thread was handed a thread it cannot extend.
"""

from typing import Optional


class ThreaderError(Exception):
    """Base class for every error raised by the thread core."""


class ParseError(ThreaderError, ValueError):
    """The URL cannot be mapped to a post on a supported platform."""


class FetchError(ThreaderError):
    """An upstream API request failed."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        detail: str = "",
        url: str = "",
    ) -> None:
        super().__init__(message)
        self.status = status
        self.detail = detail
        self.url = url


class RateLimitError(FetchError):
    """HTTP 429 from upstream. Callers resume after retry_after_ms."""

    def __init__(
        self,
        message: str,
        retry_after_ms: int,
        status: int = 429,
        detail: str = "",
        url: str = "",
    ) -> None:
        super().__init__(message, status=status, detail=detail, url=url)
        self.retry_after_ms = retry_after_ms


class LinkageError(ThreaderError):
    """The seed (or the account / thread around it) could not be resolved."""


class ThreadPayloadError(ThreaderError, ValueError):
    """A thread passed to continue_thread belongs to another platform."""
