"""
Logging helpers.

Modules that talk to an upstream API log through a prefixed logger so that
interleaved Mastodon and Bluesky output stays readable:

    from threader.utils.logging import get_logger

    logger = get_logger(__name__, prefix="Bluesky")
    logger.info("Fetched thread")  # Output: [Bluesky] Fetched thread
"""

import logging
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Loggers that emit one INFO line per HTTP request.
NOISY_LOGGERS = ("httpx", "httpcore")

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


class PrefixedLogger(logging.LoggerAdapter):
    """Prepends "[prefix]" to every message."""

    def __init__(self, logger: logging.Logger, prefix: str):
        super().__init__(logger, {"prefix": prefix})
        self.prefix = f"[{prefix}]"

    def process(self, msg, kwargs):
        return f"{self.prefix} {msg}", kwargs


def get_logger(name: str, prefix: Optional[str] = None) -> LoggerLike:
    """Module logger, wrapped in PrefixedLogger when a prefix is given."""
    base_logger = logging.getLogger(name)
    return PrefixedLogger(base_logger, prefix) if prefix else base_logger


def resolve_level(level: Union[str, int]) -> int:
    """Map "debug" / "INFO" / 10 to a logging level; unknown names give INFO."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: Union[str, int] = "INFO") -> None:
    """Apply the process-wide log format.

    Per-request HTTP client logging is held at WARNING unless the process
    itself runs at DEBUG.
    """
    resolved = resolve_level(level)
    logging.basicConfig(level=resolved, format=LOG_FORMAT)

    client_level = logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(client_level)
