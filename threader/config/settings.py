"""
threader Settings Configuration
Loads configuration from environment variables (prefix THREADER_)
"""

from functools import lru_cache
from typing import List, Optional, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Environment
    ENV_NAME: str = "threader"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8020

    # CORS - Can be comma-separated string or list
    CORS_ORIGINS: Union[str, List[str]] = ["*"]

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS_ORIGINS from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # Upstream HTTP
    USER_AGENT: str = "threader/0.1 (+https://github.com/threader)"
    HTTP_TIMEOUT: Optional[float] = None  # None = no per-request timeout
    MASTODON_REQUEST_GAP_MS: int = 180
    BLUESKY_REQUEST_GAP_MS: int = 140
    RESPONSE_CACHE_TTL_SECONDS: float = 120.0
    RESPONSE_CACHE_MAX_ENTRIES: int = 512
    BLUESKY_APPVIEW_URL: str = "https://public.api.bsky.app"

    # Fetch budgets
    DEFAULT_INITIAL_CONTEXT_REQUESTS: int = 3
    DEFAULT_MAX_CONTEXT_REQUESTS: int = 3
    DEFAULT_MAX_PARENT_LOOKUPS: int = 12

    class Config:
        env_prefix = "THREADER_"
        env_file = ".env"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
