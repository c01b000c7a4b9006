"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    google_api_key: str
    database_url: str
    worker_port: int = 9000
    api_tokens: str = ""
    cache_max_memory_entries: int = 100
    cache_max_durable_bytes: int = 500 * 1024 * 1024
    cache_default_ttl_seconds: int = 7 * 24 * 60 * 60
    place_cache_ttl_seconds: int = 30 * 24 * 60 * 60
    search_max_places: int = 80
    search_max_split_depth: int = 6
    request_timeout_seconds: float = 10.0
    crawl_timeout_seconds: float = 5.0
    default_phone_region: Optional[str] = "US"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be numeric, got {raw!r}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    google_api_key = os.getenv("GOOGLE_API_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")
    api_tokens = os.getenv("API_TOKENS", "")
    default_phone_region_raw = os.getenv("DEFAULT_PHONE_REGION", "US")
    default_phone_region = default_phone_region_raw.strip().upper() if default_phone_region_raw.strip() else None

    if not google_api_key:
        logger.warning("GOOGLE_API_KEY is not configured; Google Places requests will fail.")
    if not database_url:
        logger.warning("DATABASE_URL is not set; the durable cache tier is disabled.")
    if not api_tokens:
        logger.warning("API_TOKENS is not configured; every authenticated request will be rejected.")

    return Settings(
        google_api_key=google_api_key,
        database_url=database_url,
        worker_port=_int_env("WORKER_PORT", 9000),
        api_tokens=api_tokens,
        cache_max_memory_entries=_int_env("CACHE_MAX_MEMORY_ENTRIES", 100),
        cache_max_durable_bytes=_int_env("CACHE_MAX_DURABLE_BYTES", 500 * 1024 * 1024),
        cache_default_ttl_seconds=_int_env("CACHE_DEFAULT_TTL_SECONDS", 7 * 24 * 60 * 60),
        place_cache_ttl_seconds=_int_env("PLACE_CACHE_TTL_SECONDS", 30 * 24 * 60 * 60),
        search_max_places=_int_env("SEARCH_MAX_PLACES", 80),
        search_max_split_depth=_int_env("SEARCH_MAX_SPLIT_DEPTH", 6),
        request_timeout_seconds=_float_env("REQUEST_TIMEOUT_SECONDS", 10.0),
        crawl_timeout_seconds=_float_env("CRAWL_TIMEOUT_SECONDS", 5.0),
        default_phone_region=default_phone_region,
    )
