"""Wiring of long-lived collaborators shared by the CLI and HTTP entrypoints."""

import logging
from dataclasses import dataclass
from typing import Optional

from ownerscout.cache.durable_tier import DurableCache
from ownerscout.cache.fast_tier import MemoryCache
from ownerscout.cache.service import CacheService
from ownerscout.core.auth import StaticTokenVerifier
from ownerscout.core.config import Settings, get_settings
from ownerscout.core.db import PostgresCacheStore
from ownerscout.core.tech_detector import TechDetector
from ownerscout.search.orchestrator import SearchOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    cache: CacheService
    orchestrator: SearchOrchestrator
    verifier: StaticTokenVerifier

    def close(self) -> None:
        self.orchestrator.close()
        self.cache.close()


def build_cache(settings: Settings) -> CacheService:
    durable = None
    if settings.database_url:
        durable = DurableCache(PostgresCacheStore(), settings.cache_max_durable_bytes)
    else:
        logger.info("Running with the in-memory cache tier only")
    return CacheService(
        MemoryCache(settings.cache_max_memory_entries),
        durable,
        default_ttl=settings.cache_default_ttl_seconds,
    )


def build_services(settings: Optional[Settings] = None) -> Services:
    settings = settings or get_settings()
    cache = build_cache(settings)
    orchestrator = SearchOrchestrator(
        api_key=settings.google_api_key,
        cache=cache,
        tech_detector=TechDetector(timeout=settings.crawl_timeout_seconds),
        max_places=settings.search_max_places,
        max_depth=settings.search_max_split_depth,
        request_timeout=settings.request_timeout_seconds,
        place_ttl=settings.place_cache_ttl_seconds,
        default_phone_region=settings.default_phone_region,
    )
    return Services(cache, orchestrator, StaticTokenVerifier.from_env_value(settings.api_tokens))
