"""TTL classes for cached catalog resources."""

from __future__ import annotations

import enum

from app.core.config import Settings, get_settings


class CacheCategory(str, enum.Enum):
    """Logical resource categories, each with its own freshness budget."""

    TAGS = "tags"
    MANGA = "manga"
    MANGA_LIST = "manga_list"
    CHAPTER = "chapter"
    LATEST_CHAPTERS = "latest_chapters"
    STATISTICS = "statistics"
    AUTHOR = "author"
    GROUP = "group"
    # Responses that must never be served from cache (random picks, at-home
    # server URLs that rotate per request).
    NO_STORE = "no_store"


class TTLConfig:
    """Centralized TTL configuration with validation."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()

        self.default_ttl = settings.valkey_cache_ttl_seconds
        self.category_ttls: dict[CacheCategory, int] = {
            CacheCategory.TAGS: settings.cache_ttl_tags,
            CacheCategory.MANGA: settings.cache_ttl_manga,
            CacheCategory.MANGA_LIST: settings.cache_ttl_manga_list,
            CacheCategory.CHAPTER: settings.cache_ttl_chapter,
            CacheCategory.LATEST_CHAPTERS: settings.cache_ttl_latest_chapters,
            CacheCategory.STATISTICS: settings.cache_ttl_statistics,
            CacheCategory.AUTHOR: settings.cache_ttl_author,
            CacheCategory.GROUP: settings.cache_ttl_group,
            CacheCategory.NO_STORE: 0,
        }

        self.singleflight_lock_ttl = settings.cache_singleflight_lock_ttl_seconds
        self.singleflight_lock_wait = settings.cache_singleflight_lock_wait_seconds
        self.singleflight_retry_delay = settings.cache_singleflight_retry_delay_seconds

        self.circuit_breaker_timeout = settings.cache_circuit_breaker_timeout_seconds
        self.fallback_max_entries = settings.cache_fallback_max_entries

        self._validate_ttls()

    def _validate_ttls(self) -> None:
        """Validate that all TTL values are non-negative."""
        if self.default_ttl < 0:
            raise ValueError(f"Default TTL cannot be negative: {self.default_ttl}")
        for category, value in self.category_ttls.items():
            if value < 0:
                raise ValueError(
                    f"TTL value for {category.value} cannot be negative: {value}"
                )

    def ttl_for(self, category: CacheCategory) -> int:
        """TTL in seconds for ``category``; 0 means the category is not cached."""
        return self.category_ttls.get(category, self.default_ttl)

    def is_cacheable(self, category: CacheCategory) -> bool:
        return self.ttl_for(category) > 0


__all__ = ["CacheCategory", "TTLConfig"]
