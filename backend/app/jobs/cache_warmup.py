"""
Cache warmup job for priming the catalog cache.

Fetches the tag taxonomy and the first page of popular manga so the first
visitor after a deploy does not wait on cold MangaDex calls. Tags are also
mirrored to the database on the way.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from app.api.v1.shared.cache_manager import CatalogProxy
from app.api.v1.shared.protocols import MangaListResource, TagListResource
from app.core.config import Settings, get_settings
from app.core.database import AsyncSessionFactory, dispose_engine
from app.persistence.repositories import TagRepository
from app.services.cache import CacheService, build_valkey_client
from app.services.cache_ttl_config import TTLConfig
from app.services.mangadex_auth import MangaDexAuth
from app.services.mangadex_client import MangaDexClient, build_http_client
from app.services.mangadex_mapping import NormalizeContext
from app.services.mangadex_retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WarmupSummary:
    """Aggregate cache warmup statistics."""

    tags_cached: int = 0
    popular_cached: int = 0
    cache_status: dict[str, str] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tags_cached": self.tags_cached,
            "popular_cached": self.popular_cached,
            "cache_status": self.cache_status,
            "errors": self.errors,
        }


class CacheWarmupJob:
    """Hydrate the catalog cache through the same proxy the API uses."""

    def __init__(
        self,
        proxy: CatalogProxy,
        *,
        settings: Settings | None = None,
        tag_repository: TagRepository | None = None,
    ) -> None:
        self.proxy = proxy
        self.settings = settings or get_settings()
        self.tag_repository = tag_repository
        self.context = NormalizeContext(
            locale=self.settings.default_locale,
            uploads_base_url=self.settings.mangadex_uploads_base_url,
        )

    async def run(self) -> WarmupSummary:
        summary = WarmupSummary()

        result = await self.proxy.get(TagListResource(self.context, self.tag_repository))
        summary.cache_status["tags"] = result.cache_status
        if result.envelope.success:
            summary.tags_cached = len(result.envelope.data["items"])
            logger.info("Warmup cached %s tags", summary.tags_cached)
        else:
            logger.warning("Tag warmup failed: %s", result.envelope.message)
            summary.errors.append("tags")

        params = {
            "limit": self.settings.cache_warmup_popular_limit,
            "offset": 0,
            "contentRating": list(self.settings.default_content_ratings),
            "order": {"followedCount": "desc"},
        }
        result = await self.proxy.get(MangaListResource(self.context, "popular", params))
        summary.cache_status["popular"] = result.cache_status
        if result.envelope.success:
            summary.popular_cached = len(result.envelope.data["items"])
            logger.info("Warmup cached %s popular manga", summary.popular_cached)
        else:
            logger.warning("Popular manga warmup failed: %s", result.envelope.message)
            summary.errors.append("popular")

        return summary


async def run_cache_warmup(settings: Settings | None = None) -> WarmupSummary:
    """Build the collaborators the API lifespan would, run the job, clean up."""
    settings = settings or get_settings()
    cache = CacheService(build_valkey_client(settings), config=TTLConfig(settings))
    http = build_http_client(settings)
    auth = MangaDexAuth(http, settings)
    client = MangaDexClient(
        http,
        retry_policy=RetryPolicy.from_settings(settings),
        auth=auth if auth.enabled else None,
    )
    proxy = CatalogProxy(cache, client, settings)
    try:
        async with AsyncSessionFactory() as session:
            job = CacheWarmupJob(
                proxy, settings=settings, tag_repository=TagRepository(session)
            )
            return await job.run()
    finally:
        await http.aclose()
        await cache.close()
        await dispose_engine()


def _configure_logging() -> None:
    if logging.getLogger().handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def _main() -> None:
    _configure_logging()
    summary = asyncio.run(run_cache_warmup())
    logger.info("Cache warmup completed: %s", json.dumps(summary.to_dict()))


if __name__ == "__main__":
    _main()
