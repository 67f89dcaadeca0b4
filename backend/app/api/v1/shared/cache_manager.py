"""Thin orchestrator that wires catalog resources to the shared cache flows."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request, status
from pydantic import ValidationError

from app.core.config import Settings
from app.core.metrics import record_cache_event
from app.services.cache import CacheService
from app.services.mangadex_client import MangaDexClient
from app.services.mangadex_errors import (
    CatalogError,
    UpstreamUnavailableError,
    ValidationFailedError,
)

from .cache_flow import (
    MESSAGE_INTERNAL,
    RefreshOutcome,
    execute_cache_refresh,
    fetch_and_normalize,
    handle_cache_lookup,
    translate_catalog_error,
)
from .cache_protocols import CatalogResource, ProxyResult
from .coalescing import RequestCoalescer

logger = logging.getLogger(__name__)


class CatalogProxy:
    """Read-through proxy: cache, then a single coalesced upstream refresh.

    Failures are never cached. Resources with a durable fallback (tags) serve
    it when upstream is unavailable or returns malformed data.
    """

    def __init__(
        self,
        cache: CacheService,
        client: MangaDexClient,
        settings: Settings,
        coalescer: RequestCoalescer[RefreshOutcome] | None = None,
    ) -> None:
        self.cache = cache
        self.client = client
        self.settings = settings
        self.coalescer = coalescer or RequestCoalescer()

    async def get(self, resource: CatalogResource[Any]) -> ProxyResult:
        cache_name = resource.cache_name
        category = resource.cache_category()
        try:
            if not self.cache.ttl_config.is_cacheable(category):
                return await self._uncached(resource)
            return await self._read_through(resource)
        except CatalogError as exc:
            return await self._handle_failure(resource, exc)
        except ValidationError:
            # Outgoing model rejected normalized data: a bug on our side
            record_cache_event(cache_name, "output_invalid")
            logger.exception("Normalized %s data failed output validation", cache_name)
            if not self.settings.is_production:
                raise
            return ProxyResult.failure(
                status.HTTP_500_INTERNAL_SERVER_ERROR, MESSAGE_INTERNAL
            )

    async def _uncached(self, resource: CatalogResource[Any]) -> ProxyResult:
        record_cache_event(resource.cache_name, "bypass")
        _, data = await fetch_and_normalize(resource, self.client)
        return ProxyResult.success(data, cached=False, cache_status="bypass")

    async def _read_through(self, resource: CatalogResource[Any]) -> ProxyResult:
        cache_key = resource.cache_key()
        entry = await handle_cache_lookup(self.cache, cache_key, resource.cache_name)
        if entry is not None:
            return ProxyResult.success(entry.payload, cached=True, cache_status="hit")

        ttl_seconds = self.cache.ttl_config.ttl_for(resource.cache_category())

        async def _refresh() -> RefreshOutcome:
            return await execute_cache_refresh(
                resource,
                self.cache,
                self.client,
                cache_key,
                self.settings,
                ttl_seconds,
            )

        outcome, joined = await self.coalescer.run(cache_key, _refresh)
        if joined:
            record_cache_event(resource.cache_name, "coalesced")
        if outcome.from_cache:
            return ProxyResult.success(outcome.data, cached=True, cache_status="hit")
        return ProxyResult.success(outcome.data, cached=False, cache_status="miss")

    async def _handle_failure(
        self, resource: CatalogResource[Any], exc: CatalogError
    ) -> ProxyResult:
        if isinstance(exc, (UpstreamUnavailableError, ValidationFailedError)):
            try:
                fallback = await resource.fallback()
            except Exception:
                logger.warning(
                    "Fallback for %s failed", resource.cache_name, exc_info=True
                )
                fallback = None
            if fallback is not None:
                record_cache_event(resource.cache_name, "fallback")
                logger.warning(
                    "Serving %s from fallback store after %s",
                    resource.cache_name,
                    type(exc).__name__,
                )
                return ProxyResult.success(
                    fallback, cached=True, cache_status="fallback"
                )
        return translate_catalog_error(exc, resource.cache_name, self.settings)


def get_catalog_proxy(request: Request) -> CatalogProxy:
    """FastAPI dependency returning the proxy built during startup."""
    return request.app.state.catalog_proxy


__all__ = ["CatalogProxy", "get_catalog_proxy"]
