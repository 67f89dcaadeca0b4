"""Cache lookup, refresh and error translation shared by catalog endpoints."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

from fastapi import status

from app.core.config import Settings
from app.core.metrics import observe_cache_refresh, record_cache_event
from app.core.telemetry import catalog_span
from app.services.cache import CacheEntry, CacheService
from app.services.mangadex_client import MangaDexClient
from app.services.mangadex_errors import (
    CacheUnavailableError,
    CatalogError,
    InvalidRequestError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
    ValidationFailedError,
)

from .cache_protocols import CatalogResource, ProxyResult

logger = logging.getLogger(__name__)

MESSAGE_NOT_FOUND = "not found"
MESSAGE_UNAVAILABLE = "catalog service unavailable"
MESSAGE_BAD_UPSTREAM_DATA = "upstream data unavailable"
MESSAGE_INTERNAL = "internal server error"


@dataclass(frozen=True, slots=True)
class RefreshOutcome:
    """Serialized data plus whether it came from the cache re-check."""

    data: Any
    from_cache: bool


async def handle_cache_lookup(
    cache: CacheService, cache_key: str, cache_name: str
) -> CacheEntry | None:
    """Standard cache lookup; an unreachable cache counts as a miss."""
    try:
        entry = await cache.get_entry(cache_key)
    except CacheUnavailableError:
        record_cache_event(cache_name, "cache_unavailable")
        logger.warning("Cache unavailable for %s; going to upstream", cache_key)
        return None

    record_cache_event(cache_name, "hit" if entry is not None else "miss")
    return entry


async def store_fresh_data(
    cache: CacheService, cache_key: str, cache_name: str, data: Any, ttl_seconds: int
) -> None:
    try:
        stored = await cache.set_entry(cache_key, data, ttl_seconds)
    except CacheUnavailableError:
        record_cache_event(cache_name, "cache_unavailable")
        logger.warning("Cache unavailable; %s served without storing", cache_key)
        return
    if stored is not None:
        record_cache_event(cache_name, "store")


async def fetch_and_normalize(
    resource: CatalogResource[Any], client: MangaDexClient
) -> tuple[Any, Any]:
    """Fetch, validate and normalize, then re-validate the outgoing shape.

    Returns ``(validated upstream payload, serialized outgoing data)``. An
    outgoing validation failure propagates as ``pydantic.ValidationError``.
    """
    with catalog_span("catalog.fetch", resource=resource.cache_name):
        payload = await resource.fetch(client)
    dto = resource.normalize(payload)
    model = resource.model.from_dto(dto)
    return payload, model.model_dump(mode="json")


async def execute_cache_refresh(
    resource: CatalogResource[Any],
    cache: CacheService,
    client: MangaDexClient,
    cache_key: str,
    settings: Settings,
    ttl_seconds: int,
) -> RefreshOutcome:
    """Execute a refresh under the distributed single-flight lock.

    When the lock cannot be acquired in time the refresh runs anyway: a
    duplicate upstream call is preferable to failing the request.
    """
    entered = False
    try:
        async with cache.single_flight(
            cache_key,
            ttl_seconds=settings.cache_singleflight_lock_ttl_seconds,
            wait_timeout=settings.cache_singleflight_lock_wait_seconds,
            retry_delay=settings.cache_singleflight_retry_delay_seconds,
        ):
            entered = True
            return await _refresh_locked(
                resource, cache, client, cache_key, ttl_seconds
            )
    except TimeoutError:
        if entered:
            raise
        record_cache_event(resource.cache_name, "lock_timeout")
        logger.info("Single-flight lock timed out for %s; fetching anyway", cache_key)
        return await _refresh_locked(resource, cache, client, cache_key, ttl_seconds)


async def _refresh_locked(
    resource: CatalogResource[Any],
    cache: CacheService,
    client: MangaDexClient,
    cache_key: str,
    ttl_seconds: int,
) -> RefreshOutcome:
    cache_name = resource.cache_name
    # The caller already recorded this request's hit or miss
    try:
        entry = await cache.get_entry(cache_key)
    except CacheUnavailableError:
        entry = None
    if entry is not None:
        record_cache_event(cache_name, "refresh_skip_hit")
        return RefreshOutcome(data=entry.payload, from_cache=True)

    start = time.perf_counter()
    try:
        payload, data = await fetch_and_normalize(resource, client)
    except CatalogError:
        record_cache_event(cache_name, "refresh_error")
        raise

    observe_cache_refresh(cache_name, time.perf_counter() - start)
    await store_fresh_data(cache, cache_key, cache_name, data, ttl_seconds)
    record_cache_event(cache_name, "refresh_success")

    try:
        await resource.on_fresh(payload, data)
    except Exception:
        logger.warning("Post-refresh hook failed for %s", cache_name, exc_info=True)

    return RefreshOutcome(data=data, from_cache=False)


def _debug_info(exc: Exception, settings: Settings) -> dict[str, Any] | None:
    if settings.is_production:
        return None
    info: dict[str, Any] = {"error": type(exc).__name__, "detail": str(exc)}
    status_code = getattr(exc, "status_code", None)
    if status_code is not None:
        info["upstream_status"] = status_code
    if isinstance(exc, ValidationFailedError):
        info["schema"] = exc.schema_name
        info["field_errors"] = [error.to_dict() for error in exc.errors]
    return info


def _rejected_response(exc: UpstreamRejectedError) -> tuple[int, str]:
    upstream = exc.status_code
    if upstream in (404, 410):
        return status.HTTP_404_NOT_FOUND, MESSAGE_NOT_FOUND
    if upstream in (400, 422):
        return status.HTTP_400_BAD_REQUEST, "invalid request"
    if upstream == 403:
        return status.HTTP_403_FORBIDDEN, "forbidden"
    if upstream == 401:
        # Our credentials were refused; the caller did nothing wrong
        return status.HTTP_502_BAD_GATEWAY, MESSAGE_BAD_UPSTREAM_DATA
    return upstream, "request rejected"


def translate_catalog_error(
    exc: CatalogError, cache_name: str, settings: Settings
) -> ProxyResult:
    """Map a catalog error to a failure envelope. Nothing is cached here."""
    debug = _debug_info(exc, settings)

    if isinstance(exc, InvalidRequestError):
        record_cache_event(cache_name, "invalid_request")
        return ProxyResult.failure(status.HTTP_400_BAD_REQUEST, str(exc), debug=debug)

    if isinstance(exc, UpstreamRejectedError):
        record_cache_event(cache_name, "upstream_rejected")
        status_code, message = _rejected_response(exc)
        logger.info(
            "MangaDex rejected %s with HTTP %s", cache_name, exc.status_code
        )
        return ProxyResult.failure(status_code, message, debug=debug)

    if isinstance(exc, UpstreamUnavailableError):
        record_cache_event(cache_name, "upstream_unavailable")
        logger.warning("MangaDex unavailable for %s: %s", cache_name, exc)
        return ProxyResult.failure(
            status.HTTP_503_SERVICE_UNAVAILABLE, MESSAGE_UNAVAILABLE, debug=debug
        )

    if isinstance(exc, ValidationFailedError):
        record_cache_event(cache_name, "validation_failed")
        logger.error(
            "MangaDex contract violation for %s (%s): %s",
            cache_name,
            exc.schema_name,
            "; ".join(
                f"{error.location}: {error.message} [{error.kind}]"
                for error in exc.errors
            ),
        )
        return ProxyResult.failure(
            status.HTTP_502_BAD_GATEWAY, MESSAGE_BAD_UPSTREAM_DATA, debug=debug
        )

    if isinstance(exc, CacheUnavailableError):
        # Only reached when a cache failure escaped the degrade paths above
        record_cache_event(cache_name, "cache_unavailable")
        return ProxyResult.failure(
            status.HTTP_503_SERVICE_UNAVAILABLE, MESSAGE_UNAVAILABLE, debug=debug
        )

    logger.error("Unhandled catalog error for %s", cache_name, exc_info=exc)
    return ProxyResult.failure(
        status.HTTP_500_INTERNAL_SERVER_ERROR, MESSAGE_INTERNAL, debug=debug
    )


__all__ = [
    "MESSAGE_BAD_UPSTREAM_DATA",
    "MESSAGE_INTERNAL",
    "MESSAGE_NOT_FOUND",
    "MESSAGE_UNAVAILABLE",
    "RefreshOutcome",
    "execute_cache_refresh",
    "fetch_and_normalize",
    "handle_cache_lookup",
    "store_fresh_data",
    "translate_catalog_error",
]
