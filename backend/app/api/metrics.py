from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from app.core.metrics import set_cache_degraded
from app.services.cache import CacheService, get_cache_service

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
async def metrics(cache: CacheService = Depends(get_cache_service)) -> Response:
    """Expose Prometheus metrics, sampling the cache breaker state at scrape time."""
    set_cache_degraded(cache.degraded)
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
