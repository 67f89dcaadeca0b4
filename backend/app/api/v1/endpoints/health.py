from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.services.cache import CacheService, get_cache_service
from app.services.mangadex_errors import CacheUnavailableError

router = APIRouter()


@router.get("/health")
async def healthcheck() -> dict[str, str]:
    """Lightweight liveness probe."""
    return {"status": "ok"}


@router.get("/health/ready")
async def readiness(
    cache: CacheService = Depends(get_cache_service),
) -> JSONResponse:
    """Readiness probe: reports whether the cache backend answers.

    Requests are still served through the in-memory fallback while Valkey
    is down, but the instance is reported as not ready.
    """
    try:
        await cache.ping()
    except CacheUnavailableError:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "degraded", "cache": "unavailable"},
        )
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"status": "ok", "cache": "ok"},
    )
