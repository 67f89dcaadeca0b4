"""Shared rate limiter for catalog endpoints.

Limits are tracked per client IP in Valkey so they hold across workers.
When Valkey stops answering, counting continues in process instead of
rejecting readers. Search endpoints get their own, tighter limits on top of
the defaults.
"""

from typing import Any, Callable
from urllib.parse import urlparse

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.core.config import Settings, get_settings

LimitsType = list[str | Callable[..., str]]

RATE_LIMIT_KEY_PREFIX = "mangaverse_rl"
VALKEY_SCHEMES = {"valkey", "valkeys", "redis", "rediss"}

_limiter: Limiter | None = None


def _default_limits(settings: Settings) -> LimitsType:
    return [
        f"{settings.rate_limit_requests_per_minute}/minute",
        f"{settings.rate_limit_requests_per_hour}/hour",
        f"{settings.rate_limit_requests_per_day}/day",
    ]


def _storage_options(settings: Settings) -> dict[str, Any]:
    """Socket timeouts for Valkey storage; other backends take no options."""
    if urlparse(settings.valkey_url).scheme not in VALKEY_SCHEMES:
        return {}
    return {
        "socket_connect_timeout": settings.valkey_socket_connect_timeout_seconds,
        "socket_timeout": settings.valkey_socket_timeout_seconds,
    }


def get_limiter() -> Limiter:
    """Get or create the shared rate limiter instance."""
    global _limiter
    if _limiter is not None:
        return _limiter

    settings = get_settings()
    default_limits = _default_limits(settings)

    if not settings.rate_limit_enabled:
        _limiter = Limiter(
            key_func=get_remote_address,
            default_limits=default_limits,
            enabled=False,
        )
        return _limiter

    try:
        _limiter = Limiter(
            key_func=get_remote_address,
            storage_uri=settings.valkey_url,
            storage_options=_storage_options(settings),
            default_limits=default_limits,
            key_prefix=RATE_LIMIT_KEY_PREFIX,
            in_memory_fallback_enabled=True,
            swallow_errors=True,
            headers_enabled=False,
        )
    except Exception:
        # The storage URI itself is unusable; count in process only
        _limiter = Limiter(
            key_func=get_remote_address,
            default_limits=default_limits,
            key_prefix=RATE_LIMIT_KEY_PREFIX,
        )
    return _limiter


def advanced_search_limit() -> str:
    return get_settings().rate_limit_advanced_search


def quick_search_limit() -> str:
    return get_settings().rate_limit_quick_search


def autocomplete_limit() -> str:
    return get_settings().rate_limit_autocomplete


limiter = get_limiter()
