from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

CACHE_EVENTS = Counter(
    "mangaverse_cache_events_total",
    "Cache operations recorded by the MangaVerse catalog proxy.",
    labelnames=("cache", "event"),
)
CACHE_REFRESH_LATENCY = Histogram(
    "mangaverse_cache_refresh_seconds",
    "Latency of cache refresh operations (upstream fetch through normalization).",
    labelnames=("cache",),
)
MANGADEX_REQUESTS = Counter(
    "mangaverse_mangadex_requests_total",
    "Outbound MangaDex client requests.",
    labelnames=("endpoint", "result"),
)
MANGADEX_REQUEST_LATENCY = Histogram(
    "mangaverse_mangadex_request_seconds",
    "Latency of outbound MangaDex client requests.",
    labelnames=("endpoint",),
)
MANGADEX_RETRIES = Counter(
    "mangaverse_mangadex_retries_total",
    "Retries issued against MangaDex after a transient failure.",
    labelnames=("endpoint", "reason"),
)
CACHE_DEGRADED = Gauge(
    "mangaverse_cache_degraded",
    "1 while the Valkey circuit breaker is open and reads use the in-memory fallback.",
)


def record_cache_event(cache: str, event: str) -> None:
    """Increment a cache event counter."""
    CACHE_EVENTS.labels(cache=cache, event=event).inc()


def observe_cache_refresh(cache: str, duration_seconds: float) -> None:
    """Record cache refresh latency."""
    CACHE_REFRESH_LATENCY.labels(cache=cache).observe(duration_seconds)


def observe_mangadex_request(
    endpoint: str, result: str, duration_seconds: float
) -> None:
    """Record MangaDex request result and latency."""
    MANGADEX_REQUESTS.labels(endpoint=endpoint, result=result).inc()
    MANGADEX_REQUEST_LATENCY.labels(endpoint=endpoint).observe(duration_seconds)


def record_mangadex_retry(endpoint: str, reason: str) -> None:
    """Record a retry against MangaDex."""
    MANGADEX_RETRIES.labels(endpoint=endpoint, reason=reason).inc()


def set_cache_degraded(degraded: bool) -> None:
    CACHE_DEGRADED.set(1 if degraded else 0)
