"""
Cache store for validated catalog responses.

Provides distributed caching via Valkey with:
- Whole-entry replacement (last writer wins, no merge)
- Lazy expiry: an entry past its TTL is reported as a miss, never returned
- Circuit breaker for graceful degradation when Valkey is unavailable
- In-memory fallback cache for resilience during outages
- Single-flight locking to prevent cache stampedes across workers
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import wraps
from typing import Any, AsyncIterator, Callable

import valkey.asyncio as valkey
from fastapi import Request

from app.core.config import Settings
from app.core.metrics import record_cache_event
from app.services.cache_ttl_config import TTLConfig
from app.services.mangadex_errors import CacheUnavailableError

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


# =============================================================================
# Cache Entry
# =============================================================================


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """A stored payload together with the moment it was written and its TTL."""

    key: str
    payload: Any
    stored_at: float
    ttl_seconds: int

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def encode(self) -> str:
        return json.dumps(
            {
                "payload": self.payload,
                "stored_at": self.stored_at,
                "ttl_seconds": self.ttl_seconds,
            },
            separators=(",", ":"),
        )

    @classmethod
    def decode(cls, key: str, raw: str) -> CacheEntry:
        """Rebuild an entry; raises ValueError on anything that is not one."""
        document = json.loads(raw)
        if not isinstance(document, dict) or "payload" not in document:
            raise ValueError(f"cache value for {key!r} is not an entry")
        return cls(
            key=key,
            payload=document["payload"],
            stored_at=float(document["stored_at"]),
            ttl_seconds=int(document["ttl_seconds"]),
        )


# =============================================================================
# Circuit Breaker
# =============================================================================


class CircuitBreaker:
    """
    Circuit breaker for cache operations.

    When Valkey becomes unavailable, the circuit opens and operations
    fail fast, falling back to the in-memory cache instead.
    """

    def __init__(self, timeout_seconds: float, clock: Clock = time.monotonic) -> None:
        self._timeout = timeout_seconds
        self._clock = clock
        self._open_until = 0.0

    def is_open(self) -> bool:
        """Check if the circuit breaker is currently open."""
        return self._clock() < self._open_until

    def open(self) -> None:
        """Open the circuit breaker for the configured timeout."""
        self._open_until = self._clock() + self._timeout

    def close(self) -> None:
        """Close the circuit breaker immediately."""
        self._open_until = 0.0

    def protect(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Decorator that returns None instead of raising when Valkey fails."""

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            if self.is_open():
                return None
            try:
                result = await func(*args, **kwargs)
                self.close()
                return result
            except Exception as exc:
                logger.warning(
                    "Circuit breaker opened for %s", func.__name__, exc_info=exc
                )
                record_cache_event("valkey", "cache_unavailable")
                self.open()
                return None

        return wrapper


# =============================================================================
# Fallback Cache
# =============================================================================


class FallbackCache:
    """
    In-memory fallback cache used when Valkey is unavailable.

    Safe for concurrent coroutines. Holds at most ``max_entries`` values: once
    full, expired entries are dropped first, then the least recently used.
    """

    def __init__(
        self, clock: Clock = time.monotonic, max_entries: int = 1024
    ) -> None:
        self._store: OrderedDict[str, tuple[str, float | None]] = OrderedDict()
        self._max_entries = max_entries
        self._lock = asyncio.Lock()
        self._clock = clock

    async def set(self, key: str, value: str, ttl_seconds: int | None) -> None:
        """Store a value with optional TTL."""
        expires_at = None
        if ttl_seconds and ttl_seconds > 0:
            expires_at = self._clock() + ttl_seconds

        async with self._lock:
            self._store[key] = (value, expires_at)
            self._store.move_to_end(key)
            if len(self._store) > self._max_entries:
                self._evict_locked()

    async def get(self, key: str) -> str | None:
        """Retrieve a value, returning None if expired or not found."""
        async with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None

            value, expires_at = entry
            if expires_at is not None and expires_at <= self._clock():
                del self._store[key]
                return None

            self._store.move_to_end(key)
            return value

    async def delete(self, key: str) -> None:
        """Delete a value from the store."""
        async with self._lock:
            self._store.pop(key, None)

    def _evict_locked(self) -> None:
        current_time = self._clock()
        for key, (_, expires_at) in list(self._store.items()):
            if expires_at is not None and expires_at <= current_time:
                del self._store[key]
        while len(self._store) > self._max_entries:
            self._store.popitem(last=False)

    def __len__(self) -> int:
        return len(self._store)


# =============================================================================
# Single-Flight Lock
# =============================================================================


class SingleFlightLock:
    """
    Distributed lock for cache stampede protection.

    Ensures only one worker refreshes a cache key at a time,
    preventing thundering herd problems during cache misses.
    """

    def __init__(self, client: valkey.Valkey) -> None:
        self._client = client

    @asynccontextmanager
    async def acquire(
        self,
        key: str,
        lock_ttl_seconds: int,
        wait_timeout: float,
        retry_delay: float,
    ) -> AsyncIterator[bool]:
        """Acquire a single-flight lock, yielding True if lock was acquired."""
        lock_key = f"{key}:lock"
        deadline = time.monotonic() + wait_timeout
        acquired = False
        owned = False

        try:
            while time.monotonic() < deadline:
                try:
                    owned = bool(
                        await self._client.set(
                            lock_key, "1", nx=True, ex=max(1, int(lock_ttl_seconds))
                        )
                    )
                except Exception:
                    # If Valkey is unavailable, allow the operation to proceed
                    acquired = True
                    break
                if owned:
                    acquired = True
                    break

                await asyncio.sleep(retry_delay)

            yield acquired

        finally:
            if owned:
                try:
                    await self._client.delete(lock_key)
                except Exception:
                    logger.debug("Could not release lock %s", lock_key)


# =============================================================================
# Cache Service
# =============================================================================


class CacheService:
    """
    Cache store for catalog entries.

    ``get_entry`` / ``set_entry`` / ``invalidate`` are the whole contract.
    Entries are serialized as a single JSON document and written with one SET,
    so readers observe either the previous entry or the new one.
    """

    def __init__(
        self,
        client: valkey.Valkey,
        *,
        config: TTLConfig | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._client = client
        self._config = config or TTLConfig()
        self._clock = clock
        self._circuit_breaker = CircuitBreaker(self._config.circuit_breaker_timeout)
        self._fallback = FallbackCache(max_entries=self._config.fallback_max_entries)
        # Keys invalidated while Valkey rejected the delete
        self._pending_deletes: set[str] = set()
        self._single_flight = SingleFlightLock(client)

    @property
    def ttl_config(self) -> TTLConfig:
        return self._config

    @property
    def degraded(self) -> bool:
        """True while Valkey is considered unreachable."""
        return self._circuit_breaker.is_open()

    async def get_entry(self, key: str) -> CacheEntry | None:
        """Return the live entry for ``key``, or None on miss or expiry."""
        if key in self._pending_deletes and (
            self._circuit_breaker.is_open() or not await self._delete_from_valkey(key)
        ):
            # Valkey may still hold the invalidated value; only a rewrite kept
            # in the local copy can be served
            raw = await self._fallback.get(key)
        else:
            raw = await self._get_from_valkey(key)
            if raw is None and self._circuit_breaker.is_open():
                # Valkey is down; the local copy is the only one we can consult
                raw = await self._fallback.get(key)
        if raw is None:
            return None

        try:
            entry = CacheEntry.decode(key, raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("Discarding undecodable cache value for %s", key)
            await self.invalidate(key)
            return None

        if entry.is_expired(self._clock()):
            record_cache_event("store", "expired")
            return None
        return entry

    async def set_entry(
        self, key: str, payload: Any, ttl_seconds: int
    ) -> CacheEntry | None:
        """Replace the entry for ``key``. A non-positive TTL stores nothing."""
        if ttl_seconds <= 0:
            return None

        entry = CacheEntry(
            key=key,
            payload=payload,
            stored_at=self._clock(),
            ttl_seconds=int(ttl_seconds),
        )
        encoded = entry.encode()
        if await self._set_to_valkey(key, encoded, entry.ttl_seconds):
            self._pending_deletes.discard(key)
        # Always store in fallback for resilience
        await self._fallback.set(key, encoded, entry.ttl_seconds)
        return entry

    async def invalidate(self, key: str) -> None:
        """Remove the entry for ``key`` from every layer.

        The Valkey delete is attempted even while the breaker is open. When it
        fails, reads treat the key as a miss until the delete is replayed on a
        recovered Valkey or the key is rewritten.
        """
        await self._fallback.delete(key)
        if not await self._delete_from_valkey(key):
            self._pending_deletes.add(key)

    async def ping(self) -> None:
        """Raise CacheUnavailableError when Valkey does not answer."""
        try:
            await self._client.ping()
        except Exception as exc:
            raise CacheUnavailableError("Valkey is not reachable.") from exc

    @asynccontextmanager
    async def single_flight(
        self,
        key: str,
        ttl_seconds: int | None = None,
        wait_timeout: float | None = None,
        retry_delay: float | None = None,
    ) -> AsyncIterator[None]:
        """Guard cache miss fills so only one worker refreshes a key."""
        if self._circuit_breaker.is_open():
            yield
            return

        async with self._single_flight.acquire(
            key,
            ttl_seconds or self._config.singleflight_lock_ttl,
            wait_timeout
            if wait_timeout is not None
            else self._config.singleflight_lock_wait,
            retry_delay
            if retry_delay is not None
            else self._config.singleflight_retry_delay,
        ) as acquired:
            if not acquired:
                raise TimeoutError(
                    f"Timed out while acquiring cache lock for key '{key}'."
                )
            yield

    async def close(self) -> None:
        await self._client.aclose()

    async def _get_from_valkey(self, key: str) -> str | None:
        """Get value from Valkey with circuit breaker protection."""

        @self._circuit_breaker.protect
        async def _get() -> str | None:
            return await self._client.get(key)

        return await _get()

    async def _delete_from_valkey(self, key: str) -> bool:
        try:
            await self._client.delete(key)
        except Exception:
            logger.warning("Valkey delete failed for %s", key)
            self._circuit_breaker.open()
            return False
        self._pending_deletes.discard(key)
        return True

    async def _set_to_valkey(self, key: str, value: str, ttl_seconds: int) -> bool:
        """Set value in Valkey with circuit breaker protection."""

        @self._circuit_breaker.protect
        async def _set() -> bool:
            await self._client.set(key, value, ex=ttl_seconds)
            return True

        result = await _set()
        return result is not None


# =============================================================================
# Factory Functions
# =============================================================================


def build_valkey_client(settings: Settings) -> valkey.Valkey:
    """Create the Valkey client owned by the application lifespan."""
    return valkey.from_url(
        settings.valkey_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=settings.valkey_socket_connect_timeout_seconds,
        socket_timeout=settings.valkey_socket_timeout_seconds,
    )


def get_cache_service(request: Request) -> CacheService:
    """FastAPI dependency hook for cache usage."""
    return request.app.state.cache_service


__all__ = [
    "CacheEntry",
    "CacheService",
    "CircuitBreaker",
    "FallbackCache",
    "SingleFlightLock",
    "build_valkey_client",
    "get_cache_service",
]
