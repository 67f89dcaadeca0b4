from __future__ import annotations

import os
import sys
import time
from pathlib import Path
from typing import Any, Iterator

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# Rate limiting needs a live Valkey; the suite exercises it separately
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.api.v1.shared.cache_manager import CatalogProxy, get_catalog_proxy  # noqa: E402
from app.core.config import Settings, get_settings  # noqa: E402
from app.main import create_app  # noqa: E402
from app.persistence.dependencies import get_tag_repository  # noqa: E402
from app.persistence.repositories import TagPayload  # noqa: E402
from app.services.cache import CacheService, get_cache_service  # noqa: E402
from app.services.cache_ttl_config import TTLConfig  # noqa: E402
from app.services.mangadex_client import MangaDexClient  # noqa: E402
from app.services.mangadex_retry import RetryPolicy  # noqa: E402
from tests.fixtures.mangadex import FakeMangaDex  # noqa: E402


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


class FakeValkey:
    """In-memory Valkey replacement used for tests."""

    def __init__(self) -> None:
        self._store: dict[str, tuple[str, float | None]] = {}
        self.should_fail = False
        self.set_calls: list[tuple[str, int | None, bool | None]] = []
        self.closed = False

    def _prune(self) -> None:
        now = time.monotonic()
        expired = [
            key
            for key, (_, expires_at) in self._store.items()
            if expires_at is not None and expires_at <= now
        ]
        for key in expired:
            self._store.pop(key, None)

    def keys_matching(self, prefix: str) -> list[str]:
        return [key for key in self._store if key.startswith(prefix)]

    async def get(self, key: str) -> str | None:
        self._prune()
        if self.should_fail:
            raise RuntimeError("valkey unavailable")
        record = self._store.get(key)
        if record is None:
            return None
        value, _ = record
        return value

    async def set(
        self,
        key: str,
        value: str,
        ex: int | None = None,
        nx: bool | None = None,
    ) -> bool:
        self._prune()
        if self.should_fail:
            raise RuntimeError("valkey unavailable")
        self.set_calls.append((key, ex, nx))
        if nx:
            # Only set when key does not exist.
            if key in self._store:
                return False
        expires_at = time.monotonic() + ex if ex else None
        self._store[key] = (value, expires_at)
        return True

    async def delete(self, *keys: str) -> None:
        self._prune()
        if self.should_fail:
            raise RuntimeError("valkey unavailable")
        for key in keys:
            self._store.pop(key, None)

    async def ping(self) -> bool:
        if self.should_fail:
            raise RuntimeError("valkey unavailable")
        return True

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced wall clock for TTL tests."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays instead of sleeping."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeTagRepository:
    """In-memory stand-in for TagRepository."""

    def __init__(self) -> None:
        self._rows: dict[str, TagPayload] = {}
        self.upsert_calls = 0
        self.fail = False

    async def upsert_tags(self, tags: Any) -> int:
        if self.fail:
            raise RuntimeError("database unavailable")
        self.upsert_calls += 1
        count = 0
        for tag in tags:
            payload = tag if isinstance(tag, TagPayload) else TagPayload.from_upstream(tag)
            self._rows[payload.tag_id] = payload
            count += 1
        return count

    async def get_all_tags(self) -> list[TagPayload]:
        if self.fail:
            raise RuntimeError("database unavailable")
        return sorted(self._rows.values(), key=lambda row: (row.group, row.tag_id))


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(
        ENVIRONMENT="development",
        RATE_LIMIT_ENABLED=False,
        CACHE_SINGLEFLIGHT_LOCK_WAIT_SECONDS=0.2,
        CACHE_SINGLEFLIGHT_RETRY_DELAY_SECONDS=0.01,
        MANGADEX_RETRY_BASE_DELAY_SECONDS=0.01,
        MANGADEX_RETRY_MAX_DELAY_SECONDS=1.0,
        MANGADEX_RETRY_JITTER_SECONDS=0.0,
    )


@pytest.fixture()
def fake_valkey() -> FakeValkey:
    return FakeValkey()


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture()
def cache_service(
    fake_valkey: FakeValkey, fake_clock: FakeClock, test_settings: Settings
) -> CacheService:
    return CacheService(
        fake_valkey, config=TTLConfig(test_settings), clock=fake_clock
    )


@pytest.fixture()
def mangadex() -> FakeMangaDex:
    return FakeMangaDex()


@pytest_asyncio.fixture
async def mangadex_client(
    mangadex: FakeMangaDex, fake_sleep: FakeSleep, test_settings: Settings
):
    http = httpx.AsyncClient(
        base_url=test_settings.mangadex_api_base_url, transport=mangadex.transport()
    )
    client = MangaDexClient(
        http, retry_policy=RetryPolicy.from_settings(test_settings), sleep=fake_sleep
    )
    yield client
    await http.aclose()


@pytest.fixture()
def tag_repository() -> FakeTagRepository:
    return FakeTagRepository()


@pytest.fixture()
def api_client(
    cache_service: CacheService,
    mangadex: FakeMangaDex,
    fake_sleep: FakeSleep,
    test_settings: Settings,
    tag_repository: FakeTagRepository,
) -> Iterator[TestClient]:
    """Test client wired to the fake cache and the fake MangaDex transport.

    The lifespan is not run; collaborators are injected through overrides.
    """
    http = httpx.AsyncClient(
        base_url=test_settings.mangadex_api_base_url, transport=mangadex.transport()
    )
    client = MangaDexClient(
        http, retry_policy=RetryPolicy.from_settings(test_settings), sleep=fake_sleep
    )
    proxy = CatalogProxy(cache_service, client, test_settings)

    app = create_app()
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_cache_service] = lambda: cache_service
    app.dependency_overrides[get_catalog_proxy] = lambda: proxy
    app.dependency_overrides[get_tag_repository] = lambda: tag_repository
    yield TestClient(app)
    app.dependency_overrides.clear()

