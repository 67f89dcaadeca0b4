"""Unit tests for cache flow logic."""

from __future__ import annotations

import logging
from unittest.mock import AsyncMock, Mock

import pytest

from app.api.v1.shared.cache_flow import (
    MESSAGE_BAD_UPSTREAM_DATA,
    MESSAGE_NOT_FOUND,
    MESSAGE_UNAVAILABLE,
    execute_cache_refresh,
    handle_cache_lookup,
    store_fresh_data,
    translate_catalog_error,
)
from app.api.v1.shared.protocols import ChapterResource, TagListResource
from app.core.config import Settings
from app.services.cache import CacheService
from app.services.mangadex_errors import (
    CacheUnavailableError,
    CatalogError,
    FieldError,
    InvalidRequestError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
    ValidationFailedError,
)
from app.services.mangadex_mapping import NormalizeContext
from tests.fixtures.mangadex import (
    CHAPTER_ID,
    collection,
    create_test_chapter,
    create_test_tag,
    entity,
)

CONTEXT = NormalizeContext(locale="en")


class TestHandleCacheLookup:
    """Tests for handle_cache_lookup."""

    @pytest.mark.asyncio
    async def test_hit_returns_entry(self, cache_service):
        await cache_service.set_entry("key", {"data": "fresh"}, 60)

        entry = await handle_cache_lookup(cache_service, "key", "test")

        assert entry is not None
        assert entry.payload == {"data": "fresh"}

    @pytest.mark.asyncio
    async def test_miss_returns_none(self, cache_service):
        assert await handle_cache_lookup(cache_service, "key", "test") is None

    @pytest.mark.asyncio
    async def test_unavailable_cache_counts_as_miss(self):
        cache = Mock(spec=CacheService)
        cache.get_entry = AsyncMock(side_effect=CacheUnavailableError("down"))

        assert await handle_cache_lookup(cache, "key", "test") is None


@pytest.mark.asyncio
async def test_store_fresh_data_swallows_unavailable_cache():
    cache = Mock(spec=CacheService)
    cache.set_entry = AsyncMock(side_effect=CacheUnavailableError("down"))

    await store_fresh_data(cache, "key", "test", {"a": 1}, 60)

    cache.set_entry.assert_awaited_once_with("key", {"a": 1}, 60)


class TestExecuteCacheRefresh:
    @pytest.mark.asyncio
    async def test_fetches_stores_and_runs_hook(
        self, cache_service, mangadex, mangadex_client, test_settings, tag_repository
    ):
        mangadex.json("/manga/tag", collection([create_test_tag()]))
        resource = TagListResource(CONTEXT, tag_repository)

        outcome = await execute_cache_refresh(
            resource, cache_service, mangadex_client, "tags:", test_settings, 60
        )

        assert not outcome.from_cache
        assert outcome.data["items"][0]["name"] == "Action"
        entry = await cache_service.get_entry("tags:")
        assert entry is not None and entry.payload == outcome.data
        assert tag_repository.upsert_calls == 1

    @pytest.mark.asyncio
    async def test_recheck_under_lock_skips_upstream(
        self, cache_service, mangadex, mangadex_client, test_settings
    ):
        await cache_service.set_entry("chapter:id=x", {"id": "x"}, 60)
        resource = ChapterResource(CONTEXT, "x")

        outcome = await execute_cache_refresh(
            resource, cache_service, mangadex_client, "chapter:id=x", test_settings, 60
        )

        assert outcome.from_cache
        assert outcome.data == {"id": "x"}
        assert mangadex.calls == []

    @pytest.mark.asyncio
    async def test_lock_timeout_fetches_anyway(
        self, cache_service, fake_valkey, mangadex, mangadex_client, test_settings
    ):
        key = f"chapter:id={CHAPTER_ID}"
        await fake_valkey.set(f"{key}:lock", "1", ex=30)
        mangadex.json(f"/chapter/{CHAPTER_ID}", entity(create_test_chapter()))
        resource = ChapterResource(CONTEXT, CHAPTER_ID)

        outcome = await execute_cache_refresh(
            resource, cache_service, mangadex_client, key, test_settings, 60
        )

        assert not outcome.from_cache
        assert outcome.data["label"] == "Vol. 1 Ch. 2: The Fight"
        assert len(mangadex.calls) == 1

    @pytest.mark.asyncio
    async def test_hook_failure_does_not_fail_refresh(
        self, cache_service, mangadex, mangadex_client, test_settings, tag_repository
    ):
        tag_repository.fail = True
        mangadex.json("/manga/tag", collection([create_test_tag()]))

        outcome = await execute_cache_refresh(
            TagListResource(CONTEXT, tag_repository),
            cache_service,
            mangadex_client,
            "tags:",
            test_settings,
            60,
        )

        assert outcome.data["total"] == 1

    @pytest.mark.asyncio
    async def test_upstream_error_is_not_stored(
        self, cache_service, fake_valkey, mangadex, mangadex_client, test_settings
    ):
        resource = ChapterResource(CONTEXT, "missing")

        with pytest.raises(UpstreamRejectedError):
            await execute_cache_refresh(
                resource, cache_service, mangadex_client, "chapter:id=missing",
                test_settings, 60,
            )

        assert fake_valkey.keys_matching("chapter:") == []


class TestTranslateCatalogError:
    @pytest.fixture
    def settings(self) -> Settings:
        return Settings(ENVIRONMENT="development")

    @pytest.mark.parametrize(
        ("exc", "status_code", "message"),
        [
            (InvalidRequestError("bad limit"), 400, "bad limit"),
            (UpstreamRejectedError(404), 404, MESSAGE_NOT_FOUND),
            (UpstreamRejectedError(410), 404, MESSAGE_NOT_FOUND),
            (UpstreamRejectedError(400), 400, "invalid request"),
            (UpstreamRejectedError(403), 403, "forbidden"),
            (UpstreamRejectedError(401), 502, MESSAGE_BAD_UPSTREAM_DATA),
            (UpstreamRejectedError(409), 409, "request rejected"),
            (UpstreamUnavailableError("down", status_code=503), 503, MESSAGE_UNAVAILABLE),
            (CacheUnavailableError("down"), 503, MESSAGE_UNAVAILABLE),
            (CatalogError("odd"), 500, "internal server error"),
        ],
    )
    def test_status_mapping(self, settings, exc, status_code, message):
        result = translate_catalog_error(exc, "test", settings)

        assert result.status_code == status_code
        assert result.cache_status == "error"
        assert result.envelope.success is False
        assert result.envelope.message == message

    def test_validation_failure_logs_every_field(self, settings, caplog):
        exc = ValidationFailedError(
            "MangaEntity",
            (
                FieldError("data.type", "Input should be 'manga'", "literal_error"),
                FieldError("data.attributes.title", "Field required", "missing"),
            ),
        )

        with caplog.at_level(logging.ERROR):
            result = translate_catalog_error(exc, "manga", settings)

        assert result.status_code == 502
        assert "data.type" in caplog.text
        assert "data.attributes.title" in caplog.text
        assert result.envelope.debug["schema"] == "MangaEntity"
        assert len(result.envelope.debug["field_errors"]) == 2

    def test_debug_includes_upstream_status(self, settings):
        result = translate_catalog_error(UpstreamRejectedError(403), "test", settings)

        assert result.envelope.debug["upstream_status"] == 403
        assert result.envelope.debug["error"] == "UpstreamRejectedError"

    def test_no_debug_in_production(self):
        settings = Settings(
            ENVIRONMENT="production",
            DATABASE_URL="postgresql+asyncpg://catalog:secret@db:5432/mangaverse",
        )

        result = translate_catalog_error(UpstreamRejectedError(404), "test", settings)

        assert result.envelope.debug is None
        assert "debug" not in result.envelope.to_content()
