"""Tests for proxy results and catalog resource keys."""

from __future__ import annotations

import json

import pytest

from app.api.v1.shared.cache_protocols import CACHE_STATUS_HEADER, ProxyResult
from app.api.v1.shared.protocols import (
    MANGA_INCLUDES,
    ChapterPagesResource,
    MangaDetailResource,
    MangaFeedResource,
    MangaListResource,
    MangaStatisticsResource,
)
from app.services.cache_ttl_config import CacheCategory
from app.services.mangadex_errors import UpstreamRejectedError
from app.services.mangadex_mapping import NormalizeContext
from app.services.mangadex_schemas import StatisticsResponse

EN = NormalizeContext(locale="en")
VI = NormalizeContext(locale="vi")


class TestProxyResult:
    def test_success_response(self):
        response = ProxyResult.success({"id": "1"}, cached=True, cache_status="hit").to_response()

        assert response.status_code == 200
        assert response.headers[CACHE_STATUS_HEADER] == "hit"
        assert json.loads(response.body) == {
            "success": True,
            "data": {"id": "1"},
            "cached": True,
        }

    def test_failure_response(self):
        response = ProxyResult.failure(404, "not found").to_response()

        assert response.status_code == 404
        assert response.headers[CACHE_STATUS_HEADER] == "error"
        assert json.loads(response.body) == {
            "success": False,
            "data": None,
            "cached": False,
            "message": "not found",
        }

    def test_empty_page_is_bypass(self):
        result = ProxyResult.empty_page(limit=5, offset=0)

        assert result.cache_status == "bypass"
        assert result.envelope.data == {"items": [], "limit": 5, "offset": 0, "total": 0}


class TestResourceKeys:
    def test_list_key_includes_locale(self):
        params = {"limit": 20, "order": {"followedCount": "desc"}}

        english = MangaListResource(EN, "popular", params).cache_key()
        vietnamese = MangaListResource(VI, "popular", params).cache_key()

        assert english != vietnamese
        assert english.startswith("popular:")
        assert "locale=en" in english

    def test_list_always_expands_relationships(self):
        request = MangaListResource(EN, "search", {"title": "x"}).build_request()

        assert request.path == "/manga"
        assert request.params["includes"] == MANGA_INCLUDES

    def test_relationship_expansion_stays_out_of_keys(self):
        search = MangaListResource(EN, "search", {"title": "x", "limit": 20})
        feed = MangaFeedResource(EN, "m1", {"limit": 20})

        assert "includes" in search.build_request().params
        assert "includes" in feed.build_request().params
        assert "includes" not in search.cache_key()
        assert "includes" not in feed.cache_key()
        assert search.cache_key() == "search:limit=20&locale=en&title=x"

    def test_detail_key_tracks_statistics_flag(self):
        plain = MangaDetailResource(EN, "m1")
        with_stats = MangaDetailResource(EN, "m1", include_statistics=True)

        assert plain.cache_key() != with_stats.cache_key()
        assert plain.cache_category() is CacheCategory.MANGA
        assert with_stats.cache_category() is CacheCategory.STATISTICS

    def test_feed_key_includes_manga_and_default_order(self):
        resource = MangaFeedResource(EN, "m1", {"limit": 20})

        assert resource.build_request().params["order"] == {"chapter": "desc"}
        assert "id=m1" in resource.cache_key()
        assert MangaFeedResource(EN, "m2", {"limit": 20}).cache_key() != resource.cache_key()

    def test_caller_order_overrides_feed_default(self):
        resource = MangaFeedResource(EN, "m1", {"order": {"volume": "asc"}})

        assert resource.build_request().params["order"] == {"volume": "asc"}

    def test_pages_are_never_cached(self):
        assert ChapterPagesResource(EN, "c1").cache_category() is CacheCategory.NO_STORE


def test_statistics_for_unknown_manga_is_not_found():
    resource = MangaStatisticsResource(EN, "missing")
    payload = StatisticsResponse.model_validate({"result": "ok", "statistics": {}})

    with pytest.raises(UpstreamRejectedError) as exc_info:
        resource.normalize(payload)

    assert exc_info.value.status_code == 404
