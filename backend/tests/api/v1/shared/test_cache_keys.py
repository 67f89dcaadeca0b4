"""Tests for catalog cache key generation."""

import pytest

from app.api.v1.shared.cache_keys import catalog_cache_key, normalize_key_value


def test_parameter_order_does_not_matter():
    first = catalog_cache_key("search", {"title": "Naruto", "limit": 20, "offset": 0})
    second = catalog_cache_key("search", {"offset": 0, "limit": 20, "title": "Naruto"})
    assert first == second == "search:limit=20&offset=0&title=naruto"


def test_case_and_whitespace_are_normalized():
    assert catalog_cache_key("search", {"title": "  One Piece "}) == catalog_cache_key(
        "search", {"title": "one piece"}
    )


def test_values_are_url_encoded():
    assert catalog_cache_key("search", {"title": "one piece&x=y"}) == (
        "search:title=one+piece%26x%3Dy"
    )


def test_empty_values_are_dropped():
    assert catalog_cache_key(
        "search", {"title": "", "status": [], "year": None, "limit": 5}
    ) == "search:limit=5"


def test_lists_are_sorted_and_deduplicated():
    key = catalog_cache_key("search", {"contentRating": ["suggestive", "safe", "safe"]})
    assert key == "search:contentRating=safe,suggestive"


def test_mappings_render_sorted_pairs():
    key = catalog_cache_key("feed", {"order": {"volume": "DESC", "chapter": "desc"}})
    assert key == "feed:order=chapter:desc,volume:desc"


def test_different_endpoints_never_collide():
    params = {"limit": 20}
    assert catalog_cache_key("popular", params) != catalog_cache_key("latest", params)


def test_no_params():
    assert catalog_cache_key("tags") == "tags:"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        (True, "true"),
        (False, "false"),
        (20.0, "20"),
        (2.5, "2.5"),
        ("  ", None),
        ({"a": None}, None),
    ],
)
def test_normalize_key_value(value, expected):
    assert normalize_key_value(value) == expected
