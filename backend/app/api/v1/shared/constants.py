"""Shared constants for catalog endpoints.

Page-size ceilings mirror what MangaDex accepts per call and what the
frontend actually renders.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class PageLimit:
    """Default and maximum ``limit`` for one listing endpoint."""

    default: int
    maximum: int


MANGA_LIST_LIMIT = PageLimit(default=20, maximum=50)
"""Search, popular, latest and author/group works."""

POPULAR_NEW_LIMIT = PageLimit(default=10, maximum=20)
"""Popular titles created in the last month."""

LATEST_CHAPTERS_LIMIT = PageLimit(default=20, maximum=32)
"""Latest chapters with bulk-fetched covers."""

FEED_LIMIT = PageLimit(default=20, maximum=100)
"""Chapter feed of one manga."""

AUTOCOMPLETE_LIMIT = PageLimit(default=10, maximum=20)
"""Author and group name autocomplete."""

QUICK_SEARCH_RESULTS = 5
"""Results shown in the search bar dropdown."""

POPULAR_NEW_WINDOW_DAYS = 30
"""How far back ``popular-new`` looks for created titles."""

# MangaDex locale codes: ``en``, ``pt-br``, ``es-la``, ``zh-hk``
LOCALE_PATTERN = r"^[A-Za-z]{2,3}(-[A-Za-z]{2,4})?$"
