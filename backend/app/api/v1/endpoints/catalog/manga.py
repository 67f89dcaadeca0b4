"""
Manga endpoints for the catalog API.

Listings, details, feeds, chapters and the tag taxonomy, all served through
the read-through catalog proxy.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import JSONResponse

from app.api.v1.shared.cache_manager import CatalogProxy, get_catalog_proxy
from app.api.v1.shared.constants import (
    FEED_LIMIT,
    LATEST_CHAPTERS_LIMIT,
    MANGA_LIST_LIMIT,
    POPULAR_NEW_LIMIT,
    POPULAR_NEW_WINDOW_DAYS,
)
from app.api.v1.shared.dependencies import content_ratings, get_normalize_context
from app.api.v1.shared.protocols import (
    ChapterPagesResource,
    ChapterResource,
    LatestChaptersResource,
    MangaDetailResource,
    MangaFeedResource,
    MangaListResource,
    MangaStatisticsResource,
    RandomMangaResource,
    TagListResource,
)
from app.api.v1.shared.validation import (
    CHAPTER_ORDER_FIELDS,
    parse_order,
    validate_content_ratings,
)
from app.core.config import Settings, get_settings
from app.models.catalog import (
    Chapter,
    ChapterPages,
    Envelope,
    Manga,
    MangaStatistics,
    Page,
    Tag,
)
from app.persistence.dependencies import get_tag_repository
from app.persistence.repositories import TagRepository
from app.services.mangadex_mapping import NormalizeContext

router = APIRouter()

EntityId = Annotated[str, Path(min_length=1, max_length=64)]
ContentRatingQuery = Annotated[
    list[str] | None,
    Query(
        alias="contentRating",
        description="Content ratings to include (defaults to DEFAULT_CONTENT_RATINGS).",
    ),
]
OffsetQuery = Annotated[int, Query(ge=0, le=10_000, description="Items to skip.")]


def _ratings(requested: list[str] | None, settings: Settings) -> list[str]:
    validate_content_ratings(requested)
    return content_ratings(requested, settings)


def _drop_empty(params: dict[str, Any]) -> dict[str, Any]:
    return {name: value for name, value in params.items() if value not in (None, [])}


@router.get(
    "/search",
    response_model=Envelope[Page[Manga]],
    summary="Search manga by title and filters",
)
async def search_manga(
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    title: Annotated[str | None, Query(max_length=200)] = None,
    limit: Annotated[
        int, Query(ge=1, le=MANGA_LIST_LIMIT.maximum)
    ] = MANGA_LIST_LIMIT.default,
    offset: OffsetQuery = 0,
    included_tags: Annotated[list[str] | None, Query(alias="includedTags")] = None,
    excluded_tags: Annotated[list[str] | None, Query(alias="excludedTags")] = None,
    status: Annotated[list[str] | None, Query()] = None,
    original_language: Annotated[
        list[str] | None, Query(alias="originalLanguage")
    ] = None,
    content_rating: ContentRatingQuery = None,
    order: Annotated[
        str | None, Query(description="Sort as field:direction, e.g. followedCount:desc.")
    ] = None,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Search MangaDex titles."""
    params = _drop_empty(
        {
            "title": title.strip() if title else None,
            "limit": limit,
            "offset": offset,
            "includedTags": included_tags,
            "excludedTags": excluded_tags,
            "status": status,
            "originalLanguage": original_language,
            "contentRating": _ratings(content_rating, settings),
            "order": parse_order(order),
        }
    )
    resource = MangaListResource(context, "search", params)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/popular",
    response_model=Envelope[Page[Manga]],
    summary="Most followed manga",
)
async def popular_manga(
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    limit: Annotated[
        int, Query(ge=1, le=MANGA_LIST_LIMIT.maximum)
    ] = MANGA_LIST_LIMIT.default,
    offset: OffsetQuery = 0,
    content_rating: ContentRatingQuery = None,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    params = {
        "limit": limit,
        "offset": offset,
        "contentRating": _ratings(content_rating, settings),
        "order": {"followedCount": "desc"},
    }
    resource = MangaListResource(context, "popular", params)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/popular-new",
    response_model=Envelope[Page[Manga]],
    summary="Most followed manga created in the last month",
)
async def popular_new_manga(
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    limit: Annotated[
        int, Query(ge=1, le=POPULAR_NEW_LIMIT.maximum)
    ] = POPULAR_NEW_LIMIT.default,
    content_rating: ContentRatingQuery = None,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Popular new titles.

    The creation cutoff is truncated to the day so one cache entry serves the
    whole day instead of one entry per second.
    """
    since = datetime.now(timezone.utc) - timedelta(days=POPULAR_NEW_WINDOW_DAYS)
    params = {
        "limit": limit,
        "contentRating": _ratings(content_rating, settings),
        "order": {"followedCount": "desc"},
        "createdAtSince": since.strftime("%Y-%m-%dT00:00:00"),
    }
    resource = MangaListResource(context, "popular_new", params)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/latest",
    response_model=Envelope[Page[Manga]],
    summary="Newest manga",
)
async def latest_manga(
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    limit: Annotated[
        int, Query(ge=1, le=MANGA_LIST_LIMIT.maximum)
    ] = MANGA_LIST_LIMIT.default,
    offset: OffsetQuery = 0,
    content_rating: ContentRatingQuery = None,
    available_translated_language: Annotated[
        list[str] | None, Query(alias="availableTranslatedLanguage")
    ] = None,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    params = _drop_empty(
        {
            "limit": limit,
            "offset": offset,
            "contentRating": _ratings(content_rating, settings),
            "order": {"createdAt": "desc"},
            "availableTranslatedLanguage": available_translated_language,
        }
    )
    resource = MangaListResource(context, "latest", params)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/latest-chapters",
    response_model=Envelope[Page[Chapter]],
    summary="Most recently readable chapters with covers",
)
async def latest_chapters(
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    limit: Annotated[
        int, Query(ge=1, le=LATEST_CHAPTERS_LIMIT.maximum)
    ] = LATEST_CHAPTERS_LIMIT.default,
    offset: OffsetQuery = 0,
    translated_language: Annotated[
        list[str] | None, Query(alias="translatedLanguage")
    ] = None,
    content_rating: ContentRatingQuery = None,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    params = _drop_empty(
        {
            "limit": limit,
            "offset": offset,
            "translatedLanguage": translated_language,
            "contentRating": _ratings(content_rating, settings),
        }
    )
    resource = LatestChaptersResource(context, params)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/tags",
    response_model=Envelope[Page[Tag]],
    summary="Tag taxonomy",
)
async def list_tags(
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    repository: TagRepository = Depends(get_tag_repository),
) -> JSONResponse:
    """All tags. Served from the database when MangaDex is unavailable."""
    resource = TagListResource(context, repository)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/random",
    response_model=Envelope[Manga],
    summary="A random manga (never cached)",
)
async def random_manga(
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    content_rating: ContentRatingQuery = None,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    params = {"contentRating": _ratings(content_rating, settings)}
    resource = RandomMangaResource(context, params)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/chapter/{chapter_id}",
    response_model=Envelope[Chapter],
    summary="One chapter",
)
async def get_chapter(
    chapter_id: EntityId,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    proxy: CatalogProxy = Depends(get_catalog_proxy),
) -> JSONResponse:
    resource = ChapterResource(context, chapter_id)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/chapter/{chapter_id}/pages",
    response_model=Envelope[ChapterPages],
    summary="Page image URLs for a chapter (never cached)",
)
async def get_chapter_pages(
    chapter_id: EntityId,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    proxy: CatalogProxy = Depends(get_catalog_proxy),
) -> JSONResponse:
    """At-home server URLs for the reader; they rotate, so each call is live."""
    resource = ChapterPagesResource(context, chapter_id)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/{manga_id}",
    response_model=Envelope[Manga],
    summary="One manga",
)
async def get_manga(
    manga_id: EntityId,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    include_statistics: Annotated[
        bool, Query(description="Merge rating, follows and comment count.")
    ] = False,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
) -> JSONResponse:
    resource = MangaDetailResource(context, manga_id, include_statistics)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/{manga_id}/statistics",
    response_model=Envelope[MangaStatistics],
    summary="Rating, follows and comment count of one manga",
)
async def get_manga_statistics(
    manga_id: EntityId,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    proxy: CatalogProxy = Depends(get_catalog_proxy),
) -> JSONResponse:
    resource = MangaStatisticsResource(context, manga_id)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/{manga_id}/feed",
    response_model=Envelope[Page[Chapter]],
    summary="Chapters of one manga",
)
async def get_manga_feed(
    manga_id: EntityId,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    limit: Annotated[int, Query(ge=1, le=FEED_LIMIT.maximum)] = FEED_LIMIT.default,
    offset: OffsetQuery = 0,
    translated_language: Annotated[
        list[str] | None, Query(alias="translatedLanguage")
    ] = None,
    order: Annotated[
        str | None, Query(description="Sort as field:direction, e.g. chapter:asc.")
    ] = None,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
) -> JSONResponse:
    params = _drop_empty(
        {
            "limit": limit,
            "offset": offset,
            "translatedLanguage": translated_language,
            "order": parse_order(order, CHAPTER_ORDER_FIELDS),
        }
    )
    resource = MangaFeedResource(context, manga_id, params)
    return (await proxy.get(resource)).to_response()
