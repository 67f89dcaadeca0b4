"""
Search endpoints for the catalog API.

Advanced manga search plus the search-bar dropdown and author/group
autocomplete. Free-text queries shorter than two characters are answered
with an empty page without calling MangaDex.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.api.v1.shared.cache_manager import CatalogProxy, get_catalog_proxy
from app.api.v1.shared.cache_protocols import ProxyResult
from app.api.v1.shared.constants import (
    AUTOCOMPLETE_LIMIT,
    MANGA_LIST_LIMIT,
    QUICK_SEARCH_RESULTS,
)
from app.api.v1.shared.dependencies import content_ratings, get_normalize_context
from app.api.v1.shared.protocols import (
    AuthorSearchResource,
    GroupSearchResource,
    MangaListResource,
)
from app.api.v1.shared.rate_limit import (
    advanced_search_limit,
    autocomplete_limit,
    limiter,
    quick_search_limit,
)
from app.api.v1.shared.validation import (
    is_short_query,
    parse_order,
    validate_content_ratings,
    validate_tag_mode,
)
from app.core.config import Settings, get_settings
from app.models.catalog import Author, Envelope, Group, Manga, Page
from app.services.mangadex_mapping import NormalizeContext

router = APIRouter()


@router.get(
    "/manga",
    response_model=Envelope[Page[Manga]],
    summary="Advanced manga search",
)
@limiter.limit(advanced_search_limit)
async def advanced_search(
    request: Request,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    title: Annotated[str | None, Query(max_length=200)] = None,
    limit: Annotated[
        int, Query(ge=1, le=MANGA_LIST_LIMIT.maximum)
    ] = MANGA_LIST_LIMIT.default,
    offset: Annotated[int, Query(ge=0, le=10_000)] = 0,
    included_tags: Annotated[list[str] | None, Query(alias="includedTags")] = None,
    excluded_tags: Annotated[list[str] | None, Query(alias="excludedTags")] = None,
    included_tags_mode: Annotated[
        str | None, Query(alias="includedTagsMode", description="AND or OR.")
    ] = None,
    excluded_tags_mode: Annotated[
        str | None, Query(alias="excludedTagsMode", description="AND or OR.")
    ] = None,
    status: Annotated[list[str] | None, Query()] = None,
    publication_demographic: Annotated[
        list[str] | None, Query(alias="publicationDemographic")
    ] = None,
    content_rating: Annotated[list[str] | None, Query(alias="contentRating")] = None,
    year: Annotated[int | None, Query(ge=1800, le=2200)] = None,
    authors: Annotated[list[str] | None, Query()] = None,
    group: Annotated[str | None, Query(max_length=64)] = None,
    order: Annotated[
        str | None, Query(description="Sort as field:direction (default relevance:desc).")
    ] = None,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    """Search with every MangaDex manga filter."""
    validate_tag_mode(included_tags_mode)
    validate_tag_mode(excluded_tags_mode)
    validate_content_ratings(content_rating)

    params = {
        name: value
        for name, value in {
            "title": title.strip() if title else None,
            "limit": limit,
            "offset": offset,
            "includedTags": included_tags,
            "excludedTags": excluded_tags,
            "includedTagsMode": included_tags_mode.upper() if included_tags_mode else None,
            "excludedTagsMode": excluded_tags_mode.upper() if excluded_tags_mode else None,
            "status": status,
            "publicationDemographic": publication_demographic,
            "contentRating": content_ratings(content_rating, settings),
            "year": year,
            "authors": authors,
            "group": group,
            "order": parse_order(order) or {"relevance": "desc"},
        }.items()
        if value not in (None, [])
    }
    resource = MangaListResource(context, "advanced_search", params)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/quick",
    response_model=Envelope[Page[Manga]],
    summary="Top matches for the search bar",
)
@limiter.limit(quick_search_limit)
async def quick_search(
    request: Request,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    q: Annotated[str | None, Query(max_length=200)] = None,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    if is_short_query(q):
        return ProxyResult.empty_page(limit=QUICK_SEARCH_RESULTS, offset=0).to_response()
    assert q is not None

    params = {
        "title": q.strip(),
        "limit": QUICK_SEARCH_RESULTS,
        "offset": 0,
        "contentRating": content_ratings(None, settings),
        "order": {"relevance": "desc"},
    }
    resource = MangaListResource(context, "quick_search", params)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/authors",
    response_model=Envelope[Page[Author]],
    summary="Author name autocomplete",
)
@limiter.limit(autocomplete_limit)
async def search_authors(
    request: Request,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    name: Annotated[str | None, Query(max_length=100)] = None,
    limit: Annotated[
        int, Query(ge=1, le=AUTOCOMPLETE_LIMIT.maximum)
    ] = AUTOCOMPLETE_LIMIT.default,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
) -> JSONResponse:
    if is_short_query(name):
        return ProxyResult.empty_page(limit=limit, offset=0).to_response()
    assert name is not None

    resource = AuthorSearchResource(context, {"name": name.strip(), "limit": limit})
    return (await proxy.get(resource)).to_response()


@router.get(
    "/groups",
    response_model=Envelope[Page[Group]],
    summary="Scanlation group name autocomplete",
)
@limiter.limit(autocomplete_limit)
async def search_groups(
    request: Request,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    name: Annotated[str | None, Query(max_length=100)] = None,
    limit: Annotated[
        int, Query(ge=1, le=AUTOCOMPLETE_LIMIT.maximum)
    ] = AUTOCOMPLETE_LIMIT.default,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
) -> JSONResponse:
    if is_short_query(name):
        return ProxyResult.empty_page(limit=limit, offset=0).to_response()
    assert name is not None

    resource = GroupSearchResource(context, {"name": name.strip(), "limit": limit})
    return (await proxy.get(resource)).to_response()
