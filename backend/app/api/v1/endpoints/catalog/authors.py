"""Author endpoints for the catalog API."""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import JSONResponse

from app.api.v1.shared.cache_manager import CatalogProxy, get_catalog_proxy
from app.api.v1.shared.constants import MANGA_LIST_LIMIT
from app.api.v1.shared.dependencies import content_ratings, get_normalize_context
from app.api.v1.shared.protocols import AuthorResource, MangaListResource
from app.core.config import Settings, get_settings
from app.models.catalog import Author, Envelope, Manga, Page
from app.services.mangadex_mapping import NormalizeContext

router = APIRouter()

AuthorId = Annotated[str, Path(min_length=1, max_length=64)]


@router.get(
    "/{author_id}",
    response_model=Envelope[Author],
    summary="One author",
)
async def get_author(
    author_id: AuthorId,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    proxy: CatalogProxy = Depends(get_catalog_proxy),
) -> JSONResponse:
    resource = AuthorResource(context, author_id)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/{author_id}/manga",
    response_model=Envelope[Page[Manga]],
    summary="Works by one author",
)
async def get_author_manga(
    author_id: AuthorId,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    limit: Annotated[
        int, Query(ge=1, le=MANGA_LIST_LIMIT.maximum)
    ] = MANGA_LIST_LIMIT.default,
    offset: Annotated[int, Query(ge=0, le=10_000)] = 0,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    params = {
        "authorOrArtist": author_id,
        "limit": limit,
        "offset": offset,
        "contentRating": content_ratings(None, settings),
        "order": {"followedCount": "desc"},
    }
    resource = MangaListResource(context, "author_manga", params)
    return (await proxy.get(resource)).to_response()
