"""Scanlation group endpoints for the catalog API."""

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import JSONResponse

from app.api.v1.shared.cache_manager import CatalogProxy, get_catalog_proxy
from app.api.v1.shared.constants import MANGA_LIST_LIMIT
from app.api.v1.shared.dependencies import content_ratings, get_normalize_context
from app.api.v1.shared.protocols import GroupResource, MangaListResource
from app.core.config import Settings, get_settings
from app.models.catalog import Envelope, Group, Manga, Page
from app.services.mangadex_mapping import NormalizeContext

router = APIRouter()

GroupId = Annotated[str, Path(min_length=1, max_length=64)]


@router.get(
    "/{group_id}",
    response_model=Envelope[Group],
    summary="One scanlation group",
)
async def get_group(
    group_id: GroupId,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    proxy: CatalogProxy = Depends(get_catalog_proxy),
) -> JSONResponse:
    resource = GroupResource(context, group_id)
    return (await proxy.get(resource)).to_response()


@router.get(
    "/{group_id}/manga",
    response_model=Envelope[Page[Manga]],
    summary="Manga translated by one group",
)
async def get_group_manga(
    group_id: GroupId,
    context: Annotated[NormalizeContext, Depends(get_normalize_context)],
    limit: Annotated[
        int, Query(ge=1, le=MANGA_LIST_LIMIT.maximum)
    ] = MANGA_LIST_LIMIT.default,
    offset: Annotated[int, Query(ge=0, le=10_000)] = 0,
    proxy: CatalogProxy = Depends(get_catalog_proxy),
    settings: Settings = Depends(get_settings),
) -> JSONResponse:
    params = {
        "group": group_id,
        "limit": limit,
        "offset": offset,
        "contentRating": content_ratings(None, settings),
        "order": {"latestUploadedChapter": "desc"},
    }
    resource = MangaListResource(context, "group_manga", params)
    return (await proxy.get(resource)).to_response()
