"""
Catalog endpoints package.

This package exposes the MangaDex catalog through the caching proxy:
- manga.py: /manga listings, details, feeds, chapters and tags
- search.py: /search advanced search and autocomplete
- authors.py: /authors details and works
- groups.py: /groups details and works
"""

from fastapi import APIRouter

from app.api.v1.endpoints.catalog.authors import router as authors_router
from app.api.v1.endpoints.catalog.groups import router as groups_router
from app.api.v1.endpoints.catalog.manga import router as manga_router
from app.api.v1.endpoints.catalog.search import router as search_router

router = APIRouter()

router.include_router(manga_router, prefix="/manga", tags=["manga"])
router.include_router(search_router, prefix="/search", tags=["search"])
router.include_router(authors_router, prefix="/authors", tags=["authors"])
router.include_router(groups_router, prefix="/groups", tags=["groups"])

__all__ = ["router"]
