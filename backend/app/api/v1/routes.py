from fastapi import APIRouter

from app.api.v1.endpoints.catalog import router as catalog_router
from app.api.v1.endpoints.health import router as health_router

router = APIRouter()
router.include_router(health_router, tags=["meta"])
router.include_router(catalog_router)
