"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
"""

from fastapi import APIRouter

from photofeed.api.routes.albums import router as albums_router
from photofeed.api.routes.augmentation import router as augmentation_router
from photofeed.api.routes.health import router as health_router
from photofeed.api.routes.images import router as images_router
from photofeed.api.routes.tokens import router as tokens_router


def create_api_router() -> APIRouter:
    """Create and configure the API router."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(albums_router, prefix="/api", tags=["albums"])
    api_router.include_router(images_router, prefix="/api", tags=["images"])
    api_router.include_router(augmentation_router, prefix="/api", tags=["augmentation"])
    api_router.include_router(tokens_router, prefix="/api", tags=["tokens"])
    return api_router


__all__ = ["create_api_router"]
