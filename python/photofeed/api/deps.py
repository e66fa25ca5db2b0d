"""FastAPI dependencies for route handlers.

Services are built once at startup (see app.lifespan) and read from
app.state, so routes never construct collaborators themselves.
"""

from fastapi import Request

from photofeed.services.albums import AlbumService
from photofeed.services.augmentation.service import AugmentationService
from photofeed.services.container import ServiceContainer
from photofeed.services.image_derivatives import ImageDerivativeCache


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_album_service(request: Request) -> AlbumService:
    return get_container(request).albums


def get_image_cache(request: Request) -> ImageDerivativeCache:
    return get_container(request).images


def get_augmentation_service(request: Request) -> AugmentationService | None:
    return get_container(request).augmentation
