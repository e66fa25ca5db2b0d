"""Augmentation routes.

GET /api/augmentation/{token}/{item_id}:
- terminal record (success or permanent skip) -> 200 with the record
- video item known in the cached album -> enqueue (deduplicated), 202 processing
- otherwise -> 404 E_ITEM_NOT_FOUND
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from photofeed.api.deps import get_album_service, get_augmentation_service
from photofeed.errors import ApiErrorCode, NotFoundError
from photofeed.schemas.augmentation import AugmentationPendingOut
from photofeed.services.albums import AlbumService
from photofeed.services.augmentation.service import AugmentationService
from photofeed.services.tokens import resolve_token

router = APIRouter()


@router.get("/augmentation/{token}/{item_id}", response_model=None)
async def get_augmentation(
    token: str,
    item_id: str,
    albums: Annotated[AlbumService, Depends(get_album_service)],
    augmentation: Annotated[AugmentationService | None, Depends(get_augmentation_service)],
) -> dict[str, Any] | JSONResponse:
    """Return an item's transcript and summary, or start producing them."""
    if augmentation is None:
        raise NotFoundError(ApiErrorCode.E_ITEM_NOT_FOUND, "Augmentation is not available")

    canonical = resolve_token(token)

    record = await augmentation.get_record(canonical, item_id)
    if record is not None:
        return record

    if not augmentation.is_in_flight(canonical, item_id):
        video = await albums.find_video(canonical, item_id)
        if video is None:
            raise NotFoundError(ApiErrorCode.E_ITEM_NOT_FOUND, "Video item not found")
        await augmentation.schedule(canonical, video.item_id, video.media_url)

    return JSONResponse(status_code=202, content=AugmentationPendingOut().model_dump())
