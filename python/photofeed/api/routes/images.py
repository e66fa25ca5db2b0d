"""Image derivative routes.

Serves cached, metadata-stripped JPEG derivatives by secure ID.

Response semantics:
- 200: image bytes with ETag, Last-Modified, immutable Cache-Control
- 304: If-None-Match matched (no body)
- 404 E_IMAGE_NOT_FOUND: unknown or expired ID with no cached bytes
- 502/504: upstream failure with no cached bytes to fall back to
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, Response

from photofeed.api.deps import get_image_cache
from photofeed.errors import ApiErrorCode, NotFoundError
from photofeed.services.image_derivatives import DERIVATIVE_SUFFIX, ImageDerivativeCache

router = APIRouter()


@router.get("/image/{filename}")
async def get_image(
    filename: str,
    images: Annotated[ImageDerivativeCache, Depends(get_image_cache)],
    if_none_match: Annotated[str | None, Header()] = None,
) -> Response:
    """Serve the derivative for /api/image/{secure_id}.jpg."""
    if not filename.endswith(DERIVATIVE_SUFFIX):
        raise NotFoundError(ApiErrorCode.E_IMAGE_NOT_FOUND, "Image not found or expired")

    result = await images.serve(filename.removesuffix(DERIVATIVE_SUFFIX), if_none_match)

    headers = {
        "ETag": result.etag,
        "Last-Modified": result.last_modified,
        "Cache-Control": result.cache_control,
    }
    if result.not_modified:
        return Response(status_code=304, headers=headers)

    return Response(content=result.data, media_type=result.content_type, headers=headers)
