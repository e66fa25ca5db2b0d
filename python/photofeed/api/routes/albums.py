"""Album routes.

Routes are transport-only:
- Extract path parameters
- Call exactly one service method
- Return the album body (reloading flag included)
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends

from photofeed.api.deps import get_album_service
from photofeed.services.albums import AlbumService

router = APIRouter()


@router.get("/album/{token}")
async def get_album(
    token: str,
    albums: Annotated[AlbumService, Depends(get_album_service)],
) -> dict[str, Any]:
    """Get a shared album by plain or encrypted token.

    Image URLs in the response point at /api/image/{id}.jpg. A stale
    album is returned immediately with "reloading": true while a refresh
    runs in the background.
    """
    return await albums.get_album(token)
