"""Album read path: stale-while-revalidate over the album cache.

Read policy for a canonical token:
- absent          -> fetch synchronously, store, return
- fresh           -> return
- stale, idle     -> mark reloading, return stale value, refresh in background
- stale, reloading-> return stale value, no second refresh

Every response is rewritten on the way out: upstream derivative URLs are
replaced by /api/image/{secure_id}.jpg and metadata.locations is blanked.
Stored records always hold the raw provider result; legacy records that
were stored already rewritten are returned as-is.

Every successful fetch (cold miss, background refresh, periodic refresh)
schedules augmentation for the album's videos.
"""

import asyncio
import copy
from dataclasses import dataclass
from typing import Any

from photofeed.errors import ApiErrorCode, UpstreamError
from photofeed.logging import configure_task_logging, get_logger
from photofeed.services.album_cache import REWRITTEN_URL_PREFIX, AlbumCache, AlbumFormat
from photofeed.services.album_source import AlbumFetcher, AlbumFetchError
from photofeed.services.augmentation.service import AugmentationService
from photofeed.services.background import BackgroundTasks
from photofeed.services.redact import fingerprint
from photofeed.services.secure_mapping import SecureMapping
from photofeed.services.state import TokenTracker
from photofeed.services.tokens import resolve_token

logger = get_logger(__name__)

VIDEO_EXTENSION = ".mp4"
VIDEO_ASSET_TYPE = "video"
POSTER_FRAME_KEY = "PosterFrame"


# =============================================================================
# URL Rewriting
# =============================================================================


def is_video_url(url: str) -> bool:
    return VIDEO_EXTENSION in url.lower()


def image_reference(secure_id: str) -> str:
    return f"{REWRITTEN_URL_PREFIX}{secure_id}.jpg"


def rewrite_album(album: dict[str, Any], mapping: SecureMapping) -> dict[str, Any]:
    """Return a copy of album with image URLs replaced by opaque references.

    Video URLs and already-rewritten URLs are left untouched. Derivatives
    without a string URL are skipped. The input is never mutated.
    """
    rewritten = copy.deepcopy(album)

    for photo in rewritten.get("photos") or []:
        if not isinstance(photo, dict):
            continue
        derivatives = photo.get("derivatives")
        if not isinstance(derivatives, dict):
            continue
        for derivative in derivatives.values():
            if not isinstance(derivative, dict):
                continue
            url = derivative.get("url")
            if not isinstance(url, str) or not url:
                continue
            if url.startswith(REWRITTEN_URL_PREFIX) or is_video_url(url):
                continue
            derivative["url"] = image_reference(mapping.resolve_or_create(url))

    metadata = rewritten.get("metadata")
    if isinstance(metadata, dict) and "locations" in metadata:
        metadata["locations"] = {}

    return rewritten


# =============================================================================
# Video Discovery
# =============================================================================


@dataclass(frozen=True)
class VideoItem:
    item_id: str
    media_url: str


def _resolution(derivative: dict[str, Any]) -> int:
    try:
        return int(derivative.get("width") or 0) * int(derivative.get("height") or 0)
    except (TypeError, ValueError):
        return 0


def best_video_url(photo: dict[str, Any]) -> str | None:
    """Highest-resolution video URL among a photo's derivatives.

    Items typed as video whose URLs lack the .mp4 marker fall back to any
    non-poster derivative.
    """
    derivatives = photo.get("derivatives")
    if not isinstance(derivatives, dict):
        return None

    with_urls = {
        key: d
        for key, d in derivatives.items()
        if isinstance(d, dict) and isinstance(d.get("url"), str) and d["url"]
    }
    candidates = [d for d in with_urls.values() if is_video_url(d["url"])]
    if not candidates and photo.get("mediaAssetType") == VIDEO_ASSET_TYPE:
        candidates = [d for key, d in with_urls.items() if key != POSTER_FRAME_KEY]
    if not candidates:
        return None
    return max(candidates, key=_resolution)["url"]


def discover_videos(album: dict[str, Any]) -> list[VideoItem]:
    """List the album's video items that have a downloadable URL."""
    videos = []
    for photo in album.get("photos") or []:
        if not isinstance(photo, dict):
            continue
        item_id = photo.get("photoGuid")
        if not isinstance(item_id, str) or not item_id:
            continue
        url = best_video_url(photo)
        if url is None:
            continue
        videos.append(VideoItem(item_id=item_id, media_url=url))
    return videos


# =============================================================================
# Album Service
# =============================================================================


def _fetch_error_to_api_error(error: AlbumFetchError) -> UpstreamError:
    message = "Album provider timed out" if error.timeout else "Failed to fetch album"
    return UpstreamError(ApiErrorCode.E_ALBUM_FETCH_FAILED, message, timeout=error.timeout)


class AlbumService:
    """Serves albums with stale-while-revalidate semantics.

    Args:
        cache: Album cache (owns the reloading flags).
        fetcher: Album provider collaborator.
        mapping: Secure reference mapping for URL rewriting.
        tracker: Recently-used token tracker.
        tasks: Runner for background refreshes.
        augmentation: Optional augmentation scheduler for discovered videos.
    """

    def __init__(
        self,
        cache: AlbumCache,
        fetcher: AlbumFetcher,
        mapping: SecureMapping,
        tracker: TokenTracker,
        tasks: BackgroundTasks,
        augmentation: AugmentationService | None = None,
    ):
        self.cache = cache
        self.fetcher = fetcher
        self.mapping = mapping
        self.tracker = tracker
        self.tasks = tasks
        self.augmentation = augmentation

    @property
    def flags(self):
        return self.cache.flags

    async def get_album(self, token: str) -> dict[str, Any]:
        """Return the public album body for a (plain or encrypted) token.

        Raises:
            ApiError: Invalid token, or cold miss with a failing provider.
        """
        canonical = resolve_token(token)
        token_fp = fingerprint(canonical)

        entry = await asyncio.to_thread(self.cache.get, canonical)
        if entry is None:
            logger.info("album_cache_miss", token_fp=token_fp)
            album = await self.refresh(canonical)
            fmt = AlbumFormat.RAW
            reloading = False
        else:
            album = entry.value
            fmt = entry.format
            if not entry.is_stale:
                logger.debug("album_cache_hit", token_fp=token_fp)
                reloading = False
            elif self.flags.try_begin(canonical):
                logger.info("album_cache_stale_refreshing", token_fp=token_fp)
                self.tasks.spawn(
                    self._background_refresh(canonical),
                    name=f"album-refresh:{token_fp}",
                    on_error=lambda _exc: self.flags.clear(canonical),
                )
                reloading = True
            else:
                logger.debug("album_cache_stale_refresh_in_flight", token_fp=token_fp)
                reloading = True

        self.tracker.touch(canonical)

        if fmt is AlbumFormat.REWRITTEN:
            body = dict(album)
        else:
            body = await asyncio.to_thread(rewrite_album, album, self.mapping)
        body["reloading"] = reloading
        return body

    async def refresh(self, canonical: str) -> dict[str, Any]:
        """Fetch an album from the provider, store it and schedule its videos.

        Raises:
            UpstreamError: Provider failure (E_ALBUM_FETCH_FAILED or E_UPSTREAM_TIMEOUT).
        """
        try:
            album = await self.fetcher.fetch_album(canonical)
        except AlbumFetchError as e:
            logger.warning(
                "album_fetch_failed",
                token_fp=fingerprint(canonical),
                error=e.message,
                status_code=e.status_code,
            )
            raise _fetch_error_to_api_error(e) from e

        await asyncio.to_thread(self.cache.put, canonical, album)
        await self.schedule_videos(canonical, album)
        return album

    async def _background_refresh(self, canonical: str) -> None:
        configure_task_logging(task_name="album_refresh", task_id=fingerprint(canonical))
        try:
            await self.refresh(canonical)
            logger.info("background_refresh_completed", token_fp=fingerprint(canonical))
        except UpstreamError as e:
            # Stale value stays in place; the next stale read retries
            logger.warning(
                "background_refresh_failed", token_fp=fingerprint(canonical), error=e.message
            )
        finally:
            self.flags.clear(canonical)

    async def schedule_videos(self, canonical: str, album: dict[str, Any]) -> int:
        """Schedule augmentation for every video in the album.

        Returns:
            Number of newly enqueued jobs.
        """
        if self.augmentation is None:
            return 0
        enqueued = 0
        for video in discover_videos(album):
            if await self.augmentation.schedule(canonical, video.item_id, video.media_url):
                enqueued += 1
        return enqueued

    async def find_video(self, canonical: str, item_id: str) -> VideoItem | None:
        """Look up a video item in the cached album."""
        entry = await asyncio.to_thread(self.cache.get, canonical)
        if entry is None:
            return None
        for video in discover_videos(entry.value):
            if video.item_id == item_id:
                return video
        return None
