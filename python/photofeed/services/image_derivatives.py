"""Image derivative cache: fetch, transform, persist and serve by secure ID.

Serving order for GET /api/image/{secure_id}.jpg:
1. Fresh derivative on disk -> serve it (or "not modified" on ETag match)
2. No mapping for the ID -> serve an orphaned derivative if one exists, else 404
3. Mapping found -> fetch upstream, transform, persist, serve
4. Fetch/transform failure -> serve the stale derivative if one exists, else error

Freshness and validators come from the derivative file's mtime:
    ETag = "{secure_id}-{mtime_ms}"
A fresh derivative never mutates in place, so responses carry long-lived
immutable cache headers.
"""

import asyncio
import os
from dataclasses import dataclass
from email.utils import formatdate
from pathlib import Path
from urllib.parse import urlparse
from uuid import uuid4

import httpx

from photofeed.errors import ApiErrorCode, NotFoundError, UpstreamError
from photofeed.logging import get_logger
from photofeed.services.image_transform import ImageTransformError, transform_image
from photofeed.services.redact import fingerprint
from photofeed.services.secure_mapping import SecureMapping, is_secure_id
from photofeed.storage.records import Clock, delete_file

logger = get_logger(__name__)

DERIVATIVE_SUFFIX = ".jpg"
DERIVATIVE_CONTENT_TYPE = "image/jpeg"

# One year, immutable: a derivative's URL names its content
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"

ALLOWED_SCHEMES = frozenset({"http", "https"})

USER_AGENT = "PhotofeedImageCache/1.0"


@dataclass
class DerivativeResponse:
    """Response from the derivative cache.

    Attributes:
        data: JPEG bytes (empty if not_modified)
        etag: Quoted ETag derived from secure ID and mtime
        last_modified: HTTP-date of the derivative's mtime
        not_modified: True if the client's If-None-Match matched
        stale: True if served past freshness because regeneration was impossible
    """

    data: bytes
    etag: str
    last_modified: str
    not_modified: bool = False
    stale: bool = False

    @property
    def content_type(self) -> str:
        return DERIVATIVE_CONTENT_TYPE

    @property
    def cache_control(self) -> str:
        return IMMUTABLE_CACHE_CONTROL


# =============================================================================
# ETag Handling
# =============================================================================


def compute_etag(secure_id: str, mtime: float) -> str:
    """Compute ETag from secure ID and file mtime as a quoted string."""
    return f'"{secure_id}-{int(mtime * 1000)}"'


def etags_match(if_none_match: str, etag: str) -> bool:
    """Check if an If-None-Match header matches an ETag.

    Handles:
    - Comma-separated values
    - W/ prefix (weak validator)
    - Quoted strings
    - Wildcard (*)
    """
    unquoted = etag.strip('"')

    for tag in if_none_match.split(","):
        tag = tag.strip()

        if tag.startswith("W/"):
            tag = tag[2:]

        tag = tag.strip('"')

        if tag == unquoted or tag == "*":
            return True

    return False


def format_http_date(mtime: float) -> str:
    return formatdate(mtime, usegmt=True)


# =============================================================================
# HTTP Fetching
# =============================================================================


async def fetch_source_image(
    client: httpx.AsyncClient, url: str, max_bytes: int, timeout_s: float
) -> bytes:
    """Fetch an upstream image with streaming and a size limit.

    Raises:
        UpstreamError: On invalid scheme, fetch failure, timeout, or size limit.
    """
    scheme = urlparse(url).scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise UpstreamError(ApiErrorCode.E_IMAGE_FETCH_FAILED, f"Unsupported URL scheme: {scheme}")

    try:
        async with client.stream(
            "GET",
            url,
            headers={"User-Agent": USER_AGENT, "Accept": "image/*,*/*;q=0.8"},
            timeout=timeout_s,
            follow_redirects=True,
        ) as response:
            if response.status_code >= 400:
                raise UpstreamError(
                    ApiErrorCode.E_IMAGE_FETCH_FAILED,
                    f"Upstream returned status {response.status_code}",
                )

            chunks = []
            total_bytes = 0
            async for chunk in response.aiter_bytes(chunk_size=65536):
                total_bytes += len(chunk)
                if total_bytes > max_bytes:
                    raise UpstreamError(
                        ApiErrorCode.E_IMAGE_FETCH_FAILED,
                        f"Image exceeds maximum size of {max_bytes // (1024 * 1024)} MB",
                    )
                chunks.append(chunk)

            return b"".join(chunks)

    except httpx.TimeoutException as e:
        raise UpstreamError(
            ApiErrorCode.E_IMAGE_FETCH_FAILED, "Image fetch timed out", timeout=True
        ) from e
    except httpx.HTTPError as e:
        raise UpstreamError(
            ApiErrorCode.E_IMAGE_FETCH_FAILED, f"Failed to fetch image ({type(e).__name__})"
        ) from e


# =============================================================================
# Derivative Cache
# =============================================================================


class ImageDerivativeCache:
    """Disk-backed cache of transformed images keyed by secure ID.

    Args:
        directory: Directory holding derivative blobs.
        mapping: Secure reference mapping used to find upstream URLs.
        client: Shared HTTP client for upstream fetches.
        ttl_s: Derivative freshness window in seconds.
        max_width, max_height, quality: Transform parameters.
        max_source_bytes: Upstream download cap.
        fetch_timeout_s: Upstream fetch timeout.
        clock: Time source returning epoch seconds.
    """

    def __init__(
        self,
        directory: Path,
        mapping: SecureMapping,
        client: httpx.AsyncClient,
        *,
        ttl_s: float,
        max_width: int,
        max_height: int,
        quality: int,
        max_source_bytes: int,
        fetch_timeout_s: float,
        clock: Clock,
    ):
        self.directory = directory
        self.mapping = mapping
        self.client = client
        self.ttl_s = ttl_s
        self.max_width = max_width
        self.max_height = max_height
        self.quality = quality
        self.max_source_bytes = max_source_bytes
        self.fetch_timeout_s = fetch_timeout_s
        self.clock = clock

    def path_for(self, secure_id: str) -> Path:
        return self.directory / f"{secure_id}{DERIVATIVE_SUFFIX}"

    def _stat(self, path: Path) -> os.stat_result | None:
        try:
            return path.stat()
        except FileNotFoundError:
            return None

    def _is_fresh(self, st: os.stat_result) -> bool:
        return self.clock() - st.st_mtime < self.ttl_s

    async def serve(self, secure_id: str, if_none_match: str | None = None) -> DerivativeResponse:
        """Serve the derivative for a secure ID.

        Raises:
            NotFoundError(E_IMAGE_NOT_FOUND): No mapping and no derivative on disk.
            UpstreamError: Upstream failure with no derivative on disk to fall back to.
        """
        if not is_secure_id(secure_id):
            raise NotFoundError(ApiErrorCode.E_IMAGE_NOT_FOUND, "Image not found or expired")

        path = self.path_for(secure_id)
        st = await asyncio.to_thread(self._stat, path)

        if st is not None and self._is_fresh(st):
            return await self._respond_from_disk(secure_id, path, st, if_none_match)

        url = await asyncio.to_thread(self.mapping.resolve, secure_id)
        if url is None:
            if st is not None:
                logger.info("image_serving_orphaned", secure_id=secure_id)
                return await self._respond_from_disk(
                    secure_id, path, st, if_none_match, stale=True
                )
            raise NotFoundError(ApiErrorCode.E_IMAGE_NOT_FOUND, "Image not found or expired")

        try:
            data = await self._regenerate(url)
        except (UpstreamError, ImageTransformError) as e:
            if st is not None:
                logger.warning(
                    "image_regenerate_failed_serving_stale",
                    secure_id=secure_id,
                    url_fp=fingerprint(url),
                    error=str(e),
                )
                return await self._respond_from_disk(
                    secure_id, path, st, if_none_match, stale=True
                )
            if isinstance(e, ImageTransformError):
                raise UpstreamError(ApiErrorCode.E_IMAGE_FETCH_FAILED, str(e)) from e
            raise

        st = await asyncio.to_thread(self._persist, path, data)
        logger.info("image_derivative_generated", secure_id=secure_id, bytes=len(data))
        return self._respond(secure_id, data, st, if_none_match)

    async def _regenerate(self, url: str) -> bytes:
        source = await fetch_source_image(
            self.client, url, self.max_source_bytes, self.fetch_timeout_s
        )
        return await asyncio.to_thread(
            transform_image, source, self.max_width, self.max_height, self.quality
        )

    def _persist(self, path: Path, data: bytes) -> os.stat_result:
        """Atomically replace the derivative file and return its new stat."""
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_name(f".{path.stem}.tmp.{uuid4().hex}")
        try:
            tmp_path.write_bytes(data)
            os.replace(tmp_path, path)
        finally:
            delete_file(tmp_path)
        return path.stat()

    async def _respond_from_disk(
        self,
        secure_id: str,
        path: Path,
        st: os.stat_result,
        if_none_match: str | None,
        stale: bool = False,
    ) -> DerivativeResponse:
        etag = compute_etag(secure_id, st.st_mtime)
        if if_none_match and etags_match(if_none_match, etag):
            return DerivativeResponse(
                data=b"",
                etag=etag,
                last_modified=format_http_date(st.st_mtime),
                not_modified=True,
                stale=stale,
            )
        data = await asyncio.to_thread(path.read_bytes)
        return DerivativeResponse(
            data=data, etag=etag, last_modified=format_http_date(st.st_mtime), stale=stale
        )

    def _respond(
        self, secure_id: str, data: bytes, st: os.stat_result, if_none_match: str | None
    ) -> DerivativeResponse:
        etag = compute_etag(secure_id, st.st_mtime)
        last_modified = format_http_date(st.st_mtime)
        if if_none_match and etags_match(if_none_match, etag):
            return DerivativeResponse(
                data=b"", etag=etag, last_modified=last_modified, not_modified=True
            )
        return DerivativeResponse(data=data, etag=etag, last_modified=last_modified)

    def delete(self, secure_id: str) -> bool:
        """Remove the derivative for a secure ID; True if a file was removed."""
        return delete_file(self.path_for(secure_id))

    def sweep_retention(self, retention_s: float) -> int:
        """Delete derivatives not accessed or modified within retention_s.

        Returns:
            Number of derivatives removed.
        """
        if not self.directory.exists():
            return 0

        now = self.clock()
        removed = 0
        for path in self.directory.iterdir():
            if not path.is_file() or path.suffix != DERIVATIVE_SUFFIX:
                continue
            try:
                st = path.stat()
            except FileNotFoundError:
                continue
            last_access = max(st.st_atime, st.st_mtime)
            if now - last_access > retention_s:
                if delete_file(path):
                    removed += 1
        return removed
