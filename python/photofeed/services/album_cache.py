"""Album result cache: one record per canonical token.

Records hold the raw provider result. Staleness is recomputed on every
read; a stale record is still returned, flagged, never treated as a miss.

Two stored formats exist:
- RAW: provider result with upstream URLs, rewritten on every read
- REWRITTEN: legacy records whose derivative URLs already point at
  /api/image/...; served as-is and replaced by RAW on the next refresh

The format is decided once on read (migrate-on-read) and carried on the
returned entry so read paths never sniff shapes themselves.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

from photofeed.logging import get_logger
from photofeed.services.redact import fingerprint
from photofeed.services.state import ReloadingFlags
from photofeed.storage.records import CacheRecord, RecordStore

logger = get_logger(__name__)

REWRITTEN_URL_PREFIX = "/api/image/"


class AlbumFormat(str, Enum):
    RAW = "raw"
    REWRITTEN = "rewritten"


@dataclass(frozen=True)
class AlbumCacheEntry:
    """A cached album plus its freshness at read time."""

    value: dict[str, Any]
    is_stale: bool
    stored_at_ms: int
    format: AlbumFormat = AlbumFormat.RAW


def has_rewritten_urls(album: dict[str, Any]) -> bool:
    """Whether any derivative URL already points at the image endpoint."""
    for photo in album.get("photos") or []:
        if not isinstance(photo, dict):
            continue
        derivatives = photo.get("derivatives")
        if not isinstance(derivatives, dict):
            continue
        for derivative in derivatives.values():
            if not isinstance(derivative, dict):
                continue
            url = derivative.get("url")
            if isinstance(url, str) and url.startswith(REWRITTEN_URL_PREFIX):
                return True
    return False


def migrate_album_record(record: CacheRecord) -> tuple[dict[str, Any], AlbumFormat] | None:
    """Normalize a stored record into (album, format).

    Returns:
        None if the payload is not an album object.
    """
    value = record.value
    if not isinstance(value, dict):
        return None

    if record.is_legacy:
        # Legacy writers stored the response body, including its reloading field
        value = {k: v for k, v in value.items() if k != "reloading"}
        if has_rewritten_urls(value):
            return value, AlbumFormat.REWRITTEN

    return value, AlbumFormat.RAW


class AlbumCache:
    """Stale-while-revalidate storage for album results.

    Args:
        store: Record store for album files.
        flags: Shared reloading flags, cleared on every successful put.
        ttl_s: Freshness window in seconds.
    """

    def __init__(self, store: RecordStore, flags: ReloadingFlags, ttl_s: float):
        self.store = store
        self.flags = flags
        self.ttl_s = ttl_s

    def get(self, token: str) -> AlbumCacheEntry | None:
        """Return the cached album for a token, or None if missing or unreadable."""
        record = self.store.read(token)
        if record is None:
            return None

        migrated = migrate_album_record(record)
        if migrated is None:
            logger.warning("album_cache_record_invalid", token_fp=fingerprint(token))
            return None

        value, fmt = migrated
        return AlbumCacheEntry(
            value=value,
            is_stale=record.is_stale(self.ttl_s, self.store.now_ms()),
            stored_at_ms=record.stored_at_ms,
            format=fmt,
        )

    def put(self, token: str, value: dict[str, Any]) -> CacheRecord:
        """Store a fresh album result and clear the token's reloading flag."""
        try:
            return self.store.write(token, value)
        finally:
            self.flags.clear(token)

    def delete(self, token: str) -> bool:
        return self.store.delete(token)
