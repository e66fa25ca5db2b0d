"""Durable key-value record store.

Stores one JSON file per key. Each file holds a timestamped record:

    {"version": 2, "storedAt": <epoch ms>, "value": <any JSON>}

Staleness is never persisted. It is recomputed on every read from
storedAt and the caller's TTL, so a record cannot claim to be fresh
after its window has passed.

Earlier deployments wrote an unversioned shape
({"data": ..., "timestamp": ..., "reloading": ...} for albums and flat
{"url": ..., "timestamp": ...} objects for mappings). decode_record()
migrates those on read and tags them with LEGACY_RECORD_VERSION so
callers can apply their own compatibility rules.

Writes go to a temporary sibling file followed by os.replace(), so a
crashed write never leaves a truncated record behind.
"""

import json
import os
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from uuid import uuid4

from photofeed.logging import get_logger
from photofeed.storage.paths import sanitize_key

logger = get_logger(__name__)

CURRENT_RECORD_VERSION = 2
LEGACY_RECORD_VERSION = 1

# Fields of the legacy album shape that are bookkeeping, not payload
_LEGACY_META_FIELDS = frozenset({"timestamp", "reloading"})

Clock = Callable[[], float]


def now_ms(clock: Clock = time.time) -> int:
    """Current time in epoch milliseconds."""
    return int(clock() * 1000)


@dataclass(frozen=True)
class CacheRecord:
    """A stored value plus the moment it was written.

    Attributes:
        value: The JSON payload.
        stored_at_ms: Epoch milliseconds of the write.
        version: Record format version (LEGACY_RECORD_VERSION for migrated data).
    """

    value: Any
    stored_at_ms: int
    version: int = CURRENT_RECORD_VERSION

    def age_ms(self, at_ms: int) -> int:
        return at_ms - self.stored_at_ms

    def is_stale(self, ttl_s: float, at_ms: int) -> bool:
        """Whether the record is older than ttl_s at the given instant."""
        return self.age_ms(at_ms) > ttl_s * 1000

    @property
    def is_legacy(self) -> bool:
        return self.version == LEGACY_RECORD_VERSION


class RecordDecodeError(ValueError):
    """Raised when a file does not contain a recognizable record."""


def encode_record(record: CacheRecord) -> dict[str, Any]:
    """Serialize a record to its on-disk JSON shape."""
    return {
        "version": CURRENT_RECORD_VERSION,
        "storedAt": record.stored_at_ms,
        "value": record.value,
    }


def decode_record(raw: Any) -> CacheRecord:
    """Parse an on-disk JSON object into a CacheRecord, migrating legacy shapes.

    Raises:
        RecordDecodeError: If the object matches no known shape.
    """
    if not isinstance(raw, dict):
        raise RecordDecodeError("Record is not a JSON object")

    if "version" in raw and "storedAt" in raw:
        stored_at = raw["storedAt"]
        if not isinstance(stored_at, int | float):
            raise RecordDecodeError("storedAt is not a number")
        return CacheRecord(
            value=raw.get("value"),
            stored_at_ms=int(stored_at),
            version=int(raw["version"]),
        )

    # Legacy shapes carry a millisecond "timestamp"
    timestamp = raw.get("timestamp")
    if isinstance(timestamp, int | float):
        if "data" in raw:
            value = raw["data"]
        else:
            value = {k: v for k, v in raw.items() if k not in _LEGACY_META_FIELDS}
        return CacheRecord(
            value=value,
            stored_at_ms=int(timestamp),
            version=LEGACY_RECORD_VERSION,
        )

    raise RecordDecodeError("Unrecognized record shape")


class RecordStore:
    """File-per-key store of timestamped JSON records.

    Args:
        directory: Directory holding the record files.
        prefix: Optional filename prefix (used to keep lookup records apart).
        clock: Time source returning epoch seconds; injectable for tests.
    """

    SUFFIX = ".json"

    def __init__(self, directory: Path, prefix: str = "", clock: Clock = time.time):
        self.directory = directory
        self.prefix = prefix
        self.clock = clock

    def path_for(self, key: str) -> Path:
        """Return the file path backing a key."""
        return self.directory / f"{self.prefix}{sanitize_key(key)}{self.SUFFIX}"

    def now_ms(self) -> int:
        return now_ms(self.clock)

    def read(self, key: str) -> CacheRecord | None:
        """Read the record for a key.

        Returns:
            The record, or None if it is missing or unreadable.
        """
        return self.read_path(self.path_for(key))

    def read_path(self, path: Path) -> CacheRecord | None:
        """Read a record directly from a path (used by sweeps)."""
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("record_read_failed", file=path.name, error=str(e))
            return None

        try:
            return decode_record(raw)
        except RecordDecodeError as e:
            logger.warning("record_decode_failed", file=path.name, error=str(e))
            return None

    def write(self, key: str, value: Any) -> CacheRecord:
        """Write a fresh record for a key, stamped with the current time.

        Raises:
            OSError: If the file cannot be written.
        """
        record = CacheRecord(value=value, stored_at_ms=self.now_ms())
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_path = path.with_name(f".{path.name}.tmp.{uuid4().hex}")
        try:
            tmp_path.write_text(json.dumps(encode_record(record)), encoding="utf-8")
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

        return record

    def delete(self, key: str) -> bool:
        """Delete the record for a key.

        Returns:
            True if a file was removed.
        """
        return delete_file(self.path_for(key))

    def exists(self, key: str) -> bool:
        return self.path_for(key).exists()

    def iter_paths(self) -> Iterator[Path]:
        """Yield record files in the store directory that carry this store's prefix."""
        if not self.directory.exists():
            return
        for path in sorted(self.directory.iterdir()):
            if not path.is_file() or path.suffix != self.SUFFIX:
                continue
            if path.name.startswith("."):
                continue
            if self.prefix and not path.name.startswith(self.prefix):
                continue
            yield path


def delete_file(path: Path) -> bool:
    """Remove a file, treating "already gone" as success.

    Returns:
        True if a file was removed.
    """
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
