"""Storage module for on-disk cache state.

Provides:
- RecordStore for timestamped JSON records keyed by sanitized identifiers
- Path/key sanitization shared by every cache directory
"""

from photofeed.storage.paths import ensure_directories, sanitize_key
from photofeed.storage.records import (
    CacheRecord,
    RecordStore,
    decode_record,
    delete_file,
    encode_record,
)

__all__ = [
    "CacheRecord",
    "RecordStore",
    "decode_record",
    "encode_record",
    "delete_file",
    "ensure_directories",
    "sanitize_key",
]
