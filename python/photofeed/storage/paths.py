"""Cache path building utilities.

This module is the single point of logic for turning identifiers into
filesystem names. Every persisted artifact (album record, mapping record,
derivative blob, augmentation record) is keyed through sanitize_key().

Path Invariant:
    {CACHE_DIR}/albums/{sanitized_token}.json
    {CACHE_DIR}/mappings/{secure_id}.json
    {CACHE_DIR}/mappings/_lookup_{url_hash}.json
    {CACHE_DIR}/images/{secure_id}.jpg
    {CACHE_DIR}/augmentations/{sanitized_token}/{sanitized_item_id}.json

Rules:
    - Only [A-Za-z0-9_-] survive sanitization; everything else becomes "_"
    - Keys are never empty after sanitization
"""

import re
from pathlib import Path

UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_-]")

# Longest filename component we produce; well under common 255-byte limits
MAX_KEY_LENGTH = 200


def sanitize_key(key: str) -> str:
    """Make an identifier safe for use as a filename.

    Args:
        key: Arbitrary identifier (album token, item GUID, secure ID).

    Returns:
        Filesystem-safe key.

    Raises:
        ValueError: If the key is empty.
    """
    if not key:
        raise ValueError("Cache key must not be empty")
    return UNSAFE_KEY_CHARS.sub("_", key)[:MAX_KEY_LENGTH]


def ensure_directories(*directories: Path) -> None:
    """Create cache directories if they do not exist yet."""
    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)
