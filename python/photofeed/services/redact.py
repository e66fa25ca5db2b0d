"""Redaction helpers for log output.

Never-log policy:
- Album tokens (plaintext or encrypted)
- Upstream media/image URLs (they embed signed credentials)
- Transcript and summary text

Logs carry a short stable fingerprint instead, so related events can
still be correlated.
"""

import hashlib

FINGERPRINT_LENGTH = 12


def hash_text(value: str) -> str:
    """SHA-256 hex digest of a string.

    Stable: same input always produces same output.

    Args:
        value: Text to hash.

    Returns:
        Hex-encoded SHA-256 digest.
    """
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def fingerprint(value: str | None) -> str | None:
    """Short, stable fingerprint of a sensitive value for log correlation."""
    if value is None:
        return None
    return hash_text(value)[:FINGERPRINT_LENGTH]
