"""Secure reference mapping: opaque public ID <-> private upstream URL.

Clients never see upstream image URLs (they embed signed credentials).
Each URL is represented by an unguessable secure ID minted from the OS
CSPRNG; the ID is never derived from the URL, so IDs cannot be enumerated.

Two records exist per URL:
- forward record, keyed by secure ID:      {"secureId", "url"}
- lookup record, keyed by H(url)[:16]:     {"url", "secureId"}

The lookup hash is only a shard key. Collisions are tolerated because the
stored URL is compared verbatim before an existing ID is reused.

The mapping is a cache, not a permanent identity: once a forward record
expires or is deleted, the next resolve_or_create() mints a new ID and
overwrites the lookup record. Concurrent calls for the same URL may mint
two IDs; both stay valid, at worst duplicating a derivative on disk.
"""

import hashlib
import secrets
from dataclasses import dataclass

from photofeed.logging import get_logger
from photofeed.services.redact import fingerprint
from photofeed.storage.records import RecordStore, delete_file

logger = get_logger(__name__)

LOOKUP_PREFIX = "_lookup_"

# 16 random bytes, hex encoded
SECURE_ID_BYTES = 16

# Truncated SHA-256 hex used as the lookup shard key
URL_HASH_LENGTH = 16


def generate_secure_id() -> str:
    """Mint a new unguessable secure ID."""
    return secrets.token_hex(SECURE_ID_BYTES)


def hash_url(url: str) -> str:
    """Deterministic lookup key for a URL."""
    return hashlib.sha256(url.encode("utf-8")).hexdigest()[:URL_HASH_LENGTH]


def is_secure_id(value: str) -> bool:
    """Whether a string has the shape of a minted secure ID."""
    if len(value) != SECURE_ID_BYTES * 2:
        return False
    try:
        int(value, 16)
    except ValueError:
        return False
    return value == value.lower()


@dataclass(frozen=True)
class SweepResult:
    """Outcome of an expiry sweep over forward records."""

    expired_ids: list[str]
    skipped: int


class SecureMapping:
    """Bijective, deduplicated mapping between secure IDs and upstream URLs.

    Args:
        forward: Store of forward records (secure ID -> URL).
        lookup: Store of lookup records (URL hash -> secure ID).
        ttl_s: Lifetime of a forward record in seconds.
    """

    def __init__(self, forward: RecordStore, lookup: RecordStore, ttl_s: float):
        self.forward = forward
        self.lookup = lookup
        self.ttl_s = ttl_s

    def resolve_or_create(self, url: str) -> str:
        """Return the secure ID for a URL, minting one if needed.

        Idempotent while both records remain on disk.
        """
        url_hash = hash_url(url)
        existing = self.lookup.read(url_hash)

        if existing is not None and isinstance(existing.value, dict):
            secure_id = existing.value.get("secureId")
            if (
                existing.value.get("url") == url
                and isinstance(secure_id, str)
                and self.forward.exists(secure_id)
            ):
                return secure_id

        secure_id = generate_secure_id()
        self.forward.write(secure_id, {"secureId": secure_id, "url": url})
        self.lookup.write(url_hash, {"url": url, "secureId": secure_id})

        logger.debug("secure_mapping_created", url_fp=fingerprint(url), url_hash=url_hash)
        return secure_id

    def resolve(self, secure_id: str) -> str | None:
        """Return the upstream URL for a secure ID, or None if unknown or expired.

        Expired forward records are deleted on read.
        """
        if not is_secure_id(secure_id):
            return None

        record = self.forward.read(secure_id)
        if record is None or not isinstance(record.value, dict):
            return None

        if record.is_stale(self.ttl_s, self.forward.now_ms()):
            self.forward.delete(secure_id)
            logger.debug("secure_mapping_expired", secure_id=secure_id)
            return None

        url = record.value.get("url")
        return url if isinstance(url, str) else None

    def sweep_expired(self) -> SweepResult:
        """Delete every forward record past its TTL, plus its lookup record.

        Unreadable files are skipped and counted; the sweep never aborts.
        """
        now = self.forward.now_ms()
        expired: list[str] = []
        skipped = 0

        for path in self.forward.iter_paths():
            if path.name.startswith(LOOKUP_PREFIX):
                continue
            record = self.forward.read_path(path)
            if record is None or not isinstance(record.value, dict):
                skipped += 1
                continue
            if not record.is_stale(self.ttl_s, now):
                continue

            secure_id = path.stem
            delete_file(path)
            expired.append(secure_id)

            url = record.value.get("url")
            if isinstance(url, str):
                lookup = self.lookup.read(hash_url(url))
                # Only drop the lookup if it still points at the expired ID
                if lookup is not None and isinstance(lookup.value, dict):
                    if lookup.value.get("secureId") == secure_id:
                        self.lookup.delete(hash_url(url))

        return SweepResult(expired_ids=expired, skipped=skipped)
