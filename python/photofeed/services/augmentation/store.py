"""Augmentation records keyed by (album token, item ID).

Layout: {augmentations_dir}/{token}/{item_id}.json

Record values:
- success: {"transcript", "summary", "wordTimestamps", "offsetIndex", "processedAt"}
- skip:    {"skipped": true, "reason", ...diagnostics, "processedAt"}

Both are terminal. Transient failures leave no record; skip records with a
transient reason written by earlier versions are deleted on read so the
item is processed again.
"""

from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from photofeed.logging import get_logger
from photofeed.storage.paths import sanitize_key
from photofeed.storage.records import Clock, RecordStore

logger = get_logger(__name__)

TRANSIENT_SKIP_REASONS = frozenset({"link_expired", "download_failed", "network_error", "timeout"})


def utc_iso(clock: Clock) -> str:
    return datetime.fromtimestamp(clock(), tz=UTC).isoformat().replace("+00:00", "Z")


class AugmentationStore:
    def __init__(self, directory: Path, clock: Clock):
        self.directory = directory
        self.clock = clock

    def _store(self, token: str) -> RecordStore:
        return RecordStore(self.directory / sanitize_key(token), clock=self.clock)

    def get(self, token: str, item_id: str) -> dict[str, Any] | None:
        """Return the terminal record for an item, or None."""
        record = self._store(token).read(item_id)
        if record is None or not isinstance(record.value, dict):
            return None
        if record.value.get("skipped") and record.value.get("reason") in TRANSIENT_SKIP_REASONS:
            self.delete(token, item_id)
            logger.info("augmentation_transient_record_dropped", reason=record.value["reason"])
            return None
        return record.value

    def save_success(
        self,
        token: str,
        item_id: str,
        *,
        transcript: str,
        summary: str,
        word_timestamps: list[int],
        offsets: list[int],
    ) -> dict[str, Any]:
        value = {
            "transcript": transcript,
            "summary": summary,
            "wordTimestamps": word_timestamps,
            "offsetIndex": offsets,
            "processedAt": utc_iso(self.clock),
        }
        self._store(token).write(item_id, value)
        return value

    def save_skip(self, token: str, item_id: str, reason: str, **diagnostics: Any) -> dict[str, Any]:
        value = {
            "skipped": True,
            "reason": reason,
            **diagnostics,
            "processedAt": utc_iso(self.clock),
        }
        self._store(token).write(item_id, value)
        return value

    def delete(self, token: str, item_id: str) -> bool:
        return self._store(token).delete(item_id)
