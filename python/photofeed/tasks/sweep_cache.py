"""Disk sweep: reclaim expired mappings and long-unused derivatives.

- Forward mapping records older than MAPPING_TTL_S are deleted together
  with their lookup records and their derivative blob
- Derivative blobs whose last access/modification is older than
  IMAGE_RETENTION_TTL_S are deleted
- Unreadable files are skipped and counted; the sweep never aborts
"""

from dataclasses import dataclass

from photofeed.logging import configure_task_logging, get_logger
from photofeed.services.image_derivatives import ImageDerivativeCache
from photofeed.services.secure_mapping import SecureMapping

logger = get_logger(__name__)


@dataclass(frozen=True)
class SweepReport:
    expired_mappings: int
    skipped_records: int
    removed_images: int


def sweep_cache(
    mapping: SecureMapping, images: ImageDerivativeCache, retention_s: float
) -> SweepReport:
    """Run one sweep. Blocking; call through asyncio.to_thread from async code."""
    configure_task_logging(task_name="sweep_cache")

    mappings = mapping.sweep_expired()
    removed_images = sum(1 for secure_id in mappings.expired_ids if images.delete(secure_id))
    removed_images += images.sweep_retention(retention_s)

    report = SweepReport(
        expired_mappings=len(mappings.expired_ids),
        skipped_records=mappings.skipped,
        removed_images=removed_images,
    )
    if report.expired_mappings or report.removed_images or report.skipped_records:
        logger.info(
            "cache_swept",
            expired_mappings=report.expired_mappings,
            skipped_records=report.skipped_records,
            removed_images=report.removed_images,
        )
    return report
