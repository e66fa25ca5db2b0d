"""Media augmentation: transcription and summarization of album videos."""

from photofeed.services.augmentation.errors import (
    AugmentationError,
    LinkExpiredError,
    MediaTimeoutError,
    ProcessingCrashError,
    TransientMediaError,
)
from photofeed.services.augmentation.pipeline import AugmentationPipeline
from photofeed.services.augmentation.queue import JobQueue
from photofeed.services.augmentation.service import AugmentationService
from photofeed.services.augmentation.store import AugmentationStore

__all__ = [
    "AugmentationError",
    "AugmentationPipeline",
    "AugmentationService",
    "AugmentationStore",
    "JobQueue",
    "LinkExpiredError",
    "MediaTimeoutError",
    "ProcessingCrashError",
    "TransientMediaError",
]
