"""Service graph construction.

The container is built once per app lifespan and stored on app.state.
It owns every piece of process-wide state (reloading flags, tracked
tokens, background tasks, the augmentation queue) so nothing lives in
module globals. Collaborators can be swapped in for tests.
"""

import asyncio
import time
from dataclasses import dataclass, field

import httpx

from photofeed.config import Settings
from photofeed.logging import get_logger
from photofeed.services.album_cache import AlbumCache
from photofeed.services.album_source import AlbumFetcher, ICloudAlbumFetcher
from photofeed.services.albums import AlbumService
from photofeed.services.augmentation.media import MediaTools
from photofeed.services.augmentation.pipeline import (
    AugmentationPipeline,
    MediaCollaborator,
    Summarizer,
    Transcriber,
)
from photofeed.services.augmentation.queue import JobQueue
from photofeed.services.augmentation.service import AugmentationService
from photofeed.services.augmentation.store import AugmentationStore
from photofeed.services.augmentation.summarizer import LLMSummarizer
from photofeed.services.augmentation.transcriber import WhisperCppTranscriber
from photofeed.services.background import BackgroundTasks, run_periodically
from photofeed.services.image_derivatives import ImageDerivativeCache
from photofeed.services.llm import OpenAIChatClient
from photofeed.services.secure_mapping import LOOKUP_PREFIX, SecureMapping
from photofeed.services.state import ReloadingFlags, TokenTracker
from photofeed.storage.paths import ensure_directories
from photofeed.storage.records import Clock, RecordStore
from photofeed.tasks.refresh_albums import refresh_tracked_albums
from photofeed.tasks.sweep_cache import sweep_cache

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    settings: Settings
    tasks: BackgroundTasks
    flags: ReloadingFlags
    tracker: TokenTracker
    mapping: SecureMapping
    images: ImageDerivativeCache
    albums: AlbumService
    augmentation: AugmentationService | None = None
    queue: JobQueue | None = None
    _periodic: list[asyncio.Task] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        settings: Settings,
        client: httpx.AsyncClient,
        *,
        clock: Clock = time.time,
        fetcher: AlbumFetcher | None = None,
        media: MediaCollaborator | None = None,
        transcriber: Transcriber | None = None,
        summarizer: Summarizer | None = None,
    ) -> "ServiceContainer":
        ensure_directories(
            settings.albums_dir,
            settings.images_dir,
            settings.mappings_dir,
            settings.augmentations_dir,
            settings.scratch_dir,
        )

        tasks = BackgroundTasks()
        flags = ReloadingFlags()
        tracker = TokenTracker(settings.max_tracked_tokens, settings.tracked_token_ttl_s, clock)

        mapping = SecureMapping(
            forward=RecordStore(settings.mappings_dir, clock=clock),
            lookup=RecordStore(settings.mappings_dir, prefix=LOOKUP_PREFIX, clock=clock),
            ttl_s=settings.mapping_ttl_s,
        )

        images = ImageDerivativeCache(
            settings.images_dir,
            mapping,
            client,
            ttl_s=settings.image_cache_ttl_s,
            max_width=settings.max_image_width,
            max_height=settings.max_image_height,
            quality=settings.image_quality,
            max_source_bytes=settings.max_source_image_bytes,
            fetch_timeout_s=settings.image_fetch_timeout_s,
            clock=clock,
        )

        augmentation, queue = cls._build_augmentation(
            settings, client, tasks, clock, media, transcriber, summarizer
        )

        albums = AlbumService(
            cache=AlbumCache(
                RecordStore(settings.albums_dir, clock=clock), flags, settings.album_cache_ttl_s
            ),
            fetcher=fetcher or ICloudAlbumFetcher(client, settings.album_fetch_timeout_s),
            mapping=mapping,
            tracker=tracker,
            tasks=tasks,
            augmentation=augmentation,
        )

        return cls(
            settings=settings,
            tasks=tasks,
            flags=flags,
            tracker=tracker,
            mapping=mapping,
            images=images,
            albums=albums,
            augmentation=augmentation,
            queue=queue,
        )

    @staticmethod
    def _build_augmentation(
        settings: Settings,
        client: httpx.AsyncClient,
        tasks: BackgroundTasks,
        clock: Clock,
        media: MediaCollaborator | None,
        transcriber: Transcriber | None,
        summarizer: Summarizer | None,
    ) -> tuple[AugmentationService | None, JobQueue | None]:
        if not settings.augmentation_enabled:
            logger.info("augmentation_disabled", reason="config")
            return None, None

        if summarizer is None:
            if not settings.openai_api_key:
                logger.warning("augmentation_disabled", reason="missing_openai_api_key")
                return None, None
            summarizer = LLMSummarizer(
                OpenAIChatClient(
                    client,
                    api_key=settings.openai_api_key,
                    timeout_s=settings.summary_timeout_s,
                ),
                model_name=settings.summary_model,
                max_tokens=settings.summary_max_tokens,
                conservative_words=settings.conservative_summary_words,
            )

        store = AugmentationStore(settings.augmentations_dir, clock)
        pipeline = AugmentationPipeline(
            store,
            media
            or MediaTools(
                client,
                ffmpeg_binary=settings.ffmpeg_binary,
                ffprobe_binary=settings.ffprobe_binary,
                probe_timeout_s=settings.probe_timeout_s,
                download_timeout_s=settings.media_download_timeout_s,
                extract_timeout_s=settings.audio_extract_timeout_s,
            ),
            transcriber
            or WhisperCppTranscriber(
                settings.whisper_binary, settings.whisper_model_path, settings.transcribe_timeout_s
            ),
            summarizer,
            settings.scratch_dir,
            min_duration_s=settings.min_media_duration_s,
            min_transcript_chars=settings.min_transcript_chars,
            max_marker_density=settings.quality_max_marker_density,
            min_meaningful_words=settings.quality_min_meaningful_words,
        )
        queue = JobQueue(settings.max_concurrent_augmentations)
        return AugmentationService(pipeline, queue, store, tasks), queue

    def start_periodic_jobs(self) -> None:
        """Start the album refresh loop and the disk sweep loop."""
        settings = self.settings

        async def refresh() -> None:
            await refresh_tracked_albums(
                self.albums, settings.refresh_batch_size, settings.refresh_batch_delay_s
            )

        async def sweep() -> None:
            await asyncio.to_thread(
                sweep_cache, self.mapping, self.images, settings.image_retention_ttl_s
            )

        self._periodic = [
            asyncio.create_task(
                run_periodically(refresh, settings.refresh_interval_s, name="refresh_albums"),
                name="periodic:refresh_albums",
            ),
            asyncio.create_task(
                run_periodically(sweep, settings.sweep_interval_s, name="sweep_cache"),
                name="periodic:sweep_cache",
            ),
        ]
        logger.info(
            "periodic_jobs_started",
            refresh_interval_s=settings.refresh_interval_s,
            sweep_interval_s=settings.sweep_interval_s,
        )

    async def aclose(self) -> None:
        """Stop periodic jobs, queued augmentation and detached tasks."""
        for task in self._periodic:
            task.cancel()
        await asyncio.gather(*self._periodic, return_exceptions=True)
        self._periodic = []
        if self.queue is not None:
            await self.queue.close()
        await self.tasks.cancel_all()
