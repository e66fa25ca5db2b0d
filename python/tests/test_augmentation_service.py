"""Tests for augmentation scheduling, dedupe and album integration."""

import asyncio

import pytest

from photofeed.services.augmentation.errors import LinkExpiredError
from photofeed.services.augmentation.pipeline import AugmentationPipeline
from photofeed.services.augmentation.queue import JobQueue
from photofeed.services.augmentation.service import AugmentationService
from photofeed.services.augmentation.store import AugmentationStore
from photofeed.services.background import BackgroundTasks
from tests.helpers import (
    SPEECH,
    FakeMedia,
    FakeSummarizer,
    FakeTranscriber,
    build_album_service,
    make_album,
    make_photo,
)

TOKEN = "B0aGWZuqDGm8ndm"
URL = "https://cvws.icloud-content.com/S/v.mp4"


def _service(tmp_path, clock, media=None, transcriber=None, max_concurrent=1):
    store = AugmentationStore(tmp_path / "augmentations", clock)
    pipeline = AugmentationPipeline(
        store,
        media or FakeMedia(),
        transcriber or FakeTranscriber(SPEECH),
        FakeSummarizer(),
        tmp_path / "scratch",
        min_duration_s=10,
        min_transcript_chars=20,
        max_marker_density=0.8,
        min_meaningful_words=20,
    )
    return AugmentationService(pipeline, JobQueue(max_concurrent), store, BackgroundTasks())


class TestSchedule:
    @pytest.mark.asyncio
    async def test_enqueues_and_records(self, tmp_path, clock):
        service = _service(tmp_path, clock)

        assert await service.schedule(TOKEN, "v1", URL) is True
        assert service.is_in_flight(TOKEN, "v1")

        await service.tasks.drain()

        assert not service.is_in_flight(TOKEN, "v1")
        assert "summary" in await service.get_record(TOKEN, "v1")

    @pytest.mark.asyncio
    async def test_duplicate_while_in_flight_ignored(self, tmp_path, clock):
        transcriber = FakeTranscriber(SPEECH, gate=asyncio.Event())
        service = _service(tmp_path, clock, transcriber=transcriber)

        assert await service.schedule(TOKEN, "v1", URL) is True
        assert await service.schedule(TOKEN, "v1", URL) is False

        transcriber.gate.set()
        await service.tasks.drain()
        assert transcriber.calls == 1

    @pytest.mark.asyncio
    async def test_concurrent_schedules_enqueue_once(self, tmp_path, clock):
        transcriber = FakeTranscriber(SPEECH, gate=asyncio.Event())
        service = _service(tmp_path, clock, transcriber=transcriber)

        results = await asyncio.gather(*(service.schedule(TOKEN, "v1", URL) for _ in range(5)))

        assert sorted(results) == [False, False, False, False, True]
        transcriber.gate.set()
        await service.tasks.drain()
        assert transcriber.calls == 1

    @pytest.mark.asyncio
    async def test_terminal_record_not_rescheduled(self, tmp_path, clock):
        service = _service(tmp_path, clock)
        await service.schedule(TOKEN, "v1", URL)
        await service.tasks.drain()

        assert await service.schedule(TOKEN, "v1", URL) is False

    @pytest.mark.asyncio
    async def test_transient_failure_allows_retry(self, tmp_path, clock):
        media = FakeMedia(download_error=LinkExpiredError(403))
        service = _service(tmp_path, clock, media=media)

        await service.schedule(TOKEN, "v1", URL)
        await service.tasks.drain()

        assert await service.get_record(TOKEN, "v1") is None
        assert not service.is_in_flight(TOKEN, "v1")

        media.download_error = None
        assert await service.schedule(TOKEN, "v1", URL) is True
        await service.tasks.drain()
        assert "summary" in await service.get_record(TOKEN, "v1")

    @pytest.mark.asyncio
    async def test_burst_respects_concurrency_limit(self, tmp_path, clock):
        transcriber = FakeTranscriber(SPEECH, gate=asyncio.Event())
        service = _service(tmp_path, clock, transcriber=transcriber, max_concurrent=2)

        for i in range(6):
            await service.schedule(TOKEN, f"v{i}", URL)
        await asyncio.sleep(0.05)

        assert service.queue.running == 2
        transcriber.gate.set()
        await service.tasks.drain()

        assert service.queue.peak_running == 2
        assert transcriber.calls == 6


class TestAlbumIntegration:
    @pytest.mark.asyncio
    async def test_album_fetch_schedules_videos(self, tmp_path, clock, fetcher):
        transcriber = FakeTranscriber(SPEECH, gate=asyncio.Event())
        augmentation = _service(tmp_path, clock, transcriber=transcriber)
        albums = build_album_service(tmp_path, clock, fetcher, augmentation=augmentation)

        await albums.get_album(TOKEN)

        assert augmentation.is_in_flight(TOKEN, "video-1")
        assert not augmentation.is_in_flight(TOKEN, "photo-1")
        transcriber.gate.set()
        await augmentation.tasks.drain()
        assert await augmentation.get_record(TOKEN, "video-1") is not None

    @pytest.mark.asyncio
    async def test_find_video_uses_cached_album(self, tmp_path, clock, fetcher):
        fetcher.album = make_album(
            make_photo("clip", {"720p": "https://x/clip.mp4"}, media_type="video")
        )
        albums = build_album_service(tmp_path, clock, fetcher)

        assert await albums.find_video(TOKEN, "clip") is None
        await albums.get_album(TOKEN)

        video = await albums.find_video(TOKEN, "clip")
        assert video.media_url == "https://x/clip.mp4"
        assert await albums.find_video(TOKEN, "missing") is None
