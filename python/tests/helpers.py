"""Test doubles and builders shared across test modules.

Provides:
- FakeClock for deterministic freshness
- FakeAlbumFetcher with call counting and optional gating
- Fakes for the media, transcription and summarization collaborators
- Album payload builders
"""

import asyncio
from pathlib import Path
from typing import Any

from photofeed.config import Settings
from photofeed.services.album_cache import AlbumCache
from photofeed.services.album_source import AlbumFetchError
from photofeed.services.albums import AlbumService
from photofeed.services.augmentation.service import AugmentationService
from photofeed.services.augmentation.transcript import Transcript
from photofeed.services.background import BackgroundTasks
from photofeed.services.secure_mapping import LOOKUP_PREFIX, SecureMapping
from photofeed.services.state import ReloadingFlags, TokenTracker
from photofeed.storage.records import RecordStore

START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(cache_dir: Path, **overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "PHOTOFEED_ENV": "test",
        "CACHE_DIR": str(cache_dir),
    }
    defaults.update(overrides)
    return Settings(**defaults)


def make_photo(
    guid: str,
    urls: dict[str, str],
    media_type: str | None = None,
    sizes: dict[str, tuple[int, int]] | None = None,
) -> dict[str, Any]:
    derivatives = {}
    for key, url in urls.items():
        width, height = (sizes or {}).get(key, (640, 480))
        derivatives[key] = {
            "checksum": f"{guid}-{key}",
            "fileSize": "1000",
            "width": str(width),
            "height": str(height),
            "url": url,
        }
    photo = {
        "photoGuid": guid,
        "caption": "",
        "dateCreated": "2024-05-01T10:00:00Z",
        "derivatives": derivatives,
    }
    if media_type:
        photo["mediaAssetType"] = media_type
    return photo


def make_album(*photos: dict[str, Any], name: str = "Holiday") -> dict[str, Any]:
    return {
        "metadata": {
            "streamName": name,
            "userFirstName": "Sam",
            "userLastName": "Doe",
            "streamCtag": "ctag-1",
            "itemsReturned": str(len(photos)),
            "locations": {"loc-1": {"latitude": 51.5, "longitude": -0.12}},
        },
        "photos": list(photos),
    }


def sample_album() -> dict[str, Any]:
    return make_album(
        make_photo(
            "photo-1",
            {
                "342": "https://cvws.icloud-content.com/S/photo-1-small.jpg?sig=abc",
                "2048": "https://cvws.icloud-content.com/S/photo-1-large.jpg?sig=def",
            },
        ),
        make_photo(
            "video-1",
            {
                "PosterFrame": "https://cvws.icloud-content.com/S/video-1-poster.jpg?sig=ghi",
                "360p": "https://cvws.icloud-content.com/S/video-1-360.mp4?sig=jkl",
                "720p": "https://cvws.icloud-content.com/S/video-1-720.mp4?sig=mno",
            },
            media_type="video",
            sizes={"360p": (640, 360), "720p": (1280, 720)},
        ),
    )


class FakeAlbumFetcher:
    """Album fetcher returning canned results.

    Set `gate` to an asyncio.Event to hold fetches until it is set.
    Set `error` to make every fetch fail.
    """

    def __init__(self, album: dict[str, Any] | None = None):
        self.album = album if album is not None else sample_album()
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.error: AlbumFetchError | None = None

    async def fetch_album(self, token: str) -> dict[str, Any]:
        self.calls.append(token)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.album


class FakeMedia:
    """Media collaborator with scripted behavior and call recording."""

    def __init__(
        self,
        duration: float | None = 60.0,
        download_error: Exception | None = None,
        extract_error: Exception | None = None,
    ):
        self.duration = duration
        self.download_error = download_error
        self.extract_error = extract_error
        self.calls: list[str] = []
        self.scratch_paths: list[Path] = []

    async def probe_duration(self, media_url: str) -> float | None:
        self.calls.append("probe")
        return self.duration

    async def download(self, media_url: str, dest: Path) -> Path:
        self.calls.append("download")
        if self.download_error is not None:
            raise self.download_error
        dest.write_bytes(b"fake-video")
        self.scratch_paths.append(dest)
        return dest

    async def extract_audio(self, media_file: Path, audio_file: Path) -> Path:
        self.calls.append("extract")
        if self.extract_error is not None:
            raise self.extract_error
        audio_file.write_bytes(b"fake-audio")
        self.scratch_paths.append(audio_file)
        return audio_file


class FakeTranscriber:
    def __init__(
        self,
        text: str = "",
        gate: asyncio.Event | None = None,
        error: Exception | None = None,
    ):
        self.text = text
        self.gate = gate
        self.error = error
        self.calls = 0

    async def transcribe(self, audio_file: Path) -> Transcript:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        words = self.text.split()
        offsets = []
        position = 0
        for word in words:
            offsets.append(position)
            position += len(word) + 1
        return Transcript(
            text=" ".join(words),
            word_timestamps=[i * 400 for i in range(len(words))],
            offsets=offsets,
        )


class FakeSummarizer:
    def __init__(self, summary: str = "Two friends talk about the beach trip."):
        self.summary = summary
        self.calls: list[tuple[str, int]] = []

    async def summarize(self, transcript: str, meaningful_words: int) -> str:
        self.calls.append((transcript, meaningful_words))
        return self.summary


SPEECH = (
    "We finally made it down to the beach after driving all morning and the kids "
    "could not wait to jump straight into the water while grandma watched from "
    "her chair under the big striped umbrella"
)


def build_mapping(directory: Path, clock: FakeClock, ttl_s: float = 86400) -> SecureMapping:
    return SecureMapping(
        forward=RecordStore(directory, clock=clock),
        lookup=RecordStore(directory, prefix=LOOKUP_PREFIX, clock=clock),
        ttl_s=ttl_s,
    )


def build_album_service(
    cache_dir: Path,
    clock: FakeClock,
    fetcher: FakeAlbumFetcher,
    augmentation: AugmentationService | None = None,
    ttl_s: float = 60,
) -> AlbumService:
    """AlbumService over real on-disk stores with fake upstream and clock."""
    return AlbumService(
        cache=AlbumCache(RecordStore(cache_dir / "albums", clock=clock), ReloadingFlags(), ttl_s),
        fetcher=fetcher,
        mapping=build_mapping(cache_dir / "mappings", clock),
        tracker=TokenTracker(10, 3600, clock),
        tasks=BackgroundTasks(),
        augmentation=augmentation,
    )
