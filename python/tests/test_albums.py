"""Tests for the album read path.

Covers:
- Cold miss, fresh hit and stale-while-revalidate reads
- One background refresh per token at a time
- Response rewriting (secure image references, blanked locations)
- Legacy records and token canonicalization
- Video discovery
"""

import asyncio
import json

import pytest

from photofeed.errors import ApiError, ApiErrorCode
from photofeed.services.album_source import AlbumFetchError
from photofeed.services.albums import (
    AlbumService,
    best_video_url,
    discover_videos,
    rewrite_album,
)
from photofeed.services.secure_mapping import SecureMapping
from photofeed.services.tokens import encrypt_token
from tests.helpers import build_album_service, make_album, make_photo, sample_album

TOKEN = "B0aGWZuqDGm8ndm"


@pytest.fixture
def service(tmp_path, clock, fetcher) -> AlbumService:
    return build_album_service(tmp_path, clock, fetcher)


@pytest.fixture
def mapping(service) -> SecureMapping:
    return service.mapping


def _urls(album: dict) -> list[str]:
    return [
        d["url"] for p in album["photos"] for d in p["derivatives"].values() if "url" in d
    ]


# =============================================================================
# Rewriting
# =============================================================================


class TestRewriteAlbum:
    def test_image_urls_replaced(self, mapping):
        rewritten = rewrite_album(sample_album(), mapping)

        image_urls = [u for u in _urls(rewritten) if ".mp4" not in u]
        assert image_urls
        for url in image_urls:
            assert url.startswith("/api/image/")
            assert url.endswith(".jpg")
            assert "icloud" not in url

    def test_video_urls_kept(self, mapping):
        rewritten = rewrite_album(sample_album(), mapping)
        assert any(".mp4" in u and u.startswith("https://") for u in _urls(rewritten))

    def test_locations_blanked(self, mapping):
        assert rewrite_album(sample_album(), mapping)["metadata"]["locations"] == {}

    def test_input_not_mutated(self, mapping):
        album = sample_album()
        rewrite_album(album, mapping)
        assert album == sample_album()

    def test_rewritten_urls_resolve_back(self, mapping):
        rewritten = rewrite_album(sample_album(), mapping)
        reference = rewritten["photos"][0]["derivatives"]["342"]["url"]
        secure_id = reference.removeprefix("/api/image/").removesuffix(".jpg")

        assert mapping.resolve(secure_id) == sample_album()["photos"][0]["derivatives"]["342"]["url"]

    def test_stable_across_reads(self, mapping):
        first = rewrite_album(sample_album(), mapping)
        second = rewrite_album(sample_album(), mapping)
        assert _urls(first) == _urls(second)


# =============================================================================
# Video Discovery
# =============================================================================


class TestVideoDiscovery:
    def test_highest_resolution_mp4_chosen(self):
        videos = discover_videos(sample_album())

        assert [v.item_id for v in videos] == ["video-1"]
        assert "720" in videos[0].media_url

    def test_video_asset_without_mp4_marker(self):
        photo = make_photo(
            "v",
            {"PosterFrame": "https://x/poster.jpg", "720p": "https://x/stream"},
            media_type="video",
        )
        assert best_video_url(photo) == "https://x/stream"

    def test_photos_without_video(self):
        album = make_album(make_photo("p", {"342": "https://x/a.jpg"}))
        assert discover_videos(album) == []


# =============================================================================
# Read Path
# =============================================================================


class TestGetAlbum:
    @pytest.mark.asyncio
    async def test_cold_miss_fetches_and_rewrites(self, service, fetcher):
        body = await service.get_album(TOKEN)

        assert fetcher.calls == [TOKEN]
        assert body["reloading"] is False
        assert body["metadata"]["locations"] == {}
        assert body["photos"][0]["derivatives"]["342"]["url"].startswith("/api/image/")

    @pytest.mark.asyncio
    async def test_stored_record_is_raw(self, service):
        await service.get_album(TOKEN)

        entry = service.cache.get(TOKEN)
        assert entry.value == sample_album()

    @pytest.mark.asyncio
    async def test_fresh_hit_does_not_fetch(self, service, fetcher):
        await service.get_album(TOKEN)
        await service.get_album(TOKEN)

        assert len(fetcher.calls) == 1

    @pytest.mark.asyncio
    async def test_stale_read_serves_stale_and_refreshes(self, service, fetcher, clock):
        await service.get_album(TOKEN)
        clock.advance(120)
        fetcher.album = make_album(make_photo("new", {"342": "https://x/new.jpg"}), name="New")

        body = await service.get_album(TOKEN)
        assert body["reloading"] is True
        assert body["metadata"]["streamName"] == "Holiday"

        await service.tasks.drain()

        assert len(fetcher.calls) == 2
        assert not service.flags.is_reloading(TOKEN)
        refreshed = await service.get_album(TOKEN)
        assert refreshed["reloading"] is False
        assert refreshed["metadata"]["streamName"] == "New"

    @pytest.mark.asyncio
    async def test_single_refresh_in_flight(self, service, fetcher, clock):
        await service.get_album(TOKEN)
        clock.advance(120)
        fetcher.gate = asyncio.Event()

        bodies = await asyncio.gather(*(service.get_album(TOKEN) for _ in range(5)))

        assert all(body["reloading"] for body in bodies)
        fetcher.gate.set()
        await service.tasks.drain()
        assert len(fetcher.calls) == 2

    @pytest.mark.asyncio
    async def test_failed_background_refresh_clears_flag(self, service, fetcher, clock):
        await service.get_album(TOKEN)
        clock.advance(120)
        fetcher.error = AlbumFetchError("down", status_code=503)

        body = await service.get_album(TOKEN)
        await service.tasks.drain()

        assert body["metadata"]["streamName"] == "Holiday"
        assert not service.flags.is_reloading(TOKEN)

        # The next stale read starts another refresh
        await service.get_album(TOKEN)
        await service.tasks.drain()
        assert len(fetcher.calls) == 3

    @pytest.mark.asyncio
    async def test_cold_miss_failure(self, service, fetcher):
        fetcher.error = AlbumFetchError("down", status_code=503)

        with pytest.raises(ApiError) as exc_info:
            await service.get_album(TOKEN)
        assert exc_info.value.code == ApiErrorCode.E_ALBUM_FETCH_FAILED

    @pytest.mark.asyncio
    async def test_cold_miss_timeout(self, service, fetcher):
        fetcher.error = AlbumFetchError("slow", timeout=True)

        with pytest.raises(ApiError) as exc_info:
            await service.get_album(TOKEN)
        assert exc_info.value.code == ApiErrorCode.E_UPSTREAM_TIMEOUT

    @pytest.mark.asyncio
    async def test_invalid_token_never_fetches(self, service, fetcher):
        with pytest.raises(ApiError) as exc_info:
            await service.get_album("bad/token")

        assert exc_info.value.code == ApiErrorCode.E_INVALID_TOKEN
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_encrypted_token_shares_cache_entry(self, service, fetcher, encryption_key):
        await service.get_album(TOKEN)
        await service.get_album(encrypt_token(TOKEN))

        assert fetcher.calls == [TOKEN]

    @pytest.mark.asyncio
    async def test_read_tracks_token(self, service):
        await service.get_album(TOKEN)
        assert TOKEN in service.tracker

    @pytest.mark.asyncio
    async def test_legacy_rewritten_record_served_as_is(self, service, fetcher):
        album = make_album(make_photo("p", {"342": "/api/image/" + "b" * 32 + ".jpg"}))
        legacy = {"data": album, "timestamp": service.cache.store.now_ms(), "reloading": True}
        path = service.cache.store.path_for(TOKEN)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(legacy))

        body = await service.get_album(TOKEN)

        assert fetcher.calls == []
        assert body["photos"][0]["derivatives"]["342"]["url"] == "/api/image/" + "b" * 32 + ".jpg"
        assert body["reloading"] is False
