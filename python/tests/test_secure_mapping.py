"""Tests for the secure reference mapping."""

import pytest

from photofeed.services.secure_mapping import (
    LOOKUP_PREFIX,
    SecureMapping,
    hash_url,
    is_secure_id,
)
from photofeed.storage.records import RecordStore
from tests.helpers import FakeClock

URL = "https://cvws.icloud-content.com/S/abc/IMG_0001.JPG?o=signed&e=123"


@pytest.fixture
def mapping_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def mapping(tmp_path, mapping_clock) -> SecureMapping:
    return SecureMapping(
        forward=RecordStore(tmp_path, clock=mapping_clock),
        lookup=RecordStore(tmp_path, prefix=LOOKUP_PREFIX, clock=mapping_clock),
        ttl_s=3600,
    )


class TestResolveOrCreate:
    def test_mints_opaque_id(self, mapping):
        secure_id = mapping.resolve_or_create(URL)

        assert is_secure_id(secure_id)
        assert "icloud" not in secure_id

    def test_idempotent(self, mapping):
        assert mapping.resolve_or_create(URL) == mapping.resolve_or_create(URL)

    def test_distinct_urls_get_distinct_ids(self, mapping):
        assert mapping.resolve_or_create(URL) != mapping.resolve_or_create(URL + "x")

    def test_writes_forward_and_lookup_records(self, mapping, tmp_path):
        secure_id = mapping.resolve_or_create(URL)

        assert (tmp_path / f"{secure_id}.json").exists()
        assert (tmp_path / f"{LOOKUP_PREFIX}{hash_url(URL)}.json").exists()

    def test_hash_collision_does_not_reuse_id(self, mapping):
        secure_id = mapping.resolve_or_create(URL)
        # Simulate another URL occupying the same lookup slot
        mapping.lookup.write(hash_url(URL), {"url": "https://other", "secureId": secure_id})

        assert mapping.resolve_or_create(URL) != secure_id

    def test_new_id_after_forward_record_removed(self, mapping):
        secure_id = mapping.resolve_or_create(URL)
        mapping.forward.delete(secure_id)

        assert mapping.resolve_or_create(URL) != secure_id


class TestResolve:
    def test_resolves_url(self, mapping):
        assert mapping.resolve(mapping.resolve_or_create(URL)) == URL

    @pytest.mark.parametrize("value", ["", "../../etc", "ABCDEF" * 6, "zz" * 16])
    def test_malformed_ids_unknown(self, mapping, value):
        assert mapping.resolve(value) is None

    def test_expired_record_deleted_on_read(self, mapping, mapping_clock):
        secure_id = mapping.resolve_or_create(URL)
        mapping_clock.advance(3601)

        assert mapping.resolve(secure_id) is None
        assert not mapping.forward.exists(secure_id)


class TestSweepExpired:
    def test_removes_expired_forward_and_lookup(self, mapping, mapping_clock):
        old_id = mapping.resolve_or_create(URL)
        mapping_clock.advance(3000)
        new_id = mapping.resolve_or_create(URL + "?fresh")
        mapping_clock.advance(700)

        result = mapping.sweep_expired()

        assert result.expired_ids == [old_id]
        assert not mapping.lookup.exists(hash_url(URL))
        assert mapping.resolve(new_id) == URL + "?fresh"

    def test_lookup_kept_when_pointing_at_newer_id(self, mapping, mapping_clock):
        old_id = mapping.resolve_or_create(URL)
        mapping_clock.advance(3601)
        mapping.forward.delete(old_id)
        new_id = mapping.resolve_or_create(URL)
        # Reinstate an expired forward record for the old ID
        mapping_clock.advance(-3601)
        mapping.forward.write(old_id, {"secureId": old_id, "url": URL})
        mapping_clock.advance(3601 + 100)

        mapping.sweep_expired()

        lookup = mapping.lookup.read(hash_url(URL))
        assert lookup is not None
        assert lookup.value["secureId"] == new_id

    def test_unreadable_records_skipped(self, mapping, tmp_path):
        (tmp_path / ("a" * 32 + ".json")).write_text("garbage")

        result = mapping.sweep_expired()

        assert result.skipped == 1
        assert result.expired_ids == []
