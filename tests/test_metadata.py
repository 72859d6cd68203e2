import pytest

from tierfs.metadata import Metadata, MetadataStore
from tierfs.popularity import INITIAL_POPULARITY


@pytest.fixture
def store():
    with MetadataStore(":memory:") as s:
        yield s


def test_default_popularity_is_initial():
    assert Metadata().popularity == INITIAL_POPULARITY
    assert Metadata().access_count == 0
    assert Metadata().pinned is False


def test_serialize_round_trip():
    meta = Metadata(tier_path="/mnt/fast", access_count=7, popularity=12.5, pinned=True)
    again = Metadata.deserialize(meta.serialize())
    assert again == meta
    assert again.not_found is False


def test_deserialize_rejects_garbage():
    with pytest.raises(ValueError):
        Metadata.deserialize("not a record")
    with pytest.raises(ValueError):
        Metadata.deserialize('{"tier_path": "/x"}')


def test_load_missing_without_tier(store):
    meta = Metadata.load("a/b.txt", store)
    assert meta.not_found is True
    assert store.get("a/b.txt") is None


def test_load_missing_with_tier_creates_record(store):
    meta = Metadata.load("a/b.txt", store, "/mnt/fast")
    assert meta.not_found is False
    assert meta.tier_path == "/mnt/fast"
    assert Metadata.deserialize(store.get("a/b.txt")) == meta


def test_load_existing(store):
    Metadata(tier_path="/mnt/slow", access_count=3).update("f", store)
    meta = Metadata.load("f", store, "/mnt/fast")
    assert meta.tier_path == "/mnt/slow"
    assert meta.access_count == 3


def test_update_with_old_key_moves_record(store):
    meta = Metadata(tier_path="/mnt/fast")
    meta.update("old", store)
    meta.update("new", store, old_key="old")
    assert store.get("old") is None
    assert Metadata.deserialize(store.get("new")).tier_path == "/mnt/fast"


def test_touch_counts_accesses():
    meta = Metadata()
    meta.touch()
    meta.touch()
    assert meta.access_count == 2


def test_dump_stats_mentions_fields():
    text = Metadata(tier_path="/mnt/fast", pinned=True).dump_stats()
    assert "/mnt/fast" in text
    assert "Pinned: true" in text


def test_store_items_sorted_and_delete(store):
    store.put("b", "2")
    store.put("a", "1")
    store.put("c", "3")
    store.delete("b")
    store.delete("missing")
    assert list(store.items()) == [("a", "1"), ("c", "3")]


def test_store_persists_on_disk(tmp_path):
    db = tmp_path / "db.sqlite"
    with MetadataStore(db) as s:
        s.put("k", "v")
    with MetadataStore(db) as s:
        assert s.get("k") == "v"


def test_closed_store_raises():
    s = MetadataStore()
    s.close()
    with pytest.raises(ValueError):
        s.get("k")