"""QuotaAwareStore unit tests."""

from __future__ import annotations

import json
from dataclasses import replace
from typing import Optional

import pytest

from modules.community.posts import FeedPost
from modules.storage.medium import (
    CapacityExceededError,
    FileStorageMedium,
    InMemoryStorageMedium,
    StorageUnavailableError,
)
from modules.storage.quota_store import QuotaAwareStore, StorageExhaustedError


class DummyMedium(InMemoryStorageMedium):
    """In-memory medium whose writes can be forced to fail."""

    def __init__(self, capacity_bytes: Optional[int] = None) -> None:
        super().__init__(capacity_bytes)
        self.fail_with: Optional[Exception] = None
        self.set_calls = 0

    def set(self, key: str, value: bytes) -> None:
        self.set_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        super().set(key, value)


def make_post(index: int, payload_size: int = 32) -> FeedPost:
    return FeedPost(
        id=f"post_{index:04d}",
        image_bytes=bytes([index % 256]) * payload_size,
        category="General",
        created_at=1000.0 + index,
    )


def record_size(post: FeedPost) -> int:
    return len(json.dumps(post.to_dict()).encode("utf-8")) + 2


def make_store(medium, max_items: int = 12, max_bytes: Optional[int] = None) -> QuotaAwareStore[FeedPost]:
    return QuotaAwareStore(medium, key="community", record_type=FeedPost, max_items=max_items, max_bytes=max_bytes)


def test_list_is_empty_for_missing_collection():
    assert make_store(DummyMedium()).list() == []


def test_thirteen_inserts_keep_twelve_newest():
    store = make_store(DummyMedium(), max_items=12)
    for index in range(13):
        store.insert(make_post(index))

    ids = [post.id for post in store.list()]

    assert len(ids) == 12
    assert "post_0000" not in ids
    assert ids == [f"post_{index:04d}" for index in range(12, 0, -1)]


def test_count_ceiling_holds_after_every_insert():
    store = make_store(DummyMedium(), max_items=5)
    for index in range(20):
        store.insert(make_post(index))
        expected = [f"post_{i:04d}" for i in range(index, max(-1, index - 5), -1)]
        assert [post.id for post in store.list()] == expected


def test_capacity_overflow_evicts_oldest_first():
    per_record = record_size(make_post(0, payload_size=900))
    medium = DummyMedium(capacity_bytes=int(per_record * 3.5))
    store = make_store(medium)

    for index in range(6):
        store.insert(make_post(index, payload_size=900))

    assert [post.id for post in store.list()] == ["post_0005", "post_0004", "post_0003"]
    assert medium.usage() <= medium.capacity_bytes


def test_newest_record_survives_repeated_overflow():
    per_record = record_size(make_post(0, payload_size=900))
    store = make_store(DummyMedium(capacity_bytes=int(per_record * 1.5)))

    for index in range(4):
        store.insert(make_post(index, payload_size=900))
        assert [post.id for post in store.list()] == [f"post_{index:04d}"]


def test_oversized_newest_record_displaces_all_history():
    medium = DummyMedium()
    store = make_store(medium)
    store.insert(make_post(1, payload_size=10))
    store.insert(make_post(2, payload_size=10))
    big = make_post(3, payload_size=900)
    medium.capacity_bytes = record_size(big) + 5

    store.insert(big)

    assert [post.id for post in store.list()] == ["post_0003"]


def test_storage_exhausted_when_single_record_never_fits():
    medium = DummyMedium()
    store = make_store(medium)
    store.insert(make_post(1))
    store.insert(make_post(2))
    medium.fail_with = CapacityExceededError("quota")

    with pytest.raises(StorageExhaustedError) as excinfo:
        store.insert(make_post(3))

    assert "storage" in excinfo.value.user_message.lower()
    medium.fail_with = None
    assert store.list() == []
    # full candidate (3 records), then 2, then 1, then one retry after clearing
    assert medium.set_calls == 2 + 4


def test_non_capacity_failure_leaves_collection_untouched():
    medium = DummyMedium()
    store = make_store(medium)
    store.insert(make_post(1))
    before = medium.get("community")
    medium.fail_with = StorageUnavailableError("disk gone")

    with pytest.raises(StorageUnavailableError):
        store.insert(make_post(2))

    assert medium.get("community") == before
    assert [post.id for post in store.list()] == ["post_0001"]


def test_duplicate_ids_are_rejected():
    store = make_store(DummyMedium())
    store.insert(make_post(1))

    with pytest.raises(ValueError):
        store.insert(make_post(1))
    assert len(store) == 1


@pytest.mark.parametrize(
    "blob",
    [b"{not json", b'{"id": "x"}', b'[{"id": "x"}]', b'[{"id": "x", "image": "!!"}]', b"\xff\xfe"],
)
def test_corrupt_collection_reads_as_empty(blob):
    medium = DummyMedium()
    medium.set("community", blob)
    store = make_store(medium)

    assert store.list() == []

    store.insert(make_post(7))
    assert [post.id for post in store.list()] == ["post_0007"]


def test_unknown_fields_are_ignored():
    medium = DummyMedium()
    entry = make_post(1).to_dict()
    entry["future_field"] = {"nested": True}
    medium.set("community", json.dumps([entry]).encode("utf-8"))

    assert [post.id for post in make_store(medium).list()] == ["post_0001"]


def test_remove_is_idempotent():
    medium = DummyMedium()
    store = make_store(medium)
    store.insert(make_post(1))
    store.insert(make_post(2))

    assert store.remove("post_0001") is True
    calls = medium.set_calls
    assert store.remove("post_0001") is False
    assert medium.set_calls == calls
    assert [post.id for post in store.list()] == ["post_0002"]


def test_update_applies_mutator_and_ignores_missing_ids():
    store = make_store(DummyMedium())
    store.insert(make_post(1))

    updated = store.update("post_0001", lambda post: replace(post, likes=post.likes + 3))

    assert updated is not None and updated.likes == 3
    assert store.get("post_0001").likes == 3
    assert store.update("missing", lambda post: replace(post, likes=99)) is None


def test_update_cannot_change_ids():
    store = make_store(DummyMedium())
    store.insert(make_post(1))

    with pytest.raises(ValueError):
        store.update("post_0001", lambda post: replace(post, id="other"))


def test_max_bytes_ceiling_evicts_like_medium_capacity():
    per_record = record_size(make_post(0, payload_size=600))
    store = make_store(DummyMedium(), max_bytes=int(per_record * 2.5))

    for index in range(4):
        store.insert(make_post(index, payload_size=600))

    assert [post.id for post in store.list()] == ["post_0003", "post_0002"]
    assert store.total_bytes() == 1200


def test_file_medium_round_trip_and_capacity(tmp_path):
    per_record = record_size(make_post(0, payload_size=900))
    medium = FileStorageMedium(tmp_path / "data", capacity_bytes=int(per_record * 2.5))
    store = make_store(medium)

    for index in range(3):
        store.insert(make_post(index, payload_size=900))

    reopened = make_store(FileStorageMedium(tmp_path / "data", capacity_bytes=medium.capacity_bytes))
    assert [post.id for post in reopened.list()] == ["post_0002", "post_0001"]
    assert not list((tmp_path / "data").glob(".tmp-*"))


def test_file_medium_missing_key_and_remove(tmp_path):
    medium = FileStorageMedium(tmp_path)

    assert medium.get("likes:viewer/one") is None
    medium.set("likes:viewer/one", b"[]")
    assert medium.get("likes:viewer/one") == b"[]"
    medium.remove("likes:viewer/one")
    medium.remove("likes:viewer/one")
    assert medium.get("likes:viewer/one") is None


def test_update_without_room_raises_storage_exhausted_and_keeps_blob():
    medium = DummyMedium()
    store = make_store(medium)
    store.insert(replace(make_post(1), likes=9))
    before = medium.get("community")
    medium.capacity_bytes = medium.usage()

    with pytest.raises(StorageExhaustedError):
        store.update("post_0001", lambda post: replace(post, likes=post.likes + 1))

    assert medium.get("community") == before
    assert store.get("post_0001").likes == 9
