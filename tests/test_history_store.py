from datetime import datetime, timedelta, timezone
import sqlite3

import pytest

from mergewatch.exceptions import CorruptRecordError, StorageError
from mergewatch.storage import (
    STALENESS_THRESHOLD,
    DiskHistoryStore,
    MemoryHistoryStore,
    RetryHistory,
)
from mergewatch.sweep import decruft


class Clock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(tmp_path, clock):
    with DiskHistoryStore(tmp_path / "history", clock=clock) as store:
        yield store


def test_loopback(store, clock):
    store.save("pandas", 5)
    clock.advance(timedelta(seconds=3))

    history = store.load("pandas")
    assert history.retry_count == 5
    assert history.age(clock()) == timedelta(seconds=3)

    assert store.delete("pandas")
    assert store.load("pandas") is None


def test_delete_absent_key_reports_false(store):
    assert store.delete("nothing-here") is False

    store.save("abc", 1)
    assert store.delete("abc") is True
    assert store.delete("abc") is False


def test_save_overwrites(store, clock):
    store.save("abc", 1)
    clock.advance(timedelta(minutes=1))
    store.save("abc", 2)

    history = store.load("abc")
    assert history.retry_count == 2
    assert history.last_update == clock()


def test_records_survive_reopening(tmp_path, clock):
    with DiskHistoryStore(tmp_path, clock=clock) as store:
        store.save("abc", 3)

    with DiskHistoryStore(tmp_path, clock=clock) as store:
        assert store.load("abc").retry_count == 3
        assert store.keys() == ["abc"]


def test_corrupt_record_raises_and_can_be_replaced(store):
    store.cache.set("abc", "{not json")

    with pytest.raises(CorruptRecordError):
        store.load("abc")

    assert store.delete("abc")
    assert store.load("abc") is None

    store.save("abc", 0)
    assert store.load("abc").retry_count == 0


def test_negative_count_is_corrupt(store):
    store.cache.set("abc", '{"retry_count": -1, "last_update": "2026-01-01T00:00:00Z"}')

    with pytest.raises(CorruptRecordError):
        store.load("abc")


def test_sweep_removes_stale_and_corrupt_records(store, clock):
    store.save("old", 1)
    clock.advance(STALENESS_THRESHOLD - timedelta(hours=1))
    store.save("fresh", 1)
    store.cache.set("broken", "garbage")
    clock.advance(timedelta(hours=1))

    removed = store.sweep()

    assert removed == 2
    assert store.keys() == ["fresh"]


def test_sweep_keeps_everything_younger_than_threshold(store, clock):
    store.save("a", 0)
    store.save("b", 4)
    clock.advance(timedelta(days=1))

    assert store.sweep() == 0
    assert sorted(store.keys()) == ["a", "b"]


def test_items_flags_corrupt_records(store):
    store.save("good", 2)
    store.cache.set("bad", "nope")

    items = dict(store.items())
    assert isinstance(items["good"], RetryHistory)
    assert items["bad"] is None


def test_memory_store_has_the_same_contract(clock):
    store = MemoryHistoryStore(clock=clock)

    assert store.load("abc") is None
    store.save("abc", 2)
    assert store.load("abc").retry_count == 2
    assert store.delete("abc") is True
    assert store.delete("abc") is False

    store.records["bad"] = "not json"
    with pytest.raises(CorruptRecordError):
        store.load("bad")

    store.save("stale", 1)
    clock.advance(STALENESS_THRESHOLD)
    assert store.sweep() == 2
    assert store.keys() == []


def test_retry_history_serialises_utc_timestamps():
    history = RetryHistory(
        retry_count=1, last_update=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    )
    raw = history.model_dump_json()

    assert "2026-03-01T12:00:00.000000Z" in raw
    assert RetryHistory.model_validate_json(raw) == history


def test_listing_failure_is_a_storage_error(store, monkeypatch, caplog):
    def fail():
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(store.cache, "iterkeys", fail)

    with pytest.raises(StorageError, match="database is locked"):
        store.keys()

    assert decruft(store) == 0
    assert "Could not clean retry history" in caplog.text
