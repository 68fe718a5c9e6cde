"""Tests for TTLCache and ReadWriteLock.

Covers TTL evaluation on read, stale policies, background cleanup of expired
records, error propagation and lock semantics.
"""

import threading
import time
from collections.abc import Generator
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from fedi_lookup.backends.sql import SQLStore
from fedi_lookup.cache import ReadWriteLock, StalePolicy, TTLCache
from fedi_lookup.errors import NoMatchingBackend, StorageFailure
from fedi_lookup.models import InstanceRecord
from fedi_lookup.registry import FactoryRegistry


@pytest.fixture
def cache(memory_store: SQLStore, clock) -> Generator[TTLCache, None, None]:
    """TTL cache over an in-memory SQLite store with a fixed clock."""
    ttl_cache = TTLCache(memory_store, clock=clock)
    yield ttl_cache
    ttl_cache.close()


class TestTTLCacheBasics:
    """Tests for get/set/delete through the cache."""

    def test_get_missing(self, cache: TTLCache) -> None:
        """Test a miss returns None."""
        assert cache.get("mastodon.social") is None

    def test_set_then_get(self, cache: TTLCache, sample_record: InstanceRecord) -> None:
        """Test a fresh record is returned unchanged."""
        cache.set(sample_record)

        result = cache.get("mastodon.social")
        assert result == sample_record
        assert cache.is_expired(result) is False

    def test_set_overwrites(
        self, cache: TTLCache, sample_record: InstanceRecord, clock
    ) -> None:
        """Test a second set replaces the record."""
        cache.set(sample_record)
        newer = sample_record.model_copy(update={"version": "4.3.0", "cached_at": clock()})
        cache.set(newer)

        assert cache.get("mastodon.social") == newer

    def test_delete(self, cache: TTLCache, sample_record: InstanceRecord) -> None:
        """Test delete removes the record."""
        cache.set(sample_record)
        cache.delete("mastodon.social")

        assert cache.get("mastodon.social") is None

    def test_delete_missing_is_noop(self, cache: TTLCache) -> None:
        """Test deleting an unknown key does not raise."""
        cache.delete("never-stored.example")

    def test_defaults(self, memory_store: SQLStore) -> None:
        """Test the default TTL and stale policy."""
        ttl_cache = TTLCache(memory_store)
        assert ttl_cache.ttl == timedelta(days=30)
        assert ttl_cache.stale_policy is StalePolicy.SERVE_STALE
        assert ttl_cache.store is memory_store


class TestTTLCacheExpiry:
    """Tests for expired records and background cleanup."""

    def test_expired_record_served_then_removed(
        self, cache: TTLCache, expired_record: InstanceRecord
    ) -> None:
        """Test an expired record is returned once and then cleaned up."""
        cache.set(expired_record)

        result = cache.get("old.example")
        assert result == expired_record
        assert cache.is_expired(result) is True

        assert cache.wait_for_cleanup(timeout=5) is True
        assert cache.get("old.example") is None

    def test_record_expires_as_clock_advances(
        self, cache: TTLCache, sample_record: InstanceRecord, clock
    ) -> None:
        """Test expiry is evaluated against the clock at read time."""
        cache.set(sample_record)
        assert cache.is_expired(cache.get("mastodon.social")) is False

        clock.advance(timedelta(days=30))
        result = cache.get("mastodon.social")
        assert result is not None
        assert cache.is_expired(result) is True

    def test_treat_as_miss_policy(
        self, memory_store: SQLStore, clock, expired_record: InstanceRecord
    ) -> None:
        """Test TREAT_AS_MISS hides expired records but still cleans up."""
        ttl_cache = TTLCache(
            memory_store, clock=clock, stale_policy=StalePolicy.TREAT_AS_MISS
        )
        ttl_cache.set(expired_record)

        assert ttl_cache.get("old.example") is None
        assert ttl_cache.wait_for_cleanup(timeout=5) is True
        assert memory_store.get("old.example") is None

    def test_cleanup_keeps_record_rewritten_after_read(
        self, clock, expired_record: InstanceRecord
    ) -> None:
        """Test a set between the expired read and the cleanup survives."""
        fresh = expired_record.model_copy(update={"cached_at": clock()})
        store = MagicMock()
        # The first read sees the expired record; cleanup re-reads the fresh one
        store.get.side_effect = [expired_record, fresh]
        ttl_cache = TTLCache(store, clock=clock)

        assert ttl_cache.get("old.example") == expired_record
        assert ttl_cache.wait_for_cleanup(timeout=5) is True

        store.delete.assert_not_called()

    def test_cleanup_skips_already_deleted(
        self, clock, expired_record: InstanceRecord
    ) -> None:
        """Test cleanup does nothing when the key is already gone."""
        store = MagicMock()
        store.get.side_effect = [expired_record, None]
        ttl_cache = TTLCache(store, clock=clock)

        ttl_cache.get("old.example")
        ttl_cache.wait_for_cleanup(timeout=5)

        store.delete.assert_not_called()

    def test_cleanup_errors_are_swallowed(
        self, clock, expired_record: InstanceRecord, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test a failing cleanup is logged and never reaches the caller."""
        store = MagicMock()
        store.get.return_value = expired_record
        store.delete.side_effect = StorageFailure("disk gone")
        ttl_cache = TTLCache(store, clock=clock)

        with caplog.at_level("WARNING", logger="fedi_lookup.cache"):
            assert ttl_cache.get("old.example") == expired_record
            assert ttl_cache.wait_for_cleanup(timeout=5) is True

        store.delete.assert_called_once_with("old.example")
        assert "disk gone" in caplog.text

    def test_cleanup_deduplicated_per_domain(
        self, clock, expired_record: InstanceRecord
    ) -> None:
        """Test repeated expired reads queue at most one pending cleanup."""
        release = threading.Event()
        store = MagicMock()
        store.get.return_value = expired_record
        ttl_cache = TTLCache(store, clock=clock)
        # Occupy the single cleanup worker so scheduled deletes stay pending
        ttl_cache._cleanup_executor.submit(release.wait, 5)

        for _ in range(5):
            ttl_cache.get("old.example")
        release.set()
        assert ttl_cache.wait_for_cleanup(timeout=5) is True

        store.delete.assert_called_once_with("old.example")


class TestTTLCacheErrors:
    """Tests for error propagation."""

    def test_storage_failure_on_get_propagates(self, clock) -> None:
        """Test store errors on read reach the caller unchanged."""
        store = MagicMock()
        store.get.side_effect = StorageFailure("read failed")
        ttl_cache = TTLCache(store, clock=clock)

        with pytest.raises(StorageFailure, match="read failed"):
            ttl_cache.get("mastodon.social")

    def test_storage_failure_on_set_propagates(
        self, clock, sample_record: InstanceRecord
    ) -> None:
        """Test store errors on write reach the caller unchanged."""
        store = MagicMock()
        store.set.side_effect = StorageFailure("write failed")
        ttl_cache = TTLCache(store, clock=clock)

        with pytest.raises(StorageFailure, match="write failed"):
            ttl_cache.set(sample_record)

    def test_storage_failure_on_delete_propagates(self, clock) -> None:
        """Test store errors on delete reach the caller unchanged."""
        store = MagicMock()
        store.delete.side_effect = StorageFailure("delete failed")
        ttl_cache = TTLCache(store, clock=clock)

        with pytest.raises(StorageFailure, match="delete failed"):
            ttl_cache.delete("mastodon.social")


class TestTTLCacheLifecycle:
    """Tests for construction from DSN and closing."""

    def test_from_dsn(self, sample_record: InstanceRecord) -> None:
        """Test from_dsn resolves a store through the registry."""
        with TTLCache.from_dsn(":memory:") as ttl_cache:
            ttl_cache.set(sample_record)
            assert ttl_cache.get("mastodon.social") == sample_record

    def test_from_dsn_with_custom_registry(self) -> None:
        """Test from_dsn honours an explicit registry."""
        with pytest.raises(NoMatchingBackend):
            TTLCache.from_dsn(":memory:", registry=FactoryRegistry())

    def test_close_closes_store_once(self) -> None:
        """Test close releases the store and is idempotent."""
        store = MagicMock()
        ttl_cache = TTLCache(store)

        ttl_cache.close()
        ttl_cache.close()

        store.close.assert_called_once()

    def test_no_cleanup_scheduled_after_close(
        self, clock, expired_record: InstanceRecord
    ) -> None:
        """Test expired reads after close do not submit cleanup work."""
        store = MagicMock()
        store.get.return_value = expired_record
        ttl_cache = TTLCache(store, clock=clock)
        ttl_cache.close()

        assert ttl_cache.get("old.example") == expired_record
        assert ttl_cache.wait_for_cleanup(timeout=1) is True
        store.delete.assert_not_called()


class TestReadWriteLock:
    """Tests for reader/writer lock semantics."""

    def test_readers_share(self) -> None:
        """Test several readers hold the lock at once."""
        lock = ReadWriteLock()
        inside = threading.Barrier(3, timeout=5)

        def reader() -> None:
            with lock.read_locked():
                inside.wait()

        threads = [threading.Thread(target=reader) for _ in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert not inside.broken

    def test_writer_excludes_readers(self) -> None:
        """Test a reader waits while a writer holds the lock."""
        lock = ReadWriteLock()
        events: list[str] = []
        lock.acquire_write()

        def reader() -> None:
            with lock.read_locked():
                events.append("read")

        thread = threading.Thread(target=reader)
        thread.start()
        time.sleep(0.05)
        events.append("write-done")
        lock.release_write()
        thread.join(timeout=5)

        assert events == ["write-done", "read"]

    def test_waiting_writer_blocks_new_readers(self) -> None:
        """Test writer preference: new readers queue behind a waiting writer."""
        lock = ReadWriteLock()
        events: list[str] = []
        lock.acquire_read()

        def writer() -> None:
            with lock.write_locked():
                events.append("write")

        def late_reader() -> None:
            with lock.read_locked():
                events.append("late-read")

        writer_thread = threading.Thread(target=writer)
        writer_thread.start()
        time.sleep(0.05)
        reader_thread = threading.Thread(target=late_reader)
        reader_thread.start()
        time.sleep(0.05)

        assert events == []
        lock.release_read()
        writer_thread.join(timeout=5)
        reader_thread.join(timeout=5)

        assert events == ["write", "late-read"]

    def test_lock_released_on_exception(self) -> None:
        """Test context managers release the lock when the block raises."""
        lock = ReadWriteLock()

        with pytest.raises(RuntimeError):
            with lock.write_locked():
                raise RuntimeError("boom")

        acquired = threading.Event()

        def writer() -> None:
            with lock.write_locked():
                acquired.set()

        thread = threading.Thread(target=writer)
        thread.start()
        thread.join(timeout=5)
        assert acquired.is_set()
