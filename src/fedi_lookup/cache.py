"""TTL cache over a pluggable backend store.

The cache is the only object the rest of the system talks to. It wraps one
:class:`~fedi_lookup.backends.base.BackendStore`, applies a fixed time-to-live
on read and serializes access with a reader/writer lock:

- ``get`` takes the shared lock; any number of readers run concurrently.
- ``set`` and ``delete`` take the exclusive lock.

Expired records are cleaned up lazily. A ``get`` that finds an expired record
schedules a background delete and, under the default ``SERVE_STALE`` policy,
still returns the record; callers check ``is_expired`` to decide whether to
trust it. Cleanup failures are logged and never reach the caller.

Example:
    ```python
    with TTLCache.from_dsn(":memory:") as cache:
        cache.set(InstanceRecord(domain="mastodon.social", software="mastodon"))
        record = cache.get("mastodon.social")
    ```
"""

import logging
import threading
from collections.abc import Callable, Iterator
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from datetime import datetime, timedelta
from enum import Enum
from types import TracebackType
from typing import TYPE_CHECKING, Any

from fedi_lookup.backends.base import BackendStore
from fedi_lookup.models import CACHE_TTL, InstanceRecord, utcnow

if TYPE_CHECKING:
    from fedi_lookup.registry import FactoryRegistry

logger = logging.getLogger("fedi_lookup.cache")


class StalePolicy(str, Enum):
    """What ``TTLCache.get`` returns for an expired record."""

    SERVE_STALE = "serve_stale"  # Return it; cleanup runs in the background
    TREAT_AS_MISS = "treat_as_miss"  # Return None; cleanup runs in the background


class ReadWriteLock:
    """Reader/writer lock with writer preference.

    Many readers may hold the lock at once; a writer holds it alone. Once a
    writer is waiting, new readers queue behind it so writers cannot starve.
    Not reentrant.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._condition:
            while self._writer or self._writers_waiting:
                self._condition.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._condition:
            self._readers -= 1
            if self._readers == 0:
                self._condition.notify_all()

    def acquire_write(self) -> None:
        with self._condition:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._condition.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._condition:
            self._writer = False
            self._condition.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        """Hold the shared lock for the duration of the block."""
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        """Hold the exclusive lock for the duration of the block."""
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class TTLCache:
    """Thread-safe, TTL-bounded cache of :class:`InstanceRecord` objects.

    Storage errors from the backend (:class:`~fedi_lookup.errors.StorageFailure`)
    propagate to the caller unchanged; nothing is retried.
    """

    def __init__(
        self,
        store: BackendStore,
        ttl: timedelta = CACHE_TTL,
        clock: Callable[[], datetime] = utcnow,
        stale_policy: StalePolicy = StalePolicy.SERVE_STALE,
    ):
        """Wrap ``store``.

        Args:
            store: Backend store that persists the records.
            ttl: Maximum record age before it counts as expired.
            clock: Returns the current UTC time; injectable for tests.
            stale_policy: Whether expired records are returned or hidden.
        """
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._stale_policy = StalePolicy(stale_policy)
        self._lock = ReadWriteLock()

        self._cleanup_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="ttl-cache-cleanup"
        )
        self._pending: dict[str, Future[None]] = {}
        self._pending_lock = threading.Lock()
        self._closed = False

        logger.info(
            f"Initialized TTL cache over {store!r} "
            f"(ttl={ttl}, stale_policy={self._stale_policy.value})"
        )

    @classmethod
    def from_dsn(
        cls,
        dsn: str,
        registry: "FactoryRegistry | None" = None,
        **kwargs: Any,
    ) -> "TTLCache":
        """Resolve ``dsn`` to a backend store and wrap it.

        Raises:
            NoMatchingBackend: If no backend handles ``dsn``.
            BackendUnavailable: If the backend fails its probe or schema setup.
        """
        from fedi_lookup.registry import open_store

        return cls(open_store(dsn, registry), **kwargs)

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def stale_policy(self) -> StalePolicy:
        return self._stale_policy

    @property
    def store(self) -> BackendStore:
        """The wrapped backend store."""
        return self._store

    def is_expired(self, record: InstanceRecord) -> bool:
        """Check ``record`` against this cache's TTL and clock."""
        return record.is_expired(self._clock(), self._ttl)

    def get(self, domain: str) -> InstanceRecord | None:
        """Read the record for ``domain``.

        Expired records trigger a background delete. Under ``SERVE_STALE`` the
        expired record is still returned; under ``TREAT_AS_MISS`` ``None`` is
        returned instead.
        """
        with self._lock.read_locked():
            record = self._store.get(domain)

        if record is None:
            return None

        if self.is_expired(record):
            logger.debug(f"Record for {domain} expired (cached_at={record.cached_at})")
            self._schedule_cleanup(domain)
            if self._stale_policy is StalePolicy.TREAT_AS_MISS:
                return None

        return record

    def set(self, record: InstanceRecord) -> None:
        """Insert or replace ``record`` using its own ``cached_at``."""
        with self._lock.write_locked():
            self._store.set(record)

    def delete(self, domain: str) -> None:
        """Remove the record for ``domain``; a missing key is not an error."""
        with self._lock.write_locked():
            self._store.delete(domain)

    def _schedule_cleanup(self, domain: str) -> None:
        """Queue a best-effort delete of an expired record."""
        with self._pending_lock:
            if self._closed or domain in self._pending:
                return
            future = self._cleanup_executor.submit(self._cleanup_expired, domain)
            self._pending[domain] = future

        def _forget(_: Future[None]) -> None:
            with self._pending_lock:
                if self._pending.get(domain) is future:
                    del self._pending[domain]

        future.add_done_callback(_forget)

    def _cleanup_expired(self, domain: str) -> None:
        """Delete ``domain`` if its stored record is still expired.

        The record is re-read under the exclusive lock so a ``set`` that landed
        after the expired read is never removed.
        """
        try:
            with self._lock.write_locked():
                record = self._store.get(domain)
                if record is None or not self.is_expired(record):
                    return
                self._store.delete(domain)
            logger.debug(f"Removed expired record for {domain}")
        except Exception as e:
            logger.warning(f"Cleanup of expired record for {domain} failed: {e}")

    def wait_for_cleanup(self, timeout: float | None = None) -> bool:
        """Block until all scheduled cleanups have finished.

        Returns:
            True if every cleanup finished within ``timeout``.
        """
        with self._pending_lock:
            futures = list(self._pending.values())
        if not futures:
            return True
        _, not_done = wait(futures, timeout=timeout)
        return not not_done

    def close(self) -> None:
        """Drain pending cleanups and close the backend store."""
        with self._pending_lock:
            if self._closed:
                return
            self._closed = True
        self._cleanup_executor.shutdown(wait=True)
        self._store.close()
        logger.info("Closed TTL cache")

    def __enter__(self) -> "TTLCache":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()
