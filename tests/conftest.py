"""Pytest configuration and fixtures for fedi-lookup tests."""

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest

from fedi_lookup.backends.sql import SQLStore, open_sqlite
from fedi_lookup.models import InstanceRecord

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock returning timezone-aware UTC datetimes."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


@pytest.fixture
def clock() -> FakeClock:
    """Clock pinned to FIXED_NOW."""
    return FakeClock()


@pytest.fixture
def sample_record() -> InstanceRecord:
    """A fresh record for mastodon.social."""
    return InstanceRecord(
        domain="mastodon.social",
        software="mastodon",
        version="4.2.0",
        cached_at=FIXED_NOW - timedelta(days=1),
    )


@pytest.fixture
def expired_record() -> InstanceRecord:
    """A record one second past the 30-day TTL."""
    return InstanceRecord(
        domain="old.example",
        software="pleroma",
        version="2.5.0",
        cached_at=FIXED_NOW - timedelta(days=30, seconds=1),
    )


@pytest.fixture
def memory_store() -> Generator[SQLStore, None, None]:
    """In-memory SQLite store."""
    store = open_sqlite(":memory:")
    yield store
    store.close()
