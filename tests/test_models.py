"""Tests for InstanceRecord and related models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from fedi_lookup import CACHE_TTL, InstanceRecord, SoftwareInfo, __version__

FIXED_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestVersion:
    """Test version information."""

    def test_version_format(self) -> None:
        """Test that version follows semver format."""
        parts = __version__.split(".")
        assert len(parts) == 3
        assert all(part.isdigit() for part in parts)


class TestInstanceRecord:
    """Tests for the InstanceRecord model."""

    def test_ttl_is_thirty_days(self) -> None:
        """Test the fixed cache TTL."""
        assert CACHE_TTL == timedelta(days=30)

    def test_naive_cached_at_is_read_as_utc(self) -> None:
        """Test that naive timestamps are interpreted as UTC."""
        record = InstanceRecord(
            domain="a.example",
            software="misskey",
            cached_at=datetime(2025, 1, 1, 8, 30),
        )
        assert record.cached_at == datetime(2025, 1, 1, 8, 30, tzinfo=timezone.utc)

    def test_aware_cached_at_converted_to_utc(self) -> None:
        """Test that non-UTC offsets are converted."""
        plus_two = timezone(timedelta(hours=2))
        record = InstanceRecord(
            domain="a.example",
            software="misskey",
            cached_at=datetime(2025, 1, 1, 10, 0, tzinfo=plus_two),
        )
        assert record.cached_at == datetime(2025, 1, 1, 8, 0, tzinfo=timezone.utc)
        assert record.cached_at.utcoffset() == timedelta(0)

    def test_cached_at_truncated_to_milliseconds(self) -> None:
        """Test that sub-millisecond precision is dropped."""
        record = InstanceRecord(
            domain="a.example",
            software="misskey",
            cached_at=datetime(2025, 1, 1, 0, 0, 0, 123456, tzinfo=timezone.utc),
        )
        assert record.cached_at.microsecond == 123000

    def test_version_defaults_to_empty(self) -> None:
        """Test version is optional."""
        record = InstanceRecord(domain="a.example", software="gotosocial")
        assert record.version == ""

    def test_record_is_frozen(self, sample_record: InstanceRecord) -> None:
        """Test that records are immutable."""
        with pytest.raises(ValidationError):
            sample_record.software = "pleroma"  # type: ignore[misc]

    def test_not_expired_within_ttl(self, sample_record: InstanceRecord) -> None:
        """Test a one-day-old record is fresh."""
        assert sample_record.is_expired(FIXED_NOW) is False

    def test_expired_past_ttl(self, expired_record: InstanceRecord) -> None:
        """Test a record one second past the TTL is expired."""
        assert expired_record.is_expired(FIXED_NOW) is True

    def test_exactly_ttl_old_is_not_expired(self) -> None:
        """Test expiry is strictly greater than the TTL."""
        record = InstanceRecord(
            domain="edge.example",
            software="mastodon",
            cached_at=FIXED_NOW - CACHE_TTL,
        )
        assert record.is_expired(FIXED_NOW) is False

    def test_custom_ttl(self, sample_record: InstanceRecord) -> None:
        """Test is_expired honours an explicit TTL."""
        assert sample_record.is_expired(FIXED_NOW, ttl=timedelta(hours=1)) is True

    def test_document_round_trip(self, sample_record: InstanceRecord) -> None:
        """Test the persisted shape converts back to an equal record."""
        document = sample_record.to_document()
        assert document == {
            "domain": "mastodon.social",
            "software": "mastodon",
            "version": "4.2.0",
            "cached_at": "2025-05-31T12:00:00+00:00",
        }
        assert InstanceRecord.from_document(document) == sample_record

    def test_from_document_accepts_z_suffix(self) -> None:
        """Test RFC3339 'Z' timestamps parse."""
        record = InstanceRecord.from_document(
            {
                "domain": "a.example",
                "software": "akkoma",
                "version": "3.10",
                "cached_at": "2025-02-03T04:05:06Z",
            }
        )
        assert record.cached_at == datetime(2025, 2, 3, 4, 5, 6, tzinfo=timezone.utc)


class TestSoftwareInfo:
    """Tests for the SoftwareInfo response model."""

    def test_stale_defaults_false(self) -> None:
        """Test stale is off unless set."""
        info = SoftwareInfo(software="mastodon", version="4.2.0", cached=True)
        assert info.stale is False
