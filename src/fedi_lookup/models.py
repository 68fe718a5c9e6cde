"""Data models shared by the cache, the backends and the lookup service."""

from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Records older than this are expired
CACHE_TTL = timedelta(days=30)


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC.

    SQL drivers hand back naive timestamps for ``TIMESTAMP`` columns; every
    value the cache writes is UTC, so naive values are read as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class InstanceRecord(BaseModel):
    """Cached software information for one fediverse instance.

    Freshness is not stored: a record is expired when
    ``now - cached_at > ttl``.
    """

    domain: str = Field(description="Normalized instance domain, unique key")
    software: str = Field(description="Lower-cased server software name")
    version: str = Field(default="", description="Software version as reported")
    cached_at: datetime = Field(
        default_factory=utcnow,
        description="When this record was last written (UTC)",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("cached_at")
    @classmethod
    def _normalize_cached_at(cls, value: datetime) -> datetime:
        # Millisecond precision is the finest every backend (MongoDB) keeps
        value = ensure_utc(value)
        return value.replace(microsecond=value.microsecond - value.microsecond % 1000)

    def age(self, now: datetime | None = None) -> timedelta:
        """Time elapsed since the record was written."""
        current = ensure_utc(now) if now is not None else utcnow()
        return current - self.cached_at

    def is_expired(
        self, now: datetime | None = None, ttl: timedelta = CACHE_TTL
    ) -> bool:
        """Check whether the record is older than ``ttl``."""
        return self.age(now) > ttl

    def to_document(self) -> dict[str, Any]:
        """Serialize to the persisted record shape."""
        return {
            "domain": self.domain,
            "software": self.software,
            "version": self.version,
            "cached_at": self.cached_at.isoformat(),
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "InstanceRecord":
        """Build a record from the persisted shape.

        ``cached_at`` may be a datetime or an ISO-8601 string.
        """
        cached_at = document["cached_at"]
        if isinstance(cached_at, bytes):
            cached_at = cached_at.decode()
        if isinstance(cached_at, str):
            cached_at = datetime.fromisoformat(cached_at.replace("Z", "+00:00"))
        return cls(
            domain=document["domain"],
            software=document["software"],
            version=document.get("version") or "",
            cached_at=cached_at,
        )


class NodeInfo(BaseModel):
    """Software identity extracted from a node-information document."""

    software: str = Field(description="Lower-cased software name")
    version: str = Field(default="", description="Software version")

    model_config = ConfigDict(frozen=True)


class SoftwareInfo(BaseModel):
    """Result of a lookup, as returned to API clients."""

    software: str
    version: str
    cached: bool = Field(description="Whether the answer came from the cache")
    stale: bool = Field(
        default=False,
        description="Whether the cached answer is past its TTL",
    )

    model_config = ConfigDict(frozen=True)
