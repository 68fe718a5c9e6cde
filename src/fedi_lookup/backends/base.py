"""Backend store protocol.

Every storage variant implements the same four operations with identical
semantics. Stores know nothing about TTLs; expiry is applied by
:class:`fedi_lookup.cache.TTLCache`.
"""

from collections.abc import Callable
from typing import Protocol, runtime_checkable
from urllib.parse import urlsplit, urlunsplit

from fedi_lookup.models import InstanceRecord


@runtime_checkable
class BackendStore(Protocol):
    """Raw persistence contract for instance records.

    Implementations must:
        - Return ``None`` from ``get`` for unknown keys (never raise for a miss).
        - Upsert on ``set``, overwriting software/version/cached_at.
        - Treat ``delete`` of an unknown key as a no-op.
        - Raise :class:`fedi_lookup.errors.StorageFailure` for driver errors.
    """

    def get(self, domain: str) -> InstanceRecord | None:
        """Point lookup by exact domain."""
        ...

    def set(self, record: InstanceRecord) -> None:
        """Insert or replace the record keyed by ``record.domain``."""
        ...

    def delete(self, domain: str) -> None:
        """Remove the record for ``domain`` if present."""
        ...

    def close(self) -> None:
        """Release connections and handles."""
        ...


# Constructor signature held by the factory registry
StoreFactory = Callable[[str], BackendStore]


def redact_dsn(dsn: str) -> str:
    """Hide the password in a DSN so it can be logged."""
    if "://" not in dsn:
        return dsn
    try:
        parts = urlsplit(dsn)
    except ValueError:
        return "<unparseable dsn>"
    if parts.password is None:
        return dsn
    netloc = parts.netloc.replace(f":{parts.password}@", ":***@", 1)
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
