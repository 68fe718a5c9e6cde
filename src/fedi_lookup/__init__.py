"""fedi-lookup: which software does a fediverse instance run?

This library provides:
- A TTL cache over pluggable storage backends chosen by DSN prefix
  (SQLite, PostgreSQL, MySQL, MongoDB, Redis)
- A two-hop nodeinfo discovery client
- A lookup service and HTTP API combining the two
"""

from fedi_lookup.backends.base import BackendStore
from fedi_lookup.cache import ReadWriteLock, StalePolicy, TTLCache
from fedi_lookup.discovery import DiscoveryClient, normalize_domain
from fedi_lookup.errors import (
    BackendUnavailable,
    CacheError,
    DiscoveryError,
    FediLookupError,
    InvalidDomain,
    NoMatchingBackend,
    RegistrationConflict,
    StorageFailure,
)
from fedi_lookup.models import CACHE_TTL, InstanceRecord, NodeInfo, SoftwareInfo
from fedi_lookup.registry import FactoryRegistry, default_registry, open_store
from fedi_lookup.service import LookupService

__version__ = "0.1.0"

__all__ = [
    "CACHE_TTL",
    "BackendStore",
    "BackendUnavailable",
    "CacheError",
    "DiscoveryClient",
    "DiscoveryError",
    "FactoryRegistry",
    "FediLookupError",
    "InstanceRecord",
    "InvalidDomain",
    "LookupService",
    "NoMatchingBackend",
    "NodeInfo",
    "ReadWriteLock",
    "RegistrationConflict",
    "SoftwareInfo",
    "StalePolicy",
    "StorageFailure",
    "TTLCache",
    "__version__",
    "default_registry",
    "normalize_domain",
    "open_store",
]
