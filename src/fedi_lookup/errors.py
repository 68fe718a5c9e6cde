"""Exception hierarchy for fedi-lookup.

Two families live here: cache errors (registry, backend construction and
storage) and discovery errors (the two-hop nodeinfo protocol). Everything
derives from FediLookupError so callers can catch the whole library at once.
"""

from typing import Any


class FediLookupError(Exception):
    """Base class for all fedi-lookup errors."""

    def __init__(self, message: str = "", *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.details: dict[str, Any] = details or {}


class InvalidDomain(FediLookupError, ValueError):
    """Raised when an instance string does not normalize to a domain."""


# =============================================================================
# Cache errors
# =============================================================================


class CacheError(FediLookupError):
    """Base class for cache and storage errors."""


class RegistrationConflict(CacheError):
    """A DSN prefix was registered twice."""

    def __init__(self, prefix: str):
        super().__init__(
            f"duplicate backend prefix registered: {prefix!r}",
            details={"prefix": prefix},
        )
        self.prefix = prefix


DuplicateRegistration = RegistrationConflict


class NoMatchingBackend(CacheError):
    """No registered prefix matches the supplied DSN."""


class BackendUnavailable(CacheError):
    """A backend failed its connectivity probe or schema setup."""


class SchemaReconciliationError(BackendUnavailable):
    """The SQL schema could not be brought in line with the target table."""


class StorageFailure(CacheError):
    """A live backend failed a get/set/delete operation."""


# =============================================================================
# Discovery errors
# =============================================================================


class DiscoveryError(FediLookupError):
    """Base class for nodeinfo discovery failures.

    Attributes:
        domain: Normalized domain the discovery ran against.
        url: URL being fetched when the failure happened, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        domain: str | None = None,
        url: str | None = None,
        status_code: int | None = None,
    ):
        details: dict[str, Any] = {}
        if domain is not None:
            details["domain"] = domain
        if url is not None:
            details["url"] = url
        if status_code is not None:
            details["status_code"] = status_code
        super().__init__(message, details=details)
        self.domain = domain
        self.url = url
        self.status_code = status_code


class DiscoveryUnreachable(DiscoveryError):
    """Transport failure fetching the well-known discovery document."""


class DiscoveryBadStatus(DiscoveryError):
    """The well-known discovery document answered with a non-200 status."""


class DiscoveryMalformed(DiscoveryError):
    """The well-known discovery document could not be parsed."""


class NoDiscoveryLink(DiscoveryError):
    """The discovery document lists no nodeinfo link."""


class NodeInfoUnreachable(DiscoveryError):
    """Transport failure fetching the node-information document."""


class NodeInfoBadStatus(DiscoveryError):
    """The node-information document answered with a non-200 status."""


class NodeInfoMalformed(DiscoveryError):
    """The node-information document could not be parsed."""
