"""Factory registry mapping DSN prefixes to backend store constructors.

A DSN is routed to exactly one backend by longest-prefix match, so a specific
scheme such as ``"mongodb+srv://"`` wins over the catch-all ``""`` prefix that
sends plain file paths to SQLite.

The registry is an explicit object. :func:`default_registry` builds one by
calling each variant's ``register`` function in a fixed list; nothing is
registered as an import side effect.
"""

import logging
from collections.abc import Callable, Iterable

from pydantic import BaseModel, ConfigDict, Field

from fedi_lookup.backends import mongodb, redis, sql
from fedi_lookup.backends.base import BackendStore, StoreFactory, redact_dsn
from fedi_lookup.errors import NoMatchingBackend, RegistrationConflict

logger = logging.getLogger("fedi_lookup.registry")


class Registration(BaseModel):
    """A DSN prefix and the constructor it routes to."""

    prefix: str = Field(description="Literal DSN prefix")
    constructor: StoreFactory = Field(description="Builds a store from the full DSN")

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    def __str__(self) -> str:
        name = getattr(self.constructor, "__name__", repr(self.constructor))
        return f"{self.prefix!r} -> {name}"


class FactoryRegistry:
    """Prefix -> constructor table with longest-prefix resolution.

    Registration is meant to happen once at startup; the table is not locked
    against concurrent registration.
    """

    def __init__(self) -> None:
        self._registrations: dict[str, Registration] = {}

    def register(self, prefix: str, constructor: StoreFactory) -> None:
        """Register ``constructor`` for DSNs starting with ``prefix``.

        Raises:
            RegistrationConflict: If ``prefix`` is already registered. The
                existing registration is kept.
        """
        if prefix in self._registrations:
            raise RegistrationConflict(prefix)
        self._registrations[prefix] = Registration(prefix=prefix, constructor=constructor)

    def register_many(self, constructor: StoreFactory, *prefixes: str) -> None:
        """Register one constructor under several prefixes.

        Stops at the first conflicting prefix; prefixes before it stay
        registered.
        """
        for prefix in prefixes:
            self.register(prefix, constructor)

    def prefixes(self) -> list[str]:
        """Registered prefixes, sorted."""
        return sorted(self._registrations)

    def __contains__(self, prefix: object) -> bool:
        return prefix in self._registrations

    def __len__(self) -> int:
        return len(self._registrations)

    def match(self, dsn: str) -> Registration:
        """Select the registration whose prefix is the longest prefix of ``dsn``.

        Raises:
            NoMatchingBackend: If no registered prefix matches.
        """
        best: Registration | None = None
        for prefix, registration in self._registrations.items():
            if dsn.startswith(prefix) and (best is None or len(prefix) > len(best.prefix)):
                best = registration

        if best is None:
            raise NoMatchingBackend(
                f"no backend registered for DSN {redact_dsn(dsn)!r}",
                details={"prefixes": self.prefixes()},
            )
        return best

    def resolve(self, dsn: str) -> BackendStore:
        """Build the backend store for ``dsn``.

        Errors raised by the selected constructor propagate unchanged.
        """
        registration = self.match(dsn)
        logger.debug(f"Routing DSN {redact_dsn(dsn)!r} via {registration}")
        return registration.constructor(dsn)


# Variant registration functions, applied in this order by default_registry()
VARIANTS: tuple[Callable[[FactoryRegistry], None], ...] = (
    sql.register,
    mongodb.register,
    redis.register,
)


def build_registry(
    variants: Iterable[Callable[[FactoryRegistry], None]] = VARIANTS,
) -> FactoryRegistry:
    """Build a registry from an explicit list of registration functions.

    Raises:
        RegistrationConflict: If two variants claim the same prefix.
    """
    registry = FactoryRegistry()
    for register in variants:
        register(registry)
    return registry


def default_registry() -> FactoryRegistry:
    """Registry holding every built-in backend variant."""
    return build_registry()


def open_store(dsn: str, registry: FactoryRegistry | None = None) -> BackendStore:
    """Resolve ``dsn`` against ``registry`` (default: all built-in variants)."""
    if registry is None:
        registry = default_registry()
    return registry.resolve(dsn)
