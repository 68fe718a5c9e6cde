"""Lookup orchestration: cache first, live discovery on a miss."""

import logging
from collections.abc import Callable
from datetime import datetime

from fedi_lookup.cache import TTLCache
from fedi_lookup.discovery import DiscoveryClient, normalize_domain
from fedi_lookup.errors import DiscoveryError, StorageFailure
from fedi_lookup.models import InstanceRecord, SoftwareInfo, utcnow

logger = logging.getLogger("fedi_lookup.service")


class LookupService:
    """Answer "what software does this instance run?".

    A fresh cached record is returned as is. An expired or missing record
    triggers live discovery whose result is written back through the cache.
    When discovery fails but an expired record is at hand, that record is
    served and flagged ``stale``.

    Cache failures never fail a lookup: a ``StorageFailure`` on read is a
    miss, and on write it is only logged. Without a cache every lookup is a
    live fetch.
    """

    def __init__(
        self,
        discovery: DiscoveryClient,
        cache: TTLCache | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._discovery = discovery
        self._cache = cache
        self._clock = clock

    @property
    def cache(self) -> TTLCache | None:
        return self._cache

    @property
    def discovery(self) -> DiscoveryClient:
        return self._discovery

    def _read_cache(self, domain: str) -> InstanceRecord | None:
        if self._cache is None:
            return None
        try:
            return self._cache.get(domain)
        except StorageFailure as e:
            logger.warning(f"Cache read failed for {domain}, fetching live: {e}")
            return None

    def _write_cache(self, record: InstanceRecord) -> None:
        if self._cache is None:
            return
        try:
            self._cache.set(record)
        except StorageFailure as e:
            logger.warning(f"Cache write failed for {record.domain}: {e}")

    def lookup(self, instance: str) -> SoftwareInfo:
        """Look up the software and version of ``instance``.

        Raises:
            InvalidDomain: If ``instance`` does not normalize to a domain.
            DiscoveryError: If live discovery fails and no cached record exists.
        """
        domain = normalize_domain(instance)

        cached = self._read_cache(domain)
        if cached is not None and not self._cache.is_expired(cached):
            return SoftwareInfo(
                software=cached.software, version=cached.version, cached=True
            )

        try:
            info = self._discovery.discover(domain)
        except DiscoveryError as e:
            if cached is None:
                logger.info(f"Discovery failed for {domain}: {e}")
                raise
            logger.info(f"Discovery failed for {domain}, serving stale record: {e}")
            return SoftwareInfo(
                software=cached.software,
                version=cached.version,
                cached=True,
                stale=True,
            )

        self._write_cache(
            InstanceRecord(
                domain=domain,
                software=info.software,
                version=info.version,
                cached_at=self._clock(),
            )
        )
        return SoftwareInfo(software=info.software, version=info.version, cached=False)
