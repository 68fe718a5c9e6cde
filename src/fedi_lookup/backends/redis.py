"""Redis backend store.

Each record is a hash under ``fedi_lookup:instance:<domain>`` with the fields
``software``, ``version`` and ``cached_at`` (ISO-8601). No native Redis
expiry is set; the TTL is applied by the cache on read.
"""

import logging
from typing import TYPE_CHECKING

import redis

from fedi_lookup.backends.base import redact_dsn
from fedi_lookup.errors import BackendUnavailable, StorageFailure
from fedi_lookup.models import InstanceRecord

if TYPE_CHECKING:
    from fedi_lookup.registry import FactoryRegistry

logger = logging.getLogger("fedi_lookup.backends.redis")

REDIS_PREFIXES = ("redis://", "rediss://")
KEY_PREFIX = "fedi_lookup:instance:"


class RedisStore:
    """Backend store over a Redis (or Redis-compatible) server."""

    def __init__(self, client: redis.Redis, key_prefix: str = KEY_PREFIX):
        self._client = client
        self._key_prefix = key_prefix

    def _key(self, domain: str) -> str:
        return f"{self._key_prefix}{domain}"

    def get(self, domain: str) -> InstanceRecord | None:
        try:
            fields = self._client.hgetall(self._key(domain))
        except redis.RedisError as e:
            raise StorageFailure(f"redis get failed for {domain!r}: {e}") from e

        if not fields:
            return None
        try:
            return InstanceRecord.from_document({"domain": domain, **fields})
        except (KeyError, TypeError, ValueError) as e:
            raise StorageFailure(f"redis hash for {domain!r} is unreadable: {e}") from e

    def set(self, record: InstanceRecord) -> None:
        document = record.to_document()
        del document["domain"]
        try:
            # Single HSET replaces every field atomically
            self._client.hset(self._key(record.domain), mapping=document)
        except redis.RedisError as e:
            raise StorageFailure(
                f"redis set failed for {record.domain!r}: {e}"
            ) from e

    def delete(self, domain: str) -> None:
        try:
            self._client.delete(self._key(domain))
        except redis.RedisError as e:
            raise StorageFailure(f"redis delete failed for {domain!r}: {e}") from e

    def close(self) -> None:
        self._client.close()

    def __repr__(self) -> str:
        return f"RedisStore(key_prefix={self._key_prefix!r})"


def open_redis(dsn: str) -> RedisStore:
    """Connect to Redis and ping it.

    Raises:
        BackendUnavailable: If the URL is invalid or the server does not answer.
    """
    try:
        client = redis.Redis.from_url(
            dsn,
            socket_timeout=5,
            socket_connect_timeout=5,
            decode_responses=True,
        )
    except ValueError as e:
        raise BackendUnavailable(f"invalid redis url {redact_dsn(dsn)}: {e}") from e

    try:
        client.ping()
    except redis.RedisError as e:
        client.close()
        raise BackendUnavailable(f"ping failed for {redact_dsn(dsn)}: {e}") from e

    logger.info(f"Opened redis store at {redact_dsn(dsn)}")
    return RedisStore(client)


def register(registry: "FactoryRegistry") -> None:
    """Register the Redis variant with ``registry``."""
    registry.register_many(open_redis, *REDIS_PREFIXES)
