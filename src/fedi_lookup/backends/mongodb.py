"""MongoDB backend store.

Records are stored one document per domain, keyed by ``_id``::

    {"_id": "mastodon.social", "software": "mastodon",
     "version": "4.2.0", "cached_at": ISODate(...)}

A secondary index on ``cached_at`` is created at construction.
"""

import logging
from typing import TYPE_CHECKING, Any

from pymongo import ASCENDING, MongoClient
from pymongo.errors import ConfigurationError, PyMongoError

from fedi_lookup.backends.base import redact_dsn
from fedi_lookup.errors import BackendUnavailable, StorageFailure
from fedi_lookup.models import InstanceRecord

if TYPE_CHECKING:
    from pymongo.collection import Collection

    from fedi_lookup.registry import FactoryRegistry

logger = logging.getLogger("fedi_lookup.backends.mongodb")

MONGODB_PREFIXES = ("mongodb://", "mongodb+srv://")
DEFAULT_DATABASE = "webap"
COLLECTION_NAME = "instance_info"

# Timeouts in milliseconds
CONNECT_TIMEOUT_MS = 10_000
OPERATION_TIMEOUT_MS = 5_000


class MongoStore:
    """Backend store over a MongoDB collection."""

    def __init__(self, client: MongoClient, collection: "Collection"):
        self._client = client
        self._collection = collection

    @property
    def collection(self) -> "Collection":
        """The backing collection."""
        return self._collection

    @staticmethod
    def _to_document(record: InstanceRecord) -> dict[str, Any]:
        return {
            "_id": record.domain,
            "software": record.software,
            "version": record.version,
            "cached_at": record.cached_at,
        }

    def get(self, domain: str) -> InstanceRecord | None:
        try:
            document = self._collection.find_one({"_id": domain})
        except PyMongoError as e:
            raise StorageFailure(f"mongodb get failed for {domain!r}: {e}") from e

        if document is None:
            return None
        try:
            return InstanceRecord(
                domain=document["_id"],
                software=document["software"],
                version=document.get("version") or "",
                cached_at=document["cached_at"],
            )
        except (KeyError, TypeError, ValueError) as e:
            raise StorageFailure(
                f"mongodb document for {domain!r} is unreadable: {e}"
            ) from e

    def set(self, record: InstanceRecord) -> None:
        try:
            self._collection.replace_one(
                {"_id": record.domain}, self._to_document(record), upsert=True
            )
        except PyMongoError as e:
            raise StorageFailure(
                f"mongodb set failed for {record.domain!r}: {e}"
            ) from e

    def delete(self, domain: str) -> None:
        try:
            self._collection.delete_one({"_id": domain})
        except PyMongoError as e:
            raise StorageFailure(f"mongodb delete failed for {domain!r}: {e}") from e

    def close(self) -> None:
        self._client.close()

    def __repr__(self) -> str:
        return f"MongoStore(collection={self._collection.full_name!r})"


def open_mongodb(dsn: str) -> MongoStore:
    """Connect to MongoDB, ping it and ensure the ``cached_at`` index.

    The database named in the DSN path is used when present, otherwise
    ``webap``.

    Raises:
        BackendUnavailable: If the client cannot be created or the ping fails.
    """
    try:
        client: MongoClient = MongoClient(
            dsn,
            serverSelectionTimeoutMS=CONNECT_TIMEOUT_MS,
            connectTimeoutMS=CONNECT_TIMEOUT_MS,
            timeoutMS=OPERATION_TIMEOUT_MS,
            tz_aware=True,
        )
    except (PyMongoError, ValueError) as e:
        raise BackendUnavailable(f"cannot create client for {redact_dsn(dsn)}: {e}") from e

    try:
        client.admin.command("ping")
    except PyMongoError as e:
        client.close()
        raise BackendUnavailable(f"ping failed for {redact_dsn(dsn)}: {e}") from e

    try:
        database = client.get_default_database(default=DEFAULT_DATABASE)
    except ConfigurationError:
        database = client[DEFAULT_DATABASE]
    collection = database[COLLECTION_NAME]

    try:
        collection.create_index([("cached_at", ASCENDING)])
    except PyMongoError as e:
        # The index only speeds up cleanup scans; the store works without it
        logger.warning(f"Could not create cached_at index on {collection.full_name}: {e}")

    logger.info(f"Opened mongodb store at {redact_dsn(dsn)} ({collection.full_name})")
    return MongoStore(client, collection)


def register(registry: "FactoryRegistry") -> None:
    """Register the MongoDB variant with ``registry``."""
    registry.register_many(open_mongodb, *MONGODB_PREFIXES)
