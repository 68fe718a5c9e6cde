"""Backend store implementations.

This package provides the backend protocol and the storage variants the
factory registry routes DSNs to.

Exports:
    BackendStore: Protocol defining the store interface.
    SQLStore: SQLite, PostgreSQL and MySQL store (one shared table shape).
    MongoStore: MongoDB document store.
    RedisStore: Redis hash-per-domain store.
"""

from fedi_lookup.backends.base import BackendStore, StoreFactory
from fedi_lookup.backends.mongodb import MongoStore
from fedi_lookup.backends.redis import RedisStore
from fedi_lookup.backends.sql import SQLStore

__all__ = [
    "BackendStore",
    "MongoStore",
    "RedisStore",
    "SQLStore",
    "StoreFactory",
]
