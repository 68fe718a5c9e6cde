"""SQL backend stores: SQLite, PostgreSQL and MySQL.

The three dialects share the ``instance_info`` table from
:mod:`fedi_lookup.backends.schema` and differ only in how the DSN is turned
into an SQLAlchemy URL and in the upsert statement they emit.

DSN routing (see :func:`register`):
    - ``""``, ``"/"``, ``"./"``, ``"file:"``, ``":memory:"``, ``"sqlite://"``
      -> SQLite (file path or in-memory)
    - ``"postgres://"``, ``"postgresql://"`` -> PostgreSQL (psycopg2)
    - ``"mysql://"`` -> MySQL (PyMySQL)
"""

import logging
import threading
from contextlib import AbstractContextManager, nullcontext
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sqlalchemy import create_engine, delete, select, text
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from fedi_lookup.backends.base import redact_dsn
from fedi_lookup.backends.schema import instance_info, reconcile_schema
from fedi_lookup.errors import BackendUnavailable, StorageFailure
from fedi_lookup.models import InstanceRecord

if TYPE_CHECKING:
    from fedi_lookup.registry import FactoryRegistry

logger = logging.getLogger("fedi_lookup.backends.sql")

SQLITE_PREFIXES = ("", "/", "./", "file:", ":memory:", "sqlite://")
POSTGRES_PREFIXES = ("postgres://", "postgresql://")
MYSQL_PREFIXES = ("mysql://",)


# =============================================================================
# DSN translation
# =============================================================================


def sqlite_url(dsn: str) -> tuple[str, dict[str, Any]]:
    """Translate a SQLite DSN into an SQLAlchemy URL plus engine options.

    In-memory databases use a single shared connection so every thread sees
    the same data; file databases get their parent directory created.
    """
    path = dsn
    if path.startswith("sqlite://"):
        # sqlite:///relative.db and sqlite:////absolute.db
        path = path[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
    if path.startswith("file:"):
        path = path[len("file:"):]
    # Query parameters (e.g. "file:cache.db?cache=shared") are not forwarded
    path = path.split("?", 1)[0]

    connect_args = {"check_same_thread": False}
    if path in ("", ":memory:"):
        return "sqlite://", {"connect_args": connect_args, "poolclass": StaticPool}

    Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{Path(path).expanduser()}", {"connect_args": connect_args}


def postgres_url(dsn: str) -> tuple[str, dict[str, Any]]:
    """Translate ``postgres://`` / ``postgresql://`` into a psycopg2 URL."""
    _, rest = dsn.split("://", 1)
    return f"postgresql+psycopg2://{rest}", {"pool_pre_ping": True}


def mysql_url(dsn: str) -> tuple[str, dict[str, Any]]:
    """Translate ``mysql://`` into a PyMySQL URL with utf8mb4."""
    _, rest = dsn.split("://", 1)
    separator = "&" if "?" in rest else "?"
    if "charset=" not in rest:
        rest = f"{rest}{separator}charset=utf8mb4"
    return f"mysql+pymysql://{rest}", {"pool_pre_ping": True, "pool_recycle": 3600}


# =============================================================================
# Store
# =============================================================================


class SQLStore:
    """Backend store over any SQLAlchemy engine holding ``instance_info``.

    Use the dialect constructors (:func:`open_sqlite`, :func:`open_postgres`,
    :func:`open_mysql`) rather than building one directly; they probe the
    database and reconcile the schema first.
    """

    def __init__(self, engine: Engine):
        self._engine = engine
        self._dialect = engine.dialect.name
        # A single shared connection (in-memory SQLite) serves one thread at a time
        self._serial: AbstractContextManager[object] = (
            threading.Lock() if isinstance(engine.pool, StaticPool) else nullcontext()
        )

    @property
    def engine(self) -> Engine:
        """The underlying SQLAlchemy engine."""
        return self._engine

    @property
    def dialect(self) -> str:
        """Dialect name: ``sqlite``, ``postgresql`` or ``mysql``."""
        return self._dialect

    def _upsert(self, record: InstanceRecord) -> Any:
        """Build the dialect-native upsert statement for ``record``."""
        values = {
            "domain": record.domain,
            "software": record.software,
            "version": record.version,
            # Stored naive, always UTC
            "cached_at": record.cached_at.replace(tzinfo=None),
        }
        if self._dialect == "mysql":
            stmt = mysql.insert(instance_info).values(**values)
            return stmt.on_duplicate_key_update(
                software=stmt.inserted.software,
                version=stmt.inserted.version,
                cached_at=stmt.inserted.cached_at,
            )

        insert = postgresql.insert if self._dialect == "postgresql" else sqlite.insert
        stmt = insert(instance_info).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=[instance_info.c.domain],
            set_={
                "software": stmt.excluded.software,
                "version": stmt.excluded.version,
                "cached_at": stmt.excluded.cached_at,
            },
        )

    def get(self, domain: str) -> InstanceRecord | None:
        query = select(
            instance_info.c.domain,
            instance_info.c.software,
            instance_info.c.version,
            instance_info.c.cached_at,
        ).where(instance_info.c.domain == domain)
        try:
            with self._serial, self._engine.connect() as connection:
                row = connection.execute(query).mappings().first()
        except SQLAlchemyError as e:
            raise StorageFailure(f"{self._dialect} get failed for {domain!r}: {e}") from e

        if row is None:
            return None
        try:
            return InstanceRecord.from_document(dict(row))
        except (KeyError, TypeError, ValueError) as e:
            # NULLs in columns added to a legacy table
            raise StorageFailure(
                f"{self._dialect} row for {domain!r} is unreadable: {e}"
            ) from e

    def set(self, record: InstanceRecord) -> None:
        try:
            with self._serial, self._engine.begin() as connection:
                connection.execute(self._upsert(record))
        except SQLAlchemyError as e:
            raise StorageFailure(
                f"{self._dialect} set failed for {record.domain!r}: {e}"
            ) from e

    def delete(self, domain: str) -> None:
        try:
            with self._serial, self._engine.begin() as connection:
                connection.execute(
                    delete(instance_info).where(instance_info.c.domain == domain)
                )
        except SQLAlchemyError as e:
            raise StorageFailure(
                f"{self._dialect} delete failed for {domain!r}: {e}"
            ) from e

    def close(self) -> None:
        self._engine.dispose()

    def __repr__(self) -> str:
        return f"SQLStore(url={self._engine.url!r})"


def _open(dsn: str, url: str, engine_options: dict[str, Any]) -> SQLStore:
    """Create the engine, probe it, reconcile the schema and wrap it."""
    try:
        engine = create_engine(url, **engine_options)
    except (SQLAlchemyError, ImportError, ValueError) as e:
        raise BackendUnavailable(
            f"cannot create engine for {redact_dsn(dsn)}: {e}"
        ) from e

    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        reconcile_schema(engine)
    except BackendUnavailable:
        engine.dispose()
        raise
    except SQLAlchemyError as e:
        engine.dispose()
        raise BackendUnavailable(
            f"connectivity probe failed for {redact_dsn(dsn)}: {e}"
        ) from e

    store = SQLStore(engine)
    logger.info(f"Opened {store.dialect} store at {redact_dsn(dsn) or ':memory:'}")
    return store


def open_sqlite(dsn: str) -> SQLStore:
    """Open a SQLite store from a path, ``file:`` DSN or ``:memory:``."""
    try:
        url, options = sqlite_url(dsn)
    except OSError as e:
        raise BackendUnavailable(f"cannot prepare sqlite path {dsn!r}: {e}") from e
    return _open(dsn, url, options)


def open_postgres(dsn: str) -> SQLStore:
    """Open a PostgreSQL store from a ``postgres://`` DSN."""
    url, options = postgres_url(dsn)
    return _open(dsn, url, options)


def open_mysql(dsn: str) -> SQLStore:
    """Open a MySQL store from a ``mysql://`` DSN."""
    url, options = mysql_url(dsn)
    return _open(dsn, url, options)


def register(registry: "FactoryRegistry") -> None:
    """Register the SQL variants with ``registry``."""
    registry.register_many(open_sqlite, *SQLITE_PREFIXES)
    registry.register_many(open_postgres, *POSTGRES_PREFIXES)
    registry.register_many(open_mysql, *MYSQL_PREFIXES)
