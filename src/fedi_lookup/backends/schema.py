"""SQL schema reconciliation for the instance_info table.

All SQL variants share one table shape. ``reconcile_schema`` inspects the live
database, compares it with the target table and applies whatever is missing:
the table itself, individual columns, and the ``cached_at`` index.
"""

import logging

from sqlalchemy import (
    Column,
    DateTime,
    Index,
    MetaData,
    String,
    Table,
    inspect,
)
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from fedi_lookup.errors import SchemaReconciliationError

logger = logging.getLogger("fedi_lookup.backends.schema")

TABLE_NAME = "instance_info"
CACHED_AT_INDEX = "idx_instance_info_cached_at"

metadata = MetaData()

instance_info = Table(
    TABLE_NAME,
    metadata,
    Column("domain", String(255), primary_key=True),
    Column("software", String(100), nullable=False),
    Column("version", String(50), nullable=False, default=""),
    # Microsecond precision on MySQL so records round-trip unchanged
    Column(
        "cached_at",
        DateTime(timezone=False).with_variant(mysql.DATETIME(fsp=6), "mysql"),
        nullable=False,
    ),
    Index(CACHED_AT_INDEX, "cached_at"),
)


def _add_column_sql(engine: Engine, column: Column) -> str:
    """Render ``ALTER TABLE .. ADD COLUMN`` for one target column."""
    preparer = engine.dialect.identifier_preparer
    column_type = column.type.compile(dialect=engine.dialect)
    # Added columns must accept existing rows, so they are created nullable
    return (
        f"ALTER TABLE {preparer.quote(TABLE_NAME)} "
        f"ADD COLUMN {preparer.quote(column.name)} {column_type}"
    )


def reconcile_schema(engine: Engine) -> list[str]:
    """Bring the live schema in line with the target ``instance_info`` table.

    Args:
        engine: Engine connected to the target database.

    Returns:
        Human-readable descriptions of the changes applied. Empty when the
        database already matched.

    Raises:
        SchemaReconciliationError: If inspection or any DDL statement fails.
    """
    changes: list[str] = []
    try:
        inspector = inspect(engine)
        if not inspector.has_table(TABLE_NAME):
            metadata.create_all(engine, tables=[instance_info])
            changes.append(f"create table {TABLE_NAME}")
            changes.append(f"create index {CACHED_AT_INDEX}")
            logger.info(f"Created table {TABLE_NAME}")
            return changes

        existing_columns = {
            column["name"] for column in inspector.get_columns(TABLE_NAME)
        }
        missing = [
            column for column in instance_info.columns
            if column.name not in existing_columns
        ]
        with engine.begin() as connection:
            for column in missing:
                if column.primary_key:
                    # A table keyed on something else cannot be patched in place
                    raise SchemaReconciliationError(
                        f"table {TABLE_NAME} exists without primary key column "
                        f"{column.name!r}"
                    )
                connection.exec_driver_sql(_add_column_sql(engine, column))
                changes.append(f"add column {TABLE_NAME}.{column.name}")

            indexed_columns = [
                index["column_names"] for index in inspector.get_indexes(TABLE_NAME)
            ]
            if ["cached_at"] not in indexed_columns:
                index = next(iter(instance_info.indexes))
                index.create(connection)
                changes.append(f"create index {CACHED_AT_INDEX}")
    except SchemaReconciliationError:
        raise
    except SQLAlchemyError as e:
        raise SchemaReconciliationError(f"failed to reconcile schema: {e}") from e

    if changes:
        logger.info(f"Applied schema changes: {', '.join(changes)}")
    return changes
