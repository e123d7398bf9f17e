"""Shared driver behaviour.

Pool handling keeps a plain list of open connections (pop to acquire, append
to release). SQL generation follows ANSI defaults that the dialect drivers
override where their database differs.
"""

from __future__ import annotations

import json
import re
import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from row_orm.core.enums import DatabaseBackend
from row_orm.core.exceptions import DataTypeNotSupportedError, PoolError

if TYPE_CHECKING:
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata
    from row_orm.schema.table import TableColumn, TableForeignKey, TableIndex, TableSchema

_CAST_SUFFIX = re.compile(r"::[\w\s]+(\[\])?$")

ISOLATION_LEVELS = ("READ UNCOMMITTED", "READ COMMITTED", "REPEATABLE READ", "SERIALIZABLE")


class BaseDriver:
    """Base class for the bundled drivers."""

    backend: DatabaseBackend
    quote_char = '"'
    default_length = 255
    # abstract column type -> SQL type template
    column_types: dict[str, str] = {}

    @property
    def paramstyle(self) -> str:
        return "pyformat"

    @property
    def supports_returning(self) -> bool:
        return False

    @property
    def inline_foreign_keys(self) -> bool:
        return False

    # ------------------------------------------------------------------
    # pool lifecycle
    # ------------------------------------------------------------------

    async def acquire_connection(self, pool: list[Any]) -> Any:
        """Acquire a connection from the pool."""
        if not pool:
            raise PoolError("No connections available in pool")
        return pool.pop()

    async def release_connection(self, connection: Any, pool: list[Any]) -> None:
        """Release a connection back to the pool."""
        pool.append(connection)

    async def close_pool(self, pool: list[Any]) -> None:
        """Close all connections."""
        for conn in pool:
            await conn.close()
        pool.clear()

    # ------------------------------------------------------------------
    # dialect
    # ------------------------------------------------------------------

    def escape(self, name: str) -> str:
        q = self.quote_char
        return f"{q}{name.replace(q, q * 2)}{q}"

    def build_limit_offset(self, limit: int | None, offset: int | None) -> str:
        parts: list[str] = []
        if limit is not None:
            parts.append(f"LIMIT {int(limit)}")
        if offset is not None:
            parts.append(f"OFFSET {int(offset)}")
        return " ".join(parts)

    def default_values_clause(self) -> str:
        """Insert clause for a row where every column takes its default."""
        return "DEFAULT VALUES"

    def missing_insert_value(self) -> str:
        """Placeholder for a column a multi-row insert leaves unset in one row."""
        return "DEFAULT"

    def begin_transaction_sql(self, isolation_level: str | None = None) -> list[str]:
        if isolation_level:
            return [f"START TRANSACTION ISOLATION LEVEL {self._isolation(isolation_level)}"]
        return ["BEGIN"]

    @staticmethod
    def _isolation(isolation_level: str) -> str:
        level = isolation_level.replace("_", " ").upper()
        if level not in ISOLATION_LEVELS:
            raise ValueError(f"Unknown isolation level: {isolation_level}")
        return level

    def column_type_sql(self, column: ColumnMetadata) -> str:
        template = self.column_types.get(column.type.lower())
        if template is None:
            raise DataTypeNotSupportedError(column.type, self.backend.value)
        return template.format(
            length=column.length or self.default_length,
            precision=column.precision or 10,
            scale=column.scale or 0,
        )

    def normalize_type(self, type_sql: str) -> str:
        return " ".join(type_sql.lower().split())

    def _bool_literal(self, value: bool) -> str:
        return "1" if value else "0"

    def default_sql(self, value: Any) -> str | None:
        """Render a column default as SQL. A callable returns a raw SQL expression."""
        if value is None:
            return None
        if callable(value):
            return str(value())
        if isinstance(value, bool):
            return self._bool_literal(value)
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        return "'" + str(value).replace("'", "''") + "'"

    def normalize_default(self, default: str | None) -> str | None:
        if default is None:
            return None
        default = str(default).strip()
        while default.startswith("(") and default.endswith(")"):
            default = default[1:-1].strip()
        return _CAST_SUFFIX.sub("", default)

    def prepare_persistent_value(self, value: Any, column: ColumnMetadata) -> Any:
        """Convert an entity value into a value the driver can bind."""
        if column.transformer is not None:
            value = column.transformer.to(value)
        if value is None:
            return None
        column_type = column.type.lower()
        if column_type == "json":
            return json.dumps(value)
        if isinstance(value, uuid.UUID):
            return str(value)
        return self._to_database(value, column_type)

    def prepare_hydrated_value(self, value: Any, column: ColumnMetadata) -> Any:
        """Convert a raw database value into the entity's value."""
        if value is not None:
            value = self._from_database(value, column.type.lower())
        if column.transformer is not None:
            value = column.transformer.from_(value)
        return value

    def _to_database(self, value: Any, column_type: str) -> Any:
        return value

    def _from_database(self, value: Any, column_type: str) -> Any:
        if column_type == "json" and isinstance(value, (str, bytes)):
            return json.loads(value)
        return value

    # ------------------------------------------------------------------
    # schema
    # ------------------------------------------------------------------

    async def list_tables(self, runner: QueryRunner) -> list[str]:
        raise NotImplementedError

    async def load_table_schema(self, runner: QueryRunner, table_name: str) -> TableSchema | None:
        raise NotImplementedError

    def _increment_clause(self, column: TableColumn, table: TableSchema) -> str:
        return ""

    def _inline_primary(self, table: TableSchema) -> bool:
        return False

    def column_definition(self, column: TableColumn, table: TableSchema) -> str:
        sql = f"{self.escape(column.name)} {column.type}"
        if column.is_increment:
            sql += self._increment_clause(column, table)
        if not column.is_nullable:
            sql += " NOT NULL"
        if column.default is not None:
            sql += f" DEFAULT {column.default}"
        return sql

    def foreign_key_definition(self, foreign_key: TableForeignKey) -> str:
        columns = ", ".join(self.escape(c) for c in foreign_key.column_names)
        referenced = ", ".join(self.escape(c) for c in foreign_key.referenced_column_names)
        return (
            f"CONSTRAINT {self.escape(foreign_key.name)} FOREIGN KEY ({columns}) "
            f"REFERENCES {self.escape(foreign_key.referenced_table_name)} ({referenced}) "
            f"ON DELETE {foreign_key.on_delete}"
        )

    def _create_table_statement(self, table: TableSchema, name: str | None = None) -> str:
        definitions = [self.column_definition(c, table) for c in table.columns]
        if table.primary_keys and not self._inline_primary(table):
            keys = ", ".join(self.escape(k) for k in table.primary_keys)
            definitions.append(f"PRIMARY KEY ({keys})")
        definitions.extend(self.foreign_key_definition(fk) for fk in table.foreign_keys)
        return f"CREATE TABLE {self.escape(name or table.name)} ({', '.join(definitions)})"

    def create_table_sql(self, table: TableSchema) -> list[str]:
        statements = [self._create_table_statement(table)]
        for index in table.indices:
            statements.extend(self.create_index_sql(table, index))
        return statements

    def drop_table_sql(self, table_name: str) -> list[str]:
        return [f"DROP TABLE {self.escape(table_name)}"]

    def clear_database_sql(self, table_names: list[str]) -> list[str]:
        return [f"DROP TABLE IF EXISTS {self.escape(name)}" for name in table_names]

    def add_column_sql(self, table: TableSchema, column: TableColumn) -> list[str]:
        return [
            f"ALTER TABLE {self.escape(table.name)} ADD COLUMN {self.column_definition(column, table)}"
        ]

    def drop_column_sql(self, table: TableSchema, column: TableColumn) -> list[str]:
        return [f"ALTER TABLE {self.escape(table.name)} DROP COLUMN {self.escape(column.name)}"]

    def change_column_sql(self, table: TableSchema, old: TableColumn, new: TableColumn) -> list[str]:
        raise NotImplementedError

    def create_index_sql(self, table: TableSchema, index: TableIndex) -> list[str]:
        unique = "UNIQUE " if index.is_unique else ""
        columns = ", ".join(self.escape(c) for c in index.column_names)
        return [
            f"CREATE {unique}INDEX {self.escape(index.name)} ON {self.escape(table.name)} ({columns})"
        ]

    def drop_index_sql(self, table: TableSchema, index: TableIndex) -> list[str]:
        return [f"DROP INDEX {self.escape(index.name)}"]

    def create_foreign_key_sql(self, table: TableSchema, foreign_key: TableForeignKey) -> list[str]:
        return [f"ALTER TABLE {self.escape(table.name)} ADD {self.foreign_key_definition(foreign_key)}"]

    def drop_foreign_key_sql(self, table: TableSchema, foreign_key: TableForeignKey) -> list[str]:
        return [
            f"ALTER TABLE {self.escape(table.name)} DROP CONSTRAINT {self.escape(foreign_key.name)}"
        ]

    def create_database_sql(self, database: str) -> list[str]:
        return [f"CREATE DATABASE {self.escape(database)}"]

    def drop_database_sql(self, database: str) -> list[str]:
        return [f"DROP DATABASE IF EXISTS {self.escape(database)}"]

    def schema_sync_prelude(self) -> list[str]:
        return []

    def schema_sync_postlude(self) -> list[str]:
        return []
