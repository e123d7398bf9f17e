"""PostgreSQL driver using psycopg (v3+) async support."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from row_orm.adapters.base import BaseDriver
from row_orm.core.enums import DatabaseBackend, GenerationStrategy
from row_orm.schema.table import TableColumn, TableForeignKey, TableIndex, TableSchema

if TYPE_CHECKING:
    from row_orm.core.connection import ConnectionConfig
    from row_orm.core.query_runner import QueryRunner

_ON_DELETE = {
    "a": "NO ACTION",
    "r": "RESTRICT",
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
}

_TABLE_FILTER = "c.relname = :table AND n.nspname = current_schema()"


def _build_conninfo(config: ConnectionConfig) -> str:
    """Build a libpq connection string from config fields."""
    parts: list[str] = []
    if config.host is not None:
        parts.append(f"host={config.host}")
    if config.port is not None:
        parts.append(f"port={config.port}")
    if config.user is not None:
        parts.append(f"user={config.user}")
    if config.password is not None:
        parts.append(f"password={config.password}")
    parts.append(f"dbname={config.database}")
    return " ".join(parts)


class PostgresqlAsyncAdapter(BaseDriver):
    """Asynchronous PostgreSQL adapter using psycopg (v3+) async support."""

    backend = DatabaseBackend.POSTGRESQL
    column_types = {
        "integer": "integer",
        "int": "integer",
        "bigint": "bigint",
        "smallint": "smallint",
        "varchar": "character varying({length})",
        "text": "text",
        "boolean": "boolean",
        "float": "double precision",
        "double": "double precision",
        "decimal": "numeric({precision},{scale})",
        "datetime": "timestamp without time zone",
        "timestamp": "timestamp without time zone",
        "date": "date",
        "time": "time without time zone",
        "blob": "bytea",
        "json": "json",
        "uuid": "uuid",
    }

    @property
    def supports_returning(self) -> bool:
        return True

    async def create_pool(self, config: ConnectionConfig) -> list[Any]:
        import psycopg
        import psycopg.rows

        conninfo = _build_conninfo(config)
        pool: list[Any] = []
        for _ in range(config.pool_size):
            conn = await psycopg.AsyncConnection.connect(
                conninfo, row_factory=psycopg.rows.dict_row, autocommit=True
            )
            pool.append(conn)
        return pool

    async def execute(
        self,
        connection: Any,
        sql: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await connection.execute(sql, params or None)

    def _bool_literal(self, value: bool) -> str:
        return "true" if value else "false"

    def _from_database(self, value: Any, column_type: str) -> Any:
        if column_type == "uuid":
            return str(value)
        return super()._from_database(value, column_type)

    def _increment_clause(self, column: TableColumn, table: TableSchema) -> str:
        return " GENERATED BY DEFAULT AS IDENTITY"

    def clear_database_sql(self, table_names: list[str]) -> list[str]:
        return [f"DROP TABLE IF EXISTS {self.escape(name)} CASCADE" for name in table_names]

    def change_column_sql(self, table: TableSchema, old: TableColumn, new: TableColumn) -> list[str]:
        prefix = f"ALTER TABLE {self.escape(table.name)} ALTER COLUMN {self.escape(new.name)}"
        statements: list[str] = []
        if self.normalize_type(old.type) != self.normalize_type(new.type):
            statements.append(
                f"{prefix} TYPE {new.type} USING {self.escape(new.name)}::{new.type}"
            )
        if old.is_nullable != new.is_nullable:
            statements.append(f"{prefix} {'DROP' if new.is_nullable else 'SET'} NOT NULL")
        if self.normalize_default(old.default) != self.normalize_default(new.default):
            if new.default is None:
                statements.append(f"{prefix} DROP DEFAULT")
            else:
                statements.append(f"{prefix} SET DEFAULT {new.default}")
        return statements

    async def list_tables(self, runner: QueryRunner) -> list[str]:
        result = await runner.query(
            "SELECT tablename AS name FROM pg_tables WHERE schemaname = current_schema()"
        )
        return [row["name"] for row in result.rows]

    async def load_table_schema(self, runner: QueryRunner, table_name: str) -> TableSchema | None:
        params = {"table": table_name}
        columns = await runner.query(
            "SELECT a.attname AS name, format_type(a.atttypid, a.atttypmod) AS type, "
            "NOT a.attnotnull AS nullable, pg_get_expr(d.adbin, d.adrelid) AS column_default, "
            "a.attidentity <> '' AS is_identity "
            "FROM pg_attribute a "
            "JOIN pg_class c ON c.oid = a.attrelid "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "LEFT JOIN pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum "
            f"WHERE {_TABLE_FILTER} AND c.relkind = 'r' AND a.attnum > 0 AND NOT a.attisdropped "
            "ORDER BY a.attnum",
            params,
        )
        if not columns.rows:
            return None

        primary = await runner.query(
            "SELECT a.attname AS name FROM pg_index i "
            "JOIN pg_class c ON c.oid = i.indrelid "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "JOIN pg_attribute a ON a.attrelid = c.oid AND a.attnum = ANY(i.indkey) "
            f"WHERE {_TABLE_FILTER} AND i.indisprimary",
            params,
        )
        primary_names = {row["name"] for row in primary.rows}

        table = TableSchema(table_name)
        for row in columns.rows:
            table.columns.append(
                TableColumn(
                    name=row["name"],
                    type=row["type"],
                    is_nullable=bool(row["nullable"]),
                    default=row["column_default"],
                    is_primary=row["name"] in primary_names,
                    generation_strategy=(
                        GenerationStrategy.INCREMENT if row["is_identity"] else GenerationStrategy.NONE
                    ),
                )
            )

        indices = await runner.query(
            "SELECT ic.relname AS name, i.indisunique AS is_unique, a.attname AS column_name "
            "FROM pg_index i "
            "JOIN pg_class c ON c.oid = i.indrelid "
            "JOIN pg_class ic ON ic.oid = i.indexrelid "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "JOIN pg_attribute a ON a.attrelid = c.oid AND a.attnum = ANY(i.indkey) "
            f"WHERE {_TABLE_FILTER} AND NOT i.indisprimary "
            "ORDER BY ic.relname, array_position(i.indkey::int2[], a.attnum)",
            params,
        )
        by_name: dict[str, TableIndex] = {}
        for row in indices.rows:
            index = by_name.setdefault(
                row["name"], TableIndex(row["name"], [], bool(row["is_unique"]))
            )
            index.column_names.append(row["column_name"])
        table.indices = list(by_name.values())

        foreign_keys = await runner.query(
            "SELECT con.conname AS name, att.attname AS column_name, "
            "rc.relname AS referenced_table, ratt.attname AS referenced_column, "
            "con.confdeltype AS on_delete "
            "FROM pg_constraint con "
            "JOIN pg_class c ON c.oid = con.conrelid "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            "JOIN pg_class rc ON rc.oid = con.confrelid "
            "CROSS JOIN LATERAL unnest(con.conkey, con.confkey) WITH ORDINALITY AS k(attnum, refnum, ord) "
            "JOIN pg_attribute att ON att.attrelid = con.conrelid AND att.attnum = k.attnum "
            "JOIN pg_attribute ratt ON ratt.attrelid = con.confrelid AND ratt.attnum = k.refnum "
            f"WHERE {_TABLE_FILTER} AND con.contype = 'f' "
            "ORDER BY con.conname, k.ord",
            params,
        )
        fks: dict[str, TableForeignKey] = {}
        for row in foreign_keys.rows:
            foreign_key = fks.setdefault(
                row["name"],
                TableForeignKey(
                    name=row["name"],
                    column_names=[],
                    referenced_table_name=row["referenced_table"],
                    referenced_column_names=[],
                    on_delete=_ON_DELETE.get(row["on_delete"], "NO ACTION"),
                ),
            )
            foreign_key.column_names.append(row["column_name"])
            foreign_key.referenced_column_names.append(row["referenced_column"])
        table.foreign_keys = list(fks.values())
        return table
