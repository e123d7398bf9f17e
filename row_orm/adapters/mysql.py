"""MySQL driver using aiomysql."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from row_orm.adapters.base import BaseDriver
from row_orm.core.enums import DatabaseBackend, GenerationStrategy
from row_orm.schema.table import TableColumn, TableForeignKey, TableIndex, TableSchema

if TYPE_CHECKING:
    from row_orm.core.connection import ConnectionConfig
    from row_orm.core.query_runner import QueryRunner

# MySQL has no LIMIT without a row count
_MAX_ROWS = 18446744073709551615


class MysqlAsyncAdapter(BaseDriver):
    """Asynchronous MySQL adapter using aiomysql."""

    backend = DatabaseBackend.MYSQL
    quote_char = "`"
    column_types = {
        "integer": "int",
        "int": "int",
        "bigint": "bigint",
        "smallint": "smallint",
        "varchar": "varchar({length})",
        "text": "text",
        "boolean": "tinyint(1)",
        "float": "float",
        "double": "double",
        "decimal": "decimal({precision},{scale})",
        "datetime": "datetime",
        "timestamp": "timestamp",
        "date": "date",
        "time": "time",
        "blob": "longblob",
        "json": "json",
        "uuid": "varchar(36)",
    }

    async def create_pool(self, config: ConnectionConfig) -> list[Any]:
        """Create async MySQL connection pool."""
        import aiomysql

        pool: list[Any] = []
        for _ in range(config.pool_size):
            conn = await aiomysql.connect(
                host=config.host or "localhost",
                port=config.port or 3306,
                user=config.user,
                password=config.password or "",
                db=config.database,
                autocommit=True,
            )
            pool.append(conn)
        return pool

    async def close_pool(self, pool: list[Any]) -> None:
        """Close all async connections."""
        for conn in pool:
            conn.close()
        pool.clear()

    async def execute(
        self,
        connection: Any,
        sql: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Execute SQL asynchronously and return a DictCursor."""
        import aiomysql

        cursor = await connection.cursor(aiomysql.DictCursor)
        await cursor.execute(sql, params or None)
        return cursor

    def build_limit_offset(self, limit: int | None, offset: int | None) -> str:
        if offset is not None and limit is None:
            return f"LIMIT {_MAX_ROWS} OFFSET {int(offset)}"
        return super().build_limit_offset(limit, offset)

    def default_values_clause(self) -> str:
        return "() VALUES ()"

    def begin_transaction_sql(self, isolation_level: str | None = None) -> list[str]:
        if isolation_level:
            return [
                f"SET TRANSACTION ISOLATION LEVEL {self._isolation(isolation_level)}",
                "START TRANSACTION",
            ]
        return ["START TRANSACTION"]

    def normalize_default(self, default: str | None) -> str | None:
        default = super().normalize_default(default)
        # information_schema reports string defaults without quotes
        if default is not None and len(default) >= 2 and default[0] == default[-1] == "'":
            return default[1:-1].replace("''", "'")
        return default

    def _to_database(self, value: Any, column_type: str) -> Any:
        if isinstance(value, bool):
            return int(value)
        return value

    def _from_database(self, value: Any, column_type: str) -> Any:
        if column_type == "boolean":
            return bool(value)
        return super()._from_database(value, column_type)

    def _increment_clause(self, column: TableColumn, table: TableSchema) -> str:
        return " AUTO_INCREMENT"

    def change_column_sql(self, table: TableSchema, old: TableColumn, new: TableColumn) -> list[str]:
        return [
            f"ALTER TABLE {self.escape(table.name)} MODIFY COLUMN {self.column_definition(new, table)}"
        ]

    def drop_index_sql(self, table: TableSchema, index: TableIndex) -> list[str]:
        return [f"DROP INDEX {self.escape(index.name)} ON {self.escape(table.name)}"]

    def drop_foreign_key_sql(self, table: TableSchema, foreign_key: TableForeignKey) -> list[str]:
        return [
            f"ALTER TABLE {self.escape(table.name)} DROP FOREIGN KEY {self.escape(foreign_key.name)}"
        ]

    def create_database_sql(self, database: str) -> list[str]:
        return [f"CREATE DATABASE IF NOT EXISTS {self.escape(database)}"]

    def clear_database_sql(self, table_names: list[str]) -> list[str]:
        return [
            "SET FOREIGN_KEY_CHECKS = 0",
            *super().clear_database_sql(table_names),
            "SET FOREIGN_KEY_CHECKS = 1",
        ]

    async def list_tables(self, runner: QueryRunner) -> list[str]:
        result = await runner.query(
            "SELECT TABLE_NAME AS name FROM information_schema.TABLES "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE'"
        )
        return [row["name"] for row in result.rows]

    async def load_table_schema(self, runner: QueryRunner, table_name: str) -> TableSchema | None:
        params = {"table": table_name}
        columns = await runner.query(
            "SELECT COLUMN_NAME AS name, COLUMN_TYPE AS type, IS_NULLABLE AS nullable, "
            "COLUMN_DEFAULT AS column_default, COLUMN_KEY AS column_key, EXTRA AS extra "
            "FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table ORDER BY ORDINAL_POSITION",
            params,
        )
        if not columns.rows:
            return None

        table = TableSchema(table_name)
        for row in columns.rows:
            default = row["column_default"]
            table.columns.append(
                TableColumn(
                    name=row["name"],
                    type=row["type"],
                    is_nullable=row["nullable"] == "YES",
                    default=None if default is None else str(default),
                    is_primary=row["column_key"] == "PRI",
                    generation_strategy=(
                        GenerationStrategy.INCREMENT
                        if "auto_increment" in (row["extra"] or "").lower()
                        else GenerationStrategy.NONE
                    ),
                )
            )

        foreign_keys = await runner.query(
            "SELECT k.CONSTRAINT_NAME AS name, k.COLUMN_NAME AS column_name, "
            "k.REFERENCED_TABLE_NAME AS referenced_table, "
            "k.REFERENCED_COLUMN_NAME AS referenced_column, r.DELETE_RULE AS on_delete "
            "FROM information_schema.KEY_COLUMN_USAGE k "
            "JOIN information_schema.REFERENTIAL_CONSTRAINTS r "
            "ON r.CONSTRAINT_SCHEMA = k.CONSTRAINT_SCHEMA AND r.CONSTRAINT_NAME = k.CONSTRAINT_NAME "
            "WHERE k.TABLE_SCHEMA = DATABASE() AND k.TABLE_NAME = :table "
            "ORDER BY k.CONSTRAINT_NAME, k.ORDINAL_POSITION",
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
                    on_delete=row["on_delete"],
                ),
            )
            foreign_key.column_names.append(row["column_name"])
            foreign_key.referenced_column_names.append(row["referenced_column"])
        table.foreign_keys = list(fks.values())

        indices = await runner.query(
            "SELECT INDEX_NAME AS name, NON_UNIQUE AS non_unique, COLUMN_NAME AS column_name "
            "FROM information_schema.STATISTICS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table "
            "ORDER BY INDEX_NAME, SEQ_IN_INDEX",
            params,
        )
        by_name: dict[str, TableIndex] = {}
        for row in indices.rows:
            # foreign keys create a backing index named after the constraint
            if row["name"] == "PRIMARY" or row["name"] in fks:
                continue
            index = by_name.setdefault(
                row["name"], TableIndex(row["name"], [], not int(row["non_unique"]))
            )
            index.column_names.append(row["column_name"])
        table.indices = list(by_name.values())
        return table
