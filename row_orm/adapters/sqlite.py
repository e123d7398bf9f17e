"""SQLite driver using aiosqlite."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from row_orm.adapters.base import BaseDriver
from row_orm.core.enums import DatabaseBackend, GenerationStrategy
from row_orm.schema.table import TableColumn, TableForeignKey, TableIndex, TableSchema

if TYPE_CHECKING:
    from row_orm.core.connection import ConnectionConfig
    from row_orm.core.query_runner import QueryRunner


class SqliteAsyncAdapter(BaseDriver):
    """Asynchronous SQLite adapter using aiosqlite.

    Connections run in autocommit mode; transactions are opened with explicit
    BEGIN statements so every boundary goes through the query runner.
    """

    backend = DatabaseBackend.SQLITE
    column_types = {
        "integer": "integer",
        "int": "integer",
        "bigint": "bigint",
        "smallint": "smallint",
        "varchar": "varchar({length})",
        "text": "text",
        "boolean": "boolean",
        "float": "float",
        "double": "double",
        "decimal": "decimal({precision},{scale})",
        "datetime": "datetime",
        "timestamp": "datetime",
        "date": "date",
        "time": "time",
        "blob": "blob",
        "json": "text",
        "uuid": "varchar(36)",
    }

    @property
    def paramstyle(self) -> str:
        return "named"

    @property
    def inline_foreign_keys(self) -> bool:
        return True

    async def create_pool(self, config: ConnectionConfig) -> list[Any]:
        """Create async SQLite connection pool."""
        import aiosqlite

        pool: list[Any] = []
        for _ in range(config.pool_size):
            conn = await aiosqlite.connect(config.database, isolation_level=None)
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA foreign_keys = ON")
            pool.append(conn)
        return pool

    async def execute(
        self,
        connection: Any,
        sql: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Execute SQL asynchronously and return a cursor."""
        return await connection.execute(sql, params or {})

    def build_limit_offset(self, limit: int | None, offset: int | None) -> str:
        if offset is not None and limit is None:
            return f"LIMIT -1 OFFSET {int(offset)}"
        return super().build_limit_offset(limit, offset)

    def missing_insert_value(self) -> str:
        # VALUES lists do not accept DEFAULT
        return "NULL"

    def begin_transaction_sql(self, isolation_level: str | None = None) -> list[str]:
        if isolation_level and self._isolation(isolation_level) == "READ UNCOMMITTED":
            return ["PRAGMA read_uncommitted = 1", "BEGIN"]
        return ["BEGIN"]

    def _to_database(self, value: Any, column_type: str) -> Any:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, datetime):
            return value.isoformat(sep=" ")
        if isinstance(value, (date, time)):
            return value.isoformat()
        if isinstance(value, Decimal):
            return str(value)
        return value

    def _from_database(self, value: Any, column_type: str) -> Any:
        if column_type == "boolean":
            return bool(value)
        if column_type in ("datetime", "timestamp") and isinstance(value, str):
            return datetime.fromisoformat(value)
        if column_type == "date" and isinstance(value, str):
            return date.fromisoformat(value)
        if column_type == "time" and isinstance(value, str):
            return time.fromisoformat(value)
        if column_type == "decimal":
            return Decimal(str(value))
        return super()._from_database(value, column_type)

    # ------------------------------------------------------------------
    # schema
    # ------------------------------------------------------------------

    def _single_increment(self, table: TableSchema) -> bool:
        return len(table.primary_keys) == 1 and any(
            c.is_primary and c.is_increment for c in table.columns
        )

    def _inline_primary(self, table: TableSchema) -> bool:
        return self._single_increment(table)

    def _increment_clause(self, column: TableColumn, table: TableSchema) -> str:
        if column.is_primary and self._single_increment(table):
            return " PRIMARY KEY AUTOINCREMENT"
        return ""

    async def list_tables(self, runner: QueryRunner) -> list[str]:
        result = await runner.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%'"
        )
        return [row["name"] for row in result.rows]

    async def load_table_schema(self, runner: QueryRunner, table_name: str) -> TableSchema | None:
        master = await runner.query(
            "SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name",
            {"name": table_name},
        )
        if not master.rows:
            return None
        create_sql = (master.rows[0]["sql"] or "").upper()
        escaped = self.escape(table_name)

        table = TableSchema(table_name)
        info = await runner.query(f"PRAGMA table_info({escaped})")
        for row in info.rows:
            is_primary = bool(row["pk"])
            increment = is_primary and "AUTOINCREMENT" in create_sql
            table.columns.append(
                TableColumn(
                    name=row["name"],
                    type=row["type"],
                    is_nullable=not row["notnull"] and not is_primary,
                    default=row["dflt_value"],
                    is_primary=is_primary,
                    generation_strategy=(
                        GenerationStrategy.INCREMENT if increment else GenerationStrategy.NONE
                    ),
                )
            )

        index_list = await runner.query(f"PRAGMA index_list({escaped})")
        for row in index_list.rows:
            # origin 'c' means CREATE INDEX; 'pk' and 'u' are implicit
            if row["origin"] != "c":
                continue
            columns = await runner.query(f"PRAGMA index_info({self.escape(row['name'])})")
            table.indices.append(
                TableIndex(
                    name=row["name"],
                    column_names=[c["name"] for c in sorted(columns.rows, key=lambda c: c["seqno"])],
                    is_unique=bool(row["unique"]),
                )
            )

        foreign_keys: dict[int, TableForeignKey] = {}
        fk_rows = await runner.query(f"PRAGMA foreign_key_list({escaped})")
        for row in sorted(fk_rows.rows, key=lambda r: (r["id"], r["seq"])):
            foreign_key = foreign_keys.get(row["id"])
            if foreign_key is None:
                foreign_key = TableForeignKey(
                    name=f"fk_{table_name}_{row['id']}",
                    column_names=[],
                    referenced_table_name=row["table"],
                    referenced_column_names=[],
                    on_delete=row["on_delete"],
                )
                foreign_keys[row["id"]] = foreign_key
            foreign_key.column_names.append(row["from"])
            foreign_key.referenced_column_names.append(row["to"])
        table.foreign_keys = list(foreign_keys.values())
        return table

    def _recreate_table_sql(self, old: TableSchema, new: TableSchema) -> list[str]:
        """ALTER TABLE replacement: copy rows into a rebuilt table."""
        temporary = f"temporary_{new.name}"
        statements = [self._create_table_statement(new, temporary)]
        common = ", ".join(self.escape(c.name) for c in new.columns if old.find_column(c.name))
        if common:
            statements.append(
                f"INSERT INTO {self.escape(temporary)}({common}) "
                f"SELECT {common} FROM {self.escape(old.name)}"
            )
        statements.append(f"DROP TABLE {self.escape(old.name)}")
        statements.append(f"ALTER TABLE {self.escape(temporary)} RENAME TO {self.escape(new.name)}")
        for index in new.indices:
            statements.extend(self.create_index_sql(new, index))
        return statements

    def add_column_sql(self, table: TableSchema, column: TableColumn) -> list[str]:
        if column.is_primary or (not column.is_nullable and column.default is None):
            new = table.clone()
            new.columns.append(column)
            return self._recreate_table_sql(table, new)
        return super().add_column_sql(table, column)

    def drop_column_sql(self, table: TableSchema, column: TableColumn) -> list[str]:
        new = table.clone()
        new.columns = [c for c in new.columns if c.name != column.name]
        new.indices = [i for i in new.indices if column.name not in i.column_names]
        new.foreign_keys = [f for f in new.foreign_keys if column.name not in f.column_names]
        return self._recreate_table_sql(table, new)

    def change_column_sql(self, table: TableSchema, old: TableColumn, new: TableColumn) -> list[str]:
        changed = table.clone()
        changed.columns = [new if c.name == old.name else c for c in changed.columns]
        return self._recreate_table_sql(table, changed)

    def create_foreign_key_sql(self, table: TableSchema, foreign_key: TableForeignKey) -> list[str]:
        new = table.clone()
        new.foreign_keys.append(foreign_key)
        return self._recreate_table_sql(table, new)

    def drop_foreign_key_sql(self, table: TableSchema, foreign_key: TableForeignKey) -> list[str]:
        new = table.clone()
        new.foreign_keys = [f for f in new.foreign_keys if f.signature != foreign_key.signature]
        return self._recreate_table_sql(table, new)

    def create_database_sql(self, database: str) -> list[str]:
        # the database file is created on connect
        return []

    def drop_database_sql(self, database: str) -> list[str]:
        return []

    def schema_sync_prelude(self) -> list[str]:
        return ["PRAGMA foreign_keys = OFF"]

    def schema_sync_postlude(self) -> list[str]:
        return ["PRAGMA foreign_keys = ON"]
