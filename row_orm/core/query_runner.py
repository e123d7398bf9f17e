"""Query runner.

A QueryRunner owns one pooled database connection from first use until
release. Every statement, including transaction boundaries and schema DDL,
goes through ``query()`` so that it is logged and driver errors are wrapped
in QueryFailedError.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from row_orm.core.exceptions import (
    QueryFailedError,
    QueryRunnerAlreadyReleasedError,
    TableNotFoundError,
    TransactionStateError,
)
from row_orm.core.params import expand_params, normalize_params
from row_orm.schema.table import TableColumn, TableForeignKey, TableIndex, TableSchema

if TYPE_CHECKING:
    from row_orm.core.connection import Connection
    from row_orm.repository.manager import EntityManager

logger = logging.getLogger(__name__)


class _TxState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class QueryResult:
    """Rows returned by a statement plus driver-reported counters."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    affected: int = 0
    last_insert_id: Any = None


async def _fetch_rows(cursor: Any) -> list[dict[str, Any]]:
    """Convert cursor results to list of dicts.

    Handles both tuple-like rows and dict-like rows from different adapters.
    """
    if cursor.description is None:
        return []
    columns = [desc[0] for desc in cursor.description]
    rows_raw = await cursor.fetchall()
    if rows_raw and isinstance(rows_raw[0], dict):
        return [dict(row) for row in rows_raw]
    return [dict(zip(columns, row, strict=True)) for row in rows_raw]


class QueryRunner:
    """Single-connection session: queries, transactions and schema DDL."""

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self.driver = connection.driver
        self._db_connection: Any = None
        self._state = _TxState.IDLE
        self._released = False
        self._sql_in_memory = False
        self._memory_sql: list[str] = []
        self._manager: EntityManager | None = None

    @property
    def manager(self) -> EntityManager:
        """Entity manager bound to this runner (and its transaction)."""
        if self._manager is None:
            from row_orm.repository.manager import EntityManager

            self._manager = EntityManager(self.connection, self)
        return self._manager

    @property
    def is_released(self) -> bool:
        return self._released

    @property
    def is_transaction_active(self) -> bool:
        return self._state is _TxState.ACTIVE

    # ------------------------------------------------------------------
    # connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> Any:
        """Acquire the underlying database connection on first use."""
        if self._released:
            raise QueryRunnerAlreadyReleasedError()
        if self._db_connection is None:
            self._db_connection = await self.connection.acquire()
        return self._db_connection

    async def release(self) -> None:
        """Return the connection to the pool. Idempotent."""
        if self._released:
            return
        if self.is_transaction_active:
            logger.warning("Releasing query runner with an open transaction; rolling back")
            await self.rollback_transaction()
        self._released = True
        if self._db_connection is not None:
            await self.connection.release(self._db_connection)
            self._db_connection = None

    # ------------------------------------------------------------------
    # statements
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> QueryResult:
        """Execute one statement with `:name` parameters.

        Raises:
            ParameterMissingError: If a referenced parameter is not bound.
            QueryFailedError: If the driver rejects the statement.
        """
        if self._released:
            raise QueryRunnerAlreadyReleasedError()
        sql, bound = expand_params(sql, params)
        db_connection = await self.connect()

        config = self.connection.config
        logger.log(
            logging.INFO if config.logging else logging.DEBUG,
            "query: %s -- parameters: %r",
            sql,
            bound,
        )
        driver_sql = normalize_params(sql, self.driver.paramstyle) if bound else sql
        started = time.perf_counter()
        try:
            cursor = await self.driver.execute(db_connection, driver_sql, bound or None)
            rows = await _fetch_rows(cursor)
            rowcount = cursor.rowcount
            result = QueryResult(
                rows=rows,
                affected=rowcount if rowcount and rowcount > 0 else 0,
                last_insert_id=getattr(cursor, "lastrowid", None),
            )
            await cursor.close()
        except Exception as e:
            logger.error("query failed: %s -- parameters: %r -- error: %s", sql, bound, e)
            raise QueryFailedError(sql, bound, e) from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        if config.max_query_execution_time and elapsed_ms > config.max_query_execution_time:
            logger.warning("query is slow: %s -- execution time: %.1f ms", sql, elapsed_ms)
        return result

    # ------------------------------------------------------------------
    # transactions
    # ------------------------------------------------------------------

    async def start_transaction(self, isolation_level: str | None = None) -> None:
        if self._state is _TxState.ACTIVE:
            raise TransactionStateError(self._state.value, "start")
        for sql in self.driver.begin_transaction_sql(isolation_level):
            await self.query(sql)
        self._state = _TxState.ACTIVE

    async def commit_transaction(self) -> None:
        if self._state is not _TxState.ACTIVE:
            raise TransactionStateError(self._state.value, "commit")
        await self.query("COMMIT")
        self._state = _TxState.COMMITTED

    async def rollback_transaction(self) -> None:
        if self._state is not _TxState.ACTIVE:
            raise TransactionStateError(self._state.value, "rollback")
        # the session is unusable for this transaction either way
        self._state = _TxState.ROLLED_BACK
        await self.query("ROLLBACK")

    # ------------------------------------------------------------------
    # sql-in-memory mode (schema log)
    # ------------------------------------------------------------------

    def enable_sql_memory(self) -> None:
        """Record DDL statements instead of executing them."""
        self._sql_in_memory = True
        self._memory_sql = []

    def disable_sql_memory(self) -> None:
        self._sql_in_memory = False
        self._memory_sql = []

    def get_memory_sql(self) -> list[str]:
        return list(self._memory_sql)

    async def _execute_ddl(self, statements: list[str]) -> None:
        if self._sql_in_memory:
            self._memory_sql.extend(statements)
            return
        for sql in statements:
            await self.query(sql)

    # ------------------------------------------------------------------
    # schema
    # ------------------------------------------------------------------

    async def load_table_schema(self, table_name: str) -> TableSchema | None:
        return await self.driver.load_table_schema(self, table_name)

    async def load_table_schemas(self, table_names: list[str]) -> list[TableSchema]:
        tables = []
        for name in table_names:
            table = await self.load_table_schema(name)
            if table is not None:
                tables.append(table)
        return tables

    async def has_table(self, table_name: str) -> bool:
        return table_name in await self.driver.list_tables(self)

    async def _resolve_table(self, table: TableSchema | str) -> TableSchema:
        if isinstance(table, TableSchema):
            return table
        loaded = await self.load_table_schema(table)
        if loaded is None:
            raise TableNotFoundError(table)
        return loaded

    async def create_table(self, table: TableSchema, if_not_exists: bool = False) -> None:
        if if_not_exists and await self.has_table(table.name):
            return
        await self._execute_ddl(self.driver.create_table_sql(table))

    async def drop_table(self, table: TableSchema | str, if_exists: bool = False) -> None:
        name = table.name if isinstance(table, TableSchema) else table
        if if_exists and not await self.has_table(name):
            return
        await self._execute_ddl(self.driver.drop_table_sql(name))

    async def add_column(self, table: TableSchema | str, column: TableColumn) -> None:
        table = await self._resolve_table(table)
        await self._execute_ddl(self.driver.add_column_sql(table, column))
        table.columns.append(column)

    async def drop_column(self, table: TableSchema | str, column: TableColumn | str) -> None:
        table = await self._resolve_table(table)
        name = column.name if isinstance(column, TableColumn) else column
        existing = table.find_column(name)
        if existing is None:
            raise TableNotFoundError(f"{table.name}.{name}")
        await self._execute_ddl(self.driver.drop_column_sql(table, existing))
        table.columns.remove(existing)
        table.indices = [i for i in table.indices if name not in i.column_names]
        table.foreign_keys = [f for f in table.foreign_keys if name not in f.column_names]

    async def change_column(
        self, table: TableSchema | str, old: TableColumn | str, new: TableColumn
    ) -> None:
        table = await self._resolve_table(table)
        old_name = old.name if isinstance(old, TableColumn) else old
        existing = table.find_column(old_name)
        if existing is None:
            raise TableNotFoundError(f"{table.name}.{old_name}")
        await self._execute_ddl(self.driver.change_column_sql(table, existing, new))
        table.columns = [new if c is existing else c for c in table.columns]

    async def create_index(self, table: TableSchema | str, index: TableIndex) -> None:
        table = await self._resolve_table(table)
        await self._execute_ddl(self.driver.create_index_sql(table, index))
        table.indices.append(index)

    async def drop_index(self, table: TableSchema | str, index: TableIndex | str) -> None:
        table = await self._resolve_table(table)
        name = index.name if isinstance(index, TableIndex) else index
        existing = table.find_index(name) or TableIndex(name, [])
        await self._execute_ddl(self.driver.drop_index_sql(table, existing))
        table.indices = [i for i in table.indices if i.name != name]

    async def create_foreign_key(self, table: TableSchema | str, foreign_key: TableForeignKey) -> None:
        table = await self._resolve_table(table)
        await self._execute_ddl(self.driver.create_foreign_key_sql(table, foreign_key))
        table.foreign_keys.append(foreign_key)

    async def drop_foreign_key(self, table: TableSchema | str, foreign_key: TableForeignKey) -> None:
        table = await self._resolve_table(table)
        await self._execute_ddl(self.driver.drop_foreign_key_sql(table, foreign_key))
        table.foreign_keys = [
            f for f in table.foreign_keys if f.signature != foreign_key.signature
        ]

    async def create_database(self, database: str) -> None:
        await self._execute_ddl(self.driver.create_database_sql(database))

    async def drop_database(self, database: str) -> None:
        await self._execute_ddl(self.driver.drop_database_sql(database))

    async def clear_database(self) -> None:
        """Drop every table in the current database or schema."""
        tables = await self.driver.list_tables(self)
        if tables:
            await self._execute_ddl(self.driver.clear_database_sql(tables))
