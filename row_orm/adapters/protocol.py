"""Database driver protocol.

Every adapter module implements this protocol: pool lifecycle and statement
execution (as in the async adapters it grew from), plus the dialect
capabilities the query builder, the schema builder and the hydrator rely on.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from row_orm.core.enums import DatabaseBackend

if TYPE_CHECKING:
    from row_orm.core.connection import ConnectionConfig
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata
    from row_orm.schema.table import TableColumn, TableForeignKey, TableIndex, TableSchema


@runtime_checkable
class Driver(Protocol):
    """Asynchronous database driver protocol."""

    @property
    def backend(self) -> DatabaseBackend:
        """The database family this driver talks to."""
        ...

    @property
    def paramstyle(self) -> str:
        """Parameter binding style: 'named' (:name) or 'pyformat' (%(name)s)."""
        ...

    @property
    def supports_returning(self) -> bool:
        """True when INSERT ... RETURNING reports generated values."""
        ...

    @property
    def inline_foreign_keys(self) -> bool:
        """True when foreign keys can only be declared inside CREATE TABLE."""
        ...

    # --- pool lifecycle ---

    async def create_pool(self, config: ConnectionConfig) -> Any: ...

    async def acquire_connection(self, pool: Any) -> Any: ...

    async def release_connection(self, connection: Any, pool: Any) -> None: ...

    async def close_pool(self, pool: Any) -> None: ...

    async def execute(
        self,
        connection: Any,
        sql: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Execute SQL and return a cursor-like object."""
        ...

    # --- dialect ---

    def escape(self, name: str) -> str: ...

    def build_limit_offset(self, limit: int | None, offset: int | None) -> str: ...

    def default_values_clause(self) -> str: ...

    def missing_insert_value(self) -> str: ...

    def begin_transaction_sql(self, isolation_level: str | None = None) -> list[str]: ...

    def column_type_sql(self, column: ColumnMetadata) -> str: ...

    def normalize_type(self, type_sql: str) -> str: ...

    def default_sql(self, value: Any) -> str | None: ...

    def normalize_default(self, default: str | None) -> str | None: ...

    def prepare_persistent_value(self, value: Any, column: ColumnMetadata) -> Any: ...

    def prepare_hydrated_value(self, value: Any, column: ColumnMetadata) -> Any: ...

    # --- schema ---

    async def list_tables(self, runner: QueryRunner) -> list[str]: ...

    def clear_database_sql(self, table_names: list[str]) -> list[str]: ...

    async def load_table_schema(self, runner: QueryRunner, table_name: str) -> TableSchema | None: ...

    def create_table_sql(self, table: TableSchema) -> list[str]: ...

    def drop_table_sql(self, table_name: str) -> list[str]: ...

    def add_column_sql(self, table: TableSchema, column: TableColumn) -> list[str]: ...

    def drop_column_sql(self, table: TableSchema, column: TableColumn) -> list[str]: ...

    def change_column_sql(
        self, table: TableSchema, old: TableColumn, new: TableColumn
    ) -> list[str]: ...

    def create_index_sql(self, table: TableSchema, index: TableIndex) -> list[str]: ...

    def drop_index_sql(self, table: TableSchema, index: TableIndex) -> list[str]: ...

    def create_foreign_key_sql(self, table: TableSchema, foreign_key: TableForeignKey) -> list[str]: ...

    def drop_foreign_key_sql(self, table: TableSchema, foreign_key: TableForeignKey) -> list[str]: ...

    def create_database_sql(self, database: str) -> list[str]: ...

    def drop_database_sql(self, database: str) -> list[str]: ...

    def schema_sync_prelude(self) -> list[str]:
        """Statements run before a schema synchronization transaction."""
        ...

    def schema_sync_postlude(self) -> list[str]:
        """Statements run after a schema synchronization transaction."""
        ...
