"""Schema synchronization.

Compares the tables described by entity metadata with the tables loaded from
the database and issues the DDL that brings the database in line. Changes
are applied in a fixed order so that foreign keys never point at columns
that are about to change:

1. drop foreign keys that changed or vanished
2. drop indices that changed or vanished
3. create missing tables
4. add missing columns
5. drop removed columns
6. change columns whose type, nullability, default or primary flag differ
7. create missing indices
8. create missing foreign keys
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from row_orm.schema.table import TableColumn, TableIndex, TableSchema

if TYPE_CHECKING:
    from row_orm.core.connection import Connection
    from row_orm.core.query_runner import QueryRunner

logger = logging.getLogger(__name__)


class SchemaBuilder:
    """Creates or updates the database schema from entity metadata."""

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self.driver = connection.driver

    async def log(self) -> list[str]:
        """Return the DDL a ``build()`` would execute, without executing it.

        An empty list means the schema is in sync.
        """
        runner = self.connection.create_query_runner()
        try:
            runner.enable_sql_memory()
            await self._synchronize(runner)
            return runner.get_memory_sql()
        finally:
            runner.disable_sql_memory()
            await runner.release()

    async def build(self) -> None:
        """Apply pending schema changes inside one transaction."""
        runner = self.connection.create_query_runner()
        try:
            for sql in self.driver.schema_sync_prelude():
                await runner.query(sql)
            try:
                await runner.start_transaction()
                try:
                    await self._synchronize(runner)
                    await runner.commit_transaction()
                except Exception:
                    await runner.rollback_transaction()
                    raise
            finally:
                for sql in self.driver.schema_sync_postlude():
                    await runner.query(sql)
        finally:
            await runner.release()

    # ------------------------------------------------------------------
    # diff
    # ------------------------------------------------------------------

    def _expected_tables(self) -> list[TableSchema]:
        return [
            TableSchema.from_metadata(metadata, self.driver)
            for metadata in self.connection.entity_metadatas
            if metadata.owns_table
        ]

    async def _synchronize(self, runner: QueryRunner) -> None:
        expected = self._expected_tables()
        existing: dict[str, TableSchema] = {}
        for table in expected:
            loaded = await runner.load_table_schema(table.name)
            if loaded is not None:
                existing[table.name] = loaded

        await self._drop_old_foreign_keys(runner, expected, existing)
        await self._drop_old_indices(runner, expected, existing)
        created = await self._create_new_tables(runner, expected, existing)
        for table in expected:
            if table.name in created:
                continue
            current = existing[table.name]
            await self._add_new_columns(runner, table, current)
            await self._drop_removed_columns(runner, table, current)
            await self._update_changed_columns(runner, table, current)
        for table in expected:
            await self._create_new_indices(runner, table, existing[table.name])
        for table in expected:
            await self._create_new_foreign_keys(runner, table, existing[table.name])

    async def _drop_old_foreign_keys(
        self, runner: QueryRunner, expected: list[TableSchema], existing: dict[str, TableSchema]
    ) -> None:
        for table in expected:
            current = existing.get(table.name)
            if current is None:
                continue
            for foreign_key in list(current.foreign_keys):
                if table.find_foreign_key(foreign_key) is None:
                    logger.info("Dropping foreign key %s on %s", foreign_key.name, table.name)
                    await runner.drop_foreign_key(current, foreign_key)

    async def _drop_old_indices(
        self, runner: QueryRunner, expected: list[TableSchema], existing: dict[str, TableSchema]
    ) -> None:
        for table in expected:
            current = existing.get(table.name)
            if current is None:
                continue
            for index in list(current.indices):
                wanted = table.find_index(index.name)
                if wanted is None or self._index_changed(index, wanted):
                    logger.info("Dropping index %s on %s", index.name, table.name)
                    await runner.drop_index(current, index)

    async def _create_new_tables(
        self, runner: QueryRunner, expected: list[TableSchema], existing: dict[str, TableSchema]
    ) -> set[str]:
        created: set[str] = set()
        for table in expected:
            if table.name in existing:
                continue
            new = table.clone()
            if not self.driver.inline_foreign_keys:
                new.foreign_keys = []
            logger.info("Creating table %s", table.name)
            await runner.create_table(new)
            existing[table.name] = new
            created.add(table.name)
        return created

    async def _add_new_columns(self, runner: QueryRunner, table: TableSchema, current: TableSchema) -> None:
        for column in table.columns:
            if current.find_column(column.name) is None:
                logger.info("Adding column %s.%s", table.name, column.name)
                await runner.add_column(current, column)

    async def _drop_removed_columns(self, runner: QueryRunner, table: TableSchema, current: TableSchema) -> None:
        for column in list(current.columns):
            if table.find_column(column.name) is None:
                logger.info("Dropping column %s.%s", table.name, column.name)
                await runner.drop_column(current, column)

    async def _update_changed_columns(self, runner: QueryRunner, table: TableSchema, current: TableSchema) -> None:
        for column in table.columns:
            old = current.find_column(column.name)
            if old is not None and self._column_changed(old, column):
                logger.info("Changing column %s.%s", table.name, column.name)
                await runner.change_column(current, old, column)

    async def _create_new_indices(self, runner: QueryRunner, table: TableSchema, current: TableSchema) -> None:
        for index in table.indices:
            if current.find_index(index.name) is None:
                logger.info("Creating index %s on %s", index.name, table.name)
                await runner.create_index(current, TableIndex(index.name, list(index.column_names), index.is_unique))

    async def _create_new_foreign_keys(self, runner: QueryRunner, table: TableSchema, current: TableSchema) -> None:
        for foreign_key in table.foreign_keys:
            if current.find_foreign_key(foreign_key) is None:
                logger.info("Creating foreign key %s on %s", foreign_key.name, table.name)
                await runner.create_foreign_key(current, foreign_key)

    # ------------------------------------------------------------------
    # comparison
    # ------------------------------------------------------------------

    @staticmethod
    def _index_changed(old: TableIndex, new: TableIndex) -> bool:
        return old.column_names != new.column_names or old.is_unique != new.is_unique

    def _column_changed(self, old: TableColumn, new: TableColumn) -> bool:
        return (
            self.driver.normalize_type(old.type) != self.driver.normalize_type(new.type)
            or old.is_nullable != new.is_nullable
            or old.is_primary != new.is_primary
            or self.driver.normalize_default(old.default) != self.driver.normalize_default(new.default)
        )
