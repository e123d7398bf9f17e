"""UPDATE query builder."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from row_orm.core.exceptions import EntityPropertyNotFoundError, UpdateValuesMissingError
from row_orm.metadata.entity import UNSET
from row_orm.query.builder import QueryBuilder
from row_orm.query.insert import column_value, persistent_column

if TYPE_CHECKING:
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata, EntityMetadata


@dataclass
class UpdateResult:
    affected: int = 0
    raw: Any = None


class UpdateQueryBuilder(QueryBuilder):
    """Builds and runs UPDATE statements.

    Values are keyed by property path. A callable value is rendered as raw SQL
    (``{"views": lambda: "views + 1"}``). Unless disabled with
    ``set(values, special_columns=False)`` the update-date column is set to
    now and the version column incremented.
    """

    qualify_main_alias = False

    def set(self, values: dict[str, Any], special_columns: bool = True) -> UpdateQueryBuilder:
        self.expression_map.value_set = values
        self.expression_map.update_special_columns = special_columns
        return self

    def returning(self, columns: str | list[str]) -> UpdateQueryBuilder:
        self.expression_map.returning = [columns] if isinstance(columns, str) else list(columns)
        return self

    def _updated_columns(self, metadata: EntityMetadata, values: dict[str, Any]) -> list[ColumnMetadata]:
        columns: list[ColumnMetadata] = []
        for key in values:
            found = metadata.find_columns_with_property_path(key)
            if not found:
                raise EntityPropertyNotFoundError(key, metadata.name)
            columns.extend(c for c in found if c not in columns)
        return columns

    def _set_expressions(self) -> list[str]:
        main = self.expression_map.require_main_alias()
        metadata = main.metadata
        values = self.expression_map.value_set
        if not values:
            raise UpdateValuesMissingError()

        expressions: list[str] = []
        if metadata is None:
            for name, value in values.items():
                expressions.append(self._assignment(name, value, None, len(expressions)))
            return expressions

        columns = self._updated_columns(metadata, values)
        for column in columns:
            value = column_value(values, column)
            if value is UNSET:
                continue
            expressions.append(self._assignment(column.database_name, value, column, len(expressions)))

        if self.expression_map.update_special_columns:
            update_date = metadata.update_date_column
            if update_date is not None and update_date not in columns:
                expressions.append(
                    self._assignment(update_date.database_name, datetime.now(), update_date, len(expressions))
                )
            version = metadata.version_column
            if version is not None and version not in columns:
                name = self.escape(version.database_name)
                expressions.append(f"{name} = {name} + 1")
        if not expressions:
            raise UpdateValuesMissingError()
        return expressions

    def _assignment(self, name: str, value: Any, column: ColumnMetadata | None, index: int) -> str:
        if callable(value):
            return f"{self.escape(name)} = {value()}"
        key = f"upd_{index}"
        if column is not None:
            value = self.driver.prepare_persistent_value(value, persistent_column(column))
        self.set_parameter(key, value)
        return f"{self.escape(name)} = :{key}"

    def get_query(self) -> str:
        table_name = self.expression_map.require_main_alias().require_table_name()
        sql = (
            f"UPDATE {self.escape(table_name)} SET {', '.join(self._set_expressions())}"
            f"{self.create_where_expression()}"
        )
        returning = self.expression_map.returning
        if returning and self.driver.supports_returning:
            sql += " RETURNING " + ", ".join(self.replace_property_names(r) for r in returning)
        return sql

    async def execute(self) -> UpdateResult:
        return await self._execute_with_runner(self._execute)

    async def _execute(self, runner: QueryRunner) -> UpdateResult:
        sql = self.get_query()
        result = await runner.query(sql, self.expression_map.parameters)
        return UpdateResult(affected=result.affected, raw=result.rows)
