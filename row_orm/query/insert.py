"""INSERT query builder."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from row_orm.core.enums import GenerationStrategy
from row_orm.core.exceptions import EntityPropertyNotFoundError, InsertValuesMissingError
from row_orm.metadata.entity import UNSET
from row_orm.query.builder import QueryBuilder

if TYPE_CHECKING:
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata, EntityMetadata


def _get(owner: Any, name: str) -> Any:
    if isinstance(owner, dict):
        return owner.get(name, UNSET)
    return getattr(owner, name, UNSET)


def column_value(values: dict[str, Any], column: ColumnMetadata) -> Any:
    """Value for ``column`` in a value set, UNSET when the set does not mention it.

    Value sets are keyed by property path; embeddeds may be given as nested
    mappings or objects, relations as entities, id mappings or bare ids.
    """
    relation = column.relation_metadata
    if relation is not None and column.referenced_column is not None:
        related = values.get(relation.property_name, UNSET)
        if related is None:
            return None
        if related is not UNSET:
            if isinstance(related, dict):
                return related.get(column.referenced_column.property_path, UNSET)
            if relation.inverse_entity_metadata.is_entity(related):
                return column.referenced_column.get_entity_value(related)
            return related
        if column.property_name == relation.property_name:
            return UNSET
    flat = values.get(column.property_path, UNSET)
    if flat is not UNSET:
        return flat
    if column.embedded_metadata is None:
        return UNSET
    owner: Any = values
    for embedded in column.embedded_metadata.chain:
        owner = _get(owner, embedded.property_name)
        if owner is UNSET or owner is None:
            return UNSET
    return _get(owner, column.property_name)


def persistent_column(column: ColumnMetadata) -> ColumnMetadata:
    """Column whose conversion applies when binding a value for ``column``."""
    if column.relation_metadata is not None and column.referenced_column is not None:
        return column.referenced_column
    return column


@dataclass
class InsertResult:
    """Outcome of an INSERT.

    ``identifiers`` holds one id map per inserted row (None when the id is
    unknown), ``generated_maps`` the values the insert generated per row:
    uuids, dates, versions, auto-increment ids and returned database defaults.
    """

    identifiers: list[dict[str, Any] | None] = field(default_factory=list)
    generated_maps: list[dict[str, Any]] = field(default_factory=list)
    raw: Any = None


@dataclass
class _InsertPlan:
    sql: str
    parameters: dict[str, Any]
    rows: list[dict[str, Any]]
    generated: list[dict[str, Any]]
    returning: list[ColumnMetadata]


class InsertQueryBuilder(QueryBuilder):
    """Builds and runs INSERT statements.

    Example::

        result = await connection.create_query_builder().insert().into(Post).values(
            [{"title": "a"}, {"title": "b"}]
        ).execute()
    """

    def into(self, target: Any, columns: list[str] | None = None) -> InsertQueryBuilder:
        self._set_main_alias(target)
        self.expression_map.insert_columns = columns
        return self

    def values(self, values: dict[str, Any] | list[dict[str, Any]]) -> InsertQueryBuilder:
        self.expression_map.value_set = values
        return self

    def returning(self, columns: str | list[str]) -> InsertQueryBuilder:
        self.expression_map.returning = [columns] if isinstance(columns, str) else list(columns)
        return self

    def _value_rows(self) -> list[dict[str, Any]]:
        value_set = self.expression_map.value_set
        if isinstance(value_set, dict):
            value_set = [value_set]
        if not value_set:
            raise InsertValuesMissingError()
        return list(value_set)

    def _insert_columns(self, metadata: EntityMetadata) -> list[ColumnMetadata]:
        columns = [
            c
            for c in metadata.columns
            if c.entity_metadata is metadata and (c.is_insert or c.is_discriminator)
        ]
        given = self.expression_map.insert_columns
        if given is not None:
            selected = []
            for path in given:
                found = metadata.find_columns_with_property_path(path)
                if not found:
                    raise EntityPropertyNotFoundError(path, metadata.name)
                selected.extend(found)
            columns = [c for c in columns if c in selected or c.is_discriminator or c.is_generated]
        return columns

    def _row_values(
        self, metadata: EntityMetadata, columns: list[ColumnMetadata], values: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Bindable values per column name, and the python-generated values by property path."""
        row: dict[str, Any] = {}
        generated: dict[str, Any] = {}
        for column in columns:
            value = column_value(values, column)
            if column.is_discriminator:
                value = metadata.discriminator_value
            elif value is UNSET or (value is None and column.is_generated):
                if column.generation_strategy is GenerationStrategy.UUID:
                    value = str(uuid.uuid4())
                    generated[column.property_path] = value
                elif column.is_create_date or column.is_update_date:
                    value = datetime.now()
                    generated[column.property_path] = value
                elif column.is_version:
                    value = 1
                    generated[column.property_path] = value
                else:
                    continue
            row[column.database_name] = self.driver.prepare_persistent_value(value, persistent_column(column))
        return row, generated

    def _returning_columns(
        self, metadata: EntityMetadata | None, columns: list[ColumnMetadata], rows: list[dict[str, Any]]
    ) -> list[ColumnMetadata]:
        if metadata is None:
            return []
        explicit = self.expression_map.returning
        if explicit is not None:
            returning = []
            for path in explicit:
                found = metadata.find_columns_with_property_path(path) or [
                    c for c in metadata.columns if c.database_name == path
                ]
                if not found:
                    raise EntityPropertyNotFoundError(path, metadata.name)
                returning.extend(found)
            return returning
        if not self.driver.supports_returning:
            return []
        returning = []
        for column in columns:
            omitted = any(column.database_name not in row for row in rows)
            if omitted and (column.generation_strategy is GenerationStrategy.INCREMENT or column.default is not None):
                returning.append(column)
        return returning

    def _plan(self) -> _InsertPlan:
        main = self.expression_map.require_main_alias()
        metadata = main.metadata
        value_rows = self._value_rows()

        if metadata is None:
            rows = [dict(values) for values in value_rows]
            generated: list[dict[str, Any]] = [{} for _ in rows]
            table = main.require_table_name()
        else:
            columns = self._insert_columns(metadata)
            rows, generated = [], []
            for values in value_rows:
                row, generated_values = self._row_values(metadata, columns, values)
                rows.append(row)
                generated.append(generated_values)
            table = metadata.table_name

        names: list[str] = []
        for row in rows:
            for name in row:
                if name not in names:
                    names.append(name)

        parameters: dict[str, Any] = {}
        sql = f"INSERT INTO {self.escape(table)}"
        if not names:
            sql += f" {self.driver.default_values_clause()}"
        else:
            tuples = []
            for row_index, row in enumerate(rows):
                placeholders = []
                for column_index, name in enumerate(names):
                    if name not in row:
                        placeholders.append(self.driver.missing_insert_value())
                        continue
                    key = f"i{row_index}_{column_index}"
                    parameters[key] = row[name]
                    placeholders.append(f":{key}")
                tuples.append("(" + ", ".join(placeholders) + ")")
            sql += f"({', '.join(self.escape(n) for n in names)}) VALUES {', '.join(tuples)}"

        returning = self._returning_columns(metadata, columns if metadata is not None else [], rows)
        if returning:
            sql += " RETURNING " + ", ".join(self.escape(c.database_name) for c in returning)
        return _InsertPlan(sql, parameters, rows, generated, returning)

    def get_query(self) -> str:
        return self._plan().sql

    def get_query_and_parameters(self) -> tuple[str, dict[str, Any]]:
        plan = self._plan()
        return plan.sql, plan.parameters

    async def execute(self) -> InsertResult:
        return await self._execute_with_runner(self._execute)

    async def _execute(self, runner: QueryRunner) -> InsertResult:
        plan = self._plan()
        metadata = self.expression_map.require_main_alias().metadata
        if not plan.parameters and len(plan.rows) > 1:
            # DEFAULT VALUES inserts a single row per statement
            results = [await runner.query(plan.sql) for _ in plan.rows]
            raw: Any = [r.last_insert_id for r in results]
            last_ids = raw
            returned: list[dict[str, Any]] = [row for r in results for row in r.rows]
        else:
            result = await runner.query(plan.sql, plan.parameters)
            raw = result.rows if plan.returning else result.last_insert_id
            last_ids = [result.last_insert_id] if len(plan.rows) == 1 else []
            returned = result.rows

        insert_result = InsertResult(raw=raw)
        value_rows = self._value_rows()
        for index, generated in enumerate(plan.generated):
            generated_map = dict(generated)
            if metadata is not None:
                if plan.returning and index < len(returned):
                    for column in plan.returning:
                        generated_map[column.property_path] = self.driver.prepare_hydrated_value(
                            returned[index][column.database_name], column
                        )
                increment = metadata.increment_column
                if (
                    increment is not None
                    and increment.database_name not in plan.rows[index]
                    and increment.property_path not in generated_map
                    and index < len(last_ids)
                    and last_ids[index] is not None
                ):
                    generated_map[increment.property_path] = last_ids[index]
            insert_result.generated_maps.append(generated_map)
            insert_result.identifiers.append(
                self._identifier(metadata, value_rows[index], generated_map) if metadata is not None else None
            )
        return insert_result

    @staticmethod
    def _identifier(
        metadata: EntityMetadata, values: dict[str, Any], generated: dict[str, Any]
    ) -> dict[str, Any] | None:
        id_map: dict[str, Any] = {}
        for column in metadata.primary_columns:
            value = generated.get(column.property_path, UNSET)
            if value is UNSET:
                value = column_value(values, column)
            if value is UNSET or value is None:
                return None
            id_map[column.property_path] = value
        return id_map
