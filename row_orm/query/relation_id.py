"""Relation id loading for ``load_relation_id_and_map``."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from row_orm.query.expression import RelationLoadAttribute
from row_orm.query.relation_count import parent_key

if TYPE_CHECKING:
    from row_orm.adapters.protocol import Driver
    from row_orm.core.connection import Connection
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata, RelationMetadata
    from row_orm.query.expression import QueryExpressionMap


@dataclass
class RelationIdLoadResult:
    """Related ids per parent row.

    Owning to-one relations are read straight from the parent row's join
    columns; every other relation kind is loaded with one extra query.
    """

    attribute: RelationLoadAttribute
    relation: RelationMetadata
    driver: Driver
    parent_columns: list[ColumnMetadata]
    ids: dict[tuple[str, ...], list[Any]] = field(default_factory=dict)

    def _id_value(self, values: dict[str, Any]) -> Any:
        if len(values) == 1:
            return next(iter(values.values()))
        return values

    def value_for(self, row: dict[str, Any]) -> Any:
        alias = self.attribute.parent_alias
        if self.relation.is_with_join_columns:
            values = {}
            for column in self.relation.join_columns:
                raw = row.get(f"{alias}_{column.database_name}")
                if raw is None:
                    return None
                referenced = column.require_referenced_column()
                values[referenced.property_path] = self.driver.prepare_hydrated_value(raw, referenced)
            return self._id_value(values)
        key = parent_key(row, alias, self.parent_columns)
        related = self.ids.get(key, []) if key is not None else []
        if self.relation.is_to_many:
            return list(related)
        return related[0] if related else None


class RelationIdLoader:
    """Loads the relation id decorations of one select query."""

    def __init__(self, connection: Connection, expression_map: QueryExpressionMap, query_runner: QueryRunner) -> None:
        self.connection = connection
        self.driver = connection.driver
        self.expression_map = expression_map
        self.query_runner = query_runner

    async def load(self, raw_results: list[dict[str, Any]]) -> list[RelationIdLoadResult]:
        results = []
        for attribute in self.expression_map.relation_id_attributes:
            parent = self.expression_map.find_alias(attribute.parent_alias).require_metadata()
            relation = parent.get_relation(attribute.relation_property)
            result = RelationIdLoadResult(
                attribute,
                relation,
                self.driver,
                [c.require_referenced_column() for c in relation.join_columns],
            )
            if not relation.is_with_join_columns:
                await self._load_ids(result, raw_results)
            results.append(result)
        return results

    async def _load_ids(self, result: RelationIdLoadResult, raw_results: list[dict[str, Any]]) -> None:
        attribute = result.attribute
        relation = result.relation
        keys = []
        seen = set()
        for row in raw_results:
            key = parent_key(row, attribute.parent_alias, result.parent_columns)
            if key is None or key in seen:
                continue
            seen.add(key)
            keys.append(tuple(row[f"{attribute.parent_alias}_{c.database_name}"] for c in result.parent_columns))
        if not keys:
            return

        target = relation.inverse_entity_metadata
        builder = self.connection.create_query_builder(query_runner=self.query_runner)
        builder.expression_map.inherit_cache(self.expression_map)
        escape = builder.escape
        if relation.is_many_to_many:
            junction = relation.require_junction_metadata()
            alias_name = attribute.alias_name or junction.table_name
            builder.from_(junction.table_name, alias_name)
            id_columns = [
                (f"{escape(alias_name)}.{escape(c.database_name)}", c.referenced_column)
                for c in relation.inverse_join_columns
            ]
        else:
            alias_name = attribute.alias_name or target.table_name
            builder.from_(target.target, alias_name)
            id_columns = [
                (f"{escape(alias_name)}.{escape(c.database_name)}", c) for c in target.primary_columns
            ]
        key_columns = [f"{escape(alias_name)}.{escape(c.database_name)}" for c in relation.join_columns]

        builder.select([])
        for index, column in enumerate(key_columns):
            builder.add_select(column, f"parent_{index}")
        for index, (column, _) in enumerate(id_columns):
            builder.add_select(column, f"id_{index}")
        if attribute.query_modifier is not None:
            attribute.query_modifier(builder)
        builder.and_where(builder.values_in_condition(key_columns, keys, "orm_relation_ids"))

        for row in await builder.get_raw_many():
            key = tuple(str(row[f"parent_{i}"]) for i in range(len(key_columns)))
            values = {
                referenced.property_path: self.driver.prepare_hydrated_value(row[f"id_{i}"], referenced)  # type: ignore[union-attr]
                for i, (_, referenced) in enumerate(id_columns)
            }
            result.ids.setdefault(key, []).append(result._id_value(values))
