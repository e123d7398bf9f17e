"""Relation count loading for ``load_relation_count_and_map``.

Each decoration runs one grouped ``COUNT(*)`` query restricted to the parent
ids found in the main query's rows. The caller's query modifier is applied
before the id restriction, so its conditions are AND-ed with it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from row_orm.query.expression import RelationLoadAttribute

if TYPE_CHECKING:
    from row_orm.core.connection import Connection
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata, RelationMetadata
    from row_orm.query.expression import QueryExpressionMap
    from row_orm.query.select import SelectQueryBuilder


def parent_key(row: dict[str, Any], alias_name: str, columns: list[ColumnMetadata]) -> tuple[str, ...] | None:
    """Key of a parent row for matching loaded relation data, None for NULL keys."""
    values = [row.get(f"{alias_name}_{c.database_name}") for c in columns]
    if any(v is None for v in values):
        return None
    return tuple(str(v) for v in values)


@dataclass
class RelationCountLoadResult:
    attribute: RelationLoadAttribute
    parent_columns: list[ColumnMetadata]
    counts: dict[tuple[str, ...], int] = field(default_factory=dict)

    def value_for(self, row: dict[str, Any]) -> int:
        key = parent_key(row, self.attribute.parent_alias, self.parent_columns)
        return self.counts.get(key, 0) if key is not None else 0


class RelationCountLoader:
    """Runs the count queries of one select query."""

    def __init__(self, connection: Connection, expression_map: QueryExpressionMap, query_runner: QueryRunner) -> None:
        self.connection = connection
        self.expression_map = expression_map
        self.query_runner = query_runner

    async def load(self, raw_results: list[dict[str, Any]]) -> list[RelationCountLoadResult]:
        results = []
        for attribute in self.expression_map.relation_count_attributes:
            parent = self.expression_map.find_alias(attribute.parent_alias).require_metadata()
            relation = parent.get_relation(attribute.relation_property)
            results.append(await self._load_attribute(attribute, relation, raw_results))
        return results

    async def _load_attribute(
        self,
        attribute: RelationLoadAttribute,
        relation: RelationMetadata,
        raw_results: list[dict[str, Any]],
    ) -> RelationCountLoadResult:
        parent_columns = [c.referenced_column for c in relation.join_columns]
        if relation.is_with_join_columns:
            # counting a to-one relation held by the parent itself
            parent_columns = list(relation.join_columns)
        result = RelationCountLoadResult(attribute, parent_columns)  # type: ignore[arg-type]

        keys = []
        seen = set()
        for row in raw_results:
            key = parent_key(row, attribute.parent_alias, result.parent_columns)
            if key is None or key in seen:
                continue
            seen.add(key)
            keys.append(tuple(row[f"{attribute.parent_alias}_{c.database_name}"] for c in result.parent_columns))
        if not keys:
            return result

        builder = self._count_builder(attribute, relation, keys)
        rows = await builder.get_raw_many()
        width = len(result.parent_columns)
        for row in rows:
            key = tuple(str(row[f"parent_{i}"]) for i in range(width))
            result.counts[key] = int(row["cnt"])
        return result

    def _count_builder(
        self,
        attribute: RelationLoadAttribute,
        relation: RelationMetadata,
        keys: list[tuple[Any, ...]],
    ) -> SelectQueryBuilder:
        target = relation.inverse_entity_metadata
        alias_name = attribute.alias_name or target.table_name
        builder = self.connection.create_query_builder(query_runner=self.query_runner)
        builder.expression_map.inherit_cache(self.expression_map)
        escape = builder.escape

        if relation.is_many_to_many:
            junction = relation.require_junction_metadata()
            junction_alias = f"{alias_name}_junction"
            builder.from_(junction.table_name, junction_alias)
            key_columns = [f"{escape(junction_alias)}.{escape(c.database_name)}" for c in relation.join_columns]
            on = " AND ".join(
                f"{escape(alias_name)}.{escape(c.require_referenced_column().database_name)} = "
                f"{escape(junction_alias)}.{escape(c.database_name)}"
                for c in relation.inverse_join_columns
            )
            builder.inner_join(target.target, alias_name, on)
        elif relation.is_with_join_columns:
            builder.from_(target.target, alias_name)
            key_columns = [
                f"{escape(alias_name)}.{escape(c.require_referenced_column().database_name)}"
                for c in relation.join_columns
            ]
        else:
            builder.from_(target.target, alias_name)
            key_columns = [f"{escape(alias_name)}.{escape(c.database_name)}" for c in relation.join_columns]

        builder.select(key_columns[0], "parent_0")
        for index, column in enumerate(key_columns[1:], start=1):
            builder.add_select(column, f"parent_{index}")
        builder.add_select("COUNT(*)", "cnt")
        if attribute.query_modifier is not None:
            attribute.query_modifier(builder)
        builder.and_where(builder.values_in_condition(key_columns, keys, "orm_count_ids"))
        builder.group_by(key_columns[0])
        for column in key_columns[1:]:
            builder.add_group_by(column)
        return builder
