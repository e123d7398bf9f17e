"""Raw result to entity transformation.

Rows from a joined SELECT are grouped per alias by primary key (identity
maps), so a root joined with N children is built once with N children.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from row_orm.adapters.protocol import Driver
    from row_orm.metadata.entity import EntityMetadata
    from row_orm.query.expression import Alias, QueryExpressionMap
    from row_orm.query.relation_count import RelationCountLoadResult
    from row_orm.query.relation_id import RelationIdLoadResult


class RawSqlResultsToEntityTransformer:
    """Builds entity graphs from the raw rows of a select query.

    Column values are read from ``<alias>_<column>`` keys, converted by the
    driver and the column transformer, and assigned through the column
    metadata so embedded objects are created on the way. Selected relation
    joins become lists (to-many) or single objects (to-one).
    """

    def __init__(
        self,
        expression_map: QueryExpressionMap,
        driver: Driver,
        relation_id_results: Sequence[RelationIdLoadResult] = (),
        relation_count_results: Sequence[RelationCountLoadResult] = (),
    ) -> None:
        self.expression_map = expression_map
        self.driver = driver
        self.relation_id_results = relation_id_results
        self.relation_count_results = relation_count_results

    def transform(self, raw_results: list[dict[str, Any]], alias: Alias) -> list[Any]:
        metadata = alias.metadata
        if metadata is None or not raw_results:
            return []

        # primary key -> rows, in first-seen order
        groups: dict[tuple[Any, ...], list[dict[str, Any]]] = {}
        for row in raw_results:
            key = self._key(row, alias.name, metadata)
            if key is None:
                continue
            groups.setdefault(key, []).append(row)

        return [self._transform_rows(rows, alias, metadata) for rows in groups.values()]

    @staticmethod
    def _key(row: dict[str, Any], alias_name: str, metadata: EntityMetadata) -> tuple[Any, ...] | None:
        values = tuple(row.get(f"{alias_name}_{c.database_name}") for c in metadata.primary_columns)
        if all(v is None for v in values):
            return None
        return values

    def _concrete_metadata(self, row: dict[str, Any], alias_name: str, metadata: EntityMetadata) -> EntityMetadata:
        if metadata.discriminator_column is None:
            return metadata
        value = row.get(f"{alias_name}_{metadata.discriminator_column.database_name}")
        if value is None:
            return metadata
        return metadata.find_inheritance_metadata(value)

    def _transform_rows(self, rows: list[dict[str, Any]], alias: Alias, metadata: EntityMetadata) -> Any:
        first = rows[0]
        metadata = self._concrete_metadata(first, alias.name, metadata)
        entity = metadata.create()
        self._transform_columns(first, alias.name, metadata, entity)
        self._transform_joins(rows, alias, entity)
        for id_result in self.relation_id_results:
            if id_result.attribute.parent_alias == alias.name:
                setattr(entity, id_result.attribute.mapped_property, id_result.value_for(first))
        for count_result in self.relation_count_results:
            if count_result.attribute.parent_alias == alias.name:
                setattr(entity, count_result.attribute.mapped_property, count_result.value_for(first))
        return entity

    def _transform_columns(self, row: dict[str, Any], alias_name: str, metadata: EntityMetadata, entity: Any) -> None:
        for column in metadata.columns:
            # flattened columns of sibling entities in a single-table hierarchy
            if column.entity_metadata is not metadata:
                continue
            if column.is_virtual_property:
                continue
            if column.relation_metadata is not None and column.property_name == column.relation_metadata.property_name:
                continue
            key = f"{alias_name}_{column.database_name}"
            if key not in row:
                continue
            value = self.driver.prepare_hydrated_value(row[key], column)
            if isinstance(entity, dict):
                entity[column.property_path] = value
            else:
                column.set_entity_value(entity, value)

    def _transform_joins(self, rows: list[dict[str, Any]], alias: Alias, entity: Any) -> None:
        for join in self.expression_map.joins:
            if not join.is_selected or join.relation is None:
                continue
            mapped = join.mapped_property
            if mapped is None or mapped[0] != alias.name:
                continue
            related = self.transform(rows, join.alias)
            if join.is_many:
                value: Any = related
            else:
                value = related[0] if related else None
            setattr(entity, mapped[1], value)
