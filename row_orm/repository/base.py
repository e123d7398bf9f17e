"""Repository base classes.

Thin wrappers over EntityManager bound to one entity type.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar

from row_orm.core.enums import GenerationStrategy
from row_orm.core.exceptions import MissingPrimaryValueError, RepositoryNotTreeError
from row_orm.repository.find_options import FindOptions, apply_find_options

if TYPE_CHECKING:
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata, EntityMetadata, RelationMetadata
    from row_orm.query.delete import DeleteResult
    from row_orm.query.insert import InsertResult
    from row_orm.query.select import SelectQueryBuilder
    from row_orm.query.update import UpdateResult
    from row_orm.repository.manager import EntityManager

T = TypeVar("T")


class Repository(Generic[T]):
    """Persistence and find operations for one entity type.

    Subclasses add domain-specific finders on top of
    ``create_query_builder``.
    """

    def __init__(self, manager: EntityManager, metadata: EntityMetadata) -> None:
        self.manager = manager
        self.metadata = metadata
        self.target = metadata.target

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.metadata.name}>"

    def create_query_builder(
        self, alias: str | None = None, query_runner: QueryRunner | None = None
    ) -> SelectQueryBuilder:
        return self.manager.create_query_builder(self.target, alias or self.metadata.name, query_runner)

    def create(self, plain: dict[str, Any] | list[dict[str, Any]] | None = None) -> Any:
        return self.manager.create(self.target, plain)

    def merge(self, merge_into: T, *plains: Any) -> T:
        return self.manager.merge(self.target, merge_into, *plains)

    def has_id(self, entity: T) -> bool:
        return self.metadata.has_id(entity)

    def get_id(self, entity: T) -> Any:
        return self.metadata.get_id(entity)

    async def save(self, entity: Any) -> Any:
        return await self.manager.save(entity, self.target)

    async def remove(self, entity: Any) -> Any:
        return await self.manager.remove(entity, self.target)

    async def insert(self, values: dict[str, Any] | list[dict[str, Any]]) -> InsertResult:
        return await self.manager.insert(self.target, values)

    async def update(self, criteria: Any, values: dict[str, Any]) -> UpdateResult:
        return await self.manager.update(self.target, criteria, values)

    async def delete(self, criteria: Any) -> DeleteResult:
        return await self.manager.delete(self.target, criteria)

    async def clear(self) -> DeleteResult:
        return await self.manager.clear(self.target)

    async def find(self, options: Any = None) -> list[T]:
        return await self.manager.find(self.target, options)

    async def find_and_count(self, options: Any = None) -> tuple[list[T], int]:
        return await self.manager.find_and_count(self.target, options)

    async def find_by_ids(self, ids: list[Any], options: Any = None) -> list[T]:
        return await self.manager.find_by_ids(self.target, ids, options)

    async def find_one(self, id_or_options: Any = None, options: Any = None) -> T | None:
        return await self.manager.find_one(self.target, id_or_options, options)

    async def find_one_or_fail(self, id_or_options: Any = None, options: Any = None) -> T:
        return await self.manager.find_one_or_fail(self.target, id_or_options, options)

    async def count(self, options: Any = None) -> int:
        return await self.manager.count(self.target, options)

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        return await self.manager.query(sql, params)


class TreeRepository(Repository[T]):
    """Repository of a closure-table or materialized-path tree.

    Descendants and ancestors include the entity itself.
    """

    def _tree_parent(self) -> RelationMetadata:
        parent = self.metadata.tree_parent_relation
        if parent is None:
            raise RepositoryNotTreeError(self.metadata.name)
        return parent

    def _path_column(self) -> ColumnMetadata:
        column = self.metadata.materialized_path_column
        if column is None:
            raise RepositoryNotTreeError(self.metadata.name)
        return column

    def _closure_columns(self, junction: EntityMetadata) -> tuple[list[ColumnMetadata], list[ColumnMetadata]]:
        count = len(self.metadata.primary_columns)
        return junction.columns[:count], junction.columns[count:]

    def _id_map(self, entity: T) -> dict[str, Any]:
        id_map = self.metadata.get_entity_id_map(entity)
        if id_map is None:
            raise MissingPrimaryValueError(self.metadata.name, "query the tree of")
        return id_map

    async def find_roots(self, options: Any = None) -> list[T]:
        parent = self._tree_parent()
        builder = apply_find_options(self.create_query_builder(), FindOptions.from_value(options))
        return await builder.and_where({parent.property_name: None}).get_many()

    def _closure_builder(
        self, junction: EntityMetadata, entity: T, alias: str, closure_alias: str, find_ancestors: bool
    ) -> SelectQueryBuilder:
        ancestors, descendants = self._closure_columns(junction)
        # descendants join on the descendant side and filter by the ancestor side
        joined, filtered = (ancestors, descendants) if find_ancestors else (descendants, ancestors)
        id_map = self._id_map(entity)
        builder = self.create_query_builder(alias)
        join_condition = " AND ".join(
            f"{closure_alias}.{c.database_name} = {alias}.{c.require_referenced_column().property_path}"
            for c in joined
        )
        builder.inner_join(junction.table_name, closure_alias, join_condition)
        parameters = {}
        conditions = []
        for index, column in enumerate(filtered):
            referenced = column.require_referenced_column()
            parameters[f"tree_node_{index}"] = builder.driver.prepare_persistent_value(
                id_map[referenced.property_path], referenced
            )
            conditions.append(f"{closure_alias}.{column.database_name} = :tree_node_{index}")
        builder.where(" AND ".join(conditions), parameters)
        return builder

    async def _materialized_path(self, entity: T) -> str:
        column = self._path_column()
        builder = self.create_query_builder("tree_node").cache(False)
        builder.select(f"tree_node.{column.property_path}", "path")
        row = await builder.where_in_ids(self._id_map(entity)).get_raw_one()
        return (row or {}).get("path") or ""

    def _path_ids(self, path: str) -> list[Any]:
        primary = self.metadata.primary_columns[0]
        segments = [segment for segment in path.split(".") if segment]
        if primary.py_type is int or primary.generation_strategy is GenerationStrategy.INCREMENT:
            return [int(segment) for segment in segments]
        return segments

    async def create_descendants_query_builder(self, alias: str, entity: T) -> SelectQueryBuilder:
        """Select builder over ``entity`` and everything below it."""
        junction = self.metadata.closure_junction_table
        if junction is not None:
            return self._closure_builder(junction, entity, alias, f"{alias}_closure", find_ancestors=False)
        column = self._path_column()
        path = await self._materialized_path(entity)
        builder = self.create_query_builder(alias)
        return builder.where(f"{alias}.{column.property_path} LIKE :tree_path", {"tree_path": f"{path}%"})

    async def create_ancestors_query_builder(self, alias: str, entity: T) -> SelectQueryBuilder:
        """Select builder over ``entity`` and everything above it."""
        junction = self.metadata.closure_junction_table
        if junction is not None:
            return self._closure_builder(junction, entity, alias, f"{alias}_closure", find_ancestors=True)
        path = await self._materialized_path(entity)
        builder = self.create_query_builder(alias)
        return builder.where_in_ids(self._path_ids(path))

    async def find_descendants(self, entity: T) -> list[T]:
        return await (await self.create_descendants_query_builder("tree", entity)).get_many()

    async def find_ancestors(self, entity: T) -> list[T]:
        return await (await self.create_ancestors_query_builder("tree", entity)).get_many()

    async def count_descendants(self, entity: T) -> int:
        return await (await self.create_descendants_query_builder("tree", entity)).get_count()

    async def count_ancestors(self, entity: T) -> int:
        return await (await self.create_ancestors_query_builder("tree", entity)).get_count()
