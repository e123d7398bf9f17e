"""Query builder state.

A QueryExpressionMap holds everything a query builder has accumulated:
aliases, selections, joins, where/having trees, ordering, pagination and
parameters. Where and having trees are lists of ``(type, condition)`` pairs
where ``type`` is ``"simple"``, ``"and"`` or ``"or"`` and ``condition`` is
either a SQL fragment or a nested list (a bracketed group).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable

from row_orm.core.exceptions import AliasAlreadyExistsError, MainAliasNotSetError, QueryBuilderError

if TYPE_CHECKING:
    from row_orm.core.connection import Connection
    from row_orm.metadata.entity import EntityMetadata, RelationMetadata

Condition = list[tuple[str, Any]]


class Brackets:
    """Groups where conditions in parentheses.

    ``Brackets(lambda qb: qb.where("a = :a").or_where("b = :b"))``
    """

    def __init__(self, where_factory: Callable[[Any], Any]) -> None:
        self.where_factory = where_factory


class Alias:
    """A name bound to an entity, a plain table or a sub-query."""

    def __init__(
        self,
        name: str,
        metadata: EntityMetadata | None = None,
        table_name: str | None = None,
        sub_query: str | None = None,
    ) -> None:
        self.name = name
        self.metadata = metadata
        self._table_name = table_name
        self.sub_query = sub_query

    def __repr__(self) -> str:
        return f"<Alias {self.name} -> {self.table_name}>"

    @property
    def has_metadata(self) -> bool:
        return self.metadata is not None

    @property
    def table_name(self) -> str | None:
        if self.metadata is not None:
            return self.metadata.table_name
        return self._table_name

    def require_metadata(self) -> EntityMetadata:
        if self.metadata is None:
            raise QueryBuilderError(f"Alias '{self.name}' is not bound to an entity")
        return self.metadata

    def require_table_name(self) -> str:
        table_name = self.table_name
        if table_name is None:
            raise QueryBuilderError(f"Alias '{self.name}' is not bound to a table")
        return table_name


@dataclass
class JoinAttribute:
    """One JOIN clause.

    Relation joins (``"post.categories"``) carry the parent alias and the
    relation; entity joins only carry the joined alias and a condition.
    """

    direction: str
    alias: Alias
    condition: str | None = None
    parent_alias: str | None = None
    relation: RelationMetadata | None = None
    is_selected: bool = False
    map_to_property: str | None = None

    @property
    def junction_alias_name(self) -> str:
        return f"{self.parent_alias}_{self.alias.name}"

    @property
    def is_many(self) -> bool:
        return self.relation is not None and self.relation.is_to_many

    @property
    def mapped_property(self) -> tuple[str, str] | None:
        """``(parent alias, property name)`` the joined entities are set on."""
        if not self.map_to_property:
            return None
        parent, _, prop = self.map_to_property.partition(".")
        return parent, prop


@dataclass
class RelationLoadAttribute:
    """A ``load_relation_count_and_map`` / ``load_relation_id_and_map`` decoration."""

    map_to_property: str
    relation_name: str
    alias_name: str | None = None
    query_modifier: Callable[[Any], Any] | None = None

    @property
    def parent_alias(self) -> str:
        return self.relation_name.split(".", 1)[0]

    @property
    def relation_property(self) -> str:
        return self.relation_name.split(".", 1)[1]

    @property
    def mapped_property(self) -> str:
        return self.map_to_property.split(".", 1)[1]


class QueryExpressionMap:
    """Accumulated clauses of one query builder."""

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self.query_type = "select"
        self.aliases: list[Alias] = []
        self.main_alias: Alias | None = None
        self.selects: list[tuple[str, str | None]] = []
        self.distinct = False
        self.joins: list[JoinAttribute] = []
        self.wheres: Condition = []
        self.havings: Condition = []
        self.group_bys: list[str] = []
        self.order_bys: dict[str, tuple[str, str | None]] = {}
        self.limit: int | None = None
        self.offset: int | None = None
        self.skip: int | None = None
        self.take: int | None = None
        self.parameters: dict[str, Any] = {}
        self.value_set: Any = None
        self.insert_columns: list[str] | None = None
        self.returning: list[str] | None = None
        self.relation_count_attributes: list[RelationLoadAttribute] = []
        self.relation_id_attributes: list[RelationLoadAttribute] = []
        self.call_listeners = True
        self.update_special_columns = True
        self.is_sub_query = False
        self.cache: bool | None = None
        self.cache_duration: int | None = None
        self.cache_id: str | None = None

    def create_alias(
        self,
        name: str,
        metadata: EntityMetadata | None = None,
        table_name: str | None = None,
        sub_query: str | None = None,
    ) -> Alias:
        """Register a new alias.

        Raises:
            AliasAlreadyExistsError: If the name is already bound in this query.
        """
        if any(alias.name == name for alias in self.aliases):
            raise AliasAlreadyExistsError(name)
        alias = Alias(name, metadata, table_name, sub_query)
        self.aliases.append(alias)
        return alias

    def find_alias(self, name: str) -> Alias:
        for alias in self.aliases:
            if alias.name == name:
                return alias
        raise QueryBuilderError(f"Alias '{name}' is not defined in this query")

    def has_alias(self, name: str) -> bool:
        return any(alias.name == name for alias in self.aliases)

    def require_main_alias(self) -> Alias:
        if self.main_alias is None:
            raise MainAliasNotSetError()
        return self.main_alias

    @property
    def has_collection_joins(self) -> bool:
        return any(join.is_many for join in self.joins)

    def next_parameter_name(self, prefix: str = "orm_param") -> str:
        index = len(self.parameters)
        while f"{prefix}_{index}" in self.parameters:
            index += 1
        return f"{prefix}_{index}"

    def inherit_cache(self, parent: QueryExpressionMap) -> None:
        """Follow the cache options of the query this one loads data for."""
        self.cache = parent.cache
        self.cache_duration = parent.cache_duration
        self.cache_id = parent.cache_id

    def clone(self) -> QueryExpressionMap:
        """Copy of this map; clause lists and where trees are copied deeply.

        Metadata and the connection are shared.
        """
        cloned = QueryExpressionMap(self.connection)
        memo = {id(self.connection): self.connection}
        for alias in self.aliases:
            if alias.metadata is not None:
                memo[id(alias.metadata)] = alias.metadata
        for join in self.joins:
            if join.relation is not None:
                memo[id(join.relation)] = join.relation
        for name, value in vars(self).items():
            if name == "connection":
                continue
            if name in ("parameters", "value_set"):
                # bound values may be entities; copy the container only
                setattr(cloned, name, copy.copy(value))
                continue
            setattr(cloned, name, copy.deepcopy(value, memo))
        return cloned
