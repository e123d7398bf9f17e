"""Query builder base.

Shared by the select, insert, update and delete builders: target and alias
handling, parameters, where/having trees, property path replacement and
query runner handling for execution.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from row_orm.core.exceptions import EntityPropertyNotFoundError, QueryBuilderError
from row_orm.core.params import expand_params, split_literals
from row_orm.metadata.entity import UNSET
from row_orm.query.expression import Alias, Brackets, Condition, QueryExpressionMap

if TYPE_CHECKING:
    from row_orm.core.connection import Connection
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata, EntityMetadata, RelationMetadata
    from row_orm.query.delete import DeleteQueryBuilder
    from row_orm.query.insert import InsertQueryBuilder
    from row_orm.query.select import SelectQueryBuilder
    from row_orm.query.update import UpdateQueryBuilder

R = TypeVar("R")

_PARAMETER_NAME = re.compile(r"[a-zA-Z_]\w*")


class QueryBuilder:
    """Base class of all query builders.

    Args:
        connection: Connection the query runs on.
        query_runner: Runner to execute with. A short-lived runner is
            created per execution when omitted.
        expression_map: State to continue from (used when switching the
            query type, e.g. ``select`` -> ``update``).
    """

    # UPDATE and DELETE statements name the main table without an alias
    qualify_main_alias = True

    def __init__(
        self,
        connection: Connection,
        query_runner: QueryRunner | None = None,
        expression_map: QueryExpressionMap | None = None,
    ) -> None:
        self.connection = connection
        self.query_runner = query_runner
        self.driver = connection.driver
        self.expression_map = expression_map or QueryExpressionMap(connection)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.get_sql()!r}>"

    # ------------------------------------------------------------------
    # targets
    # ------------------------------------------------------------------

    @property
    def alias(self) -> str:
        return self.expression_map.require_main_alias().name

    def escape(self, name: str) -> str:
        return self.driver.escape(name)

    def _resolve_target(self, target: Any) -> tuple[EntityMetadata | None, str]:
        if isinstance(target, str) and not self.connection.has_metadata(target):
            return None, target
        metadata = self.connection.get_metadata(target)
        return metadata, metadata.table_name

    def _set_main_alias(self, target: Any, alias_name: str | None = None) -> Alias:
        metadata, table_name = self._resolve_target(target)
        current = self.expression_map.main_alias
        if current is not None and metadata is not None and current.metadata is metadata:
            return current
        name = alias_name or table_name
        alias = self.expression_map.create_alias(name, metadata, table_name)
        self.expression_map.main_alias = alias
        return alias

    def set_query_runner(self, query_runner: QueryRunner | None) -> QueryBuilder:
        self.query_runner = query_runner
        return self

    def call_listeners(self, enabled: bool) -> QueryBuilder:
        """Enable or disable ``after_load`` notifications for loaded entities."""
        self.expression_map.call_listeners = enabled
        return self

    # ------------------------------------------------------------------
    # query type switches
    # ------------------------------------------------------------------

    def insert(self) -> InsertQueryBuilder:
        from row_orm.query.insert import InsertQueryBuilder

        self.expression_map.query_type = "insert"
        return InsertQueryBuilder(self.connection, self.query_runner, self.expression_map)

    def update(self, target: Any = None, values: dict[str, Any] | None = None) -> UpdateQueryBuilder:
        from row_orm.query.update import UpdateQueryBuilder

        self.expression_map.query_type = "update"
        builder = UpdateQueryBuilder(self.connection, self.query_runner, self.expression_map)
        if target is not None:
            builder._set_main_alias(target)
        if values is not None:
            builder.set(values)
        return builder

    def delete(self) -> DeleteQueryBuilder:
        from row_orm.query.delete import DeleteQueryBuilder

        self.expression_map.query_type = "delete"
        return DeleteQueryBuilder(self.connection, self.query_runner, self.expression_map)

    def sub_query(self) -> SelectQueryBuilder:
        """Select builder for a ``(sub-query)`` sharing this builder's parameters."""
        from row_orm.query.select import SelectQueryBuilder

        builder = SelectQueryBuilder(self.connection, self.query_runner)
        builder.expression_map.parameters = self.expression_map.parameters
        builder.expression_map.is_sub_query = True
        return builder

    # ------------------------------------------------------------------
    # parameters
    # ------------------------------------------------------------------

    def set_parameter(self, key: str, value: Any) -> QueryBuilder:
        if not _PARAMETER_NAME.fullmatch(key):
            raise QueryBuilderError(
                f"Parameter name '{key}' is invalid: use letters, digits and underscores"
            )
        self.expression_map.parameters[key] = value
        return self

    def set_parameters(self, parameters: dict[str, Any]) -> QueryBuilder:
        for key, value in parameters.items():
            self.set_parameter(key, value)
        return self

    def get_parameters(self) -> dict[str, Any]:
        return dict(self.expression_map.parameters)

    # ------------------------------------------------------------------
    # where / having
    # ------------------------------------------------------------------

    def where(self, condition: Any, parameters: dict[str, Any] | None = None) -> QueryBuilder:
        """Replace the where tree with one condition.

        ``condition`` is a SQL fragment (``"post.title = :title"``), a
        ``Brackets``, a property mapping (``{"title": "x"}``), a list of
        mappings (OR-ed), or a callable receiving this builder and returning
        a SQL fragment.
        """
        self.expression_map.wheres = []
        return self._add_condition(self.expression_map.wheres, "simple", condition, parameters)

    def and_where(self, condition: Any, parameters: dict[str, Any] | None = None) -> QueryBuilder:
        return self._add_condition(self.expression_map.wheres, "and", condition, parameters)

    def or_where(self, condition: Any, parameters: dict[str, Any] | None = None) -> QueryBuilder:
        return self._add_condition(self.expression_map.wheres, "or", condition, parameters)

    def where_in_ids(self, ids: Any) -> QueryBuilder:
        return self.where(self._ids_condition(ids))

    def and_where_in_ids(self, ids: Any) -> QueryBuilder:
        return self.and_where(self._ids_condition(ids))

    def or_where_in_ids(self, ids: Any) -> QueryBuilder:
        return self.or_where(self._ids_condition(ids))

    def having(self, condition: Any, parameters: dict[str, Any] | None = None) -> QueryBuilder:
        self.expression_map.havings = []
        return self._add_condition(self.expression_map.havings, "simple", condition, parameters)

    def and_having(self, condition: Any, parameters: dict[str, Any] | None = None) -> QueryBuilder:
        return self._add_condition(self.expression_map.havings, "and", condition, parameters)

    def or_having(self, condition: Any, parameters: dict[str, Any] | None = None) -> QueryBuilder:
        return self._add_condition(self.expression_map.havings, "or", condition, parameters)

    def _add_condition(
        self,
        tree: Condition,
        type: str,
        condition: Any,
        parameters: dict[str, Any] | None,
    ) -> QueryBuilder:
        if parameters:
            self.set_parameters(parameters)
        if not tree:
            type = "simple"
        tree.append((type, self._compute_condition(condition)))
        return self

    def _compute_condition(self, condition: Any) -> str | Condition:
        if isinstance(condition, Brackets):
            saved = self.expression_map.wheres
            self.expression_map.wheres = []
            try:
                condition.where_factory(self)
                return self.expression_map.wheres
            finally:
                self.expression_map.wheres = saved
        if isinstance(condition, dict):
            return self._mapping_condition(condition)
        if isinstance(condition, list):
            return [
                ("simple" if i == 0 else "or", self._mapping_condition(mapping))
                for i, mapping in enumerate(condition)
            ]
        if callable(condition):
            return str(condition(self))
        return condition

    def _mapping_condition(
        self,
        mapping: dict[str, Any],
        alias: Alias | None = None,
        prefix: str = "",
    ) -> Condition:
        """Translate ``{property: value}`` into AND-ed equality conditions.

        Values may be None (IS NULL), find operators, related entities or ids,
        and nested mappings for embeddeds and relation ids.
        """
        alias = alias or self.expression_map.require_main_alias()
        metadata = alias.metadata
        conditions: list[str | Condition] = []
        for key, value in mapping.items():
            path = prefix + key
            if metadata is None:
                conditions.append(self._value_condition(f"{alias.name}.{path}", value, None))
                continue
            embedded = next((e for e in metadata.all_embeddeds if e.property_path == path), None)
            if embedded is not None and isinstance(value, dict):
                conditions.append(self._mapping_condition(value, alias, path + "."))
                continue
            relation = metadata.find_relation_with_property_path(path)
            if relation is not None:
                conditions.extend(self._relation_conditions(alias, relation, value))
                continue
            column = metadata.find_column_with_property_path(path)
            if column is None:
                raise EntityPropertyNotFoundError(path, metadata.name)
            conditions.append(self._value_condition(f"{alias.name}.{path}", value, column))
        return [("simple" if i == 0 else "and", c) for i, c in enumerate(conditions)]

    def _relation_conditions(self, alias: Alias, relation: RelationMetadata, value: Any) -> list[str]:
        if not relation.is_with_join_columns:
            raise QueryBuilderError(
                f"Cannot filter '{alias.name}' by '{relation.property_name}': only relations "
                f"holding the join column can be used in a where mapping"
            )
        if value is None:
            return [f"{alias.name}.{relation.property_name}.{c.require_referenced_column().property_path} IS NULL"
                    for c in relation.join_columns]
        if callable(getattr(value, "to_sql", None)):
            column = relation.join_columns[0]
            return [self._value_condition(f"{alias.name}.{relation.property_name}", value, column.referenced_column)]
        id_map = relation.inverse_entity_metadata.ensure_id_map(value)
        conditions = []
        for column in relation.join_columns:
            referenced = column.require_referenced_column()
            related_value = id_map.get(referenced.property_path, UNSET)
            if related_value is UNSET:
                continue
            conditions.append(
                self._value_condition(
                    f"{alias.name}.{relation.property_name}.{referenced.property_path}",
                    related_value,
                    referenced,
                )
            )
        return conditions

    def _value_condition(self, path: str, value: Any, column: ColumnMetadata | None) -> str:
        def convert(v: Any) -> Any:
            return self.driver.prepare_persistent_value(v, column) if column is not None else v

        if value is None:
            return f"{path} IS NULL"
        if callable(getattr(value, "to_sql", None)):
            name = self.expression_map.next_parameter_name()
            sql = value.to_sql(path, name)
            self.set_parameters(value.parameters(name, convert))
            return sql
        name = self.expression_map.next_parameter_name()
        self.set_parameter(name, convert(value))
        return f"{path} = :{name}"

    def _ids_condition(self, ids: Any) -> str:
        alias = self.expression_map.require_main_alias()
        metadata = alias.metadata
        if metadata is None:
            raise QueryBuilderError("where_in_ids requires an entity target")
        if not isinstance(ids, (list, tuple)):
            ids = [ids]
        primaries = metadata.primary_columns
        keys = []
        for id in ids:
            id_map = metadata.ensure_id_map(id)
            keys.append(
                tuple(
                    self.driver.prepare_persistent_value(id_map.get(c.property_path), c)
                    for c in primaries
                )
            )
        return self.values_in_condition(
            [f"{alias.name}.{c.property_path}" for c in primaries], keys, "orm_ids"
        )

    def values_in_condition(
        self,
        expressions: list[str],
        keys: list[tuple[Any, ...]],
        prefix: str = "orm_keys",
    ) -> str:
        """``expr IN (...)`` for one expression, OR-ed equality groups for several."""
        if len(expressions) == 1:
            name = self.expression_map.next_parameter_name(prefix)
            self.set_parameter(name, [key[0] for key in keys])
            return f"{expressions[0]} IN (:...{name})"
        groups = []
        for key in keys:
            parts = []
            for expression, value in zip(expressions, key):
                name = self.expression_map.next_parameter_name(prefix)
                self.set_parameter(name, value)
                parts.append(f"{expression} = :{name}")
            groups.append("(" + " AND ".join(parts) + ")")
        if not groups:
            return "0 = 1"
        return "(" + " OR ".join(groups) + ")"

    # ------------------------------------------------------------------
    # rendering
    # ------------------------------------------------------------------

    def render_conditions(self, tree: Condition) -> str:
        parts: list[str] = []
        for type, condition in tree:
            if isinstance(condition, list):
                text = self.render_conditions(condition)
                if text:
                    text = f"({text})"
            else:
                text = self.replace_property_names(condition)
            if not text:
                continue
            parts.append(text if not parts else f"{type.upper()} {text}")
        return " ".join(parts)

    def _extra_where_conditions(self) -> list[str]:
        return []

    def create_where_expression(self) -> str:
        conditions = self.render_conditions(self.expression_map.wheres)
        extras = self._extra_where_conditions()
        if extras:
            if conditions:
                conditions = f"({conditions}) AND " + " AND ".join(extras)
            else:
                conditions = " AND ".join(extras)
        return f" WHERE {conditions}" if conditions else ""

    def _column_prefix(self, alias: Alias) -> str:
        if not self.qualify_main_alias and alias is self.expression_map.main_alias:
            return ""
        return self.escape(alias.name) + "."

    @staticmethod
    def property_map(metadata: EntityMetadata) -> dict[str, str]:
        """Property path -> column name for every addressable path of an entity."""
        mapping: dict[str, str] = {}
        for column in metadata.columns:
            mapping.setdefault(column.property_path, column.database_name)
            if column.relation_metadata is not None and column.referenced_column is not None:
                mapping.setdefault(
                    f"{column.relation_metadata.property_name}.{column.referenced_column.property_path}",
                    column.database_name,
                )
        for relation in metadata.relations:
            if relation.is_with_join_columns and len(relation.join_columns) == 1:
                mapping.setdefault(relation.property_name, relation.join_columns[0].database_name)
        return mapping

    def replace_property_names(self, statement: str) -> str:
        """Rewrite ``alias.property.path`` into escaped column references.

        Unknown paths and string literals are left untouched.
        """
        aliases = [(a, a.metadata) for a in self.expression_map.aliases if a.metadata is not None]
        if not aliases:
            return statement
        parts = []
        for is_literal, text in split_literals(statement):
            if not is_literal:
                for alias, metadata in aliases:
                    text = self._replace_alias_properties(text, alias, metadata)
            parts.append(text)
        return "".join(parts)

    def _replace_alias_properties(self, text: str, alias: Alias, metadata: EntityMetadata) -> str:
        mapping = self.property_map(metadata)
        prefix = self._column_prefix(alias)
        pattern = re.compile(
            r"(?<![\w.\"`])" + re.escape(alias.name) + r"\.([A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)"
        )

        def replace(match: re.Match[str]) -> str:
            segments = match.group(1).split(".")
            for size in range(len(segments), 0, -1):
                path = ".".join(segments[:size])
                if path in mapping:
                    rest = "".join("." + s for s in segments[size:])
                    return prefix + self.escape(mapping[path]) + rest
            return match.group(0)

        return pattern.sub(replace, text)

    # ------------------------------------------------------------------
    # output and execution
    # ------------------------------------------------------------------

    def get_query(self) -> str:
        raise NotImplementedError

    def get_sql(self) -> str:
        return self.get_query()

    def get_query_and_parameters(self) -> tuple[str, dict[str, Any]]:
        """SQL with ``:...list`` parameters expanded, plus the bound values.

        Raises:
            ParameterMissingError: If the SQL references an unbound parameter.
        """
        return expand_params(self.get_query(), self.expression_map.parameters)

    async def _execute_with_runner(self, operation: Callable[[QueryRunner], Awaitable[R]]) -> R:
        runner = self.query_runner or self.connection.create_query_runner()
        try:
            return await operation(runner)
        finally:
            if runner is not self.query_runner:
                await runner.release()
