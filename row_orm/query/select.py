"""SELECT query builder."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable

from row_orm.core.cache import cache_key
from row_orm.core.enums import DatabaseBackend
from row_orm.core.exceptions import EntityNotFoundError, QueryBuilderError
from row_orm.query.builder import QueryBuilder
from row_orm.query.expression import Alias, JoinAttribute, RelationLoadAttribute

if TYPE_CHECKING:
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata, EntityMetadata

_ORDERS = ("ASC", "DESC")
_NULLS = {"NULLS FIRST": "NULLS FIRST", "NULLS LAST": "NULLS LAST", "FIRST": "NULLS FIRST", "LAST": "NULLS LAST"}

DISTINCT_ALIAS = "distinctAlias"


class SelectQueryBuilder(QueryBuilder):
    """Builds and runs SELECT statements, returning raw rows or entities.

    Example::

        posts = await (
            connection.create_query_builder(Post, "post")
            .left_join_and_select("post.categories", "category")
            .where("post.title LIKE :title", {"title": "A%"})
            .order_by("post.id", "DESC")
            .take(10)
            .get_many()
        )
    """

    # ------------------------------------------------------------------
    # selection and source
    # ------------------------------------------------------------------

    def select(self, selection: Any = None, selection_alias: str | None = None) -> SelectQueryBuilder:
        """Replace the selection.

        ``selection`` is an alias name (all its columns), ``alias.property``
        paths, raw SQL expressions, a list of those, or a callable building a
        sub-query.
        """
        self.expression_map.query_type = "select"
        self.expression_map.selects = []
        if selection is not None:
            self.add_select(selection, selection_alias)
        return self

    def add_select(self, selection: Any, selection_alias: str | None = None) -> SelectQueryBuilder:
        if isinstance(selection, (list, tuple)):
            self.expression_map.selects.extend((s, None) for s in selection)
        elif callable(selection):
            sub = selection(self.sub_query())
            sql = sub.get_query() if isinstance(sub, QueryBuilder) else str(sub)
            self.expression_map.selects.append((sql, selection_alias))
        else:
            self.expression_map.selects.append((selection, selection_alias))
        return self

    def distinct(self, distinct: bool = True) -> SelectQueryBuilder:
        self.expression_map.distinct = distinct
        return self

    def from_(self, target: Any, alias: str | None = None) -> SelectQueryBuilder:
        """Set the main entity (class, entity name or table name) and its alias."""
        metadata, table_name = self._resolve_target(target)
        name = alias or table_name
        self.expression_map.main_alias = self.expression_map.create_alias(name, metadata, table_name)
        return self

    # ------------------------------------------------------------------
    # joins
    # ------------------------------------------------------------------

    def inner_join(
        self, entity_or_property: Any, alias: str, condition: str | None = None, parameters: dict[str, Any] | None = None
    ) -> SelectQueryBuilder:
        return self._join("INNER", entity_or_property, alias, condition, parameters, select=False)

    def left_join(
        self, entity_or_property: Any, alias: str, condition: str | None = None, parameters: dict[str, Any] | None = None
    ) -> SelectQueryBuilder:
        return self._join("LEFT", entity_or_property, alias, condition, parameters, select=False)

    def inner_join_and_select(
        self, entity_or_property: Any, alias: str, condition: str | None = None, parameters: dict[str, Any] | None = None
    ) -> SelectQueryBuilder:
        return self._join("INNER", entity_or_property, alias, condition, parameters, select=True)

    def left_join_and_select(
        self, entity_or_property: Any, alias: str, condition: str | None = None, parameters: dict[str, Any] | None = None
    ) -> SelectQueryBuilder:
        return self._join("LEFT", entity_or_property, alias, condition, parameters, select=True)

    def _join(
        self,
        direction: str,
        entity_or_property: Any,
        alias_name: str,
        condition: str | None,
        parameters: dict[str, Any] | None,
        select: bool,
    ) -> SelectQueryBuilder:
        if parameters:
            self.set_parameters(parameters)
        relation = None
        parent_name = None
        if isinstance(entity_or_property, str) and "." in entity_or_property:
            candidate, _, property_path = entity_or_property.partition(".")
            parent = next((a for a in self.expression_map.aliases if a.name == candidate), None)
            if parent is not None and parent.metadata is not None:
                relation = parent.metadata.get_relation(property_path)
                parent_name = candidate
        if relation is not None:
            alias = self.expression_map.create_alias(alias_name, relation.inverse_entity_metadata)
        else:
            if condition is None:
                raise QueryBuilderError(f"Joining '{entity_or_property}' as '{alias_name}' requires a condition")
            metadata, table_name = self._resolve_target(entity_or_property)
            alias = self.expression_map.create_alias(alias_name, metadata, table_name)
        self.expression_map.joins.append(
            JoinAttribute(
                direction=direction,
                alias=alias,
                condition=condition,
                parent_alias=parent_name,
                relation=relation,
                is_selected=select,
                map_to_property=f"{parent_name}.{relation.property_name}" if relation is not None else None,
            )
        )
        if select:
            self.add_select(alias_name)
        return self

    # ------------------------------------------------------------------
    # grouping, ordering, pagination
    # ------------------------------------------------------------------

    def group_by(self, group_by: str | None = None) -> SelectQueryBuilder:
        self.expression_map.group_bys = [group_by] if group_by else []
        return self

    def add_group_by(self, group_by: str) -> SelectQueryBuilder:
        self.expression_map.group_bys.append(group_by)
        return self

    def order_by(self, sort: Any = None, order: str = "ASC", nulls: str | None = None) -> SelectQueryBuilder:
        """Replace the ordering.

        ``order_by("post.id", "DESC")``, ``order_by({"post.id": "DESC"})`` and
        ``order_by([("post.id", "DESC")])`` are equivalent. Mapping and list
        values may also be ``(order, nulls)`` pairs.
        """
        self.expression_map.order_bys = {}
        if sort is None:
            return self
        if isinstance(sort, dict):
            items = list(sort.items())
        elif isinstance(sort, (list, tuple)):
            items = [tuple(pair) for pair in sort]
        else:
            return self.add_order_by(sort, order, nulls)
        for key, value in items:
            if isinstance(value, (list, tuple)):
                self.add_order_by(key, *value)
            elif isinstance(value, dict):
                self.add_order_by(key, value.get("order", "ASC"), value.get("nulls"))
            else:
                self.add_order_by(key, value)
        return self

    def add_order_by(self, sort: str, order: str = "ASC", nulls: str | None = None) -> SelectQueryBuilder:
        order = str(order).upper()
        if order not in _ORDERS:
            raise QueryBuilderError(f"Order must be ASC or DESC, got '{order}'")
        if nulls is not None:
            normalized = _NULLS.get(str(nulls).upper())
            if normalized is None:
                raise QueryBuilderError(f"Nulls order must be NULLS FIRST or NULLS LAST, got '{nulls}'")
            if self.driver.backend is DatabaseBackend.MYSQL:
                raise QueryBuilderError("MySQL does not support NULLS FIRST / NULLS LAST ordering")
            nulls = normalized
        self.expression_map.order_bys[sort] = (order, nulls)
        return self

    def limit(self, limit: int | None = None) -> SelectQueryBuilder:
        self.expression_map.limit = self._pagination_value(limit, "limit")
        return self

    def offset(self, offset: int | None = None) -> SelectQueryBuilder:
        self.expression_map.offset = self._pagination_value(offset, "offset")
        return self

    def take(self, take: int | None = None) -> SelectQueryBuilder:
        self.expression_map.take = self._pagination_value(take, "take")
        return self

    def skip(self, skip: int | None = None) -> SelectQueryBuilder:
        self.expression_map.skip = self._pagination_value(skip, "skip")
        return self

    def cache(self, enabled: bool | int | str = True, milliseconds: int | None = None) -> SelectQueryBuilder:
        """Serve this query from the connection's result cache.

        ``cache(True)`` uses the configured duration, ``cache(60000)`` sets the
        duration and ``cache("posts", 60000)`` also names the entry so it can
        be dropped with ``connection.query_result_cache.remove(["posts"])``.
        ``cache(False)`` opts out when caching is always enabled.
        """
        m = self.expression_map
        if isinstance(enabled, bool):
            m.cache = enabled
        elif isinstance(enabled, int):
            m.cache = True
            m.cache_duration = enabled
        else:
            m.cache = True
            m.cache_id = enabled
        if milliseconds is not None:
            m.cache_duration = milliseconds
        return self

    @staticmethod
    def _pagination_value(value: Any, name: str) -> int | None:
        if value is None:
            return None
        try:
            value = int(value)
        except (TypeError, ValueError) as e:
            raise QueryBuilderError(f"{name} must be an integer, got {value!r}") from e
        if value < 0:
            raise QueryBuilderError(f"{name} must not be negative, got {value}")
        return value

    # ------------------------------------------------------------------
    # relation decorations
    # ------------------------------------------------------------------

    def load_relation_count_and_map(
        self,
        map_to_property: str,
        relation_name: str,
        alias: str | None = None,
        query_modifier: Callable[[SelectQueryBuilder], Any] | None = None,
    ) -> SelectQueryBuilder:
        """Count related rows per loaded entity into ``map_to_property``.

        ``load_relation_count_and_map("post.category_count", "post.categories")``
        runs one grouped count query after the main query.
        """
        self._check_relation_attribute(relation_name)
        self.expression_map.relation_count_attributes.append(
            RelationLoadAttribute(map_to_property, relation_name, alias, query_modifier)
        )
        return self

    def load_relation_id_and_map(
        self,
        map_to_property: str,
        relation_name: str,
        alias: str | None = None,
        query_modifier: Callable[[SelectQueryBuilder], Any] | None = None,
    ) -> SelectQueryBuilder:
        """Map related primary ids (a list for to-many relations) into ``map_to_property``."""
        self._check_relation_attribute(relation_name)
        self.expression_map.relation_id_attributes.append(
            RelationLoadAttribute(map_to_property, relation_name, alias, query_modifier)
        )
        return self

    def _check_relation_attribute(self, relation_name: str) -> None:
        parent_name, _, property_path = relation_name.partition(".")
        parent = self.expression_map.find_alias(parent_name)
        if parent.metadata is None:
            raise QueryBuilderError(f"Alias '{parent_name}' is not bound to an entity")
        parent.metadata.get_relation(property_path)

    # ------------------------------------------------------------------
    # SQL
    # ------------------------------------------------------------------

    def get_query(self) -> str:
        sql = (
            self._create_select_expression()
            + self._create_join_expression()
            + self.create_where_expression()
            + self._create_group_by_expression()
            + self._create_having_expression()
            + self._create_order_by_expression()
            + self._create_limit_offset_expression()
        )
        if self.expression_map.is_sub_query:
            return f"({sql})"
        return sql

    def _selected_entity_aliases(self) -> list[tuple[Alias, EntityMetadata]]:
        main = self.expression_map.require_main_alias()
        aliases = [main]
        aliases.extend(j.alias for j in self.expression_map.joins if j.is_selected)
        return [(a, a.metadata) for a in aliases if a.metadata is not None]

    def column_alias(self, alias_name: str, column: ColumnMetadata) -> str:
        return f"{alias_name}_{column.database_name}"

    def _build_selections(self) -> list[str]:
        selects = self.expression_map.selects
        consumed: set[int] = set()
        selections: list[str] = []

        for alias, metadata in self._selected_entity_aliases():
            whole = False
            paths: list[str] = []
            for index, (selection, selection_alias) in enumerate(selects):
                if selection_alias is not None:
                    continue
                if selection == alias.name:
                    whole = True
                    consumed.add(index)
                elif selection.startswith(alias.name + "."):
                    path = selection[len(alias.name) + 1 :]
                    if metadata.find_columns_with_property_path(path):
                        paths.append(path)
                        consumed.add(index)
            if not whole and not paths:
                continue
            if whole:
                columns = [c for c in metadata.columns if c.is_select]
            else:
                columns = []
                for path in paths:
                    columns.extend(metadata.find_columns_with_property_path(path))
                columns.extend(metadata.primary_columns)
                if metadata.discriminator_column is not None:
                    columns.append(metadata.discriminator_column)
            seen: set[str] = set()
            for column in columns:
                if column.database_name in seen:
                    continue
                seen.add(column.database_name)
                selections.append(
                    f"{self.escape(alias.name)}.{self.escape(column.database_name)} AS "
                    f"{self.escape(self.column_alias(alias.name, column))}"
                )

        for index, (selection, selection_alias) in enumerate(selects):
            if index in consumed:
                continue
            alias = next((a for a in self.expression_map.aliases if a.name == selection), None)
            if alias is not None and alias.metadata is None:
                selections.append(f"{self.escape(alias.name)}.*")
                continue
            if alias is not None:
                # an entity alias that is joined but not selected
                continue
            text = self.replace_property_names(selection)
            if selection_alias:
                text = f"{text} AS {self.escape(selection_alias)}"
            selections.append(text)
        return selections

    def _create_select_expression(self) -> str:
        main = self.expression_map.require_main_alias()
        selections = self._build_selections() or ["*"]
        distinct = "DISTINCT " if self.expression_map.distinct else ""
        if main.sub_query:
            source = f"{main.sub_query} {self.escape(main.name)}"
        else:
            source = f"{self.escape(main.require_table_name())} {self.escape(main.name)}"
        return f"SELECT {distinct}{', '.join(selections)} FROM {source}"

    def _discriminator_condition(self, alias: Alias) -> str | None:
        metadata = alias.metadata
        if metadata is None or metadata.parent_entity_metadata is None or metadata.discriminator_column is None:
            return None
        values = ", ".join(self.driver.default_sql(str(v)) or "NULL" for v in metadata.discriminator_values)
        column = metadata.discriminator_column.database_name
        return f"{self.escape(alias.name)}.{self.escape(column)} IN ({values})"

    def _extra_where_conditions(self) -> list[str]:
        condition = self._discriminator_condition(self.expression_map.require_main_alias())
        return [condition] if condition else []

    def _create_join_expression(self) -> str:
        parts: list[str] = []
        for join in self.expression_map.joins:
            keyword = f" {join.direction} JOIN "
            destination = self.escape(join.alias.name)
            table = f"{self.escape(join.alias.require_table_name())} {destination}"
            extra = self.replace_property_names(join.condition) if join.condition else ""
            relation = join.relation
            if relation is None:
                parts.append(f"{keyword}{table} ON {extra}")
                continue

            parent = self.escape(join.parent_alias or "")
            if relation.is_with_join_columns:
                conditions = [
                    f"{destination}.{self.escape(c.require_referenced_column().database_name)} = "
                    f"{parent}.{self.escape(c.database_name)}"
                    for c in relation.join_columns
                ]
            elif relation.is_many_to_many:
                junction = relation.require_junction_metadata()
                junction_alias = self.escape(join.junction_alias_name)
                junction_conditions = " AND ".join(
                    f"{junction_alias}.{self.escape(c.database_name)} = "
                    f"{parent}.{self.escape(c.require_referenced_column().database_name)}"
                    for c in relation.join_columns
                )
                parts.append(
                    f"{keyword}{self.escape(junction.table_name)} {junction_alias} ON {junction_conditions}"
                )
                conditions = [
                    f"{destination}.{self.escape(c.require_referenced_column().database_name)} = "
                    f"{junction_alias}.{self.escape(c.database_name)}"
                    for c in relation.inverse_join_columns
                ]
            else:
                conditions = [
                    f"{destination}.{self.escape(c.database_name)} = "
                    f"{parent}.{self.escape(c.require_referenced_column().database_name)}"
                    for c in relation.join_columns
                ]
            discriminator = self._discriminator_condition(join.alias)
            if discriminator:
                conditions.append(discriminator)
            if extra:
                conditions.append(f"({extra})")
            parts.append(f"{keyword}{table} ON {' AND '.join(conditions)}")
        return "".join(parts)

    def _create_group_by_expression(self) -> str:
        if not self.expression_map.group_bys:
            return ""
        return " GROUP BY " + ", ".join(self.replace_property_names(g) for g in self.expression_map.group_bys)

    def _create_having_expression(self) -> str:
        conditions = self.render_conditions(self.expression_map.havings)
        return f" HAVING {conditions}" if conditions else ""

    def _effective_order_bys(self) -> dict[str, tuple[str, str | None]]:
        if self.expression_map.order_bys:
            return self.expression_map.order_bys
        main = self.expression_map.main_alias
        if main is None or main.metadata is None or not main.metadata.order_by:
            return {}
        return {
            f"{main.name}.{key}": (str(value).upper(), None)
            for key, value in main.metadata.order_by.items()
        }

    def _create_order_by_expression(self) -> str:
        order_bys = self._effective_order_bys()
        if not order_bys:
            return ""
        parts = []
        for key, (order, nulls) in order_bys.items():
            parts.append(f"{self.replace_property_names(key)} {order}" + (f" {nulls}" if nulls else ""))
        return " ORDER BY " + ", ".join(parts)

    def _page(self) -> tuple[int | None, int | None]:
        m = self.expression_map
        limit = m.take if m.take is not None else m.limit
        offset = m.skip if m.skip is not None else m.offset
        return limit, offset

    def _create_limit_offset_expression(self) -> str:
        sql = self.driver.build_limit_offset(*self._page())
        return f" {sql}" if sql else ""

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    def clone(self) -> SelectQueryBuilder:
        return SelectQueryBuilder(self.connection, self.query_runner, self.expression_map.clone())

    def _is_cache_enabled(self, runner: QueryRunner) -> bool:
        if runner.is_transaction_active:
            return False
        cache = self.expression_map.cache
        return cache if cache is not None else self.connection.config.cache_always_enabled

    async def _query_rows(self, runner: QueryRunner, sql: str, parameters: dict[str, Any]) -> list[dict[str, Any]]:
        """Rows of a select statement, read from and stored in the result cache when enabled."""
        if not self._is_cache_enabled(runner):
            return (await runner.query(sql, parameters)).rows
        cache = self.connection.query_result_cache
        key = cache_key(sql, parameters)
        rows = cache.get(key)
        if rows is None:
            rows = (await runner.query(sql, parameters)).rows
            m = self.expression_map
            cache.store(key, sql, rows, m.cache_duration, m.cache_id)
        return rows

    async def _load_raw(self, runner: QueryRunner) -> list[dict[str, Any]]:
        return await self._query_rows(runner, self.get_query(), self.expression_map.parameters)

    async def get_raw_many(self) -> list[dict[str, Any]]:
        return await self._execute_with_runner(self._load_raw)

    async def get_raw_one(self) -> dict[str, Any] | None:
        rows = await self.get_raw_many()
        return rows[0] if rows else None

    async def get_raw_and_entities(self) -> tuple[list[dict[str, Any]], list[Any]]:
        return await self._execute_with_runner(self._load_raw_and_entities)

    async def get_many(self) -> list[Any]:
        _, entities = await self.get_raw_and_entities()
        return entities

    async def get_one(self) -> Any:
        entities = await self.get_many()
        return entities[0] if entities else None

    async def get_one_or_fail(self) -> Any:
        entity = await self.get_one()
        if entity is None:
            main = self.expression_map.require_main_alias()
            name = main.metadata.name if main.metadata is not None else main.name
            raise EntityNotFoundError(name, self.get_parameters())
        return entity

    async def get_count(self) -> int:
        return await self._execute_with_runner(self._count)

    async def get_many_and_count(self) -> tuple[list[Any], int]:
        async def run(runner: QueryRunner) -> tuple[list[Any], int]:
            _, entities = await self._load_raw_and_entities(runner)
            return entities, await self._count(runner)

        return await self._execute_with_runner(run)

    def _uses_two_phase_pagination(self) -> bool:
        limit, offset = self._page()
        return self.expression_map.has_collection_joins and (limit is not None or offset is not None)

    async def _load_raw_and_entities(self, runner: QueryRunner) -> tuple[list[dict[str, Any]], list[Any]]:
        from row_orm.mapping.transformer import RawSqlResultsToEntityTransformer
        from row_orm.query.relation_count import RelationCountLoader
        from row_orm.query.relation_id import RelationIdLoader

        main = self.expression_map.require_main_alias()
        metadata = main.metadata
        if metadata is None:
            raise QueryBuilderError("Entities can only be loaded from an entity target; use get_raw_many")

        if self._uses_two_phase_pagination():
            ids = await self._load_page_ids(runner)
            if not ids:
                return [], []
            builder = self.clone()
            builder.query_runner = runner
            m = builder.expression_map
            m.limit = m.offset = m.skip = m.take = None
            original = m.wheres
            ids_condition = builder._ids_condition(ids)
            m.wheres = [("simple", original), ("and", ids_condition)] if original else [("simple", ids_condition)]
            raw = await builder._load_raw(runner)
        else:
            raw = await self._load_raw(runner)

        relation_ids = await RelationIdLoader(self.connection, self.expression_map, runner).load(raw)
        relation_counts = await RelationCountLoader(self.connection, self.expression_map, runner).load(raw)
        transformer = RawSqlResultsToEntityTransformer(
            self.expression_map, self.driver, relation_ids, relation_counts
        )
        entities = transformer.transform(raw, main)

        if self.expression_map.call_listeners and entities:
            await self.connection.broadcaster.broadcast_load_for_all_entities(
                metadata, entities, runner, runner.manager
            )
        return raw, entities

    def _page_order_column(self, key: str, inner: SelectQueryBuilder, index: int) -> str:
        """Column of the pagination sub-query that ``key`` orders by.

        Selection aliases are reused; property paths and raw expressions are
        projected into the sub-query under a generated alias.
        """
        if any(selection_alias == key for _, selection_alias in self.expression_map.selects):
            return key
        name = f"orm_order_{index}"
        inner.add_select(key, name)
        return name

    async def _load_page_ids(self, runner: QueryRunner) -> list[dict[str, Any]]:
        """First pagination phase: distinct root ids of the requested page."""
        main = self.expression_map.require_main_alias()
        metadata = main.require_metadata()
        distinct_alias = self.escape(DISTINCT_ALIAS)

        inner = self.clone()
        m = inner.expression_map
        m.order_bys = {}
        m.limit = m.offset = m.skip = m.take = None

        selects = []
        id_aliases = []
        for column in metadata.primary_columns:
            id_alias = f"ids_{self.column_alias(main.name, column)}"
            id_aliases.append((column, id_alias))
            selects.append(
                f"{distinct_alias}.{self.escape(self.column_alias(main.name, column))} AS {self.escape(id_alias)}"
            )
        orders = []
        for index, (key, (order, nulls)) in enumerate(self._effective_order_bys().items()):
            reference = f"{distinct_alias}.{self.escape(self._page_order_column(key, inner, index))}"
            if reference not in selects:
                selects.append(reference)
            orders.append(f"{reference} {order}" + (f" {nulls}" if nulls else ""))
        if not orders:
            orders = [
                f"{distinct_alias}.{self.escape(self.column_alias(main.name, c))} ASC"
                for c in metadata.primary_columns
            ]

        sql = (
            f"SELECT DISTINCT {', '.join(selects)} FROM ({inner._get_unordered_query()}) {distinct_alias}"
            f" ORDER BY {', '.join(orders)}"
            f"{self._create_limit_offset_expression()}"
        )
        rows = await self._query_rows(runner, sql, m.parameters)
        return [
            {
                column.property_path: self.driver.prepare_hydrated_value(row[id_alias], column)
                for column, id_alias in id_aliases
            }
            for row in rows
        ]

    def _get_unordered_query(self) -> str:
        return (
            self._create_select_expression()
            + self._create_join_expression()
            + self.create_where_expression()
            + self._create_group_by_expression()
            + self._create_having_expression()
        )

    async def _count(self, runner: QueryRunner) -> int:
        main = self.expression_map.require_main_alias()
        metadata = main.metadata
        if metadata is None:
            raise QueryBuilderError("get_count requires an entity target")
        source = f"{self.escape(metadata.table_name)} {self.escape(main.name)}"
        rest = self._create_join_expression() + self.create_where_expression()
        columns = [
            f"{self.escape(main.name)}.{self.escape(c.database_name)}" for c in metadata.primary_columns
        ]
        if len(columns) == 1:
            sql = f"SELECT COUNT(DISTINCT({columns[0]})) AS {self.escape('cnt')} FROM {source}{rest}"
        else:
            sql = (
                f"SELECT COUNT(*) AS {self.escape('cnt')} FROM "
                f"(SELECT DISTINCT {', '.join(columns)} FROM {source}{rest}) {self.escape('count_alias')}"
            )
        rows = await self._query_rows(runner, sql, self.expression_map.parameters)
        if not rows:
            return 0
        return int(rows[0]["cnt"])
