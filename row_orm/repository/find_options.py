"""Find options and operators used by ``find*`` methods.

``where`` mappings accept plain values (equality), None (IS NULL) and the
operators below::

    await repository.find({"where": {"views": MoreThan(10), "title": Like("a%")}})
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, Callable

if TYPE_CHECKING:
    from row_orm.metadata.entity import EntityMetadata
    from row_orm.query.select import SelectQueryBuilder

Converter = Callable[[Any], Any]


class FindOperator:
    """Comparison rendered as ``<path> <operator> :<parameter>``."""

    operator = "="

    def __init__(self, value: Any = None) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.value!r})"

    def to_sql(self, path: str, name: str) -> str:
        return f"{path} {self.operator} :{name}"

    def parameters(self, name: str, convert: Converter) -> dict[str, Any]:
        return {name: convert(self.value)}


class Equal(FindOperator):
    operator = "="


class LessThan(FindOperator):
    operator = "<"


class LessThanOrEqual(FindOperator):
    operator = "<="


class MoreThan(FindOperator):
    operator = ">"


class MoreThanOrEqual(FindOperator):
    operator = ">="


class Like(FindOperator):
    operator = "LIKE"

    def parameters(self, name: str, convert: Converter) -> dict[str, Any]:
        # patterns are bound as given, column converters would mangle wildcards
        return {name: self.value}


class Not(FindOperator):
    """Negates a value (``!=``) or another operator (``NOT(...)``)."""

    def to_sql(self, path: str, name: str) -> str:
        if isinstance(self.value, FindOperator):
            return f"NOT({self.value.to_sql(path, name)})"
        if self.value is None:
            return f"{path} IS NOT NULL"
        return f"{path} != :{name}"

    def parameters(self, name: str, convert: Converter) -> dict[str, Any]:
        if isinstance(self.value, FindOperator):
            return self.value.parameters(name, convert)
        if self.value is None:
            return {}
        return {name: convert(self.value)}


class Between(FindOperator):
    def __init__(self, start: Any, end: Any) -> None:
        super().__init__((start, end))

    def to_sql(self, path: str, name: str) -> str:
        return f"{path} BETWEEN :{name}_from AND :{name}_to"

    def parameters(self, name: str, convert: Converter) -> dict[str, Any]:
        start, end = self.value
        return {f"{name}_from": convert(start), f"{name}_to": convert(end)}


class In(FindOperator):
    def __init__(self, values: Any) -> None:
        super().__init__(list(values))

    def to_sql(self, path: str, name: str) -> str:
        return f"{path} IN (:...{name})"

    def parameters(self, name: str, convert: Converter) -> dict[str, Any]:
        return {name: [convert(v) for v in self.value]}


class IsNull(FindOperator):
    def __init__(self) -> None:
        super().__init__(None)

    def to_sql(self, path: str, name: str) -> str:
        return f"{path} IS NULL"

    def parameters(self, name: str, convert: Converter) -> dict[str, Any]:
        return {}


class Raw(FindOperator):
    """Raw SQL: ``Raw("CURRENT_DATE")`` compares with equality,
    ``Raw(lambda column: f"LOWER({column}) = 'a'")`` renders the whole condition.
    """

    def __init__(self, sql: str | Callable[[str], str], parameters: dict[str, Any] | None = None) -> None:
        super().__init__(sql)
        self.raw_parameters = parameters or {}

    def to_sql(self, path: str, name: str) -> str:
        if callable(self.value):
            return self.value(path)
        return f"{path} = {self.value}"

    def parameters(self, name: str, convert: Converter) -> dict[str, Any]:
        return dict(self.raw_parameters)


@dataclass
class FindOptions:
    """Options of ``find``, ``find_one``, ``find_and_count`` and ``count``.

    ``order`` is a mapping ``{"title": "ASC"}`` or a list of pairs
    ``[("title", "ASC")]``; ``relations`` lists relation paths to join
    (``"author"``, ``"author.profile"``). ``cache`` is True, a duration in
    milliseconds or ``{"id": ..., "milliseconds": ...}``.
    """

    select: list[str] | None = None
    where: Any = None
    relations: list[str] | None = None
    order: Any = None
    skip: int | None = None
    take: int | None = None
    cache: Any = None

    @classmethod
    def from_value(cls, value: Any) -> FindOptions:
        """Options from None, an options instance, an options mapping or a bare where mapping."""
        if value is None:
            return cls()
        if isinstance(value, FindOptions):
            return value
        names = {f.name for f in fields(cls)}
        if isinstance(value, dict) and value and set(value) <= names:
            return cls(**value)
        return cls(where=value)


def join_alias(parent_alias: str, property_name: str) -> str:
    return f"{parent_alias}__{property_name}"


def _join_eager_relations(
    builder: SelectQueryBuilder, metadata: EntityMetadata, alias: str, visited: tuple[EntityMetadata, ...]
) -> None:
    for relation in metadata.eager_relations:
        target = relation.inverse_entity_metadata
        if target in visited:
            continue
        name = join_alias(alias, relation.property_name)
        if not builder.expression_map.has_alias(name):
            builder.left_join_and_select(f"{alias}.{relation.property_name}", name)
        _join_eager_relations(builder, target, name, (*visited, target))


def _order_items(alias: str, order: Any) -> list[tuple[str, Any]]:
    items = list(order.items()) if isinstance(order, dict) else [tuple(pair) for pair in order]
    return [(key if "." in key and key.split(".", 1)[0] == alias else f"{alias}.{key}", value) for key, value in items]


def apply_find_options(builder: SelectQueryBuilder, options: FindOptions) -> SelectQueryBuilder:
    """Apply find options to a select builder whose main alias is set."""
    main = builder.expression_map.require_main_alias()
    alias = main.name
    metadata = main.require_metadata()

    if options.select:
        builder.select([f"{alias}.{path}" for path in options.select])
    if options.where is not None:
        builder.where(options.where)

    for path in options.relations or []:
        parent = alias
        for property_name in path.split("."):
            name = join_alias(parent, property_name)
            if not builder.expression_map.has_alias(name):
                builder.left_join_and_select(f"{parent}.{property_name}", name)
            parent = name
    _join_eager_relations(builder, metadata, alias, (metadata,))

    if options.order:
        builder.order_by(_order_items(alias, options.order))
    if options.skip is not None:
        builder.skip(options.skip)
    if options.take is not None:
        builder.take(options.take)
    if isinstance(options.cache, dict):
        builder.cache(options.cache.get("id") or True, options.cache.get("milliseconds"))
    elif options.cache is not None:
        builder.cache(options.cache)
    return builder
