"""Metadata description records.

Frozen dataclasses describing entities, columns, relations and indices.
They are collected in a MetadataArgsStorage instance owned by the caller
(usually filled through the ``entity()`` builder) and consumed by the
EntityMetadataBuilder.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, runtime_checkable

from row_orm.core.enums import (
    ColumnMode,
    EventListenerType,
    GenerationStrategy,
    InheritanceKind,
    OnDelete,
    RelationKind,
)


@runtime_checkable
class ValueTransformer(Protocol):
    """Bidirectional conversion between entity and database values.

    ``to`` is applied when writing to the database, ``from_`` when reading.
    """

    def to(self, value: Any) -> Any: ...

    def from_(self, value: Any) -> Any: ...


@dataclass(frozen=True)
class EntityArgs:
    target: type
    name: str | None = None
    order_by: dict[str, str] | None = None
    embeddable: bool = False


@dataclass(frozen=True)
class ColumnArgs:
    target: type
    property_name: str
    type: str | None = None
    py_type: type | None = None
    name: str | None = None
    length: int | None = None
    precision: int | None = None
    scale: int | None = None
    nullable: bool = False
    default: Any = None
    primary: bool = False
    unique: bool = False
    generated: GenerationStrategy = GenerationStrategy.NONE
    mode: ColumnMode = ColumnMode.REGULAR
    select: bool = True
    insert: bool = True
    update: bool = True
    transformer: ValueTransformer | None = None


@dataclass(frozen=True)
class RelationArgs:
    target: type
    property_name: str
    kind: RelationKind
    type: type | str | Callable[[], type]
    inverse_side: str | Callable[[Any], Any] | None = None
    cascade: bool | tuple[str, ...] = False
    eager: bool = False
    nullable: bool = True
    on_delete: OnDelete | None = None
    primary: bool = False
    tree_parent: bool = False
    tree_children: bool = False


@dataclass(frozen=True)
class JoinColumnOptions:
    name: str | None = None
    referenced_column_name: str | None = None


@dataclass(frozen=True)
class JoinColumnArgs:
    target: type
    property_name: str
    name: str | None = None
    referenced_column_name: str | None = None


@dataclass(frozen=True)
class JoinTableArgs:
    target: type
    property_name: str
    name: str | None = None
    join_columns: tuple[JoinColumnOptions, ...] = ()
    inverse_join_columns: tuple[JoinColumnOptions, ...] = ()


@dataclass(frozen=True)
class IndexArgs:
    target: type
    columns: tuple[str, ...]
    name: str | None = None
    unique: bool = False


@dataclass(frozen=True)
class EmbeddedArgs:
    target: type
    property_name: str
    type: type | Callable[[], type]
    prefix: str | None = None


@dataclass(frozen=True)
class InheritanceArgs:
    target: type
    pattern: InheritanceKind = InheritanceKind.SINGLE_TABLE
    column_name: str | None = None
    column_type: str = "varchar"
    column_length: int | None = None


@dataclass(frozen=True)
class DiscriminatorValueArgs:
    target: type
    value: Any


@dataclass(frozen=True)
class TreeArgs:
    target: type
    kind: InheritanceKind


@dataclass(frozen=True)
class EntityListenerArgs:
    target: type
    property_name: str
    type: EventListenerType


def _matches(target: type, targets: list[type]) -> bool:
    return any(target is t for t in targets)


@dataclass
class MetadataArgsStorage:
    """Explicit registry of metadata description records.

    One storage is passed to each Connection; there is no module-level
    registry.
    """

    entities: list[EntityArgs] = field(default_factory=list)
    columns: list[ColumnArgs] = field(default_factory=list)
    relations: list[RelationArgs] = field(default_factory=list)
    join_columns: list[JoinColumnArgs] = field(default_factory=list)
    join_tables: list[JoinTableArgs] = field(default_factory=list)
    indices: list[IndexArgs] = field(default_factory=list)
    embeddeds: list[EmbeddedArgs] = field(default_factory=list)
    inheritances: list[InheritanceArgs] = field(default_factory=list)
    discriminator_values: list[DiscriminatorValueArgs] = field(default_factory=list)
    trees: list[TreeArgs] = field(default_factory=list)
    entity_listeners: list[EntityListenerArgs] = field(default_factory=list)

    def add(self, record: Any) -> None:
        """Append a record to the list matching its type."""
        buckets: dict[type, list[Any]] = {
            EntityArgs: self.entities,
            ColumnArgs: self.columns,
            RelationArgs: self.relations,
            JoinColumnArgs: self.join_columns,
            JoinTableArgs: self.join_tables,
            IndexArgs: self.indices,
            EmbeddedArgs: self.embeddeds,
            InheritanceArgs: self.inheritances,
            DiscriminatorValueArgs: self.discriminator_values,
            TreeArgs: self.trees,
            EntityListenerArgs: self.entity_listeners,
        }
        try:
            buckets[type(record)].append(record)
        except KeyError:
            raise TypeError(f"Unknown metadata record type: {type(record).__name__}") from None

    def filter_columns(self, targets: list[type]) -> list[ColumnArgs]:
        return self._without_duplicate_properties(
            [c for c in self.columns if _matches(c.target, targets)], targets
        )

    def filter_relations(self, targets: list[type]) -> list[RelationArgs]:
        return self._without_duplicate_properties(
            [r for r in self.relations if _matches(r.target, targets)], targets
        )

    def filter_embeddeds(self, targets: list[type]) -> list[EmbeddedArgs]:
        return self._without_duplicate_properties(
            [e for e in self.embeddeds if _matches(e.target, targets)], targets
        )

    def filter_indices(self, targets: list[type]) -> list[IndexArgs]:
        return [i for i in self.indices if _matches(i.target, targets)]

    def filter_listeners(self, targets: list[type]) -> list[EntityListenerArgs]:
        return [listener for listener in self.entity_listeners if _matches(listener.target, targets)]

    def filter_join_columns(self, target: type, property_name: str) -> list[JoinColumnArgs]:
        return [
            j for j in self.join_columns if j.target is target and j.property_name == property_name
        ]

    def find_join_table(self, target: type, property_name: str) -> JoinTableArgs | None:
        return next(
            (
                j
                for j in self.join_tables
                if j.target is target and j.property_name == property_name
            ),
            None,
        )

    def find_inheritance(self, target: type) -> InheritanceArgs | None:
        return next((i for i in self.inheritances if i.target is target), None)

    def find_discriminator_value(self, target: type) -> DiscriminatorValueArgs | None:
        return next((d for d in self.discriminator_values if d.target is target), None)

    def find_tree(self, target: type) -> TreeArgs | None:
        return next((t for t in self.trees if t.target is target), None)

    @staticmethod
    def _without_duplicate_properties(records: list[Any], targets: list[type]) -> list[Any]:
        """Keep one record per property name, preferring the most derived target.

        ``targets`` is ordered from the most derived class to the base class.
        """
        order = {id(t): i for i, t in enumerate(targets)}
        chosen: dict[str, Any] = {}
        for record in records:
            current = chosen.get(record.property_name)
            if current is None or order[id(record.target)] < order[id(current.target)]:
                chosen[record.property_name] = record
        kept = set(map(id, chosen.values()))
        # base classes first so inherited columns lead the column list
        return sorted(
            (r for r in records if id(r) in kept),
            key=lambda r: -order[id(r.target)],
        )
