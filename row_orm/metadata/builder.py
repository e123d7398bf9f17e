"""Entity metadata builder.

Turns the description records of a MetadataArgsStorage into a validated list
of EntityMetadata. Any inconsistency (unresolvable column type, ambiguous
relation ownership, missing inverse side, duplicate table) aborts the whole
build so that errors surface at connect time.
"""

from __future__ import annotations

import copy
import inspect
import logging
import sys
import types
import typing
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable

from row_orm.core.enums import (
    ColumnMode,
    GenerationStrategy,
    InheritanceKind,
    OnDelete,
    RelationKind,
)
from row_orm.core.exceptions import (
    AmbiguousRelationOwnershipError,
    ColumnTypeUndefinedError,
    DuplicateTableNameError,
    EntityMetadataNotFoundError,
    EntityPropertyNotFoundError,
    IncrementColumnError,
    JoinAnnotationPlacementError,
    MissingInversePropertyError,
    MissingJoinAnnotationError,
    MissingNamingStrategyError,
    MissingPrimaryColumnError,
)
from row_orm.metadata.args import (
    ColumnArgs,
    EntityArgs,
    InheritanceArgs,
    JoinColumnArgs,
    JoinColumnOptions,
    JoinTableArgs,
    MetadataArgsStorage,
    RelationArgs,
)
from row_orm.metadata.entity import (
    ColumnMetadata,
    EmbeddedMetadata,
    EntityListenerMetadata,
    EntityMetadata,
    ForeignKeyMetadata,
    IndexMetadata,
    RelationMetadata,
)
from row_orm.metadata.naming import NamingStrategy

logger = logging.getLogger(__name__)

# Declared Python type -> abstract column type
_TYPE_MAP: dict[Any, str] = {
    bool: "boolean",
    int: "integer",
    float: "float",
    Decimal: "decimal",
    str: "varchar",
    datetime: "datetime",
    date: "date",
    bytes: "blob",
}

_CASCADE_OPERATIONS = ("insert", "update", "remove")


class _PropertyRecorder:
    """Stand-in passed to inverse-side accessors; attribute access yields the name."""

    def __getattr__(self, name: str) -> str:
        return name


def resolve_property_name(accessor: str | Callable[[Any], Any] | None) -> str | None:
    """Resolve ``"posts"`` or ``lambda category: category.posts`` to ``"posts"``."""
    if accessor is None or isinstance(accessor, str):
        return accessor
    result = accessor(_PropertyRecorder())
    return result if isinstance(result, str) else None


def _unwrap_optional(hint: Any) -> Any:
    if typing.get_origin(hint) in (typing.Union, types.UnionType):
        args = [a for a in typing.get_args(hint) if a is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint


def declared_type(cls: type, property_name: str) -> Any:
    """Return the annotated type of ``property_name`` on ``cls`` or None."""
    for klass in cls.__mro__:
        annotations = inspect.get_annotations(klass)
        if property_name not in annotations:
            continue
        hint = annotations[property_name]
        if isinstance(hint, str):
            module = sys.modules.get(klass.__module__)
            try:
                hint = eval(hint, vars(module) if module else {}, dict(vars(klass)))  # noqa: S307
            except (NameError, SyntaxError, TypeError):
                return None
        return _unwrap_optional(hint)
    return None


def _class_targets(cls: type) -> list[type]:
    return [klass for klass in cls.__mro__ if klass is not object]


def _parse_cascade(cascade: bool | tuple[str, ...]) -> dict[str, bool]:
    if cascade is True:
        return {op: True for op in _CASCADE_OPERATIONS}
    if not cascade:
        return {op: False for op in _CASCADE_OPERATIONS}
    return {op: op in cascade for op in _CASCADE_OPERATIONS}


class EntityMetadataBuilder:
    """Builds EntityMetadata from a MetadataArgsStorage.

    Args:
        storage: Description records of all entities.
        naming_strategy: Strategy used to derive table/column/constraint names.
        connection_name: Used in error messages.
    """

    def __init__(
        self,
        storage: MetadataArgsStorage,
        naming_strategy: NamingStrategy | None,
        connection_name: str = "default",
    ) -> None:
        if naming_strategy is None:
            raise MissingNamingStrategyError()
        self._storage = storage
        self._naming = naming_strategy
        self._connection_name = connection_name
        self._join_columns: dict[int, list[JoinColumnArgs]] = {}
        self._join_tables: dict[int, JoinTableArgs | None] = {}
        self._relation_args: dict[int, RelationArgs] = {}
        self._junctions: dict[int, EntityMetadata] = {}

    def build(self, targets: list[type] | None = None) -> list[EntityMetadata]:
        """Build metadata for all (or the given) registered entities.

        Returns entity metadatas followed by generated junction metadatas.
        """
        entity_args = [
            e
            for e in self._storage.entities
            if not e.embeddable and (targets is None or any(e.target is t for t in targets))
        ]
        entities = [(args.target, self._create_entity_metadata(args)) for args in entity_args]
        metadatas = [metadata for _, metadata in entities]

        self._link_inheritance(entities)
        for target, metadata in entities:
            self._build_columns(metadata, target)
            self._build_embeddeds(metadata, target)
            self._build_relations(metadata, target)
            self._build_listeners(metadata, target)
        self._build_discriminators(metadatas)

        for metadata in metadatas:
            self._resolve_relation_targets(metadata, metadatas)
        for metadata in metadatas:
            self._resolve_inverse_relations(metadata)
        for metadata in metadatas:
            for relation in metadata.relations:
                self._validate_ownership(relation)

        self._build_join_columns(metadatas)
        junctions: list[EntityMetadata] = []
        for metadata in metadatas:
            junctions.extend(self._build_junctions(metadata))
        for metadata in metadatas:
            self._link_inverse_join_columns(metadata)
            junction = self._build_tree_structures(metadata)
            if junction is not None:
                junctions.append(junction)

        for target, metadata in entities:
            self._build_indices(metadata, target)
        self._flatten_single_table_inheritance(metadatas)

        all_metadatas = metadatas + junctions
        self._validate(all_metadatas)
        for metadata in all_metadatas:
            for foreign_key in metadata.foreign_keys:
                foreign_key.build(self._naming)

        logger.debug(
            "Built metadata for %d entities (%d junction tables)",
            len(metadatas),
            len(junctions),
        )
        return all_metadatas

    # ------------------------------------------------------------------
    # entities
    # ------------------------------------------------------------------

    def _create_entity_metadata(self, args: EntityArgs) -> EntityMetadata:
        return EntityMetadata(
            target=args.target,
            name=args.target.__name__,
            table_name=self._naming.table_name(args.target.__name__, args.name),
            given_table_name=args.name,
            order_by=args.order_by,
        )

    def _link_inheritance(self, entities: list[tuple[type, EntityMetadata]]) -> None:
        """Attach single-table inheritance children to their parent entity."""
        by_target = {id(target): (target, metadata) for target, metadata in entities}
        for target, metadata in entities:
            bases = [by_target[id(b)] for b in target.__mro__[1:] if id(b) in by_target]
            if not bases:
                continue
            if any(
                (args := self._storage.find_inheritance(base)) is not None
                and args.pattern is InheritanceKind.SINGLE_TABLE
                for base, _ in bases
            ):
                parent = bases[0][1]
                metadata.parent_entity_metadata = parent
                parent.child_entity_metadatas.append(metadata)

    def _build_listeners(self, metadata: EntityMetadata, target: type) -> None:
        for args in self._storage.filter_listeners(_class_targets(target)):
            metadata.listeners.append(
                EntityListenerMetadata(args.target, args.property_name, args.type)
            )

    # ------------------------------------------------------------------
    # columns
    # ------------------------------------------------------------------

    def _column_type(self, args: ColumnArgs, owner: type) -> tuple[str, Any]:
        py_type = args.py_type or declared_type(owner, args.property_name)
        if args.type:
            return args.type, py_type
        if py_type in _TYPE_MAP:
            return _TYPE_MAP[py_type], py_type
        if args.generated is GenerationStrategy.INCREMENT or args.mode is ColumnMode.VERSION:
            return "integer", py_type
        if args.generated is GenerationStrategy.UUID:
            return "varchar", py_type
        if args.mode in (ColumnMode.CREATE_DATE, ColumnMode.UPDATE_DATE):
            return "datetime", py_type
        raise ColumnTypeUndefinedError(args.target, args.property_name)

    def _create_column(
        self,
        metadata: EntityMetadata,
        args: ColumnArgs,
        owner: type,
        embedded: EmbeddedMetadata | None = None,
    ) -> ColumnMetadata:
        column_type, py_type = self._column_type(args, owner)
        database_name = self._naming.column_name(args.property_name, args.name, [])
        if embedded is not None:
            database_name = embedded.apply_prefix(database_name, self._naming)
        return ColumnMetadata(
            metadata,
            args.property_name,
            database_name,
            column_type,
            target=args.target,
            py_type=py_type,
            length=args.length,
            precision=args.precision,
            scale=args.scale,
            nullable=args.nullable,
            default=args.default,
            is_primary=args.primary,
            is_unique=args.unique,
            generation_strategy=args.generated,
            mode=args.mode,
            is_select=args.select,
            is_insert=args.insert,
            is_update=args.update,
            transformer=args.transformer,
            embedded_metadata=embedded,
        )

    def _build_columns(self, metadata: EntityMetadata, target: type) -> None:
        for args in self._storage.filter_columns(_class_targets(target)):
            metadata.columns.append(self._create_column(metadata, args, target))

    def _build_embeddeds(self, metadata: EntityMetadata, target: type) -> None:
        metadata.embeddeds = self._create_embeddeds(metadata, target, None)

    def _create_embeddeds(
        self,
        metadata: EntityMetadata,
        owner: type,
        parent: EmbeddedMetadata | None,
    ) -> list[EmbeddedMetadata]:
        embeddeds: list[EmbeddedMetadata] = []
        for args in self._storage.filter_embeddeds(_class_targets(owner)):
            target = self._resolve_type(args.type)
            embedded = EmbeddedMetadata(metadata, target, args.property_name, args.prefix, parent)
            for column_args in self._storage.filter_columns(_class_targets(target)):
                column = self._create_column(metadata, column_args, target, embedded)
                embedded.columns.append(column)
                metadata.columns.append(column)
            embedded.embeddeds = self._create_embeddeds(metadata, target, embedded)
            embeddeds.append(embedded)
        return embeddeds

    def _build_discriminators(self, metadatas: list[EntityMetadata]) -> None:
        for metadata in metadatas:
            if metadata.parent_entity_metadata is not None or not metadata.child_entity_metadatas:
                continue
            inheritance = self._storage.find_inheritance(metadata.target) or InheritanceArgs(  # type: ignore[arg-type]
                metadata.target  # type: ignore[arg-type]
            )
            column_name = inheritance.column_name or self._naming.discriminator_column_name()
            for member in [metadata, *metadata.all_child_entity_metadatas]:
                member.inheritance = InheritanceKind.SINGLE_TABLE
                value_args = self._storage.find_discriminator_value(member.target)  # type: ignore[arg-type]
                member.discriminator_value = (
                    value_args.value if value_args is not None else member.name
                )
                column = ColumnMetadata(
                    member,
                    column_name,
                    column_name,
                    inheritance.column_type,
                    length=inheritance.column_length,
                    mode=ColumnMode.DISCRIMINATOR,
                    target=metadata.target,
                )
                member.columns.append(column)
                member.discriminator_column = column

    # ------------------------------------------------------------------
    # relations
    # ------------------------------------------------------------------

    def _resolve_type(self, value: Any) -> type:
        if isinstance(value, type):
            return value
        if isinstance(value, str):
            for args in self._storage.entities:
                if args.target.__name__ == value:
                    return args.target
            raise EntityMetadataNotFoundError(value, self._connection_name)
        return value()

    def _build_relations(self, metadata: EntityMetadata, target: type) -> None:
        for args in self._storage.filter_relations(_class_targets(target)):
            cascade = _parse_cascade(args.cascade)
            relation = RelationMetadata(
                metadata,
                args.property_name,
                args.kind,
                target=self._resolve_type(args.type),
                given_inverse_side=resolve_property_name(args.inverse_side),
                cascade_insert=cascade["insert"],
                cascade_update=cascade["update"],
                cascade_remove=cascade["remove"],
                is_eager=args.eager,
                is_nullable=args.nullable,
                is_primary=args.primary,
                on_delete=args.on_delete,
                is_tree_parent=args.tree_parent,
                is_tree_children=args.tree_children,
            )
            self._relation_args[id(relation)] = args
            self._join_columns[id(relation)] = self._storage.filter_join_columns(
                args.target, args.property_name
            )
            self._join_tables[id(relation)] = self._storage.find_join_table(
                args.target, args.property_name
            )
            metadata.relations.append(relation)

    def _resolve_relation_targets(
        self, metadata: EntityMetadata, metadatas: list[EntityMetadata]
    ) -> None:
        for relation in metadata.relations:
            target = next((m for m in metadatas if m.target is relation.target), None)
            if target is None:
                raise EntityMetadataNotFoundError(relation.target, self._connection_name)
            relation.inverse_entity_metadata = target

    def _resolve_inverse_relations(self, metadata: EntityMetadata) -> None:
        for relation in metadata.relations:
            if relation.given_inverse_side is None:
                continue
            inverse = relation.inverse_entity_metadata.find_relation_with_property_path(
                relation.given_inverse_side
            )
            if inverse is None:
                raise MissingInversePropertyError(
                    metadata.name, relation.property_name, relation.given_inverse_side
                )
            if inverse.given_inverse_side not in (None, relation.property_name):
                raise MissingInversePropertyError(
                    inverse.entity_metadata.name,
                    inverse.property_name,
                    inverse.given_inverse_side,
                )
            relation.inverse_relation = inverse
            if inverse.inverse_relation is None or inverse.target is metadata.target:
                inverse.inverse_relation = relation

    def _validate_ownership(self, relation: RelationMetadata) -> None:
        entity_name = relation.entity_metadata.name
        has_join_column = bool(self._join_columns[id(relation)])
        has_join_table = self._join_tables[id(relation)] is not None
        inverse = relation.inverse_relation

        if relation.is_one_to_many:
            if has_join_column or has_join_table:
                raise JoinAnnotationPlacementError(entity_name, relation.property_name, relation.kind.value)
            if inverse is None or not inverse.is_many_to_one:
                raise MissingInversePropertyError(
                    entity_name, relation.property_name, relation.given_inverse_side
                )
            return

        if relation.is_many_to_one:
            if has_join_table:
                raise JoinAnnotationPlacementError(entity_name, relation.property_name, relation.kind.value)
            relation.is_owning = True
            return

        if relation.is_one_to_one:
            if has_join_table:
                raise JoinAnnotationPlacementError(entity_name, relation.property_name, relation.kind.value)
            has_join = has_join_column
            inverse_has_join = inverse is not None and bool(self._join_columns[id(inverse)])
        else:
            if has_join_column:
                raise JoinAnnotationPlacementError(entity_name, relation.property_name, relation.kind.value)
            has_join = has_join_table
            inverse_has_join = inverse is not None and self._join_tables[id(inverse)] is not None

        if inverse is not None and inverse is not relation and has_join and inverse_has_join:
            raise AmbiguousRelationOwnershipError(entity_name, relation.property_name, inverse.property_name)
        if not has_join and not inverse_has_join:
            raise MissingJoinAnnotationError(entity_name, relation.property_name, relation.kind.value)
        relation.is_owning = has_join

    def _referenced_columns(
        self, target: EntityMetadata, names: list[str | None]
    ) -> list[ColumnMetadata]:
        if not any(names):
            return target.primary_columns
        columns: list[ColumnMetadata] = []
        for name in names:
            if name is None:
                continue
            column = target.find_column_with_property_path(
                name
            ) or target.find_column_with_database_name(name)
            if column is None:
                raise EntityPropertyNotFoundError(name, target.name)
            columns.append(column)
        return columns

    def _build_join_columns(self, metadatas: list[EntityMetadata]) -> None:
        """Create join columns for owning to-one relations.

        Relations whose target primary key is itself derived from a relation
        are retried until every target has its primary columns.
        """
        pending = [r for m in metadatas for r in m.relations if r.is_with_join_columns]
        while pending:
            remaining: list[RelationMetadata] = []
            for relation in pending:
                join_args = self._join_columns[id(relation)]
                referenced = self._referenced_columns(
                    relation.inverse_entity_metadata,
                    [j.referenced_column_name for j in join_args],
                )
                if not referenced:
                    remaining.append(relation)
                    continue
                self._create_join_columns(relation, referenced, join_args)
            if len(remaining) == len(pending):
                raise MissingPrimaryColumnError(remaining[0].inverse_entity_metadata.name)
            pending = remaining

    def _create_join_columns(
        self,
        relation: RelationMetadata,
        referenced: list[ColumnMetadata],
        join_args: list[JoinColumnArgs],
    ) -> None:
        metadata = relation.entity_metadata
        declared_by = self._relation_args[id(relation)].target
        for index, referenced_column in enumerate(referenced):
            join_arg = next(
                (
                    j
                    for j in join_args
                    if j.referenced_column_name
                    in (referenced_column.property_path, referenced_column.database_name)
                ),
                join_args[index] if index < len(join_args) else None,
            )
            name = (
                join_arg.name
                if join_arg is not None and join_arg.name
                else self._naming.join_column_name(
                    self._naming.relation_name(relation.property_name),
                    referenced_column.database_name,
                )
            )
            column = metadata.find_column_with_database_name(name)
            if column is None:
                column = ColumnMetadata(
                    metadata,
                    relation.property_name,
                    name,
                    referenced_column.type,
                    target=declared_by,
                    length=referenced_column.length,
                    nullable=relation.is_nullable and not relation.is_primary,
                    is_primary=relation.is_primary,
                )
                metadata.columns.append(column)
            column.relation_metadata = relation
            column.referenced_column = referenced_column
            relation.join_columns.append(column)

        foreign_key = ForeignKeyMetadata(
            metadata,
            relation.inverse_entity_metadata,
            relation.join_columns,
            referenced,
            relation.on_delete,
        )
        relation.foreign_keys.append(foreign_key)
        metadata.foreign_keys.append(foreign_key)
        if relation.is_one_to_one_owner:
            metadata.indices.append(
                IndexMetadata(metadata, [c.database_name for c in relation.join_columns], is_unique=True)
            )

    def _junction_columns(
        self,
        junction: EntityMetadata,
        table_name: str,
        referenced: list[ColumnMetadata],
        options: tuple[JoinColumnOptions, ...],
        taken: set[str],
    ) -> list[ColumnMetadata]:
        columns: list[ColumnMetadata] = []
        for index, referenced_column in enumerate(referenced):
            option = options[index] if index < len(options) else None
            if option is not None and option.name:
                name = option.name
            elif taken:
                name = self._naming.join_table_inverse_column_name(
                    table_name, referenced_column.property_name, referenced_column.database_name
                )
                if name in taken:
                    name = f"inverse_{name}"
            else:
                name = self._naming.join_table_column_name(
                    table_name, referenced_column.property_name, referenced_column.database_name
                )
            column = ColumnMetadata(
                junction,
                name,
                name,
                referenced_column.type,
                length=referenced_column.length,
                is_primary=True,
                mode=ColumnMode.JUNCTION,
                referenced_column=referenced_column,
            )
            columns.append(column)
        return columns

    def _build_junctions(self, metadata: EntityMetadata) -> list[EntityMetadata]:
        junctions: list[EntityMetadata] = []
        for relation in metadata.relations:
            join_table = self._join_tables.get(id(relation))
            if not relation.is_many_to_many_owner or join_table is None:
                continue
            args_key = id(self._relation_args[id(relation)])
            existing = self._junctions.get(args_key)
            if existing is not None:
                # inherited by a single-table child: share the parent's junction
                relation.junction_entity_metadata = existing
                relation.join_columns = existing.foreign_keys[0].columns
                relation.inverse_join_columns = existing.foreign_keys[1].columns
                continue

            target = relation.inverse_entity_metadata
            table_name = join_table.name or self._naming.join_table_name(
                metadata.table_name,
                target.table_name,
                relation.property_name,
                relation.inverse_relation.property_name if relation.inverse_relation else None,
            )
            junction = EntityMetadata(None, table_name, table_name, is_junction=True)
            owner_referenced = self._referenced_columns(
                metadata, [o.referenced_column_name for o in join_table.join_columns]
            )
            inverse_referenced = self._referenced_columns(
                target, [o.referenced_column_name for o in join_table.inverse_join_columns]
            )
            owner_columns = self._junction_columns(
                junction, metadata.table_name, owner_referenced, join_table.join_columns, set()
            )
            inverse_columns = self._junction_columns(
                junction,
                target.table_name,
                inverse_referenced,
                join_table.inverse_join_columns,
                {c.database_name for c in owner_columns},
            )
            junction.columns = owner_columns + inverse_columns
            junction.foreign_keys = [
                ForeignKeyMetadata(junction, metadata, owner_columns, owner_referenced, OnDelete.CASCADE),
                ForeignKeyMetadata(junction, target, inverse_columns, inverse_referenced, OnDelete.CASCADE),
            ]
            relation.junction_entity_metadata = junction
            relation.join_columns = owner_columns
            relation.inverse_join_columns = inverse_columns
            self._junctions[args_key] = junction
            junctions.append(junction)
        return junctions

    def _link_inverse_join_columns(self, metadata: EntityMetadata) -> None:
        """Point non-owning relations at the columns held by the owning side."""
        for relation in metadata.relations:
            if relation.is_owning or relation.inverse_relation is None:
                continue
            owner = relation.inverse_relation
            if relation.is_many_to_many:
                relation.junction_entity_metadata = owner.junction_entity_metadata
                relation.join_columns = owner.inverse_join_columns
                relation.inverse_join_columns = owner.join_columns
            else:
                relation.join_columns = owner.join_columns

    def _build_tree_structures(self, metadata: EntityMetadata) -> EntityMetadata | None:
        tree = self._storage.find_tree(metadata.target)  # type: ignore[arg-type]
        if tree is None:
            return None
        metadata.inheritance = tree.kind
        if tree.kind is InheritanceKind.MATERIALIZED_PATH:
            name = self._naming.materialized_path_column_name()
            column = ColumnMetadata(
                metadata,
                name,
                name,
                "varchar",
                nullable=True,
                default="",
                mode=ColumnMode.MATERIALIZED_PATH,
            )
            metadata.columns.append(column)
            metadata.materialized_path_column = column
            return None

        table_name = self._naming.closure_junction_table_name(metadata.table_name)
        junction = EntityMetadata(None, table_name, table_name, is_closure_junction=True)
        ancestors: list[ColumnMetadata] = []
        descendants: list[ColumnMetadata] = []
        for primary in metadata.primary_columns:
            for prefix, bucket in (("ancestor", ancestors), ("descendant", descendants)):
                name = f"{prefix}_{primary.database_name}"
                bucket.append(
                    ColumnMetadata(
                        junction,
                        name,
                        name,
                        primary.type,
                        length=primary.length,
                        is_primary=True,
                        mode=ColumnMode.JUNCTION,
                        referenced_column=primary,
                    )
                )
        junction.columns = ancestors + descendants
        junction.foreign_keys = [
            ForeignKeyMetadata(junction, metadata, ancestors, metadata.primary_columns, OnDelete.CASCADE),
            ForeignKeyMetadata(junction, metadata, descendants, metadata.primary_columns, OnDelete.CASCADE),
        ]
        metadata.closure_junction_table = junction
        return junction

    # ------------------------------------------------------------------
    # indices, inheritance, validation
    # ------------------------------------------------------------------

    def _build_indices(self, metadata: EntityMetadata, target: type) -> None:
        for args in self._storage.filter_indices(_class_targets(target)):
            metadata.indices.append(
                IndexMetadata(metadata, list(args.columns), name=args.name, is_unique=args.unique)
            )
        for column in metadata.columns:
            if column.is_unique and not column.is_primary:
                metadata.indices.append(
                    IndexMetadata(metadata, [column.property_path], is_unique=True)
                )
        for index in metadata.indices:
            index.build(self._naming)

    def _flatten_single_table_inheritance(self, metadatas: list[EntityMetadata]) -> None:
        """Copy every descendant's columns, keys and indices onto the root table."""
        for root in metadatas:
            if root.parent_entity_metadata is not None or not root.child_entity_metadatas:
                continue
            for child in root.all_child_entity_metadatas:
                for column in child.columns:
                    if root.find_column_with_database_name(column.database_name) is None:
                        flattened = copy.copy(column)
                        flattened.is_nullable = True
                        root.columns.append(flattened)
                for foreign_key in child.foreign_keys:
                    if not any(fk.column_names == foreign_key.column_names for fk in root.foreign_keys):
                        root.foreign_keys.append(foreign_key)
                for index in child.indices:
                    if not any(i.name == index.name for i in root.indices):
                        root.indices.append(index)

    def _validate(self, metadatas: list[EntityMetadata]) -> None:
        tables: dict[str, EntityMetadata] = {}
        for metadata in metadatas:
            if not metadata.owns_table:
                continue
            seen = tables.get(metadata.table_name)
            if seen is not None:
                raise DuplicateTableNameError(metadata.table_name, seen.name, metadata.name)
            tables[metadata.table_name] = metadata

        for metadata in metadatas:
            if not metadata.primary_columns:
                raise MissingPrimaryColumnError(metadata.name)
            increments = [
                c.property_path
                for c in metadata.columns
                if c.generation_strategy is GenerationStrategy.INCREMENT
            ]
            if len(increments) > 1:
                raise IncrementColumnError(metadata.name, increments)
