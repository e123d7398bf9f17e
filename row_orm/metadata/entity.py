"""Entity metadata model.

Normalized, in-memory description of tables, columns, relations, indices,
embedded structures and inheritance. Built once per connection by the
EntityMetadataBuilder and shared read-only afterwards; only IndexMetadata is
meant to be mutated (before a schema re-sync).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from row_orm.core.enums import (
    ColumnMode,
    EventListenerType,
    GenerationStrategy,
    InheritanceKind,
    OnDelete,
    RelationKind,
)
from row_orm.core.exceptions import EntityPropertyNotFoundError, MetadataNotResolvedError

if TYPE_CHECKING:
    from row_orm.metadata.args import ValueTransformer
    from row_orm.metadata.naming import NamingStrategy


class _Unset:
    """Marker for a property that was never assigned on an entity."""

    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def instantiate(target: type) -> Any:
    """Create an instance of ``target`` without running its ``__init__``."""
    if hasattr(target, "model_construct"):
        return target.model_construct()
    return target.__new__(target)


class EmbeddedMetadata:
    """A value object whose columns are flattened into the owner's table."""

    def __init__(
        self,
        entity_metadata: EntityMetadata,
        target: type,
        property_name: str,
        custom_prefix: str | None,
        parent_embedded: EmbeddedMetadata | None = None,
    ) -> None:
        self.entity_metadata = entity_metadata
        self.target = target
        self.property_name = property_name
        self.custom_prefix = custom_prefix
        self.parent_embedded = parent_embedded
        self.columns: list[ColumnMetadata] = []
        self.embeddeds: list[EmbeddedMetadata] = []

    @property
    def chain(self) -> list[EmbeddedMetadata]:
        """Embeddeds from the outermost to this one."""
        chain: list[EmbeddedMetadata] = []
        current: EmbeddedMetadata | None = self
        while current is not None:
            chain.insert(0, current)
            current = current.parent_embedded
        return chain

    @property
    def property_path(self) -> str:
        return ".".join(e.property_name for e in self.chain)

    def create(self) -> Any:
        return instantiate(self.target)

    def apply_prefix(self, name: str, naming_strategy: NamingStrategy) -> str:
        """Apply this embedded chain's prefixes to a column name."""
        for embedded in reversed(self.chain):
            if embedded.custom_prefix is None:
                name = naming_strategy.column_name(name, None, [embedded.property_name])
            else:
                name = embedded.custom_prefix + name
        return name


class ColumnMetadata:
    """One table column."""

    def __init__(
        self,
        entity_metadata: EntityMetadata,
        property_name: str,
        database_name: str,
        type: str,
        *,
        target: type | None = None,
        py_type: type | None = None,
        length: int | None = None,
        precision: int | None = None,
        scale: int | None = None,
        nullable: bool = False,
        default: Any = None,
        is_primary: bool = False,
        is_unique: bool = False,
        generation_strategy: GenerationStrategy = GenerationStrategy.NONE,
        mode: ColumnMode = ColumnMode.REGULAR,
        is_select: bool = True,
        is_insert: bool = True,
        is_update: bool = True,
        transformer: ValueTransformer | None = None,
        embedded_metadata: EmbeddedMetadata | None = None,
        relation_metadata: RelationMetadata | None = None,
        referenced_column: ColumnMetadata | None = None,
    ) -> None:
        self.entity_metadata = entity_metadata
        self.target = target or entity_metadata.target
        self.property_name = property_name
        self.database_name = database_name
        self.type = type
        self.py_type = py_type
        self.length = length
        self.precision = precision
        self.scale = scale
        self.is_nullable = nullable
        self.default = default
        self.is_primary = is_primary
        self.is_unique = is_unique
        self.generation_strategy = generation_strategy
        self.mode = mode
        self.is_select = is_select
        self.is_insert = is_insert
        self.is_update = is_update
        self.transformer = transformer
        self.embedded_metadata = embedded_metadata
        self.relation_metadata = relation_metadata
        self.referenced_column = referenced_column

    def __repr__(self) -> str:
        return f"<ColumnMetadata {self.entity_metadata.name}.{self.property_path} -> {self.database_name}>"

    @property
    def property_path(self) -> str:
        if self.embedded_metadata is not None:
            return f"{self.embedded_metadata.property_path}.{self.property_name}"
        return self.property_name

    @property
    def is_generated(self) -> bool:
        return self.generation_strategy is not GenerationStrategy.NONE

    @property
    def is_create_date(self) -> bool:
        return self.mode is ColumnMode.CREATE_DATE

    @property
    def is_update_date(self) -> bool:
        return self.mode is ColumnMode.UPDATE_DATE

    @property
    def is_version(self) -> bool:
        return self.mode is ColumnMode.VERSION

    @property
    def is_discriminator(self) -> bool:
        return self.mode is ColumnMode.DISCRIMINATOR

    @property
    def is_virtual_property(self) -> bool:
        """True when the column has no property of its own on the entity."""
        return self.mode in (ColumnMode.DISCRIMINATOR, ColumnMode.MATERIALIZED_PATH)

    def require_referenced_column(self) -> ColumnMetadata:
        """The column a join column points at."""
        if self.referenced_column is None:
            raise MetadataNotResolvedError(repr(self), "referenced column")
        return self.referenced_column

    def _owner(self, entity: Any) -> Any:
        """Return the object holding this column's property, or UNSET."""
        if self.embedded_metadata is None:
            return entity
        owner = entity
        for embedded in self.embedded_metadata.chain:
            owner = getattr(owner, embedded.property_name, UNSET)
            if owner is None or owner is UNSET:
                return UNSET
        return owner

    def get_entity_value(self, entity: Any, transform: bool = False) -> Any:
        """Read this column's value from an entity.

        Join columns read the referenced column of the related object. UNSET is
        returned when the property was never assigned.
        """
        if entity is None:
            return UNSET
        if self.relation_metadata is not None and self.referenced_column is not None:
            related = getattr(entity, self.relation_metadata.property_name, UNSET)
            if related is None:
                return None
            if related is not UNSET:
                if self.relation_metadata.inverse_entity_metadata.is_entity(related):
                    return self.referenced_column.get_entity_value(related, transform)
                return related
            if self.property_name == self.relation_metadata.property_name:
                return UNSET
        owner = self._owner(entity)
        if owner is UNSET:
            return UNSET
        value = getattr(owner, self.property_name, UNSET)
        if transform and self.transformer is not None and value is not UNSET:
            value = self.transformer.to(value)
        return value

    def set_entity_value(self, entity: Any, value: Any) -> None:
        """Assign a value, creating intermediate embedded objects as needed."""
        owner = entity
        if self.embedded_metadata is not None:
            for embedded in self.embedded_metadata.chain:
                child = getattr(owner, embedded.property_name, None)
                if child is None:
                    child = embedded.create()
                    setattr(owner, embedded.property_name, child)
                owner = child
        if self.relation_metadata is not None and self.property_name == self.relation_metadata.property_name:
            related = getattr(entity, self.property_name, UNSET)
            if related is not UNSET and related is not None and self.referenced_column is not None:
                if self.relation_metadata.inverse_entity_metadata.is_entity(related):
                    self.referenced_column.set_entity_value(related, value)
            return
        setattr(owner, self.property_name, value)


class RelationMetadata:
    """One side of a relation between two entities."""

    def __init__(
        self,
        entity_metadata: EntityMetadata,
        property_name: str,
        kind: RelationKind,
        *,
        target: type,
        given_inverse_side: str | None = None,
        cascade_insert: bool = False,
        cascade_update: bool = False,
        cascade_remove: bool = False,
        is_eager: bool = False,
        is_nullable: bool = True,
        is_primary: bool = False,
        on_delete: OnDelete | None = None,
        is_tree_parent: bool = False,
        is_tree_children: bool = False,
    ) -> None:
        self.entity_metadata = entity_metadata
        self.property_name = property_name
        self.kind = kind
        self.target = target
        self.given_inverse_side = given_inverse_side
        self.cascade_insert = cascade_insert
        self.cascade_update = cascade_update
        self.cascade_remove = cascade_remove
        self.is_eager = is_eager
        self.is_nullable = is_nullable
        self.is_primary = is_primary
        self.on_delete = on_delete
        self.is_tree_parent = is_tree_parent
        self.is_tree_children = is_tree_children

        self.inverse_entity_metadata: EntityMetadata = None  # type: ignore[assignment]
        self.inverse_relation: RelationMetadata | None = None
        self.is_owning = kind is RelationKind.MANY_TO_ONE
        self.join_columns: list[ColumnMetadata] = []
        self.inverse_join_columns: list[ColumnMetadata] = []
        self.junction_entity_metadata: EntityMetadata | None = None
        self.foreign_keys: list[ForeignKeyMetadata] = []

    def __repr__(self) -> str:
        return f"<RelationMetadata {self.entity_metadata.name}.{self.property_name} ({self.kind.value})>"

    @property
    def property_path(self) -> str:
        return self.property_name

    @property
    def is_one_to_one(self) -> bool:
        return self.kind is RelationKind.ONE_TO_ONE

    @property
    def is_many_to_one(self) -> bool:
        return self.kind is RelationKind.MANY_TO_ONE

    @property
    def is_one_to_many(self) -> bool:
        return self.kind is RelationKind.ONE_TO_MANY

    @property
    def is_many_to_many(self) -> bool:
        return self.kind is RelationKind.MANY_TO_MANY

    @property
    def is_one_to_one_owner(self) -> bool:
        return self.is_one_to_one and self.is_owning

    @property
    def is_one_to_one_not_owner(self) -> bool:
        return self.is_one_to_one and not self.is_owning

    @property
    def is_many_to_many_owner(self) -> bool:
        return self.is_many_to_many and self.is_owning

    @property
    def is_with_join_columns(self) -> bool:
        """True when the foreign key lives in this entity's own table."""
        return self.is_many_to_one or self.is_one_to_one_owner

    @property
    def is_to_many(self) -> bool:
        return self.is_one_to_many or self.is_many_to_many

    def require_junction_metadata(self) -> EntityMetadata:
        """Junction entity of a many-to-many relation, from either side."""
        if self.junction_entity_metadata is None:
            raise MetadataNotResolvedError(repr(self), "junction table")
        return self.junction_entity_metadata

    def require_inverse_relation(self) -> RelationMetadata:
        if self.inverse_relation is None:
            raise MetadataNotResolvedError(repr(self), "inverse relation")
        return self.inverse_relation

    def cascades(self, operation: str) -> bool:
        return bool(getattr(self, f"cascade_{operation}"))

    def get_entity_value(self, entity: Any) -> Any:
        return getattr(entity, self.property_name, UNSET)

    def set_entity_value(self, entity: Any, value: Any) -> None:
        setattr(entity, self.property_name, value)


class IndexMetadata:
    """Table index. Mutable so schema re-synchronization can pick up edits."""

    def __init__(
        self,
        entity_metadata: EntityMetadata,
        columns: list[str],
        name: str | None = None,
        is_unique: bool = False,
    ) -> None:
        self.entity_metadata = entity_metadata
        self.given_column_names = list(columns)
        self.given_name = name
        self.is_unique = is_unique
        self.columns: list[ColumnMetadata] = []
        self.name: str = name or ""

    def __repr__(self) -> str:
        return f"<IndexMetadata {self.name} {self.column_names} unique={self.is_unique}>"

    @property
    def column_names(self) -> list[str]:
        return [column.database_name for column in self.columns]

    def build(self, naming_strategy: NamingStrategy) -> IndexMetadata:
        """Resolve column references and compute the index name."""
        self.columns = []
        for given in self.given_column_names:
            column = self.entity_metadata.find_column_with_property_path(
                given
            ) or self.entity_metadata.find_column_with_database_name(given)
            if column is None:
                raise EntityPropertyNotFoundError(given, self.entity_metadata.name)
            self.columns.append(column)
        if self.given_name:
            self.name = self.given_name
        elif self.is_unique:
            self.name = naming_strategy.unique_constraint_name(
                self.entity_metadata.table_name, self.column_names
            )
        else:
            self.name = naming_strategy.index_name(self.entity_metadata.table_name, self.column_names)
        return self


class ForeignKeyMetadata:
    """Foreign key from ``columns`` to ``referenced_columns``."""

    def __init__(
        self,
        entity_metadata: EntityMetadata,
        referenced_entity_metadata: EntityMetadata,
        columns: list[ColumnMetadata],
        referenced_columns: list[ColumnMetadata],
        on_delete: OnDelete | None = None,
    ) -> None:
        self.entity_metadata = entity_metadata
        self.referenced_entity_metadata = referenced_entity_metadata
        self.columns = columns
        self.referenced_columns = referenced_columns
        self.on_delete = on_delete
        self.name = ""

    def __repr__(self) -> str:
        return f"<ForeignKeyMetadata {self.name} {self.column_names} -> {self.referenced_table_name}>"

    @property
    def column_names(self) -> list[str]:
        return [c.database_name for c in self.columns]

    @property
    def referenced_column_names(self) -> list[str]:
        return [c.database_name for c in self.referenced_columns]

    @property
    def referenced_table_name(self) -> str:
        return self.referenced_entity_metadata.table_name

    def build(self, naming_strategy: NamingStrategy) -> ForeignKeyMetadata:
        self.name = naming_strategy.foreign_key_name(self.entity_metadata.table_name, self.column_names)
        return self


class EntityListenerMetadata:
    def __init__(self, target: type, method_name: str, type: EventListenerType) -> None:
        self.target = target
        self.method_name = method_name
        self.type = type

    def is_allowed(self, entity: Any) -> bool:
        return isinstance(entity, self.target) and callable(getattr(entity, self.method_name, None))

    def execute(self, entity: Any) -> Any:
        return getattr(entity, self.method_name)()


class EntityMetadata:
    """Everything known about one mapped entity and its table."""

    def __init__(
        self,
        target: type | None,
        name: str,
        table_name: str,
        *,
        given_table_name: str | None = None,
        order_by: dict[str, str] | None = None,
        is_junction: bool = False,
        is_closure_junction: bool = False,
    ) -> None:
        self.target = target
        self.name = name
        self._table_name = table_name
        self.given_table_name = given_table_name
        self.order_by = order_by
        self.is_junction = is_junction
        self.is_closure_junction = is_closure_junction

        self.columns: list[ColumnMetadata] = []
        self.relations: list[RelationMetadata] = []
        self.indices: list[IndexMetadata] = []
        self.embeddeds: list[EmbeddedMetadata] = []
        self.foreign_keys: list[ForeignKeyMetadata] = []
        self.listeners: list[EntityListenerMetadata] = []

        self.inheritance = InheritanceKind.NONE
        self.discriminator_column: ColumnMetadata | None = None
        self.discriminator_value: Any = None
        self.parent_entity_metadata: EntityMetadata | None = None
        self.child_entity_metadatas: list[EntityMetadata] = []

        self.closure_junction_table: EntityMetadata | None = None
        self.materialized_path_column: ColumnMetadata | None = None

    def __repr__(self) -> str:
        return f"<EntityMetadata {self.name} table={self.table_name}>"

    # --- naming ---

    @property
    def table_name(self) -> str:
        if self.parent_entity_metadata is not None:
            return self.parent_entity_metadata.table_name
        return self._table_name

    @property
    def root_metadata(self) -> EntityMetadata:
        metadata = self
        while metadata.parent_entity_metadata is not None:
            metadata = metadata.parent_entity_metadata
        return metadata

    @property
    def owns_table(self) -> bool:
        """False for single-table inheritance children, which share the root table."""
        return self.parent_entity_metadata is None

    @property
    def is_tree(self) -> bool:
        return self.inheritance in (InheritanceKind.CLOSURE_TABLE, InheritanceKind.MATERIALIZED_PATH)

    # --- column groups ---

    @property
    def primary_columns(self) -> list[ColumnMetadata]:
        return [c for c in self.columns if c.is_primary]

    @property
    def increment_column(self) -> ColumnMetadata | None:
        return next(
            (c for c in self.columns if c.generation_strategy is GenerationStrategy.INCREMENT),
            None,
        )

    @property
    def update_date_column(self) -> ColumnMetadata | None:
        return next((c for c in self.columns if c.is_update_date), None)

    @property
    def version_column(self) -> ColumnMetadata | None:
        return next((c for c in self.columns if c.is_version), None)

    # --- relation groups ---

    @property
    def relations_with_join_columns(self) -> list[RelationMetadata]:
        return [r for r in self.relations if r.is_with_join_columns]

    @property
    def many_to_many_relations(self) -> list[RelationMetadata]:
        return [r for r in self.relations if r.is_many_to_many]

    @property
    def eager_relations(self) -> list[RelationMetadata]:
        return [r for r in self.relations if r.is_eager]

    @property
    def tree_parent_relation(self) -> RelationMetadata | None:
        return next((r for r in self.relations if r.is_tree_parent), None)

    # --- lookups ---

    def find_column_with_property_path(self, property_path: str) -> ColumnMetadata | None:
        column = next((c for c in self.columns if c.property_path == property_path), None)
        if column is not None:
            return column
        relation = self.find_relation_with_property_path(property_path)
        if relation is not None and len(relation.join_columns) == 1 and relation.is_with_join_columns:
            return relation.join_columns[0]
        return None

    def find_column_with_database_name(self, database_name: str) -> ColumnMetadata | None:
        return next((c for c in self.columns if c.database_name == database_name), None)

    def find_columns_with_property_path(self, property_path: str) -> list[ColumnMetadata]:
        """Columns for a column path, an embedded path or a relation path."""
        column = next((c for c in self.columns if c.property_path == property_path), None)
        if column is not None:
            return [column]
        embedded = next((e for e in self.all_embeddeds if e.property_path == property_path), None)
        if embedded is not None:
            return [c for c in self.columns if c.embedded_metadata is not None and (
                c.embedded_metadata is embedded or embedded in c.embedded_metadata.chain
            )]
        relation = self.find_relation_with_property_path(property_path)
        if relation is not None and relation.is_with_join_columns:
            return list(relation.join_columns)
        return []

    def find_relation_with_property_path(self, property_path: str) -> RelationMetadata | None:
        return next((r for r in self.relations if r.property_path == property_path), None)

    def get_relation(self, property_path: str) -> RelationMetadata:
        relation = self.find_relation_with_property_path(property_path)
        if relation is None:
            raise EntityPropertyNotFoundError(property_path, self.name)
        return relation

    @property
    def all_embeddeds(self) -> list[EmbeddedMetadata]:
        result: list[EmbeddedMetadata] = []
        stack = list(self.embeddeds)
        while stack:
            embedded = stack.pop(0)
            result.append(embedded)
            stack.extend(embedded.embeddeds)
        return result

    # --- instances ---

    def create(self) -> Any:
        """Create a blank entity instance without calling ``__init__``."""
        if self.target is None:
            return {}
        return instantiate(self.target)

    def is_entity(self, value: Any) -> bool:
        if self.target is None or value is None:
            return False
        return isinstance(value, self.target)

    def get_entity_id_map(self, entity: Any) -> dict[str, Any] | None:
        """Primary values keyed by property path, or None if any is missing."""
        if entity is None:
            return None
        if not self.is_entity(entity):
            # a bare id given in place of a related entity
            if len(self.primary_columns) == 1 and not isinstance(entity, dict):
                return {self.primary_columns[0].property_path: entity}
            return None
        id_map: dict[str, Any] = {}
        for column in self.primary_columns:
            value = column.get_entity_value(entity)
            if value is None or value is UNSET:
                return None
            id_map[column.property_path] = value
        return id_map

    def has_id(self, entity: Any) -> bool:
        return self.get_entity_id_map(entity) is not None

    def get_id(self, entity: Any) -> Any:
        """Scalar id for single primary keys, a dict for composite ones."""
        id_map = self.get_entity_id_map(entity)
        if id_map is None or len(id_map) != 1:
            return id_map
        return next(iter(id_map.values()))

    def ensure_id_map(self, id_or_map: Any) -> dict[str, Any]:
        """Normalize a scalar id or partial entity into an id map."""
        if isinstance(id_or_map, dict):
            return dict(id_or_map)
        if self.is_entity(id_or_map):
            return self.get_entity_id_map(id_or_map) or {}
        return {self.primary_columns[0].property_path: id_or_map}

    @staticmethod
    def compare_id_maps(first: dict[str, Any] | None, second: dict[str, Any] | None) -> bool:
        if not first or not second:
            return False
        return first == second

    def compare_entities(self, first: Any, second: Any) -> bool:
        return self.compare_id_maps(self.get_entity_id_map(first), self.get_entity_id_map(second))

    def find_inheritance_metadata(self, discriminator_value: Any) -> EntityMetadata:
        """Resolve the concrete metadata for a discriminator value."""
        if self.discriminator_column is None:
            return self
        for metadata in [self.root_metadata, *self.root_metadata.all_child_entity_metadatas]:
            if str(metadata.discriminator_value) == str(discriminator_value):
                return metadata
        return self

    @property
    def all_child_entity_metadatas(self) -> list[EntityMetadata]:
        result: list[EntityMetadata] = []
        for child in self.child_entity_metadatas:
            result.append(child)
            result.extend(child.all_child_entity_metadatas)
        return result

    @property
    def discriminator_values(self) -> list[Any]:
        """Values of this entity and every entity that inherits from it."""
        return [self.discriminator_value] + [
            child.discriminator_value for child in self.all_child_entity_metadatas
        ]
