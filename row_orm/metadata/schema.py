"""Entity schema DSL.

Provides a fluent builder that produces metadata description records:

    entity(Post, name="posts")
        .generated("id")
        .column("title")
        .many_to_many("categories", Category, inverse_side="posts", join_table=True)
        .register(storage)
"""

from __future__ import annotations

from typing import Any, Callable

from row_orm.core.enums import (
    ColumnMode,
    EventListenerType,
    GenerationStrategy,
    InheritanceKind,
    OnDelete,
    RelationKind,
)
from row_orm.metadata.args import (
    ColumnArgs,
    DiscriminatorValueArgs,
    EmbeddedArgs,
    EntityArgs,
    EntityListenerArgs,
    IndexArgs,
    InheritanceArgs,
    JoinColumnArgs,
    JoinColumnOptions,
    JoinTableArgs,
    MetadataArgsStorage,
    RelationArgs,
    TreeArgs,
)

RelationTarget = type | str | Callable[[], type]
InverseSide = str | Callable[[Any], Any] | None


def _join_column_options(value: Any) -> tuple[JoinColumnOptions, ...]:
    if value is None or value is True:
        return ()
    if isinstance(value, dict):
        return (JoinColumnOptions(**value),)
    return tuple(JoinColumnOptions(**item) for item in value)


def entity(
    target: type,
    name: str | None = None,
    order_by: dict[str, str] | None = None,
) -> EntitySchemaBuilder:
    """Entry point for describing a mapped entity.

    Args:
        target: The entity class.
        name: Table name. Defaults to the naming strategy's table name.
        order_by: Default ordering applied by find operations.
    """
    return EntitySchemaBuilder(EntityArgs(target=target, name=name, order_by=order_by))


def embeddable(target: type) -> EntitySchemaBuilder:
    """Entry point for describing an embeddable value type (columns only)."""
    return EntitySchemaBuilder(EntityArgs(target=target, embeddable=True))


class EntitySchemaBuilder:
    """Fluent builder for entity description records."""

    def __init__(self, entity_args: EntityArgs) -> None:
        self._entity = entity_args
        self._target = entity_args.target
        self._records: list[Any] = [entity_args]

    @property
    def records(self) -> list[Any]:
        return list(self._records)

    # --- columns ---

    def column(self, property_name: str, type: str | None = None, **options: Any) -> EntitySchemaBuilder:
        """Declare a column. ``options`` are ColumnArgs fields."""
        self._records.append(
            ColumnArgs(target=self._target, property_name=property_name, type=type, **options)
        )
        return self

    def primary(self, property_name: str, type: str | None = None, **options: Any) -> EntitySchemaBuilder:
        """Declare a primary column whose value is assigned by the caller."""
        return self.column(property_name, type, primary=True, **options)

    def generated(
        self,
        property_name: str,
        strategy: str | GenerationStrategy = GenerationStrategy.INCREMENT,
        type: str | None = None,
        **options: Any,
    ) -> EntitySchemaBuilder:
        """Declare a generated primary column (``increment`` or ``uuid``)."""
        strategy = GenerationStrategy(strategy)
        if type is None:
            type = "integer" if strategy is GenerationStrategy.INCREMENT else "varchar"
        return self.column(property_name, type, primary=True, generated=strategy, **options)

    def create_date(self, property_name: str, **options: Any) -> EntitySchemaBuilder:
        return self.column(property_name, options.pop("type", "datetime"), mode=ColumnMode.CREATE_DATE, **options)

    def update_date(self, property_name: str, **options: Any) -> EntitySchemaBuilder:
        return self.column(property_name, options.pop("type", "datetime"), mode=ColumnMode.UPDATE_DATE, **options)

    def version(self, property_name: str, **options: Any) -> EntitySchemaBuilder:
        return self.column(property_name, options.pop("type", "integer"), mode=ColumnMode.VERSION, **options)

    def embedded(
        self, property_name: str, type: type | Callable[[], type], prefix: str | None = None
    ) -> EntitySchemaBuilder:
        """Flatten the columns of an embeddable type into this table.

        ``prefix=None`` derives the prefix from the property name, ``""`` adds
        no prefix, any other string is prepended literally.
        """
        self._records.append(
            EmbeddedArgs(target=self._target, property_name=property_name, type=type, prefix=prefix)
        )
        return self

    # --- relations ---

    def _relation(
        self,
        kind: RelationKind,
        property_name: str,
        type: RelationTarget,
        inverse_side: InverseSide,
        cascade: bool | tuple[str, ...] | list[str],
        options: dict[str, Any],
    ) -> None:
        if isinstance(options.get("on_delete"), str):
            options["on_delete"] = OnDelete(options["on_delete"])
        if isinstance(cascade, list):
            cascade = tuple(cascade)
        self._records.append(
            RelationArgs(
                target=self._target,
                property_name=property_name,
                kind=kind,
                type=type,
                inverse_side=inverse_side,
                cascade=cascade,
                **options,
            )
        )

    def many_to_one(
        self,
        property_name: str,
        type: RelationTarget,
        inverse_side: InverseSide = None,
        cascade: bool | tuple[str, ...] | list[str] = False,
        join_column: Any = None,
        **options: Any,
    ) -> EntitySchemaBuilder:
        self._relation(RelationKind.MANY_TO_ONE, property_name, type, inverse_side, cascade, options)
        if join_column:
            self.join_column(property_name, **({} if join_column is True else join_column))
        return self

    def one_to_many(
        self,
        property_name: str,
        type: RelationTarget,
        inverse_side: InverseSide,
        cascade: bool | tuple[str, ...] | list[str] = False,
        **options: Any,
    ) -> EntitySchemaBuilder:
        self._relation(RelationKind.ONE_TO_MANY, property_name, type, inverse_side, cascade, options)
        return self

    def one_to_one(
        self,
        property_name: str,
        type: RelationTarget,
        inverse_side: InverseSide = None,
        cascade: bool | tuple[str, ...] | list[str] = False,
        join_column: Any = None,
        **options: Any,
    ) -> EntitySchemaBuilder:
        self._relation(RelationKind.ONE_TO_ONE, property_name, type, inverse_side, cascade, options)
        if join_column:
            self.join_column(property_name, **({} if join_column is True else join_column))
        return self

    def many_to_many(
        self,
        property_name: str,
        type: RelationTarget,
        inverse_side: InverseSide = None,
        cascade: bool | tuple[str, ...] | list[str] = False,
        join_table: Any = None,
        **options: Any,
    ) -> EntitySchemaBuilder:
        self._relation(RelationKind.MANY_TO_MANY, property_name, type, inverse_side, cascade, options)
        if join_table:
            self.join_table(property_name, **({} if join_table is True else join_table))
        return self

    def join_column(
        self,
        property_name: str,
        name: str | None = None,
        referenced_column_name: str | None = None,
    ) -> EntitySchemaBuilder:
        self._records.append(
            JoinColumnArgs(
                target=self._target,
                property_name=property_name,
                name=name,
                referenced_column_name=referenced_column_name,
            )
        )
        return self

    def join_table(
        self,
        property_name: str,
        name: str | None = None,
        join_column: Any = None,
        inverse_join_column: Any = None,
    ) -> EntitySchemaBuilder:
        self._records.append(
            JoinTableArgs(
                target=self._target,
                property_name=property_name,
                name=name,
                join_columns=_join_column_options(join_column),
                inverse_join_columns=_join_column_options(inverse_join_column),
            )
        )
        return self

    # --- table level ---

    def index(
        self, columns: list[str] | tuple[str, ...], name: str | None = None, unique: bool = False
    ) -> EntitySchemaBuilder:
        self._records.append(
            IndexArgs(target=self._target, columns=tuple(columns), name=name, unique=unique)
        )
        return self

    def inheritance(
        self,
        column_name: str | None = None,
        column_type: str = "varchar",
        column_length: int | None = None,
    ) -> EntitySchemaBuilder:
        """Mark this entity as the root of a single-table inheritance tree."""
        self._records.append(
            InheritanceArgs(
                target=self._target,
                pattern=InheritanceKind.SINGLE_TABLE,
                column_name=column_name,
                column_type=column_type,
                column_length=column_length,
            )
        )
        return self

    def discriminator_value(self, value: Any) -> EntitySchemaBuilder:
        self._records.append(DiscriminatorValueArgs(target=self._target, value=value))
        return self

    def tree(self, kind: str | InheritanceKind) -> EntitySchemaBuilder:
        """Store this entity as a ``closure-table`` or ``materialized-path`` tree."""
        self._records.append(TreeArgs(target=self._target, kind=InheritanceKind(kind)))
        return self

    def tree_parent(self, property_name: str, **options: Any) -> EntitySchemaBuilder:
        self._relation(
            RelationKind.MANY_TO_ONE,
            property_name,
            lambda: self._target,
            options.pop("inverse_side", None),
            options.pop("cascade", False),
            {"tree_parent": True, **options},
        )
        return self

    def tree_children(self, property_name: str, inverse_side: InverseSide, **options: Any) -> EntitySchemaBuilder:
        self._relation(
            RelationKind.ONE_TO_MANY,
            property_name,
            lambda: self._target,
            inverse_side,
            options.pop("cascade", False),
            {"tree_children": True, **options},
        )
        return self

    def listener(self, method_name: str, event: str | EventListenerType) -> EntitySchemaBuilder:
        """Call ``method_name`` on entity instances when ``event`` fires."""
        self._records.append(
            EntityListenerArgs(
                target=self._target,
                property_name=method_name,
                type=EventListenerType(event),
            )
        )
        return self

    # --- output ---

    def register(self, storage: MetadataArgsStorage | None = None) -> MetadataArgsStorage:
        """Add all records to ``storage`` (a new one when omitted) and return it."""
        if storage is None:
            storage = MetadataArgsStorage()
        for record in self._records:
            storage.add(record)
        return storage


def build_storage(*builders: EntitySchemaBuilder) -> MetadataArgsStorage:
    """Register several entity builders into one storage."""
    storage = MetadataArgsStorage()
    for builder in builders:
        builder.register(storage)
    return storage
