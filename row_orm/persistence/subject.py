"""Subjects: one entity instance inside a save or remove operation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from row_orm.metadata.entity import UNSET

if TYPE_CHECKING:
    from row_orm.adapters.protocol import Driver
    from row_orm.metadata.entity import ColumnMetadata, EntityMetadata, RelationMetadata


@dataclass
class JunctionChange:
    """Pairs to add to and remove from a many-to-many junction table.

    ``added`` holds related objects (entities whose ids may only be known
    after their own insert, or bare ids); ``removed`` holds id maps.
    """

    relation: RelationMetadata
    added: list[Any] = field(default_factory=list)
    removed: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class OneToManyChange:
    """Children whose foreign key must point at (or stop pointing at) the subject."""

    relation: RelationMetadata
    added: list[Any] = field(default_factory=list)
    removed: list[dict[str, Any]] = field(default_factory=list)


def _as_list(value: Any) -> list[Any]:
    if value is None or value is UNSET:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


class Subject:
    """Persistence state of one entity.

    A subject knows the entity, its database row (once loaded) and what the
    operation is allowed to do with it. ``recompute`` diffs the two; the
    ``must_be_*`` properties classify the subject afterwards.
    """

    def __init__(
        self,
        metadata: EntityMetadata,
        entity: Any,
        can_be_inserted: bool = False,
        can_be_updated: bool = False,
        must_be_removed: bool = False,
    ) -> None:
        self.metadata = metadata
        self.entity = entity
        self.can_be_inserted = can_be_inserted
        self.can_be_updated = can_be_updated
        self.must_be_removed = must_be_removed

        self.identifier: dict[str, Any] | None = metadata.get_entity_id_map(entity)
        self.database_entity: Any = None
        self.database_entity_loaded = False

        # inverse relation -> entity the foreign key must point at
        self.relation_overrides: dict[str, tuple[RelationMetadata, Any]] = {}
        self.deferred_relations: list[RelationMetadata] = []
        self.generated_map: dict[str, Any] = {}
        self.materialized_path: str | None = None

        self.diff_columns: list[ColumnMetadata] = []
        self.diff_relations: list[RelationMetadata] = []
        self.junction_changes: list[JunctionChange] = []
        self.one_to_many_changes: list[OneToManyChange] = []

    def __repr__(self) -> str:
        return f"<Subject {self.metadata.name} id={self.identifier} op={self.operation}>"

    # ------------------------------------------------------------------
    # classification
    # ------------------------------------------------------------------

    @property
    def must_be_inserted(self) -> bool:
        return self.can_be_inserted and not self.must_be_removed and self.database_entity is None

    @property
    def must_be_updated(self) -> bool:
        return (
            self.can_be_updated
            and not self.must_be_removed
            and self.database_entity is not None
            and bool(self.diff_columns or self.diff_relations)
        )

    @property
    def must_be_deleted(self) -> bool:
        return self.must_be_removed and self.database_entity is not None

    @property
    def has_relation_changes(self) -> bool:
        if self.must_be_removed or not (self.must_be_inserted or self.database_entity is not None):
            return False
        return any(c.added or c.removed for c in self.junction_changes) or any(
            c.added or c.removed for c in self.one_to_many_changes
        )

    @property
    def operation(self) -> str:
        if self.must_be_inserted:
            return "insert"
        if self.must_be_updated:
            return "update"
        if self.must_be_deleted:
            return "remove"
        return "none"

    # ------------------------------------------------------------------
    # values
    # ------------------------------------------------------------------

    def related_value(self, relation: RelationMetadata) -> Any:
        """Current value of a relation, honoring overrides from one-to-many parents."""
        override = self.relation_overrides.get(relation.property_name)
        if override is not None:
            return override[1]
        return relation.get_entity_value(self.entity)

    def set_override(self, relation: RelationMetadata, value: Any) -> None:
        self.relation_overrides[relation.property_name] = (relation, value)

    def own_columns(self) -> list[ColumnMetadata]:
        return [c for c in self.metadata.columns if c.entity_metadata is self.metadata]

    # ------------------------------------------------------------------
    # diff
    # ------------------------------------------------------------------

    def recompute(self, driver: Driver) -> None:
        """Diff the entity against its database row."""
        self.identifier = self.metadata.get_entity_id_map(self.entity) or self.identifier
        self.diff_columns = self._compute_diff_columns(driver) if self.database_entity is not None else []
        self.diff_relations = self._compute_diff_relations() if self.database_entity is not None else []
        self.junction_changes = self._compute_junction_changes()
        self.one_to_many_changes = self._compute_one_to_many_changes()

    def _compute_diff_columns(self, driver: Driver) -> list[ColumnMetadata]:
        changed = []
        for column in self.own_columns():
            if (
                column.is_primary
                or not column.is_update
                or column.is_virtual_property
                or column.is_create_date
                or column.is_update_date
                or column.is_version
            ):
                continue
            if column.relation_metadata is not None and column.property_name == column.relation_metadata.property_name:
                continue
            value = column.get_entity_value(self.entity)
            if value is UNSET:
                continue
            database_value = column.get_entity_value(self.database_entity)
            if database_value is UNSET:
                database_value = None
            # compare in hydrated form so "1" vs 1 style driver differences vanish
            normalized = driver.prepare_hydrated_value(driver.prepare_persistent_value(value, column), column)
            if normalized != database_value:
                changed.append(column)
        return changed

    def _compute_diff_relations(self) -> list[RelationMetadata]:
        changed = []
        for relation in self.metadata.relations_with_join_columns:
            value = self.related_value(relation)
            if value is UNSET:
                continue
            current = self.join_values(relation, value)
            database = self.database_join_values(relation)
            if current is None or current != database:
                changed.append(relation)
        return changed

    @staticmethod
    def join_values(relation: RelationMetadata, related: Any) -> dict[str, Any] | None:
        """Referenced values of a related object keyed by referenced property path.

        Returns None when the related object has no id yet, and an empty dict
        for a relation set to None.
        """
        if related is None:
            return {}
        inverse = relation.inverse_entity_metadata
        values: dict[str, Any] = {}
        for column in relation.join_columns:
            referenced = column.require_referenced_column()
            if inverse.is_entity(related):
                value = referenced.get_entity_value(related)
            elif isinstance(related, dict):
                value = related.get(referenced.property_path, UNSET)
            else:
                value = related
            if value is UNSET or value is None:
                return None
            values[referenced.property_path] = value
        return values

    def database_join_values(self, relation: RelationMetadata) -> dict[str, Any]:
        value = getattr(self.database_entity, relation.property_name, None)
        if value is None or value is UNSET:
            return {}
        if isinstance(value, dict):
            return value
        referenced = relation.join_columns[0].require_referenced_column()
        return {referenced.property_path: value}

    def _database_ids(self, relation: RelationMetadata) -> list[dict[str, Any]]:
        if self.database_entity is None:
            return []
        inverse = relation.inverse_entity_metadata
        return [inverse.ensure_id_map(v) for v in _as_list(getattr(self.database_entity, relation.property_name, None))]

    def _compute_junction_changes(self) -> list[JunctionChange]:
        changes = []
        for relation in self.metadata.many_to_many_relations:
            value = relation.get_entity_value(self.entity)
            if value is UNSET:
                continue
            inverse = relation.inverse_entity_metadata
            database_ids = self._database_ids(relation)
            items = _as_list(value)
            current_ids = [inverse.get_entity_id_map(item) for item in items]
            added = [item for item, id_map in zip(items, current_ids) if id_map is None or id_map not in database_ids]
            removed = [id_map for id_map in database_ids if id_map not in current_ids]
            if added or removed:
                changes.append(JunctionChange(relation, added, removed))
        return changes

    def _compute_one_to_many_changes(self) -> list[OneToManyChange]:
        changes = []
        for relation in self.metadata.relations:
            if not (relation.is_one_to_many or relation.is_one_to_one_not_owner):
                continue
            if relation.inverse_relation is None:
                continue
            value = relation.get_entity_value(self.entity)
            if value is UNSET:
                continue
            inverse = relation.inverse_entity_metadata
            database_ids = self._database_ids(relation)
            items = [item for item in _as_list(value) if inverse.is_entity(item)]
            current_ids = [inverse.get_entity_id_map(item) for item in items]
            added = [item for item, id_map in zip(items, current_ids) if id_map is None or id_map not in database_ids]
            removed = [id_map for id_map in database_ids if id_map not in current_ids]
            if added or removed:
                changes.append(OneToManyChange(relation, added, removed))
        return changes
