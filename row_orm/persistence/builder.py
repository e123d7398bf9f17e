"""Cascade walk from root entities to subjects."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from row_orm.persistence.subject import Subject, _as_list

if TYPE_CHECKING:
    from row_orm.core.connection import Connection
    from row_orm.metadata.entity import EntityMetadata


class SubjectBuilder:
    """Collects the subjects of one save or remove call.

    Subjects are keyed by object identity, which makes the walk safe on
    self-referencing and mutually-referencing graphs: an object reached twice
    yields one subject whose flags are merged.
    """

    def __init__(self, connection: Connection) -> None:
        self.connection = connection
        self.subjects: list[Subject] = []
        self._by_entity: dict[int, Subject] = {}

    def find(self, entity: Any) -> Subject | None:
        return self._by_entity.get(id(entity))

    def _add(
        self,
        entity: Any,
        metadata: EntityMetadata | None = None,
        can_be_inserted: bool = False,
        can_be_updated: bool = False,
        must_be_removed: bool = False,
    ) -> tuple[Subject, bool]:
        subject = self._by_entity.get(id(entity))
        if subject is not None:
            subject.can_be_inserted = subject.can_be_inserted or can_be_inserted
            subject.can_be_updated = subject.can_be_updated or can_be_updated
            subject.must_be_removed = subject.must_be_removed or must_be_removed
            return subject, False
        if metadata is None or metadata.target is not type(entity):
            metadata = self.connection.get_metadata(type(entity))
        subject = Subject(metadata, entity, can_be_inserted, can_be_updated, must_be_removed)
        self._by_entity[id(entity)] = subject
        self.subjects.append(subject)
        return subject, True

    def build_for_save(self, entities: list[Any], metadata: EntityMetadata | None = None) -> list[Subject]:
        for entity in entities:
            subject, created = self._add(entity, metadata, can_be_inserted=True, can_be_updated=True)
            if created:
                self._cascade_save(subject)
        return self.subjects

    def build_for_remove(self, entities: list[Any], metadata: EntityMetadata | None = None) -> list[Subject]:
        for entity in entities:
            subject, created = self._add(entity, metadata, must_be_removed=True)
            if created:
                self._cascade_remove(subject)
        return self.subjects

    def _cascade_save(self, subject: Subject) -> None:
        for relation in subject.metadata.relations:
            if not (relation.cascade_insert or relation.cascade_update):
                continue
            inverse = relation.inverse_entity_metadata
            for item in _as_list(relation.get_entity_value(subject.entity)):
                if not inverse.is_entity(item):
                    continue
                child, created = self._add(
                    item,
                    inverse,
                    can_be_inserted=relation.cascade_insert,
                    can_be_updated=relation.cascade_update,
                )
                # the child holds the foreign key back to this subject
                if (relation.is_one_to_many or relation.is_one_to_one_not_owner) and relation.inverse_relation:
                    child.set_override(relation.inverse_relation, subject.entity)
                if created:
                    self._cascade_save(child)

    def _cascade_remove(self, subject: Subject) -> None:
        for relation in subject.metadata.relations:
            if not relation.cascade_remove:
                continue
            inverse = relation.inverse_entity_metadata
            for item in _as_list(relation.get_entity_value(subject.entity)):
                if not inverse.is_entity(item) or not inverse.has_id(item):
                    continue
                child, created = self._add(item, inverse, must_be_removed=True)
                if created:
                    self._cascade_remove(child)
