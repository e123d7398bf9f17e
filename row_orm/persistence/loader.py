"""Loading of the database rows behind subjects."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from row_orm.core.connection import Connection
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import EntityMetadata
    from row_orm.persistence.subject import Subject


class SubjectDatabaseEntityLoader:
    """Loads the persisted state of every subject that has an id.

    One query per entity type; each relation is loaded as ids only (owning
    join columns, junction pairs, one-to-many children), which is all the
    diff needs.
    """

    ALIAS = "subject"

    def __init__(self, connection: Connection, query_runner: QueryRunner) -> None:
        self.connection = connection
        self.query_runner = query_runner

    async def load(self, subjects: list[Subject]) -> None:
        groups: dict[int, tuple[EntityMetadata, list[Subject]]] = {}
        for subject in subjects:
            subject.database_entity_loaded = True
            if subject.identifier is None:
                subject.database_entity = None
                continue
            groups.setdefault(id(subject.metadata), (subject.metadata, []))[1].append(subject)

        for metadata, group in groups.values():
            builder = self.connection.create_query_builder(metadata.target, self.ALIAS, self.query_runner)
            for relation in metadata.relations:
                path = f"{self.ALIAS}.{relation.property_name}"
                builder.load_relation_id_and_map(path, path)
            builder.cache(False).where_in_ids([s.identifier for s in group]).call_listeners(False)
            entities = await builder.get_many()
            for subject in group:
                subject.database_entity = next(
                    (e for e in entities if metadata.get_entity_id_map(e) == subject.identifier), None
                )
