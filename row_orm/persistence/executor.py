"""Unit of work: executes the persistence plan of one save or remove call."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from row_orm.core.enums import EventListenerType
from row_orm.core.exceptions import MissingPrimaryValueError, PersistenceError
from row_orm.metadata.entity import UNSET
from row_orm.persistence.loader import SubjectDatabaseEntityLoader
from row_orm.persistence.sorter import SubjectTopologicalSorter
from row_orm.query.insert import column_value
from row_orm.subscriber.broadcaster import InsertEvent, RemoveEvent, UpdateEvent

if TYPE_CHECKING:
    from row_orm.core.connection import Connection
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata, EntityMetadata, RelationMetadata
    from row_orm.persistence.subject import Subject
    from row_orm.query.select import SelectQueryBuilder

logger = logging.getLogger(__name__)


class SubjectExecutor:
    """Runs inserts, updates and removes for a set of subjects in one transaction.

    Statement order:

    1. inserts, referenced rows first (closure rows and materialized paths
       are written right after each tree node)
    2. updates
    3. foreign keys deferred to break insert cycles
    4. many-to-many junction rows, removed pairs then added pairs
    5. foreign keys of one-to-many children
    6. removes, referencing rows first

    Generated values are kept per subject while the transaction runs and are
    written onto the entities after commit.
    """

    def __init__(self, connection: Connection, query_runner: QueryRunner, subjects: list[Subject]) -> None:
        self.connection = connection
        self.query_runner = query_runner
        self.driver = connection.driver
        self.broadcaster = connection.broadcaster
        self.subjects = subjects
        self._by_entity = {id(s.entity): s for s in subjects}

        self.insert_subjects: list[Subject] = []
        self.update_subjects: list[Subject] = []
        self.remove_subjects: list[Subject] = []
        self.relation_subjects: list[Subject] = []
        self.deferred: list[tuple[Subject, RelationMetadata]] = []

    @property
    def has_work(self) -> bool:
        return bool(self.insert_subjects or self.update_subjects or self.remove_subjects or self.relation_subjects)

    def _builder(self) -> SelectQueryBuilder:
        return self.connection.create_query_builder(query_runner=self.query_runner).cache(False)

    # ------------------------------------------------------------------
    # plan
    # ------------------------------------------------------------------

    async def _prepare(self) -> None:
        await SubjectDatabaseEntityLoader(self.connection, self.query_runner).load(self.subjects)
        for subject in self.subjects:
            subject.recompute(self.driver)

        inserts = [s for s in self.subjects if s.must_be_inserted]
        self.insert_subjects, self.deferred = SubjectTopologicalSorter(inserts).sort()
        for subject, relation in self.deferred:
            subject.deferred_relations.append(relation)
        self.update_subjects = [s for s in self.subjects if s.must_be_updated]
        self.remove_subjects = SubjectTopologicalSorter(
            [s for s in self.subjects if s.must_be_deleted]
        ).sort_removes()
        self.relation_subjects = [s for s in self.subjects if s.has_relation_changes]

    async def execute(self) -> None:
        """Persist every subject.

        Joins the runner's transaction when one is active, otherwise opens
        (and commits or rolls back) its own. Nothing is executed, not even
        BEGIN, when no subject changed.
        """
        await self._prepare()
        if not self.has_work:
            logger.debug("Nothing to persist for %d subject(s)", len(self.subjects))
            return
        logger.debug(
            "Persisting %d insert(s), %d update(s), %d remove(s)",
            len(self.insert_subjects),
            len(self.update_subjects),
            len(self.remove_subjects),
        )

        owns_transaction = not self.query_runner.is_transaction_active
        if owns_transaction:
            await self.query_runner.start_transaction()
        try:
            for subject in self.insert_subjects:
                await self._insert(subject)
            for subject in self.update_subjects:
                await self._update(subject)
            await self._update_deferred_relations()
            await self._update_junctions()
            await self._update_one_to_many()
            for subject in self.remove_subjects:
                await self._remove(subject)
            if owns_transaction:
                await self.query_runner.commit_transaction()
        except Exception:
            if owns_transaction and self.query_runner.is_transaction_active:
                await self.query_runner.rollback_transaction()
            raise
        self._update_entities()

    async def _broadcast(self, event_type: EventListenerType, event: Any) -> None:
        await self.broadcaster.broadcast(event_type, event)

    # ------------------------------------------------------------------
    # values
    # ------------------------------------------------------------------

    def _referenced_value(self, inverse: EntityMetadata, related: Any, referenced: ColumnMetadata) -> Any:
        if not inverse.is_entity(related):
            return related.get(referenced.property_path) if isinstance(related, dict) else related
        value = referenced.get_entity_value(related)
        if value is UNSET or value is None:
            related_subject = self._by_entity.get(id(related))
            if related_subject is None:
                return None
            value = related_subject.generated_map.get(referenced.property_path)
            if value is None and related_subject.identifier:
                value = related_subject.identifier.get(referenced.property_path)
        return value

    def _join_values(self, relation: RelationMetadata, related: Any) -> dict[str, Any] | None:
        """Referenced values for the join columns of ``relation``; None when unknown."""
        if related is None or related is UNSET:
            return None
        values: dict[str, Any] = {}
        for column in relation.join_columns:
            referenced = column.require_referenced_column()
            value = self._referenced_value(relation.inverse_entity_metadata, related, referenced)
            if value is None:
                return None
            values[referenced.property_path] = value
        return values

    def _id_map(self, metadata: EntityMetadata, related: Any) -> dict[str, Any] | None:
        if not metadata.is_entity(related):
            return metadata.ensure_id_map(related)
        id_map = {}
        for column in metadata.primary_columns:
            value = self._referenced_value(metadata, related, column)
            if value is None:
                return None
            id_map[column.property_path] = value
        return id_map

    def _insert_values(self, subject: Subject) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for column in subject.own_columns():
            if column.is_virtual_property:
                continue
            relation = column.relation_metadata
            if relation is not None and (
                column.property_name == relation.property_name
                or subject.related_value(relation) not in (UNSET, None)
            ):
                continue
            value = column.get_entity_value(subject.entity)
            if value is not UNSET:
                values[column.property_path] = value
        for relation in subject.metadata.relations_with_join_columns:
            if relation in subject.deferred_relations:
                values[relation.property_name] = None
                continue
            related = subject.related_value(relation)
            if related is UNSET:
                continue
            values[relation.property_name] = self._join_values(relation, related)
        return values

    # ------------------------------------------------------------------
    # inserts
    # ------------------------------------------------------------------

    async def _insert(self, subject: Subject) -> None:
        metadata = subject.metadata
        manager = self.query_runner.manager
        await self._broadcast(
            EventListenerType.BEFORE_INSERT, InsertEvent(subject.entity, metadata, self.query_runner, manager)
        )
        values = self._insert_values(subject)
        result = await self._builder().insert().into(metadata.target).values(values).execute()
        subject.generated_map = result.generated_maps[0]
        identifier = result.identifiers[0]
        if identifier is None:
            raise MissingPrimaryValueError(metadata.name, "insert")
        subject.identifier = identifier
        await self._reload_defaults(subject, values)

        if metadata.is_tree:
            parent = self._tree_parent(subject)
            junction = metadata.closure_junction_table
            if junction is not None:
                await self._insert_closure_rows(subject, identifier, junction, parent)
            path_column = metadata.materialized_path_column
            if path_column is not None:
                await self._write_materialized_path(subject, identifier, path_column, parent, moved=False)

        await self._broadcast(
            EventListenerType.AFTER_INSERT, InsertEvent(subject.entity, metadata, self.query_runner, manager)
        )

    async def _reload_defaults(self, subject: Subject, values: dict[str, Any]) -> None:
        """Select database defaults of omitted columns when the driver cannot return them."""
        if self.driver.supports_returning:
            return
        columns = [
            c
            for c in subject.own_columns()
            if c.default is not None
            and not c.is_virtual_property
            and c.property_path not in subject.generated_map
            and column_value(values, c) is UNSET
        ]
        if not columns:
            return
        builder = self._builder().from_(subject.metadata.target, "subject")
        builder.select([f"subject.{c.property_path}" for c in columns])
        row = await builder.where_in_ids(subject.identifier).call_listeners(False).get_raw_one()
        if row is None:
            return
        for column in columns:
            subject.generated_map[column.property_path] = self.driver.prepare_hydrated_value(
                row.get(f"subject_{column.database_name}"), column
            )

    # ------------------------------------------------------------------
    # trees
    # ------------------------------------------------------------------

    def _tree_parent(self, subject: Subject) -> Any:
        relation = subject.metadata.tree_parent_relation
        if relation is None:
            return None
        parent = subject.related_value(relation)
        return None if parent is UNSET else parent

    def _closure_columns(
        self, metadata: EntityMetadata, junction: EntityMetadata
    ) -> tuple[list[ColumnMetadata], list[ColumnMetadata]]:
        count = len(metadata.primary_columns)
        return junction.columns[:count], junction.columns[count:]

    def _closure_value(self, id_map: dict[str, Any], column: ColumnMetadata) -> Any:
        referenced = column.require_referenced_column()
        return self.driver.prepare_persistent_value(id_map[referenced.property_path], referenced)

    async def _insert_closure_rows(
        self, subject: Subject, identifier: dict[str, Any], junction: EntityMetadata, parent: Any
    ) -> None:
        metadata = subject.metadata
        ancestors, descendants = self._closure_columns(metadata, junction)
        escape = self.driver.escape

        row = {}
        for ancestor, descendant in zip(ancestors, descendants):
            referenced = ancestor.require_referenced_column()
            row[ancestor.database_name] = identifier[referenced.property_path]
            row[descendant.database_name] = identifier[referenced.property_path]
        await self._builder().insert().into(junction.table_name).values(row).execute()

        parent_ids = self._id_map(metadata, parent) if parent is not None else None
        if not parent_ids:
            return
        parameters: dict[str, Any] = {}
        selected = [escape(c.database_name) for c in ancestors]
        conditions = []
        for index, (ancestor, descendant) in enumerate(zip(ancestors, descendants)):
            parameters[f"closure_node_{index}"] = self._closure_value(identifier, ancestor)
            parameters[f"closure_parent_{index}"] = self._closure_value(parent_ids, ancestor)
            selected.append(f":closure_node_{index}")
            conditions.append(f"{escape(descendant.database_name)} = :closure_parent_{index}")
        columns = ", ".join(escape(c.database_name) for c in ancestors + descendants)
        await self.query_runner.query(
            f"INSERT INTO {escape(junction.table_name)} ({columns}) "
            f"SELECT {', '.join(selected)} FROM {escape(junction.table_name)} WHERE {' AND '.join(conditions)}",
            parameters,
        )

    async def _move_closure_rows(
        self, subject: Subject, identifier: dict[str, Any], junction: EntityMetadata, parent: Any
    ) -> None:
        metadata = subject.metadata
        ancestors, descendants = self._closure_columns(metadata, junction)
        if len(ancestors) != 1:
            raise PersistenceError(f"Cannot move '{metadata.name}': closure-table trees need a single primary column")
        escape = self.driver.escape
        table = escape(junction.table_name)
        ancestor = escape(ancestors[0].database_name)
        descendant = escape(descendants[0].database_name)
        parameters = {"closure_node": self._closure_value(identifier, ancestors[0])}

        # unlink the subtree from its old ancestors, keeping links inside the subtree
        await self.query_runner.query(
            f"DELETE FROM {table} WHERE {descendant} IN "
            f"(SELECT {descendant} FROM (SELECT {descendant} FROM {table} WHERE {ancestor} = :closure_node) subtree) "
            f"AND {ancestor} NOT IN "
            f"(SELECT {descendant} FROM (SELECT {descendant} FROM {table} WHERE {ancestor} = :closure_node) subtree_nodes)",
            parameters,
        )
        parent_ids = self._id_map(metadata, parent) if parent is not None else None
        if not parent_ids:
            return
        parameters["closure_parent"] = self._closure_value(parent_ids, ancestors[0])
        await self.query_runner.query(
            f"INSERT INTO {table} ({ancestor}, {descendant}) "
            f"SELECT supertree.{ancestor}, subtree.{descendant} FROM {table} supertree, {table} subtree "
            f"WHERE supertree.{descendant} = :closure_parent AND subtree.{ancestor} = :closure_node",
            parameters,
        )

    async def _materialized_path_of(
        self, metadata: EntityMetadata, column: ColumnMetadata, id_map: dict[str, Any]
    ) -> str:
        builder = self._builder().from_(metadata.target, "tree")
        builder.select(f"tree.{column.property_path}", "path")
        row = await builder.where_in_ids(id_map).get_raw_one()
        return (row or {}).get("path") or ""

    @staticmethod
    def _path_segment(id_map: dict[str, Any]) -> str:
        return "_".join(str(v) for v in id_map.values()) + "."

    async def _write_materialized_path(
        self, subject: Subject, identifier: dict[str, Any], column: ColumnMetadata, parent: Any, moved: bool
    ) -> None:
        metadata = subject.metadata

        parent_path = ""
        if parent is not None:
            parent_subject = self._by_entity.get(id(parent))
            if parent_subject is not None and parent_subject.materialized_path is not None:
                parent_path = parent_subject.materialized_path
            else:
                parent_ids = self._id_map(metadata, parent)
                if parent_ids:
                    parent_path = await self._materialized_path_of(metadata, column, parent_ids)
        path = parent_path + self._path_segment(identifier)
        subject.materialized_path = path

        if not moved:
            await (
                self._builder()
                .update(metadata.target)
                .set({column.property_path: path}, special_columns=False)
                .where_in_ids(identifier)
                .execute()
            )
            return

        old_path = await self._materialized_path_of(metadata, column, identifier)
        escape = self.driver.escape
        name = escape(column.database_name)
        await self.query_runner.query(
            f"UPDATE {escape(metadata.table_name)} SET {name} = REPLACE({name}, :old_path, :new_path) "
            f"WHERE {name} LIKE :old_prefix",
            {"old_path": old_path, "new_path": path, "old_prefix": f"{old_path}%"},
        )

    # ------------------------------------------------------------------
    # updates
    # ------------------------------------------------------------------

    async def _update(self, subject: Subject) -> None:
        metadata = subject.metadata
        manager = self.query_runner.manager
        await self._broadcast(
            EventListenerType.BEFORE_UPDATE,
            UpdateEvent(
                subject.entity,
                metadata,
                self.query_runner,
                manager,
                subject.database_entity,
                list(subject.diff_columns),
                list(subject.diff_relations),
            ),
        )
        # listeners may have changed the entity
        subject.recompute(self.driver)

        values: dict[str, Any] = {}
        for column in subject.diff_columns:
            values[column.property_path] = column.get_entity_value(subject.entity)
        for relation in subject.diff_relations:
            related = subject.related_value(relation)
            join_values = self._join_values(relation, related)
            if join_values is None and related is not None:
                logger.warning(
                    "Skipping %s.%s: the related entity has no id and is not being saved",
                    metadata.name,
                    relation.property_name,
                )
                continue
            values[relation.property_name] = join_values
        if values:
            update_date = metadata.update_date_column
            if update_date is not None:
                now = datetime.now()
                values[update_date.property_path] = now
                subject.generated_map[update_date.property_path] = now
            version = metadata.version_column
            if version is not None:
                current = version.get_entity_value(subject.database_entity)
                new_version = (current if isinstance(current, int) else 0) + 1
                values[version.property_path] = new_version
                subject.generated_map[version.property_path] = new_version
            await (
                self._builder()
                .update(metadata.target)
                .set(values, special_columns=False)
                .where_in_ids(subject.identifier)
                .execute()
            )

            parent_relation = metadata.tree_parent_relation
            if metadata.is_tree and parent_relation is not None and parent_relation in subject.diff_relations:
                identifier = subject.identifier
                if identifier is None:
                    raise MissingPrimaryValueError(metadata.name, "update")
                parent = self._tree_parent(subject)
                junction = metadata.closure_junction_table
                if junction is not None:
                    await self._move_closure_rows(subject, identifier, junction, parent)
                path_column = metadata.materialized_path_column
                if path_column is not None:
                    await self._write_materialized_path(subject, identifier, path_column, parent, moved=True)

        await self._broadcast(
            EventListenerType.AFTER_UPDATE,
            UpdateEvent(
                subject.entity,
                metadata,
                self.query_runner,
                manager,
                subject.database_entity,
                list(subject.diff_columns),
                list(subject.diff_relations),
            ),
        )

    async def _update_deferred_relations(self) -> None:
        for subject, relation in self.deferred:
            join_values = self._join_values(relation, subject.related_value(relation))
            if join_values is None:
                continue
            await (
                self._builder()
                .update(subject.metadata.target)
                .set({relation.property_name: join_values}, special_columns=False)
                .where_in_ids(subject.identifier)
                .execute()
            )

    # ------------------------------------------------------------------
    # relations
    # ------------------------------------------------------------------

    def _junction_row(
        self, relation: RelationMetadata, own_ids: dict[str, Any], related_ids: dict[str, Any]
    ) -> dict[str, Any]:
        row: dict[str, Any] = {}
        for column in relation.join_columns:
            row[column.database_name] = own_ids[column.require_referenced_column().property_path]
        for column in relation.inverse_join_columns:
            row[column.database_name] = related_ids[column.require_referenced_column().property_path]
        return row

    async def _update_junctions(self) -> None:
        removed: dict[str, tuple[RelationMetadata, list[dict[str, Any]]]] = {}
        added: dict[str, tuple[RelationMetadata, list[dict[str, Any]]]] = {}
        seen: set[tuple[str, bool, tuple[Any, ...]]] = set()

        def collect(bucket: dict, relation: RelationMetadata, row: dict[str, Any], is_added: bool) -> None:
            junction = relation.require_junction_metadata()
            key = (junction.table_name, is_added, tuple(sorted((k, str(v)) for k, v in row.items())))
            if key in seen:
                return
            seen.add(key)
            bucket.setdefault(junction.table_name, (relation, []))[1].append(row)

        for subject in self.relation_subjects:
            own_ids = subject.identifier
            if own_ids is None:
                continue
            for change in subject.junction_changes:
                inverse = change.relation.inverse_entity_metadata
                for related_ids in change.removed:
                    collect(removed, change.relation, self._junction_row(change.relation, own_ids, related_ids), False)
                for related in change.added:
                    related_ids = self._id_map(inverse, related)
                    if related_ids is None:
                        logger.warning(
                            "Skipping %s.%s pair: the related entity has no id and is not being saved",
                            subject.metadata.name,
                            change.relation.property_name,
                        )
                        continue
                    collect(added, change.relation, self._junction_row(change.relation, own_ids, related_ids), True)

        escape = self.driver.escape
        for table_name, (relation, rows) in removed.items():
            for row in rows:
                builder = self._builder().delete().from_(table_name)
                conditions = []
                for index, (name, value) in enumerate(row.items()):
                    column = self._junction_column(relation, name)
                    builder.set_parameter(f"junction_{index}", self.driver.prepare_persistent_value(value, column))
                    conditions.append(f"{escape(name)} = :junction_{index}")
                await builder.where(" AND ".join(conditions)).execute()
        for table_name, (_, rows) in added.items():
            await self._builder().insert().into(table_name).values(rows).execute()

    @staticmethod
    def _junction_column(relation: RelationMetadata, database_name: str) -> ColumnMetadata:
        column = next(c for c in relation.join_columns + relation.inverse_join_columns if c.database_name == database_name)
        return column.referenced_column or column

    def _find_subject(self, metadata: EntityMetadata, id_map: dict[str, Any]) -> Subject | None:
        root = metadata.root_metadata
        return next(
            (s for s in self.subjects if s.metadata.root_metadata is root and s.identifier == id_map),
            None,
        )

    async def _update_one_to_many(self) -> None:
        # detach first, so a child moved between parents ends up attached
        for subject in self.relation_subjects:
            for change in subject.one_to_many_changes:
                inverse_relation = change.relation.require_inverse_relation()
                child_metadata = change.relation.inverse_entity_metadata
                for child_ids in change.removed:
                    child_subject = self._find_subject(child_metadata, child_ids)
                    if child_subject is not None and (
                        child_subject.must_be_removed
                        or child_subject.related_value(inverse_relation) is not UNSET
                    ):
                        continue
                    await (
                        self._builder()
                        .update(child_metadata.target)
                        .set({inverse_relation.property_name: None}, special_columns=False)
                        .where_in_ids(child_ids)
                        .execute()
                    )
        for subject in self.relation_subjects:
            for change in subject.one_to_many_changes:
                inverse_relation = change.relation.require_inverse_relation()
                child_metadata = change.relation.inverse_entity_metadata
                own_values = self._join_values(inverse_relation, subject.entity)
                if own_values is None:
                    continue
                for child in change.added:
                    child_subject = self._by_entity.get(id(child))
                    if child_subject is not None and (
                        child_subject.must_be_removed or inverse_relation.property_name in child_subject.relation_overrides
                    ):
                        continue
                    child_ids = self._id_map(child_metadata, child)
                    if child_ids is None:
                        continue
                    await (
                        self._builder()
                        .update(child_metadata.target)
                        .set({inverse_relation.property_name: own_values}, special_columns=False)
                        .where_in_ids(child_ids)
                        .execute()
                    )

    # ------------------------------------------------------------------
    # removes
    # ------------------------------------------------------------------

    async def _remove(self, subject: Subject) -> None:
        metadata = subject.metadata
        manager = self.query_runner.manager
        event = RemoveEvent(
            subject.entity, metadata, self.query_runner, manager, subject.database_entity, subject.identifier
        )
        await self._broadcast(EventListenerType.BEFORE_REMOVE, event)
        await self._builder().delete().from_(metadata.target).where_in_ids(subject.identifier).execute()
        await self._broadcast(EventListenerType.AFTER_REMOVE, event)

    # ------------------------------------------------------------------
    # write back
    # ------------------------------------------------------------------

    def _update_entities(self) -> None:
        for subject in self.insert_subjects + self.update_subjects:
            for path, value in subject.generated_map.items():
                column = subject.metadata.find_column_with_property_path(path)
                if column is None or column.is_virtual_property:
                    continue
                column.set_entity_value(subject.entity, value)
        for subject in self.remove_subjects:
            for column in subject.metadata.primary_columns:
                if column.relation_metadata is None:
                    column.set_entity_value(subject.entity, None)
