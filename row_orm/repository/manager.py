"""Entity manager.

The manager is the entry point for persistence and finds on any entity
type. A manager created by the connection opens a short-lived query runner
per operation; the manager handed to a transaction callback is bound to the
transaction's runner.
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from row_orm.core.exceptions import (
    CannotDetermineEntityError,
    EntityNotFoundError,
    RepositoryNotTreeError,
    TransactionCallbackError,
)
from row_orm.persistence.builder import SubjectBuilder
from row_orm.persistence.executor import SubjectExecutor
from row_orm.repository.find_options import FindOptions, apply_find_options

if TYPE_CHECKING:
    from row_orm.core.connection import Connection
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import EmbeddedMetadata, EntityMetadata
    from row_orm.query.delete import DeleteResult
    from row_orm.query.insert import InsertResult
    from row_orm.query.select import SelectQueryBuilder
    from row_orm.query.update import UpdateResult
    from row_orm.repository.base import Repository, TreeRepository

logger = logging.getLogger(__name__)

R = TypeVar("R")


class EntityManager:
    """Persistence and find operations for every entity of a connection."""

    def __init__(self, connection: Connection, query_runner: QueryRunner | None = None) -> None:
        self.connection = connection
        self.query_runner = query_runner
        self._repositories: dict[int, Repository[Any]] = {}

    def __repr__(self) -> str:
        return f"<EntityManager connection={self.connection.name} bound={self.query_runner is not None}>"

    async def _run(self, operation: Callable[[QueryRunner], Awaitable[R]]) -> R:
        runner = self.query_runner or self.connection.create_query_runner()
        try:
            return await operation(runner)
        finally:
            if self.query_runner is None:
                await runner.release()

    # ------------------------------------------------------------------
    # repositories and builders
    # ------------------------------------------------------------------

    def get_repository(self, target: Any) -> Repository[Any]:
        """Repository for an entity; tree entities get a TreeRepository."""
        from row_orm.repository.base import Repository, TreeRepository

        metadata = self.connection.get_metadata(target)
        repository = self._repositories.get(id(metadata))
        if repository is None:
            cls = TreeRepository if metadata.is_tree else Repository
            repository = cls(self, metadata)
            self._repositories[id(metadata)] = repository
        return repository

    def get_tree_repository(self, target: Any) -> TreeRepository[Any]:
        from row_orm.repository.base import TreeRepository

        repository = self.get_repository(target)
        if not isinstance(repository, TreeRepository):
            raise RepositoryNotTreeError(repository.metadata.name)
        return repository

    def create_query_builder(
        self, target: Any = None, alias: str | None = None, query_runner: QueryRunner | None = None
    ) -> SelectQueryBuilder:
        return self.connection.create_query_builder(target, alias, query_runner or self.query_runner)

    # ------------------------------------------------------------------
    # entity instances
    # ------------------------------------------------------------------

    def create(self, target: Any, plain: dict[str, Any] | list[dict[str, Any]] | None = None) -> Any:
        """New entity instance(s), optionally filled from plain mappings.

        ``__init__`` is not called, so entities with required constructor
        arguments can still be created.
        """
        metadata = self.connection.get_metadata(target)
        if isinstance(plain, list):
            return [self.create(target, item) for item in plain]
        entity = metadata.create()
        if plain:
            self._merge_plain(metadata, entity, plain)
        return entity

    def merge(self, target: Any, merge_into: Any, *plains: Any) -> Any:
        """Copy the properties of mappings or other entities into ``merge_into``."""
        metadata = self.connection.get_metadata(target)
        for plain in plains:
            if metadata.is_entity(plain):
                plain = dict(vars(plain))
            self._merge_plain(metadata, merge_into, plain)
        return merge_into

    def _merge_plain(self, metadata: EntityMetadata, entity: Any, plain: dict[str, Any]) -> None:
        for key, value in plain.items():
            relation = metadata.find_relation_with_property_path(key)
            if relation is not None:
                inverse = relation.inverse_entity_metadata
                if isinstance(value, list):
                    value = [self._related(inverse, item) for item in value]
                else:
                    value = self._related(inverse, value)
                setattr(entity, key, value)
                continue
            embedded = next((e for e in metadata.embeddeds if e.property_name == key), None)
            if embedded is not None and isinstance(value, dict):
                self._merge_embedded(embedded, entity, value)
                continue
            setattr(entity, key, value)

    def _related(self, metadata: EntityMetadata, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        related = metadata.create()
        self._merge_plain(metadata, related, value)
        return related

    def _merge_embedded(self, embedded: EmbeddedMetadata, owner: Any, plain: dict[str, Any]) -> None:
        child = getattr(owner, embedded.property_name, None)
        if child is None:
            child = embedded.create()
            setattr(owner, embedded.property_name, child)
        for key, value in plain.items():
            nested = next((e for e in embedded.embeddeds if e.property_name == key), None)
            if nested is not None and isinstance(value, dict):
                self._merge_embedded(nested, child, value)
            else:
                setattr(child, key, value)

    def has_id(self, target_or_entity: Any, entity: Any = None) -> bool:
        if entity is None:
            entity = target_or_entity
        return self.connection.get_metadata(target_or_entity).has_id(entity)

    def get_id(self, target_or_entity: Any, entity: Any = None) -> Any:
        if entity is None:
            entity = target_or_entity
        return self.connection.get_metadata(target_or_entity).get_id(entity)

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    def _entities(self, value: Any, target: Any, operation: str) -> list[Any]:
        entities = list(value) if isinstance(value, (list, tuple)) else [value]
        if target is not None:
            entities = [self.create(target, e) if isinstance(e, dict) else e for e in entities]
        for entity in entities:
            if entity is None or isinstance(entity, (dict, str, int)) or not self.connection.has_metadata(type(entity)):
                raise CannotDetermineEntityError(operation)
        return entities

    async def save(self, entity: Any, target: Any = None) -> Any:
        """Insert or update an entity or a list of entities, with cascades.

        Returns what was given, with generated values written onto the
        entities. Plain mappings are accepted when ``target`` is given.
        """
        entities = self._entities(entity, target, "save")
        if not entities:
            return entity

        async def operation(runner: QueryRunner) -> None:
            subjects = SubjectBuilder(self.connection).build_for_save(entities)
            await SubjectExecutor(self.connection, runner, subjects).execute()

        await self._run(operation)
        if isinstance(entity, (list, tuple)):
            return entities
        return entities[0]

    async def remove(self, entity: Any, target: Any = None) -> Any:
        """Delete an entity or a list of entities, with cascades."""
        entities = self._entities(entity, target, "remove")
        if not entities:
            return entity

        async def operation(runner: QueryRunner) -> None:
            subjects = SubjectBuilder(self.connection).build_for_remove(entities)
            await SubjectExecutor(self.connection, runner, subjects).execute()

        await self._run(operation)
        if isinstance(entity, (list, tuple)):
            return entities
        return entities[0]

    async def insert(self, target: Any, values: dict[str, Any] | list[dict[str, Any]]) -> InsertResult:
        """Fast insert without cascades, listeners or diffing."""
        return await self.create_query_builder().insert().into(target).values(values).execute()

    def _criteria(self, builder: Any, criteria: Any) -> Any:
        if isinstance(criteria, dict):
            return builder.where(criteria)
        return builder.where_in_ids(criteria)

    async def update(self, target: Any, criteria: Any, values: dict[str, Any]) -> UpdateResult:
        """Fast update of the rows matching ids or a where mapping."""
        builder = self.create_query_builder().update(target).set(values)
        return await self._criteria(builder, criteria).execute()

    async def delete(self, target: Any, criteria: Any) -> DeleteResult:
        """Fast delete of the rows matching ids or a where mapping."""
        builder = self.create_query_builder().delete().from_(target)
        return await self._criteria(builder, criteria).execute()

    async def clear(self, target: Any) -> DeleteResult:
        """Delete every row of the entity's table."""
        return await self.create_query_builder().delete().from_(target).execute()

    # ------------------------------------------------------------------
    # finds
    # ------------------------------------------------------------------

    def _find_builder(self, target: Any, options: Any) -> SelectQueryBuilder:
        metadata = self.connection.get_metadata(target)
        builder = self.create_query_builder(metadata.target, metadata.name)
        return apply_find_options(builder, FindOptions.from_value(options))

    async def find(self, target: Any, options: Any = None) -> list[Any]:
        return await self._find_builder(target, options).get_many()

    async def find_and_count(self, target: Any, options: Any = None) -> tuple[list[Any], int]:
        return await self._find_builder(target, options).get_many_and_count()

    async def find_by_ids(self, target: Any, ids: list[Any], options: Any = None) -> list[Any]:
        if not ids:
            return []
        builder = self._find_builder(target, options)
        return await builder.and_where_in_ids(list(ids)).get_many()

    def _find_one_builder(self, target: Any, id_or_options: Any, options: Any) -> SelectQueryBuilder:
        if isinstance(id_or_options, (dict, FindOptions)) and options is None:
            return self._find_builder(target, id_or_options)
        builder = self._find_builder(target, options)
        if id_or_options is not None:
            builder.and_where_in_ids(id_or_options)
        return builder

    async def find_one(self, target: Any, id_or_options: Any = None, options: Any = None) -> Any:
        """First entity matching an id, a where mapping or find options; None if none matches."""
        return await self._find_one_builder(target, id_or_options, options).get_one()

    async def find_one_or_fail(self, target: Any, id_or_options: Any = None, options: Any = None) -> Any:
        entity = await self.find_one(target, id_or_options, options)
        if entity is None:
            metadata = self.connection.get_metadata(target)
            raise EntityNotFoundError(metadata.name, id_or_options if options is None else options)
        return entity

    async def count(self, target: Any, options: Any = None) -> int:
        return await self._find_builder(target, options).get_count()

    # ------------------------------------------------------------------
    # raw SQL and transactions
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Execute raw SQL with ``:name`` parameters and return its rows."""

        async def operation(runner: QueryRunner) -> list[dict[str, Any]]:
            return (await runner.query(sql, params)).rows

        return await self._run(operation)

    @staticmethod
    def _check_callback(callback: Any) -> None:
        if not callable(callback):
            raise TransactionCallbackError(f"expected a callable, got {type(callback).__name__}")
        try:
            inspect.signature(callback).bind(object())
        except TypeError as e:
            raise TransactionCallbackError(
                "the callback must accept exactly one positional argument, the transactional manager"
            ) from e
        except ValueError:
            # builtins without an inspectable signature
            return

    async def transaction(self, *args: Any) -> Any:
        """Run ``callback(manager)`` inside a transaction.

        ``transaction(callback)`` or ``transaction(isolation_level, callback)``.
        The callback receives a manager bound to the transaction; the
        transaction commits when the callback returns and rolls back when it
        raises. A manager already inside a transaction joins it.
        """
        if len(args) == 1:
            isolation_level, callback = None, args[0]
        elif len(args) == 2:
            isolation_level, callback = args
        else:
            raise TransactionCallbackError(
                f"expected (callback) or (isolation_level, callback), got {len(args)} argument(s)"
            )
        self._check_callback(callback)

        async def call(manager: EntityManager) -> Any:
            result = callback(manager)
            if inspect.isawaitable(result):
                result = await result
            return result

        if self.query_runner is not None and self.query_runner.is_transaction_active:
            return await call(self)

        runner = self.query_runner or self.connection.create_query_runner()
        try:
            await runner.start_transaction(isolation_level)
            try:
                result = await call(runner.manager)
                await runner.commit_transaction()
            except Exception:
                logger.debug("Rolling back transaction after callback error")
                await runner.rollback_transaction()
                raise
            return result
        finally:
            if self.query_runner is None:
                await runner.release()
