"""Entity lifecycle events.

Entity listeners (methods registered on the entity class) run first, then
every subscriber whose ``listen_to()`` matches the entity. Hooks may be plain
functions or coroutines; the broadcaster awaits them in registration order.
"""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from row_orm.core.enums import EventListenerType

if TYPE_CHECKING:
    from row_orm.core.query_runner import QueryRunner
    from row_orm.metadata.entity import ColumnMetadata, EntityMetadata, RelationMetadata
    from row_orm.repository.manager import EntityManager


@dataclass
class InsertEvent:
    entity: Any
    metadata: EntityMetadata
    query_runner: QueryRunner
    manager: EntityManager


@dataclass
class UpdateEvent:
    entity: Any
    metadata: EntityMetadata
    query_runner: QueryRunner
    manager: EntityManager
    database_entity: Any = None
    updated_columns: list[ColumnMetadata] = field(default_factory=list)
    updated_relations: list[RelationMetadata] = field(default_factory=list)


@dataclass
class RemoveEvent:
    entity: Any
    metadata: EntityMetadata
    query_runner: QueryRunner
    manager: EntityManager
    database_entity: Any = None
    entity_id: Any = None


@dataclass
class LoadEvent:
    entity: Any
    metadata: EntityMetadata
    query_runner: QueryRunner
    manager: EntityManager


@runtime_checkable
class EntitySubscriber(Protocol):
    """Subscriber protocol.

    Only ``listen_to`` is looked up by the protocol check; the hooks
    (``before_insert``, ``after_insert``, ``before_update``, ``after_update``,
    ``before_remove``, ``after_remove``, ``after_load``) are optional and
    called when present.
    """

    def listen_to(self) -> type | None: ...


class Broadcaster:
    """Dispatches lifecycle events to entity listeners and subscribers."""

    def __init__(self, subscribers: list[Any]) -> None:
        self.subscribers = subscribers

    def _matching_subscribers(self, entity: Any) -> list[Any]:
        matching = []
        for subscriber in self.subscribers:
            listen_to = getattr(subscriber, "listen_to", None)
            target = listen_to() if callable(listen_to) else None
            if target is None or isinstance(entity, target):
                matching.append(subscriber)
        return matching

    @staticmethod
    async def _call(hook: Any, *args: Any) -> None:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result

    async def broadcast(self, event_type: EventListenerType, event: Any) -> None:
        """Run entity listeners, then subscriber hooks, for one entity."""
        entity = event.entity
        if event.metadata is not None:
            for listener in event.metadata.listeners:
                if listener.type is event_type and listener.is_allowed(entity):
                    await self._call(listener.execute, entity)
        for subscriber in self._matching_subscribers(entity):
            hook = getattr(subscriber, event_type.value, None)
            if callable(hook):
                await self._call(hook, event)

    async def broadcast_load_for_all_entities(
        self,
        metadata: EntityMetadata,
        entities: list[Any],
        query_runner: QueryRunner,
        manager: EntityManager,
    ) -> None:
        """Broadcast ``after_load`` for loaded entities and their loaded relations."""
        seen: set[int] = set()
        await self._broadcast_load(metadata, entities, query_runner, manager, seen)

    async def _broadcast_load(
        self,
        metadata: EntityMetadata,
        entities: list[Any],
        query_runner: QueryRunner,
        manager: EntityManager,
        seen: set[int],
    ) -> None:
        for entity in entities:
            if entity is None or id(entity) in seen:
                continue
            seen.add(id(entity))
            concrete = metadata
            if metadata.discriminator_column is not None:
                concrete = next(
                    (
                        m
                        for m in [metadata.root_metadata, *metadata.root_metadata.all_child_entity_metadatas]
                        if m.target is type(entity)
                    ),
                    metadata,
                )
            for relation in concrete.relations:
                value = relation.get_entity_value(entity)
                if isinstance(value, list):
                    related = value
                elif relation.inverse_entity_metadata.is_entity(value):
                    related = [value]
                else:
                    continue
                await self._broadcast_load(
                    relation.inverse_entity_metadata, related, query_runner, manager, seen
                )
            await self.broadcast(
                EventListenerType.AFTER_LOAD, LoadEvent(entity, concrete, query_runner, manager)
            )
