"""Entity lifecycle events."""

from __future__ import annotations

from row_orm.subscriber.broadcaster import (
    Broadcaster,
    EntitySubscriber,
    InsertEvent,
    LoadEvent,
    RemoveEvent,
    UpdateEvent,
)

__all__ = [
    "Broadcaster",
    "EntitySubscriber",
    "InsertEvent",
    "UpdateEvent",
    "RemoveEvent",
    "LoadEvent",
]
