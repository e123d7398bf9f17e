"""Connection registry - named connections for an application.

The registry is a plain object owned by the caller; there is no global
connection manager.
"""

from __future__ import annotations

from typing import Any, Iterable

from row_orm.core.connection import Connection, ConnectionConfig
from row_orm.core.exceptions import AlreadyHasActiveConnectionError, ConnectionNotFoundError
from row_orm.metadata.args import MetadataArgsStorage
from row_orm.metadata.naming import NamingStrategy
from row_orm.metadata.schema import EntitySchemaBuilder


class ConnectionRegistry:
    """Keeps connections by configuration name."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def create(
        self,
        config: ConnectionConfig,
        entities: MetadataArgsStorage | Iterable[EntitySchemaBuilder] = (),
        subscribers: Iterable[Any] = (),
        naming_strategy: NamingStrategy | None = None,
    ) -> Connection:
        """Create a connection registered under ``config.name``.

        A closed connection with the same name is replaced.

        Raises:
            AlreadyHasActiveConnectionError: If a connected connection has this name.
        """
        existing = self._connections.get(config.name)
        if existing is not None and existing.is_connected:
            raise AlreadyHasActiveConnectionError(config.name)
        connection = Connection(config, entities, subscribers, naming_strategy)
        self._connections[config.name] = connection
        return connection

    def get(self, name: str = "default") -> Connection:
        """Look up a connection by name.

        Raises:
            ConnectionNotFoundError: If no connection has this name.
        """
        try:
            return self._connections[name]
        except KeyError:
            raise ConnectionNotFoundError(name) from None

    def has(self, name: str = "default") -> bool:
        return name in self._connections

    @property
    def names(self) -> list[str]:
        """Registered connection names, sorted alphabetically."""
        return sorted(self._connections)

    def __len__(self) -> int:
        return len(self._connections)
