"""Shared test fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from row_orm.core.connection import Connection, ConnectionConfig


@pytest.fixture
def sqlite_config() -> ConnectionConfig:
    """SQLite in-memory connection config.

    A single pooled connection keeps every runner on the same in-memory
    database.
    """
    return ConnectionConfig(driver="sqlite", database=":memory:", pool_size=1)


@pytest.fixture
def build_connection(sqlite_config: ConnectionConfig):
    """Helper creating an unconnected connection with built metadata.

    Usage:
        connection = build_connection(entity(Post).generated("id").column("title"))
    """

    def _build(*entities: Any, **options: Any) -> Connection:
        connection = Connection(sqlite_config.model_copy(update=options), entities)
        connection.build_metadatas()
        return connection

    return _build


@pytest.fixture
async def connect(sqlite_config: ConnectionConfig):
    """Helper connecting (and synchronizing) a connection; closed on teardown.

    Usage:
        connection = await connect(entity(Post).generated("id").column("title"))
    """
    connections: list[Connection] = []

    async def _connect(*entities: Any, subscribers: Any = (), **options: Any) -> Connection:
        config = sqlite_config.model_copy(update={"synchronize": True, **options})
        connection = Connection(config, entities, subscribers)
        await connection.connect()
        connections.append(connection)
        return connection

    yield _connect

    for connection in connections:
        if connection.is_connected:
            await connection.close()
