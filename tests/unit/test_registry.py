"""Unit tests for ConnectionRegistry."""

from __future__ import annotations

import pytest

from row_orm.core.connection import ConnectionConfig
from row_orm.core.exceptions import AlreadyHasActiveConnectionError, ConnectionNotFoundError
from row_orm.core.registry import ConnectionRegistry
from row_orm.metadata.schema import entity


class Tag:
    id: int
    label: str


def _config(name: str = "default") -> ConnectionConfig:
    return ConnectionConfig(name=name, driver="sqlite", database=":memory:", pool_size=1)


class TestConnectionRegistry:
    def test_create_and_get(self) -> None:
        registry = ConnectionRegistry()
        connection = registry.create(_config())
        assert registry.get() is connection
        assert registry.get("default") is connection

    def test_has(self) -> None:
        registry = ConnectionRegistry()
        registry.create(_config("reports"))
        assert registry.has("reports") is True
        assert registry.has("default") is False

    def test_names_sorted(self) -> None:
        registry = ConnectionRegistry()
        for name in ("b", "c", "a"):
            registry.create(_config(name))
        assert registry.names == ["a", "b", "c"]
        assert len(registry) == 3

    def test_get_missing_raises(self) -> None:
        registry = ConnectionRegistry()
        with pytest.raises(ConnectionNotFoundError, match="missing"):
            registry.get("missing")

    def test_closed_connection_is_replaced(self) -> None:
        registry = ConnectionRegistry()
        first = registry.create(_config())
        second = registry.create(_config())
        assert first is not second
        assert registry.get() is second
        assert len(registry) == 1

    async def test_active_connection_name_is_taken(self) -> None:
        registry = ConnectionRegistry()
        connection = registry.create(_config(), [entity(Tag).generated("id").column("label")])
        await connection.connect()
        try:
            with pytest.raises(AlreadyHasActiveConnectionError):
                registry.create(_config())
        finally:
            await connection.close()
