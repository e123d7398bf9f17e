"""Connection configuration and management.

ConnectionConfig is a Pydantic model for type-safe connection config.
Connection owns the driver, the connection pool and the entity metadata built
at connect time, and hands out query runners, managers and repositories.
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any, Iterable

from pydantic import BaseModel

from row_orm.core.cache import QueryResultCache
from row_orm.core.exceptions import (
    AdapterError,
    CannotConnectAlreadyConnectedError,
    CannotExecuteNotConnectedError,
    EntityMetadataNotFoundError,
    NoConnectionForRepositoryError,
)
from row_orm.core.query_runner import QueryRunner
from row_orm.metadata.args import MetadataArgsStorage
from row_orm.metadata.builder import EntityMetadataBuilder
from row_orm.metadata.naming import DefaultNamingStrategy, NamingStrategy
from row_orm.metadata.schema import EntitySchemaBuilder, build_storage
from row_orm.subscriber.broadcaster import Broadcaster

if TYPE_CHECKING:
    from row_orm.adapters.protocol import Driver
    from row_orm.metadata.entity import EntityMetadata
    from row_orm.query.select import SelectQueryBuilder
    from row_orm.repository.base import Repository, TreeRepository
    from row_orm.repository.manager import EntityManager

logger = logging.getLogger(__name__)


class ConnectionConfig(BaseModel):
    """Configuration for database connections."""

    name: str = "default"
    driver: str
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str
    pool_size: int = 5
    # ORM options
    synchronize: bool = False
    drop_schema: bool = False
    logging: bool = False
    max_query_execution_time: int | None = None
    # select result cache; durations in milliseconds
    cache_duration: int = 1000
    cache_always_enabled: bool = False


# Adapter module mapping: driver name -> (module_path, class_name)
_ADAPTER_MAP: dict[str, tuple[str, str]] = {
    "sqlite": ("row_orm.adapters.sqlite", "SqliteAsyncAdapter"),
    "postgresql": ("row_orm.adapters.postgresql", "PostgresqlAsyncAdapter"),
    "mysql": ("row_orm.adapters.mysql", "MysqlAsyncAdapter"),
}


def _load_adapter(driver: str) -> Driver:
    """Load a driver by name."""
    driver_lower = driver.lower()
    if driver_lower not in _ADAPTER_MAP:
        raise AdapterError(f"Unsupported database driver: {driver}")

    module_path, cls_name = _ADAPTER_MAP[driver_lower]
    try:
        module = importlib.import_module(module_path)
        return getattr(module, cls_name)()
    except (ImportError, AttributeError) as e:
        raise AdapterError(f"Failed to load adapter for '{driver}': {e}") from e


class Connection:
    """A configured database connection with its entity metadata.

    Args:
        config: Connection configuration.
        entities: Metadata description records, either a storage or the
            entity schema builders to register.
        subscribers: Entity subscribers notified of persistence events.
        naming_strategy: Defaults to DefaultNamingStrategy.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        entities: MetadataArgsStorage | Iterable[EntitySchemaBuilder] = (),
        subscribers: Iterable[Any] = (),
        naming_strategy: NamingStrategy | None = None,
    ) -> None:
        self.config = config
        self.name = config.name
        self.driver = _load_adapter(config.driver)
        self.naming_strategy = naming_strategy or DefaultNamingStrategy()
        self.storage = (
            entities if isinstance(entities, MetadataArgsStorage) else build_storage(*entities)
        )
        self.subscribers = list(subscribers)
        self.broadcaster = Broadcaster(self.subscribers)
        self.query_result_cache = QueryResultCache(config.cache_duration)
        self._pool: Any = None
        self._metadatas: list[EntityMetadata] = []
        self._manager: EntityManager | None = None

    def __repr__(self) -> str:
        return f"<Connection {self.name} driver={self.config.driver} connected={self.is_connected}>"

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def entity_metadatas(self) -> list[EntityMetadata]:
        return list(self._metadatas)

    @property
    def manager(self) -> EntityManager:
        if self._manager is None:
            from row_orm.repository.manager import EntityManager

            self._manager = EntityManager(self)
        return self._manager

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> Connection:
        """Open the pool, build metadata and optionally drop/synchronize the schema.

        Metadata errors abort the connect and close the pool again.
        """
        if self.is_connected:
            raise CannotConnectAlreadyConnectedError(self.name)
        self._pool = await self.driver.create_pool(self.config)
        try:
            self.build_metadatas()
            if self.config.drop_schema:
                await self.drop_database()
            if self.config.synchronize:
                await self.synchronize()
        except Exception:
            await self.close()
            raise
        logger.info(
            "Connection '%s' established (%s, %d entities)",
            self.name,
            self.driver.backend.value,
            len(self._metadatas),
        )
        return self

    async def close(self) -> None:
        if not self.is_connected:
            raise CannotExecuteNotConnectedError(self.name)
        await self.driver.close_pool(self._pool)
        self._pool = None
        self.query_result_cache.clear()
        logger.info("Connection '%s' closed", self.name)

    def build_metadatas(self) -> list[EntityMetadata]:
        self._metadatas = EntityMetadataBuilder(
            self.storage, self.naming_strategy, self.name
        ).build()
        return self.entity_metadatas

    async def acquire(self) -> Any:
        """Acquire a raw database connection from the pool."""
        if not self.is_connected:
            raise CannotExecuteNotConnectedError(self.name)
        return await self.driver.acquire_connection(self._pool)

    async def release(self, db_connection: Any) -> None:
        if self._pool is not None:
            await self.driver.release_connection(db_connection, self._pool)
        else:
            # the pool was closed while this connection was checked out
            await self.driver.close_pool([db_connection])

    # ------------------------------------------------------------------
    # metadata
    # ------------------------------------------------------------------

    def _find_metadata(self, target: Any) -> EntityMetadata | None:
        for metadata in self._metadatas:
            if metadata.target is not None and metadata.target is target:
                return metadata
        if isinstance(target, str):
            for metadata in self._metadatas:
                if target in (metadata.name, metadata.table_name):
                    return metadata
        elif not isinstance(target, type):
            # an entity instance
            return self._find_metadata(type(target))
        return None

    def has_metadata(self, target: Any) -> bool:
        return self._find_metadata(target) is not None

    def get_metadata(self, target: Any) -> EntityMetadata:
        """Metadata for an entity class, entity instance, entity name or table name."""
        metadata = self._find_metadata(target)
        if metadata is None:
            raise EntityMetadataNotFoundError(target, self.name)
        return metadata

    # ------------------------------------------------------------------
    # factories
    # ------------------------------------------------------------------

    def get_repository(self, target: type) -> Repository[Any]:
        if not self.is_connected:
            raise NoConnectionForRepositoryError(self.name)
        return self.manager.get_repository(target)

    def get_tree_repository(self, target: type) -> TreeRepository[Any]:
        if not self.is_connected:
            raise NoConnectionForRepositoryError(self.name)
        return self.manager.get_tree_repository(target)

    def create_query_runner(self) -> QueryRunner:
        return QueryRunner(self)

    def create_query_builder(
        self,
        target: Any = None,
        alias: str | None = None,
        query_runner: QueryRunner | None = None,
    ) -> SelectQueryBuilder:
        from row_orm.query.select import SelectQueryBuilder

        builder = SelectQueryBuilder(self, query_runner)
        if target is not None:
            builder.from_(target, alias)
            builder.select(builder.alias)
        return builder

    async def transaction(self, *args: Any) -> Any:
        """Run ``callback(manager)`` in a transaction; see EntityManager.transaction."""
        return await self.manager.transaction(*args)

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        """Execute raw SQL on a short-lived query runner and return its rows."""
        return await self.manager.query(sql, params)

    # ------------------------------------------------------------------
    # schema
    # ------------------------------------------------------------------

    async def synchronize(self, drop_before_sync: bool = False) -> None:
        """Bring the database schema in line with the entity metadata."""
        from row_orm.schema.builder import SchemaBuilder

        if not self.is_connected:
            raise CannotExecuteNotConnectedError(self.name)
        if drop_before_sync:
            await self.drop_database()
        await SchemaBuilder(self).build()

    async def drop_database(self) -> None:
        """Drop every table of the connected database."""
        runner = self.create_query_runner()
        try:
            await self._run_statements(runner, self.driver.schema_sync_prelude())
            await runner.clear_database()
            await self._run_statements(runner, self.driver.schema_sync_postlude())
        finally:
            await runner.release()

    @staticmethod
    async def _run_statements(runner: QueryRunner, statements: list[str]) -> None:
        for sql in statements:
            await runner.query(sql)
