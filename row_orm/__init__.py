"""RowORM - async object-relational mapper over plain SQL drivers."""

from __future__ import annotations

from row_orm.core.cache import QueryResultCache
from row_orm.core.connection import Connection, ConnectionConfig
from row_orm.core.enums import (
    ColumnMode,
    DatabaseBackend,
    EventListenerType,
    GenerationStrategy,
    InheritanceKind,
    OnDelete,
    RelationKind,
)
from row_orm.core.exceptions import (
    AdapterError,
    AliasAlreadyExistsError,
    AlreadyHasActiveConnectionError,
    AmbiguousRelationOwnershipError,
    CannotConnectAlreadyConnectedError,
    CannotDetermineEntityError,
    CannotExecuteNotConnectedError,
    CircularRelationsError,
    ColumnTypeUndefinedError,
    ConnectionError,  # noqa: A004
    ConnectionNotFoundError,
    ConnectionStateError,
    DataTypeNotSupportedError,
    DuplicateTableNameError,
    EntityMetadataNotFoundError,
    EntityNotFoundError,
    EntityPropertyNotFoundError,
    ExecutionError,
    IncrementColumnError,
    InsertValuesMissingError,
    JoinAnnotationPlacementError,
    MainAliasNotSetError,
    MetadataError,
    MetadataNotResolvedError,
    MissingInversePropertyError,
    MissingJoinAnnotationError,
    MissingNamingStrategyError,
    MissingPrimaryColumnError,
    MissingPrimaryValueError,
    NoConnectionForRepositoryError,
    ParameterContractError,
    ParameterMissingError,
    PersistenceError,
    PoolError,
    QueryBuilderError,
    QueryFailedError,
    QueryRunnerAlreadyReleasedError,
    RelationMetadataError,
    RepositoryNotTreeError,
    RowOrmError,
    SchemaError,
    TableNotFoundError,
    TransactionCallbackError,
    TransactionError,
    TransactionStateError,
    UpdateValuesMissingError,
)
from row_orm.core.query_runner import QueryResult, QueryRunner
from row_orm.core.registry import ConnectionRegistry
from row_orm.metadata.naming import DefaultNamingStrategy, NamingStrategy
from row_orm.metadata.schema import EntitySchemaBuilder, build_storage, embeddable, entity
from row_orm.query.expression import Brackets
from row_orm.repository.base import Repository, TreeRepository
from row_orm.repository.find_options import (
    Between,
    Equal,
    FindOperator,
    FindOptions,
    In,
    IsNull,
    LessThan,
    LessThanOrEqual,
    Like,
    MoreThan,
    MoreThanOrEqual,
    Not,
    Raw,
)
from row_orm.repository.manager import EntityManager
from row_orm.subscriber.broadcaster import (
    EntitySubscriber,
    InsertEvent,
    LoadEvent,
    RemoveEvent,
    UpdateEvent,
)

__all__ = [
    # Connection
    "Connection",
    "ConnectionConfig",
    "ConnectionRegistry",
    "QueryRunner",
    "QueryResult",
    "QueryResultCache",
    # Entity schema
    "entity",
    "embeddable",
    "build_storage",
    "EntitySchemaBuilder",
    "NamingStrategy",
    "DefaultNamingStrategy",
    # Manager and repositories
    "EntityManager",
    "Repository",
    "TreeRepository",
    # Find options
    "FindOptions",
    "FindOperator",
    "Not",
    "LessThan",
    "LessThanOrEqual",
    "MoreThan",
    "MoreThanOrEqual",
    "Equal",
    "Like",
    "Between",
    "In",
    "IsNull",
    "Raw",
    "Brackets",
    # Events
    "EntitySubscriber",
    "InsertEvent",
    "UpdateEvent",
    "RemoveEvent",
    "LoadEvent",
    # Enums
    "DatabaseBackend",
    "RelationKind",
    "GenerationStrategy",
    "ColumnMode",
    "InheritanceKind",
    "OnDelete",
    "EventListenerType",
    # Exceptions
    "RowOrmError",
    "MetadataError",
    "MetadataNotResolvedError",
    "ColumnTypeUndefinedError",
    "MissingPrimaryColumnError",
    "IncrementColumnError",
    "DuplicateTableNameError",
    "MissingNamingStrategyError",
    "RelationMetadataError",
    "MissingJoinAnnotationError",
    "AmbiguousRelationOwnershipError",
    "JoinAnnotationPlacementError",
    "MissingInversePropertyError",
    "EntityPropertyNotFoundError",
    "DataTypeNotSupportedError",
    "ConnectionStateError",
    "CannotConnectAlreadyConnectedError",
    "CannotExecuteNotConnectedError",
    "NoConnectionForRepositoryError",
    "AlreadyHasActiveConnectionError",
    "ConnectionNotFoundError",
    "EntityMetadataNotFoundError",
    "RepositoryNotTreeError",
    "QueryBuilderError",
    "AliasAlreadyExistsError",
    "MainAliasNotSetError",
    "ParameterMissingError",
    "UpdateValuesMissingError",
    "InsertValuesMissingError",
    "ExecutionError",
    "QueryFailedError",
    "EntityNotFoundError",
    "TransactionError",
    "TransactionStateError",
    "QueryRunnerAlreadyReleasedError",
    "PersistenceError",
    "CircularRelationsError",
    "CannotDetermineEntityError",
    "MissingPrimaryValueError",
    "ParameterContractError",
    "TransactionCallbackError",
    "SchemaError",
    "TableNotFoundError",
    "AdapterError",
    "ConnectionError",
    "PoolError",
]
