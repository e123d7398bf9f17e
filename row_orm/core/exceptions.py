"""RowORM exception hierarchy.

Every error raised by RowORM derives from RowOrmError. Driver exceptions are
wrapped in QueryFailedError, which keeps the original as ``driver_error``.
"""

from __future__ import annotations

from typing import Any


class RowOrmError(Exception):
    """Base exception for all RowORM errors."""


def _target_name(target: Any) -> str:
    return getattr(target, "__name__", None) or str(target)


# --- Metadata (build time) ---


class MetadataError(RowOrmError):
    """Base for errors raised while building entity metadata."""


class ColumnTypeUndefinedError(MetadataError):
    """Raised when a column type is neither given nor inferable."""

    def __init__(self, target: Any, property_name: str) -> None:
        self.target = target
        self.property_name = property_name
        super().__init__(
            f"Column type for {_target_name(target)}#{property_name} is not defined "
            f"and cannot be guessed. Provide an explicit column type."
        )


class MissingPrimaryColumnError(MetadataError):
    """Raised when an entity has no primary column."""

    def __init__(self, entity_name: str) -> None:
        self.entity_name = entity_name
        super().__init__(
            f"Entity '{entity_name}' does not have a primary column. "
            f"Each entity must declare at least one primary column."
        )


class IncrementColumnError(MetadataError):
    """Raised when a table declares more than one increment column."""

    def __init__(self, entity_name: str, columns: list[str]) -> None:
        self.entity_name = entity_name
        super().__init__(
            f"Entity '{entity_name}' declares more than one increment column: {columns}"
        )


class DuplicateTableNameError(MetadataError):
    """Raised when two entities map to the same table."""

    def __init__(self, table_name: str, first: str, second: str) -> None:
        self.table_name = table_name
        super().__init__(
            f"Entities '{first}' and '{second}' are both mapped to table '{table_name}'"
        )


class MissingNamingStrategyError(MetadataError):
    """Raised when metadata is built without a naming strategy."""

    def __init__(self) -> None:
        super().__init__("Cannot build entity metadata without a naming strategy")


class RelationMetadataError(MetadataError):
    """Base for relation validation errors."""

    def __init__(self, entity_name: str, property_name: str, detail: str) -> None:
        self.entity_name = entity_name
        self.property_name = property_name
        super().__init__(f"Relation {entity_name}#{property_name}: {detail}")


class MissingJoinAnnotationError(RelationMetadataError):
    """Raised when neither side of a one-to-one/many-to-many relation owns it."""

    def __init__(self, entity_name: str, property_name: str, kind: str) -> None:
        join = "join table" if kind == "many-to-many" else "join column"
        super().__init__(
            entity_name,
            property_name,
            f"{kind} relation requires a {join} on exactly one side, but none was declared",
        )


class AmbiguousRelationOwnershipError(RelationMetadataError):
    """Raised when both sides of a one-to-one/many-to-many relation declare a join."""

    def __init__(self, entity_name: str, property_name: str, inverse: str) -> None:
        super().__init__(
            entity_name,
            property_name,
            f"both this side and the inverse side '{inverse}' declare a join; "
            f"only the owning side may declare it",
        )


class JoinAnnotationPlacementError(RelationMetadataError):
    """Raised when a join annotation is placed on a side that cannot own it."""

    def __init__(self, entity_name: str, property_name: str, kind: str) -> None:
        super().__init__(
            entity_name,
            property_name,
            f"{kind} relation cannot declare a join column or join table",
        )


class MissingInversePropertyError(RelationMetadataError):
    """Raised when the inverse side of a relation cannot be resolved."""

    def __init__(self, entity_name: str, property_name: str, inverse: str | None) -> None:
        detail = (
            f"inverse side '{inverse}' was not found on the related entity"
            if inverse
            else "an inverse side is required for this relation kind"
        )
        super().__init__(entity_name, property_name, detail)


class EntityPropertyNotFoundError(MetadataError):
    """Raised when a property path does not match any column or relation."""

    def __init__(self, property_path: str, entity_name: str) -> None:
        self.property_path = property_path
        self.entity_name = entity_name
        super().__init__(f"Property '{property_path}' was not found in '{entity_name}'")


class MetadataNotResolvedError(MetadataError):
    """Raised when a reference the metadata builder resolves is still missing."""

    def __init__(self, owner: str, reference: str) -> None:
        self.owner = owner
        self.reference = reference
        super().__init__(f"{owner} has no {reference}; entity metadata was not built for it")


class DataTypeNotSupportedError(MetadataError):
    """Raised when a column type has no mapping for the active database."""

    def __init__(self, column_type: str, database: str) -> None:
        self.column_type = column_type
        super().__init__(f"Data type '{column_type}' is not supported by {database}")


# --- Connection state ---


class ConnectionStateError(RowOrmError):
    """Base for misuse of the connection lifecycle."""


class CannotConnectAlreadyConnectedError(ConnectionStateError):
    def __init__(self, connection_name: str) -> None:
        self.connection_name = connection_name
        super().__init__(
            f"Cannot connect '{connection_name}' because it is already connected"
        )


class CannotExecuteNotConnectedError(ConnectionStateError):
    def __init__(self, connection_name: str) -> None:
        self.connection_name = connection_name
        super().__init__(
            f"Cannot execute operation on '{connection_name}' because it is not connected"
        )


class NoConnectionForRepositoryError(ConnectionStateError):
    def __init__(self, connection_name: str) -> None:
        self.connection_name = connection_name
        super().__init__(
            f"Cannot get a repository for '{connection_name}' because the connection "
            f"is not established yet. Call connect() first."
        )


class AlreadyHasActiveConnectionError(ConnectionStateError):
    def __init__(self, connection_name: str) -> None:
        self.connection_name = connection_name
        super().__init__(
            f"Cannot create a new connection named '{connection_name}' because a "
            f"connection with that name is already connected"
        )


class ConnectionNotFoundError(ConnectionStateError):
    def __init__(self, connection_name: str) -> None:
        self.connection_name = connection_name
        super().__init__(f"Connection '{connection_name}' was not found")


# --- Repository lookup ---


class EntityMetadataNotFoundError(RowOrmError):
    """Raised when no metadata is registered for a requested entity."""

    def __init__(self, target: Any, connection_name: str) -> None:
        self.target = target
        self.connection_name = connection_name
        super().__init__(
            f"No metadata for '{_target_name(target)}' was found in connection "
            f"'{connection_name}'"
        )


class RepositoryNotTreeError(RowOrmError):
    """Raised when a tree repository is requested for an entity that is not a tree."""

    def __init__(self, entity_name: str) -> None:
        self.entity_name = entity_name
        super().__init__(
            f"Repository of '{entity_name}' is not a tree repository; declare the entity "
            f"as a closure-table or materialized-path tree"
        )


# --- Query builder ---


class QueryBuilderError(RowOrmError):
    """Base for query construction errors."""


class AliasAlreadyExistsError(QueryBuilderError):
    def __init__(self, alias_name: str) -> None:
        self.alias_name = alias_name
        super().__init__(f"Alias '{alias_name}' is already used in this query")


class MainAliasNotSetError(QueryBuilderError):
    def __init__(self) -> None:
        super().__init__("Main alias is not set. Call from_() or into() first")


class ParameterMissingError(QueryBuilderError):
    def __init__(self, parameter_name: str) -> None:
        self.parameter_name = parameter_name
        super().__init__(f"Query parameter ':{parameter_name}' has no bound value")


class UpdateValuesMissingError(QueryBuilderError):
    def __init__(self) -> None:
        super().__init__("Cannot perform update query because update values are not defined")


class InsertValuesMissingError(QueryBuilderError):
    def __init__(self) -> None:
        super().__init__("Cannot perform insert query because values are not defined")


# --- Execution ---


class ExecutionError(RowOrmError):
    """Base for query execution errors."""


class QueryFailedError(ExecutionError):
    """Raised when the driver rejects a statement."""

    def __init__(self, query: str, parameters: Any, driver_error: BaseException) -> None:
        self.query = query
        self.parameters = parameters
        self.driver_error = driver_error
        super().__init__(f"{type(driver_error).__name__}: {driver_error} (query: {query})")


class EntityNotFoundError(ExecutionError):
    def __init__(self, entity_name: str, criteria: Any) -> None:
        self.entity_name = entity_name
        self.criteria = criteria
        super().__init__(f"Could not find any entity of type '{entity_name}' matching {criteria!r}")


# --- Transaction ---


class TransactionError(RowOrmError):
    """Base for transaction errors."""


class TransactionStateError(TransactionError):
    """Raised on invalid transaction state transitions."""

    def __init__(self, current_state: str, attempted_action: str) -> None:
        self.current_state = current_state
        self.attempted_action = attempted_action
        super().__init__(f"Cannot {attempted_action} transaction in state '{current_state}'")


class QueryRunnerAlreadyReleasedError(TransactionError):
    def __init__(self) -> None:
        super().__init__("Query runner is already released and cannot run queries anymore")


# --- Persistence ---


class PersistenceError(RowOrmError):
    """Base for unit-of-work errors."""


class CircularRelationsError(PersistenceError):
    def __init__(self, entity_names: list[str]) -> None:
        self.entity_names = entity_names
        super().__init__(
            f"Circular relations detected between {entity_names}; at least one of the "
            f"foreign keys in the cycle must be nullable"
        )


class CannotDetermineEntityError(PersistenceError):
    def __init__(self, operation: str) -> None:
        super().__init__(
            f"Cannot {operation}: the given value is not an instance of a mapped entity"
        )


class MissingPrimaryValueError(PersistenceError):
    def __init__(self, entity_name: str, operation: str = "remove") -> None:
        self.entity_name = entity_name
        super().__init__(f"Cannot {operation} '{entity_name}' without a primary key value")


# --- Caller contract ---


class ParameterContractError(RowOrmError):
    """Raised on caller-supplied argument mismatches, before any SQL runs."""


class TransactionCallbackError(ParameterContractError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Invalid transaction callback: {detail}")


# --- Schema ---


class SchemaError(RowOrmError):
    """Base for schema synchronization errors."""


class TableNotFoundError(SchemaError):
    def __init__(self, table_name: str) -> None:
        self.table_name = table_name
        super().__init__(f"Table '{table_name}' does not exist")


# --- Adapter ---


class AdapterError(RowOrmError):
    """Base for adapter errors."""


class ConnectionError(AdapterError):  # noqa: A001
    """Raised on connection failures."""


class PoolError(AdapterError):
    """Raised on connection pool failures."""
