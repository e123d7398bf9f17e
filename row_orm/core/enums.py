"""Enumerations shared by the metadata, query and persistence layers."""

from __future__ import annotations

from enum import Enum


class DatabaseBackend(Enum):
    """Supported database backends."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"


class RelationKind(Enum):
    ONE_TO_ONE = "one-to-one"
    MANY_TO_ONE = "many-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"


class GenerationStrategy(Enum):
    NONE = "none"
    INCREMENT = "increment"
    UUID = "uuid"


class ColumnMode(Enum):
    REGULAR = "regular"
    CREATE_DATE = "create_date"
    UPDATE_DATE = "update_date"
    VERSION = "version"
    DISCRIMINATOR = "discriminator"
    MATERIALIZED_PATH = "materialized_path"
    JUNCTION = "junction"


class InheritanceKind(Enum):
    NONE = "none"
    SINGLE_TABLE = "single-table"
    CLOSURE_TABLE = "closure-table"
    MATERIALIZED_PATH = "materialized-path"


class OnDelete(Enum):
    CASCADE = "CASCADE"
    SET_NULL = "SET NULL"
    RESTRICT = "RESTRICT"
    NO_ACTION = "NO ACTION"


class EventListenerType(Enum):
    BEFORE_INSERT = "before_insert"
    AFTER_INSERT = "after_insert"
    BEFORE_UPDATE = "before_update"
    AFTER_UPDATE = "after_update"
    BEFORE_REMOVE = "before_remove"
    AFTER_REMOVE = "after_remove"
    AFTER_LOAD = "after_load"
