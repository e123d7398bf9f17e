"""Metadata layer - entity descriptions and the metadata built from them."""

from __future__ import annotations

from row_orm.metadata.args import MetadataArgsStorage, ValueTransformer
from row_orm.metadata.builder import EntityMetadataBuilder
from row_orm.metadata.entity import (
    UNSET,
    ColumnMetadata,
    EmbeddedMetadata,
    EntityMetadata,
    ForeignKeyMetadata,
    IndexMetadata,
    RelationMetadata,
)
from row_orm.metadata.naming import DefaultNamingStrategy, NamingStrategy
from row_orm.metadata.schema import EntitySchemaBuilder, build_storage, embeddable, entity

__all__ = [
    "MetadataArgsStorage",
    "ValueTransformer",
    "EntityMetadataBuilder",
    "EntityMetadata",
    "ColumnMetadata",
    "RelationMetadata",
    "EmbeddedMetadata",
    "IndexMetadata",
    "ForeignKeyMetadata",
    "UNSET",
    "NamingStrategy",
    "DefaultNamingStrategy",
    "EntitySchemaBuilder",
    "entity",
    "embeddable",
    "build_storage",
]
