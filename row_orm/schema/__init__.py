"""Schema layer - table descriptions and synchronization."""

from __future__ import annotations

from row_orm.schema.builder import SchemaBuilder
from row_orm.schema.table import TableColumn, TableForeignKey, TableIndex, TableSchema

__all__ = [
    "SchemaBuilder",
    "TableSchema",
    "TableColumn",
    "TableIndex",
    "TableForeignKey",
]
