"""Database-side table description.

TableSchema is what the schema builder compares against entity metadata:
either loaded from the database by a driver, or derived from metadata with
``TableSchema.from_metadata``.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from row_orm.core.enums import GenerationStrategy, OnDelete

if TYPE_CHECKING:
    from row_orm.adapters.protocol import Driver
    from row_orm.metadata.entity import ColumnMetadata, EntityMetadata, ForeignKeyMetadata


@dataclass
class TableColumn:
    name: str
    type: str
    is_nullable: bool = False
    default: str | None = None
    is_primary: bool = False
    generation_strategy: GenerationStrategy = GenerationStrategy.NONE

    @property
    def is_increment(self) -> bool:
        return self.generation_strategy is GenerationStrategy.INCREMENT

    @classmethod
    def from_metadata(cls, column: ColumnMetadata, driver: Driver) -> TableColumn:
        return cls(
            name=column.database_name,
            type=driver.column_type_sql(column),
            is_nullable=column.is_nullable and not column.is_primary,
            default=driver.default_sql(column.default),
            is_primary=column.is_primary,
            generation_strategy=column.generation_strategy,
        )


@dataclass
class TableIndex:
    name: str
    column_names: list[str]
    is_unique: bool = False


@dataclass
class TableForeignKey:
    name: str
    column_names: list[str]
    referenced_table_name: str
    referenced_column_names: list[str]
    on_delete: str = OnDelete.NO_ACTION.value

    @property
    def signature(self) -> tuple[Any, ...]:
        """Structural identity; some databases do not report constraint names."""
        return (
            tuple(self.column_names),
            self.referenced_table_name,
            tuple(self.referenced_column_names),
            self.on_delete.upper(),
        )

    @classmethod
    def from_metadata(cls, foreign_key: ForeignKeyMetadata) -> TableForeignKey:
        return cls(
            name=foreign_key.name,
            column_names=foreign_key.column_names,
            referenced_table_name=foreign_key.referenced_table_name,
            referenced_column_names=foreign_key.referenced_column_names,
            on_delete=(foreign_key.on_delete or OnDelete.NO_ACTION).value,
        )


@dataclass
class TableSchema:
    name: str
    columns: list[TableColumn] = field(default_factory=list)
    indices: list[TableIndex] = field(default_factory=list)
    foreign_keys: list[TableForeignKey] = field(default_factory=list)

    @property
    def primary_keys(self) -> list[str]:
        return [c.name for c in self.columns if c.is_primary]

    def find_column(self, name: str) -> TableColumn | None:
        return next((c for c in self.columns if c.name == name), None)

    def find_index(self, name: str) -> TableIndex | None:
        return next((i for i in self.indices if i.name == name), None)

    def find_foreign_key(self, foreign_key: TableForeignKey) -> TableForeignKey | None:
        return next((f for f in self.foreign_keys if f.signature == foreign_key.signature), None)

    def clone(self) -> TableSchema:
        return copy.deepcopy(self)

    @classmethod
    def from_metadata(
        cls, metadata: EntityMetadata, driver: Driver, with_foreign_keys: bool = True
    ) -> TableSchema:
        return cls(
            name=metadata.table_name,
            columns=[TableColumn.from_metadata(c, driver) for c in metadata.columns],
            indices=[
                TableIndex(i.name, i.column_names, i.is_unique) for i in metadata.indices
            ],
            foreign_keys=(
                [TableForeignKey.from_metadata(f) for f in metadata.foreign_keys]
                if with_foreign_keys
                else []
            ),
        )
