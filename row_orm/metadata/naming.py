"""Naming strategies.

A naming strategy maps entity and property names to table, column, index and
constraint names. It is a pure function of its inputs.
"""

from __future__ import annotations

import hashlib
import re
from typing import Protocol, runtime_checkable

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def snake_case(name: str) -> str:
    """Convert ``CamelCase`` or ``mixedCase`` to ``snake_case``."""
    return _CAMEL_BOUNDARY.sub("_", name).replace("-", "_").lower()


def _hash_name(prefix: str, table_name: str, column_names: list[str]) -> str:
    key = f"{table_name}_{'_'.join(sorted(column_names))}"
    return prefix + hashlib.sha1(key.encode("utf-8")).hexdigest()[:26]


@runtime_checkable
class NamingStrategy(Protocol):
    """Naming strategy protocol."""

    def table_name(self, class_name: str, custom_name: str | None) -> str: ...

    def column_name(
        self, property_name: str, custom_name: str | None, embedded_prefixes: list[str]
    ) -> str: ...

    def relation_name(self, property_name: str) -> str: ...

    def join_column_name(self, relation_name: str, referenced_column_name: str) -> str: ...

    def join_table_name(
        self,
        first_table_name: str,
        second_table_name: str,
        first_property_name: str,
        second_property_name: str | None,
    ) -> str: ...

    def join_table_column_name(
        self, table_name: str, property_name: str, column_name: str | None = None
    ) -> str: ...

    def join_table_inverse_column_name(
        self, table_name: str, property_name: str, column_name: str | None = None
    ) -> str: ...

    def closure_junction_table_name(self, table_name: str) -> str: ...

    def primary_key_name(self, table_name: str, column_names: list[str]) -> str: ...

    def index_name(self, table_name: str, column_names: list[str]) -> str: ...

    def unique_constraint_name(self, table_name: str, column_names: list[str]) -> str: ...

    def foreign_key_name(self, table_name: str, column_names: list[str]) -> str: ...

    def discriminator_column_name(self) -> str: ...

    def materialized_path_column_name(self) -> str: ...


class DefaultNamingStrategy:
    """snake_case naming for tables and columns, hashed constraint names."""

    def table_name(self, class_name: str, custom_name: str | None) -> str:
        return custom_name if custom_name else snake_case(class_name)

    def column_name(
        self, property_name: str, custom_name: str | None, embedded_prefixes: list[str]
    ) -> str:
        name = custom_name if custom_name else property_name
        if embedded_prefixes:
            return "_".join(embedded_prefixes) + "_" + name
        return name

    def relation_name(self, property_name: str) -> str:
        return property_name

    def join_column_name(self, relation_name: str, referenced_column_name: str) -> str:
        return f"{relation_name}_{referenced_column_name}"

    def join_table_name(
        self,
        first_table_name: str,
        second_table_name: str,
        first_property_name: str,
        second_property_name: str | None,
    ) -> str:
        return f"{first_table_name}_{first_property_name.replace('.', '_')}_{second_table_name}"

    def join_table_column_name(
        self, table_name: str, property_name: str, column_name: str | None = None
    ) -> str:
        return f"{table_name}_{column_name or property_name}"

    def join_table_inverse_column_name(
        self, table_name: str, property_name: str, column_name: str | None = None
    ) -> str:
        return self.join_table_column_name(table_name, property_name, column_name)

    def closure_junction_table_name(self, table_name: str) -> str:
        return f"{table_name}_closure"

    def primary_key_name(self, table_name: str, column_names: list[str]) -> str:
        return _hash_name("PK_", table_name, column_names)

    def index_name(self, table_name: str, column_names: list[str]) -> str:
        return _hash_name("IDX_", table_name, column_names)

    def unique_constraint_name(self, table_name: str, column_names: list[str]) -> str:
        return _hash_name("UQ_", table_name, column_names)

    def foreign_key_name(self, table_name: str, column_names: list[str]) -> str:
        return _hash_name("FK_", table_name, column_names)

    def discriminator_column_name(self) -> str:
        return "type"

    def materialized_path_column_name(self) -> str:
        return "mpath"
