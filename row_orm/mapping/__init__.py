"""Mapping layer - turn raw rows into entity graphs."""

from __future__ import annotations

from row_orm.mapping.transformer import RawSqlResultsToEntityTransformer

__all__ = ["RawSqlResultsToEntityTransformer"]
