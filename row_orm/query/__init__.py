"""Query layer - fluent SQL builders."""

from __future__ import annotations

from row_orm.query.builder import QueryBuilder
from row_orm.query.delete import DeleteQueryBuilder, DeleteResult
from row_orm.query.expression import Brackets
from row_orm.query.insert import InsertQueryBuilder, InsertResult
from row_orm.query.select import SelectQueryBuilder
from row_orm.query.update import UpdateQueryBuilder, UpdateResult

__all__ = [
    "QueryBuilder",
    "SelectQueryBuilder",
    "InsertQueryBuilder",
    "UpdateQueryBuilder",
    "DeleteQueryBuilder",
    "InsertResult",
    "UpdateResult",
    "DeleteResult",
    "Brackets",
]
