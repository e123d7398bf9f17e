"""Repository layer - entity manager and per-entity repositories."""

from __future__ import annotations

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

__all__ = [
    "EntityManager",
    "Repository",
    "TreeRepository",
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
]
