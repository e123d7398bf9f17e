"""Persistence layer - unit of work for save and remove."""

from __future__ import annotations

from row_orm.persistence.builder import SubjectBuilder
from row_orm.persistence.executor import SubjectExecutor
from row_orm.persistence.loader import SubjectDatabaseEntityLoader
from row_orm.persistence.sorter import SubjectTopologicalSorter
from row_orm.persistence.subject import JunctionChange, OneToManyChange, Subject

__all__ = [
    "Subject",
    "JunctionChange",
    "OneToManyChange",
    "SubjectBuilder",
    "SubjectDatabaseEntityLoader",
    "SubjectTopologicalSorter",
    "SubjectExecutor",
]
