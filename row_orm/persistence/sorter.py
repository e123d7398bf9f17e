"""Dependency ordering of subjects."""

from __future__ import annotations

from typing import TYPE_CHECKING

from row_orm.core.exceptions import CircularRelationsError

if TYPE_CHECKING:
    from row_orm.metadata.entity import RelationMetadata
    from row_orm.persistence.subject import Subject


class SubjectTopologicalSorter:
    """Orders subjects so referenced rows are written before the rows that reference them.

    An edge ``(dependency, dependent, relation)`` exists when ``dependent``
    owns a foreign key (``relation``) pointing at ``dependency`` and both are
    part of the sorted set. Ties are broken by traversal order, so the result
    is stable. Cycles are broken by deferring a nullable foreign key to an
    update after all inserts; a cycle made only of non-nullable keys raises
    CircularRelationsError.
    """

    def __init__(self, subjects: list[Subject]) -> None:
        self.subjects = subjects

    def _edges(self) -> list[tuple[Subject, Subject, RelationMetadata]]:
        by_entity = {id(s.entity): s for s in self.subjects}
        edges = []
        for subject in self.subjects:
            for relation in subject.metadata.relations_with_join_columns:
                related = subject.related_value(relation)
                dependency = by_entity.get(id(related)) if related is not None else None
                if dependency is not None:
                    edges.append((dependency, subject, relation))
        return edges

    def sort(self, strict: bool = True) -> tuple[list[Subject], list[tuple[Subject, RelationMetadata]]]:
        """Return the insert order and the ``(subject, relation)`` keys to defer.

        With ``strict=False`` non-nullable cycles are broken as well instead
        of raising; removal ordering uses this.
        """
        edges = self._edges()
        deferred: list[tuple[Subject, RelationMetadata]] = []
        # self references can never be satisfied by ordering
        for edge in list(edges):
            dependency, dependent, relation = edge
            if dependency is dependent:
                edges.remove(edge)
                if strict and not relation.is_nullable:
                    raise CircularRelationsError([dependent.metadata.name])
                deferred.append((dependent, relation))

        remaining = list(self.subjects)
        ordered: list[Subject] = []
        while remaining:
            pending = {id(dependent) for dependency, dependent, _ in edges}
            ready = next((s for s in remaining if id(s) not in pending), None)
            if ready is None:
                edge = self._breakable_edge(edges, remaining, strict)
                if edge is None:
                    raise CircularRelationsError([s.metadata.name for s in remaining])
                edges.remove(edge)
                deferred.append((edge[1], edge[2]))
                continue
            ordered.append(ready)
            remaining.remove(ready)
            edges = [e for e in edges if e[0] is not ready]
        return ordered, deferred

    @staticmethod
    def _breakable_edge(
        edges: list[tuple[Subject, Subject, RelationMetadata]], remaining: list[Subject], strict: bool
    ) -> tuple[Subject, Subject, RelationMetadata] | None:
        for subject in remaining:
            for edge in edges:
                if edge[1] is subject and (edge[2].is_nullable or not strict):
                    return edge
        return None

    def sort_removes(self) -> list[Subject]:
        """Referencing rows first, so no foreign key points at a deleted row."""
        ordered, _ = self.sort(strict=False)
        return list(reversed(ordered))
