"""Unit tests for subject dependency ordering."""

from __future__ import annotations

import pytest

from row_orm.core.exceptions import CircularRelationsError
from row_orm.metadata.schema import entity
from row_orm.persistence.sorter import SubjectTopologicalSorter
from row_orm.persistence.subject import Subject


class Author:
    id: int


class Post:
    id: int


class Employee:
    id: int


class Left:
    id: int


class Right:
    id: int


def _subject(connection, target: type, **values) -> Subject:
    metadata = connection.get_metadata(target)
    instance = metadata.create()
    for key, value in values.items():
        setattr(instance, key, value)
    return Subject(metadata, instance, can_be_inserted=True)


@pytest.fixture
def connection(build_connection):
    return build_connection(
        entity(Author).generated("id"),
        entity(Post).generated("id").many_to_one("author", Author),
        entity(Employee).generated("id").many_to_one("manager", Employee),
    )


class TestSubjectTopologicalSorter:
    def test_referenced_rows_come_first(self, connection) -> None:
        author = _subject(connection, Author)
        post = _subject(connection, Post, author=author.entity)
        ordered, deferred = SubjectTopologicalSorter([post, author]).sort()
        assert ordered == [author, post]
        assert deferred == []

    def test_order_is_stable_without_dependencies(self, connection) -> None:
        subjects = [_subject(connection, Author) for _ in range(3)]
        ordered, _ = SubjectTopologicalSorter(subjects).sort()
        assert ordered == subjects

    def test_relations_outside_the_set_are_ignored(self, connection) -> None:
        post = _subject(connection, Post, author=connection.get_metadata(Author).create())
        ordered, deferred = SubjectTopologicalSorter([post]).sort()
        assert ordered == [post]
        assert deferred == []

    def test_self_reference_is_deferred(self, connection) -> None:
        employee = _subject(connection, Employee)
        employee.entity.manager = employee.entity
        ordered, deferred = SubjectTopologicalSorter([employee]).sort()
        assert ordered == [employee]
        assert deferred == [(employee, connection.get_metadata(Employee).get_relation("manager"))]

    def test_removes_put_referencing_rows_first(self, connection) -> None:
        author = _subject(connection, Author)
        post = _subject(connection, Post, author=author.entity)
        assert SubjectTopologicalSorter([author, post]).sort_removes() == [post, author]


class TestCycles:
    def test_nullable_cycle_is_broken_by_deferring(self, build_connection) -> None:
        connection = build_connection(
            entity(Left).generated("id").many_to_one("right", Right),
            entity(Right).generated("id").many_to_one("left", Left, nullable=False),
        )
        left = _subject(connection, Left)
        right = _subject(connection, Right, left=left.entity)
        left.entity.right = right.entity
        ordered, deferred = SubjectTopologicalSorter([left, right]).sort()
        assert ordered == [left, right]
        assert deferred == [(left, connection.get_metadata(Left).get_relation("right"))]

    def test_non_nullable_cycle_raises(self, build_connection) -> None:
        connection = build_connection(
            entity(Left).generated("id").many_to_one("right", Right, nullable=False),
            entity(Right).generated("id").many_to_one("left", Left, nullable=False),
        )
        left = _subject(connection, Left)
        right = _subject(connection, Right, left=left.entity)
        left.entity.right = right.entity
        with pytest.raises(CircularRelationsError):
            SubjectTopologicalSorter([left, right]).sort()

    def test_non_nullable_cycle_is_broken_for_removes(self, build_connection) -> None:
        connection = build_connection(
            entity(Left).generated("id").many_to_one("right", Right, nullable=False),
            entity(Right).generated("id").many_to_one("left", Left, nullable=False),
        )
        left = _subject(connection, Left)
        right = _subject(connection, Right, left=left.entity)
        left.entity.right = right.entity
        assert len(SubjectTopologicalSorter([left, right]).sort_removes()) == 2
