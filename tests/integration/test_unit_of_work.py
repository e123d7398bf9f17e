"""Integration tests for save atomicity, dependency cycles and column value handling."""

from __future__ import annotations

import logging
import uuid

import pytest

from row_orm.core.exceptions import CircularRelationsError, QueryFailedError
from row_orm.metadata.schema import entity


def make(cls, **values):
    instance = cls()
    for key, value in values.items():
        setattr(instance, key, value)
    return instance


def _statements(caplog) -> list[str]:
    return [r.getMessage() for r in caplog.records if r.getMessage().startswith("query: ")]


class Article:
    id: int
    title: str


class Label:
    id: int
    name: str


class TestAtomicSave:
    @pytest.fixture
    async def connection(self, connect):
        return await connect(
            entity(Article)
            .generated("id")
            .column("title")
            .many_to_many("labels", Label, cascade=True, join_table=True),
            entity(Label).generated("id").column("name", unique=True),
        )

    async def test_failing_insert_rolls_back_the_whole_save(self, connection) -> None:
        await connection.manager.save(make(Label, name="dup"))

        article = make(Article, title="hello", labels=[make(Label, name="ok"), make(Label, name="dup")])
        with pytest.raises(QueryFailedError):
            await connection.manager.save(article)

        assert await connection.query('SELECT * FROM "article"') == []
        assert await connection.query('SELECT * FROM "article_labels_label"') == []
        rows = await connection.query('SELECT "name" FROM "label" ORDER BY "id"')
        assert [r["name"] for r in rows] == ["dup"]

    async def test_connection_is_usable_after_the_rollback(self, connection) -> None:
        await connection.manager.save(make(Label, name="dup"))
        with pytest.raises(QueryFailedError):
            await connection.manager.save(make(Label, name="dup"))

        await connection.manager.save(make(Article, title="after", labels=[make(Label, name="fresh")]))
        assert await connection.manager.count(Article) == 1
        assert await connection.manager.count(Label) == 2


class Person:
    id: int
    name: str


class Chicken:
    id: int
    name: str


class Egg:
    id: int
    name: str


class TestCircularRelations:
    async def test_nullable_cycle_is_completed_by_a_deferred_update(self, connect) -> None:
        connection = await connect(entity(Person).generated("id").column("name").many_to_one("partner", Person))
        first = make(Person, name="a")
        second = make(Person, name="b", partner=first)
        first.partner = second

        await connection.manager.save([first, second])

        rows = await connection.query('SELECT "id", "partner_id" FROM "person" ORDER BY "id"')
        partners = {r["id"]: r["partner_id"] for r in rows}
        assert partners == {first.id: second.id, second.id: first.id}

        loaded = await connection.manager.find_one(Person, first.id, {"relations": ["partner"]})
        assert loaded.partner.name == "b"

    async def test_non_nullable_cycle_raises_before_any_write(self, connect, caplog) -> None:
        connection = await connect(
            entity(Chicken).generated("id").column("name").many_to_one("egg", Egg, nullable=False),
            entity(Egg).generated("id").column("name").many_to_one("chicken", Chicken, nullable=False),
        )
        chicken = make(Chicken, name="c")
        egg = make(Egg, name="e", chicken=chicken)
        chicken.egg = egg

        caplog.set_level(logging.DEBUG, logger="row_orm")
        caplog.clear()
        with pytest.raises(CircularRelationsError) as error:
            await connection.manager.save([chicken, egg])

        assert sorted(error.value.entity_names) == ["Chicken", "Egg"]
        assert not any(s.startswith(("query: INSERT", "query: BEGIN")) for s in _statements(caplog))
        assert await connection.query('SELECT * FROM "chicken"') == []
        assert await connection.query('SELECT * FROM "egg"') == []


class CommaSeparated:
    def to(self, value):
        return None if value is None else ",".join(value)

    def from_(self, value):
        return None if value is None else value.split(",")


class Note:
    id: int
    tags: list


class Token:
    id: str
    name: str


class Membership:
    tenant: int
    code: str
    label: str


class TestColumnValues:
    async def test_transformer_is_applied_both_ways(self, connect) -> None:
        connection = await connect(
            entity(Note).generated("id").column("tags", "varchar", transformer=CommaSeparated())
        )
        note = make(Note, tags=["a", "b"])
        await connection.manager.save(note)

        assert await connection.query('SELECT "tags" FROM "note"') == [{"tags": "a,b"}]
        loaded = await connection.manager.find_one_or_fail(Note, note.id)
        assert loaded.tags == ["a", "b"]

    async def test_uuid_is_generated_at_insert(self, connect) -> None:
        connection = await connect(entity(Token).generated("id", "uuid").column("name"))
        token = make(Token, name="t")
        await connection.manager.save(token)

        assert str(uuid.UUID(token.id)) == token.id
        loaded = await connection.manager.find_one_or_fail(Token, token.id)
        assert loaded.name == "t"

    async def test_composite_primary_key_update_touches_only_its_row(self, connect) -> None:
        connection = await connect(entity(Membership).primary("tenant").primary("code").column("label"))
        first = make(Membership, tenant=1, code="a", label="first")
        second = make(Membership, tenant=1, code="b", label="second")
        await connection.manager.save([first, second])

        first.label = "changed"
        await connection.manager.save(first)

        rows = await connection.query('SELECT "code", "label" FROM "membership" ORDER BY "code"')
        assert rows == [{"code": "a", "label": "changed"}, {"code": "b", "label": "second"}]
        loaded = await connection.manager.find_one_or_fail(Membership, {"tenant": 1, "code": "b"})
        assert loaded.label == "second"
        assert connection.manager.get_id(loaded) == {"tenant": 1, "code": "b"}
