"""Unit tests for find options and their translation to select builders."""

from __future__ import annotations

import pytest

from row_orm.core.exceptions import QueryBuilderError
from row_orm.metadata.schema import entity
from row_orm.repository.find_options import (
    FindOptions,
    IsNull,
    LessThanOrEqual,
    Not,
    Raw,
    apply_find_options,
)


class Author:
    id: int
    name: str


class Post:
    id: int
    title: str
    views: int


@pytest.fixture
def connection(build_connection):
    return build_connection(
        entity(Author).generated("id").column("name"),
        entity(Post).generated("id").column("title").column("views").many_to_one("author", Author, eager=True),
    )


class TestFindOptionsFromValue:
    def test_none(self) -> None:
        assert FindOptions.from_value(None) == FindOptions()

    def test_options_mapping(self) -> None:
        options = FindOptions.from_value({"where": {"title": "a"}, "take": 5})
        assert options.where == {"title": "a"}
        assert options.take == 5

    def test_bare_where_mapping(self) -> None:
        options = FindOptions.from_value({"title": "a"})
        assert options.where == {"title": "a"}

    def test_instance_passes_through(self) -> None:
        options = FindOptions(skip=1)
        assert FindOptions.from_value(options) is options


class TestOperators:
    def test_not_null(self) -> None:
        assert Not(None).to_sql("post.title", "p") == "post.title IS NOT NULL"
        assert Not(None).parameters("p", lambda v: v) == {}

    def test_not_value(self) -> None:
        assert Not("a").to_sql("post.title", "p") == "post.title != :p"

    def test_is_null(self) -> None:
        assert IsNull().to_sql("post.title", "p") == "post.title IS NULL"

    def test_comparison_converts_value(self) -> None:
        assert LessThanOrEqual(True).parameters("p", int) == {"p": 1}

    def test_raw_callable(self) -> None:
        operator = Raw(lambda column: f"LOWER({column}) = :name", {"name": "a"})
        assert operator.to_sql("post.title", "p") == "LOWER(post.title) = :name"
        assert operator.parameters("p", lambda v: v) == {"name": "a"}


class TestApplyFindOptions:
    def _builder(self, connection, options: FindOptions):
        return apply_find_options(connection.create_query_builder(Post, "post"), options)

    def test_eager_relations_are_joined(self, connection) -> None:
        sql = self._builder(connection, FindOptions()).get_query()
        assert ' LEFT JOIN "author" "post__author" ON "post__author"."id" = "post"."author_id"' in sql

    def test_order_keys_are_prefixed_with_the_alias(self, connection) -> None:
        sql = self._builder(connection, FindOptions(order={"views": "DESC"})).get_query()
        assert sql.endswith(' ORDER BY "post"."views" DESC')

    def test_selection(self, connection) -> None:
        sql = self._builder(connection, FindOptions(select=["title"])).get_query()
        assert sql.startswith('SELECT "post"."title" AS "post_title", "post"."id" AS "post_id"')

    def test_pagination(self, connection) -> None:
        sql = self._builder(connection, FindOptions(skip=10, take=5)).get_query()
        assert sql.endswith(" LIMIT 5 OFFSET 10")

    @pytest.mark.parametrize(
        ("cache", "expected"),
        [
            (True, (True, None, None)),
            (False, (False, None, None)),
            (5000, (True, 5000, None)),
            ({"id": "posts", "milliseconds": 5000}, (True, 5000, "posts")),
            ({"milliseconds": 5000}, (True, 5000, None)),
        ],
    )
    def test_cache(self, connection, cache, expected) -> None:
        m = self._builder(connection, FindOptions(cache=cache)).expression_map
        assert (m.cache, m.cache_duration, m.cache_id) == expected

    def test_cache_is_an_options_key(self) -> None:
        assert FindOptions.from_value({"cache": True}) == FindOptions(cache=True)

    def test_plain_table_target_is_rejected(self, connection) -> None:
        builder = connection.create_query_builder().select("event.*").from_("event_log", "event")
        with pytest.raises(QueryBuilderError):
            apply_find_options(builder, FindOptions())
