"""Unit tests for SQL generated by the query builders."""

from __future__ import annotations

import pytest

from row_orm.core.exceptions import (
    AliasAlreadyExistsError,
    EntityPropertyNotFoundError,
    InsertValuesMissingError,
    MainAliasNotSetError,
    ParameterMissingError,
    QueryBuilderError,
    UpdateValuesMissingError,
)
from row_orm.metadata.schema import entity
from row_orm.query.expression import Brackets
from row_orm.repository.find_options import Between, In, Like, MoreThan, Not

# --- Test models ---


class Author:
    id: int
    name: str


class Post:
    id: int
    title: str
    views: int


class Category:
    id: int
    name: str


class Tag:
    id: int
    label: str


class Content:
    id: int
    title: str


class Photo(Content):
    size: int


@pytest.fixture
def connection(build_connection):
    return build_connection(
        entity(Author).generated("id").column("name").one_to_many("posts", Post, inverse_side="author"),
        entity(Post)
        .generated("id")
        .column("title")
        .column("views", default=0)
        .many_to_one("author", Author, inverse_side="posts")
        .many_to_many("categories", Category, inverse_side="posts", join_table=True),
        entity(Category).generated("id").column("name").many_to_many("posts", Post, inverse_side="categories"),
        entity(Tag, order_by={"label": "ASC"}).generated("id").column("label"),
        entity(Content).generated("id").column("title").inheritance(),
        entity(Photo).column("size"),
    )


class TestSelect:
    def test_selects_every_column_with_aliased_names(self, connection) -> None:
        sql = connection.create_query_builder(Category, "category").get_query()
        assert sql == 'SELECT "category"."id" AS "category_id", "category"."name" AS "category_name" FROM "category" "category"'

    def test_default_entity_ordering(self, connection) -> None:
        sql = connection.create_query_builder(Tag, "tag").get_query()
        assert sql.endswith(' ORDER BY "tag"."label" ASC')

    def test_explicit_ordering_replaces_default(self, connection) -> None:
        sql = connection.create_query_builder(Tag, "tag").order_by("tag.id", "DESC").get_query()
        assert sql.endswith(' ORDER BY "tag"."id" DESC')

    def test_order_by_mapping_and_pairs_are_equivalent(self, connection) -> None:
        from_mapping = (
            connection.create_query_builder(Post, "post").order_by({"post.views": "DESC", "post.id": "ASC"}).get_query()
        )
        from_pairs = (
            connection.create_query_builder(Post, "post")
            .order_by([("post.views", "DESC"), ("post.id", "ASC")])
            .get_query()
        )
        assert from_mapping == from_pairs
        assert from_mapping.endswith(' ORDER BY "post"."views" DESC, "post"."id" ASC')

    def test_nulls_ordering(self, connection) -> None:
        sql = connection.create_query_builder(Post, "post").order_by({"post.title": ("ASC", "LAST")}).get_query()
        assert sql.endswith(' ORDER BY "post"."title" ASC NULLS LAST')

    def test_invalid_order(self, connection) -> None:
        with pytest.raises(QueryBuilderError):
            connection.create_query_builder(Post, "post").order_by("post.id", "SIDEWAYS")

    def test_property_paths_replaced_in_where(self, connection) -> None:
        sql = (
            connection.create_query_builder(Post, "post")
            .where("post.title = :title", {"title": "Hello"})
            .and_where("post.author.id = :author")
            .get_query()
        )
        assert ' WHERE "post"."title" = :title AND "post"."author_id" = :author' in sql

    def test_string_literals_untouched(self, connection) -> None:
        sql = connection.create_query_builder(Post, "post").where("post.title = 'post.title'").get_query()
        assert """WHERE "post"."title" = 'post.title'""" in sql

    def test_mapping_where(self, connection) -> None:
        builder = connection.create_query_builder(Post, "post").where({"title": "Hello", "views": MoreThan(10)})
        assert ' WHERE ("post"."title" = :orm_param_0 AND "post"."views" > :orm_param_1)' in builder.get_query()
        assert builder.get_parameters() == {"orm_param_0": "Hello", "orm_param_1": 10}

    def test_mapping_where_none_is_null(self, connection) -> None:
        sql = connection.create_query_builder(Post, "post").where({"title": None}).get_query()
        assert ' WHERE ("post"."title" IS NULL)' in sql

    def test_mapping_where_by_related_id(self, connection) -> None:
        builder = connection.create_query_builder(Post, "post").where({"author": 3})
        assert ' WHERE ("post"."author_id" = :orm_param_0)' in builder.get_query()
        assert builder.get_parameters() == {"orm_param_0": 3}

    def test_list_of_mappings_is_ored(self, connection) -> None:
        sql = connection.create_query_builder(Post, "post").where([{"title": "a"}, {"title": "b"}]).get_query()
        assert ' WHERE (("post"."title" = :orm_param_0) OR ("post"."title" = :orm_param_1))' in sql

    def test_unknown_property_in_mapping(self, connection) -> None:
        with pytest.raises(EntityPropertyNotFoundError):
            connection.create_query_builder(Post, "post").where({"subtitle": "x"})

    def test_brackets(self, connection) -> None:
        sql = (
            connection.create_query_builder(Post, "post")
            .where("post.views > :views", {"views": 1})
            .and_where(
                Brackets(
                    lambda qb: qb.where("post.title = :a", {"a": "x"}).or_where("post.title = :b", {"b": "y"})
                )
            )
            .get_query()
        )
        assert ' WHERE "post"."views" > :views AND ("post"."title" = :a OR "post"."title" = :b)' in sql

    def test_operators(self, connection) -> None:
        builder = connection.create_query_builder(Post, "post").where(
            {"views": Between(1, 5), "title": Not(Like("a%"))}
        )
        sql = builder.get_query()
        assert '"post"."views" BETWEEN :orm_param_0_from AND :orm_param_0_to' in sql
        assert 'NOT("post"."title" LIKE :orm_param_2)' in sql
        assert builder.get_parameters() == {"orm_param_0_from": 1, "orm_param_0_to": 5, "orm_param_2": "a%"}

    def test_in_operator_expands_parameters(self, connection) -> None:
        builder = connection.create_query_builder(Post, "post").where({"id": In([1, 2])})
        sql, parameters = builder.get_query_and_parameters()
        assert '"post"."id" IN (:orm_param_0_0, :orm_param_0_1)' in sql
        assert parameters == {"orm_param_0_0": 1, "orm_param_0_1": 2}

    def test_where_in_ids(self, connection) -> None:
        sql, parameters = connection.create_query_builder(Post, "post").where_in_ids([4, 5]).get_query_and_parameters()
        assert '"post"."id" IN (:orm_ids_0_0, :orm_ids_0_1)' in sql
        assert parameters == {"orm_ids_0_0": 4, "orm_ids_0_1": 5}

    def test_unbound_parameter(self, connection) -> None:
        builder = connection.create_query_builder(Post, "post").where("post.id = :id")
        with pytest.raises(ParameterMissingError):
            builder.get_query_and_parameters()

    def test_invalid_parameter_name(self, connection) -> None:
        with pytest.raises(QueryBuilderError):
            connection.create_query_builder(Post, "post").set_parameter("bad name", 1)

    def test_limit_and_offset(self, connection) -> None:
        sql = connection.create_query_builder(Post, "post").take(10).skip(20).get_query()
        assert sql.endswith(" LIMIT 10 OFFSET 20")

    def test_offset_without_limit(self, connection) -> None:
        sql = connection.create_query_builder(Post, "post").offset(5).get_query()
        assert sql.endswith(" LIMIT -1 OFFSET 5")

    def test_negative_pagination(self, connection) -> None:
        with pytest.raises(QueryBuilderError):
            connection.create_query_builder(Post, "post").take(-1)

    def test_many_to_one_join(self, connection) -> None:
        sql = connection.create_query_builder(Post, "post").left_join_and_select("post.author", "author").get_query()
        assert ' LEFT JOIN "author" "author" ON "author"."id" = "post"."author_id"' in sql
        assert '"author"."name" AS "author_name"' in sql

    def test_one_to_many_join(self, connection) -> None:
        sql = connection.create_query_builder(Author, "author").inner_join("author.posts", "post").get_query()
        assert ' INNER JOIN "post" "post" ON "post"."author_id" = "author"."id"' in sql
        assert '"post"."title"' not in sql

    def test_many_to_many_join_goes_through_junction(self, connection) -> None:
        sql = connection.create_query_builder(Post, "post").left_join("post.categories", "category").get_query()
        assert (
            ' LEFT JOIN "post_categories_category" "post_category" ON "post_category"."post_id" = "post"."id"'
            ' LEFT JOIN "category" "category" ON "category"."id" = "post_category"."category_id"'
        ) in sql

    def test_join_with_extra_condition(self, connection) -> None:
        sql = (
            connection.create_query_builder(Post, "post")
            .left_join("post.author", "author", "author.name = :name", {"name": "x"})
            .get_query()
        )
        assert 'ON "author"."id" = "post"."author_id" AND ("author"."name" = :name)' in sql

    def test_duplicate_alias(self, connection) -> None:
        with pytest.raises(AliasAlreadyExistsError):
            connection.create_query_builder(Post, "post").left_join("post.author", "post")

    def test_partial_selection_keeps_primary_columns(self, connection) -> None:
        sql = connection.create_query_builder(Post, "post").select(["post.title"]).get_query()
        assert sql.startswith('SELECT "post"."title" AS "post_title", "post"."id" AS "post_id" FROM')

    def test_raw_selection_with_alias(self, connection) -> None:
        sql = (
            connection.create_query_builder(Post, "post")
            .select("COUNT(post.id)", "total")
            .group_by("post.author.id")
            .get_query()
        )
        assert sql == 'SELECT COUNT("post"."id") AS "total" FROM "post" "post" GROUP BY "post"."author_id"'

    def test_single_table_child_filters_by_discriminator(self, connection) -> None:
        sql = connection.create_query_builder(Photo, "photo").get_query()
        assert sql.startswith('SELECT "photo"."id" AS "photo_id"')
        assert 'FROM "content" "photo" WHERE "photo"."type" IN (\'Photo\')' in sql

    def test_root_of_single_table_is_not_filtered(self, connection) -> None:
        sql = connection.create_query_builder(Content, "content").get_query()
        assert "WHERE" not in sql

    def test_main_alias_required(self, connection) -> None:
        with pytest.raises(MainAliasNotSetError):
            connection.create_query_builder().get_query()

    def test_plain_table_alias(self, connection) -> None:
        alias = connection.create_query_builder().from_("event_log", "event").expression_map.require_main_alias()
        assert alias.require_table_name() == "event_log"
        with pytest.raises(QueryBuilderError):
            alias.require_metadata()

    @pytest.mark.parametrize(
        ("args", "expected"),
        [
            ((), (True, None, None)),
            ((False,), (False, None, None)),
            ((60000,), (True, 60000, None)),
            (("posts",), (True, None, "posts")),
            (("posts", 60000), (True, 60000, "posts")),
            ((True, 500), (True, 500, None)),
        ],
    )
    def test_cache_options(self, connection, args, expected) -> None:
        m = connection.create_query_builder(Post, "post").cache(*args).expression_map
        assert (m.cache, m.cache_duration, m.cache_id) == expected

    def test_cache_options_survive_clone(self, connection) -> None:
        m = connection.create_query_builder(Post, "post").cache("posts", 60000).clone().expression_map
        assert (m.cache, m.cache_duration, m.cache_id) == (True, 60000, "posts")


class TestInsert:
    def test_single_row(self, connection) -> None:
        sql, parameters = (
            connection.create_query_builder().insert().into(Post).values({"title": "a"}).get_query_and_parameters()
        )
        assert sql == 'INSERT INTO "post"("title") VALUES (:i0_0)'
        assert parameters == {"i0_0": "a"}

    def test_missing_value_in_multi_row_insert(self, connection) -> None:
        sql, parameters = (
            connection.create_query_builder()
            .insert()
            .into(Post)
            .values([{"title": "a"}, {"title": "b", "views": 3}])
            .get_query_and_parameters()
        )
        assert sql == 'INSERT INTO "post"("title", "views") VALUES (:i0_0, NULL), (:i1_0, :i1_1)'
        assert parameters == {"i0_0": "a", "i1_0": "b", "i1_1": 3}

    def test_relation_value_binds_join_column(self, connection) -> None:
        author = connection.get_metadata(Author).create()
        author.id = 7
        sql, parameters = (
            connection.create_query_builder()
            .insert()
            .into(Post)
            .values({"title": "a", "author": author})
            .get_query_and_parameters()
        )
        assert sql == 'INSERT INTO "post"("title", "author_id") VALUES (:i0_0, :i0_1)'
        assert parameters == {"i0_0": "a", "i0_1": 7}

    def test_discriminator_written(self, connection) -> None:
        sql, parameters = (
            connection.create_query_builder().insert().into(Photo).values({"title": "a", "size": 3})
        ).get_query_and_parameters()
        assert '"type"' in sql
        assert "Photo" in parameters.values()

    def test_empty_values(self, connection) -> None:
        with pytest.raises(InsertValuesMissingError):
            connection.create_query_builder().insert().into(Post).values([]).get_query()

    def test_default_values(self, connection) -> None:
        sql = connection.create_query_builder().insert().into(Tag).values({}).get_query()
        assert sql == 'INSERT INTO "tag" DEFAULT VALUES'


class TestUpdateAndDelete:
    def test_update(self, connection) -> None:
        sql, parameters = (
            connection.create_query_builder()
            .update(Post, {"title": "new"})
            .where("post.id = :id", {"id": 1})
            .get_query_and_parameters()
        )
        assert sql == 'UPDATE "post" SET "title" = :upd_0 WHERE "id" = :id'
        assert parameters == {"upd_0": "new", "id": 1}

    def test_update_with_raw_expression(self, connection) -> None:
        sql = connection.create_query_builder().update(Post, {"views": lambda: "views + 1"}).get_query()
        assert sql == 'UPDATE "post" SET "views" = views + 1'

    def test_update_without_values(self, connection) -> None:
        with pytest.raises(UpdateValuesMissingError):
            connection.create_query_builder().update(Post, {}).get_query()

    def test_delete(self, connection) -> None:
        sql = (
            connection.create_query_builder()
            .delete()
            .from_(Post)
            .where("post.author.id = :author", {"author": 2})
            .get_query()
        )
        assert sql == 'DELETE FROM "post" WHERE "author_id" = :author'
