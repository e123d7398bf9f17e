"""Integration tests for saving, removing and finding entities against SQLite."""

from __future__ import annotations

import logging

import pytest

from row_orm.core.exceptions import EntityNotFoundError
from row_orm.metadata.schema import entity
from row_orm.repository.find_options import FindOptions, In, Like, MoreThan


class Author:
    id: int
    name: str


class Post:
    id: int
    title: str
    views: int
    revision: int


class Category:
    id: int
    name: str


def blog():
    return (
        entity(Author).generated("id").column("name").one_to_many("posts", Post, lambda p: p.author),
        entity(Post)
        .generated("id")
        .column("title")
        .column("views", default=0)
        .version("revision")
        .many_to_one("author", Author, inverse_side=lambda a: a.posts, cascade=True)
        .many_to_many("categories", Category, cascade=True, join_table=True),
        entity(Category).generated("id").column("name"),
    )


def make(cls, **values):
    instance = cls()
    for key, value in values.items():
        setattr(instance, key, value)
    return instance


@pytest.fixture
async def connection(connect):
    return await connect(*blog())


def _statements(caplog) -> list[str]:
    return [r.getMessage() for r in caplog.records if r.getMessage().startswith("query: ")]


class TestSave:
    async def test_generated_values_are_written_back(self, connection) -> None:
        author = make(Author, name="ann")
        post = make(Post, title="hello", author=author)
        await connection.manager.save(post)

        assert author.id == 1
        assert post.id == 1
        assert post.views == 0
        assert post.revision == 1

    async def test_saved_graph_reloads(self, connection) -> None:
        post = make(Post, title="hello", author=make(Author, name="ann"))
        await connection.manager.save(post)

        loaded = await connection.manager.find_one(Post, post.id, {"relations": ["author"]})
        assert loaded.title == "hello"
        assert loaded.author.name == "ann"
        assert loaded.author.id == post.author.id

    async def test_unchanged_save_executes_nothing(self, connection, caplog) -> None:
        post = make(Post, title="hello", author=make(Author, name="ann"))
        await connection.manager.save(post)

        caplog.set_level(logging.DEBUG, logger="row_orm")
        caplog.clear()
        await connection.manager.save(post)

        statements = _statements(caplog)
        assert statements
        assert not any(s.startswith(("query: INSERT", "query: UPDATE", "query: BEGIN")) for s in statements)

    async def test_changed_column_is_updated(self, connection) -> None:
        post = make(Post, title="hello")
        await connection.manager.save(post)

        post.title = "changed"
        await connection.manager.save(post)

        assert post.revision == 2
        loaded = await connection.manager.find_one_or_fail(Post, post.id)
        assert loaded.title == "changed"
        assert loaded.revision == 2

    async def test_save_list_and_plain_mappings(self, connection) -> None:
        saved = await connection.manager.save([{"name": "a"}, {"name": "b"}], Category)
        assert [c.id for c in saved] == [1, 2]
        assert await connection.manager.count(Category) == 2

    async def test_repository_save(self, connection) -> None:
        repository = connection.get_repository(Category)
        category = repository.create({"name": "news"})
        await repository.save(category)
        assert repository.has_id(category)
        assert repository.get_id(category) == category.id

        repository.merge(category, {"name": "world"})
        await repository.save(category)
        assert (await repository.find_one_or_fail(category.id)).name == "world"


class TestManyToMany:
    async def test_junction_rows_follow_the_collection(self, connection) -> None:
        news, tech = make(Category, name="news"), make(Category, name="tech")
        post = make(Post, title="hello", categories=[news, tech])
        await connection.manager.save(post)

        loaded = await connection.manager.find_one(Post, post.id, {"relations": ["categories"]})
        assert sorted(c.name for c in loaded.categories) == ["news", "tech"]

        post.categories = [tech]
        await connection.manager.save(post)

        rows = await connection.query('SELECT "category_id" FROM "post_categories_category"')
        assert [r["category_id"] for r in rows] == [tech.id]
        assert await connection.manager.count(Category) == 2

    async def test_two_phase_pagination_keeps_whole_collections(self, connection) -> None:
        for index in range(3):
            categories = [make(Category, name=f"c{index}a"), make(Category, name=f"c{index}b")]
            await connection.manager.save(make(Post, title=f"p{index}", categories=categories))

        posts = await (
            connection.create_query_builder(Post, "post")
            .left_join_and_select("post.categories", "category")
            .order_by("post.id")
            .skip(1)
            .take(1)
            .get_many()
        )
        assert [p.title for p in posts] == ["p1"]
        assert sorted(c.name for c in posts[0].categories) == ["c1a", "c1b"]

    async def test_two_phase_pagination_orders_by_an_expression(self, connection) -> None:
        for title in ("a", "bbb", "cc"):
            await connection.manager.save(make(Post, title=title, categories=[make(Category, name=title)]))

        posts = await (
            connection.create_query_builder(Post, "post")
            .left_join_and_select("post.categories", "category")
            .order_by("LENGTH(post.title)", "DESC")
            .take(2)
            .get_many()
        )
        assert [p.title for p in posts] == ["bbb", "cc"]

    async def test_two_phase_pagination_orders_by_a_selection_alias(self, connection) -> None:
        for title in ("a", "bbb", "cc"):
            await connection.manager.save(make(Post, title=title, categories=[make(Category, name=title)]))

        posts = await (
            connection.create_query_builder(Post, "post")
            .left_join_and_select("post.categories", "category")
            .add_select("LENGTH(post.title)", "title_length")
            .order_by("title_length", "ASC")
            .take(2)
            .get_many()
        )
        assert [p.title for p in posts] == ["a", "cc"]

    async def test_relation_count(self, connection) -> None:
        await connection.manager.save(
            make(Post, title="hello", categories=[make(Category, name="a"), make(Category, name="b")])
        )
        await connection.manager.save(make(Post, title="empty", categories=[]))

        posts = await (
            connection.create_query_builder(Post, "post")
            .load_relation_count_and_map("post.category_count", "post.categories")
            .order_by("post.id")
            .get_many()
        )
        assert [p.category_count for p in posts] == [2, 0]


class TestOneToMany:
    async def test_children_are_attached_and_detached(self, connection) -> None:
        first, second = make(Post, title="first"), make(Post, title="second")
        await connection.manager.save([first, second])

        author = make(Author, name="ann", posts=[first, second])
        await connection.manager.save(author)

        loaded = await connection.manager.find_one(Author, author.id, {"relations": ["posts"]})
        assert sorted(p.title for p in loaded.posts) == ["first", "second"]

        author.posts = [second]
        await connection.manager.save(author)

        rows = await connection.query('SELECT "title" FROM "post" WHERE "author_id" IS NULL')
        assert [r["title"] for r in rows] == ["first"]


class TestRemove:
    async def test_remove_clears_the_id(self, connection) -> None:
        category = make(Category, name="news")
        await connection.manager.save(category)

        await connection.manager.remove(category)

        assert category.id is None
        assert await connection.manager.count(Category) == 0

    async def test_remove_cascades_through_many_to_many(self, connection) -> None:
        post = make(Post, title="hello", categories=[make(Category, name="news")])
        await connection.manager.save(post)

        await connection.manager.remove(post)

        assert await connection.query('SELECT * FROM "post_categories_category"') == []
        assert await connection.manager.count(Category) == 0


class TestFind:
    @pytest.fixture
    async def seeded(self, connection):
        await connection.manager.insert(
            Post,
            [
                {"title": "alpha", "views": 5},
                {"title": "beta", "views": 15},
                {"title": "gamma", "views": 25},
            ],
        )
        return connection

    async def test_find_with_where_and_order(self, seeded) -> None:
        posts = await seeded.manager.find(Post, {"where": {"views": MoreThan(10)}, "order": {"views": "DESC"}})
        assert [p.title for p in posts] == ["gamma", "beta"]

    async def test_find_with_order_pairs(self, seeded) -> None:
        posts = await seeded.manager.find(Post, FindOptions(order=[("title", "DESC")], take=2))
        assert [p.title for p in posts] == ["gamma", "beta"]

    async def test_bare_where_mapping(self, seeded) -> None:
        posts = await seeded.manager.find(Post, {"title": Like("%a")})
        assert sorted(p.title for p in posts) == ["alpha", "beta", "gamma"]

    async def test_find_and_count_ignores_pagination_for_the_count(self, seeded) -> None:
        posts, total = await seeded.manager.find_and_count(Post, {"order": {"id": "ASC"}, "skip": 1, "take": 1})
        assert [p.title for p in posts] == ["beta"]
        assert total == 3

    async def test_find_by_ids(self, seeded) -> None:
        posts = await seeded.manager.find_by_ids(Post, [1, 3])
        assert sorted(p.title for p in posts) == ["alpha", "gamma"]
        assert await seeded.manager.find_by_ids(Post, []) == []

    async def test_find_one_variants(self, seeded) -> None:
        assert (await seeded.manager.find_one(Post, 2)).title == "beta"
        assert (await seeded.manager.find_one(Post, {"title": "gamma"})).id == 3
        assert await seeded.manager.find_one(Post, 99) is None
        with pytest.raises(EntityNotFoundError):
            await seeded.manager.find_one_or_fail(Post, 99)

    async def test_count_with_in(self, seeded) -> None:
        assert await seeded.manager.count(Post, {"title": In(["alpha", "beta"])}) == 2

    async def test_update_and_delete(self, seeded) -> None:
        updated = await seeded.manager.update(Post, {"title": "alpha"}, {"views": 100})
        assert updated.affected == 1
        assert (await seeded.manager.find_one(Post, 1)).views == 100

        deleted = await seeded.manager.delete(Post, [2, 3])
        assert deleted.affected == 2
        assert await seeded.manager.count(Post) == 1

    async def test_clear(self, seeded) -> None:
        await seeded.get_repository(Post).clear()
        assert await seeded.manager.count(Post) == 0

    async def test_raw_query(self, seeded) -> None:
        rows = await seeded.query('SELECT "title" FROM "post" WHERE "views" > :views ORDER BY "id"', {"views": 10})
        assert rows == [{"title": "beta"}, {"title": "gamma"}]
