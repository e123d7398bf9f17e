"""Integration tests for entity listeners, subscribers and single-table inheritance."""

from __future__ import annotations

import pytest

from row_orm.core.enums import EventListenerType
from row_orm.metadata.schema import entity
from row_orm.subscriber.broadcaster import EntitySubscriber


class Article:
    id: int
    title: str
    slug: str

    def make_slug(self) -> None:
        self.slug = self.title.lower().replace(" ", "-")


class Comment:
    id: int
    body: str


class ArticleSubscriber:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def listen_to(self):
        return Article

    def before_insert(self, event) -> None:
        # listeners run before subscribers
        self.events.append(("before_insert", event.entity.slug))

    async def after_insert(self, event) -> None:
        self.events.append(("after_insert", event.entity.title))

    def after_update(self, event) -> None:
        self.events.append(("after_update", [c.property_name for c in event.updated_columns]))

    def before_remove(self, event) -> None:
        self.events.append(("before_remove", event.entity_id))

    def after_load(self, event) -> None:
        self.events.append(("after_load", event.entity.title))


class EverythingSubscriber:
    def __init__(self) -> None:
        self.inserted: list[str] = []

    def listen_to(self):
        return None

    def after_insert(self, event) -> None:
        self.inserted.append(event.metadata.name)


def article_entities():
    return (
        entity(Article)
        .generated("id")
        .column("title")
        .column("slug", nullable=True)
        .listener("make_slug", "before_insert")
        .listener("make_slug", EventListenerType.BEFORE_UPDATE),
        entity(Comment).generated("id").column("body"),
    )


def make(cls, **values):
    instance = cls()
    for key, value in values.items():
        setattr(instance, key, value)
    return instance


class TestSubscribers:
    @pytest.fixture
    async def setup(self, connect):
        articles, everything = ArticleSubscriber(), EverythingSubscriber()
        connection = await connect(*article_entities(), subscribers=[articles, everything])
        return connection, articles, everything

    def test_subscriber_protocol(self) -> None:
        assert isinstance(ArticleSubscriber(), EntitySubscriber)

    async def test_insert_events(self, setup) -> None:
        connection, articles, everything = setup
        article = make(Article, title="Hello World")
        await connection.manager.save([article, make(Comment, body="hi")])

        assert article.slug == "hello-world"
        assert articles.events == [("before_insert", "hello-world"), ("after_insert", "Hello World")]
        assert everything.inserted == ["Article", "Comment"]

    async def test_update_reports_changed_columns(self, setup) -> None:
        connection, articles, _ = setup
        article = make(Article, title="Hello")
        await connection.manager.save(article)
        articles.events.clear()

        article.title = "Hello Again"
        await connection.manager.save(article)

        assert articles.events == [("after_update", ["title", "slug"])]
        loaded = await connection.manager.find_one(Article, article.id)
        assert loaded.slug == "hello-again"

    async def test_remove_and_load_events(self, setup) -> None:
        connection, articles, _ = setup
        article = make(Article, title="Hello")
        await connection.manager.save(article)
        await connection.manager.find(Article)
        article_id = article.id
        await connection.manager.remove(article)

        assert ("after_load", "Hello") in articles.events
        assert ("before_remove", {"id": article_id}) in articles.events

    async def test_listeners_can_be_disabled_for_loads(self, setup) -> None:
        connection, articles, _ = setup
        await connection.manager.insert(Article, {"title": "raw", "slug": "raw"})
        articles.events.clear()

        await connection.create_query_builder(Article, "article").call_listeners(False).get_many()
        assert articles.events == []


class Content:
    id: int
    title: str


class Photo(Content):
    size: int


class Question(Content):
    answers: int


class TestSingleTableInheritance:
    @pytest.fixture
    async def connection(self, connect):
        connection = await connect(
            entity(Content).generated("id").column("title").inheritance(),
            entity(Photo).column("size"),
            entity(Question).column("answers").discriminator_value("q"),
        )
        await connection.manager.save(
            [
                make(Content, title="plain"),
                make(Photo, title="sunset", size=3),
                make(Question, title="why", answers=2),
            ]
        )
        return connection

    async def test_discriminator_is_stored(self, connection) -> None:
        rows = await connection.query('SELECT "type" FROM "content" ORDER BY "id"')
        assert [r["type"] for r in rows] == ["Content", "Photo", "q"]

    async def test_root_find_returns_concrete_types(self, connection) -> None:
        items = await connection.manager.find(Content, {"order": {"id": "ASC"}})
        assert [type(i) for i in items] == [Content, Photo, Question]
        assert items[1].size == 3
        assert items[2].answers == 2

    async def test_child_find_is_filtered(self, connection) -> None:
        photos = await connection.manager.find(Photo)
        assert [(p.title, p.size) for p in photos] == [("sunset", 3)]
        assert await connection.manager.count(Question) == 1
