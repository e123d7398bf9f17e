"""Unit tests for entity metadata building and validation."""

from __future__ import annotations

import pytest

from row_orm.core.enums import ColumnMode, InheritanceKind, OnDelete
from row_orm.core.exceptions import (
    AmbiguousRelationOwnershipError,
    ColumnTypeUndefinedError,
    DuplicateTableNameError,
    IncrementColumnError,
    JoinAnnotationPlacementError,
    MetadataNotResolvedError,
    MissingInversePropertyError,
    MissingJoinAnnotationError,
    MissingNamingStrategyError,
    MissingPrimaryColumnError,
)
from row_orm.metadata.builder import EntityMetadataBuilder
from row_orm.metadata.entity import UNSET
from row_orm.metadata.schema import build_storage, embeddable, entity

# --- Test models ---


class Author:
    id: int
    name: str


class Post:
    id: int
    title: str
    views: int
    published: bool


class Category:
    id: int
    name: str


class Profile:
    id: int
    bio: str


class Person:
    id: int
    name: str


class Address:
    city: str
    zip_code: str


class Customer:
    id: int


class Content:
    id: int
    title: str


class Photo(Content):
    size: int


class Question(Content):
    answers: int


class Node:
    id: int
    name: str


class Mystery:
    id: int


def blog_entities() -> tuple:
    return (
        entity(Author).generated("id").column("name").one_to_many("posts", Post, inverse_side="author"),
        entity(Post)
        .generated("id")
        .column("title")
        .column("views", default=0)
        .column("published", default=False)
        .many_to_one("author", Author, inverse_side="posts", on_delete="CASCADE")
        .many_to_many("categories", Category, inverse_side=lambda category: category.posts, join_table=True)
        .index(["title"]),
        entity(Category).generated("id").column("name").many_to_many("posts", Post, inverse_side="categories"),
    )


class TestColumns:
    def test_types_inferred_from_annotations(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        post = connection.get_metadata(Post)
        assert post.find_column_with_property_path("title").type == "varchar"
        assert post.find_column_with_property_path("views").type == "integer"
        assert post.find_column_with_property_path("published").type == "boolean"

    def test_generated_primary(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        post = connection.get_metadata(Post)
        assert [c.property_path for c in post.primary_columns] == ["id"]
        assert post.increment_column is post.primary_columns[0]

    def test_table_name_from_class(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        assert connection.get_metadata(Post).table_name == "post"
        assert connection.get_metadata("post") is connection.get_metadata(Post)

    def test_explicit_index(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        post = connection.get_metadata(Post)
        index = next(i for i in post.indices if i.column_names == ["title"])
        assert index.name.startswith("IDX_")
        assert not index.is_unique

    def test_entity_ids(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        post = connection.get_metadata(Post)
        first, second, unsaved = post.create(), post.create(), post.create()
        first.id = second.id = 3
        assert post.get_id(first) == 3
        assert post.ensure_id_map(3) == {"id": 3}
        assert post.compare_entities(first, second)
        assert not post.compare_entities(first, unsaved)
        assert not post.has_id(unsaved)

    def test_unique_column_gets_unique_index(self, build_connection) -> None:
        connection = build_connection(entity(Person).generated("id").column("name", unique=True))
        person = connection.get_metadata(Person)
        assert [(i.column_names, i.is_unique) for i in person.indices] == [(["name"], True)]


class TestRelations:
    def test_many_to_one_join_column(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        post = connection.get_metadata(Post)
        author = connection.get_metadata(Author)
        relation = post.get_relation("author")
        assert relation.is_owning
        assert relation.inverse_relation is author.get_relation("posts")
        [join_column] = relation.join_columns
        assert join_column.database_name == "author_id"
        assert join_column.property_name == "author"
        assert join_column.referenced_column is author.primary_columns[0]
        assert join_column.is_nullable

    def test_many_to_one_foreign_key(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        post = connection.get_metadata(Post)
        [foreign_key] = post.foreign_keys
        assert foreign_key.column_names == ["author_id"]
        assert foreign_key.referenced_table_name == "author"
        assert foreign_key.on_delete is OnDelete.CASCADE
        assert foreign_key.name.startswith("FK_")

    def test_one_to_many_shares_owner_join_columns(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        author = connection.get_metadata(Author)
        post = connection.get_metadata(Post)
        posts = author.get_relation("posts")
        assert not posts.is_owning
        assert posts.join_columns == post.get_relation("author").join_columns

    def test_many_to_many_junction(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        post = connection.get_metadata(Post)
        relation = post.get_relation("categories")
        junction = relation.junction_entity_metadata
        assert junction is not None
        assert junction.table_name == "post_categories_category"
        assert junction.target is None
        assert junction in connection.entity_metadatas
        assert [c.database_name for c in relation.join_columns] == ["post_id"]
        assert [c.database_name for c in relation.inverse_join_columns] == ["category_id"]
        assert all(c.is_primary and c.mode is ColumnMode.JUNCTION for c in junction.columns)

    def test_many_to_many_inverse_side_swaps_columns(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        owner = connection.get_metadata(Post).get_relation("categories")
        inverse = connection.get_metadata(Category).get_relation("posts")
        assert not inverse.is_owning
        assert inverse.inverse_relation is owner
        assert inverse.junction_entity_metadata is owner.junction_entity_metadata
        assert inverse.join_columns == owner.inverse_join_columns
        assert inverse.inverse_join_columns == owner.join_columns

    def test_required_references(self, build_connection) -> None:
        connection = build_connection(*blog_entities())
        post = connection.get_metadata(Post)
        author = post.get_relation("author")
        categories = post.get_relation("categories")
        [join_column] = author.join_columns
        assert join_column.require_referenced_column() is join_column.referenced_column
        assert categories.require_junction_metadata() is categories.junction_entity_metadata
        assert author.require_inverse_relation() is author.inverse_relation

    def test_missing_references_raise(self, build_connection) -> None:
        connection = build_connection(
            *blog_entities(),
            entity(Person).generated("id").column("name").many_to_one("author", Author),
        )
        post = connection.get_metadata(Post)
        with pytest.raises(MetadataNotResolvedError, match="referenced column"):
            post.primary_columns[0].require_referenced_column()
        with pytest.raises(MetadataNotResolvedError, match="junction table"):
            post.get_relation("author").require_junction_metadata()
        with pytest.raises(MetadataNotResolvedError, match="inverse relation"):
            connection.get_metadata(Person).get_relation("author").require_inverse_relation()

    def test_one_to_one_owner_gets_unique_index(self, build_connection) -> None:
        connection = build_connection(
            entity(Person).generated("id").column("name").one_to_one("profile", Profile, join_column=True),
            entity(Profile).generated("id").column("bio"),
        )
        person = connection.get_metadata(Person)
        assert any(i.is_unique and i.column_names == ["profile_id"] for i in person.indices)

    def test_custom_join_column_name(self, build_connection) -> None:
        connection = build_connection(
            entity(Post).generated("id").column("title").many_to_one("author", Author, join_column={"name": "writer"}),
            entity(Author).generated("id").column("name"),
        )
        [join_column] = connection.get_metadata(Post).get_relation("author").join_columns
        assert join_column.database_name == "writer"


class TestEmbeddeds:
    def test_default_prefix_is_property_name(self, build_connection) -> None:
        connection = build_connection(
            embeddable(Address).column("city").column("zip_code"),
            entity(Customer).generated("id").embedded("address", Address),
        )
        customer = connection.get_metadata(Customer)
        column = customer.find_column_with_property_path("address.city")
        assert column is not None
        assert column.database_name == "address_city"

    def test_empty_prefix(self, build_connection) -> None:
        connection = build_connection(
            embeddable(Address).column("city").column("zip_code"),
            entity(Customer).generated("id").embedded("address", Address, prefix=""),
        )
        customer = connection.get_metadata(Customer)
        assert customer.find_column_with_property_path("address.city").database_name == "city"

    def test_literal_prefix(self, build_connection) -> None:
        connection = build_connection(
            embeddable(Address).column("city").column("zip_code"),
            entity(Customer).generated("id").embedded("address", Address, prefix="home_"),
        )
        customer = connection.get_metadata(Customer)
        assert customer.find_column_with_property_path("address.zip_code").database_name == "home_zip_code"

    def test_embeddable_is_not_an_entity(self, build_connection) -> None:
        connection = build_connection(
            embeddable(Address).column("city").column("zip_code"),
            entity(Customer).generated("id").embedded("address", Address),
        )
        assert not connection.has_metadata(Address)

    def test_embedded_values_read_through_the_owner(self, build_connection) -> None:
        connection = build_connection(
            embeddable(Address).column("city").column("zip_code"),
            entity(Customer).generated("id").embedded("address", Address),
        )
        customer_metadata = connection.get_metadata(Customer)
        column = customer_metadata.find_column_with_property_path("address.city")
        customer = customer_metadata.create()
        assert column.get_entity_value(customer) is UNSET
        column.set_entity_value(customer, "Oslo")
        assert isinstance(customer.address, Address)
        assert column.get_entity_value(customer) == "Oslo"


class TestInheritance:
    def entities(self) -> tuple:
        return (
            entity(Content).generated("id").column("title").inheritance(),
            entity(Photo).column("size"),
            entity(Question).column("answers").discriminator_value("q"),
        )

    def test_children_share_root_table(self, build_connection) -> None:
        connection = build_connection(*self.entities())
        assert connection.get_metadata(Photo).table_name == "content"
        assert connection.get_metadata(Question).table_name == "content"

    def test_discriminator_column_and_values(self, build_connection) -> None:
        connection = build_connection(*self.entities())
        content = connection.get_metadata(Content)
        assert content.discriminator_column is not None
        assert content.discriminator_column.database_name == "type"
        assert content.discriminator_values == ["Content", "Photo", "q"]
        assert connection.get_metadata(Photo).discriminator_values == ["Photo"]

    def test_child_columns_flattened_as_nullable(self, build_connection) -> None:
        connection = build_connection(*self.entities())
        content = connection.get_metadata(Content)
        size = content.find_column_with_database_name("size")
        assert size is not None and size.is_nullable
        assert content.find_column_with_database_name("answers") is not None

    def test_find_inheritance_metadata(self, build_connection) -> None:
        connection = build_connection(*self.entities())
        content = connection.get_metadata(Content)
        assert content.find_inheritance_metadata("q") is connection.get_metadata(Question)


class TestTrees:
    def test_closure_table(self, build_connection) -> None:
        connection = build_connection(
            entity(Node)
            .generated("id")
            .column("name")
            .tree("closure-table")
            .tree_parent("parent", inverse_side="children")
            .tree_children("children", inverse_side="parent")
        )
        node = connection.get_metadata(Node)
        assert node.is_tree
        assert node.inheritance is InheritanceKind.CLOSURE_TABLE
        closure = node.closure_junction_table
        assert closure is not None
        assert closure.table_name == "node_closure"
        assert [c.database_name for c in closure.columns] == ["ancestor_id", "descendant_id"]
        assert all(c.referenced_column is node.primary_columns[0] for c in closure.columns)
        assert node.tree_parent_relation is node.get_relation("parent")

    def test_materialized_path(self, build_connection) -> None:
        connection = build_connection(
            entity(Node)
            .generated("id")
            .column("name")
            .tree("materialized-path")
            .tree_parent("parent", inverse_side="children")
            .tree_children("children", inverse_side="parent")
        )
        node = connection.get_metadata(Node)
        column = node.materialized_path_column
        assert column is not None
        assert column.database_name == "mpath"
        assert column.is_virtual_property
        assert node.closure_junction_table is None


class TestValidation:
    def test_missing_naming_strategy(self) -> None:
        with pytest.raises(MissingNamingStrategyError):
            EntityMetadataBuilder(build_storage(), None)

    def test_undefined_column_type(self, build_connection) -> None:
        with pytest.raises(ColumnTypeUndefinedError) as exc_info:
            build_connection(entity(Mystery).generated("id").column("payload"))
        assert exc_info.value.property_name == "payload"

    def test_missing_primary_column(self, build_connection) -> None:
        with pytest.raises(MissingPrimaryColumnError):
            build_connection(entity(Author).column("name"))

    def test_two_increment_columns(self, build_connection) -> None:
        with pytest.raises(IncrementColumnError):
            build_connection(entity(Author).generated("id").generated("name", type="integer"))

    def test_duplicate_table_name(self, build_connection) -> None:
        with pytest.raises(DuplicateTableNameError):
            build_connection(
                entity(Author, name="people").generated("id"),
                entity(Person, name="people").generated("id"),
            )

    def test_one_to_one_without_join_column(self, build_connection) -> None:
        with pytest.raises(MissingJoinAnnotationError):
            build_connection(
                entity(Person).generated("id").one_to_one("profile", Profile, inverse_side="person"),
                entity(Profile).generated("id").one_to_one("person", Person, inverse_side="profile"),
            )

    def test_one_to_one_with_join_column_on_both_sides(self, build_connection) -> None:
        with pytest.raises(AmbiguousRelationOwnershipError):
            build_connection(
                entity(Person).generated("id").one_to_one("profile", Profile, inverse_side="person", join_column=True),
                entity(Profile).generated("id").one_to_one("person", Person, inverse_side="profile", join_column=True),
            )

    def test_many_to_many_with_join_column(self, build_connection) -> None:
        with pytest.raises(JoinAnnotationPlacementError):
            build_connection(
                entity(Post).generated("id").many_to_many("categories", Category).join_column("categories"),
                entity(Category).generated("id"),
            )

    def test_unknown_inverse_side(self, build_connection) -> None:
        with pytest.raises(MissingInversePropertyError):
            build_connection(
                entity(Author).generated("id").one_to_many("posts", Post, inverse_side="writer"),
                entity(Post).generated("id").many_to_one("author", Author),
            )
