"""Unit tests for the default naming strategy."""

from __future__ import annotations

from row_orm.metadata.naming import DefaultNamingStrategy, NamingStrategy, snake_case


class TestSnakeCase:
    def test_camel_case(self) -> None:
        assert snake_case("PostCategory") == "post_category"

    def test_mixed_case(self) -> None:
        assert snake_case("userId") == "user_id"

    def test_acronym(self) -> None:
        assert snake_case("HTTPServer") == "http_server"

    def test_already_snake(self) -> None:
        assert snake_case("post_category") == "post_category"


class TestDefaultNamingStrategy:
    def setup_method(self) -> None:
        self.naming = DefaultNamingStrategy()

    def test_implements_protocol(self) -> None:
        assert isinstance(self.naming, NamingStrategy)

    def test_table_name_from_class(self) -> None:
        assert self.naming.table_name("BlogPost", None) == "blog_post"

    def test_custom_table_name_wins(self) -> None:
        assert self.naming.table_name("BlogPost", "posts") == "posts"

    def test_column_name(self) -> None:
        assert self.naming.column_name("title", None, []) == "title"
        assert self.naming.column_name("title", "post_title", []) == "post_title"

    def test_column_name_with_embedded_prefixes(self) -> None:
        assert self.naming.column_name("city", None, ["address"]) == "address_city"
        assert self.naming.column_name("city", None, ["user", "address"]) == "user_address_city"

    def test_join_column_name(self) -> None:
        assert self.naming.join_column_name("author", "id") == "author_id"

    def test_join_table_name(self) -> None:
        assert self.naming.join_table_name("post", "category", "categories", "posts") == (
            "post_categories_category"
        )

    def test_join_table_name_with_embedded_property(self) -> None:
        assert self.naming.join_table_name("post", "tag", "meta.tags", None) == "post_meta_tags_tag"

    def test_join_table_column_names(self) -> None:
        assert self.naming.join_table_column_name("post", "id") == "post_id"
        assert self.naming.join_table_inverse_column_name("category", "id", "category_key") == (
            "category_category_key"
        )

    def test_closure_table_name(self) -> None:
        assert self.naming.closure_junction_table_name("category") == "category_closure"

    def test_constraint_names_are_deterministic(self) -> None:
        first = self.naming.index_name("post", ["title", "author_id"])
        second = self.naming.index_name("post", ["author_id", "title"])
        assert first == second
        assert first.startswith("IDX_")
        assert len(first) == len("IDX_") + 26

    def test_constraint_prefixes(self) -> None:
        assert self.naming.primary_key_name("post", ["id"]).startswith("PK_")
        assert self.naming.unique_constraint_name("post", ["slug"]).startswith("UQ_")
        assert self.naming.foreign_key_name("post", ["author_id"]).startswith("FK_")

    def test_constraint_names_differ_per_table(self) -> None:
        assert self.naming.foreign_key_name("post", ["author_id"]) != self.naming.foreign_key_name(
            "comment", ["author_id"]
        )

    def test_special_column_names(self) -> None:
        assert self.naming.discriminator_column_name() == "type"
        assert self.naming.materialized_path_column_name() == "mpath"
