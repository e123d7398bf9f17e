"""Integration tests for closure-table and materialized-path trees."""

from __future__ import annotations

import pytest

from row_orm.core.exceptions import RepositoryNotTreeError
from row_orm.metadata.schema import entity


class Folder:
    id: int
    name: str


class Plain:
    id: int


def make(name: str, parent: Folder | None = None) -> Folder:
    folder = Folder()
    folder.name = name
    folder.parent = parent
    return folder


@pytest.fixture(params=["closure-table", "materialized-path"])
async def tree(request, connect):
    connection = await connect(
        entity(Folder)
        .generated("id")
        .column("name")
        .tree(request.param)
        .tree_parent("parent", inverse_side="children")
        .tree_children("children", inverse_side="parent"),
        entity(Plain).generated("id"),
    )
    root = make("root")
    docs = make("docs", root)
    guides = make("guides", docs)
    media = make("media", root)
    await connection.manager.save([root, docs, guides, media])
    return connection, {f.name: f for f in (root, docs, guides, media)}


def names(folders) -> list[str]:
    return sorted(f.name for f in folders)


class TestTreeRepository:
    async def test_find_roots(self, tree) -> None:
        connection, _ = tree
        roots = await connection.get_tree_repository(Folder).find_roots()
        assert names(roots) == ["root"]

    async def test_descendants_include_the_node(self, tree) -> None:
        connection, folders = tree
        repository = connection.get_tree_repository(Folder)
        assert names(await repository.find_descendants(folders["root"])) == ["docs", "guides", "media", "root"]
        assert names(await repository.find_descendants(folders["docs"])) == ["docs", "guides"]
        assert await repository.count_descendants(folders["media"]) == 1

    async def test_ancestors_include_the_node(self, tree) -> None:
        connection, folders = tree
        repository = connection.get_tree_repository(Folder)
        assert names(await repository.find_ancestors(folders["guides"])) == ["docs", "guides", "root"]
        assert await repository.count_ancestors(folders["root"]) == 1

    async def test_moving_a_subtree(self, tree) -> None:
        connection, folders = tree
        repository = connection.get_tree_repository(Folder)

        folders["docs"].parent = folders["media"]
        await connection.manager.save(folders["docs"])

        assert names(await repository.find_descendants(folders["media"])) == ["docs", "guides", "media"]
        assert names(await repository.find_ancestors(folders["guides"])) == ["docs", "guides", "media", "root"]
        assert await repository.count_descendants(folders["root"]) == 4

    async def test_get_repository_returns_the_tree_repository(self, tree) -> None:
        connection, _ = tree
        assert connection.get_repository(Folder) is connection.get_tree_repository(Folder)

    async def test_non_tree_entity(self, tree) -> None:
        connection, _ = tree
        with pytest.raises(RepositoryNotTreeError):
            connection.get_tree_repository(Plain)
