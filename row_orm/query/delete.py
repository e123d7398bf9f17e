"""DELETE query builder."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from row_orm.query.builder import QueryBuilder

if TYPE_CHECKING:
    from row_orm.core.query_runner import QueryRunner


@dataclass
class DeleteResult:
    affected: int = 0
    raw: Any = None


class DeleteQueryBuilder(QueryBuilder):
    """Builds and runs DELETE statements.

    ``delete().from_(Post).where("post.id = :id", {"id": 1})``
    """

    qualify_main_alias = False

    def from_(self, target: Any, alias: str | None = None) -> DeleteQueryBuilder:
        self._set_main_alias(target, alias)
        return self

    def get_query(self) -> str:
        table_name = self.expression_map.require_main_alias().require_table_name()
        return f"DELETE FROM {self.escape(table_name)}{self.create_where_expression()}"

    async def execute(self) -> DeleteResult:
        return await self._execute_with_runner(self._execute)

    async def _execute(self, runner: QueryRunner) -> DeleteResult:
        result = await runner.query(self.get_query(), self.expression_map.parameters)
        return DeleteResult(affected=result.affected, raw=result.rows)
