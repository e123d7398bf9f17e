"""Integration tests for transactions and query runners."""

from __future__ import annotations

import pytest

from row_orm.core.exceptions import (
    CannotExecuteNotConnectedError,
    NoConnectionForRepositoryError,
    PoolError,
    QueryRunnerAlreadyReleasedError,
    TransactionCallbackError,
    TransactionStateError,
)
from row_orm.metadata.schema import entity


class Account:
    id: int
    owner: str
    balance: int


@pytest.fixture
async def connection(connect):
    return await connect(entity(Account).generated("id").column("owner").column("balance", default=0))


def account(owner: str, balance: int = 0) -> Account:
    instance = Account()
    instance.owner = owner
    instance.balance = balance
    return instance


class TestTransaction:
    async def test_commit_returns_the_callback_result(self, connection) -> None:
        async def work(manager):
            await manager.save(account("ann", 10))
            return await manager.count(Account)

        assert await connection.transaction(work) == 1
        assert await connection.manager.count(Account) == 1

    async def test_rollback_on_error(self, connection) -> None:
        async def work(manager):
            await manager.save(account("ann", 10))
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            await connection.transaction(work)
        assert await connection.manager.count(Account) == 0

    async def test_isolation_level(self, connection) -> None:
        async def work(manager):
            await manager.insert(Account, {"owner": "bob"})

        await connection.transaction("SERIALIZABLE", work)
        assert await connection.manager.count(Account) == 1

    async def test_nested_transaction_joins_the_outer_one(self, connection) -> None:
        async def inner(manager):
            await manager.save(account("inner"))
            raise ValueError("inner failed")

        async def outer(manager):
            await manager.save(account("outer"))
            await manager.transaction(inner)

        with pytest.raises(ValueError):
            await connection.transaction(outer)
        assert await connection.manager.count(Account) == 0

    async def test_sync_callback(self, connection) -> None:
        assert await connection.transaction(lambda manager: "done") == "done"

    @pytest.mark.parametrize("args", [(42,), (lambda: None,), ("SERIALIZABLE", lambda m: None, 1)])
    async def test_invalid_callbacks(self, connection, args) -> None:
        with pytest.raises(TransactionCallbackError):
            await connection.transaction(*args)


class TestQueryRunner:
    async def test_manual_transaction(self, connection) -> None:
        runner = connection.create_query_runner()
        try:
            await runner.start_transaction()
            await runner.query('INSERT INTO "account"("owner", "balance") VALUES (:owner, 5)', {"owner": "ann"})
            await runner.rollback_transaction()
            rows = (await runner.query('SELECT COUNT(*) AS "n" FROM "account"')).rows
            assert rows[0]["n"] == 0
        finally:
            await runner.release()

    async def test_commit_without_transaction(self, connection) -> None:
        runner = connection.create_query_runner()
        try:
            with pytest.raises(TransactionStateError):
                await runner.commit_transaction()
        finally:
            await runner.release()

    async def test_released_runner_rejects_queries(self, connection) -> None:
        runner = connection.create_query_runner()
        await runner.release()
        await runner.release()
        with pytest.raises(QueryRunnerAlreadyReleasedError):
            await runner.query("SELECT 1")

    async def test_pool_is_exhausted_while_a_runner_holds_the_connection(self, connection) -> None:
        runner = connection.create_query_runner()
        try:
            await runner.query("SELECT 1")
            with pytest.raises(PoolError):
                await connection.query("SELECT 1")
        finally:
            await runner.release()
        assert await connection.query('SELECT 1 AS "one"') == [{"one": 1}]

    async def test_insert_result(self, connection) -> None:
        result = await connection.manager.insert(Account, {"owner": "ann"})
        assert result.identifiers == [{"id": 1}]
        assert result.generated_maps == [{"id": 1}]


class TestConnectionLifecycle:
    async def test_close(self, connection) -> None:
        await connection.close()
        assert connection.is_connected is False
        with pytest.raises(CannotExecuteNotConnectedError):
            await connection.close()
        with pytest.raises(NoConnectionForRepositoryError):
            connection.get_repository(Account)

    async def test_synchronize_with_drop(self, connection) -> None:
        await connection.manager.save(account("ann"))
        await connection.synchronize(drop_before_sync=True)
        assert await connection.manager.count(Account) == 0
