from __future__ import annotations

import logging
import sqlite3

import pytest

from qtrack.domain.errors import (
    ConnectionNotReady,
    ReadOnlyTransaction,
    ScopeError,
    TransactionFailed,
)
from qtrack.domain.schema import CORRECTIVE_ACTIONS, NONCONFORMITIES, USERS
from qtrack.infrastructure.transaction import Transaction, TransactionMode


@pytest.mark.asyncio
async def test_operation_result_is_returned_after_commit(store, nc_factory) -> None:
    values = store.prepare_record(store.schema.table(NONCONFORMITIES), nc_factory())

    key = await store.run_transaction(
        [NONCONFORMITIES], TransactionMode.READWRITE, lambda tx: tx.add(NONCONFORMITIES, values)
    )

    count = await store.run_transaction(
        NONCONFORMITIES, "readonly", lambda tx: tx.count(NONCONFORMITIES)
    )
    assert key == 1
    assert count == 1


@pytest.mark.asyncio
async def test_readonly_transaction_refuses_writes(store) -> None:
    with pytest.raises(ReadOnlyTransaction):
        await store.run_transaction(
            USERS,
            TransactionMode.READONLY,
            lambda tx: tx.add(USERS, {"username": "a", "password": "b"}),
        )
    assert await store.list_users() == []


@pytest.mark.asyncio
async def test_transaction_is_restricted_to_its_tables(store) -> None:
    with pytest.raises(ScopeError, match="not part of this transaction"):
        await store.run_transaction(
            [USERS], TransactionMode.READONLY, lambda tx: tx.get_all(NONCONFORMITIES)
        )


@pytest.mark.asyncio
async def test_unknown_or_empty_scope_is_refused(store) -> None:
    with pytest.raises(ScopeError):
        await store.run_transaction(["audits"], "readonly", lambda tx: None)
    with pytest.raises(ScopeError):
        await store.run_transaction([], "readonly", lambda tx: None)


@pytest.mark.asyncio
async def test_failed_operation_rolls_back_every_table(store, nc_factory, action_factory) -> None:
    nc_values = store.prepare_record(store.schema.table(NONCONFORMITIES), nc_factory())

    def operation(tx: Transaction) -> None:
        nc_id = tx.add(NONCONFORMITIES, nc_values)
        tx.add(CORRECTIVE_ACTIONS, action_factory(nc_id))
        raise RuntimeError("abort after writes")

    with pytest.raises(RuntimeError, match="abort after writes"):
        await store.run_transaction(
            [NONCONFORMITIES, CORRECTIVE_ACTIONS], TransactionMode.READWRITE, operation
        )

    assert await store.get_non_conformites() == []
    assert await store.get_actions_correctives() == []


@pytest.mark.asyncio
async def test_multi_table_transaction_commits_together(store, nc_factory, action_factory) -> None:
    nc_values = store.prepare_record(store.schema.table(NONCONFORMITIES), nc_factory())

    def operation(tx: Transaction) -> tuple[int, int]:
        nc_id = tx.add(NONCONFORMITIES, nc_values)
        return nc_id, tx.add(CORRECTIVE_ACTIONS, action_factory(nc_id))

    nc_id, action_id = await store.run_transaction(
        [NONCONFORMITIES, CORRECTIVE_ACTIONS], "readwrite", operation
    )

    actions = await store.get_actions_correctives(id_nc=nc_id)
    assert [a["id"] for a in actions] == [action_id]


@pytest.mark.asyncio
async def test_store_abort_after_valid_insert_leaves_no_record(store, nc_factory, monkeypatch) -> None:
    original_add = Transaction.add

    def add_then_fail(self, table_name, values):
        original_add(self, table_name, values)
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(Transaction, "add", add_then_fail)
    with pytest.raises(TransactionFailed) as excinfo:
        await store.add_non_conformite(nc_factory())
    monkeypatch.undo()

    assert isinstance(excinfo.value.__cause__, sqlite3.OperationalError)
    assert excinfo.value.table_names == (NONCONFORMITIES,)
    assert await store.get_non_conformites() == []


@pytest.mark.asyncio
async def test_transaction_failure_is_logged_with_context(store, caplog) -> None:
    def operation(tx: Transaction) -> None:
        raise sqlite3.DatabaseError("simulated abort")

    with caplog.at_level(logging.ERROR, logger="qtrack.infrastructure.store"):
        with pytest.raises(TransactionFailed, match="simulated abort"):
            await store.run_transaction([USERS], TransactionMode.READWRITE, operation)

    failures = [r for r in caplog.records if getattr(r, "event", None) == "TRANSACTION_FAILED"]
    assert len(failures) == 1
    assert failures[0].tables == [USERS]
    assert failures[0].mode == "readwrite"


@pytest.mark.asyncio
async def test_handle_is_unusable_after_the_transaction(store) -> None:
    leaked = await store.run_transaction(USERS, "readonly", lambda tx: tx)
    with pytest.raises(ScopeError, match="already finished"):
        leaked.get_all(USERS)


@pytest.mark.asyncio
async def test_async_operations_are_refused(store) -> None:
    async def operation(tx: Transaction) -> None:
        return None

    with pytest.raises(TypeError, match="must be synchronous"):
        await store.run_transaction(USERS, "readonly", operation)


@pytest.mark.asyncio
async def test_connection_not_ready_is_retried_once(store, monkeypatch) -> None:
    calls = []
    original = store._execute

    def flaky(*args):
        calls.append(args)
        if len(calls) == 1:
            raise ConnectionNotReady("connection dropped")
        return original(*args)

    monkeypatch.setattr(store, "_execute", flaky)

    assert await store.list_users() == []
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_connection_not_ready_twice_propagates(store, monkeypatch) -> None:
    calls = []

    def always_gone(*args):
        calls.append(args)
        raise ConnectionNotReady("connection dropped")

    monkeypatch.setattr(store, "_execute", always_gone)

    with pytest.raises(ConnectionNotReady):
        await store.list_users()
    assert len(calls) == 2
