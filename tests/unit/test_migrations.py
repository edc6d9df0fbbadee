from __future__ import annotations

import logging
import sqlite3
from typing import Iterator

import pytest

from qtrack.domain.errors import SchemaConflict, SchemaVersionError
from qtrack.domain.schema import (
    CORRECTIVE_ACTIONS,
    QTRACK_SCHEMA,
    USERS,
    ColumnSpec,
    SchemaSpec,
    TableSpec,
)
from qtrack.infrastructure.migrations import (
    create_table_sql,
    ensure_schema,
    existing_columns,
    existing_indexes,
    existing_tables,
    read_version,
)

DECLARED_TABLES = {"users", "nonconformities", "correctiveActions"}


@pytest.fixture
def conn() -> Iterator[sqlite3.Connection]:
    connection = sqlite3.connect(":memory:", isolation_level=None)
    try:
        yield connection
    finally:
        connection.close()


def _snapshot(conn: sqlite3.Connection) -> dict:
    return {
        name: (tuple(existing_columns(conn, name)), frozenset(existing_indexes(conn, name)))
        for name in existing_tables(conn)
    }


def _schema_with_extra_user_column(version: int) -> SchemaSpec:
    users = QTRACK_SCHEMA.table(USERS)
    phone = ColumnSpec(name="phone", validation="string")
    badge = ColumnSpec(name="badge", validation="string", is_unique=True)
    tables = tuple(
        TableSpec(name=USERS, columns=users.columns + (phone, badge)) if t.name == USERS else t
        for t in QTRACK_SCHEMA.tables
    )
    return SchemaSpec(name=QTRACK_SCHEMA.name, version=version, tables=tables)


def test_fresh_database_gets_every_table_and_index(conn) -> None:
    report = ensure_schema(conn, QTRACK_SCHEMA)

    assert report.migrated
    assert report.from_version == 0
    assert read_version(conn) == QTRACK_SCHEMA.version
    assert set(existing_tables(conn)) == DECLARED_TABLES
    assert set(report.created_tables) == DECLARED_TABLES
    assert set(report.table_names) == DECLARED_TABLES
    assert existing_indexes(conn, "users") >= {"ix_users_username"}
    assert existing_indexes(conn, "nonconformities") >= {"ix_nonconformities_gravite"}


def test_username_index_is_unique(conn) -> None:
    ensure_schema(conn, QTRACK_SCHEMA)
    flags = {row[1]: row[2] for row in conn.execute('PRAGMA index_list("users")')}
    assert flags["ix_users_username"] == 1
    flags = {row[1]: row[2] for row in conn.execute('PRAGMA index_list("nonconformities")')}
    assert flags["ix_nonconformities_gravite"] == 0


def test_second_run_is_a_no_op(conn) -> None:
    ensure_schema(conn, QTRACK_SCHEMA)
    before = _snapshot(conn)

    report = ensure_schema(conn, QTRACK_SCHEMA)

    assert not report.migrated
    assert report.created_tables == []
    assert report.created_indexes == []
    assert _snapshot(conn) == before


def test_existing_tables_are_left_untouched(conn) -> None:
    ensure_schema(conn, QTRACK_SCHEMA)
    conn.execute('INSERT INTO "users" ("username", "password") VALUES (?, ?)', ("alice", "x"))
    conn.execute("PRAGMA user_version = 0")

    report = ensure_schema(conn, QTRACK_SCHEMA)

    assert report.migrated
    assert report.created_tables == []
    assert conn.execute('SELECT COUNT(*) FROM "users"').fetchone()[0] == 1


def test_newer_version_adds_missing_columns_and_indexes(conn, caplog) -> None:
    ensure_schema(conn, QTRACK_SCHEMA)
    v2 = _schema_with_extra_user_column(version=2)

    with caplog.at_level(logging.INFO, logger="qtrack.infrastructure.migrations"):
        report = ensure_schema(conn, v2)

    assert report.added_columns == ["users.phone", "users.badge"]
    assert report.created_indexes == ["ix_users_badge"]
    assert "phone" in existing_columns(conn, "users")
    assert read_version(conn) == 2
    events = [getattr(r, "event", None) for r in caplog.records]
    assert "DB_UPGRADE_NEEDED" in events
    assert events.count("COLUMN_ADDED") == 2
    assert "TABLES_INITIALIZATION_COMPLETE" in events


def test_dropped_column_is_a_fatal_conflict(conn) -> None:
    conn.execute('CREATE TABLE "users" ("id" INTEGER PRIMARY KEY AUTOINCREMENT, "legacy" TEXT)')

    with pytest.raises(SchemaConflict, match="legacy"):
        ensure_schema(conn, QTRACK_SCHEMA)

    assert read_version(conn) == 0
    assert set(existing_tables(conn)) == {"users"}


def test_undeclared_table_is_a_fatal_conflict(conn) -> None:
    conn.execute('CREATE TABLE "audits" ("id" INTEGER PRIMARY KEY)')

    with pytest.raises(SchemaConflict, match="audits"):
        ensure_schema(conn, QTRACK_SCHEMA)

    assert "users" not in existing_tables(conn)


def test_downgrade_is_refused(conn) -> None:
    conn.execute("PRAGMA user_version = 5")
    with pytest.raises(SchemaVersionError):
        ensure_schema(conn, QTRACK_SCHEMA)
    assert existing_tables(conn) == ()


def test_create_table_sql_marks_required_columns_not_null() -> None:
    sql = create_table_sql(QTRACK_SCHEMA.table(USERS))
    assert '"id" INTEGER PRIMARY KEY AUTOINCREMENT' in sql
    assert '"username" TEXT NOT NULL' in sql
    assert '"email" TEXT,' in sql or '"email" TEXT\n' in sql


def test_number_columns_are_declared_without_affinity() -> None:
    sql = create_table_sql(QTRACK_SCHEMA.table(CORRECTIVE_ACTIONS))
    assert '"delai" NOT NULL,' in sql
    assert '"id_nc" NOT NULL\n' in sql
