"""
Schema migration for the embedded store.

``ensure_schema`` compares the on-disk schema version (``PRAGMA user_version``)
with the declared one and, when the disk is behind, creates whatever tables,
columns and indexes are missing in a single transaction. Migration is additive:
nothing on disk is ever dropped or rewritten, and a table or column the
declared schema no longer knows about is a fatal configuration error.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Set, Tuple

from qtrack.domain.errors import SchemaConflict, SchemaVersionError
from qtrack.domain.schema import ColumnSpec, SchemaSpec, TableSpec
from qtrack.infrastructure.transaction import quote
from qtrack.utils.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - typing only
    import sqlite3

log = get_logger(__name__)


@dataclass
class MigrationReport:
    """What ``ensure_schema`` found and changed."""

    from_version: int
    to_version: int
    created_tables: List[str] = field(default_factory=list)
    added_columns: List[str] = field(default_factory=list)
    created_indexes: List[str] = field(default_factory=list)
    table_names: Tuple[str, ...] = ()

    @property
    def migrated(self) -> bool:
        return self.from_version < self.to_version


def index_name(table: TableSpec, column: ColumnSpec) -> str:
    return f"ix_{table.name}_{column.name}"


def column_ddl(column: ColumnSpec, *, for_create: bool = True) -> str:
    if column.is_primary_key:
        return f"{quote(column.name)} INTEGER PRIMARY KEY AUTOINCREMENT"
    ddl = " ".join(part for part in (quote(column.name), column.sql_type) if part)
    # ALTER TABLE ADD COLUMN cannot add NOT NULL without a default.
    if column.required and for_create:
        ddl += " NOT NULL"
    return ddl


def create_table_sql(table: TableSpec) -> str:
    cols = ",\n    ".join(column_ddl(c) for c in table.columns)
    return f"CREATE TABLE {quote(table.name)} (\n    {cols}\n)"


def create_index_sql(table: TableSpec, column: ColumnSpec) -> str:
    unique = "UNIQUE " if column.is_unique else ""
    return (
        f"CREATE {unique}INDEX IF NOT EXISTS {quote(index_name(table, column))} "
        f"ON {quote(table.name)} ({quote(column.name)})"
    )


def read_version(conn: "sqlite3.Connection") -> int:
    return int(conn.execute("PRAGMA user_version").fetchone()[0])


def existing_tables(conn: "sqlite3.Connection") -> Tuple[str, ...]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = 'table' "
        "AND name NOT LIKE 'sqlite_%' ORDER BY name"
    ).fetchall()
    return tuple(row[0] for row in rows)


def existing_columns(conn: "sqlite3.Connection", table_name: str) -> List[str]:
    return [row[1] for row in conn.execute(f"PRAGMA table_info({quote(table_name)})")]


def existing_indexes(conn: "sqlite3.Connection", table_name: str) -> Set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA index_list({quote(table_name)})")}


def _check_conflicts(conn: "sqlite3.Connection", schema: SchemaSpec, on_disk: Tuple[str, ...]) -> None:
    """Refuse to migrate when the declared schema dropped something on disk."""
    declared = set(schema.table_names)
    stale_tables = [name for name in on_disk if name not in declared]
    if stale_tables:
        raise SchemaConflict(
            f"tables on disk are not declared by schema '{schema.name}': "
            f"{', '.join(stale_tables)} (dropping or renaming tables is unsupported)"
        )
    for table in schema.tables:
        if table.name not in on_disk:
            continue
        stale = [c for c in existing_columns(conn, table.name) if c not in table.column_names]
        if stale:
            raise SchemaConflict(
                f"columns on disk are not declared for '{table.name}': {', '.join(stale)} "
                "(dropping or renaming columns is unsupported)"
            )


def _apply(conn: "sqlite3.Connection", schema: SchemaSpec, report: MigrationReport) -> None:
    on_disk = existing_tables(conn)
    _check_conflicts(conn, schema, on_disk)

    for table in schema.tables:
        if table.name not in on_disk:
            conn.execute(create_table_sql(table))
            report.created_tables.append(table.name)
            log.info(
                f"[TABLE_CREATED] {table.name}",
                extra={"event": "TABLE_CREATED", "table": table.name, "columns": len(table.columns)},
            )
        else:
            present = set(existing_columns(conn, table.name))
            for column in table.columns:
                if column.name in present:
                    continue
                conn.execute(
                    f"ALTER TABLE {quote(table.name)} ADD COLUMN "
                    f"{column_ddl(column, for_create=False)}"
                )
                report.added_columns.append(f"{table.name}.{column.name}")
                log.info(
                    f"[COLUMN_ADDED] {table.name}.{column.name}",
                    extra={"event": "COLUMN_ADDED", "table": table.name, "column": column.name},
                )

        indexes = existing_indexes(conn, table.name)
        for column in table.columns:
            if not column.is_indexed or index_name(table, column) in indexes:
                continue
            conn.execute(create_index_sql(table, column))
            report.created_indexes.append(index_name(table, column))

    # user_version only accepts a literal; the value is a validated int.
    conn.execute(f"PRAGMA user_version = {int(schema.version)}")


def ensure_schema(conn: "sqlite3.Connection", schema: SchemaSpec) -> MigrationReport:
    """
    Bring the database up to ``schema.version``.

    Raises
    ------
    SchemaVersionError
        The database was written by a newer schema version.
    SchemaConflict
        The database holds a table or column the schema no longer declares.
    """
    on_disk_version = read_version(conn)
    report = MigrationReport(from_version=on_disk_version, to_version=schema.version)

    if on_disk_version > schema.version:
        raise SchemaVersionError(
            f"database '{schema.name}' is at version {on_disk_version}, "
            f"newer than declared version {schema.version}"
        )

    if on_disk_version < schema.version:
        log.info(
            f"[DB_UPGRADE_NEEDED] {schema.name} v{on_disk_version} -> v{schema.version}",
            extra={
                "event": "DB_UPGRADE_NEEDED",
                "old_version": on_disk_version,
                "new_version": schema.version,
            },
        )
        conn.execute("BEGIN IMMEDIATE")
        try:
            _apply(conn, schema, report)
            conn.execute("COMMIT")
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        log.info(
            f"[TABLES_INITIALIZATION_COMPLETE] {schema.name}",
            extra={
                "event": "TABLES_INITIALIZATION_COMPLETE",
                "tables": len(schema.tables),
                "created_tables": report.created_tables,
                "added_columns": report.added_columns,
            },
        )

    report.table_names = existing_tables(conn)
    return report


__all__ = [
    "MigrationReport",
    "create_index_sql",
    "create_table_sql",
    "ensure_schema",
    "existing_columns",
    "existing_indexes",
    "existing_tables",
    "index_name",
    "read_version",
]
