"""
Transaction-scoped access to the embedded store.

A Transaction is handed to the operation passed to
``DataStore.run_transaction``. It only reaches the tables it was opened on and
refuses writes in readonly mode. All methods run synchronously on the store's
worker thread; the DataStore owns BEGIN/COMMIT/ROLLBACK around them.
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional

from qtrack.domain.errors import ReadOnlyTransaction, ScopeError
from qtrack.domain.schema import ColumnSpec, SchemaSpec, TableSpec

if TYPE_CHECKING:  # pragma: no cover - typing only
    import sqlite3


class TransactionMode(str, Enum):
    READONLY = "readonly"
    READWRITE = "readwrite"


def quote(identifier: str) -> str:
    """Quote a schema identifier for interpolation into SQL."""
    return '"' + identifier.replace('"', '""') + '"'


class Transaction:
    """
    Handle restricted to a fixed set of tables and a mode.

    Records go in and come out as plain dicts keyed by column name. Reads
    always return every declared column.
    """

    def __init__(
        self,
        conn: "sqlite3.Connection",
        schema: SchemaSpec,
        table_names: Iterable[str],
        mode: TransactionMode,
    ) -> None:
        self._conn = conn
        self._tables: Dict[str, TableSpec] = {name: schema.table(name) for name in table_names}
        self.mode = mode
        self._active = True

    @property
    def table_names(self) -> tuple[str, ...]:
        return tuple(self._tables)

    def finish(self) -> None:
        self._active = False

    # ── Internal helpers ──────────────────────────────────────────────────

    def _table(self, name: str) -> TableSpec:
        if not self._active:
            raise ScopeError("transaction has already finished")
        try:
            return self._tables[name]
        except KeyError:
            raise ScopeError(
                f"table '{name}' is not part of this transaction "
                f"(scope: {', '.join(self._tables)})"
            ) from None

    def _writable(self, name: str) -> TableSpec:
        table = self._table(name)
        if self.mode is TransactionMode.READONLY:
            raise ReadOnlyTransaction(f"cannot write to '{name}' in a readonly transaction")
        return table

    @staticmethod
    def _column(table: TableSpec, name: str) -> ColumnSpec:
        try:
            return table.column(name)
        except KeyError:
            raise ScopeError(f"table '{table.name}' has no column '{name}'") from None

    @staticmethod
    def _columns(table: TableSpec, values: Mapping[str, Any]) -> List[str]:
        known = set(table.column_names)
        unknown = [name for name in values if name not in known]
        if unknown:
            raise ScopeError(f"table '{table.name}' has no column(s): {', '.join(unknown)}")
        return list(values)

    def _select(self, table: TableSpec) -> str:
        cols = ", ".join(quote(c) for c in table.column_names)
        return f"SELECT {cols} FROM {quote(table.name)}"

    # ── Reads ─────────────────────────────────────────────────────────────

    def get(self, table_name: str, key: int) -> Optional[Dict[str, Any]]:
        """Fetch a record by primary key; None when absent."""
        table = self._table(table_name)
        row = self._conn.execute(
            f"{self._select(table)} WHERE {quote(table.primary_key.name)} = ?",
            (key,),
        ).fetchone()
        return dict(row) if row is not None else None

    def get_by_index(self, table_name: str, column: str, value: Any) -> Optional[Dict[str, Any]]:
        """
        Fetch the first record whose indexed ``column`` equals ``value``.

        Only the primary key and secondary-indexed columns can be looked up.
        """
        table = self._table(table_name)
        spec = self._column(table, column)
        if not (spec.is_primary_key or spec.is_indexed):
            raise ScopeError(f"column '{table_name}.{column}' is not indexed")
        row = self._conn.execute(
            f"{self._select(table)} WHERE {quote(column)} = ? "
            f"ORDER BY {quote(table.primary_key.name)} LIMIT 1",
            (value,),
        ).fetchone()
        return dict(row) if row is not None else None

    def get_all(
        self,
        table_name: str,
        column: Optional[str] = None,
        value: Any = None,
    ) -> List[Dict[str, Any]]:
        """All records in primary-key order, optionally filtered on one column."""
        table = self._table(table_name)
        sql = self._select(table)
        params: tuple[Any, ...] = ()
        if column is not None:
            self._column(table, column)
            sql += f" WHERE {quote(column)} = ?"
            params = (value,)
        sql += f" ORDER BY {quote(table.primary_key.name)}"
        return [dict(row) for row in self._conn.execute(sql, params).fetchall()]

    def count(self, table_name: str) -> int:
        table = self._table(table_name)
        return self._conn.execute(f"SELECT COUNT(*) FROM {quote(table.name)}").fetchone()[0]

    # ── Writes ────────────────────────────────────────────────────────────

    def add(self, table_name: str, values: Mapping[str, Any]) -> int:
        """Insert a record and return its store-assigned primary key."""
        table = self._writable(table_name)
        cols = self._columns(table, values)
        if table.primary_key.name in cols:
            raise ScopeError(f"primary key of '{table.name}' is store-assigned")
        if cols:
            sql = (
                f"INSERT INTO {quote(table.name)} ({', '.join(quote(c) for c in cols)}) "
                f"VALUES ({', '.join('?' for _ in cols)})"
            )
        else:
            sql = f"INSERT INTO {quote(table.name)} DEFAULT VALUES"
        cur = self._conn.execute(sql, tuple(values[c] for c in cols))
        return int(cur.lastrowid)

    def put(self, table_name: str, key: int, values: Mapping[str, Any]) -> bool:
        """
        Overwrite the given columns of an existing record.

        Returns
        -------
        bool
            True if a row matched ``key``.
        """
        table = self._writable(table_name)
        cols = [c for c in self._columns(table, values) if c != table.primary_key.name]
        if not cols:
            return self.get(table_name, key) is not None
        assignments = ", ".join(f"{quote(c)} = ?" for c in cols)
        cur = self._conn.execute(
            f"UPDATE {quote(table.name)} SET {assignments} "
            f"WHERE {quote(table.primary_key.name)} = ?",
            (*(values[c] for c in cols), key),
        )
        return cur.rowcount > 0

    def delete(self, table_name: str, key: int) -> bool:
        table = self._writable(table_name)
        cur = self._conn.execute(
            f"DELETE FROM {quote(table.name)} WHERE {quote(table.primary_key.name)} = ?",
            (key,),
        )
        return cur.rowcount > 0


__all__ = ["Transaction", "TransactionMode", "quote"]
