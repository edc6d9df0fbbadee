"""
DataStore: schema-driven persistence for the QTrack dashboard.

Owns one embedded SQLite database, migrates it to the declared schema on first
use, validates every record before it is written, and funnels all access
through ``run_transaction`` so each operation is opened, committed or rolled
back and logged the same way.

Usage::

    async with DataStore() as store:
        nc_id = await store.add_non_conformite(
            {"type_defaut": "rayure", "poste": "P3", "gravite": "Mineure",
             "description": "surface", "id_declarant": 7}
        )
        open_ncs = await store.get_non_conformites()

The connection lives on a single worker thread. Every transaction is submitted
to that thread, so callers on the event loop never block and transactions run
one at a time in submission order.
"""

from __future__ import annotations

import asyncio
import inspect
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, TypeVar, Union

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from qtrack.config import Settings, get_settings
from qtrack.domain.errors import (
    CapabilityUnavailable,
    ConnectionNotReady,
    QTrackError,
    RecordNotFound,
    ScopeError,
    StoreOpenFailed,
    TransactionFailed,
    ValidationFailed,
    Violation,
)
from qtrack.domain.models import StoreStatus
from qtrack.domain.schema import (
    CORRECTIVE_ACTIONS,
    CURRENT_TIMESTAMP,
    NC_STATUS_CLOSED,
    NONCONFORMITIES,
    USERS,
    ColumnSpec,
    SchemaSpec,
    TableSpec,
    build_schema,
)
from qtrack.domain.validation import validate_record
from qtrack.infrastructure.migrations import MigrationReport, ensure_schema
from qtrack.infrastructure.transaction import Transaction, TransactionMode
from qtrack.utils.crypto import hash_password, verify_password
from qtrack.utils.logging import get_logger
from qtrack.utils.profiler import profile_block

try:
    import sqlite3
except ImportError:  # pragma: no cover - Python built without _sqlite3
    sqlite3 = None  # type: ignore[assignment]

log = get_logger(__name__)

T = TypeVar("T")
Record = Dict[str, Any]

MIN_SQLITE_VERSION = (3, 8, 3)
MEMORY_PATH = ":memory:"

_ADD_FAILED_EVENTS = {
    USERS: "USER_ADD_FAILED",
    NONCONFORMITIES: "NC_ADD_FAILED",
    CORRECTIVE_ACTIONS: "ACTION_ADD_FAILED",
}


def check_capability() -> None:
    """Fail fast when the interpreter cannot provide the embedded store."""
    if sqlite3 is None:
        raise CapabilityUnavailable("this Python build has no sqlite3 module")
    if sqlite3.sqlite_version_info < MIN_SQLITE_VERSION:
        raise CapabilityUnavailable(
            f"SQLite {sqlite3.sqlite_version} is older than the required "
            f"{'.'.join(str(p) for p in MIN_SQLITE_VERSION)}"
        )


def _encode(column: ColumnSpec, value: Any) -> Any:
    """Turn a validated value into what the store keeps."""
    if value is None:
        return None
    if column.is_encrypted:
        return hash_password(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class DataStore:
    """
    Owner of the QTrack database handle.

    Construct one per application and either ``await initialize()`` /
    ``await close()`` explicitly or use it as an async context manager.
    Operations open the database lazily if ``initialize`` was skipped.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        schema: Optional[SchemaSpec] = None,
        db_path: Optional[Union[str, Path]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.schema = schema or build_schema(self.settings.db_name, self.settings.db_version)
        self.db_path = str(db_path or self.settings.db_path)
        self.last_migration: Optional[MigrationReport] = None
        self._conn: Optional["sqlite3.Connection"] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._opening: Optional["asyncio.Task[None]"] = None
        self._table_names: Tuple[str, ...] = ()
        self._closed = False

    async def __aenter__(self) -> "DataStore":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def initialize(self) -> StoreStatus:
        """
        Open the database and migrate it to the declared schema.

        Calling it again on an open store does nothing. After ``close`` this is
        the only way to reopen the store.
        """
        self._closed = False
        await self._ensure_open()
        return self.status()

    async def close(self) -> None:
        """
        Release the connection and its worker thread.

        Transactions already queued on the worker still run to completion;
        new ones raise ConnectionNotReady until ``initialize`` is called again.
        """
        self._closed = True
        opening = self._opening
        if opening is not None and not opening.done():
            await asyncio.wait({opening})

        executor, self._executor = self._executor, None
        if executor is None:
            return
        try:
            await asyncio.get_running_loop().run_in_executor(executor, self._close_sync)
        finally:
            executor.shutdown(wait=True)
        log.info(f"[DB_CLOSED] {self.schema.name}", extra={"event": "DB_CLOSED", "db_name": self.schema.name})

    def _close_sync(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            conn.close()

    def status(self) -> StoreStatus:
        return StoreStatus(
            initialized=self._conn is not None,
            store_name=self.schema.name,
            version=self.schema.version,
            table_names=self._table_names if self._conn is not None else (),
        )

    async def _ensure_open(self) -> None:
        """Open the connection once; concurrent callers share the pending open."""
        if self._conn is not None:
            return
        if self._opening is None:
            self._opening = asyncio.get_running_loop().create_task(self._open())
        task = self._opening
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and self._opening is task:
                self._opening = None

    async def _open(self) -> None:
        check_capability()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="qtrack-store")
        executor = self._executor
        loop = asyncio.get_running_loop()

        with profile_block("db-open") as stats:
            try:
                conn, report = await loop.run_in_executor(executor, self._open_sync)
            except Exception as exc:
                log.error(
                    f"[DB_INIT_ERROR] {self.schema.name}",
                    extra={
                        "event": "DB_INIT_ERROR",
                        "db_name": self.schema.name,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                raise

        self._conn = conn
        self.last_migration = report
        self._table_names = report.table_names
        log.info(
            f"[DB_INIT_SUCCESS] {self.schema.name} v{self.schema.version}",
            extra={
                "event": "DB_INIT_SUCCESS",
                "db_name": self.schema.name,
                "version": self.schema.version,
                "migrated": report.migrated,
                "execution_time_ms": stats.duration_ms,
            },
        )

    def _open_sync(self) -> Tuple["sqlite3.Connection", MigrationReport]:
        conn = self._connect()
        try:
            report = ensure_schema(conn, self.schema)
        except sqlite3.Error as exc:
            conn.close()
            raise StoreOpenFailed(f"could not migrate '{self.db_path}': {exc}") from exc
        except BaseException:
            conn.close()
            raise
        return conn, report

    def _connect(self) -> "sqlite3.Connection":
        """
        Open the SQLite file, retrying transient OperationalErrors.

        Retries up to ``settings.max_retries`` attempts with exponential backoff.
        """
        target = self.db_path
        if target != MEMORY_PATH:
            target = str(Path(target).expanduser())
            Path(target).parent.mkdir(parents=True, exist_ok=True)
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self.settings.max_retries),
                wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
                retry=retry_if_exception_type(sqlite3.OperationalError),
                reraise=True,
            ):
                with attempt:
                    conn = sqlite3.connect(
                        target, timeout=self.settings.timeout_seconds, isolation_level=None
                    )
                    try:
                        if target != MEMORY_PATH:
                            conn.execute("PRAGMA journal_mode=WAL")
                    except sqlite3.Error:
                        conn.close()
                        raise
        except sqlite3.Error as exc:
            raise StoreOpenFailed(f"could not open '{self.db_path}': {exc}") from exc
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    # ── Transactions ──────────────────────────────────────────────────────

    async def run_transaction(
        self,
        table_names: Union[str, Iterable[str]],
        mode: Union[TransactionMode, str],
        operation: Callable[[Transaction], T],
    ) -> T:
        """
        Run ``operation`` inside one transaction over ``table_names``.

        ``operation`` is a plain function executed on the store thread. A normal
        return commits; any exception rolls back and propagates. SQLite errors
        surface as TransactionFailed. A connection that vanished before the
        transaction started is re-opened once and the transaction retried.
        """
        names = (table_names,) if isinstance(table_names, str) else tuple(table_names)
        unknown = [n for n in names if n not in self.schema.table_names]
        if not names or unknown:
            raise ScopeError(f"unknown or empty table scope: {', '.join(unknown) or '<none>'}")
        mode = TransactionMode(mode)

        for attempt in (1, 2):
            if self._closed:
                raise ConnectionNotReady(f"store '{self.schema.name}' is closed")
            await self._ensure_open()
            try:
                return await self._submit(names, mode, operation)
            except ConnectionNotReady:
                if attempt == 2:
                    raise
                log.warning(
                    "[CONNECTION_NOT_READY] reopening before retry",
                    extra={"event": "CONNECTION_NOT_READY", "tables": list(names), "mode": mode.value},
                )
            except Exception as exc:
                log.error(
                    f"[TRANSACTION_FAILED] {', '.join(names)} ({mode.value})",
                    extra={
                        "event": "TRANSACTION_FAILED",
                        "tables": list(names),
                        "mode": mode.value,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                )
                raise
        raise AssertionError("unreachable")  # pragma: no cover

    async def _submit(
        self,
        names: Tuple[str, ...],
        mode: TransactionMode,
        operation: Callable[[Transaction], T],
    ) -> T:
        executor = self._executor
        if executor is None:
            raise ConnectionNotReady(f"no open connection to '{self.schema.name}'")
        return await asyncio.get_running_loop().run_in_executor(
            executor, self._execute, names, mode, operation
        )

    def _execute(
        self,
        names: Tuple[str, ...],
        mode: TransactionMode,
        operation: Callable[[Transaction], T],
    ) -> T:
        conn = self._conn
        if conn is None:
            raise ConnectionNotReady(f"no open connection to '{self.schema.name}'")

        tx = Transaction(conn, self.schema, names, mode)
        try:
            conn.execute("BEGIN IMMEDIATE" if mode is TransactionMode.READWRITE else "BEGIN DEFERRED")
            result = operation(tx)
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise TypeError("transaction operations run on the store thread and must be synchronous")
            conn.execute("COMMIT")
            return result
        except sqlite3.Error as exc:
            self._rollback(conn)
            raise TransactionFailed(names, mode.value, str(exc)) from exc
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            tx.finish()

    @staticmethod
    def _rollback(conn: "sqlite3.Connection") -> None:
        if conn.in_transaction:
            conn.execute("ROLLBACK")

    # ── Generic CRUD ──────────────────────────────────────────────────────

    def _table(self, name: str) -> TableSpec:
        try:
            return self.schema.table(name)
        except KeyError:
            raise ScopeError(f"unknown table '{name}'") from None

    def prepare_record(self, table: TableSpec, record: Mapping[str, Any]) -> Record:
        """
        Validate ``record`` and build the row to insert.

        Defaults fill omitted columns and encrypted columns are hashed. The
        input mapping is left untouched.
        """
        validate_record(record, table)
        values: Record = {}
        for column in table.columns:
            if column.is_primary_key:
                continue
            value = record.get(column.name)
            if value is None and column.default is not None:
                value = column.default
                if value == CURRENT_TIMESTAMP:
                    value = datetime.now(timezone.utc).isoformat()
            if value is None and column.name not in record:
                continue
            values[column.name] = _encode(column, value)
        return values

    async def add(self, table_name: str, record: Mapping[str, Any]) -> int:
        """
        Validate and insert ``record``; return its store-assigned key.

        Raises ValidationFailed before any transaction is opened.
        """
        table = self._table(table_name)
        event = _ADD_FAILED_EVENTS.get(table.name, "RECORD_ADD_FAILED")
        try:
            values = self.prepare_record(table, record)
            key = await self.run_transaction(
                table.name, TransactionMode.READWRITE, lambda tx: tx.add(table.name, values)
            )
        except QTrackError as exc:
            log.error(
                f"[{event}] {table.name}",
                extra={
                    "event": event,
                    "table": table.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            raise
        log.info(
            f"[RECORD_ADDED] {table.name}#{key}",
            extra={"event": "RECORD_ADDED", "table": table.name, "key": key},
        )
        return key

    async def get(self, table_name: str, column: str, value: Any) -> Optional[Record]:
        """
        Look a record up by an indexed column; None when nothing matches.

        Lookups on encrypted columns compare digests.
        """
        table = self._table(table_name)
        try:
            spec = table.column(column)
        except KeyError:
            raise ScopeError(f"table '{table.name}' has no column '{column}'") from None
        if spec.is_encrypted and value is not None:
            value = hash_password(value)
        return await self.run_transaction(
            table.name,
            TransactionMode.READONLY,
            lambda tx: tx.get_by_index(table.name, column, value),
        )

    async def get_by_key(self, table_name: str, key: int) -> Optional[Record]:
        table = self._table(table_name)
        return await self.run_transaction(
            table.name, TransactionMode.READONLY, lambda tx: tx.get(table.name, key)
        )

    async def list(self, table_name: str) -> List[Record]:
        """Every record of the table, in primary-key order."""
        table = self._table(table_name)
        return await self.run_transaction(
            table.name, TransactionMode.READONLY, lambda tx: tx.get_all(table.name)
        )

    async def update(self, table_name: str, key: int, changes: Mapping[str, Any]) -> Record:
        """
        Merge ``changes`` into an existing record.

        The merged record is validated as a whole and written back in the same
        readwrite transaction that read it.

        Raises
        ------
        RecordNotFound
            ``key`` does not exist.
        ValidationFailed
            The merged record breaks the schema.
        """
        table = self._table(table_name)
        pk = table.primary_key.name
        if pk in changes:
            raise ValidationFailed(table.name, [Violation(pk, "primary key is store-assigned")])
        changes = dict(changes)

        def _merge(tx: Transaction) -> Record:
            current = tx.get(table.name, key)
            if current is None:
                raise RecordNotFound(table.name, key)
            merged = {k: v for k, v in current.items() if k != pk}
            merged.update(changes)
            validate_record(merged, table)
            encoded = {
                name: _encode(table.column(name), value) for name, value in changes.items()
            }
            stored = {k: v for k, v in current.items() if k != pk}
            stored.update(encoded)
            tx.put(table.name, key, stored)
            return {pk: key, **stored}

        record = await self.run_transaction(table.name, TransactionMode.READWRITE, _merge)
        log.info(
            f"[RECORD_UPDATED] {table.name}#{key}",
            extra={"event": "RECORD_UPDATED", "table": table.name, "key": key, "columns": sorted(changes)},
        )
        return record

    async def delete(self, table_name: str, key: int) -> bool:
        table = self._table(table_name)
        return await self.run_transaction(
            table.name, TransactionMode.READWRITE, lambda tx: tx.delete(table.name, key)
        )

    # ── Users ─────────────────────────────────────────────────────────────

    async def add_user(self, user: Mapping[str, Any]) -> int:
        return await self.add(USERS, user)

    async def get_user(self, username: str) -> Optional[Record]:
        return await self.get(USERS, "username", username)

    async def list_users(self) -> List[Record]:
        return await self.list(USERS)

    async def authenticate(self, username: str, password: str) -> Optional[Record]:
        """Return the user when ``password`` matches the stored digest."""
        user = await self.get_user(username)
        if user is None or not verify_password(password, user["password"]):
            log.warning(
                "[AUTH_FAILED] invalid credentials",
                extra={"event": "AUTH_FAILED", "table": USERS},
            )
            return None
        return user

    # ── Non-conformities ──────────────────────────────────────────────────

    async def add_non_conformite(self, nc: Mapping[str, Any]) -> int:
        return await self.add(NONCONFORMITIES, nc)

    async def get_non_conformites(self) -> List[Record]:
        return await self.list(NONCONFORMITIES)

    async def get_non_conformite(self, nc_id: int) -> Optional[Record]:
        return await self.get_by_key(NONCONFORMITIES, nc_id)

    async def update_non_conformite(self, nc_id: int, changes: Mapping[str, Any]) -> Record:
        return await self.update(NONCONFORMITIES, nc_id, changes)

    async def close_non_conformite(self, nc_id: int) -> Record:
        return await self.update(NONCONFORMITIES, nc_id, {"statut": NC_STATUS_CLOSED})

    # ── Corrective actions ────────────────────────────────────────────────

    async def add_action_corrective(self, action: Mapping[str, Any]) -> int:
        return await self.add(CORRECTIVE_ACTIONS, action)

    async def get_actions_correctives(self, id_nc: Optional[int] = None) -> List[Record]:
        """All corrective actions, or only those attached to ``id_nc``."""
        if id_nc is None:
            return await self.list(CORRECTIVE_ACTIONS)
        return await self.run_transaction(
            CORRECTIVE_ACTIONS,
            TransactionMode.READONLY,
            lambda tx: tx.get_all(CORRECTIVE_ACTIONS, "id_nc", id_nc),
        )


__all__ = ["DataStore", "MIN_SQLITE_VERSION", "check_capability"]
