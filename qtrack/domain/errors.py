"""
Exception hierarchy for the QTrack persistence layer.

Everything raised deliberately by the store derives from QTrackError so callers
can catch the whole family at the UI boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple


class QTrackError(Exception):
    """Root exception for all qtrack errors."""


class CapabilityUnavailable(QTrackError):
    """The interpreter lacks a usable embedded store (sqlite3)."""


class ConnectionNotReady(QTrackError):
    """An operation reached the store without an open connection."""


class StoreOpenFailed(QTrackError):
    """The database file could not be opened after the configured retries."""


@dataclass(frozen=True)
class Violation:
    """A single column that failed validation, and why."""

    column: str
    reason: str

    def __str__(self) -> str:
        return f"{self.column}: {self.reason}"


class ValidationFailed(QTrackError):
    """
    Aggregated validation error.

    ``violations`` lists every rejected column, in schema order, so the caller
    can fix all of them before resubmitting.
    """

    def __init__(self, table: str, violations: Sequence[Violation]) -> None:
        self.table = table
        self.violations: Tuple[Violation, ...] = tuple(violations)
        details = ", ".join(str(v) for v in self.violations)
        super().__init__(f"validation failed for '{table}': {details}")

    @property
    def columns(self) -> Tuple[str, ...]:
        return tuple(v.column for v in self.violations)


class TransactionFailed(QTrackError):
    """The store aborted a transaction or hit an I/O error."""

    def __init__(self, table_names: Sequence[str], mode: str, message: str) -> None:
        self.table_names = tuple(table_names)
        self.mode = mode
        super().__init__(
            f"transaction on {', '.join(self.table_names)} ({mode}) failed: {message}"
        )


class RecordNotFound(QTrackError):
    """An update or close targeted a primary key that does not exist."""

    def __init__(self, table: str, key: int) -> None:
        self.table = table
        self.key = key
        super().__init__(f"no record with key {key} in '{table}'")


class ScopeError(QTrackError):
    """A transaction touched a table it was not opened on."""


class ReadOnlyTransaction(QTrackError):
    """A write was attempted inside a readonly transaction."""


# ── Schema ────────────────────────────────────────────────────────────────────


class SchemaError(QTrackError):
    """Declared schema cannot be applied to the database on disk."""


class SchemaConflict(SchemaError):
    """On-disk table has a column the declared schema dropped or renamed."""


class SchemaVersionError(SchemaError):
    """On-disk schema version is newer than the declared one."""


__all__ = [
    "QTrackError",
    "CapabilityUnavailable",
    "ConnectionNotReady",
    "StoreOpenFailed",
    "Violation",
    "ValidationFailed",
    "TransactionFailed",
    "RecordNotFound",
    "ScopeError",
    "ReadOnlyTransaction",
    "SchemaError",
    "SchemaConflict",
    "SchemaVersionError",
]
