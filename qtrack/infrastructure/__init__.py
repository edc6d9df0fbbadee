"""
Infrastructure package for QTrack.

Centralizes embedded-database concerns (opening, migration, transactions).
Keep this layer focused on I/O and resource management; record rules live in
``qtrack.domain``.
"""

from qtrack.infrastructure.migrations import MigrationReport, ensure_schema
from qtrack.infrastructure.store import DataStore, check_capability
from qtrack.infrastructure.transaction import Transaction, TransactionMode

__all__ = [
    "DataStore",
    "MigrationReport",
    "Transaction",
    "TransactionMode",
    "check_capability",
    "ensure_schema",
]
