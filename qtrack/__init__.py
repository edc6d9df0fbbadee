"""
QTrack - local persistence layer for the QTrack quality-management dashboard.

This package wraps an embedded SQLite database behind a schema-driven store:

- Declarative table schemas with typed column validation
- Additive, versioned schema migration
- Scoped readonly/readwrite transactions on a dedicated worker thread
- Async CRUD for users, non-conformities and corrective actions
- One-way password hashing and structured operation logging
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from qtrack.config import Settings, get_settings
from qtrack.domain.errors import (
    CapabilityUnavailable,
    ConnectionNotReady,
    QTrackError,
    RecordNotFound,
    TransactionFailed,
    ValidationFailed,
)
from qtrack.domain.models import StoreStatus
from qtrack.domain.schema import QTRACK_SCHEMA, ValidationKind
from qtrack.infrastructure.store import DataStore
from qtrack.infrastructure.transaction import Transaction, TransactionMode
from qtrack.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Store
    "DataStore",
    "StoreStatus",
    "Transaction",
    "TransactionMode",
    "QTRACK_SCHEMA",
    "ValidationKind",
    # Errors
    "QTrackError",
    "CapabilityUnavailable",
    "ConnectionNotReady",
    "RecordNotFound",
    "TransactionFailed",
    "ValidationFailed",
    # Logging
    "configure_logging",
    "get_logger",
]
