"""
Domain package for QTrack.

Exports the schema descriptors, the validation engine and the error hierarchy.
Keep this package focused on data definitions and validation concerns; nothing
here touches the database.
"""

from qtrack.domain.errors import (
    CapabilityUnavailable,
    ConnectionNotReady,
    QTrackError,
    ReadOnlyTransaction,
    RecordNotFound,
    SchemaConflict,
    SchemaError,
    SchemaVersionError,
    ScopeError,
    StoreOpenFailed,
    TransactionFailed,
    ValidationFailed,
    Violation,
)
from qtrack.domain.models import StoreStatus
from qtrack.domain.schema import (
    QTRACK_SCHEMA,
    ColumnSpec,
    SchemaSpec,
    TableSpec,
    ValidationKind,
    build_schema,
)
from qtrack.domain.validation import collect_violations, validate_record

__all__ = [
    # Schema
    "ColumnSpec",
    "SchemaSpec",
    "TableSpec",
    "ValidationKind",
    "QTRACK_SCHEMA",
    "build_schema",
    # Validation
    "collect_violations",
    "validate_record",
    # Models
    "StoreStatus",
    # Errors
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
