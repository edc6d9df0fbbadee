"""
Declarative schema for the QTrack embedded database.

Tables are described as data (TableSpec / ColumnSpec) and consumed by the
generic migration routine and the validation engine. The descriptors are frozen
pydantic models, so a schema cannot change once defined.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

CURRENT_TIMESTAMP = "CURRENT_TIMESTAMP"


class ValidationKind(str, Enum):
    """Closed set of value checks a column can declare."""

    STRING = "string"
    NUMBER = "number"
    EMAIL = "email"
    ENUM = "enum"
    TIMESTAMP = "timestamp"


class ColumnSpec(BaseModel):
    """
    One column of a table.
    """

    name: str = Field(..., min_length=1, description="Column name, unique within the table.")
    validation: ValidationKind = Field(..., description="Value check applied on write.")
    is_primary_key: bool = Field(False, description="Store-assigned surrogate integer key.")
    is_unique: bool = Field(False, description="Enforced through a UNIQUE index.")
    required: bool = Field(False, description="Absent, None and '' are rejected.")
    default: Optional[Any] = Field(None, description="Applied when the value is omitted.")
    enum_options: Optional[Tuple[str, ...]] = Field(None, description="Allowed enum values.")
    is_encrypted: bool = Field(False, description="Stored as a one-way digest.")

    model_config = {
        "frozen": True,
    }

    @model_validator(mode="after")
    def _check_enum_options(self) -> "ColumnSpec":
        if self.validation is ValidationKind.ENUM and not self.enum_options:
            raise ValueError(f"enum column '{self.name}' declares no options")
        if self.is_primary_key and (self.required or self.default is not None):
            raise ValueError(f"primary key '{self.name}' cannot be required or defaulted")
        return self

    @property
    def is_indexed(self) -> bool:
        """Non-key columns that are unique or enumerated get a secondary index."""
        return not self.is_primary_key and (self.is_unique or bool(self.enum_options))

    @property
    def sql_type(self) -> str:
        """
        Declared SQLite type. Numbers are declared untyped so that ints and
        floats come back exactly as written (``2.0`` stays a float).
        """
        if self.is_primary_key:
            return "INTEGER"
        return "" if self.validation is ValidationKind.NUMBER else "TEXT"


class TableSpec(BaseModel):
    """
    A table (object store): a name and its ordered columns.
    """

    name: str = Field(..., min_length=1)
    columns: Tuple[ColumnSpec, ...]

    model_config = {
        "frozen": True,
    }

    @model_validator(mode="after")
    def _check_columns(self) -> "TableSpec":
        names = [c.name for c in self.columns]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"table '{self.name}' repeats columns: {', '.join(duplicates)}")
        keys = [c for c in self.columns if c.is_primary_key]
        if len(keys) != 1:
            raise ValueError(f"table '{self.name}' must declare exactly one primary key")
        return self

    @property
    def primary_key(self) -> ColumnSpec:
        return next(c for c in self.columns if c.is_primary_key)

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    def column(self, name: str) -> ColumnSpec:
        for col in self.columns:
            if col.name == name:
                return col
        raise KeyError(f"table '{self.name}' has no column '{name}'")


class SchemaSpec(BaseModel):
    """
    Named, versioned set of tables.
    """

    name: str = Field(..., min_length=1)
    version: int = Field(..., ge=1)
    tables: Tuple[TableSpec, ...]

    model_config = {
        "frozen": True,
    }

    @model_validator(mode="after")
    def _check_tables(self) -> "SchemaSpec":
        names = [t.name for t in self.tables]
        if len(names) != len(set(names)):
            raise ValueError(f"schema '{self.name}' declares a table twice")
        return self

    @property
    def table_names(self) -> Tuple[str, ...]:
        return tuple(t.name for t in self.tables)

    def table(self, name: str) -> TableSpec:
        for table in self.tables:
            if table.name == name:
                return table
        raise KeyError(f"unknown table '{name}'")


USERS = "users"
NONCONFORMITIES = "nonconformities"
CORRECTIVE_ACTIONS = "correctiveActions"

GRAVITE_OPTIONS = ("Mineure", "Majeure", "Critique")
NC_STATUS_CLOSED = "Clôturé"

_S = ValidationKind


def _pk() -> ColumnSpec:
    return ColumnSpec(name="id", validation=_S.NUMBER, is_primary_key=True)


QTRACK_TABLES: Tuple[TableSpec, ...] = (
    TableSpec(
        name=USERS,
        columns=(
            _pk(),
            ColumnSpec(name="username", validation=_S.STRING, required=True, is_unique=True),
            ColumnSpec(name="password", validation=_S.STRING, required=True, is_encrypted=True),
            ColumnSpec(name="role", validation=_S.STRING, default="utilisateur"),
            ColumnSpec(name="email", validation=_S.EMAIL),
        ),
    ),
    TableSpec(
        name=NONCONFORMITIES,
        columns=(
            _pk(),
            ColumnSpec(name="type_defaut", validation=_S.STRING, required=True),
            ColumnSpec(name="poste", validation=_S.STRING, required=True),
            ColumnSpec(
                name="gravite",
                validation=_S.ENUM,
                required=True,
                enum_options=GRAVITE_OPTIONS,
            ),
            ColumnSpec(name="description", validation=_S.STRING, required=True),
            ColumnSpec(name="statut", validation=_S.STRING, default="Ouvert"),
            ColumnSpec(name="date_creation", validation=_S.TIMESTAMP, default=CURRENT_TIMESTAMP),
            ColumnSpec(name="id_declarant", validation=_S.NUMBER, required=True),
        ),
    ),
    TableSpec(
        name=CORRECTIVE_ACTIONS,
        columns=(
            _pk(),
            ColumnSpec(name="description", validation=_S.STRING, required=True),
            ColumnSpec(name="responsable", validation=_S.STRING, required=True),
            ColumnSpec(name="delai", validation=_S.NUMBER, required=True),
            ColumnSpec(name="statut", validation=_S.STRING, default="Non démarré"),
            ColumnSpec(name="id_nc", validation=_S.NUMBER, required=True),
        ),
    ),
)


def build_schema(name: str = "QTrackDB", version: int = 1) -> SchemaSpec:
    """Bind the QTrack tables to a database name and version."""
    return SchemaSpec(name=name, version=version, tables=QTRACK_TABLES)


QTRACK_SCHEMA = build_schema()


__all__ = [
    "CURRENT_TIMESTAMP",
    "ValidationKind",
    "ColumnSpec",
    "TableSpec",
    "SchemaSpec",
    "USERS",
    "NONCONFORMITIES",
    "CORRECTIVE_ACTIONS",
    "GRAVITE_OPTIONS",
    "NC_STATUS_CLOSED",
    "QTRACK_TABLES",
    "QTRACK_SCHEMA",
    "build_schema",
]
