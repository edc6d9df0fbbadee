"""
Validation engine: admit or reject a record against a table's columns.

Validation is pure. It reads the record, never mutates it, and reports every
violation at once instead of stopping at the first.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, List, Mapping

from qtrack.domain.errors import ValidationFailed, Violation
from qtrack.domain.schema import ColumnSpec, TableSpec, ValidationKind

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _parses_as_timestamp(value: Any) -> bool:
    if isinstance(value, (datetime, date)):
        return True
    if not isinstance(value, str):
        return False
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


def _check_kind(column: ColumnSpec, value: Any) -> str | None:
    """Return the reason ``value`` fails ``column``'s kind, or None."""
    kind = column.validation
    if kind is ValidationKind.STRING:
        if not isinstance(value, str):
            return "must be a string"
    elif kind is ValidationKind.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return "must be a number"
    elif kind is ValidationKind.EMAIL:
        if not isinstance(value, str) or not EMAIL_PATTERN.match(value):
            return "is not a valid email"
    elif kind is ValidationKind.ENUM:
        options = column.enum_options or ()
        if value not in options:
            return f"must be one of: {', '.join(options)}"
    elif kind is ValidationKind.TIMESTAMP:
        if not _parses_as_timestamp(value):
            return "must be a valid date"
    return None


def collect_violations(record: Mapping[str, Any], table: TableSpec) -> List[Violation]:
    """
    List every way ``record`` breaks ``table``'s column rules.

    Violations come back in schema column order, followed by undeclared keys.
    """
    violations: List[Violation] = []
    declared = set(table.column_names)

    for column in table.columns:
        present = column.name in record
        value = record.get(column.name)

        if column.is_primary_key:
            if present:
                violations.append(Violation(column.name, "primary key is store-assigned"))
            continue

        if _is_missing(value):
            if column.required:
                violations.append(Violation(column.name, "is required"))
            continue

        reason = _check_kind(column, value)
        if reason:
            violations.append(Violation(column.name, reason))

    for name in record:
        if name not in declared:
            violations.append(Violation(name, "unknown column"))

    return violations


def validate_record(record: Mapping[str, Any], table: TableSpec) -> None:
    """Raise ValidationFailed listing all violations, if there are any."""
    violations = collect_violations(record, table)
    if violations:
        raise ValidationFailed(table.name, violations)


__all__ = ["EMAIL_PATTERN", "collect_violations", "validate_record"]
