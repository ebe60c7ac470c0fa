"""
Error Message Utilities

Turns PostgreSQL error text into human-readable messages and extracts the
structured bits (constraint, column, offending value) that callers need to
correct a request.
"""

import re
from typing import Any, Optional

# Human-readable constraint explanations keyed by constraint name
CONSTRAINT_MESSAGES = {
    "audit_logs_operation_check": (
        "Audit operation must be one of CREATE, READ, UPDATE, DELETE, "
        "BATCH_INSERT, BATCH_UPDATE, BATCH_DELETE."
    ),
}

_KEY_DETAIL_RE = re.compile(r'Key \((?P<columns>[^)]+)\)=\((?P<values>.*)\)')
_FK_TABLE_RE = re.compile(r'is not present in table "(?P<table>\w+)"')
_FK_REFERENCED_RE = re.compile(r'is still referenced from table "(?P<table>\w+)"')


def parse_key_detail(detail: Optional[str]) -> dict[str, Any]:
    """
    Parse the DETAIL line PostgreSQL attaches to key violations.

    'Key (series_id)=(999) is not present in table "series".'
    -> {"column": "series_id", "value": "999", "referenced_table": "series"}
    """
    if not detail:
        return {}

    parsed: dict[str, Any] = {}
    key_match = _KEY_DETAIL_RE.search(detail)
    if key_match:
        parsed["column"] = key_match.group("columns")
        parsed["value"] = key_match.group("values")

    table_match = _FK_TABLE_RE.search(detail)
    if table_match:
        parsed["referenced_table"] = table_match.group("table")

    referenced_match = _FK_REFERENCED_RE.search(detail)
    if referenced_match:
        parsed["referencing_table"] = referenced_match.group("table")

    return parsed


def enhance_error_message(error: Exception) -> str:
    """
    Enhance database error messages with human-readable explanations.

    Handles:
    - Check constraint violations (adds explanation of the constraint)
    - Foreign key violations (explains the relationship)
    - Unique violations
    - Not-null violations

    Returns the enhanced error message string.
    """
    error_str = str(error)
    detail = getattr(error, "detail", None)

    constraint_match = re.search(r'violates check constraint "(\w+)"', error_str)
    if constraint_match:
        constraint_name = constraint_match.group(1)
        explanation = CONSTRAINT_MESSAGES.get(constraint_name)
        if explanation:
            return f"Constraint violation ({constraint_name}): {explanation}"
        return f"Constraint violation: {constraint_name}. {error_str}"

    fk_match = re.search(r'violates foreign key constraint "(\w+)"', error_str)
    if fk_match:
        constraint_name = fk_match.group(1)
        parsed = parse_key_detail(detail)
        if parsed.get("referencing_table"):
            return (
                f"Foreign key violation ({constraint_name}): "
                f"the record is still referenced from '{parsed['referencing_table']}'."
            )
        if parsed.get("column"):
            return (
                f"Foreign key violation ({constraint_name}): "
                f"{parsed['column']}={parsed['value']} does not exist"
                + (f" in '{parsed['referenced_table']}'." if parsed.get("referenced_table") else ".")
            )
        return (
            f"Foreign key violation ({constraint_name}): "
            f"The referenced record does not exist."
        )

    unique_match = re.search(r'duplicate key value violates unique constraint "(\w+)"', error_str)
    if unique_match:
        constraint_name = unique_match.group(1)
        parsed = parse_key_detail(detail)
        if parsed.get("column"):
            return (
                f"Duplicate entry: {parsed['column']}={parsed['value']} already exists "
                f"({constraint_name})."
            )
        return f"Duplicate entry: A record with this value already exists ({constraint_name})."

    null_match = re.search(r'null value in column "(\w+)".* violates not-null constraint', error_str)
    if null_match:
        column_name = null_match.group(1)
        return f"Required field missing: '{column_name}' cannot be null."

    return error_str
