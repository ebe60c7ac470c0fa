"""
Data Validator

Checks a record payload against live column metadata before a write:

1. schema: required columns, type family, max length, nullability and a few
   name-based format rules
2. foreign keys: one existence lookup per referencing column, with the
   referenced table/column read from the catalog
3. unique constraints: existence lookup excluding the row being updated

Foreign-key and unique passes are skipped when the schema pass fails.
Metadata is cached in an injected SchemaCache and invalidated by hand.
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from uuid import UUID

from security.whitelist import IDENTIFIER_RE
from utils.errors import DatabaseAdminError, ErrorCode

from .schema_cache import SchemaCache

logger = logging.getLogger(__name__)

# Filled in by the database on insert
SERVER_MANAGED_COLUMNS = frozenset({"id", "created_at", "updated_at"})

INTEGER_TYPES = frozenset({"smallint", "integer", "bigint"})
NUMERIC_TYPES = frozenset({"numeric", "decimal", "real", "double precision"})
STRING_TYPES = frozenset({"text", "character varying", "varchar", "character", "char", "citext", "USER-DEFINED"})
DATE_TYPES = frozenset({"date"})
TIMESTAMP_TYPES = frozenset({"timestamp without time zone", "timestamp with time zone"})
TIME_TYPES = frozenset({"time without time zone", "time with time zone"})
JSON_TYPES = frozenset({"json", "jsonb"})

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
URL_RE = re.compile(r"^https?://[^\s/$.?#].[^\s]*$", re.IGNORECASE)

COLUMNS_SQL = """
    SELECT column_name, data_type, is_nullable, character_maximum_length, column_default
    FROM information_schema.columns
    WHERE table_schema = 'public' AND table_name = $1
    ORDER BY ordinal_position
"""

FOREIGN_KEYS_SQL = """
    SELECT
        kcu.column_name,
        ccu.table_name AS foreign_table_name,
        ccu.column_name AS foreign_column_name,
        tc.constraint_name
    FROM information_schema.table_constraints AS tc
    JOIN information_schema.key_column_usage AS kcu
        ON tc.constraint_name = kcu.constraint_name
        AND tc.table_schema = kcu.table_schema
    JOIN information_schema.constraint_column_usage AS ccu
        ON ccu.constraint_name = tc.constraint_name
        AND ccu.table_schema = tc.table_schema
    WHERE tc.constraint_type = 'FOREIGN KEY'
        AND tc.table_schema = 'public'
        AND tc.table_name = $1
"""

UNIQUE_COLUMNS_SQL = """
    SELECT kcu.column_name, tc.constraint_name
    FROM information_schema.table_constraints AS tc
    JOIN information_schema.key_column_usage AS kcu
        ON tc.constraint_name = kcu.constraint_name
        AND tc.table_schema = kcu.table_schema
    WHERE tc.constraint_type = 'UNIQUE'
        AND tc.table_schema = 'public'
        AND tc.table_name = $1
    ORDER BY tc.constraint_name, kcu.ordinal_position
"""


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str
    nullable: bool
    max_length: Optional[int] = None
    default: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "ColumnInfo":
        return cls(
            name=row["column_name"],
            data_type=row["data_type"],
            nullable=row["is_nullable"] == "YES",
            max_length=row["character_maximum_length"],
            default=row["column_default"],
        )


def _error(code: str, path: str, message: str, **extra) -> dict:
    """Build a structured validation error."""
    err = {"code": code, "path": path, "message": message}
    err.update(extra)
    return err


def _parse_timestamp(value: str) -> datetime:
    # fromisoformat does not take a trailing 'Z' before 3.11
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _parse_date(value: str) -> date:
    """A plain ISO date, or a full ISO timestamp reduced to its date."""
    try:
        return date.fromisoformat(value)
    except ValueError:
        if "T" not in value and " " not in value:
            raise
    return _parse_timestamp(value).date()


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _matches_type(column: ColumnInfo, value: Any) -> bool:
    data_type = column.data_type
    try:
        if data_type in INTEGER_TYPES:
            return _is_int(value)
        if data_type in NUMERIC_TYPES:
            if isinstance(value, bool):
                return False
            if isinstance(value, (int, float, Decimal)):
                return True
            if isinstance(value, str):
                Decimal(value)
                return True
            return False
        if data_type in STRING_TYPES:
            return isinstance(value, str)
        if data_type == "boolean":
            return isinstance(value, bool)
        if data_type in DATE_TYPES:
            if isinstance(value, date):
                return True
            return isinstance(value, str) and bool(_parse_date(value))
        if data_type in TIMESTAMP_TYPES:
            if isinstance(value, (date, datetime)):
                return True
            return isinstance(value, str) and bool(_parse_timestamp(value))
        if data_type in TIME_TYPES:
            return isinstance(value, time) or (isinstance(value, str) and bool(time.fromisoformat(value)))
        if data_type in JSON_TYPES:
            if isinstance(value, str):
                json.loads(value)
            return isinstance(value, (dict, list, str, int, float, bool))
        if data_type == "uuid":
            return isinstance(value, UUID) or (isinstance(value, str) and bool(UUID(value)))
        if data_type == "ARRAY":
            return isinstance(value, (list, tuple))
    except (ValueError, InvalidOperation):
        return False
    # Types without a rule are left to the database
    return True


def coerce_value(column: Optional[ColumnInfo], value: Any) -> Any:
    """Convert JSON-friendly values into what asyncpg expects for the column type."""
    if column is None or value is None:
        return value
    data_type = column.data_type
    if isinstance(value, str):
        if data_type in DATE_TYPES:
            return _parse_date(value)
        if data_type in TIMESTAMP_TYPES:
            return _parse_timestamp(value)
        if data_type in TIME_TYPES:
            return time.fromisoformat(value)
        if data_type == "uuid":
            return UUID(value)
        if data_type in NUMERIC_TYPES:
            return Decimal(value)
        if data_type in JSON_TYPES:
            try:
                json.loads(value)
                return value
            except ValueError:
                return json.dumps(value)
    if data_type in JSON_TYPES and not isinstance(value, str):
        return json.dumps(value, default=str)
    return value


BOOLEAN_TEXT = {
    "true": True, "t": True, "yes": True, "y": True, "1": True,
    "false": False, "f": False, "no": False, "n": False, "0": False,
}


def parse_text_value(column: Optional[ColumnInfo], value: Any) -> Any:
    """Like coerce_value, for values that arrive as text (CSV cells)."""
    if column is None or not isinstance(value, str):
        return coerce_value(column, value)
    data_type = column.data_type
    if data_type in INTEGER_TYPES:
        return int(value.strip())
    if data_type == "boolean":
        key = value.strip().lower()
        if key not in BOOLEAN_TEXT:
            raise ValueError(f"not a boolean: {value!r}")
        return BOOLEAN_TEXT[key]
    if data_type == "ARRAY":
        return json.loads(value)
    return coerce_value(column, value)


class DataValidator:
    """Validates payloads against live catalog metadata."""

    def __init__(self, db, cache: Optional[SchemaCache] = None):
        self.db = db
        self.cache = cache if cache is not None else SchemaCache(ttl_seconds=None)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    async def _cached(self, kind: str, table: str, sql: str) -> list:
        key = SchemaCache.generate_key(table, kind)
        rows = self.cache.get(key)
        if rows is None:
            rows = [dict(r) for r in await self.db.fetch(sql, table)]
            self.cache.set(key, rows)
        return rows

    async def get_columns(self, table: str) -> dict[str, ColumnInfo]:
        rows = await self._cached("columns", table, COLUMNS_SQL)
        return {row["column_name"]: ColumnInfo.from_row(row) for row in rows}

    async def get_foreign_keys(self, table: str) -> list[dict]:
        return await self._cached("fks", table, FOREIGN_KEYS_SQL)

    async def get_unique_columns(self, table: str) -> list[dict]:
        return await self._cached("unique", table, UNIQUE_COLUMNS_SQL)

    def invalidate(self, table: Optional[str] = None) -> None:
        """Forget cached metadata (after DDL, or for one table)."""
        if table is None:
            self.cache.clear()
        else:
            self.cache.invalidate_table(table)

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def validate_schema(self, table: str, data: dict[str, Any], operation: str = "insert") -> list[dict]:
        errors: list[dict] = []
        columns = await self.get_columns(table)
        if not columns:
            return [_error("UNKNOWN_TABLE", table, f"Table '{table}' has no columns in the live schema")]

        if operation == "insert":
            for column in columns.values():
                if column.name in SERVER_MANAGED_COLUMNS:
                    continue
                if not column.nullable and column.default is None and data.get(column.name) is None:
                    errors.append(_error(
                        "REQUIRED_FIELD", column.name, f"'{column.name}' is required",
                    ))

        for field, value in data.items():
            column = columns.get(field)
            if column is None:
                errors.append(_error("UNKNOWN_COLUMN", field, f"Column '{field}' does not exist on '{table}'"))
                continue

            if value is None:
                already_reported = any(e["path"] == field for e in errors)
                if not column.nullable and not already_reported:
                    errors.append(_error("NOT_NULL", field, f"'{field}' cannot be null"))
                continue

            if not _matches_type(column, value):
                errors.append(_error(
                    "TYPE_MISMATCH", field,
                    f"'{field}' expects {column.data_type}, got {type(value).__name__}",
                    expected=column.data_type,
                ))
                continue

            if column.max_length and isinstance(value, str) and len(value) > column.max_length:
                errors.append(_error(
                    "MAX_LENGTH", field,
                    f"'{field}' exceeds maximum length of {column.max_length}",
                    max_length=column.max_length, length=len(value),
                ))

            errors.extend(self._semantic_errors(field, value))

        return errors

    @staticmethod
    def _semantic_errors(field: str, value: Any) -> list[dict]:
        name = field.lower()
        if isinstance(value, str):
            if "email" in name and not EMAIL_RE.match(value):
                return [_error("INVALID_FORMAT", field, f"'{field}' is not a valid email address")]
            if "url" in name and not URL_RE.match(value):
                return [_error("INVALID_FORMAT", field, f"'{field}' is not a valid URL")]
        if (isinstance(value, (int, float, Decimal)) and not isinstance(value, bool) and value < 0
                and (name.endswith("_id") or name.endswith("count") or name.endswith("number"))):
            return [_error("NEGATIVE_VALUE", field, f"'{field}' must be non-negative")]
        return []

    async def validate_foreign_keys(self, table: str, data: dict[str, Any]) -> list[dict]:
        errors: list[dict] = []
        columns = await self.get_columns(table)
        for fk in await self.get_foreign_keys(table):
            column = fk["column_name"]
            value = data.get(column)
            if value is None:
                continue
            foreign_table = fk["foreign_table_name"]
            foreign_column = fk["foreign_column_name"]
            if not (IDENTIFIER_RE.match(foreign_table) and IDENTIFIER_RE.match(foreign_column)):
                logger.warning(f"Skipping FK check with unexpected identifier {foreign_table}.{foreign_column}")
                continue
            exists = await self.db.fetchval(
                f"SELECT EXISTS(SELECT 1 FROM {foreign_table} WHERE {foreign_column} = $1)",
                coerce_value(columns.get(column), value),
            )
            if not exists:
                errors.append(_error(
                    "FOREIGN_KEY_VIOLATION", column,
                    f"{column}={value} does not exist in {foreign_table}.{foreign_column}",
                    value=value, referenced_table=foreign_table, referenced_column=foreign_column,
                ))
        return errors

    async def validate_unique(self, table: str, data: dict[str, Any], record_id: Any = None) -> list[dict]:
        """
        One existence lookup per UNIQUE constraint, matching every column of
        the constraint. Constraints the payload does not fully cover are left
        to the database.
        """
        errors: list[dict] = []
        columns = await self.get_columns(table)
        constraints: dict[str, list[str]] = {}
        for unique in await self.get_unique_columns(table):
            constraints.setdefault(unique["constraint_name"], []).append(unique["column_name"])

        for constraint, names in constraints.items():
            if any(data.get(name) is None for name in names):
                continue
            if not all(IDENTIFIER_RE.match(name) for name in names):
                logger.warning(f"Skipping unique check on {constraint}: unexpected identifier")
                continue
            params = [coerce_value(columns.get(name), data[name]) for name in names]
            clauses = [f"{name} = ${i}" for i, name in enumerate(names, start=1)]
            if record_id is not None and "id" in columns:
                params.append(coerce_value(columns["id"], record_id))
                clauses.append(f"id != ${len(params)}")
            sql = f"SELECT EXISTS(SELECT 1 FROM {table} WHERE {' AND '.join(clauses)})"
            if await self.db.fetchval(sql, *params):
                pairs = ", ".join(f"{name}={data[name]}" for name in names)
                errors.append(_error(
                    "UNIQUE_VIOLATION", ",".join(names),
                    f"{pairs} already exists in {table}",
                    value=data[names[0]] if len(names) == 1 else {name: data[name] for name in names},
                    columns=names, constraint=constraint,
                ))
        return errors

    async def validate(self, table: str, data: dict[str, Any], operation: str = "insert",
                       record_id: Any = None) -> dict[str, Any]:
        """
        Run every pass. Returns {"valid": bool, "errors": [...]}.
        """
        errors = await self.validate_schema(table, data, operation)
        if not errors:
            errors.extend(await self.validate_foreign_keys(table, data))
            errors.extend(await self.validate_unique(table, data, record_id))
        return {"valid": not errors, "errors": errors}

    async def ensure_valid(self, table: str, data: dict[str, Any], operation: str = "insert",
                           record_id: Any = None) -> None:
        """Raise DatabaseAdminError when the payload does not validate."""
        result = await self.validate(table, data, operation, record_id)
        if result["valid"]:
            return
        errors = result["errors"]
        codes = {e["code"] for e in errors}
        if codes == {"FOREIGN_KEY_VIOLATION"}:
            code = ErrorCode.FOREIGN_KEY_VIOLATION
        elif codes == {"UNIQUE_VIOLATION"}:
            code = ErrorCode.UNIQUE_VIOLATION
        else:
            code = ErrorCode.VALIDATION_ERROR
        raise DatabaseAdminError(
            code,
            f"Validation failed for '{table}': " + "; ".join(e["message"] for e in errors),
            {"table": table, "errors": errors},
        )

    # ------------------------------------------------------------------
    # Coercion
    # ------------------------------------------------------------------

    async def coerce_record(self, table: str, data: dict[str, Any], from_text: bool = False) -> dict[str, Any]:
        columns = await self.get_columns(table)
        convert = parse_text_value if from_text else coerce_value
        coerced = {}
        for field, value in data.items():
            try:
                coerced[field] = convert(columns.get(field), value)
            except (ValueError, InvalidOperation) as e:
                raise DatabaseAdminError(
                    ErrorCode.VALIDATION_ERROR,
                    f"Invalid value for '{field}': {e}",
                    {"table": table, "column": field},
                ) from e
        return coerced

    async def coerce_where(self, table: str, where: Any) -> Any:
        """Coerce literal values inside a WHERE object, keeping its shape."""
        if not isinstance(where, dict) or not where:
            return where
        columns = await self.get_columns(table)

        def convert(column: str, value: Any) -> Any:
            try:
                return coerce_value(columns.get(column), value)
            except (ValueError, InvalidOperation):
                # Left as-is; LIKE patterns and the like are not typed values
                return value

        coerced = {}
        for column, criterion in where.items():
            if isinstance(criterion, dict):
                coerced[column] = {
                    op: (value if op == "$null"
                         else [convert(column, v) for v in value] if isinstance(value, list)
                         else value if op in ("$like", "$ilike")
                         else convert(column, value))
                    for op, value in criterion.items()
                }
            elif isinstance(criterion, list):
                coerced[column] = [convert(column, v) for v in criterion]
            else:
                coerced[column] = convert(column, criterion)
        return coerced
