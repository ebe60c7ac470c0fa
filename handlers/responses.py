"""
Shared handler plumbing: argument parsing, JSON text responses, error
conversion and the audit scope used by data-changing handlers.
"""

import functools
import json
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from mcp import types

from utils.error_messages import enhance_error_message
from utils.errors import DatabaseAdminError, ErrorCode
from utils.serialization import serialize_value

logger = logging.getLogger(__name__)


def text_response(payload: Any) -> list[types.TextContent]:
    return [types.TextContent(type="text", text=json.dumps(payload, indent=2, default=serialize_value))]


def error_response(error: DatabaseAdminError) -> list[types.TextContent]:
    return text_response(error.to_dict())


def guarded(handler):
    """
    Turn DatabaseAdminError into its structured response; anything else is
    logged and reported as DATABASE_ERROR.
    """
    @functools.wraps(handler)
    async def wrapper(services, arguments: dict[str, Any]) -> list[types.TextContent]:
        try:
            return await handler(services, arguments or {})
        except DatabaseAdminError as e:
            logger.info(f"{handler.__name__} rejected: {e.code.value} {e.message}")
            return error_response(e)
        except Exception as e:
            logger.error(f"Unexpected error in {handler.__name__}: {e}", exc_info=True)
            return error_response(DatabaseAdminError(ErrorCode.DATABASE_ERROR, enhance_error_message(e)))
    return wrapper


# ============================================================================
# Argument helpers
# ============================================================================

def json_argument(arguments: dict[str, Any], key: str, default: Any = None) -> Any:
    """Objects and arrays may arrive as JSON strings; decode those."""
    value = arguments.get(key, default)
    if isinstance(value, str) and value.strip()[:1] in ("{", "["):
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise DatabaseAdminError(
                ErrorCode.INVALID_ARGUMENT, f"Invalid JSON in '{key}': {e}", {"argument": key}
            ) from e
    return value


def require(arguments: dict[str, Any], key: str) -> Any:
    value = arguments.get(key)
    if value is None or value == "":
        raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, f"'{key}' is required", {"argument": key})
    return value


def flag(arguments: dict[str, Any], key: str, default: Optional[bool] = False) -> Optional[bool]:
    value = arguments.get(key, default)
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, f"'{key}' must be a boolean", {"argument": key})


def scalar_id(where: Any) -> Any:
    """The record id when a WHERE targets exactly one id value."""
    if isinstance(where, dict):
        value = where.get("id")
        if value is not None and not isinstance(value, (dict, list)):
            return value
    return None


# ============================================================================
# Audit scope
# ============================================================================

@dataclass
class AuditScope:
    record_id: Any = None
    changes: Optional[dict] = None
    query: Optional[str] = None


@asynccontextmanager
async def audited(services, operation: str, table: str):
    """
    Usage:
        async with audited(services, "UPDATE", table) as scope:
            scope.query = sql
            ...
    Logs success or failure with timing once the block exits.
    """
    scope = AuditScope()
    started = time.perf_counter()
    try:
        yield scope
    except Exception as e:
        services.audit.log_failure(
            operation, table, e,
            record_id=scope.record_id,
            execution_time_ms=(time.perf_counter() - started) * 1000,
            query=scope.query,
        )
        raise
    services.audit.log_success(
        operation, table,
        record_id=scope.record_id,
        changes=scope.changes,
        execution_time_ms=(time.perf_counter() - started) * 1000,
        query=scope.query,
    )
