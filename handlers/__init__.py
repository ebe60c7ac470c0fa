"""
Handler Registry - Maps tool names to handler functions

This module provides a centralized registry that routes tool calls to their
respective handler functions. Handlers are organized by category matching
the tools/ directory structure.

Architecture:
- Each handler module exports async functions: handle_<tool_name>(services, arguments)
- `services` is the ServiceContainer (whitelist, guard, builder, tx, validator,
  audit, introspector, backups, transfer)
- Handlers never raise: errors come back as {"error": true, "code", ...} text
- Registry maps tool names to (handler_function, needs_db) tuples

Usage:
    from handlers import get_handler

    handler_info = get_handler(tool_name)
    if handler_info:
        handler, needs_db = handler_info
        result = await handler(services, arguments)
"""

from typing import Any, Callable, Optional, Tuple

from mcp import types

from utils.errors import DatabaseAdminError, ErrorCode

from . import audit_handlers
from . import backup_handlers
from . import batch_handlers
from . import database_handlers
from . import schema_handlers
from .responses import error_response


# Handler registry: {tool_name: (handler_function, needs_db)}
# - needs_db: Handler requires a live connection pool; without one the call
#   fails with CONNECTION_FAILURE before the handler runs
HANDLER_REGISTRY = {
    # CRUD
    "query_records": (database_handlers.handle_query_records, True),
    "insert_record": (database_handlers.handle_insert_record, True),
    "update_records": (database_handlers.handle_update_records, True),
    "delete_records": (database_handlers.handle_delete_records, True),

    # Batches - one transaction per call
    "batch_insert": (batch_handlers.handle_batch_insert, True),
    "batch_update": (batch_handlers.handle_batch_update, True),
    "batch_delete": (batch_handlers.handle_batch_delete, True),

    # Schema introspection
    "get_schema": (schema_handlers.handle_get_schema, True),
    "list_tables": (schema_handlers.handle_list_tables, True),
    "get_relationships": (schema_handlers.handle_get_relationships, True),
    "list_table_columns": (schema_handlers.handle_list_table_columns, True),

    # Audit trail
    "query_audit_logs": (audit_handlers.handle_query_audit_logs, True),
    "get_audit_summary": (audit_handlers.handle_get_audit_summary, True),

    # Backups (pg_dump / psql)
    "backup_full": (backup_handlers.handle_backup_full, True),
    "backup_table": (backup_handlers.handle_backup_table, True),
    "backup_incremental": (backup_handlers.handle_backup_incremental, True),
    "restore_full": (backup_handlers.handle_restore_full, True),
    "restore_table": (backup_handlers.handle_restore_table, True),

    # Export / import
    "export_json": (backup_handlers.handle_export_json, True),
    "export_csv": (backup_handlers.handle_export_csv, True),
    "import_json": (backup_handlers.handle_import_json, True),
    "import_csv": (backup_handlers.handle_import_csv, True),

    # Backup files - filesystem only
    "list_backups": (backup_handlers.handle_list_backups, False),
    "validate_backup": (backup_handlers.handle_validate_backup, False),
    "delete_backup": (backup_handlers.handle_delete_backup, False),
    "cleanup_old_backups": (backup_handlers.handle_cleanup_old_backups, False),
}


def get_handler(tool_name: str) -> Optional[Tuple[Callable, bool]]:
    """
    Get handler function and requirements for a tool.

    Returns:
        Tuple of (handler_function, needs_db) or None if not found
    """
    return HANDLER_REGISTRY.get(tool_name)


def list_all_handlers() -> list[str]:
    """Get list of all registered tool names."""
    return list(HANDLER_REGISTRY.keys())


async def dispatch(services, tool_name: str, arguments: Optional[dict[str, Any]]) -> list[types.TextContent]:
    """
    Route one tool call. Used by both stdio (server.py) and HTTP (transport/http.py).

    Unknown tools and a missing connection pool come back as structured errors.
    """
    handler_info = get_handler(tool_name)
    if not handler_info:
        return error_response(DatabaseAdminError(
            ErrorCode.UNKNOWN_OPERATION,
            f"Unknown tool: {tool_name}",
            {"tool": tool_name, "available_tools": list_all_handlers()},
        ))

    handler, needs_db = handler_info
    if needs_db and (services is None or not services.db.is_connected):
        return error_response(DatabaseAdminError(
            ErrorCode.CONNECTION_FAILURE, "Database is not connected", {"tool": tool_name}, retryable=True
        ))
    return await handler(services, arguments or {})


__all__ = [
    'HANDLER_REGISTRY',
    'dispatch',
    'get_handler',
    'list_all_handlers',
]
