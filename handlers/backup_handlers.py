"""
Backup Handlers

Dump-based backups and restores (pg_dump/psql through BackupManager),
file export/import (DataTransfer) and backup file management.
"""

import logging
from typing import Any

from mcp import types

from utils.errors import DatabaseAdminError, ErrorCode

from .responses import audited, flag, guarded, json_argument, require, text_response

logger = logging.getLogger(__name__)


def _table_list(arguments: dict[str, Any], key: str):
    tables = json_argument(arguments, key)
    if tables is None:
        return None
    if isinstance(tables, str):
        return [tables]
    if not isinstance(tables, list):
        raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, f"'{key}' must be an array of table names")
    return tables


# ============================================================================
# Dumps
# ============================================================================

@guarded
async def handle_backup_full(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    result = await services.backups.backup_full(
        compress=flag(arguments, "compress", None),
        include_schema=flag(arguments, "includeSchema", True),
    )
    return text_response(result)


@guarded
async def handle_backup_table(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    result = await services.backups.backup_table(
        require(arguments, "table"),
        data_only=flag(arguments, "dataOnly"),
        schema_only=flag(arguments, "schemaOnly"),
        compress=flag(arguments, "compress", None),
    )
    return text_response(result)


@guarded
async def handle_backup_incremental(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    """Rows changed since `since`, on top of a base full backup."""
    result = await services.backups.backup_incremental(
        require(arguments, "since"),
        tables=_table_list(arguments, "tables"),
        compress=flag(arguments, "compress", None),
        base_backup=arguments.get("baseBackup"),
    )
    return text_response(result)


# ============================================================================
# Export / import
# ============================================================================

async def _export(services, arguments: dict[str, Any], fmt: str) -> list[types.TextContent]:
    table = services.guard.check(require(arguments, "table"), "EXPORT")
    async with audited(services, "READ", table) as scope:
        where = json_argument(arguments, "where")
        columns = json_argument(arguments, "columns")
        # Validates columns/operators before anything is read
        services.builder.build_select(table, columns, where)
        if fmt == "json":
            result = await services.transfer.export_json(table, where=where, columns=columns)
        else:
            result = await services.transfer.export_csv(table, where=where, columns=columns)
        scope.changes = {"exported": result["record_count"], "format": fmt, "file": result["file"]}
    return text_response(result)


@guarded
async def handle_export_json(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    return await _export(services, arguments, "json")


@guarded
async def handle_export_csv(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    return await _export(services, arguments, "csv")


@guarded
async def handle_import_json(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    table = services.guard.check(require(arguments, "table"), "IMPORT")
    mode = arguments.get("mode", "error")
    async with audited(services, "BATCH_INSERT", table) as scope:
        result = await services.transfer.import_json(
            table, data=json_argument(arguments, "data"), mode=mode, file=arguments.get("file")
        )
        scope.changes = {"imported": result["imported"], "mode": mode, "source": "json"}
    return text_response(result)


@guarded
async def handle_import_csv(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    table = services.guard.check(require(arguments, "table"), "IMPORT")
    mode = arguments.get("mode", "error")
    async with audited(services, "BATCH_INSERT", table) as scope:
        result = await services.transfer.import_csv(
            table,
            data=arguments.get("data"),
            mode=mode,
            file=arguments.get("file"),
            has_headers=flag(arguments, "hasHeaders", True),
        )
        scope.changes = {"imported": result["imported"], "mode": mode, "source": "csv"}
    return text_response(result)


# ============================================================================
# Restore
# ============================================================================

RESTORE_CONFLICT_POLICIES = ("error", "skip", "overwrite")


def _restore_options(arguments: dict[str, Any]) -> tuple[bool, bool]:
    """(drop_existing, skip_errors) from the flags and the onConflict policy."""
    policy = arguments.get("onConflict") or "error"
    if policy not in RESTORE_CONFLICT_POLICIES:
        raise DatabaseAdminError(
            ErrorCode.INVALID_ARGUMENT,
            f"Invalid onConflict '{policy}'",
            {"argument": "onConflict", "valid_values": list(RESTORE_CONFLICT_POLICIES)},
        )
    drop_existing = flag(arguments, "dropExisting") or policy == "overwrite"
    skip_errors = flag(arguments, "skipErrors") or policy == "skip"
    return drop_existing, skip_errors


@guarded
async def handle_restore_full(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    drop_existing, skip_errors = _restore_options(arguments)
    result = await services.backups.restore_full(
        require(arguments, "backupFile"), drop_existing=drop_existing, skip_errors=skip_errors,
    )
    services.invalidate_schema()
    return text_response(result)


@guarded
async def handle_restore_table(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    backup_file = require(arguments, "backupFile")
    drop_existing, skip_errors = _restore_options(arguments)
    plan = await services.backups.prepare_restore(backup_file, "table", drop_existing)
    # Single-table backups name exactly one table
    table = plan["tables"][0] if plan["tables"] else backup_file
    try:
        async with audited(services, "BATCH_INSERT", table) as scope:
            result = await services.backups.execute_restore(plan, drop_existing, skip_errors)
            scope.changes = {
                "source": "restore",
                "backupFile": result["file"],
                "drop_existing": drop_existing,
                "record_count": result["record_count"],
            }
    finally:
        for name in plan["tables"]:
            services.invalidate_schema(name)
    return text_response(result)


# ============================================================================
# Backup files
# ============================================================================

@guarded
async def handle_list_backups(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    return text_response(services.backups.list_backups(arguments.get("type")))


@guarded
async def handle_validate_backup(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    return text_response(await services.backups.validate_backup(require(arguments, "backupFile")))


@guarded
async def handle_delete_backup(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    return text_response(services.backups.delete_backup(require(arguments, "backupFile")))


@guarded
async def handle_cleanup_old_backups(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    days = arguments.get("retentionDays")
    if days is not None and (isinstance(days, bool) or not isinstance(days, int) or days < 0):
        raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, "retentionDays must be a non-negative integer")
    return text_response(services.backups.cleanup_old_backups(days))
