"""
Batch Handlers

batch_insert, batch_update and batch_delete. Each call is one transaction:
either every item lands or none does. Item-level errors carry the item's
index in their details.
"""

import logging
from typing import Any

from mcp import types

from transactions import MAX_BATCH_DELETE, MAX_BATCH_INSERT, MAX_BATCH_UPDATE, validate_batch_size
from utils.errors import DatabaseAdminError, ErrorCode

from .responses import audited, flag, guarded, json_argument, require, text_response

logger = logging.getLogger(__name__)


def _list_argument(arguments: dict[str, Any], key: str) -> list:
    items = json_argument(arguments, key)
    if not isinstance(items, list):
        raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, f"'{key}' must be an array", {"argument": key})
    return items


async def _check_schema(services, table: str, data: dict[str, Any], operation: str, index: int) -> None:
    errors = await services.validator.validate_schema(table, data, operation)
    if errors:
        raise DatabaseAdminError(
            ErrorCode.VALIDATION_ERROR,
            f"Validation failed for item {index}: " + "; ".join(e["message"] for e in errors),
            {"table": table, "index": index, "errors": errors},
        )


async def _coerce(services, table: str, data: dict[str, Any], index: int) -> dict[str, Any]:
    try:
        return await services.validator.coerce_record(table, data)
    except DatabaseAdminError as e:
        e.details["index"] = index
        raise


@guarded
async def handle_batch_insert(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    table = services.guard.check(require(arguments, "table"), "BATCH_INSERT")
    async with audited(services, "BATCH_INSERT", table) as scope:
        records = _list_argument(arguments, "records")
        return_records = flag(arguments, "returnRecords", True)
        validate_batch_size(len(records), MAX_BATCH_INSERT)

        for index, record in enumerate(records):
            try:
                services.builder.build_insert(table, record)
            except DatabaseAdminError as e:
                e.details["index"] = index
                raise

        coerced = []
        for index, record in enumerate(records):
            await _check_schema(services, table, record, "insert", index)
            coerced.append(await _coerce(services, table, record, index))

        result = await services.tx.batch_insert(table, coerced, return_records=return_records)
        scope.changes = {"count": result["inserted"]}

    return text_response(result)


@guarded
async def handle_batch_update(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    """updates: [{"data": {...}, "where": {...}}, ...]"""
    table = services.guard.check(require(arguments, "table"), "BATCH_UPDATE")
    async with audited(services, "BATCH_UPDATE", table) as scope:
        updates = _list_argument(arguments, "updates")
        validate_batch_size(len(updates), MAX_BATCH_UPDATE)

        for index, update in enumerate(updates):
            if not isinstance(update, dict):
                raise DatabaseAdminError(
                    ErrorCode.INVALID_ARGUMENT, "Each update must be an object with data and where", {"index": index}
                )
            try:
                services.builder.build_update(table, update.get("data"), update.get("where"))
            except DatabaseAdminError as e:
                e.details["index"] = index
                raise

        coerced = []
        for index, update in enumerate(updates):
            await _check_schema(services, table, update["data"], "update", index)
            coerced.append({
                "data": await _coerce(services, table, update["data"], index),
                "where": await services.validator.coerce_where(table, update["where"]),
            })

        result = await services.tx.batch_update(table, coerced)
        scope.changes = {"count": result["updated"], "items": len(updates)}

    return text_response(result)


@guarded
async def handle_batch_delete(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    """deletes: [{"where": {...}}, ...] or bare WHERE objects."""
    table = services.guard.check(require(arguments, "table"), "BATCH_DELETE")
    async with audited(services, "BATCH_DELETE", table) as scope:
        deletes = _list_argument(arguments, "deletes")
        hard = flag(arguments, "hard")
        validate_batch_size(len(deletes), MAX_BATCH_DELETE)

        wheres = []
        for index, item in enumerate(deletes):
            where = item.get("where", item) if isinstance(item, dict) else item
            try:
                services.builder.build_delete_for(table, where, hard=hard)
            except DatabaseAdminError as e:
                e.details["index"] = index
                raise
            wheres.append(where)

        coerced = [{"where": await services.validator.coerce_where(table, where)} for where in wheres]

        result = await services.tx.batch_delete(table, coerced, hard=hard)
        scope.changes = {"count": result["deleted"], "type": result["type"]}

    return text_response(result)
