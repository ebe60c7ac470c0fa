"""
CRUD Handlers

query_records, insert_record, update_records and delete_records.

Every handler validates the whole request (whitelist, access, columns,
operators, mandatory WHERE) against the raw arguments before the first
statement reaches the database; only then are values coerced against live
column metadata and the statement executed through the TransactionManager.
Once access is granted the request is audited, rejections included.
"""

import logging
from typing import Any

from mcp import types

from .responses import audited, flag, guarded, json_argument, require, scalar_id, text_response

logger = logging.getLogger(__name__)


@guarded
async def handle_query_records(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    """
    Handle query_records tool.

    Returns {total, count, records}; total ignores limit/offset.
    """
    table = services.guard.check(require(arguments, "table"), "READ")
    async with audited(services, "READ", table) as scope:
        columns = json_argument(arguments, "columns")
        where = json_argument(arguments, "where")
        order_by = json_argument(arguments, "orderBy")
        limit = arguments.get("limit")
        offset = arguments.get("offset")

        # Raises on bad columns/operators/pagination before any SQL runs
        services.builder.build_select(table, columns, where, order_by, limit, offset)

        where = await services.validator.coerce_where(table, where)
        select_sql, select_params = services.builder.build_select(table, columns, where, order_by, limit, offset)
        count_sql, count_params = services.builder.build_count(table, where)

        scope.query = select_sql
        count_rows, records = await services.tx.execute_statements(
            [(count_sql, count_params), (select_sql, select_params)], table=table
        )

    total = count_rows[0]["count"] if count_rows else 0
    return text_response({"total": total, "count": len(records), "records": records})


@guarded
async def handle_insert_record(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    table = services.guard.check(require(arguments, "table"), "INSERT")
    async with audited(services, "CREATE", table) as scope:
        data = json_argument(arguments, "data")
        services.builder.build_insert(table, data)

        await services.validator.ensure_valid(table, data, "insert")
        record = await services.validator.coerce_record(table, data)
        sql, params = services.builder.build_insert(table, record)

        scope.query = sql
        rows = await services.tx.execute_one(sql, params, table=table)
        inserted = rows[0] if rows else {}
        scope.record_id = inserted.get("id")
        scope.changes = {"after": inserted}

    return text_response(inserted)


@guarded
async def handle_update_records(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    table = services.guard.check(require(arguments, "table"), "UPDATE")
    async with audited(services, "UPDATE", table) as scope:
        data = json_argument(arguments, "data")
        where = json_argument(arguments, "where")
        scope.record_id = scalar_id(where)
        services.builder.build_update(table, data, where)

        await services.validator.ensure_valid(table, data, "update", record_id=scalar_id(where))
        record = await services.validator.coerce_record(table, data)
        where = await services.validator.coerce_where(table, where)
        sql, params = services.builder.build_update(table, record, where)

        scope.query = sql
        rows = await services.tx.execute_one(sql, params, table=table)
        scope.changes = {"set": data, "affected": len(rows)}

    return text_response({"updated": len(rows), "records": rows})


@guarded
async def handle_delete_records(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    """
    Soft delete where the table supports it, unless hard=true.

    Repeating a soft delete affects zero rows.
    """
    table = services.guard.check(require(arguments, "table"), "DELETE")
    async with audited(services, "DELETE", table) as scope:
        where = json_argument(arguments, "where")
        hard = flag(arguments, "hard")
        scope.record_id = scalar_id(where)
        services.builder.build_delete_for(table, where, hard=hard)

        where = await services.validator.coerce_where(table, where)
        sql, params, delete_type = services.builder.build_delete_for(table, where, hard=hard)

        scope.query = sql
        rows = await services.tx.execute_one(sql, params, table=table)
        scope.changes = {"type": delete_type, "affected": len(rows)}

    return text_response({"deleted": len(rows), "type": delete_type, "records": rows})
