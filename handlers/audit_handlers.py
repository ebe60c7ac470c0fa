"""
Audit Handlers

query_audit_logs and get_audit_summary. Filters may be passed as a
`filters` object or as top-level arguments.
"""

from typing import Any

from mcp import types

from utils.errors import DatabaseAdminError, ErrorCode

from .responses import guarded, json_argument, text_response

FILTER_KEYS = ("startDate", "endDate", "table", "operation", "userId", "success", "limit", "offset")


def _filters(arguments: dict[str, Any]) -> dict[str, Any]:
    filters = json_argument(arguments, "filters") or {}
    if not isinstance(filters, dict):
        raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, "'filters' must be an object")
    merged = {key: arguments[key] for key in FILTER_KEYS if arguments.get(key) is not None}
    merged.update(filters)
    return merged


@guarded
async def handle_query_audit_logs(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    await services.audit.flush()
    return text_response(await services.audit.query_logs(_filters(arguments)))


@guarded
async def handle_get_audit_summary(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    await services.audit.flush()
    summary = await services.audit.get_summary(_filters(arguments))
    summary["logger"] = services.audit.get_stats()
    return text_response(summary)
