"""
Audit Tools
Read-only views over the audit_logs table.
"""

from mcp import types

FILTERS_SCHEMA = {
    "type": "object",
    "properties": {
        "startDate": {"type": "string", "description": "ISO 8601 timestamp (inclusive)"},
        "endDate": {"type": "string", "description": "ISO 8601 timestamp (inclusive)"},
        "table": {"type": "string"},
        "operation": {
            "type": "string",
            "enum": ["CREATE", "READ", "UPDATE", "DELETE", "BATCH_INSERT", "BATCH_UPDATE", "BATCH_DELETE"],
        },
        "userId": {"type": "string"},
        "success": {"type": "boolean"},
        "limit": {"type": "integer", "minimum": 1, "maximum": 1000, "default": 100},
        "offset": {"type": "integer", "minimum": 0, "default": 0},
    },
}


def query_audit_logs() -> types.Tool:
    return types.Tool(
        name="query_audit_logs",
        description="Audit log entries, newest first, filtered by date range, table, operation, user or outcome.",
        inputSchema={
            "type": "object",
            "properties": {"filters": FILTERS_SCHEMA},
        },
    )


def get_audit_summary() -> types.Tool:
    return types.Tool(
        name="get_audit_summary",
        description="Totals, success rate and per-operation / per-table breakdown of audited operations.",
        inputSchema={
            "type": "object",
            "properties": {"filters": FILTERS_SCHEMA},
        },
    )


def get_audit_tools() -> list[types.Tool]:
    return [query_audit_logs(), get_audit_summary()]
