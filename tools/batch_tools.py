"""
Batch Tools
Atomic multi-record insert/update/delete. Every batch is one transaction.
"""

from mcp import types

from .database_tools import TABLE_PROPERTY, WHERE_DESCRIPTION


def batch_insert() -> types.Tool:
    return types.Tool(
        name="batch_insert",
        description=(
            "Insert up to 1000 records in one transaction. If any record fails, nothing is inserted "
            "and the error reports the failing record's index."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "table": TABLE_PROPERTY,
                "records": {
                    "type": "array",
                    "items": {"type": "object"},
                    "minItems": 1,
                    "maxItems": 1000,
                },
                "returnRecords": {
                    "type": "boolean",
                    "description": "Include inserted rows in the response",
                    "default": True,
                },
            },
            "required": ["table", "records"],
        },
    )


def batch_update() -> types.Tool:
    return types.Tool(
        name="batch_update",
        description="Apply up to 100 updates in one transaction; all succeed or none do.",
        inputSchema={
            "type": "object",
            "properties": {
                "table": TABLE_PROPERTY,
                "updates": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "data": {"type": "object"},
                            "where": {"type": "object", "description": WHERE_DESCRIPTION},
                        },
                        "required": ["data", "where"],
                    },
                    "minItems": 1,
                    "maxItems": 100,
                },
            },
            "required": ["table", "updates"],
        },
    )


def batch_delete() -> types.Tool:
    return types.Tool(
        name="batch_delete",
        description=(
            "Apply up to 100 deletes in one transaction; all succeed or none do. "
            "Soft delete is used where supported unless hard=true."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "table": TABLE_PROPERTY,
                "deletes": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "where": {"type": "object", "description": WHERE_DESCRIPTION},
                        },
                        "required": ["where"],
                    },
                    "minItems": 1,
                    "maxItems": 100,
                },
                "hard": {"type": "boolean", "default": False},
            },
            "required": ["table", "deletes"],
        },
    )


def get_batch_tools() -> list[types.Tool]:
    return [batch_insert(), batch_update(), batch_delete()]
