"""
CRUD Tools
Query, insert, update and delete records in whitelisted tables.
"""

from mcp import types

WHERE_DESCRIPTION = (
    "Conditions joined with AND. Each key is a column; the value is a literal (equality), "
    "null (IS NULL), an array (= ANY), or an object of operators: "
    "$eq, $ne, $gt, $gte, $lt, $lte, $like, $ilike, $in (array), $null (boolean). "
    "Example: {\"word_count\": {\"$gte\": 80000}, \"genre\": {\"$in\": [\"fantasy\"]}}"
)

TABLE_PROPERTY = {
    "type": "string",
    "description": "Whitelisted table name",
}

WHERE_PROPERTY = {
    "type": "object",
    "description": WHERE_DESCRIPTION,
}


def query_records() -> types.Tool:
    """Create tool definition for query_records"""
    return types.Tool(
        name="query_records",
        description=(
            "Query records from a whitelisted table with filtering, sorting and pagination. "
            "Returns {total, count, records}; total is the match count ignoring limit/offset."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "table": TABLE_PROPERTY,
                "columns": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Columns to return (default: all)",
                },
                "where": WHERE_PROPERTY,
                "orderBy": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "column": {"type": "string"},
                            "direction": {"type": "string", "enum": ["ASC", "DESC"]},
                        },
                        "required": ["column"],
                    },
                    "description": "Sort order, e.g. [{\"column\": \"created_at\", \"direction\": \"DESC\"}]",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": 1000,
                    "default": 100,
                },
                "offset": {
                    "type": "integer",
                    "minimum": 0,
                    "default": 0,
                },
            },
            "required": ["table"],
        },
    )


def insert_record() -> types.Tool:
    """Create tool definition for insert_record"""
    return types.Tool(
        name="insert_record",
        description=(
            "Insert one record. The payload is validated against the live schema "
            "(types, required columns, foreign keys, unique constraints) before it is written. "
            "Returns the inserted row including generated id and timestamps."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "table": TABLE_PROPERTY,
                "data": {
                    "type": "object",
                    "description": "Column values for the new record",
                },
            },
            "required": ["table", "data"],
        },
    )


def update_records() -> types.Tool:
    """Create tool definition for update_records"""
    return types.Tool(
        name="update_records",
        description=(
            "Update records matching a where clause. The where clause is mandatory and may not be empty. "
            "updated_at is set automatically when the table has one. Returns {updated, records}."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "table": TABLE_PROPERTY,
                "data": {
                    "type": "object",
                    "description": "Column values to set",
                },
                "where": WHERE_PROPERTY,
            },
            "required": ["table", "data", "where"],
        },
    )


def delete_records() -> types.Tool:
    """Create tool definition for delete_records"""
    return types.Tool(
        name="delete_records",
        description=(
            "Delete records matching a where clause (mandatory, non-empty). Tables with a deleted_at "
            "column are soft-deleted unless hard=true; soft-deleting an already deleted row affects "
            "nothing. Returns {deleted, type, records}."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "table": TABLE_PROPERTY,
                "where": WHERE_PROPERTY,
                "hard": {
                    "type": "boolean",
                    "description": "Physically delete rows even when soft delete is available",
                    "default": False,
                },
            },
            "required": ["table", "where"],
        },
    )


def get_database_tools() -> list[types.Tool]:
    return [query_records(), insert_record(), update_records(), delete_records()]
