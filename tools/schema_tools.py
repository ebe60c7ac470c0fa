"""
Schema Tools
Read-only introspection of whitelisted tables.
"""

from mcp import types


def get_schema() -> types.Tool:
    return types.Tool(
        name="get_schema",
        description="Columns, constraints (primary key, foreign keys, unique, check) and indexes of a table.",
        inputSchema={
            "type": "object",
            "properties": {
                "table": {"type": "string"},
                "refresh_cache": {
                    "type": "boolean",
                    "description": "Bypass the schema cache",
                    "default": False,
                },
            },
            "required": ["table"],
        },
    )


def list_tables() -> types.Tool:
    return types.Tool(
        name="list_tables",
        description="List whitelisted tables with column count, estimated rows and size.",
        inputSchema={
            "type": "object",
            "properties": {
                "pattern": {
                    "type": "string",
                    "description": "SQL LIKE pattern on table name, e.g. 'book%'",
                },
            },
        },
    )


def get_relationships() -> types.Tool:
    return types.Tool(
        name="get_relationships",
        description=(
            "Foreign-key relationships of a table: parents (tables it references) and children "
            "(tables referencing it), up to 3 hops."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "table": {"type": "string"},
                "depth": {"type": "integer", "minimum": 1, "maximum": 3, "default": 1},
                "format": {"type": "string", "enum": ["list", "graph"], "default": "list"},
            },
            "required": ["table"],
        },
    )


def list_table_columns() -> types.Tool:
    return types.Tool(
        name="list_table_columns",
        description="Column names and types of a table.",
        inputSchema={
            "type": "object",
            "properties": {
                "table": {"type": "string"},
                "include_metadata": {
                    "type": "boolean",
                    "description": "Include nullability and defaults",
                    "default": False,
                },
            },
            "required": ["table"],
        },
    )


def get_schema_tools() -> list[types.Tool]:
    return [get_schema(), list_tables(), get_relationships(), list_table_columns()]
