"""
Schema Handlers - read-only catalog views for whitelisted tables.
"""

from typing import Any

from mcp import types

from .responses import flag, guarded, require, text_response


@guarded
async def handle_get_schema(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    schema = await services.introspector.get_schema(
        require(arguments, "table"), refresh_cache=flag(arguments, "refresh_cache")
    )
    return text_response(schema)


@guarded
async def handle_list_tables(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    return text_response(await services.introspector.list_tables(arguments.get("pattern")))


@guarded
async def handle_get_relationships(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    """format "graph" returns nodes/edges instead of parents/children."""
    as_graph = arguments.get("format", "list") == "graph"
    result = await services.introspector.get_relationships(
        require(arguments, "table"), depth=arguments.get("depth", 1), as_graph=as_graph
    )
    return text_response(result)


@guarded
async def handle_list_table_columns(services, arguments: dict[str, Any]) -> list[types.TextContent]:
    result = await services.introspector.list_table_columns(
        require(arguments, "table"), include_metadata=flag(arguments, "include_metadata")
    )
    return text_response(result)
