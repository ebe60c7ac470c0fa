"""
MCP Server Entry Point for PostgreSQL Database Administration
Run with: python server.py
"""

import asyncio
import logging
import os
import sys
from typing import Any, Optional

from mcp.server.models import InitializationOptions
from mcp.server import NotificationOptions, Server
from mcp.server.stdio import stdio_server
from mcp import types

from config import AuditConfig, BackupConfig, DatabaseConfig, get_whitelist_file
from container import ServiceContainer
from database import DatabaseConnection
from security import Whitelist

__version__ = "1.0.0"

SERVER_NAME = "pg-admin-mcp-server"

# Initialize logging (stderr; stdout carries the MCP stream)
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize server
app = Server(SERVER_NAME)
db: Optional[DatabaseConnection] = None
services: Optional[ServiceContainer] = None


@app.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """
    List available MCP tools:
    - CRUD: query_records, insert_record, update_records, delete_records
    - Batches: batch_insert, batch_update, batch_delete
    - Schema: get_schema, list_tables, get_relationships, list_table_columns
    - Audit: query_audit_logs, get_audit_summary
    - Backups: backup_*, restore_*, export_*, import_*, list/validate/delete/cleanup
    """
    from tools import get_core_tool_catalog
    return get_core_tool_catalog()


@app.call_tool()
async def handle_call_tool(
    name: str, arguments: dict[str, Any]
) -> list[types.TextContent]:
    """
    Handle tool execution.

    All tool handlers are organized in the handlers/ directory by category.
    No in-process locking: concurrent calls are isolated by their own
    transactions on separate pooled connections.
    """
    try:
        from handlers import dispatch
        return await dispatch(services, name, arguments)

    except Exception as e:
        logger.error(f"Error executing tool {name}: {e}", exc_info=True)
        from utils.error_messages import enhance_error_message
        enhanced_msg = enhance_error_message(e)
        return [types.TextContent(
            type="text",
            text=f"Error executing {name}: {enhanced_msg}"
        )]


async def build_services(config: DatabaseConfig) -> tuple[DatabaseConnection, ServiceContainer]:
    """
    Connect the pool and wire every service. Shared by stdio and HTTP modes.
    """
    connection = DatabaseConnection(config)
    await connection.connect()

    container = ServiceContainer(
        connection,
        config,
        whitelist=Whitelist.load(get_whitelist_file()),
        backup_config=BackupConfig.from_environment(),
        audit_config=AuditConfig.from_environment(),
    )
    if container.audit.config.auto_create:
        await container.audit.ensure_table()
    container.audit.start()
    return connection, container


async def shutdown_services(connection: Optional[DatabaseConnection], container: Optional[ServiceContainer]):
    if container is not None:
        await container.audit.stop()
    if connection is not None:
        await connection.disconnect()
        logger.info("Database connection closed")


async def main():
    """Main entry point for MCP server"""
    global db, services

    try:
        # Load database configuration (environment-aware)
        # Note: config.py handles loading .env.{mode} based on APP_ENV
        config = DatabaseConfig.from_environment()
        env_mode = os.getenv('APP_ENV', 'development')

        db, services = await build_services(config)

        logger.info(f"{SERVER_NAME} starting...")
        logger.info(f"Environment: {env_mode}")
        logger.info(f"Connected to database: {config.database} at {config.host}")
        logger.info(f"Whitelisted tables: {len(services.whitelist.tables)}")

        async with stdio_server() as (read_stream, write_stream):
            await app.run(
                read_stream,
                write_stream,
                InitializationOptions(
                    server_name=SERVER_NAME,
                    server_version=__version__,
                    capabilities=app.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={}
                    )
                )
            )
    except Exception as e:
        logger.error(f"Failed to start MCP server: {e}", exc_info=True)
        raise
    finally:
        await shutdown_services(db, services)


def cli_entry():
    """Entry point for console script - wraps async main()"""
    import argparse

    parser = argparse.ArgumentParser(description="PostgreSQL Admin MCP Server")
    parser.add_argument('--version', '-v', action='store_true', help='Show version')
    parser.add_argument('--http', action='store_true', help='Run in HTTP mode (Streamable HTTP transport)')
    parser.add_argument('--port', type=int, default=3333, help='Port for HTTP mode (default: 3333)')
    parser.add_argument('--host', type=str, default='127.0.0.1', help='Host for HTTP mode (default: 127.0.0.1)')
    parser.add_argument('--init-env', metavar='PATH', help='Write a template .env file to PATH and exit')

    args = parser.parse_args()

    if args.version:
        print(f"{SERVER_NAME} version {__version__}")
        sys.exit(0)

    if args.init_env:
        from config import create_env_file
        create_env_file(args.init_env)
        print(f"Wrote {args.init_env}")
        sys.exit(0)

    if args.http:
        logger.info(f"Starting in HTTP mode (Streamable HTTP) on {args.host}:{args.port}/mcp")
        from transport.http import run_http_server
        run_http_server(host=args.host, port=args.port)
    else:
        # Default: stdio mode
        logger.info("Starting in stdio mode...")
        asyncio.run(main())


if __name__ == "__main__":
    cli_entry()
