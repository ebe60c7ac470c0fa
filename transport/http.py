"""
Streamable HTTP transport for MCP (Model Context Protocol).

Implements the MCP Streamable HTTP shape:
- Single /mcp endpoint for all JSON-RPC communication
- POST /mcp: accepts JSON-RPC requests, responds with JSON
- /healthz: health check endpoint (separate from /mcp)

Tool calls go through handlers.dispatch, the same path the stdio server uses.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.status import HTTP_202_ACCEPTED, HTTP_400_BAD_REQUEST, HTTP_503_SERVICE_UNAVAILABLE
import uvicorn

from config import DatabaseConfig
from container import ServiceContainer
from database import DatabaseConnection
from utils.jsonrpc import (
    DEFAULT_PROTOCOL_VERSION,
    JsonRpcError,
    create_error_response,
    create_success_response,
    is_notification,
    is_valid_jsonrpc,
    validate_mcp_protocol_version,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "pg-admin-mcp-server"
SERVER_VERSION = "1.0.0"

# Global state (initialized at startup, or injected by tests)
db: Optional[DatabaseConnection] = None
services: Optional[ServiceContainer] = None


@asynccontextmanager
async def lifespan(_app: FastAPI):
    await initialize_server()
    try:
        yield
    finally:
        await shutdown_server()


app = FastAPI(title="PostgreSQL Admin MCP Server - Streamable HTTP", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["MCP-Protocol-Version"],
)


def get_tools_list() -> list[dict]:
    from tools import get_core_tool_catalog
    return [
        {
            "name": tool.name,
            "description": tool.description,
            "inputSchema": tool.inputSchema,
        }
        for tool in get_core_tool_catalog()
    ]


async def handle_mcp_request(request_data: dict) -> Optional[dict]:
    """
    Handle a single MCP JSON-RPC request.

    Returns the JSON-RPC response dict, or None for notifications.
    """
    from handlers import dispatch

    method = request_data.get("method")
    params = request_data.get("params") or {}
    request_id = request_data.get("id")

    try:
        if method == "initialize":
            requested = params.get("protocolVersion")
            return create_success_response(request_id, {
                "protocolVersion": requested if validate_mcp_protocol_version(requested) else DEFAULT_PROTOCOL_VERSION,
                "capabilities": {"tools": {}},
                "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            })

        if method == "ping":
            return create_success_response(request_id, {})

        if method == "tools/list":
            return create_success_response(request_id, {"tools": get_tools_list()})

        if method == "tools/call":
            tool_name = params.get("name")
            if not tool_name:
                return create_error_response(request_id, JsonRpcError.INVALID_PARAMS, "Missing tool name")
            logger.info(f"[TOOL_CALL] {tool_name}")
            result = await dispatch(services, tool_name, params.get("arguments") or {})
            content = [{"type": item.type, "text": item.text} for item in result]
            return create_success_response(request_id, {"content": content})

        if method.startswith("notifications/"):
            return None

        return create_error_response(request_id, JsonRpcError.METHOD_NOT_FOUND, f"Unknown method: {method}")

    except Exception as e:
        logger.error(f"Error handling method {method}: {e}", exc_info=True)
        return create_error_response(request_id, JsonRpcError.INTERNAL_ERROR, str(e))


@app.post("/mcp")
async def mcp_post_endpoint(
    request: Request,
    mcp_protocol_version: Optional[str] = Header(None, alias="MCP-Protocol-Version"),
):
    """
    POST /mcp - Main MCP endpoint for JSON-RPC requests.

    Returns:
    - 202 Accepted for notifications (no body)
    - 200 OK with a JSON-RPC response otherwise
    - 400 for bad JSON, bad envelopes or an unsupported protocol version
    """
    if mcp_protocol_version and not validate_mcp_protocol_version(mcp_protocol_version):
        return JSONResponse(
            status_code=HTTP_400_BAD_REQUEST,
            content=create_error_response(
                None, JsonRpcError.INVALID_REQUEST,
                f"Unsupported MCP protocol version: {mcp_protocol_version}",
            ),
        )

    try:
        body = await request.json()
    except json.JSONDecodeError as e:
        return JSONResponse(
            status_code=HTTP_400_BAD_REQUEST,
            content=create_error_response(None, JsonRpcError.PARSE_ERROR, f"Invalid JSON: {e}"),
        )

    if not is_valid_jsonrpc(body):
        request_id = body.get("id") if isinstance(body, dict) else None
        return JSONResponse(
            status_code=HTTP_400_BAD_REQUEST,
            content=create_error_response(request_id, JsonRpcError.INVALID_REQUEST, "Invalid JSON-RPC request"),
        )

    if is_notification(body):
        asyncio.create_task(handle_mcp_request(body))
        return Response(status_code=HTTP_202_ACCEPTED)

    response = await handle_mcp_request(body)
    if response is None:
        return Response(status_code=HTTP_202_ACCEPTED)
    return JSONResponse(content=response)


@app.get("/healthz")
async def health_check():
    """Health check endpoint (separate from /mcp)"""
    if services is None or not await services.db.check_connection():
        return JSONResponse(
            status_code=HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "disconnected"},
        )
    return JSONResponse(content={
        "status": "healthy",
        "database": "connected",
        "pool": await services.db.get_pool_stats(),
        "audit": services.audit.get_stats(),
    })


async def initialize_server():
    """Connect and wire services unless they were injected already."""
    global db, services
    if services is not None:
        return
    from server import build_services

    config = DatabaseConfig.from_environment()
    db, services = await build_services(config)
    logger.info(f"Connected to database: {config.database} at {config.host}")


async def shutdown_server():
    global db, services
    from server import shutdown_services

    await shutdown_services(db, services)
    db = None
    services = None


def run_http_server(host: str = "127.0.0.1", port: int = 3333):
    """
    Run the MCP server with Streamable HTTP transport.

    Args:
        host: Host to bind to
        port: Port to listen on
    """
    logger.info(f"{SERVER_NAME} (HTTP) starting on http://{host}:{port}/mcp")
    uvicorn.run(app, host=host, port=port, log_level="info")
