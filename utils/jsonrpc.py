"""
JSON-RPC 2.0 helpers for the MCP HTTP transport.

Handles:
- Request/notification validation
- Error code constants
- Response envelopes
"""

from typing import Any, Optional

SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26")
DEFAULT_PROTOCOL_VERSION = "2024-11-05"


class JsonRpcError:
    """Standard JSON-RPC 2.0 error codes"""
    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


def is_valid_jsonrpc(data: Any) -> bool:
    """A dict with jsonrpc "2.0" and a string method."""
    return (
        isinstance(data, dict)
        and data.get("jsonrpc") == "2.0"
        and isinstance(data.get("method"), str)
    )


def is_notification(data: dict) -> bool:
    """Notifications carry no "id" and get no response."""
    return "id" not in data


def create_success_response(request_id: Any, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def create_error_response(request_id: Any, code: int, message: str, data: Any = None) -> dict:
    error: dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


def validate_mcp_protocol_version(version: Optional[str]) -> bool:
    """Check an MCP-Protocol-Version header value."""
    return bool(version) and version in SUPPORTED_PROTOCOL_VERSIONS
