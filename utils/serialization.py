"""JSON helpers shared by tool responses and file exports."""

import json
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID


def serialize_value(obj: Any) -> Any:
    """JSON serialization helper for non-native types."""
    if obj is None or isinstance(obj, (bool, int, float, str, list, dict)):
        return obj
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, time):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (bytes, memoryview)):
        return bytes(obj).hex()
    return str(obj)


def serialize_row(row: Any) -> dict[str, Any]:
    return {k: serialize_value(v) for k, v in dict(row).items()}


def dumps(payload: Any, indent: int = 2) -> str:
    return json.dumps(payload, indent=indent, default=serialize_value)


def format_bytes(size: Optional[int]) -> str:
    """1536 -> '1.50 KB'"""
    if size is None:
        return "unknown"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.2f} {unit}"
        value /= 1024
    return f"{value:.2f} TB"
