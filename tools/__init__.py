"""
MCP Tools Package

Tool groups:
- CRUD (query/insert/update/delete)
- Batch operations
- Schema introspection
- Audit log views
- Backup, restore, export and import
"""

from .audit_tools import get_audit_tools
from .backup_tools import get_backup_tools
from .batch_tools import get_batch_tools
from .database_tools import get_database_tools
from .schema_tools import get_schema_tools


def get_core_tool_catalog():
    """
    Get MCP tools. Every tool listed here has a handler in handlers.HANDLER_REGISTRY.
    """
    return [
        *get_database_tools(),
        *get_batch_tools(),
        *get_schema_tools(),
        *get_audit_tools(),
        *get_backup_tools(),
    ]


__all__ = [
    'get_core_tool_catalog',
    'get_audit_tools',
    'get_backup_tools',
    'get_batch_tools',
    'get_database_tools',
    'get_schema_tools',
]
