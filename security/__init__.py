"""
Whitelist and access control for every table the server touches.
"""

from .whitelist import Whitelist, AUDIT_TABLE, DEFAULT_LIMIT, MAX_LIMIT
from .access_control import AccessControl, Permission, TableGuard, map_operation

__all__ = [
    'Whitelist',
    'AUDIT_TABLE',
    'DEFAULT_LIMIT',
    'MAX_LIMIT',
    'AccessControl',
    'Permission',
    'TableGuard',
    'map_operation',
]
