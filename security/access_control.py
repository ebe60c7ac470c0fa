"""
Access Control

Table-level permissions. An operation name is first mapped to a permission
category (READ / WRITE / DELETE); the table must then be listed under that
category. Restricted and admin-only tables are denied outright, and operation
names missing from the map fail closed.
"""

from enum import Enum
from typing import Iterable, Optional

from utils.errors import DatabaseAdminError, ErrorCode

from .whitelist import Whitelist


class Permission(str, Enum):
    READ = "READ"
    WRITE = "WRITE"
    DELETE = "DELETE"


OPERATION_PERMISSIONS: dict[str, Permission] = {
    "READ": Permission.READ,
    "QUERY": Permission.READ,
    "SELECT": Permission.READ,
    "EXPORT": Permission.READ,
    "INSERT": Permission.WRITE,
    "UPDATE": Permission.WRITE,
    "WRITE": Permission.WRITE,
    "UPSERT": Permission.WRITE,
    "IMPORT": Permission.WRITE,
    "BATCH_INSERT": Permission.WRITE,
    "BATCH_UPDATE": Permission.WRITE,
    "DELETE": Permission.DELETE,
    "BATCH_DELETE": Permission.DELETE,
}

RESTRICTED_TABLES = frozenset({"users", "auth_tokens", "system_config"})
ADMIN_ONLY_TABLES = frozenset({"system_settings"})

# Whitelisted and writable, but rows are never removed through the tools
NO_DELETE_TABLES = frozenset({"authors", "series", "tropes", "migrations"})


def map_operation(operation: str) -> Permission:
    """Map an operation name to its permission category."""
    if not operation or not isinstance(operation, str):
        raise DatabaseAdminError(ErrorCode.UNKNOWN_OPERATION, "Operation must be a non-empty string")
    try:
        return OPERATION_PERMISSIONS[operation.upper()]
    except KeyError:
        raise DatabaseAdminError(
            ErrorCode.UNKNOWN_OPERATION,
            f"Unknown operation type: {operation}",
            {"operation": operation, "known_operations": sorted(OPERATION_PERMISSIONS)},
        ) from None


class AccessControl:
    """Per-table permission lists."""

    def __init__(
        self,
        read: Iterable[str],
        write: Iterable[str],
        delete: Iterable[str],
        restricted: Iterable[str] = RESTRICTED_TABLES,
        admin_only: Iterable[str] = ADMIN_ONLY_TABLES,
    ):
        self.permissions: dict[Permission, frozenset[str]] = {
            Permission.READ: frozenset(read),
            Permission.WRITE: frozenset(write),
            Permission.DELETE: frozenset(delete),
        }
        self.restricted = frozenset(restricted)
        self.admin_only = frozenset(admin_only)

    @classmethod
    def for_whitelist(cls, whitelist: Whitelist) -> "AccessControl":
        """Derive permission lists from a whitelist: everything is readable,
        read-only tables are not writable, and a few tables are never deleted from."""
        tables = set(whitelist.tables) - RESTRICTED_TABLES - ADMIN_ONLY_TABLES
        write = tables - whitelist.read_only_tables
        delete = write - NO_DELETE_TABLES
        return cls(read=tables, write=write, delete=delete)

    def _denied(self, table: str, operation: str, reason: str) -> DatabaseAdminError:
        return DatabaseAdminError(
            ErrorCode.ACCESS_DENIED,
            f"Access denied: {operation} on table '{table}'. {reason}",
            {"table": table, "operation": operation, "allowed_operations": self.get_allowed_operations(table)},
        )

    def validate_table_access(self, table: str, operation: str) -> Permission:
        if not table or not isinstance(table, str):
            raise DatabaseAdminError(ErrorCode.NOT_WHITELISTED, "Table name must be a non-empty string")

        operation = operation.upper() if isinstance(operation, str) else operation

        if table in self.restricted:
            raise self._denied(table, operation, "This table is restricted and cannot be accessed")
        if table in self.admin_only:
            raise self._denied(table, operation, "This table requires administrator privileges")

        permission = map_operation(operation)
        if table not in self.permissions[permission]:
            raise self._denied(table, operation, f"{permission.value} permission denied")
        return permission

    def can(self, table: str, operation: str) -> bool:
        try:
            self.validate_table_access(table, operation)
        except DatabaseAdminError:
            return False
        return True

    def get_allowed_operations(self, table: str) -> list[str]:
        if table in self.restricted or table in self.admin_only:
            return []
        return [p.value for p in Permission if table in self.permissions[p]]

    def get_tables_with_permission(self, permission: str) -> list[str]:
        try:
            key = Permission(permission.upper())
        except ValueError:
            raise DatabaseAdminError(
                ErrorCode.UNKNOWN_OPERATION, f"Unknown permission: {permission}", {"permission": permission}
            ) from None
        return sorted(self.permissions[key])


class TableGuard:
    """
    Single entry point used by handlers: whitelist first, then access control.
    """

    def __init__(self, whitelist: Whitelist, access: Optional[AccessControl] = None):
        self.whitelist = whitelist
        self.access = access or AccessControl.for_whitelist(whitelist)

    def check(self, table: str, operation: str) -> str:
        self.whitelist.validate_table(table)
        self.access.validate_table_access(table, operation)
        return table
