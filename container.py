"""
Service Container - Centralized dependency injection container

This module provides a single source of truth for service initialization,
ensuring consistency across all transport modes (stdio, HTTP, etc.).
"""

from typing import Optional

from audit import AuditLogger
from backup import BackupManager, DataTransfer, ProcessRunner
from config import AuditConfig, BackupConfig, DatabaseConfig
from query import QueryBuilder
from schema import RelationshipMapper, SchemaIntrospector
from security import AccessControl, TableGuard, Whitelist
from transactions import TransactionManager
from validation import DataValidator, SchemaCache


class ServiceContainer:
    """
    Container for service instances with attribute access.

    This is the single source of truth for all service initialization.
    Used by both stdio (server.py) and HTTP (transport/http.py) modes.
    """
    def __init__(
        self,
        db,
        db_config: DatabaseConfig,
        whitelist: Optional[Whitelist] = None,
        backup_config: Optional[BackupConfig] = None,
        audit_config: Optional[AuditConfig] = None,
        runner: Optional[ProcessRunner] = None,
    ):
        self.db = db
        self.db_config = db_config

        # Security
        self.whitelist = whitelist or Whitelist.default()
        self.access = AccessControl.for_whitelist(self.whitelist)
        self.guard = TableGuard(self.whitelist, self.access)

        # Query path
        self.builder = QueryBuilder(self.whitelist)
        self.tx = TransactionManager(db, self.builder, statement_timeout_ms=db_config.statement_timeout_ms)
        # Column metadata stays until invalidated; introspection results expire
        self.validator = DataValidator(db, SchemaCache(ttl_seconds=None))
        self.introspector = SchemaIntrospector(
            db, self.whitelist, SchemaCache(), RelationshipMapper(db, self.whitelist)
        )

        self.audit = AuditLogger(db, audit_config or AuditConfig.from_environment())

        # Backups
        self.backups = BackupManager(
            db,
            db_config,
            self.whitelist,
            self.builder,
            backup_config or BackupConfig.from_environment(),
            runner=runner,
            guard=self.guard,
        )
        self.transfer = DataTransfer(
            db, self.whitelist, self.builder, self.tx, self.backups.storage, validator=self.validator
        )

    def invalidate_schema(self, table: Optional[str] = None) -> None:
        """Drop cached column metadata, e.g. after a restore replaced tables."""
        self.validator.invalidate(table)
        self.introspector.invalidate(table)
