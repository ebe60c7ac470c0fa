from .logger import AuditLogger, AuditRecord, AUDIT_OPERATIONS, hash_query

__all__ = [
    'AuditLogger',
    'AuditRecord',
    'AUDIT_OPERATIONS',
    'hash_query',
]
