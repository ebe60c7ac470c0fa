"""
Backup and Restore Tools
Tools for SQL dump backups (pg_dump), restores (psql), JSON/CSV export and
import, and backup file management.
"""

from mcp import types

BACKUP_FILE_PROPERTY = {
    "type": "string",
    "description": "Backup file name inside the backup directory (from list_backups)",
}

ON_CONFLICT_PROPERTY = {
    "type": "string",
    "enum": ["error", "skip", "overwrite"],
    "default": "error",
    "description": (
        "error: stop at the first failing statement; skip: keep going past failures (same as skipErrors); "
        "overwrite: drop the backed-up tables first (same as dropExisting)"
    ),
}


def backup_full() -> types.Tool:
    """Create tool definition for backup_full"""
    return types.Tool(
        name="backup_full",
        description=(
            "Create a SQL dump of every whitelisted table using pg_dump, with a sidecar manifest "
            "(tables, record count, size, SHA-256 checksum)."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "compress": {"type": "boolean", "description": "gzip the dump (default from BACKUP_COMPRESSION)"},
                "includeSchema": {"type": "boolean", "description": "Include CREATE statements", "default": True},
            },
        },
    )


def backup_table() -> types.Tool:
    """Create tool definition for backup_table"""
    return types.Tool(
        name="backup_table",
        description="Create a SQL dump of one whitelisted table.",
        inputSchema={
            "type": "object",
            "properties": {
                "table": {"type": "string"},
                "dataOnly": {"type": "boolean", "default": False},
                "schemaOnly": {"type": "boolean", "default": False},
                "compress": {"type": "boolean"},
            },
            "required": ["table"],
        },
    )


def backup_incremental() -> types.Tool:
    """Create tool definition for backup_incremental"""
    return types.Tool(
        name="backup_incremental",
        description=(
            "Back up rows created or updated since a timestamp as upsert statements. "
            "Depends on a base full backup (default: the newest one). Tables without "
            "updated_at/created_at are skipped and reported."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "since": {"type": "string", "description": "ISO 8601 timestamp"},
                "tables": {"type": "array", "items": {"type": "string"}},
                "compress": {"type": "boolean"},
                "baseBackup": {"type": "string", "description": "Base full backup file name"},
            },
            "required": ["since"],
        },
    )


def export_json() -> types.Tool:
    """Create tool definition for export_json"""
    return types.Tool(
        name="export_json",
        description="Export rows of a table to a JSON file in the backup directory.",
        inputSchema={
            "type": "object",
            "properties": {
                "table": {"type": "string"},
                "where": {"type": "object"},
                "columns": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["table"],
        },
    )


def export_csv() -> types.Tool:
    """Create tool definition for export_csv"""
    return types.Tool(
        name="export_csv",
        description="Export rows of a table to a CSV file (header row) in the backup directory.",
        inputSchema={
            "type": "object",
            "properties": {
                "table": {"type": "string"},
                "where": {"type": "object"},
                "columns": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["table"],
        },
    )


IMPORT_MODE_PROPERTY = {
    "type": "string",
    "enum": ["error", "skip", "update"],
    "default": "error",
    "description": "On id conflict: fail, skip the row, or update the existing row",
}


def import_json() -> types.Tool:
    """Create tool definition for import_json"""
    return types.Tool(
        name="import_json",
        description="Import records from JSON data or an export file in one transaction.",
        inputSchema={
            "type": "object",
            "properties": {
                "table": {"type": "string"},
                "data": {"description": "Array of records, {records: [...]}, or the same as JSON text"},
                "file": {"type": "string", "description": "File in the backup directory (instead of data)"},
                "mode": IMPORT_MODE_PROPERTY,
            },
            "required": ["table"],
        },
    )


def import_csv() -> types.Tool:
    """Create tool definition for import_csv"""
    return types.Tool(
        name="import_csv",
        description="Import records from CSV text or an export file in one transaction.",
        inputSchema={
            "type": "object",
            "properties": {
                "table": {"type": "string"},
                "data": {"type": "string", "description": "CSV text"},
                "file": {"type": "string", "description": "File in the backup directory (instead of data)"},
                "mode": IMPORT_MODE_PROPERTY,
                "hasHeaders": {"type": "boolean", "default": True},
            },
            "required": ["table"],
        },
    )


def restore_full() -> types.Tool:
    """Create tool definition for restore_full"""
    return types.Tool(
        name="restore_full",
        description=(
            "Restore a full or incremental backup with psql after validating its manifest, "
            "checksum and the database connection."
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "backupFile": BACKUP_FILE_PROPERTY,
                "dropExisting": {"type": "boolean", "default": False},
                "skipErrors": {"type": "boolean", "default": False},
                "onConflict": ON_CONFLICT_PROPERTY,
            },
            "required": ["backupFile"],
        },
    )


def restore_table() -> types.Tool:
    """Create tool definition for restore_table"""
    return types.Tool(
        name="restore_table",
        description="Restore a single-table backup with psql.",
        inputSchema={
            "type": "object",
            "properties": {
                "backupFile": BACKUP_FILE_PROPERTY,
                "dropExisting": {"type": "boolean", "default": False},
                "skipErrors": {"type": "boolean", "default": False},
                "onConflict": ON_CONFLICT_PROPERTY,
            },
            "required": ["backupFile"],
        },
    )


def list_backups() -> types.Tool:
    """Create tool definition for list_backups"""
    return types.Tool(
        name="list_backups",
        description="List backup and export files, newest first, with manifest summaries.",
        inputSchema={
            "type": "object",
            "properties": {
                "type": {"type": "string", "enum": ["full", "table", "incremental", "export"]},
            },
        },
    )


def validate_backup() -> types.Tool:
    """Create tool definition for validate_backup"""
    return types.Tool(
        name="validate_backup",
        description="Check a backup file: size, manifest, checksum, gzip/SQL format and base backup reference.",
        inputSchema={
            "type": "object",
            "properties": {"backupFile": BACKUP_FILE_PROPERTY},
            "required": ["backupFile"],
        },
    )


def delete_backup() -> types.Tool:
    """Create tool definition for delete_backup"""
    return types.Tool(
        name="delete_backup",
        description="Delete a backup file and its manifest.",
        inputSchema={
            "type": "object",
            "properties": {"backupFile": BACKUP_FILE_PROPERTY},
            "required": ["backupFile"],
        },
    )


def cleanup_old_backups() -> types.Tool:
    """Create tool definition for cleanup_old_backups"""
    return types.Tool(
        name="cleanup_old_backups",
        description="Delete backups older than the retention period.",
        inputSchema={
            "type": "object",
            "properties": {
                "retentionDays": {"type": "integer", "minimum": 0, "description": "Default from BACKUP_RETENTION_DAYS"},
            },
        },
    )


def get_backup_tools() -> list[types.Tool]:
    return [
        backup_full(),
        backup_table(),
        backup_incremental(),
        restore_full(),
        restore_table(),
        export_json(),
        export_csv(),
        import_json(),
        import_csv(),
        list_backups(),
        validate_backup(),
        delete_backup(),
        cleanup_old_backups(),
    ]
