from .manager import BackupManager, render_upsert, sql_literal
from .process import ProcessResult, ProcessRunner
from .storage import BackupStorage, compute_checksum, detect_type, manifest_path
from .transfer import DataTransfer, parse_csv, rows_to_csv

__all__ = [
    'BackupManager',
    'BackupStorage',
    'DataTransfer',
    'ProcessResult',
    'ProcessRunner',
    'compute_checksum',
    'detect_type',
    'manifest_path',
    'parse_csv',
    'render_upsert',
    'rows_to_csv',
    'sql_literal',
]
