from .errors import DatabaseAdminError, ErrorCode, translate_db_error, is_retryable
from .serialization import serialize_value, serialize_row, format_bytes

__all__ = [
    'DatabaseAdminError',
    'ErrorCode',
    'translate_db_error',
    'is_retryable',
    'serialize_value',
    'serialize_row',
    'format_bytes',
]
