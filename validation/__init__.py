from .schema_cache import SchemaCache, DEFAULT_TTL_SECONDS
from .data_validator import DataValidator, ColumnInfo, coerce_value

__all__ = [
    'SchemaCache',
    'DEFAULT_TTL_SECONDS',
    'DataValidator',
    'ColumnInfo',
    'coerce_value',
]
