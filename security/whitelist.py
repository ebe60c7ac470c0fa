"""
Identifier Whitelist

The closed set of tables and columns the server will ever reference.
Table and column names cannot be passed as query parameters, so every
identifier that reaches SQL text must come out of this registry.
Absence means denial.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from utils.errors import DatabaseAdminError, ErrorCode

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"^[a-z_][a-z0-9_]*$")

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000

# Table -> allowed columns (order matters for SELECT * expansion and exports)
DEFAULT_TABLES: dict[str, tuple[str, ...]] = {
    # Core entities
    "authors": ("id", "name", "bio", "created_at", "updated_at"),
    "series": ("id", "title", "author_id", "description", "start_year", "status", "created_at", "updated_at"),
    "books": ("id", "series_id", "title", "author_id", "description", "genre", "word_count",
              "publication_year", "status", "book_order", "created_at", "updated_at", "deleted_at"),
    "chapters": ("id", "book_id", "chapter_number", "title", "content", "word_count", "status",
                 "created_at", "updated_at", "deleted_at"),
    "scenes": ("id", "chapter_id", "scene_number", "title", "content", "word_count", "pov_character_id",
               "location_id", "created_at", "updated_at", "deleted_at"),

    # Characters
    "characters": ("id", "series_id", "name", "role", "description", "appearance", "personality",
                   "backstory", "goals", "created_at", "updated_at", "deleted_at"),
    "character_arcs": ("id", "character_id", "book_id", "arc_type", "description", "starting_state",
                       "ending_state", "created_at", "updated_at"),
    "character_relationships": ("id", "character_id", "related_character_id", "relationship_type",
                                "description", "status", "created_at", "updated_at"),

    # World building
    "locations": ("id", "series_id", "name", "type", "description", "parent_location_id",
                  "created_at", "updated_at", "deleted_at"),
    "world_elements": ("id", "series_id", "element_type", "name", "description",
                       "created_at", "updated_at", "deleted_at"),
    "organizations": ("id", "series_id", "name", "type", "description",
                      "created_at", "updated_at", "deleted_at"),
    "plot_threads": ("id", "series_id", "book_id", "thread_type", "title", "description", "status",
                     "resolution", "created_at", "updated_at", "deleted_at"),
    "tropes": ("id", "trope_name", "category", "description", "created_at", "updated_at"),

    # Lookups
    "genres": ("id", "genre_name", "description", "parent_genre_id"),
    "lookup_values": ("id", "lookup_type", "value", "display_order", "is_active"),

    # Junctions
    "series_genres": ("series_id", "genre_id"),
    "book_genres": ("book_id", "genre_id"),
    "book_tropes": ("book_id", "trope_id", "prominence"),
    "character_scenes": ("character_id", "scene_id", "role"),

    # Sessions and exports
    "writing_sessions": ("id", "book_id", "chapter_id", "session_date", "words_written", "notes", "created_at"),
    "exports": ("id", "book_id", "export_format", "file_path", "status", "created_at", "updated_at"),

    # Audit
    "audit_logs": ("id", "timestamp", "operation", "table_name", "record_id", "user_id", "client_info",
                   "changes", "success", "error_message", "execution_time_ms", "query_hash"),

    "migrations": ("id", "filename", "run_on"),
}

# Tables with a deleted_at column
DEFAULT_SOFT_DELETE_TABLES = frozenset({
    "books", "chapters", "scenes", "characters", "locations",
    "world_elements", "organizations", "plot_threads",
})

# Written only by the server itself (audit) or seeded out of band (lookups)
DEFAULT_READ_ONLY_TABLES = frozenset({"genres", "lookup_values", "audit_logs"})

AUDIT_TABLE = "audit_logs"


def _error(code: ErrorCode, message: str, **details) -> DatabaseAdminError:
    return DatabaseAdminError(code, message, details)


class Whitelist:
    """
    Runtime table -> column registry.

    Kept as data rather than types so it can be swapped from a JSON file and
    compared against live catalog metadata.
    """

    def __init__(
        self,
        tables: dict[str, Iterable[str]],
        soft_delete_tables: Iterable[str] = (),
        read_only_tables: Iterable[str] = (),
    ):
        for name in tables:
            if not IDENTIFIER_RE.match(name):
                raise ValueError(f"Invalid table name in whitelist: {name!r}")
        self._tables: dict[str, tuple[str, ...]] = {}
        for name, columns in tables.items():
            columns = tuple(columns)
            for column in columns:
                if not IDENTIFIER_RE.match(column):
                    raise ValueError(f"Invalid column name in whitelist: {name}.{column}")
            self._tables[name] = columns
        self.soft_delete_tables = frozenset(soft_delete_tables)
        self.read_only_tables = frozenset(read_only_tables)

    @classmethod
    def default(cls) -> "Whitelist":
        return cls(DEFAULT_TABLES, DEFAULT_SOFT_DELETE_TABLES, DEFAULT_READ_ONLY_TABLES)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Whitelist":
        """
        Load a whitelist from JSON:
            {"tables": {"books": ["id", ...]}, "soft_delete": [...], "read_only": [...]}
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        tables = data.get("tables")
        if not isinstance(tables, dict) or not tables:
            raise ValueError(f"Whitelist file {path} has no 'tables' mapping")
        logger.info(f"Loaded whitelist with {len(tables)} tables from {path}")
        return cls(tables, data.get("soft_delete", []), data.get("read_only", []))

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Whitelist":
        return cls.from_file(path) if path else cls.default()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def tables(self) -> list[str]:
        return sorted(self._tables)

    def __contains__(self, table: object) -> bool:
        return table in self._tables

    def columns(self, table: str) -> tuple[str, ...]:
        self.validate_table(table)
        return self._tables[table]

    def has_column(self, table: str, column: str) -> bool:
        return column in self._tables.get(table, ())

    def supports_soft_delete(self, table: str) -> bool:
        return table in self.soft_delete_tables and self.has_column(table, "deleted_at")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_table(self, table: Any) -> str:
        if not table or not isinstance(table, str):
            raise _error(ErrorCode.NOT_WHITELISTED, "Table name must be a non-empty string", table=table)
        if table not in self._tables:
            raise _error(
                ErrorCode.NOT_WHITELISTED,
                f"Table '{table}' is not whitelisted",
                table=table,
                available_tables=self.tables,
            )
        return table

    def validate_columns(self, table: str, columns: Union[str, Iterable[str]]) -> list[str]:
        self.validate_table(table)
        if isinstance(columns, str):
            columns = [columns]
        allowed = self._tables[table]
        validated = []
        for column in columns:
            if not isinstance(column, str) or column not in allowed:
                raise _error(
                    ErrorCode.INVALID_COLUMN,
                    f"Column '{column}' is not allowed for table '{table}'",
                    table=table,
                    column=column,
                    allowed_columns=list(allowed),
                )
            validated.append(column)
        return validated

    def validate_order_by(self, table: str, order_by: Any) -> list[tuple[str, str]]:
        """
        Accepts "column", "-column", ["col", ...] or [{"column": ..., "direction": "ASC|DESC"}].
        Returns [(column, direction)].
        """
        if not order_by:
            return []
        items = order_by if isinstance(order_by, list) else [order_by]

        result = []
        for item in items:
            if isinstance(item, str):
                column, direction = (item[1:], "DESC") if item.startswith("-") else (item, "ASC")
            elif isinstance(item, dict):
                column = item.get("column")
                direction = str(item.get("direction", "ASC")).upper()
            else:
                raise _error(ErrorCode.INVALID_ARGUMENT, "orderBy entries must be strings or objects", order_by=item)

            if direction not in ("ASC", "DESC"):
                raise _error(ErrorCode.INVALID_ARGUMENT, f"Invalid sort direction '{direction}'", direction=direction)
            self.validate_columns(table, [column])
            result.append((column, direction))
        return result

    @staticmethod
    def validate_pagination(limit: Any = None, offset: Any = None) -> tuple[int, int]:
        if limit is None:
            limit = DEFAULT_LIMIT
        if offset is None:
            offset = 0
        if isinstance(limit, bool) or not isinstance(limit, int) or not 1 <= limit <= MAX_LIMIT:
            raise _error(ErrorCode.INVALID_ARGUMENT, f"limit must be an integer between 1 and {MAX_LIMIT}", limit=limit)
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise _error(ErrorCode.INVALID_ARGUMENT, "offset must be a non-negative integer", offset=offset)
        return limit, offset
