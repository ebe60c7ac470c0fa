"""
Query Builder

Compiles query descriptors into (sql, params) pairs. Values only ever travel
in params as asyncpg positional parameters ($1, $2, ...); the SQL text holds
nothing but whitelisted identifiers, keywords and placeholders.

Statements:
- SELECT / COUNT with optional WHERE, ORDER BY, LIMIT, OFFSET
- INSERT ... RETURNING *
- UPDATE ... SET ... (+ updated_at) WHERE ... RETURNING *
- DELETE ... WHERE ... RETURNING *
- soft DELETE: UPDATE ... SET deleted_at ... WHERE ... AND deleted_at IS NULL RETURNING *
- INSERT ... ON CONFLICT for imports
"""

import logging
from typing import Any, Optional

from security.whitelist import Whitelist
from utils.errors import DatabaseAdminError, ErrorCode

from .conditions import Condition, condition_columns, parse_where, render_condition

logger = logging.getLogger(__name__)

CONFLICT_MODES = ("error", "skip", "update")


def _normalize(sql: str) -> str:
    return " ".join(sql.split())


class QueryBuilder:
    """Builds parameterized SQL against a whitelist."""

    def __init__(self, whitelist: Whitelist):
        self.whitelist = whitelist

    # ------------------------------------------------------------------
    # WHERE
    # ------------------------------------------------------------------

    def parse_conditions(self, table: str, where: Any) -> list[Condition]:
        conditions = parse_where(where)
        self.whitelist.validate_columns(table, condition_columns(conditions))
        return conditions

    def build_where(self, table: str, where: Any, params: list, required: bool = False) -> str:
        """
        Render a WHERE clause (without the keyword), appending values to params.

        required=True rejects a missing or empty condition set; mutations must
        never touch a whole table.
        """
        conditions = self.parse_conditions(table, where)
        if required and not conditions:
            raise DatabaseAdminError(
                ErrorCode.EMPTY_WHERE_CLAUSE,
                f"A non-empty where clause is required to modify '{table}'",
                {"table": table},
            )
        return " AND ".join(render_condition(c, params) for c in conditions)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def build_select(
        self,
        table: str,
        columns: Optional[list[str]] = None,
        where: Any = None,
        order_by: Any = None,
        limit: Any = None,
        offset: Any = None,
    ) -> tuple[str, list]:
        self.whitelist.validate_table(table)
        column_sql = ", ".join(self.whitelist.validate_columns(table, columns)) if columns else "*"
        conditions = self.parse_conditions(table, where)
        order = self.whitelist.validate_order_by(table, order_by)
        limit, offset = self.whitelist.validate_pagination(limit, offset)

        params: list = []
        sql = f"SELECT {column_sql} FROM {table}"
        if conditions:
            sql += " WHERE " + " AND ".join(render_condition(c, params) for c in conditions)
        if order:
            sql += " ORDER BY " + ", ".join(f"{col} {direction}" for col, direction in order)
        params.append(limit)
        sql += f" LIMIT ${len(params)}"
        if offset:
            params.append(offset)
            sql += f" OFFSET ${len(params)}"
        return _normalize(sql), params

    def build_count(self, table: str, where: Any = None) -> tuple[str, list]:
        self.whitelist.validate_table(table)
        params: list = []
        where_sql = self.build_where(table, where, params)
        sql = f"SELECT COUNT(*) AS count FROM {table}"
        if where_sql:
            sql += f" WHERE {where_sql}"
        return _normalize(sql), params

    def build_changed_since(self, table: str, timestamp_column: str, since: Any) -> tuple[str, list]:
        """SELECT every row whose timestamp column is newer than `since`."""
        self.whitelist.validate_columns(table, [timestamp_column])
        return f"SELECT * FROM {table} WHERE {timestamp_column} > $1", [since]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _validate_payload(self, table: str, data: Any) -> list[str]:
        if not isinstance(data, dict) or not data:
            raise DatabaseAdminError(
                ErrorCode.VALIDATION_ERROR, "data must be a non-empty object", {"table": table}
            )
        return self.whitelist.validate_columns(table, list(data.keys()))

    def build_insert(self, table: str, data: dict[str, Any]) -> tuple[str, list]:
        self.whitelist.validate_table(table)
        columns = self._validate_payload(table, data)
        params = [data[c] for c in columns]
        placeholders = ", ".join(f"${i}" for i in range(1, len(params) + 1))
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) RETURNING *"
        return sql, params

    def build_upsert(self, table: str, data: dict[str, Any], mode: str = "error",
                     conflict_column: str = "id") -> tuple[str, list]:
        """
        INSERT with a conflict policy:
        - error: plain insert, conflicts raise
        - skip: ON CONFLICT DO NOTHING
        - update: ON CONFLICT (conflict_column) DO UPDATE SET every other column
        """
        if mode not in CONFLICT_MODES:
            raise DatabaseAdminError(
                ErrorCode.INVALID_ARGUMENT,
                f"Invalid conflict mode '{mode}'",
                {"mode": mode, "valid_modes": list(CONFLICT_MODES)},
            )
        sql, params = self.build_insert(table, data)
        if mode == "error":
            return sql, params

        head = sql[: -len(" RETURNING *")]
        if mode == "skip":
            return f"{head} ON CONFLICT DO NOTHING RETURNING *", params

        self.whitelist.validate_columns(table, [conflict_column])
        if conflict_column not in data:
            raise DatabaseAdminError(
                ErrorCode.VALIDATION_ERROR,
                f"Upsert requires '{conflict_column}' in every record",
                {"table": table, "column": conflict_column},
            )
        updates = [c for c in data if c != conflict_column]
        if not updates:
            return f"{head} ON CONFLICT DO NOTHING RETURNING *", params
        set_sql = ", ".join(f"{c} = EXCLUDED.{c}" for c in updates)
        if self.whitelist.has_column(table, "updated_at") and "updated_at" not in data:
            set_sql += ", updated_at = CURRENT_TIMESTAMP"
        return f"{head} ON CONFLICT ({conflict_column}) DO UPDATE SET {set_sql} RETURNING *", params

    def build_update(self, table: str, data: dict[str, Any], where: Any) -> tuple[str, list]:
        self.whitelist.validate_table(table)
        columns = self._validate_payload(table, data)
        conditions = self.parse_conditions(table, where)
        if not conditions:
            raise DatabaseAdminError(
                ErrorCode.EMPTY_WHERE_CLAUSE,
                f"A non-empty where clause is required to modify '{table}'",
                {"table": table},
            )

        # SET parameters come first, WHERE parameters after
        params: list = []
        assignments = []
        for column in columns:
            params.append(data[column])
            assignments.append(f"{column} = ${len(params)}")
        if self.whitelist.has_column(table, "updated_at") and "updated_at" not in data:
            assignments.append("updated_at = CURRENT_TIMESTAMP")

        where_sql = " AND ".join(render_condition(c, params) for c in conditions)
        sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE {where_sql} RETURNING *"
        return sql, params

    def build_delete(self, table: str, where: Any) -> tuple[str, list]:
        self.whitelist.validate_table(table)
        params: list = []
        where_sql = self.build_where(table, where, params, required=True)
        return f"DELETE FROM {table} WHERE {where_sql} RETURNING *", params

    def build_soft_delete(self, table: str, where: Any) -> tuple[str, list]:
        """
        Mark rows deleted. Already-deleted rows are excluded by the IS NULL
        guard, so repeating the call affects zero rows.
        """
        self.whitelist.validate_table(table)
        if not self.whitelist.supports_soft_delete(table):
            raise DatabaseAdminError(
                ErrorCode.VALIDATION_ERROR,
                f"Table '{table}' does not support soft delete",
                {"table": table},
            )
        params: list = []
        where_sql = self.build_where(table, where, params, required=True)
        assignments = ["deleted_at = CURRENT_TIMESTAMP"]
        if self.whitelist.has_column(table, "updated_at"):
            assignments.append("updated_at = CURRENT_TIMESTAMP")
        sql = (
            f"UPDATE {table} SET {', '.join(assignments)} "
            f"WHERE {where_sql} AND deleted_at IS NULL RETURNING *"
        )
        return sql, params

    def build_delete_for(self, table: str, where: Any, hard: bool = False) -> tuple[str, list, str]:
        """Pick soft or hard delete. Returns (sql, params, 'soft'|'hard')."""
        if not hard and self.whitelist.supports_soft_delete(table):
            sql, params = self.build_soft_delete(table, where)
            return sql, params, "soft"
        sql, params = self.build_delete(table, where)
        return sql, params, "hard"
