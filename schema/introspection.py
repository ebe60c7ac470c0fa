"""
Schema introspection for whitelisted tables.

Results are cached in a TTL SchemaCache; `refresh_cache` on get_schema
bypasses and replaces the cached entry.
"""

import logging
from typing import Any, Optional

from security.whitelist import Whitelist
from transactions import DRIVER_ERRORS
from utils.errors import DatabaseAdminError, ErrorCode, translate_db_error
from utils.serialization import format_bytes
from validation.schema_cache import SchemaCache

from .relationships import RelationshipMapper, validate_depth

logger = logging.getLogger(__name__)

SCHEMA_COLUMNS_SQL = """
    SELECT
        c.column_name,
        c.data_type,
        c.character_maximum_length,
        c.numeric_precision,
        c.numeric_scale,
        c.is_nullable,
        c.column_default,
        c.udt_name,
        pg_catalog.col_description(
            (SELECT c2.oid FROM pg_catalog.pg_class c2
             JOIN pg_catalog.pg_namespace n ON n.oid = c2.relnamespace
             WHERE c2.relname = c.table_name AND n.nspname = c.table_schema),
            c.ordinal_position
        ) AS column_comment
    FROM information_schema.columns c
    WHERE c.table_schema = 'public' AND c.table_name = $1
    ORDER BY c.ordinal_position
"""

CONSTRAINTS_SQL = """
    SELECT
        tc.constraint_name,
        tc.constraint_type,
        kcu.column_name,
        tc.is_deferrable,
        tc.initially_deferred
    FROM information_schema.table_constraints tc
    LEFT JOIN information_schema.key_column_usage kcu
        ON tc.constraint_name = kcu.constraint_name
        AND tc.table_schema = kcu.table_schema
    WHERE tc.table_schema = 'public' AND tc.table_name = $1
    ORDER BY tc.constraint_type, kcu.ordinal_position
"""

INDEXES_SQL = """
    SELECT
        i.relname AS index_name,
        a.attname AS column_name,
        ix.indisunique AS is_unique,
        ix.indisprimary AS is_primary,
        am.amname AS index_type
    FROM pg_class t
    JOIN pg_index ix ON t.oid = ix.indrelid
    JOIN pg_class i ON i.oid = ix.indexrelid
    JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = ANY(ix.indkey)
    JOIN pg_am am ON i.relam = am.oid
    WHERE t.relkind = 'r'
        AND t.relname = $1
        AND t.relnamespace = (SELECT oid FROM pg_namespace WHERE nspname = 'public')
    ORDER BY i.relname, a.attnum
"""

LIST_TABLES_SQL = """
    SELECT
        t.table_name,
        t.table_type,
        obj_description(pc.oid, 'pg_class') AS table_comment,
        (SELECT COUNT(*) FROM information_schema.columns c
         WHERE c.table_schema = t.table_schema AND c.table_name = t.table_name) AS column_count,
        COALESCE(pg_relation_size(pc.oid), 0) AS table_size_bytes,
        GREATEST(COALESCE(pc.reltuples, 0), 0)::bigint AS row_estimate
    FROM information_schema.tables t
    LEFT JOIN pg_class pc
        ON pc.relname = t.table_name
        AND pc.relnamespace = (SELECT oid FROM pg_namespace WHERE nspname = 'public')
    WHERE t.table_schema = 'public'
"""

TABLE_COLUMNS_SQL = """
    SELECT column_name, data_type, is_nullable, column_default, udt_name
    FROM information_schema.columns
    WHERE table_schema = 'public' AND table_name = $1
    ORDER BY ordinal_position
"""

_CONSTRAINT_GROUPS = {
    "PRIMARY KEY": "primary_key",
    "FOREIGN KEY": "foreign_key",
    "UNIQUE": "unique",
    "CHECK": "check",
}


def group_constraints(rows: list) -> dict[str, list]:
    grouped: dict[str, list] = {name: [] for name in _CONSTRAINT_GROUPS.values()}
    for row in rows:
        group = _CONSTRAINT_GROUPS.get(row["constraint_type"])
        if group is None:
            continue
        grouped[group].append({
            "name": row["constraint_name"],
            "column": row["column_name"],
            "deferrable": row["is_deferrable"] == "YES",
            "initially_deferred": row["initially_deferred"] == "YES",
        })
    return grouped


def group_indexes(rows: list) -> list[dict]:
    indexes: dict[str, dict] = {}
    for row in rows:
        entry = indexes.setdefault(row["index_name"], {
            "name": row["index_name"],
            "columns": [],
            "unique": row["is_unique"],
            "primary": row["is_primary"],
            "type": row["index_type"],
        })
        entry["columns"].append(row["column_name"])
    return list(indexes.values())


class SchemaIntrospector:
    """Read-only catalog views, restricted to whitelisted tables."""

    def __init__(self, db, whitelist: Whitelist, cache: Optional[SchemaCache] = None,
                 mapper: Optional[RelationshipMapper] = None):
        self.db = db
        self.whitelist = whitelist
        self.cache = cache if cache is not None else SchemaCache()
        self.mapper = mapper or RelationshipMapper(db, whitelist)

    async def _fetch(self, sql: str, *args, table: Optional[str] = None) -> list:
        try:
            return await self.db.fetch(sql, *args)
        except DRIVER_ERRORS as e:
            raise translate_db_error(e, table) from e

    @staticmethod
    def _not_found(table: str) -> DatabaseAdminError:
        return DatabaseAdminError(ErrorCode.NOT_FOUND, f"Table '{table}' not found in database", {"table": table})

    async def get_schema(self, table: str, refresh_cache: bool = False) -> dict[str, Any]:
        self.whitelist.validate_table(table)
        key = SchemaCache.generate_key(table, "schema")
        if not refresh_cache:
            cached = self.cache.get(key)
            if cached is not None:
                return {**cached, "cached": True}

        columns = await self._fetch(SCHEMA_COLUMNS_SQL, table, table=table)
        if not columns:
            raise self._not_found(table)
        constraints = await self._fetch(CONSTRAINTS_SQL, table, table=table)
        indexes = await self._fetch(INDEXES_SQL, table, table=table)

        schema = {
            "table": table,
            "columns": [
                {
                    "name": col["column_name"],
                    "type": col["data_type"],
                    "udt_name": col["udt_name"],
                    "nullable": col["is_nullable"] == "YES",
                    "default": col["column_default"],
                    "max_length": col["character_maximum_length"],
                    "numeric_precision": col["numeric_precision"],
                    "numeric_scale": col["numeric_scale"],
                    "comment": col["column_comment"],
                    "whitelisted": self.whitelist.has_column(table, col["column_name"]),
                }
                for col in columns
            ],
            "constraints": group_constraints(constraints),
            "indexes": group_indexes(indexes),
            "soft_delete": self.whitelist.supports_soft_delete(table),
        }
        self.cache.set(key, schema)
        return {**schema, "cached": False}

    async def list_tables(self, pattern: Optional[str] = None) -> dict[str, Any]:
        sql = LIST_TABLES_SQL
        params: list = []
        if pattern:
            params.append(pattern)
            sql += f" AND t.table_name LIKE ${len(params)}"
        sql += " ORDER BY t.table_name"

        rows = await self._fetch(sql, *params)
        tables = []
        for row in rows:
            if row["table_name"] not in self.whitelist:
                continue
            size = int(row["table_size_bytes"] or 0)
            tables.append({
                "name": row["table_name"],
                "type": row["table_type"],
                "comment": row["table_comment"],
                "column_count": int(row["column_count"] or 0),
                "row_estimate": int(row["row_estimate"] or 0),
                "size_bytes": size,
                "size_human": format_bytes(size),
                "soft_delete": self.whitelist.supports_soft_delete(row["table_name"]),
            })
        return {"count": len(tables), "total_in_database": len(rows), "tables": tables}

    async def list_table_columns(self, table: str, include_metadata: bool = False) -> dict[str, Any]:
        self.whitelist.validate_table(table)
        key = SchemaCache.generate_key(table, "columns", {"include_metadata": include_metadata})
        cached = self.cache.get(key)
        if cached is not None:
            return {**cached, "cached": True}

        rows = await self._fetch(TABLE_COLUMNS_SQL, table, table=table)
        if not rows:
            raise self._not_found(table)
        if include_metadata:
            columns = [
                {
                    "name": r["column_name"],
                    "type": r["data_type"],
                    "udt_name": r["udt_name"],
                    "nullable": r["is_nullable"] == "YES",
                    "default": r["column_default"],
                }
                for r in rows
            ]
        else:
            columns = [{"name": r["column_name"], "type": r["data_type"]} for r in rows]
        response = {"table": table, "count": len(columns), "columns": columns}
        self.cache.set(key, response)
        return {**response, "cached": False}

    async def get_relationships(self, table: str, depth: int = 1, as_graph: bool = False) -> dict[str, Any]:
        self.whitelist.validate_table(table)
        depth = validate_depth(depth)
        kind = "relationship_graph" if as_graph else "relationships"
        key = SchemaCache.generate_key(table, kind, {"depth": depth})
        cached = self.cache.get(key)
        if cached is not None:
            return {**cached, "cached": True}

        try:
            if as_graph:
                result = await self.mapper.get_relationship_graph(table, depth)
            else:
                result = await self.mapper.get_relationships(table, depth)
        except DRIVER_ERRORS as e:
            raise translate_db_error(e, table) from e
        self.cache.set(key, result)
        return {**result, "cached": False}

    def invalidate(self, table: Optional[str] = None) -> None:
        if table:
            self.cache.invalidate_table(table)
        else:
            self.cache.clear()
