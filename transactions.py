"""
Transaction Manager

One pooled connection per logical operation:

    acquire -> SET statement_timeout -> BEGIN -> statements -> COMMIT -> release
                                                      \\-> error -> ROLLBACK -> release

Statements inside a transaction run strictly in submission order on that one
connection. Any exception inside the block, including validation errors
raised before a statement is sent, rolls the transaction back. Driver errors
are translated to the error taxonomy before they leave this module.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

import asyncpg

from query.builder import QueryBuilder
from utils.errors import DatabaseAdminError, ErrorCode, translate_db_error

logger = logging.getLogger(__name__)

MAX_BATCH_INSERT = 1000
MAX_BATCH_UPDATE = 100
MAX_BATCH_DELETE = 100

DEFAULT_STATEMENT_TIMEOUT_MS = 30000

DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, asyncio.TimeoutError, ConnectionError)

Statement = tuple[str, list]


def validate_batch_size(size: int, maximum: int, minimum: int = 1) -> None:
    if not minimum <= size <= maximum:
        raise DatabaseAdminError(
            ErrorCode.VALIDATION_ERROR,
            f"Batch size must be between {minimum} and {maximum}, got {size}",
            {"size": size, "min": minimum, "max": maximum},
        )


class TransactionManager:
    """Runs builder statements atomically on a single checked-out connection."""

    def __init__(self, db, builder: QueryBuilder, statement_timeout_ms: int = DEFAULT_STATEMENT_TIMEOUT_MS):
        self.db = db
        self.builder = builder
        self.statement_timeout_ms = statement_timeout_ms

    @asynccontextmanager
    async def transaction(self, table: Optional[str] = None, timeout_ms: Optional[int] = None):
        """
        Usage:
            async with tx.transaction(table="books") as conn:
                await conn.fetch(sql, *params)
        """
        timeout = int(timeout_ms if timeout_ms is not None else self.statement_timeout_ms)
        # Checkout failures (pool exhausted, connection refused) are translated too
        try:
            async with self.db.acquire() as conn:
                # Session-level; the pool runs RESET ALL when the connection is released
                await conn.execute(f"SET statement_timeout = {timeout}")
                async with conn.transaction():
                    yield conn
        except DatabaseAdminError:
            raise
        except DRIVER_ERRORS as e:
            error = translate_db_error(e, table)
            logger.warning(f"Transaction on {table or '?'} rolled back: {error.code.value}")
            raise error from e

    async def execute_statements(self, statements: list[Statement], table: Optional[str] = None,
                                 timeout_ms: Optional[int] = None) -> list[list[dict[str, Any]]]:
        """
        Execute statements in order inside one transaction.

        Returns one list of row dicts per statement. The first failure aborts
        the rest and rolls everything back; its details carry the statement index.
        """
        results: list[list[dict[str, Any]]] = []
        async with self.transaction(table=table, timeout_ms=timeout_ms) as conn:
            for index, (sql, params) in enumerate(statements):
                try:
                    rows = await conn.fetch(sql, *params)
                except DRIVER_ERRORS as e:
                    error = translate_db_error(e, table)
                    error.details["index"] = index
                    raise error from e
                results.append([dict(r) for r in rows])
        return results

    async def execute_one(self, sql: str, params: list, table: Optional[str] = None) -> list[dict[str, Any]]:
        return (await self.execute_statements([(sql, params)], table=table))[0]

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def batch_insert(self, table: str, records: list[dict[str, Any]],
                           return_records: bool = True) -> dict[str, Any]:
        validate_batch_size(len(records), MAX_BATCH_INSERT)
        statements = [self.builder.build_insert(table, record) for record in records]
        results = await self.execute_statements(statements, table=table)
        inserted = [row for rows in results for row in rows]
        response: dict[str, Any] = {"inserted": len(inserted)}
        if return_records:
            response["records"] = inserted
        return response

    async def batch_update(self, table: str, updates: list[dict[str, Any]]) -> dict[str, Any]:
        """updates: [{"data": {...}, "where": {...}}, ...]"""
        validate_batch_size(len(updates), MAX_BATCH_UPDATE)
        statements = []
        for index, update in enumerate(updates):
            if not isinstance(update, dict):
                raise DatabaseAdminError(
                    ErrorCode.INVALID_ARGUMENT, "Each update must be an object with data and where", {"index": index}
                )
            try:
                statements.append(self.builder.build_update(table, update.get("data"), update.get("where")))
            except DatabaseAdminError as e:
                e.details.setdefault("index", index)
                raise
        results = await self.execute_statements(statements, table=table)
        return {
            "updated": sum(len(rows) for rows in results),
            "results": [
                {"index": index, "updated": len(rows), "records": rows}
                for index, rows in enumerate(results)
            ],
        }

    async def batch_delete(self, table: str, deletes: list[Any], hard: bool = False) -> dict[str, Any]:
        """deletes: [{"where": {...}}, ...] or bare WHERE objects."""
        validate_batch_size(len(deletes), MAX_BATCH_DELETE)
        statements = []
        delete_type = "hard"
        for index, item in enumerate(deletes):
            where = item.get("where", item) if isinstance(item, dict) else item
            try:
                sql, params, delete_type = self.builder.build_delete_for(table, where, hard=hard)
            except DatabaseAdminError as e:
                e.details.setdefault("index", index)
                raise
            statements.append((sql, params))
        results = await self.execute_statements(statements, table=table)
        return {
            "deleted": sum(len(rows) for rows in results),
            "type": delete_type,
            "results": [
                {"index": index, "deleted": len(rows), "records": rows}
                for index, rows in enumerate(results)
            ],
        }
