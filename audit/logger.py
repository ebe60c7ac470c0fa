"""
Audit Logger

Write path: callers enqueue records with log(); a background task drains the
bounded queue into audit_logs. Enqueueing never blocks and never raises. When
the queue is full the record is dropped with a warning, so a slow or failing
audit sink cannot hold up or fail the operation being audited.

Read path: query_logs() and get_summary() are plain read-only queries.

The audit table itself is never audited.
"""

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from config import AuditConfig
from security.whitelist import AUDIT_TABLE
from utils.errors import DatabaseAdminError, ErrorCode

logger = logging.getLogger(__name__)

AUDIT_OPERATIONS = ("CREATE", "READ", "UPDATE", "DELETE", "BATCH_INSERT", "BATCH_UPDATE", "BATCH_DELETE")

DEFAULT_QUERY_LIMIT = 100
MAX_QUERY_LIMIT = 1000
SUMMARY_TABLE_LIMIT = 20

AUDIT_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS audit_logs (
    id SERIAL PRIMARY KEY,
    timestamp TIMESTAMP NOT NULL DEFAULT NOW(),
    operation VARCHAR(50) NOT NULL CHECK (operation IN
        ('CREATE', 'READ', 'UPDATE', 'DELETE', 'BATCH_INSERT', 'BATCH_UPDATE', 'BATCH_DELETE')),
    table_name VARCHAR(255) NOT NULL,
    record_id VARCHAR(255),
    user_id VARCHAR(255),
    client_info JSONB,
    changes JSONB,
    success BOOLEAN NOT NULL,
    error_message TEXT,
    execution_time_ms INTEGER,
    query_hash VARCHAR(64)
);
CREATE INDEX IF NOT EXISTS idx_audit_timestamp ON audit_logs(timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_audit_table ON audit_logs(table_name);
CREATE INDEX IF NOT EXISTS idx_audit_operation ON audit_logs(operation);
"""

INSERT_SQL = """
    INSERT INTO audit_logs (
        timestamp, operation, table_name, record_id, user_id, client_info,
        changes, success, error_message, execution_time_ms, query_hash
    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
"""


def hash_query(sql: Optional[str]) -> Optional[str]:
    """SHA-256 of the SQL text, for spotting repeated statement shapes."""
    if not sql:
        return None
    return hashlib.sha256(sql.encode("utf-8")).hexdigest()


def _to_naive_utc(value: Any) -> Any:
    if isinstance(value, str):
        text = value[:-1] + "+00:00" if value.endswith("Z") else value
        value = datetime.fromisoformat(text)
    if isinstance(value, datetime) and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _utc_now() -> datetime:
    """Naive UTC, the same frame date filters are converted into."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


@dataclass
class AuditRecord:
    operation: str
    table_name: str
    success: bool
    record_id: Optional[str] = None
    user_id: Optional[str] = None
    client_info: Optional[dict] = None
    changes: Optional[dict] = None
    error_message: Optional[str] = None
    execution_time_ms: Optional[int] = None
    query_hash: Optional[str] = None
    timestamp: datetime = field(default_factory=_utc_now)

    def as_params(self) -> list:
        return [
            self.timestamp,
            self.operation,
            self.table_name,
            self.record_id,
            self.user_id,
            _dumps(self.client_info),
            _dumps(self.changes),
            self.success,
            self.error_message,
            self.execution_time_ms,
            self.query_hash,
        ]


class AuditLogger:
    """Fire-and-forget audit trail backed by a bounded asyncio.Queue."""

    def __init__(self, db, config: Optional[AuditConfig] = None):
        self.db = db
        self.config = config or AuditConfig()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_size)
        self._worker: Optional[asyncio.Task] = None
        self.written = 0
        self.dropped = 0
        self.failed = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(self._run(), name="audit-writer")
            logger.info("Audit writer started")

    async def stop(self, timeout: float = 5.0) -> None:
        """Drain what is queued (bounded by timeout), then stop the writer."""
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Audit writer stopped with {self._queue.qsize()} records unwritten")
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Audit writer stopped")

    async def flush(self) -> None:
        """Wait until every queued record has been handled."""
        if not self._queue.empty():
            self.start()
        await self._queue.join()

    async def ensure_table(self) -> None:
        await self.db.execute(AUDIT_TABLE_DDL)
        logger.info("audit_logs table ready")

    async def _run(self) -> None:
        while True:
            record = await self._queue.get()
            try:
                await self.db.execute(INSERT_SQL, *record.as_params())
                self.written += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.failed += 1
                logger.warning(f"Failed to write audit record for {record.table_name}: {e}")
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def log(
        self,
        operation: str,
        table: str,
        success: bool,
        record_id: Any = None,
        changes: Optional[dict] = None,
        error_message: Optional[str] = None,
        execution_time_ms: Optional[float] = None,
        query: Optional[str] = None,
        client_info: Optional[dict] = None,
    ) -> bool:
        """
        Enqueue one audit record. Returns False when skipped or dropped.
        """
        if not self.config.enabled or table == AUDIT_TABLE:
            return False
        try:
            record = AuditRecord(
                operation=operation,
                table_name=table,
                success=success,
                record_id=str(record_id) if record_id is not None else None,
                user_id=self.config.user_id,
                client_info=client_info,
                changes=changes,
                error_message=error_message,
                execution_time_ms=int(execution_time_ms) if execution_time_ms is not None else None,
                query_hash=hash_query(query),
            )
            self._queue.put_nowait(record)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Audit queue full; dropped {operation} record for {table}")
            return False
        except Exception as e:
            self.dropped += 1
            logger.warning(f"Could not enqueue audit record for {table}: {e}")
            return False

        try:
            self.start()
        except RuntimeError:
            # No running loop; the record waits for start()
            pass
        return True

    def log_success(self, operation: str, table: str, **kwargs) -> bool:
        return self.log(operation, table, True, **kwargs)

    def log_failure(self, operation: str, table: str, error: BaseException, **kwargs) -> bool:
        return self.log(operation, table, False, error_message=str(error), **kwargs)

    def get_stats(self) -> dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "queued": self._queue.qsize(),
            "written": self.written,
            "dropped": self.dropped,
            "failed": self.failed,
        }

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    @staticmethod
    def _filter_sql(filters: dict[str, Any], params: list) -> str:
        clauses = []
        try:
            if filters.get("startDate"):
                params.append(_to_naive_utc(filters["startDate"]))
                clauses.append(f"timestamp >= ${len(params)}")
            if filters.get("endDate"):
                params.append(_to_naive_utc(filters["endDate"]))
                clauses.append(f"timestamp <= ${len(params)}")
        except ValueError as e:
            raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, f"Invalid date filter: {e}") from e
        if filters.get("table"):
            params.append(filters["table"])
            clauses.append(f"table_name = ${len(params)}")
        if filters.get("operation"):
            operation = str(filters["operation"]).upper()
            if operation not in AUDIT_OPERATIONS:
                raise DatabaseAdminError(
                    ErrorCode.INVALID_ARGUMENT,
                    f"Unknown audit operation '{operation}'",
                    {"valid_operations": list(AUDIT_OPERATIONS)},
                )
            params.append(operation)
            clauses.append(f"operation = ${len(params)}")
        if filters.get("userId"):
            params.append(filters["userId"])
            clauses.append(f"user_id = ${len(params)}")
        if filters.get("success") is not None:
            params.append(bool(filters["success"]))
            clauses.append(f"success = ${len(params)}")
        return (" WHERE " + " AND ".join(clauses)) if clauses else ""

    async def query_logs(self, filters: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        filters = filters or {}
        limit = filters.get("limit", DEFAULT_QUERY_LIMIT)
        offset = filters.get("offset", 0)
        if not isinstance(limit, int) or not 1 <= limit <= MAX_QUERY_LIMIT:
            raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, f"limit must be between 1 and {MAX_QUERY_LIMIT}")
        if not isinstance(offset, int) or offset < 0:
            raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, "offset must be a non-negative integer")

        params: list = []
        where_sql = self._filter_sql(filters, params)
        total = await self.db.fetchval(f"SELECT COUNT(*) FROM audit_logs{where_sql}", *params)

        page_params = params + [limit, offset]
        rows = await self.db.fetch(
            f"SELECT * FROM audit_logs{where_sql} ORDER BY timestamp DESC "
            f"LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}",
            *page_params,
        )
        return {
            "total": total or 0,
            "count": len(rows),
            "limit": limit,
            "offset": offset,
            "logs": [dict(r) for r in rows],
        }

    async def get_summary(self, filters: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        filters = filters or {}
        params: list = []
        where_sql = self._filter_sql(filters, params)

        totals = await self.db.fetchrow(
            "SELECT COUNT(*) AS total_operations, "
            "COUNT(*) FILTER (WHERE success) AS successful_operations, "
            "COUNT(*) FILTER (WHERE NOT success) AS failed_operations, "
            "AVG(execution_time_ms) AS avg_execution_time_ms "
            f"FROM audit_logs{where_sql}",
            *params,
        )
        by_operation = await self.db.fetch(
            "SELECT operation, COUNT(*) AS count, COUNT(*) FILTER (WHERE success) AS successful "
            f"FROM audit_logs{where_sql} GROUP BY operation ORDER BY count DESC",
            *params,
        )
        by_table = await self.db.fetch(
            "SELECT table_name, COUNT(*) AS count, COUNT(*) FILTER (WHERE NOT success) AS failed "
            f"FROM audit_logs{where_sql} GROUP BY table_name ORDER BY count DESC LIMIT {SUMMARY_TABLE_LIMIT}",
            *params,
        )

        totals = dict(totals) if totals else {}
        total = totals.get("total_operations") or 0
        successful = totals.get("successful_operations") or 0
        avg = totals.get("avg_execution_time_ms")
        return {
            "total_operations": total,
            "successful_operations": successful,
            "failed_operations": totals.get("failed_operations") or 0,
            "success_rate": round(successful / total * 100, 2) if total else 0.0,
            "avg_execution_time_ms": round(float(avg), 2) if avg is not None else None,
            "by_operation": [dict(r) for r in by_operation],
            "by_table": [dict(r) for r in by_table],
        }
