"""
AuditLogger tests: fire-and-forget write path and read-only queries.
"""

from datetime import datetime, timezone

import pytest

from audit.logger import INSERT_SQL, AuditLogger, AuditRecord, hash_query
from config import AuditConfig
from utils.errors import DatabaseAdminError, ErrorCode


def audit_inserts(fake_db):
    return [params for sql, params in fake_db.statements if sql == INSERT_SQL]


class TestWritePath:

    @pytest.mark.asyncio
    async def test_success_record_written(self, fake_db):
        audit = AuditLogger(fake_db, AuditConfig(user_id="editor"))

        assert audit.log_success("CREATE", "books", record_id=7, changes={"after": {"id": 7}},
                                 execution_time_ms=12.7, query="INSERT INTO books ...")
        await audit.flush()
        await audit.stop()

        (params,) = audit_inserts(fake_db)
        timestamp, operation, table, record_id, user_id, client_info, changes, success, error, ms, qhash = params
        assert isinstance(timestamp, datetime)
        assert (operation, table, record_id, user_id) == ("CREATE", "books", "7", "editor")
        assert changes == '{"after": {"id": 7}}'
        assert success is True
        assert error is None
        assert ms == 12
        assert qhash == hash_query("INSERT INTO books ...")
        assert audit.get_stats()["written"] == 1

    @pytest.mark.asyncio
    async def test_failure_record(self, fake_db):
        audit = AuditLogger(fake_db, AuditConfig())

        audit.log_failure("UPDATE", "books", ValueError("boom"))
        await audit.flush()
        await audit.stop()

        (params,) = audit_inserts(fake_db)
        assert params[7] is False
        assert params[8] == "boom"

    @pytest.mark.asyncio
    async def test_audit_table_never_audited(self, fake_db):
        audit = AuditLogger(fake_db, AuditConfig())
        assert audit.log_success("READ", "audit_logs") is False
        await audit.flush()
        assert audit_inserts(fake_db) == []

    @pytest.mark.asyncio
    async def test_disabled(self, fake_db):
        audit = AuditLogger(fake_db, AuditConfig(enabled=False))
        assert audit.log_success("READ", "books") is False
        assert audit.get_stats()["queued"] == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_instead_of_blocking(self, fake_db):
        audit = AuditLogger(fake_db, AuditConfig(queue_size=1))

        assert audit.log_success("READ", "books") is True
        assert audit.log_success("READ", "chapters") is False
        assert audit.dropped == 1

        await audit.flush()
        await audit.stop()
        assert len(audit_inserts(fake_db)) == 1

    @pytest.mark.asyncio
    async def test_sink_failure_is_swallowed(self, fake_db):
        fake_db.on("INSERT INTO audit_logs", RuntimeError("audit_logs is locked"))
        audit = AuditLogger(fake_db, AuditConfig())

        audit.log_success("CREATE", "books")
        await audit.flush()
        await audit.stop()

        assert audit.failed == 1
        assert audit.written == 0

    @pytest.mark.asyncio
    async def test_ensure_table(self, fake_db):
        await AuditLogger(fake_db).ensure_table()
        assert "CREATE TABLE IF NOT EXISTS audit_logs" in fake_db.statements[0][0]

    def test_hash_query(self):
        assert hash_query(None) is None
        assert hash_query("SELECT 1") == hash_query("SELECT 1")
        assert len(hash_query("SELECT 1")) == 64

    def test_timestamps_are_naive_utc(self):
        record = AuditRecord("READ", "books", success=True)
        now = datetime.now(timezone.utc).replace(tzinfo=None)

        assert record.timestamp.tzinfo is None
        assert abs((record.timestamp - now).total_seconds()) < 5


class TestReadPath:

    @pytest.mark.asyncio
    async def test_query_logs_with_filters(self, fake_db):
        fake_db.on("SELECT COUNT(*) FROM audit_logs", 3)
        fake_db.on("SELECT * FROM audit_logs", [{"id": 1, "operation": "DELETE"}])
        audit = AuditLogger(fake_db, AuditConfig())

        result = await audit.query_logs({
            "table": "books",
            "operation": "delete",
            "success": False,
            "startDate": "2025-01-01T00:00:00Z",
            "limit": 10,
        })

        assert result == {
            "total": 3,
            "count": 1,
            "limit": 10,
            "offset": 0,
            "logs": [{"id": 1, "operation": "DELETE"}],
        }
        sql, params = fake_db.find("SELECT * FROM audit_logs")[0]
        assert sql == (
            "SELECT * FROM audit_logs WHERE timestamp >= $1 AND table_name = $2 AND operation = $3 "
            "AND success = $4 ORDER BY timestamp DESC LIMIT $5 OFFSET $6"
        )
        assert params == [datetime(2025, 1, 1), "books", "DELETE", False, 10, 0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filters", [
        {"operation": "TRUNCATE"},
        {"limit": 0},
        {"limit": 1001},
        {"offset": -1},
        {"startDate": "last tuesday"},
    ])
    async def test_bad_filters(self, fake_db, filters):
        audit = AuditLogger(fake_db, AuditConfig())
        with pytest.raises(DatabaseAdminError) as exc_info:
            await audit.query_logs(filters)
        assert exc_info.value.code == ErrorCode.INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_summary(self, fake_db):
        fake_db.on("SELECT COUNT(*) AS total_operations", {
            "total_operations": 4,
            "successful_operations": 3,
            "failed_operations": 1,
            "avg_execution_time_ms": 12.5,
        })
        fake_db.on("SELECT operation, COUNT(*)", [{"operation": "READ", "count": 4, "successful": 3}])
        fake_db.on("SELECT table_name, COUNT(*)", [{"table_name": "books", "count": 4, "failed": 1}])
        audit = AuditLogger(fake_db, AuditConfig())

        summary = await audit.get_summary({"table": "books"})

        assert summary["total_operations"] == 4
        assert summary["success_rate"] == 75.0
        assert summary["avg_execution_time_ms"] == 12.5
        assert summary["by_operation"][0]["operation"] == "READ"
        assert summary["by_table"][0]["failed"] == 1

    @pytest.mark.asyncio
    async def test_empty_summary(self, fake_db):
        summary = await AuditLogger(fake_db, AuditConfig()).get_summary()
        assert summary["total_operations"] == 0
        assert summary["success_rate"] == 0.0
        assert summary["avg_execution_time_ms"] is None
