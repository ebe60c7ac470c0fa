"""
BackupManager tests with a fake pg_dump/psql runner.

Covers the full cycle: dump -> manifest + checksum -> validate -> restore,
plus the refusals (corrupt file, missing base, wrong type, tool failures).
"""

import gzip
import json
from datetime import datetime
from decimal import Decimal

import pytest

from backup.manager import BackupManager, render_upsert, sql_literal
from backup.storage import manifest_path, read_manifest
from config import BackupConfig
from query.builder import QueryBuilder
from security import TableGuard
from tests.fakes import DUMP_OUTPUT, fake_table_stats
from utils.errors import DatabaseAdminError, ErrorCode


@pytest.fixture
def manager(fake_db, db_config, whitelist, backup_config, runner):
    fake_db.tables = ["authors", "books", "users"]
    return BackupManager(
        fake_db,
        db_config,
        whitelist,
        QueryBuilder(whitelist),
        backup_config,
        runner=runner,
        guard=TableGuard(whitelist),
        stats_collector=fake_table_stats,
    )


class TestSqlRendering:

    def test_literals(self):
        assert sql_literal(None) == "NULL"
        assert sql_literal(True) == "TRUE"
        assert sql_literal(42) == "42"
        assert sql_literal(Decimal("1.50")) == "1.50"
        assert sql_literal("O'Brien") == "'O''Brien'"
        assert sql_literal(datetime(2025, 1, 2, 3, 4, 5)) == "'2025-01-02T03:04:05'"
        assert sql_literal({"a": 1}) == "'{\"a\": 1}'"
        assert sql_literal(b"\x01\xff") == "'\\x01ff'::bytea"
        assert sql_literal(float("nan")) == "'nan'::float8"

    def test_render_upsert(self):
        sql = render_upsert("books", {"id": 3, "title": "Dune"})
        assert sql == (
            'INSERT INTO books ("id", "title") VALUES (3, \'Dune\') '
            'ON CONFLICT (id) DO UPDATE SET "title" = EXCLUDED."title";'
        )

    def test_render_upsert_without_id(self):
        sql = render_upsert("book_genres", {"book_id": 1, "genre_id": 2})
        assert sql.endswith("ON CONFLICT DO NOTHING;")


class TestFullBackup:

    @pytest.mark.asyncio
    async def test_full_backup_writes_dump_and_manifest(self, manager, runner, backup_config):
        result = await manager.backup_full()

        path = backup_config.backup_dir / result["file"]
        assert path.read_bytes() == DUMP_OUTPUT
        assert result["type"] == "full"
        assert result["tables"] == ["authors", "books"]
        assert result["record_count"] == 4
        assert result["compressed"] is False

        manifest = read_manifest(path)
        assert manifest["checksum"] == result["checksum"]
        assert manifest["tables"] == ["authors", "books"]
        assert manifest["tableCounts"] == {"authors": 2, "books": 2}

        (args,) = runner.calls
        assert args[0] == "/usr/bin/pg_dump"
        assert "--table=public.books" in args
        assert "--table=public.users" not in args
        assert args[-1] == "pg_admin_test"

    @pytest.mark.asyncio
    async def test_compressed_backup(self, manager, backup_config):
        result = await manager.backup_full(compress=True)

        path = backup_config.backup_dir / result["file"]
        assert path.name.endswith(".sql.gz")
        with gzip.open(path, "rb") as f:
            assert f.read() == DUMP_OUTPUT
        assert (await manager.validate_backup(path.name))["valid"] is True

    @pytest.mark.asyncio
    async def test_data_only_when_schema_excluded(self, manager, runner):
        await manager.backup_full(include_schema=False)
        assert "--data-only" in runner.calls[0]

    @pytest.mark.asyncio
    async def test_pg_dump_failure_leaves_no_file(self, manager, runner, backup_config):
        runner.returncode = 1
        runner.stderr = 'pg_dump: error: connection to server failed'

        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.backup_full()

        assert exc_info.value.code == ErrorCode.BACKUP_FAILED
        assert "connection to server failed" in exc_info.value.message
        assert list(backup_config.backup_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_empty_dump_rejected(self, manager, runner):
        runner.output = b""
        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.backup_full()
        assert exc_info.value.code == ErrorCode.BACKUP_FAILED

    @pytest.mark.asyncio
    async def test_missing_pg_dump(self, manager):
        manager.config.pg_dump_path = None
        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.backup_full()
        assert exc_info.value.code == ErrorCode.BACKUP_FAILED
        assert exc_info.value.details["tool"] == "pg_dump"

    @pytest.mark.asyncio
    async def test_no_whitelisted_tables(self, manager, fake_db):
        fake_db.tables = ["users"]
        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.backup_full()
        assert exc_info.value.code == ErrorCode.BACKUP_FAILED


class TestTableBackup:

    @pytest.mark.asyncio
    async def test_table_backup(self, manager, runner):
        result = await manager.backup_table("books", data_only=True)
        assert result["file"].startswith("backup-table-books-")
        assert result["tables"] == ["books"]
        assert "--data-only" in runner.calls[0]
        assert "--table=public.books" in runner.calls[0]

    @pytest.mark.asyncio
    async def test_schema_only_skips_counts(self, manager, runner):
        result = await manager.backup_table("books", schema_only=True)
        assert result["record_count"] == 0
        assert "--schema-only" in runner.calls[0]
        assert "--column-inserts" not in runner.calls[0]

    @pytest.mark.asyncio
    async def test_conflicting_flags(self, manager, runner):
        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.backup_table("books", data_only=True, schema_only=True)
        assert exc_info.value.code == ErrorCode.INVALID_ARGUMENT
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_table_not_whitelisted(self, manager, runner):
        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.backup_table("users")
        assert exc_info.value.code == ErrorCode.NOT_WHITELISTED
        assert runner.calls == []


class TestValidation:

    @pytest.mark.asyncio
    async def test_fresh_backup_is_valid(self, manager):
        result = await manager.backup_full()
        validation = await manager.validate_backup(result["file"])

        assert validation["valid"] is True
        assert validation["errors"] == []
        assert validation["checksum"] == validation["expected_checksum"]

    @pytest.mark.asyncio
    async def test_corrupted_backup(self, manager, backup_config):
        result = await manager.backup_full()
        with open(backup_config.backup_dir / result["file"], "ab") as f:
            f.write(b"-- tampered\n")

        validation = await manager.validate_backup(result["file"])

        assert validation["valid"] is False
        assert "Checksum mismatch - file may be corrupted" in validation["errors"]

    @pytest.mark.asyncio
    async def test_missing_file(self, manager):
        validation = await manager.validate_backup("backup-full-20990101-000000.sql")
        assert validation["valid"] is False
        assert validation["errors"] == ["Backup file does not exist or is not readable"]

    @pytest.mark.asyncio
    async def test_fake_gzip(self, manager, backup_config):
        backup_config.backup_dir.mkdir(parents=True)
        (backup_config.backup_dir / "backup-full-20250101-120000.sql.gz").write_bytes(b"not gzip at all" * 10)

        validation = await manager.validate_backup("backup-full-20250101-120000.sql.gz")

        assert validation["valid"] is False
        assert "File has .gz extension but is not a valid gzip file" in validation["errors"]

    @pytest.mark.asyncio
    async def test_unbalanced_transaction_warning(self, manager, backup_config):
        backup_config.backup_dir.mkdir(parents=True)
        content = b"BEGIN;\nINSERT INTO books (id) VALUES (1);\n" + b"-- padding\n" * 20
        (backup_config.backup_dir / "backup-full-20250101-120000.sql").write_bytes(content)

        validation = await manager.validate_backup("backup-full-20250101-120000.sql")

        assert validation["valid"] is True
        assert "Unbalanced transactions (BEGIN: 1, COMMIT: 0)" in validation["warnings"]
        assert "No manifest file found - cannot perform deep validation" in validation["warnings"]


class TestIncremental:

    @pytest.mark.asyncio
    async def test_requires_base_backup(self, manager):
        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.backup_incremental("2025-01-01T00:00:00Z")
        assert exc_info.value.code == ErrorCode.BACKUP_INTEGRITY_FAILURE

    @pytest.mark.asyncio
    async def test_bad_since(self, manager):
        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.backup_incremental("last week")
        assert exc_info.value.code == ErrorCode.INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_changed_rows_written_as_upserts(self, manager, fake_db, backup_config):
        base = await manager.backup_full()
        fake_db.on("SELECT * FROM books WHERE updated_at > $1", [{"id": 1, "title": "Dune"}])

        result = await manager.backup_incremental("2025-01-01T00:00:00Z", tables=["books"])

        assert result["base_backup"] == base["file"]
        assert result["record_count"] == 1
        content = (backup_config.backup_dir / result["file"]).read_text()
        assert "BEGIN;" in content and "COMMIT;" in content
        assert 'INSERT INTO books ("id", "title") VALUES (1, \'Dune\')' in content
        sql, params = fake_db.find("SELECT * FROM books")[0]
        assert params[0].year == 2025

        validation = await manager.validate_backup(result["file"])
        assert validation["valid"] is True
        assert validation["base_backup"] == base["file"]

    @pytest.mark.asyncio
    async def test_missing_base_invalidates_incremental(self, manager, fake_db):
        base = await manager.backup_full()
        result = await manager.backup_incremental("2025-01-01T00:00:00Z", tables=["books"])
        manager.delete_backup(base["file"])

        validation = await manager.validate_backup(result["file"])

        assert validation["valid"] is False
        assert f"Base backup not found: {base['file']}" in validation["errors"]

    @pytest.mark.asyncio
    async def test_tables_without_timestamps_are_skipped(self, manager):
        await manager.backup_full()
        result = await manager.backup_incremental("2025-01-01T00:00:00Z", tables=["books", "book_genres"])
        assert result["skipped_tables"] == ["book_genres"]
        assert result["tables"] == ["books"]


class TestRestore:

    @pytest.mark.asyncio
    async def test_restore_streams_file_into_psql(self, manager, runner):
        backup = await manager.backup_full()

        result = await manager.restore_full(backup["file"])

        assert result["success"] is True
        assert result["tables"] == ["authors", "books"]
        args = runner.calls[-1]
        assert args[0] == "/usr/bin/psql"
        assert "ON_ERROR_STOP=1" in args
        assert "--single-transaction" in args
        assert runner.stdin_data == [DUMP_OUTPUT]

    @pytest.mark.asyncio
    async def test_skip_errors_drops_stop_flags(self, manager, runner):
        backup = await manager.backup_full()
        await manager.restore_full(backup["file"], skip_errors=True)
        assert "ON_ERROR_STOP=1" not in runner.calls[-1]

    @pytest.mark.asyncio
    async def test_drop_existing_runs_drop_first(self, manager, runner):
        backup = await manager.backup_table("books")

        await manager.restore_table(backup["file"], drop_existing=True)

        drop_args, restore_args = runner.calls[-2:]
        assert drop_args[-1] == "DROP TABLE IF EXISTS books CASCADE"
        assert "-c" not in restore_args

    @pytest.mark.asyncio
    async def test_corrupt_backup_never_reaches_psql(self, manager, runner, backup_config):
        backup = await manager.backup_full()
        with open(backup_config.backup_dir / backup["file"], "ab") as f:
            f.write(b"garbage")
        calls_before = len(runner.calls)

        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.restore_full(backup["file"])

        assert exc_info.value.code == ErrorCode.BACKUP_INTEGRITY_FAILURE
        assert len(runner.calls) == calls_before

    @pytest.mark.asyncio
    async def test_restore_requires_manifest(self, manager, backup_config):
        backup = await manager.backup_full()
        manifest_path(backup_config.backup_dir / backup["file"]).unlink()

        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.restore_full(backup["file"])

        assert exc_info.value.code == ErrorCode.BACKUP_INTEGRITY_FAILURE
        assert "Backup has no manifest; restore requires one" in exc_info.value.details["errors"]

    @pytest.mark.asyncio
    async def test_restore_requires_healthy_database(self, manager, fake_db):
        backup = await manager.backup_full()
        fake_db.connected = False

        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.restore_full(backup["file"])

        assert "Database connection is not healthy" in exc_info.value.details["errors"]

    @pytest.mark.asyncio
    async def test_restore_table_rejects_full_backup(self, manager):
        backup = await manager.backup_full()
        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.restore_table(backup["file"])
        assert exc_info.value.code == ErrorCode.INVALID_ARGUMENT

    @pytest.mark.asyncio
    async def test_restore_table_checks_write_access(self, manager, backup_config):
        backup = await manager.backup_table("books")
        path = backup_config.backup_dir / backup["file"]
        manifest = read_manifest(path)
        manifest["tables"] = ["genres"]
        manifest_path(path).write_text(json.dumps(manifest))

        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.restore_table(backup["file"])

        assert exc_info.value.code == ErrorCode.ACCESS_DENIED

    @pytest.mark.asyncio
    async def test_psql_failure(self, manager, runner):
        backup = await manager.backup_full()
        runner.returncode = 3
        runner.stderr = 'ERROR:  relation "books" already exists'

        with pytest.raises(DatabaseAdminError) as exc_info:
            await manager.restore_full(backup["file"])

        assert exc_info.value.code == ErrorCode.BACKUP_FAILED
        assert "already exists" in exc_info.value.message


class TestFileManagement:

    @pytest.mark.asyncio
    async def test_list_and_cleanup(self, manager):
        await manager.backup_full()
        listing = manager.list_backups()
        assert listing["count"] == 1

        cleanup = manager.cleanup_old_backups(0)
        assert cleanup["retention_days"] == 0
        assert cleanup["count"] == 1
        assert manager.list_backups()["count"] == 0

    def test_default_retention(self, manager):
        assert manager.cleanup_old_backups()["retention_days"] == BackupConfig.retention_days
