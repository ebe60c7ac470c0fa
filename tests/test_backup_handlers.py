"""
Backup, restore, export/import and backup-file tools through dispatch().
"""

import pytest

from handlers import dispatch
from tests.fakes import DUMP_OUTPUT, parse_response
from validation.data_validator import COLUMNS_SQL


async def call(services, tool, **arguments):
    return parse_response(await dispatch(services, tool, arguments))


def column_lookups(fake_db):
    return len([sql for sql, _ in fake_db.statements if sql == COLUMNS_SQL])


class TestBackupLifecycle:

    @pytest.mark.asyncio
    async def test_backup_validate_list_delete(self, services, backup_config):
        backup = await call(services, "backup_full")
        assert backup["success"] is True
        assert backup["tables"] == ["authors", "books", "lookup_values", "series"]

        validation = await call(services, "validate_backup", backupFile=backup["file"])
        assert validation["valid"] is True

        listing = await call(services, "list_backups", type="full")
        assert [b["file"] for b in listing["backups"]] == [backup["file"]]

        deleted = await call(services, "delete_backup", backupFile=backup["file"])
        assert deleted["deleted"] is True
        assert (await call(services, "list_backups"))["count"] == 0

    @pytest.mark.asyncio
    async def test_compress_flag_as_string(self, services):
        backup = await call(services, "backup_table", table="books", compress="true")
        assert backup["file"].endswith(".sql.gz")

    @pytest.mark.asyncio
    async def test_table_backup_of_hidden_table(self, services, runner):
        result = await call(services, "backup_table", table="users")
        assert result["code"] == "NOT_WHITELISTED"
        assert runner.calls == []

    @pytest.mark.asyncio
    async def test_incremental_accepts_single_table_name(self, services):
        base = await call(services, "backup_full")
        result = await call(services, "backup_incremental", since="2025-01-01T00:00:00Z", tables="books")
        assert result["tables"] == ["books"]
        assert result["base_backup"] == base["file"]

    @pytest.mark.asyncio
    async def test_incremental_without_base(self, services):
        result = await call(services, "backup_incremental", since="2025-01-01T00:00:00Z")
        assert result["code"] == "BACKUP_INTEGRITY_FAILURE"

    @pytest.mark.asyncio
    async def test_path_escape_rejected(self, services):
        result = await call(services, "validate_backup", backupFile="../../etc/passwd")
        assert result["code"] == "INVALID_ARGUMENT"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("days", [-1, "7", True])
    async def test_cleanup_rejects_bad_retention(self, services, days):
        result = await call(services, "cleanup_old_backups", retentionDays=days)
        assert result["code"] == "INVALID_ARGUMENT"

    @pytest.mark.asyncio
    async def test_cleanup_defaults_to_configured_retention(self, services):
        result = await call(services, "cleanup_old_backups")
        assert result["retention_days"] == 30
        assert result["removed"] == []


class TestRestore:

    @pytest.mark.asyncio
    async def test_restore_invalidates_schema_cache(self, services, fake_db, runner):
        fake_db.on("SELECT * FROM books", [])
        backup = await call(services, "backup_full")

        await call(services, "query_records", table="books", where={"id": 1})
        await call(services, "query_records", table="books", where={"id": 1})
        assert column_lookups(fake_db) == 1

        restored = await call(services, "restore_full", backupFile=backup["file"])
        assert restored["success"] is True
        assert runner.stdin_data == [DUMP_OUTPUT]

        await call(services, "query_records", table="books", where={"id": 1})
        assert column_lookups(fake_db) == 2

    @pytest.mark.asyncio
    async def test_restore_of_corrupt_backup(self, services, runner, backup_config):
        backup = await call(services, "backup_full")
        (backup_config.backup_dir / backup["file"]).write_bytes(DUMP_OUTPUT + b"-- edited\n")

        result = await call(services, "restore_full", backupFile=backup["file"])

        assert result["code"] == "BACKUP_INTEGRITY_FAILURE"
        assert "Checksum mismatch - file may be corrupted" in result["details"]["errors"]
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_restore_table(self, services, runner):
        backup = await call(services, "backup_table", table="books")

        result = await call(services, "restore_table", backupFile=backup["file"], dropExisting=True)

        assert result["tables"] == ["books"]
        assert result["drop_existing"] is True
        assert runner.calls[-2][-1] == "DROP TABLE IF EXISTS books CASCADE"

    @pytest.mark.asyncio
    async def test_on_conflict_overwrite_drops_table(self, services, runner):
        backup = await call(services, "backup_table", table="books")

        result = await call(services, "restore_table", backupFile=backup["file"], onConflict="overwrite")

        assert result["drop_existing"] is True
        assert runner.calls[-2][-1] == "DROP TABLE IF EXISTS books CASCADE"

    @pytest.mark.asyncio
    async def test_on_conflict_skip_continues_past_errors(self, services, runner):
        backup = await call(services, "backup_full")

        result = await call(services, "restore_full", backupFile=backup["file"], onConflict="skip")

        assert result["success"] is True
        assert "ON_ERROR_STOP=1" not in runner.calls[-1]

    @pytest.mark.asyncio
    async def test_on_conflict_error_stops_on_first_error(self, services, runner):
        backup = await call(services, "backup_full")

        await call(services, "restore_full", backupFile=backup["file"])

        assert "ON_ERROR_STOP=1" in runner.calls[-1]
        assert not any("DROP TABLE" in arg for arg in runner.calls[-1])

    @pytest.mark.asyncio
    async def test_on_conflict_unknown_policy(self, services, runner):
        backup = await call(services, "backup_full")

        result = await call(services, "restore_full", backupFile=backup["file"], onConflict="merge")

        assert result["code"] == "INVALID_ARGUMENT"
        assert result["details"]["valid_values"] == ["error", "skip", "overwrite"]
        assert len(runner.calls) == 1

    @pytest.mark.asyncio
    async def test_restore_requires_backup_file(self, services):
        result = await call(services, "restore_full")
        assert result["code"] == "INVALID_ARGUMENT"


class TestExportImport:

    @pytest.mark.asyncio
    async def test_export_of_hidden_table(self, services, fake_db):
        result = await call(services, "export_json", table="users")
        assert result["code"] == "NOT_WHITELISTED"
        assert fake_db.statements == []

    @pytest.mark.asyncio
    async def test_export_with_bad_column(self, services, fake_db):
        result = await call(services, "export_csv", table="books", columns=["isbn"])
        assert result["code"] == "INVALID_COLUMN"
        assert fake_db.statements == []

    @pytest.mark.asyncio
    async def test_export_json(self, services, fake_db):
        fake_db.on("SELECT * FROM books", [{"id": 1, "title": "Dune"}])

        result = await call(services, "export_json", table="books", where='{"id": 1}')

        assert result["record_count"] == 1
        listing = await call(services, "list_backups", type="export")
        assert listing["count"] == 1

    @pytest.mark.asyncio
    async def test_import_into_read_only_table(self, services, fake_db):
        result = await call(services, "import_json", table="genres", data=[{"genre_name": "cozy"}])
        assert result["code"] == "ACCESS_DENIED"
        assert fake_db.statements == []

    @pytest.mark.asyncio
    async def test_import_json_string_data(self, services, fake_db):
        fake_db.on("INSERT INTO books", lambda sql, params, conn: [{"id": 1}])

        result = await call(services, "import_json", table="books", data='[{"title": "Dune"}]', mode="skip")

        assert result["imported"] == 1
        assert result["mode"] == "skip"

    @pytest.mark.asyncio
    async def test_import_csv(self, services, fake_db):
        fake_db.on("INSERT INTO books", lambda sql, params, conn: [{"id": 1}])

        result = await call(services, "import_csv", table="books", data="title,word_count\nDune,412000\n")

        assert result["imported"] == 1
        assert fake_db.find("INSERT INTO books")[0][1] == ["Dune", 412000]

    @pytest.mark.asyncio
    async def test_import_data_and_file(self, services, fake_db):
        result = await call(services, "import_csv", table="books", data="title\nDune\n", file="export-books-x.csv")
        assert result["code"] == "INVALID_ARGUMENT"
        assert fake_db.events == []
