"""
Backup directory tests: naming, manifests, checksums, listing and retention.
"""

import hashlib
import os
import time
from datetime import datetime

import pytest

from backup.storage import (
    BackupStorage,
    backup_filename,
    compute_checksum,
    detect_type,
    export_filename,
    manifest_path,
    read_manifest,
    write_manifest,
)
from utils.errors import DatabaseAdminError, ErrorCode


@pytest.fixture
def storage(tmp_path):
    return BackupStorage(tmp_path / "backups")


def make_file(storage, name, content=b"-- dump\n", age_days=0):
    storage.ensure_root()
    path = storage.root / name
    path.write_bytes(content)
    if age_days:
        old = time.time() - age_days * 86400
        os.utime(path, (old, old))
    return path


class TestNaming:

    def test_backup_filenames(self):
        ts = "20250101-120000"
        assert backup_filename("full", timestamp=ts) == "backup-full-20250101-120000.sql"
        assert backup_filename("full", compressed=True, timestamp=ts) == "backup-full-20250101-120000.sql.gz"
        assert backup_filename("table", table="books", timestamp=ts) == "backup-table-books-20250101-120000.sql"
        assert backup_filename("incremental", timestamp=ts) == "backup-incremental-20250101-120000-delta.sql"
        assert export_filename("books", "csv", timestamp=ts) == "export-books-20250101-120000.csv"

    def test_table_backup_needs_table(self):
        with pytest.raises(ValueError):
            backup_filename("table")

    @pytest.mark.parametrize("name,kind", [
        ("backup-full-20250101-120000.sql.gz", "full"),
        ("backup-table-books-20250101-120000.sql", "table"),
        ("backup-incremental-20250101-120000-delta.sql", "incremental"),
        ("export-books-20250101-120000.json", "export"),
        ("notes.txt", "unknown"),
    ])
    def test_detect_type(self, name, kind):
        assert detect_type(name) == kind

    @pytest.mark.parametrize("name,manifest", [
        ("backup-full-X.sql.gz", "backup-full-X-manifest.json"),
        ("backup-full-X.sql", "backup-full-X-manifest.json"),
        ("export-books-X.csv", "export-books-X-manifest.json"),
    ])
    def test_manifest_path(self, tmp_path, name, manifest):
        assert manifest_path(tmp_path / name) == tmp_path / manifest


class TestManifests:

    def test_roundtrip_and_checksum(self, storage):
        path = make_file(storage, "backup-full-20250101-120000.sql", b"CREATE TABLE books ();\n")
        write_manifest(path, {"type": "full", "checksum": compute_checksum(path)})

        manifest = read_manifest(path)

        assert manifest["type"] == "full"
        assert manifest["checksum"] == hashlib.sha256(b"CREATE TABLE books ();\n").hexdigest()

    def test_missing_manifest(self, storage):
        path = make_file(storage, "backup-full-20250101-120000.sql")
        assert read_manifest(path) is None


class TestPaths:

    def test_resolve_bare_name(self, storage):
        assert storage.resolve("backup-full-X.sql") == storage.root / "backup-full-X.sql"

    @pytest.mark.parametrize("name", ["../secrets.sql", "/etc/passwd", "sub/dir.sql", ".."])
    def test_resolve_rejects_escapes(self, storage, name):
        storage.ensure_root()
        with pytest.raises(DatabaseAdminError) as exc_info:
            storage.resolve(name)
        assert exc_info.value.code == ErrorCode.INVALID_ARGUMENT

    def test_resolve_accepts_absolute_path_inside_root(self, storage):
        path = make_file(storage, "backup-full-X.sql")
        assert storage.resolve(str(path)) == path.resolve()

    @pytest.mark.parametrize("name", ["", None])
    def test_resolve_requires_name(self, storage, name):
        with pytest.raises(DatabaseAdminError):
            storage.resolve(name)

    def test_new_path_avoids_collisions(self, storage):
        make_file(storage, "backup-full-20250101-120000.sql")
        path = storage.new_path("backup-full-20250101-120000.sql")
        assert path.name == "backup-full-20250101-120000-1.sql"


class TestListing:

    def test_list_newest_first_with_manifest_data(self, storage):
        old = make_file(storage, "backup-full-20250101-120000.sql", age_days=2)
        write_manifest(old, {"tables": ["books"], "recordCount": 5})
        make_file(storage, "backup-table-books-20250102-120000.sql.gz", age_days=1)
        make_file(storage, "export-books-20250103-120000.json")
        make_file(storage, "README.txt")

        backups = storage.list_backups()

        assert [b["file"] for b in backups] == [
            "export-books-20250103-120000.json",
            "backup-table-books-20250102-120000.sql.gz",
            "backup-full-20250101-120000.sql",
        ]
        full = backups[2]
        assert full["has_manifest"] is True
        assert full["tables"] == ["books"]
        assert full["record_count"] == 5
        assert backups[1]["compressed"] is True

    def test_filter_by_type(self, storage):
        make_file(storage, "backup-full-20250101-120000.sql")
        make_file(storage, "export-books-20250103-120000.json")
        assert [b["type"] for b in storage.list_backups("export")] == ["export"]

    def test_unknown_type(self, storage):
        with pytest.raises(DatabaseAdminError) as exc_info:
            storage.list_backups("weekly")
        assert exc_info.value.code == ErrorCode.INVALID_ARGUMENT

    def test_missing_directory_lists_nothing(self, storage):
        assert storage.list_backups() == []
        assert storage.latest("full") is None

    def test_latest(self, storage):
        make_file(storage, "backup-full-20250101-120000.sql", age_days=3)
        newest = make_file(storage, "backup-full-20250102-120000.sql", age_days=1)
        assert storage.latest("full") == newest


class TestDeletion:

    def test_delete_removes_manifest(self, storage):
        path = make_file(storage, "backup-full-20250101-120000.sql")
        write_manifest(path, {"type": "full"})

        result = storage.delete(path.name)

        assert result["deleted"] is True
        assert result["manifest_deleted"] is True
        assert not path.exists()
        assert not manifest_path(path).exists()

    def test_delete_missing(self, storage):
        storage.ensure_root()
        with pytest.raises(DatabaseAdminError) as exc_info:
            storage.delete("backup-full-nope.sql")
        assert exc_info.value.code == ErrorCode.NOT_FOUND

    def test_cleanup_old_backups(self, storage):
        old = make_file(storage, "backup-full-20240101-120000.sql", age_days=40)
        write_manifest(old, {"type": "full"})
        fresh = make_file(storage, "backup-full-20250101-120000.sql", age_days=1)

        removed = storage.cleanup_old_backups(30, now=datetime.now())

        assert removed == [old.name]
        assert not manifest_path(old).exists()
        assert fresh.exists()

    def test_disk_usage(self, storage):
        make_file(storage, "backup-full-20250101-120000.sql", b"x" * 2048)
        usage = storage.disk_usage()
        assert usage["total_size"] == 2048
        assert usage["total_size_formatted"] == "2.00 KB"
        assert usage["writable"] is True
