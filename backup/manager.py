"""
Backup Manager

Full and per-table backups stream pg_dump output (optionally through gzip)
straight to the backup directory; restores stream the file (optionally
through gunzip) into psql. Incremental backups are written here from a
"changed since" SELECT per table, as upserts that can be replayed over the
base backup they name.

Every backup gets a sidecar manifest with its table list, record count,
size and SHA-256 checksum. Restores refuse to run unless validation passes,
the database answers, and an incremental backup's base is on disk.
"""

import asyncio
import gzip
import json
import logging
import os
import time
import uuid
from datetime import date, datetime
from datetime import time as dt_time
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
from uuid import UUID

from config import BackupConfig, DatabaseConfig
from query.builder import QueryBuilder
from security.whitelist import Whitelist
from transactions import DRIVER_ERRORS
from utils.errors import DatabaseAdminError, ErrorCode, translate_db_error
from utils.serialization import format_bytes

from .metadata import collect_table_stats
from .process import ProcessRunner
from .storage import (
    BackupStorage,
    backup_filename,
    compute_checksum,
    detect_type,
    read_manifest,
    write_manifest,
)

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
MIN_BACKUP_SIZE = 100
SQL_SNIFF_LINES = 100
STDERR_TAIL = 2000
TIMESTAMP_COLUMNS = ("updated_at", "created_at")
_SQL_PREFIXES = ("CREATE TABLE", "CREATE DATABASE", "INSERT INTO", "COPY ", "ALTER TABLE")


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def sql_literal(value: Any) -> str:
    """Render a value as a SQL literal for generated backup files."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, Decimal)):
        return str(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return f"'{value}'::float8"
        return repr(value)
    if isinstance(value, (datetime, date, dt_time)):
        return "'" + value.isoformat() + "'"
    if isinstance(value, UUID):
        return f"'{value}'"
    if isinstance(value, (bytes, memoryview)):
        return "'\\x" + bytes(value).hex() + "'::bytea"
    if isinstance(value, (dict, list)):
        value = json.dumps(value, default=str)
    return "'" + str(value).replace("'", "''") + "'"


def render_upsert(table: str, row: dict[str, Any]) -> str:
    columns = list(row.keys())
    cols_sql = ", ".join(_quote_ident(c) for c in columns)
    values_sql = ", ".join(sql_literal(row[c]) for c in columns)
    updates = [c for c in columns if c != "id"]
    if "id" in row and updates:
        set_sql = ", ".join(f"{_quote_ident(c)} = EXCLUDED.{_quote_ident(c)}" for c in updates)
        conflict = f"ON CONFLICT (id) DO UPDATE SET {set_sql}"
    else:
        conflict = "ON CONFLICT DO NOTHING"
    return f"INSERT INTO {table} ({cols_sql}) VALUES ({values_sql}) {conflict};"


def _parse_since(since: Any) -> datetime:
    if isinstance(since, datetime):
        return since
    if not isinstance(since, str) or not since:
        raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, "since must be an ISO-8601 timestamp")
    text = since[:-1] + "+00:00" if since.endswith("Z") else since
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise DatabaseAdminError(
            ErrorCode.INVALID_ARGUMENT, f"Invalid since timestamp: {since}", {"since": since}
        ) from e


def _tail(text: str) -> str:
    text = (text or "").strip()
    return text[-STDERR_TAIL:] if len(text) > STDERR_TAIL else text


def _open_backup(path: Path, mode: str):
    if path.name.endswith(".gz"):
        return gzip.open(path, mode)
    return open(path, mode)


def _sniff_sql(path: Path) -> tuple[list[str], list[str]]:
    """Light content check on a SQL backup: statements present, BEGIN/COMMIT balanced."""
    errors: list[str] = []
    warnings: list[str] = []
    has_statements = False
    begins = commits = 0
    try:
        with _open_backup(path, "rb") as f:
            for lineno, raw in enumerate(f):
                line = raw.decode("utf-8", errors="replace").strip().upper()
                if lineno < SQL_SNIFF_LINES or not has_statements:
                    if line.startswith(_SQL_PREFIXES):
                        has_statements = True
                    if "DROP DATABASE" in line and "IF EXISTS" not in line:
                        warnings.append("Backup contains DROP DATABASE without IF EXISTS")
                if line == "BEGIN;":
                    begins += 1
                elif line == "COMMIT;":
                    commits += 1
    except (OSError, EOFError, gzip.BadGzipFile) as e:
        errors.append(f"SQL content could not be read: {e}")
        return errors, warnings

    if not has_statements:
        warnings.append("Backup file does not appear to contain SQL statements")
    if begins != commits:
        warnings.append(f"Unbalanced transactions (BEGIN: {begins}, COMMIT: {commits})")
    return errors, warnings


def _read_magic(path: Path) -> bytes:
    with open(path, "rb") as f:
        return f.read(2)


def _write_text(path: Path, content: str, compress: bool) -> None:
    opener = gzip.open if compress else open
    with opener(path, "wb") as f:
        f.write(content.encode("utf-8"))


class BackupManager:
    """pg_dump/psql orchestration plus manifests and validation."""

    def __init__(
        self,
        db,
        db_config: DatabaseConfig,
        whitelist: Whitelist,
        builder: QueryBuilder,
        config: BackupConfig,
        runner: Optional[ProcessRunner] = None,
        guard=None,
        stats_collector=collect_table_stats,
    ):
        self.db = db
        self.db_config = db_config
        self.whitelist = whitelist
        self.builder = builder
        self.config = config
        self.runner = runner or ProcessRunner()
        self.guard = guard
        self.stats_collector = stats_collector
        self.storage = BackupStorage(config.backup_dir)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check(self, table: str, operation: str) -> str:
        if self.guard is not None:
            return self.guard.check(table, operation)
        return self.whitelist.validate_table(table)

    @staticmethod
    def _require_tool(path: Optional[str], name: str) -> str:
        if not path:
            raise DatabaseAdminError(
                ErrorCode.BACKUP_FAILED,
                f"{name} not found in PATH or common PostgreSQL installation directories",
                {"tool": name},
            )
        return path

    def _pg_env(self) -> dict[str, str]:
        env = os.environ.copy()
        if self.db_config.password:
            env["PGPASSWORD"] = self.db_config.password
        env["PGSSLMODE"] = self.db_config.ssl_mode
        return env

    def _connection_args(self) -> list[str]:
        host = self.db_config.host
        if host == "localhost" and os.name == "nt":
            host = "127.0.0.1"
        return ["-h", host, "-p", str(self.db_config.port), "-U", self.db_config.user]

    def _dump_options(self, data_only: bool = False, schema_only: bool = False) -> list[str]:
        options = list(self.config.dump_options)
        if schema_only:
            options = [o for o in options if not o.startswith(("--column-inserts", "--rows-per-insert", "--inserts"))]
            options.append("--schema-only")
        elif data_only:
            options.append("--data-only")
        return options

    async def whitelisted_tables(self) -> list[str]:
        """Whitelisted tables that exist in the database, via the catalog."""
        try:
            existing = await self.db.get_all_tables()
        except DRIVER_ERRORS as e:
            raise translate_db_error(e) from e
        return [t for t in existing if t in self.whitelist]

    async def _run_dump(self, args: list[str], path: Path, compress: bool) -> None:
        opener = gzip.open if compress else open
        with opener(path, "wb") as out:
            result = await self.runner.run(args, env=self._pg_env(), stdout=out, timeout=self.config.dump_timeout)
        if not result.ok:
            path.unlink(missing_ok=True)
            raise DatabaseAdminError(
                ErrorCode.BACKUP_FAILED,
                f"pg_dump failed: {_tail(result.stderr) or f'exit code {result.returncode}'}",
                {"returncode": result.returncode},
            )
        if path.stat().st_size == 0:
            path.unlink(missing_ok=True)
            raise DatabaseAdminError(ErrorCode.BACKUP_FAILED, "pg_dump created an empty dump file")

    async def _finish(self, path: Path, kind: str, tables: list[str], record_count: int,
                      started: float, **extra) -> dict[str, Any]:
        checksum = await asyncio.to_thread(compute_checksum, path)
        size = path.stat().st_size
        manifest = {
            "backupId": str(uuid.uuid4()),
            "type": kind,
            "timestamp": datetime.now().isoformat(),
            "file": path.name,
            "database": self.db_config.database,
            "tables": tables,
            "recordCount": record_count,
            "size": size,
            "compressed": path.name.endswith(".gz"),
            "checksum": checksum,
            "checksumAlgorithm": "sha256",
            "dependencies": [],
        }
        manifest.update(extra)
        write_manifest(path, manifest)
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(f"[OK] {kind} backup created: {path.name} ({format_bytes(size)}, {duration_ms} ms)")
        return {
            "success": True,
            "file": path.name,
            "path": str(path),
            "type": kind,
            "size": size,
            "size_formatted": format_bytes(size),
            "compressed": manifest["compressed"],
            "checksum": checksum,
            "tables": tables,
            "record_count": record_count,
            "duration_ms": duration_ms,
            "manifest": manifest,
        }

    async def _record_count(self, tables: list[str]) -> tuple[int, dict[str, int]]:
        stats = await self.stats_collector(self.db_config, tables)
        return stats.get("recordCount", 0), stats.get("counts", {})

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    async def backup_full(self, compress: Optional[bool] = None, include_schema: bool = True) -> dict[str, Any]:
        pg_dump = self._require_tool(self.config.pg_dump_path, "pg_dump")
        compress = self.config.compress if compress is None else bool(compress)
        started = time.perf_counter()

        tables = await self.whitelisted_tables()
        if not tables:
            raise DatabaseAdminError(ErrorCode.BACKUP_FAILED, "No whitelisted tables exist in the database")

        path = self.storage.new_path(backup_filename("full", compressed=compress))
        args = [pg_dump, *self._connection_args(), *self._dump_options(data_only=not include_schema)]
        args += [f"--table=public.{t}" for t in tables]
        args.append(self.db_config.database)

        logger.info(f"Starting full backup of {len(tables)} tables to {path.name}")
        await self._run_dump(args, path, compress)
        record_count, counts = await self._record_count(tables)
        return await self._finish(
            path, "full", tables, record_count, started,
            tableCounts=counts, includeSchema=include_schema,
        )

    async def backup_table(self, table: str, data_only: bool = False, schema_only: bool = False,
                           compress: Optional[bool] = None) -> dict[str, Any]:
        self._check(table, "READ")
        if data_only and schema_only:
            raise DatabaseAdminError(
                ErrorCode.INVALID_ARGUMENT, "dataOnly and schemaOnly cannot both be set", {"table": table}
            )
        pg_dump = self._require_tool(self.config.pg_dump_path, "pg_dump")
        compress = self.config.compress if compress is None else bool(compress)
        started = time.perf_counter()

        path = self.storage.new_path(backup_filename("table", table=table, compressed=compress))
        args = [pg_dump, *self._connection_args(), *self._dump_options(data_only, schema_only)]
        args += [f"--table=public.{table}", self.db_config.database]

        logger.info(f"Starting backup of table '{table}' to {path.name}")
        await self._run_dump(args, path, compress)
        record_count, counts = (0, {}) if schema_only else await self._record_count([table])
        return await self._finish(
            path, "table", [table], record_count, started,
            tableCounts=counts, dataOnly=data_only, schemaOnly=schema_only,
        )

    async def backup_incremental(self, since: Any, tables: Optional[list[str]] = None,
                                 compress: Optional[bool] = None,
                                 base_backup: Optional[str] = None) -> dict[str, Any]:
        since_dt = _parse_since(since)
        compress = self.config.compress if compress is None else bool(compress)
        started = time.perf_counter()

        base = self.storage.resolve(base_backup) if base_backup else self.storage.latest("full")
        if base is None or not base.exists():
            raise DatabaseAdminError(
                ErrorCode.BACKUP_INTEGRITY_FAILURE,
                "Incremental backup needs an existing full backup as its base",
                {"baseBackup": base_backup},
            )

        if tables:
            selected = [self._check(t, "READ") for t in tables]
        else:
            selected = await self.whitelisted_tables()

        lines = [
            f"-- Incremental backup of {self.db_config.database}",
            f"-- Changes since {since_dt.isoformat()}, base {base.name}",
            "SET standard_conforming_strings = on;",
            "BEGIN;",
        ]
        counts: dict[str, int] = {}
        skipped: list[str] = []
        for table in selected:
            column = next((c for c in TIMESTAMP_COLUMNS if self.whitelist.has_column(table, c)), None)
            if column is None:
                logger.warning(f"Incremental backup skipped '{table}': no updated_at/created_at column")
                skipped.append(table)
                continue
            sql, params = self.builder.build_changed_since(table, column, since_dt)
            try:
                rows = await self.db.fetch(sql, *params)
            except DRIVER_ERRORS as e:
                raise translate_db_error(e, table) from e
            counts[table] = len(rows)
            if rows:
                lines.append(f"-- {table}: {len(rows)} changed rows")
                lines.extend(render_upsert(table, dict(row)) for row in rows)
        lines.append("COMMIT;")

        path = self.storage.new_path(backup_filename("incremental", compressed=compress))
        await asyncio.to_thread(_write_text, path, "\n".join(lines) + "\n", compress)

        included = [t for t in selected if t not in skipped]
        result = await self._finish(
            path, "incremental", included, sum(counts.values()), started,
            baseBackup=base.name, dependencies=[base.name], since=since_dt.isoformat(),
            skippedTables=skipped, tableCounts=counts,
        )
        result["base_backup"] = base.name
        result["skipped_tables"] = skipped
        return result

    # ------------------------------------------------------------------
    # Listing / deletion
    # ------------------------------------------------------------------

    def list_backups(self, kind: Optional[str] = None) -> dict[str, Any]:
        backups = self.storage.list_backups(kind)
        return {"directory": str(self.storage.root), "count": len(backups), "backups": backups}

    def delete_backup(self, name: str) -> dict[str, Any]:
        return self.storage.delete(name)

    def cleanup_old_backups(self, retention_days: Optional[int] = None) -> dict[str, Any]:
        days = self.config.retention_days if retention_days is None else retention_days
        removed = self.storage.cleanup_old_backups(days)
        return {"retention_days": days, "removed": removed, "count": len(removed)}

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def validate_backup(self, name: str) -> dict[str, Any]:
        path = self.storage.resolve(name)
        errors: list[str] = []
        warnings: list[str] = []
        result: dict[str, Any] = {
            "file": path.name,
            "type": detect_type(path.name),
            "valid": False,
            "errors": errors,
            "warnings": warnings,
        }
        if not path.is_file():
            errors.append("Backup file does not exist or is not readable")
            return result

        size = path.stat().st_size
        result["size"] = size
        if size == 0:
            errors.append("Backup file is empty")
        elif size < MIN_BACKUP_SIZE:
            warnings.append("Backup file is very small, may be incomplete")

        try:
            manifest = read_manifest(path)
        except (OSError, ValueError) as e:
            manifest = None
            errors.append(f"Manifest could not be read: {e}")
        result["has_manifest"] = manifest is not None
        result["manifest"] = manifest

        checksum = await asyncio.to_thread(compute_checksum, path)
        result["checksum"] = checksum
        if manifest is not None:
            expected = manifest.get("checksum")
            result["expected_checksum"] = expected
            if expected and expected != checksum:
                errors.append("Checksum mismatch - file may be corrupted")
            if manifest.get("size") is not None and manifest["size"] != size:
                warnings.append(f"File size mismatch (expected {manifest['size']}, got {size})")
        elif not errors:
            warnings.append("No manifest file found - cannot perform deep validation")

        if result["type"] == "unknown":
            warnings.append("Unknown backup file type")

        gzip_ok = True
        if path.name.endswith(".gz") and size > 0:
            if await asyncio.to_thread(_read_magic, path) != GZIP_MAGIC:
                errors.append("File has .gz extension but is not a valid gzip file")
                gzip_ok = False

        if ".sql" in path.name and size > 0 and gzip_ok:
            sql_errors, sql_warnings = await asyncio.to_thread(_sniff_sql, path)
            errors.extend(sql_errors)
            warnings.extend(sql_warnings)

        if result["type"] == "incremental":
            base = (manifest or {}).get("baseBackup")
            result["base_backup"] = base
            if not base:
                errors.append("Incremental backup missing base backup reference")
            elif not (self.storage.root / base).is_file():
                errors.append(f"Base backup not found: {base}")

        result["valid"] = not errors
        return result

    async def check_restore_prerequisites(self, name: str) -> dict[str, Any]:
        validation = await self.validate_backup(name)
        errors = list(validation["errors"])
        warnings = list(validation["warnings"])
        if validation.get("manifest") is None and validation.get("size"):
            errors.append("Backup has no manifest; restore requires one")
        if not await self.db.check_connection():
            errors.append("Database connection is not healthy")
        return {
            "can_restore": not errors,
            "errors": errors,
            "warnings": warnings,
            "validation": validation,
        }

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def _run_psql(self, stdin_path: Optional[Path] = None, command: Optional[str] = None,
                        skip_errors: bool = False):
        psql = self._require_tool(self.config.psql_path, "psql")
        args = [psql, *self._connection_args(), "-d", self.db_config.database, *self.config.restore_options]
        if not skip_errors:
            args += ["-v", "ON_ERROR_STOP=1", "--single-transaction"]
        if command is not None:
            args += ["-c", command]
            result = await self.runner.run(args, env=self._pg_env(), timeout=self.config.restore_timeout)
        else:
            with _open_backup(stdin_path, "rb") as src:
                result = await self.runner.run(args, env=self._pg_env(), stdin=src,
                                               timeout=self.config.restore_timeout)
        if not result.ok:
            raise DatabaseAdminError(
                ErrorCode.BACKUP_FAILED,
                f"psql failed: {_tail(result.stderr) or f'exit code {result.returncode}'}",
                {"returncode": result.returncode},
            )
        return result

    async def prepare_restore(self, name: str, expected_type: Optional[str] = None,
                              drop_existing: bool = False) -> dict[str, Any]:
        """
        Validate a backup and authorize its tables without touching the
        database. The returned plan is what execute_restore() runs.
        """
        path = self.storage.resolve(name)
        prereq = await self.check_restore_prerequisites(name)
        if not prereq["can_restore"]:
            raise DatabaseAdminError(
                ErrorCode.BACKUP_INTEGRITY_FAILURE,
                "Backup validation failed: " + ", ".join(prereq["errors"]),
                {"backupFile": name, "errors": prereq["errors"]},
            )
        manifest = prereq["validation"]["manifest"]
        backup_type = manifest.get("type") or detect_type(path.name)
        if expected_type and backup_type != expected_type:
            raise DatabaseAdminError(
                ErrorCode.INVALID_ARGUMENT,
                f"{name} is a {backup_type} backup, expected {expected_type}",
                {"backupFile": name, "type": backup_type},
            )

        tables = list(manifest.get("tables") or [])
        for table in tables:
            self.whitelist.validate_table(table)
            # Full restores cover read-only tables too; single-table restores go through access control
            if backup_type == "table":
                self._check(table, "WRITE")
                if drop_existing:
                    self._check(table, "DELETE")
        return {
            "path": path,
            "type": backup_type,
            "tables": tables,
            "manifest": manifest,
            "warnings": list(prereq["warnings"]),
        }

    async def execute_restore(self, plan: dict[str, Any], drop_existing: bool = False,
                              skip_errors: bool = False) -> dict[str, Any]:
        started = time.perf_counter()
        path = plan["path"]
        tables = plan["tables"]
        if drop_existing and tables and plan["type"] != "incremental":
            logger.info(f"Dropping {len(tables)} tables before restore")
            await self._run_psql(command=f"DROP TABLE IF EXISTS {', '.join(tables)} CASCADE")

        logger.info(f"Starting restore from {path.name}")
        result = await self._run_psql(stdin_path=path, skip_errors=skip_errors)
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(f"[OK] Restore from {path.name} completed in {duration_ms} ms")

        warnings = list(plan["warnings"])
        if result.stderr.strip():
            warnings.append(_tail(result.stderr))
        return {
            "success": True,
            "file": path.name,
            "type": plan["type"],
            "tables": tables,
            "record_count": plan["manifest"].get("recordCount"),
            "drop_existing": drop_existing,
            "skip_errors": skip_errors,
            "duration_ms": duration_ms,
            "warnings": warnings,
        }

    async def restore_full(self, name: str, drop_existing: bool = False, skip_errors: bool = False) -> dict[str, Any]:
        """Restore a full or incremental backup."""
        plan = await self.prepare_restore(name, None, drop_existing)
        return await self.execute_restore(plan, drop_existing, skip_errors)

    async def restore_table(self, name: str, drop_existing: bool = False, skip_errors: bool = False) -> dict[str, Any]:
        plan = await self.prepare_restore(name, "table", drop_existing)
        return await self.execute_restore(plan, drop_existing, skip_errors)
