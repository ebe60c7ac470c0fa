"""
JSON / CSV export and import

Exports page through the query builder's SELECT path and write the rows to
the backup directory with a manifest. Imports turn each record into a
builder INSERT (with the requested conflict policy) and run the whole set
in one transaction: either every row lands or none do.
"""

import asyncio
import csv
import io
import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from query.builder import CONFLICT_MODES, QueryBuilder
from security.whitelist import MAX_LIMIT, Whitelist
from transactions import DRIVER_ERRORS, TransactionManager
from utils.errors import DatabaseAdminError, ErrorCode, translate_db_error
from utils.serialization import format_bytes, serialize_row, serialize_value

from .storage import BackupStorage, compute_checksum, export_filename, write_manifest

logger = logging.getLogger(__name__)

EXPORT_FORMATS = ("json", "csv")


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(serialize_value(value))


def rows_to_csv(columns: list[str], rows: list[dict[str, Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow([_csv_cell(row.get(c)) for c in columns])
    return buffer.getvalue()


def parse_csv(text: str, headers: Optional[list[str]] = None) -> list[dict[str, Optional[str]]]:
    """
    Parse CSV text into records. The first row is the header unless headers
    are given. Empty cells become None.
    """
    rows = [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]
    if headers is None:
        if not rows:
            return []
        headers = [h.strip() for h in rows[0]]
        rows = rows[1:]

    records = []
    for lineno, row in enumerate(rows, start=1):
        if len(row) != len(headers):
            raise DatabaseAdminError(
                ErrorCode.VALIDATION_ERROR,
                f"Row {lineno}: expected {len(headers)} columns, got {len(row)}",
                {"row": lineno},
            )
        records.append({h: (v if v != "" else None) for h, v in zip(headers, row)})
    return records


def _write_file(path: Path, content: str) -> None:
    with open(path, "w", encoding="utf-8", newline="") as f:
        f.write(content)


def _read_file(path: Path) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


class DataTransfer:
    """File-based export/import that never spawns external tools."""

    def __init__(self, db, whitelist: Whitelist, builder: QueryBuilder, tx: TransactionManager,
                 storage: BackupStorage, validator=None):
        self.db = db
        self.whitelist = whitelist
        self.builder = builder
        self.tx = tx
        self.storage = storage
        self.validator = validator

    async def _select_all(self, table: str, where: Any, columns: Optional[list[str]]) -> list[dict[str, Any]]:
        if self.validator is not None:
            where = await self.validator.coerce_where(table, where)
        order_by = ["id"] if self.whitelist.has_column(table, "id") else None
        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            sql, params = self.builder.build_select(
                table, columns=columns, where=where, order_by=order_by, limit=MAX_LIMIT, offset=offset
            )
            try:
                page = await self.db.fetch(sql, *params)
            except DRIVER_ERRORS as e:
                raise translate_db_error(e, table) from e
            rows.extend(dict(r) for r in page)
            if len(page) < MAX_LIMIT:
                return rows
            offset += MAX_LIMIT

    async def _export(self, table: str, fmt: str, where: Any = None,
                      columns: Optional[list[str]] = None) -> dict[str, Any]:
        started = time.perf_counter()
        rows = await self._select_all(table, where, columns)
        out_columns = list(columns) if columns else (list(rows[0].keys()) if rows else list(self.whitelist.columns(table)))

        if fmt == "json":
            content = json.dumps(
                {
                    "table": table,
                    "exported_at": datetime.now().isoformat(),
                    "count": len(rows),
                    "records": [serialize_row(r) for r in rows],
                },
                indent=2,
            )
        else:
            content = rows_to_csv(out_columns, rows)

        path = self.storage.new_path(export_filename(table, fmt))
        await asyncio.to_thread(_write_file, path, content)
        checksum = await asyncio.to_thread(compute_checksum, path)
        size = path.stat().st_size
        write_manifest(path, {
            "type": "export",
            "format": fmt,
            "timestamp": datetime.now().isoformat(),
            "file": path.name,
            "tables": [table],
            "columns": out_columns,
            "recordCount": len(rows),
            "size": size,
            "compressed": False,
            "checksum": checksum,
            "checksumAlgorithm": "sha256",
            "dependencies": [],
        })
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(f"[OK] Exported {len(rows)} rows from {table} to {path.name}")
        return {
            "success": True,
            "file": path.name,
            "path": str(path),
            "format": fmt,
            "table": table,
            "record_count": len(rows),
            "size": size,
            "size_formatted": format_bytes(size),
            "checksum": checksum,
            "duration_ms": duration_ms,
        }

    async def export_json(self, table: str, where: Any = None, columns: Optional[list[str]] = None) -> dict[str, Any]:
        return await self._export(table, "json", where, columns)

    async def export_csv(self, table: str, where: Any = None, columns: Optional[list[str]] = None) -> dict[str, Any]:
        return await self._export(table, "csv", where, columns)

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    async def _load_source(self, data: Any, file: Optional[str]) -> Any:
        if data is not None and file:
            raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, "Pass either data or file, not both")
        if file:
            path = self.storage.resolve(file)
            if not path.is_file():
                raise DatabaseAdminError(ErrorCode.NOT_FOUND, f"Import file '{file}' not found", {"file": file})
            return await asyncio.to_thread(_read_file, path)
        if data is None:
            raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, "data or file is required")
        return data

    async def _import(self, table: str, records: list[dict[str, Any]], mode: str, from_text: bool) -> dict[str, Any]:
        if mode not in CONFLICT_MODES:
            raise DatabaseAdminError(
                ErrorCode.INVALID_ARGUMENT,
                f"Invalid import mode '{mode}'",
                {"mode": mode, "valid_modes": list(CONFLICT_MODES)},
            )
        if not records:
            raise DatabaseAdminError(ErrorCode.VALIDATION_ERROR, "No records to import", {"table": table})

        started = time.perf_counter()
        statements = []
        for index, record in enumerate(records):
            if not isinstance(record, dict):
                raise DatabaseAdminError(
                    ErrorCode.VALIDATION_ERROR, "Every record must be an object", {"index": index}
                )
            try:
                if self.validator is not None:
                    record = await self.validator.coerce_record(table, record, from_text=from_text)
                # Rows without an id can only be inserted
                record_mode = "error" if mode == "update" and "id" not in record else mode
                statements.append(self.builder.build_upsert(table, record, record_mode))
            except DatabaseAdminError as e:
                e.details.setdefault("index", index)
                raise

        results = await self.tx.execute_statements(statements, table=table)
        imported = sum(1 for rows in results if rows)
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(f"[OK] Imported {imported}/{len(records)} rows into {table} (mode={mode})")
        return {
            "success": True,
            "table": table,
            "mode": mode,
            "total": len(records),
            "imported": imported,
            "skipped": len(records) - imported,
            "duration_ms": duration_ms,
        }

    async def import_json(self, table: str, data: Any = None, mode: str = "error",
                          file: Optional[str] = None) -> dict[str, Any]:
        """data: a list of objects, {"records": [...]}, or the same as JSON text."""
        source = await self._load_source(data, file)
        if isinstance(source, str):
            try:
                source = json.loads(source)
            except json.JSONDecodeError as e:
                raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, f"Invalid JSON: {e}") from e
        if isinstance(source, dict) and "records" in source:
            source = source["records"]
        if not isinstance(source, list):
            raise DatabaseAdminError(
                ErrorCode.VALIDATION_ERROR, "JSON import expects a list of records", {"table": table}
            )
        return await self._import(table, source, mode, from_text=False)

    async def import_csv(self, table: str, data: Any = None, mode: str = "error",
                         file: Optional[str] = None, has_headers: bool = True) -> dict[str, Any]:
        source = await self._load_source(data, file)
        if not isinstance(source, str):
            raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, "CSV data must be text")
        headers = None if has_headers else list(self.whitelist.columns(table))
        records = parse_csv(source, headers)
        if records:
            self.whitelist.validate_columns(table, list(records[0].keys()))
        return await self._import(table, records, mode, from_text=True)
