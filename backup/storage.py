"""
Backup file storage

File naming, sidecar manifests, checksums, listing, deletion and retention
for everything under the backup directory.

    backup-full-20250101-120000.sql.gz
    backup-full-20250101-120000-manifest.json
    backup-table-books-20250101-120000.sql
    backup-incremental-20250101-130000-delta.sql.gz
    export-books-20250101-120000.json
"""

import hashlib
import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from utils.errors import DatabaseAdminError, ErrorCode
from utils.serialization import format_bytes

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
MANIFEST_SUFFIX = "-manifest.json"
BACKUP_TYPES = ("full", "table", "incremental", "export")
_DATA_SUFFIXES = (".sql", ".json", ".csv")


def timestamp_now(now: Optional[datetime] = None) -> str:
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def backup_filename(kind: str, table: Optional[str] = None, compressed: bool = False,
                    timestamp: Optional[str] = None) -> str:
    ts = timestamp or timestamp_now()
    ext = ".sql.gz" if compressed else ".sql"
    if kind == "full":
        return f"backup-full-{ts}{ext}"
    if kind == "table":
        if not table:
            raise ValueError("table backups need a table name")
        return f"backup-table-{table}-{ts}{ext}"
    if kind == "incremental":
        return f"backup-incremental-{ts}-delta{ext}"
    raise ValueError(f"Unknown backup type: {kind}")


def export_filename(table: str, fmt: str, timestamp: Optional[str] = None) -> str:
    return f"export-{table}-{timestamp or timestamp_now()}.{fmt}"


def detect_type(filename: str) -> str:
    if filename.startswith("backup-full-"):
        return "full"
    if filename.startswith("backup-table-"):
        return "table"
    if filename.startswith("backup-incremental-"):
        return "incremental"
    if filename.startswith("export-"):
        return "export"
    return "unknown"


def manifest_path(path: Path) -> Path:
    """backup-full-X.sql.gz -> backup-full-X-manifest.json"""
    name = path.name
    if name.endswith(".gz"):
        name = name[:-3]
    for suffix in _DATA_SUFFIXES:
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    return path.with_name(name + MANIFEST_SUFFIX)


def compute_checksum(path: Path, chunk_size: int = 1024 * 1024) -> str:
    """SHA-256 hex digest of the file as stored on disk."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def write_manifest(path: Path, manifest: dict[str, Any]) -> Path:
    target = manifest_path(path)
    with open(target, "w", encoding="utf-8") as f:
        json.dump(manifest, f, indent=2, default=str)
    return target


def read_manifest(path: Path) -> Optional[dict[str, Any]]:
    target = manifest_path(path)
    if not target.exists():
        return None
    with open(target, "r", encoding="utf-8") as f:
        return json.load(f)


class BackupStorage:
    """Backup directory access. Callers only ever pass bare file names."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def resolve(self, name: str) -> Path:
        """Map a file name from a tool call onto the backup directory."""
        if not name or not isinstance(name, str):
            raise DatabaseAdminError(ErrorCode.INVALID_ARGUMENT, "backupFile must be a non-empty string")
        candidate = Path(name)
        if candidate.name != name or name in (".", ".."):
            # Absolute paths that already point inside the backup dir are fine
            resolved = candidate.resolve()
            if resolved.parent != self.root.resolve():
                raise DatabaseAdminError(
                    ErrorCode.INVALID_ARGUMENT,
                    "backupFile must name a file inside the backup directory",
                    {"backupFile": name},
                )
            return resolved
        return self.root / name

    def new_path(self, name: str) -> Path:
        """Path for a new file; appends -1, -2 ... when the name is taken."""
        self.ensure_root()
        path = self.root / name
        counter = 1
        while path.exists() or manifest_path(path).exists():
            stem, dot, rest = name.partition(".")
            path = self.root / f"{stem}-{counter}{dot}{rest}"
            counter += 1
        return path

    def _data_files(self) -> list[Path]:
        if not self.root.exists():
            return []
        return [
            p for p in self.root.iterdir()
            if p.is_file() and not p.name.endswith(MANIFEST_SUFFIX) and detect_type(p.name) != "unknown"
        ]

    def list_backups(self, kind: Optional[str] = None) -> list[dict[str, Any]]:
        if kind is not None and kind not in BACKUP_TYPES:
            raise DatabaseAdminError(
                ErrorCode.INVALID_ARGUMENT,
                f"Unknown backup type '{kind}'",
                {"valid_types": list(BACKUP_TYPES)},
            )
        backups = []
        for path in self._data_files():
            file_type = detect_type(path.name)
            if kind and file_type != kind:
                continue
            stat = path.stat()
            try:
                manifest = read_manifest(path)
            except (OSError, ValueError) as e:
                logger.warning(f"Unreadable manifest for {path.name}: {e}")
                manifest = None
            backups.append({
                "file": path.name,
                "type": file_type,
                "size": stat.st_size,
                "size_formatted": format_bytes(stat.st_size),
                "created": datetime.fromtimestamp(stat.st_mtime).isoformat(),
                "compressed": path.name.endswith(".gz"),
                "has_manifest": manifest is not None,
                "tables": (manifest or {}).get("tables"),
                "record_count": (manifest or {}).get("recordCount"),
                "_mtime": stat.st_mtime,
            })
        backups.sort(key=lambda b: b["_mtime"], reverse=True)
        for backup in backups:
            del backup["_mtime"]
        return backups

    def latest(self, kind: str) -> Optional[Path]:
        backups = self.list_backups(kind)
        return self.root / backups[0]["file"] if backups else None

    def delete(self, name: str) -> dict[str, Any]:
        path = self.resolve(name)
        if not path.exists():
            raise DatabaseAdminError(ErrorCode.NOT_FOUND, f"Backup '{name}' not found", {"backupFile": name})
        manifest = manifest_path(path)
        size = path.stat().st_size
        path.unlink()
        manifest_deleted = False
        if manifest.exists():
            manifest.unlink()
            manifest_deleted = True
        logger.info(f"Deleted backup {path.name}")
        return {"deleted": True, "file": path.name, "size": size, "manifest_deleted": manifest_deleted}

    def cleanup_old_backups(self, retention_days: int, now: Optional[datetime] = None) -> list[str]:
        """Delete backups (and manifests) older than the retention window."""
        cutoff = (now or datetime.now()) - timedelta(days=retention_days)
        removed = []
        for path in self._data_files():
            if datetime.fromtimestamp(path.stat().st_mtime) < cutoff:
                manifest = manifest_path(path)
                path.unlink()
                if manifest.exists():
                    manifest.unlink()
                removed.append(path.name)
                logger.info(f"Removed expired backup {path.name}")
        return removed

    def disk_usage(self) -> dict[str, Any]:
        total = sum(p.stat().st_size for p in self._data_files())
        return {"directory": str(self.root), "total_size": total, "total_size_formatted": format_bytes(total),
                "writable": os.access(self.root, os.W_OK) if self.root.exists() else False}
