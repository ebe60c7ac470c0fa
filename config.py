"""
Configuration for the PostgreSQL admin MCP server
Environment-aware configuration based on APP_ENV
"""

import os
import shutil
from dataclasses import dataclass, field
from typing import Optional, Literal
from urllib.parse import quote
from pathlib import Path
from dotenv import load_dotenv

# Environment modes
EnvironmentMode = Literal["development", "test", "production"]


def load_app_environment(mode: Optional[str] = None) -> str:
    """
    Load environment variables from the appropriate .env file.

    Priority:
    1. Explicit 'mode' argument
    2. APP_ENV environment variable
    3. Default to 'development'

    Loads .env.{mode} if it exists. Variables already present in the
    process environment win over file values.
    """
    if not mode:
        mode = os.getenv('APP_ENV', 'development')

    base_path = Path(__file__).parent
    env_file = base_path / f'.env.{mode}'

    if env_file.exists():
        load_dotenv(env_file, override=False)

    return mode


def get_environment_mode() -> EnvironmentMode:
    """Get current environment mode from APP_ENV variable"""
    mode = os.getenv('APP_ENV', 'development').lower()
    if mode not in ('development', 'test', 'production'):
        mode = 'development'
    return mode  # type: ignore


def is_test_mode() -> bool:
    """Check if running in test mode"""
    return get_environment_mode() == 'test'


def is_production_mode() -> bool:
    """Check if running in production mode"""
    return get_environment_mode() == 'production'


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def get_backup_root() -> Path:
    r"""
    Get the root directory for database backups.

    Storage by Environment:
    - Development: ./backups
    - Test: ./backups_test
    - Production: Platform-specific user data directory
      * Windows: %LOCALAPPDATA%\PgAdminMCP\backups
      * Linux/Mac: ~/.local/share/pg-admin-mcp/backups

    BACKUP_DIR overrides all of the above.
    """
    explicit = os.getenv('BACKUP_DIR')
    if explicit:
        return Path(explicit)

    if is_production_mode():
        if os.name == 'nt':
            base = os.getenv('LOCALAPPDATA', os.path.expanduser('~\\AppData\\Local'))
            return Path(base) / 'PgAdminMCP' / 'backups'
        base = os.getenv('XDG_DATA_HOME', os.path.expanduser('~/.local/share'))
        return Path(base) / 'pg-admin-mcp' / 'backups'
    elif is_test_mode():
        return Path(__file__).parent / "backups_test"
    else:
        return Path(__file__).parent / "backups"


@dataclass
class DatabaseConfig:
    """PostgreSQL database configuration"""

    host: str
    port: int
    database: str
    user: str
    password: str

    # Connection pool settings
    min_pool_size: int = 2
    max_pool_size: int = 10
    command_timeout: int = 60  # seconds

    # Per-transaction statement timeout
    statement_timeout_ms: int = 30000

    # SSL settings
    ssl_mode: str = "require"

    @property
    def connection_string(self) -> str:
        """libpq connection URI (psycopg2)"""
        return (
            f"postgresql://{quote(self.user, safe='')}:{quote(self.password, safe='')}"
            f"@{self.host}:{self.port}/{self.database}"
            f"?sslmode={self.ssl_mode}"
        )

    @property
    def asyncpg_dsn(self) -> str:
        """asyncpg DSN; SSL is passed separately"""
        return (
            f"postgresql://{quote(self.user, safe='')}:{quote(self.password, safe='')}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @classmethod
    def from_environment(cls, mode: Optional[EnvironmentMode] = None) -> 'DatabaseConfig':
        """
        Load configuration from environment variables

        Environment variables:
        - APP_ENV: Environment mode (development, test, production)
        - DB_HOST: Database host (default: localhost)
        - DB_PORT: Database port (default: 5432)
        - DB_NAME: Database name (default: postgres)
        - DB_USER: Database user
        - DB_PASSWORD: Database password
        - DB_SSL_MODE: SSL mode (default: prefer in development, require elsewhere)
        - DB_STATEMENT_TIMEOUT_MS: Statement timeout per transaction (default: 30000)
        """
        mode = load_app_environment(mode)

        config = cls(
            host=os.getenv('DB_HOST', 'localhost'),
            port=int(os.getenv('DB_PORT', '5432')),
            database=os.getenv('DB_NAME', 'postgres'),
            user=os.getenv('DB_USER', 'postgres'),
            password=os.getenv('DB_PASSWORD', ''),
            ssl_mode=os.getenv('DB_SSL_MODE', 'prefer' if mode == 'development' else 'require'),
            min_pool_size=int(os.getenv('DB_MIN_POOL_SIZE', '2')),
            max_pool_size=int(os.getenv('DB_MAX_POOL_SIZE', '10')),
            statement_timeout_ms=int(os.getenv('DB_STATEMENT_TIMEOUT_MS', '30000')),
        )

        config.validate_safety(mode)

        return config

    def validate_safety(self, mode: str):
        """Ensure configuration is safe for the requested mode"""
        if mode == 'test':
            if 'test' not in self.database:
                raise ValueError(f"SAFETY ERROR: Test mode requested but database is '{self.database}'. Test database must contain 'test'.")
            if 'prod' in self.database:
                raise ValueError(f"SAFETY ERROR: Test mode requested but database '{self.database}' appears to be production.")

    @classmethod
    def for_testing(cls) -> 'DatabaseConfig':
        """Configuration for test PostgreSQL database"""
        return cls(
            host='localhost',
            port=5432,
            database='pg_admin_test',
            user='postgres',
            password='postgres',
            ssl_mode='prefer',
            min_pool_size=1,
            max_pool_size=5,
        )


def _find_executable(name: str) -> Optional[str]:
    """
    Find a PostgreSQL client executable, checking PATH first, then common
    installation directories.
    """
    found = shutil.which(name)
    if found:
        return found

    if os.name == 'nt':
        program_files = os.environ.get('ProgramFiles', 'C:\\Program Files')
        postgres_base = Path(program_files) / 'PostgreSQL'
        if postgres_base.exists():
            versions = sorted(
                [d for d in postgres_base.iterdir() if d.is_dir()],
                key=lambda x: x.name,
                reverse=True
            )
            for version_dir in versions:
                candidate = version_dir / 'bin' / f'{name}.exe'
                if candidate.exists():
                    return str(candidate)
    else:
        common_paths = [
            f'/usr/bin/{name}',
            f'/usr/local/bin/{name}',
            f'/opt/homebrew/bin/{name}',
            f'/usr/local/opt/postgresql/bin/{name}',
        ]
        for path in common_paths:
            if Path(path).exists():
                return path

    return None


DEFAULT_DUMP_OPTIONS = [
    "--no-owner",
    "--no-privileges",
    "--column-inserts",
    "--rows-per-insert=1000",
]

DEFAULT_RESTORE_OPTIONS = [
    "--quiet",
    "--no-psqlrc",
]


@dataclass
class BackupConfig:
    """Backup/restore settings"""

    backup_dir: Path
    retention_days: int = 30
    compress: bool = True
    pg_dump_path: Optional[str] = None
    psql_path: Optional[str] = None
    dump_timeout: int = 600  # seconds
    restore_timeout: int = 1800  # seconds
    dump_options: list[str] = field(default_factory=lambda: list(DEFAULT_DUMP_OPTIONS))
    restore_options: list[str] = field(default_factory=lambda: list(DEFAULT_RESTORE_OPTIONS))

    @classmethod
    def from_environment(cls) -> 'BackupConfig':
        """
        Environment variables:
        - BACKUP_DIR: Backup directory (default: get_backup_root())
        - BACKUP_RETENTION_DAYS: Days to keep backups (default: 30)
        - BACKUP_COMPRESSION: gzip backups by default (default: true)
        - PG_DUMP_PATH / PSQL_PATH: Explicit tool locations
        """
        return cls(
            backup_dir=get_backup_root(),
            retention_days=int(os.getenv('BACKUP_RETENTION_DAYS', '30')),
            compress=_env_flag('BACKUP_COMPRESSION', True),
            pg_dump_path=os.getenv('PG_DUMP_PATH') or _find_executable('pg_dump'),
            psql_path=os.getenv('PSQL_PATH') or _find_executable('psql'),
            dump_timeout=int(os.getenv('BACKUP_DUMP_TIMEOUT', '600')),
            restore_timeout=int(os.getenv('BACKUP_RESTORE_TIMEOUT', '1800')),
        )


@dataclass
class AuditConfig:
    """
    Audit logging settings

    Environment Variables:
    - AUDIT_ENABLED: Record operations to audit_logs (default: true)
    - AUDIT_QUEUE_SIZE: Max queued records before new ones are dropped (default: 1000)
    - AUDIT_USER_ID: Identity stamped on every record (optional)
    - AUDIT_AUTO_CREATE: Create audit_logs at startup when missing (default: false)
    """
    enabled: bool = True
    queue_size: int = 1000
    user_id: Optional[str] = None
    auto_create: bool = False

    @classmethod
    def from_environment(cls) -> "AuditConfig":
        return cls(
            enabled=_env_flag("AUDIT_ENABLED", True),
            queue_size=int(os.getenv("AUDIT_QUEUE_SIZE", "1000")),
            user_id=os.getenv("AUDIT_USER_ID") or None,
            auto_create=_env_flag("AUDIT_AUTO_CREATE", False),
        )


def get_whitelist_file() -> Optional[Path]:
    """Optional JSON file replacing the built-in table whitelist"""
    value = os.getenv('WHITELIST_FILE')
    return Path(value) if value else None


# Example .env file content
ENV_TEMPLATE = """
# Application Environment
# Options: development, test, production
APP_ENV=development

# Database Configuration
DB_HOST=localhost
DB_PORT=5432
DB_NAME=postgres
DB_USER=postgres
DB_PASSWORD=your_password_here
DB_SSL_MODE=prefer
DB_STATEMENT_TIMEOUT_MS=30000

# Connection Pool Settings
DB_MIN_POOL_SIZE=2
DB_MAX_POOL_SIZE=10

# Backups
# BACKUP_DIR=/var/backups/pg-admin
BACKUP_RETENTION_DAYS=30
BACKUP_COMPRESSION=true
# PG_DUMP_PATH=/usr/bin/pg_dump
# PSQL_PATH=/usr/bin/psql

# Audit
AUDIT_ENABLED=true
AUDIT_QUEUE_SIZE=1000
# AUDIT_USER_ID=admin
AUDIT_AUTO_CREATE=false

# Whitelist override (JSON)
# WHITELIST_FILE=/etc/pg-admin/whitelist.json
"""


def create_env_file(filepath: str = ".env.development"):
    """Create a template .env file"""
    with open(filepath, 'w') as f:
        f.write(ENV_TEMPLATE)
