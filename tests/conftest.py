"""
Pytest configuration and shared fixtures for PostgreSQL Admin MCP Server tests

APPROACH: Fake the pool, not the services
- FakeDatabase stands in for DatabaseConnection and records every statement
- The ServiceContainer is the real one, so handlers, builder, validator and
  transaction manager run exactly as in production
- Backups write to a per-test tmp directory through a fake pg_dump/psql runner
"""

import os
import sys
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from config import AuditConfig, BackupConfig, DatabaseConfig
from container import ServiceContainer
from security import Whitelist
from tests.fakes import FakeDatabase, FakeProcessRunner, fake_table_stats


def pytest_configure(config):
    """
    Pytest hook called before test collection.
    """
    os.environ['PYTEST_RUNNING'] = '1'


@pytest.fixture
def whitelist():
    return Whitelist.default()


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def runner():
    return FakeProcessRunner()


@pytest.fixture
def db_config():
    return DatabaseConfig.for_testing()


@pytest.fixture
def backup_config(tmp_path):
    return BackupConfig(
        backup_dir=tmp_path / "backups",
        compress=False,
        pg_dump_path="/usr/bin/pg_dump",
        psql_path="/usr/bin/psql",
    )


@pytest.fixture
def services(fake_db, db_config, backup_config, runner):
    """
    Real service container over the fake pool, audit disabled.
    """
    container = ServiceContainer(
        fake_db,
        db_config,
        whitelist=Whitelist.default(),
        backup_config=backup_config,
        audit_config=AuditConfig(enabled=False),
        runner=runner,
    )
    container.backups.stats_collector = fake_table_stats
    return container
