"""
Backup manifest statistics
Row counts per table, gathered over a short-lived psycopg2 connection.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable

import psycopg2

from config import DatabaseConfig

logger = logging.getLogger(__name__)


def generate_metadata(config: DatabaseConfig, tables: Iterable[str]) -> Dict[str, Any]:
    """Generate metadata (row counts) for the given tables."""
    tables = list(tables)
    try:
        conn = psycopg2.connect(config.connection_string)
    except psycopg2.Error as e:
        logger.warning(f"Failed to generate metadata: {e}")
        return {"error": str(e), "counts": {}, "recordCount": 0}

    counts: Dict[str, int] = {}
    try:
        cur = conn.cursor()
        for table in tables:
            # Table names come from the whitelist, never from callers
            try:
                cur.execute(f"SELECT COUNT(*) FROM {table}")
                counts[table] = cur.fetchone()[0]
            except psycopg2.Error:
                counts[table] = -1  # Table might not exist
                conn.rollback()
        cur.close()
    finally:
        conn.close()

    return {
        "timestamp": datetime.now().isoformat(),
        "database": config.database,
        "counts": counts,
        "recordCount": sum(c for c in counts.values() if c > 0),
    }


async def collect_table_stats(config: DatabaseConfig, tables: Iterable[str]) -> Dict[str, Any]:
    return await asyncio.to_thread(generate_metadata, config, list(tables))
