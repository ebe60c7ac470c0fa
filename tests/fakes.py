"""
In-memory stand-ins for the connection pool and pg_dump/psql.

FakeDatabase records every statement as (sql, params) and answers from
rules registered with on(). A rule matches when its fragment occurs in the
SQL text; later rules win over earlier ones. A rule's result can be a value,
an exception instance (raised) or a callable(sql, params, conn).

Writes that should only become visible on COMMIT go through conn.stage().
"""

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Callable, Optional

import asyncpg

from backup.process import ProcessResult
from validation.data_validator import COLUMNS_SQL, FOREIGN_KEYS_SQL, UNIQUE_COLUMNS_SQL


def column(name: str, data_type: str, nullable: bool = True, max_length: Optional[int] = None,
           default: Optional[str] = None) -> dict:
    """One information_schema.columns row."""
    return {
        "column_name": name,
        "data_type": data_type,
        "is_nullable": "YES" if nullable else "NO",
        "character_maximum_length": max_length,
        "column_default": default,
    }


TIMESTAMP = "timestamp without time zone"

CATALOG: dict[str, list[dict]] = {
    "books": [
        column("id", "integer", nullable=False, default="nextval('books_id_seq'::regclass)"),
        column("series_id", "integer"),
        column("title", "character varying", nullable=False, max_length=255),
        column("author_id", "integer"),
        column("description", "text"),
        column("genre", "text"),
        column("word_count", "integer"),
        column("publication_year", "integer"),
        column("status", "character varying", max_length=50, default="'draft'::character varying"),
        column("book_order", "integer"),
        column("created_at", TIMESTAMP, nullable=False, default="now()"),
        column("updated_at", TIMESTAMP, default="now()"),
        column("deleted_at", TIMESTAMP),
    ],
    "authors": [
        column("id", "integer", nullable=False, default="nextval('authors_id_seq'::regclass)"),
        column("name", "character varying", nullable=False, max_length=255),
        column("bio", "text"),
        column("created_at", TIMESTAMP, nullable=False, default="now()"),
        column("updated_at", TIMESTAMP, default="now()"),
    ],
    "series": [
        column("id", "integer", nullable=False, default="nextval('series_id_seq'::regclass)"),
        column("title", "character varying", nullable=False, max_length=255),
        column("author_id", "integer"),
        column("description", "text"),
        column("start_year", "integer"),
        column("status", "character varying", max_length=50),
        column("created_at", TIMESTAMP, nullable=False, default="now()"),
        column("updated_at", TIMESTAMP, default="now()"),
    ],
    "lookup_values": [
        column("id", "integer", nullable=False, default="nextval('lookup_values_id_seq'::regclass)"),
        column("lookup_type", "character varying", nullable=False, max_length=50),
        column("value", "character varying", nullable=False, max_length=100),
        column("display_order", "integer"),
        column("is_active", "boolean", default="true"),
    ],
}


def foreign_key_violation(column_name: str, value: Any, table: str = "books",
                          referenced: str = "series") -> asyncpg.exceptions.ForeignKeyViolationError:
    error = asyncpg.exceptions.ForeignKeyViolationError(
        f'insert or update on table "{table}" violates foreign key constraint "{table}_{column_name}_fkey"'
    )
    error.detail = f'Key ({column_name})=({value}) is not present in table "{referenced}".'
    return error


class FakeConnection:
    """One checked-out connection: records statements, buffers staged writes."""

    def __init__(self, db: "FakeDatabase", number: int):
        self.db = db
        self.number = number
        self.in_transaction = False
        self.pending: list[Callable[[], None]] = []

    def transaction(self):
        return _FakeTransaction(self)

    def stage(self, apply: Callable[[], None]) -> None:
        """Apply now outside a transaction, on COMMIT inside one."""
        if self.in_transaction:
            self.pending.append(apply)
        else:
            apply()

    async def _answer(self, sql: str, args: tuple) -> Any:
        params = list(args)
        self.db.statements.append((sql, params))
        self.db.connections_used.add(self.number)
        # Yield so concurrent operations interleave
        await asyncio.sleep(0)
        return self.db.respond(sql, params, self)

    async def fetch(self, sql: str, *args, timeout: Optional[float] = None) -> list:
        result = await self._answer(sql, args)
        if result is None:
            return []
        return list(result) if isinstance(result, (list, tuple)) else [result]

    async def fetchrow(self, sql: str, *args, timeout: Optional[float] = None) -> Optional[dict]:
        result = await self._answer(sql, args)
        if isinstance(result, (list, tuple)):
            return result[0] if result else None
        return result

    async def fetchval(self, sql: str, *args, column: int = 0, timeout: Optional[float] = None) -> Any:
        return await self._answer(sql, args)

    async def execute(self, sql: str, *args, timeout: Optional[float] = None) -> str:
        result = await self._answer(sql, args)
        return result if isinstance(result, str) else "OK"


class _FakeTransaction:
    def __init__(self, conn: FakeConnection):
        self.conn = conn

    async def __aenter__(self):
        self.conn.db.events.append("BEGIN")
        self.conn.in_transaction = True
        self.conn.pending = []
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.conn.in_transaction = False
        if exc_type is None:
            for apply in self.conn.pending:
                apply()
            self.conn.db.events.append("COMMIT")
        else:
            self.conn.db.events.append("ROLLBACK")
        self.conn.pending = []
        return False


class FakeDatabase:
    """Duck-typed DatabaseConnection."""

    def __init__(self, catalog: Optional[dict[str, list[dict]]] = None, tables: Optional[list[str]] = None):
        self.catalog = dict(CATALOG if catalog is None else catalog)
        self.tables = list(tables) if tables is not None else sorted(self.catalog)
        self.statements: list[tuple[str, list]] = []
        self.events: list[str] = []
        self.connected = True
        self.connections_used: set[int] = set()
        self._checkouts = 0
        self.acquire_error: Optional[BaseException] = None
        self._rules: list[tuple[str, Any]] = [
            (COLUMNS_SQL, lambda sql, params, conn: self.catalog.get(params[0], [])),
            (FOREIGN_KEYS_SQL, []),
            (UNIQUE_COLUMNS_SQL, []),
        ]

    # ------------------------------------------------------------------
    # Scripting
    # ------------------------------------------------------------------

    def on(self, fragment: str, result: Any) -> None:
        self._rules.append((fragment, result))

    def respond(self, sql: str, params: list, conn: FakeConnection) -> Any:
        for fragment, result in reversed(self._rules):
            if fragment in sql:
                if isinstance(result, BaseException):
                    raise result
                if callable(result):
                    return result(sql, params, conn)
                return result
        return None

    def data_statements(self) -> list[tuple[str, list]]:
        """Statements other than catalog lookups and session settings."""
        return [
            (sql, params) for sql, params in self.statements
            if "information_schema" not in sql and not sql.startswith("SET ")
        ]

    def find(self, prefix: str) -> list[tuple[str, list]]:
        return [(sql, params) for sql, params in self.statements if sql.startswith(prefix)]

    # ------------------------------------------------------------------
    # DatabaseConnection surface
    # ------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return self.connected

    @asynccontextmanager
    async def acquire(self):
        if not self.connected:
            raise RuntimeError("Database not connected. Call connect() first.")
        if self.acquire_error is not None:
            raise self.acquire_error
        self._checkouts += 1
        yield FakeConnection(self, self._checkouts)

    async def fetch(self, query: str, *args, timeout: Optional[float] = None) -> list:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args, timeout: Optional[float] = None):
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args, column: int = 0, timeout: Optional[float] = None):
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def execute(self, query: str, *args, timeout: Optional[float] = None) -> str:
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def check_connection(self) -> bool:
        return self.connected

    async def get_pool_stats(self) -> dict[str, Any]:
        return {"status": "connected" if self.connected else "disconnected", "size": 1, "freesize": 1}

    async def get_all_tables(self) -> list[str]:
        return list(self.tables)


DUMP_OUTPUT = b"""--
-- PostgreSQL database dump
--

SET statement_timeout = 0;
SET client_encoding = 'UTF8';

CREATE TABLE public.books (
    id integer NOT NULL,
    title character varying(255) NOT NULL
);

INSERT INTO public.books (id, title) VALUES (1, 'The Fellowship of the Ring');
INSERT INTO public.books (id, title) VALUES (2, 'The Two Towers');
"""


class FakeProcessRunner:
    """Records pg_dump/psql invocations instead of spawning them."""

    def __init__(self, output: bytes = DUMP_OUTPUT, returncode: int = 0, stderr: str = ""):
        self.output = output
        self.returncode = returncode
        self.stderr = stderr
        self.calls: list[list[str]] = []
        self.stdin_data: list[bytes] = []

    async def run(self, args, env=None, stdin=None, stdout=None, timeout=None) -> ProcessResult:
        self.calls.append(list(args))
        if stdin is not None:
            self.stdin_data.append(stdin.read())
        if stdout is not None and self.returncode == 0:
            stdout.write(self.output)
        return ProcessResult(returncode=self.returncode, stderr=self.stderr)


def parse_response(result) -> dict:
    """Decode the JSON payload of a handler's TextContent response."""
    assert isinstance(result, list) and len(result) == 1
    return json.loads(result[0].text)


async def fake_table_stats(config, tables) -> dict:
    counts = {table: 2 for table in tables}
    return {"counts": counts, "recordCount": sum(counts.values())}
