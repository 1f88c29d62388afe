from __future__ import annotations

import asyncio
import re
import sqlite3
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

import aiomysql
import aiosqlite
from loguru import logger

from .config import Settings, get_settings


sqlite3.register_adapter(Decimal, str)
sqlite3.register_adapter(datetime, lambda value: value.isoformat(" "))
sqlite3.register_adapter(date, lambda value: value.isoformat())


Params = Sequence[Any] | None

# Comments, quoted literals, statement separators, then everything else.
_SQL_TOKEN = re.compile(
    r"--[^\n]*|/\*.*?\*/|'(?:[^']|'')*'|\"[^\"]*\"|;|[^;'\"/-]+|.",
    re.DOTALL,
)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the ``+00:00`` session time zone."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def _to_sqlite_placeholders(sql: str) -> str:
    return sql.replace("%s", "?")


class Session:
    """Executor bound to one connection for the lifetime of a transaction."""

    def __init__(self, conn: Any, *, sqlite: bool) -> None:
        self._conn = conn
        self._sqlite = sqlite

    @property
    def lock_clause(self) -> str:
        # The SQLite fallback serialises transactions on its single connection.
        return "" if self._sqlite else " FOR UPDATE"

    async def execute(self, sql: str, params: Params = None) -> int:
        if self._sqlite:
            cursor = await self._conn.execute(_to_sqlite_placeholders(sql), tuple(params or ()))
            return cursor.rowcount
        async with self._conn.cursor() as cursor:
            return await cursor.execute(sql, params)

    async def fetch_one(self, sql: str, params: Params = None) -> dict[str, Any] | None:
        if self._sqlite:
            cursor = await self._conn.execute(_to_sqlite_placeholders(sql), tuple(params or ()))
            row = await cursor.fetchone()
            return dict(row) if row else None
        async with self._conn.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(sql, params)
            return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Params = None) -> list[dict[str, Any]]:
        if self._sqlite:
            cursor = await self._conn.execute(_to_sqlite_placeholders(sql), tuple(params or ()))
            rows = await cursor.fetchall()
            return [dict(row) for row in rows]
        async with self._conn.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(sql, params)
            return list(await cursor.fetchall())


class Database:
    def __init__(self, settings: Settings | None = None) -> None:
        self._pool: aiomysql.Pool | None = None
        self._sqlite_conn: aiosqlite.Connection | None = None
        self._sqlite_lock = asyncio.Lock()
        self._settings = settings or get_settings()
        self._use_sqlite = self._should_use_sqlite()

    def _should_use_sqlite(self) -> bool:
        """Use SQLite when any of the MySQL connection settings is missing."""
        return not all([
            self._settings.database_host,
            self._settings.database_user,
            self._settings.database_name,
        ])

    def _get_sqlite_path(self) -> Path:
        if self._settings.sqlite_path:
            return Path(self._settings.sqlite_path).expanduser()
        return Path(__file__).resolve().parent.parent.parent / "medshop.db"

    def is_sqlite(self) -> bool:
        return self._use_sqlite

    @property
    def lock_clause(self) -> str:
        """Row locks only make sense inside a transaction; see ``Session``."""
        return ""

    def _split_sql_statements(self, sql: str) -> list[str]:
        """Split a migration script on top-level semicolons, dropping comments."""
        statements: list[str] = []
        current: list[str] = []
        for match in _SQL_TOKEN.finditer(sql):
            token = match.group(0)
            if token.startswith("--") or token.startswith("/*"):
                continue
            if token == ";":
                statements.append("".join(current).strip())
                current = []
            else:
                current.append(token)
        statements.append("".join(current).strip())
        return [statement for statement in statements if statement]

    def _adapt_sql_for_sqlite(self, sql: str) -> str:
        """Translate the MySQL dialect used by the migrations into SQLite DDL."""
        sql = re.sub(r"\s*ENGINE\s*=\s*\w+", "", sql, flags=re.IGNORECASE)
        sql = re.sub(r"\s*DEFAULT\s+CHARSET\s*=\s*\w+", "", sql, flags=re.IGNORECASE)
        sql = re.sub(r"\s*COLLATE\s*=\s*\w+", "", sql, flags=re.IGNORECASE)
        sql = re.sub(r"\s*COMMENT\s+'[^']*'", "", sql, flags=re.IGNORECASE)
        sql = re.sub(r"\s*ON\s+UPDATE\s+CURRENT_TIMESTAMP", "", sql, flags=re.IGNORECASE)
        sql = re.sub(r"\bDATETIME\b", "TEXT", sql, flags=re.IGNORECASE)
        sql = re.sub(r"\bJSON\b", "TEXT", sql, flags=re.IGNORECASE)
        return sql

    async def connect(self) -> None:
        if self._pool or self._sqlite_conn:
            return

        if self._use_sqlite:
            db_path = self._get_sqlite_path()
            logger.info("Connecting to SQLite database at {path}", path=str(db_path))
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self._sqlite_conn = await aiosqlite.connect(str(db_path), isolation_level=None)
            self._sqlite_conn.row_factory = aiosqlite.Row
            await self._sqlite_conn.execute("PRAGMA foreign_keys = ON")
        else:
            logger.info("Connecting to MySQL at {host}", host=self._settings.database_host)
            self._pool = await aiomysql.create_pool(
                host=self._settings.database_host,
                port=self._settings.database_port,
                user=self._settings.database_user,
                password=self._settings.database_password or "",
                db=self._settings.database_name,
                autocommit=True,
                minsize=1,
                maxsize=self._settings.database_pool_size,
                pool_recycle=600,
                init_command="SET time_zone = '+00:00'",
            )

    async def disconnect(self) -> None:
        if self._sqlite_conn:
            logger.info("Disconnecting from SQLite database")
            await self._sqlite_conn.close()
            self._sqlite_conn = None
        elif self._pool:
            logger.info("Disconnecting from MySQL database")
            self._pool.close()
            await self._pool.wait_closed()
            self._pool = None

    def is_connected(self) -> bool:
        return self._pool is not None or self._sqlite_conn is not None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[Any]:
        """Acquire a connection.

        MySQL hands out a pooled connection. SQLite has a single shared
        connection, so callers hold the connection lock until they are done.
        """
        if self._use_sqlite:
            if not self._sqlite_conn:
                raise RuntimeError("SQLite database not initialised")
            async with self._sqlite_lock:
                yield self._sqlite_conn
        else:
            if not self._pool:
                raise RuntimeError("Database pool not initialised")
            conn = await self._pool.acquire()
            try:
                yield conn
            finally:
                self._pool.release(conn)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Session]:
        """Run a unit of work on one connection.

        Commits when the block exits normally, rolls back on any exception and
        always returns the connection to the pool.
        """
        async with self.acquire() as conn:
            if self._use_sqlite:
                await conn.execute("BEGIN")
            else:
                await conn.begin()
            session = Session(conn, sqlite=self._use_sqlite)
            try:
                yield session
            except BaseException:
                if self._use_sqlite:
                    await conn.execute("ROLLBACK")
                else:
                    await conn.rollback()
                raise
            else:
                if self._use_sqlite:
                    await conn.execute("COMMIT")
                else:
                    await conn.commit()

    async def execute(self, sql: str, params: Params = None) -> int:
        async with self.acquire() as conn:
            return await Session(conn, sqlite=self._use_sqlite).execute(sql, params)

    async def fetch_one(self, sql: str, params: Params = None) -> dict[str, Any] | None:
        async with self.acquire() as conn:
            return await Session(conn, sqlite=self._use_sqlite).fetch_one(sql, params)

    async def fetch_all(self, sql: str, params: Params = None) -> list[dict[str, Any]]:
        async with self.acquire() as conn:
            return await Session(conn, sqlite=self._use_sqlite).fetch_all(sql, params)

    def _get_migrations_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent.parent / "migrations"

    async def _apply_migration_file(self, session: Session, path: Path) -> None:
        sql = path.read_text(encoding="utf-8")
        if self._use_sqlite:
            sql = self._adapt_sql_for_sqlite(sql)
        for statement in self._split_sql_statements(sql):
            await session.execute(statement)
        await session.execute("INSERT INTO migrations (name) VALUES (%s)", (path.name,))

    async def _ensure_database_exists(self) -> None:
        temp_conn = await aiomysql.connect(
            host=self._settings.database_host,
            port=self._settings.database_port,
            user=self._settings.database_user,
            password=self._settings.database_password or "",
            autocommit=True,
            init_command="SET time_zone = '+00:00'",
        )
        try:
            async with temp_conn.cursor() as cursor:
                await cursor.execute("SET sql_notes = 0")
                try:
                    await cursor.execute(
                        f"CREATE DATABASE IF NOT EXISTS `{self._settings.database_name}`"
                    )
                finally:
                    await cursor.execute("SET sql_notes = 1")
        finally:
            temp_conn.close()

    async def run_migrations(self) -> None:
        """Apply every pending ``migrations/*.sql`` file in name order."""
        if not self._use_sqlite:
            await self._ensure_database_exists()

        await self.connect()
        migrations_dir = self._get_migrations_dir()
        if not migrations_dir.exists():
            logger.warning("No migrations directory found at {path}", path=str(migrations_dir))
            return

        lock_name = f"{self._settings.database_name or 'medshop'}_migration_lock"
        lock_timeout = self._settings.migration_lock_timeout

        async with self.acquire() as conn:
            session = Session(conn, sqlite=self._use_sqlite)
            lock_acquired = False
            try:
                if not self._use_sqlite:
                    row = await session.fetch_one(
                        "SELECT GET_LOCK(%s, %s) AS acquired", (lock_name, lock_timeout)
                    )
                    lock_acquired = bool(row and row["acquired"] == 1)
                    if not lock_acquired:
                        logger.error(
                            "Unable to obtain database migration lock {lock} within {timeout}s",
                            lock=lock_name,
                            timeout=lock_timeout,
                        )
                        raise RuntimeError("Could not obtain database migration lock")

                await session.execute(
                    "CREATE TABLE IF NOT EXISTS migrations (name VARCHAR(255) PRIMARY KEY)"
                )
                applied = {
                    row["name"]
                    for row in await session.fetch_all("SELECT name FROM migrations")
                }
                for path in sorted(migrations_dir.glob("*.sql")):
                    if path.name in applied:
                        continue
                    await self._apply_migration_file(session, path)
                    logger.info("Applied migration {name}", name=path.name)
            finally:
                if lock_acquired:
                    await session.execute("SELECT RELEASE_LOCK(%s)", (lock_name,))
