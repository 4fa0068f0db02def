"""
Connection-pooled MySQL client.

Thin layer over aiomysql that provisions the target database on first use
and exposes three primitives: ``query`` (rows), ``execute`` (affected rows)
and ``transaction`` (atomic unit with guaranteed connection release).

Database provisioning is gated by a marker file so that the administrative
``CREATE DATABASE`` round trip only happens once per host.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence, TypeVar
import structlog

import aiomysql

from logstore.utils.time_utils import now_iso

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class PoolConfig:
    """Connection settings for a MySQL pool. Timeouts are in seconds."""
    host: Optional[str] = None
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    port: int = 3306
    connection_limit: int = 5
    connect_timeout: float = 60.0
    query_timeout: Optional[float] = None
    marker_dir: str = ".cache/database/schema"


@dataclass
class ExecuteResult:
    """Outcome of an insert/update/delete."""
    affected_rows: int
    insert_id: Optional[int] = None


def quote_identifier(name: str) -> str:
    """Backtick-quote a database name, rejecting characters that could escape it."""
    if not name or "`" in name or "\x00" in name:
        raise ValueError(f"invalid database name: {name!r}")
    return f"`{name}`"


class MySQLPool:
    """
    Bounded pool of MySQL connections.
    
    Lifecycle:
    - initialize(): provision database (once, marker-gated), open pool
    - query/execute/transaction: acquire, use, always release
    - close(): end pool; further close() calls are no-ops
    """
    
    def __init__(self, config: PoolConfig):
        """
        Initialize pool (no connections are opened until initialize()).
        
        Args:
            config: Connection settings
        """
        self.config = config
        self._pool: Optional[aiomysql.Pool] = None
        self._lock = asyncio.Lock()
    
    @property
    def ready(self) -> bool:
        return self._pool is not None
    
    @property
    def marker_path(self) -> Path:
        return Path(self.config.marker_dir) / f"{self.config.database}.schema"
    
    async def initialize(self) -> None:
        """
        Open the pool, creating the database first if not known to exist.
        
        Idempotent while the pool is open.
        """
        async with self._lock:
            if self._pool is not None:
                return
            
            if self.config.database and not self.marker_path.exists():
                await self._ensure_database()
                self.marker_path.parent.mkdir(parents=True, exist_ok=True)
                self.marker_path.write_text(f"Initialized at {now_iso()}\n", encoding="utf-8")
            
            self._pool = await aiomysql.create_pool(
                host=self.config.host or "localhost",
                port=int(self.config.port or 3306),
                user=self.config.user,
                password=self.config.password or "",
                db=self.config.database,
                minsize=1,
                maxsize=self.config.connection_limit or 5,
                connect_timeout=self.config.connect_timeout,
                autocommit=True,
                charset="utf8mb4",
            )
            
            logger.info(
                "mysql_pool_opened",
                host=self.config.host,
                port=self.config.port,
                database=self.config.database,
                max_size=self.config.connection_limit,
            )
    
    async def _ensure_database(self) -> None:
        """Create the target database using a one-off administrative connection."""
        statement = f"CREATE DATABASE IF NOT EXISTS {quote_identifier(self.config.database)}"
        
        admin = await aiomysql.connect(
            host=self.config.host or "localhost",
            port=int(self.config.port or 3306),
            user=self.config.user,
            password=self.config.password or "",
            connect_timeout=self.config.connect_timeout,
            autocommit=True,
        )
        try:
            cursor = await admin.cursor()
            try:
                await cursor.execute(statement)
            finally:
                await cursor.close()
        finally:
            admin.close()
        
        logger.info("mysql_database_ensured", database=self.config.database)
    
    async def _run(self, awaitable: Awaitable[T]) -> T:
        """Apply the per-statement timeout, if configured."""
        if self.config.query_timeout:
            return await asyncio.wait_for(awaitable, self.config.query_timeout)
        return await awaitable
    
    @asynccontextmanager
    async def connection(self) -> AsyncIterator[Any]:
        """Acquire a pooled connection; it is released on every exit path."""
        if self._pool is None:
            raise RuntimeError("MySQL pool is not initialized")
        
        conn = await self._pool.acquire()
        try:
            yield conn
        finally:
            self._pool.release(conn)
    
    async def _cursor_query(self, conn: Any, sql: str, params: Sequence[Any]) -> tuple[list, int, Optional[int]]:
        cursor = await conn.cursor(aiomysql.DictCursor)
        try:
            await self._run(cursor.execute(sql, tuple(params) if params else None))
            rows = await cursor.fetchall()
            return list(rows or []), cursor.rowcount, cursor.lastrowid
        finally:
            await cursor.close()
    
    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Run a statement and return its rows (empty list when none)."""
        async with self.connection() as conn:
            rows, _, _ = await self._cursor_query(conn, sql, params)
        return rows
    
    async def execute(self, sql: str, params: Sequence[Any] = ()) -> ExecuteResult:
        """Run an insert/update/delete and report affected rows."""
        async with self.connection() as conn:
            _, affected, insert_id = await self._cursor_query(conn, sql, params)
        return ExecuteResult(
            affected_rows=max(affected or 0, 0),
            insert_id=insert_id or None,
        )
    
    async def transaction(self, fn: Callable[[Any], Awaitable[T]]) -> T:
        """
        Run ``fn(conn)`` inside a transaction.
        
        Commits on success; rolls back and re-raises on any error. The
        connection goes back to the pool either way.
        """
        async with self.connection() as conn:
            await conn.begin()
            try:
                result = await fn(conn)
            except BaseException:
                await conn.rollback()
                logger.warning("mysql_transaction_rolled_back", database=self.config.database)
                raise
            await conn.commit()
            return result
    
    async def close(self) -> None:
        """End the pool. No-op if already closed or never opened."""
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        pool.close()
        await pool.wait_closed()
        logger.info("mysql_pool_closed", database=self.config.database)
