"""
MySQL log store.

Log semantics on top of ``MySQLPool``. The database and the ``logs`` table
are provisioned lazily on first use (``wait_ready``).

NOTE: ``add_log`` with ``update=True`` reads the stored entry, merges, then
writes. The read and the write are separate statements, so concurrent
writers to the same id race (last write wins).
"""

import asyncio
import re
from typing import Any, Mapping, Optional, Sequence, Union
import structlog

from logstore.config import LogStoreConfig
from logstore.storage import codec
from logstore.storage.backend import BackendKind, LogBackend
from logstore.storage.entry import (
    FilterFn,
    LogEntry,
    apply_filter,
    coerce_entry,
    merge_data,
)
from logstore.storage.errors import LogStoreClosedError
from logstore.storage.mysql_pool import MySQLPool, PoolConfig
from logstore.utils.time_utils import now_iso

logger = structlog.get_logger(__name__)

DEFAULT_ADD_TIMEOUT = 60.0

# MySQL has no "unbounded" LIMIT; this is the documented idiom
_MAX_LIMIT = 18446744073709551615

_MAX_DATABASE_NAME = 64
_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_]")
_LEADING_NON_LETTERS = re.compile(r"^[^A-Za-z]+")


def valid_mysql_database_name(name: Optional[str]) -> str:
    """
    Turn a logical name into a usable MySQL database name.
    
    Characters outside [A-Za-z0-9_] become "_", leading non-letters are
    dropped and the result is cut to 64 characters. Empty results fall
    back to "default".
    """
    if not name:
        return "default"
    cleaned = _INVALID_NAME_CHARS.sub("_", name)
    cleaned = _LEADING_NON_LETTERS.sub("", cleaned)
    return cleaned[:_MAX_DATABASE_NAME] or "default"


def build_pool_config(name: Optional[str], config: LogStoreConfig) -> PoolConfig:
    """
    Pool settings for a logical name.
    
    An explicit ``config.database`` wins and is used as given; otherwise the
    logical name is cleaned with ``valid_mysql_database_name``.
    """
    return PoolConfig(
        host=config.host,
        user=config.user,
        password=config.password,
        database=config.database or valid_mysql_database_name(name),
        port=config.port,
        connection_limit=config.connection_limit,
        connect_timeout=config.connect_timeout,
        query_timeout=config.query_timeout,
        marker_dir=str(config.schema_marker_dir),
    )


class MySQLLogStore(LogBackend):
    """
    Networked log store.
    
    No retries: any connection or statement failure propagates to the
    caller of that operation.
    """
    
    kind = BackendKind.MYSQL
    
    def __init__(
        self,
        name: Optional[str] = None,
        config: Optional[LogStoreConfig] = None,
        *,
        pool: Optional[MySQLPool] = None,
    ):
        """
        Initialize store (no connection is made until wait_ready()).
        
        Args:
            name: Logical name; used as the database unless config.database is set
            config: Store configuration
            pool: Pre-built pool to use instead of creating one
        """
        self.config = config or LogStoreConfig()
        self.pool_config = build_pool_config(name, self.config)
        self.name = self.pool_config.database
        self.pool = pool or MySQLPool(self.pool_config)
        self._schema_ready = False
        self._closed = False
    
    async def wait_ready(self) -> None:
        """Make sure the pool is open and the logs table exists."""
        if self._closed:
            raise LogStoreClosedError("networked log store is closed", name=self.name)
        if self._schema_ready and self.pool.ready:
            return
        
        if not self.pool.ready:
            await self.pool.initialize()
        
        await self.pool.query("""
            CREATE TABLE IF NOT EXISTS logs (
                id VARCHAR(255) PRIMARY KEY,
                data TEXT,
                message TEXT,
                timestamp VARCHAR(40)
            )
        """)
        self._schema_ready = True
        logger.info("mysql_store_ready", name=self.name)
    
    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute raw SQL on the pool."""
        await self.wait_ready()
        return await self.pool.query(sql, params)
    
    # =========================================================================
    # Log operations
    # =========================================================================
    
    async def add_log(
        self,
        entry: Union[LogEntry, Mapping[str, Any]],
        *,
        update: bool = True,
        timeout: Optional[float] = DEFAULT_ADD_TIMEOUT,
    ) -> None:
        """
        Add or replace a log entry.
        
        Args:
            entry: Entry to write
            update: Shallow-merge dict data over the stored dict data
            timeout: Seconds allowed for the whole read-merge-write
        """
        entry = coerce_entry(entry)
        await self.wait_ready()
        
        write = self._write(entry, update)
        if timeout:
            await asyncio.wait_for(write, timeout)
        else:
            await write
        
        logger.debug("log_added", name=self.name, id=entry.id)
    
    async def _write(self, entry: LogEntry, update: bool) -> None:
        data = entry.data
        if update:
            existing = await self.get_log_by_id(entry.id)
            if existing is not None:
                data = merge_data(existing.data, data)
        
        timestamp = entry.timestamp or now_iso(self.config.timezone)
        await self.pool.execute(
            "REPLACE INTO logs (id, data, message, timestamp) VALUES (%s, %s, %s, %s)",
            (entry.id, codec.dumps(data), entry.message, timestamp),
        )
    
    async def get_log_by_id(self, log_id: str) -> Optional[LogEntry]:
        """Get a log entry by id, or None if not found."""
        await self.wait_ready()
        rows = await self.pool.query("SELECT * FROM logs WHERE id = %s", (log_id,))
        if not rows:
            return None
        return LogEntry.from_row(rows[0])
    
    async def get_logs(
        self,
        filter_fn: Optional[FilterFn] = None,
        *,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[LogEntry]:
        """Get all logs; LIMIT/OFFSET run in SQL, the predicate afterwards."""
        await self.wait_ready()
        
        sql = "SELECT * FROM logs"
        params: list[Any] = []
        if limit or offset:
            sql += " LIMIT %s"
            params.append(limit if limit else _MAX_LIMIT)
            if offset:
                sql += " OFFSET %s"
                params.append(offset)
        
        rows = await self.pool.query(sql, params)
        entries = [LogEntry.from_row(row) for row in rows]
        return await apply_filter(entries, filter_fn)
    
    async def remove_log(self, log_id: str) -> bool:
        """Remove a log entry; True if a row was deleted."""
        await self.wait_ready()
        result = await self.pool.execute("DELETE FROM logs WHERE id = %s", (log_id,))
        return result.affected_rows > 0
    
    # =========================================================================
    # Diagnostics
    # =========================================================================
    
    async def show_process_list(self) -> list[dict[str, Any]]:
        """Rows of SHOW PROCESSLIST."""
        return await self.query("SHOW PROCESSLIST")
    
    async def server_status(self) -> dict[str, Any]:
        """Snapshot of server time, limits and thread counts."""
        await self.wait_ready()
        
        async def first(sql: str) -> Optional[dict[str, Any]]:
            rows = await self.pool.query(sql)
            return rows[0] if rows else None
        
        def value(row: Optional[dict[str, Any]]) -> Any:
            return row.get("Value") if row else None
        
        now_row = await first("SELECT NOW() AS now")
        processes = await self.pool.query("SHOW PROCESSLIST")
        
        status = {
            "now": now_row["now"] if now_row else None,
            "max_allowed_packet": value(await first("SHOW VARIABLES LIKE 'max_allowed_packet'")),
            "net_read_timeout": value(await first("SHOW VARIABLES LIKE 'net_read_timeout'")),
            "net_write_timeout": value(await first("SHOW VARIABLES LIKE 'net_write_timeout'")),
            "max_connections": value(await first("SHOW VARIABLES LIKE 'max_connections'")),
            "threads_connected": value(await first("SHOW STATUS LIKE 'Threads_connected'")),
            "threads_running": value(await first("SHOW STATUS LIKE 'Threads_running'")),
            "process_count": len(processes),
        }
        logger.info("mysql_server_status", name=self.name, **status)
        return status
    
    # =========================================================================
    # Lifecycle
    # =========================================================================
    
    async def close(self) -> None:
        """Close the pool. Safe to call more than once."""
        if self._closed:
            return
        await self.pool.close()
        self._closed = True
        logger.info("mysql_store_closed", name=self.name)
    
    def is_closed(self) -> bool:
        return self._closed
