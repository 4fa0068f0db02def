"""
Embedded SQLite log store.

One file per logical name under the cache directory, opened in WAL
journal mode so a second handle (for example the one used during
migration) can read while this one is open.

Every method is a coroutine for interface parity with the MySQL store,
but the sqlite3 calls inside are synchronous and never yield mid-call.
"""

import os
import re
import sqlite3
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Union
import structlog

from logstore.storage import codec
from logstore.storage.backend import BackendKind, LogBackend
from logstore.storage.entry import (
    FilterFn,
    LogEntry,
    apply_filter,
    coerce_entry,
    merge_data,
)
from logstore.storage.errors import LogStoreClosedError, LogStoreError
from logstore.utils.time_utils import DEFAULT_TZ_NAME, file_stamp, now_iso

logger = structlog.get_logger(__name__)

DEFAULT_CACHE_DIR = ".cache"

_CREATE_TABLE = re.compile(r"^CREATE TABLE (?!IF NOT EXISTS)", re.IGNORECASE)


def resolve_name(name: Optional[str]) -> str:
    """Logical name, falling back to $DATABASE_FILENAME then "default"."""
    return name or os.environ.get("DATABASE_FILENAME") or "default"


def database_file_path(name: str, cache_dir: Union[str, Path] = DEFAULT_CACHE_DIR) -> Path:
    """Deterministic file path for a logical name."""
    return (Path(cache_dir) / f"{name}.db").resolve()


def make_idempotent(statement: str) -> str:
    """Rewrite ``CREATE TABLE x`` to ``CREATE TABLE IF NOT EXISTS x``."""
    return _CREATE_TABLE.sub("CREATE TABLE IF NOT EXISTS ", statement)


class SQLiteLogStore(LogBackend):
    """
    Single-file log store requiring no network.
    
    Design principles:
    - WAL journal mode for crash safety and concurrent readers
    - Upsert by id (INSERT OR REPLACE), store order is rowid order
    - Open failures are fatal: there is no fallback below this layer
    - Backup is a logical SQL dump, replayable over an existing schema
    """
    
    kind = BackendKind.SQLITE
    
    def __init__(
        self,
        name: Optional[str] = None,
        *,
        cache_dir: Union[str, Path] = DEFAULT_CACHE_DIR,
        timezone: str = DEFAULT_TZ_NAME,
    ):
        """
        Open (or create) the store for a logical name.
        
        Args:
            name: Logical database name (file name without extension)
            cache_dir: Directory holding the database files
            timezone: Zone used for default timestamps and backup names
        """
        self.name = resolve_name(name)
        self.cache_dir = Path(cache_dir)
        self.timezone = timezone
        self.db_path = database_file_path(self.name, self.cache_dir)
        self.backup_dir = self.cache_dir.resolve() / "database" / "backup"
        
        self.conn: Optional[sqlite3.Connection] = None
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.db_path))
            self.conn.row_factory = sqlite3.Row
            self._init_schema()
        except (sqlite3.Error, OSError) as e:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
            logger.error("sqlite_open_failed", name=self.name, path=str(self.db_path), error=str(e))
            raise LogStoreError(
                f"cannot open embedded log store at {self.db_path}: {e}", name=self.name
            ) from e
        
        logger.info("sqlite_store_opened", name=self.name, path=str(self.db_path))
    
    def _init_schema(self) -> None:
        """Set journal mode and create the logs table."""
        self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS logs (
                id TEXT PRIMARY KEY,
                data TEXT,
                message TEXT,
                timestamp TEXT
            )
        """)
        self.conn.commit()
    
    def _require_open(self) -> sqlite3.Connection:
        if self.conn is None:
            raise LogStoreClosedError("embedded log store is closed", name=self.name)
        return self.conn
    
    def _fetch_row(self, log_id: str) -> Optional[sqlite3.Row]:
        conn = self._require_open()
        return conn.execute("SELECT * FROM logs WHERE id = ?", (log_id,)).fetchone()
    
    # =========================================================================
    # Log operations
    # =========================================================================
    
    async def add_log(
        self,
        entry: Union[LogEntry, Mapping[str, Any]],
        *,
        update: bool = True,
    ) -> None:
        """
        Add or replace a log entry.
        
        With ``update`` (default) dict data is shallow-merged over the
        stored dict data; otherwise data is replaced.
        """
        entry = coerce_entry(entry)
        conn = self._require_open()
        
        data = entry.data
        if update:
            row = self._fetch_row(entry.id)
            if row is not None:
                data = merge_data(codec.loads(row["data"]), data)
        
        timestamp = entry.timestamp or now_iso(self.timezone)
        
        with conn:
            conn.execute(
                "INSERT OR REPLACE INTO logs (id, data, message, timestamp) VALUES (?, ?, ?, ?)",
                (entry.id, codec.dumps(data), entry.message, timestamp),
            )
        
        logger.debug("log_added", name=self.name, id=entry.id)
    
    async def get_log_by_id(self, log_id: str) -> Optional[LogEntry]:
        """Get a log entry by id, or None if not found."""
        row = self._fetch_row(log_id)
        if row is None:
            return None
        return LogEntry.from_row(row)
    
    async def get_logs(
        self,
        filter_fn: Optional[FilterFn] = None,
        *,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[LogEntry]:
        """
        Get all logs, optionally paginated then filtered.
        
        Pagination is applied in SQL; the predicate (sync or async) runs
        afterwards over the page, preserving store order.
        """
        conn = self._require_open()
        
        sql = "SELECT * FROM logs ORDER BY rowid"
        params: list[Any] = []
        if limit or offset:
            # SQLite needs a LIMIT clause for OFFSET; -1 means unbounded
            sql += " LIMIT ?"
            params.append(limit if limit else -1)
            if offset:
                sql += " OFFSET ?"
                params.append(offset)
        
        rows = conn.execute(sql, params).fetchall()
        entries = [LogEntry.from_row(row) for row in rows]
        return await apply_filter(entries, filter_fn)
    
    async def remove_log(self, log_id: str) -> bool:
        """Remove a log entry; True if a row was deleted."""
        conn = self._require_open()
        with conn:
            cursor = conn.execute("DELETE FROM logs WHERE id = ?", (log_id,))
        return cursor.rowcount > 0
    
    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Execute raw SQL against the embedded file and return rows as dicts."""
        conn = self._require_open()
        with conn:
            rows = conn.execute(sql, params).fetchall()
        return [dict(row) for row in rows]
    
    def count(self) -> int:
        """Number of stored entries."""
        conn = self._require_open()
        return conn.execute("SELECT COUNT(*) FROM logs").fetchone()[0]
    
    def checkpoint(self) -> None:
        """Fold the WAL into the main file so the file alone reflects all commits."""
        conn = self._require_open()
        conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
    
    # =========================================================================
    # Backup
    # =========================================================================
    
    def default_backup_path(self) -> Path:
        """Timestamped backup path under the cache backup directory."""
        return self.backup_dir / f"{self.name}-backup-{file_stamp(self.timezone)}.sql"
    
    async def backup(self, dest_path: Union[str, Path]) -> Path:
        """
        Write a logical SQL dump of the database file to ``dest_path``.
        
        Table creation statements are rewritten to ``CREATE TABLE IF NOT
        EXISTS`` so the dump can be replayed over an existing schema. Uses
        its own read connection, so it also works after ``close()``.
        """
        dest = Path(dest_path)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(dest.name + ".tmp")
        
        source = sqlite3.connect(str(self.db_path))
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                for statement in source.iterdump():
                    f.write(make_idempotent(statement) + "\n")
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise
        finally:
            source.close()
        
        os.replace(tmp, dest)
        logger.info("sqlite_backup_completed", name=self.name, path=str(dest))
        return dest
    
    async def backup_on_shutdown(self) -> Optional[Path]:
        """
        Back up to the default location as part of host shutdown.
        
        Failures are logged and swallowed: shutdown must not block on a
        failed backup.
        """
        try:
            return await self.backup(self.default_backup_path())
        except Exception as e:
            logger.error("sqlite_backup_failed", name=self.name, error=str(e))
            return None
    
    # =========================================================================
    # Lifecycle
    # =========================================================================
    
    async def close(self) -> None:
        """Close the file handle. Safe to call more than once."""
        if self.conn is None:
            return
        self.conn.close()
        self.conn = None
        logger.info("sqlite_store_closed", name=self.name)
    
    def is_closed(self) -> bool:
        return self.conn is None
