"""
Log database facade.

Single entry point for callers. Picks one backend lazily on first use and
routes every operation to it:

- type "sqlite" -> embedded SQLite file
- type "mysql"  -> MySQL (connection errors propagate)
- no type       -> try MySQL, fall back to SQLite on any failure

On close, entries accumulated in the embedded file are promoted to MySQL
through the checksum-gated MigrationGate. Migration failures are logged
and remembered as pending; they never stop the backend from closing.

State machine: uninitialized -> (sqlite | mysql) -> closed. Closed is
terminal; construct a new LogDatabase to reopen.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence, Union
import structlog

from logstore.config import LogStoreConfig
from logstore.storage.backend import LogBackend
from logstore.storage.entry import FilterFn, LogEntry
from logstore.storage.errors import BackendUnavailableError, LogStoreClosedError
from logstore.storage.migration import MigrationGate
from logstore.storage.mysql_store import MySQLLogStore
from logstore.storage.sqlite_store import SQLiteLogStore

logger = structlog.get_logger(__name__)


class FacadeState(Enum):
    """Lifecycle of a LogDatabase."""
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    CLOSED = "closed"


@dataclass
class BackendType:
    """Configured type hint versus the backend actually in use."""
    option_type: str
    active_type: str


class LogDatabase:
    """
    Facade over the SQLite and MySQL log stores.
    
    Usage:
        db = LogDatabase("scraper", LogStoreConfig.from_dict({"host": "db"}))
        await db.add_log({"id": "123", "data": {"a": 1}, "message": "seen"})
        entry = await db.get_log_by_id("123")
        await db.close()
    """
    
    def __init__(
        self,
        name: Optional[str] = None,
        config: Optional[Union[LogStoreConfig, Mapping[str, Any]]] = None,
        *,
        migration_gate: Optional[MigrationGate] = None,
        mysql_factory: Optional[Callable[[str, LogStoreConfig], MySQLLogStore]] = None,
    ):
        """
        Initialize facade (no backend is built until first use).
        
        Args:
            name: Logical database name (file name and MySQL database)
            config: LogStoreConfig or a mapping accepted by LogStoreConfig.from_dict
            migration_gate: Gate used on close (defaults to one for this name
                sharing mysql_factory)
            mysql_factory: Builds the MySQL handle from (name, config)
                (defaults to MySQLLogStore)
        """
        if config is None or isinstance(config, LogStoreConfig):
            self.config = config or LogStoreConfig()
        else:
            self.config = LogStoreConfig.from_dict(config)
        
        self.name = name or "default"
        self.store: Optional[LogBackend] = None
        self.state = FacadeState.UNINITIALIZED
        self.gate = migration_gate or MigrationGate(
            self.name, self.config, target_factory=mysql_factory
        )
        self.mysql_factory = mysql_factory or MySQLLogStore
        self._init_lock = asyncio.Lock()
    
    # =========================================================================
    # Backend selection
    # =========================================================================
    
    def _build_sqlite(self) -> SQLiteLogStore:
        return SQLiteLogStore(
            self.name,
            cache_dir=self.config.cache_dir,
            timezone=self.config.timezone,
        )
    
    def _build_mysql(self) -> MySQLLogStore:
        return self.mysql_factory(self.name, self.config)
    
    async def _connect_mysql(self) -> MySQLLogStore:
        store = self._build_mysql()
        try:
            await store.wait_ready()
        except BaseException:
            await store.close()
            raise
        return store
    
    async def initialize(self) -> None:
        """
        Build the backend if not built yet.
        
        Called lazily by every public operation. The choice is made once
        and kept for the lifetime of this instance.
        """
        if self.state is FacadeState.CLOSED:
            raise LogStoreClosedError("log database is closed", name=self.name)
        if self.store is not None:
            return
        
        async with self._init_lock:
            if self.store is not None:
                return
            
            logger.info(
                "log_database_initializing",
                name=self.name,
                options=self.config.masked(),
            )
            
            if self.config.type == "sqlite":
                self.store = self._build_sqlite()
            elif self.config.type == "mysql":
                try:
                    self.store = await self._connect_mysql()
                except Exception as e:
                    raise BackendUnavailableError(
                        f"cannot connect to MySQL at {self.config.host}:{self.config.port}: {e}",
                        name=self.name,
                    ) from e
            else:
                try:
                    self.store = await self._connect_mysql()
                except Exception as e:
                    logger.warning(
                        "backend_fallback",
                        name=self.name,
                        error=str(e),
                        fallback="sqlite",
                    )
                    self.store = self._build_sqlite()
            
            self.state = FacadeState.ACTIVE
            logger.info("log_database_initialized", name=self.name, backend=self.store.kind.value)
    
    async def _backend(self) -> LogBackend:
        await self.initialize()
        return self.store
    
    @property
    def backend_type(self) -> Optional[str]:
        """Active backend ("sqlite"/"mysql"), or None before initialization."""
        return self.store.kind.value if self.store is not None else None
    
    async def get_type(self) -> BackendType:
        store = await self._backend()
        return BackendType(
            option_type=self.config.type or "sqlite",
            active_type=store.kind.value,
        )
    
    # =========================================================================
    # Log operations
    # =========================================================================
    
    async def add_log(
        self,
        entry: Union[LogEntry, Mapping[str, Any]],
        *,
        update: bool = True,
        timeout: Optional[float] = None,
    ) -> None:
        """
        Add or replace a log entry.
        
        ``timeout`` only applies to MySQL; SQLite writes are local.
        """
        store = await self._backend()
        if isinstance(store, MySQLLogStore) and timeout is not None:
            await store.add_log(entry, update=update, timeout=timeout)
        else:
            await store.add_log(entry, update=update)
    
    async def remove_log(self, log_id: str) -> bool:
        store = await self._backend()
        return await store.remove_log(log_id)
    
    async def get_log_by_id(self, log_id: str) -> Optional[LogEntry]:
        store = await self._backend()
        return await store.get_log_by_id(log_id)
    
    async def get_logs(
        self,
        filter_fn: Optional[FilterFn] = None,
        *,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[LogEntry]:
        store = await self._backend()
        return await store.get_logs(filter_fn, limit=limit, offset=offset)
    
    async def wait_ready(self) -> None:
        """Ensure the backend is usable. No-op beyond initialization for SQLite."""
        store = await self._backend()
        if isinstance(store, MySQLLogStore):
            await store.wait_ready()
    
    async def query(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        """Raw SQL against MySQL. Unsupported on SQLite: logs and returns []."""
        store = await self._backend()
        if isinstance(store, MySQLLogStore):
            return await store.query(sql, params)
        logger.warning("query_unsupported_on_sqlite", name=self.name)
        return []
    
    async def show_process_list(self, print_rows: bool = False) -> list[dict[str, Any]]:
        """SHOW PROCESSLIST rows (MySQL only)."""
        store = await self._backend()
        if not isinstance(store, MySQLLogStore):
            if print_rows:
                logger.info("process_list_mysql_only", name=self.name)
            return []
        
        rows = await store.show_process_list()
        if print_rows:
            logger.info("process_list", name=self.name, count=len(rows), rows=rows)
        return rows
    
    # =========================================================================
    # Lifecycle
    # =========================================================================
    
    def is_closed(self) -> bool:
        """True when there is no live backend (not yet initialized, or closed)."""
        if self.store is None:
            return True
        return self.store.is_closed()
    
    async def _migrate(self) -> None:
        """Run the gate; failures become a pending marker instead of an exception."""
        if isinstance(self.store, SQLiteLogStore) and not self.store.is_closed():
            self.store.checkpoint()
        try:
            await self.gate.migrate()
        except Exception as e:
            logger.error("migration_failed", name=self.name, error=str(e))
            self.gate.mark_pending(str(e))
    
    async def close(self) -> None:
        """
        Close the backend, migrating embedded entries first when due.
        
        Migration runs when the active backend is SQLite, or when a previous
        attempt for this name left a pending marker. Safe to call twice.
        """
        if self.state is FacadeState.CLOSED:
            return
        if self.store is None:
            self.state = FacadeState.CLOSED
            return
        
        due = isinstance(self.store, SQLiteLogStore) or self.gate.is_pending()
        if due and self.config.migrate_on_close:
            try:
                await self._migrate()
            except Exception as e:
                # checkpoint or marker I/O; the backend still has to close
                logger.error("migration_setup_failed", name=self.name, error=str(e))
        
        try:
            await self.store.close()
        finally:
            self.state = FacadeState.CLOSED
            logger.info("log_database_closed", name=self.name)
    
    async def shutdown(self) -> None:
        """
        Host-lifecycle hook: back up the embedded file, then close.
        
        Backup failures are logged only.
        """
        if self.state is FacadeState.CLOSED:
            return
        if isinstance(self.store, SQLiteLogStore):
            await self.store.backup_on_shutdown()
        await self.close()
