"""
Log storage layer.

- SQLiteLogStore: Embedded single-file store (WAL mode), no network
- MySQLLogStore: Networked store on a bounded aiomysql pool
- LogDatabase: Facade that picks one backend and migrates on close
- MigrationGate: Checksum-gated one-shot copy SQLite -> MySQL
"""

from logstore.storage.backend import BackendKind, LogBackend
from logstore.storage.entry import LogEntry
from logstore.storage.errors import (
    BackendUnavailableError,
    LogStoreClosedError,
    LogStoreError,
    MigrationError,
)
from logstore.storage.log_database import LogDatabase
from logstore.storage.migration import MigrationGate, MigrationResult
from logstore.storage.mysql_pool import ExecuteResult, MySQLPool, PoolConfig
from logstore.storage.mysql_store import MySQLLogStore
from logstore.storage.sqlite_store import SQLiteLogStore, database_file_path

__all__ = [
    "BackendKind",
    "LogBackend",
    "LogEntry",
    "LogStoreError",
    "LogStoreClosedError",
    "BackendUnavailableError",
    "MigrationError",
    "LogDatabase",
    "MigrationGate",
    "MigrationResult",
    "ExecuteResult",
    "MySQLPool",
    "PoolConfig",
    "MySQLLogStore",
    "SQLiteLogStore",
    "database_file_path",
]
