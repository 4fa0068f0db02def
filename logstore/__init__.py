"""
logstore: local-first key-value log store.

Entries land in an embedded SQLite file or a MySQL server, whichever the
configuration and network allow, and embedded entries are promoted to
MySQL when the store is closed.
"""

from logstore.config import LogStoreConfig, config_from_env, load_config
from logstore.storage import LogDatabase, LogEntry

__version__ = "0.1.0"

__all__ = [
    "LogStoreConfig",
    "config_from_env",
    "load_config",
    "LogDatabase",
    "LogEntry",
]
