"""
Backend interface for the log store.

Exactly two implementations exist: the embedded SQLite store and the
networked MySQL store. ``LogDatabase`` holds one of them for its lifetime.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Mapping, Optional, Union

from logstore.storage.entry import FilterFn, LogEntry


class BackendKind(Enum):
    """Concrete backend variants."""
    SQLITE = "sqlite"
    MYSQL = "mysql"


class LogBackend(ABC):
    """Operations every log backend provides."""
    
    kind: BackendKind
    
    @abstractmethod
    async def add_log(
        self,
        entry: Union[LogEntry, Mapping[str, Any]],
        *,
        update: bool = True,
    ) -> None:
        """Insert or replace the entry with the same id."""
        ...
    
    @abstractmethod
    async def get_log_by_id(self, log_id: str) -> Optional[LogEntry]:
        """Return the entry, or None when no row has that id."""
        ...
    
    @abstractmethod
    async def get_logs(
        self,
        filter_fn: Optional[FilterFn] = None,
        *,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[LogEntry]:
        """Return entries in store order, paginated then filtered."""
        ...
    
    @abstractmethod
    async def remove_log(self, log_id: str) -> bool:
        """Delete by id; True iff a row existed."""
        ...
    
    @abstractmethod
    async def close(self) -> None:
        ...
    
    @abstractmethod
    def is_closed(self) -> bool:
        ...
