"""
Exception types raised by the log store.

Every error carries the logical database name so that callers juggling
several stores can tell which one failed.
"""

from typing import Optional


class LogStoreError(Exception):
    """Base exception for the log store; catch this for any package-raised error."""
    
    def __init__(self, message: str, name: Optional[str] = None):
        self.name = name
        if name is not None:
            message = f"[{name}] {message}"
        super().__init__(message)


class LogStoreClosedError(LogStoreError):
    """Operation attempted on a store that has already been closed."""


class BackendUnavailableError(LogStoreError):
    """The requested backend could not be constructed or reached."""


class MigrationError(LogStoreError):
    """Copying embedded entries into the networked store failed."""


__all__ = [
    "LogStoreError",
    "LogStoreClosedError",
    "BackendUnavailableError",
    "MigrationError",
]
