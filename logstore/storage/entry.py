"""
Log entry model shared by every backend.

A log entry is keyed by a caller-assigned id (for example an external
identity key). ``add_log`` on any backend is an upsert on that id.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

from logstore.storage import codec

FilterFn = Callable[["LogEntry"], Union[bool, Awaitable[bool]]]


@dataclass
class LogEntry:
    """
    A single stored log record.
    
    ``data`` may be any JSON-like value, including graphs with shared or
    circular references. ``message`` is a free-form audit note; callers
    conventionally accumulate comma-joined tags in it across writes.
    """
    id: str
    data: Any = None
    message: Optional[str] = None
    timestamp: Optional[str] = None
    
    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary."""
        return {
            "id": self.id,
            "data": self.data,
            "message": self.message,
            "timestamp": self.timestamp,
        }
    
    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "LogEntry":
        """Create LogEntry from dictionary."""
        if "id" not in d or d["id"] is None:
            raise ValueError("log entry requires an 'id'")
        return cls(
            id=str(d["id"]),
            data=d.get("data"),
            message=d.get("message"),
            timestamp=d.get("timestamp"),
        )
    
    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "LogEntry":
        """Create LogEntry from a ``logs`` table row (data column is encoded text)."""
        return cls(
            id=row["id"],
            data=codec.loads(row["data"]),
            message=row["message"],
            timestamp=row["timestamp"],
        )


def coerce_entry(entry: Union[LogEntry, Mapping[str, Any]]) -> LogEntry:
    """Accept either a LogEntry or a dict with the same keys."""
    if isinstance(entry, LogEntry):
        return entry
    return LogEntry.from_dict(entry)


def merge_data(old: Any, new: Any) -> Any:
    """
    Shallow-merge ``new`` over ``old`` when both are dicts.
    
    Existing keys are overwritten, new keys added, keys absent from ``new``
    are kept. Any other combination returns ``new`` unchanged.
    """
    if isinstance(old, dict) and isinstance(new, dict):
        return {**old, **new}
    return new


async def apply_filter(
    entries: list[LogEntry],
    filter_fn: Optional[FilterFn],
) -> list[LogEntry]:
    """
    Apply an optional predicate, sync or async, preserving store order.
    
    The predicate is evaluated once per entry, sequentially.
    """
    if filter_fn is None:
        return entries
    
    kept = []
    for entry in entries:
        result = filter_fn(entry)
        if inspect.isawaitable(result):
            result = await result
        if result:
            kept.append(entry)
    return kept
