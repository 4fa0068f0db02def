"""
Time zone helpers.

Log timestamps are written in the store's local zone with an explicit
offset so they sort and parse identically on every host.
"""

from datetime import datetime
from typing import Optional
import pytz

# Default store timezone
DEFAULT_TZ_NAME = "Asia/Jakarta"


def get_local_time(
    tz_name: str = DEFAULT_TZ_NAME,
    utc_time: Optional[datetime] = None,
) -> datetime:
    """
    Get current time in the store timezone.
    
    Args:
        tz_name: IANA timezone name
        utc_time: UTC datetime (defaults to now)
    
    Returns:
        Timezone-aware datetime in the store timezone
    """
    if utc_time is None:
        utc_time = datetime.now(pytz.UTC)
    
    if utc_time.tzinfo is None:
        utc_time = pytz.UTC.localize(utc_time)
    
    return utc_time.astimezone(pytz.timezone(tz_name))


def now_iso(tz_name: str = DEFAULT_TZ_NAME) -> str:
    """Current time as ISO-8601 with offset, e.g. 2024-05-01T10:00:00+07:00."""
    return get_local_time(tz_name).isoformat(timespec="seconds")


def file_stamp(tz_name: str = DEFAULT_TZ_NAME) -> str:
    """Compact stamp for file names (YYYYMMDD-HHMMSS)."""
    return get_local_time(tz_name).strftime("%Y%m%d-%H%M%S")
