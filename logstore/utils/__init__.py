"""Utility functions and helpers."""

from logstore.utils.time_utils import file_stamp, get_local_time, now_iso

__all__ = ["file_stamp", "get_local_time", "now_iso"]
