"""
Tests for timestamp helpers.
"""

import re

from logstore.utils.time_utils import file_stamp, get_local_time, now_iso


def test_now_iso_has_offset_and_seconds():
    stamp = now_iso("Asia/Jakarta")
    
    assert re.fullmatch(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\+07:00", stamp)


def test_local_time_is_aware():
    assert get_local_time("UTC").utcoffset().total_seconds() == 0


def test_file_stamp_format():
    assert re.fullmatch(r"\d{8}-\d{6}", file_stamp())
