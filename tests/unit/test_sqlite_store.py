"""
Tests for the embedded SQLite log store.

Covers round trips, upsert/merge semantics, pagination, WAL mode, backup
and lifecycle edge cases.
"""

import re
import sqlite3
from unittest.mock import MagicMock, patch

import pytest

from logstore.storage.entry import LogEntry
from logstore.storage.errors import LogStoreClosedError, LogStoreError
from logstore.storage.sqlite_store import (
    SQLiteLogStore,
    database_file_path,
    make_idempotent,
    resolve_name,
)

ISO_WITH_OFFSET = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\+07:00$")


@pytest.fixture
def cache_dir(temp_dir):
    return temp_dir / "cache"


@pytest.fixture
def store(cache_dir):
    store = SQLiteLogStore("test", cache_dir=cache_dir)
    yield store
    if not store.is_closed():
        store.conn.close()


class TestPaths:
    """Tests for file path resolution."""
    
    def test_path_is_deterministic(self, cache_dir):
        assert database_file_path("abc", cache_dir) == database_file_path("abc", cache_dir)
        assert database_file_path("abc", cache_dir).name == "abc.db"
    
    def test_name_falls_back_to_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_FILENAME", "from_env")
        
        assert resolve_name(None) == "from_env"
        assert resolve_name("explicit") == "explicit"
    
    def test_name_default(self, monkeypatch):
        monkeypatch.delenv("DATABASE_FILENAME", raising=False)
        
        assert resolve_name(None) == "default"
    
    def test_creates_missing_directory(self, temp_dir):
        nested = temp_dir / "a" / "b"
        
        store = SQLiteLogStore("x", cache_dir=nested)
        
        assert (nested / "x.db").exists()
        store.conn.close()
    
    def test_open_failure_is_fatal(self, temp_dir):
        """A cache 'directory' that is actually a file cannot hold the database."""
        blocker = temp_dir / "blocker"
        blocker.write_text("not a directory")
        
        with pytest.raises(LogStoreError, match="nested"):
            SQLiteLogStore("nested", cache_dir=blocker)
    
    def test_corrupt_file_closes_connection(self, temp_dir):
        """A file that is not a database fails at schema setup; the handle is released."""
        (temp_dir / "broken.db").write_bytes(b"this is not an sqlite database" * 10)
        conn = MagicMock()
        conn.execute.side_effect = sqlite3.DatabaseError("file is not a database")
        
        with patch("logstore.storage.sqlite_store.sqlite3.connect", return_value=conn):
            with pytest.raises(LogStoreError, match="broken"):
                SQLiteLogStore("broken", cache_dir=temp_dir)
        
        conn.close.assert_called_once()
    
    def test_corrupt_file_is_fatal(self, temp_dir):
        (temp_dir / "broken.db").write_bytes(b"this is not an sqlite database" * 10)
        
        with pytest.raises(LogStoreError, match="broken"):
            SQLiteLogStore("broken", cache_dir=temp_dir)


class TestSQLiteLogStore:
    """Tests for log operations."""
    
    def test_wal_mode_enabled(self, store):
        mode = store.conn.execute("PRAGMA journal_mode").fetchone()[0]
        
        assert mode.lower() == "wal"
    
    @pytest.mark.asyncio
    async def test_round_trip(self, store):
        """Data, message and timestamp read back as written."""
        await store.add_log({
            "id": "3578",
            "data": {"nik": "3578", "nested": {"list": [1, 2]}},
            "message": "invalid,duplicate",
            "timestamp": "2024-05-01T10:00:00+07:00",
        })
        
        entry = await store.get_log_by_id("3578")
        
        assert entry == LogEntry(
            id="3578",
            data={"nik": "3578", "nested": {"list": [1, 2]}},
            message="invalid,duplicate",
            timestamp="2024-05-01T10:00:00+07:00",
        )
    
    @pytest.mark.asyncio
    async def test_missing_id_returns_none(self, store):
        assert await store.get_log_by_id("nope") is None
    
    @pytest.mark.asyncio
    async def test_default_timestamp_has_offset(self, store):
        await store.add_log(LogEntry(id="1", data={}))
        
        entry = await store.get_log_by_id("1")
        
        assert ISO_WITH_OFFSET.match(entry.timestamp)
    
    @pytest.mark.asyncio
    async def test_circular_data_round_trip(self, store):
        data = {"name": "loop"}
        data["self"] = data
        
        await store.add_log({"id": "c", "data": data})
        entry = await store.get_log_by_id("c")
        
        assert entry.data["self"] is entry.data
    
    @pytest.mark.asyncio
    async def test_update_merges_dict_data(self, store):
        await store.add_log({"id": "1", "data": {"a": 1}, "message": "first"})
        await store.add_log({"id": "1", "data": {"b": 2}, "message": "first,second"})
        
        entry = await store.get_log_by_id("1")
        
        assert entry.data == {"a": 1, "b": 2}
        assert entry.message == "first,second"
    
    @pytest.mark.asyncio
    async def test_update_false_replaces_data(self, store):
        await store.add_log({"id": "1", "data": {"a": 1}})
        await store.add_log({"id": "1", "data": {"b": 2}}, update=False)
        
        entry = await store.get_log_by_id("1")
        
        assert entry.data == {"b": 2}
        assert store.count() == 1
    
    @pytest.mark.asyncio
    async def test_remove_log(self, store):
        await store.add_log({"id": "1", "data": None})
        
        assert await store.remove_log("1") is True
        assert await store.get_log_by_id("1") is None
        assert await store.remove_log("1") is False
    
    @pytest.mark.asyncio
    async def test_pagination(self, store):
        """limit=2, offset=1 over [A,B,C,D] is [B,C]."""
        for log_id in "ABCD":
            await store.add_log({"id": log_id, "data": {}})
        
        page = await store.get_logs(limit=2, offset=1)
        
        assert [e.id for e in page] == ["B", "C"]
    
    @pytest.mark.asyncio
    async def test_offset_without_limit(self, store):
        for log_id in "ABCD":
            await store.add_log({"id": log_id, "data": {}})
        
        page = await store.get_logs(offset=2)
        
        assert [e.id for e in page] == ["C", "D"]
    
    @pytest.mark.asyncio
    async def test_filter_applied_after_pagination(self, store):
        for i in range(6):
            await store.add_log({"id": str(i), "data": {"even": i % 2 == 0}})
        
        async def is_even(entry):
            return entry.data["even"]
        
        page = await store.get_logs(is_even, limit=3)
        
        assert [e.id for e in page] == ["0", "2"]
    
    @pytest.mark.asyncio
    async def test_raw_query(self, store):
        await store.add_log({"id": "1", "data": {}})
        
        rows = await store.query("SELECT id FROM logs WHERE id = ?", ("1",))
        
        assert rows == [{"id": "1"}]


class TestBackup:
    """Tests for logical dump backups."""
    
    def test_make_idempotent(self):
        assert make_idempotent("CREATE TABLE logs(id TEXT);") == "CREATE TABLE IF NOT EXISTS logs(id TEXT);"
        assert make_idempotent("CREATE TABLE IF NOT EXISTS logs(id TEXT);") == "CREATE TABLE IF NOT EXISTS logs(id TEXT);"
        assert make_idempotent("INSERT INTO logs VALUES('1');") == "INSERT INTO logs VALUES('1');"
    
    @pytest.mark.asyncio
    async def test_backup_replays_over_existing_schema(self, store, temp_dir):
        await store.add_log({"id": "1", "data": {"a": 1}, "message": "m"})
        dest = temp_dir / "backup" / "dump.sql"
        
        await store.backup(dest)
        content = dest.read_text(encoding="utf-8")
        
        assert "CREATE TABLE IF NOT EXISTS" in content
        assert re.search(r"CREATE TABLE (?!IF NOT EXISTS)", content) is None
        
        # Replay into a database that already has the table
        target = sqlite3.connect(str(temp_dir / "replay.db"))
        target.execute("CREATE TABLE logs (id TEXT PRIMARY KEY, data TEXT, message TEXT, timestamp TEXT)")
        target.commit()
        target.executescript(content)
        rows = target.execute("SELECT id, message FROM logs").fetchall()
        target.close()
        
        assert rows == [("1", "m")]
    
    @pytest.mark.asyncio
    async def test_backup_works_after_close(self, store, temp_dir):
        await store.add_log({"id": "1", "data": {}})
        await store.close()
        
        dest = await store.backup(temp_dir / "after_close.sql")
        
        assert "INSERT INTO" in dest.read_text(encoding="utf-8")
    
    @pytest.mark.asyncio
    async def test_backup_on_shutdown_writes_default_path(self, store, cache_dir):
        path = await store.backup_on_shutdown()
        
        assert path is not None
        assert path.parent == (cache_dir / "database" / "backup").resolve()
        assert re.match(r"^test-backup-\d{8}-\d{6}\.sql$", path.name)
    
    @pytest.mark.asyncio
    async def test_backup_on_shutdown_swallows_errors(self, store, temp_dir):
        blocker = temp_dir / "file"
        blocker.write_text("x")
        store.backup_dir = blocker / "sub"
        
        assert await store.backup_on_shutdown() is None


class TestLifecycle:
    """Tests for close semantics."""
    
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, store):
        assert store.is_closed() is False
        
        await store.close()
        await store.close()
        
        assert store.is_closed() is True
    
    @pytest.mark.asyncio
    async def test_operations_after_close_raise(self, store):
        await store.close()
        
        with pytest.raises(LogStoreClosedError):
            await store.add_log({"id": "1"})
        with pytest.raises(LogStoreClosedError):
            await store.get_logs()
    
    @pytest.mark.asyncio
    async def test_second_handle_sees_writes(self, store, cache_dir):
        """WAL mode lets an independent handle read committed entries."""
        await store.add_log({"id": "1", "data": {"a": 1}})
        
        other = SQLiteLogStore("test", cache_dir=cache_dir)
        try:
            assert (await other.get_log_by_id("1")).data == {"a": 1}
        finally:
            await other.close()
