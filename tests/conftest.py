"""
Pytest configuration and fixtures.

Shared fixtures for all tests. No test needs a live MySQL server: the
``fake_mysql`` fixture stands in for one with an in-memory SQLite database
that understands the handful of statements the MySQL store issues.
"""

import pytest
import os
import sqlite3
from pathlib import Path
import tempfile
import shutil

from logstore.config import LogStoreConfig
from logstore.storage.mysql_pool import ExecuteResult
from logstore.storage.mysql_store import MySQLLogStore

# Keep tests independent of any developer .env
for var in ("LOG_DB_TYPE", "MYSQL_HOST", "MYSQL_USER", "MYSQL_PASS", "MYSQL_DBNAME", "DATABASE_FILENAME"):
    os.environ.pop(var, None)


class FakeMySQLServer:
    """Shared state behind every FakeMySQLPool, like one MySQL server."""
    
    def __init__(self):
        self.conn = sqlite3.connect(":memory:")
        self.conn.row_factory = sqlite3.Row
        self.writes = 0
        self.fail_on = None  # substring of SQL that raises ConnectionError
        self.pools_opened = 0


class FakeMySQLPool:
    """MySQLPool look-alike that runs statements on the fake server."""
    
    def __init__(self, server: FakeMySQLServer):
        self.server = server
        self.ready = False
        self.closed = False
    
    async def initialize(self):
        if not self.ready:
            self.server.pools_opened += 1
        self.ready = True
    
    def _run(self, sql, params):
        if self.server.fail_on and self.server.fail_on in sql:
            raise ConnectionError(f"lost connection during: {sql.strip()[:30]}")
        cursor = self.server.conn.execute(sql.replace("%s", "?"), tuple(params or ()))
        self.server.conn.commit()
        if sql.lstrip().upper().startswith("REPLACE"):
            self.server.writes += 1
        return cursor
    
    async def query(self, sql, params=()):
        cursor = self._run(sql, params)
        return [dict(row) for row in cursor.fetchall()]
    
    async def execute(self, sql, params=()):
        cursor = self._run(sql, params)
        return ExecuteResult(affected_rows=max(cursor.rowcount, 0), insert_id=None)
    
    async def close(self):
        self.ready = False
        self.closed = True


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def store_config(temp_dir):
    """Config whose cache directory lives in the temp dir."""
    return LogStoreConfig(cache_dir=str(temp_dir / "cache"))


@pytest.fixture
def fake_mysql():
    """A fake MySQL server shared by every store built from it."""
    return FakeMySQLServer()


@pytest.fixture
def mysql_factory(fake_mysql):
    """Factory (name, config) -> MySQLLogStore bound to the fake server."""
    def factory(name, config):
        return MySQLLogStore(name, config, pool=FakeMySQLPool(fake_mysql))
    return factory


@pytest.fixture
def fake_pool(fake_mysql):
    """One pool connected to the fake server."""
    return FakeMySQLPool(fake_mysql)
