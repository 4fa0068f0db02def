"""
One-shot migration of embedded entries into the networked store.

Gate protocol:
1. Hash the embedded database file (SHA-256)
2. Compare with the checksum recorded after the last successful run
3. Unchanged -> nothing to do
4. Changed -> copy every entry whose id is not already in MySQL
5. Record the new checksum

Row-level existence checks are what prevent duplicates; the checksum only
skips the full scan when nothing changed. Existing MySQL entries are never
overwritten.

A failed run leaves a ``<name>.pending`` marker next to the checksum so the
next close of the same logical name retries even if it runs on MySQL.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union
import structlog

from logstore.config import LogStoreConfig
from logstore.storage.errors import MigrationError
from logstore.storage.mysql_store import MySQLLogStore
from logstore.storage.sqlite_store import SQLiteLogStore, database_file_path
from logstore.utils.time_utils import now_iso

logger = structlog.get_logger(__name__)

SourceFactory = Callable[[str, LogStoreConfig], SQLiteLogStore]
TargetFactory = Callable[[str, LogStoreConfig], MySQLLogStore]


def compute_file_sha256(path: Union[str, Path], chunk_size: int = 1 << 16) -> Optional[str]:
    """Hex SHA-256 of a file's content, or None if the file does not exist."""
    path = Path(path)
    if not path.exists():
        return None
    
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(chunk_size), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _default_source(name: str, config: LogStoreConfig) -> SQLiteLogStore:
    return SQLiteLogStore(name, cache_dir=config.cache_dir, timezone=config.timezone)


def _default_target(name: str, config: LogStoreConfig) -> MySQLLogStore:
    return MySQLLogStore(name, config)


@dataclass
class MigrationResult:
    """Outcome of a migrate() call."""
    ran: bool
    migrated: int = 0
    skipped: int = 0
    checksum: Optional[str] = None


class MigrationGate:
    """
    Checksum-gated copy from SQLite to MySQL for one logical name.
    
    The gate opens its own SQLite and MySQL handles so it never interferes
    with handles owned by a LogDatabase that is in the middle of closing.
    """
    
    def __init__(
        self,
        name: str,
        config: Optional[LogStoreConfig] = None,
        *,
        source_factory: Optional[SourceFactory] = None,
        target_factory: Optional[TargetFactory] = None,
    ):
        """
        Initialize migration gate.
        
        Args:
            name: Logical database name
            config: Store configuration (cache dir, MySQL connection)
            source_factory: Builds the SQLite handle (defaults to SQLiteLogStore)
            target_factory: Builds the MySQL handle (defaults to MySQLLogStore)
        """
        self.name = name
        self.config = config or LogStoreConfig()
        self.source_factory = source_factory or _default_source
        self.target_factory = target_factory or _default_target
        
        self.db_path = database_file_path(name, self.config.cache_dir)
        self.checksum_path = self.config.migrations_dir / f"{name}.checksum"
        self.pending_path = self.config.migrations_dir / f"{name}.pending"
    
    # =========================================================================
    # Checksum record
    # =========================================================================
    
    def current_checksum(self) -> Optional[str]:
        return compute_file_sha256(self.db_path)
    
    def last_checksum(self) -> Optional[str]:
        if not self.checksum_path.exists():
            return None
        return self.checksum_path.read_text(encoding="utf-8").strip()
    
    def record_checksum(self, checksum: str) -> None:
        self.checksum_path.parent.mkdir(parents=True, exist_ok=True)
        self.checksum_path.write_text(checksum, encoding="utf-8")
    
    def has_changed(self) -> bool:
        """True when the embedded file differs from the last migrated state."""
        return self.current_checksum() != self.last_checksum()
    
    # =========================================================================
    # Pending marker
    # =========================================================================
    
    def is_pending(self) -> bool:
        return self.pending_path.exists()
    
    def mark_pending(self, reason: str = "") -> None:
        self.pending_path.parent.mkdir(parents=True, exist_ok=True)
        self.pending_path.write_text(f"{now_iso(self.config.timezone)} {reason}".strip(), encoding="utf-8")
        logger.warning("migration_marked_pending", name=self.name, reason=reason)
    
    def clear_pending(self) -> None:
        self.pending_path.unlink(missing_ok=True)
    
    # =========================================================================
    # Migration
    # =========================================================================
    
    async def migrate(self, force: bool = False) -> MigrationResult:
        """
        Copy new embedded entries to MySQL if the embedded file changed.
        
        Args:
            force: Ignore the checksum and always scan
        
        Returns:
            MigrationResult; ``ran`` is False when the gate skipped the scan
        
        Raises MigrationError (wrapping the cause) when the copy fails;
        the checksum is then left untouched so the next run rescans.
        """
        checksum = self.current_checksum()
        if checksum is None:
            logger.debug("migration_no_embedded_file", name=self.name, path=str(self.db_path))
            self.clear_pending()
            return MigrationResult(ran=False)
        
        if not force and checksum == self.last_checksum():
            logger.debug("migration_skipped_unchanged", name=self.name)
            self.clear_pending()
            return MigrationResult(ran=False, checksum=checksum)
        
        result = MigrationResult(ran=True, checksum=checksum)
        source = self.source_factory(self.name, self.config)
        target = None
        try:
            target = self.target_factory(self.name, self.config)
            await target.wait_ready()
            
            for entry in await source.get_logs():
                if await target.get_log_by_id(entry.id) is not None:
                    logger.debug("migration_skip_existing", name=self.name, id=entry.id)
                    result.skipped += 1
                    continue
                await target.add_log(entry, update=False)
                logger.debug("log_migrated", name=self.name, id=entry.id)
                result.migrated += 1
        except Exception as e:
            raise MigrationError(
                f"migration stopped after {result.migrated} entries: {e}", name=self.name
            ) from e
        finally:
            await source.close()
            if target is not None:
                await target.close()
        
        self.record_checksum(checksum)
        self.clear_pending()
        
        logger.info(
            "migration_completed",
            name=self.name,
            migrated=result.migrated,
            skipped=result.skipped,
        )
        return result
