#!/usr/bin/env python3
"""
Promote embedded (SQLite) log entries to MySQL on demand.

Normally this happens when a LogDatabase closes. Run this to retry a
pending migration without starting the host application.

Usage:
    python scripts/migrate_logs.py --name scraper
    python scripts/migrate_logs.py --name scraper --force   # ignore checksum
"""

import argparse
import asyncio
import sys

import structlog

from logstore.config import config_from_env, load_config
from logstore.log_setup import setup_logging
from logstore.storage.migration import MigrationGate

logger = structlog.get_logger(__name__)


async def run(args) -> int:
    config = load_config(args.config) if args.config else config_from_env()
    gate = MigrationGate(args.name, config)
    
    try:
        result = await gate.migrate(force=args.force)
    except Exception as e:
        gate.mark_pending(str(e))
        logger.exception("migration_error", name=args.name, error=str(e))
        return 1
    
    logger.info(
        "migration_finished",
        name=args.name,
        ran=result.ran,
        migrated=result.migrated,
        skipped=result.skipped,
    )
    return 0


def main():
    parser = argparse.ArgumentParser(description="Migrate SQLite log entries to MySQL")
    parser.add_argument("--name", default="default", help="Logical database name")
    parser.add_argument("--config", default=None, help="YAML config (defaults to environment)")
    parser.add_argument("--force", action="store_true", help="Scan even if the file is unchanged")
    parser.add_argument("--log-level", default="INFO")
    
    args = parser.parse_args()
    setup_logging(args.log_level)
    
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
