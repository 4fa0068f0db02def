#!/usr/bin/env python3
"""
Print MySQL server diagnostics for the configured log store.

Reads connection settings from the environment (.env honored):
MYSQL_HOST, MYSQL_USER, MYSQL_PASS, MYSQL_DBNAME, MYSQL_PORT.

Usage:
    python scripts/db_diagnostics.py
    python scripts/db_diagnostics.py --config config/settings.yaml
"""

import argparse
import asyncio
import sys

import structlog

from logstore.config import config_from_env, load_config
from logstore.log_setup import setup_logging
from logstore.storage.mysql_store import MySQLLogStore

logger = structlog.get_logger(__name__)


async def run(args) -> int:
    config = load_config(args.config) if args.config else config_from_env()
    store = MySQLLogStore(config.database, config)
    
    try:
        status = await store.server_status()
        logger.info("diagnostics_complete", database=store.name, process_count=status["process_count"])
        return 0
    except Exception as e:
        logger.exception("diagnostics_error", error=str(e))
        return 1
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(description="Log store MySQL diagnostics")
    parser.add_argument("--config", default=None, help="YAML config (defaults to environment)")
    parser.add_argument("--log-level", default="INFO")
    
    args = parser.parse_args()
    setup_logging(args.log_level, json_output=False)
    
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
