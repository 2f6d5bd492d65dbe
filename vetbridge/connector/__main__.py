"""Connector entry point

Usage:
    python -m vetbridge.connector              # loop every CONNECTOR_SYNC_INTERVAL_SECONDS
    python -m vetbridge.connector --once       # single cycle, exit status 1 on errors
    python -m vetbridge.connector --source D:/Avimark/Data --interval 60
"""

import argparse
import asyncio
import logging
import sys

from vetbridge.config import ConnectorSettings
from vetbridge.connector.errors import SourceNotFound
from vetbridge.connector.runner import run_connector
from vetbridge.utils.logging_config import setup_logging

logger = logging.getLogger("vetbridge.connector")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync the legacy practice database with the cloud bridge")
    parser.add_argument("--once", action="store_true", help="Run a single sync cycle and exit")
    parser.add_argument("--interval", type=float, help="Seconds between cycles (overrides CONNECTOR_SYNC_INTERVAL_SECONDS)")
    parser.add_argument("--source", help="Legacy data directory (overrides CONNECTOR_SOURCE_DIR)")
    parser.add_argument("--log-level", help="Log level (overrides CONNECTOR_LOG_LEVEL)")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Main entry point"""
    args = parse_args(argv)
    settings = ConnectorSettings()

    overrides = {}
    if args.interval is not None:
        overrides["SYNC_INTERVAL_SECONDS"] = args.interval
    if args.source:
        overrides["SOURCE_DIR"] = args.source
    if args.log_level:
        overrides["LOG_LEVEL"] = args.log_level
    if overrides:
        settings = settings.model_copy(update=overrides)

    setup_logging(settings.LOG_LEVEL)
    logger.info("Connector service starting...")

    try:
        report = asyncio.run(run_connector(settings, once=args.once))
    except SourceNotFound as e:
        logger.critical(f"{e}. Exiting.")
        return 1
    except KeyboardInterrupt:
        logger.info("Connector stopped")
        return 0

    if report is not None and not report.ok:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
