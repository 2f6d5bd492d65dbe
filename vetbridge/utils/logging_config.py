"""
Simple Centralized Logging Configuration

Uses Python's standard logging.basicConfig() - simple, safe, maintainable.
Shared by the API (LOG_LEVEL) and the connector (CONNECTOR_LOG_LEVEL).

Usage:
    # In vetbridge/main.py or the connector entry point (one-time setup)
    from vetbridge.utils.logging_config import setup_logging
    setup_logging(settings.LOG_LEVEL)

    # In any module (no changes needed!)
    import logging
    logger = logging.getLogger(__name__)
    logger.info("This works!")
"""

import logging
import sys


def _get_log_level(level_str: str) -> int:
    """Convert string log level to logging constant"""
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return level_map.get(level_str.upper(), logging.INFO)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging

    Args:
        level: Global log level name (default: INFO)
    """
    root_level = _get_log_level(level)

    # Simple format - clean and readable
    log_format = "%(asctime)s | %(name)-25s | %(levelname)-8s | %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=root_level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,  # Override any existing configuration
    )

    # Suppress noisy third-party loggers
    # SQLAlchemy - completely silent (echo=False in database.py)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.CRITICAL)
    logging.getLogger("sqlalchemy.pool").setLevel(logging.CRITICAL)
    logging.getLogger("sqlalchemy").setLevel(logging.CRITICAL)

    # Uvicorn - keep access log, quiet startup/shutdown chatter
    logging.getLogger("uvicorn.error").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)

    # httpx logs every request at INFO; the connector logs its own summaries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
