"""Locate the legacy data directory on the connector host"""

import logging
import os
from pathlib import Path
from typing import Iterable

logger = logging.getLogger(__name__)

# A directory is a legacy data directory if it holds one of these tables
MARKER_FILES = ("Client.dbf", "Patient.dbf")


def is_legacy_data_dir(path: str | os.PathLike) -> bool:
    path = Path(path)
    return path.is_dir() and any((path / name).is_file() for name in MARKER_FILES)


def find_legacy_data_dir(candidates: Iterable[str | os.PathLike]) -> Path | None:
    """Return the first candidate that contains legacy tables, or None"""
    logger.info("Scanning for legacy data directory...")
    for candidate in candidates:
        if is_legacy_data_dir(candidate):
            logger.info(f"Found legacy data at: {candidate}")
            return Path(candidate)
    logger.warning("Could not automatically detect the legacy data directory.")
    return None
