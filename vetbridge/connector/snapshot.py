"""Snapshot Extractor - Consistent copy of the live legacy data directory

The legacy practice-management application keeps its table files open (and on
Windows locked) the whole time it runs. Reading them in place would either
block or see a half-written file, so every sync cycle first copies the data
directory to a private working directory and only ever reads that copy.

Facilities:
- ScriptSnapshotFacility: runs an external point-in-time snapshot helper
  (e.g. a Volume Shadow Copy PowerShell script) as `command SOURCE DEST`
- CopySnapshotFacility: best-effort fallback, copies file by file and retries
  files that are locked or change while being copied

Both write into a staging directory and swap it into place only after a
complete run. A failed or timed-out snapshot never leaves a partial
destination behind, and running again simply replaces the previous copy.
"""

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from vetbridge.config import ConnectorSettings
from vetbridge.connector.errors import (
    PartialCopy,
    SnapshotFacilityUnavailable,
    SnapshotFailed,
    SnapshotTimeout,
    SourceNotFound,
)
from vetbridge.utils.retry import RetryConfig, retry_call

logger = logging.getLogger(__name__)


@dataclass
class SnapshotResult:
    """Outcome of a successful snapshot"""

    source_dir: Path
    dest_dir: Path
    files: list[str] = field(default_factory=list)
    stdout: str = ""
    stderr: str = ""


class FileChangedDuringCopy(OSError):
    """Source file size or mtime moved while it was being copied"""


def _staging_dir(dest_dir: Path) -> Path:
    return dest_dir.parent / f".{dest_dir.name}.staging"


def _prepare_staging(dest_dir: Path) -> Path:
    staging = _staging_dir(dest_dir)
    try:
        if staging.exists():
            shutil.rmtree(staging)
        staging.mkdir(parents=True)
    except OSError as e:
        raise SnapshotFailed(f"Cannot prepare staging directory {staging}: {e}") from e
    return staging


def _discard(staging: Path) -> None:
    shutil.rmtree(staging, ignore_errors=True)


def _promote(staging: Path, dest_dir: Path) -> None:
    """Replace dest_dir with the completed staging directory

    On failure the staging copy is discarded and the previous dest_dir is put
    back where it was.
    """
    retired = dest_dir.parent / f".{dest_dir.name}.old"
    try:
        if retired.exists():
            shutil.rmtree(retired)
        if dest_dir.exists():
            os.replace(dest_dir, retired)
        os.replace(staging, dest_dir)
    except OSError as e:
        if retired.exists() and not dest_dir.exists():
            try:
                os.replace(retired, dest_dir)
            except OSError as restore_error:
                logger.error(f"Could not restore previous snapshot {dest_dir}: {restore_error}")
        _discard(staging)
        raise SnapshotFailed(f"Cannot move snapshot into {dest_dir}: {e}") from e
    shutil.rmtree(retired, ignore_errors=True)


def _require_source(source_dir: Path) -> None:
    if not source_dir.is_dir():
        raise SourceNotFound(f"Legacy data directory not found: {source_dir}")


class SnapshotFacility(ABC):
    """Produces a self-consistent copy of every file in a directory"""

    @abstractmethod
    def snapshot(self, source_dir: str | os.PathLike, dest_dir: str | os.PathLike) -> SnapshotResult:
        """Copy source_dir into dest_dir

        Raises:
            SnapshotError: On any failure; dest_dir is then not usable
        """


class ScriptSnapshotFacility(SnapshotFacility):
    """Run an external snapshot helper as `command SOURCE DEST`"""

    def __init__(self, command: Sequence[str], timeout: float = 300.0):
        if not command:
            raise ValueError("Snapshot command must not be empty")
        self.command = list(command)
        self.timeout = timeout

    def snapshot(self, source_dir: str | os.PathLike, dest_dir: str | os.PathLike) -> SnapshotResult:
        source, dest = Path(source_dir), Path(dest_dir)
        _require_source(source)
        staging = _prepare_staging(dest)

        args = [*self.command, str(source), str(staging)]
        logger.info(f"Running snapshot helper: {' '.join(self.command)}")
        try:
            completed = subprocess.run(args, capture_output=True, text=True, timeout=self.timeout, check=False)
        except FileNotFoundError as e:
            _discard(staging)
            raise SnapshotFacilityUnavailable(f"Snapshot helper not found: {self.command[0]}") from e
        except subprocess.TimeoutExpired as e:
            _discard(staging)
            raise SnapshotTimeout(f"Snapshot helper did not finish within {self.timeout}s") from e
        except OSError as e:
            _discard(staging)
            raise SnapshotFacilityUnavailable(f"Snapshot helper could not be started: {e}") from e

        if completed.returncode != 0:
            _discard(staging)
            raise SnapshotFailed(
                f"Snapshot helper exited with status {completed.returncode}",
                returncode=completed.returncode,
                stdout=completed.stdout,
                stderr=completed.stderr,
            )

        files = sorted(p.name for p in staging.iterdir() if p.is_file())
        _promote(staging, dest)
        logger.info(f"Snapshot complete: {len(files)} files in {dest}")
        return SnapshotResult(source, dest, files, stdout=completed.stdout, stderr=completed.stderr)


def _copy_stable(source: Path, target: Path) -> None:
    """Copy one file, failing if it changed while being read"""
    before = source.stat()
    shutil.copy2(source, target)
    after = source.stat()
    if (before.st_size, before.st_mtime_ns) != (after.st_size, after.st_mtime_ns):
        raise FileChangedDuringCopy(f"{source.name} changed while being copied")
    if target.stat().st_size != after.st_size:
        raise FileChangedDuringCopy(f"{source.name} copy is incomplete")


class CopySnapshotFacility(SnapshotFacility):
    """Plain copy with retry-on-lock, for hosts without a snapshot helper"""

    def __init__(self, retry: RetryConfig | None = None):
        self.retry = retry or RetryConfig(max_attempts=5, initial_delay_ms=200.0, max_delay_ms=5000.0)

    def snapshot(self, source_dir: str | os.PathLike, dest_dir: str | os.PathLike) -> SnapshotResult:
        source, dest = Path(source_dir), Path(dest_dir)
        _require_source(source)
        staging = _prepare_staging(dest)

        try:
            entries = sorted(p for p in source.iterdir() if p.is_file())
        except OSError as e:
            _discard(staging)
            raise SnapshotFailed(f"Cannot list {source}: {e}") from e
        copied: list[str] = []
        failed: list[str] = []
        for entry in entries:
            try:
                retry_call(
                    lambda entry=entry: _copy_stable(entry, staging / entry.name),
                    self.retry,
                    retry_on=(OSError,),
                    operation_name=f"copy {entry.name}",
                )
                copied.append(entry.name)
            except OSError as e:
                logger.error(f"Could not copy {entry}: {e}")
                failed.append(entry.name)

        if failed:
            _discard(staging)
            raise PartialCopy(f"{len(failed)} of {len(entries)} files could not be copied", failed)

        _promote(staging, dest)
        logger.info(f"Copied {len(copied)} files from {source} to {dest}")
        return SnapshotResult(source, dest, copied)


def build_snapshot_facility(settings: ConnectorSettings) -> SnapshotFacility:
    """Snapshot helper when one is configured, retry-copy otherwise"""
    if settings.SNAPSHOT_COMMAND:
        return ScriptSnapshotFacility(settings.SNAPSHOT_COMMAND, timeout=settings.SNAPSHOT_TIMEOUT_SECONDS)
    logger.warning("No snapshot helper configured, falling back to retry-copy snapshots")
    return CopySnapshotFacility(
        RetryConfig(
            max_attempts=settings.COPY_ATTEMPTS,
            initial_delay_ms=200.0,
            max_delay_ms=5000.0,
        )
    )
