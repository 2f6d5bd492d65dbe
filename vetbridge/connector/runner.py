"""Connector Runner - One sync cycle, and the loop around it

A cycle:
1. snapshot the live legacy data directory into the shadow directory
   (blocking; no table is read until it has finished successfully)
2. for each legacy table: read the shadow copy, map, push to the bridge
3. poll the command mailbox and execute what the cloud queued

A snapshot failure skips step 2 for the cycle, an unreadable table skips only
that table, and a rejected API key stops the cycle. Nothing is kept in memory
between cycles.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from vetbridge.config import ConnectorSettings
from vetbridge.connector.client import BridgeClient, build_http_client
from vetbridge.connector.dbf import read_table
from vetbridge.connector.detect import find_legacy_data_dir
from vetbridge.connector.errors import (
    BridgeClientError,
    SnapshotError,
    SourceNotFound,
    TableFormatError,
    Unauthorized,
)
from vetbridge.connector.mapping import TABLES, MappedTable, TableSpec, map_records
from vetbridge.connector.poll_agent import ImportQueueExecutor, InboundPollAgent, PollReport
from vetbridge.connector.snapshot import SnapshotFacility, build_snapshot_facility
from vetbridge.connector.sync_agent import OutboundSyncAgent, SyncReport

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
    """Outcome of one connector cycle"""

    snapshot_ok: bool = False
    tables: dict[str, SyncReport] = field(default_factory=dict)
    poll: PollReport | None = None
    aborted: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.snapshot_ok and not self.aborted and not self.errors


def find_table_file(directory: Path, file_name: str) -> Path | None:
    """Locate a table file regardless of case (Patient.dbf vs PATIENT.DBF)"""
    exact = directory / file_name
    if exact.is_file():
        return exact
    wanted = file_name.lower()
    for entry in directory.iterdir():
        if entry.is_file() and entry.name.lower() == wanted:
            return entry
    return None


def _read_and_map(table: TableSpec, path: Path) -> MappedTable:
    return map_records(table, read_table(path))


class ConnectorRunner:
    """Runs sync cycles against one legacy data directory"""

    def __init__(
        self,
        source_dir: str | Path,
        shadow_dir: str | Path,
        facility: SnapshotFacility,
        sync_agent: OutboundSyncAgent,
        poll_agent: InboundPollAgent,
        tables: Sequence[TableSpec] = TABLES,
    ):
        self.source_dir = Path(source_dir)
        self.shadow_dir = Path(shadow_dir)
        self.facility = facility
        self.sync_agent = sync_agent
        self.poll_agent = poll_agent
        self.tables = tuple(tables)

    async def _sync_tables(self, report: CycleReport) -> None:
        for table in self.tables:
            path = find_table_file(self.shadow_dir, table.file_name)
            if path is None:
                logger.warning(f"{table.file_name} not found in shadow dir.")
                continue

            try:
                mapped = await asyncio.to_thread(_read_and_map, table, path)
            except (TableFormatError, OSError) as e:
                logger.error(f"Cannot read {path.name}, skipping table this cycle: {e}")
                report.errors.append(f"{table.file_name}: {e}")
                continue

            try:
                sync_report = await self.sync_agent.sync(table.record_type, mapped.records)
            except Unauthorized as e:
                logger.error(f"Bridge rejected the API key, aborting cycle: {e}")
                report.aborted = True
                report.errors.append(str(e))
                return
            sync_report.skipped = mapped.skipped
            report.tables[table.entity] = sync_report
            report.errors.extend(sync_report.errors)

    async def run_cycle(self) -> CycleReport:
        """Snapshot, sync every table, then poll the mailbox"""
        report = CycleReport()
        logger.info(f"Sync cycle started: {self.source_dir} → {self.shadow_dir}")

        try:
            await asyncio.to_thread(self.facility.snapshot, self.source_dir, self.shadow_dir)
            report.snapshot_ok = True
        except SnapshotError as e:
            logger.error(f"Snapshot failed, tables not synced this cycle: {e}")
            report.errors.append(f"snapshot: {e}")

        if report.snapshot_ok:
            await self._sync_tables(report)

        if not report.aborted:
            try:
                report.poll = await self.poll_agent.poll_once()
                report.errors.extend(report.poll.errors)
            except BridgeClientError as e:
                logger.error(f"Error checking exports: {e}")
                report.errors.append(f"mailbox: {e}")

        logger.info(f"Sync cycle finished ({'ok' if report.ok else f'{len(report.errors)} errors'})")
        return report

    async def run_forever(self, interval: float) -> None:
        """Run cycles back to back, `interval` seconds apart

        A cycle that dies on an unexpected error is logged and the loop goes
        on; the next cycle starts from a fresh snapshot.
        """
        while True:
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error(f"Sync cycle crashed, retrying next interval: {e}", exc_info=True)
            await asyncio.sleep(interval)


def resolve_source_dir(settings: ConnectorSettings) -> Path:
    """Configured data directory, or the first auto-detected candidate

    Raises:
        SourceNotFound: Nothing configured and nothing detected
    """
    if settings.SOURCE_DIR:
        return Path(settings.SOURCE_DIR)
    found = find_legacy_data_dir(settings.SOURCE_CANDIDATES)
    if found is None:
        raise SourceNotFound("Cannot find legacy data source; set CONNECTOR_SOURCE_DIR")
    return found


async def run_connector(settings: ConnectorSettings, once: bool = False) -> CycleReport | None:
    """Wire the connector from settings and run one cycle or loop forever"""
    source_dir = resolve_source_dir(settings)
    logger.info(f"Monitoring source: {source_dir}")
    logger.info(f"Shadow directory: {settings.SHADOW_DIR}")

    async with build_http_client(settings) as http:
        client = BridgeClient(settings, http)
        runner = ConnectorRunner(
            source_dir=source_dir,
            shadow_dir=settings.SHADOW_DIR,
            facility=build_snapshot_facility(settings),
            sync_agent=OutboundSyncAgent(settings, client),
            poll_agent=InboundPollAgent(client, ImportQueueExecutor(settings.IMPORT_QUEUE_DIR)),
        )
        if once:
            return await runner.run_cycle()
        await runner.run_forever(settings.SYNC_INTERVAL_SECONDS)
    return None
