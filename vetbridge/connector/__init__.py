"""On-premise connector for the legacy practice-management database

Snapshot → read dBase tables → push to the cloud bridge, and poll the bridge
for commands to run locally. Entry point: `python -m vetbridge.connector`.
"""

from vetbridge.connector.dbf import DbfTable, FieldDescriptor, LegacyRecord, read_table, write_table
from vetbridge.connector.poll_agent import CommandExecutor, ImportQueueExecutor, InboundPollAgent
from vetbridge.connector.runner import ConnectorRunner, CycleReport
from vetbridge.connector.snapshot import (
    CopySnapshotFacility,
    ScriptSnapshotFacility,
    SnapshotFacility,
    SnapshotResult,
)
from vetbridge.connector.sync_agent import OutboundSyncAgent, SyncReport

__all__ = [
    "DbfTable",
    "FieldDescriptor",
    "LegacyRecord",
    "read_table",
    "write_table",
    "SnapshotFacility",
    "ScriptSnapshotFacility",
    "CopySnapshotFacility",
    "SnapshotResult",
    "OutboundSyncAgent",
    "SyncReport",
    "CommandExecutor",
    "ImportQueueExecutor",
    "InboundPollAgent",
    "ConnectorRunner",
    "CycleReport",
]
