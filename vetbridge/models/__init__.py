"""Database Models

All models must be imported here for Alembic auto-detect to work.
"""

from vetbridge.models.bridge_command import TERMINAL_STATUSES, BridgeCommand, CommandStatus
from vetbridge.models.synced_document import Collection, SyncedDocument

__all__ = [
    "SyncedDocument",
    "BridgeCommand",
    # Enums
    "Collection",
    "CommandStatus",
    "TERMINAL_STATUSES",
]
