"""Bridge Command Model - Cloud to on-premise command mailbox

The legacy environment cannot accept inbound connections, so the cloud side
makes work visible here and the on-premise poller claims it.

Status Flow:
pending → fetched (claimed by a poller) → done | failed
fetched → pending (claim expired, retried) or failed (too many attempts)
"""

import uuid
from enum import Enum

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from vetbridge.database import Base


class CommandStatus(str, Enum):
    """Mailbox delivery status"""

    PENDING = "pending"  # Waiting for a poller
    FETCHED = "fetched"  # Claimed by a poller, execution outcome unknown
    DONE = "done"  # Executed on-premise
    FAILED = "failed"  # Execution failed or claim expired too often


TERMINAL_STATUSES = (CommandStatus.DONE, CommandStatus.FAILED)


class BridgeCommand(Base):
    """Bridge command model - one queued cloud → legacy command

    Attributes:
        id: Command identifier (string UUID)
        type: Command type (e.g., "export_appointment")
        payload: Command arguments
        status: Delivery status (CommandStatus value)
        attempts: How many times the command has been claimed
        error: Last failure reason reported by the poller or the sweeper
        created_at: When the command was queued
        fetched_at: When the current claim was taken
        completed_at: When the command reached done/failed
    """

    __tablename__ = "bridge_queue"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    type = Column(String(100), nullable=False)
    payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)

    status = Column(String(20), nullable=False, default=CommandStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    fetched_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_bridge_queue_status_created", "status", "created_at"),  # Oldest pending first
        Index("ix_bridge_queue_status_fetched", "status", "fetched_at"),  # Expired claims sweep
    )

    def __repr__(self) -> str:
        return f"<BridgeCommand(id={self.id}, type={self.type}, status={self.status}, attempts={self.attempts})>"
