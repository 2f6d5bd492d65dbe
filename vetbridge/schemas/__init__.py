"""Pydantic Schemas for API Request/Response Validation"""

from vetbridge.schemas.bridge import (
    BridgeRecord,
    CalendarEventRecord,
    ClientRecord,
    CommandAckRequest,
    CommandAckResponse,
    ErrorResponse,
    IngestResponse,
    PatientRecord,
    PendingExportsResponse,
    QueueCommandResponse,
)

__all__ = [
    # Records
    "BridgeRecord",
    "PatientRecord",
    "ClientRecord",
    "CalendarEventRecord",
    # Ingest
    "IngestResponse",
    "ErrorResponse",
    # Mailbox
    "QueueCommandResponse",
    "PendingExportsResponse",
    "CommandAckRequest",
    "CommandAckResponse",
]
