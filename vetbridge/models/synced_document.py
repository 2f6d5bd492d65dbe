"""Synced Document Model - Cloud copy of legacy practice-management records

Every record replicated from the on-premise legacy database lands here as one
document. The legacy primary key (externalId) is the document key inside its
collection, which is what makes replaying a batch idempotent.

Collections:
- patients
- clients
- calendar_events
"""

from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, Index, String, func
from sqlalchemy.dialects.postgresql import JSONB

from vetbridge.database import Base


class Collection(str, Enum):
    """Document collections written through the bridge"""

    PATIENTS = "patients"
    CLIENTS = "clients"
    CALENDAR_EVENTS = "calendar_events"


class SyncedDocument(Base):
    """Synced document model - one row per legacy record

    Attributes:
        collection: Collection name (Collection enum value)
        external_id: Legacy table primary key, the document key
        data: Merged document fields (JSONB on PostgreSQL)
        deleted: Tombstone flag copied from the legacy record
        source: Producer tag (e.g., "avimark")
        last_synced_at: When the bridge last wrote this document
        created_at: When the document was first written
        updated_at: When the document was last changed
    """

    __tablename__ = "synced_documents"

    # Composite primary key: exactly one document per legacy key per collection
    collection = Column(String(50), primary_key=True)
    external_id = Column(String(100), primary_key=True)

    data = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    deleted = Column(Boolean, nullable=False, default=False, index=True)
    source = Column(String(50), nullable=False)

    # Timestamps
    last_synced_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (Index("ix_synced_documents_collection_synced", "collection", "last_synced_at"),)

    def __repr__(self) -> str:
        return (
            f"<SyncedDocument(collection={self.collection}, external_id={self.external_id}, "
            f"deleted={self.deleted})>"
        )
