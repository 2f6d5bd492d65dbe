"""Create synced_documents and bridge_queue tables

Revision ID: 0001_bridge_tables
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001_bridge_tables"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_JSON = sa.JSON().with_variant(JSONB(), "postgresql")


def upgrade() -> None:
    """Upgrade schema - Create the document store and the command mailbox"""
    op.create_table(
        "synced_documents",
        sa.Column("collection", sa.String(length=50), nullable=False),
        sa.Column("external_id", sa.String(length=100), nullable=False),
        sa.Column("data", _JSON, nullable=False),
        sa.Column("deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source", sa.String(length=50), nullable=False),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("collection", "external_id"),
    )
    op.create_index("ix_synced_documents_deleted", "synced_documents", ["deleted"], unique=False)
    op.create_index(
        "ix_synced_documents_collection_synced", "synced_documents", ["collection", "last_synced_at"], unique=False
    )

    op.create_table(
        "bridge_queue",
        sa.Column("id", sa.String(length=64), nullable=False),
        sa.Column("type", sa.String(length=100), nullable=False),
        sa.Column("payload", _JSON, nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("fetched_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_bridge_queue_status_created", "bridge_queue", ["status", "created_at"], unique=False)
    op.create_index("ix_bridge_queue_status_fetched", "bridge_queue", ["status", "fetched_at"], unique=False)


def downgrade() -> None:
    """Downgrade schema - Drop bridge tables"""
    op.drop_index("ix_bridge_queue_status_fetched", table_name="bridge_queue")
    op.drop_index("ix_bridge_queue_status_created", table_name="bridge_queue")
    op.drop_table("bridge_queue")
    op.drop_index("ix_synced_documents_collection_synced", table_name="synced_documents")
    op.drop_index("ix_synced_documents_deleted", table_name="synced_documents")
    op.drop_table("synced_documents")
