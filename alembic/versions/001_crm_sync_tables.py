"""Add CRM sync tables for integrations, entity mappings, and sync logs.

Revision ID: 001_crm_sync
Revises:
Create Date: 2026-10-19

Creates three tables:
- integrations: per (user, type) connection with encrypted OAuth credentials
- crm_mappings: local entity -> remote CRM object, unique per
  (provider, local_entity_type, local_entity_id)
- crm_sync_logs: append-only audit trail of sync attempts

The unique constraint on crm_mappings is the target of the sync manager's
INSERT ... ON CONFLICT DO NOTHING and must keep its name.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers, used by Alembic.
revision: str = "001_crm_sync"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── integrations table ──────────────────────────────────────────────

    op.create_table(
        "integrations",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), server_default=sa.text("'connected'")),
        sa.Column("credentials", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "type", name="uq_integration_user_type"),
    )
    op.create_index("ix_integrations_user_id", "integrations", ["user_id"])

    # ── crm_mappings table ──────────────────────────────────────────────

    op.create_table(
        "crm_mappings",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("local_entity_type", sa.String(30), nullable=False),
        sa.Column("local_entity_id", sa.String(64), nullable=False),
        sa.Column("remote_entity_type", sa.String(30), nullable=False),
        sa.Column("remote_entity_id", sa.String(100), nullable=False),
        sa.Column(
            "last_synced_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "provider",
            "local_entity_type",
            "local_entity_id",
            name="uq_crm_mapping_provider_entity",
        ),
    )
    op.create_index(
        "ix_crm_mappings_user_entity",
        "crm_mappings",
        ["user_id", "local_entity_type", "local_entity_id"],
    )

    # ── crm_sync_logs table ─────────────────────────────────────────────

    op.create_table(
        "crm_sync_logs",
        sa.Column(
            "id",
            UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("provider", sa.String(30), nullable=False),
        sa.Column("operation", sa.String(20), nullable=False),
        sa.Column("direction", sa.String(20), server_default=sa.text("'outbound'")),
        sa.Column("entity_type", sa.String(30), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_crm_sync_logs_user_provider",
        "crm_sync_logs",
        ["user_id", "provider"],
    )


def downgrade() -> None:
    op.drop_index("ix_crm_sync_logs_user_provider", table_name="crm_sync_logs")
    op.drop_table("crm_sync_logs")
    op.drop_index("ix_crm_mappings_user_entity", table_name="crm_mappings")
    op.drop_table("crm_mappings")
    op.drop_index("ix_integrations_user_id", table_name="integrations")
    op.drop_table("integrations")
