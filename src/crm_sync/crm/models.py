"""CRM sync persistence models.

Owned tables (created by the alembic migration in this repo):
- IntegrationModel: per (user, provider) connection with encrypted credentials
- CRMMappingModel: local entity -> remote CRM object, unique per
  (provider, local_entity_type, local_entity_id)
- CRMSyncLogModel: append-only audit trail of sync attempts

Read-only mappings of the host application's tables:
- LeadModel, ActionModel, ActionFeedbackModel
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.crm_sync.core.database import Base


class IntegrationModel(Base):
    """Connected third-party integration for one user.

    ``type`` is ``crm_<provider>`` for CRM integrations. ``credentials`` holds
    the Fernet-encrypted OAuthTokens JSON and is rewritten in place whenever
    a token refresh succeeds.
    """

    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("user_id", "type", name="uq_integration_user_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default="connected", server_default=text("'connected'")
    )
    credentials: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class CRMMappingModel(Base):
    """Link from one local entity to one remote CRM object.

    At most one row per (provider, local_entity_type, local_entity_id); this
    constraint is what makes re-sync idempotent.
    """

    __tablename__ = "crm_mappings"
    __table_args__ = (
        UniqueConstraint(
            "provider",
            "local_entity_type",
            "local_entity_id",
            name="uq_crm_mapping_provider_entity",
        ),
        Index("ix_crm_mappings_user_entity", "user_id", "local_entity_type", "local_entity_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    local_entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    local_entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    remote_entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    remote_entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    last_synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


class CRMSyncLogModel(Base):
    """Audit row written for every sync attempt. Never updated or deleted."""

    __tablename__ = "crm_sync_logs"
    __table_args__ = (
        Index("ix_crm_sync_logs_user_provider", "user_id", "provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider: Mapped[str] = mapped_column(String(30), nullable=False)
    operation: Mapped[str] = mapped_column(String(20), nullable=False)
    direction: Mapped[str] = mapped_column(
        String(20), default="outbound", server_default=text("'outbound'")
    )
    entity_type: Mapped[str] = mapped_column(String(30), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )


# ── Host application tables (read-only) ─────────────────────────────────────


class LeadModel(Base):
    """Prospect owned by the host application."""

    __tablename__ = "leads"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    organization: Mapped[str | None] = mapped_column(String(300), nullable=True)
    role: Mapped[str | None] = mapped_column(String(200), nullable=True)
    website: Mapped[str | None] = mapped_column(String(500), nullable=True)


class ActionModel(Base):
    """Outbound communication event owned by the host application."""

    __tablename__ = "actions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    lead_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    subject: Mapped[str | None] = mapped_column(String(500), nullable=True)
    body: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ActionFeedbackModel(Base):
    """Outcome feedback recorded against a sent action."""

    __tablename__ = "action_feedback"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    action_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    outcome: Mapped[str | None] = mapped_column(String(50), nullable=True)
