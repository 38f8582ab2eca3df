"""Repository ports consumed by the sync manager, with SQLAlchemy implementations.

The CRMSyncManager and CredentialManager depend only on the Protocol
interfaces below, so tests substitute in-memory doubles. The SQL*
implementations use the session_factory callable pattern: every method opens
its own session from an async generator and commits before returning.

Concurrency guarantees provided by the SQL implementations:
- insert_mapping is an atomic insert-if-absent (ON CONFLICT DO NOTHING) on
  the unique (provider, local_entity_type, local_entity_id) key.
- update_credentials is a compare-and-set on the stored credential blob.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Protocol

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm_sync.crm.models import (
    ActionFeedbackModel,
    ActionModel,
    CRMMappingModel,
    CRMSyncLogModel,
    IntegrationModel,
    LeadModel,
)
from src.crm_sync.crm.schemas import (
    Action,
    Integration,
    IntegrationStatus,
    Lead,
    MappingRecord,
    SyncLogEntry,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


# ── Ports ───────────────────────────────────────────────────────────────────


class LeadRepository(Protocol):
    async def get_lead(self, lead_id: str) -> Lead | None: ...


class ActionRepository(Protocol):
    async def get_action(self, action_id: str) -> Action | None: ...

    async def list_sent_actions(self, lead_id: str) -> list[Action]: ...


class IntegrationRepository(Protocol):
    async def get_integration(
        self,
        user_id: str,
        integration_type: str,
        status: IntegrationStatus = IntegrationStatus.CONNECTED,
    ) -> Integration | None: ...

    async def list_integrations(
        self,
        user_id: str,
        type_prefix: str,
        status: IntegrationStatus = IntegrationStatus.CONNECTED,
    ) -> list[Integration]: ...

    async def update_credentials(
        self, integration_id: str, credentials: str, expected: str | None
    ) -> bool: ...

    async def mark_status(
        self, integration_id: str, status: IntegrationStatus, last_error: str | None = None
    ) -> None: ...


class MappingRepository(Protocol):
    async def get_mapping(
        self, provider: str, local_entity_type: str, local_entity_id: str
    ) -> MappingRecord | None: ...

    async def insert_mapping(self, record: MappingRecord) -> tuple[MappingRecord, bool]: ...

    async def touch_mapping(
        self,
        provider: str,
        local_entity_type: str,
        local_entity_id: str,
        synced_at: datetime,
    ) -> None: ...

    async def list_lead_mappings(self, user_id: str, lead_id: str) -> list[MappingRecord]: ...


class SyncLogRepository(Protocol):
    async def add_log(self, entry: SyncLogEntry) -> None: ...


@dataclass
class CRMRepositories:
    """Bundle of repository ports injected into the sync manager."""

    leads: LeadRepository
    actions: ActionRepository
    integrations: IntegrationRepository
    mappings: MappingRepository
    sync_logs: SyncLogRepository

    @classmethod
    def from_session_factory(cls, session_factory: SessionFactory) -> CRMRepositories:
        """Build the SQLAlchemy-backed repositories sharing one session factory."""
        return cls(
            leads=SQLLeadRepository(session_factory),
            actions=SQLActionRepository(session_factory),
            integrations=SQLIntegrationRepository(session_factory),
            mappings=SQLMappingRepository(session_factory),
            sync_logs=SQLSyncLogRepository(session_factory),
        )


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_integration(model: IntegrationModel) -> Integration:
    return Integration(
        id=str(model.id),
        user_id=model.user_id,
        type=model.type,
        status=IntegrationStatus(model.status),
        credentials=model.credentials,
        last_error=model.last_error,
    )


def _model_to_mapping(model: CRMMappingModel) -> MappingRecord:
    return MappingRecord(
        user_id=model.user_id,
        provider=model.provider,
        local_entity_type=model.local_entity_type,
        local_entity_id=model.local_entity_id,
        remote_entity_type=model.remote_entity_type,
        remote_entity_id=model.remote_entity_id,
        last_synced_at=model.last_synced_at,
    )


def _model_to_action(model: ActionModel, outcome: str | None) -> Action:
    return Action(
        id=model.id,
        lead_id=model.lead_id,
        type=model.type,
        subject=model.subject,
        body=model.body or "",
        status=model.status,
        sent_at=model.sent_at,
        feedback_outcome=outcome,
    )


# ── SQLAlchemy Implementations ──────────────────────────────────────────────


class SQLLeadRepository:
    """Read-only lead lookups against the host application's table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_lead(self, lead_id: str) -> Lead | None:
        async for session in self._session_factory():
            model = await session.get(LeadModel, lead_id)
            if model is None:
                return None
            return Lead(
                id=model.id,
                name=model.name,
                email=model.email,
                organization=model.organization,
                role=model.role,
                website=model.website,
            )


class SQLActionRepository:
    """Read-only action lookups, joined with their feedback outcome."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def _base_query(self):
        return select(ActionModel, ActionFeedbackModel.outcome).outerjoin(
            ActionFeedbackModel, ActionFeedbackModel.action_id == ActionModel.id
        )

    async def get_action(self, action_id: str) -> Action | None:
        async for session in self._session_factory():
            stmt = self._base_query().where(ActionModel.id == action_id)
            row = (await session.execute(stmt)).first()
            if row is None:
                return None
            return _model_to_action(row[0], row[1])

    async def list_sent_actions(self, lead_id: str) -> list[Action]:
        """Sent actions for a lead, oldest first."""
        async for session in self._session_factory():
            stmt = (
                self._base_query()
                .where(ActionModel.lead_id == lead_id, ActionModel.status == "sent")
                .order_by(ActionModel.sent_at)
            )
            rows = (await session.execute(stmt)).all()
            return [_model_to_action(model, outcome) for model, outcome in rows]


class SQLIntegrationRepository:
    """Integration lookups and in-place credential updates."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_integration(
        self,
        user_id: str,
        integration_type: str,
        status: IntegrationStatus = IntegrationStatus.CONNECTED,
    ) -> Integration | None:
        async for session in self._session_factory():
            stmt = select(IntegrationModel).where(
                IntegrationModel.user_id == user_id,
                IntegrationModel.type == integration_type,
                IntegrationModel.status == status.value,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            if model is None:
                return None
            return _model_to_integration(model)

    async def list_integrations(
        self,
        user_id: str,
        type_prefix: str,
        status: IntegrationStatus = IntegrationStatus.CONNECTED,
    ) -> list[Integration]:
        async for session in self._session_factory():
            stmt = (
                select(IntegrationModel)
                .where(
                    IntegrationModel.user_id == user_id,
                    IntegrationModel.type.startswith(type_prefix),
                    IntegrationModel.status == status.value,
                )
                .order_by(IntegrationModel.type)
            )
            result = await session.execute(stmt)
            return [_model_to_integration(m) for m in result.scalars().all()]

    async def update_credentials(
        self, integration_id: str, credentials: str, expected: str | None
    ) -> bool:
        """Replace the credential blob only if it still equals ``expected``.

        Returns:
            True if this call won the write, False if another writer changed
            the blob first.
        """
        async for session in self._session_factory():
            stmt = (
                update(IntegrationModel)
                .where(
                    IntegrationModel.id == uuid.UUID(integration_id),
                    IntegrationModel.credentials == expected,
                )
                .values(credentials=credentials, last_error=None)
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    async def mark_status(
        self, integration_id: str, status: IntegrationStatus, last_error: str | None = None
    ) -> None:
        async for session in self._session_factory():
            stmt = (
                update(IntegrationModel)
                .where(IntegrationModel.id == uuid.UUID(integration_id))
                .values(status=status.value, last_error=last_error[:500] if last_error else None)
            )
            await session.execute(stmt)
            await session.commit()
            logger.info(
                "integrations.status_changed",
                integration_id=integration_id,
                status=status.value,
            )


class SQLMappingRepository:
    """Entity mapping store enforcing at-most-one row per mapping key."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def get_mapping(
        self, provider: str, local_entity_type: str, local_entity_id: str
    ) -> MappingRecord | None:
        async for session in self._session_factory():
            stmt = select(CRMMappingModel).where(
                CRMMappingModel.provider == provider,
                CRMMappingModel.local_entity_type == local_entity_type,
                CRMMappingModel.local_entity_id == local_entity_id,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            if model is None:
                return None
            return _model_to_mapping(model)

    async def insert_mapping(self, record: MappingRecord) -> tuple[MappingRecord, bool]:
        """Insert the mapping unless one already exists for its key.

        Returns:
            (mapping, created). When another writer inserted first, the
            existing row is returned with created=False.
        """
        async for session in self._session_factory():
            stmt = (
                pg_insert(CRMMappingModel)
                .values(
                    user_id=record.user_id,
                    provider=record.provider,
                    local_entity_type=record.local_entity_type,
                    local_entity_id=record.local_entity_id,
                    remote_entity_type=record.remote_entity_type,
                    remote_entity_id=record.remote_entity_id,
                    last_synced_at=record.last_synced_at,
                )
                .on_conflict_do_nothing(constraint="uq_crm_mapping_provider_entity")
                .returning(CRMMappingModel.id)
            )
            inserted_id = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()

        if inserted_id is not None:
            return record, True

        existing = await self.get_mapping(
            record.provider, record.local_entity_type, record.local_entity_id
        )
        return (existing or record), False

    async def touch_mapping(
        self,
        provider: str,
        local_entity_type: str,
        local_entity_id: str,
        synced_at: datetime,
    ) -> None:
        async for session in self._session_factory():
            stmt = (
                update(CRMMappingModel)
                .where(
                    CRMMappingModel.provider == provider,
                    CRMMappingModel.local_entity_type == local_entity_type,
                    CRMMappingModel.local_entity_id == local_entity_id,
                )
                .values(last_synced_at=synced_at)
            )
            await session.execute(stmt)
            await session.commit()

    async def list_lead_mappings(self, user_id: str, lead_id: str) -> list[MappingRecord]:
        async for session in self._session_factory():
            stmt = select(CRMMappingModel).where(
                CRMMappingModel.user_id == user_id,
                CRMMappingModel.local_entity_type == "lead",
                CRMMappingModel.local_entity_id == lead_id,
            )
            result = await session.execute(stmt)
            return [_model_to_mapping(m) for m in result.scalars().all()]


class SQLSyncLogRepository:
    """Append-only sync audit log."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def add_log(self, entry: SyncLogEntry) -> None:
        async for session in self._session_factory():
            session.add(
                CRMSyncLogModel(
                    user_id=entry.user_id,
                    provider=entry.provider,
                    operation=entry.operation,
                    direction=entry.direction,
                    entity_type=entry.entity_type,
                    entity_id=entry.entity_id,
                    success=entry.success,
                    error_message=entry.error_message,
                    created_at=entry.created_at or datetime.now(timezone.utc),
                )
            )
            await session.commit()
