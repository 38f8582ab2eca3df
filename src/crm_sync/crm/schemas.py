"""Pydantic schemas for CRM sync -- generic CRM payloads, local entities, audit rows.

Defines all structured types crossing the sync boundary:
- Enums: CRMProvider, IntegrationStatus, LocalEntityType
- Generic CRM payloads: Contact, ContactUpdate, Activity, Deal, DealUpdate, SyncResult
- Credentials: OAuthTokens (versioned value object stored encrypted)
- Local entities (read-only): Lead, Action
- Owned records: Integration, MappingRecord, SyncLogEntry
- Status views: ProviderSyncStatus
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class CRMProvider(str, Enum):
    """Supported CRM platforms."""

    HUBSPOT = "hubspot"
    SALESFORCE = "salesforce"
    PIPEDRIVE = "pipedrive"

    @property
    def integration_type(self) -> str:
        """Integration row type for this provider (e.g. ``crm_hubspot``)."""
        return f"{INTEGRATION_TYPE_PREFIX}{self.value}"


INTEGRATION_TYPE_PREFIX = "crm_"


class IntegrationStatus(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class LocalEntityType(str, Enum):
    """Local entity kinds that can be mapped to remote CRM objects."""

    LEAD = "lead"
    ACTION = "action"


SyncOperation = Literal["create", "update", "skip"]


# ── Generic CRM Payloads ────────────────────────────────────────────────────


class Contact(BaseModel):
    """Provider-neutral contact (HubSpot contact, Salesforce Lead, Pipedrive person)."""

    id: str | None = None
    email: str
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    phone: str | None = None
    title: str | None = None
    website: str | None = None

    def as_update(self) -> ContactUpdate:
        """Return the same fields as a partial update payload."""
        return ContactUpdate(**self.model_dump(exclude={"id"}))


class ContactUpdate(BaseModel):
    """Partial contact update -- only non-None fields are sent."""

    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    phone: str | None = None
    title: str | None = None
    website: str | None = None


class Activity(BaseModel):
    """Provider-neutral logged interaction.

    ``type`` is free-form: email/call/meeting/note are mapped to native
    types, anything else falls back to the provider's note type.
    """

    contact_id: str
    type: str
    subject: str
    body: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    outcome: str | None = None
    direction: Literal["inbound", "outbound"] = "outbound"


class Deal(BaseModel):
    """Provider-neutral sales opportunity."""

    contact_id: str
    name: str
    stage: str | None = None
    amount: float | None = None
    close_date: date | None = None
    probability: float | None = None


class DealUpdate(BaseModel):
    """Partial deal update -- only non-None fields are sent."""

    name: str | None = None
    stage: str | None = None
    amount: float | None = None
    close_date: date | None = None
    probability: float | None = None


class SyncResult(BaseModel):
    """Uniform outcome of a single client call or sync attempt."""

    success: bool
    remote_id: str | None = None
    operation: SyncOperation | None = None
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> SyncResult:
        return cls(success=False, error=error)


# ── Credentials ─────────────────────────────────────────────────────────────


class OAuthTokens(BaseModel):
    """Decrypted credential blob for one (user, provider) integration.

    Serialized as JSON and Fernet-encrypted at rest. ``instance_url`` is
    Salesforce-only, ``api_domain`` is Pipedrive-only.
    """

    version: int = 1
    access_token: str
    refresh_token: str
    expires_at: datetime
    instance_url: str | None = None
    api_domain: str | None = None

    def is_expired(self, now: datetime | None = None, skew_seconds: int = 0) -> bool:
        """True if the access token expires at or before ``now + skew``."""
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now + timedelta(seconds=skew_seconds)


# ── Local Entities (read-only) ──────────────────────────────────────────────


class Lead(BaseModel):
    """Locally-owned prospect. Source of truth for contact payloads."""

    id: str
    name: str
    email: str | None = None
    organization: str | None = None
    role: str | None = None
    website: str | None = None


class Action(BaseModel):
    """One outbound communication event for a lead."""

    id: str
    lead_id: str
    type: str
    subject: str | None = None
    body: str = ""
    status: str
    sent_at: datetime | None = None
    feedback_outcome: str | None = None


# ── Owned Records ───────────────────────────────────────────────────────────


class Integration(BaseModel):
    """Per (user, provider) connection with its encrypted credential blob."""

    id: str
    user_id: str
    type: str
    status: IntegrationStatus = IntegrationStatus.CONNECTED
    credentials: str | None = None
    last_error: str | None = None

    @property
    def provider(self) -> str:
        """Provider tag derived from the ``crm_`` type prefix."""
        return self.type.removeprefix(INTEGRATION_TYPE_PREFIX)


class MappingRecord(BaseModel):
    """Link from one local entity to one remote CRM object."""

    user_id: str
    provider: str
    local_entity_type: str
    local_entity_id: str
    remote_entity_type: str
    remote_entity_id: str
    last_synced_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SyncLogEntry(BaseModel):
    """Append-only audit row for one sync attempt."""

    user_id: str
    provider: str
    operation: str
    direction: str = "outbound"
    entity_type: str
    entity_id: str
    success: bool
    error_message: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ── Status Views ────────────────────────────────────────────────────────────


class ProviderSyncStatus(BaseModel):
    """Whether a lead has been mirrored into one provider."""

    synced: bool = False
    last_synced_at: datetime | None = None
