"""Shared fixtures for CRM sync tests.

Provides in-memory doubles for every repository port and a scriptable fake
CRMClient, so the sync manager, credential manager and API can be tested
without a database or real provider calls.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import pytest
from cryptography.fernet import Fernet

from src.crm_sync.config import Settings
from src.crm_sync.core.encryption import CredentialCipher
from src.crm_sync.crm.adapter import CRMClient
from src.crm_sync.crm.repository import CRMRepositories
from src.crm_sync.crm.schemas import (
    Action,
    Activity,
    Contact,
    ContactUpdate,
    Deal,
    DealUpdate,
    Integration,
    IntegrationStatus,
    Lead,
    MappingRecord,
    OAuthTokens,
    SyncLogEntry,
    SyncResult,
)


# ── In-Memory Repositories ─────────────────────────────────────────────────


class InMemoryLeadRepository:
    def __init__(self) -> None:
        self.leads: dict[str, Lead] = {}

    def add(self, lead: Lead) -> Lead:
        self.leads[lead.id] = lead
        return lead

    async def get_lead(self, lead_id: str) -> Lead | None:
        return self.leads.get(lead_id)


class InMemoryActionRepository:
    def __init__(self) -> None:
        self.actions: dict[str, Action] = {}

    def add(self, action: Action) -> Action:
        self.actions[action.id] = action
        return action

    async def get_action(self, action_id: str) -> Action | None:
        return self.actions.get(action_id)

    async def list_sent_actions(self, lead_id: str) -> list[Action]:
        return [a for a in self.actions.values() if a.lead_id == lead_id and a.status == "sent"]


class InMemoryIntegrationRepository:
    def __init__(self) -> None:
        self.integrations: dict[str, Integration] = {}
        self.credential_writes = 0

    def add(
        self,
        user_id: str,
        integration_type: str,
        credentials: str | None = None,
        status: IntegrationStatus = IntegrationStatus.CONNECTED,
    ) -> Integration:
        integration = Integration(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=integration_type,
            status=status,
            credentials=credentials,
        )
        self.integrations[integration.id] = integration
        return integration

    async def get_integration(
        self,
        user_id: str,
        integration_type: str,
        status: IntegrationStatus = IntegrationStatus.CONNECTED,
    ) -> Integration | None:
        for integration in self.integrations.values():
            if (
                integration.user_id == user_id
                and integration.type == integration_type
                and integration.status == status
            ):
                return integration.model_copy()
        return None

    async def list_integrations(
        self,
        user_id: str,
        type_prefix: str,
        status: IntegrationStatus = IntegrationStatus.CONNECTED,
    ) -> list[Integration]:
        return sorted(
            (
                i.model_copy()
                for i in self.integrations.values()
                if i.user_id == user_id and i.type.startswith(type_prefix) and i.status == status
            ),
            key=lambda i: i.type,
        )

    async def update_credentials(
        self, integration_id: str, credentials: str, expected: str | None
    ) -> bool:
        integration = self.integrations[integration_id]
        if integration.credentials != expected:
            return False
        integration.credentials = credentials
        integration.last_error = None
        self.credential_writes += 1
        return True

    async def mark_status(
        self, integration_id: str, status: IntegrationStatus, last_error: str | None = None
    ) -> None:
        integration = self.integrations[integration_id]
        integration.status = status
        integration.last_error = last_error


class InMemoryMappingRepository:
    def __init__(self) -> None:
        self.mappings: dict[tuple[str, str, str], MappingRecord] = {}
        self.touches = 0

    async def get_mapping(
        self, provider: str, local_entity_type: str, local_entity_id: str
    ) -> MappingRecord | None:
        return self.mappings.get((provider, local_entity_type, local_entity_id))

    async def insert_mapping(self, record: MappingRecord) -> tuple[MappingRecord, bool]:
        key = (record.provider, record.local_entity_type, record.local_entity_id)
        existing = self.mappings.get(key)
        if existing is not None:
            return existing, False
        self.mappings[key] = record
        return record, True

    async def touch_mapping(
        self,
        provider: str,
        local_entity_type: str,
        local_entity_id: str,
        synced_at: datetime,
    ) -> None:
        key = (provider, local_entity_type, local_entity_id)
        if key in self.mappings:
            self.mappings[key] = self.mappings[key].model_copy(update={"last_synced_at": synced_at})
            self.touches += 1

    async def list_lead_mappings(self, user_id: str, lead_id: str) -> list[MappingRecord]:
        return [
            m
            for m in self.mappings.values()
            if m.user_id == user_id and m.local_entity_type == "lead" and m.local_entity_id == lead_id
        ]


class InMemorySyncLogRepository:
    def __init__(self) -> None:
        self.entries: list[SyncLogEntry] = []
        self.fail = False

    async def add_log(self, entry: SyncLogEntry) -> None:
        if self.fail:
            raise RuntimeError("sync log table unavailable")
        self.entries.append(entry)


# ── Fake CRM Client ────────────────────────────────────────────────────────


class FakeCRMClient(CRMClient):
    """Scriptable CRMClient recording every call.

    ``remote_contacts`` holds records already present in the CRM, keyed by
    email. Set ``fail_with`` to make write methods return a failure.
    """

    def __init__(self, provider: str) -> None:
        self.provider = provider
        self.calls: list[tuple[str, tuple]] = []
        self.remote_contacts: dict[str, Contact] = {}
        self.activities: list[Activity] = []
        self.fail_with: str | None = None
        self.raise_with: Exception | None = None
        self._next_id = 100

    def _new_id(self) -> str:
        self._next_id += 1
        return f"{self.provider}-{self._next_id}"

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def create_contact(self, contact: Contact) -> SyncResult:
        self.calls.append(("create_contact", (contact,)))
        if self.raise_with is not None:
            raise self.raise_with
        if self.fail_with:
            return SyncResult.failure(self.fail_with)
        remote_id = self._new_id()
        self.remote_contacts[contact.email] = contact.model_copy(update={"id": remote_id})
        return SyncResult(success=True, remote_id=remote_id, operation="create")

    async def update_contact(self, remote_id: str, contact: ContactUpdate) -> SyncResult:
        self.calls.append(("update_contact", (remote_id, contact)))
        if self.raise_with is not None:
            raise self.raise_with
        if self.fail_with:
            return SyncResult.failure(self.fail_with)
        return SyncResult(success=True, remote_id=remote_id, operation="update")

    async def get_contact(self, remote_id: str) -> Contact | None:
        self.calls.append(("get_contact", (remote_id,)))
        for contact in self.remote_contacts.values():
            if contact.id == remote_id:
                return contact
        return None

    async def find_contact_by_email(self, email: str) -> Contact | None:
        self.calls.append(("find_contact_by_email", (email,)))
        return self.remote_contacts.get(email)

    async def create_activity(self, activity: Activity) -> SyncResult:
        self.calls.append(("create_activity", (activity,)))
        if self.fail_with:
            return SyncResult.failure(self.fail_with)
        self.activities.append(activity)
        return SyncResult(success=True, remote_id=self._new_id(), operation="create")

    async def create_deal(self, deal: Deal) -> SyncResult:
        self.calls.append(("create_deal", (deal,)))
        return SyncResult(success=True, remote_id=self._new_id(), operation="create")

    async def update_deal(self, remote_id: str, deal: DealUpdate) -> SyncResult:
        self.calls.append(("update_deal", (remote_id, deal)))
        return SyncResult(success=True, remote_id=remote_id, operation="update")


# ── Mock Provider API ──────────────────────────────────────────────────────


class MockProviderAPI:
    """Route table for httpx.MockTransport keyed by (method, path).

    Unrouted requests get a 404. Every request is recorded in ``requests``.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], tuple[int, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def route(self, method: str, path: str, status_code: int = 200, payload: Any = None) -> None:
        self.routes[(method, path)] = (status_code, payload)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, body = self.routes.get(
            (request.method, request.url.path), (404, {"message": "not found"})
        )
        if body is None:
            return httpx.Response(status_code)
        return httpx.Response(status_code, json=body)

    def sent(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def body(self, method: str, path: str) -> Any:
        """JSON body of the last matching request."""
        return json.loads(self.sent(method, path)[-1].content)


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture
def settings() -> Settings:
    """Settings with every provider configured and no .env lookup."""
    return Settings(
        _env_file=None,
        JWT_SECRET_KEY="test-secret",
        CREDENTIALS_ENCRYPTION_KEY=Fernet.generate_key().decode(),
        HUBSPOT_CLIENT_ID="hs-client",
        HUBSPOT_CLIENT_SECRET="hs-secret",
        SALESFORCE_CLIENT_ID="sf-client",
        SALESFORCE_CLIENT_SECRET="sf-secret",
        PIPEDRIVE_CLIENT_ID="pd-client",
        PIPEDRIVE_CLIENT_SECRET="pd-secret",
        TOKEN_REFRESH_SKEW_SECONDS=0,
    )


@pytest.fixture
def cipher(settings) -> CredentialCipher:
    return CredentialCipher(settings.CREDENTIALS_ENCRYPTION_KEY)


@pytest.fixture
def repos() -> CRMRepositories:
    return CRMRepositories(
        leads=InMemoryLeadRepository(),
        actions=InMemoryActionRepository(),
        integrations=InMemoryIntegrationRepository(),
        mappings=InMemoryMappingRepository(),
        sync_logs=InMemorySyncLogRepository(),
    )


@pytest.fixture
def fake_clients() -> dict[str, FakeCRMClient]:
    return {p: FakeCRMClient(p) for p in ("hubspot", "salesforce", "pipedrive")}


@pytest.fixture
def connected(fake_clients) -> set[str]:
    """Providers for which the client factory returns a client."""
    return {"hubspot"}


@pytest.fixture
def client_factory(fake_clients, connected):
    async def factory(user_id: str, provider: str) -> CRMClient | None:
        if provider not in connected:
            return None
        return fake_clients.get(provider)

    return factory


def make_tokens(expired: bool = False, **overrides) -> OAuthTokens:
    """Build OAuthTokens expiring one hour from now (or one hour ago)."""
    delta = timedelta(hours=-1 if expired else 1)
    values = {
        "access_token": "access-old",
        "refresh_token": "refresh-old",
        "expires_at": datetime.now(timezone.utc) + delta,
    }
    values.update(overrides)
    return OAuthTokens(**values)


@pytest.fixture
def tokens_factory():
    return make_tokens


@pytest.fixture
def mock_api() -> MockProviderAPI:
    return MockProviderAPI()
