"""One-way CRM sync of leads and their sent actions.

Mirrors local leads into each connected CRM as contacts, and their sent
actions as activities, recording a mapping per synced entity and an audit row
per attempt.

Guarantees:
- At most one mapping per (provider, local_entity_type, local_entity_id).
  Mappings are written with an atomic insert-if-absent; when a concurrent sync
  wins the insert, its mapping is kept and this attempt reports its remote id.
- Activity sync is idempotent: an already-mapped action short-circuits with
  operation "skip" and makes no remote call.
- Every attempt except the "skip" short-circuit writes exactly one sync-log
  row. A failed log write is logged and never changes the result.
- A mapping write that fails after a successful remote write is logged and
  leaves the remote result unchanged.
- Public operations return SyncResult values and do not raise.
- Providers are synced concurrently and in isolation from one another.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import httpx
import structlog

from src.crm_sync.config import Settings
from src.crm_sync.crm.adapter import CRMClient
from src.crm_sync.crm.credentials import CredentialManager
from src.crm_sync.crm.errors import CRMError, NotConnectedError, NotFoundError, ValidationError
from src.crm_sync.crm.field_mapping import split_name
from src.crm_sync.crm.hubspot import HubSpotClient
from src.crm_sync.crm.pipedrive import PipedriveClient
from src.crm_sync.crm.repository import CRMRepositories, IntegrationRepository
from src.crm_sync.crm.salesforce import SalesforceClient
from src.crm_sync.crm.schemas import (
    INTEGRATION_TYPE_PREFIX,
    Action,
    Activity,
    Contact,
    CRMProvider,
    IntegrationStatus,
    Lead,
    LocalEntityType,
    MappingRecord,
    ProviderSyncStatus,
    SyncLogEntry,
    SyncResult,
)

logger = structlog.get_logger(__name__)

ClientFactory = Callable[[str, str], Awaitable[CRMClient | None]]

CLIENT_CLASSES: dict[CRMProvider, type[HubSpotClient] | type[SalesforceClient] | type[PipedriveClient]] = {
    CRMProvider.HUBSPOT: HubSpotClient,
    CRMProvider.SALESFORCE: SalesforceClient,
    CRMProvider.PIPEDRIVE: PipedriveClient,
}

NOT_CONNECTED = "Not connected"
LEAD_INVALID = "Lead not found or has no email"
ACTION_INVALID = "Action not found or not sent"
DEFAULT_ACTIVITY_SUBJECT = "Email"


class CredentialClientFactory:
    """Builds provider clients from stored credentials via ``Client.for_user``.

    Args:
        credentials: Credential manager resolving (and refreshing) tokens.
        settings: Application settings passed to the clients.
        transport: Optional httpx transport shared by built clients.
    """

    def __init__(
        self,
        credentials: CredentialManager,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._settings = settings
        self._transport = transport

    async def __call__(self, user_id: str, provider: str) -> CRMClient | None:
        try:
            client_cls = CLIENT_CLASSES[CRMProvider(provider)]
        except ValueError:
            logger.warning("sync.unknown_provider", provider=provider)
            return None
        return await client_cls.for_user(
            user_id,
            self._credentials,
            settings=self._settings,
            transport=self._transport,
        )


def contact_from_lead(lead: Lead) -> Contact:
    """Build the generic contact payload for a lead (which must have an email)."""
    first_name, last_name = split_name(lead.name)
    return Contact(
        email=lead.email or "",
        first_name=first_name,
        last_name=last_name,
        company=lead.organization or None,
        title=lead.role or None,
        website=lead.website or None,
    )


def activity_from_action(action: Action, contact_id: str) -> Activity:
    """Build the generic activity payload for a sent action."""
    return Activity(
        contact_id=contact_id,
        type=action.type,
        subject=action.subject or DEFAULT_ACTIVITY_SUBJECT,
        body=action.body or "",
        timestamp=action.sent_at or datetime.now(timezone.utc),
        outcome=action.feedback_outcome,
        direction="outbound",
    )


class CRMSyncManager:
    """Syncs one user's leads and actions to their connected CRMs.

    Args:
        user_id: Owner of the integrations and mappings.
        repositories: Repository ports (leads, actions, integrations,
            mappings, sync logs).
        client_factory: Async callable ``(user_id, provider) -> CRMClient | None``.
    """

    def __init__(
        self,
        user_id: str,
        repositories: CRMRepositories,
        client_factory: ClientFactory,
    ) -> None:
        self._user_id = user_id
        self._repos = repositories
        self._client_factory = client_factory

    @property
    def user_id(self) -> str:
        return self._user_id

    async def _get_client(self, provider: str) -> CRMClient | None:
        try:
            return await self._client_factory(self._user_id, provider)
        except Exception as exc:
            logger.error(
                "sync.client_init_failed",
                user_id=self._user_id,
                provider=provider,
                error=str(exc),
            )
            return None

    async def _log_sync(
        self,
        provider: str,
        operation: str,
        entity_type: str,
        entity_id: str,
        result: SyncResult,
    ) -> None:
        try:
            await self._repos.sync_logs.add_log(
                SyncLogEntry(
                    user_id=self._user_id,
                    provider=provider,
                    operation=operation,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    success=result.success,
                    error_message=result.error,
                )
            )
        except Exception as exc:
            logger.error(
                "sync.log_write_failed",
                provider=provider,
                entity_type=entity_type,
                entity_id=entity_id,
                error=str(exc),
            )

    async def _record_mapping(
        self,
        provider: str,
        entity_type: LocalEntityType,
        entity_id: str,
        remote_entity_type: str,
        result: SyncResult,
    ) -> SyncResult:
        """Insert the mapping for a successful sync; adopt the winner's id on conflict.

        The remote write already succeeded, so a failed insert is logged and the
        remote result is returned unchanged.
        """
        try:
            mapping, created = await self._repos.mappings.insert_mapping(
                MappingRecord(
                    user_id=self._user_id,
                    provider=provider,
                    local_entity_type=entity_type.value,
                    local_entity_id=entity_id,
                    remote_entity_type=remote_entity_type,
                    remote_entity_id=result.remote_id or "",
                )
            )
        except Exception as exc:
            logger.warning(
                "sync.mapping_write_failed",
                provider=provider,
                entity_type=entity_type.value,
                entity_id=entity_id,
                remote_id=result.remote_id,
                error=str(exc),
            )
            return result

        if not created and mapping.remote_entity_id != result.remote_id:
            logger.warning(
                "sync.mapping_conflict",
                provider=provider,
                entity_type=entity_type.value,
                entity_id=entity_id,
                kept_remote_id=mapping.remote_entity_id,
                discarded_remote_id=result.remote_id,
            )
            return result.model_copy(update={"remote_id": mapping.remote_entity_id})
        return result

    async def _touch_mapping(
        self, provider: str, entity_type: LocalEntityType, entity_id: str
    ) -> None:
        try:
            await self._repos.mappings.touch_mapping(
                provider, entity_type.value, entity_id, datetime.now(timezone.utc)
            )
        except Exception as exc:
            logger.warning(
                "sync.mapping_write_failed",
                provider=provider,
                entity_type=entity_type.value,
                entity_id=entity_id,
                error=str(exc),
            )

    async def _require_client(self, provider: str) -> CRMClient:
        client = await self._get_client(provider)
        if client is None:
            raise NotConnectedError(provider)
        return client

    # ── Leads ──────────────────────────────────────────────────────────────

    async def sync_lead_to_crm(self, lead_id: str, provider: str) -> SyncResult:
        """Create or update the lead's contact in one CRM, then sync its sent actions."""
        try:
            return await self._sync_lead(lead_id, provider)
        except Exception as exc:
            logger.exception(
                "sync.lead_sync_error",
                lead_id=lead_id,
                provider=provider,
                error=str(exc),
            )
            return SyncResult.failure(str(exc) or type(exc).__name__)

    async def _sync_lead(self, lead_id: str, provider: str) -> SyncResult:
        operation = "create"
        try:
            lead = await self._repos.leads.get_lead(lead_id)
            if lead is None or not lead.email:
                raise ValidationError(LEAD_INVALID)
            client = await self._require_client(provider)

            contact = contact_from_lead(lead)
            mapping = await self._repos.mappings.get_mapping(
                provider, LocalEntityType.LEAD.value, lead_id
            )
            if mapping is not None:
                operation = "update"
                result = await client.update_contact(mapping.remote_entity_id, contact.as_update())
                if result.success:
                    await self._touch_mapping(provider, LocalEntityType.LEAD, lead_id)
                    result = result.model_copy(
                        update={"remote_id": mapping.remote_entity_id, "operation": "update"}
                    )
            else:
                existing = await client.find_contact_by_email(lead.email)
                if existing is not None and existing.id:
                    operation = "update"
                    result = await client.update_contact(existing.id, contact.as_update())
                    if result.success:
                        result = result.model_copy(
                            update={"remote_id": existing.id, "operation": "update"}
                        )
                else:
                    result = await client.create_contact(contact)

                if result.success and result.remote_id:
                    result = await self._record_mapping(
                        provider, LocalEntityType.LEAD, lead_id, "contact", result
                    )
        except CRMError as exc:
            result = SyncResult.failure(str(exc))
        except Exception as exc:
            logger.exception(
                "sync.lead_sync_error",
                lead_id=lead_id,
                provider=provider,
                operation=operation,
                error=str(exc),
            )
            result = SyncResult.failure(str(exc) or type(exc).__name__)

        await self._log_sync(provider, operation, "contact", lead_id, result)

        if result.success:
            logger.info(
                "sync.lead_synced",
                lead_id=lead_id,
                provider=provider,
                operation=operation,
                remote_id=result.remote_id,
            )
            if result.remote_id:
                await self._sync_sent_actions(lead_id, provider, result.remote_id)
        else:
            logger.warning(
                "sync.lead_sync_failed",
                lead_id=lead_id,
                provider=provider,
                operation=operation,
                error=result.error,
            )

        return result

    async def _sync_sent_actions(self, lead_id: str, provider: str, contact_id: str) -> None:
        try:
            actions = await self._repos.actions.list_sent_actions(lead_id)
        except Exception as exc:
            logger.error("sync.list_actions_failed", lead_id=lead_id, error=str(exc))
            return

        for action in actions:
            outcome = await self.sync_activity_to_crm(action.id, provider, contact_id)
            if not outcome.success:
                logger.warning(
                    "sync.activity_fanout_failed",
                    lead_id=lead_id,
                    action_id=action.id,
                    provider=provider,
                    error=outcome.error,
                )

    # ── Actions ────────────────────────────────────────────────────────────

    async def sync_activity_to_crm(
        self, action_id: str, provider: str, contact_id: str
    ) -> SyncResult:
        """Log a sent action as an activity on the remote contact, at most once."""
        try:
            return await self._sync_activity(action_id, provider, contact_id)
        except Exception as exc:
            logger.exception(
                "sync.activity_sync_error",
                action_id=action_id,
                provider=provider,
                error=str(exc),
            )
            return SyncResult.failure(str(exc) or type(exc).__name__)

    async def _sync_activity(self, action_id: str, provider: str, contact_id: str) -> SyncResult:
        try:
            mapping = await self._repos.mappings.get_mapping(
                provider, LocalEntityType.ACTION.value, action_id
            )
            if mapping is not None:
                logger.debug("sync.activity_skipped", action_id=action_id, provider=provider)
                return SyncResult(
                    success=True, remote_id=mapping.remote_entity_id, operation="skip"
                )

            action = await self._repos.actions.get_action(action_id)
            if action is None or action.status != "sent":
                raise NotFoundError(ACTION_INVALID)
            client = await self._require_client(provider)

            result = await client.create_activity(activity_from_action(action, contact_id))
            if result.success and result.remote_id:
                result = await self._record_mapping(
                    provider, LocalEntityType.ACTION, action_id, "activity", result
                )
        except CRMError as exc:
            result = SyncResult.failure(str(exc))
        except Exception as exc:
            logger.exception(
                "sync.activity_sync_error",
                action_id=action_id,
                provider=provider,
                error=str(exc),
            )
            result = SyncResult.failure(str(exc) or type(exc).__name__)

        await self._log_sync(provider, "create", "activity", action_id, result)
        logger.info(
            "sync.activity_synced" if result.success else "sync.activity_sync_failed",
            action_id=action_id,
            provider=provider,
            remote_id=result.remote_id,
            error=result.error,
        )
        return result

    # ── Fan-out and status ─────────────────────────────────────────────────

    async def get_connected_crms(self) -> list[str]:
        """Providers with a connected ``crm_*`` integration for this user."""
        return await get_connected_crms(self._user_id, self._repos.integrations)

    async def sync_lead_to_all_crms(self, lead_id: str) -> dict[str, SyncResult]:
        """Sync a lead to every connected CRM concurrently.

        Every known provider is present in the result; providers without a
        connected integration report ``"Not connected"``.
        """
        results: dict[str, SyncResult] = {
            p.value: SyncResult.failure(NOT_CONNECTED) for p in CRMProvider
        }

        providers = await self.get_connected_crms()

        outcomes = await asyncio.gather(
            *(self.sync_lead_to_crm(lead_id, provider) for provider in providers),
            return_exceptions=True,
        )
        for provider, outcome in zip(providers, outcomes):
            if isinstance(outcome, Exception):
                logger.error(
                    "sync.provider_failed",
                    lead_id=lead_id,
                    provider=provider,
                    error=str(outcome),
                )
                results[provider] = SyncResult.failure(str(outcome) or type(outcome).__name__)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results[provider] = outcome

        logger.info(
            "sync.lead_fanout_complete",
            lead_id=lead_id,
            providers=providers,
            succeeded=[p for p, r in results.items() if r.success],
        )
        return results

    async def get_sync_status(self, lead_id: str) -> dict[str, ProviderSyncStatus]:
        """Per known provider, whether the lead has a contact mapping."""
        status = {p.value: ProviderSyncStatus() for p in CRMProvider}
        try:
            mappings = await self._repos.mappings.list_lead_mappings(self._user_id, lead_id)
        except Exception as exc:
            logger.error("sync.status_lookup_failed", lead_id=lead_id, error=str(exc))
            return status

        for mapping in mappings:
            if mapping.provider in status:
                status[mapping.provider] = ProviderSyncStatus(
                    synced=True, last_synced_at=mapping.last_synced_at
                )
        return status


async def get_connected_crms(user_id: str, integrations: IntegrationRepository) -> list[str]:
    """List provider tags of the user's connected ``crm_*`` integrations.

    A failed lookup is logged and reported as no connected CRMs.
    """
    try:
        rows = await integrations.list_integrations(
            user_id, INTEGRATION_TYPE_PREFIX, IntegrationStatus.CONNECTED
        )
    except Exception as exc:
        logger.error("sync.list_integrations_failed", user_id=user_id, error=str(exc))
        return []
    return [row.provider for row in rows]


async def sync_lead_to_all_crms(
    user_id: str,
    lead_id: str,
    repositories: CRMRepositories,
    client_factory: ClientFactory,
) -> dict[str, SyncResult]:
    """Module-level entry point for a one-off fan-out sync."""
    manager = CRMSyncManager(user_id, repositories, client_factory)
    return await manager.sync_lead_to_all_crms(lead_id)
