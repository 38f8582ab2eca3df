"""HubSpot CRM client -- contacts and deals via CRM v3, activities via Engagements v1.

Native objects:
- contact: ``/crm/v3/objects/contacts`` with a ``properties`` object
- deal: ``/crm/v3/objects/deals``, associated to its contact with
  ``deal_to_contact`` after creation
- activity: legacy ``/engagements/v1/engagements`` (EMAIL/CALL/MEETING/NOTE)
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.crm_sync.config import Settings, get_settings
from src.crm_sync.crm.adapter import CRMClient
from src.crm_sync.crm.credentials import CredentialManager
from src.crm_sync.crm.field_mapping import (
    HUBSPOT_ACTIVITY_TYPES,
    HUBSPOT_CONTACT_FIELD_MAP,
    HUBSPOT_DEAL_FIELD_MAP,
    from_provider_fields,
    map_activity_type,
    to_provider_fields,
)
from src.crm_sync.crm.http import DEFAULT_TIMEOUT, bearer_headers, failure_result, request_json
from src.crm_sync.crm.schemas import (
    Activity,
    Contact,
    ContactUpdate,
    CRMProvider,
    Deal,
    DealUpdate,
    SyncResult,
)

logger = structlog.get_logger(__name__)

HUBSPOT_API_URL = "https://api.hubapi.com"

_CONTACT_PROPERTIES = ",".join(m["remote"] for m in HUBSPOT_CONTACT_FIELD_MAP.values())


def _contact_from_record(record: dict[str, Any]) -> Contact:
    data = from_provider_fields(record.get("properties") or {}, HUBSPOT_CONTACT_FIELD_MAP)
    data.setdefault("email", "")
    return Contact(id=str(record["id"]), **data)


class HubSpotClient(CRMClient):
    """HubSpot implementation of CRMClient.

    Args:
        access_token: OAuth access token.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport override for tests.
    """

    provider = CRMProvider.HUBSPOT.value

    def __init__(
        self,
        access_token: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._timeout = timeout
        self._transport = transport

    @classmethod
    async def for_user(
        cls,
        user_id: str,
        credentials: CredentialManager,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> HubSpotClient | None:
        """Build a client from the user's stored credentials, refreshing if expired."""
        settings = settings or get_settings()
        tokens = await credentials.get_credentials(user_id, CRMProvider.HUBSPOT)
        if tokens is None:
            return None
        return cls(tokens.access_token, timeout=settings.CRM_HTTP_TIMEOUT, transport=transport)

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        return await request_json(
            self.provider,
            method,
            f"{HUBSPOT_API_URL}{endpoint}",
            headers=bearer_headers(self._access_token),
            params=params,
            json_data=json_data,
            timeout=self._timeout,
            transport=self._transport,
        )

    # ── Contacts ───────────────────────────────────────────────────────────

    async def create_contact(self, contact: Contact) -> SyncResult:
        try:
            properties = to_provider_fields(
                contact.model_dump(exclude={"id"}), HUBSPOT_CONTACT_FIELD_MAP
            )
            result = await self._request(
                "POST", "/crm/v3/objects/contacts", {"properties": properties}
            )
            remote_id = str(result["id"])
        except Exception as exc:
            return failure_result(self.provider, "create_contact", exc)

        logger.info("hubspot.contact_created", contact_id=remote_id)
        return SyncResult(success=True, remote_id=remote_id, operation="create")

    async def update_contact(self, remote_id: str, contact: ContactUpdate) -> SyncResult:
        try:
            properties = to_provider_fields(contact.model_dump(), HUBSPOT_CONTACT_FIELD_MAP)
            await self._request(
                "PATCH", f"/crm/v3/objects/contacts/{remote_id}", {"properties": properties}
            )
        except Exception as exc:
            return failure_result(self.provider, "update_contact", exc)

        logger.info(
            "hubspot.contact_updated",
            contact_id=remote_id,
            fields=list(properties.keys()),
        )
        return SyncResult(success=True, remote_id=remote_id, operation="update")

    async def get_contact(self, remote_id: str) -> Contact | None:
        try:
            record = await self._request(
                "GET",
                f"/crm/v3/objects/contacts/{remote_id}",
                params={"properties": _CONTACT_PROPERTIES},
            )
            return _contact_from_record(record)
        except Exception:
            logger.warning("hubspot.contact_not_found", contact_id=remote_id)
            return None

    async def find_contact_by_email(self, email: str) -> Contact | None:
        try:
            result = await self._request(
                "POST",
                "/crm/v3/objects/contacts/search",
                {
                    "filterGroups": [
                        {
                            "filters": [
                                {"propertyName": "email", "operator": "EQ", "value": email}
                            ]
                        }
                    ],
                    "properties": _CONTACT_PROPERTIES.split(","),
                    "limit": 1,
                },
            )
            records = result.get("results") or []
            if not records:
                return None
            return _contact_from_record(records[0])
        except Exception as exc:
            logger.warning("hubspot.contact_search_failed", error=str(exc))
            return None

    # ── Activities ─────────────────────────────────────────────────────────

    async def create_activity(self, activity: Activity) -> SyncResult:
        try:
            engagement = {
                "engagement": {
                    "active": True,
                    "type": map_activity_type(activity.type, HUBSPOT_ACTIVITY_TYPES),
                    "timestamp": int(activity.timestamp.timestamp() * 1000),
                },
                "associations": {"contactIds": [int(activity.contact_id)]},
                "metadata": {"subject": activity.subject, "body": activity.body},
            }
            result = await self._request("POST", "/engagements/v1/engagements", engagement)
            remote_id = str(result["engagement"]["id"])
        except Exception as exc:
            return failure_result(self.provider, "create_activity", exc)

        logger.info(
            "hubspot.activity_created",
            engagement_id=remote_id,
            contact_id=activity.contact_id,
        )
        return SyncResult(success=True, remote_id=remote_id, operation="create")

    # ── Deals ──────────────────────────────────────────────────────────────

    async def create_deal(self, deal: Deal) -> SyncResult:
        try:
            properties = to_provider_fields(deal.model_dump(), HUBSPOT_DEAL_FIELD_MAP)
            result = await self._request(
                "POST", "/crm/v3/objects/deals", {"properties": properties}
            )
            remote_id = str(result["id"])
            await self._request(
                "PUT",
                f"/crm/v3/objects/deals/{remote_id}/associations/contacts/"
                f"{deal.contact_id}/deal_to_contact",
            )
        except Exception as exc:
            return failure_result(self.provider, "create_deal", exc)

        logger.info("hubspot.deal_created", deal_id=remote_id, contact_id=deal.contact_id)
        return SyncResult(success=True, remote_id=remote_id, operation="create")

    async def update_deal(self, remote_id: str, deal: DealUpdate) -> SyncResult:
        try:
            properties = to_provider_fields(deal.model_dump(), HUBSPOT_DEAL_FIELD_MAP)
            await self._request(
                "PATCH", f"/crm/v3/objects/deals/{remote_id}", {"properties": properties}
            )
        except Exception as exc:
            return failure_result(self.provider, "update_deal", exc)

        logger.info("hubspot.deal_updated", deal_id=remote_id, fields=list(properties.keys()))
        return SyncResult(success=True, remote_id=remote_id, operation="update")
