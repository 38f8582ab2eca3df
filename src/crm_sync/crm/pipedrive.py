"""Pipedrive CRM client -- persons, activities and deals via the v1 API.

Pipedrive wraps every payload in ``{"success": bool, "data": ...}``; an
unsuccessful envelope is treated like a non-2xx response. The base URL comes
from the ``api_domain`` returned with the OAuth tokens.

Persons carry a single ``name`` and list-valued ``email``/``phone``. A contact's
company is resolved to an organization (search, else create) before the person
is written; organization lookup failures are ignored.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from src.crm_sync.config import Settings, get_settings
from src.crm_sync.crm.adapter import CRMClient
from src.crm_sync.crm.credentials import CredentialManager
from src.crm_sync.crm.errors import RemoteAPIError
from src.crm_sync.crm.field_mapping import (
    PIPEDRIVE_ACTIVITY_TYPES,
    PIPEDRIVE_DEAL_FIELD_MAP,
    map_activity_type,
    split_name,
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

DEFAULT_API_DOMAIN = "api.pipedrive.com"


def _primary_value(values: Any) -> str | None:
    """Pick the primary entry from a Pipedrive email/phone list."""
    if not values:
        return None
    if isinstance(values, str):
        return values
    for entry in values:
        if isinstance(entry, dict) and entry.get("primary") and entry.get("value"):
            return entry["value"]
    first = values[0]
    if isinstance(first, dict):
        return first.get("value") or None
    return first or None


def _org_name(org: Any) -> str | None:
    if isinstance(org, dict):
        return org.get("name")
    return None


def _contact_from_person(person: dict[str, Any], fallback_email: str = "") -> Contact:
    first_name, last_name = split_name(person.get("name"))
    return Contact(
        id=str(person["id"]),
        email=_primary_value(person.get("email") or person.get("emails")) or fallback_email,
        first_name=first_name,
        last_name=last_name,
        company=_org_name(person.get("org_id") or person.get("organization")),
        phone=_primary_value(person.get("phone") or person.get("phones")),
    )


def _search_items(data: Any) -> list[dict[str, Any]]:
    """Normalize search results: either a plain list or ``{"items": [{"item": ...}]}``."""
    if not data:
        return []
    if isinstance(data, dict):
        return [entry.get("item", entry) for entry in data.get("items") or []]
    return list(data)


class PipedriveClient(CRMClient):
    """Pipedrive implementation of CRMClient.

    Args:
        access_token: OAuth access token.
        api_domain: Company API domain returned by the token endpoint.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport override for tests.
    """

    provider = CRMProvider.PIPEDRIVE.value

    def __init__(
        self,
        access_token: str,
        api_domain: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        domain = (api_domain or DEFAULT_API_DOMAIN).removeprefix("https://").rstrip("/")
        self._access_token = access_token
        self._base_url = f"https://{domain}/v1"
        self._timeout = timeout
        self._transport = transport

    @classmethod
    async def for_user(
        cls,
        user_id: str,
        credentials: CredentialManager,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> PipedriveClient | None:
        """Build a client from the user's stored credentials, refreshing if expired."""
        settings = settings or get_settings()
        tokens = await credentials.get_credentials(user_id, CRMProvider.PIPEDRIVE)
        if tokens is None:
            return None
        return cls(
            tokens.access_token,
            tokens.api_domain,
            timeout=settings.CRM_HTTP_TIMEOUT,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and unwrap the ``data`` member of the envelope."""
        envelope = await request_json(
            self.provider,
            method,
            f"{self._base_url}{endpoint}",
            headers=bearer_headers(self._access_token),
            params=params,
            json_data=json_data,
            timeout=self._timeout,
            transport=self._transport,
        )
        if not envelope.get("success"):
            raise RemoteAPIError(self.provider, 200, str(envelope.get("error") or "Unknown error"))
        return envelope.get("data")

    async def _find_or_create_organization(self, name: str) -> int | None:
        try:
            found = _search_items(
                await self._request("GET", "/organizations/search", params={"term": name})
            )
            if found:
                return int(found[0]["id"])

            created = await self._request("POST", "/organizations", {"name": name})
            logger.info("pipedrive.organization_created", org_id=created["id"])
            return int(created["id"])
        except Exception as exc:
            logger.warning("pipedrive.organization_lookup_failed", name=name, error=str(exc))
            return None

    async def _person_payload(self, contact: Contact | ContactUpdate) -> dict[str, Any]:
        person: dict[str, Any] = {}
        name = " ".join(p for p in (contact.first_name, contact.last_name) if p)
        if name:
            person["name"] = name
        if contact.email:
            person["email"] = [{"value": contact.email, "primary": True}]
        if contact.phone:
            person["phone"] = [{"value": contact.phone, "primary": True}]
        if contact.company:
            org_id = await self._find_or_create_organization(contact.company)
            if org_id is not None:
                person["org_id"] = org_id
        return person

    # ── Contacts (Person) ──────────────────────────────────────────────────

    async def create_contact(self, contact: Contact) -> SyncResult:
        try:
            person = await self._person_payload(contact)
            person.setdefault("name", contact.email)
            result = await self._request("POST", "/persons", person)
            remote_id = str(result["id"])
        except Exception as exc:
            return failure_result(self.provider, "create_contact", exc)

        logger.info("pipedrive.person_created", person_id=remote_id)
        return SyncResult(success=True, remote_id=remote_id, operation="create")

    async def update_contact(self, remote_id: str, contact: ContactUpdate) -> SyncResult:
        try:
            person = await self._person_payload(contact)
            await self._request("PUT", f"/persons/{remote_id}", person)
        except Exception as exc:
            return failure_result(self.provider, "update_contact", exc)

        logger.info("pipedrive.person_updated", person_id=remote_id, fields=list(person.keys()))
        return SyncResult(success=True, remote_id=remote_id, operation="update")

    async def get_contact(self, remote_id: str) -> Contact | None:
        try:
            person = await self._request("GET", f"/persons/{remote_id}")
            return _contact_from_person(person)
        except Exception:
            logger.warning("pipedrive.person_not_found", person_id=remote_id)
            return None

    async def find_contact_by_email(self, email: str) -> Contact | None:
        try:
            people = _search_items(
                await self._request(
                    "GET",
                    "/persons/search",
                    params={"term": email, "fields": "email", "exact_match": "true"},
                )
            )
            if not people:
                return None
            return _contact_from_person(people[0], fallback_email=email)
        except Exception as exc:
            logger.warning("pipedrive.person_search_failed", error=str(exc))
            return None

    # ── Activities ─────────────────────────────────────────────────────────

    async def create_activity(self, activity: Activity) -> SyncResult:
        try:
            payload = {
                "subject": activity.subject,
                "type": map_activity_type(activity.type, PIPEDRIVE_ACTIVITY_TYPES),
                "person_id": int(activity.contact_id),
                "note": activity.body,
                "done": 1,
                "due_date": activity.timestamp.strftime("%Y-%m-%d"),
                "due_time": activity.timestamp.strftime("%H:%M"),
            }
            result = await self._request("POST", "/activities", payload)
            remote_id = str(result["id"])
        except Exception as exc:
            return failure_result(self.provider, "create_activity", exc)

        logger.info(
            "pipedrive.activity_created",
            activity_id=remote_id,
            person_id=activity.contact_id,
        )
        return SyncResult(success=True, remote_id=remote_id, operation="create")

    # ── Deals ──────────────────────────────────────────────────────────────

    async def create_deal(self, deal: Deal) -> SyncResult:
        try:
            payload = to_provider_fields(deal.model_dump(), PIPEDRIVE_DEAL_FIELD_MAP)
            payload["person_id"] = int(deal.contact_id)
            result = await self._request("POST", "/deals", payload)
            remote_id = str(result["id"])
        except Exception as exc:
            return failure_result(self.provider, "create_deal", exc)

        logger.info("pipedrive.deal_created", deal_id=remote_id, person_id=deal.contact_id)
        return SyncResult(success=True, remote_id=remote_id, operation="create")

    async def update_deal(self, remote_id: str, deal: DealUpdate) -> SyncResult:
        try:
            payload = to_provider_fields(deal.model_dump(), PIPEDRIVE_DEAL_FIELD_MAP)
            await self._request("PUT", f"/deals/{remote_id}", payload)
        except Exception as exc:
            return failure_result(self.provider, "update_deal", exc)

        logger.info("pipedrive.deal_updated", deal_id=remote_id, fields=list(payload.keys()))
        return SyncResult(success=True, remote_id=remote_id, operation="update")
