"""Salesforce CRM client -- REST API v59.0 against the org's instance URL.

Generic contacts map to the Lead sobject, activities to Task and deals to
Opportunity. Lead creation requires LastName and Company, so both default to
"Unknown" when the contact has none.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

import httpx
import structlog

from src.crm_sync.config import Settings, get_settings
from src.crm_sync.crm.adapter import CRMClient
from src.crm_sync.crm.credentials import CredentialManager
from src.crm_sync.crm.field_mapping import (
    SALESFORCE_ACTIVITY_TYPES,
    SALESFORCE_CONTACT_FIELD_MAP,
    SALESFORCE_DEAL_FIELD_MAP,
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

SALESFORCE_API_VERSION = "v59.0"
DEFAULT_OPPORTUNITY_STAGE = "Prospecting"
DEFAULT_CLOSE_DATE_DAYS = 30
REQUIRED_FIELD_PLACEHOLDER = "Unknown"

_LEAD_FIELDS = "Id, Email, FirstName, LastName, Company, Phone, Title, Website"


def escape_soql(value: str) -> str:
    """Escape a value for use inside a single-quoted SOQL string literal."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _contact_from_record(record: dict[str, Any]) -> Contact:
    data = from_provider_fields(record, SALESFORCE_CONTACT_FIELD_MAP)
    data.setdefault("email", "")
    return Contact(id=str(record["Id"]), **data)


class SalesforceClient(CRMClient):
    """Salesforce implementation of CRMClient.

    Args:
        access_token: OAuth access token.
        instance_url: Org instance URL returned by the token endpoint.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport override for tests.
    """

    provider = CRMProvider.SALESFORCE.value

    def __init__(
        self,
        access_token: str,
        instance_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._access_token = access_token
        self._base_url = f"{instance_url.rstrip('/')}/services/data/{SALESFORCE_API_VERSION}"
        self._timeout = timeout
        self._transport = transport

    @classmethod
    async def for_user(
        cls,
        user_id: str,
        credentials: CredentialManager,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> SalesforceClient | None:
        """Build a client from the user's stored credentials, refreshing if expired."""
        settings = settings or get_settings()
        tokens = await credentials.get_credentials(user_id, CRMProvider.SALESFORCE)
        if tokens is None:
            return None
        if not tokens.instance_url:
            logger.warning("salesforce.missing_instance_url", user_id=user_id)
            return None
        return cls(
            tokens.access_token,
            tokens.instance_url,
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
        return await request_json(
            self.provider,
            method,
            f"{self._base_url}{endpoint}",
            headers=bearer_headers(self._access_token),
            params=params,
            json_data=json_data,
            timeout=self._timeout,
            transport=self._transport,
        )

    # ── Contacts (Lead) ────────────────────────────────────────────────────

    async def create_contact(self, contact: Contact) -> SyncResult:
        try:
            lead_data = to_provider_fields(
                contact.model_dump(exclude={"id"}), SALESFORCE_CONTACT_FIELD_MAP
            )
            lead_data.setdefault("LastName", REQUIRED_FIELD_PLACEHOLDER)
            lead_data.setdefault("Company", REQUIRED_FIELD_PLACEHOLDER)
            result = await self._request("POST", "/sobjects/Lead", lead_data)
            remote_id = str(result["id"])
        except Exception as exc:
            return failure_result(self.provider, "create_contact", exc)

        logger.info("salesforce.lead_created", lead_id=remote_id)
        return SyncResult(success=True, remote_id=remote_id, operation="create")

    async def update_contact(self, remote_id: str, contact: ContactUpdate) -> SyncResult:
        try:
            lead_data = to_provider_fields(contact.model_dump(), SALESFORCE_CONTACT_FIELD_MAP)
            await self._request("PATCH", f"/sobjects/Lead/{remote_id}", lead_data)
        except Exception as exc:
            return failure_result(self.provider, "update_contact", exc)

        logger.info("salesforce.lead_updated", lead_id=remote_id, fields=list(lead_data.keys()))
        return SyncResult(success=True, remote_id=remote_id, operation="update")

    async def get_contact(self, remote_id: str) -> Contact | None:
        try:
            record = await self._request("GET", f"/sobjects/Lead/{remote_id}")
            return _contact_from_record(record)
        except Exception:
            logger.warning("salesforce.lead_not_found", lead_id=remote_id)
            return None

    async def find_contact_by_email(self, email: str) -> Contact | None:
        query = (
            f"SELECT {_LEAD_FIELDS} FROM Lead "
            f"WHERE Email = '{escape_soql(email)}' LIMIT 1"
        )
        try:
            result = await self._request("GET", "/query", params={"q": query})
            records = result.get("records") or []
            if not records:
                return None
            return _contact_from_record(records[0])
        except Exception as exc:
            logger.warning("salesforce.lead_query_failed", error=str(exc))
            return None

    # ── Activities (Task) ──────────────────────────────────────────────────

    async def create_activity(self, activity: Activity) -> SyncResult:
        try:
            task_data = {
                "WhoId": activity.contact_id,
                "Subject": activity.subject,
                "Description": activity.body,
                "Status": "Completed",
                "Priority": "Normal",
                "ActivityDate": activity.timestamp.date().isoformat(),
                "Type": map_activity_type(activity.type, SALESFORCE_ACTIVITY_TYPES),
            }
            result = await self._request("POST", "/sobjects/Task", task_data)
            remote_id = str(result["id"])
        except Exception as exc:
            return failure_result(self.provider, "create_activity", exc)

        logger.info("salesforce.task_created", task_id=remote_id, who_id=activity.contact_id)
        return SyncResult(success=True, remote_id=remote_id, operation="create")

    # ── Deals (Opportunity) ────────────────────────────────────────────────

    async def create_deal(self, deal: Deal) -> SyncResult:
        try:
            opportunity = to_provider_fields(deal.model_dump(), SALESFORCE_DEAL_FIELD_MAP)
            opportunity.setdefault("StageName", DEFAULT_OPPORTUNITY_STAGE)
            opportunity.setdefault(
                "CloseDate",
                (date.today() + timedelta(days=DEFAULT_CLOSE_DATE_DAYS)).isoformat(),
            )
            result = await self._request("POST", "/sobjects/Opportunity", opportunity)
            remote_id = str(result["id"])
        except Exception as exc:
            return failure_result(self.provider, "create_deal", exc)

        logger.info("salesforce.opportunity_created", opportunity_id=remote_id)

        if deal.contact_id:
            await self._link_contact_role(remote_id, deal.contact_id)

        return SyncResult(success=True, remote_id=remote_id, operation="create")

    async def _link_contact_role(self, opportunity_id: str, contact_id: str) -> None:
        """Attach the contact as primary role; failure leaves the opportunity in place."""
        try:
            await self._request(
                "POST",
                "/sobjects/OpportunityContactRole",
                {"OpportunityId": opportunity_id, "ContactId": contact_id, "IsPrimary": True},
            )
        except Exception as exc:
            logger.warning(
                "salesforce.contact_role_failed",
                opportunity_id=opportunity_id,
                contact_id=contact_id,
                error=str(exc),
            )

    async def update_deal(self, remote_id: str, deal: DealUpdate) -> SyncResult:
        try:
            opportunity = to_provider_fields(deal.model_dump(), SALESFORCE_DEAL_FIELD_MAP)
            await self._request("PATCH", f"/sobjects/Opportunity/{remote_id}", opportunity)
        except Exception as exc:
            return failure_result(self.provider, "update_deal", exc)

        logger.info(
            "salesforce.opportunity_updated",
            opportunity_id=remote_id,
            fields=list(opportunity.keys()),
        )
        return SyncResult(success=True, remote_id=remote_id, operation="update")
