"""Unit tests for HubSpotClient against a mocked HubSpot API."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from src.crm_sync.crm.hubspot import HubSpotClient
from src.crm_sync.crm.schemas import Activity, Contact, ContactUpdate, Deal, DealUpdate


@pytest.fixture
def client(mock_api) -> HubSpotClient:
    return HubSpotClient("hs-token", transport=mock_api.transport)


class TestContacts:
    async def test_create_contact_maps_properties(self, client, mock_api):
        mock_api.route("POST", "/crm/v3/objects/contacts", 201, {"id": "501"})

        result = await client.create_contact(
            Contact(
                email="ada@engines.example",
                first_name="Ada",
                last_name="Lovelace",
                company="Analytical Engines",
                title="CTO",
            )
        )

        assert result.success is True
        assert result.remote_id == "501"
        assert result.operation == "create"
        assert mock_api.body("POST", "/crm/v3/objects/contacts") == {
            "properties": {
                "email": "ada@engines.example",
                "firstname": "Ada",
                "lastname": "Lovelace",
                "company": "Analytical Engines",
                "jobtitle": "CTO",
            }
        }
        request = mock_api.sent("POST", "/crm/v3/objects/contacts")[0]
        assert request.headers["Authorization"] == "Bearer hs-token"

    async def test_create_contact_error_becomes_failure(self, client, mock_api):
        mock_api.route(
            "POST", "/crm/v3/objects/contacts", 409, {"message": "Contact already exists"}
        )

        result = await client.create_contact(Contact(email="ada@engines.example"))

        assert result.success is False
        assert result.error.startswith("hubspot API error: 409")
        assert "Contact already exists" in result.error

    async def test_create_contact_without_id_is_failure(self, client, mock_api):
        mock_api.route("POST", "/crm/v3/objects/contacts", 200, {})

        result = await client.create_contact(Contact(email="ada@engines.example"))

        assert result.success is False
        assert result.remote_id is None
        assert result.error

    async def test_update_contact_sends_only_set_fields(self, client, mock_api):
        mock_api.route("PATCH", "/crm/v3/objects/contacts/501", 200, {"id": "501"})

        result = await client.update_contact("501", ContactUpdate(company="Difference Engines"))

        assert result.success is True
        assert result.remote_id == "501"
        assert result.operation == "update"
        assert mock_api.body("PATCH", "/crm/v3/objects/contacts/501") == {
            "properties": {"company": "Difference Engines"}
        }

    async def test_find_contact_by_email(self, client, mock_api):
        mock_api.route(
            "POST",
            "/crm/v3/objects/contacts/search",
            200,
            {
                "total": 1,
                "results": [
                    {
                        "id": "777",
                        "properties": {
                            "email": "ada@engines.example",
                            "firstname": "Ada",
                            "lastname": "",
                            "jobtitle": "CTO",
                        },
                    }
                ],
            },
        )

        contact = await client.find_contact_by_email("ada@engines.example")

        assert contact.id == "777"
        assert contact.first_name == "Ada"
        assert contact.last_name is None
        assert contact.title == "CTO"
        search = mock_api.body("POST", "/crm/v3/objects/contacts/search")
        assert search["filterGroups"][0]["filters"][0] == {
            "propertyName": "email",
            "operator": "EQ",
            "value": "ada@engines.example",
        }
        assert search["limit"] == 1

    async def test_find_contact_no_match(self, client, mock_api):
        mock_api.route("POST", "/crm/v3/objects/contacts/search", 200, {"total": 0, "results": []})

        assert await client.find_contact_by_email("nobody@x.com") is None

    async def test_find_contact_error_returns_none(self, client, mock_api):
        mock_api.route("POST", "/crm/v3/objects/contacts/search", 500, {"message": "oops"})

        assert await client.find_contact_by_email("ada@engines.example") is None

    async def test_get_contact(self, client, mock_api):
        mock_api.route(
            "GET",
            "/crm/v3/objects/contacts/501",
            200,
            {"id": "501", "properties": {"email": "ada@engines.example", "company": "AE"}},
        )

        contact = await client.get_contact("501")

        assert contact.email == "ada@engines.example"
        assert contact.company == "AE"
        request = mock_api.sent("GET", "/crm/v3/objects/contacts/501")[0]
        assert "jobtitle" in request.url.params["properties"]

    async def test_get_missing_contact_returns_none(self, client):
        assert await client.get_contact("404") is None


class TestActivities:
    async def test_create_engagement(self, client, mock_api):
        mock_api.route(
            "POST", "/engagements/v1/engagements", 200, {"engagement": {"id": 9001}}
        )
        sent_at = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)

        result = await client.create_activity(
            Activity(
                contact_id="501",
                type="call",
                subject="Discovery call",
                body="Talked pricing",
                timestamp=sent_at,
            )
        )

        assert result.success is True
        assert result.remote_id == "9001"
        body = mock_api.body("POST", "/engagements/v1/engagements")
        assert body["engagement"] == {
            "active": True,
            "type": "CALL",
            "timestamp": int(sent_at.timestamp() * 1000),
        }
        assert body["associations"] == {"contactIds": [501]}
        assert body["metadata"] == {"subject": "Discovery call", "body": "Talked pricing"}

    async def test_engagement_without_id_is_failure(self, client, mock_api):
        mock_api.route("POST", "/engagements/v1/engagements", 200, {"associations": {}})

        result = await client.create_activity(
            Activity(contact_id="501", type="email", subject="Intro", body="")
        )

        assert result.success is False
        assert result.remote_id is None

    async def test_unknown_activity_type_falls_back_to_note(self, client, mock_api):
        mock_api.route(
            "POST", "/engagements/v1/engagements", 200, {"engagement": {"id": 9002}}
        )

        await client.create_activity(
            Activity(contact_id="501", type="linkedin", subject="DM", body="")
        )

        assert mock_api.body("POST", "/engagements/v1/engagements")["engagement"]["type"] == "NOTE"


class TestDeals:
    async def test_create_deal_associates_contact(self, client, mock_api):
        mock_api.route("POST", "/crm/v3/objects/deals", 201, {"id": "D1"})
        mock_api.route(
            "PUT",
            "/crm/v3/objects/deals/D1/associations/contacts/501/deal_to_contact",
            200,
            {},
        )

        result = await client.create_deal(
            Deal(
                contact_id="501",
                name="Pilot",
                amount=12000,
                stage="appointmentscheduled",
                close_date=date(2026, 6, 30),
            )
        )

        assert result.success is True
        assert result.remote_id == "D1"
        assert mock_api.body("POST", "/crm/v3/objects/deals") == {
            "properties": {
                "dealname": "Pilot",
                "dealstage": "appointmentscheduled",
                "amount": "12000.0",
                "closedate": "2026-06-30",
            }
        }
        assert mock_api.sent(
            "PUT", "/crm/v3/objects/deals/D1/associations/contacts/501/deal_to_contact"
        )

    async def test_association_failure_fails_deal(self, client, mock_api):
        mock_api.route("POST", "/crm/v3/objects/deals", 201, {"id": "D2"})
        mock_api.route(
            "PUT",
            "/crm/v3/objects/deals/D2/associations/contacts/999/deal_to_contact",
            404,
            {"message": "Contact 999 not found"},
        )

        result = await client.create_deal(Deal(contact_id="999", name="Pilot"))

        assert result.success is False
        assert result.remote_id is None
        assert "404" in result.error
        assert mock_api.sent("POST", "/crm/v3/objects/deals")

    async def test_update_deal(self, client, mock_api):
        mock_api.route("PATCH", "/crm/v3/objects/deals/D1", 200, {"id": "D1"})

        result = await client.update_deal("D1", DealUpdate(stage="closedwon"))

        assert result.success is True
        assert mock_api.body("PATCH", "/crm/v3/objects/deals/D1") == {
            "properties": {"dealstage": "closedwon"}
        }
