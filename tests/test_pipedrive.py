"""Unit tests for PipedriveClient against a mocked Pipedrive v1 API."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from src.crm_sync.crm.pipedrive import PipedriveClient, _search_items
from src.crm_sync.crm.schemas import Activity, Contact, ContactUpdate, Deal, DealUpdate


def _ok(data):
    return {"success": True, "data": data}


@pytest.fixture
def client(mock_api) -> PipedriveClient:
    return PipedriveClient("pd-token", "https://acme.pipedrive.com", transport=mock_api.transport)


class TestSearchItems:
    def test_nested_items(self):
        data = {"items": [{"result_score": 1.0, "item": {"id": 7, "name": "Ada"}}]}

        assert _search_items(data) == [{"id": 7, "name": "Ada"}]

    def test_plain_list(self):
        assert _search_items([{"id": 7}]) == [{"id": 7}]

    def test_empty(self):
        assert _search_items(None) == []
        assert _search_items({"items": []}) == []


class TestPersons:
    async def test_create_person_resolves_existing_org(self, client, mock_api):
        mock_api.route(
            "GET", "/v1/organizations/search", 200, _ok({"items": [{"item": {"id": 42}}]})
        )
        mock_api.route("POST", "/v1/persons", 201, _ok({"id": 300}))

        result = await client.create_contact(
            Contact(
                email="ada@engines.example",
                first_name="Ada",
                last_name="Lovelace",
                company="Analytical Engines",
            )
        )

        assert result.success is True
        assert result.remote_id == "300"
        assert mock_api.body("POST", "/v1/persons") == {
            "name": "Ada Lovelace",
            "email": [{"value": "ada@engines.example", "primary": True}],
            "org_id": 42,
        }
        assert not mock_api.sent("POST", "/v1/organizations")
        request = mock_api.sent("POST", "/v1/persons")[0]
        assert request.url.host == "acme.pipedrive.com"

    async def test_create_person_creates_missing_org(self, client, mock_api):
        mock_api.route("GET", "/v1/organizations/search", 200, _ok({"items": []}))
        mock_api.route("POST", "/v1/organizations", 201, _ok({"id": 43}))
        mock_api.route("POST", "/v1/persons", 201, _ok({"id": 301}))

        await client.create_contact(Contact(email="ada@engines.example", company="New Co"))

        assert mock_api.body("POST", "/v1/organizations") == {"name": "New Co"}
        body = mock_api.body("POST", "/v1/persons")
        assert body["org_id"] == 43
        assert body["name"] == "ada@engines.example"

    async def test_org_lookup_failure_is_ignored(self, client, mock_api):
        mock_api.route("GET", "/v1/organizations/search", 500, {"error": "boom"})
        mock_api.route("POST", "/v1/persons", 201, _ok({"id": 302}))

        result = await client.create_contact(
            Contact(email="ada@engines.example", first_name="Ada", company="AE")
        )

        assert result.success is True
        assert "org_id" not in mock_api.body("POST", "/v1/persons")

    async def test_unsuccessful_envelope_is_failure(self, client, mock_api):
        mock_api.route(
            "POST", "/v1/persons", 200, {"success": False, "error": "Name is required"}
        )

        result = await client.create_contact(Contact(email="ada@engines.example"))

        assert result.success is False
        assert result.error == "pipedrive API error: 200 - Name is required"

    async def test_create_person_without_id_is_failure(self, client, mock_api):
        mock_api.route("POST", "/v1/persons", 201, _ok({}))

        result = await client.create_contact(Contact(email="ada@engines.example"))

        assert result.success is False
        assert result.remote_id is None

    async def test_update_person_uses_put(self, client, mock_api):
        mock_api.route("PUT", "/v1/persons/300", 200, _ok({"id": 300}))

        result = await client.update_contact("300", ContactUpdate(phone="+44 20 7946 0000"))

        assert result.success is True
        assert result.operation == "update"
        assert mock_api.body("PUT", "/v1/persons/300") == {
            "phone": [{"value": "+44 20 7946 0000", "primary": True}]
        }

    async def test_find_person_by_email(self, client, mock_api):
        mock_api.route(
            "GET",
            "/v1/persons/search",
            200,
            _ok(
                {
                    "items": [
                        {
                            "item": {
                                "id": 300,
                                "name": "Ada Lovelace",
                                "emails": ["ada@engines.example"],
                                "organization": {"name": "Analytical Engines"},
                            }
                        }
                    ]
                }
            ),
        )

        contact = await client.find_contact_by_email("ada@engines.example")

        assert contact.id == "300"
        assert contact.first_name == "Ada"
        assert contact.last_name == "Lovelace"
        assert contact.email == "ada@engines.example"
        assert contact.company == "Analytical Engines"
        params = mock_api.sent("GET", "/v1/persons/search")[0].url.params
        assert params["term"] == "ada@engines.example"
        assert params["fields"] == "email"
        assert params["exact_match"] == "true"

    async def test_find_person_no_match(self, client, mock_api):
        mock_api.route("GET", "/v1/persons/search", 200, _ok({"items": []}))

        assert await client.find_contact_by_email("nobody@x.com") is None

    async def test_get_person(self, client, mock_api):
        mock_api.route(
            "GET",
            "/v1/persons/300",
            200,
            _ok(
                {
                    "id": 300,
                    "name": "Ada",
                    "email": [
                        {"value": "old@x.com", "primary": False},
                        {"value": "ada@engines.example", "primary": True},
                    ],
                    "phone": [{"value": "123", "primary": True}],
                    "org_id": {"name": "AE", "value": 42},
                }
            ),
        )

        contact = await client.get_contact("300")

        assert contact.email == "ada@engines.example"
        assert contact.phone == "123"
        assert contact.company == "AE"
        assert contact.last_name is None


class TestActivitiesAndDeals:
    async def test_create_activity(self, client, mock_api):
        mock_api.route("POST", "/v1/activities", 201, _ok({"id": 55}))

        result = await client.create_activity(
            Activity(
                contact_id="300",
                type="meeting",
                subject="Demo",
                body="Walkthrough",
                timestamp=datetime(2026, 3, 1, 14, 5, tzinfo=timezone.utc),
            )
        )

        assert result.remote_id == "55"
        assert mock_api.body("POST", "/v1/activities") == {
            "subject": "Demo",
            "type": "meeting",
            "person_id": 300,
            "note": "Walkthrough",
            "done": 1,
            "due_date": "2026-03-01",
            "due_time": "14:05",
        }

    async def test_create_deal(self, client, mock_api):
        mock_api.route("POST", "/v1/deals", 201, _ok({"id": 9}))

        result = await client.create_deal(Deal(contact_id="300", name="Pilot", amount=1000))

        assert result.remote_id == "9"
        assert mock_api.body("POST", "/v1/deals") == {
            "title": "Pilot",
            "value": 1000.0,
            "person_id": 300,
        }

    async def test_update_deal_maps_fields(self, client, mock_api):
        mock_api.route("PUT", "/v1/deals/9", 200, _ok({"id": 9}))

        result = await client.update_deal(
            "9", DealUpdate(name="Pilot v2", amount=2500, probability=60, stage="won")
        )

        assert result.success is True
        assert result.remote_id == "9"
        assert result.operation == "update"
        assert mock_api.body("PUT", "/v1/deals/9") == {
            "title": "Pilot v2",
            "value": 2500.0,
            "probability": 60.0,
        }

    async def test_update_deal_unsuccessful_envelope(self, client, mock_api):
        mock_api.route("PUT", "/v1/deals/9", 200, {"success": False, "error": "Deal not found"})

        result = await client.update_deal("9", DealUpdate(amount=1))

        assert result.success is False
        assert "Deal not found" in result.error

    async def test_create_deal_without_data_is_failure(self, client, mock_api):
        mock_api.route("POST", "/v1/deals", 201, _ok(None))

        result = await client.create_deal(Deal(contact_id="300", name="Pilot"))

        assert result.success is False
        assert result.remote_id is None

    def test_default_api_domain(self):
        client = PipedriveClient("pd-token")

        assert client._base_url == "https://api.pipedrive.com/v1"
