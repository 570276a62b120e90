"""
Tests for the HTTP endpoints.

Tests are organized by endpoint:
- GET /
- POST /identify (happy paths, validation, internal failures)
- POST /add-contact
"""
import pytest

from settings import settings


def identify(client, **body):
    return client.post("/identify", json=body)


class TestRoot:

    def test_service_info(self, client):
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["version"] == "1.0.0"
        assert data["endpoints"]["identify"] == "POST /identify"


class TestIdentify:

    def test_new_contact(self, client):
        response = identify(client, email="lorraine@hillvalley.edu", phoneNumber="9876543210")
        assert response.status_code == 200
        assert response.json() == {
            "contact": {
                "primaryContactId": 1,
                "emails": ["lorraine@hillvalley.edu"],
                "phoneNumbers": ["9876543210"],
                "secondaryContactIds": [],
            }
        }

    def test_secondary_linked_on_shared_phone(self, client):
        identify(client, email="lorraine@hillvalley.edu", phoneNumber="9876543210")
        response = identify(client, email="mcfly@hillvalley.edu", phoneNumber="9876543210")

        assert response.status_code == 200
        assert response.json()["contact"] == {
            "primaryContactId": 1,
            "emails": ["lorraine@hillvalley.edu", "mcfly@hillvalley.edu"],
            "phoneNumbers": ["9876543210"],
            "secondaryContactIds": [2],
        }

    def test_repeat_request_is_idempotent(self, client):
        identify(client, email="lorraine@hillvalley.edu", phoneNumber="9876543210")
        identify(client, email="mcfly@hillvalley.edu", phoneNumber="9876543210")

        first = identify(client, email="mcfly@hillvalley.edu", phoneNumber="9876543210")
        second = identify(client, email="mcfly@hillvalley.edu", phoneNumber="9876543210")

        assert first.json() == second.json()
        assert first.json()["contact"]["secondaryContactIds"] == [2]

    def test_email_case_is_ignored(self, client):
        identify(client, email="George@HillValley.edu", phoneNumber="9876543210")
        response = identify(client, email="george@hillvalley.edu", phoneNumber="9876543210")
        assert response.json()["contact"]["emails"] == ["george@hillvalley.edu"]
        assert response.json()["contact"]["secondaryContactIds"] == []

    def test_null_field_accepted(self, client):
        response = identify(client, email=None, phoneNumber="9876543210")
        assert response.status_code == 200
        assert response.json()["contact"]["emails"] == []

    def test_bridging_request_merges_clusters(self, client):
        identify(client, email="george@hillvalley.edu", phoneNumber="9191919191")
        identify(client, email="biffsucks@hillvalley.edu", phoneNumber="7171717171")

        response = identify(client, email="george@hillvalley.edu", phoneNumber="7171717171")

        contact = response.json()["contact"]
        assert contact["primaryContactId"] == 1
        assert contact["emails"] == ["biffsucks@hillvalley.edu", "george@hillvalley.edu"]
        assert contact["phoneNumbers"] == ["7171717171", "9191919191"]
        assert contact["secondaryContactIds"][0] == 2
        assert 1 not in contact["secondaryContactIds"]


class TestIdentifyValidation:

    def test_missing_both(self, client):
        response = identify(client)
        assert response.status_code == 400
        assert response.json() == {
            "error": "Validation failed",
            "details": ["Either email or phoneNumber must be provided"],
        }

    def test_itemized_errors(self, client):
        response = identify(client, email="doc-at-hillvalley", phoneNumber="42")
        assert response.status_code == 400
        assert len(response.json()["details"]) == 2

    def test_wrong_type(self, client):
        response = identify(client, email=12345)
        assert response.status_code == 400
        assert response.json()["error"] == "Validation failed"
        assert response.json()["details"][0].startswith("email")

    def test_malformed_json(self, client):
        response = client.post(
            "/identify", content="{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400

    def test_nothing_written_on_validation_failure(self, client, store):
        identify(client, email="doc-at-hillvalley")
        assert store.find_many(email="doc-at-hillvalley") == []


class TestIdentifyFailures:

    def test_integrity_error_is_opaque_500(self, client):
        client.post("/add-contact", json={
            "id": 5, "email": "ghost@hillvalley.edu",
            "linkedId": 404, "linkPrecedence": "secondary",
        })

        response = identify(client, email="ghost@hillvalley.edu")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    def test_link_cycle_is_opaque_500(self, client):
        for contact_id, linked_id in ((1, 2), (2, 1)):
            client.post("/add-contact", json={
                "id": contact_id, "email": f"loop{contact_id}@hillvalley.edu",
                "linkedId": linked_id, "linkPrecedence": "secondary",
            })

        response = identify(client, email="loop1@hillvalley.edu")
        assert response.status_code == 500

    def test_malformed_row_is_opaque_500(self, client, store):
        store.conn.execute(
            "INSERT INTO Contact (email, linkPrecedence) VALUES ('doc@hillvalley.edu', NULL)"
        )

        response = identify(client, email="doc@hillvalley.edu")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}


class TestAddContact:

    def test_add_and_identify_legacy_chain(self, client):
        client.post("/add-contact", json={"id": 1, "email": "doc@hillvalley.edu"})
        client.post("/add-contact", json={
            "id": 2, "email": "emmett@hillvalley.edu",
            "linkedId": 1, "linkPrecedence": "secondary",
        })
        response = client.post("/add-contact", json={
            "id": 3, "email": "brown@hillvalley.edu",
            "linkedId": 2, "linkPrecedence": "secondary",
        })
        assert response.json() == {"message": "Contact added successfully", "contact_id": 3}

        response = identify(client, email="brown@hillvalley.edu")
        assert response.status_code == 200
        assert response.json()["contact"] == {
            "primaryContactId": 1,
            "emails": ["brown@hillvalley.edu", "doc@hillvalley.edu", "emmett@hillvalley.edu"],
            "phoneNumbers": [],
            "secondaryContactIds": [2, 3],
        }

    def test_duplicate_id_conflicts(self, client):
        client.post("/add-contact", json={"id": 1, "email": "doc@hillvalley.edu"})
        response = client.post("/add-contact", json={"id": 1, "email": "biff@hillvalley.edu"})
        assert response.status_code == 409

    def test_disabled(self, client, monkeypatch):
        monkeypatch.setattr(settings, "enable_add_contact", False)
        response = client.post("/add-contact", json={"email": "doc@hillvalley.edu"})
        assert response.status_code == 404
