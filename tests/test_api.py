"""
HTTP surface tests using the FastAPI TestClient against an in-memory store.
"""
import pytest
from fastapi.testclient import TestClient

from app.main import app

SUBJECT = "analyst@example.com"
URL = "https://docs.google.com/spreadsheets/d/abc123"


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers(client):
    response = client.post("/v1/auth/admin/login", json={"admin_id": "lead@example.com", "password": "admin123"})
    assert response.status_code == 200
    token = response.json()["data"]["access_token"]
    return {"Authorization": f"Bearer {token}"}


def submit(client, minutes=30, kind="preset"):
    return client.post("/v1/requests", json={
        "subject_id": SUBJECT,
        "resource_url": URL,
        "duration_minutes": minutes,
        "duration_kind": kind,
    })


class TestAuth:
    def test_wrong_password(self, client):
        response = client.post("/v1/auth/admin/login", json={"admin_id": "lead", "password": "nope"})
        assert response.status_code == 401

    def test_admin_routes_need_token(self, client):
        request_id = submit(client).json()["data"]["request_id"]

        assert client.post(f"/v1/requests/{request_id}/approve").status_code == 401
        assert client.get("/v1/devices").status_code == 401
        assert client.get("/v1/audit/events").status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/v1/devices", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestRequestFlow:
    def test_submit_approve_check(self, client, admin_headers):
        response = submit(client)
        assert response.status_code == 201
        request_id = response.json()["data"]["request_id"]

        check = client.get("/v1/sessions/check", params={"subject_id": SUBJECT, "resource_url": URL})
        assert check.json()["data"]["active"] is False

        response = client.post(f"/v1/requests/{request_id}/approve", headers=admin_headers)
        assert response.status_code == 200
        approved = response.json()["data"]
        assert approved["status"] == "approved"
        assert approved["approved_by"] == "lead@example.com"

        check = client.get("/v1/sessions/check", params={"subject_id": SUBJECT, "resource_url": URL})
        body = check.json()["data"]
        assert body["active"] is True
        assert body["session"]["request_id"] == request_id

        sessions = client.get("/v1/sessions").json()["data"]
        assert [s["request_id"] for s in sessions] == [request_id]

    def test_second_approval_is_409_with_current_status(self, client, admin_headers):
        request_id = submit(client).json()["data"]["request_id"]
        client.post(f"/v1/requests/{request_id}/deny", headers=admin_headers)

        response = client.post(f"/v1/requests/{request_id}/approve", headers=admin_headers)

        assert response.status_code == 409
        body = response.json()
        assert body["success"] is False
        assert body["current_status"] == "denied"

    def test_unknown_request_is_404(self, client, admin_headers):
        assert client.post("/v1/requests/missing/approve", headers=admin_headers).status_code == 404
        assert client.get("/v1/requests/missing").status_code == 404

    def test_custom_duration_out_of_range_is_422(self, client):
        response = submit(client, minutes=1500, kind="custom")
        assert response.status_code == 422
        assert response.json()["success"] is False

        assert submit(client, minutes=1440, kind="custom").status_code == 201

    def test_list_and_get(self, client):
        first = submit(client).json()["data"]["request_id"]

        listed = client.get("/v1/requests", params={"status": "pending", "subject": "analyst"}).json()["data"]
        assert [r["id"] for r in listed] == [first]
        assert client.get(f"/v1/requests/{first}").json()["data"]["status"] == "pending"

        assert client.get("/v1/requests", params={"status": "bogus"}).status_code == 422


class TestAudit:
    def test_record_then_query(self, client, admin_headers):
        response = client.post("/v1/audit/events", json={
            "type": "blocked",
            "subject_id": SUBJECT,
            "resource_url": URL,
            "action": "copy",
            "cell_range": "A1:C20",
        })
        assert response.status_code == 202
        event_id = response.json()["data"]["event_id"]

        events = client.get("/v1/audit/events", params={"type": "blocked"}, headers=admin_headers).json()["data"]
        assert [e["id"] for e in events] == [event_id]
        assert events[0]["cell_range"] == "A1:C20"

        exported = client.get("/v1/audit/export", headers=admin_headers).json()["data"]
        assert event_id in [e["id"] for e in exported]

    def test_unknown_event_type_is_422(self, client):
        response = client.post("/v1/audit/events", json={"type": "teleport", "subject_id": SUBJECT})
        assert response.status_code == 422


class TestDevices:
    def test_heartbeat_with_fingerprint_then_list(self, client, admin_headers):
        response = client.post("/v1/devices/heartbeat", json={
            "subject_id": SUBJECT,
            "fingerprint": "9f2c4e",
            "browser": "Chrome 131",
            "os": "macOS 15",
        })
        assert response.status_code == 202
        data = response.json()["data"]
        assert data["outcome"] == "registered"
        assert data["device_id"].startswith(f"{SUBJECT}_9f2c4e_")
        assert data["heartbeat_interval_seconds"] == 300

        again = client.post("/v1/devices/heartbeat", json={"subject_id": SUBJECT, "device_id": data["device_id"]})
        assert again.json()["data"]["outcome"] == "refreshed"

        devices = client.get("/v1/devices", headers=admin_headers).json()["data"]
        assert [d["device_id"] for d in devices] == [data["device_id"]]

    def test_heartbeat_needs_identity(self, client):
        response = client.post("/v1/devices/heartbeat", json={"subject_id": SUBJECT})
        assert response.status_code == 422

    def test_reinstate_unknown_device(self, client, admin_headers):
        assert client.post("/v1/devices/missing/reinstate", headers=admin_headers).status_code == 404


class TestBadgeAndHealth:
    def test_badge_counts_pending(self, client):
        submit(client)
        data = client.get("/v1/notifications/badge").json()["data"]
        assert data["count"] == 1
        assert data["source"] == "pending_requests"
        assert "changed" in data

    def test_badge_changed_against_last_seen(self, client):
        assert client.get("/v1/notifications/badge", params={"last_count": 0}).json()["data"]["changed"] is False

        submit(client)
        data = client.get("/v1/notifications/badge", params={"last_count": 0}).json()["data"]
        assert data["count"] == 1
        assert data["changed"] is True

    def test_health_db(self, client):
        response = client.get("/health/db")
        assert response.status_code == 200
        assert response.json()["db"] == "available"

    def test_root(self, client):
        data = client.get("/").json()
        assert data["status"] == "operational"
        assert data["store"] == "memory"
