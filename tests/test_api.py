"""
API endpoint tests for the Credential Engine.

This module contains tests for the REST endpoints, ensuring proper request
handling, response formats, and error mapping.
"""

import pytest
from fastapi.testclient import TestClient

from credential_engine.api import server
from credential_engine.config import EngineConfig
from credential_engine.models import Role
from credential_engine.services import EngineServices


@pytest.fixture
def services():
    """Engine services with inline outbox draining."""
    svc = EngineServices(EngineConfig(dispatch={"background": False}))
    server.services = svc
    yield svc
    server.services = None


@pytest.fixture
def client(services):
    """Test client for the FastAPI application."""
    with TestClient(server.app) as client:
        yield client


@pytest.fixture
def admin(services):
    return services.engine.register_identity("admin@company.com", "Admin User", Role.ADMIN)


@pytest.fixture
def member(services):
    return services.engine.register_identity("jane.doe@company.com", "Jane Doe")


def as_user(identity):
    return {"X-Identity-Id": identity.id}


class TestHealthEndpoints:
    """Tests for health check and system status endpoints."""

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200

        data = response.json()
        assert data["message"] == "Credential Engine API"
        assert "version" in data

    def test_health_endpoint(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["components"]["grant_store"] is True
        assert "pending_events" in data


class TestAuthentication:
    """Tests for caller identification and role checks."""

    def test_missing_caller(self, client):
        assert client.get("/me/grants").status_code == 401

    def test_unknown_caller(self, client):
        assert client.get("/me/grants", headers={"X-Identity-Id": "nobody"}).status_code == 401

    def test_member_cannot_use_admin_routes(self, client, member):
        assert client.get("/admin/stats", headers=as_user(member)).status_code == 403


class TestGrantEndpoints:
    """Tests for the member and admin grant flows."""

    @pytest.fixture
    def credential(self, client, admin):
        response = client.post(
            "/admin/credentials", json={"name": "VPN", "description": "Corporate VPN"}, headers=as_user(admin)
        )
        assert response.status_code == 200
        return response.json()

    @pytest.fixture
    def grant(self, client, admin, member, credential):
        response = client.post(
            "/admin/grants",
            json={"email": member.email, "credential_name": credential["name"]},
            headers=as_user(admin),
        )
        assert response.status_code == 200
        return response.json()["grant"]

    def test_assign_and_list(self, client, member, grant):
        response = client.get("/me/grants", headers=as_user(member))
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "Pending"
        assert len(data["items"]) == 1
        assert data["items"][0]["display_status"] == "Pending"
        assert data["items"][0]["credential_type"]["name"] == "VPN"

    def test_duplicate_assignment_conflicts(self, client, admin, member, credential, grant):
        response = client.post(
            "/admin/grants",
            json={"identity_id": member.id, "credential_type_id": credential["id"]},
            headers=as_user(admin),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "conflict"

    def test_assign_requires_target(self, client, admin):
        response = client.post("/admin/grants", json={}, headers=as_user(admin))
        assert response.status_code == 400

    def test_confirm_onboards(self, client, member, grant):
        response = client.post(f"/me/grants/{grant['id']}/confirm", headers=as_user(member))
        assert response.status_code == 200
        assert response.json()["status"] == "Onboarded"

    def test_confirm_foreign_grant_forbidden(self, client, admin, grant):
        response = client.post(f"/me/grants/{grant['id']}/confirm", headers=as_user(admin))
        assert response.status_code == 403
        assert response.json()["error"] == "unauthorized"

    def test_report_problem(self, client, member, grant):
        response = client.post(
            f"/me/grants/{grant['id']}/report", json={"note": "Cannot connect"}, headers=as_user(member)
        )
        assert response.status_code == 200
        assert response.json()["grant"]["problematic"] is True

    def test_revoke_and_complete_offboarding(self, client, admin, member, grant):
        response = client.post(f"/admin/grants/{grant['id']}/revoke", headers=as_user(admin))
        assert response.status_code == 200
        assert response.json()["status"] == "Offboarded"

        response = client.post(f"/admin/identities/{member.id}/offboarding/complete", headers=as_user(admin))
        assert response.status_code == 409

    def test_delete_grant_while_offboarding_rejected(self, client, admin, member, grant):
        client.post(f"/admin/identities/{member.id}/offboarding/initiate", headers=as_user(admin))

        response = client.delete(f"/admin/grants/{grant['id']}", headers=as_user(admin))
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_transition"

    def test_delete_referenced_credential_conflicts(self, client, admin, credential, grant):
        response = client.delete(f"/admin/credentials/{credential['id']}", headers=as_user(admin))
        assert response.status_code == 409

    def test_unknown_grant(self, client, admin):
        response = client.post("/admin/grants/missing/revoke", headers=as_user(admin))
        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "detail": "Grant not found"}


class TestAdminEndpoints:
    """Tests for identity, credential, and reporting endpoints."""

    def test_register_and_list_identities(self, client, admin):
        response = client.post(
            "/admin/identities", json={"email": "new.hire@company.com", "name": "New Hire"}, headers=as_user(admin)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "Pending"

        response = client.get("/admin/identities", params={"status": "Pending"}, headers=as_user(admin))
        assert [i["email"] for i in response.json()] == ["admin@company.com", "new.hire@company.com"]

    def test_onboard_and_details(self, client, admin, member):
        response = client.post(f"/admin/identities/{member.id}/onboard", headers=as_user(admin))
        assert response.status_code == 200
        assert response.json()["transition"]["kind"] == "ExplicitOnboard"

        response = client.get(f"/admin/identities/{member.id}", headers=as_user(admin))
        assert response.json()["identity"]["status"] == "Onboarded"

        response = client.post(f"/admin/identities/{member.id}/onboard", headers=as_user(admin))
        assert response.status_code == 409

    def test_edit_credential(self, client, admin):
        created = client.post("/admin/credentials", json={"name": "VPN"}, headers=as_user(admin)).json()

        response = client.patch(
            f"/admin/credentials/{created['id']}", json={"description": "EU VPN"}, headers=as_user(admin)
        )
        assert response.status_code == 200
        assert response.json()["description"] == "EU VPN"

        response = client.delete(f"/admin/credentials/{created['id']}", headers=as_user(admin))
        assert response.json() == {"ok": True}

    def test_stats_and_audit(self, client, admin, member):
        client.post(f"/admin/identities/{member.id}/onboard", headers=as_user(admin))

        stats = client.get("/admin/stats", headers=as_user(admin)).json()
        assert stats["total"] == 2
        assert stats["onboarded"] == 1
        assert stats["pending"] == 1

        response = client.get("/admin/audit", params={"action": "user_onboarded"}, headers=as_user(admin))
        assert response.status_code == 200
        entries = response.json()
        assert len(entries) == 1
        assert entries[0]["actor_email"] == "admin@company.com"
        assert entries[0]["severity"] == "medium"

    def test_reports(self, client, admin):
        for path in ("/admin/reports/grants", "/admin/reports/identities", "/admin/reports/credentials"):
            response = client.get(path, headers=as_user(admin))
            assert response.status_code == 200
            assert isinstance(response.json(), list)

        summary = client.get("/admin/reports/audit", params={"days": 7}, headers=as_user(admin)).json()
        assert summary["entries_by_action"]["identity_registered"] == 1
