"""
Tests — Authentication middleware and role permissions.

Covers:
    - Dev header identity (X-User-Role / X-User)
    - API key mode
    - Content-Type enforcement
    - Permission matrix helpers
"""

import pytest

from buildtrack.auth import parse_api_keys
from buildtrack.services.permission_service import (
    has_any_permission,
    has_permission,
    is_manager,
    normalize_role,
    roles_for,
)
from tests.conftest import role_headers


@pytest.fixture()
def api_keys(app):
    """Switch the app to API key authentication for one test."""
    previous = (app.config["API_AUTH_ENABLED"], app.config["API_KEYS"])
    app.config["API_AUTH_ENABLED"] = "true"
    app.config["API_KEYS"] = "own-key:owner:alice,clerk-key:clerk,bad-key:janitor:bob"
    try:
        yield
    finally:
        app.config["API_AUTH_ENABLED"], app.config["API_KEYS"] = previous


# ═════════════════════════════════════════════════════════════════════════════
# PERMISSION MATRIX
# ═════════════════════════════════════════════════════════════════════════════

class TestPermissionMatrix:
    def test_normalize_role(self):
        assert normalize_role(" Owner ") == "owner"
        assert normalize_role("project_manager") == "pm"
        assert normalize_role("janitor") is None
        assert normalize_role(None) is None

    def test_has_permission(self):
        assert has_permission("pm", "approve_material")
        assert not has_permission("clerk", "approve_material")
        assert not has_permission("owner", "no_such_permission")
        assert not has_permission(None, "view_dashboard")

    def test_has_any_permission(self):
        assert has_any_permission("investor", ["view_projects", "view_financing"])
        assert not has_any_permission("supplier", ["view_projects", "view_financing"])

    def test_managers(self):
        assert is_manager("owner")
        assert is_manager("project_manager")
        assert not is_manager("accountant")

    def test_roles_for(self):
        assert roles_for("delete_project") == ["owner"]
        assert roles_for("view_investors") == ["accountant", "owner"]


# ═════════════════════════════════════════════════════════════════════════════
# DEV HEADER IDENTITY
# ═════════════════════════════════════════════════════════════════════════════

class TestHeaderIdentity:
    def test_health_is_open(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_default_role_is_owner(self, client):
        res = client.post("/api/v1/projects", json={
            "project_code": "DEF-1", "project_name": "Default",
        })
        assert res.status_code == 201

    def test_unknown_role_rejected(self, client):
        res = client.get("/api/v1/projects", headers={"X-User-Role": "janitor"})
        assert res.status_code == 401
        assert "Unknown role" in res.get_json()["error"]

    def test_permission_denied_body(self, client, project):
        res = client.delete(f"/api/v1/projects/{project['id']}", headers=role_headers("pm"))
        assert res.status_code == 403
        assert res.get_json() == {
            "success": False, "error": "Permission denied", "required": "delete_project",
        }

    def test_any_permission_denied_body(self, client, project):
        res = client.get("/api/v1/projects", headers=role_headers("supplier"))
        assert res.status_code == 403
        assert res.get_json()["required_any"] == ["view_projects", "view_financing"]

    def test_actor_comes_from_header(self, client, material):
        assert material["submitted_by"] == "clerk@site.test"

    def test_default_user_name(self, client, project):
        res = client.post("/api/v1/materials", json={
            "project_id": project["id"], "name": "Nails", "quantity": 5, "unit_cost": 2,
        }, headers={"X-User-Role": "pm"})
        assert res.get_json()["data"]["approved_by"] == "dev-pm"

    def test_non_json_body_rejected(self, client):
        res = client.post("/api/v1/projects", data="project_code=X",
                          content_type="application/x-www-form-urlencoded")
        assert res.status_code == 415

    def test_plain_text_update_rejected_once(self, client, project):
        res = client.put(f"/api/v1/projects/{project['id']}", data="name=Other",
                         content_type="text/plain")
        assert res.status_code == 415
        assert res.get_json() == {
            "success": False,
            "error": "Content-Type must be application/json for state-changing requests",
        }


# ═════════════════════════════════════════════════════════════════════════════
# API KEY MODE
# ═════════════════════════════════════════════════════════════════════════════

class TestApiKeys:
    def test_parse_api_keys(self):
        keys = parse_api_keys("k1:owner:alice, k2:CLERK ,k3:janitor:x,broken,")
        assert keys == {"k1": ("owner", "alice"), "k2": ("clerk", "clerk")}

    def test_missing_key(self, client, api_keys):
        res = client.get("/api/v1/projects")
        assert res.status_code == 401

    def test_invalid_key(self, client, api_keys):
        res = client.get("/api/v1/projects", headers={"X-API-Key": "nope"})
        assert res.status_code == 401
        assert res.get_json()["error"] == "Invalid API key"

    def test_key_with_unknown_role_is_ignored(self, client, api_keys):
        res = client.get("/api/v1/projects", headers={"X-API-Key": "bad-key"})
        assert res.status_code == 401

    def test_valid_key_sets_identity(self, client, api_keys):
        res = client.post("/api/v1/projects", json={
            "project_code": "KEY-1", "project_name": "Keyed",
        }, headers={"X-API-Key": "own-key"})
        assert res.status_code == 201

        logs = client.get("/api/v1/audit-logs?entity_type=project",
                          headers={"X-API-Key": "own-key"}).get_json()["data"]
        assert logs[0]["actor"] == "alice"
        assert logs[0]["actor_role"] == "owner"

    def test_key_in_query_string(self, client, api_keys):
        res = client.get("/api/v1/projects?api_key=clerk-key")
        assert res.status_code == 200

    def test_role_headers_ignored_with_keys(self, client, api_keys):
        res = client.post("/api/v1/projects", json={
            "project_code": "KEY-2", "project_name": "Keyed",
        }, headers={"X-API-Key": "clerk-key", "X-User-Role": "owner"})
        assert res.status_code == 403

    def test_supplier_token_route_needs_no_key(self, client, purchase_order, api_keys):
        res = client.get(
            f"/api/v1/purchase-orders/{purchase_order['id']}/respond"
            f"?token={purchase_order['response_token']}",
        )
        assert res.status_code == 200
