"""
Unit tests for Permissions main service.
"""

import pytest
from unittest.mock import AsyncMock
from fastapi.testclient import TestClient

from service_permissions.app.clock import ManualClock
from service_permissions.app.main import PermissionsService
from service_permissions.app.manager import AuthorizationManager
from service_permissions.app.persistence.base import InMemoryStore


class TestPermissionsService:
    """Test cases for PermissionsService."""

    @pytest.fixture
    def manager(self):
        """Create AuthorizationManager with an in-memory store."""
        return AuthorizationManager(durable_store=InMemoryStore(), clock=ManualClock())

    @pytest.fixture
    def permissions_service(self, manager):
        """Create PermissionsService instance."""
        return PermissionsService(manager=manager)

    @pytest.fixture
    def client(self, permissions_service):
        """Create test client."""
        return TestClient(permissions_service.app)

    @pytest.fixture
    def check_request(self):
        """Permission check request."""
        return {
            "user_id": "user-123",
            "action": "read",
            "resource": {"id": "doc-1", "type": "document"},
            "context": {"session_id": "s-1", "client_ip": "10.0.0.1"}
        }

    def assign(self, client, user_id="user-123", role_id="viewer"):
        return client.post("/permissions/roles/assign", json={
            "user_id": user_id,
            "role_id": role_id,
            "assigned_by": "admin-user"
        })

    def test_root_endpoint(self, client):
        """Test root endpoint."""
        response = client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "permissions"
        assert "decisions" in data["capabilities"]

    def test_health_check(self, client):
        """Test health check endpoint."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["service"] == "permissions"
        assert data["status"] == "ok"
        assert data["dependencies"] == {"store": "ok"}

    def test_health_check_store_down(self, client, manager):
        """Test health reports a failing store."""
        manager.durable_store.health_check = AsyncMock(side_effect=ConnectionError("down"))

        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["dependencies"] == {"store": "error"}

    def test_check_permission_default_deny(self, client, check_request):
        """Test an unassigned user is denied."""
        response = client.post("/permissions/check", json=check_request)

        assert response.status_code == 200
        data = response.json()
        assert data["allowed"] is False
        assert data["source"] == "default"
        assert data["ttl_seconds"] == 300

    def test_assign_then_check(self, client, check_request):
        """Test an assigned role takes effect immediately."""
        client.post("/permissions/check", json=check_request)

        response = self.assign(client)
        assert response.status_code == 201
        assert response.json()["role_id"] == "viewer"

        data = client.post("/permissions/check", json=check_request).json()
        assert data["allowed"] is True
        assert data["source"] == "role"
        assert data["cache_hit"] is False

        cached = client.post("/permissions/check", json=check_request).json()
        assert cached["cache_hit"] is True

    def test_check_permission_invalid_action(self, client, check_request):
        """Test request validation."""
        check_request["action"] = "teleport"

        response = client.post("/permissions/check", json=check_request)

        assert response.status_code == 422

    def test_assign_unknown_role(self, client):
        """Test assigning a role that does not exist."""
        response = self.assign(client, role_id="ghost")

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_revoke_role(self, client, check_request):
        """Test revoking a role."""
        self.assign(client)

        response = client.post("/permissions/roles/revoke", json={
            "user_id": "user-123",
            "role_id": "viewer",
            "revoked_by": "admin-user",
            "reason": "rotation"
        })

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        assert client.post("/permissions/check", json=check_request).json()["allowed"] is False

    def test_list_roles(self, client):
        """Test the seeded roles are listed."""
        response = client.get("/permissions/roles")

        assert response.status_code == 200
        ids = {role["id"] for role in response.json()["roles"]}
        assert {"admin", "manager", "user", "viewer"} <= ids

    def test_update_system_role_rejected(self, client):
        """Test system roles are immutable."""
        response = client.put("/permissions/roles/admin", json={"updated_by": "admin-user", "name": "Root"})

        assert response.status_code == 400

    def test_create_policy(self, client):
        """Test policy creation."""
        response = client.post("/permissions/policies", json={
            "name": "Finance read",
            "rules": [{
                "conditions": [{
                    "type": "user_attribute",
                    "attribute": "department",
                    "operator": "equals",
                    "value": "finance"
                }],
                "effect": "allow"
            }],
            "priority": 3,
            "created_by": "admin-user"
        })

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Finance read"
        assert data["priority"] == 3

        policies = client.get("/permissions/policies").json()
        assert policies["total"] == 2

    def test_create_policy_invalid_condition(self, client):
        """Test an empty condition attribute is rejected."""
        response = client.post("/permissions/policies", json={
            "name": "Broken",
            "rules": [{
                "conditions": [{
                    "type": "user_attribute",
                    "attribute": "",
                    "operator": "equals",
                    "value": "finance"
                }],
                "effect": "allow"
            }],
            "created_by": "admin-user"
        })

        assert response.status_code == 422
        assert response.json()["code"] == "INVALID_RULE"

    def test_delete_system_policy_rejected(self, client):
        """Test the seeded policy cannot be deleted."""
        response = client.delete("/permissions/policies/security-policy", params={"deleted_by": "admin-user"})

        assert response.status_code == 400

    def test_update_unknown_policy(self, client):
        """Test updating a missing policy."""
        response = client.put("/permissions/policies/missing", json={"modified_by": "admin-user"})

        assert response.status_code == 404

    def test_resource_permissions(self, client):
        """Test resource grants and inheritance."""
        response = client.put("/permissions/resources/folder-1", json={
            "resource_type": "folder",
            "permissions": [{"principal_id": "user-9", "action": "upload"}],
            "set_by": "admin-user"
        })
        assert response.status_code == 200

        response = client.post("/permissions/resources/doc-5/inherit", json={
            "parent_resource_id": "folder-1",
            "inherited_by": "admin-user"
        })
        assert response.status_code == 200
        assert response.json()["resource_id"] == "doc-5"

        data = client.post("/permissions/check", json={
            "user_id": "user-9",
            "action": "upload",
            "resource": {"id": "doc-5", "type": "document"}
        }).json()
        assert data["allowed"] is True
        assert data["source"] == "resource_grant"

    def test_create_acl(self, client):
        """Test ACL creation."""
        response = client.post("/permissions/acls", json={
            "resource_id": "doc-3",
            "resource_type": "document",
            "entries": [{"principal_id": "user-4", "action": "download"}],
            "created_by": "admin-user"
        })

        assert response.status_code == 201
        acl_id = response.json()["id"]

        data = client.post("/permissions/check", json={
            "user_id": "user-4",
            "action": "download",
            "resource": {"id": "doc-3", "type": "document"}
        }).json()
        assert data["matched_id"] == acl_id

    def test_direct_permission_routes(self, client):
        """Test granting and revoking a direct permission."""
        response = client.post("/permissions/users/user-7/direct-permissions", json={
            "permission": {"action": "approve", "resource_type": "document"},
            "granted_by": "admin-user"
        })
        assert response.status_code == 201
        permission_id = response.json()["id"]

        response = client.delete(
            f"/permissions/users/user-7/direct-permissions/{permission_id}",
            params={"revoked_by": "admin-user"}
        )
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_user_permissions(self, client):
        """Test the effective permission snapshot."""
        self.assign(client, role_id="manager")

        response = client.get("/permissions/users/user-123")

        assert response.status_code == 200
        data = response.json()
        assert data["role_ids"] == ["manager"]
        assert "approve" in data["effective_permissions"]

    def test_complex_evaluation(self, client):
        """Test composite evaluation."""
        self.assign(client)

        response = client.post("/permissions/evaluate", json={
            "user_id": "user-123",
            "actions": ["read", "delete"],
            "resources": [{"id": "doc-1", "type": "document"}]
        })

        assert response.status_code == 200
        data = response.json()
        assert data["results"] == {"read": True, "delete": False}
        assert len(data["evaluation_details"]) == 2

    def test_audit_report(self, client, check_request):
        """Test the security audit report."""
        client.post("/permissions/check", json=check_request)
        self.assign(client)

        response = client.get("/permissions/audit/report", params={"time_range": "last_day"})

        assert response.status_code == 200
        data = response.json()
        assert data["total_permission_checks"] == 1
        assert data["denied_checks"] == 1
        assert data["permission_changes"][0]["action"] == "role_assigned"
        assert data["risk_assessment"]["risk_level"] == "high"

    def test_audit_metrics(self, client, check_request):
        """Test the security metrics endpoint."""
        client.post("/permissions/check", json=check_request)

        response = client.get("/permissions/audit/metrics")

        assert response.status_code == 200
        data = response.json()
        assert data["total_permission_checks"] == 1
        assert data["unique_users"] == 1

    def test_stats(self, client, check_request):
        """Test the stats endpoint."""
        client.post("/permissions/check", json=check_request)

        response = client.get("/permissions/stats")

        assert response.status_code == 200
        data = response.json()
        assert data["store"]["roles"] == 4
        assert data["cache"]["entries"] == 1
        assert data["audit"]["entries"] == 1
        assert "timestamp" in data
