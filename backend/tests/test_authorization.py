"""
Route authorization tests.

Verifies:
- Unauthenticated requests return 401
- Worker role denied management operations (403)
- Warehouse role can move and adjust stock but not delete items
- Admin role can perform privileged operations
"""

import pytest

from prodflow.models import SecurityEvent


# =============================================================================
# UNAUTHENTICATED ACCESS: 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/users"),
            ("POST", "/api/users"),
            ("GET", "/api/roles"),
            ("POST", "/api/roles"),
            ("GET", "/api/roles/permissions"),
            ("GET", "/api/inventory/items"),
            ("POST", "/api/inventory/items/1/adjust"),
            ("GET", "/api/inventory/transactions/all"),
            ("GET", "/api/production/guides"),
            ("POST", "/api/production/guides"),
            ("POST", "/api/production/steps/1/work/start"),
            ("GET", "/api/production/templates"),
            ("GET", "/api/notifications"),
            ("POST", "/api/notifications/send"),
            ("GET", "/api/audit-logs"),
            ("GET", "/api/dashboard/stats"),
            ("POST", "/api/time-tracking/sessions/start"),
            ("GET", "/api/time-tracking/sessions/active"),
            ("PUT", "/api/time-tracking/settings"),
            ("GET", "/api/quality/templates"),
            ("POST", "/api/quality/checks"),
            ("GET", "/api/quality/stats"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"


# =============================================================================
# WORKER DENIED MANAGEMENT OPERATIONS: 403
# =============================================================================


class TestWorkerDenied:
    """Worker role cannot perform management operations."""

    def test_cannot_list_users(self, client, worker_headers):
        resp = client.get("/api/users", headers=worker_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == "users.read"

    def test_cannot_create_role(self, client, worker_headers):
        resp = client.post("/api/roles", json={"name": "evil-role"}, headers=worker_headers)
        assert resp.status_code == 403

    def test_cannot_create_item(self, client, worker_headers):
        resp = client.post("/api/inventory/items", json={"name": "Washer"}, headers=worker_headers)
        assert resp.status_code == 403

    def test_cannot_adjust_inventory(self, client, worker_headers, item):
        resp = client.post(f"/api/inventory/items/{item.id}/adjust", json={"quantity": 100}, headers=worker_headers)
        assert resp.status_code == 403

    def test_cannot_create_guide(self, client, worker_headers):
        resp = client.post("/api/production/guides", json={"title": "Nope"}, headers=worker_headers)
        assert resp.status_code == 403

    def test_cannot_view_audit_log(self, client, worker_headers):
        resp = client.get("/api/audit-logs", headers=worker_headers)
        assert resp.status_code == 403

    def test_cannot_send_notifications(self, client, worker_headers, manager_user):
        resp = client.post(
            "/api/notifications/send",
            json={"userIds": [manager_user.id], "content": "hi"},
            headers=worker_headers,
        )
        assert resp.status_code == 403

    def test_denial_is_logged(self, client, db_session, worker_headers, worker_user):
        client.get("/api/users", headers=worker_headers)
        event = db_session.query(SecurityEvent).filter_by(event_type="PERMISSION_DENIED").one()
        assert event.user_id == worker_user.id
        assert event.resource == "/api/users"

    def test_can_read_guides_and_inventory(self, client, worker_headers, guide, item):
        assert client.get("/api/production/guides", headers=worker_headers).status_code == 200
        assert client.get(f"/api/inventory/items/{item.id}", headers=worker_headers).status_code == 200

    def test_can_read_own_notifications(self, client, worker_headers):
        resp = client.get("/api/notifications", headers=worker_headers)
        assert resp.status_code == 200


# =============================================================================
# WAREHOUSE: STOCK MOVEMENTS, NO ITEM DELETE
# =============================================================================


class TestWarehouseAccess:

    def test_can_create_item(self, client, warehouse_headers):
        resp = client.post("/api/inventory/items", json={"name": "Washer", "unit": "pcs", "quantity": 5},
                           headers=warehouse_headers)
        assert resp.status_code == 201
        assert resp.get_json()["item"]["quantity"] == 5.0

    def test_can_add_stock(self, client, warehouse_headers, item):
        resp = client.post(f"/api/inventory/items/{item.id}/add", json={"quantity": 3}, headers=warehouse_headers)
        assert resp.status_code == 200
        assert resp.get_json()["item"]["quantity"] == 13.0

    def test_insufficient_stock_is_400(self, client, warehouse_headers, item):
        resp = client.post(f"/api/inventory/items/{item.id}/remove", json={"quantity": 50}, headers=warehouse_headers)
        assert resp.status_code == 400

    def test_can_adjust(self, client, warehouse_headers, item):
        resp = client.post(f"/api/inventory/items/{item.id}/adjust", json={"quantity": 1}, headers=warehouse_headers)
        assert resp.status_code == 200

    def test_cannot_delete_item(self, client, warehouse_headers, item):
        resp = client.delete(f"/api/inventory/items/{item.id}", headers=warehouse_headers)
        assert resp.status_code == 403


# =============================================================================
# ADMIN CAN PERFORM PRIVILEGED OPERATIONS: 200
# =============================================================================


class TestAdminAccess:
    """Admin role can perform privileged operations."""

    def test_can_list_users(self, client, admin_headers):
        resp = client.get("/api/users", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_list_roles(self, client, admin_headers):
        resp = client.get("/api/roles", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_list_permissions(self, client, admin_headers):
        resp = client.get("/api/roles/permissions", headers=admin_headers)
        assert resp.status_code == 200
        data = resp.get_json()
        assert len(data.get("permissions", [])) > 0

    def test_can_adjust(self, client, admin_headers, item):
        resp = client.post(f"/api/inventory/items/{item.id}/adjust", json={"quantity": 4, "reason": "Count"},
                           headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["transaction"]["type"] == "ADJUST"

    def test_can_view_audit_log(self, client, admin_headers):
        resp = client.get("/api/audit-logs", headers=admin_headers)
        assert resp.status_code == 200

    def test_can_view_dashboard(self, client, admin_headers):
        resp = client.get("/api/dashboard/stats", headers=admin_headers)
        assert resp.status_code == 200


class TestErrorMapping:

    def test_missing_item_is_404(self, client, manager_headers):
        resp = client.get("/api/inventory/items/999", headers=manager_headers)
        assert resp.status_code == 404

    def test_role_in_use_is_409(self, client, admin_headers, worker_user):
        roles = client.get("/api/roles", headers=admin_headers).get_json()["roles"]
        worker_role = next(r for r in roles if r["name"] == "Worker")
        resp = client.delete(f"/api/roles/{worker_role['id']}", headers=admin_headers)
        assert resp.status_code == 409


# =============================================================================
# PUBLIC ENDPOINTS: NO AUTH REQUIRED
# =============================================================================


class TestPublicEndpoints:
    """System health and version endpoints are public."""

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_version(self, client, db_session):
        resp = client.get("/version")
        assert resp.status_code == 200
