"""
Authorization tests.

Verifies:
- Unauthenticated requests return 401
- Each role template is denied capabilities it does not carry (403)
- Denials are recorded as PERMISSION_DENIED security events
- Owners can perform privileged operations
"""

import pytest

from lpg.extensions import db
from lpg.models import SecurityEvent
from lpg.permissions import Capability
from lpg.permissions.roles import DEFAULT_ROLE_PERMISSIONS, has_capability


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/users"),
            ("POST", "/api/users"),
            ("GET", "/api/roles"),
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/brands"),
            ("GET", "/api/cylinders"),
            ("POST", "/api/cylinders"),
            ("GET", "/api/customers"),
            ("POST", "/api/sales"),
            ("GET", "/api/sales"),
            ("GET", "/api/sales/report"),
            ("GET", "/api/delivery/personnel"),
            ("POST", "/api/delivery/assign"),
            ("GET", "/api/safety/incidents"),
            ("GET", "/api/audit-logs"),
            ("GET", "/api/analytics/insights"),
            ("POST", "/api/feedback"),
            ("GET", "/api/feedback/admin/all"),
            ("GET", "/api/customers/due-refill"),
            ("GET", "/api/purchase-history/1/summary"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.get_json()["error"] == "Unauthorized"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/products", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# ROLE TEMPLATES
# =============================================================================


class TestRoleTemplates:

    def test_owner_has_everything(self):
        assert DEFAULT_ROLE_PERMISSIONS["owner"] == frozenset(Capability)

    def test_manager_cannot_administer(self):
        for cap in (Capability.MANAGE_USERS, Capability.MANAGE_ROLES, Capability.SYSTEM_ADMIN):
            assert not has_capability("manager", cap)
        assert has_capability("manager", Capability.VIEW_SALES_REPORTS)

    def test_unknown_inputs_denied(self):
        assert not has_capability("janitor", Capability.VIEW_PRODUCTS)
        assert not has_capability("owner", "FLY_TO_MOON")


# =============================================================================
# SALES ROLE DENIED (403)
# =============================================================================


class TestSalesRoleDenied:
    """Counter staff sell and serve customers but cannot manage the shop."""

    def test_cannot_list_users(self, client, sales_headers):
        resp = client.get("/api/users", headers=sales_headers)
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Forbidden"

    def test_cannot_create_product(self, client, sales_headers):
        resp = client.post("/api/products", headers=sales_headers, json={
            "name": "Rogue", "category": "Regulator", "price_cents": 1,
        })
        assert resp.status_code == 403

    def test_cannot_adjust_credit(self, client, sales_headers, customer):
        resp = client.put(f"/api/customers/{customer.id}/credit", headers=sales_headers,
                          json={"amount_cents": 1000})
        assert resp.status_code == 403

    def test_cannot_view_reports(self, client, sales_headers):
        assert client.get("/api/sales/report", headers=sales_headers).status_code == 403
        assert client.get("/api/analytics/insights", headers=sales_headers).status_code == 403

    def test_cannot_read_audit_log(self, client, sales_headers):
        assert client.get("/api/audit-logs", headers=sales_headers).status_code == 403

    def test_denial_is_logged(self, client, sales_headers, sales_user):
        client.get("/api/users", headers=sales_headers)
        event = db.session.query(SecurityEvent).filter_by(
            user_id=sales_user.id, event_type="PERMISSION_DENIED"
        ).one()
        assert event.success is False
        assert event.org_id == sales_user.org_id
        assert event.resource == "/api/users"


class TestOtherRolesDenied:

    def test_delivery_cannot_sell(self, client, delivery_headers, accessory):
        resp = client.post("/api/sales", headers=delivery_headers, json={
            "items": [{"product_id": accessory.id, "quantity": 1}],
        })
        assert resp.status_code == 403

    def test_delivery_cannot_plan_routes(self, client, delivery_headers):
        resp = client.post("/api/delivery/assign", headers=delivery_headers, json={})
        assert resp.status_code == 403

    def test_inventory_cannot_see_customers(self, client, inventory_headers):
        assert client.get("/api/customers", headers=inventory_headers).status_code == 403


# =============================================================================
# PRIVILEGED ACCESS (2xx)
# =============================================================================


class TestOwnerAllowed:

    def test_create_user_with_role(self, client, owner_headers):
        resp = client.post("/api/users", headers=owner_headers, json={
            "username": "ravi",
            "email": "ravi@example.com",
            "password": "Password123!",
            "roles": ["sales"],
        })
        assert resp.status_code == 201

    def test_list_roles(self, client, owner_headers):
        resp = client.get("/api/roles", headers=owner_headers)
        assert resp.status_code == 200
        names = {r["name"] for r in resp.get_json()["data"]}
        assert {"owner", "manager", "sales", "delivery", "inventory"} <= names

    def test_sales_role_can_sell(self, client, sales_headers, accessory):
        resp = client.post("/api/sales", headers=sales_headers, json={
            "items": [{"product_id": accessory.id, "quantity": 1}],
        })
        assert resp.status_code == 201
