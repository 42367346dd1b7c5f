# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that cross-tenant access is denied for core resources.

These tests create two tenants with their own users and data, then verify:
1. A user of Tenant A cannot read or write data of Tenant B
2. A row of another tenant looks exactly like a missing row (404)
3. Client-supplied tenant_id values are ignored
4. Superadmin identities cannot use tenant-scoped paths
5. Sessions of suspended tenants are treated as unauthenticated
"""

import pytest

from tillbook.models import Customer, Product
from tillbook.permissions import Identity
from tillbook.services import customer_service, products_service
from tillbook.services.session_service import create_session, validate_session
from tillbook.services.tenant_service import (
    NotFoundError,
    TenantAccessError,
    get_scoped_or_404,
    require_tenant_id,
    scoped_query,
)


class TestTenantServiceHelpers:
    """Test tenant_service helper functions."""

    def test_scoped_lookup_own_tenant(self, db_session, admin_a, product_a):
        identity = Identity.for_user(admin_a)
        assert get_scoped_or_404(Product, product_a.id, identity).id == product_a.id

    def test_scoped_lookup_cross_tenant_is_not_found(self, db_session, admin_a, product_b):
        identity = Identity.for_user(admin_a)
        with pytest.raises(NotFoundError):
            get_scoped_or_404(Product, product_b.id, identity)

    def test_cross_tenant_and_missing_are_indistinguishable(self, db_session, admin_a, product_b):
        identity = Identity.for_user(admin_a)
        with pytest.raises(NotFoundError) as foreign:
            get_scoped_or_404(Product, product_b.id, identity)
        with pytest.raises(NotFoundError) as missing:
            get_scoped_or_404(Product, 999_999, identity)
        assert str(foreign.value) == str(missing.value)

    def test_scoped_query_filters_by_tenant(self, db_session, admin_a, admin_b, product_a, product_b):
        ids_a = [p.id for p in scoped_query(Product, Identity.for_user(admin_a))]
        ids_b = [p.id for p in scoped_query(Product, Identity.for_user(admin_b))]
        assert ids_a == [product_a.id]
        assert ids_b == [product_b.id]

    def test_superadmin_cannot_use_scoped_path(self, db_session, superadmin):
        identity = Identity.for_user(superadmin)
        with pytest.raises(TenantAccessError):
            require_tenant_id(identity)
        with pytest.raises(TenantAccessError):
            scoped_query(Product, identity)


class TestServiceIsolation:

    def test_update_foreign_product_not_found(self, db_session, admin_a, product_b):
        with pytest.raises(NotFoundError):
            products_service.update_product(Identity.for_user(admin_a), product_b.id, {"name": "Hijacked"})
        db_session.refresh(product_b)
        assert product_b.name == "Product B"

    def test_list_products_only_own_tenant(self, db_session, admin_b, product_a, product_b):
        result = products_service.list_products(Identity.for_user(admin_b))
        assert [p["id"] for p in result["items"]] == [product_b.id]

    def test_create_ignores_payload_tenant(self, db_session, admin_a, tenant_b):
        customer = customer_service.create_customer(
            Identity.for_user(admin_a), {"name": "Walk-in", "tenant_id": tenant_b.id}
        )
        assert customer.tenant_id == admin_a.tenant_id


class TestSessionTenantContext:
    """Test that sessions carry tenant context."""

    def test_session_captures_tenant_id(self, db_session, admin_a, tenant_a):
        session, _ = create_session(admin_a)
        assert session.tenant_id == tenant_a.id

    def test_validate_session_returns_identity(self, db_session, admin_a, tenant_a):
        _, token = create_session(admin_a)
        context = validate_session(token)
        assert context is not None
        assert context.identity == Identity(user_id=admin_a.id, tenant_id=tenant_a.id, role="admin")

    def test_suspended_tenant_session_rejected(self, db_session, admin_a, tenant_a):
        _, token = create_session(admin_a)
        tenant_a.status = "suspended"
        db_session.commit()
        assert validate_session(token) is None

    def test_trial_tenant_session_accepted(self, db_session, admin_a, tenant_a):
        tenant_a.status = "trial"
        db_session.commit()
        _, token = create_session(admin_a)
        assert validate_session(token) is not None

    def test_session_tenant_change_revokes(self, db_session, admin_a, tenant_b):
        session, token = create_session(admin_a)
        admin_a.tenant_id = tenant_b.id
        db_session.commit()
        assert validate_session(token) is None
        db_session.refresh(session)
        assert session.is_revoked is True

    def test_create_session_refused_for_suspended_tenant(self, db_session, admin_a, tenant_a):
        tenant_a.status = "expired"
        db_session.commit()
        with pytest.raises(ValueError):
            create_session(admin_a)


class TestApiIsolation:

    def test_get_foreign_product_404(self, client, admin_headers, product_b):
        resp = client.get(f"/api/products/{product_b.id}", headers=admin_headers)
        assert resp.status_code == 404

    def test_foreign_and_missing_same_response(self, client, admin_headers, product_b):
        foreign = client.get(f"/api/products/{product_b.id}", headers=admin_headers)
        missing = client.get("/api/products/999999", headers=admin_headers)
        assert foreign.status_code == missing.status_code == 404
        assert foreign.json == missing.json

    def test_update_foreign_customer_404(self, client, admin_b_headers, customer_a):
        resp = client.put(
            f"/api/customers/{customer_a.id}",
            json={"name": "Renamed"},
            headers=admin_b_headers,
        )
        assert resp.status_code == 404

    def test_delete_foreign_product_404(self, client, admin_b_headers, product_a, db_session):
        resp = client.delete(f"/api/products/{product_a.id}", headers=admin_b_headers)
        assert resp.status_code == 404
        assert db_session.get(Product, product_a.id).is_active is True

    def test_payload_tenant_id_ignored(self, client, admin_headers, admin_a, tenant_b, db_session):
        resp = client.post(
            "/api/customers",
            json={"name": "Sneaky", "tenant_id": tenant_b.id},
            headers=admin_headers,
        )
        assert resp.status_code == 201
        customer = db_session.get(Customer, resp.json["id"])
        assert customer.tenant_id == admin_a.tenant_id

    def test_movement_on_foreign_product_404(self, client, admin_headers, product_b):
        resp = client.post(
            "/api/inventory/movements",
            json={"product_id": product_b.id, "movement_type": "purchase", "quantity": 5},
            headers=admin_headers,
        )
        assert resp.status_code == 404

    def test_suspended_tenant_token_is_unauthenticated(self, client, admin_headers, tenant_a, db_session):
        tenant_a.status = "suspended"
        db_session.commit()
        resp = client.get("/api/products", headers=admin_headers)
        assert resp.status_code == 401

    def test_superadmin_denied_on_tenant_routes(self, client, superadmin_headers):
        resp = client.get("/api/products", headers=superadmin_headers)
        assert resp.status_code == 403
        assert resp.json["actual_role"] == "superadmin"
