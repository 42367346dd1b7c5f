# Overview: Pytest coverage for tenant user administration and self-service profile edits.

import pytest

from tillbook.models import AuditLogEntry, Notification, SessionToken, User
from tillbook.permissions import Identity
from tillbook.services import user_service
from tillbook.services.session_service import create_session, validate_session
from tillbook.services.tenant_service import NotFoundError
from tillbook.validation import ConflictError, ValidationError

PASSWORD = "Password123!"


def new_user_payload(**kwargs):
    payload = {"email": "cashier@acme.test", "password": PASSWORD, "full_name": "New Cashier"}
    payload.update(kwargs)
    return payload


class TestCreateUser:

    def test_create_defaults_to_staff(self, db_session, tenant_a, admin_a):
        user = user_service.create_tenant_user(Identity.for_user(admin_a), new_user_payload())
        assert user.role == "staff"
        assert user.tenant_id == tenant_a.id
        assert user.created_by == admin_a.id

        notice = db_session.query(Notification).filter_by(entity_type="user", entity_id=user.id).one()
        assert notice.title == "New User Created"
        assert notice.user_id is None

    def test_payload_tenant_ignored(self, db_session, admin_a, tenant_b):
        user = user_service.create_tenant_user(Identity.for_user(admin_a), new_user_payload(tenant_id=tenant_b.id))
        assert user.tenant_id == admin_a.tenant_id

    @pytest.mark.parametrize("role", ["superadmin", "owner"])
    def test_unassignable_roles(self, db_session, admin_a, role):
        with pytest.raises(ValidationError):
            user_service.create_tenant_user(Identity.for_user(admin_a), new_user_payload(role=role))

    def test_duplicate_email_across_tenants(self, db_session, admin_a, admin_b):
        with pytest.raises(ConflictError):
            user_service.create_tenant_user(Identity.for_user(admin_a), new_user_payload(email=admin_b.email))

    def test_quota_enforced(self, db_session, tenant_a, admin_a, manager_a, staff_a):
        tenant_a.max_users = 3
        db_session.commit()
        with pytest.raises(ConflictError):
            user_service.create_tenant_user(Identity.for_user(admin_a), new_user_payload())

    def test_weak_password(self, db_session, admin_a):
        with pytest.raises(ValidationError):
            user_service.create_tenant_user(Identity.for_user(admin_a), new_user_payload(password="password"))


class TestUpdateUser:

    def test_role_change_revokes_sessions(self, db_session, admin_a, staff_a):
        _, token = create_session(staff_a)
        user = user_service.update_user(Identity.for_user(admin_a), staff_a.id, {"role": "manager"})
        assert user.role == "manager"
        assert validate_session(token) is None

    def test_rename_keeps_sessions(self, db_session, admin_a, staff_a):
        _, token = create_session(staff_a)
        user_service.update_user(Identity.for_user(admin_a), staff_a.id, {"full_name": "Senior Staff"})
        assert validate_session(token) is not None

    def test_deactivate_revokes_sessions(self, db_session, admin_a, staff_a):
        create_session(staff_a)
        create_session(staff_a)
        user = user_service.deactivate_user(Identity.for_user(admin_a), staff_a.id)
        assert user.is_active is False
        live = db_session.query(SessionToken).filter_by(user_id=staff_a.id, is_revoked=False).count()
        assert live == 0

    def test_reactivation_respects_quota(self, db_session, tenant_a, admin_a, manager_a, staff_a):
        identity = Identity.for_user(admin_a)
        user_service.deactivate_user(identity, staff_a.id)
        user_service.create_tenant_user(identity, new_user_payload())
        tenant_a.max_users = 3
        db_session.commit()
        with pytest.raises(ConflictError):
            user_service.update_user(identity, staff_a.id, {"is_active": True})

    @pytest.mark.parametrize("payload", [
        {"role": "staff"},
        {"is_active": False},
    ])
    def test_admin_cannot_demote_or_deactivate_self(self, db_session, admin_a, payload):
        with pytest.raises(ConflictError):
            user_service.update_user(Identity.for_user(admin_a), admin_a.id, payload)

    def test_unknown_field_rejected(self, db_session, admin_a, staff_a):
        with pytest.raises(ValidationError):
            user_service.update_user(Identity.for_user(admin_a), staff_a.id, {"password_hash": "x"})

    def test_foreign_user_not_found(self, db_session, admin_a, admin_b):
        with pytest.raises(NotFoundError):
            user_service.update_user(Identity.for_user(admin_a), admin_b.id, {"full_name": "Nope"})

    def test_superadmin_invisible_to_tenant_admin(self, db_session, admin_a, superadmin):
        with pytest.raises(NotFoundError):
            user_service.get_user(Identity.for_user(admin_a), superadmin.id)


class TestDeleteUser:

    def test_cannot_delete_self(self, db_session, admin_a):
        with pytest.raises(ConflictError):
            user_service.delete_user(Identity.for_user(admin_a), admin_a.id)

    def test_delete_is_audited(self, db_session, admin_a, staff_a):
        staff_id = staff_a.id
        user_service.delete_user(Identity.for_user(admin_a), staff_id)
        db_session.expire_all()
        assert db_session.get(User, staff_id) is None
        entry = db_session.query(AuditLogEntry).filter_by(
            entity_type="users", entity_id=staff_id, action="DELETE"
        ).one()
        assert entry.old_values["email"] == "staff@acme.test"


class TestProfile:

    def test_update_profile(self, db_session, staff_a):
        user = user_service.update_profile(staff_a, {"full_name": "Till Operator", "email": "Till@Acme.test"})
        assert user.full_name == "Till Operator"
        assert user.email == "till@acme.test"

    def test_profile_cannot_change_role(self, db_session, staff_a):
        with pytest.raises(ValidationError):
            user_service.update_profile(staff_a, {"role": "admin"})


class TestUserApi:

    def test_staff_cannot_list_users(self, client, staff_headers):
        resp = client.get("/api/users", headers=staff_headers)
        assert resp.status_code == 403

    def test_admin_lists_own_tenant(self, client, admin_headers, manager_a, staff_a, admin_b):
        resp = client.get("/api/users", headers=admin_headers)
        assert resp.status_code == 200
        emails = {u["email"] for u in resp.json["items"]}
        assert emails == {"admin@acme.test", "manager@acme.test", "staff@acme.test"}

    def test_create_user_route(self, client, admin_headers):
        resp = client.post("/api/users", json=new_user_payload(role="manager"), headers=admin_headers)
        assert resp.status_code == 201
        assert resp.json["role"] == "manager"
        assert "password_hash" not in resp.json

    def test_duplicate_email_409(self, client, admin_headers, staff_a):
        resp = client.post("/api/users", json=new_user_payload(email=staff_a.email), headers=admin_headers)
        assert resp.status_code == 409

    def test_deactivate_route_logs_user_out(self, client, admin_headers, staff_headers, staff_a):
        resp = client.post(f"/api/users/{staff_a.id}/deactivate", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["is_active"] is False

        resp = client.get("/api/users/profile", headers=staff_headers)
        assert resp.status_code == 401

    def test_profile_routes(self, client, staff_headers):
        resp = client.get("/api/users/profile", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["email"] == "staff@acme.test"

        resp = client.put("/api/users/profile", json={"full_name": "Renamed"}, headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["full_name"] == "Renamed"

    def test_delete_foreign_user_404(self, client, admin_headers, admin_b):
        resp = client.delete(f"/api/users/{admin_b.id}", headers=admin_headers)
        assert resp.status_code == 404
