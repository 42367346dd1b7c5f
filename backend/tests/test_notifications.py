# Overview: Pytest coverage for notification fan-out, read state and expiry.

from datetime import timedelta

import pytest

from tillbook.models import Notification
from tillbook.permissions import Identity
from tillbook.services import notification_service
from tillbook.services.authorization_service import InsufficientRoleError
from tillbook.services.tenant_service import NotFoundError
from tillbook.time_utils import utcnow
from tillbook.validation import ValidationError


def notify(tenant, user=None, **kwargs):
    values = {"type": "info", "category": "system", "title": "Heads up", "message": "Something happened"}
    values.update(kwargs)
    return notification_service.notify(tenant.id, user.id if user else None, **values)


class TestNotify:

    def test_targeted_and_broadcast_visibility(self, db_session, tenant_a, admin_a, staff_a):
        direct = notify(tenant_a, staff_a, title="For staff")
        broadcast = notify(tenant_a, None, title="For everyone")
        notify(tenant_a, admin_a, title="For admin")
        db_session.commit()

        staff_view = notification_service.list_notifications(Identity.for_user(staff_a))
        titles = {n["title"] for n in staff_view["items"]}
        assert titles == {"For staff", "For everyone"}
        assert staff_view["unread_count"] == 2
        assert direct.is_broadcast is False
        assert broadcast.is_broadcast is True

    def test_other_tenant_never_sees_broadcast(self, db_session, tenant_a, staff_a, admin_b):
        n = notify(tenant_a, None)
        db_session.commit()
        result = notification_service.list_notifications(Identity.for_user(admin_b))
        assert result["items"] == []
        with pytest.raises(NotFoundError):
            notification_service.get_notification(Identity.for_user(admin_b), n.id)

    def test_entity_ref_and_defaults(self, db_session, tenant_a):
        n = notify(tenant_a, entity_ref=("invoice", 42))
        assert n.entity_type == "invoice"
        assert n.entity_id == 42
        assert n.priority == "medium"
        assert n.is_read is False

    @pytest.mark.parametrize("field,value", [
        ("type", "panic"),
        ("category", "billing"),
        ("priority", "urgent"),
        ("title", "  "),
    ])
    def test_invalid_fields_rejected(self, db_session, tenant_a, field, value):
        with pytest.raises(ValidationError):
            notify(tenant_a, **{field: value})

    def test_templates(self, db_session, tenant_a):
        n = notification_service.notify_from_template(
            "low_stock",
            tenant_id=tenant_a.id,
            product_name="Rice 25kg",
            current_stock=3,
            reorder_point=5,
            product_id=7,
        )
        assert n.type == "warning"
        assert n.category == "inventory"
        assert n.priority == "high"
        assert "Rice 25kg" in n.message
        assert (n.entity_type, n.entity_id) == ("product", 7)

        paid = notification_service.notify_from_template(
            "payment_received",
            tenant_id=tenant_a.id,
            invoice_number="INV-2026-27-0001",
            amount_cents=1_234_550,
            invoice_id=1,
        )
        assert "12,345.50" in paid.message

    def test_unknown_template_rejected(self, db_session, tenant_a):
        with pytest.raises(ValidationError):
            notification_service.notify_from_template("weather", tenant_id=tenant_a.id)

    def test_maintenance_template_expires_at_schedule(self, db_session, tenant_a):
        when = utcnow() + timedelta(days=1)
        n = notification_service.notify_from_template("system_maintenance", tenant_id=tenant_a.id, scheduled_at=when)
        assert n.expires_at == when
        assert n.category == "system"

    def test_user_created_template_is_a_broadcast(self, db_session, tenant_a, admin_a):
        n = notification_service.notify_from_template(
            "user_created",
            tenant_id=tenant_a.id,
            created_by=admin_a.id,
            user_name="New Cashier",
            user_role="staff",
            new_user_id=99,
        )
        assert n.user_id is None
        assert (n.entity_type, n.entity_id) == ("user", 99)
        assert n.action_url == "/users/99"
        assert "New staff user New Cashier" in n.message


class TestReadState:

    def test_mark_as_read_is_idempotent(self, db_session, tenant_a, staff_a):
        n = notify(tenant_a, staff_a)
        db_session.commit()
        identity = Identity.for_user(staff_a)

        first = notification_service.mark_as_read(identity, n.id)
        first_read_at = first.read_at
        assert first.is_read is True
        assert first_read_at is not None

        second = notification_service.mark_as_read(identity, n.id)
        assert second.read_at == first_read_at
        assert notification_service.unread_count(identity) == 0

    def test_broadcast_read_flag_is_shared(self, db_session, tenant_a, staff_a, manager_a):
        n = notify(tenant_a, None)
        db_session.commit()
        notification_service.mark_as_read(Identity.for_user(staff_a), n.id)
        assert notification_service.unread_count(Identity.for_user(manager_a)) == 0

    def test_cannot_read_someone_elses(self, db_session, tenant_a, staff_a, manager_a):
        n = notify(tenant_a, manager_a)
        db_session.commit()
        with pytest.raises(NotFoundError):
            notification_service.mark_as_read(Identity.for_user(staff_a), n.id)

    def test_mark_all_as_read(self, db_session, tenant_a, staff_a, manager_a):
        notify(tenant_a, staff_a)
        notify(tenant_a, None)
        other = notify(tenant_a, manager_a)
        db_session.commit()

        assert notification_service.mark_all_as_read(Identity.for_user(staff_a)) == 2
        assert notification_service.mark_all_as_read(Identity.for_user(staff_a)) == 0
        db_session.refresh(other)
        assert other.is_read is False

    def test_list_filters(self, db_session, tenant_a, staff_a):
        read = notify(tenant_a, staff_a, type="warning", category="inventory")
        notify(tenant_a, staff_a, type="error", priority="critical")
        db_session.commit()
        identity = Identity.for_user(staff_a)
        notification_service.mark_as_read(identity, read.id)

        unread = notification_service.list_notifications(identity, is_read=False)
        assert [n["type"] for n in unread["items"]] == ["error"]
        critical = notification_service.list_notifications(identity, priority="critical")
        assert critical["count"] == 1
        inventory = notification_service.list_notifications(identity, category="inventory")
        assert [n["id"] for n in inventory["items"]] == [read.id]


class TestExpiry:

    def test_expired_hidden_from_list_but_retrievable(self, db_session, tenant_a, staff_a):
        expired = notify(tenant_a, staff_a, expires_at=utcnow() - timedelta(minutes=1))
        live = notify(tenant_a, staff_a, expires_at=utcnow() + timedelta(hours=1))
        db_session.commit()
        identity = Identity.for_user(staff_a)

        result = notification_service.list_notifications(identity)
        assert [n["id"] for n in result["items"]] == [live.id]
        assert result["unread_count"] == 1

        assert notification_service.get_notification(identity, expired.id).id == expired.id
        assert db_session.get(Notification, expired.id) is not None

        everything = notification_service.list_notifications(identity, include_expired=True)
        assert {n["id"] for n in everything["items"]} == {expired.id, live.id}

    def test_expiry_boundary_is_exclusive(self, db_session, tenant_a, staff_a):
        at = utcnow() + timedelta(hours=1)
        n = notify(tenant_a, staff_a, expires_at=at)
        db_session.commit()

        assert n.is_expired(now=at) is False
        assert n.is_expired(now=at + timedelta(seconds=1)) is True

        visible = notification_service._not_expired(db_session.query(Notification), at)
        assert [row.id for row in visible] == [n.id]
        hidden = notification_service._not_expired(db_session.query(Notification), at + timedelta(seconds=1))
        assert hidden.count() == 0

    def test_purge_expired(self, db_session, tenant_a, staff_a):
        old = notify(tenant_a, staff_a, expires_at=utcnow() - timedelta(days=40))
        recent = notify(tenant_a, staff_a, expires_at=utcnow() - timedelta(days=1))
        db_session.commit()
        old_id, recent_id = old.id, recent.id

        assert notification_service.purge_expired(utcnow() - timedelta(days=30)) == 1
        db_session.expire_all()
        assert db_session.get(Notification, old_id) is None
        assert db_session.get(Notification, recent_id) is not None


class TestDelete:

    def test_user_deletes_own(self, db_session, tenant_a, staff_a):
        n = notify(tenant_a, staff_a)
        db_session.commit()
        notification_service.delete_notification(Identity.for_user(staff_a), n.id)
        assert db_session.query(Notification).count() == 0

    def test_broadcast_delete_needs_manager(self, db_session, tenant_a, staff_a, manager_a):
        n = notify(tenant_a, None)
        db_session.commit()
        with pytest.raises(InsufficientRoleError):
            notification_service.delete_notification(Identity.for_user(staff_a), n.id)
        notification_service.delete_notification(Identity.for_user(manager_a), n.id)
        assert db_session.query(Notification).count() == 0


class TestNotificationApi:

    def test_unread_count_route(self, client, db_session, tenant_a, staff_a, staff_headers):
        notify(tenant_a, staff_a)
        notify(tenant_a, None)
        db_session.commit()
        resp = client.get("/api/notifications/unread-count", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json == {"unread_count": 2}

    def test_create_requires_manager(self, client, staff_headers):
        resp = client.post(
            "/api/notifications",
            json={"title": "Hi", "message": "There"},
            headers=staff_headers,
        )
        assert resp.status_code == 403
        assert resp.json["required_roles"] == ["manager", "admin"]

    def test_create_for_foreign_user_404(self, client, manager_headers, admin_b):
        resp = client.post(
            "/api/notifications",
            json={"title": "Hi", "message": "There", "user_id": admin_b.id},
            headers=manager_headers,
        )
        assert resp.status_code == 404

    def test_create_and_read(self, client, manager_headers, staff_a, staff_headers):
        resp = client.post(
            "/api/notifications",
            json={"title": "Stocktake", "message": "Friday 6pm", "user_id": staff_a.id, "priority": "high"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        notification_id = resp.json["id"]

        resp = client.put(f"/api/notifications/{notification_id}/read", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["is_read"] is True
        read_at = resp.json["read_at"]

        resp = client.put(f"/api/notifications/{notification_id}/read", headers=staff_headers)
        assert resp.json["read_at"] == read_at

    def test_staff_cannot_delete_broadcast(self, client, db_session, tenant_a, staff_headers):
        n = notify(tenant_a, None)
        db_session.commit()
        resp = client.delete(f"/api/notifications/{n.id}", headers=staff_headers)
        assert resp.status_code == 403
