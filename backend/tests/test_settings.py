# Overview: Pytest coverage for the tenant settings document.

import pytest

from tillbook.models import AuditLogEntry, TenantSettings
from tillbook.permissions import Identity
from tillbook.services import settings_service
from tillbook.validation import ValidationError


class TestSettingsDocument:

    def test_defaults_without_row(self, db_session, admin_a):
        document = settings_service.get_settings(Identity.for_user(admin_a))
        assert document == settings_service.default_settings()
        assert document["tax"]["default_vat_rate_bps"] == 1300
        assert document["pos"]["allow_negative_stock"] is False
        assert db_session.query(TenantSettings).count() == 0

    def test_first_save_creates_row(self, db_session, admin_a):
        document = settings_service.update_section(
            Identity.for_user(admin_a), "general", {"company_name": "  Acme Traders  ", "currency": "USD"}
        )
        assert document["general"]["company_name"] == "Acme Traders"
        assert document["general"]["currency"] == "USD"
        # untouched keys keep their defaults
        assert document["general"]["language"] == "en"

        row = db_session.query(TenantSettings).one()
        assert row.tenant_id == admin_a.tenant_id
        assert row.created_by == admin_a.id

    def test_second_save_merges(self, db_session, admin_a):
        identity = Identity.for_user(admin_a)
        settings_service.update_section(identity, "tax", {"default_vat_rate_bps": 500})
        document = settings_service.update_section(identity, "tax", {"enable_tax": False})
        assert document["tax"]["default_vat_rate_bps"] == 500
        assert document["tax"]["enable_tax"] is False
        assert settings_service.get_setting(admin_a.tenant_id, "tax", "enable_tax") is False

    def test_settings_are_per_tenant(self, db_session, admin_a, admin_b):
        settings_service.update_section(Identity.for_user(admin_a), "appearance", {"theme": "dark"})
        other = settings_service.get_settings(Identity.for_user(admin_b))
        assert other["appearance"]["theme"] == "light"

    def test_stale_stored_keys_dropped(self, db_session, tenant_a, admin_a):
        db_session.add(TenantSettings(
            tenant_id=tenant_a.id,
            settings={"pos": {"allow_negative_stock": True, "legacy_flag": 1}},
        ))
        db_session.commit()
        document = settings_service.get_settings(Identity.for_user(admin_a))
        assert document["pos"]["allow_negative_stock"] is True
        assert "legacy_flag" not in document["pos"]
        assert document["security"]["session_timeout_minutes"] == 30

    def test_updates_are_audited(self, db_session, admin_a):
        identity = Identity.for_user(admin_a)
        settings_service.update_section(identity, "pos", {"show_stock_in_pos": False})
        settings_service.update_section(identity, "pos", {"allow_negative_stock": True})

        logged = (
            db_session.query(AuditLogEntry)
            .filter_by(entity_type="tenant_settings")
            .order_by(AuditLogEntry.id)
            .all()
        )
        assert [e.action for e in logged] == ["INSERT", "UPDATE"]
        assert logged[1].old_values["settings"]["pos"]["allow_negative_stock"] is False
        assert logged[1].new_values["settings"]["pos"]["allow_negative_stock"] is True


class TestSettingsValidation:

    @pytest.mark.parametrize("section,values", [
        ("billing", {"currency": "USD"}),
        ("general", {"favourite_color": "red"}),
        ("general", {"currency": "GBP"}),
        ("general", {"company_name": "A"}),
        ("general", {"email": "not-an-email"}),
        ("general", {"pan_number": "1" * 21}),
        ("tax", {"default_vat_rate_bps": 10_001}),
        ("tax", {"default_vat_rate_bps": "13"}),
        ("tax", {"enable_tax": "yes"}),
        ("security", {"session_timeout_minutes": 1}),
        ("appearance", {"theme": "neon"}),
        ("pos", ["allow_negative_stock"]),
    ])
    def test_rejected(self, db_session, admin_a, section, values):
        with pytest.raises(ValidationError):
            settings_service.update_section(Identity.for_user(admin_a), section, values)
        assert db_session.query(TenantSettings).count() == 0


class TestSettingsApi:

    def test_any_role_reads(self, client, staff_headers):
        resp = client.get("/api/settings", headers=staff_headers)
        assert resp.status_code == 200
        assert set(resp.json) == {"general", "tax", "pos", "notifications", "appearance", "security"}

    def test_defaults_route(self, client, staff_headers):
        resp = client.get("/api/settings/defaults", headers=staff_headers)
        assert resp.status_code == 200
        assert resp.json["appearance"]["theme"] == "light"

    def test_manager_cannot_update(self, client, manager_headers):
        resp = client.put("/api/settings/pos", json={"allow_negative_stock": True}, headers=manager_headers)
        assert resp.status_code == 403
        assert resp.json["required_roles"] == ["admin"]

    def test_admin_updates_section(self, client, admin_headers):
        resp = client.put("/api/settings/pos", json={"allow_negative_stock": True}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["pos"]["allow_negative_stock"] is True

    def test_invalid_update_400(self, client, admin_headers):
        resp = client.put("/api/settings/tax", json={"default_vat_rate_bps": -1}, headers=admin_headers)
        assert resp.status_code == 400
