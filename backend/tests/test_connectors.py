# Overview: Pytest coverage for tenant connector configuration.

import pytest

from tillbook.models import AuditLogEntry
from tillbook.permissions import Identity
from tillbook.services import connector_service
from tillbook.services.tenant_service import NotFoundError
from tillbook.validation import ConflictError, ValidationError


def sms_payload(**kwargs):
    payload = {"connector_type": "SMS_Gateway", "name": "Sparrow", "config": {"sender": "ACME"}}
    payload.update(kwargs)
    return payload


class TestConnectors:

    def test_create_normalizes(self, db_session, admin_a):
        connector = connector_service.create_connector(Identity.for_user(admin_a), sms_payload())
        assert connector.connector_type == "sms_gateway"
        assert connector.status == "pending"
        assert connector.config == {"sender": "ACME"}
        assert connector.tenant_id == admin_a.tenant_id

    def test_name_unique_per_tenant_and_type(self, db_session, admin_a, admin_b):
        connector_service.create_connector(Identity.for_user(admin_a), sms_payload())
        with pytest.raises(ConflictError):
            connector_service.create_connector(Identity.for_user(admin_a), sms_payload())
        # same name, different type or tenant is fine
        connector_service.create_connector(Identity.for_user(admin_a), sms_payload(connector_type="email"))
        connector_service.create_connector(Identity.for_user(admin_b), sms_payload())

    @pytest.mark.parametrize("payload", [
        {"name": "No type"},
        {"connector_type": "sms"},
        {"connector_type": "9lives", "name": "Bad"},
        {"connector_type": "sms", "name": "X", "config": ["a"]},
        {"connector_type": "sms", "name": "X", "status": "broken"},
        {"connector_type": "sms", "name": "X", "last_sync_at": "yesterday"},
        {"connector_type": "sms", "name": "X", "secret": "s3cr3t"},
    ])
    def test_invalid_payload(self, db_session, admin_a, payload):
        with pytest.raises(ValidationError):
            connector_service.create_connector(Identity.for_user(admin_a), payload)

    def test_update_records_sync(self, db_session, admin_a):
        identity = Identity.for_user(admin_a)
        connector = connector_service.create_connector(identity, sms_payload())
        updated = connector_service.update_connector(
            identity, connector.id, {"status": "active", "last_sync_at": "2026-10-01T08:30:00Z"}
        )
        assert updated.status == "active"
        assert updated.to_dict()["last_sync_at"] == "2026-10-01T08:30:00Z"

        entry = db_session.query(AuditLogEntry).filter_by(
            entity_type="tenant_connectors", entity_id=connector.id, action="UPDATE"
        ).one()
        assert entry.old_values["status"] == "pending"
        assert entry.new_values["status"] == "active"

    def test_rename_into_existing_conflicts(self, db_session, admin_a):
        identity = Identity.for_user(admin_a)
        connector_service.create_connector(identity, sms_payload(name="Primary"))
        second = connector_service.create_connector(identity, sms_payload(name="Backup"))
        with pytest.raises(ConflictError):
            connector_service.update_connector(identity, second.id, {"name": "Primary"})

    def test_foreign_connector_not_found(self, db_session, admin_a, admin_b):
        connector = connector_service.create_connector(Identity.for_user(admin_b), sms_payload())
        with pytest.raises(NotFoundError):
            connector_service.delete_connector(Identity.for_user(admin_a), connector.id)

    def test_list_filters(self, db_session, admin_a):
        identity = Identity.for_user(admin_a)
        connector_service.create_connector(identity, sms_payload())
        connector_service.create_connector(identity, sms_payload(connector_type="email", name="SES"))
        result = connector_service.list_connectors(identity, connector_type="email")
        assert [c["name"] for c in result["items"]] == ["SES"]


class TestConnectorApi:

    def test_manager_reads_but_cannot_create(self, client, manager_headers):
        assert client.get("/api/connectors", headers=manager_headers).status_code == 200
        resp = client.post("/api/connectors", json=sms_payload(), headers=manager_headers)
        assert resp.status_code == 403

    def test_staff_cannot_read(self, client, staff_headers):
        assert client.get("/api/connectors", headers=staff_headers).status_code == 403

    def test_admin_crud(self, client, admin_headers):
        resp = client.post("/api/connectors", json=sms_payload(), headers=admin_headers)
        assert resp.status_code == 201
        connector_id = resp.json["id"]

        resp = client.post("/api/connectors", json=sms_payload(), headers=admin_headers)
        assert resp.status_code == 409

        resp = client.put(f"/api/connectors/{connector_id}", json={"description": "Bulk SMS"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["description"] == "Bulk SMS"

        resp = client.delete(f"/api/connectors/{connector_id}", headers=admin_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/connectors/{connector_id}", headers=admin_headers).status_code == 404


class TestConnectorCheck:

    def test_type_catalog(self):
        types = {t["name"]: t for t in connector_service.list_connector_types()}
        assert set(types) == {"quickbooks", "shopify", "stripe", "woocommerce", "api_webhook"}
        assert types["shopify"]["required_config"] == ["shop_domain", "access_token"]

    def test_missing_config_marks_error(self, db_session, admin_a):
        identity = Identity.for_user(admin_a)
        connector = connector_service.create_connector(
            identity, {"connector_type": "shopify", "name": "Web store", "config": {"shop_domain": "acme.example"}}
        )
        result = connector_service.check_connector(identity, connector.id)
        assert result["success"] is False
        assert result["missing"] == ["access_token"]
        db_session.refresh(connector)
        assert connector.status == "error"
        assert "access_token" in connector.last_error

    def test_complete_config_activates(self, db_session, admin_a):
        identity = Identity.for_user(admin_a)
        connector = connector_service.create_connector(
            identity, {"connector_type": "api_webhook", "name": "ERP", "config": {"base_url": " "}}
        )
        assert connector_service.check_connector(identity, connector.id)["success"] is False

        connector_service.update_connector(identity, connector.id, {"config": {"base_url": "https://erp.example"}})
        result = connector_service.check_connector(identity, connector.id)
        assert result["success"] is True
        assert result["connector"]["status"] == "active"
        assert result["connector"]["last_error"] is None

    def test_inactive_connector_stays_inactive(self, db_session, admin_a):
        identity = Identity.for_user(admin_a)
        connector = connector_service.create_connector(identity, sms_payload(status="inactive"))
        result = connector_service.check_connector(identity, connector.id)
        assert result["success"] is True
        assert result["connector"]["status"] == "inactive"

    def test_check_is_audited(self, db_session, admin_a):
        identity = Identity.for_user(admin_a)
        connector = connector_service.create_connector(identity, {"connector_type": "stripe", "name": "Payments"})
        connector_service.check_connector(identity, connector.id)
        entry = db_session.query(AuditLogEntry).filter_by(
            entity_type="tenant_connectors", entity_id=connector.id, action="UPDATE"
        ).one()
        assert entry.new_values["status"] == "error"

    def test_routes(self, client, admin_headers, manager_headers):
        resp = client.get("/api/connectors/types", headers=manager_headers)
        assert resp.status_code == 200
        assert len(resp.json) == 5

        connector_id = client.post("/api/connectors", json=sms_payload(), headers=admin_headers).json["id"]
        assert client.post(f"/api/connectors/{connector_id}/test", headers=manager_headers).status_code == 403
        resp = client.post(f"/api/connectors/{connector_id}/test", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["success"] is True
