# Overview: Pytest coverage for invoice numbering, totals, stock effects and lifecycle.

from datetime import date

import pytest

from tillbook.models import AuditLogEntry, Invoice, Notification, Product, StockMovement
from tillbook.permissions import Identity
from tillbook.services import inventory_service, invoice_service, settings_service
from tillbook.services.tenant_service import NotFoundError
from tillbook.validation import ConflictError, ValidationError


@pytest.fixture
def stocked_product(db_session, manager_a, product_a):
    inventory_service.record_movement(
        Identity.for_user(manager_a), product_id=product_a.id, movement_type="purchase", quantity=20,
    )
    return product_a


def invoice_payload(customer, product, **kwargs):
    payload = {
        "customer_id": customer.id,
        "invoice_date": "2026-03-10",
        "items": [{"product_id": product.id, "quantity": 3, "discount_cents": 100}],
    }
    payload.update(kwargs)
    return payload


def movements_for(db_session, invoice):
    return (
        db_session.query(StockMovement)
        .filter_by(reference_type="invoice", reference_id=invoice.id)
        .order_by(StockMovement.id)
        .all()
    )


class TestTotals:

    def test_round_half_up(self):
        assert invoice_service._round_half_up(65_000, 10_000) == 7
        assert invoice_service._round_half_up(64_999, 10_000) == 6
        assert invoice_service._round_half_up(0, 10_000) == 0

    def test_term_days(self):
        assert invoice_service.term_days("Net 15") == 15
        assert invoice_service.term_days("net 45") == 45
        assert invoice_service.term_days("Due on receipt") == 30
        assert invoice_service.term_days(None) == 30

    def test_create_computes_totals(self, db_session, staff_a, customer_a, stocked_product):
        invoice = invoice_service.create_invoice(
            Identity.for_user(staff_a), invoice_payload(customer_a, stocked_product)
        )
        # 3 x 1000 = 3000, discount 100, taxable 2900, VAT 13% = 377
        assert invoice.subtotal_cents == 3000
        assert invoice.discount_cents == 100
        assert invoice.taxable_cents == 2900
        assert invoice.vat_cents == 377
        assert invoice.total_cents == 3277
        assert invoice.items[0].total_cents == 2900
        assert invoice.items[0].vat_rate_bps == 1300

    def test_tax_disabled_zeroes_vat(self, db_session, admin_a, customer_a, stocked_product):
        identity = Identity.for_user(admin_a)
        settings_service.update_section(identity, "tax", {"enable_tax": False})
        invoice = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        assert invoice.vat_cents == 0
        assert invoice.total_cents == invoice.taxable_cents == 2900
        assert invoice.items[0].vat_rate_bps == 0

    def test_discount_above_line_rejected(self, db_session, staff_a, customer_a, stocked_product):
        payload = invoice_payload(
            customer_a, stocked_product, items=[{"product_id": stocked_product.id, "quantity": 1, "discount_cents": 5000}]
        )
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(Identity.for_user(staff_a), payload)


class TestCreate:

    def test_numbering_and_snapshot(self, db_session, tenant_a, staff_a, customer_a, stocked_product):
        identity = Identity.for_user(staff_a)
        first = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        second = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))

        assert first.invoice_number == "INV-2026-27-0001"
        assert second.invoice_number == "INV-2026-27-0002"
        assert first.fiscal_year == "2026-27"
        assert first.status == "draft"
        assert first.customer_name == "Himal Hardware"
        assert first.tenant_id == tenant_a.id

        customer_a.name = "Renamed Hardware"
        db_session.commit()
        db_session.refresh(first)
        assert first.customer_name == "Himal Hardware"

    def test_numbering_is_per_tenant(self, db_session, staff_a, admin_b, customer_a, stocked_product, tenant_b):
        invoice_service.create_invoice(Identity.for_user(staff_a), invoice_payload(customer_a, stocked_product))
        assert invoice_service.next_invoice_number(tenant_b.id, "2026-27") == "INV-2026-27-0001"

    def test_due_date_from_payment_terms(self, db_session, staff_a, customer_a, stocked_product):
        invoice = invoice_service.create_invoice(
            Identity.for_user(staff_a), invoice_payload(customer_a, stocked_product)
        )
        # customer_a is on Net 15
        assert invoice.due_date == date(2026, 3, 25)
        assert invoice.payment_terms == "Net 15"

    def test_due_before_invoice_date_rejected(self, db_session, staff_a, customer_a, stocked_product):
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(
                Identity.for_user(staff_a),
                invoice_payload(customer_a, stocked_product, due_date="2026-03-01"),
            )

    def test_sale_movements_recorded(self, db_session, staff_a, customer_a, stocked_product):
        invoice = invoice_service.create_invoice(
            Identity.for_user(staff_a), invoice_payload(customer_a, stocked_product)
        )
        moves = movements_for(db_session, invoice)
        assert [(m.movement_type, m.quantity) for m in moves] == [("sale", -3)]
        db_session.refresh(stocked_product)
        assert stocked_product.stock == 17

    def test_created_notification_broadcast(self, db_session, tenant_a, staff_a, customer_a, stocked_product):
        invoice = invoice_service.create_invoice(
            Identity.for_user(staff_a), invoice_payload(customer_a, stocked_product)
        )
        notification = db_session.query(Notification).filter_by(entity_type="invoice", entity_id=invoice.id).one()
        assert notification.title == "Invoice Created"
        assert notification.user_id is None
        assert notification.tenant_id == tenant_a.id

    def test_invoice_is_audited(self, db_session, staff_a, customer_a, stocked_product):
        invoice = invoice_service.create_invoice(
            Identity.for_user(staff_a), invoice_payload(customer_a, stocked_product)
        )
        entry = db_session.query(AuditLogEntry).filter_by(entity_type="invoices", entity_id=invoice.id).one()
        assert entry.action == "INSERT"
        assert entry.new_values["invoice_number"] == invoice.invoice_number

    def test_insufficient_stock_creates_nothing(self, db_session, staff_a, customer_a, product_a):
        with pytest.raises(ConflictError):
            invoice_service.create_invoice(Identity.for_user(staff_a), invoice_payload(customer_a, product_a))
        db_session.rollback()
        assert db_session.query(Invoice).count() == 0
        assert db_session.query(StockMovement).count() == 0

    def test_foreign_product_not_found(self, db_session, staff_a, customer_a, product_b):
        with pytest.raises(NotFoundError):
            invoice_service.create_invoice(Identity.for_user(staff_a), invoice_payload(customer_a, product_b))

    def test_inactive_customer_conflict(self, db_session, staff_a, customer_a, stocked_product):
        customer_a.is_active = False
        db_session.commit()
        with pytest.raises(ConflictError):
            invoice_service.create_invoice(Identity.for_user(staff_a), invoice_payload(customer_a, stocked_product))


class TestDraftEdits:

    def test_replace_items_moves_stock(self, db_session, staff_a, customer_a, stocked_product):
        identity = Identity.for_user(staff_a)
        invoice = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))

        updated = invoice_service.update_draft(
            identity, invoice.id, {"items": [{"product_id": stocked_product.id, "quantity": 5}], "remarks": "Revised"}
        )
        assert updated.subtotal_cents == 5000
        assert updated.remarks == "Revised"
        assert [(m.movement_type, m.quantity) for m in movements_for(db_session, invoice)] == [
            ("sale", -3), ("return", 3), ("sale", -5),
        ]
        db_session.refresh(stocked_product)
        assert stocked_product.stock == 15

    def test_unknown_field_rejected(self, db_session, staff_a, customer_a, stocked_product):
        identity = Identity.for_user(staff_a)
        invoice = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        with pytest.raises(ValidationError):
            invoice_service.update_draft(identity, invoice.id, {"total_cents": 1})

    def test_header_text_cleaned(self, db_session, staff_a, customer_a, stocked_product):
        identity = Identity.for_user(staff_a)
        invoice = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        updated = invoice_service.update_draft(identity, invoice.id, {
            "payment_terms": "  Net 15  " + "x" * 200,
            "payment_method": "  cash ",
            "remarks": "   ",
        })
        assert updated.payment_terms.startswith("Net 15")
        assert len(updated.payment_terms) == 100
        assert updated.payment_method == "cash"
        assert updated.remarks is None

    @pytest.mark.parametrize("payload", [
        {"payment_terms": 30},
        {"payment_terms": "   "},
        {"payment_method": ["cash"]},
        {"remarks": {"text": "hi"}},
    ])
    def test_header_text_rejected(self, db_session, staff_a, customer_a, stocked_product, payload):
        identity = Identity.for_user(staff_a)
        invoice = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        with pytest.raises(ValidationError):
            invoice_service.update_draft(identity, invoice.id, payload)

    def test_only_drafts_editable(self, db_session, staff_a, customer_a, stocked_product):
        identity = Identity.for_user(staff_a)
        invoice = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        invoice_service.send_invoice(identity, invoice.id)
        with pytest.raises(ConflictError):
            invoice_service.update_draft(identity, invoice.id, {"remarks": "late"})


class TestLifecycle:

    @pytest.mark.parametrize("current,target,allowed", [
        ("draft", "sent", True),
        ("draft", "paid", False),
        ("sent", "overdue", True),
        ("overdue", "paid", True),
        ("paid", "cancelled", False),
        ("cancelled", "draft", False),
    ])
    def test_transition_table(self, current, target, allowed):
        assert invoice_service.can_transition(current, target) is allowed

    def test_send_then_pay(self, db_session, tenant_a, staff_a, customer_a, stocked_product):
        identity = Identity.for_user(staff_a)
        invoice = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        invoice_service.send_invoice(identity, invoice.id)
        paid = invoice_service.pay_invoice(identity, invoice.id, "cash")

        assert paid.status == "paid"
        assert paid.paid_at is not None
        assert paid.payment_method == "cash"
        assert db_session.query(Notification).filter_by(
            tenant_id=tenant_a.id, title="Payment Received"
        ).count() == 1

    def test_pay_draft_refused(self, db_session, staff_a, customer_a, stocked_product):
        identity = Identity.for_user(staff_a)
        invoice = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        with pytest.raises(ConflictError):
            invoice_service.pay_invoice(identity, invoice.id)

    def test_cancel_returns_stock(self, db_session, manager_a, customer_a, stocked_product):
        identity = Identity.for_user(manager_a)
        invoice = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        invoice_service.cancel_invoice(identity, invoice.id, "Customer changed mind")

        assert [(m.movement_type, m.quantity) for m in movements_for(db_session, invoice)] == [
            ("sale", -3), ("return", 3),
        ]
        db_session.refresh(stocked_product)
        assert stocked_product.stock == 20

        with pytest.raises(ConflictError):
            invoice_service.cancel_invoice(identity, invoice.id)
        with pytest.raises(ConflictError):
            invoice_service.record_print(identity, invoice.id)

    def test_print_count(self, db_session, staff_a, customer_a, stocked_product):
        identity = Identity.for_user(staff_a)
        invoice = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        invoice_service.record_print(identity, invoice.id)
        assert invoice_service.record_print(identity, invoice.id).print_count == 2

    def test_mark_overdue(self, db_session, tenant_a, staff_a, customer_a, stocked_product):
        identity = Identity.for_user(staff_a)
        due_soon = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        draft = invoice_service.create_invoice(identity, invoice_payload(customer_a, stocked_product))
        invoice_service.send_invoice(identity, due_soon.id)

        changed = invoice_service.mark_overdue(date(2026, 4, 1))
        assert [i.id for i in changed] == [due_soon.id]
        db_session.refresh(draft)
        assert draft.status == "draft"
        assert due_soon.status == "overdue"

        alert = db_session.query(Notification).filter_by(title="Invoice Overdue").one()
        assert "7 days overdue" in alert.message
        assert alert.tenant_id == tenant_a.id

        assert invoice_service.mark_overdue(date(2026, 4, 1)) == []


class TestInvoiceApi:

    def test_staff_create_and_list(self, client, staff_headers, customer_a, stocked_product):
        resp = client.post("/api/invoices", json=invoice_payload(customer_a, stocked_product), headers=staff_headers)
        assert resp.status_code == 201
        assert resp.json["invoice_number"] == "INV-2026-27-0001"
        assert len(resp.json["items"]) == 1

        listing = client.get("/api/invoices?status=draft", headers=staff_headers)
        assert listing.status_code == 200
        assert listing.json["pagination"]["total"] == 1

    def test_staff_cannot_cancel(self, client, staff_headers, manager_headers, customer_a, stocked_product):
        created = client.post("/api/invoices", json=invoice_payload(customer_a, stocked_product), headers=staff_headers)
        invoice_id = created.json["id"]

        resp = client.post(f"/api/invoices/{invoice_id}/cancel", headers=staff_headers)
        assert resp.status_code == 403
        resp = client.post(f"/api/invoices/{invoice_id}/cancel", json={"reason": "dup"}, headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "cancelled"

    def test_oversell_conflict_leaves_nothing(self, client, staff_headers, customer_a, product_a, db_session):
        resp = client.post("/api/invoices", json=invoice_payload(customer_a, product_a), headers=staff_headers)
        assert resp.status_code == 409
        assert db_session.query(Invoice).count() == 0
        assert db_session.get(Product, product_a.id).stock == 0

    def test_illegal_transition_conflict(self, client, staff_headers, customer_a, stocked_product):
        created = client.post("/api/invoices", json=invoice_payload(customer_a, stocked_product), headers=staff_headers)
        resp = client.post(f"/api/invoices/{created.json['id']}/pay", headers=staff_headers)
        assert resp.status_code == 409

    def test_other_tenant_cannot_see_invoice(self, client, staff_headers, admin_b_headers, customer_a, stocked_product):
        created = client.post("/api/invoices", json=invoice_payload(customer_a, stocked_product), headers=staff_headers)
        resp = client.get(f"/api/invoices/{created.json['id']}", headers=admin_b_headers)
        assert resp.status_code == 404
