# Overview: Invoices: numbering, totals, stock effects, lifecycle transitions, overdue sweep.

"""
Invoice Service

MULTI-TENANT: invoices, their customer and every line product are looked
up in the caller's tenant only.

NUMBERING: INV-<fiscal year>-<NNNN>, sequential per tenant and fiscal
year (e.g. INV-2026-27-0001). Uniqueness is also enforced by
UNIQUE(tenant_id, invoice_number).

MONEY: integer cents, rates in basis points. Per line:
    gross   = quantity * unit_price_cents
    taxable = gross - discount_cents
    vat     = round_half_up(taxable * vat_rate_bps / 10000)
Invoice totals are sums of the line values; total = taxable + vat.
With tax.enable_tax off, vat is 0 on every line.

STOCK: creating an invoice appends one `sale` movement per line; cancelling
appends compensating `return` movements. Replacing the lines of a draft
does both.

LIFECYCLE:
    draft -> sent -> paid
    sent -> overdue -> paid
    draft | sent | overdue -> cancelled
paid and cancelled are terminal.
"""

from __future__ import annotations

import logging
import re
from datetime import date, timedelta

from ..extensions import db
from ..models import Customer, Invoice, InvoiceItem, Product
from ..pagination import paginate
from ..permissions import Identity
from ..time_utils import fiscal_year_label, parse_iso_date, utcnow
from ..validation import ConflictError, ValidationError
from . import inventory_service, notification_service, settings_service
from .concurrency import commit_or_conflict, run_with_retry
from .tenant_service import get_scoped_or_404, require_tenant_id, scoped_query

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "draft": frozenset({"sent", "cancelled"}),
    "sent": frozenset({"paid", "overdue", "cancelled"}),
    "overdue": frozenset({"paid", "cancelled"}),
    "paid": frozenset(),
    "cancelled": frozenset(),
}

HEADER_FIELDS = {"due_date", "payment_terms", "payment_method", "remarks"}
HEADER_TEXT_LIMITS = {"payment_terms": 100, "payment_method": 100, "remarks": None}

NET_TERMS_RE = re.compile(r"^\s*net\s+(\d{1,3})\s*$", re.IGNORECASE)
DEFAULT_TERM_DAYS = 30


def _round_half_up(numerator: int, denominator: int) -> int:
    return (2 * numerator + denominator) // (2 * denominator)


def vat_for(amount_cents: int, rate_bps: int) -> int:
    """VAT on one line amount, rounded half up to the cent."""
    return _round_half_up(amount_cents * rate_bps, 10_000)


def _header_text(payload: dict, key: str) -> str | None:
    """Stripped, length-capped text for an invoice header field; None when blank."""
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    value = value.strip()
    limit = HEADER_TEXT_LIMITS[key]
    if limit is not None:
        value = value[:limit]
    return value or None


def term_days(payment_terms: str | None) -> int:
    match = NET_TERMS_RE.match(payment_terms or "")
    return int(match.group(1)) if match else DEFAULT_TERM_DAYS


def next_invoice_number(tenant_id: int, fiscal_year: str) -> str:
    prefix = f"INV-{fiscal_year}-"
    numbers = (
        db.session.query(Invoice.invoice_number)
        .filter(Invoice.tenant_id == tenant_id, Invoice.fiscal_year == fiscal_year)
        .all()
    )
    last = 0
    for (number,) in numbers:
        if number.startswith(prefix):
            suffix = number[len(prefix):]
            if suffix.isdigit():
                last = max(last, int(suffix))
    return f"{prefix}{last + 1:04d}"


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


# -- Lines ---------------------------------------------------------------------

def _int_field(line: dict, key: str, default=None, *, minimum: int = 0) -> int:
    value = line.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"items.{key} must be an integer")
    if value < minimum:
        raise ValidationError(f"items.{key} must be >= {minimum}")
    return value


def _build_items(identity: Identity, items, *, tax_enabled: bool) -> list[InvoiceItem]:
    if not isinstance(items, list) or not items:
        raise ValidationError("At least one invoice item is required")

    built = []
    for line in items:
        if not isinstance(line, dict):
            raise ValidationError("Each item must be an object")
        product_id = _int_field(line, "product_id", minimum=1)
        product = get_scoped_or_404(Product, product_id, identity)
        if not product.is_active:
            raise ConflictError(f"Product {product.name} is inactive")

        quantity = _int_field(line, "quantity", minimum=1)
        unit_price = _int_field(line, "unit_price_cents", product.price_cents)
        discount = _int_field(line, "discount_cents", 0)
        vat_rate = _int_field(line, "vat_rate_bps", product.vat_rate_bps)
        if vat_rate > 10_000:
            raise ValidationError("items.vat_rate_bps must be <= 10000")

        gross = quantity * unit_price
        if discount > gross:
            raise ValidationError("items.discount_cents cannot exceed the line amount")

        built.append(InvoiceItem(
            product_id=product.id,
            product_name=product.name,
            hsn_code=product.hsn_code,
            quantity=quantity,
            unit=product.unit,
            unit_price_cents=unit_price,
            discount_cents=discount,
            vat_rate_bps=vat_rate if tax_enabled else 0,
            total_cents=gross - discount,
        ))
    return built


def compute_totals(items: list[InvoiceItem]) -> dict:
    subtotal = sum(i.quantity * i.unit_price_cents for i in items)
    discount = sum(i.discount_cents for i in items)
    vat = sum(vat_for(i.total_cents, i.vat_rate_bps) for i in items)
    taxable = subtotal - discount
    return {
        "subtotal_cents": subtotal,
        "discount_cents": discount,
        "taxable_cents": taxable,
        "vat_cents": vat,
        "total_cents": taxable + vat,
    }


def _apply_totals(invoice: Invoice, items: list[InvoiceItem]) -> None:
    for key, value in compute_totals(items).items():
        setattr(invoice, key, value)


def _move_stock(invoice: Invoice, items, movement_type: str, reason: str, created_by: int | None) -> None:
    sign = -1 if movement_type == "sale" else 1
    for item in items:
        product = db.session.get(Product, item.product_id)
        inventory_service.append_movement(
            product,
            movement_type,
            sign * item.quantity,
            reference=("invoice", invoice.id),
            reason=reason,
            created_by=created_by,
        )


# -- Queries -------------------------------------------------------------------

def list_invoices(
    identity: Identity,
    *,
    status: str | None = None,
    customer_id: int | None = None,
    search: str | None = None,
    start_date: str | None = None,
    end_date: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = scoped_query(Invoice, identity).filter(Invoice.is_active.is_(True))
    if status and status != "all":
        query = query.filter(Invoice.status == status)
    if customer_id is not None:
        query = query.filter(Invoice.customer_id == customer_id)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Invoice.invoice_number.ilike(like),
            Invoice.customer_name.ilike(like),
        ))
    if start_date:
        query = query.filter(Invoice.invoice_date >= parse_iso_date(start_date))
    if end_date:
        query = query.filter(Invoice.invoice_date <= parse_iso_date(end_date))
    query = query.order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
    return paginate(query, page, per_page)


def get_invoice(identity: Identity, invoice_id: int, *, for_update: bool = False) -> Invoice:
    return get_scoped_or_404(Invoice, invoice_id, identity, for_update=for_update)


# -- Create / update -----------------------------------------------------------

def _create_invoice(identity: Identity, payload: dict) -> Invoice:
    """
    Create a draft invoice with its lines, stock movements and a
    tenant-wide invoice-created notification, in one transaction.
    """
    tenant_id = require_tenant_id(identity)
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    customer_id = payload.get("customer_id")
    if not isinstance(customer_id, int) or isinstance(customer_id, bool):
        raise ValidationError("customer_id is required")
    customer = get_scoped_or_404(Customer, customer_id, identity)
    if not customer.is_active:
        raise ConflictError("Customer is inactive")

    try:
        invoice_date = parse_iso_date(payload.get("invoice_date")) or utcnow().date()
        due_date = parse_iso_date(payload.get("due_date"))
    except ValueError:
        raise ValidationError("invoice_date and due_date must be ISO-8601 dates")

    payment_terms = _header_text(payload, "payment_terms") or (customer.payment_terms or "Net 30").strip()
    if due_date is None:
        due_date = invoice_date + timedelta(days=term_days(payment_terms))
    if due_date < invoice_date:
        raise ValidationError("due_date cannot be before invoice_date")

    tax_enabled = settings_service.get_setting(tenant_id, "tax", "enable_tax")
    items = _build_items(identity, payload.get("items"), tax_enabled=tax_enabled)

    fiscal_year = fiscal_year_label(invoice_date)
    invoice = Invoice(
        tenant_id=tenant_id,
        invoice_number=next_invoice_number(tenant_id, fiscal_year),
        fiscal_year=fiscal_year,
        customer_id=customer.id,
        customer_name=customer.name,
        customer_email=customer.email,
        customer_phone=customer.phone,
        customer_address=customer.address,
        customer_pan=customer.pan_number,
        invoice_date=invoice_date,
        due_date=due_date,
        status="draft",
        payment_terms=payment_terms[:100],
        payment_method=_header_text(payload, "payment_method"),
        remarks=_header_text(payload, "remarks"),
        print_count=0,
        created_by=identity.user_id,
        updated_by=identity.user_id,
    )
    invoice.items = items
    _apply_totals(invoice, items)

    db.session.add(invoice)
    db.session.flush()

    _move_stock(invoice, items, "sale", f"Invoice {invoice.invoice_number}", identity.user_id)

    notification_service.notify_from_template(
        "invoice_created",
        tenant_id=tenant_id,
        created_by=identity.user_id,
        invoice_number=invoice.invoice_number,
        customer_name=invoice.customer_name,
        invoice_id=invoice.id,
    )

    commit_or_conflict("Invoice number already used; retry")
    logger.info("Invoice created: %s (tenant %s)", invoice.invoice_number, tenant_id)
    return invoice


def create_invoice(identity: Identity, payload: dict) -> Invoice:
    def _op():
        return _create_invoice(identity, payload)

    return run_with_retry(_op)


def update_draft(identity: Identity, invoice_id: int, payload: dict) -> Invoice:
    """
    Edit a draft. Header fields in HEADER_FIELDS may change; `items`
    replaces every line (old lines are returned to stock, new lines sold).
    """
    invoice = get_invoice(identity, invoice_id, for_update=True)
    if invoice.status != "draft":
        raise ConflictError(f"Only draft invoices can be edited (status: {invoice.status})")
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    unknown = sorted(set(payload) - HEADER_FIELDS - {"items"})
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(unknown)}")

    if "due_date" in payload:
        try:
            due_date = parse_iso_date(payload["due_date"])
        except ValueError:
            raise ValidationError("due_date must be an ISO-8601 date")
        if due_date is None or due_date < invoice.invoice_date:
            raise ValidationError("due_date cannot be before invoice_date")
        invoice.due_date = due_date
    if "payment_terms" in payload:
        payment_terms = _header_text(payload, "payment_terms")
        if payment_terms is None:
            raise ValidationError("payment_terms cannot be empty")
        invoice.payment_terms = payment_terms
    for key in ("payment_method", "remarks"):
        if key in payload:
            setattr(invoice, key, _header_text(payload, key))

    if "items" in payload:
        tax_enabled = settings_service.get_setting(invoice.tenant_id, "tax", "enable_tax")
        new_items = _build_items(identity, payload["items"], tax_enabled=tax_enabled)
        reason = f"Invoice {invoice.invoice_number} edited"
        _move_stock(invoice, list(invoice.items), "return", reason, identity.user_id)
        invoice.items = new_items
        _apply_totals(invoice, new_items)
        db.session.flush()
        _move_stock(invoice, new_items, "sale", reason, identity.user_id)

    invoice.updated_by = identity.user_id
    commit_or_conflict("Invoice could not be saved")
    return invoice


# -- Lifecycle -----------------------------------------------------------------

def _transition(invoice: Invoice, target: str, identity_user_id: int | None) -> None:
    if not can_transition(invoice.status, target):
        raise ConflictError(f"Cannot change invoice from {invoice.status} to {target}")
    invoice.status = target
    invoice.updated_by = identity_user_id


def send_invoice(identity: Identity, invoice_id: int) -> Invoice:
    invoice = get_invoice(identity, invoice_id, for_update=True)
    _transition(invoice, "sent", identity.user_id)
    db.session.commit()
    return invoice


def pay_invoice(identity: Identity, invoice_id: int, payment_method: str | None = None) -> Invoice:
    invoice = get_invoice(identity, invoice_id, for_update=True)
    _transition(invoice, "paid", identity.user_id)
    invoice.paid_at = utcnow()
    if payment_method:
        invoice.payment_method = str(payment_method)[:100]

    notification_service.notify_from_template(
        "payment_received",
        tenant_id=invoice.tenant_id,
        created_by=identity.user_id,
        invoice_number=invoice.invoice_number,
        amount_cents=invoice.total_cents,
        invoice_id=invoice.id,
    )
    db.session.commit()
    logger.info("Invoice paid: %s", invoice.invoice_number)
    return invoice


def cancel_invoice(identity: Identity, invoice_id: int, reason: str | None = None) -> Invoice:
    """Cancel and return every line to stock."""
    invoice = get_invoice(identity, invoice_id, for_update=True)
    _transition(invoice, "cancelled", identity.user_id)
    note = f"Invoice {invoice.invoice_number} cancelled"
    if reason:
        note = f"{note}: {reason}"
    _move_stock(invoice, list(invoice.items), "return", note, identity.user_id)
    db.session.commit()
    logger.info("Invoice cancelled: %s", invoice.invoice_number)
    return invoice


def record_print(identity: Identity, invoice_id: int) -> Invoice:
    invoice = get_invoice(identity, invoice_id, for_update=True)
    if invoice.status == "cancelled":
        raise ConflictError("Cancelled invoices cannot be printed")
    invoice.print_count = (invoice.print_count or 0) + 1
    db.session.commit()
    return invoice


def mark_overdue(today: date | None = None, tenant_id: int | None = None) -> list[Invoice]:
    """
    Sweep: every `sent` invoice past its due date becomes `overdue`, with a
    tenant-wide overdue notification. System work (CLI); no acting user.
    """
    today = today or utcnow().date()
    query = db.session.query(Invoice).filter(
        Invoice.status == "sent",
        Invoice.is_active.is_(True),
        Invoice.due_date < today,
    )
    if tenant_id is not None:
        query = query.filter(Invoice.tenant_id == tenant_id)

    changed = query.order_by(Invoice.tenant_id, Invoice.id).all()
    for invoice in changed:
        invoice.status = "overdue"
        notification_service.notify_from_template(
            "invoice_overdue",
            tenant_id=invoice.tenant_id,
            invoice_number=invoice.invoice_number,
            customer_name=invoice.customer_name,
            days_overdue=(today - invoice.due_date).days,
            invoice_id=invoice.id,
        )
    db.session.commit()
    if changed:
        logger.info("Marked %d invoices overdue", len(changed))
    return changed
