# Overview: Tenant-scoped aggregate reports over invoices, invoice lines and products.

"""
Reports Service

MULTI-TENANT: every query is filtered to the caller's tenant before it is
aggregated. Amounts are integer cents.

Sales figures count active invoices that are not cancelled. Drafts are
included because their stock has already left the shelf.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..models import Invoice, InvoiceItem, Product
from ..permissions import Identity
from ..time_utils import parse_iso_date, to_iso_date
from ..validation import ValidationError
from .invoice_service import vat_for
from .tenant_service import require_tenant_id

PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "month": "%Y-%m",
    "year": "%Y",
}
DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def _parse_range(start: str | None, end: str | None) -> tuple[date | None, date | None]:
    try:
        start_date = parse_iso_date(start) if start else None
        end_date = parse_iso_date(end) if end else None
    except ValueError:
        raise ValidationError("start_date and end_date must be ISO-8601 dates")
    if start_date and end_date and end_date < start_date:
        raise ValidationError("end_date cannot be before start_date")
    return start_date, end_date


def _clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(int(limit), MAX_LIMIT))


def _sales_invoices(query, tenant_id: int, start_date, end_date):
    query = query.filter(
        Invoice.tenant_id == tenant_id,
        Invoice.is_active.is_(True),
        Invoice.status != "cancelled",
    )
    if start_date:
        query = query.filter(Invoice.invoice_date >= start_date)
    if end_date:
        query = query.filter(Invoice.invoice_date <= end_date)
    return query


def _range_dict(start_date, end_date) -> dict:
    return {"start_date": to_iso_date(start_date), "end_date": to_iso_date(end_date)}


def _avg(total: int, count: int) -> int:
    return (total + count // 2) // count if count else 0


def sales_summary(
    identity: Identity,
    *,
    start: str | None = None,
    end: str | None = None,
    group_by: str = "day",
) -> dict:
    """Invoice count, sales, VAT and average sale per day, month or year (newest first)."""
    tenant_id = require_tenant_id(identity)
    start_date, end_date = _parse_range(start, end)
    if group_by not in PERIOD_FORMATS:
        raise ValidationError("group_by must be day, month, or year")

    period_expr = func.strftime(PERIOD_FORMATS[group_by], Invoice.invoice_date)
    query = db.session.query(
        period_expr.label("period"),
        func.count(Invoice.id).label("invoice_count"),
        func.coalesce(func.sum(Invoice.total_cents), 0).label("total_sales_cents"),
        func.coalesce(func.sum(Invoice.vat_cents), 0).label("total_vat_cents"),
    )
    query = _sales_invoices(query, tenant_id, start_date, end_date)
    rows = query.group_by("period").order_by(period_expr.desc()).all()

    summary = [
        {
            "period": row.period,
            "invoice_count": int(row.invoice_count),
            "total_sales_cents": int(row.total_sales_cents),
            "total_vat_cents": int(row.total_vat_cents),
            "average_sale_cents": _avg(int(row.total_sales_cents), int(row.invoice_count)),
        }
        for row in rows
    ]
    return {
        "group_by": group_by,
        **_range_dict(start_date, end_date),
        "summary": summary,
        "totals": {
            "total_invoices": sum(r["invoice_count"] for r in summary),
            "total_sales_cents": sum(r["total_sales_cents"] for r in summary),
            "total_vat_cents": sum(r["total_vat_cents"] for r in summary),
        },
    }


def product_performance(
    identity: Identity,
    *,
    start: str | None = None,
    end: str | None = None,
    limit: int | None = None,
) -> dict:
    """Best-selling products by line revenue (before VAT)."""
    tenant_id = require_tenant_id(identity)
    start_date, end_date = _parse_range(start, end)

    revenue = func.coalesce(func.sum(InvoiceItem.total_cents), 0)
    query = db.session.query(
        InvoiceItem.product_id,
        InvoiceItem.product_name,
        func.coalesce(func.sum(InvoiceItem.quantity), 0).label("total_quantity"),
        revenue.label("total_revenue_cents"),
        func.count(func.distinct(InvoiceItem.invoice_id)).label("order_count"),
    ).join(Invoice, InvoiceItem.invoice_id == Invoice.id)
    query = _sales_invoices(query, tenant_id, start_date, end_date)
    rows = (
        query.group_by(InvoiceItem.product_id, InvoiceItem.product_name)
        .order_by(revenue.desc(), InvoiceItem.product_id)
        .limit(_clamp_limit(limit))
        .all()
    )

    return {
        **_range_dict(start_date, end_date),
        "items": [
            {
                "product_id": row.product_id,
                "product_name": row.product_name,
                "total_quantity": int(row.total_quantity),
                "total_revenue_cents": int(row.total_revenue_cents),
                "order_count": int(row.order_count),
                "average_price_cents": _avg(int(row.total_revenue_cents), int(row.total_quantity)),
            }
            for row in rows
        ],
    }


def customer_analysis(
    identity: Identity,
    *,
    start: str | None = None,
    end: str | None = None,
    limit: int | None = None,
) -> dict:
    """Top customers by total spent."""
    tenant_id = require_tenant_id(identity)
    start_date, end_date = _parse_range(start, end)

    spent = func.coalesce(func.sum(Invoice.total_cents), 0)
    query = db.session.query(
        Invoice.customer_id,
        Invoice.customer_name,
        func.count(Invoice.id).label("invoice_count"),
        spent.label("total_spent_cents"),
        func.max(Invoice.invoice_date).label("last_order_date"),
    )
    query = _sales_invoices(query, tenant_id, start_date, end_date)
    rows = (
        query.group_by(Invoice.customer_id, Invoice.customer_name)
        .order_by(spent.desc(), Invoice.customer_id)
        .limit(_clamp_limit(limit))
        .all()
    )

    return {
        **_range_dict(start_date, end_date),
        "items": [
            {
                "customer_id": row.customer_id,
                "customer_name": row.customer_name,
                "invoice_count": int(row.invoice_count),
                "total_spent_cents": int(row.total_spent_cents),
                "average_order_cents": _avg(int(row.total_spent_cents), int(row.invoice_count)),
                "last_order_date": to_iso_date(row.last_order_date),
            }
            for row in rows
        ],
    }


def tax_summary(identity: Identity, *, start: str | None = None, end: str | None = None) -> dict:
    """
    Invoice totals for the period plus a VAT breakdown by rate.

    Per-rate VAT is rounded per line, the same way invoice totals are, so
    the breakdown sums to the summary's vat_cents.
    """
    tenant_id = require_tenant_id(identity)
    start_date, end_date = _parse_range(start, end)

    query = db.session.query(
        func.count(Invoice.id).label("invoice_count"),
        func.coalesce(func.sum(Invoice.subtotal_cents), 0).label("subtotal_cents"),
        func.coalesce(func.sum(Invoice.discount_cents), 0).label("discount_cents"),
        func.coalesce(func.sum(Invoice.taxable_cents), 0).label("taxable_cents"),
        func.coalesce(func.sum(Invoice.vat_cents), 0).label("vat_cents"),
        func.coalesce(func.sum(Invoice.total_cents), 0).label("total_cents"),
    )
    totals = _sales_invoices(query, tenant_id, start_date, end_date).one()

    lines = db.session.query(InvoiceItem.vat_rate_bps, InvoiceItem.total_cents).join(
        Invoice, InvoiceItem.invoice_id == Invoice.id
    )
    lines = _sales_invoices(lines, tenant_id, start_date, end_date)

    by_rate = defaultdict(lambda: {"taxable_cents": 0, "vat_cents": 0, "line_count": 0})
    for rate_bps, amount in lines:
        bucket = by_rate[rate_bps]
        bucket["taxable_cents"] += amount
        bucket["vat_cents"] += vat_for(amount, rate_bps)
        bucket["line_count"] += 1

    return {
        **_range_dict(start_date, end_date),
        "summary": {key: int(getattr(totals, key)) for key in totals._fields},
        "vat_breakdown": [
            {"vat_rate_bps": rate, **by_rate[rate]} for rate in sorted(by_rate)
        ],
    }


def inventory_report(
    identity: Identity,
    *,
    category: str | None = None,
    low_stock_only: bool = False,
) -> dict:
    """Active products with margin and stock value at cost."""
    tenant_id = require_tenant_id(identity)
    query = db.session.query(Product).filter(
        Product.tenant_id == tenant_id,
        Product.is_active.is_(True),
    )
    if category:
        query = query.filter(Product.category == category)
    if low_stock_only:
        query = query.filter(Product.stock <= Product.reorder_point)
    products = query.order_by(Product.name, Product.id).all()

    rows = []
    for product in products:
        cost = product.cost_price_cents
        rows.append({
            "id": product.id,
            "name": product.name,
            "sku": product.sku,
            "category": product.category,
            "stock": product.stock,
            "reorder_point": product.reorder_point,
            "cost_price_cents": product.cost_price_cents,
            "price_cents": product.price_cents,
            "profit_margin_cents": product.price_cents - cost,
            "inventory_value_cents": max(product.stock, 0) * cost,
        })

    return {
        "products": rows,
        "summary": {
            "total_products": len(rows),
            "total_inventory_value_cents": sum(r["inventory_value_cents"] for r in rows),
            "low_stock_items": sum(1 for r in rows if r["stock"] <= r["reorder_point"]),
            "out_of_stock_items": sum(1 for r in rows if r["stock"] <= 0),
        },
    }
