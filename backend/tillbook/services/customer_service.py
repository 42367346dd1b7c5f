"""
Customer Service

MULTI-TENANT: customers are read and written only through the caller's
tenant scope. Deletion is soft (is_active=False) so issued invoices keep
their customer reference.
"""
from __future__ import annotations

from ..extensions import db
from ..models import Customer
from ..pagination import paginate
from ..permissions import Identity
from .concurrency import commit_or_conflict
from .tenant_service import get_scoped_or_404, require_tenant_id, scoped_query

CUSTOMER_MUTABLE_FIELDS = {
    "name", "email", "phone", "address", "pan_number", "vat_number",
    "contact_person", "credit_limit_cents", "payment_terms", "is_active",
}


def list_customers(
    identity: Identity,
    *,
    search: str | None = None,
    include_inactive: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    query = scoped_query(Customer, identity)
    if not include_inactive:
        query = query.filter(Customer.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(db.or_(
            Customer.name.ilike(like),
            Customer.email.ilike(like),
            Customer.phone.ilike(like),
        ))
    query = query.order_by(Customer.name.asc(), Customer.id.asc())
    return paginate(query, page, per_page)


def get_customer(identity: Identity, customer_id: int) -> Customer:
    return get_scoped_or_404(Customer, customer_id, identity)


def create_customer(identity: Identity, patch: dict) -> Customer:
    customer = Customer(
        tenant_id=require_tenant_id(identity),
        created_by=identity.user_id,
        updated_by=identity.user_id,
    )
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)
    db.session.add(customer)
    commit_or_conflict("Customer could not be saved")
    return customer


def update_customer(identity: Identity, customer_id: int, patch: dict) -> Customer:
    customer = get_scoped_or_404(Customer, customer_id, identity)
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)
    customer.updated_by = identity.user_id
    commit_or_conflict("Customer could not be saved")
    return customer


def delete_customer(identity: Identity, customer_id: int) -> None:
    customer = get_scoped_or_404(Customer, customer_id, identity)
    if customer.is_active:
        customer.is_active = False
        customer.updated_by = identity.user_id
    db.session.commit()
