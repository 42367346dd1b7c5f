"""
Pytest fixtures for Tillbook backend tests.

Provides the application on an in-memory database, a per-test table wipe,
two tenants with one user per tenant role, a platform superadmin, and
helpers for logging in through the API.
"""

import pytest

from tillbook import create_app
from tillbook.extensions import db
from tillbook.models import Customer, Product, Tenant
from tillbook.permissions import Role
from tillbook.services import audit_service, auth_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Core deletes on Table objects are not audited.
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()
        audit_service.clear_actor(db.session())

        yield db.session

        # Cleanup after test
        db.session.rollback()
        audit_service.clear_actor(db.session())


def make_tenant(db_session, name: str, email: str, **kwargs) -> Tenant:
    tenant = Tenant(name=name, email=email, max_users=kwargs.pop("max_users", 10), **kwargs)
    db_session.add(tenant)
    db_session.commit()
    return tenant


def make_user(tenant, email: str, role, full_name: str | None = None):
    return auth_service.create_user(
        email=email,
        password=PASSWORD,
        full_name=full_name or email.split("@")[0].replace(".", " ").title(),
        role=role,
        tenant_id=tenant.id if tenant is not None else None,
    )


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Create Tenant A (first tenant)."""
    return make_tenant(db_session, "Tenant A - Acme Traders", "owner@acme.test")


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Create Tenant B (second tenant)."""
    return make_tenant(db_session, "Tenant B - Beta Stores", "owner@beta.test")


@pytest.fixture(scope='function')
def admin_a(tenant_a):
    return make_user(tenant_a, "admin@acme.test", Role.ADMIN)


@pytest.fixture(scope='function')
def manager_a(tenant_a):
    return make_user(tenant_a, "manager@acme.test", Role.MANAGER)


@pytest.fixture(scope='function')
def staff_a(tenant_a):
    return make_user(tenant_a, "staff@acme.test", Role.STAFF)


@pytest.fixture(scope='function')
def admin_b(tenant_b):
    return make_user(tenant_b, "admin@beta.test", Role.ADMIN)


@pytest.fixture(scope='function')
def superadmin(db_session):
    return make_user(None, "root@tillbook.test", Role.SUPERADMIN, "Platform Root")


@pytest.fixture(scope='function')
def product_a(db_session, tenant_a):
    """Create Product in Tenant A."""
    product = Product(
        tenant_id=tenant_a.id,
        sku="PROD-A-001",
        name="Product A",
        category="General",
        price_cents=1000,
        reorder_point=5,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, tenant_b):
    """Create Product in Tenant B."""
    product = Product(
        tenant_id=tenant_b.id,
        sku="PROD-B-001",
        name="Product B",
        category="General",
        price_cents=2000,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer_a(db_session, tenant_a):
    customer = Customer(
        tenant_id=tenant_a.id,
        name="Himal Hardware",
        email="accounts@himal.test",
        payment_terms="Net 15",
    )
    db_session.add(customer)
    db_session.commit()
    return customer


def get_auth_token(client, email: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'email': email,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_a):
    return auth_headers(get_auth_token(client, admin_a.email))


@pytest.fixture(scope='function')
def manager_headers(client, manager_a):
    return auth_headers(get_auth_token(client, manager_a.email))


@pytest.fixture(scope='function')
def staff_headers(client, staff_a):
    return auth_headers(get_auth_token(client, staff_a.email))


@pytest.fixture(scope='function')
def admin_b_headers(client, admin_b):
    return auth_headers(get_auth_token(client, admin_b.email))


@pytest.fixture(scope='function')
def superadmin_headers(client, superadmin):
    return auth_headers(get_auth_token(client, superadmin.email))
