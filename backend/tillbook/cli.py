# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/tillbook/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--tenant "Demo Business"]
#   Idempotent bootstrap: platform superadmin, demo tenant, one user per tenant role.
#
# Tenant management:
# - python -m flask tenants list
# - python -m flask tenants create --name "Acme" --email owner@acme.test [--max-users 10]
# - python -m flask tenants delete --tenant-id 3 --yes
#   Deletes the tenant and, by database cascade, all its data and audit trail.
#
# Users:
# - python -m flask users list [--tenant-id 1]
# - python -m flask users create --tenant-id 1 --email a@b.test --full-name "A B" --role admin
#
# Inventory:
# - python -m flask inventory reconcile [--tenant-id 1]
#   Rewrite cached product stock from the movement ledger (changes are audited).
#
# Invoices:
# - python -m flask invoices mark-overdue [--today 2026-10-18]
#   Move past-due `sent` invoices to `overdue` and notify their tenants.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions
#   Delete expired/revoked sessions older than 30 days.
# - python -m flask maintenance purge-notifications --days 30
# - python -m flask maintenance purge-login-attempts --days 7

import click
from datetime import date, timedelta
from flask.cli import with_appcontext

from .extensions import db
from .models import Tenant, User
from .permissions import Role
from .services import (
    auth_service,
    inventory_service,
    invoice_service,
    login_throttle_service,
    notification_service,
    platform_service,
    session_service,
)
from .services.auth_service import PasswordValidationError
from .time_utils import utcnow
from .validation import ConflictError, ValidationError


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init')
@click.option('--tenant', 'tenant_name', default='Demo Business', help='Demo tenant name')
@click.option('--tenant-email', default='owner@tillbook.local', help='Demo tenant email')
@with_appcontext
def init_system(tenant_name, tenant_email):
    """
    Initialize the platform.

    Creates (skipping what already exists):
    - Superadmin: superadmin@tillbook.local
    - Demo tenant
    - Users: admin@, manager@, staff@tillbook.local in the demo tenant
    """
    click.echo("Initializing Tillbook...")

    default_password = "Password123!"

    if db.session.query(User).filter_by(email="superadmin@tillbook.local").first():
        click.echo("WARN  Superadmin already exists, skipping...")
    else:
        auth_service.create_user(
            email="superadmin@tillbook.local",
            password=default_password,
            full_name="Platform Superadmin",
            role=Role.SUPERADMIN,
            tenant_id=None,
        )
        click.echo("PASS Created superadmin: superadmin@tillbook.local")

    tenant = db.session.query(Tenant).filter_by(email=tenant_email).first()
    if tenant:
        click.echo(f"WARN  Tenant '{tenant.name}' already exists (ID: {tenant.id})")
    else:
        tenant, _ = platform_service.create_tenant({"name": tenant_name, "email": tenant_email})
        click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")

    default_users = [
        ("admin@tillbook.local", "Demo Admin", Role.ADMIN),
        ("manager@tillbook.local", "Demo Manager", Role.MANAGER),
        ("staff@tillbook.local", "Demo Staff", Role.STAFF),
    ]
    for email, full_name, role in default_users:
        if db.session.query(User).filter_by(email=email).first():
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            continue
        try:
            auth_service.create_user(
                email=email,
                password=default_password,
                full_name=full_name,
                role=role,
                tenant_id=tenant.id,
            )
            click.echo(f"PASS Created user: {email} with role '{role.value}'")
        except (ValidationError, ConflictError) as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{email}': {str(e)}")

    platform_service.log_system_event("info", "System initialized", {"tenant_id": tenant.id})
    db.session.commit()

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    click.echo("   superadmin -> superadmin@tillbook.local / Password123!")
    click.echo("   admin      -> admin@tillbook.local      / Password123!")
    click.echo("   manager    -> manager@tillbook.local    / Password123!")
    click.echo("   staff      -> staff@tillbook.local      / Password123!")


@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('list')
@with_appcontext
def list_tenants_cli():
    tenants = db.session.query(Tenant).order_by(Tenant.id).all()
    if not tenants:
        click.echo("No tenants found.")
        return
    click.echo(f"\n{'ID':<5} {'Name':<30} {'Email':<32} {'Status':<10} {'Plan':<9} {'Max users':<9}")
    click.echo("-" * 100)
    for t in tenants:
        click.echo(f"{t.id:<5} {t.name:<30} {t.email:<32} {t.status:<10} {t.subscription_plan:<9} {t.max_users:<9}")
    click.echo(f"\nTotal: {len(tenants)} tenants")


@tenants_group.command('create')
@click.option('--name', required=True, help='Tenant name')
@click.option('--email', required=True, help='Tenant contact email (unique)')
@click.option('--plan', type=click.Choice(['basic', 'standard', 'premium']), default='basic')
@click.option('--max-users', type=int, default=5)
@with_appcontext
def create_tenant_cli(name, email, plan, max_users):
    try:
        tenant, _ = platform_service.create_tenant({
            "name": name,
            "email": email,
            "subscription_plan": plan,
            "max_users": max_users,
        })
    except (ValidationError, ConflictError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id})")


@tenants_group.command('delete')
@click.option('--tenant-id', type=int, required=True)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def delete_tenant_cli(tenant_id, yes):
    tenant = db.session.get(Tenant, tenant_id)
    if tenant is None:
        click.echo(f"FAIL Tenant {tenant_id} not found")
        raise SystemExit(1)
    if not yes and not click.confirm(
        f"Delete tenant '{tenant.name}' and ALL of its data (including its audit trail)?"
    ):
        click.echo("Aborted.")
        return
    result = platform_service.delete_tenant(tenant_id)
    click.echo(f"PASS Deleted tenant {result['name']} ({result['counts']})")


@click.group('users')
def users_group():
    """User management commands."""


@users_group.command('create')
@click.option('--tenant-id', type=int, help='Tenant ID (omit for superadmin)')
@click.option('--email', prompt=True, help='Email address')
@click.option('--full-name', prompt=True, help='Full name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([r.value for r in Role]), prompt=True, help='Role')
@with_appcontext
def create_user_cli(tenant_id, email, full_name, password, role):
    try:
        user = auth_service.create_user(
            email=email,
            password=password,
            full_name=full_name,
            role=role,
            tenant_id=tenant_id,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e}")
        raise SystemExit(1)
    except (ValidationError, ConflictError, LookupError) as e:
        click.echo(f"FAIL {e}")
        raise SystemExit(1)
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role}, tenant: {user.tenant_id})")


@users_group.command('list')
@click.option('--tenant-id', type=int, help='Filter by tenant ID')
@with_appcontext
def list_users_cli(tenant_id):
    query = db.session.query(User)
    if tenant_id is not None:
        query = query.filter(User.tenant_id == tenant_id)
    users = query.order_by(User.tenant_id, User.id).all()
    if not users:
        click.echo("No users found.")
        return
    click.echo(f"\n{'ID':<5} {'Email':<35} {'Role':<11} {'Tenant':<7} {'Active':<6}")
    click.echo("-" * 70)
    for u in users:
        click.echo(f"{u.id:<5} {u.email:<35} {u.role:<11} {str(u.tenant_id or '-'):<7} {'yes' if u.is_active else 'no':<6}")
    click.echo(f"\nTotal: {len(users)} users")


@click.group('inventory')
def inventory_group():
    """Stock ledger commands."""


@inventory_group.command('reconcile')
@click.option('--tenant-id', type=int, help='Only this tenant')
@with_appcontext
def reconcile_cli(tenant_id):
    changed = inventory_service.reconcile_all(tenant_id)
    for row in changed:
        click.echo(
            f"FIXED tenant {row['tenant_id']} product {row['product_id']}: "
            f"{row['previous_stock']} -> {row['stock']}"
        )
    click.echo(f"DONE {len(changed)} products reconciled")


@click.group('invoices')
def invoices_group():
    """Invoice lifecycle commands."""


@invoices_group.command('mark-overdue')
@click.option('--today', help='Reference date (YYYY-MM-DD), defaults to today (UTC)')
@click.option('--tenant-id', type=int, help='Only this tenant')
@with_appcontext
def mark_overdue_cli(today, tenant_id):
    reference = date.fromisoformat(today) if today else None
    changed = invoice_service.mark_overdue(reference, tenant_id=tenant_id)
    for invoice in changed:
        click.echo(f"OVERDUE {invoice.invoice_number} (tenant {invoice.tenant_id}, due {invoice.due_date})")
    click.echo(f"DONE {len(changed)} invoices marked overdue")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@with_appcontext
def cleanup_sessions_cli():
    deleted = session_service.cleanup_expired_sessions()
    click.echo(f"Deleted {deleted} expired/revoked sessions")


@maintenance_group.command('purge-notifications')
@click.option('--days', type=int, default=30, help='Purge notifications expired more than N days ago')
@with_appcontext
def purge_notifications_cli(days):
    deleted = notification_service.purge_expired(utcnow() - timedelta(days=days))
    click.echo(f"Deleted {deleted} expired notifications")


@maintenance_group.command('purge-login-attempts')
@click.option('--days', type=int, default=7, help='Delete login attempts older than N days')
@with_appcontext
def purge_login_attempts_cli(days):
    deleted = login_throttle_service.purge_attempts(utcnow() - timedelta(days=days))
    click.echo(f"Deleted {deleted} login attempts")


def register_commands(app):
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(invoices_group)
    app.cli.add_command(maintenance_group)
