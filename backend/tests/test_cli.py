# Overview: Pytest coverage for the Flask CLI command groups.

from tillbook.models import Product, SystemLogEntry, Tenant, User


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=["system", "init", "--tenant", "Demo Shop"])
    assert result.exit_code == 0, result.output
    assert "PASS Created superadmin" in result.output
    assert db_session.query(Tenant).filter_by(name="Demo Shop").count() == 1
    assert db_session.query(User).count() == 4

    again = runner.invoke(args=["system", "init", "--tenant", "Demo Shop"])
    assert again.exit_code == 0
    assert "already exists" in again.output
    assert db_session.query(User).count() == 4
    assert db_session.query(SystemLogEntry).filter_by(message="System initialized").count() == 2


def test_reconcile_command(app, db_session, product_a):
    product_a.stock = 7
    db_session.commit()

    result = app.test_cli_runner().invoke(args=["inventory", "reconcile"])
    assert result.exit_code == 0, result.output
    assert "7 -> 0" in result.output
    db_session.expire_all()
    assert db_session.get(Product, product_a.id).stock == 0


def test_mark_overdue_command_without_invoices(app, db_session):
    result = app.test_cli_runner().invoke(args=["invoices", "mark-overdue", "--today", "2026-10-18"])
    assert result.exit_code == 0, result.output
    assert "DONE 0 invoices marked overdue" in result.output


def test_tenant_delete_needs_confirmation(app, db_session, tenant_a):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["tenants", "delete", "--tenant-id", str(tenant_a.id)], input="n\n")
    assert db_session.query(Tenant).count() == 1

    result = runner.invoke(args=["tenants", "delete", "--tenant-id", str(tenant_a.id), "--yes"])
    assert result.exit_code == 0, result.output
    db_session.expire_all()
    assert db_session.query(Tenant).count() == 0
