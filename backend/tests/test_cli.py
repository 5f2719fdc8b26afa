"""Flask CLI commands."""

from grocer.models import Inventory, InventoryTransaction, Product, User


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=['system', 'init'])
    assert first.exit_code == 0, first.output
    assert 'Created user: admin' in first.output

    second = runner.invoke(args=['system', 'init'])
    assert second.exit_code == 0
    assert "User 'admin' already exists" in second.output

    db_session.expire_all()
    assert sorted(u.role for u in db_session.query(User).all()) == ['admin', 'cashier', 'manager']


def test_seed_demo_stocks_through_ledger(app, db_session):
    runner = app.test_cli_runner()
    runner.invoke(args=['system', 'init'])

    result = runner.invoke(args=['system', 'seed-demo'])

    assert result.exit_code == 0, result.output
    db_session.expire_all()
    assert db_session.query(Product).count() == 5
    for inventory in db_session.query(Inventory).all():
        deltas = db_session.query(InventoryTransaction).filter_by(inventory_id=inventory.id).all()
        assert [t.type for t in deltas] == ['purchase']
        assert deltas[0].quantity_delta == inventory.quantity


def test_users_create_rejects_weak_password(app, db_session):
    result = app.test_cli_runner().invoke(args=[
        'users', 'create',
        '--username', 'weak', '--email', 'weak@grocer.test', '--full-name', 'Weak Pw',
        '--role', 'cashier', '--password', 'password',
    ])
    assert result.exit_code == 1
    assert 'Password validation failed' in result.output


def test_reset_db_requires_confirmation(app, db_session):
    result = app.test_cli_runner().invoke(args=['system', 'reset-db'])
    assert result.exit_code == 1
    assert 'Refusing' in result.output


def test_check_expiry_and_cleanup(app, db_session):
    runner = app.test_cli_runner()
    expiry = runner.invoke(args=['inventory', 'check-expiry'])
    assert expiry.exit_code == 0
    assert 'Expired: 0, near expiry: 0' in expiry.output

    cleanup = runner.invoke(args=['maintenance', 'cleanup-sessions', '--retention-days', '7'])
    assert cleanup.exit_code == 0
    assert 'Deleted 0 session(s)' in cleanup.output
