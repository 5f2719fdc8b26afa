# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/grocer/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--demo]
#   Idempotent bootstrap: tables, store settings, default admin/manager/cashier users.
# - python -m flask system seed-demo
#   Add a handful of products with stock (skips products that already exist).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users list
# - python -m flask users create --username jane --email jane@store.local --full-name "Jane Doe" --role cashier
#
# Inventory:
# - python -m flask inventory check-expiry
#   Raise expiry / near-expiry alerts for every dated inventory row.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --retention-days 30

import click
from flask.cli import with_appcontext

from .actor import Actor
from .errors import DomainError
from .extensions import db
from .models import Product, User
from .models.auth import USER_ROLES
from .services import inventory_service, session_service, settings_service, users_service
from .services.auth_service import PasswordValidationError

DEFAULT_PASSWORD = "Password123!"

DEFAULT_USERS = [
    ("admin", "admin@grocer.local", "Store Administrator", "admin"),
    ("manager", "manager@grocer.local", "Store Manager", "manager"),
    ("cashier", "cashier@grocer.local", "Front Cashier", "cashier"),
]

DEMO_PRODUCTS = [
    # name, category, price_cents, cost_cents, quantity, min_stock_level
    ("Whole Milk 1L", "Dairy", 189, 120, 40, 10),
    ("Free Range Eggs (12)", "Dairy", 449, 300, 24, 6),
    ("Sourdough Loaf", "Bakery", 529, 250, 12, 4),
    ("Bananas (1kg)", "Produce", 159, 90, 60, 15),
    ("Ground Coffee 250g", "Pantry", 899, 560, 18, 5),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--demo', is_flag=True, help='Also seed demo products and stock')
@with_appcontext
def init_system(demo):
    """
    Initialize the store: tables, settings, default users.

    Default users (password "Password123!", change immediately):
    admin, manager, cashier.
    """
    click.echo("START Initializing Grocer...")

    db.create_all()
    settings = settings_service.get_settings()
    click.echo(f"PASS Store settings ready: {settings.store_name} ({settings.currency_code})")

    click.echo("\nUSERS Creating default users...")
    for username, email, full_name, role in DEFAULT_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            users_service.create_user(
                username=username,
                email=email,
                password=DEFAULT_PASSWORD,
                full_name=full_name,
                role=role,
            )
            click.echo(f"PASS Created user: {username} ({email}) with role '{role}'")
        except DomainError as e:
            db.session.rollback()
            click.echo(f"FAIL Failed to create user '{username}': {e.message}")

    if demo:
        _seed_demo()

    click.echo("\n" + "=" * 60)
    click.echo("DONE Grocer initialized")
    click.echo("=" * 60)
    click.echo(f"\nDefault credentials (CHANGE IN PRODUCTION!): <username> / {DEFAULT_PASSWORD}")


def _seed_demo():
    admin = db.session.query(User).filter_by(role="admin", status="active").order_by(User.id.asc()).first()
    if admin is None:
        click.echo("FAIL No active admin; run: python -m flask system init")
        return
    actor = Actor.from_user(admin)

    click.echo("\nDEMO Seeding products...")
    for name, category, price, cost, quantity, min_level in DEMO_PRODUCTS:
        if db.session.query(Product).filter_by(name=name).first():
            click.echo(f"WARN  Product '{name}' already exists, skipping...")
            continue
        product = Product(name=name, category=category, price_cents=price, cost_cents=cost, is_active=True)
        db.session.add(product)
        db.session.commit()
        inventory_service.create_inventory(
            payload={"product_id": product.id, "quantity": quantity, "min_stock_level": min_level},
            actor=actor,
        )
        click.echo(f"PASS {name}: {quantity} in stock")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Seed demo products with opening stock."""
    _seed_demo()


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('list')
@with_appcontext
def list_users():
    users = users_service.list_users()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 80)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<12} {'Status'}")
    click.echo("=" * 80)
    for user in users:
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role:<12} {user.status}")
    click.echo("=" * 80 + "\n")


@users_group.command('create')
@click.option('--username', prompt=True)
@click.option('--email', prompt=True)
@click.option('--full-name', prompt=True)
@click.option('--role', type=click.Choice(USER_ROLES), default='staff', show_default=True)
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_user_cli(username, email, full_name, role, password):
    try:
        user = users_service.create_user(
            username=username,
            email=email,
            password=password,
            full_name=full_name,
            role=role,
        )
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {e.message}")
        raise SystemExit(1)
    except DomainError as e:
        db.session.rollback()
        click.echo(f"FAIL {e.message}")
        raise SystemExit(1)
    click.echo(f"PASS Created user {user.username} (ID: {user.id}) with role '{user.role}'")


@click.group('inventory')
def inventory_group():
    """Inventory checks."""


@inventory_group.command('check-expiry')
@with_appcontext
def check_expiry():
    """Send expiry and near-expiry alerts."""
    counts = inventory_service.check_all_expiry()
    click.echo(f"PASS Expired: {counts['expired']}, near expiry: {counts['near']}")


@click.group('maintenance')
def maintenance_group():
    """Housekeeping commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', default=30, show_default=True, type=int)
@with_appcontext
def cleanup_sessions(retention_days):
    """Delete expired or revoked sessions older than the retention window."""
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"PASS Deleted {deleted} session(s)")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(maintenance_group)
