"""
Pytest fixtures for Grocer backend tests.

Provides an in-memory application, a per-test table wipe, users by role,
auth headers and product/stock factories.
"""

import pytest

from grocer import create_app
from grocer.actor import Actor
from grocer.extensions import db
from grocer.models import Product, User
from grocer.services import inventory_service, notification_service
from grocer.services.auth_service import hash_password

PASSWORD = "Password123!"

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'BCRYPT_ROUNDS': 4,
    'NOTIFICATION_SINK': 'database',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        notification_service.init_app(app)


def make_user(session, username: str, role: str, status: str = "active") -> User:
    user = User(
        username=username,
        email=f"{username}@grocer.test",
        password_hash=hash_password(PASSWORD),
        full_name=username.replace("_", " ").title(),
        role=role,
        status=status,
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return make_user(db_session, "admin", "admin")


@pytest.fixture(scope='function')
def manager_user(db_session):
    return make_user(db_session, "manager", "manager")


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return make_user(db_session, "cashier", "cashier")


@pytest.fixture(scope='function')
def storekeeper_user(db_session):
    return make_user(db_session, "storekeeper", "storekeeper")


@pytest.fixture(scope='function')
def admin_actor(admin_user):
    return Actor.from_user(admin_user)


@pytest.fixture(scope='function')
def cashier_actor(cashier_user):
    return Actor.from_user(cashier_user)


@pytest.fixture(scope='function')
def make_product(db_session, admin_actor):
    """
    Factory: make_product(name, price_cents=..., quantity=..., min_stock_level=...)
    returns (product, inventory). Opening stock goes through the ledger.
    """
    def _make(name="Test Product", price_cents=500, quantity=10, min_stock_level=0,
              category=None, cost_cents=None, barcode=None, with_inventory=True):
        product = Product(
            name=name,
            price_cents=price_cents,
            cost_cents=cost_cents,
            category=category,
            barcode=barcode,
            is_active=True,
        )
        db_session.add(product)
        db_session.commit()
        if not with_inventory:
            return product, None
        inventory = inventory_service.create_inventory(
            payload={"product_id": product.id, "quantity": quantity, "min_stock_level": min_stock_level},
            actor=admin_actor,
        )
        return product, inventory

    return _make


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def manager_headers(client, manager_user):
    return auth_headers(get_auth_token(client, manager_user.username))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_user):
    return auth_headers(get_auth_token(client, cashier_user.username))


@pytest.fixture(scope='function')
def storekeeper_headers(client, storekeeper_user):
    return auth_headers(get_auth_token(client, storekeeper_user.username))
