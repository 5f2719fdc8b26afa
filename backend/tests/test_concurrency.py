"""
Concurrent stock decrements against a file-backed SQLite database.

Two writers racing for the same inventory row must serialize: exactly one
of -7 and -5 against 10 units can succeed, and the ledger must agree with
the final quantity.
"""

import threading

import pytest

from grocer import create_app
from grocer.actor import Actor
from grocer.errors import InsufficientStockError
from grocer.extensions import db
from grocer.models import Inventory, InventoryTransaction, Product, Sale
from grocer.services import inventory_service, sales_service, settings_service
from grocer.services.sales_service import SaleInput, SaleItemInput

from conftest import TEST_CONFIG, make_user


@pytest.fixture
def file_app(tmp_path):
    db_path = tmp_path / "concurrency.sqlite3"
    app = create_app({**TEST_CONFIG, "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}"})
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def stocked(file_app):
    with file_app.app_context():
        user = make_user(db.session, "admin", "admin")
        actor = Actor.from_user(user)
        product = Product(name="Rice", price_cents=300, is_active=True)
        db.session.add(product)
        db.session.commit()
        inventory = inventory_service.create_inventory(
            payload={"product_id": product.id, "quantity": 10}, actor=actor,
        )
        settings_service.get_settings()
        ids = {"product_id": product.id, "inventory_id": inventory.id}
        db.session.remove()
    return actor, ids


def _race(app, workers):
    """Run each worker in its own thread and app context; return per-worker outcome."""
    barrier = threading.Barrier(len(workers))
    outcomes = [None] * len(workers)

    def run(index, work):
        with app.app_context():
            try:
                barrier.wait()
                work()
                outcomes[index] = "ok"
            except InsufficientStockError:
                outcomes[index] = "insufficient"
            except Exception as exc:  # surfaced through the assertion below
                outcomes[index] = repr(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=run, args=(i, w)) for i, w in enumerate(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return outcomes


def _final_state(app, inventory_id):
    with app.app_context():
        quantity = db.session.get(Inventory, inventory_id).quantity
        balance = inventory_service.ledger_balance(inventory_id)
        rows = db.session.query(InventoryTransaction).filter_by(inventory_id=inventory_id).count()
        db.session.remove()
    return quantity, balance, rows


def test_concurrent_adjustments_never_oversell(file_app, stocked):
    actor, ids = stocked
    inventory_id = ids["inventory_id"]

    def take(delta):
        return lambda: inventory_service.adjust_inventory(
            inventory_id=inventory_id, delta=delta, reason="race", actor=actor,
        )

    outcomes = _race(file_app, [take(-7), take(-5)])

    assert sorted(outcomes) == ["insufficient", "ok"]
    quantity, balance, rows = _final_state(file_app, inventory_id)
    winner = -7 if outcomes[0] == "ok" else -5
    assert quantity == 10 + winner
    assert quantity in (3, 5)
    assert balance == quantity
    assert rows == 2  # opening purchase + the winning adjustment


def test_concurrent_sales_never_oversell(file_app, stocked):
    actor, ids = stocked

    def sell(quantity):
        return lambda: sales_service.create_sale(
            SaleInput(items=[SaleItemInput(product_id=ids["product_id"], quantity=quantity)]),
            actor,
        )

    outcomes = _race(file_app, [sell(6), sell(6)])

    assert sorted(outcomes) == ["insufficient", "ok"]
    quantity, balance, _ = _final_state(file_app, ids["inventory_id"])
    assert quantity == 4
    assert balance == 4
    with file_app.app_context():
        assert db.session.query(Sale).count() == 1
        db.session.remove()
