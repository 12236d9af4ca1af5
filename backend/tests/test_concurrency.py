# Overview: Concurrency tests against a file-backed SQLite database with real parallel sessions.

"""
Concurrency Tests

Each worker thread pushes its own app context and therefore gets its own
session and connection. BEGIN IMMEDIATE serializes the writers.

Verifies:
- Two checkouts racing for the last unit: exactly one wins, the other gets ConsistencyError
- Concurrent order creation never produces duplicate order numbers
- Concurrent deliveries against one ledger leave quantity equal to the replay
"""

import threading

import pytest

from retailops import create_app
from retailops.extensions import db
from retailops.models import Product, Sale, StockMovement, Store, User
from retailops.models.auth import ROLE_CUSTOMER, ROLE_SUPPLIER
from retailops.services import checkout_service, customer_order_service, ledger_service
from retailops.validation import ConsistencyError


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 30}},
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def seeded(file_app):
    """A store, one product with one unit on hand, and two customers."""
    with file_app.app_context():
        store = Store(name="Race Store", code="RACE")
        supplier = User(username="sup", email="sup@race.test", password_hash="x",
                        role=ROLE_SUPPLIER, company_name="Race Supply")
        buyers = [
            User(username=f"buyer{i}", email=f"buyer{i}@race.test", password_hash="x", role=ROLE_CUSTOMER)
            for i in range(8)
        ]
        db.session.add_all([store, supplier, *buyers])
        db.session.commit()

        product = Product(sku="LAST-1", name="Last Unit", price_cents=500, supplier_id=supplier.id)
        product.stores.append(store)
        db.session.add(product)
        db.session.commit()

        ledger_service.apply_movement(store.id, product.id, movement_type="in", quantity=1)

        return {
            "store_id": store.id,
            "product_id": product.id,
            "buyer_ids": [b.id for b in buyers],
        }


def _run_parallel(app, targets):
    """Start every target at once; return a list of (result, exception) per target."""
    barrier = threading.Barrier(len(targets))
    outcomes = [None] * len(targets)

    def _worker(index, target):
        with app.app_context():
            barrier.wait()
            try:
                outcomes[index] = (target(), None)
            except Exception as exc:
                outcomes[index] = (None, exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=_worker, args=(i, t)) for i, t in enumerate(targets)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


def test_last_unit_sold_exactly_once(file_app, seeded):
    store_id = seeded["store_id"]
    product_id = seeded["product_id"]

    def _buy(buyer_id):
        def _target():
            sale = checkout_service.checkout(store_id, buyer_id, [{"product_id": product_id, "quantity": 1}])
            return sale.transaction_id
        return _target

    outcomes = _run_parallel(file_app, [_buy(b) for b in seeded["buyer_ids"][:2]])

    wins = [result for result, exc in outcomes if exc is None]
    losses = [exc for _, exc in outcomes if exc is not None]
    assert len(wins) == 1
    assert len(losses) == 1
    assert isinstance(losses[0], ConsistencyError)

    with file_app.app_context():
        entry = ledger_service.get_entry(store_id, product_id)
        assert entry.quantity == 0
        assert db.session.query(Sale).count() == 1
        assert db.session.query(StockMovement).filter_by(type="out").count() == 1
        assert ledger_service.verify_entry(entry)["ok"]


def test_order_numbers_unique_under_concurrency(file_app, seeded):
    store_id = seeded["store_id"]
    product_id = seeded["product_id"]

    def _order(buyer_id):
        def _target():
            order = customer_order_service.create_customer_order(
                buyer_id, store_id, [{"product_id": product_id, "quantity": 1}]
            )
            return order.order_number
        return _target

    outcomes = _run_parallel(file_app, [_order(b) for b in seeded["buyer_ids"]])

    errors = [exc for _, exc in outcomes if exc is not None]
    assert errors == []

    numbers = [result for result, _ in outcomes]
    assert len(set(numbers)) == len(numbers)
    assert sorted(int(n.rsplit("-", 1)[1]) for n in numbers) == list(range(1, len(numbers) + 1))


def test_parallel_movements_match_replay(file_app, seeded):
    store_id = seeded["store_id"]
    product_id = seeded["product_id"]

    def _move(movement_type, quantity):
        def _target():
            return ledger_service.apply_movement(
                store_id, product_id, movement_type=movement_type, quantity=quantity
            ).quantity
        return _target

    targets = [_move("in", 5) for _ in range(4)] + [_move("out", 3) for _ in range(4)]
    outcomes = _run_parallel(file_app, targets)
    assert [exc for _, exc in outcomes if exc is not None] == []

    with file_app.app_context():
        entry = ledger_service.get_entry(store_id, product_id)
        result = ledger_service.verify_entry(entry)
        assert result["ok"]
        assert result["movement_count"] == 9
