"""
Pytest fixtures for the RetailOps backend tests.

Provides an in-memory database, one store with its staff, a supplier,
customers, catalog products, and helpers for stock seeding and auth.
"""

import pytest
from retailops import create_app
from retailops.extensions import db
from retailops.models import Store, User, Product
from retailops.models.auth import (
    ROLE_ADMIN, ROLE_CUSTOMER, ROLE_MANAGER, ROLE_STAFF, ROLE_SUPPLIER,
)
from retailops.services import ledger_service, notification_service
from retailops.services.auth_service import hash_password
from retailops.services.session_service import create_session


PASSWORD = "Password123!"

# bcrypt at cost 12 is slow; hash once per test run
_PASSWORD_HASH = None


def _password_hash() -> str:
    global _PASSWORD_HASH
    if _PASSWORD_HASH is None:
        _PASSWORD_HASH = hash_password(PASSWORD)
    return _PASSWORD_HASH


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        notification_service.discard_pending()


def _make_user(db_session, username, role, **kwargs) -> User:
    user = User(
        username=username,
        email=f"{username}@retailops.test",
        password_hash=_password_hash(),
        role=role,
        is_active=True,
        **kwargs,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def store(db_session):
    store = Store(name="Downtown", code="DT")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Uptown", code="UP")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def admin(db_session):
    return _make_user(db_session, "admin", ROLE_ADMIN)


@pytest.fixture(scope='function')
def manager(db_session, store):
    return _make_user(db_session, "manager", ROLE_MANAGER, store_id=store.id)


@pytest.fixture(scope='function')
def other_manager(db_session, other_store):
    return _make_user(db_session, "manager_up", ROLE_MANAGER, store_id=other_store.id)


@pytest.fixture(scope='function')
def staff(db_session, store):
    return _make_user(db_session, "staff", ROLE_STAFF, store_id=store.id)


@pytest.fixture(scope='function')
def supplier(db_session):
    return _make_user(db_session, "supplier", ROLE_SUPPLIER, company_name="Acme Wholesale")


@pytest.fixture(scope='function')
def other_supplier(db_session):
    return _make_user(db_session, "supplier_two", ROLE_SUPPLIER, company_name="Beta Distribution")


@pytest.fixture(scope='function')
def customer(db_session):
    return _make_user(db_session, "customer", ROLE_CUSTOMER, first_name="Ada", last_name="Shopper")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return _make_user(db_session, "customer_two", ROLE_CUSTOMER)


def _make_product(db_session, sku, name, price_cents, *, supplier=None, stores=(), cost_cents=None, is_active=True):
    product = Product(
        sku=sku,
        name=name,
        category="general",
        price_cents=price_cents,
        cost_cents=cost_cents,
        supplier_id=supplier.id if supplier else None,
        is_active=is_active,
    )
    product.stores.extend(stores)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_a(db_session, store, supplier):
    return _make_product(db_session, "SKU-A", "Coffee Beans", 1000, supplier=supplier, stores=[store], cost_cents=600)


@pytest.fixture(scope='function')
def product_b(db_session, store, supplier):
    return _make_product(db_session, "SKU-B", "Paper Filters", 250, supplier=supplier, stores=[store], cost_cents=100)


@pytest.fixture(scope='function')
def inactive_product(db_session, store, supplier):
    return _make_product(db_session, "SKU-OLD", "Discontinued Grinder", 4500, supplier=supplier, stores=[store], is_active=False)


@pytest.fixture(scope='function')
def foreign_product(db_session, other_store, other_supplier):
    """Sold only in other_store and supplied by other_supplier."""
    return _make_product(db_session, "SKU-UP", "Uptown Exclusive", 1500, supplier=other_supplier, stores=[other_store])


@pytest.fixture(scope='function')
def stock(db_session):
    """Seed stock with an 'in' movement: stock(store_id, product_id, qty)."""
    def _stock(store_id, product_id, quantity, **kwargs):
        return ledger_service.apply_movement(
            store_id,
            product_id,
            movement_type="in",
            quantity=quantity,
            reason=kwargs.get("reason", "Opening stock"),
        )
    return _stock


@pytest.fixture(scope='function')
def captured_events(app):
    """Collect dispatched notification events for the duration of a test."""
    events = []

    def _sink(event):
        events.append(event)

    notification_service.register_sink(_sink)
    yield events
    notification_service.unregister_sink(_sink)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def token_for(user) -> dict:
    """Authorization headers for `user` without a login round-trip."""
    _, token = create_session(user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def manager_headers(manager):
    return token_for(manager)


@pytest.fixture(scope='function')
def staff_headers(staff):
    return token_for(staff)


@pytest.fixture(scope='function')
def supplier_headers(supplier):
    return token_for(supplier)


@pytest.fixture(scope='function')
def customer_headers(customer):
    return token_for(customer)


@pytest.fixture(scope='function')
def headers_for(db_session):
    """Factory fixture: headers_for(user) -> Authorization headers."""
    return token_for
