"""
Pytest fixtures for Elman backend tests.

Provides an in-memory database, owner/cashier accounts with live session
tokens, seeded products and the Flask test client.
"""

import pytest

from elman import create_app
from elman.extensions import db
from elman.models import User
from elman.models.auth import ROLE_CASHIER, ROLE_OWNER
from elman.services import inventory_service, session_service
from elman.services.auth_service import hash_password

TEST_PASSWORD = "Password123!"
BOOTSTRAP_SECRET = "test-bootstrap-secret"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BOOTSTRAP_SECRET': BOOTSTRAP_SECRET,
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.drop_all()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt at cost 12 is slow; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def app_context(app):
    """Fresh app context (and so fresh g and session) per test."""
    with app.app_context():
        yield


@pytest.fixture(scope='function')
def db_session(app_context):
    """Empty every table before each test."""
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


def _make_user(db_session, password_hash, username, role):
    user = User(username=username, password_hash=password_hash, role=role, is_active=True)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner(db_session, password_hash):
    return _make_user(db_session, password_hash, "owner", ROLE_OWNER)


@pytest.fixture(scope='function')
def cashier(db_session, password_hash):
    return _make_user(db_session, password_hash, "amina", ROLE_CASHIER)


@pytest.fixture(scope='function')
def owner_headers(owner):
    _session, token = session_service.create_session(owner)
    return auth_headers(token)


@pytest.fixture(scope='function')
def cashier_headers(cashier):
    _session, token = session_service.create_session(cashier)
    return auth_headers(token)


def make_product(name="Rice 5kg", price_cents=500, stock=10, **extra) -> dict:
    """Create a product through the catalog service so its initial stock is logged."""
    patch = {
        "name": name,
        "category": extra.pop("category", "Grocery"),
        "price_cents": price_cents,
        "unit_cost_cents": extra.pop("unit_cost_cents", 300),
        "stock": stock,
        "low_stock_threshold": extra.pop("low_stock_threshold", 2),
    }
    patch.update(extra)
    return inventory_service.create_product(patch=patch)


@pytest.fixture(scope='function')
def product(db_session):
    """Price 500 cents, 10 in stock."""
    return make_product()


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def sell(client, headers, product_id, quantity, **body):
    payload = {
        "payment_method": "Cash",
        "items": [{"product_id": product_id, "quantity": quantity}],
    }
    payload.update(body)
    return client.post("/api/sales", json=payload, headers=headers)
