"""
Pytest fixtures for Kassa backend and till tests.

Provides the in-memory app, test client, per-role users and auth headers,
products, and till-side fixtures (tmp_path journal, httpx client wired to
the in-process app through WSGITransport).
"""

import httpx
import pytest

from kassa import create_app
from kassa.config import TestConfig
from kassa.extensions import db
from kassa.models import Customer, Product
from kassa.services.auth_service import create_user
from kassa.terminal.api_client import ServerClient
from kassa.terminal.journal import SaleJournal


PASSWORD = "Password123"
SERVER_URL = "http://testserver"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user(username="admin", password=PASSWORD, role="admin")


@pytest.fixture(scope='function')
def cashier_user(db_session):
    return create_user(username="cashier", password=PASSWORD, role="cashier")


@pytest.fixture(scope='function')
def helper_user(db_session):
    return create_user(username="helper", password=PASSWORD, role="helper")


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
    return auth_headers(get_auth_token(client, "admin"))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_user):
    return auth_headers(get_auth_token(client, "cashier"))


@pytest.fixture(scope='function')
def helper_headers(client, helper_user):
    return auth_headers(get_auth_token(client, "helper"))


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for products with a given stock level."""
    counter = {"n": 0}

    def _make(name="Tea", price_cents=250, quantity=10):
        counter["n"] += 1
        product = Product(
            code=f"P-{counter['n']:04d}",
            name=name,
            price_cents=price_cents,
            quantity=quantity,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product(name="Tea", price_cents=250, quantity=5)


@pytest.fixture(scope='function')
def customer(db_session):
    c = Customer(name="Anna Berg", phone="+46 70 123 45 67")
    db_session.add(c)
    db_session.commit()
    return c


def _stock_of(product_id: int) -> int:
    db.session.expire_all()
    return db.session.get(Product, product_id).quantity


def _line(product, quantity=1, unit_price_cents=None) -> dict:
    return {
        "product_id": product.id,
        "name": product.name,
        "unit_price_cents": product.price_cents if unit_price_cents is None else unit_price_cents,
        "quantity": quantity,
    }


@pytest.fixture
def stock_of(db_session):
    """Current stock counter of a product, bypassing the identity map."""
    return _stock_of


@pytest.fixture
def line():
    """Build one line_items entry for a product."""
    return _line


# =============================================================================
# TILL FIXTURES
# =============================================================================

@pytest.fixture(scope='function')
def journal(tmp_path):
    journal = SaleJournal.open(str(tmp_path / "journal.sqlite3"))
    yield journal
    journal.engine.dispose()


@pytest.fixture(scope='function')
def wsgi_transport(app):
    return httpx.WSGITransport(app=app)


def server_client_for(transport, username: str) -> ServerClient:
    client = ServerClient(SERVER_URL, transport=transport)
    client.login(username, PASSWORD)
    return client


@pytest.fixture(scope='function')
def cashier_client(wsgi_transport, cashier_user):
    client = server_client_for(wsgi_transport, "cashier")
    yield client
    client.close()


@pytest.fixture(scope='function')
def helper_client(wsgi_transport, helper_user):
    client = server_client_for(wsgi_transport, "helper")
    yield client
    client.close()


@pytest.fixture(scope='function')
def reviewer_client(wsgi_transport, admin_user):
    client = server_client_for(wsgi_transport, "admin")
    yield client
    client.close()
