"""
Pytest fixtures for pos-ledger backend tests.

Provides the application with an in-memory database, a per-test table
wipe, two tenants (each with stores, products and a customer) and the
Flask test client / CLI runner.
"""

import pytest

from posledger import create_app
from posledger.extensions import db
from posledger.models import Customer, Organization, Product, Store
from posledger.services import stock_ledger_service
from posledger.services.sales_service import commit_sale
from posledger.validation import SaleLineRequest, SaleRequest


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'STORE_RETRY_BACKOFF': 0,
}

ACTOR_ID = 7


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
def runner(app):
    return app.test_cli_runner()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Organization A: negative stock disabled, 15% tax."""
    org = Organization(
        name="Org A - Acme Corp",
        code="ACME",
        invoice_prefix="INV",
        default_tax_rate_bps=1500,
        allow_negative_stock=False,
    )
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Organization B: negative stock allowed."""
    org = Organization(
        name="Org B - Beta Inc",
        code="BETA",
        invoice_prefix="BET",
        default_tax_rate_bps=0,
        allow_negative_stock=True,
    )
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def store_a(db_session, org_a):
    store = Store(org_id=org_a.id, name="Store A1", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_a2(db_session, org_a):
    store = Store(org_id=org_a.id, name="Warehouse A2", code="A2")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, org_b):
    store = Store(org_id=org_b.id, name="Store B1", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def product_a(db_session, org_a):
    """P1: 10.00 selling price, 6.00 cost, low-stock at 2."""
    product = Product(
        org_id=org_a.id,
        sku="P1",
        name="Widget",
        price_cents=1000,
        cost_cents=600,
        min_quantity=2,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_a2(db_session, org_a):
    product = Product(org_id=org_a.id, sku="P2", name="Gadget", price_cents=2500, cost_cents=1500)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_b(db_session, org_b):
    product = Product(org_id=org_b.id, sku="P1", name="Beta Widget", price_cents=500, cost_cents=200)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def customer_a(db_session, org_a):
    customer = Customer(org_id=org_a.id, code="CUST-000001", name="Alice", email="alice@example.com")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def stocked(db_session, org_a, store_a, product_a, product_a2):
    """Receive 20 x P1 and 10 x P2 into store A1."""
    stock_ledger_service.receive_stock(
        org_id=org_a.id, product_id=product_a.id, store_id=store_a.id, quantity=20, unit_cost_cents=600,
    )
    stock_ledger_service.receive_stock(
        org_id=org_a.id, product_id=product_a2.id, store_id=store_a.id, quantity=10, unit_cost_cents=1500,
    )
    return {product_a.id: 20, product_a2.id: 10}


def make_sale_request(lines, **kwargs):
    """lines: [(product_id, quantity)] or [(product_id, quantity, {extra line fields})]."""
    line_requests = []
    for line in lines:
        extra = line[2] if len(line) > 2 else {}
        line_requests.append(SaleLineRequest(product_id=line[0], quantity=line[1], **extra))
    kwargs.setdefault("payment_method", "cash")
    return SaleRequest(lines=line_requests, **kwargs)


def quick_sale(org, store, lines, **kwargs):
    return commit_sale(
        org_id=org.id,
        store_id=store.id,
        actor_id=ACTOR_ID,
        request=make_sale_request(lines, **kwargs),
    )


def tenant_headers(org, user_id=ACTOR_ID, store=None):
    headers = {"X-Org-Id": str(org.id), "X-User-Id": str(user_id)}
    if store is not None:
        headers["X-Store-Id"] = str(store.id)
    return headers
