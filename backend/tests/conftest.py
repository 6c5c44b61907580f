"""
Pytest fixtures for FreshCo backend tests.

Provides test database setup, two-tenant fixtures, a fake payment
processor (httpx.MockTransport) and auth header helpers.
"""

import itertools
from urllib.parse import parse_qs

import httpx
import pytest

from freshco import create_app
from freshco.config import TestConfig
from freshco.extensions import db
from freshco.models import Company
from freshco.models.auth import (
    ROLE_ADMIN,
    ROLE_CUSTOMER,
    ROLE_PROCUREMENT,
    ROLE_SALES,
    ROLE_WAREHOUSE_MANAGER,
)
from freshco.services import catalog_service, inventory_service
from freshco.services.auth_service import create_user
from freshco.services.payment_gateway import init_payment_processor
from freshco.services.session_service import create_session
from freshco.services.tenant_service import TENANT_HEADER


PASSWORD = "Passw0rd!"


class FakeProcessor:
    """Stripe-shaped payment processor served through httpx.MockTransport."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.requests = []
        self.fail = False
        self.intents = {}
        self._ids = itertools.count(1)

    def confirm(self, intent_id, amount=None):
        """Simulate the customer completing payment."""
        self.intents[intent_id]["status"] = "succeeded"
        if amount is not None:
            self.intents[intent_id]["amount"] = amount

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            raise httpx.ConnectError("processor down", request=request)
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        path = request.url.path
        self.requests.append((request.method, path, form))
        if request.method == "POST" and path == "/v1/payment_intents":
            intent_id = f"pi_test_{next(self._ids)}"
            self.intents[intent_id] = {
                "id": intent_id,
                "client_secret": f"{intent_id}_secret",
                "status": "requires_payment_method",
                "amount": int(form["amount"]),
            }
            return httpx.Response(200, json=self.intents[intent_id])
        if request.method == "GET" and path.startswith("/v1/payment_intents/"):
            intent = self.intents.get(path.rsplit("/", 1)[-1])
            if intent is not None:
                return httpx.Response(200, json=intent)
        return httpx.Response(404, json={"error": {"message": "No such resource"}})


FAKE_PROCESSOR = FakeProcessor()


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)
    init_payment_processor(app, transport=httpx.MockTransport(FAKE_PROCESSOR))

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
def processor(db_session):
    FAKE_PROCESSOR.reset()
    yield FAKE_PROCESSOR
    FAKE_PROCESSOR.reset()


# =============================================================================
# TENANTS AND USERS
# =============================================================================

@pytest.fixture(scope='function')
def company_a(db_session):
    """Company A (first tenant)."""
    company = Company(name="Fresh Foods", slug="fresh", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def company_b(db_session):
    """Company B (second tenant)."""
    company = Company(name="Green Grocers", slug="green", is_active=True)
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def make_user(db_session):
    def _make(company, email, *roles):
        user = create_user(company.id, email, PASSWORD, roles=roles)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def admin_a(make_user, company_a):
    return make_user(company_a, "admin@fresh.test", ROLE_ADMIN)


@pytest.fixture(scope='function')
def sales_a(make_user, company_a):
    return make_user(company_a, "sales@fresh.test", ROLE_SALES)


@pytest.fixture(scope='function')
def manager_a(make_user, company_a):
    return make_user(company_a, "manager@fresh.test", ROLE_WAREHOUSE_MANAGER)


@pytest.fixture(scope='function')
def procurement_a(make_user, company_a):
    return make_user(company_a, "buyer@fresh.test", ROLE_PROCUREMENT)


@pytest.fixture(scope='function')
def customer_a(make_user, company_a):
    return make_user(company_a, "shopper@fresh.test", ROLE_CUSTOMER)


@pytest.fixture(scope='function')
def admin_b(make_user, company_b):
    return make_user(company_b, "admin@green.test", ROLE_ADMIN)


def auth_headers(user, tenant=None) -> dict:
    """Bearer + tenant headers for a user (tenant defaults to the user's company)."""
    _, token = create_session(user.id)
    return {
        'Authorization': f'Bearer {token}',
        TENANT_HEADER: tenant or user.company.slug,
    }


@pytest.fixture(scope='function')
def admin_headers(admin_a):
    return auth_headers(admin_a)


@pytest.fixture(scope='function')
def admin_b_headers(admin_b):
    return auth_headers(admin_b)


# =============================================================================
# MASTER DATA
# =============================================================================

@pytest.fixture(scope='function')
def warehouse_a(company_a):
    return catalog_service.create_warehouse(company_a.id, name="Main DC", code="MAIN")


@pytest.fixture(scope='function')
def warehouse_a2(company_a):
    return catalog_service.create_warehouse(company_a.id, name="East Depot", code="EAST")


@pytest.fixture(scope='function')
def warehouse_b(company_b):
    return catalog_service.create_warehouse(company_b.id, name="Green DC", code="MAIN")


@pytest.fixture(scope='function')
def product_a(company_a):
    """Product with a single default variant priced 199 cents."""
    return catalog_service.create_product(company_a.id, sku="APPLE", name="Apple", price_cents=199)


@pytest.fixture(scope='function')
def product_a2(company_a):
    return catalog_service.create_product(company_a.id, sku="PEAR", name="Pear", price_cents=250)


@pytest.fixture(scope='function')
def product_b(company_b):
    return catalog_service.create_product(company_b.id, sku="APPLE", name="Apple", price_cents=210)


@pytest.fixture(scope='function')
def supplier_a(company_a):
    supplier, _ = catalog_service.create_supplier(
        company_a.id, name="Orchard Farms", code="ORCH", payment_terms_days=30,
    )
    return supplier


def default_variant(product):
    return next(v for v in product.variants if v.is_default)


def set_stock(company, warehouse, product, quantity):
    """Bring stock to an absolute quantity through the ledger."""
    return inventory_service.adjust_stock(
        company.id,
        warehouse_id=warehouse.id,
        product_id=product.id,
        physical_quantity=quantity,
        reason="Opening balance",
    )


def stock_of(company, warehouse, product):
    return inventory_service.get_stock_count(
        company.id, warehouse.id, product.id, default_variant(product).id,
    )
