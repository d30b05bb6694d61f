import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["KAFKA_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret"
os.environ["CARRIER_WEBHOOK_SECRET"] = "test-webhook-secret"

import copy
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import jwt
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront.clients.catalog import CatalogProduct, get_catalog_client
from storefront.clients.payments import PaymentInfo, get_payment_client
from storefront.core.config import settings
from storefront.core.errors import NotFound, UpstreamProviderError
from storefront.core.rate_limit import InMemoryRateLimiter
from storefront.db import get_db
from storefront.domain.money import Money
from storefront.main import app
from storefront.models import Base
from storefront.service.fulfillment import get_fulfillment_handoff

CUSTOMER_ID = uuid.UUID("2f1d7c55-4a7e-4d8e-9a51-0c2b3e6f9a10")
STAFF_ID = uuid.UUID("9b0a3c1e-77d2-4f5b-8e0c-5d4f2a1b6c33")

FRANCE_ORDER = {
    "customer": {
        "email": "claire.martin@domaine-bertrand.fr",
        "first_name": "Claire",
        "last_name": "Martin",
    },
    "shipping_address": {
        "first_name": "Claire",
        "last_name": "Martin",
        "address_line1": "12 rue des Vignes",
        "city": "Beaune",
        "postal_code": "21200",
        "country": "FR",
    },
    "items": [
        {"product_id": "chablis-2021", "quantity": 2, "unit_price": 1250},
        {"product_id": "meursault-2020", "quantity": 1, "unit_price": 2060},
    ],
    "shipping_option": {
        "code": "colissimo-standard",
        "name": "Colissimo Standard",
        "carrier_code": "colissimo",
        "price": 690,
    },
    "totals": {"subtotal": 4560, "vat_amount": 1050, "shipping_cost": 690, "total": 6300},
}

CATALOG_PRODUCTS = {
    "chablis-2021": CatalogProduct(id="chablis-2021", price=Money(minor_units=1250), stock_quantity=48),
    "meursault-2020": CatalogProduct(id="meursault-2020", price=Money(minor_units=2060), stock_quantity=12),
    "pommard-2019": CatalogProduct(id="pommard-2019", price=Money(minor_units=2550), is_active=False),
}


@pytest.fixture
def france_order():
    return copy.deepcopy(FRANCE_ORDER)


def make_token(user_id=CUSTOMER_ID, permissions=(), expires_in=timedelta(minutes=15)):
    payload = {
        "id": str(user_id),
        "sub": "claire",
        "email": "claire.martin@domaine-bertrand.fr",
        "role_name": "customer",
        "permissions": list(permissions),
        "exp": datetime.now(timezone.utc) + expires_in,
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers(user_id=CUSTOMER_ID, permissions=()):
    return {"Authorization": f"Bearer {make_token(user_id, permissions)}"}


class FakePaymentClient:
    """In-memory stand-in for the payment provider API."""

    def __init__(self):
        self.payments = {}
        self.created = []
        self.fail_create = False

    def add(self, payment_id, status, order_id=None, amount=None):
        self.payments[payment_id] = PaymentInfo(
            id=payment_id,
            status=status,
            order_id=str(order_id) if order_id else None,
            checkout_url=None,
            amount=Money(minor_units=amount) if amount is not None else None,
        )

    async def get_payment(self, payment_id):
        try:
            return self.payments[payment_id]
        except KeyError:
            raise NotFound(f"Payment provider resource /payments/{payment_id} not found") from None

    async def create_payment(self, order_id, order_number, amount, customer_email, method=None):
        if self.fail_create:
            raise UpstreamProviderError("payment", "payment provider error 503: unavailable")
        payment_id = f"tr_{len(self.created) + 1:04d}"
        self.created.append(order_id)
        info = PaymentInfo(
            id=payment_id,
            status="open",
            order_id=order_id,
            checkout_url=f"https://pay.example.test/{payment_id}",
            amount=amount,
            method=method,
        )
        self.payments[payment_id] = info
        return info


class FakeCatalogClient:
    def __init__(self, products=None):
        self.products = dict(CATALOG_PRODUCTS if products is None else products)
        self.requested = []

    async def get_products(self, product_ids):
        ids = list(product_ids)
        self.requested.append(ids)
        return {pid: self.products[pid] for pid in ids if pid in self.products}


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def payment_client():
    return FakePaymentClient()


@pytest.fixture
def catalog():
    return FakeCatalogClient()


@pytest.fixture
def handoff():
    return AsyncMock()


@pytest.fixture
async def client(session_factory, payment_client, catalog, handoff):
    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_client] = lambda: payment_client
    app.dependency_overrides[get_catalog_client] = lambda: catalog
    app.dependency_overrides[get_fulfillment_handoff] = lambda: handoff
    app.state.rate_limiter = InMemoryRateLimiter(max_requests=100, window_seconds=60)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.rate_limiter = None
