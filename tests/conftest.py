"""
Shared fixtures: in-memory SQLite database, seeded users/products, fake
payment gateway and notification sink.
"""
import os

# Set test environment before any storefront import reads settings
os.environ["ENVIRONMENT"] = "development"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["STALE_ORDER_SWEEP_ENABLED"] = "false"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["SENDGRID_API_KEY"] = ""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List

import pytest
import pytest_asyncio
from sqlalchemy import update

from storefront.core.config import settings
from storefront.core.database import Database
from storefront.core.exceptions import UpstreamUnavailableError
from storefront.models import Product, User
from storefront.services.notifications import SendResult
from storefront.services.payment_gateway import PaymentIntent


class FakePaymentGateway:
    """In-memory PaymentGateway. Intents succeed unless told otherwise."""

    def __init__(self):
        self.created: List[Dict] = []
        self.retrieved: List[str] = []
        self.statuses: Dict[str, str] = {}
        self.fail_create = False
        self.fail_retrieve = False

    async def create_intent(self, amount_minor, currency, metadata):
        if self.fail_create:
            raise UpstreamUnavailableError("Payment provider timed out", service="stripe")
        intent_id = f"pi_test_{len(self.created) + 1}"
        self.created.append({
            "id": intent_id,
            "amount_minor": amount_minor,
            "currency": currency,
            "metadata": metadata,
        })
        self.statuses.setdefault(intent_id, "succeeded")
        return PaymentIntent(id=intent_id, client_secret=f"{intent_id}_secret", status="requires_payment_method")

    async def retrieve_intent(self, payment_intent_id):
        if self.fail_retrieve:
            raise UpstreamUnavailableError("Payment provider timed out", service="stripe")
        self.retrieved.append(payment_intent_id)
        return PaymentIntent(
            id=payment_intent_id,
            client_secret=f"{payment_intent_id}_secret",
            status=self.statuses.get(payment_intent_id, "succeeded"),
        )


class FakeNotifier:
    def __init__(self):
        self.sent = []

    async def send_order_confirmation(self, order, user):
        self.sent.append((order.order_number, user.email))
        return SendResult(success=True, message_id="test")


@dataclass
class Seed:
    customer: User
    other_customer: User
    admin: User
    product_a: Product
    product_b: Product
    last_copy: Product
    inactive: Product


@pytest_asyncio.fixture
async def database():
    db = Database(settings)
    await db.init(create_schema=True)
    yield db
    await db.close()


@pytest_asyncio.fixture
async def seed(database) -> Seed:
    async with database.session_scope() as session:
        customer = User(email="asha@example.com", name="Asha", is_active=True, is_admin=False)
        other = User(email="ravi@example.com", name="Ravi", is_active=True, is_admin=False)
        admin = User(email="admin@example.com", name="Admin", is_active=True, is_admin=True)
        product_a = Product(sku="COMIC-A", name="Comic A", price=Decimal("600.00"), active=True, stock=10)
        product_b = Product(sku="POSTER-B", name="Poster B", price=Decimal("50.00"), active=True, stock=10)
        last_copy = Product(sku="RARE-1", name="Last Copy", price=Decimal("300.00"), active=True, stock=1)
        inactive = Product(sku="OLD-1", name="Retired", price=Decimal("100.00"), active=False, stock=5)
        session.add_all([customer, other, admin, product_a, product_b, last_copy, inactive])
        await session.flush()

    return Seed(customer, other, admin, product_a, product_b, last_copy, inactive)


@pytest_asyncio.fixture
async def session(database):
    async with database.session() as s:
        yield s


@pytest.fixture
def gateway():
    return FakePaymentGateway()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def address():
    return {
        "name": "Asha",
        "street": "12 MG Road",
        "city": "Bengaluru",
        "state": "Karnataka",
        "pincode": "560001",
        "country": "India",
    }


@pytest.fixture
def set_product(database):
    """Write product columns behind the services' back (catalog edits)."""
    async def _set(product_id: int, **values) -> None:
        async with database.session_scope() as s:
            await s.execute(update(Product).where(Product.id == product_id).values(**values))
    return _set


@pytest.fixture
def read_product(database):
    async def _read(product_id: int) -> Product:
        async with database.session() as s:
            return await s.get(Product, product_id)
    return _read
