"""Pytest fixtures for the bakery storefront tests."""

import json
import os

# Settings are read at import time, so the test environment goes first
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REAPER_ENABLED"] = "false"
os.environ["VERIFY_WEBHOOK_SIGNATURE"] = "true"
os.environ["PAYMONGO_WEBHOOK_SECRET"] = "whsk_test_secret"
os.environ["PAYMENT_MIN_AMOUNT"] = "2000"
os.environ.pop("NOTIFY_WEBHOOK_URL", None)

from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from database import Base, get_db
from main import app
from models.cart import Cart, CartItem
from models.menu import MenuItem, ItemSize
from models.users import User
from utils.hashing import get_password_hash
from utils.paymongo_client import PayMongoClient, get_payment_client
from utils.tokenJWT import create_access_token

PASSWORD = "secret123"
PASSWORD_HASH = get_password_hash(PASSWORD)


class FakePayMongo:
    """In-memory stand-in for the PayMongo links API, served through httpx.MockTransport."""

    def __init__(self):
        self.links = {}
        self.calls = []
        self.fail_next = 0
        self.reject_create = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if self.fail_next:
            self.fail_next -= 1
            return httpx.Response(503, json={"errors": [{"detail": "unavailable"}]})

        if request.method == "POST" and request.url.path == "/v1/links":
            if self.reject_create:
                return httpx.Response(400, json={"errors": [{"detail": "amount is invalid"}]})
            attributes = json.loads(request.content)["data"]["attributes"]
            link_id = f"link_{len(self.links) + 1}"
            self.links[link_id] = {
                "status": "unpaid",
                "amount": attributes["amount"],
                "currency": attributes["currency"],
                "metadata": attributes["metadata"],
                "checkout_url": f"https://pm.link/test/{link_id}",
            }
            return httpx.Response(200, json={"data": {"id": link_id, "attributes": self.links[link_id]}})

        if request.method == "GET" and request.url.path.startswith("/v1/links/"):
            link_id = request.url.path.rsplit("/", 1)[-1]
            if link_id not in self.links:
                return httpx.Response(404, json={"errors": [{"detail": "not found"}]})
            return httpx.Response(200, json={"data": {"id": link_id, "attributes": self.links[link_id]}})

        return httpx.Response(404)

    def pay(self, link_id: str):
        self.links[link_id]["status"] = "paid"

    def fail(self, link_id: str):
        self.links[link_id]["status"] = "failed"

    def api_calls(self):
        return [c for c in self.calls if c[1].startswith("/v1/")]


@pytest.fixture
def engine():
    """In-memory database shared by every session of a test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_paymongo():
    return FakePayMongo()


@pytest.fixture
def payment_client(fake_paymongo):
    """PayMongo client wired to the fake processor, with no retry delay."""
    return PayMongoClient(
        api_url="https://api.paymongo.test",
        secret_key="sk_test_fake",
        timeout=1.0,
        max_retries=2,
        backoff=0,
        transport=httpx.MockTransport(fake_paymongo.handler),
    )


@pytest.fixture
def client(session_factory, payment_client):
    """Test client bound to the test database (lifespan and reaper are not started)."""

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_client] = lambda: payment_client
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(db, email, role="customer", first_name="Test", last_name="User"):
    user = User(email=email, password_hash=PASSWORD_HASH, role=role, first_name=first_name,
                last_name=last_name, phone="09170000000")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email, 'role': user.role})}"}


@pytest.fixture
def customer(db):
    return make_user(db, "ana@example.com", first_name="Ana", last_name="Reyes")


@pytest.fixture
def other_customer(db):
    return make_user(db, "ben@example.com", first_name="Ben", last_name="Cruz")


@pytest.fixture
def staff(db):
    return make_user(db, "staff@bakery.local", role="staff", first_name="Bakery", last_name="Staff")


@pytest.fixture
def menu(db):
    """A small menu: a sized cake with one medium left, croissants, and a cheap candy."""
    chocolate = MenuItem(name="Chocolate Cake", category="Cakes", base_price=Decimal("0"), has_sizes=True)
    chocolate.sizes = [
        ItemSize(size_name="M", price=Decimal("850.00"), stock=1),
        ItemSize(size_name="L", price=Decimal("1200.00"), stock=3),
    ]
    croissant = MenuItem(name="Butter Croissant", category="Pastries", base_price=Decimal("65.00"), stock=5)
    candy = MenuItem(name="Yema Candy", category="Sweets", base_price=Decimal("15.00"), stock=10)
    retired = MenuItem(name="Old Tart", category="Pastries", base_price=Decimal("40.00"), stock=4,
                       is_active=False)
    db.add_all([chocolate, croissant, candy, retired])
    db.commit()
    return {
        "chocolate": chocolate,
        "medium": chocolate.sizes[0],
        "large": chocolate.sizes[1],
        "croissant": croissant,
        "candy": candy,
        "retired": retired,
    }


def put_in_cart(db, user, item, qty, size=None):
    """Add a cart line directly, bypassing the cart endpoint's stock check."""
    cart = db.query(Cart).filter(Cart.user_id == user.id).first()
    if cart is None:
        cart = Cart(user_id=user.id)
        db.add(cart)
        db.flush()
    line = CartItem(cart_id=cart.id, menu_item_id=item.id, size_id=size.id if size else None, qty=qty,
                    unit_price_snapshot=size.price if size else item.base_price)
    db.add(line)
    db.commit()
    return line
