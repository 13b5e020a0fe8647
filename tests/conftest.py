from datetime import datetime, timedelta

import mongomock
import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext

from auth import AuthService
from cart import CartStore
from catalog import CategoryStore, ProductStore
from credential_store import UserStore
from database import ensure_indexes
from main import create_app
from order_store import OrderStore
from orders import OrderService

fast_pwd = CryptContext(schemes=["bcrypt"], bcrypt__rounds=4)

SHIPPING = {
    "email": "buyer@example.com",
    "name": "Buyer One",
    "address": "1 Main Street",
    "city": "Lahore",
    "postalCode": "54000",
    "country": "Pakistan",
    "phone": "0300-0000000",
}


class FakeClock:
    def __init__(self, start=datetime(2026, 3, 14, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingPublisher:
    def __init__(self):
        self.events = []

    def notify_new_order(self, order_id):
        self.events.append(("new_order", order_id))

    def notify_order_update(self, order_id):
        self.events.append(("order_update", order_id))


@pytest.fixture
def mongo_db():
    database = mongomock.MongoClient()["storefront_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def reset_links():
    return []


@pytest.fixture
def users(mongo_db):
    return UserStore(mongo_db)


@pytest.fixture
def products(mongo_db):
    return ProductStore(mongo_db)


@pytest.fixture
def categories(mongo_db):
    return CategoryStore(mongo_db)


@pytest.fixture
def carts(mongo_db, products):
    return CartStore(mongo_db, products)


@pytest.fixture
def order_store(mongo_db):
    return OrderStore(mongo_db)


@pytest.fixture
def auth_service(users, clock, reset_links):
    return AuthService(users, password_context=fast_pwd, clock=clock,
                       send_reset_link=lambda email, url: reset_links.append((email, url)))


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def order_service(order_store, carts, products, auth_service, publisher):
    return OrderService(order_store, carts, products, auth_service, publisher)


@pytest.fixture
def make_product(products):
    def _make(name="Midnight Oud", price="100.00", **extra):
        return products.create({"name": name, "price": price, "stock": 10, **extra})
    return _make


@pytest.fixture
def make_user(users):
    def _make(email="alice@example.com", username="alice", password="secret1", is_admin=False):
        return users.create(email, username, password_hash=fast_pwd.hash(password), is_admin=is_admin)
    return _make


@pytest.fixture
def app(mongo_db, clock, reset_links):
    return create_app(
        database=mongo_db,
        password_context=fast_pwd,
        clock=clock,
        send_reset_link=lambda email, url: reset_links.append((email, url)),
        rate_limits=False,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_client(app, make_user):
    make_user("admin@example.com", "admin", "adminpass1", is_admin=True)
    with TestClient(app) as c:
        r = c.post("/api/auth/login", json={"email": "admin@example.com", "password": "adminpass1"})
        assert r.status_code == 200
        yield c
