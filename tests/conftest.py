import mongomock
import pytest
from fastapi.testclient import TestClient

import catalog
import main
from auth import register_user

ADMIN_EMAIL = "admin@greenleaf.com"
CUSTOMER_EMAIL = "fern@greenleaf.com"
PASSWORD = "correct-horse"


@pytest.fixture
def db():
    return mongomock.MongoClient()["nursery_test"]


@pytest.fixture
def client(db):
    main.app.state.db = db
    with TestClient(main.app) as c:
        yield c
    main.app.state.db = None
    main.app.dependency_overrides.clear()


@pytest.fixture
def admin_user(db):
    return register_user(db, "Admin", ADMIN_EMAIL, PASSWORD, role="admin")


@pytest.fixture
def customer_user(db):
    return register_user(db, "Fern", CUSTOMER_EMAIL, PASSWORD)


def login_headers(client, email, password=PASSWORD):
    """Log in and return a bearer header, leaving the cookie jar empty."""
    resp = client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    client.cookies.clear()
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


@pytest.fixture
def admin_headers(client, admin_user):
    return login_headers(client, ADMIN_EMAIL)


@pytest.fixture
def customer_headers(client, customer_user):
    return login_headers(client, CUSTOMER_EMAIL)


def add_product(db, name, price, category, **fields):
    data = catalog.ProductIn(name=name, price=price, category=category, **fields)
    return catalog.create_product(db, data)


@pytest.fixture
def categories(db):
    return {
        name: catalog.create_category(db, name)
        for name in ("Climbers", "Fruit Trees", "Succulents")
    }
