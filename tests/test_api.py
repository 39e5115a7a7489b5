import pytest
from pymongo.errors import PyMongoError

from auth import SESSION_COOKIE
from tests.conftest import ADMIN_EMAIL, CUSTOMER_EMAIL, PASSWORD, add_product, login_headers
from uploads import get_image_host


@pytest.fixture
def plants(db, categories):
    return {
        "jasmine": add_product(db, "Jasmine", 250, "Climbers", season=["Spring"]),
        "mango": add_product(db, "Mango Sapling", 450, "Fruit Trees", season=["Summer"]),
        "aloe": add_product(db, "Aloe Vera", 120, "Succulents", availability=False),
    }


def test_root_and_health(client):
    assert client.get("/").json() == {"message": "Sapling Nursery API"}
    health = client.get("/test").json()
    assert health["status"] == "ok"
    assert health["database"] == "nursery_test"
    assert isinstance(health["collections"], list)


def test_health_reports_store_errors(client, db, monkeypatch):
    def broken():
        raise PyMongoError("connection refused")

    monkeypatch.setattr(db, "list_collection_names", broken)
    health = client.get("/test").json()
    assert health["status"] == "degraded"
    assert health["error"] == "connection refused"


# Auth

def test_login_sets_http_only_cookie(client, customer_user):
    resp = client.post("/auth/login", json={"email": CUSTOMER_EMAIL, "password": PASSWORD})
    assert resp.status_code == 200
    body = resp.json()
    assert body["user"]["email"] == CUSTOMER_EMAIL
    assert "passwordHash" not in body["user"]
    set_cookie = resp.headers["set-cookie"]
    assert set_cookie.startswith(f"{SESSION_COOKIE}=")
    assert "HttpOnly" in set_cookie
    assert "Max-Age=604800" in set_cookie

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["role"] == "customer"


def test_login_with_bad_credentials(client, customer_user):
    resp = client.post("/auth/login", json={"email": CUSTOMER_EMAIL, "password": "nope"})
    assert resp.status_code == 401
    assert resp.json() == {"detail": "Invalid credentials"}


def test_register_then_use_session(client):
    resp = client.post("/auth/register", json={"name": "Ivy", "email": "ivy@greenleaf.com", "password": "pw"})
    assert resp.status_code == 201
    assert resp.json()["user"]["role"] == "customer"
    assert client.get("/cart").status_code == 200

    again = client.post("/auth/register", json={"email": "IVY@greenleaf.com", "password": "pw"})
    assert again.status_code == 400


def test_logout_clears_cookie_but_token_outlives_it(client, customer_user):
    token = client.post("/auth/login", json={"email": CUSTOMER_EMAIL, "password": PASSWORD}).json()["access_token"]
    assert client.post("/auth/logout").json() == {"success": True}
    assert client.get("/cart").status_code == 401
    # no server-side revocation
    assert client.get("/cart", headers={"Authorization": f"Bearer {token}"}).status_code == 200
    assert client.get("/auth/logout").status_code == 200


def test_me_requires_session(client):
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer forged"}).status_code == 401


# Products

def test_public_listing_hides_unavailable(client, plants):
    names = [p["name"] for p in client.get("/products").json()]
    assert names == ["Mango Sapling", "Jasmine"]
    everything = client.get("/products", params={"includeUnavailable": "true"}).json()
    assert [p["name"] for p in everything] == ["Aloe Vera", "Mango Sapling", "Jasmine"]


def test_listing_filters_from_query(client, plants, categories):
    ids = ",".join([categories["Climbers"]["id"], categories["Fruit Trees"]["id"]])
    resp = client.get("/products", params={"categoryIds": ids, "minPrice": 200, "maxPrice": 300})
    assert [p["name"] for p in resp.json()] == ["Jasmine"]

    resp = client.get("/products", params={"seasons": "summer,winter", "limit": 5})
    assert [p["name"] for p in resp.json()] == ["Mango Sapling"]

    resp = client.get("/products", params={"categoryIds": ids, "search": "aloe"})
    assert resp.json() == []

    assert client.get("/products", params={"limit": 0}).status_code == 422


def test_get_single_product(client, plants):
    resp = client.get(f"/products/{plants['jasmine']['id']}")
    assert resp.status_code == 200
    assert resp.json()["categoryId"] == plants["jasmine"]["categoryId"]
    assert client.get("/products/0123456789abcdef01234567").status_code == 404


def test_product_writes_are_admin_only(client, categories, customer_headers, admin_headers):
    payload = {"name": "Tulsi", "price": 60, "category": "Succulents", "season": ["Spring"]}
    assert client.post("/products", json=payload).status_code == 401
    assert client.post("/products", json=payload, headers=customer_headers).status_code == 403

    resp = client.post("/products", json=payload, headers=admin_headers)
    assert resp.status_code == 201
    product = resp.json()
    assert product["category"] == "Succulents"

    payload["price"] = 75
    resp = client.put(f"/products/{product['id']}", json=payload, headers=admin_headers)
    assert resp.json()["price"] == 75

    assert client.delete(f"/products/{product['id']}", headers=customer_headers).status_code == 403
    assert client.delete(f"/products/{product['id']}", headers=admin_headers).json() == {"success": True}
    assert client.get(f"/products/{product['id']}").status_code == 404


def test_product_validation_errors(client, categories, admin_headers):
    resp = client.post("/products", json={"price": 10, "category": "Succulents"}, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Name and price are required"
    resp = client.post("/products", json={"name": "X", "price": 10, "category": "Ferns"}, headers=admin_headers)
    assert resp.status_code == 404


@pytest.mark.parametrize("body, status", [
    ('{"name": "Fern", "price": 1e309, "category": "Succulents"}', 400),
    ('{"name": "Fern", "price": 10, "rating": 1e309, "category": "Succulents"}', 400),
    ('{"name": "Fern", "price": 10, "reviews": 1e400, "category": "Succulents"}', 422),
])
def test_product_rejects_overflowing_numbers(client, categories, admin_headers, body, status):
    headers = dict(admin_headers, **{"Content-Type": "application/json"})
    resp = client.post("/products", content=body, headers=headers)
    assert resp.status_code == status

    listing = client.get("/products", params={"includeUnavailable": "true"})
    assert listing.status_code == 200
    assert listing.json() == []


def test_featured_query(client, db, categories):
    add_product(db, "Jasmine", 250, "Climbers", featured=True)
    add_product(db, "Mango Sapling", 450, "Fruit Trees")
    assert [p["name"] for p in client.get("/products", params={"featured": "true"}).json()] == ["Jasmine"]
    everything = client.get("/products", params={"featured": "false"}).json()
    assert [p["name"] for p in everything] == ["Mango Sapling", "Jasmine"]


# Categories

def test_category_crud(client, admin_headers, customer_headers):
    assert client.post("/categories", json={"name": "Ferns"}, headers=customer_headers).status_code == 403

    created = client.post("/categories", json={"name": " Ferns "}, headers=admin_headers)
    assert created.status_code == 201
    category = created.json()
    assert category["name"] == "Ferns"

    dup = client.post("/categories", json={"name": "FERNS"}, headers=admin_headers)
    assert dup.status_code == 400
    assert dup.json()["detail"] == "Category already exists"

    renamed = client.put(f"/categories/{category['id']}", json={"name": "Tree Ferns"}, headers=admin_headers)
    assert renamed.json()["name"] == "Tree Ferns"
    assert client.get(f"/categories/{category['id']}").json()["name"] == "Tree Ferns"
    assert [c["name"] for c in client.get("/categories").json()] == ["Tree Ferns"]

    assert client.delete(f"/categories/{category['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/categories/{category['id']}").status_code == 404


def test_category_in_use_cannot_be_deleted(client, plants, categories, admin_headers):
    resp = client.delete(f"/categories/{categories['Climbers']['id']}", headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Cannot delete category that is in use by products"
    assert client.get(f"/categories/{categories['Climbers']['id']}").status_code == 200
    assert client.get(f"/products/{plants['jasmine']['id']}").json()["category"] == "Climbers"


# Cart

def test_cart_requires_session(client):
    assert client.get("/cart").status_code == 401
    assert client.post("/cart/add", json={"productId": "x"}).status_code == 401
    assert client.delete("/cart/clear").status_code == 401


def test_cart_flow(client, plants, customer_headers):
    jasmine, mango = plants["jasmine"]["id"], plants["mango"]["id"]

    resp = client.post("/cart/add", json={"productId": jasmine}, headers=customer_headers)
    assert resp.status_code == 200
    client.post("/cart/add", json={"productId": jasmine}, headers=customer_headers)
    cart = client.post("/cart/add", json={"productId": mango}, headers=customer_headers).json()
    assert [(i["productId"], i["quantity"]) for i in cart["items"]] == [(jasmine, 2), (mango, 1)]
    assert cart["totalItems"] == 3
    assert cart["totalPrice"] == 950

    cart = client.put("/cart/update", json={"productId": mango, "quantity": 3}, headers=customer_headers).json()
    assert cart["totalPrice"] == 250 * 2 + 450 * 3

    cart = client.put("/cart/update", json={"productId": mango, "quantity": 0}, headers=customer_headers).json()
    assert [i["productId"] for i in cart["items"]] == [jasmine]

    cart = client.request("DELETE", "/cart/remove", json={"productId": jasmine}, headers=customer_headers).json()
    assert cart == {"items": [], "totalItems": 0, "totalPrice": 0}

    client.post("/cart/add", json={"productId": mango}, headers=customer_headers)
    cart = client.delete("/cart/clear", headers=customer_headers).json()
    assert cart["items"] == []
    assert client.get("/cart", headers=customer_headers).json()["totalItems"] == 0


def test_cart_errors(client, plants, customer_headers):
    resp = client.post("/cart/add", json={"productId": "0123456789abcdef01234567"}, headers=customer_headers)
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Product not found"

    resp = client.put("/cart/update", json={"productId": plants["jasmine"]["id"], "quantity": "two"},
                      headers=customer_headers)
    assert resp.status_code == 400

    assert client.post("/cart/add", json={}, headers=customer_headers).status_code == 422


def test_carts_are_per_user(client, plants, customer_headers, admin_headers):
    client.post("/cart/add", json={"productId": plants["jasmine"]["id"]}, headers=customer_headers)
    assert client.get("/cart", headers=admin_headers).json()["items"] == []


# Bulk upload and images

def test_bulk_upload_csv(client, categories, admin_headers, customer_headers):
    data = (
        "name,price,category,season,availability\n"
        "Jasmine,250,Climbers,\"Spring, Summer\",true\n"
        "Tulsi,,Succulents,,\n"
        "Neem,40,,,false\n"
    ).encode()
    files = {"file": ("plants.csv", data, "text/csv")}
    assert client.post("/products/bulk-upload", files=files, headers=customer_headers).status_code == 403

    resp = client.post("/products/bulk-upload", files=files, headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["total"] == 3
    assert [s["row"] for s in body["succeeded"]] == [2, 4]
    assert body["failed"] == [{"row": 3, "name": "Tulsi", "error": "Name and price are required"}]
    assert body["message"] == "Processed 3 rows with 2 successes and 1 errors"

    public = [p["name"] for p in client.get("/products").json()]
    assert public == ["Jasmine"]


def test_bulk_upload_rejects_bad_files(client, admin_headers):
    assert client.post("/products/bulk-upload", headers=admin_headers).status_code == 400
    files = {"file": ("notes.txt", b"hello", "text/plain")}
    resp = client.post("/products/bulk-upload", files=files, headers=admin_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Only Excel or CSV files are allowed"


class FakeImageHost:
    def __init__(self):
        self.uploads = []

    def upload(self, data, content_type):
        self.uploads.append((data, content_type))
        return {"url": "https://res.cloudinary.com/demo/image/upload/plant.png", "publicId": "plant"}


def test_image_upload(client, admin_headers, customer_headers):
    host = FakeImageHost()
    client.app.dependency_overrides[get_image_host] = lambda: host
    files = {"file": ("plant.png", b"\x89PNG", "image/png")}

    assert client.post("/upload", files=files, headers=customer_headers).status_code == 403
    resp = client.post("/upload", files=files, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["url"].endswith("plant.png")
    assert host.uploads == [(b"\x89PNG", "image/png")]


def test_image_upload_without_host_config(client, admin_headers):
    files = {"file": ("plant.png", b"\x89PNG", "image/png")}
    resp = client.post("/upload", files=files, headers=admin_headers)
    assert resp.status_code == 502

    files = {"file": ("plant.txt", b"text", "text/plain")}
    assert client.post("/upload", files=files, headers=admin_headers).status_code == 400
