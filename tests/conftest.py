import io

import mongomock
import pytest

from marketplace import create_app
from marketplace.database import ensure_indexes
from marketplace.extensions import mongo

ADMIN_KEY = "let-me-in"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def upload_folder(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def app(upload_folder):
    app = create_app(
        {
            "TESTING": True,
            "MONGO_URI": "mongodb://localhost:27017/marketplace_test",
            "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
            "ADMIN_KEY": ADMIN_KEY,
            "UPLOAD_FOLDER": str(upload_folder),
            "DB_RETRY_DELAY": 0.5,
        }
    )
    client = mongomock.MongoClient()
    mongo.cx = client
    mongo.db = client["marketplace_test"]
    ensure_indexes(mongo.db)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    return mongo.db


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def image(name="photo.png", data=PNG_BYTES):
    return (io.BytesIO(data), name)


@pytest.fixture
def register_user(client):
    def _register(name="Alice", email="alice@example.com", password="secret123"):
        response = client.post(
            "/api/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        assert response.status_code == 201, response.get_json()
        body = response.get_json()
        return body["token"], body["user"]

    return _register


@pytest.fixture
def register_admin(client):
    def _register(name="Root", email="admin@example.com", password="secret123"):
        response = client.post(
            "/api/auth/register-admin",
            json={
                "name": name,
                "email": email,
                "password": password,
                "admin_key": ADMIN_KEY,
            },
        )
        assert response.status_code == 201, response.get_json()
        body = response.get_json()
        return body["token"], body["user"]

    return _register


@pytest.fixture
def create_product(client):
    def _create(token, images=None, **fields):
        data = {
            "name": "Red sneakers",
            "price": "49.90",
            "contact_number": "+1 555 0100",
            "category": "shoes",
            "description": "Barely worn running shoes",
            "size": "42",
            "color": "red",
            "location": "Berlin",
        }
        data.update(fields)
        data["images"] = images if images is not None else [image()]
        return client.post(
            "/api/products",
            data=data,
            headers=auth_header(token),
            content_type="multipart/form-data",
        )

    return _create


@pytest.fixture
def approved_product(client, create_product, register_user, register_admin):
    """A listed product: ``(seller_token, admin_token, product_json)``."""
    seller_token, _ = register_user("Seller", "seller@example.com")
    admin_token, _ = register_admin()
    created = create_product(seller_token)
    assert created.status_code == 201, created.get_json()
    product_id = created.get_json()["product"]["id"]

    approved = client.put(
        f"/api/products/{product_id}/status",
        json={"status": "approved"},
        headers=auth_header(admin_token),
    )
    assert approved.status_code == 200, approved.get_json()
    return seller_token, admin_token, approved.get_json()["product"]
