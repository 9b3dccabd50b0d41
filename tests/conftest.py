import os

os.environ.setdefault("ENVIRONMENT", "test")

import mongomock
import pytest
from fastapi.testclient import TestClient

import config
import database


@pytest.fixture(autouse=True)
def mongo_db(monkeypatch):
    """Swap the real database for an in-memory one for every test."""
    db = mongomock.MongoClient()["storefront_test"]
    monkeypatch.setattr(database, "db", db)
    database.ensure_indexes()
    yield db


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    return tmp_path / "uploads"


@pytest.fixture()
def client():
    from main import app

    return TestClient(app)


@pytest.fixture()
def product(client):
    response = client.post(
        "/products",
        json={"name": "LED Strip", "price": 19.5, "description": "5m RGB strip", "category": "Lighting", "quantity": 10},
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture()
def admin_headers(client):
    from security import hash_password

    database.create_document(
        "user",
        {"name": "Admin", "email": "admin@example.com", "password": hash_password("secret"), "role": "admin"},
    )
    response = client.post("/users/login", json={"email": "admin@example.com", "password": "secret"})
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
