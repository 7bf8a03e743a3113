"""Shared fixtures: in-memory MongoDB and a FastAPI test client."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from main import app


@pytest.fixture(autouse=True)
def mock_db(monkeypatch):
    """Every test gets a fresh mongomock database."""
    test_db = mongomock.MongoClient()["marketplace_test"]
    monkeypatch.setattr(database, "db", test_db)
    database.ensure_indexes()
    return test_db


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def signup(client):
    """Sign up a user, log in, and return (user, auth headers)."""

    def _signup(email="seller@example.com", name="Seller", role=None, password="s3cret-pass"):
        body = {"email": email, "password": password, "name": name}
        if role is not None:
            body["role"] = role
        res = client.post("/signup", json=body)
        assert res.status_code == 200, res.text
        token = client.post(
            "/auth/token", data={"username": email, "password": password},
        ).json()["access_token"]
        return res.json()["user"], {"Authorization": f"Bearer {token}"}

    return _signup


@pytest.fixture
def seller(signup):
    return signup("seller@example.com", "Seller")


@pytest.fixture
def buyer(signup):
    return signup("buyer@example.com", "Buyer")


@pytest.fixture
def admin(signup):
    return signup("admin@example.com", "Admin", role="admin")


@pytest.fixture
def create_product(client):
    def _create(headers, **fields):
        body = {"title": "Widget", "price": 9.99}
        body.update(fields)
        res = client.post("/products", json=body, headers=headers)
        assert res.status_code == 200, res.text
        return res.json()["product"]

    return _create
