import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database
import mailer
from main import app


@pytest.fixture(autouse=True)
def mock_databases(monkeypatch):
    client = mongomock.MongoClient()
    monkeypatch.setattr(database, "db", client["test_store"])
    monkeypatch.setattr(database, "catalog_db", client["test_catalog"])
    return client


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    sent = []

    def fake_send_email(to, subject, text, html):
        sent.append({"to": [to] if isinstance(to, str) else list(to), "subject": subject, "text": text})
        return True

    monkeypatch.setattr(mailer, "send_email", fake_send_email)
    return sent


@pytest.fixture
def client():
    return TestClient(app)


def make_user(email="shopper@example.com", password="secret123", role="user", verified=True, **extra):
    doc = {
        "email": email,
        "password_hash": auth.hash_password(password),
        "full_name": extra.pop("full_name", "Test Shopper"),
        "role": role,
        "is_verified": verified,
        "cart": [],
        **extra,
    }
    return database.create_document("users", doc)


def login(client, email, password="secret123"):
    res = client.post("/api/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return client


@pytest.fixture
def shopper(client):
    user_id = make_user()
    login(client, "shopper@example.com")
    return user_id


@pytest.fixture
def admin_client():
    admin_id = make_user(email="admin@example.com", role="admin", full_name="Admin One")
    c = login(TestClient(app), "admin@example.com")
    c.admin_id = admin_id
    return c


def make_product(name="Corduroy Jacket", price=500.0, stock=10, **extra):
    doc = {
        "name": name,
        "description": "Thrifted find",
        "price": price,
        "original_price": price * 2,
        "images": ["https://example.com/p.jpg"],
        "category": extra.pop("category", "Outerwear"),
        "condition": extra.pop("condition", "Good"),
        "vintage": False,
        "stock": stock,
        "is_active": extra.pop("is_active", True),
        **extra,
    }
    return database.create_document("products", doc, database=database.catalog_db)
