import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main


@pytest.fixture
def mongo(monkeypatch):
    test_db = mongomock.MongoClient()["expiryeaze_test"]
    database.ensure_indexes(test_db)
    monkeypatch.setattr(database, "db", test_db)
    monkeypatch.setattr(main, "db", test_db)
    return test_db


@pytest.fixture
def client(mongo):
    return TestClient(main.app)


def register(client, name, email, password="secret123", role="user"):
    res = client.post("/api/v1/auth/register", json={"name": name, "email": email, "password": password, "role": role})
    assert res.status_code == 201, res.text


def login(client, email, password="secret123"):
    res = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    body = res.json()
    return {"Authorization": f"Bearer {body['token']}"}, body["user"]


@pytest.fixture
def signup(client):
    """Register and log in an account, returning (auth headers, user)."""
    def _signup(name, email, role="user"):
        register(client, name, email, role=role)
        return login(client, email)
    return _signup


@pytest.fixture
def vendor(signup):
    return signup("Fresh Mart", "vendor@example.com", role="vendor")


@pytest.fixture
def shopper(signup):
    return signup("Alice Shopper", "alice@example.com")
