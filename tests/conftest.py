import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from main import app

ADMIN = {"username": "admin", "password": "admin-secret"}


@pytest.fixture
def db(monkeypatch):
    mock_db = mongomock.MongoClient()["storefront_test"]
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    monkeypatch.setenv("ADMIN_USERNAME", ADMIN["username"])
    monkeypatch.setenv("ADMIN_PASSWORD", ADMIN["password"])
    monkeypatch.delenv("ADMIN_EMAIL", raising=False)
    monkeypatch.delenv("BLOCK_BANNED_LOGIN", raising=False)
    return mock_db


@pytest.fixture
def client(db):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin(db):
    with TestClient(app) as c:
        res = c.post("/login", json=ADMIN)
        assert res.status_code == 200
        yield c


@pytest.fixture
def make_user(db):
    """Factory returning a fresh client already signed up as the given user."""
    clients = []

    def _make(username, email=None, password="pass1234"):
        c = TestClient(app)
        c.__enter__()
        clients.append(c)
        res = c.post("/signup", json={
            "username": username,
            "password": password,
            "email": email or f"{username}@example.com",
        })
        assert res.status_code == 200, res.json()
        return c

    yield _make
    for c in clients:
        c.__exit__(None, None, None)