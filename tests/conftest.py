import threading
import time

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import main

PASSWORD = "secret123"


@pytest.fixture
def db(monkeypatch):
    test_db = mongomock.MongoClient()["storefront_test"]
    monkeypatch.setattr(database, "db", test_db)
    return test_db


@pytest.fixture
def client(db):
    with TestClient(main.app) as c:
        yield c


def register_and_login(client, email, name="Test User", password=PASSWORD):
    r = client.post("/auth/register", json={"email": email, "password": password, "name": name})
    assert r.status_code == 200, r.text
    user_id = r.json()["id"]
    r = client.post("/auth/login", data={"username": email, "password": password})
    assert r.status_code == 200, r.text
    return {"id": user_id, "headers": {"Authorization": f"Bearer {r.json()['access_token']}"}}


@pytest.fixture
def customer(client):
    return register_and_login(client, "alice@example.com", name="Alice")


@pytest.fixture
def admin(client, db):
    account = register_and_login(client, "boss@example.com", name="Boss")
    db["users"].update_one({"email": "boss@example.com"}, {"$set": {"role": "admin"}})
    return account


class FakeChangeStream:
    """Stands in for a pymongo ChangeStream; try_next() blocks for `poll` seconds when idle."""

    def __init__(self, changes=(), poll=0.01, end_when_drained=False):
        self._changes = list(changes)
        self._poll = poll
        self._end_when_drained = end_when_drained
        self._lock = threading.Lock()
        self.polls_in_flight = 0
        self.closed = False

    @property
    def alive(self):
        return not self.closed and not (self._end_when_drained and not self._changes)

    def try_next(self):
        with self._lock:
            self.polls_in_flight += 1
        try:
            if self._changes:
                return self._changes.pop(0)
            time.sleep(self._poll)
            return None
        finally:
            with self._lock:
                self.polls_in_flight -= 1

    def close(self):
        self.closed = True
