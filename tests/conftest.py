from __future__ import annotations

import uuid

import mongomock
import pytest
from fastapi.testclient import TestClient

import main
from database import ensure_indexes, get_db
from tests.helpers import bearer, register


@pytest.fixture
def db():
    database = mongomock.MongoClient()[f"attendance_test_{uuid.uuid4().hex}"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    main.app.dependency_overrides[get_db] = lambda: db
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def auth(client):
    return bearer(register(client)["token"])


@pytest.fixture
def other_auth(client):
    return bearer(register(client, email="other@example.com", name="Other")["token"])
