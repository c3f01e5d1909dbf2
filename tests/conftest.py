"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

import db
from app import TestConfig, create_app
from services import accounts
from services.identities import create_tables
from tests.fakes import FakeDriver, FakeIdentities, FakeSession

PASSWORD = "Sup3rSecret!"


@pytest.fixture
def engine():
    """Fresh in-memory identity store per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def graph():
    return FakeSession()


@pytest.fixture
def identities():
    return FakeIdentities({
        "PSY-PLAYER-AAAA1111": {"firstName": "Ana", "lastName": "Silva"},
        "PSY-PLAYER-BBBB2222": {"firstName": "Ben", "lastName": "Adams"},
    })


@pytest.fixture
def app(engine, graph, monkeypatch):
    monkeypatch.setattr(db, "_engine", engine)
    monkeypatch.setattr(db, "_driver", FakeDriver(graph))
    return create_app(TestConfig)


@pytest.fixture
def client(app):
    return app.test_client()


def make_account(engine, identity_type, email, first="Test", last="User"):
    payload = {
        "email": email,
        "password": PASSWORD,
        "firstName": first,
        "lastName": last,
        "identityType": identity_type,
    }
    if identity_type == "player":
        payload["dateOfBirth"] = "2004-05-17"
    return accounts.register(engine, payload)


def login_headers(client, email):
    response = client.post("/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200, response.get_json()
    return {"Authorization": f"Bearer {response.get_json()['accessToken']}"}


@pytest.fixture
def player(engine):
    return make_account(engine, "player", "player@example.com", "Ana", "Silva")


@pytest.fixture
def other_player(engine):
    return make_account(engine, "player", "other@example.com", "Ben", "Adams")


@pytest.fixture
def coach(engine):
    return make_account(engine, "coach", "coach@example.com", "Cara", "Jones")


@pytest.fixture
def admin(engine):
    return make_account(engine, "admin", "admin@example.com", "Dev", "Ops")


@pytest.fixture
def player_headers(client, player):
    return login_headers(client, player["email"])


@pytest.fixture
def coach_headers(client, coach):
    return login_headers(client, coach["email"])


@pytest.fixture
def admin_headers(client, admin):
    return login_headers(client, admin["email"])
