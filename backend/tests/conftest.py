"""Shared test fixtures and configuration for backend tests."""
import asyncio
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from app.auth.tokens import ConnectionAuthenticator
from app.chat.connection import Connection
from app.config import AppSettings, DatabaseSettings, JWTSecrets, Secrets
from app.main import create_app
from app.store import DuckDBStore

TEST_JWT_SECRET = "test-secret-do-not-use"


class FakeWebSocket:
    """Records frames sent to it; can be told to fail or stall."""

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail
        self.delay = delay

    async def send_json(self, data: Dict[str, Any]) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def types(self) -> List[str]:
        return [frame["type"] for frame in self.sent]

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [frame["payload"] for frame in self.sent if frame["type"] == event_type]


@pytest.fixture
def settings() -> AppSettings:
    """Settings for an isolated app: in-memory database, test JWT secret."""
    return AppSettings(
        database=DatabaseSettings(path=":memory:"),
        secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_JWT_SECRET)),
    )


@pytest.fixture
def client(settings):
    """TestClient with the lifespan running, so app.state is populated."""
    with TestClient(create_app(settings)) as test_client:
        yield test_client


@pytest.fixture
def store():
    db = DuckDBStore(":memory:")
    yield db
    db.close()


@pytest.fixture
def authenticator() -> ConnectionAuthenticator:
    return ConnectionAuthenticator(TEST_JWT_SECRET)


@pytest.fixture
def make_connection():
    """Factory for connections backed by a FakeWebSocket."""

    def _make(user_id: str, fail: bool = False, delay: float = 0.0) -> Connection:
        return Connection(FakeWebSocket(fail=fail, delay=delay), user_id)

    return _make


def frames(connection: Connection) -> FakeWebSocket:
    """The FakeWebSocket behind a connection made by ``make_connection``."""
    return connection._websocket


def signup(client: TestClient, username: str, display_name: Optional[str] = None) -> Dict[str, Any]:
    """Sign up a user and return {"user": ..., "token": ...}."""
    body = {"username": username, "password": "secret123"}
    if display_name:
        body["displayName"] = display_name
    response = client.post("/api/auth/signup", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def create_channel(client: TestClient, token: str, name: str = "general") -> Dict[str, Any]:
    response = client.post("/api/channels", json={"name": name}, headers=auth_headers(token))
    assert response.status_code == 201, response.text
    return response.json()["channel"]
