"""Tests for bearer tokens, the connection authenticator and auth endpoints."""
import inspect
from datetime import timedelta

import jwt
import pytest

from app.auth import router as auth_router
from app.auth.service import hash_password, verify_password
from app.auth.tokens import (
    ConnectionAuthenticator,
    extract_bearer_token,
    token_from_handshake,
)
from app.errors import AuthenticationError

from conftest import TEST_JWT_SECRET, auth_headers, signup


class TestBearerExtraction:
    """Tests for locating the credential."""

    def test_extract_bearer_token(self):
        assert extract_bearer_token("Bearer abc") == "abc"
        assert extract_bearer_token("bearer   abc ") == "abc"
        assert extract_bearer_token("Basic abc") is None
        assert extract_bearer_token("Bearer") is None
        assert extract_bearer_token(None) is None

    def test_query_parameter_wins_over_header(self):
        token = token_from_handshake({"token": "from-query"}, {"authorization": "Bearer from-header"})
        assert token == "from-query"

    def test_header_fallback(self):
        assert token_from_handshake({}, {"authorization": "Bearer from-header"}) == "from-header"

    def test_nothing_supplied(self):
        assert token_from_handshake({}, {}) is None


class TestConnectionAuthenticator:
    """Each rejection reason is distinguishable by message."""

    @pytest.fixture
    def auth(self):
        return ConnectionAuthenticator(TEST_JWT_SECRET)

    def test_round_trip(self, auth):
        assert auth.authenticate(auth.issue("user-1")) == "user-1"

    def test_missing(self, auth):
        for token in (None, ""):
            with pytest.raises(AuthenticationError) as exc:
                auth.authenticate(token)
            assert exc.value.message == "missing credential"

    def test_wrong_signature(self, auth):
        forged = ConnectionAuthenticator("some-other-secret").issue("user-1")
        with pytest.raises(AuthenticationError) as exc:
            auth.authenticate(forged)
        assert exc.value.message == "invalid credential"

    def test_expired(self, auth):
        token = auth.issue("user-1", expires_in=timedelta(seconds=-10))
        with pytest.raises(AuthenticationError) as exc:
            auth.authenticate(token)
        assert exc.value.message == "invalid credential"

    def test_garbage(self, auth):
        with pytest.raises(AuthenticationError) as exc:
            auth.authenticate("not-a-jwt")
        assert exc.value.message == "invalid credential"

    def test_no_identity_claim(self, auth):
        token = jwt.encode({"role": "admin"}, TEST_JWT_SECRET, algorithm="HS256")
        with pytest.raises(AuthenticationError) as exc:
            auth.authenticate(token)
        assert exc.value.message == "malformed credential"

    def test_legacy_user_id_claim(self, auth):
        token = jwt.encode({"userId": "legacy-1"}, TEST_JWT_SECRET, algorithm="HS256")
        assert auth.authenticate(token) == "legacy-1"

    def test_empty_secret_refused(self):
        with pytest.raises(ValueError):
            ConnectionAuthenticator("")

    def test_status_code(self):
        assert AuthenticationError().status_code == 401


def test_password_hashing():
    hashed = hash_password("secret123")
    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("secret123", "")
    assert not verify_password("secret123", "not-a-bcrypt-hash")


def test_long_passwords_are_hashed_in_full():
    long_password = "p" * 100
    hashed = hash_password(long_password)
    assert verify_password(long_password, hashed)
    # A 72-character prefix must not match
    assert not verify_password("p" * 72, hashed)


def test_multibyte_password_over_72_bytes():
    password = "пароль" * 10
    assert len(password.encode("utf-8")) > 72
    assert verify_password(password, hash_password(password))


def test_password_handlers_run_off_the_event_loop():
    assert not inspect.iscoroutinefunction(auth_router.signup)
    assert not inspect.iscoroutinefunction(auth_router.login)


class TestAuthEndpoints:
    """Tests for /api/auth/*."""

    def test_signup(self, client):
        data = signup(client, "Alice", display_name="Alice A")

        assert data["message"] == "User created"
        assert data["user"]["username"] == "alice"
        assert data["user"]["displayName"] == "Alice A"
        assert "password" not in str(data["user"]).lower()
        assert client.app.state.authenticator.authenticate(data["token"]) == data["user"]["id"]

    def test_signup_defaults_display_name(self, client):
        data = signup(client, "bob")
        assert data["user"]["displayName"] == "bob"

    def test_duplicate_username(self, client):
        signup(client, "alice")
        response = client.post("/api/auth/signup", json={"username": "ALICE", "password": "secret123"})
        assert response.status_code == 409
        assert response.json()["message"] == "username already exists"

    @pytest.mark.parametrize("body", [
        {"username": "al", "password": "secret123"},
        {"username": "alice", "password": "123"},
        {"username": "bad name!", "password": "secret123"},
        {"password": "secret123"},
    ])
    def test_signup_validation(self, client, body):
        response = client.post("/api/auth/signup", json=body)
        assert response.status_code == 400
        assert response.json()["message"] == "Validation error"

    def test_login(self, client):
        created = signup(client, "alice")

        response = client.post("/api/auth/login", json={"username": "alice", "password": "secret123"})

        assert response.status_code == 200
        body = response.json()
        assert body["message"] == "Login successful"
        assert body["user"]["id"] == created["user"]["id"]
        assert body["token"]

    def test_login_wrong_password(self, client):
        signup(client, "alice")
        response = client.post("/api/auth/login", json={"username": "alice", "password": "nope-nope"})
        assert response.status_code == 401
        assert response.json() == {"message": "Invalid credentials"}

    def test_signup_and_login_with_long_password(self, client):
        password = "p" * 100

        response = client.post("/api/auth/signup", json={"username": "longpw", "password": password})
        assert response.status_code == 201

        login = client.post("/api/auth/login", json={"username": "longpw", "password": password})
        assert login.status_code == 200
        truncated = client.post("/api/auth/login", json={"username": "longpw", "password": password[:72]})
        assert truncated.status_code == 401

    def test_login_unknown_user(self, client):
        response = client.post("/api/auth/login", json={"username": "ghost", "password": "secret123"})
        assert response.status_code == 401

    def test_me(self, client):
        created = signup(client, "alice")
        response = client.get("/api/auth/me", headers=auth_headers(created["token"]))
        assert response.status_code == 200
        assert response.json()["user"]["id"] == created["user"]["id"]

    def test_me_without_token(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json() == {"message": "missing credential"}

    def test_me_with_bad_token(self, client):
        response = client.get("/api/auth/me", headers=auth_headers("garbage"))
        assert response.status_code == 401
        assert response.json() == {"message": "invalid credential"}

    def test_me_for_deleted_identity(self, client):
        token = client.app.state.authenticator.issue("no-such-user")
        response = client.get("/api/auth/me", headers=auth_headers(token))
        assert response.status_code == 404
