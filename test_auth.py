"""
Tests for the /auth endpoints, password hashing and tokens.

Tests cover:
- Registration returns a usable token
- Duplicate and incomplete registrations (400)
- Login success/failure and last_login_at updates
- Token signing and verification
"""

import inspect
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from conftest import make_user
from messagely.config import settings
from messagely.errors import AuthorizationError
from messagely.main import login, register
from messagely.schemas import to_utc_iso
from messagely.security import hash_password, verify_password, create_token, decode_token
from messagely.storage import get_user


REGISTRATION = {
    "username": "alice",
    "password": "secret",
    "first_name": "Alice",
    "last_name": "Smith",
    "phone": "+14155550100",
}


class TestRegisterRoute:
    """Test POST /auth/register."""

    def test_register_returns_token(self, client):
        response = client.post("/auth/register", json=REGISTRATION)

        assert response.status_code == 200
        token = response.json()["token"]
        assert decode_token(token) == "alice"

    def test_token_grants_access(self, client):
        token = client.post("/auth/register", json=REGISTRATION).json()["token"]

        response = client.get("/users/alice", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["user"]["username"] == "alice"

    def test_duplicate_username(self, client):
        client.post("/auth/register", json=REGISTRATION)

        response = client.post("/auth/register", json=REGISTRATION)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Username already taken. Please try another one"

    def test_missing_field(self, client):
        data = {k: v for k, v in REGISTRATION.items() if k != "phone"}

        response = client.post("/auth/register", json=data)

        assert response.status_code == 400
        assert response.json() == {"error": {"message": "Missing required data", "status": 400}}

    def test_password_not_in_response(self, client):
        response = client.post("/auth/register", json=REGISTRATION)

        assert "secret" not in response.text


class TestLoginRoute:
    """Test POST /auth/login."""

    def test_login_success(self, client, db):
        make_user(db, "alice", password="secret")

        response = client.post("/auth/login", json={"username": "alice", "password": "secret"})

        assert response.status_code == 200
        assert decode_token(response.json()["token"]) == "alice"

    def test_login_updates_timestamp(self, client, db):
        before = make_user(db, "alice", password="secret")["last_login_at"]

        client.post("/auth/login", json={"username": "alice", "password": "secret"})

        assert get_user(db, "alice")["last_login_at"] > before

    def test_wrong_password(self, client, db):
        make_user(db, "alice", password="secret")

        response = client.post("/auth/login", json={"username": "alice", "password": "nope"})

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Invalid username / password"

    def test_failed_login_keeps_timestamp(self, client, db):
        before = make_user(db, "alice", password="secret")["last_login_at"]

        client.post("/auth/login", json={"username": "alice", "password": "nope"})

        assert get_user(db, "alice")["last_login_at"] == before

    def test_unknown_user(self, client):
        response = client.post("/auth/login", json={"username": "nobody", "password": "x"})

        assert response.status_code == 400

    def test_empty_credentials(self, client):
        response = client.post("/auth/login", json={})

        assert response.status_code == 400


class TestPasswordHashing:
    """Test the opaque hash."""

    def test_hash_differs_from_plaintext(self):
        assert hash_password("secret") != "secret"

    def test_hash_is_salted(self):
        assert hash_password("secret") != hash_password("secret")

    def test_verify(self):
        hashed = hash_password("secret")

        assert verify_password("secret", hashed) is True
        assert verify_password("Secret", hashed) is False

    def test_verify_with_other_work_factor(self):
        hashed = hash_password("secret", iterations=2000)

        assert hashed.split("$")[1] == "2000"
        assert verify_password("secret", hashed) is True

    def test_malformed_hash(self):
        assert verify_password("secret", "not-a-hash") is False
        assert verify_password("secret", "pbkdf2_sha256$x$zz$zz") is False


class TestTokens:
    """Test signed identity tokens."""

    def test_round_trip(self):
        assert decode_token(create_token("alice")) == "alice"

    def test_wrong_key_rejected(self):
        token = jwt.encode({"username": "alice"}, "other-key", algorithm="HS256")

        with pytest.raises(AuthorizationError):
            decode_token(token)

    def test_missing_username_rejected(self):
        token = jwt.encode({"sub": "alice"}, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(AuthorizationError):
            decode_token(token)

    def test_expired_token_rejected(self):
        token = jwt.encode(
            {"username": "alice", "exp": 0}, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM
        )

        with pytest.raises(AuthorizationError):
            decode_token(token)


class TestHandlersOffEventLoop:
    """Password hashing must not block the event loop."""

    @pytest.mark.parametrize("handler", [login, register])
    def test_auth_handlers_run_in_threadpool(self, handler):
        # FastAPI runs plain def endpoints in its threadpool
        assert not inspect.iscoroutinefunction(handler)


class TestTimestampSerialization:
    """Test that timestamps go out as UTC."""

    def test_naive_is_treated_as_utc(self):
        assert to_utc_iso(datetime(2025, 1, 15, 10, 0, 0, 123456)) == "2025-01-15T10:00:00.123456Z"

    def test_aware_is_converted(self):
        value = datetime(2025, 1, 15, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_utc_iso(value) == "2025-01-15T10:00:00Z"

    def test_user_detail_timestamps(self, client):
        token = client.post("/auth/register", json=REGISTRATION).json()["token"]

        user = client.get("/users/alice", headers={"Authorization": f"Bearer {token}"}).json()["user"]

        assert user["join_at"].endswith("Z")
        assert user["last_login_at"].endswith("Z")
