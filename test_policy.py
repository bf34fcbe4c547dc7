"""
Tests for the authorization policy and the per-user routes it guards.
"""

import pytest

from conftest import auth_headers
from messagely.errors import AuthorizationError
from messagely.policy import (
    can_view_message,
    can_mark_read,
    ensure_can_view_message,
    ensure_can_mark_read,
    ensure_correct_user,
)
from messagely.storage import create_message


def summary(username: str) -> dict:
    return {"username": username, "first_name": "", "last_name": "", "phone": ""}


@pytest.fixture
def message() -> dict:
    """alice -> bob, shaped like storage.get_message output."""
    return {
        "id": 1,
        "body": "hi",
        "sent_at": None,
        "read_at": None,
        "from_user": summary("alice"),
        "to_user": summary("bob"),
    }


class TestMessagePolicy:
    """Test who may view and mark a message."""

    @pytest.mark.parametrize("username,allowed", [("alice", True), ("bob", True), ("carol", False)])
    def test_view(self, message, username, allowed):
        assert can_view_message(username, message) is allowed

    @pytest.mark.parametrize("username,allowed", [("alice", False), ("bob", True), ("carol", False)])
    def test_mark_read(self, message, username, allowed):
        assert can_mark_read(username, message) is allowed

    def test_ensure_view_raises(self, message):
        ensure_can_view_message("alice", message)

        with pytest.raises(AuthorizationError):
            ensure_can_view_message("carol", message)

    def test_ensure_mark_read_raises(self, message):
        ensure_can_mark_read("bob", message)

        with pytest.raises(AuthorizationError):
            ensure_can_mark_read("alice", message)

    def test_ensure_correct_user(self):
        ensure_correct_user("alice", "alice")

        with pytest.raises(AuthorizationError):
            ensure_correct_user("alice", "bob")


class TestUserRoutes:
    """Test /users endpoints."""

    def test_list_users(self, client, users):
        response = client.get("/users", headers=auth_headers("carol"))

        assert response.status_code == 200
        assert [u["username"] for u in response.json()["users"]] == ["alice", "bob", "carol"]
        assert "password" not in response.json()["users"][0]

    def test_list_users_requires_login(self, client, users):
        assert client.get("/users").status_code == 401

    def test_user_detail(self, client, users):
        response = client.get("/users/alice", headers=auth_headers("alice"))

        assert response.status_code == 200
        user = response.json()["user"]
        assert user["username"] == "alice"
        assert "join_at" in user
        assert "last_login_at" in user
        assert "password" not in user

    def test_user_detail_other_user(self, client, users):
        response = client.get("/users/alice", headers=auth_headers("bob"))

        assert response.status_code == 401

    def test_messages_from_and_to(self, client, users, db):
        create_message(db, "alice", "bob", "hi bob")

        sent = client.get("/users/alice/from", headers=auth_headers("alice"))
        received = client.get("/users/bob/to", headers=auth_headers("bob"))

        assert sent.status_code == 200
        assert sent.json()["messages"][0]["to_user"]["username"] == "bob"
        assert received.status_code == 200
        assert received.json()["messages"][0]["from_user"]["username"] == "alice"

    def test_messages_of_other_user(self, client, users, db):
        create_message(db, "alice", "bob", "hi bob")

        response = client.get("/users/bob/to", headers=auth_headers("alice"))

        assert response.status_code == 401

    def test_no_messages_is_404(self, client, users):
        response = client.get("/users/carol/from", headers=auth_headers("carol"))

        assert response.status_code == 404
