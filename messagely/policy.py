"""
Authorization rules for messages and per-user resources.

The functions take the requester's username and the message as returned
by ``storage.get_message`` and have no HTTP dependency. Note that a
rejected viewer gets AuthorizationError (401) rather than NotFoundError,
so the existence of a message id is visible to any logged-in user.
"""

from messagely.errors import AuthorizationError


def can_view_message(username: str, message: dict) -> bool:
    """Only the sender and the recipient may view a message."""
    return username in (message["from_user"]["username"], message["to_user"]["username"])


def can_mark_read(username: str, message: dict) -> bool:
    """Only the recipient may mark a message read."""
    return username == message["to_user"]["username"]


def ensure_can_view_message(username: str, message: dict) -> None:
    if not can_view_message(username, message):
        raise AuthorizationError("Unauthorized")


def ensure_can_mark_read(username: str, message: dict) -> None:
    if not can_mark_read(username, message):
        raise AuthorizationError("Unauthorized")


def ensure_correct_user(username: str, target_username: str) -> None:
    """Per-user resources are visible to that user only."""
    if username != target_username:
        raise AuthorizationError("Unauthorized")
