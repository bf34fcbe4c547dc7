"""
Typed errors raised by the stores and the authorization policy.

Each error carries the HTTP status it is rendered with. Handlers branch
on the exception type; the message text is for humans only.
"""

from fastapi import status


class MessagelyError(Exception):
    """Base class for expected, user-facing failures."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MessagelyError):
    """Missing or invalid input."""
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(MessagelyError):
    """Duplicate unique key."""
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidCredentialsError(MessagelyError):
    """Username/password pair did not authenticate."""
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(MessagelyError):
    status_code = status.HTTP_404_NOT_FOUND


class AuthorizationError(MessagelyError):
    """Requester identity does not match the resource."""
    status_code = status.HTTP_401_UNAUTHORIZED
