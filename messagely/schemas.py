"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
"""

from datetime import datetime, timezone
from typing import Annotated, Optional

from pydantic import BaseModel, Field, PlainSerializer


def to_utc_iso(value: datetime) -> str:
    """Render a stored timestamp as ISO-8601 UTC with a Z suffix."""
    # Stored values are naive UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


UTCDateTime = Annotated[datetime, PlainSerializer(to_utc_iso, return_type=str, when_used="json")]


# =============================================================================
# Pydantic Request Models
# =============================================================================

class RegisterRequest(BaseModel):
    """
    Registration payload.

    Fields are optional here so that missing or empty values reach the
    user store, which rejects them with a 400 "Missing required data".
    """
    username: Optional[str] = Field(None, description="Unique username")
    password: Optional[str] = Field(None, description="Plain text password")
    first_name: Optional[str] = Field(None, description="First name")
    last_name: Optional[str] = Field(None, description="Last name")
    phone: Optional[str] = Field(None, description="Phone number")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "username": "alice",
                    "password": "s3cret",
                    "first_name": "Alice",
                    "last_name": "Smith",
                    "phone": "+14155550100"
                }
            ]
        }
    }


class LoginRequest(BaseModel):
    """Login payload. Empty values simply fail authentication."""
    username: Optional[str] = Field(None, description="Username")
    password: Optional[str] = Field(None, description="Plain text password")


class MessageCreateRequest(BaseModel):
    """Payload for sending a message. The sender is the requester."""
    to_username: str = Field(..., min_length=1, description="Recipient username")
    body: str = Field(..., min_length=1, description="Message text")


# =============================================================================
# Pydantic Response Models
# =============================================================================

class TokenResponse(BaseModel):
    token: str = Field(..., description="Signed bearer token")


class ErrorDetail(BaseModel):
    message: str = Field(..., description="Error description")
    status: int = Field(..., description="HTTP status code")


class ErrorResponse(BaseModel):
    """Envelope for every error response."""
    error: ErrorDetail


class UserSummary(BaseModel):
    """Public profile of a user."""
    username: str
    first_name: str
    last_name: str
    phone: str


class UserDetail(UserSummary):
    join_at: UTCDateTime
    last_login_at: Optional[UTCDateTime] = None


class UsersListResponse(BaseModel):
    users: list[UserSummary] = Field(default_factory=list)


class UserDetailResponse(BaseModel):
    user: UserDetail


class SentMessage(BaseModel):
    """A message sent by a user, with the recipient embedded."""
    id: int
    to_user: UserSummary
    body: str
    sent_at: UTCDateTime
    read_at: Optional[UTCDateTime] = None


class ReceivedMessage(BaseModel):
    """A message received by a user, with the sender embedded."""
    id: int
    from_user: UserSummary
    body: str
    sent_at: UTCDateTime
    read_at: Optional[UTCDateTime] = None


class SentMessagesResponse(BaseModel):
    messages: list[SentMessage]


class ReceivedMessagesResponse(BaseModel):
    messages: list[ReceivedMessage]


class MessageDetail(BaseModel):
    """A single message with both parties embedded."""
    id: int
    body: str
    sent_at: UTCDateTime
    read_at: Optional[UTCDateTime] = None
    from_user: UserSummary
    to_user: UserSummary


class MessageDetailResponse(BaseModel):
    message: MessageDetail


class MessageCreated(BaseModel):
    id: int
    from_username: str
    to_username: str
    body: str
    sent_at: UTCDateTime


class MessageCreatedResponse(BaseModel):
    message: MessageCreated


class MessageRead(BaseModel):
    id: int
    read_at: UTCDateTime


class MessageReadResponse(BaseModel):
    message: MessageRead


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
