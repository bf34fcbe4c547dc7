import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response, Request, Depends, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from messagely.config import settings
from messagely.errors import MessagelyError, ValidationError, ConflictError, InvalidCredentialsError
from messagely.storage import (
    init_db,
    check_db_health,
    get_db,
    register_user,
    authenticate_user,
    update_login_timestamp,
    get_all_users,
    get_user,
    get_messages_from,
    get_messages_to,
    create_message,
    get_message,
    mark_message_read,
)
from messagely.policy import ensure_can_view_message, ensure_can_mark_read, ensure_correct_user
from messagely.security import create_token, get_current_username
from messagely.logging_utils import setup_logging, RequestLoggingMiddleware, log_auth_data
from messagely.metrics import record_auth_outcome, record_message_event, get_metrics, get_metrics_content_type
from messagely.schemas import (
    HealthResponse,
    ErrorResponse,
    RegisterRequest,
    LoginRequest,
    TokenResponse,
    UsersListResponse,
    UserDetailResponse,
    SentMessagesResponse,
    ReceivedMessagesResponse,
    MessageCreateRequest,
    MessageCreatedResponse,
    MessageDetailResponse,
    MessageReadResponse,
)


# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    init_db()
    yield


app = FastAPI(
    title="Messagely API",
    description="User registration, authentication and messages with read receipts",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Error Handlers
# =============================================================================

def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"message": message, "status": status_code}},
    )


@app.exception_handler(MessagelyError)
async def messagely_error_handler(request: Request, exc: MessagelyError) -> JSONResponse:
    return error_response(exc.message, exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info(f"Request validation failed: {exc.errors()}")
    return error_response("Invalid request data", status.HTTP_400_BAD_REQUEST)


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    # Rendered here so the request still passes back through the logging middleware
    logger.error(f"Store error on {request.method} {request.url.path}: {exc}")
    return error_response("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return error_response("Internal server error", status.HTTP_500_INTERNAL_SERVER_ERROR)


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid input"},
    401: {"model": ErrorResponse, "description": "Unauthorized"},
    404: {"model": ErrorResponse, "description": "Not found"},
}


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
async def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. SECRET_KEY is set (non-empty)
    2. DB is reachable and both tables exist

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.SECRET_KEY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="SECRET_KEY not configured")

    if not check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Auth Routes
# =============================================================================
# Plain def handlers: FastAPI runs them in its threadpool, keeping PBKDF2 off the event loop

@app.post("/auth/login", response_model=TokenResponse, responses=ERROR_RESPONSES)
def login(
    request: Request,
    credentials: LoginRequest,
    db: Session = Depends(get_db)
) -> TokenResponse:
    """
    Log in: {username, password} => {token}.

    Updates the user's last_login_at on success.
    """
    logger.info(f"Login attempt for {credentials.username}")

    if not authenticate_user(db, credentials.username, credentials.password):
        record_auth_outcome("login", "invalid_credentials")
        log_auth_data(request, username=credentials.username, result="invalid_credentials")
        raise InvalidCredentialsError("Invalid username / password")

    update_login_timestamp(db, credentials.username)
    record_auth_outcome("login", "success")
    log_auth_data(request, username=credentials.username, result="success")
    return TokenResponse(token=create_token(credentials.username))


@app.post("/auth/register", response_model=TokenResponse, responses=ERROR_RESPONSES)
def register(
    request: Request,
    payload: RegisterRequest,
    db: Session = Depends(get_db)
) -> TokenResponse:
    """
    Register a user and log them in:
    {username, password, first_name, last_name, phone} => {token}.
    """
    try:
        user = register_user(
            db,
            username=payload.username,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            phone=payload.phone,
        )
    except ValidationError:
        record_auth_outcome("register", "validation_error")
        log_auth_data(request, username=payload.username, result="validation_error")
        raise
    except ConflictError:
        record_auth_outcome("register", "conflict")
        log_auth_data(request, username=payload.username, result="conflict")
        raise

    record_auth_outcome("register", "success")
    log_auth_data(request, username=user["username"], result="success")
    return TokenResponse(token=create_token(user["username"]))


# =============================================================================
# User Routes
# =============================================================================

@app.get("/users", response_model=UsersListResponse, responses=ERROR_RESPONSES)
async def list_users(
    username: str = Depends(get_current_username),
    db: Session = Depends(get_db)
) -> UsersListResponse:
    """List basic info on all users. Any logged-in user may call this."""
    return UsersListResponse(users=get_all_users(db))


@app.get("/users/{target}", response_model=UserDetailResponse, responses=ERROR_RESPONSES)
async def user_detail(
    target: str,
    username: str = Depends(get_current_username),
    db: Session = Depends(get_db)
) -> UserDetailResponse:
    """Full profile of a user. Only that user may view it."""
    ensure_correct_user(username, target)
    return UserDetailResponse(user=get_user(db, target))


@app.get("/users/{target}/from", response_model=SentMessagesResponse, responses=ERROR_RESPONSES)
async def user_messages_from(
    target: str,
    username: str = Depends(get_current_username),
    db: Session = Depends(get_db)
) -> SentMessagesResponse:
    """
    Messages sent by a user, each with the recipient embedded.

    404 both when the user sent nothing and when the user does not exist.
    """
    ensure_correct_user(username, target)
    return SentMessagesResponse(messages=get_messages_from(db, target))


@app.get("/users/{target}/to", response_model=ReceivedMessagesResponse, responses=ERROR_RESPONSES)
async def user_messages_to(
    target: str,
    username: str = Depends(get_current_username),
    db: Session = Depends(get_db)
) -> ReceivedMessagesResponse:
    """Messages received by a user, each with the sender embedded."""
    ensure_correct_user(username, target)
    return ReceivedMessagesResponse(messages=get_messages_to(db, target))


# =============================================================================
# Message Routes
# =============================================================================

@app.get("/messages/{message_id}", response_model=MessageDetailResponse, responses=ERROR_RESPONSES)
async def message_detail(
    message_id: int,
    username: str = Depends(get_current_username),
    db: Session = Depends(get_db)
) -> MessageDetailResponse:
    """
    Message detail with both parties embedded.

    Only the sender or the recipient may view it.
    """
    message = get_message(db, message_id)
    ensure_can_view_message(username, message)
    return MessageDetailResponse(message=message)


@app.post("/messages", response_model=MessageCreatedResponse, responses=ERROR_RESPONSES)
async def send_message(
    payload: MessageCreateRequest,
    username: str = Depends(get_current_username),
    db: Session = Depends(get_db)
) -> MessageCreatedResponse:
    """
    Send a message from the requester:
    {to_username, body} => {message: {id, from_username, to_username, body, sent_at}}.
    """
    message = create_message(
        db,
        from_username=username,
        to_username=payload.to_username,
        body=payload.body,
    )
    record_message_event("sent")
    return MessageCreatedResponse(message=message)


@app.post("/messages/{message_id}/read", response_model=MessageReadResponse, responses=ERROR_RESPONSES)
async def read_message(
    message_id: int,
    username: str = Depends(get_current_username),
    db: Session = Depends(get_db)
) -> MessageReadResponse:
    """
    Mark a message read: => {message: {id, read_at}}.

    Only the recipient may do this. Repeated calls move read_at forward.
    """
    message = get_message(db, message_id)
    ensure_can_mark_read(username, message)
    result = mark_message_read(db, message_id)
    record_message_event("read")
    return MessageReadResponse(message=result)


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """Expose Prometheus-style metrics."""
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )
