import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from pythonjsonlogger import jsonlogger

from messagely.metrics import record_http_request


# Context variable to store request_id for the current request
request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return request_id_ctx.get()


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter to ensure ISO-8601 timestamps and request_id."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get('ts'):
            log_record['ts'] = datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%f')[:-3] + 'Z'
        log_record['level'] = record.levelname

        if 'request_id' not in log_record:
            req_id = request_id_ctx.get()
            if req_id:
                log_record['request_id'] = req_id


def setup_logging(log_level: str = "INFO"):
    """
    Setup structured JSON logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger = logging.getLogger()
    logger.setLevel(log_level.upper())

    # Remove existing handlers
    logger.handlers = []

    json_handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        '%(ts)s %(level)s %(name)s %(message)s'
    )
    json_handler.setFormatter(formatter)

    logger.addHandler(json_handler)

    # Route Uvicorn loggers through the same JSON handler
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(logger_name)
        uvicorn_logger.handlers = []
        uvicorn_logger.addHandler(json_handler)
        uvicorn_logger.propagate = False

    # Our middleware logs every request already
    logging.getLogger("uvicorn.access").disabled = True

    return logger


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all HTTP requests in structured JSON format.

    Log keys:
    - ts, level, request_id, method, path, status, latency_ms

    For /auth requests, also includes:
    - username: the username the request tried to log in or register as
    - result: success, invalid_credentials, validation_error, conflict
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        token = request_id_ctx.set(request_id)
        start_time = time.time()

        try:
            try:
                response = await call_next(request)
            except Exception:
                # Unhandled errors still get a request line and a 500 sample
                self._log_request(request, request_id, 500, start_time)
                raise

            response.headers["X-Request-ID"] = request_id
            self._log_request(request, request_id, response.status_code, start_time)
            return response
        finally:
            request_id_ctx.reset(token)

    @staticmethod
    def _log_request(request: Request, request_id: str, status: int, start_time: float) -> None:
        latency_seconds = time.time() - start_time
        latency_ms = round(latency_seconds * 1000, 2)

        # Label by route template to keep /messages/{message_id} low-cardinality
        route = request.scope.get("route")
        route_path = getattr(route, "path", request.url.path)

        if route_path != "/metrics":
            record_http_request(
                method=request.method,
                path=route_path,
                status=status,
                latency_seconds=latency_seconds
            )

        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": status,
            "latency_ms": latency_ms,
        }

        if hasattr(request.state, "auth_log_data"):
            log_data.update(request.state.auth_log_data)

        logger = logging.getLogger("messagely.requests")

        if status >= 500:
            logger.error("Request completed", extra=log_data)
        elif status >= 400:
            logger.warning("Request completed", extra=log_data)
        else:
            logger.info("Request completed", extra=log_data)


def log_auth_data(request: Request, username: Optional[str] = None, result: Optional[str] = None):
    """
    Attach authentication details to the request state so the
    middleware includes them in the request log line.
    """
    auth_data = {}

    if username is not None:
        auth_data["username"] = username

    if result is not None:
        auth_data["result"] = result

    request.state.auth_log_data = auth_data
