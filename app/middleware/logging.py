"""Structured logging middleware with request tracking."""
import logging
import json
import time
import uuid
from contextvars import ContextVar
from typing import Callable, Optional
from datetime import datetime, timezone

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from app.middleware.rate_limit import get_client_ip
from app.settings import settings

# Query parameters that never reach the logs
REDACTED_QUERY_KEYS = {"token", "access_token"}

# Probes hit these every few seconds; they log at DEBUG
QUIET_PATHS = {"/health", "/ready"}

# Outbound clients that log every HTTP call at INFO
NOISY_LOGGERS = ("httpx", "httpcore")

_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def current_request_id() -> Optional[str]:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """Stamps the active request id on every record logged while serving it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = current_request_id()
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            log_data["request_id"] = request_id

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_data.update(extra_fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local development."""

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if not getattr(record, "request_id", None):
            record.request_id = "-"
        return super().format(record)


def _loggable_query(request: Request) -> str:
    return "&".join(
        f"{key}={'***' if key.lower() in REDACTED_QUERY_KEYS else value}"
        for key, value in request.query_params.multi_items()
    )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one line per request and echoes the request id as X-Request-ID.

    An id assigned by the proxy in front of the app is reused so edge and
    app logs can be joined.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.logger = logging.getLogger("app.requests")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = _request_id.set(request_id)

        path = request.url.path
        level = logging.DEBUG if path in QUIET_PATHS else logging.INFO
        fields = {
            "method": request.method,
            "path": path,
            "query_params": _loggable_query(request),
            "client_ip": get_client_ip(request),
        }
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            fields["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
            fields["error"] = str(e)
            self.logger.error(
                f"{request.method} {path} failed: {e}",
                extra={"extra_fields": fields},
                exc_info=True
            )
            raise
        finally:
            _request_id.reset(token)

        fields["status_code"] = response.status_code
        fields["duration_ms"] = round((time.perf_counter() - start_time) * 1000, 2)
        if response.status_code >= 500:
            level = logging.ERROR
        elif response.status_code in (401, 429):
            level = max(level, logging.WARNING)
        self.logger.log(
            level,
            f"{request.method} {path} - {response.status_code}",
            extra={"request_id": request_id, "extra_fields": fields}
        )

        response.headers["X-Request-ID"] = request_id
        return response


def setup_logging():
    """Configure the root logger from settings."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))
    root_logger.handlers.clear()

    handlers = [logging.StreamHandler()]
    handlers[0].setFormatter(JSONFormatter() if settings.LOG_FORMAT == "json" else TextFormatter())
    if settings.LOG_FILE:
        file_handler = logging.FileHandler(settings.LOG_FILE)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    for handler in handlers:
        handler.addFilter(RequestIdFilter())
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={settings.LOG_LEVEL}, format={settings.LOG_FORMAT}")
