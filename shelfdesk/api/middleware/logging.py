"""
Request/Response logging middleware.

Structured logging for every API request:
- Request timing with slow-request warnings
- Optional request body logging
- Correlation IDs carried in a ContextVar and echoed in X-Request-ID
"""

import json
import logging
import time
import uuid
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Set, Tuple

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

# Request ID for the request being served on this task/thread
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

logger = logging.getLogger("shelfdesk.api")


@dataclass
class LoggingConfig:
    """Configuration for request logging."""

    enabled: bool = True

    log_request_body: bool = False

    # Maximum body size to log (bytes)
    max_body_log_size: int = 10000

    # Exact paths that are never logged
    excluded_paths: Set[str] = field(default_factory=lambda: {
        "/health",
        "/favicon.ico",
    })

    # Long-lived streams are logged when they open, not when they finish
    stream_path_prefixes: Tuple[str, ...] = ("/api/v1/events/",)

    # Only these request headers are logged
    logged_headers: Set[str] = field(default_factory=lambda: {
        "user-agent",
        "content-type",
        "accept",
        "origin",
    })

    success_log_level: int = logging.INFO
    error_log_level: int = logging.WARNING

    # Seconds
    slow_request_threshold: float = 1.0

    request_id_header: str = "X-Request-ID"


class StructuredLogFormatter(logging.Formatter):
    """JSON formatter for log aggregators."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        for attr, key in (
            ("request_data", "request"),
            ("response_data", "response"),
            ("duration_ms", "duration_ms"),
        ):
            if hasattr(record, attr):
                log_data[key] = getattr(record, attr)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_request_id() -> str:
    """Get current request ID from context."""
    return request_id_var.get()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs one line per request with method, path, status and duration."""

    def __init__(self, app: FastAPI, config: Optional[LoggingConfig] = None):
        super().__init__(app)
        self.config = config or LoggingConfig()

    def _filter_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        return {
            key: value
            for key, value in headers.items()
            if key.lower() in self.config.logged_headers
        }

    async def _get_request_body(self, request: Request) -> Optional[str]:
        body = await request.body()
        if not body:
            return None
        if len(body) > self.config.max_body_log_size:
            return f"[BODY TOO LARGE: {len(body)} bytes]"

        return body.decode("utf-8", errors="replace")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(self.config.request_id_header) or str(uuid.uuid4())[:8]
        request_id_var.set(request_id)

        path = request.url.path
        if not self.config.enabled or path in self.config.excluded_paths:
            response = await call_next(request)
            response.headers[self.config.request_id_header] = request_id
            return response

        request_data = {
            "method": request.method,
            "path": path,
            "query": str(request.url.query) or None,
            "headers": self._filter_headers(dict(request.headers)),
            "client_ip": request.client.host if request.client else None,
        }
        if self.config.log_request_body and request.method in ("POST", "PUT", "PATCH"):
            body = await self._get_request_body(request)
            if body:
                request_data["body"] = body

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time
        duration_ms = round(duration * 1000, 2)

        response.headers[self.config.request_id_header] = request_id

        is_stream = path.startswith(self.config.stream_path_prefixes)
        if response.status_code >= 500:
            log_level = logging.ERROR
        elif response.status_code >= 400:
            log_level = self.config.error_log_level
        elif duration > self.config.slow_request_threshold and not is_stream:
            log_level = logging.WARNING
        else:
            log_level = self.config.success_log_level

        message = f"{request.method} {path} -> {response.status_code} ({duration_ms}ms)"
        if is_stream:
            message = f"[STREAM] {message}"
        elif duration > self.config.slow_request_threshold:
            message = f"[SLOW] {message}"

        logger.log(
            log_level,
            message,
            extra={
                "request_data": request_data,
                "response_data": {"status_code": response.status_code},
                "duration_ms": duration_ms,
            },
        )

        return response


def setup_logging(
    app: FastAPI,
    config: Optional[LoggingConfig] = None,
    structured: bool = True,
) -> None:
    """
    Install the request logging middleware.

    Args:
        app: FastAPI application instance
        config: Logging configuration
        structured: Emit JSON lines from the "shelfdesk" logger
    """
    if config is None:
        config = LoggingConfig()

    if structured:
        shelfdesk_logger = logging.getLogger("shelfdesk")
        if not any(isinstance(h.formatter, StructuredLogFormatter) for h in shelfdesk_logger.handlers):
            handler = logging.StreamHandler()
            handler.setFormatter(StructuredLogFormatter())
            shelfdesk_logger.addHandler(handler)
        shelfdesk_logger.setLevel(logging.INFO)

    app.add_middleware(RequestLoggingMiddleware, config=config)
