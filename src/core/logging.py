"""Structured logging with per-request correlation.

Every record emitted while a request is in flight carries the request id and,
once the caller has been resolved, the calling principal. Key material and
credentials never reach the log stream.
"""

import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.core.config import Settings

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
principal_var: ContextVar[str | None] = ContextVar("principal", default=None)

REDACTED = "[REDACTED]"

# Substrings; a key matching any of them is redacted
SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "api_key",
        "secret",
        "token",
        "authorization",
        "x-api-key",
        "access_key",
        "wrapped_key",
        "ciphertext",
        "plaintext",
    }
)

# Attributes every LogRecord has; anything else arrived through ``extra``
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}

_NOISY_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "uvicorn.error": logging.INFO,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "urllib3": logging.WARNING,
}


def get_request_id() -> str | None:
    """Get the current request ID from context."""
    return request_id_var.get()


def get_principal() -> str | None:
    return principal_var.get()


def bind_principal(principal: str) -> None:
    """Attach the resolved caller to the current request's log records."""
    principal_var.set(principal)


def redact_sensitive_data(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively replace sensitive values with ``[REDACTED]``.

    Matching is case-insensitive on substrings of the key, so
    ``key_service_api_key`` and ``Wrapped_Key`` are both caught.
    """
    redacted: dict[str, Any] = {}
    for key, value in data.items():
        if any(sensitive in key.lower() for sensitive in SENSITIVE_FIELDS):
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact_sensitive_data(value)
        elif isinstance(value, list):
            redacted[key] = [
                redact_sensitive_data(item) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            redacted[key] = value
    return redacted


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = get_request_id()
        if request_id:
            log_data["request_id"] = request_id
        principal = get_principal()
        if principal:
            log_data["principal"] = principal

        if record.pathname:
            log_data["location"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            log_data["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "traceback": self.formatException(record.exc_info),
            }

        extra = _extra_fields(record)
        if extra:
            log_data["extra"] = redact_sensitive_data(extra)

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines for local development."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-8s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = {
            "request_id": get_request_id(),
            "principal": get_principal(),
            **redact_sensitive_data(_extra_fields(record)),
        }
        pairs = " ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        return f"{line} [{pairs}]" if pairs else line


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Assigns a request id, logs each request and echoes the id back."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_token = request_id_var.set(request_id)
        principal_token = principal_var.set(None)

        logger = logging.getLogger("medvault.request")
        started = time.perf_counter()
        logger.info(
            "Request started",
            extra={
                "method": request.method,
                "path": request.url.path,
                "query": str(request.query_params) if request.query_params else None,
                "client_ip": request.client.host if request.client else None,
            },
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "Request failed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "error": str(e),
                },
            )
            raise
        else:
            logger.info(
                "Request completed",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                },
            )
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            principal_var.reset(principal_token)
            request_id_var.reset(request_token)


def setup_logging(settings: Settings) -> None:
    """Route all logging to stdout in the configured format and level."""
    log_level = getattr(logging, settings.app_log_level.upper(), logging.INFO)
    formatter: logging.Formatter = (
        TextFormatter() if settings.app_log_format == "text" else JSONFormatter()
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.setLevel(log_level)
    root_logger.addHandler(handler)

    for name, level in _NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    logging.getLogger("medvault").setLevel(log_level)


def setup_request_logging(app: FastAPI) -> None:
    """Add request logging middleware to FastAPI application."""
    app.add_middleware(RequestLoggingMiddleware)
