# edusphere/logging_config.py
"""
Logging for the checkout API.

- JSON (`LOG_FORMAT=json`) or console output
- Request id carried through a context variable, so service-layer
  records are tied to the HTTP request that caused them
- Provider credentials masked before a record is written
- A separate "business" stream for money movement and screening
"""

import logging
import sys
import json
from contextvars import ContextVar
from pathlib import Path
from datetime import datetime, timezone
from typing import Any, Optional
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
import traceback

from .config import settings

# Set by RequestLoggingMiddleware for the lifetime of one request
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

SENSITIVE_KEYS = frozenset({
    "access_token",
    "authorization",
    "client_secret",
    "secret_key",
    "api_key",
    "password",
})
MASK = "****"


def mask_sensitive(value: Any) -> Any:
    """Replace credential values in nested dicts/lists with a mask"""
    if isinstance(value, dict):
        return {
            k: MASK if str(k).lower() in SENSITIVE_KEYS else mask_sensitive(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [mask_sensitive(v) for v in value]
    return value


class RequestContextFilter(logging.Filter):
    """Stamps every record with the current request id and masks extra_data"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "request_id", None):
            record.request_id = request_id_var.get()
        if hasattr(record, "extra_data"):
            record.extra_data = mask_sensitive(record.extra_data)
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line for log shippers"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
        }

        for key in ("request_id", "user_id"):
            value = getattr(record, key, None)
            if value:
                log_data[key] = value

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        # Money values are Decimals, intent ids are UUIDs
        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Console formatter for local development"""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    # Shown inline when present in extra_data
    INLINE_KEYS = ("order_id", "intent_id", "refund_request_id", "method", "code")

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if settings.ENVIRONMENT == "development":
            levelname = f"{self.COLORS.get(levelname, self.RESET)}{levelname:8s}{self.RESET}"
        else:
            levelname = f"{levelname:8s}"

        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')
        parts = [f"{timestamp} | {levelname} | {record.name:28s} | {record.getMessage()}"]

        if getattr(record, "user_id", None):
            parts.append(f"[user={record.user_id}]")
        if getattr(record, "request_id", None):
            parts.append(f"[req={record.request_id[:8]}]")

        extra = getattr(record, "extra_data", None)
        if isinstance(extra, dict):
            parts.extend(f"{key}={extra[key]}" for key in self.INLINE_KEYS if extra.get(key) is not None)

        message = " ".join(parts)
        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"
        return message


def _file_handler(path: Path, level: int, rotate_daily: bool = False) -> logging.Handler:
    if rotate_daily:
        handler = TimedRotatingFileHandler(path, when="midnight", backupCount=30, encoding="utf-8")
    else:
        handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=10, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter())
    handler.addFilter(RequestContextFilter())
    return handler


def setup_logging():
    """
    Configure the root and business loggers. Call once at startup;
    calling again replaces the handlers instead of stacking them.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG if settings.ENVIRONMENT == "development" else logging.INFO)
    console_handler.setFormatter(
        StructuredFormatter() if settings.LOG_FORMAT == "json" else HumanReadableFormatter()
    )
    console_handler.addFilter(RequestContextFilter())
    root_logger.addHandler(console_handler)

    business_logger.handlers.clear()
    business_logger.propagate = True

    if settings.ENABLE_FILE_LOGGING:
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        root_logger.addHandler(_file_handler(log_dir / "checkout.log", logging.INFO))
        root_logger.addHandler(_file_handler(log_dir / "errors.log", logging.ERROR, rotate_daily=True))

        # Audit trail of checkouts, payments and refunds, kept out of the main log
        business_logger.addHandler(_file_handler(log_dir / "business.log", logging.INFO))
        business_logger.propagate = False

    for name, level in (
        ("uvicorn", logging.INFO),
        ("uvicorn.access", logging.WARNING),
        ("sqlalchemy.engine", logging.WARNING),
        ("stripe", logging.WARNING),
        ("httpx", logging.WARNING),
        ("httpcore", logging.WARNING),
    ):
        logging.getLogger(name).setLevel(level)

    logging.getLogger(__name__).info(
        "Logging configured",
        extra={
            "extra_data": {
                "environment": settings.ENVIRONMENT,
                "log_level": settings.LOG_LEVEL,
                "log_format": settings.LOG_FORMAT,
                "file_logging": settings.ENABLE_FILE_LOGGING
            }
        }
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


business_logger = logging.getLogger("business")


def log_business_event(
    event_type: str,
    user_id: str = None,
    **kwargs: Any
):
    """
    Record a money or screening event on the business stream

    Usage:
        log_business_event(
            "checkout_completed",
            user_id="user_123",
            order_id=42,
            total="50.00",
            method="wallet"
        )
    """
    business_logger.info(
        f"Business Event: {event_type}",
        extra={
            "user_id": user_id,
            "extra_data": {
                "event_type": event_type,
                **kwargs
            }
        }
    )
