# edusphere/middleware.py
"""
Request tracing and response hardening.
"""

import time
import uuid
from typing import Callable, Optional
from urllib.parse import urlsplit, parse_qs

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging_config import get_logger, request_id_var

logger = get_logger(__name__)

SLOW_REQUEST_SECONDS = 2.0

# Responses under these prefixes carry balances, orders or payment state
NO_STORE_PREFIXES = ("/checkout", "/orders", "/wallet", "/refunds", "/api/", "/payments/", "/admin/")


def redirect_outcome(location: Optional[str]) -> Optional[str]:
    """`checkout_error` / `payment` value of a redirect target, if any"""
    if not location:
        return None
    query = parse_qs(urlsplit(location).query)
    for key in ("checkout_error", "payment"):
        if key in query:
            return f"{key}={query[key][0]}"
    if "ordered" in query:
        return "ordered"
    return None


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Assigns a request id (honouring an incoming X-Request-ID), exposes it to
    every log record of the request, and logs one line per response.
    Checkout redirects are logged with their outcome code.
    """

    EXCLUDED_PATHS = ("/health", "/docs", "/openapi.json", "/redoc")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.user_id = None
        token = request_id_var.set(request_id)

        start_time = time.perf_counter()
        path = request.url.path
        should_log = not path.startswith(self.EXCLUDED_PATHS)

        try:
            if should_log:
                logger.debug(
                    f"Incoming request: {request.method} {path}",
                    extra={
                        "extra_data": {
                            "client_host": request.client.host if request.client else None,
                            "forwarded_for": request.headers.get("x-forwarded-for"),
                        }
                    }
                )

            try:
                response = await call_next(request)
            except Exception as exc:
                logger.error(
                    f"Request failed: {request.method} {path}",
                    extra={
                        "user_id": request.state.user_id,
                        "extra_data": {
                            "process_time_ms": int((time.perf_counter() - start_time) * 1000),
                            "exception": str(exc)
                        }
                    },
                    exc_info=True
                )
                raise

            elapsed = time.perf_counter() - start_time
            elapsed_ms = int(elapsed * 1000)
            # Set by the auth dependency once the caller is known
            user_id = getattr(request.state, "user_id", None)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = str(elapsed_ms)

            if should_log:
                if response.status_code >= 500:
                    log = logger.error
                elif response.status_code >= 400:
                    log = logger.warning
                else:
                    log = logger.info

                log(
                    f"{request.method} {path} -> {response.status_code}",
                    extra={
                        "user_id": user_id,
                        "extra_data": {
                            "status_code": response.status_code,
                            "process_time_ms": elapsed_ms,
                            "outcome": redirect_outcome(response.headers.get("location")),
                        }
                    }
                )

            if elapsed > SLOW_REQUEST_SECONDS:
                logger.warning(
                    f"Slow request: {request.method} {path}",
                    extra={"user_id": user_id, "extra_data": {"process_time_ms": elapsed_ms}}
                )

            return response
        finally:
            request_id_var.reset(token)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Standard hardening headers; money endpoints are never cached"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"

        return response


def register_middleware(app):
    """Last added runs first, so request logging wraps the security headers."""
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
