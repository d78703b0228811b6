# edusphere/error_handlers.py
"""
Centralized error handling with custom exception classes,
error codes, and FastAPI exception handlers.
"""

from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError, IntegrityError
from typing import Any, Dict, Optional
from datetime import datetime, timezone
import traceback

from .logging_config import get_logger
from .config import settings

logger = get_logger(__name__)


# ============================================================================
# ERROR CODES - For client-side error handling
# ============================================================================

class ErrorCode:
    """Centralized error codes for consistent client-side handling"""

    # General errors (1xxx)
    INTERNAL_SERVER_ERROR = "ERR_1000"
    VALIDATION_ERROR = "ERR_1001"
    NOT_FOUND = "ERR_1002"
    FORBIDDEN = "ERR_1004"

    # Database errors (2xxx)
    DATABASE_ERROR = "ERR_2000"
    INTEGRITY_ERROR = "ERR_2001"

    # Checkout errors (3xxx)
    EMPTY_CART = "ERR_3000"
    ALREADY_ENROLLED = "ERR_3001"
    INSUFFICIENT_WALLET_BALANCE = "ERR_3002"
    OUT_OF_STOCK = "ERR_3003"
    PAYMENT_REQUIRED = "ERR_3004"
    INVALID_PAYMENT_METHOD = "ERR_3005"
    PRO_REQUIRED = "ERR_3006"
    PAYMENT_BLOCKED = "ERR_3007"

    # Refund errors (35xx)
    REFUND_NOT_PENDING = "ERR_3500"
    ALREADY_REFUNDED = "ERR_3501"
    NOT_REFUNDABLE = "ERR_3502"
    REFUND_PENDING_EXISTS = "ERR_3503"

    # External service errors (4xxx)
    PAYMENT_GATEWAY_ERROR = "ERR_4004"


# ============================================================================
# CUSTOM EXCEPTIONS
# ============================================================================

class AppException(Exception):
    """Base exception for all application errors"""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationException(AppException):
    """Raised when input validation fails"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.VALIDATION_ERROR,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class NotFoundException(AppException):
    """Raised when a resource is not found"""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            error_code=ErrorCode.NOT_FOUND,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "identifier": identifier}
        )


class ForbiddenException(AppException):
    """Raised when user doesn't have permission"""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            message=message,
            error_code=ErrorCode.FORBIDDEN,
            status_code=status.HTTP_403_FORBIDDEN
        )


class DatabaseException(AppException):
    """Raised when database operations fail"""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            message=message,
            error_code=ErrorCode.DATABASE_ERROR,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"original_error": str(original_error)} if original_error else {}
        )


class ExternalServiceException(AppException):
    """Raised when external service calls fail"""

    def __init__(
        self,
        service_name: str,
        message: str,
        error_code: str = ErrorCode.INTERNAL_SERVER_ERROR
    ):
        super().__init__(
            message=f"{service_name} error: {message}",
            error_code=error_code,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"service": service_name}
        )


class PaymentBlockedException(AppException):
    """Raised when fraud screening blocks a payment attempt"""

    def __init__(self, risk_score: int, flags: list):
        super().__init__(
            message="Payment blocked by fraud rules",
            error_code=ErrorCode.PAYMENT_BLOCKED,
            status_code=status.HTTP_403_FORBIDDEN,
            details={"risk_score": risk_score, "flags": list(flags)}
        )


# ----------------------------------------------------------------------------
# Checkout outcomes. `code` is the value surfaced as ?checkout_error=<code>
# ----------------------------------------------------------------------------

class CheckoutException(AppException):
    """Base class for expected checkout rejections"""

    code = "checkout_failed"

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details={"code": self.code, **(details or {})}
        )


class EmptyCartException(CheckoutException):
    code = "empty_cart"

    def __init__(self):
        super().__init__("Your cart is empty.", ErrorCode.EMPTY_CART)


class AlreadyEnrolledException(CheckoutException):
    code = "already_enrolled"

    def __init__(self):
        super().__init__(
            "All cart items are already enrolled.",
            ErrorCode.ALREADY_ENROLLED,
            status_code=status.HTTP_409_CONFLICT
        )


class WalletBalanceException(CheckoutException):
    """Raised when the wallet cannot cover the checkout total"""

    code = "wallet_balance"

    def __init__(self, required, available):
        super().__init__(
            f"Insufficient wallet balance. Required: {required}, Available: {available}",
            ErrorCode.INSUFFICIENT_WALLET_BALANCE,
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={
                "required": str(required),
                "available": str(available),
                "deficit": str(required - available)
            }
        )


class OutOfStockException(CheckoutException):
    code = "out_of_stock"

    def __init__(self, course_id: int):
        super().__init__(
            "One or more courses are out of stock.",
            ErrorCode.OUT_OF_STOCK,
            status_code=status.HTTP_409_CONFLICT,
            details={"course_id": course_id}
        )


class PaymentRequiredException(CheckoutException):
    """Raised when no usable confirmed payment backs an external checkout"""

    code = "payment_required"

    def __init__(self, reason: str):
        super().__init__(
            f"A confirmed payment is required: {reason}",
            ErrorCode.PAYMENT_REQUIRED,
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"reason": reason}
        )


class InvalidPaymentMethodException(CheckoutException):
    code = "invalid_payment_method"

    def __init__(self, method: str):
        super().__init__(
            f"Unsupported payment method: {method}",
            ErrorCode.INVALID_PAYMENT_METHOD,
            details={"method": method}
        )


class ProRequiredException(CheckoutException):
    code = "pro_required"

    def __init__(self, course_ids: list):
        super().__init__(
            "A pro subscription is required for one or more courses.",
            ErrorCode.PRO_REQUIRED,
            status_code=status.HTTP_403_FORBIDDEN,
            details={"course_ids": course_ids}
        )


# ----------------------------------------------------------------------------
# Refund outcomes
# ----------------------------------------------------------------------------

class RefundException(AppException):
    """Base class for expected refund workflow rejections"""

    code = "refund_failed"

    def __init__(self, message: str, error_code: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status.HTTP_409_CONFLICT,
            details={"code": self.code, **(details or {})}
        )


class NotPendingException(RefundException):
    code = "not_pending"

    def __init__(self, request_id: int, current_status: str):
        super().__init__(
            f"Refund request {request_id} is not pending",
            ErrorCode.REFUND_NOT_PENDING,
            details={"request_id": request_id, "status": current_status}
        )


class AlreadyRefundedException(RefundException):
    code = "already_refunded"

    def __init__(self, order_id: int):
        super().__init__(
            f"Order {order_id} already refunded",
            ErrorCode.ALREADY_REFUNDED,
            details={"order_id": order_id}
        )


class NotRefundableException(RefundException):
    code = "not_refundable"

    def __init__(self, order_id: int, payment_status: str):
        super().__init__(
            f"Order {order_id} is not refundable",
            ErrorCode.NOT_REFUNDABLE,
            details={"order_id": order_id, "payment_status": payment_status}
        )


class PendingRefundExistsException(RefundException):
    code = "pending_exists"

    def __init__(self, order_id: int):
        super().__init__(
            f"A refund request is already pending for order {order_id}",
            ErrorCode.REFUND_PENDING_EXISTS,
            details={"order_id": order_id}
        )


# ============================================================================
# ERROR RESPONSES
# ============================================================================

def format_error_response(
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None
) -> Dict[str, Any]:
    """
    Body shared by every error response:

        {"error": {"code": "ERR_3000", "message": "Your cart is empty.",
                   "details": {...}, "request_id": "...", "timestamp": "..."}}
    """
    error = {
        "code": error_code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    if details:
        error["details"] = details
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _error_response(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=format_error_response(
            error_code,
            message,
            details=details,
            request_id=getattr(request.state, "request_id", None)
        )
    )


def _hide_in_production(details: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    return None if settings.ENVIRONMENT == "production" else details


# ============================================================================
# FASTAPI EXCEPTION HANDLERS
# ============================================================================

async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    # Checkout and refund rejections are expected; only server faults carry a traceback
    server_fault = exc.status_code >= 500
    (logger.error if server_fault else logger.warning)(
        f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}",
        extra={
            "user_id": getattr(request.state, "user_id", None),
            "extra_data": {"status_code": exc.status_code, "details": exc.details}
        },
        exc_info=server_fault
    )
    return _error_response(request, exc.status_code, exc.error_code, exc.message, exc.details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(x) for x in error["loc"]),
            "message": error["msg"],
            "type": error["type"]
        }
        for error in exc.errors()
    ]

    logger.warning(
        f"Validation error on {request.method} {request.url.path}",
        extra={"extra_data": {"errors": errors}}
    )
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        ErrorCode.VALIDATION_ERROR,
        "Request validation failed",
        {"validation_errors": errors}
    )


async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Constraint violations (wallet balance check, pending-refund index) become 409"""
    if isinstance(exc, IntegrityError):
        status_code, error_code = status.HTTP_409_CONFLICT, ErrorCode.INTEGRITY_ERROR
        message = "Database integrity constraint violated"
    else:
        status_code, error_code = status.HTTP_500_INTERNAL_SERVER_ERROR, ErrorCode.DATABASE_ERROR
        message = "Database operation failed"

    logger.error(
        f"Database error on {request.method} {request.url.path}: {type(exc).__name__}",
        extra={"user_id": getattr(request.state, "user_id", None)},
        exc_info=True
    )
    return _error_response(
        request, status_code, error_code, message, _hide_in_production({"database_error": str(exc)})
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.critical(
        f"Unhandled {type(exc).__name__} on {request.method} {request.url.path}",
        extra={"user_id": getattr(request.state, "user_id", None)},
        exc_info=True
    )

    if settings.ENVIRONMENT == "production":
        message = "An unexpected error occurred."
    else:
        message = str(exc)
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorCode.INTERNAL_SERVER_ERROR,
        message,
        _hide_in_production({"traceback": traceback.format_exception(exc)})
    )


def register_exception_handlers(app):
    """Most specific first: app exceptions, validation, database, catch-all"""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(SQLAlchemyError, sqlalchemy_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
