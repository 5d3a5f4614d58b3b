"""
Billing error taxonomy.

BillingError carries an HTTP status and a short user-facing message; `context`
is internal-only and goes to the logs, never to the response body.

Usage:
    from eacon.core.errors import InvalidAmount
    raise InvalidAmount("amountUSD must be an integer between 1 and 100", context={"value": v})
"""
from __future__ import annotations

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BillingError(Exception):
    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"
    retryable = False

    def __init__(self, message: str | None = None, context: dict | None = None) -> None:
        self.message = message or self.default_message
        self.context = context or {}
        super().__init__(self.message)


# ---------- Validation (400) ----------
class RequestValidationFailed(BillingError):
    status_code = 400
    code = "invalid_request"
    default_message = "Invalid request"


class InvalidAmount(RequestValidationFailed):
    code = "invalid_amount"
    default_message = "amountUSD must be an integer between 1 and 100"


class InvalidOrderCode(RequestValidationFailed):
    code = "invalid_order_code"
    default_message = "Invalid order code"


class InvalidSignature(RequestValidationFailed):
    code = "invalid_signature"
    default_message = "Invalid signature"


class ParseError(RequestValidationFailed):
    code = "unparseable_payment_record"
    default_message = "Payment record could not be read"


class AmountMismatchError(RequestValidationFailed):
    code = "amount_mismatch"
    default_message = "Payment amount does not match the order"


class InsufficientTokens(RequestValidationFailed):
    code = "insufficient_tokens"
    default_message = "Insufficient tokens"


# ---------- Auth (401) ----------
class NotAuthenticated(BillingError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


# ---------- Not found (404) ----------
class PaymentRecordNotFound(BillingError):
    status_code = 404
    code = "payment_not_found"
    default_message = "Payment record not found"


class UserNotFound(BillingError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


# ---------- Throttling (429) ----------
class TooManyAttempts(BillingError):
    status_code = 429
    code = "too_many_attempts"
    default_message = "Too many purchase attempts. Try again later."


class RateLimited(BillingError):
    status_code = 429
    code = "rate_limited"
    default_message = "Rate limit exceeded"


# ---------- Upstream (503) ----------
class GatewayUnavailable(BillingError):
    status_code = 503
    code = "gateway_unavailable"
    default_message = "Payment gateway is unavailable. Try again later."
    retryable = True


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Log full context, return a short message."""
    log_fn = logger.error if exc.status_code >= 500 else logger.warning
    log_fn(
        "request_failed",
        extra={
            "error_code": exc.code,
            "error": str(exc),
            "path": request.url.path,
            "method": request.method,
            "status_code": exc.status_code,
            "payload": exc.context or None,
        },
    )
    headers = {"Retry-After": "60"} if exc.status_code in (429, 503) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
        headers=headers,
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={"path": request.url.path, "method": request.method, "error": type(exc).__name__},
    )
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query params are a 400 like every other validation failure."""
    logger.warning(
        "request_invalid",
        extra={"path": request.url.path, "method": request.method, "status_code": 400, "payload": exc.errors()},
    )
    return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request", "code": "invalid_request"})
