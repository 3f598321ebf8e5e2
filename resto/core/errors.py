from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Something went wrong. Please try again."


class MfaError(Exception):
    """Base error for a single user-initiated MFA operation."""

    status_code: int = 400
    code: str = "bad_request"
    message: str = "Request failed"

    def __init__(self, message: str | None = None, *, details: dict | None = None) -> None:
        self.message = message or self.message
        self.details = details or {}
        super().__init__(self.message)


class ProviderError(MfaError):
    """Identity provider or data store failure (network, config, invalid state)."""

    status_code = 502
    code = "provider_error"
    message = GENERIC_FAILURE_MESSAGE


class CodeValidationError(MfaError):
    """Malformed code, rejected before any network call."""

    status_code = 422
    code = "invalid_code_format"
    message = "Code format is invalid"


class AuthenticationFailed(MfaError):
    """Wrong TOTP code or wrong/used backup code."""

    status_code = 401
    code = "invalid_code"
    message = "Invalid verification code. Please try again."


class InvalidFlowTransition(MfaError):
    status_code = 409
    code = "invalid_state"
    message = "Operation not allowed in the current state"


class NotFoundError(MfaError):
    status_code = 404
    code = "not_found"
    message = "Not found"


_STATUS_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "unprocessable_entity",
    429: "rate_limited",
}


def _phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return "Request failed"


def error_response(
    status_code: int,
    code: str,
    message: str,
    details: dict | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    """Render the error envelope. ``data`` is always null on failure."""
    body = {"code": code, "message": message, "data": None, "details": details or {}}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body), headers=headers)


def _http_detail(detail: Any) -> tuple[str | None, str | None, dict]:
    if isinstance(detail, str):
        return None, detail, {"detail": detail}
    if isinstance(detail, dict):
        extra = {k: v for k, v in detail.items() if k not in ("code", "message", "detail")}
        return detail.get("code"), detail.get("message") or detail.get("detail"), extra
    if isinstance(detail, list):
        return None, None, {"errors": detail}
    return None, None, {} if detail is None else {"detail": str(detail)}


async def mfa_exception_handler(request: Request, exc: MfaError) -> JSONResponse:
    if isinstance(exc, ProviderError):
        # provider internals stay in the logs, the user sees one generic line
        logger.warning("Provider failure on %s: %s", request.url.path, exc.details or exc.message)
        return error_response(exc.status_code, exc.code, GENERIC_FAILURE_MESSAGE)
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code, message, details = _http_detail(exc.detail)
    return error_response(
        exc.status_code,
        code or _STATUS_CODES.get(exc.status_code, "http_error"),
        message or _phrase(exc.status_code),
        details,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{field}: {first.get('msg')}" if field else str(first.get("msg") or message)
    return error_response(422, "validation_error", message, {"errors": errors})


async def rate_limit_exception_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.info("Rate limit hit on %s: %s", request.url.path, exc.detail)
    return error_response(
        429,
        "rate_limited",
        "Too many attempts. Please wait a moment and try again.",
        {"limit": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s", request.url.path)
    return error_response(500, "internal_server_error", "Internal server error")


def register_exception_handlers(app) -> None:
    for exc_class, handler in (
        (MfaError, mfa_exception_handler),
        (StarletteHTTPException, http_exception_handler),
        (RequestValidationError, validation_exception_handler),
        (RateLimitExceeded, rate_limit_exception_handler),
        (Exception, unhandled_exception_handler),
    ):
        app.add_exception_handler(exc_class, handler)
