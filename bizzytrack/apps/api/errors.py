from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from bizzytrack.apps.api.response import error_response
from bizzytrack.core.errors import (
    BizzyError,
    ConflictError,
    DomainRuleError,
    InvalidArgumentError,
    InvalidTransitionError,
    NotFoundError,
    PoolExhaustedError,
    SignatureVerificationError,
)
from bizzytrack.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific classes first; InvalidTransitionError subclasses InvalidArgumentError.
_DOMAIN_ERROR_MAP: tuple[tuple[type[BizzyError], int, str], ...] = (
    (NotFoundError, 404, "NOT_FOUND"),
    (ConflictError, 409, "CONFLICT"),
    (InvalidTransitionError, 400, "INVALID_TRANSITION"),
    (InvalidArgumentError, 400, "INVALID_ARGUMENT"),
    (DomainRuleError, 422, "DOMAIN_RULE_VIOLATION"),
    (SignatureVerificationError, 401, "SIGNATURE_INVALID"),
    (PoolExhaustedError, 503, "SERVICE_UNAVAILABLE"),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from FastAPI HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def domain_error_status(exc: BizzyError) -> tuple[int, str]:
    for error_type, status_code, code in _DOMAIN_ERROR_MAP:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "INTERNAL_ERROR"


async def domain_exception_handler(request: Request, exc: BizzyError) -> JSONResponse:
    # Translate service-layer errors into the shared envelope without leaking internals.
    status_code, code = domain_error_status(exc)
    details: dict[str, Any] | None = None
    resource_type = getattr(exc, "resource_type", None)
    if resource_type:
        details = {"resource_type": resource_type}
    message = getattr(exc, "message", None) or str(exc) or "Request failed"
    if status_code >= 500:
        logger.warning("request_failed path=%s code=%s", request.url.path, code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def tenant_predicate_exception_handler(
    request: Request, exc: TenantPredicateError
) -> JSONResponse:
    # A missing tenant predicate is a server bug; report it without the query shape.
    logger.error("tenant_predicate_missing path=%s", request.url.path)
    payload = error_response(
        request=request,
        code="TENANT_PREDICATE_MISSING",
        message="Tenant scope missing for request",
    )
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.exception("request_unhandled_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
