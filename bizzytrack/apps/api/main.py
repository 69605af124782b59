from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from bizzytrack.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from bizzytrack.apps.api.response import API_VERSION
from bizzytrack.apps.api.routes.audit import router as audit_router
from bizzytrack.apps.api.routes.customers import router as customers_router
from bizzytrack.apps.api.routes.departments import router as departments_router
from bizzytrack.apps.api.routes.health import router as health_router
from bizzytrack.apps.api.routes.jobs import router as jobs_router
from bizzytrack.core.config import get_settings
from bizzytrack.core.errors import BizzyError
from bizzytrack.core.logging import configure_logging
from bizzytrack.persistence.guards import TenantPredicateError
from bizzytrack.services.api_keys import ApiKeyService


logger = logging.getLogger(__name__)


async def _record_api_key_usage(request: Request, status_code: int, latency_ms: float) -> None:
    usage = getattr(request.state, "api_key_usage", None)
    if usage is None:
        return
    principal, provider = usage
    await ApiKeyService(provider).log_usage(
        business_id=principal.business_id,
        api_key_id=principal.api_key_id,
        endpoint=request.url.path,
        method=request.method,
        status_code=status_code,
        response_time_ms=latency_ms,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title=get_settings().app_name)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "request_completed method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        await _record_api_key_usage(request, response.status_code, latency_ms)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(BizzyError)
    async def _domain_exception_handler(request: Request, exc: BizzyError):
        return await domain_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    app.include_router(health_router)
    # Mount versioned v1 API routes.
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    app.include_router(customers_router, prefix=f"/{API_VERSION}")
    app.include_router(jobs_router, prefix=f"/{API_VERSION}")
    app.include_router(departments_router, prefix=f"/{API_VERSION}")
    app.include_router(audit_router, prefix=f"/{API_VERSION}")
    return app


app = create_app()
