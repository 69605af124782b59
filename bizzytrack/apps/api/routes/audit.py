from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request

from bizzytrack.apps.api.deps import Principal, get_principal, get_provider
from bizzytrack.apps.api.response import row_payload, success_response
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.services.audit import (
    AuditLogFilters,
    audit_summary,
    resource_history,
    search_audit_logs,
)


router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("")
async def list_audit_logs(
    request: Request,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    user_id: str | None = None,
    search: str | None = None,
    date_from: datetime | None = Query(default=None, alias="from"),
    date_to: datetime | None = Query(default=None, alias="to"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    provider: SessionProvider = Depends(get_provider),
) -> dict:
    # Tenant scope always comes from the principal, never from query parameters.
    candidates = {
        "action": action,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "user_id": user_id,
        "search": search,
        "date_from": date_from,
        "date_to": date_to,
    }
    filters = AuditLogFilters(**{key: value for key, value in candidates.items() if value is not None})
    result = await search_audit_logs(
        provider, business_id=principal.business_id, filters=filters, page=page, limit=limit
    )
    return success_response(
        request=request,
        data={
            "items": [row_payload(row) for row in result.items],
            "total": result.total,
            "page": result.page,
            "limit": result.limit,
            "total_pages": result.total_pages,
        },
    )


@router.get("/summary")
async def get_audit_summary(
    request: Request,
    days: int = Query(default=30, ge=1, le=365),
    principal: Principal = Depends(get_principal),
    provider: SessionProvider = Depends(get_provider),
) -> dict:
    summary = await audit_summary(provider, business_id=principal.business_id, days=days)
    return success_response(
        request=request,
        data={
            "total": summary.total,
            "by_action": summary.by_action,
            "by_resource_type": summary.by_resource_type,
            "since": summary.since.isoformat(),
        },
    )


@router.get("/{resource_type}/{resource_id}")
async def get_resource_history(
    request: Request,
    resource_type: str,
    resource_id: str,
    principal: Principal = Depends(get_principal),
    provider: SessionProvider = Depends(get_provider),
) -> dict:
    rows = await resource_history(
        provider,
        business_id=principal.business_id,
        resource_type=resource_type,
        resource_id=resource_id,
    )
    return success_response(request=request, data=[row_payload(row) for row in rows])
