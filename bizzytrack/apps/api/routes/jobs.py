from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from bizzytrack.apps.api.deps import Principal, get_principal, get_provider
from bizzytrack.apps.api.response import row_payload, success_response
from bizzytrack.core.errors import NotFoundError
from bizzytrack.domain.schemas import JobCreate, JobFilters, JobUpdate
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.services.jobs import JobService
from bizzytrack.services.routing import RoutingRuleService


router = APIRouter(prefix="/jobs", tags=["jobs"])


class JobStatusRequest(BaseModel):
    status: str
    notes: str | None = None


def _service(provider: SessionProvider = Depends(get_provider)) -> JobService:
    return JobService(provider)


@router.post("", status_code=201)
async def create_job(
    request: Request,
    payload: JobCreate,
    principal: Principal = Depends(get_principal),
    service: JobService = Depends(_service),
) -> JSONResponse:
    job = await service.create(principal.business_id, payload, principal.user_id)
    return JSONResponse(status_code=201, content=success_response(request=request, data=row_payload(job)))


@router.get("")
async def list_jobs(
    request: Request,
    status: str | None = None,
    assigned_to: str | None = None,
    customer_id: str | None = None,
    priority: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_principal),
    service: JobService = Depends(_service),
) -> dict:
    candidates = {
        "status": status,
        "assigned_to": assigned_to,
        "customer_id": customer_id,
        "priority": priority,
    }
    filters = JobFilters(**{key: value for key, value in candidates.items() if key in request.query_params})
    rows = await service.list(principal.business_id, filters, limit=limit, offset=offset)
    return success_response(request=request, data=[row_payload(row) for row in rows])


@router.get("/{job_id}")
async def get_job(
    request: Request,
    job_id: str,
    principal: Principal = Depends(get_principal),
    service: JobService = Depends(_service),
) -> dict:
    job = await service.get(principal.business_id, job_id)
    if job is None:
        raise NotFoundError("Job not found", resource_type="job")
    return success_response(request=request, data=row_payload(job))


@router.patch("/{job_id}")
async def update_job(
    request: Request,
    job_id: str,
    payload: JobUpdate,
    principal: Principal = Depends(get_principal),
    service: JobService = Depends(_service),
) -> dict:
    job = await service.update(principal.business_id, job_id, payload, principal.user_id)
    return success_response(request=request, data=row_payload(job))


@router.post("/{job_id}/status")
async def update_job_status(
    request: Request,
    job_id: str,
    payload: JobStatusRequest,
    principal: Principal = Depends(get_principal),
    service: JobService = Depends(_service),
) -> dict:
    job = await service.update_status(
        principal.business_id, job_id, payload.status, principal.user_id, payload.notes
    )
    return success_response(request=request, data=row_payload(job))


@router.get("/{job_id}/history")
async def job_status_history(
    request: Request,
    job_id: str,
    principal: Principal = Depends(get_principal),
    service: JobService = Depends(_service),
) -> dict:
    rows = await service.status_history(principal.business_id, job_id)
    return success_response(request=request, data=[row_payload(row) for row in rows])


@router.post("/{job_id}/auto-assign")
async def auto_assign_job(
    request: Request,
    job_id: str,
    principal: Principal = Depends(get_principal),
    provider: SessionProvider = Depends(get_provider),
) -> dict:
    result = await RoutingRuleService(provider).auto_assign(principal.business_id, job_id, principal.user_id)
    return success_response(
        request=request,
        data={
            "assigned": result.assigned,
            "message": result.message,
            "staff_user_id": result.staff_user_id,
            "rule_id": result.rule_id,
        },
    )


@router.delete("/{job_id}")
async def delete_job(
    request: Request,
    job_id: str,
    principal: Principal = Depends(get_principal),
    service: JobService = Depends(_service),
) -> dict:
    job = await service.delete(principal.business_id, job_id, principal.user_id)
    return success_response(request=request, data=row_payload(job))
