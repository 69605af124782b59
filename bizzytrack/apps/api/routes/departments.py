from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from bizzytrack.apps.api.deps import Principal, get_principal, get_provider
from bizzytrack.apps.api.response import row_payload, success_response
from bizzytrack.core.errors import NotFoundError
from bizzytrack.domain.schemas import DepartmentCreate, DepartmentUpdate
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.services.departments import DepartmentNode, DepartmentService


router = APIRouter(prefix="/departments", tags=["departments"])


def _service(provider: SessionProvider = Depends(get_provider)) -> DepartmentService:
    return DepartmentService(provider)


def _node_payload(node: DepartmentNode) -> dict[str, Any]:
    payload = row_payload(node.department)
    payload["children"] = [_node_payload(child) for child in node.children]
    return payload


@router.post("", status_code=201)
async def create_department(
    request: Request,
    payload: DepartmentCreate,
    principal: Principal = Depends(get_principal),
    service: DepartmentService = Depends(_service),
) -> JSONResponse:
    department = await service.create(principal.business_id, payload, principal.user_id)
    return JSONResponse(
        status_code=201, content=success_response(request=request, data=row_payload(department))
    )


@router.get("")
async def list_departments(
    request: Request,
    principal: Principal = Depends(get_principal),
    service: DepartmentService = Depends(_service),
) -> dict:
    rows = await service.list(principal.business_id)
    return success_response(request=request, data=[row_payload(row) for row in rows])


@router.get("/hierarchy")
async def department_hierarchy(
    request: Request,
    principal: Principal = Depends(get_principal),
    service: DepartmentService = Depends(_service),
) -> dict:
    roots = await service.hierarchy(principal.business_id)
    return success_response(request=request, data=[_node_payload(node) for node in roots])


@router.get("/{department_id}")
async def get_department(
    request: Request,
    department_id: str,
    principal: Principal = Depends(get_principal),
    service: DepartmentService = Depends(_service),
) -> dict:
    detail = await service.get_with_children(principal.business_id, department_id)
    if detail is None:
        raise NotFoundError("Department not found", resource_type="department")
    payload = row_payload(detail.department)
    payload["children"] = [row_payload(child) for child in detail.children]
    return success_response(request=request, data=payload)


@router.patch("/{department_id}")
async def update_department(
    request: Request,
    department_id: str,
    payload: DepartmentUpdate,
    principal: Principal = Depends(get_principal),
    service: DepartmentService = Depends(_service),
) -> dict:
    department = await service.update(principal.business_id, department_id, payload, principal.user_id)
    return success_response(request=request, data=row_payload(department))


@router.delete("/{department_id}")
async def delete_department(
    request: Request,
    department_id: str,
    principal: Principal = Depends(get_principal),
    service: DepartmentService = Depends(_service),
) -> dict:
    department = await service.delete(principal.business_id, department_id, principal.user_id)
    return success_response(request=request, data=row_payload(department))
