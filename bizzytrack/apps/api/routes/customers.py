from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from bizzytrack.apps.api.deps import Principal, get_principal, get_provider
from bizzytrack.apps.api.response import row_payload, success_response
from bizzytrack.core.errors import NotFoundError
from bizzytrack.domain.schemas import CustomerCreate, CustomerFilters, CustomerUpdate
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.services.customers import CustomerService


router = APIRouter(prefix="/customers", tags=["customers"])


def _service(provider: SessionProvider = Depends(get_provider)) -> CustomerService:
    return CustomerService(provider)


@router.post("", status_code=201)
async def create_customer(
    request: Request,
    payload: CustomerCreate,
    principal: Principal = Depends(get_principal),
    service: CustomerService = Depends(_service),
) -> JSONResponse:
    customer = await service.create(principal.business_id, payload, principal.user_id)
    return JSONResponse(status_code=201, content=success_response(request=request, data=row_payload(customer)))


@router.get("")
async def list_customers(
    request: Request,
    is_active: bool | None = None,
    category_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    principal: Principal = Depends(get_principal),
    service: CustomerService = Depends(_service),
) -> dict:
    # Only query parameters the caller sent become filters.
    supplied = {
        key: value
        for key, value in {"is_active": is_active, "category_id": category_id}.items()
        if key in request.query_params
    }
    filters = CustomerFilters(**supplied)
    rows = await service.list(principal.business_id, filters, limit=limit, offset=offset)
    return success_response(request=request, data=[row_payload(row) for row in rows])


@router.get("/search")
async def search_customers(
    request: Request,
    q: str = Query(min_length=1),
    limit: int | None = Query(default=None, ge=1, le=200),
    principal: Principal = Depends(get_principal),
    service: CustomerService = Depends(_service),
) -> dict:
    rows = await service.search(principal.business_id, q, limit=limit)
    return success_response(request=request, data=[row_payload(row) for row in rows])


@router.get("/{customer_id}")
async def get_customer(
    request: Request,
    customer_id: str,
    principal: Principal = Depends(get_principal),
    service: CustomerService = Depends(_service),
) -> dict:
    customer = await service.get(principal.business_id, customer_id)
    if customer is None:
        raise NotFoundError("Customer not found", resource_type="customer")
    return success_response(request=request, data=row_payload(customer))


@router.patch("/{customer_id}")
async def update_customer(
    request: Request,
    customer_id: str,
    payload: CustomerUpdate,
    principal: Principal = Depends(get_principal),
    service: CustomerService = Depends(_service),
) -> dict:
    customer = await service.update(principal.business_id, customer_id, payload, principal.user_id)
    return success_response(request=request, data=row_payload(customer))


@router.delete("/{customer_id}")
async def delete_customer(
    request: Request,
    customer_id: str,
    principal: Principal = Depends(get_principal),
    service: CustomerService = Depends(_service),
) -> dict:
    customer = await service.delete(principal.business_id, customer_id, principal.user_id)
    return success_response(request=request, data=row_payload(customer))
