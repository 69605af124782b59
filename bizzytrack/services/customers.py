from __future__ import annotations

from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.config import get_settings
from bizzytrack.core.errors import ConflictError, NotFoundError
from bizzytrack.domain.models import Customer, CustomerCategory
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import Field, build_where, paginate
from bizzytrack.persistence.transaction import read_session
from bizzytrack.services.crud import ResourceService, filter_fields, load_owned


_CATEGORY_NAME_TAKEN = "Category name already exists for this business"


async def _category_name_taken(
    session: AsyncSession, business_id: str, name: str, *, exclude_id: str | None = None
) -> bool:
    stmt = select(CustomerCategory.id).where(
        tenant_predicate(CustomerCategory, business_id),
        CustomerCategory.name == name,
    )
    if exclude_id is not None:
        stmt = stmt.where(CustomerCategory.id != exclude_id)
    return (await session.execute(stmt.limit(1))).first() is not None


async def _require_category(session: AsyncSession, business_id: str, category_id: str) -> None:
    # Customers may only point at a live category of their own business.
    category = await load_owned(session, CustomerCategory, business_id, category_id)
    if category is None or not category.is_active:
        raise NotFoundError("Customer category not found", resource_type="customer_category")


class CustomerCategoryService(ResourceService[CustomerCategory]):
    model = CustomerCategory
    resource_type = "customer_category"
    label = "Customer category"
    updatable_fields = ("name", "description", "color", "discount_percentage")
    conflict_message = _CATEGORY_NAME_TAKEN

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        if await _category_name_taken(session, business_id, payload.name):
            raise ConflictError(_CATEGORY_NAME_TAKEN, resource_type=self.resource_type)

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: CustomerCategory, values: dict[str, Any]
    ) -> dict[str, Any]:
        name = values.get("name")
        if name and name != row.name and await _category_name_taken(
            session, business_id, name, exclude_id=row.id
        ):
            raise ConflictError(_CATEGORY_NAME_TAKEN, resource_type=self.resource_type)
        return values

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(filters, {"is_active": CustomerCategory.is_active})

    def _order_by(self) -> Sequence[Any]:
        return (CustomerCategory.name.asc(), CustomerCategory.id.asc())


class CustomerService(ResourceService[Customer]):
    model = Customer
    resource_type = "customer"
    label = "Customer"
    updatable_fields = (
        "category_id",
        "first_name",
        "last_name",
        "email",
        "phone",
        "company_name",
        "tax_number",
        "address",
        "notes",
    )

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        if payload.category_id is not None:
            await _require_category(session, business_id, payload.category_id)

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: Customer, values: dict[str, Any]
    ) -> dict[str, Any]:
        category_id = values.get("category_id")
        if category_id is not None and category_id != row.category_id:
            await _require_category(session, business_id, category_id)
        return values

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(
            filters,
            {"is_active": Customer.is_active, "category_id": Customer.category_id},
        )

    def _order_by(self) -> Sequence[Any]:
        return (Customer.created_at.desc(), Customer.id.desc())

    async def search(self, business_id: str, term: str, *, limit: int | None = None) -> list[Customer]:
        # Typeahead over names, email and phone; active customers only.
        settings = get_settings()
        pattern = f"%{term.strip()}%"
        clause = build_where(
            [
                Field("is_active", True, Customer.is_active),
                Field(
                    "term",
                    pattern,
                    (Customer.first_name, Customer.last_name, Customer.email, Customer.phone),
                    op="ilike",
                ),
            ]
        )
        stmt = clause.apply(select(Customer).where(tenant_predicate(Customer, business_id)))
        stmt = stmt.order_by(Customer.first_name.asc(), Customer.last_name.asc(), Customer.id.asc())
        stmt = paginate(stmt, limit=min(limit or settings.customer_search_limit, settings.customer_search_limit))
        async with read_session(self._provider) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())
