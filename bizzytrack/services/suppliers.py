from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.errors import ConflictError
from bizzytrack.domain.models import Supplier
from bizzytrack.domain.schemas import SupplierFilters
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import UNSET, Field
from bizzytrack.persistence.transaction import read_session
from bizzytrack.services.crud import ResourceService


_NAME_TAKEN = "Supplier name already exists"


@dataclass(frozen=True)
class SupplierStatistics:
    total: int
    active: int
    highly_rated: int
    low_rated: int
    average_rating: Decimal | None


async def _name_taken(
    session: AsyncSession, business_id: str, name: str, *, exclude_id: str | None = None
) -> bool:
    stmt = select(Supplier.id).where(tenant_predicate(Supplier, business_id), Supplier.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Supplier.id != exclude_id)
    return (await session.execute(stmt.limit(1))).first() is not None


class SupplierService(ResourceService[Supplier]):
    model = Supplier
    resource_type = "supplier"
    label = "Supplier"
    updatable_fields = (
        "name",
        "contact_person",
        "email",
        "phone",
        "address",
        "tax_id",
        "payment_terms",
        "rating",
    )
    conflict_message = _NAME_TAKEN

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        if await _name_taken(session, business_id, payload.name):
            raise ConflictError(_NAME_TAKEN, resource_type=self.resource_type)

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: Supplier, values: dict[str, Any]
    ) -> dict[str, Any]:
        name = values.get("name")
        if name and name != row.name and await _name_taken(session, business_id, name, exclude_id=row.id):
            raise ConflictError(_NAME_TAKEN, resource_type=self.resource_type)
        return values

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        filters = filters or SupplierFilters()
        provided = filters.model_fields_set
        search = filters.search if "search" in provided and filters.search else None
        return [
            Field(
                "is_active",
                filters.is_active if "is_active" in provided else UNSET,
                Supplier.is_active,
            ),
            Field(
                "search",
                f"%{search}%" if search else UNSET,
                (Supplier.name, Supplier.contact_person, Supplier.email),
                op="ilike",
            ),
        ]

    def _order_by(self) -> Sequence[Any]:
        return (Supplier.name.asc(), Supplier.id.asc())

    async def list_page(
        self,
        business_id: str,
        filters: SupplierFilters | None = None,
        *,
        page: int = 1,
        limit: int = 50,
    ) -> list[Supplier]:
        resolved_page = max(1, page)
        return await self.list(business_id, filters, limit=limit, offset=(resolved_page - 1) * limit)

    async def statistics(self, business_id: str) -> SupplierStatistics:
        async with read_session(self._provider) as session:
            result = await session.execute(
                select(
                    func.count(),
                    func.sum(case((Supplier.is_active.is_(True), 1), else_=0)),
                    func.sum(case((Supplier.rating >= 4, 1), else_=0)),
                    func.sum(case((Supplier.rating <= 2, 1), else_=0)),
                    func.avg(Supplier.rating),
                ).where(tenant_predicate(Supplier, business_id))
            )
            total, active, high, low, average = result.one()
        return SupplierStatistics(
            total=int(total or 0),
            active=int(active or 0),
            highly_rated=int(high or 0),
            low_rated=int(low or 0),
            average_rating=(
                Decimal(str(average)).quantize(Decimal("0.01")) if average is not None else None
            ),
        )
