from __future__ import annotations

from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.errors import ConflictError
from bizzytrack.domain.models import CatalogService
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import Field
from bizzytrack.services.crud import ResourceService, filter_fields


_NAME_TAKEN = "Service name already exists for this business"


async def _name_taken(
    session: AsyncSession, business_id: str, name: str, *, exclude_id: str | None = None
) -> bool:
    stmt = select(CatalogService.id).where(
        tenant_predicate(CatalogService, business_id),
        CatalogService.name == name,
    )
    if exclude_id is not None:
        stmt = stmt.where(CatalogService.id != exclude_id)
    return (await session.execute(stmt.limit(1))).first() is not None


class CatalogServiceService(ResourceService[CatalogService]):
    """Services a business sells; jobs price themselves from these rows."""

    model = CatalogService
    resource_type = "service"
    label = "Service"
    updatable_fields = ("name", "description", "category", "base_price", "duration_minutes")
    conflict_message = _NAME_TAKEN

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        if await _name_taken(session, business_id, payload.name):
            raise ConflictError(_NAME_TAKEN, resource_type=self.resource_type)

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: CatalogService, values: dict[str, Any]
    ) -> dict[str, Any]:
        name = values.get("name")
        if name and name != row.name and await _name_taken(session, business_id, name, exclude_id=row.id):
            raise ConflictError(_NAME_TAKEN, resource_type=self.resource_type)
        return values

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(
            filters,
            {"is_active": CatalogService.is_active, "category": CatalogService.category},
        )

    def _order_by(self) -> Sequence[Any]:
        return (CatalogService.name.asc(), CatalogService.id.asc())
