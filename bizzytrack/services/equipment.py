from __future__ import annotations

from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.errors import ConflictError
from bizzytrack.domain.models import Branch, EquipmentAsset
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import Field
from bizzytrack.services.crud import ResourceService, filter_fields, require_owned


_CODE_TAKEN = "Asset code already exists for this business"


async def _code_taken(
    session: AsyncSession, business_id: str, code: str, *, exclude_id: str | None = None
) -> bool:
    stmt = select(EquipmentAsset.id).where(
        tenant_predicate(EquipmentAsset, business_id), EquipmentAsset.asset_code == code
    )
    if exclude_id is not None:
        stmt = stmt.where(EquipmentAsset.id != exclude_id)
    return (await session.execute(stmt.limit(1))).first() is not None


class EquipmentService(ResourceService[EquipmentAsset]):
    model = EquipmentAsset
    resource_type = "equipment"
    label = "Equipment"
    updatable_fields = (
        "name",
        "asset_code",
        "category",
        "serial_number",
        "purchase_date",
        "purchase_cost",
        "status",
        "branch_id",
        "notes",
    )
    conflict_message = _CODE_TAKEN

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        if await _code_taken(session, business_id, payload.asset_code):
            raise ConflictError(_CODE_TAKEN, resource_type=self.resource_type)
        if payload.branch_id is not None:
            await require_owned(
                session, Branch, business_id, payload.branch_id, label="Branch", resource_type="branch"
            )

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: EquipmentAsset, values: dict[str, Any]
    ) -> dict[str, Any]:
        code = values.get("asset_code")
        if code and code != row.asset_code and await _code_taken(
            session, business_id, code, exclude_id=row.id
        ):
            raise ConflictError(_CODE_TAKEN, resource_type=self.resource_type)
        if values.get("branch_id") is not None:
            await require_owned(
                session, Branch, business_id, values["branch_id"], label="Branch", resource_type="branch"
            )
        return values

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(
            filters,
            {
                "status": EquipmentAsset.status,
                "branch_id": EquipmentAsset.branch_id,
                "category": EquipmentAsset.category,
                "is_active": EquipmentAsset.is_active,
            },
        )

    def _order_by(self) -> Sequence[Any]:
        return (EquipmentAsset.name.asc(), EquipmentAsset.id.asc())
