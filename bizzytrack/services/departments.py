from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.errors import ConflictError, DomainRuleError, InvalidArgumentError
from bizzytrack.domain.lifecycle import ACTIVE_ASSIGNMENT_STATUSES
from bizzytrack.domain.models import Department, JobDepartmentAssignment
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import Field
from bizzytrack.persistence.transaction import read_session
from bizzytrack.services.crud import ResourceService, filter_fields, load_owned, require_owned


_CODE_TAKEN = "Department code already exists for this business"


@dataclass
class DepartmentNode:
    department: Department
    children: list[DepartmentNode] = field(default_factory=list)


@dataclass(frozen=True)
class DepartmentDetail:
    department: Department
    children: list[Department]


async def _code_taken(
    session: AsyncSession, business_id: str, code: str, *, exclude_id: str | None = None
) -> bool:
    stmt = select(Department.id).where(tenant_predicate(Department, business_id), Department.code == code)
    if exclude_id is not None:
        stmt = stmt.where(Department.id != exclude_id)
    return (await session.execute(stmt.limit(1))).first() is not None


async def _ancestor_ids(session: AsyncSession, business_id: str, department_id: str) -> set[str]:
    # Walk parent links upward; the visited set also stops on pre-existing cycles.
    seen: set[str] = set()
    current: str | None = department_id
    while current is not None and current not in seen:
        seen.add(current)
        result = await session.execute(
            select(Department.parent_department_id).where(
                tenant_predicate(Department, business_id), Department.id == current
            )
        )
        current = result.scalar_one_or_none()
    return seen


class DepartmentService(ResourceService[Department]):
    model = Department
    resource_type = "department"
    label = "Department"
    updatable_fields = (
        "name",
        "code",
        "description",
        "parent_department_id",
        "cost_center_code",
        "department_type",
        "color_hex",
        "sort_order",
    )
    conflict_message = _CODE_TAKEN

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        if await _code_taken(session, business_id, payload.code):
            raise ConflictError(_CODE_TAKEN, resource_type=self.resource_type)
        if payload.parent_department_id is not None:
            await require_owned(
                session,
                Department,
                business_id,
                payload.parent_department_id,
                label="Parent department",
                resource_type=self.resource_type,
            )

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: Department, values: dict[str, Any]
    ) -> dict[str, Any]:
        code = values.get("code")
        if code and code != row.code and await _code_taken(session, business_id, code, exclude_id=row.id):
            raise ConflictError(_CODE_TAKEN, resource_type=self.resource_type)
        parent_id = values.get("parent_department_id")
        if parent_id is not None:
            if parent_id == row.id:
                raise InvalidArgumentError("A department cannot be its own parent")
            await require_owned(
                session,
                Department,
                business_id,
                parent_id,
                label="Parent department",
                resource_type=self.resource_type,
            )
            if row.id in await _ancestor_ids(session, business_id, parent_id):
                raise InvalidArgumentError("Department hierarchy cannot contain cycles")
        return values

    async def _before_delete(self, session: AsyncSession, business_id: str, row: Department) -> None:
        active_assignments = await session.execute(
            select(func.count())
            .select_from(JobDepartmentAssignment)
            .where(
                tenant_predicate(JobDepartmentAssignment, business_id),
                JobDepartmentAssignment.department_id == row.id,
                JobDepartmentAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
            )
        )
        if int(active_assignments.scalar() or 0) > 0:
            raise DomainRuleError("Cannot delete department with active job assignments")
        active_children = await session.execute(
            select(func.count())
            .select_from(Department)
            .where(
                tenant_predicate(Department, business_id),
                Department.parent_department_id == row.id,
                Department.is_active.is_(True),
            )
        )
        if int(active_children.scalar() or 0) > 0:
            raise DomainRuleError("Cannot delete department with active sub-departments")

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(
            filters,
            {
                "department_type": Department.department_type,
                "is_active": Department.is_active,
                "parent_department_id": Department.parent_department_id,
            },
        )

    def _order_by(self) -> Sequence[Any]:
        return (Department.sort_order.asc(), Department.name.asc(), Department.id.asc())

    async def get_with_children(self, business_id: str, department_id: str) -> DepartmentDetail | None:
        async with read_session(self._provider) as session:
            department = await load_owned(session, Department, business_id, department_id)
            if department is None:
                return None
            result = await session.execute(
                select(Department)
                .where(
                    tenant_predicate(Department, business_id),
                    Department.parent_department_id == department_id,
                    Department.is_active.is_(True),
                )
                .order_by(*self._order_by())
            )
            return DepartmentDetail(department=department, children=list(result.scalars().all()))

    async def hierarchy(self, business_id: str) -> list[DepartmentNode]:
        # Build the active tree in memory; roots are departments without an active parent.
        departments = await self.list(business_id)
        nodes = {department.id: DepartmentNode(department) for department in departments}
        roots: list[DepartmentNode] = []
        for department in departments:
            node = nodes[department.id]
            parent = nodes.get(department.parent_department_id or "")
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
        return roots
