from __future__ import annotations

import logging
from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.clock import utc_now
from bizzytrack.core.errors import ConflictError, InvalidArgumentError
from bizzytrack.domain.lifecycle import (
    ASSIGNMENT_STATUS_ASSIGNED,
    ASSIGNMENT_STATUS_CANCELLED,
    ASSIGNMENT_STATUS_COMPLETED,
    ASSIGNMENT_STATUS_IN_PROGRESS,
)
from bizzytrack.domain.models import Department, Job, JobDepartmentAssignment
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import Field
from bizzytrack.persistence.transaction import read_session, transaction
from bizzytrack.services.crud import ResourceService, filter_fields, require_owned


logger = logging.getLogger(__name__)

_DUPLICATE = "Department already assigned to this job"

ASSIGNMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    ASSIGNMENT_STATUS_ASSIGNED: frozenset({ASSIGNMENT_STATUS_IN_PROGRESS, ASSIGNMENT_STATUS_CANCELLED}),
    ASSIGNMENT_STATUS_IN_PROGRESS: frozenset({ASSIGNMENT_STATUS_COMPLETED, ASSIGNMENT_STATUS_CANCELLED}),
    ASSIGNMENT_STATUS_COMPLETED: frozenset(),
    ASSIGNMENT_STATUS_CANCELLED: frozenset(),
}


async def set_assignment_status(
    session: AsyncSession, assignment: JobDepartmentAssignment, status: str
) -> str:
    # Apply a status edge and stamp first entry into in-progress/completed.
    previous = assignment.status
    if status != previous and status not in ASSIGNMENT_TRANSITIONS.get(previous, frozenset()):
        raise InvalidArgumentError(f"Cannot move assignment from {previous} to {status}")
    now = utc_now()
    assignment.status = status
    if status == ASSIGNMENT_STATUS_IN_PROGRESS and assignment.started_at is None:
        assignment.started_at = now
    if status == ASSIGNMENT_STATUS_COMPLETED and assignment.completed_at is None:
        assignment.completed_at = now
    await session.flush()
    return previous


class AssignmentService(ResourceService[JobDepartmentAssignment]):
    model = JobDepartmentAssignment
    resource_type = "job_department_assignment"
    label = "Assignment"
    updatable_fields = (
        "priority",
        "estimated_hours",
        "actual_hours",
        "scheduled_start",
        "scheduled_end",
        "notes",
        "sla_deadline",
    )
    soft_delete = False
    conflict_message = _DUPLICATE
    actor_column = "assigned_by"

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        await require_owned(session, Job, business_id, payload.job_id, label="Job", resource_type="job")
        await require_owned(
            session,
            Department,
            business_id,
            payload.department_id,
            label="Department",
            resource_type="department",
        )
        existing = await session.execute(
            select(JobDepartmentAssignment.id).where(
                tenant_predicate(JobDepartmentAssignment, business_id),
                JobDepartmentAssignment.job_id == payload.job_id,
                JobDepartmentAssignment.department_id == payload.department_id,
                JobDepartmentAssignment.assignment_type == payload.assignment_type,
            )
        )
        if existing.first() is not None:
            raise ConflictError(_DUPLICATE, resource_type=self.resource_type)

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(
            filters,
            {
                "status": JobDepartmentAssignment.status,
                "department_id": JobDepartmentAssignment.department_id,
                "job_id": JobDepartmentAssignment.job_id,
                "priority": JobDepartmentAssignment.priority,
                "date_from": JobDepartmentAssignment.created_at,
                "date_to": JobDepartmentAssignment.created_at,
            },
            date_from="ge",
            date_to="le",
        )

    def _order_by(self) -> Sequence[Any]:
        return (JobDepartmentAssignment.created_at.desc(), JobDepartmentAssignment.id.desc())

    async def for_job(self, business_id: str, job_id: str) -> list[JobDepartmentAssignment]:
        async with read_session(self._provider) as session:
            await require_owned(session, Job, business_id, job_id, label="Job", resource_type="job")
            result = await session.execute(
                select(JobDepartmentAssignment)
                .where(
                    tenant_predicate(JobDepartmentAssignment, business_id),
                    JobDepartmentAssignment.job_id == job_id,
                )
                .order_by(JobDepartmentAssignment.created_at.asc(), JobDepartmentAssignment.id.asc())
            )
            return list(result.scalars().all())

    async def update_status(
        self,
        business_id: str,
        assignment_id: str,
        status: str,
        actor_id: str | None,
    ) -> JobDepartmentAssignment:
        async with transaction(self._provider) as session:
            assignment = await require_owned(
                session,
                JobDepartmentAssignment,
                business_id,
                assignment_id,
                label=self.label,
                resource_type=self.resource_type,
                for_update=True,
            )
            previous = await set_assignment_status(session, assignment, status)
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action=f"{self.resource_type}.status_updated",
                resource_type=self.resource_type,
                resource_id=assignment.id,
                old_values={"status": previous},
                new_values={"status": status},
            )
        logger.info(
            "assignment_status_updated business_id=%s assignment_id=%s status=%s",
            business_id,
            assignment_id,
            status,
        )
        return assignment

    async def delete(self, business_id: str, resource_id: str, actor_id: str | None) -> JobDepartmentAssignment:
        # Assignments are part of a job's workflow record; deleting one cancels it.
        return await self.update_status(business_id, resource_id, ASSIGNMENT_STATUS_CANCELLED, actor_id)
