from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Literal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.clock import utc_now
from bizzytrack.core.errors import DomainRuleError, InvalidArgumentError
from bizzytrack.domain.lifecycle import (
    ACTIVE_ASSIGNMENT_STATUSES,
    ASSIGNMENT_STATUS_ASSIGNED,
    ASSIGNMENT_STATUS_COMPLETED,
    ASSIGNMENT_STATUS_IN_PROGRESS,
    HANDOFF_STATUS_ACCEPTED,
    HANDOFF_STATUS_PENDING,
    HANDOFF_STATUS_REJECTED,
)
from bizzytrack.domain.models import Department, DepartmentHandoff, Job, JobDepartmentAssignment
from bizzytrack.domain.schemas import HandoffCreate
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import UNSET, Field, build_where
from bizzytrack.persistence.transaction import read_session, transaction
from bizzytrack.services.assignments import set_assignment_status
from bizzytrack.services.audit import AuditTrail, snapshot
from bizzytrack.services.crud import flush_or_conflict, load_owned, require_owned


logger = logging.getLogger(__name__)

RESOURCE_TYPE = "department_handoff"
HANDOFF_ASSIGNMENT_TYPE = "handoff"


@dataclass(frozen=True)
class JobWorkflow:
    job: Job
    assignments: list[JobDepartmentAssignment]
    handoffs: list[DepartmentHandoff]


async def _require_pending(session: AsyncSession, business_id: str, handoff_id: str) -> DepartmentHandoff:
    handoff = await require_owned(
        session,
        DepartmentHandoff,
        business_id,
        handoff_id,
        label="Handoff",
        resource_type=RESOURCE_TYPE,
        for_update=True,
    )
    if handoff.status != HANDOFF_STATUS_PENDING:
        raise DomainRuleError(f"Handoff is already {handoff.status}")
    return handoff


async def _reopen_receiver(
    session: AsyncSession, business_id: str, handoff: DepartmentHandoff
) -> JobDepartmentAssignment | None:
    # A department the job already visited gets its earlier handoff row back instead of a duplicate.
    result = await session.execute(
        select(JobDepartmentAssignment)
        .where(
            tenant_predicate(JobDepartmentAssignment, business_id),
            JobDepartmentAssignment.job_id == handoff.job_id,
            JobDepartmentAssignment.department_id == handoff.to_department_id,
            JobDepartmentAssignment.assignment_type == HANDOFF_ASSIGNMENT_TYPE,
        )
        .with_for_update()
    )
    previous = result.scalar_one_or_none()
    if previous is not None and previous.status not in ACTIVE_ASSIGNMENT_STATUSES:
        previous.status = ASSIGNMENT_STATUS_ASSIGNED
        previous.started_at = None
        previous.completed_at = None
    return previous


class WorkflowService:
    """Moves a job between departments through explicit handoffs."""

    def __init__(self, provider: SessionProvider, *, audit: AuditTrail | None = None) -> None:
        self._provider = provider
        self._audit = audit or AuditTrail()

    async def create_handoff(
        self, business_id: str, payload: HandoffCreate, actor_id: str | None
    ) -> DepartmentHandoff:
        if payload.from_department_id == payload.to_department_id:
            raise InvalidArgumentError("Cannot hand off a job to the same department")
        async with transaction(self._provider) as session:
            await require_owned(session, Job, business_id, payload.job_id, label="Job", resource_type="job")
            for department_id in (payload.from_department_id, payload.to_department_id):
                await require_owned(
                    session,
                    Department,
                    business_id,
                    department_id,
                    label="Department",
                    resource_type="department",
                )
            handoff = DepartmentHandoff(
                business_id=business_id,
                job_id=payload.job_id,
                from_department_id=payload.from_department_id,
                to_department_id=payload.to_department_id,
                status=HANDOFF_STATUS_PENDING,
                notes=payload.notes,
                required_actions=list(payload.required_actions),
                handed_off_by=actor_id,
            )
            session.add(handoff)
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action=f"{RESOURCE_TYPE}.created",
                resource_type=RESOURCE_TYPE,
                resource_id=handoff.id,
                new_values=snapshot(
                    handoff, fields=["job_id", "from_department_id", "to_department_id", "status"]
                ),
            )
        logger.info("handoff_created business_id=%s handoff_id=%s", business_id, handoff.id)
        return handoff

    async def accept_handoff(
        self,
        business_id: str,
        handoff_id: str,
        actor_id: str | None,
        notes: str | None = None,
    ) -> DepartmentHandoff:
        async with transaction(self._provider) as session:
            handoff = await _require_pending(session, business_id, handoff_id)
            now = utc_now()
            handoff.status = HANDOFF_STATUS_ACCEPTED
            handoff.accepted_at = now
            handoff.accepted_by = actor_id
            if notes:
                handoff.notes = notes
            # Close the sender's open work before the receiver picks the job up.
            sender_rows = await session.execute(
                select(JobDepartmentAssignment).where(
                    tenant_predicate(JobDepartmentAssignment, business_id),
                    JobDepartmentAssignment.job_id == handoff.job_id,
                    JobDepartmentAssignment.department_id == handoff.from_department_id,
                    JobDepartmentAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
                )
            )
            for assignment in sender_rows.scalars().all():
                if assignment.status != ASSIGNMENT_STATUS_IN_PROGRESS:
                    await set_assignment_status(session, assignment, ASSIGNMENT_STATUS_IN_PROGRESS)
                await set_assignment_status(session, assignment, ASSIGNMENT_STATUS_COMPLETED)
            receiver = await _reopen_receiver(session, business_id, handoff)
            if receiver is None:
                receiver = JobDepartmentAssignment(
                    business_id=business_id,
                    job_id=handoff.job_id,
                    department_id=handoff.to_department_id,
                    assignment_type=HANDOFF_ASSIGNMENT_TYPE,
                )
                session.add(receiver)
            receiver.notes = f"Handoff from department {handoff.from_department_id}"
            receiver.assigned_by = actor_id
            await flush_or_conflict(
                session,
                message="Department already assigned to this job",
                resource_type="job_department_assignment",
            )
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action=f"{RESOURCE_TYPE}.accepted",
                resource_type=RESOURCE_TYPE,
                resource_id=handoff.id,
                old_values={"status": HANDOFF_STATUS_PENDING},
                new_values={"status": HANDOFF_STATUS_ACCEPTED, "assignment_id": receiver.id},
            )
        logger.info("handoff_accepted business_id=%s handoff_id=%s", business_id, handoff_id)
        return handoff

    async def reject_handoff(
        self,
        business_id: str,
        handoff_id: str,
        actor_id: str | None,
        reason: str,
    ) -> DepartmentHandoff:
        async with transaction(self._provider) as session:
            handoff = await _require_pending(session, business_id, handoff_id)
            handoff.status = HANDOFF_STATUS_REJECTED
            handoff.rejected_at = utc_now()
            handoff.notes = f"REJECTED: {reason}"
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action=f"{RESOURCE_TYPE}.rejected",
                resource_type=RESOURCE_TYPE,
                resource_id=handoff.id,
                old_values={"status": HANDOFF_STATUS_PENDING},
                new_values={"status": HANDOFF_STATUS_REJECTED, "notes": handoff.notes},
            )
        logger.info("handoff_rejected business_id=%s handoff_id=%s", business_id, handoff_id)
        return handoff

    async def job_workflow(self, business_id: str, job_id: str) -> JobWorkflow | None:
        async with read_session(self._provider) as session:
            job = await load_owned(session, Job, business_id, job_id)
            if job is None:
                return None
            assignments = await session.execute(
                select(JobDepartmentAssignment)
                .where(
                    tenant_predicate(JobDepartmentAssignment, business_id),
                    JobDepartmentAssignment.job_id == job_id,
                )
                .order_by(JobDepartmentAssignment.created_at.asc(), JobDepartmentAssignment.id.asc())
            )
            handoffs = await session.execute(
                select(DepartmentHandoff)
                .where(tenant_predicate(DepartmentHandoff, business_id), DepartmentHandoff.job_id == job_id)
                .order_by(DepartmentHandoff.created_at.asc(), DepartmentHandoff.id.asc())
            )
            return JobWorkflow(
                job=job,
                assignments=list(assignments.scalars().all()),
                handoffs=list(handoffs.scalars().all()),
            )

    async def department_handoffs(
        self,
        business_id: str,
        department_id: str,
        *,
        direction: Literal["incoming", "outgoing"] = "incoming",
        status: str | None = None,
    ) -> list[DepartmentHandoff]:
        column = (
            DepartmentHandoff.to_department_id
            if direction == "incoming"
            else DepartmentHandoff.from_department_id
        )
        clause = build_where(
            [
                Field("department_id", department_id, column),
                Field("status", status if status is not None else UNSET, DepartmentHandoff.status),
            ]
        )
        stmt = clause.apply(select(DepartmentHandoff).where(tenant_predicate(DepartmentHandoff, business_id)))
        stmt = stmt.order_by(DepartmentHandoff.created_at.desc(), DepartmentHandoff.id.desc())
        async with read_session(self._provider) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def pending_handoffs(self, business_id: str, department_id: str) -> list[DepartmentHandoff]:
        return await self.department_handoffs(
            business_id, department_id, direction="incoming", status=HANDOFF_STATUS_PENDING
        )
