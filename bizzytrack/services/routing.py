from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
import logging
from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.clock import utc_now
from bizzytrack.core.errors import ConflictError, DomainRuleError
from bizzytrack.domain.lifecycle import (
    ACTIVE_ASSIGNMENT_STATUSES,
    JOB_STATUS_ASSIGNED,
    JOB_STATUS_PENDING,
)
from bizzytrack.domain.models import Department, FieldJobAssignment, Job, JobRoutingRule, StaffProfile
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import Field
from bizzytrack.persistence.transaction import transaction
from bizzytrack.services.crud import ResourceService, filter_fields, require_owned
from bizzytrack.services.jobs import change_job_status


logger = logging.getLogger(__name__)

NO_MATCH_MESSAGE = "No suitable staff found for auto-assignment"
_ROUTABLE_STATUSES = (JOB_STATUS_PENDING, JOB_STATUS_ASSIGNED)


@dataclass(frozen=True)
class AutoAssignResult:
    assigned: bool
    message: str
    staff_user_id: str | None = None
    rule_id: str | None = None
    assignment_id: str | None = None


def rule_matches(rule: JobRoutingRule, job: Job) -> bool:
    # Every condition key must equal the job attribute of the same name.
    for key, expected in (rule.conditions or {}).items():
        if getattr(job, key, None) != expected:
            return False
    return True


def has_skills(profile: StaffProfile, required: Sequence[str] | None) -> bool:
    return set(required or ()).issubset(set(profile.skills or ()))


async def _check_department(session: AsyncSession, business_id: str, department_id: str | None) -> None:
    if department_id is not None:
        await require_owned(
            session, Department, business_id, department_id, label="Department", resource_type="department"
        )


class StaffProfileService(ResourceService[StaffProfile]):
    model = StaffProfile
    resource_type = "staff_profile"
    label = "Staff profile"
    updatable_fields = ("display_name", "department_id", "skills", "is_available", "max_daily_jobs")
    soft_delete = False
    conflict_message = "Staff profile already exists for this user"
    actor_column = None

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        await _check_department(session, business_id, payload.department_id)

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: StaffProfile, values: dict[str, Any]
    ) -> dict[str, Any]:
        await _check_department(session, business_id, values.get("department_id"))
        return values

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(
            filters,
            {"department_id": StaffProfile.department_id, "is_available": StaffProfile.is_available},
        )

    def _order_by(self) -> Sequence[Any]:
        return (StaffProfile.display_name.asc(), StaffProfile.id.asc())


class RoutingRuleService(ResourceService[JobRoutingRule]):
    model = JobRoutingRule
    resource_type = "routing_rule"
    label = "Routing rule"
    updatable_fields = (
        "name",
        "conditions",
        "target_department_id",
        "required_skills",
        "priority_boost",
        "max_jobs_per_day",
    )

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        await _check_department(session, business_id, payload.target_department_id)

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: JobRoutingRule, values: dict[str, Any]
    ) -> dict[str, Any]:
        await _check_department(session, business_id, values.get("target_department_id"))
        return values

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(filters, {"is_active": JobRoutingRule.is_active})

    def _order_by(self) -> Sequence[Any]:
        return (JobRoutingRule.priority_boost.desc(), JobRoutingRule.created_at.asc(), JobRoutingRule.id.asc())

    async def _jobs_today(self, session: AsyncSession, business_id: str, staff_user_id: str) -> int:
        day_start = utc_now().replace(hour=0, minute=0, second=0, microsecond=0)
        result = await session.execute(
            select(func.count())
            .select_from(FieldJobAssignment)
            .where(
                tenant_predicate(FieldJobAssignment, business_id),
                FieldJobAssignment.staff_user_id == staff_user_id,
                FieldJobAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
                FieldJobAssignment.created_at >= day_start,
                FieldJobAssignment.created_at < day_start + timedelta(days=1),
            )
        )
        return int(result.scalar() or 0)

    async def _pick_staff(
        self, session: AsyncSession, business_id: str, rule: JobRoutingRule
    ) -> StaffProfile | None:
        stmt = select(StaffProfile).where(
            tenant_predicate(StaffProfile, business_id),
            StaffProfile.is_available.is_(True),
        )
        if rule.target_department_id is not None:
            stmt = stmt.where(StaffProfile.department_id == rule.target_department_id)
        stmt = stmt.order_by(StaffProfile.display_name.asc(), StaffProfile.id.asc())
        candidates = (await session.execute(stmt)).scalars().all()
        for profile in candidates:
            if not has_skills(profile, rule.required_skills):
                continue
            cap = rule.max_jobs_per_day or profile.max_daily_jobs
            if await self._jobs_today(session, business_id, profile.user_id) >= cap:
                continue
            return profile
        return None

    async def auto_assign(self, business_id: str, job_id: str, actor_id: str | None) -> AutoAssignResult:
        """Route a job to the first eligible staff member.

        Active rules are tried by ``priority_boost`` descending. A match writes
        a field assignment, stamps ``assigned_to`` and moves the job to
        ``assigned`` through the state machine, all in one transaction.
        """
        async with transaction(self._provider) as session:
            job = await require_owned(
                session, Job, business_id, job_id, label="Job", resource_type="job", for_update=True
            )
            # Only jobs nobody has started yet can be routed.
            if job.status not in _ROUTABLE_STATUSES:
                raise DomainRuleError(f"Cannot auto-assign a {job.status} job")
            existing = await session.execute(
                select(FieldJobAssignment.id).where(
                    tenant_predicate(FieldJobAssignment, business_id),
                    FieldJobAssignment.job_id == job.id,
                    FieldJobAssignment.status.in_(ACTIVE_ASSIGNMENT_STATUSES),
                )
            )
            if existing.first() is not None:
                raise ConflictError("Job already has an active field assignment", resource_type="job")
            rules = (
                await session.execute(
                    select(JobRoutingRule)
                    .where(tenant_predicate(JobRoutingRule, business_id), JobRoutingRule.is_active.is_(True))
                    .order_by(*self._order_by())
                )
            ).scalars().all()
            for rule in rules:
                if not rule_matches(rule, job):
                    continue
                profile = await self._pick_staff(session, business_id, rule)
                if profile is None:
                    continue
                assignment = FieldJobAssignment(
                    business_id=business_id,
                    job_id=job.id,
                    staff_user_id=profile.user_id,
                    routing_rule_id=rule.id,
                    assignment_method="auto",
                    assigned_by=actor_id,
                    created_at=utc_now(),
                )
                session.add(assignment)
                job.assigned_to = profile.user_id
                await session.flush()
                await change_job_status(
                    session,
                    self._audit,
                    business_id=business_id,
                    job=job,
                    new_status=JOB_STATUS_ASSIGNED,
                    actor_id=actor_id,
                    notes=f"Auto-assigned by rule {rule.name}",
                )
                await self._audit.log_action(
                    session,
                    business_id=business_id,
                    user_id=actor_id,
                    action="job.auto_assigned",
                    resource_type="job",
                    resource_id=job.id,
                    new_values={"staff_user_id": profile.user_id, "routing_rule_id": rule.id},
                )
                logger.info(
                    "job_auto_assigned business_id=%s job_id=%s staff=%s rule_id=%s",
                    business_id,
                    job.id,
                    profile.user_id,
                    rule.id,
                )
                return AutoAssignResult(
                    assigned=True,
                    message=f"Assigned to {profile.display_name}",
                    staff_user_id=profile.user_id,
                    rule_id=rule.id,
                    assignment_id=assignment.id,
                )
        logger.info("job_auto_assign_no_match business_id=%s job_id=%s", business_id, job_id)
        return AutoAssignResult(assigned=False, message=NO_MATCH_MESSAGE)
