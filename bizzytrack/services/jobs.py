from __future__ import annotations

from decimal import Decimal
import logging
from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.clock import utc_now
from bizzytrack.core.errors import InvalidArgumentError
from bizzytrack.domain.lifecycle import (
    JOB_STATUS_COMPLETED,
    JOB_STATUS_IN_PROGRESS,
    JOB_STATUS_PENDING,
    check_job_transition,
)
from bizzytrack.domain.models import CatalogService, Customer, Job, JobStatusHistory
from bizzytrack.domain.schemas import JobCreate
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import Field
from bizzytrack.persistence.transaction import read_session, transaction
from bizzytrack.services.audit import AuditTrail, snapshot
from bizzytrack.services.crud import (
    ResourceService,
    filter_fields,
    flush_or_conflict,
    require_owned,
)


logger = logging.getLogger(__name__)

JOB_NUMBER_FORMAT = "JOB-{:03d}"


def compute_final_price(base_price: Decimal, discount_amount: Decimal | None) -> Decimal:
    # Final price never drops below zero even when the discount exceeds the base.
    discount = discount_amount or Decimal("0")
    return max(Decimal(base_price) - Decimal(discount), Decimal("0"))


async def next_job_number(session: AsyncSession, business_id: str) -> str:
    # Sequential per business; the unique constraint catches concurrent collisions.
    result = await session.execute(
        select(func.count()).select_from(Job).where(tenant_predicate(Job, business_id))
    )
    return JOB_NUMBER_FORMAT.format(int(result.scalar() or 0) + 1)


async def change_job_status(
    session: AsyncSession,
    audit: AuditTrail,
    *,
    business_id: str,
    job: Job,
    new_status: str,
    actor_id: str | None,
    notes: str | None = None,
) -> JobStatusHistory:
    """Move a loaded job to ``new_status`` inside the caller's transaction.

    Appends one history row per call, stamps ``started_at``/``completed_at``
    only the first time those states are entered, and writes the audit entry.
    """
    previous = job.status
    check_job_transition(previous, new_status)
    now = utc_now()
    job.status = new_status
    if new_status == JOB_STATUS_IN_PROGRESS and job.started_at is None:
        job.started_at = now
    if new_status == JOB_STATUS_COMPLETED and job.completed_at is None:
        job.completed_at = now
    entry = JobStatusHistory(
        business_id=business_id,
        job_id=job.id,
        from_status=previous,
        to_status=new_status,
        changed_by=actor_id,
        notes=notes,
        created_at=now,
    )
    session.add(entry)
    await session.flush()
    await audit.log_action(
        session,
        business_id=business_id,
        user_id=actor_id,
        action="job.status_updated",
        resource_type="job",
        resource_id=job.id,
        old_values={"status": previous},
        new_values={"status": new_status, "notes": notes},
    )
    return entry


class JobService(ResourceService[Job]):
    model = Job
    resource_type = "job"
    label = "Job"
    updatable_fields = (
        "title",
        "description",
        "scheduled_date",
        "estimated_duration_minutes",
        "actual_duration_minutes",
        "priority",
        "assigned_to",
        "discount_amount",
        "location",
    )
    conflict_message = "Job number already taken; retry the request"

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(
            filters,
            {
                "status": Job.status,
                "assigned_to": Job.assigned_to,
                "customer_id": Job.customer_id,
                "is_package_job": Job.is_package_job,
                "priority": Job.priority,
                "is_active": Job.is_active,
            },
        )

    def _order_by(self) -> Sequence[Any]:
        return (Job.created_at.desc(), Job.id.desc())

    async def create_in(
        self,
        session: AsyncSession,
        business_id: str,
        payload: JobCreate,
        actor_id: str | None,
    ) -> Job:
        service = await require_owned(
            session,
            CatalogService,
            business_id,
            payload.service_id,
            label="Service",
            resource_type="service",
        )
        if payload.customer_id is not None:
            await require_owned(
                session,
                Customer,
                business_id,
                payload.customer_id,
                label="Customer",
                resource_type="customer",
            )
        base_price = payload.base_price if payload.base_price is not None else service.base_price
        if payload.discount_amount > base_price:
            raise InvalidArgumentError("discount_amount cannot exceed base_price")
        job = Job(
            business_id=business_id,
            job_number=await next_job_number(session, business_id),
            service_id=service.id,
            customer_id=payload.customer_id,
            title=payload.title,
            description=payload.description,
            status=JOB_STATUS_PENDING,
            priority=payload.priority,
            scheduled_date=payload.scheduled_date,
            estimated_duration_minutes=(
                payload.estimated_duration_minutes
                if payload.estimated_duration_minutes is not None
                else service.duration_minutes
            ),
            assigned_to=payload.assigned_to,
            base_price=base_price,
            discount_amount=payload.discount_amount,
            final_price=compute_final_price(base_price, payload.discount_amount),
            location=payload.location,
            is_package_job=payload.is_package_job,
            created_by=actor_id,
        )
        session.add(job)
        await flush_or_conflict(session, message=self.conflict_message, resource_type=self.resource_type)
        session.add(
            JobStatusHistory(
                business_id=business_id,
                job_id=job.id,
                from_status=None,
                to_status=JOB_STATUS_PENDING,
                changed_by=actor_id,
                notes="Job created",
                created_at=utc_now(),
            )
        )
        await session.flush()
        await self._audit.log_action(
            session,
            business_id=business_id,
            user_id=actor_id,
            action="job.created",
            resource_type=self.resource_type,
            resource_id=job.id,
            new_values=snapshot(
                job,
                fields=["id", "job_number", "service_id", "customer_id", "title", "status", "final_price"],
            ),
        )
        return job

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: Job, values: dict[str, Any]
    ) -> dict[str, Any]:
        if "discount_amount" in values:
            discount = values["discount_amount"]
            if discount is not None and discount > row.base_price:
                raise InvalidArgumentError("discount_amount cannot exceed base_price")
            values = {**values, "final_price": compute_final_price(row.base_price, discount)}
        return values

    async def update_status(
        self,
        business_id: str,
        job_id: str,
        new_status: str,
        actor_id: str | None,
        notes: str | None = None,
    ) -> Job:
        async with transaction(self._provider) as session:
            job = await require_owned(
                session, Job, business_id, job_id, label="Job", resource_type="job", for_update=True
            )
            await change_job_status(
                session,
                self._audit,
                business_id=business_id,
                job=job,
                new_status=new_status,
                actor_id=actor_id,
                notes=notes,
            )
        logger.info("job_status_updated business_id=%s job_id=%s status=%s", business_id, job_id, new_status)
        return job

    async def status_history(self, business_id: str, job_id: str) -> list[JobStatusHistory]:
        async with read_session(self._provider) as session:
            await require_owned(session, Job, business_id, job_id, label="Job", resource_type="job")
            result = await session.execute(
                select(JobStatusHistory)
                .where(
                    tenant_predicate(JobStatusHistory, business_id),
                    JobStatusHistory.job_id == job_id,
                )
                .order_by(JobStatusHistory.id.asc())
            )
            return list(result.scalars().all())
