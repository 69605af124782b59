from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.clock import ensure_utc, utc_now
from bizzytrack.core.errors import DomainRuleError, InvalidArgumentError
from bizzytrack.domain.lifecycle import JOB_STATUS_PENDING, OPEN_JOB_STATUSES
from bizzytrack.domain.models import CatalogService, Job, SlaConfiguration, SlaViolation
from bizzytrack.domain.schemas import SlaViolationFilters
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import Field, build_where, fields_from_model, paginate
from bizzytrack.persistence.transaction import read_session, transaction
from bizzytrack.services.crud import ResourceService, filter_fields, require_owned


logger = logging.getLogger(__name__)

VIOLATION_RESPONSE_TIME = "response_time"
VIOLATION_RESOLUTION_TIME = "resolution_time"

VIOLATION_STATUS_OPEN = "open"
VIOLATION_STATUS_ESCALATED = "escalated"
VIOLATION_STATUS_RESOLVED = "resolved"
UNRESOLVED_VIOLATION_STATUSES = (VIOLATION_STATUS_OPEN, VIOLATION_STATUS_ESCALATED)


@dataclass(frozen=True)
class SlaStats:
    window_days: int
    total: int
    by_type: dict[str, int]
    by_status: dict[str, int]
    average_violation_minutes: float | None


def config_applies(config: SlaConfiguration, job: Job) -> bool:
    # A config with no service or priority scope applies to every job.
    if config.service_id is not None and config.service_id != job.service_id:
        return False
    if config.priority_level is not None and config.priority_level != job.priority:
        return False
    return True


def due_violations(config: SlaConfiguration, job: Job, now: datetime) -> list[tuple[str, datetime]]:
    """Return the (violation type, deadline) pairs a job has already missed."""
    created_at = ensure_utc(job.created_at)
    if created_at is None:
        return []
    missed: list[tuple[str, datetime]] = []
    response_due = created_at + timedelta(minutes=config.response_time_minutes)
    if job.status == JOB_STATUS_PENDING and now > response_due:
        missed.append((VIOLATION_RESPONSE_TIME, response_due))
    resolution_due = created_at + timedelta(minutes=config.resolution_time_minutes)
    if job.status in OPEN_JOB_STATUSES and now > resolution_due:
        missed.append((VIOLATION_RESOLUTION_TIME, resolution_due))
    return missed


class SlaService(ResourceService[SlaConfiguration]):
    model = SlaConfiguration
    resource_type = "sla_configuration"
    label = "SLA configuration"
    updatable_fields = (
        "name",
        "priority_level",
        "response_time_minutes",
        "resolution_time_minutes",
        "escalation_rules",
    )

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        if payload.service_id is not None:
            await require_owned(
                session,
                CatalogService,
                business_id,
                payload.service_id,
                label="Service",
                resource_type="service",
            )
        if payload.resolution_time_minutes < payload.response_time_minutes:
            raise InvalidArgumentError("resolution_time_minutes cannot be shorter than response_time_minutes")

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: SlaConfiguration, values: dict[str, Any]
    ) -> dict[str, Any]:
        # Compare the targets as they will stand after the patch.
        response = values.get("response_time_minutes", row.response_time_minutes)
        resolution = values.get("resolution_time_minutes", row.resolution_time_minutes)
        if resolution < response:
            raise InvalidArgumentError("resolution_time_minutes cannot be shorter than response_time_minutes")
        return values

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(
            filters,
            {"is_active": SlaConfiguration.is_active, "service_id": SlaConfiguration.service_id},
        )

    def _order_by(self) -> Sequence[Any]:
        return (SlaConfiguration.name.asc(), SlaConfiguration.id.asc())

    async def check_violations(self, business_id: str, now: datetime | None = None) -> list[SlaViolation]:
        """Record newly missed response and resolution deadlines.

        Each (job, config, type) triple is recorded at most once, so running
        the check repeatedly only ever adds violations that are new.
        """
        current = ensure_utc(now) or utc_now()
        created: list[SlaViolation] = []
        async with transaction(self._provider) as session:
            configs = (
                await session.execute(
                    select(SlaConfiguration).where(
                        tenant_predicate(SlaConfiguration, business_id),
                        SlaConfiguration.is_active.is_(True),
                    )
                )
            ).scalars().all()
            if not configs:
                return []
            jobs = (
                await session.execute(
                    select(Job).where(
                        tenant_predicate(Job, business_id),
                        Job.is_active.is_(True),
                        Job.status.in_(OPEN_JOB_STATUSES),
                    )
                )
            ).scalars().all()
            existing_rows = await session.execute(
                select(SlaViolation.job_id, SlaViolation.sla_config_id, SlaViolation.violation_type).where(
                    tenant_predicate(SlaViolation, business_id)
                )
            )
            seen = {tuple(row) for row in existing_rows.all()}
            for job in jobs:
                for config in configs:
                    if not config_applies(config, job):
                        continue
                    for violation_type, deadline in due_violations(config, job, current):
                        key = (job.id, config.id, violation_type)
                        if key in seen:
                            continue
                        seen.add(key)
                        violation = SlaViolation(
                            business_id=business_id,
                            job_id=job.id,
                            sla_config_id=config.id,
                            violation_type=violation_type,
                            expected_time=deadline,
                            actual_time=current,
                            violation_minutes=int((current - deadline).total_seconds() // 60),
                            status=VIOLATION_STATUS_OPEN,
                            created_at=current,
                        )
                        session.add(violation)
                        created.append(violation)
            await session.flush()
            for violation in created:
                await self._audit.log_action(
                    session,
                    business_id=business_id,
                    user_id=None,
                    action="sla_violation.created",
                    resource_type="sla_violation",
                    resource_id=violation.id,
                    new_values={
                        "job_id": violation.job_id,
                        "violation_type": violation.violation_type,
                        "violation_minutes": violation.violation_minutes,
                    },
                )
        if created:
            logger.warning("sla_violations_recorded business_id=%s count=%s", business_id, len(created))
        return created

    async def active_violations(
        self,
        business_id: str,
        filters: SlaViolationFilters | None = None,
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[SlaViolation]:
        clause = build_where(
            fields_from_model(
                filters,
                {
                    "status": SlaViolation.status,
                    "violation_type": SlaViolation.violation_type,
                    "job_id": SlaViolation.job_id,
                },
            )
        )
        stmt = select(SlaViolation).where(tenant_predicate(SlaViolation, business_id))
        if filters is None or "status" not in filters.model_fields_set:
            stmt = stmt.where(SlaViolation.status.in_(UNRESOLVED_VIOLATION_STATUSES))
        stmt = clause.apply(stmt).order_by(SlaViolation.created_at.desc(), SlaViolation.id.desc())
        stmt = paginate(stmt, limit=limit, offset=offset)
        async with read_session(self._provider) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def escalate(
        self,
        business_id: str,
        violation_id: str,
        *,
        escalated_to: str,
        level: int | None = None,
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> SlaViolation:
        async with transaction(self._provider) as session:
            violation = await require_owned(
                session,
                SlaViolation,
                business_id,
                violation_id,
                label="SLA violation",
                resource_type="sla_violation",
                for_update=True,
            )
            if violation.status == VIOLATION_STATUS_RESOLVED:
                raise DomainRuleError("Cannot escalate a resolved SLA violation")
            old_values = {"status": violation.status, "escalation_level": violation.escalation_level}
            violation.status = VIOLATION_STATUS_ESCALATED
            violation.escalated_to = escalated_to
            violation.escalation_level = level if level is not None else violation.escalation_level + 1
            violation.escalated_at = utc_now()
            if notes:
                violation.resolution_notes = notes
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action="sla_violation.escalated",
                resource_type="sla_violation",
                resource_id=violation.id,
                old_values=old_values,
                new_values={
                    "status": violation.status,
                    "escalation_level": violation.escalation_level,
                    "escalated_to": escalated_to,
                },
            )
        logger.info(
            "sla_violation_escalated business_id=%s violation_id=%s level=%s",
            business_id,
            violation_id,
            violation.escalation_level,
        )
        return violation

    async def resolve(
        self,
        business_id: str,
        violation_id: str,
        *,
        notes: str | None = None,
        actor_id: str | None = None,
    ) -> SlaViolation:
        async with transaction(self._provider) as session:
            violation = await require_owned(
                session,
                SlaViolation,
                business_id,
                violation_id,
                label="SLA violation",
                resource_type="sla_violation",
                for_update=True,
            )
            if violation.status == VIOLATION_STATUS_RESOLVED:
                return violation
            previous = violation.status
            violation.status = VIOLATION_STATUS_RESOLVED
            violation.resolved_at = utc_now()
            violation.resolution_notes = notes
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action="sla_violation.resolved",
                resource_type="sla_violation",
                resource_id=violation.id,
                old_values={"status": previous},
                new_values={"status": VIOLATION_STATUS_RESOLVED, "notes": notes},
            )
        return violation

    async def stats(self, business_id: str, *, days: int = 30) -> SlaStats:
        if days <= 0:
            raise InvalidArgumentError("days must be positive")
        since = utc_now() - timedelta(days=days)
        window = (tenant_predicate(SlaViolation, business_id), SlaViolation.created_at >= since)
        async with read_session(self._provider) as session:
            type_rows = await session.execute(
                select(SlaViolation.violation_type, func.count())
                .where(*window)
                .group_by(SlaViolation.violation_type)
            )
            status_rows = await session.execute(
                select(SlaViolation.status, func.count()).where(*window).group_by(SlaViolation.status)
            )
            average = (
                await session.execute(select(func.avg(SlaViolation.violation_minutes)).where(*window))
            ).scalar()
        by_type = {kind: int(count) for kind, count in type_rows.all()}
        by_status = {status: int(count) for status, count in status_rows.all()}
        return SlaStats(
            window_days=days,
            total=sum(by_type.values()),
            by_type=by_type,
            by_status=by_status,
            average_violation_minutes=float(average) if average is not None else None,
        )

    async def configs_for_job(self, business_id: str, job_id: str) -> list[SlaConfiguration]:
        # Active configurations scoped to the job's service, plus global ones.
        async with read_session(self._provider) as session:
            job = await require_owned(session, Job, business_id, job_id, label="Job", resource_type="job")
            result = await session.execute(
                select(SlaConfiguration)
                .where(
                    tenant_predicate(SlaConfiguration, business_id),
                    SlaConfiguration.is_active.is_(True),
                    or_(SlaConfiguration.service_id.is_(None), SlaConfiguration.service_id == job.service_id),
                )
                .order_by(*self._order_by())
            )
            return [config for config in result.scalars().all() if config_applies(config, job)]
