from __future__ import annotations

import pytest

from bizzytrack.core.clock import ensure_utc
from bizzytrack.core.errors import DomainRuleError, InvalidArgumentError, InvalidTransitionError, NotFoundError
from bizzytrack.domain.schemas import AssignmentCreate, DepartmentUpdate, HandoffCreate
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.services.assignments import AssignmentService
from bizzytrack.services.audit import resource_history
from bizzytrack.services.departments import DepartmentService
from bizzytrack.services.jobs import JobService
from bizzytrack.services.workflow import WorkflowService
from bizzytrack.tests.utils.factories import business_id, make_department, make_job


@pytest.mark.asyncio
async def test_repeated_in_progress_does_not_restamp(provider: SessionProvider) -> None:
    tenant = business_id()
    job = await make_job(provider, tenant)
    service = JobService(provider)

    first = await service.update_status(tenant, job.id, "in-progress", "user-1")
    started_at = first.started_at
    second = await service.update_status(tenant, job.id, "in-progress", "user-1", notes="still going")

    assert started_at is not None
    assert ensure_utc(second.started_at) == ensure_utc(started_at)
    history = await service.status_history(tenant, job.id)
    # Creation row plus one per call.
    assert [(row.from_status, row.to_status) for row in history] == [
        (None, "pending"),
        ("pending", "in-progress"),
        ("in-progress", "in-progress"),
    ]
    assert history[-1].notes == "still going"


@pytest.mark.asyncio
async def test_history_follows_call_order(provider: SessionProvider) -> None:
    tenant = business_id()
    job = await make_job(provider, tenant)
    service = JobService(provider)

    for status in ("assigned", "pending", "assigned", "in-progress", "completed"):
        await service.update_status(tenant, job.id, status, "user-1")

    history = await service.status_history(tenant, job.id)
    assert [row.to_status for row in history] == [
        "pending",
        "assigned",
        "pending",
        "assigned",
        "in-progress",
        "completed",
    ]
    reloaded = await service.get(tenant, job.id)
    assert reloaded.completed_at is not None
    audit = await resource_history(provider, business_id=tenant, resource_type="job", resource_id=job.id)
    assert sum(1 for entry in audit if entry.action == "job.status_updated") == 5


@pytest.mark.asyncio
async def test_illegal_transition_leaves_no_trace(provider: SessionProvider) -> None:
    tenant = business_id()
    job = await make_job(provider, tenant)
    service = JobService(provider)
    await service.update_status(tenant, job.id, "cancelled", "user-1")

    with pytest.raises(InvalidTransitionError) as excinfo:
        await service.update_status(tenant, job.id, "pending", "user-1")
    assert excinfo.value.current == "cancelled"
    with pytest.raises(InvalidArgumentError):
        await service.update_status(tenant, job.id, "archived", "user-1")

    history = await service.status_history(tenant, job.id)
    assert [row.to_status for row in history] == ["pending", "cancelled"]


@pytest.mark.asyncio
async def test_status_history_is_tenant_scoped(provider: SessionProvider) -> None:
    tenant, other = business_id(), business_id()
    job = await make_job(provider, tenant)
    with pytest.raises(NotFoundError):
        await JobService(provider).status_history(other, job.id)
    with pytest.raises(NotFoundError):
        await JobService(provider).update_status(other, job.id, "assigned", "intruder")


@pytest.mark.asyncio
async def test_department_hierarchy_and_cycle_guard(provider: SessionProvider) -> None:
    tenant = business_id()
    ops = await make_department(provider, tenant, code="OPS", name="Operations")
    field = await make_department(provider, tenant, code="FLD", name="Field", parent_department_id=ops.id)
    service = DepartmentService(provider)

    roots = await service.hierarchy(tenant)
    assert [node.department.code for node in roots] == ["OPS"]
    assert [child.department.code for child in roots[0].children] == ["FLD"]
    detail = await service.get_with_children(tenant, ops.id)
    assert [child.id for child in detail.children] == [field.id]

    with pytest.raises(InvalidArgumentError, match="cycles"):
        await service.update(tenant, ops.id, DepartmentUpdate(parent_department_id=field.id), "user-1")
    with pytest.raises(InvalidArgumentError, match="own parent"):
        await service.update(tenant, ops.id, DepartmentUpdate(parent_department_id=ops.id), "user-1")
    with pytest.raises(DomainRuleError, match="sub-departments"):
        await service.delete(tenant, ops.id, "user-1")


@pytest.mark.asyncio
async def test_handoff_accept_moves_work_between_departments(provider: SessionProvider) -> None:
    tenant = business_id()
    intake = await make_department(provider, tenant, code="IN")
    repair = await make_department(provider, tenant, code="REP")
    job = await make_job(provider, tenant)
    assignments = AssignmentService(provider)
    sender = await assignments.create(
        tenant, AssignmentCreate(job_id=job.id, department_id=intake.id), "user-1"
    )
    workflow = WorkflowService(provider)

    handoff = await workflow.create_handoff(
        tenant,
        HandoffCreate(job_id=job.id, from_department_id=intake.id, to_department_id=repair.id),
        "user-1",
    )
    assert [row.id for row in await workflow.pending_handoffs(tenant, repair.id)] == [handoff.id]

    accepted = await workflow.accept_handoff(tenant, handoff.id, "user-2")
    assert accepted.status == "accepted"
    state = await workflow.job_workflow(tenant, job.id)
    by_department = {row.department_id: row for row in state.assignments}
    assert by_department[intake.id].id == sender.id
    assert by_department[intake.id].status == "completed"
    assert by_department[repair.id].status == "assigned"
    assert await workflow.pending_handoffs(tenant, repair.id) == []

    with pytest.raises(DomainRuleError, match="already accepted"):
        await workflow.reject_handoff(tenant, handoff.id, "user-2", reason="too late")


@pytest.mark.asyncio
async def test_handoff_back_and_forth_reopens_earlier_assignment(provider: SessionProvider) -> None:
    tenant = business_id()
    intake = await make_department(provider, tenant, code="IN")
    repair = await make_department(provider, tenant, code="REP")
    job = await make_job(provider, tenant)
    workflow = WorkflowService(provider)

    for source, target in ((intake, repair), (repair, intake), (intake, repair)):
        handoff = await workflow.create_handoff(
            tenant,
            HandoffCreate(job_id=job.id, from_department_id=source.id, to_department_id=target.id),
            "user-1",
        )
        await workflow.accept_handoff(tenant, handoff.id, "user-2")

    state = await workflow.job_workflow(tenant, job.id)
    assert len(state.assignments) == 2
    by_department = {row.department_id: row for row in state.assignments}
    assert by_department[intake.id].status == "completed"
    assert by_department[repair.id].status == "assigned"
    assert by_department[repair.id].completed_at is None
    assert [row.status for row in state.handoffs] == ["accepted", "accepted", "accepted"]


@pytest.mark.asyncio
async def test_handoff_to_same_department_is_rejected(provider: SessionProvider) -> None:
    tenant = business_id()
    department = await make_department(provider, tenant, code="OPS")
    job = await make_job(provider, tenant)
    with pytest.raises(InvalidArgumentError):
        await WorkflowService(provider).create_handoff(
            tenant,
            HandoffCreate(job_id=job.id, from_department_id=department.id, to_department_id=department.id),
            "user-1",
        )


@pytest.mark.asyncio
async def test_assignment_status_edges(provider: SessionProvider) -> None:
    tenant = business_id()
    department = await make_department(provider, tenant, code="OPS")
    job = await make_job(provider, tenant)
    service = AssignmentService(provider)
    assignment = await service.create(
        tenant, AssignmentCreate(job_id=job.id, department_id=department.id), "user-1"
    )

    with pytest.raises(InvalidArgumentError):
        await service.update_status(tenant, assignment.id, "completed", "user-1")
    started = await service.update_status(tenant, assignment.id, "in_progress", "user-1")
    assert started.started_at is not None
    cancelled = await service.delete(tenant, assignment.id, "user-1")
    assert cancelled.status == "cancelled"
    # A cancelled assignment no longer blocks department deletion.
    deleted = await DepartmentService(provider).delete(tenant, department.id, "user-1")
    assert deleted.is_active is False
