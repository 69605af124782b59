from __future__ import annotations

from decimal import Decimal

import pytest

from bizzytrack.core.errors import ConflictError, DomainRuleError, InvalidArgumentError, NotFoundError
from bizzytrack.domain.schemas import (
    DiscountHistoryFilters,
    DiscountRequest,
    RoutingRuleCreate,
    RoutingRuleUpdate,
    StaffProfileCreate,
    StaffProfileUpdate,
)
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.persistence.transaction import transaction
from bizzytrack.services.discounts import DiscountApprovalService
from bizzytrack.services.jobs import JobService
from bizzytrack.services.policy import (
    PERMISSION_DISCOUNT_APPROVE,
    PERMISSION_DISCOUNT_LIMIT,
    grant_permission,
)
from bizzytrack.services.routing import NO_MATCH_MESSAGE, RoutingRuleService, StaffProfileService
from bizzytrack.tests.utils.factories import business_id, make_customer, make_department, make_job


async def _routing_setup(provider: SessionProvider, tenant: str, *, max_jobs_per_day: int | None = None):
    department = await make_department(provider, tenant, code="HVAC")
    staff = StaffProfileService(provider)
    await staff.create(
        tenant,
        StaffProfileCreate(user_id="tech-1", display_name="Bea", department_id=department.id, skills=["hvac"]),
        "admin",
    )
    await staff.create(
        tenant,
        StaffProfileCreate(user_id="tech-2", display_name="Al", department_id=department.id, skills=["plumbing"]),
        "admin",
    )
    return await RoutingRuleService(provider).create(
        tenant,
        RoutingRuleCreate(
            name="Urgent HVAC",
            conditions={"priority": "high"},
            target_department_id=department.id,
            required_skills=["hvac"],
            max_jobs_per_day=max_jobs_per_day,
        ),
        "admin",
    )


@pytest.mark.asyncio
async def test_auto_assign_picks_skilled_staff(provider: SessionProvider) -> None:
    tenant = business_id()
    rule = await _routing_setup(provider, tenant)
    job = await make_job(provider, tenant, priority="high")
    routing = RoutingRuleService(provider)

    result = await routing.auto_assign(tenant, job.id, "dispatcher")

    assert result.assigned is True
    assert result.staff_user_id == "tech-1"
    assert result.rule_id == rule.id
    reloaded = await JobService(provider).get(tenant, job.id)
    assert reloaded.status == "assigned"
    assert reloaded.assigned_to == "tech-1"
    history = await JobService(provider).status_history(tenant, job.id)
    assert history[-1].notes == "Auto-assigned by rule Urgent HVAC"
    with pytest.raises(ConflictError):
        await routing.auto_assign(tenant, job.id, "dispatcher")


@pytest.mark.asyncio
async def test_auto_assign_reports_no_match(provider: SessionProvider) -> None:
    tenant = business_id()
    await _routing_setup(provider, tenant, max_jobs_per_day=1)
    routing = RoutingRuleService(provider)

    low = await make_job(provider, tenant, priority="low")
    unmatched = await routing.auto_assign(tenant, low.id, "dispatcher")
    assert unmatched.assigned is False
    assert unmatched.message == NO_MATCH_MESSAGE
    assert (await JobService(provider).get(tenant, low.id)).status == "pending"

    first = await make_job(provider, tenant, priority="high")
    second = await make_job(provider, tenant, priority="high")
    assert (await routing.auto_assign(tenant, first.id, "dispatcher")).assigned is True
    # The only skilled technician has used up the rule's daily cap.
    assert (await routing.auto_assign(tenant, second.id, "dispatcher")).assigned is False


@pytest.mark.asyncio
async def test_auto_assign_rejects_closed_jobs(provider: SessionProvider) -> None:
    tenant = business_id()
    await _routing_setup(provider, tenant)
    job = await make_job(provider, tenant, priority="high")
    await JobService(provider).update_status(tenant, job.id, "cancelled", "user-1")
    with pytest.raises(DomainRuleError):
        await RoutingRuleService(provider).auto_assign(tenant, job.id, "dispatcher")


@pytest.mark.asyncio
async def test_routing_updates_check_department_ownership(provider: SessionProvider) -> None:
    tenant, other = business_id(), business_id()
    rule = await _routing_setup(provider, tenant)
    foreign = await make_department(provider, other, code="HVAC")
    staff = StaffProfileService(provider)
    profile = (await staff.list(tenant))[0]

    with pytest.raises(NotFoundError):
        await RoutingRuleService(provider).update(
            tenant, rule.id, RoutingRuleUpdate(target_department_id=foreign.id), "admin"
        )
    with pytest.raises(NotFoundError):
        await staff.update(tenant, profile.id, StaffProfileUpdate(department_id=foreign.id), "admin")

    boosted = await RoutingRuleService(provider).update(tenant, rule.id, RoutingRuleUpdate(priority_boost=5), "admin")
    assert boosted.priority_boost == 5
    assert boosted.target_department_id == rule.target_department_id


@pytest.mark.asyncio
async def test_auto_assign_rejects_started_jobs_without_side_effects(provider: SessionProvider) -> None:
    tenant = business_id()
    await _routing_setup(provider, tenant)
    job = await make_job(provider, tenant, priority="high")
    jobs = JobService(provider)
    await jobs.update_status(tenant, job.id, "in-progress", "user-1")

    with pytest.raises(DomainRuleError, match="in-progress"):
        await RoutingRuleService(provider).auto_assign(tenant, job.id, "dispatcher")
    reloaded = await jobs.get(tenant, job.id)
    assert reloaded.status == "in-progress"
    assert reloaded.assigned_to is None
    assert len(await jobs.status_history(tenant, job.id)) == 2


@pytest.mark.asyncio
async def test_staff_profile_is_unique_per_user(provider: SessionProvider) -> None:
    tenant = business_id()
    await _routing_setup(provider, tenant)
    with pytest.raises(ConflictError):
        await StaffProfileService(provider).create(
            tenant, StaffProfileCreate(user_id="tech-1", display_name="Bea again"), "admin"
        )
    with pytest.raises(NotFoundError):
        await StaffProfileService(provider).create(
            tenant, StaffProfileCreate(user_id="tech-9", display_name="Cy", department_id="missing"), "admin"
        )


@pytest.mark.asyncio
async def test_small_discounts_are_auto_approved(provider: SessionProvider) -> None:
    tenant = business_id()
    customer = await make_customer(provider, tenant)
    service = DiscountApprovalService(provider)

    approval = await service.create(
        tenant,
        DiscountRequest(original_amount=Decimal("200"), discount_amount=Decimal("20"), customer_id=customer.id),
        "staff-1",
    )

    assert approval.status == "approved"
    assert approval.discount_percentage == Decimal("10.00")
    assert approval.requires_approval is False
    assert await service.pending(tenant) == []
    with pytest.raises(InvalidArgumentError):
        await service.create(
            tenant, DiscountRequest(original_amount=Decimal("10"), discount_amount=Decimal("11")), "staff-1"
        )


@pytest.mark.asyncio
async def test_discount_decisions_follow_role_limits(provider: SessionProvider) -> None:
    tenant = business_id()
    job = await make_job(provider, tenant)
    service = DiscountApprovalService(provider)
    approval = await service.create(
        tenant,
        DiscountRequest(original_amount=Decimal("100"), discount_amount=Decimal("40"), job_id=job.id),
        "staff-1",
    )
    assert approval.status == "pending"
    assert [row.id for row in await service.pending(tenant)] == [approval.id]

    with pytest.raises(DomainRuleError, match="not allowed"):
        await service.decide(tenant, approval.id, status="approved", approver_id="staff-2", role="staff")
    with pytest.raises(DomainRuleError, match="exceeds approval limit"):
        await service.decide(tenant, approval.id, status="approved", approver_id="mgr-1", role="manager")
    with pytest.raises(InvalidArgumentError):
        await service.decide(tenant, approval.id, status="maybe", approver_id="mgr-1", role="manager")

    async with transaction(provider) as session:
        await grant_permission(
            session,
            business_id=tenant,
            user_id="mgr-1",
            permission=PERMISSION_DISCOUNT_LIMIT,
            limit_value=Decimal("45"),
        )
    decided = await service.decide(
        tenant, approval.id, status="approved", approver_id="mgr-1", role="manager", notes="loyal customer"
    )
    assert decided.status == "approved"
    assert decided.approved_by == "mgr-1"
    with pytest.raises(DomainRuleError, match="already approved"):
        await service.decide(tenant, approval.id, status="rejected", approver_id="owner-1", role="owner")

    stats = await service.stats(tenant)
    assert stats.by_status == {"approved": 1}
    assert stats.total_discounted == Decimal("40")
    history = await service.history(tenant, DiscountHistoryFilters(approved_by="mgr-1"))
    assert [row.id for row in history] == [approval.id]


@pytest.mark.asyncio
async def test_explicit_grant_can_revoke_role_default(provider: SessionProvider) -> None:
    tenant = business_id()
    service = DiscountApprovalService(provider)
    approval = await service.create(
        tenant, DiscountRequest(original_amount=Decimal("100"), discount_amount=Decimal("25")), "staff-1"
    )
    async with transaction(provider) as session:
        await grant_permission(
            session, business_id=tenant, user_id="owner-2", permission=PERMISSION_DISCOUNT_APPROVE, granted=False
        )

    with pytest.raises(DomainRuleError, match="not allowed"):
        await service.decide(tenant, approval.id, status="approved", approver_id="owner-2", role="owner")
    rejected = await service.decide(tenant, approval.id, status="rejected", approver_id="staff-9", role="staff")
    assert rejected.status == "rejected"
