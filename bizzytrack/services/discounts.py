from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.clock import utc_now
from bizzytrack.core.config import get_settings
from bizzytrack.core.errors import DomainRuleError, InvalidArgumentError
from bizzytrack.domain.models import Customer, DiscountApproval, Job
from bizzytrack.domain.schemas import DiscountHistoryFilters, DiscountRequest
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.persistence.guards import require_tenant_id, tenant_predicate
from bizzytrack.persistence.query import build_where, fields_from_model, paginate
from bizzytrack.persistence.transaction import read_session, transaction
from bizzytrack.services.audit import AuditTrail, snapshot
from bizzytrack.services.crud import load_owned, require_owned
from bizzytrack.services.policy import (
    PERMISSION_DISCOUNT_APPROVE,
    PERMISSION_DISCOUNT_LIMIT,
    evaluate_permission,
)


logger = logging.getLogger(__name__)

RESOURCE_TYPE = "discount_approval"

DISCOUNT_STATUS_PENDING = "pending"
DISCOUNT_STATUS_APPROVED = "approved"
DISCOUNT_STATUS_REJECTED = "rejected"
DECISION_STATUSES = (DISCOUNT_STATUS_APPROVED, DISCOUNT_STATUS_REJECTED)


@dataclass(frozen=True)
class DiscountStats:
    by_status: dict[str, int]
    total_discounted: Decimal
    average_percentage: Decimal | None


def discount_percentage(original_amount: Decimal, discount_amount: Decimal) -> Decimal:
    if original_amount <= 0:
        raise InvalidArgumentError("original_amount must be positive")
    pct = (Decimal(discount_amount) / Decimal(original_amount)) * Decimal("100")
    return pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def requires_approval(percentage: Decimal, threshold: Decimal | float | None = None) -> bool:
    # Discounts at or above the threshold wait for a manager decision.
    resolved = Decimal(str(threshold if threshold is not None else get_settings().discount_approval_threshold_pct))
    return percentage >= resolved


class DiscountApprovalService:
    def __init__(self, provider: SessionProvider, *, audit: AuditTrail | None = None) -> None:
        self._provider = provider
        self._audit = audit or AuditTrail()

    async def create(
        self, business_id: str, payload: DiscountRequest, actor_id: str | None
    ) -> DiscountApproval:
        require_tenant_id(business_id)
        if payload.discount_amount > payload.original_amount:
            raise InvalidArgumentError("discount_amount cannot exceed original_amount")
        percentage = discount_percentage(payload.original_amount, payload.discount_amount)
        needs_approval = requires_approval(percentage)
        async with transaction(self._provider) as session:
            if payload.job_id is not None:
                await require_owned(session, Job, business_id, payload.job_id, label="Job", resource_type="job")
            if payload.customer_id is not None:
                await require_owned(
                    session,
                    Customer,
                    business_id,
                    payload.customer_id,
                    label="Customer",
                    resource_type="customer",
                )
            approval = DiscountApproval(
                business_id=business_id,
                job_id=payload.job_id,
                customer_id=payload.customer_id,
                original_amount=payload.original_amount,
                discount_amount=payload.discount_amount,
                discount_percentage=percentage,
                reason=payload.reason,
                requires_approval=needs_approval,
                status=DISCOUNT_STATUS_PENDING if needs_approval else DISCOUNT_STATUS_APPROVED,
                requested_by=actor_id,
            )
            if not needs_approval:
                approval.approved_at = utc_now()
                approval.decision_notes = "Auto-approved below threshold"
            session.add(approval)
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action=f"{RESOURCE_TYPE}.created",
                resource_type=RESOURCE_TYPE,
                resource_id=approval.id,
                new_values=snapshot(
                    approval,
                    fields=["discount_amount", "discount_percentage", "status", "requires_approval"],
                ),
            )
        logger.info(
            "discount_requested business_id=%s approval_id=%s pct=%s status=%s",
            business_id,
            approval.id,
            percentage,
            approval.status,
        )
        return approval

    async def get(self, business_id: str, approval_id: str) -> DiscountApproval | None:
        async with read_session(self._provider) as session:
            return await load_owned(session, DiscountApproval, business_id, approval_id)

    async def pending(self, business_id: str) -> list[DiscountApproval]:
        return await self.history(business_id, DiscountHistoryFilters(status=DISCOUNT_STATUS_PENDING))

    async def history(
        self,
        business_id: str,
        filters: DiscountHistoryFilters | None = None,
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[DiscountApproval]:
        clause = build_where(
            fields_from_model(
                filters,
                {
                    "status": DiscountApproval.status,
                    "requested_by": DiscountApproval.requested_by,
                    "approved_by": DiscountApproval.approved_by,
                    "date_from": DiscountApproval.created_at,
                    "date_to": DiscountApproval.created_at,
                },
                ops={"date_from": "ge", "date_to": "le"},
            )
        )
        stmt = clause.apply(select(DiscountApproval).where(tenant_predicate(DiscountApproval, business_id)))
        stmt = stmt.order_by(DiscountApproval.created_at.desc(), DiscountApproval.id.desc())
        stmt = paginate(stmt, limit=limit, offset=offset)
        async with read_session(self._provider) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def _check_approver(
        self,
        session: AsyncSession,
        *,
        business_id: str,
        approver_id: str,
        role: str | None,
        approval: DiscountApproval,
    ) -> None:
        decision = await evaluate_permission(
            session,
            business_id=business_id,
            user_id=approver_id,
            role=role,
            permission=PERMISSION_DISCOUNT_APPROVE,
        )
        if not decision.allowed:
            raise DomainRuleError("User is not allowed to approve discounts")
        limit = await evaluate_permission(
            session,
            business_id=business_id,
            user_id=approver_id,
            role=role,
            permission=PERMISSION_DISCOUNT_LIMIT,
        )
        if limit.limit is not None and approval.discount_percentage > limit.limit:
            raise DomainRuleError(
                f"Discount of {approval.discount_percentage}% exceeds approval limit of {limit.limit}%"
            )

    async def decide(
        self,
        business_id: str,
        approval_id: str,
        *,
        status: str,
        approver_id: str,
        role: str | None,
        notes: str | None = None,
    ) -> DiscountApproval:
        if status not in DECISION_STATUSES:
            raise InvalidArgumentError(f"Unsupported decision: {status}")
        async with transaction(self._provider) as session:
            approval = await require_owned(
                session,
                DiscountApproval,
                business_id,
                approval_id,
                label="Discount approval",
                resource_type=RESOURCE_TYPE,
                for_update=True,
            )
            if approval.status != DISCOUNT_STATUS_PENDING:
                raise DomainRuleError(f"Discount approval is already {approval.status}")
            if status == DISCOUNT_STATUS_APPROVED:
                await self._check_approver(
                    session,
                    business_id=business_id,
                    approver_id=approver_id,
                    role=role,
                    approval=approval,
                )
            approval.status = status
            approval.approved_by = approver_id
            approval.approved_at = utc_now()
            approval.decision_notes = notes
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=approver_id,
                action=f"{RESOURCE_TYPE}.{status}",
                resource_type=RESOURCE_TYPE,
                resource_id=approval.id,
                old_values={"status": DISCOUNT_STATUS_PENDING},
                new_values={"status": status, "notes": notes},
            )
        logger.info("discount_decided business_id=%s approval_id=%s status=%s", business_id, approval_id, status)
        return approval

    async def stats(self, business_id: str) -> DiscountStats:
        async with read_session(self._provider) as session:
            by_status_rows = await session.execute(
                select(DiscountApproval.status, func.count())
                .where(tenant_predicate(DiscountApproval, business_id))
                .group_by(DiscountApproval.status)
            )
            by_status = {status: int(count) for status, count in by_status_rows.all()}
            totals = await session.execute(
                select(func.sum(DiscountApproval.discount_amount), func.avg(DiscountApproval.discount_percentage))
                .where(
                    tenant_predicate(DiscountApproval, business_id),
                    DiscountApproval.status == DISCOUNT_STATUS_APPROVED,
                )
            )
            total, average = totals.one()
        return DiscountStats(
            by_status=by_status,
            total_discounted=Decimal(str(total)) if total is not None else Decimal("0"),
            average_percentage=(
                Decimal(str(average)).quantize(Decimal("0.01")) if average is not None else None
            ),
        )
