from __future__ import annotations

import logging
from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.errors import ConflictError, InvalidArgumentError, NotFoundError
from bizzytrack.domain.models import Branch, CrossBranchAccess, UserBranchAssignment
from bizzytrack.domain.schemas import CrossBranchAccessCreate
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import Field
from bizzytrack.persistence.transaction import read_session, transaction
from bizzytrack.services.audit import snapshot
from bizzytrack.services.crud import ResourceService, filter_fields, flush_or_conflict, require_owned


logger = logging.getLogger(__name__)

_CODE_TAKEN = "Branch code already exists for this business"
_PRIMARY_TAKEN = "User already has a primary branch; retry the request"


async def _code_taken(
    session: AsyncSession, business_id: str, code: str, *, exclude_id: str | None = None
) -> bool:
    stmt = select(Branch.id).where(tenant_predicate(Branch, business_id), Branch.code == code)
    if exclude_id is not None:
        stmt = stmt.where(Branch.id != exclude_id)
    return (await session.execute(stmt.limit(1))).first() is not None


class BranchService(ResourceService[Branch]):
    model = Branch
    resource_type = "branch"
    label = "Branch"
    updatable_fields = (
        "name",
        "code",
        "address",
        "city",
        "state_province",
        "country",
        "postal_code",
        "phone",
        "email",
        "manager_id",
        "timezone",
        "latitude",
        "longitude",
    )
    conflict_message = _CODE_TAKEN

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        if await _code_taken(session, business_id, payload.code):
            raise ConflictError(_CODE_TAKEN, resource_type=self.resource_type)

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: Branch, values: dict[str, Any]
    ) -> dict[str, Any]:
        code = values.get("code")
        if code and code != row.code and await _code_taken(session, business_id, code, exclude_id=row.id):
            raise ConflictError(_CODE_TAKEN, resource_type=self.resource_type)
        return values

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(
            filters,
            {"is_active": Branch.is_active, "city": Branch.city, "manager_id": Branch.manager_id},
        )

    def _order_by(self) -> Sequence[Any]:
        return (Branch.name.asc(), Branch.id.asc())

    async def assign_user(
        self,
        business_id: str,
        *,
        user_id: str,
        branch_id: str,
        actor_id: str | None,
        is_primary: bool = False,
        access_level: str = "standard",
    ) -> UserBranchAssignment:
        """Attach a user to a branch, optionally as their primary branch.

        Other primary flags for the user are cleared in the same transaction.
        The partial unique index on primary rows turns a concurrent competing
        claim into ``ConflictError`` instead of a second primary.
        """
        async with transaction(self._provider) as session:
            branch = await require_owned(
                session, Branch, business_id, branch_id, label="Branch", resource_type=self.resource_type
            )
            if not branch.is_active:
                raise NotFoundError("Branch not found", resource_type=self.resource_type)
            if is_primary:
                await session.execute(
                    update(UserBranchAssignment)
                    .where(
                        tenant_predicate(UserBranchAssignment, business_id),
                        UserBranchAssignment.user_id == user_id,
                        UserBranchAssignment.branch_id != branch_id,
                        UserBranchAssignment.is_primary.is_(True),
                    )
                    .values(is_primary=False)
                    .execution_options(synchronize_session=False)
                )
            result = await session.execute(
                select(UserBranchAssignment).where(
                    tenant_predicate(UserBranchAssignment, business_id),
                    UserBranchAssignment.user_id == user_id,
                    UserBranchAssignment.branch_id == branch_id,
                )
            )
            assignment = result.scalar_one_or_none()
            old_values = snapshot(assignment, fields=["is_primary", "access_level"]) if assignment else None
            if assignment is None:
                assignment = UserBranchAssignment(
                    business_id=business_id,
                    user_id=user_id,
                    branch_id=branch_id,
                    is_primary=is_primary,
                    access_level=access_level,
                    assigned_by=actor_id,
                )
                session.add(assignment)
            else:
                assignment.is_primary = is_primary
                assignment.access_level = access_level
                assignment.assigned_by = actor_id
            await flush_or_conflict(session, message=_PRIMARY_TAKEN, resource_type="user_branch_assignment")
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action="user_branch_assignment.assigned",
                resource_type="user_branch_assignment",
                resource_id=assignment.id,
                old_values=old_values,
                new_values={
                    "user_id": user_id,
                    "branch_id": branch_id,
                    "is_primary": is_primary,
                    "access_level": access_level,
                },
            )
        logger.info(
            "user_branch_assigned business_id=%s user_id=%s branch_id=%s primary=%s",
            business_id,
            user_id,
            branch_id,
            is_primary,
        )
        return assignment

    async def user_branches(self, business_id: str, user_id: str) -> list[tuple[UserBranchAssignment, Branch]]:
        # Primary branch first, then alphabetical.
        async with read_session(self._provider) as session:
            result = await session.execute(
                select(UserBranchAssignment, Branch)
                .join(Branch, Branch.id == UserBranchAssignment.branch_id)
                .where(
                    tenant_predicate(UserBranchAssignment, business_id),
                    tenant_predicate(Branch, business_id),
                    UserBranchAssignment.user_id == user_id,
                    Branch.is_active.is_(True),
                )
                .order_by(UserBranchAssignment.is_primary.desc(), Branch.name.asc())
            )
            return [(assignment, branch) for assignment, branch in result.all()]

    async def primary_branch(self, business_id: str, user_id: str) -> Branch | None:
        rows = await self.user_branches(business_id, user_id)
        for assignment, branch in rows:
            if assignment.is_primary:
                return branch
        return None

    async def grant_cross_branch_access(
        self, business_id: str, payload: CrossBranchAccessCreate, actor_id: str | None
    ) -> CrossBranchAccess:
        if payload.from_branch_id == payload.to_branch_id:
            raise InvalidArgumentError("Cross-branch access needs two different branches")
        async with transaction(self._provider) as session:
            for branch_id in (payload.from_branch_id, payload.to_branch_id):
                await require_owned(
                    session, Branch, business_id, branch_id, label="Branch", resource_type=self.resource_type
                )
            rule = CrossBranchAccess(
                business_id=business_id,
                from_branch_id=payload.from_branch_id,
                to_branch_id=payload.to_branch_id,
                access_type=payload.access_type,
                resource_types=list(payload.resource_types),
                created_by=actor_id,
            )
            session.add(rule)
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action="cross_branch_access.created",
                resource_type="cross_branch_access",
                resource_id=rule.id,
                new_values=snapshot(payload),
            )
        return rule

    async def cross_branch_access(self, business_id: str, branch_id: str | None = None) -> list[CrossBranchAccess]:
        stmt = select(CrossBranchAccess).where(tenant_predicate(CrossBranchAccess, business_id))
        if branch_id is not None:
            stmt = stmt.where(CrossBranchAccess.from_branch_id == branch_id)
        stmt = stmt.order_by(CrossBranchAccess.created_at.desc(), CrossBranchAccess.id.desc())
        async with read_session(self._provider) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def revoke_cross_branch_access(
        self, business_id: str, rule_id: str, actor_id: str | None
    ) -> CrossBranchAccess:
        # Access rules are disposable; removal is a hard delete with the row kept in the audit trail.
        async with transaction(self._provider) as session:
            rule = await require_owned(
                session,
                CrossBranchAccess,
                business_id,
                rule_id,
                label="Cross-branch access rule",
                resource_type="cross_branch_access",
            )
            before = snapshot(rule)
            await session.delete(rule)
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action="cross_branch_access.deleted",
                resource_type="cross_branch_access",
                resource_id=rule_id,
                old_values=before,
            )
        return rule
