from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.domain.models import UserPermission
from bizzytrack.persistence.guards import tenant_predicate


logger = logging.getLogger(__name__)

PERMISSION_PRICING_OVERRIDE = "pricing.override"
PERMISSION_DISCOUNT_APPROVE = "discount.approve"
PERMISSION_DISCOUNT_LIMIT = "discount.limit"

ROLE_OWNER = "owner"
ROLE_MANAGER = "manager"
ROLE_STAFF = "staff"

DECISION_SOURCE_GRANT = "grant"
DECISION_SOURCE_DEFAULT = "default"


@dataclass(frozen=True)
class DefaultRule:
    roles_allowed: frozenset[str]
    # Per-role numeric ceiling; "*" covers roles not listed.
    limits: dict[str, Decimal] | None = None


# The one table consulted when no explicit permission row exists for a user.
DEFAULT_DECISIONS: dict[str, DefaultRule] = {
    PERMISSION_PRICING_OVERRIDE: DefaultRule(roles_allowed=frozenset({ROLE_OWNER})),
    PERMISSION_DISCOUNT_APPROVE: DefaultRule(roles_allowed=frozenset({ROLE_OWNER, ROLE_MANAGER})),
    PERMISSION_DISCOUNT_LIMIT: DefaultRule(
        roles_allowed=frozenset({"*"}),
        limits={
            ROLE_OWNER: Decimal("50"),
            ROLE_MANAGER: Decimal("30"),
            ROLE_STAFF: Decimal("20"),
            "*": Decimal("20"),
        },
    ),
}


@dataclass(frozen=True)
class PolicyDecision:
    # Return a deterministic permission resolution used by service guards.
    allowed: bool
    permission: str
    source: str
    limit: Decimal | None = None


def default_decision(permission: str, role: str | None) -> PolicyDecision:
    normalized = (role or "").strip().lower()
    rule = DEFAULT_DECISIONS.get(permission)
    if rule is None:
        # Unknown permissions are denied rather than guessed.
        return PolicyDecision(allowed=False, permission=permission, source=DECISION_SOURCE_DEFAULT)
    allowed = "*" in rule.roles_allowed or normalized in rule.roles_allowed
    limit = None
    if rule.limits is not None:
        limit = rule.limits.get(normalized, rule.limits.get("*"))
    return PolicyDecision(allowed=allowed, permission=permission, source=DECISION_SOURCE_DEFAULT, limit=limit)


async def evaluate_permission(
    session: AsyncSession,
    *,
    business_id: str,
    user_id: str | None,
    role: str | None,
    permission: str,
) -> PolicyDecision:
    """Resolve one permission for a user.

    An explicit ``user_permissions`` row wins, including its limit when set.
    Without one the role-based ``DEFAULT_DECISIONS`` table decides.
    """
    if user_id:
        result = await session.execute(
            select(UserPermission).where(
                tenant_predicate(UserPermission, business_id),
                UserPermission.user_id == user_id,
                UserPermission.permission == permission,
            )
        )
        grant = result.scalar_one_or_none()
        if grant is not None:
            fallback = default_decision(permission, role)
            return PolicyDecision(
                allowed=bool(grant.granted),
                permission=permission,
                source=DECISION_SOURCE_GRANT,
                limit=grant.limit_value if grant.limit_value is not None else fallback.limit,
            )
    decision = default_decision(permission, role)
    logger.debug(
        "policy_default_applied business_id=%s permission=%s role=%s allowed=%s",
        business_id,
        permission,
        role,
        decision.allowed,
    )
    return decision


async def grant_permission(
    session: AsyncSession,
    *,
    business_id: str,
    user_id: str,
    permission: str,
    granted: bool = True,
    limit_value: Decimal | None = None,
) -> UserPermission:
    # Upsert an explicit permission row inside the caller's transaction.
    result = await session.execute(
        select(UserPermission).where(
            tenant_predicate(UserPermission, business_id),
            UserPermission.user_id == user_id,
            UserPermission.permission == permission,
        )
    )
    row = result.scalar_one_or_none()
    if row is None:
        row = UserPermission(
            business_id=business_id,
            user_id=user_id,
            permission=permission,
            granted=granted,
            limit_value=limit_value,
        )
        session.add(row)
    else:
        row.granted = granted
        row.limit_value = limit_value
    await session.flush()
    return row
