from __future__ import annotations

from bizzytrack.core.config import get_settings


class TenantPredicateError(RuntimeError):
    # Surface missing tenant predicates when guard enforcement is enabled.
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


def require_tenant_id(business_id: str | None) -> None:
    # Enforce non-empty business identifiers when tenant guard checks are enabled.
    settings = get_settings()
    if not settings.authz_require_tenant_predicate:
        return
    if not business_id:
        raise TenantPredicateError("Tenant predicate required but business_id is missing")


def tenant_predicate(model, business_id: str) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    require_tenant_id(business_id)
    return model.business_id == business_id
