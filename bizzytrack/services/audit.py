from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
import logging
import math
from typing import Any, Awaitable, Callable

from pydantic import BaseModel
from sqlalchemy import String, cast, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.inspection import inspect as sa_inspect

from bizzytrack.core.clock import utc_now
from bizzytrack.core.config import get_settings
from bizzytrack.core.errors import PoolExhaustedError
from bizzytrack.domain.models import AuditLog
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.persistence.guards import tenant_predicate
from bizzytrack.persistence.query import Field, UNSET, build_where, paginate
from bizzytrack.persistence.transaction import read_session, transaction


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["api_key", "authorization", "token", "secret", "password", "hash"]
_REDACTED_VALUE = "[REDACTED]"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_values(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_values(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_values(item) for item in value]
    return value


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    return value


def snapshot(row: Any, *, fields: list[str] | None = None) -> dict[str, Any]:
    # Capture column values as JSON-safe data for old/new audit payloads.
    if isinstance(row, BaseModel):
        data = row.model_dump(exclude_unset=True)
    else:
        mapper = sa_inspect(type(row))
        data = {attr.key: getattr(row, attr.key) for attr in mapper.column_attrs}
    if fields is not None:
        data = {key: data[key] for key in fields if key in data}
    return _json_safe(data)


class AuditTrail:
    """Writes audit entries into the caller's open transaction.

    A failed write raises and takes the surrounding mutation down with it.
    """

    async def log_action(
        self,
        session: AsyncSession,
        *,
        business_id: str,
        user_id: str | None,
        action: str,
        resource_type: str,
        resource_id: str | None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditLog:
        entry = AuditLog(
            created_at=utc_now(),
            business_id=business_id,
            user_id=user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            old_values=sanitize_values(old_values) if old_values is not None else None,
            new_values=sanitize_values(new_values) if new_values is not None else None,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        session.add(entry)
        # Flush now so constraint failures surface inside the caller's transaction.
        await session.flush()
        logger.debug(
            "audit_logged business_id=%s action=%s resource_id=%s",
            business_id,
            action,
            resource_id,
        )
        return entry


async def record_best_effort(
    provider: SessionProvider,
    *,
    event: str,
    write: Callable[[AsyncSession], Awaitable[Any]],
    context: dict[str, Any] | None = None,
) -> bool:
    # Telemetry writes run in their own transaction and never break the caller.
    try:
        async with transaction(provider) as session:
            await write(session)
        return True
    except (SQLAlchemyError, PoolExhaustedError) as exc:
        logger.warning(
            "best_effort_write_failed event=%s context=%s",
            event,
            context or {},
            exc_info=exc,
        )
        return False


class AuditLogFilters(BaseModel):
    action: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    user_id: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    search: str | None = None


@dataclass(frozen=True)
class AuditPage:
    items: list[AuditLog]
    total: int
    page: int
    limit: int
    total_pages: int


@dataclass(frozen=True)
class AuditSummary:
    total: int
    by_action: dict[str, int]
    by_resource_type: dict[str, int]
    since: datetime


def _audit_filter_fields(filters: AuditLogFilters) -> list[Field]:
    provided = filters.model_fields_set

    def _value(name: str) -> Any:
        value = getattr(filters, name)
        return value if name in provided and value is not None else UNSET

    search = _value("search")
    return [
        Field("action", _value("action"), AuditLog.action),
        Field("resource_type", _value("resource_type"), AuditLog.resource_type),
        Field("resource_id", _value("resource_id"), AuditLog.resource_id),
        Field("user_id", _value("user_id"), AuditLog.user_id),
        Field("date_from", _value("date_from"), AuditLog.created_at, op="ge"),
        Field("date_to", _value("date_to"), AuditLog.created_at, op="le"),
        Field(
            "search",
            f"%{search}%" if search is not UNSET else UNSET,
            (AuditLog.action, AuditLog.resource_type, cast(AuditLog.new_values, String)),
            op="ilike",
        ),
    ]


async def search_audit_logs(
    provider: SessionProvider,
    *,
    business_id: str,
    filters: AuditLogFilters | None = None,
    page: int = 1,
    limit: int | None = None,
) -> AuditPage:
    settings = get_settings()
    resolved_limit = min(max(1, limit or settings.default_page_size), settings.max_page_size)
    resolved_page = max(1, page)
    clause = build_where(_audit_filter_fields(filters or AuditLogFilters()))
    async with read_session(provider) as session:
        count_stmt = clause.apply(
            select(func.count()).select_from(AuditLog).where(tenant_predicate(AuditLog, business_id))
        )
        total = int((await session.execute(count_stmt)).scalar() or 0)
        stmt = clause.apply(select(AuditLog).where(tenant_predicate(AuditLog, business_id)))
        stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        stmt = paginate(stmt, limit=resolved_limit, offset=(resolved_page - 1) * resolved_limit)
        rows = list((await session.execute(stmt)).scalars().all())
    return AuditPage(
        items=rows,
        total=total,
        page=resolved_page,
        limit=resolved_limit,
        total_pages=math.ceil(total / resolved_limit) if total else 0,
    )


async def resource_history(
    provider: SessionProvider,
    *,
    business_id: str,
    resource_type: str,
    resource_id: str,
) -> list[AuditLog]:
    # Return one resource's audit trail oldest first.
    async with read_session(provider) as session:
        result = await session.execute(
            select(AuditLog)
            .where(
                tenant_predicate(AuditLog, business_id),
                AuditLog.resource_type == resource_type,
                AuditLog.resource_id == resource_id,
            )
            .order_by(AuditLog.id.asc())
        )
        return list(result.scalars().all())


async def audit_summary(
    provider: SessionProvider,
    *,
    business_id: str,
    days: int = 30,
) -> AuditSummary:
    since = utc_now() - timedelta(days=max(1, days))
    base = (tenant_predicate(AuditLog, business_id), AuditLog.created_at >= since)
    async with read_session(provider) as session:
        by_action_rows = await session.execute(
            select(AuditLog.action, func.count()).where(*base).group_by(AuditLog.action)
        )
        by_action = {action: int(count) for action, count in by_action_rows.all()}
        by_type_rows = await session.execute(
            select(AuditLog.resource_type, func.count()).where(*base).group_by(AuditLog.resource_type)
        )
        by_type = {resource_type: int(count) for resource_type, count in by_type_rows.all()}
    return AuditSummary(
        total=sum(by_action.values()),
        by_action=by_action,
        by_resource_type=by_type,
        since=since,
    )
