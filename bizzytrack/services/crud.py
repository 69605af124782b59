from __future__ import annotations

import logging
from typing import Any, ClassVar, Generic, Sequence, TypeVar

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.clock import utc_now
from bizzytrack.core.errors import ConflictError, InvalidArgumentError, NotFoundError
from bizzytrack.domain.models import Base
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.persistence.guards import require_tenant_id, tenant_predicate
from bizzytrack.persistence.query import Field, build_set, build_where, fields_from_model, paginate, patch_fields
from bizzytrack.persistence.transaction import read_session, transaction
from bizzytrack.services.audit import AuditTrail, snapshot


logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


async def flush_or_conflict(session: AsyncSession, *, message: str, resource_type: str) -> None:
    # A unique index firing means another writer claimed the same natural key first.
    try:
        await session.flush()
    except IntegrityError as exc:
        raise ConflictError(message, resource_type=resource_type) from exc


async def load_owned(
    session: AsyncSession,
    model: type[ModelT],
    business_id: str,
    resource_id: str | None,
    *,
    for_update: bool = False,
) -> ModelT | None:
    # Every by-id read carries the tenant predicate; other tenants' rows look absent.
    if resource_id is None:
        return None
    stmt = select(model).where(tenant_predicate(model, business_id), model.id == resource_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def require_owned(
    session: AsyncSession,
    model: type[ModelT],
    business_id: str,
    resource_id: str | None,
    *,
    label: str,
    resource_type: str,
    for_update: bool = False,
) -> ModelT:
    row = await load_owned(session, model, business_id, resource_id, for_update=for_update)
    if row is None:
        raise NotFoundError(f"{label} not found", resource_type=resource_type)
    return row


class ResourceService(Generic[ModelT]):
    """Create/read/list/update/delete for one tenant-owned table.

    Subclasses name the model, the audit resource type, which payload fields
    may be patched, and the filter columns. Preconditions live in the
    ``_before_*`` hooks, which run inside the write transaction before any
    mutation so a failing check leaves nothing behind.
    """

    model: ClassVar[type[Base]]
    resource_type: ClassVar[str]
    label: ClassVar[str]
    updatable_fields: ClassVar[tuple[str, ...]] = ()
    soft_delete: ClassVar[bool] = True
    conflict_message: ClassVar[str] = "Resource already exists"
    # Column stamped with the acting user on insert.
    actor_column: ClassVar[str | None] = "created_by"

    def __init__(self, provider: SessionProvider, *, audit: AuditTrail | None = None) -> None:
        self._provider = provider
        self._audit = audit or AuditTrail()

    # Hooks.

    async def _before_create(self, session: AsyncSession, business_id: str, payload: BaseModel) -> None:
        return None

    def _insert_values(self, payload: BaseModel) -> dict[str, Any]:
        return payload.model_dump()

    async def _before_update(
        self,
        session: AsyncSession,
        business_id: str,
        row: ModelT,
        values: dict[str, Any],
    ) -> dict[str, Any]:
        return values

    async def _before_delete(self, session: AsyncSession, business_id: str, row: ModelT) -> None:
        return None

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return []

    def _order_by(self) -> Sequence[Any]:
        return (self.model.created_at.desc(), self.model.id.desc())

    # Operations.

    async def create(self, business_id: str, payload: BaseModel, actor_id: str | None) -> ModelT:
        async with transaction(self._provider) as session:
            row = await self.create_in(session, business_id, payload, actor_id)
        logger.info("%s_created business_id=%s id=%s", self.resource_type, business_id, row.id)
        return row

    async def create_in(
        self,
        session: AsyncSession,
        business_id: str,
        payload: BaseModel,
        actor_id: str | None,
    ) -> ModelT:
        require_tenant_id(business_id)
        await self._before_create(session, business_id, payload)
        values = self._insert_values(payload)
        row = self.model(business_id=business_id, **values)
        if self.actor_column is not None:
            setattr(row, self.actor_column, actor_id)
        session.add(row)
        await flush_or_conflict(session, message=self.conflict_message, resource_type=self.resource_type)
        await self._audit.log_action(
            session,
            business_id=business_id,
            user_id=actor_id,
            action=f"{self.resource_type}.created",
            resource_type=self.resource_type,
            resource_id=str(row.id),
            new_values=snapshot(row, fields=["id", *values.keys()]),
        )
        return row

    async def get(self, business_id: str, resource_id: str) -> ModelT | None:
        async with read_session(self._provider) as session:
            return await load_owned(session, self.model, business_id, resource_id)

    async def list(
        self,
        business_id: str,
        filters: BaseModel | None = None,
        *,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[ModelT]:
        clause = build_where(self._filter_fields(filters))
        stmt = select(self.model).where(tenant_predicate(self.model, business_id))
        # Soft-deleted rows stay hidden unless the caller filters on is_active explicitly.
        if self.soft_delete and (filters is None or "is_active" not in filters.model_fields_set):
            stmt = stmt.where(self.model.is_active.is_(True))
        stmt = clause.apply(stmt).order_by(*self._order_by())
        stmt = paginate(stmt, limit=limit, offset=offset)
        async with read_session(self._provider) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update(
        self,
        business_id: str,
        resource_id: str,
        patch: BaseModel,
        actor_id: str | None,
    ) -> ModelT:
        # An empty patch fails before any database work.
        values = build_set(patch_fields(patch, self.updatable_fields))
        for name, value in values.items():
            column = self.model.__table__.columns.get(name)
            if value is None and column is not None and not column.nullable:
                raise InvalidArgumentError(f"{name} cannot be null")
        async with transaction(self._provider) as session:
            row = await require_owned(
                session,
                self.model,
                business_id,
                resource_id,
                label=self.label,
                resource_type=self.resource_type,
                for_update=True,
            )
            before = snapshot(row)
            values = await self._before_update(session, business_id, row, values)
            for name, value in values.items():
                setattr(row, name, value)
            await flush_or_conflict(session, message=self.conflict_message, resource_type=self.resource_type)
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action=f"{self.resource_type}.updated",
                resource_type=self.resource_type,
                resource_id=str(row.id),
                old_values={key: before.get(key) for key in values},
                new_values=snapshot(row, fields=list(values)),
            )
        logger.info("%s_updated business_id=%s id=%s", self.resource_type, business_id, resource_id)
        return row

    async def delete(self, business_id: str, resource_id: str, actor_id: str | None) -> ModelT:
        async with transaction(self._provider) as session:
            row = await require_owned(
                session,
                self.model,
                business_id,
                resource_id,
                label=self.label,
                resource_type=self.resource_type,
                for_update=True,
            )
            if self.soft_delete and not row.is_active:
                # Already deleted: leave the row and the audit trail untouched.
                return row
            await self._before_delete(session, business_id, row)
            before = snapshot(row)
            if self.soft_delete:
                row.is_active = False
                row.deleted_at = utc_now()
                row.deleted_by = actor_id
                await session.flush()
                new_values: dict[str, Any] | None = snapshot(
                    row, fields=["is_active", "deleted_at", "deleted_by"]
                )
            else:
                await session.delete(row)
                await session.flush()
                new_values = None
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action=f"{self.resource_type}.deleted",
                resource_type=self.resource_type,
                resource_id=str(resource_id),
                old_values=before,
                new_values=new_values,
            )
        logger.info("%s_deleted business_id=%s id=%s", self.resource_type, business_id, resource_id)
        return row


def filter_fields(filters: BaseModel | None, columns: dict[str, Any], **ops: str) -> list[Field]:
    # Shorthand for subclasses mapping filter attributes onto model columns.
    return fields_from_model(filters, columns, ops=ops)
