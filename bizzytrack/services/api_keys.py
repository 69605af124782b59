from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
import ipaddress
import logging
import secrets
from typing import Any, Sequence

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.clock import ensure_utc, utc_now
from bizzytrack.core.config import get_settings
from bizzytrack.core.errors import InvalidArgumentError
from bizzytrack.domain.models import ApiKey, ApiUsageLog
from bizzytrack.domain.schemas import ApiKeyCreate
from bizzytrack.persistence.guards import require_tenant_id
from bizzytrack.persistence.query import Field
from bizzytrack.persistence.transaction import transaction
from bizzytrack.services.audit import record_best_effort, snapshot
from bizzytrack.services.crud import ResourceService, filter_fields, require_owned


logger = logging.getLogger(__name__)

_KEY_ID_BYTES = 16
_SECRET_BYTES = 32


@dataclass(frozen=True)
class ApiKeyCredentials:
    key_id: str
    secret: str
    secret_hash: str


@dataclass(frozen=True)
class IssuedApiKey:
    # The plaintext secret exists only on this object; it is never persisted.
    api_key: ApiKey
    secret: str


def hash_secret(secret: str) -> str:
    # Use SHA-256 for deterministic, non-reversible secret storage.
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def generate_credentials(*, prefix: str | None = None) -> ApiKeyCredentials:
    resolved_prefix = prefix if prefix is not None else get_settings().api_key_prefix
    key_id = f"{resolved_prefix}{secrets.token_hex(_KEY_ID_BYTES)}"
    secret = secrets.token_hex(_SECRET_BYTES)
    return ApiKeyCredentials(key_id=key_id, secret=secret, secret_hash=hash_secret(secret))


def verify_secret(secret: str, expected_hash: str) -> bool:
    # Compare digests in constant time so response timing leaks nothing about the hash.
    return hmac.compare_digest(hash_secret(secret), expected_hash)


def ip_allowed(client_ip: str | None, allowed: Sequence[str] | None) -> bool:
    # Empty allowlists admit everyone; entries may be single addresses or CIDR blocks.
    if not allowed:
        return True
    if not client_ip:
        return False
    try:
        address = ipaddress.ip_address(client_ip)
    except ValueError:
        return False
    for entry in allowed:
        try:
            if address in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            logger.warning("api_key_allowlist_entry_invalid entry=%s", entry)
    return False


def _validate_allowlist(entries: Sequence[str]) -> list[str]:
    for entry in entries:
        try:
            ipaddress.ip_network(entry, strict=False)
        except ValueError as exc:
            raise InvalidArgumentError(f"Invalid IP allowlist entry: {entry}") from exc
    return list(entries)


class ApiKeyService(ResourceService[ApiKey]):
    model = ApiKey
    resource_type = "api_key"
    label = "API key"
    updatable_fields = (
        "name",
        "description",
        "permissions",
        "rate_limit_per_minute",
        "allowed_ips",
        "allowed_origins",
        "expires_at",
    )
    # Credentials are disposable: delete removes the row, the audit entry keeps its snapshot.
    soft_delete = False

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(filters, {"is_active": ApiKey.is_active})

    def _order_by(self) -> Sequence[Any]:
        return (ApiKey.created_at.desc(), ApiKey.id.desc())

    async def _before_update(
        self, session: AsyncSession, business_id: str, row: ApiKey, values: dict[str, Any]
    ) -> dict[str, Any]:
        if values.get("allowed_ips") is not None:
            values = {**values, "allowed_ips": _validate_allowlist(values["allowed_ips"])}
        return values

    async def create(self, business_id: str, payload: ApiKeyCreate, actor_id: str | None) -> IssuedApiKey:  # type: ignore[override]
        require_tenant_id(business_id)
        settings = get_settings()
        credentials = generate_credentials()
        async with transaction(self._provider) as session:
            api_key = ApiKey(
                id=credentials.key_id,
                business_id=business_id,
                name=payload.name,
                description=payload.description,
                secret_hash=credentials.secret_hash,
                permissions=list(payload.permissions),
                rate_limit_per_minute=(
                    payload.rate_limit_per_minute or settings.api_key_default_rate_limit_per_minute
                ),
                allowed_ips=_validate_allowlist(payload.allowed_ips),
                allowed_origins=list(payload.allowed_origins),
                expires_at=payload.expires_at,
                is_active=True,
                usage_count=0,
                created_by=actor_id,
            )
            session.add(api_key)
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action="api_key.created",
                resource_type=self.resource_type,
                resource_id=api_key.id,
                new_values=snapshot(
                    api_key, fields=["id", "name", "permissions", "rate_limit_per_minute", "expires_at"]
                ),
            )
        logger.info("api_key_created business_id=%s key_id=%s", business_id, api_key.id)
        return IssuedApiKey(api_key=api_key, secret=credentials.secret)

    async def validate(
        self,
        key_id: str,
        secret: str,
        *,
        client_ip: str | None = None,
    ) -> ApiKey | None:
        """Resolve a presented key id/secret pair to an active key.

        The key id is globally unique and is what tells us the tenant, so the
        lookup is not tenant-scoped. Returns ``None`` for unknown, revoked,
        expired or IP-restricted keys and for a wrong secret.
        """
        async with transaction(self._provider) as session:
            result = await session.execute(select(ApiKey).where(ApiKey.id == key_id))
            api_key = result.scalar_one_or_none()
            if api_key is None or not api_key.is_active:
                return None
            expires_at = ensure_utc(api_key.expires_at)
            if expires_at is not None and expires_at <= utc_now():
                logger.info("api_key_expired key_id=%s", key_id)
                return None
            if not ip_allowed(client_ip, api_key.allowed_ips):
                logger.info("api_key_ip_rejected key_id=%s ip=%s", key_id, client_ip)
                return None
            if not verify_secret(secret, api_key.secret_hash):
                return None
            api_key.last_used_at = utc_now()
            api_key.usage_count = (api_key.usage_count or 0) + 1
        return api_key

    async def rotate_secret(self, business_id: str, key_id: str, actor_id: str | None) -> IssuedApiKey:
        credentials = generate_credentials()
        async with transaction(self._provider) as session:
            api_key = await require_owned(
                session,
                ApiKey,
                business_id,
                key_id,
                label=self.label,
                resource_type=self.resource_type,
                for_update=True,
            )
            if not api_key.is_active:
                raise InvalidArgumentError("Cannot rotate a revoked API key")
            api_key.secret_hash = credentials.secret_hash
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action="api_key.secret_rotated",
                resource_type=self.resource_type,
                resource_id=api_key.id,
            )
        logger.info("api_key_rotated business_id=%s key_id=%s", business_id, key_id)
        return IssuedApiKey(api_key=api_key, secret=credentials.secret)

    async def revoke(self, business_id: str, key_id: str, actor_id: str | None) -> ApiKey:
        async with transaction(self._provider) as session:
            api_key = await require_owned(
                session,
                ApiKey,
                business_id,
                key_id,
                label=self.label,
                resource_type=self.resource_type,
                for_update=True,
            )
            if not api_key.is_active:
                return api_key
            api_key.is_active = False
            api_key.revoked_at = utc_now()
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action="api_key.revoked",
                resource_type=self.resource_type,
                resource_id=api_key.id,
                old_values={"is_active": True},
                new_values={"is_active": False},
            )
        logger.info("api_key_revoked business_id=%s key_id=%s", business_id, key_id)
        return api_key

    async def log_usage(
        self,
        *,
        business_id: str,
        api_key_id: str,
        endpoint: str,
        method: str,
        status_code: int,
        response_time_ms: float | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> bool:
        # Usage telemetry is best-effort; a failed write is logged and the request carries on.
        async def _write(session: AsyncSession) -> None:
            session.add(
                ApiUsageLog(
                    business_id=business_id,
                    api_key_id=api_key_id,
                    endpoint=endpoint,
                    method=method,
                    status_code=status_code,
                    response_time_ms=response_time_ms,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    created_at=utc_now(),
                )
            )

        return await record_best_effort(
            self._provider,
            event="api_usage",
            write=_write,
            context={"api_key_id": api_key_id, "endpoint": endpoint},
        )
