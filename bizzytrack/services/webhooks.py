from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any, Sequence

import httpx
from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bizzytrack.core.clock import utc_now
from bizzytrack.core.config import get_settings
from bizzytrack.core.errors import ConflictError, NotFoundError, SignatureVerificationError
from bizzytrack.domain.models import WebhookDeliveryLog, WebhookEndpoint, WebhookSignature
from bizzytrack.domain.schemas import WebhookEndpointCreate, WebhookSignatureCreate
from bizzytrack.persistence.guards import require_tenant_id, tenant_predicate
from bizzytrack.persistence.query import Field
from bizzytrack.persistence.transaction import read_session, transaction
from bizzytrack.services.audit import record_best_effort, snapshot
from bizzytrack.services.crud import ResourceService, filter_fields


logger = logging.getLogger(__name__)

SECRET_PREFIX = "whsec_"
SIGNATURE_HEADER = "X-Bizzy-Signature"
TIMESTAMP_HEADER = "X-Bizzy-Timestamp"
EVENT_HEADER = "X-Bizzy-Event"

_DIGESTS = {
    "sha1": hashlib.sha1,
    "sha256": hashlib.sha256,
    "sha512": hashlib.sha512,
}


@dataclass(frozen=True)
class IssuedWebhookEndpoint:
    # Signing secret is handed back once, at creation.
    endpoint: WebhookEndpoint
    secret: str


@dataclass(frozen=True)
class WebhookDeliveryResult:
    # Summarize webhook delivery attempts for API responses and auditing.
    sent: bool
    status_code: int | None
    message: str
    delivery_id: int | None = None


def generate_webhook_secret() -> str:
    return f"{SECRET_PREFIX}{secrets.token_hex(24)}"


def sign_payload(secret: str, timestamp: int | str, payload: bytes | str, *, algorithm: str = "sha256") -> str:
    # Sign "<timestamp>.<payload>" so a captured body cannot be replayed under a new timestamp.
    digest = _DIGESTS.get(algorithm)
    if digest is None:
        raise SignatureVerificationError(f"Unsupported signature algorithm: {algorithm}")
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    message = f"{timestamp}.".encode("utf-8") + body
    return hmac.new(secret.encode("utf-8"), message, digest).hexdigest()


def verify_signature(
    secret: str,
    *,
    timestamp: int | str,
    payload: bytes | str,
    signature: str | None,
    algorithm: str = "sha256",
    tolerance_s: int | None = None,
    now: float | None = None,
) -> None:
    """Raise ``SignatureVerificationError`` unless the signature matches.

    ``signature`` may carry an ``<algorithm>=`` prefix. Timestamps outside the
    tolerance window are rejected before the digest is compared.
    """
    if not signature:
        raise SignatureVerificationError("Missing webhook signature")
    try:
        sent_at = int(timestamp)
    except (TypeError, ValueError) as exc:
        raise SignatureVerificationError("Invalid webhook timestamp") from exc
    window = tolerance_s if tolerance_s is not None else get_settings().webhook_signature_tolerance_s
    current = now if now is not None else time.time()
    if window > 0 and abs(current - sent_at) > window:
        raise SignatureVerificationError("Webhook timestamp outside tolerance")
    presented = signature.split("=", 1)[1] if "=" in signature else signature
    expected = sign_payload(secret, sent_at, payload, algorithm=algorithm)
    if not hmac.compare_digest(expected, presented):
        raise SignatureVerificationError("Webhook signature mismatch")


def next_retry_delay(retry_config: dict[str, Any] | None, attempt: int, *, base_delay_s: float = 1.0) -> float | None:
    # Exponential backoff; None once the attempt budget is spent.
    settings = get_settings()
    config = retry_config or {}
    max_attempts = int(config.get("max_attempts", settings.webhook_default_max_attempts))
    multiplier = int(config.get("backoff_multiplier", settings.webhook_default_backoff_multiplier))
    if attempt >= max_attempts:
        return None
    return base_delay_s * (multiplier ** max(0, attempt - 1))


class WebhookService(ResourceService[WebhookEndpoint]):
    model = WebhookEndpoint
    resource_type = "webhook_endpoint"
    label = "Webhook endpoint"
    updatable_fields = ("name", "url", "description", "events", "content_type", "retry_config")

    def _filter_fields(self, filters: BaseModel | None) -> list[Field]:
        return filter_fields(filters, {"is_active": WebhookEndpoint.is_active})

    def _order_by(self) -> Sequence[Any]:
        return (WebhookEndpoint.created_at.desc(), WebhookEndpoint.id.desc())

    async def create(  # type: ignore[override]
        self, business_id: str, payload: WebhookEndpointCreate, actor_id: str | None
    ) -> IssuedWebhookEndpoint:
        require_tenant_id(business_id)
        settings = get_settings()
        secret = generate_webhook_secret()
        retry_config = (
            payload.retry_config.model_dump()
            if payload.retry_config is not None
            else {
                "max_attempts": settings.webhook_default_max_attempts,
                "backoff_multiplier": settings.webhook_default_backoff_multiplier,
            }
        )
        async with transaction(self._provider) as session:
            endpoint = WebhookEndpoint(
                business_id=business_id,
                name=payload.name,
                url=payload.url,
                description=payload.description,
                secret_token=secret,
                events=list(payload.events),
                content_type=payload.content_type,
                retry_config=retry_config,
                created_by=actor_id,
            )
            session.add(endpoint)
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action="webhook_endpoint.created",
                resource_type=self.resource_type,
                resource_id=endpoint.id,
                new_values=snapshot(endpoint, fields=["id", "name", "url", "events", "retry_config"]),
            )
        logger.info("webhook_endpoint_created business_id=%s endpoint_id=%s", business_id, endpoint.id)
        return IssuedWebhookEndpoint(endpoint=endpoint, secret=secret)

    async def add_signature_config(
        self, business_id: str, payload: WebhookSignatureCreate, actor_id: str | None
    ) -> WebhookSignature:
        require_tenant_id(business_id)
        async with transaction(self._provider) as session:
            existing = await session.execute(
                select(WebhookSignature.id).where(
                    tenant_predicate(WebhookSignature, business_id),
                    WebhookSignature.provider_name == payload.provider_name,
                )
            )
            if existing.first() is not None:
                raise ConflictError(
                    "Signature configuration already exists for this provider",
                    resource_type="webhook_signature",
                )
            config = WebhookSignature(
                business_id=business_id,
                provider_name=payload.provider_name,
                signature_header=payload.signature_header,
                algorithm=payload.algorithm,
                secret_key=payload.secret_key,
                created_by=actor_id,
            )
            session.add(config)
            await session.flush()
            await self._audit.log_action(
                session,
                business_id=business_id,
                user_id=actor_id,
                action="webhook_signature.created",
                resource_type="webhook_signature",
                resource_id=config.id,
                new_values=snapshot(payload),
            )
        return config

    async def signature_configs(self, business_id: str) -> list[WebhookSignature]:
        async with read_session(self._provider) as session:
            result = await session.execute(
                select(WebhookSignature)
                .where(tenant_predicate(WebhookSignature, business_id), WebhookSignature.is_active.is_(True))
                .order_by(WebhookSignature.provider_name.asc())
            )
            return list(result.scalars().all())

    async def verify_inbound(
        self,
        business_id: str,
        provider_name: str,
        *,
        timestamp: int | str,
        payload: bytes | str,
        signature: str | None,
    ) -> WebhookSignature:
        async with read_session(self._provider) as session:
            result = await session.execute(
                select(WebhookSignature).where(
                    tenant_predicate(WebhookSignature, business_id),
                    WebhookSignature.provider_name == provider_name,
                    WebhookSignature.is_active.is_(True),
                )
            )
            config = result.scalar_one_or_none()
        if config is None:
            raise NotFoundError("Signature configuration not found", resource_type="webhook_signature")
        try:
            verify_signature(
                config.secret_key,
                timestamp=timestamp,
                payload=payload,
                signature=signature,
                algorithm=config.algorithm,
            )
        except SignatureVerificationError:
            logger.warning(
                "webhook_signature_rejected business_id=%s provider=%s", business_id, provider_name
            )
            raise
        return config

    async def log_delivery(
        self,
        *,
        business_id: str,
        endpoint_id: str,
        event_type: str,
        payload: dict[str, Any],
        status: str = "pending",
        attempt: int = 1,
    ) -> int | None:
        # Delivery logging is best-effort; returns the log id or None when the write failed.
        created: list[WebhookDeliveryLog] = []

        async def _write(session: AsyncSession) -> None:
            entry = WebhookDeliveryLog(
                business_id=business_id,
                endpoint_id=endpoint_id,
                event_type=event_type,
                payload=payload,
                status=status,
                attempt=attempt,
            )
            session.add(entry)
            await session.flush()
            created.append(entry)

        ok = await record_best_effort(
            self._provider,
            event="webhook_delivery_log",
            write=_write,
            context={"endpoint_id": endpoint_id, "event_type": event_type},
        )
        return created[0].id if ok and created else None

    async def update_delivery_status(
        self,
        *,
        business_id: str,
        delivery_id: int,
        status: str,
        response_status: int | None = None,
        response_body: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        async def _write(session: AsyncSession) -> None:
            await session.execute(
                update(WebhookDeliveryLog)
                .where(
                    tenant_predicate(WebhookDeliveryLog, business_id),
                    WebhookDeliveryLog.id == delivery_id,
                )
                .values(
                    status=status,
                    response_status=response_status,
                    response_body=response_body[:2000] if response_body else None,
                    error_message=error_message,
                    delivered_at=utc_now() if status == "delivered" else None,
                    updated_at=utc_now(),
                )
            )

        return await record_best_effort(
            self._provider,
            event="webhook_delivery_status",
            write=_write,
            context={"delivery_id": delivery_id, "status": status},
        )

    async def delivery_logs(
        self,
        business_id: str,
        endpoint_id: str,
        *,
        status: str | None = None,
        limit: int = 50,
    ) -> list[WebhookDeliveryLog]:
        stmt = select(WebhookDeliveryLog).where(
            tenant_predicate(WebhookDeliveryLog, business_id),
            WebhookDeliveryLog.endpoint_id == endpoint_id,
        )
        if status is not None:
            stmt = stmt.where(WebhookDeliveryLog.status == status)
        stmt = stmt.order_by(WebhookDeliveryLog.id.desc()).limit(limit)
        async with read_session(self._provider) as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def deliver(
        self,
        business_id: str,
        endpoint_id: str,
        *,
        event_type: str,
        payload: dict[str, Any],
        attempt: int = 1,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_s: float = 10.0,
    ) -> WebhookDeliveryResult:
        # Send one signed delivery; failures are reported in the result, never raised.
        async with read_session(self._provider) as session:
            result = await session.execute(
                select(WebhookEndpoint).where(
                    tenant_predicate(WebhookEndpoint, business_id), WebhookEndpoint.id == endpoint_id
                )
            )
            endpoint = result.scalar_one_or_none()
        if endpoint is None or not endpoint.is_active:
            raise NotFoundError("Webhook endpoint not found", resource_type=self.resource_type)
        if endpoint.events and event_type not in endpoint.events:
            return WebhookDeliveryResult(sent=False, status_code=None, message="Event not subscribed")

        body = json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str).encode("utf-8")
        timestamp = int(time.time())
        headers = {
            "Content-Type": endpoint.content_type,
            SIGNATURE_HEADER: f"sha256={sign_payload(endpoint.secret_token, timestamp, body)}",
            TIMESTAMP_HEADER: str(timestamp),
            EVENT_HEADER: event_type,
        }
        delivery_id = await self.log_delivery(
            business_id=business_id,
            endpoint_id=endpoint.id,
            event_type=event_type,
            payload=payload,
            attempt=attempt,
        )
        try:
            async with httpx.AsyncClient(timeout=timeout_s, transport=transport) as client:
                response = await client.post(endpoint.url, content=body, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning(
                "webhook_send_failed endpoint_id=%s event_type=%s", endpoint.id, event_type, exc_info=exc
            )
            if delivery_id is not None:
                await self.update_delivery_status(
                    business_id=business_id,
                    delivery_id=delivery_id,
                    status="failed",
                    error_message=str(exc),
                )
            return WebhookDeliveryResult(sent=False, status_code=None, message=str(exc), delivery_id=delivery_id)

        delivered = response.status_code < 400
        if delivery_id is not None:
            await self.update_delivery_status(
                business_id=business_id,
                delivery_id=delivery_id,
                status="delivered" if delivered else "failed",
                response_status=response.status_code,
                response_body=response.text,
            )
        if not delivered:
            return WebhookDeliveryResult(
                sent=False,
                status_code=response.status_code,
                message=f"Webhook responded with status {response.status_code}",
                delivery_id=delivery_id,
            )
        return WebhookDeliveryResult(
            sent=True,
            status_code=response.status_code,
            message="Webhook delivered successfully",
            delivery_id=delivery_id,
        )
