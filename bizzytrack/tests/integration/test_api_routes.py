from __future__ import annotations

from typing import AsyncIterator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from bizzytrack.apps.api.deps import get_provider
from bizzytrack.apps.api.main import create_app
from bizzytrack.domain.models import ApiUsageLog
from bizzytrack.domain.schemas import ApiKeyCreate
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.services.api_keys import ApiKeyService
from bizzytrack.tests.utils.factories import business_id, make_service


@pytest.fixture
async def client(provider: SessionProvider) -> AsyncIterator[AsyncClient]:
    app = create_app()
    app.dependency_overrides[get_provider] = lambda: provider
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _headers(tenant: str, **extra: str) -> dict[str, str]:
    return {"X-Business-Id": tenant, "X-User-Id": "user-1", **extra}


@pytest.mark.asyncio
async def test_health_envelope(client: AsyncClient) -> None:
    response = await client.get("/v1/health", headers={"X-Request-Id": "req-123"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["data"]["status"] == "ok"
    assert payload["meta"] == {"request_id": "req-123", "api_version": "v1"}
    assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_requests_without_tenant_are_unauthorized(client: AsyncClient) -> None:
    response = await client.get("/v1/customers")
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"


@pytest.mark.asyncio
async def test_customer_routes(client: AsyncClient) -> None:
    tenant, other = business_id(), business_id()
    created = await client.post(
        "/v1/customers", json={"first_name": "Ada", "last_name": "Lovelace"}, headers=_headers(tenant)
    )
    assert created.status_code == 201
    customer = created.json()["data"]
    assert customer["is_active"] is True

    foreign = await client.get(f"/v1/customers/{customer['id']}", headers=_headers(other))
    assert foreign.status_code == 404
    assert foreign.json()["error"] == {
        "code": "NOT_FOUND",
        "message": "Customer not found",
        "details": {"resource_type": "customer"},
    }

    empty_patch = await client.patch(f"/v1/customers/{customer['id']}", json={}, headers=_headers(tenant))
    assert empty_patch.status_code == 400
    assert empty_patch.json()["error"]["message"] == "no valid fields to update"

    found = await client.get("/v1/customers/search", params={"q": "love"}, headers=_headers(tenant))
    assert [row["id"] for row in found.json()["data"]] == [customer["id"]]

    deleted = await client.delete(f"/v1/customers/{customer['id']}", headers=_headers(tenant))
    assert deleted.json()["data"]["is_active"] is False
    listed = await client.get("/v1/customers", headers=_headers(tenant))
    assert listed.json()["data"] == []
    inactive = await client.get("/v1/customers", params={"is_active": "false"}, headers=_headers(tenant))
    assert [row["id"] for row in inactive.json()["data"]] == [customer["id"]]


@pytest.mark.asyncio
async def test_unknown_payload_fields_are_rejected(client: AsyncClient) -> None:
    response = await client.post(
        "/v1/customers",
        json={"first_name": "Ada", "last_name": "Lovelace", "business_id": "someone-else"},
        headers=_headers(business_id()),
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_job_status_routes(client: AsyncClient, provider: SessionProvider) -> None:
    tenant = business_id()
    service = await make_service(provider, tenant)
    created = await client.post(
        "/v1/jobs", json={"service_id": service.id, "title": "Replace filter"}, headers=_headers(tenant)
    )
    job = created.json()["data"]
    assert job["job_number"] == "JOB-001"
    assert job["status"] == "pending"

    moved = await client.post(
        f"/v1/jobs/{job['id']}/status", json={"status": "in-progress"}, headers=_headers(tenant)
    )
    assert moved.json()["data"]["status"] == "in-progress"
    illegal = await client.post(f"/v1/jobs/{job['id']}/status", json={"status": "pending"}, headers=_headers(tenant))
    assert illegal.status_code == 400
    assert illegal.json()["error"]["code"] == "INVALID_TRANSITION"

    history = await client.get(f"/v1/jobs/{job['id']}/history", headers=_headers(tenant))
    assert [row["to_status"] for row in history.json()["data"]] == ["pending", "in-progress"]

    unrouted = await client.post(f"/v1/jobs/{job['id']}/auto-assign", headers=_headers(tenant))
    assert unrouted.json()["data"]["assigned"] is False


@pytest.mark.asyncio
async def test_department_routes(client: AsyncClient) -> None:
    tenant = business_id()
    parent = (
        await client.post("/v1/departments", json={"name": "Operations", "code": "OPS"}, headers=_headers(tenant))
    ).json()["data"]
    await client.post(
        "/v1/departments",
        json={"name": "Field", "code": "FLD", "parent_department_id": parent["id"]},
        headers=_headers(tenant),
    )
    duplicate = await client.post(
        "/v1/departments", json={"name": "Ops again", "code": "OPS"}, headers=_headers(tenant)
    )
    assert duplicate.status_code == 409

    tree = (await client.get("/v1/departments/hierarchy", headers=_headers(tenant))).json()["data"]
    assert [node["code"] for node in tree] == ["OPS"]
    assert [child["code"] for child in tree[0]["children"]] == ["FLD"]

    blocked = await client.delete(f"/v1/departments/{parent['id']}", headers=_headers(tenant))
    assert blocked.status_code == 422
    assert blocked.json()["error"]["code"] == "DOMAIN_RULE_VIOLATION"


@pytest.mark.asyncio
async def test_audit_routes(client: AsyncClient) -> None:
    tenant = business_id()
    created = await client.post(
        "/v1/customers", json={"first_name": "Grace", "last_name": "Hopper"}, headers=_headers(tenant)
    )
    customer_id = created.json()["data"]["id"]
    await client.patch(f"/v1/customers/{customer_id}", json={"phone": "555-0100"}, headers=_headers(tenant))

    page = (
        await client.get("/v1/audit-logs", params={"resource_type": "customer", "limit": 1}, headers=_headers(tenant))
    ).json()["data"]
    assert page["total"] == 2
    assert page["total_pages"] == 2
    assert [item["action"] for item in page["items"]] == ["customer.updated"]

    trail = (await client.get(f"/v1/audit-logs/customer/{customer_id}", headers=_headers(tenant))).json()["data"]
    assert [entry["action"] for entry in trail] == ["customer.created", "customer.updated"]

    summary = (await client.get("/v1/audit-logs/summary", headers=_headers(tenant))).json()["data"]
    assert summary["by_action"] == {"customer.created": 1, "customer.updated": 1}
    other = (await client.get("/v1/audit-logs/summary", headers=_headers(business_id()))).json()["data"]
    assert other["total"] == 0


@pytest.mark.asyncio
async def test_api_key_bearer_authentication(client: AsyncClient, provider: SessionProvider) -> None:
    tenant = business_id()
    issued = await ApiKeyService(provider).create(tenant, ApiKeyCreate(name="integration"), "admin")
    token = f"{issued.api_key.id}.{issued.secret}"

    created = await client.post(
        "/v1/customers",
        json={"first_name": "Key", "last_name": "Holder"},
        headers={"Authorization": f"Bearer {token}"},
    )
    assert created.status_code == 201
    assert created.json()["data"]["business_id"] == tenant

    rejected = await client.get("/v1/customers", headers={"Authorization": f"Bearer {issued.api_key.id}.nope"})
    assert rejected.status_code == 401
    malformed = await client.get("/v1/customers", headers={"Authorization": "Bearer not-a-token"})
    assert malformed.status_code == 401


@pytest.mark.asyncio
async def test_api_key_requests_record_usage(client: AsyncClient, provider: SessionProvider) -> None:
    tenant = business_id()
    issued = await ApiKeyService(provider).create(tenant, ApiKeyCreate(name="reporting"), "admin")
    token = f"{issued.api_key.id}.{issued.secret}"

    listed = await client.get("/v1/customers", headers={"Authorization": f"Bearer {token}", "User-Agent": "bizzy-cli"})
    assert listed.status_code == 200
    missing = await client.get("/v1/customers/nope", headers={"Authorization": f"Bearer {token}"})
    assert missing.status_code == 404
    # Header-authenticated calls are not key usage.
    await client.get("/v1/customers", headers=_headers(tenant))

    async with provider.acquire() as session:
        result = await session.execute(select(ApiUsageLog).order_by(ApiUsageLog.id.asc()))
        rows = list(result.scalars().all())
    assert [(row.method, row.endpoint, row.status_code) for row in rows] == [
        ("GET", "/v1/customers", 200),
        ("GET", "/v1/customers/nope", 404),
    ]
    assert {row.api_key_id for row in rows} == {issued.api_key.id}
    assert {row.business_id for row in rows} == {tenant}
    assert rows[0].user_agent == "bizzy-cli"
    assert rows[0].response_time_ms is not None
