from __future__ import annotations

import argparse
from datetime import timedelta

import pytest
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from bizzytrack.core.clock import utc_now
from bizzytrack.core.errors import ConflictError, InvalidArgumentError, NotFoundError
from bizzytrack.domain.models import ApiKey, ApiUsageLog, Base, UserBranchAssignment
from bizzytrack.domain.schemas import ApiKeyCreate, ApiKeyUpdate, BranchCreate, CrossBranchAccessCreate
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.services.api_keys import ApiKeyService, hash_secret
from bizzytrack.services.branches import BranchService
from bizzytrack.tests.utils.factories import business_id
from scripts.create_api_key import _create_key
from scripts.revoke_api_key import _revoke_key


async def _branch(provider: SessionProvider, tenant: str, code: str):
    return await BranchService(provider).create(tenant, BranchCreate(name=f"Branch {code}", code=code), "user-1")


async def _primary_rows(provider: SessionProvider, tenant: str, user_id: str) -> list[UserBranchAssignment]:
    async with provider.acquire() as session:
        result = await session.execute(
            select(UserBranchAssignment).where(
                UserBranchAssignment.business_id == tenant,
                UserBranchAssignment.user_id == user_id,
                UserBranchAssignment.is_primary.is_(True),
            )
        )
        return list(result.scalars().all())


@pytest.mark.asyncio
async def test_only_one_primary_branch_per_user(provider: SessionProvider) -> None:
    tenant = business_id()
    north = await _branch(provider, tenant, "N")
    south = await _branch(provider, tenant, "S")
    service = BranchService(provider)

    await service.assign_user(tenant, user_id="u-1", branch_id=north.id, actor_id="admin", is_primary=True)
    await service.assign_user(tenant, user_id="u-1", branch_id=south.id, actor_id="admin", is_primary=True)

    primaries = await _primary_rows(provider, tenant, "u-1")
    assert [row.branch_id for row in primaries] == [south.id]
    assert (await service.primary_branch(tenant, "u-1")).id == south.id
    branches = await service.user_branches(tenant, "u-1")
    assert [branch.code for _, branch in branches] == ["S", "N"]


@pytest.mark.asyncio
async def test_database_rejects_a_second_primary(provider: SessionProvider) -> None:
    tenant = business_id()
    north = await _branch(provider, tenant, "N")
    south = await _branch(provider, tenant, "S")
    service = BranchService(provider)
    await service.assign_user(tenant, user_id="u-1", branch_id=north.id, actor_id="admin", is_primary=True)
    await service.assign_user(tenant, user_id="u-1", branch_id=south.id, actor_id="admin")

    # A writer that skipped the clear step collides with the partial unique index.
    async with provider.acquire() as session:
        with pytest.raises(IntegrityError) as excinfo:
            await session.execute(
                text(
                    "UPDATE user_branch_assignments SET is_primary = 1 "
                    "WHERE business_id = :tenant AND branch_id = :branch"
                ),
                {"tenant": tenant, "branch": south.id},
            )
        await session.rollback()
    assert "unique" in str(excinfo.value).lower()
    assert [row.branch_id for row in await _primary_rows(provider, tenant, "u-1")] == [north.id]


@pytest.mark.asyncio
async def test_branch_code_conflict_and_inactive_branch(provider: SessionProvider) -> None:
    tenant = business_id()
    branch = await _branch(provider, tenant, "N")
    service = BranchService(provider)
    with pytest.raises(ConflictError):
        await _branch(provider, tenant, "N")
    # Codes are unique per business only.
    await _branch(provider, business_id(), "N")

    await service.delete(tenant, branch.id, "admin")
    with pytest.raises(NotFoundError):
        await service.assign_user(tenant, user_id="u-1", branch_id=branch.id, actor_id="admin")


@pytest.mark.asyncio
async def test_cross_branch_access_rules(provider: SessionProvider) -> None:
    tenant = business_id()
    north = await _branch(provider, tenant, "N")
    south = await _branch(provider, tenant, "S")
    service = BranchService(provider)

    with pytest.raises(InvalidArgumentError):
        await service.grant_cross_branch_access(
            tenant, CrossBranchAccessCreate(from_branch_id=north.id, to_branch_id=north.id), "admin"
        )
    rule = await service.grant_cross_branch_access(
        tenant,
        CrossBranchAccessCreate(from_branch_id=north.id, to_branch_id=south.id, resource_types=["jobs"]),
        "admin",
    )
    assert [row.id for row in await service.cross_branch_access(tenant, north.id)] == [rule.id]
    await service.revoke_cross_branch_access(tenant, rule.id, "admin")
    assert await service.cross_branch_access(tenant) == []


@pytest.mark.asyncio
async def test_api_key_lifecycle(provider: SessionProvider) -> None:
    tenant = business_id()
    service = ApiKeyService(provider)
    issued = await service.create(tenant, ApiKeyCreate(name="ci", allowed_ips=["10.0.0.0/8"]), "admin")

    assert issued.api_key.secret_hash == hash_secret(issued.secret)
    assert issued.api_key.rate_limit_per_minute == 60
    validated = await service.validate(issued.api_key.id, issued.secret, client_ip="10.1.2.3")
    assert validated is not None
    assert validated.business_id == tenant
    assert validated.usage_count == 1
    assert await service.validate(issued.api_key.id, issued.secret, client_ip="192.168.0.1") is None
    assert await service.validate(issued.api_key.id, "wrong", client_ip="10.1.2.3") is None

    rotated = await service.rotate_secret(tenant, issued.api_key.id, "admin")
    assert await service.validate(issued.api_key.id, issued.secret, client_ip="10.1.2.3") is None
    assert await service.validate(issued.api_key.id, rotated.secret, client_ip="10.1.2.3") is not None

    await service.revoke(tenant, issued.api_key.id, "admin")
    assert await service.validate(issued.api_key.id, rotated.secret, client_ip="10.1.2.3") is None
    with pytest.raises(InvalidArgumentError):
        await service.rotate_secret(tenant, issued.api_key.id, "admin")


@pytest.mark.asyncio
async def test_expired_key_and_bad_allowlist(provider: SessionProvider) -> None:
    tenant = business_id()
    service = ApiKeyService(provider)
    issued = await service.create(
        tenant, ApiKeyCreate(name="old", expires_at=utc_now() - timedelta(minutes=1)), "admin"
    )
    assert await service.validate(issued.api_key.id, issued.secret) is None
    with pytest.raises(InvalidArgumentError):
        await service.create(tenant, ApiKeyCreate(name="bad", allowed_ips=["not-a-network"]), "admin")
    with pytest.raises(InvalidArgumentError):
        await service.update(tenant, issued.api_key.id, ApiKeyUpdate(allowed_ips=["10.0.0.300"]), "admin")
    narrowed = await service.update(tenant, issued.api_key.id, ApiKeyUpdate(allowed_ips=["192.168.1.0/24"]), "admin")
    assert narrowed.allowed_ips == ["192.168.1.0/24"]


@pytest.mark.asyncio
async def test_usage_logging_is_best_effort(provider: SessionProvider) -> None:
    tenant = business_id()
    service = ApiKeyService(provider)
    issued = await service.create(tenant, ApiKeyCreate(name="ci"), "admin")
    assert await service.log_usage(
        business_id=tenant, api_key_id=issued.api_key.id, endpoint="/v1/jobs", method="GET", status_code=200
    )

    async with provider.acquire() as session:
        await session.execute(text("DROP TABLE api_usage_logs"))
        await session.commit()
    assert not await service.log_usage(
        business_id=tenant, api_key_id=issued.api_key.id, endpoint="/v1/jobs", method="GET", status_code=200
    )


@pytest.mark.asyncio
async def test_usage_logging_survives_pool_exhaustion(tmp_path) -> None:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'pool.db'}",
        poolclass=AsyncAdaptedQueuePool,
        pool_size=1,
        max_overflow=0,
        pool_timeout=0.2,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    provider = SessionProvider.from_engine(engine)
    service = ApiKeyService(provider)
    usage = dict(business_id="biz-pool", api_key_id="bizzy_held", endpoint="/v1/jobs", method="GET", status_code=200)
    try:
        # Hold the only pooled connection so the telemetry write cannot check one out.
        async with engine.connect():
            assert await service.log_usage(**usage) is False
        assert await service.log_usage(**usage) is True
        async with provider.acquire() as session:
            rows = (await session.execute(select(ApiUsageLog))).scalars().all()
        assert len(rows) == 1
    finally:
        await engine.dispose()


@pytest.mark.asyncio
async def test_key_scripts_issue_and_revoke(provider: SessionProvider, capsys: pytest.CaptureFixture[str]) -> None:
    tenant = business_id()
    create_args = argparse.Namespace(
        business=tenant,
        name="deploy",
        description=None,
        permissions=["jobs.read"],
        rate_limit=None,
        allowed_ips=[],
        actor="ops",
    )
    assert await _create_key(create_args, provider) == 0
    output = capsys.readouterr().out
    token = output.strip().splitlines()[-1].strip()
    key_id, secret = token.split(".", 1)
    assert key_id.startswith("bizzy_")
    assert await ApiKeyService(provider).validate(key_id, secret) is not None

    assert await _revoke_key(argparse.Namespace(business=tenant, key_id=key_id, actor="ops"), provider) == 0
    async with provider.acquire() as session:
        row = await session.get(ApiKey, key_id)
    assert row.is_active is False
    assert row.revoked_at is not None
