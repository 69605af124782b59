from __future__ import annotations

from decimal import Decimal

import pytest

from bizzytrack.core.errors import ConflictError, NotFoundError
from bizzytrack.domain.lifecycle import Active, Deleted
from bizzytrack.domain.schemas import (
    BranchCreate,
    EquipmentCreate,
    EquipmentFilters,
    EquipmentUpdate,
    ServiceUpdate,
    SupplierCreate,
    SupplierFilters,
    SupplierUpdate,
)
from bizzytrack.persistence.db import SessionProvider
from bizzytrack.services.audit import AuditLogFilters, search_audit_logs
from bizzytrack.services.branches import BranchService
from bizzytrack.services.catalog import CatalogServiceService
from bizzytrack.services.equipment import EquipmentService
from bizzytrack.services.suppliers import SupplierService
from bizzytrack.tests.utils.factories import business_id, make_service


@pytest.mark.asyncio
async def test_catalog_names_are_unique_per_tenant(provider: SessionProvider) -> None:
    tenant = business_id()
    oil = await make_service(provider, tenant, name="Oil change")
    await make_service(provider, tenant, name="Brake check")
    with pytest.raises(ConflictError):
        await make_service(provider, tenant, name="Oil change")
    await make_service(provider, business_id(), name="Oil change")

    service = CatalogServiceService(provider)
    assert [row.name for row in await service.list(tenant)] == ["Brake check", "Oil change"]
    updated = await service.update(tenant, oil.id, ServiceUpdate(base_price=Decimal("120.00")), "user-1")
    assert updated.base_price == Decimal("120.00")
    assert updated.name == "Oil change"


@pytest.mark.asyncio
async def test_deleted_rows_expose_their_state(provider: SessionProvider) -> None:
    tenant = business_id()
    row = await make_service(provider, tenant)
    assert row.state == Active()

    deleted = await CatalogServiceService(provider).delete(tenant, row.id, "user-7")

    assert isinstance(deleted.state, Deleted)
    assert deleted.state.by == "user-7"
    assert deleted.state.at is not None


@pytest.mark.asyncio
async def test_supplier_search_and_statistics(provider: SessionProvider) -> None:
    tenant = business_id()
    service = SupplierService(provider)
    acme = await service.create(tenant, SupplierCreate(name="Acme Parts", contact_person="Wile"), "user-1")
    await service.create(tenant, SupplierCreate(name="Bolt Depot", email="sales@bolt.example", rating=2), "user-1")
    await service.create(tenant, SupplierCreate(name="Cog Works", rating=4), "user-1")
    with pytest.raises(ConflictError, match="Supplier name already exists"):
        await service.create(tenant, SupplierCreate(name="Acme Parts"), "user-1")

    found = await service.list_page(tenant, SupplierFilters(search="bolt"))
    assert [row.name for row in found] == ["Bolt Depot"]
    page_two = await service.list_page(tenant, page=2, limit=2)
    assert [row.name for row in page_two] == ["Cog Works"]

    await service.update(tenant, acme.id, SupplierUpdate(rating=1), "user-1")
    await service.delete(tenant, acme.id, "user-1")
    stats = await service.statistics(tenant)
    assert stats.total == 3
    assert stats.active == 2
    assert stats.highly_rated == 1
    assert stats.low_rated == 2
    assert stats.average_rating == Decimal("2.33")


@pytest.mark.asyncio
async def test_equipment_branch_must_belong_to_tenant(provider: SessionProvider) -> None:
    tenant, other = business_id(), business_id()
    own_branch = await BranchService(provider).create(tenant, BranchCreate(name="Main", code="MAIN"), "user-1")
    foreign_branch = await BranchService(provider).create(other, BranchCreate(name="Main", code="MAIN"), "user-1")
    service = EquipmentService(provider)

    with pytest.raises(NotFoundError):
        await service.create(
            tenant, EquipmentCreate(name="Lift", asset_code="EQ-1", branch_id=foreign_branch.id), "user-1"
        )
    lift = await service.create(
        tenant, EquipmentCreate(name="Lift", asset_code="EQ-1", branch_id=own_branch.id), "user-1"
    )
    await service.create(tenant, EquipmentCreate(name="Scanner", asset_code="EQ-2"), "user-1")
    with pytest.raises(ConflictError):
        await service.create(tenant, EquipmentCreate(name="Another lift", asset_code="EQ-1"), "user-1")

    await service.update(tenant, lift.id, EquipmentUpdate(status="maintenance"), "user-1")
    in_shop = await service.list(tenant, EquipmentFilters(status="maintenance"))
    assert [row.id for row in in_shop] == [lift.id]
    at_branch = await service.list(tenant, EquipmentFilters(branch_id=own_branch.id))
    assert [row.asset_code for row in at_branch] == ["EQ-1"]


@pytest.mark.asyncio
async def test_audit_search_filters_and_pages(provider: SessionProvider) -> None:
    tenant = business_id()
    supplier_service = SupplierService(provider)
    supplier = await supplier_service.create(tenant, SupplierCreate(name="Acme Parts"), "buyer-1")
    await supplier_service.update(tenant, supplier.id, SupplierUpdate(rating=3), "buyer-2")
    await make_service(provider, tenant, name="Tyre swap")

    by_user = await search_audit_logs(provider, business_id=tenant, filters=AuditLogFilters(user_id="buyer-2"))
    assert [entry.action for entry in by_user.items] == ["supplier.updated"]

    text_match = await search_audit_logs(provider, business_id=tenant, filters=AuditLogFilters(search="tyre"))
    assert [entry.resource_type for entry in text_match.items] == ["service"]

    paged = await search_audit_logs(provider, business_id=tenant, page=2, limit=2)
    assert paged.total == 3
    assert paged.total_pages == 2
    assert len(paged.items) == 1

    foreign = await search_audit_logs(provider, business_id=business_id())
    assert foreign.total == 0
