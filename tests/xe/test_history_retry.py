"""Tests for sync history queries and package retry."""

import copy
from datetime import datetime, timedelta, timezone

import pytest

from src.oikion.api.exceptions import InvalidStateError, NotFoundError, TimeoutError
from src.oikion.xe.domain.entities import (
    ItemStatus,
    RequestType,
    SyncPackageRecord,
    SyncPolicy,
    SyncStatus,
)
from src.oikion.xe.use_cases import GetPackageDetailUseCase, ListHistoryUseCase
from src.oikion.xe.use_cases.history import clamp_limit

from .conftest import OTHER_TENANT, TENANT

BASE = datetime(2026, 5, 1, 9, 0, tzinfo=timezone.utc)


async def _seed(world, count, status, tenant_id=TENANT, start=0):
    """Insert ``count`` packages one minute apart, oldest first."""
    ids = []
    for n in range(start, start + count):
        record = SyncPackageRecord(
            package_id=f"PKG-{tenant_id}-{n:03d}",
            tenant_id=tenant_id,
            request_type=RequestType.ADD_ITEMS,
            policy=SyncPolicy.INCREMENTAL,
            status=status,
            total_items=0,
            submitted_at=BASE + timedelta(minutes=n),
        )
        await world.sync_repo.create_package(record, [])
        ids.append(record.package_id)
    return ids


async def _failed_package(world, ids=("p1", "p2", "p3")):
    world.gateway.error = TimeoutError()
    package = await world.builder.execute(TENANT, list(ids), RequestType.ADD_ITEMS)
    result = await world.submitter.execute(package)
    world.gateway.error = None
    return result


class TestClampLimit:
    @pytest.mark.parametrize(
        "given,expected", [(None, 20), (0, 1), (-5, 1), (10, 10), (100, 100), (500, 100)]
    )
    def test_clamp(self, given, expected):
        assert clamp_limit(given) == expected


class TestListHistory:
    async def test_filtered_newest_first(self, world):
        """Filtering by FAILED with limit 10 returns the ten newest failures."""
        failed = await _seed(world, 12, SyncStatus.FAILED)
        await _seed(world, 3, SyncStatus.SUCCESS, start=100)

        page = await ListHistoryUseCase(world.sync_repo).execute(
            TENANT, status=SyncStatus.FAILED, limit=10
        )

        assert page.total == 12
        assert page.has_more is True
        assert [r.package_id for r in page.items] == list(reversed(failed))[:10]
        assert all(r.status == SyncStatus.FAILED for r in page.items)

    async def test_second_page(self, world):
        failed = await _seed(world, 12, SyncStatus.FAILED)

        page = await ListHistoryUseCase(world.sync_repo).execute(
            TENANT, status=SyncStatus.FAILED, limit=10, offset=10
        )

        assert [r.package_id for r in page.items] == failed[1::-1]
        assert page.has_more is False

    async def test_defaults(self, world):
        await _seed(world, 25, SyncStatus.SUCCESS)

        page = await ListHistoryUseCase(world.sync_repo).execute(TENANT)

        assert page.limit == 20
        assert len(page.items) == 20
        assert page.has_more

    async def test_negative_offset(self, world):
        await _seed(world, 2, SyncStatus.SUCCESS)
        page = await ListHistoryUseCase(world.sync_repo).execute(TENANT, offset=-3)
        assert page.offset == 0
        assert len(page.items) == 2

    async def test_tenant_isolation(self, world):
        await _seed(world, 2, SyncStatus.SUCCESS, tenant_id=OTHER_TENANT)
        page = await ListHistoryUseCase(world.sync_repo).execute(TENANT)
        assert page.total == 0
        assert page.items == []


class TestPackageDetail:
    async def test_detail_with_items(self, world):
        package = await world.builder.execute(TENANT, ["p1", "p2"], RequestType.ADD_ITEMS)
        await world.submitter.execute(package)

        detail = await GetPackageDetailUseCase(world.sync_repo).execute(TENANT, package.package_id)

        assert detail.package.package_id == package.package_id
        assert {i.property_id for i in detail.items} == {"p1", "p2"}
        assert all(i.status == ItemStatus.SUCCESS for i in detail.items)

    async def test_cross_tenant_is_not_found(self, world):
        package = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)
        await world.submitter.execute(package)

        with pytest.raises(NotFoundError):
            await GetPackageDetailUseCase(world.sync_repo).execute(OTHER_TENANT, package.package_id)


class TestRetry:
    async def test_retry_failed_package(self, world):
        """A retry creates a new package for the same properties and leaves the original alone."""
        original = await _failed_package(world)
        before = copy.deepcopy(world.sync_repo.packages[original.package_id])

        result = await world.retry.execute(TENANT, original.package_id)

        assert result.package_id != original.package_id
        assert result.retry_of == original.package_id
        assert result.status == SyncStatus.SUCCESS
        assert result.total_items == 3

        retried = world.sync_repo.items[result.package_id]
        assert {i.property_id for i in retried} == {"p1", "p2", "p3"}

        after = world.sync_repo.packages[original.package_id]
        assert after == before
        assert after.status == SyncStatus.FAILED

    async def test_retry_keeps_request_type_and_policy(self, world):
        world.prop("p1").xe_ref_id = "REF-1"
        world.gateway.error = TimeoutError()
        package = await world.builder.execute(
            TENANT, ["p1"], RequestType.REMOVE_ITEMS, SyncPolicy.RENEW_ALL_STOCK
        )
        original = await world.submitter.execute(package)
        world.gateway.error = None

        result = await world.retry.execute(TENANT, original.package_id)

        stored = world.sync_repo.packages[result.package_id]
        assert stored.request_type == RequestType.REMOVE_ITEMS
        assert stored.policy == SyncPolicy.RENEW_ALL_STOCK
        assert stored.retry_of == original.package_id

    async def test_retry_of_successful_package_is_rejected(self, world):
        package = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)
        result = await world.submitter.execute(package)

        with pytest.raises(InvalidStateError) as exc_info:
            await world.retry.execute(TENANT, result.package_id)
        assert exc_info.value.current_state == "SUCCESS"

    async def test_retry_of_processing_package_is_rejected(self, world):
        world.gateway.ack = True
        package = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)
        result = await world.submitter.execute(package)

        with pytest.raises(InvalidStateError):
            await world.retry.execute(TENANT, result.package_id)

    async def test_retry_unknown_package(self, world):
        with pytest.raises(NotFoundError):
            await world.retry.execute(TENANT, "OIKION-NOPE")

    async def test_retry_other_tenant_package(self, world):
        original = await _failed_package(world)
        with pytest.raises(NotFoundError):
            await world.retry.execute(OTHER_TENANT, original.package_id)
