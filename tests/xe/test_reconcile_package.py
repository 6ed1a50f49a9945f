"""Tests for ReconcilePackageUseCase (status polling and portal callbacks)."""

import pytest

from reconciler import ReconcilerConfig, reconcile_once
from src.oikion.api.exceptions import ConnectionError, NotFoundError
from src.oikion.xe.domain.entities import (
    ItemOutcome,
    ItemStatus,
    RequestType,
    SyncItemRecord,
    SyncPackageRecord,
    SyncStatus,
)
from src.oikion.xe.use_cases.reconcile_package import UNKNOWN_TO_PORTAL

from .conftest import OTHER_TENANT, TENANT


async def _acknowledged(world, ids):
    """Submit ``ids`` and leave the package PROCESSING."""
    world.gateway.ack = True
    package = await world.builder.execute(TENANT, ids, RequestType.ADD_ITEMS)
    await world.submitter.execute(package)
    world.gateway.ack = False
    return package


def _refs(package):
    return {item.property_id: item.ref_id for item in package.items}


class TestPolling:
    async def test_resolves_processing_package(self, world):
        package = await _acknowledged(world, ["p1", "p2"])
        refs = _refs(package)
        world.gateway.status_outcomes = {
            refs["p1"]: ItemOutcome(refs["p1"], ItemStatus.SUCCESS, xe_ad_id="AD-1"),
            refs["p2"]: ItemOutcome(refs["p2"], ItemStatus.FAILED, "Missing photos"),
        }

        record = await world.reconciler.execute(TENANT, package.package_id)

        assert record.status == SyncStatus.SUCCESS
        assert (record.success_count, record.failure_count) == (1, 1)
        assert record.processed_at is not None
        assert world.prop("p1").is_published
        assert world.prop("p1").xe_ref_id == refs["p1"]
        assert not world.prop("p2").is_published
        assert world.notifier.events[-1].package_id == package.package_id

    async def test_partial_outcomes_stay_processing(self, world):
        package = await _acknowledged(world, ["p1", "p2"])
        refs = _refs(package)
        world.gateway.status_outcomes = {
            refs["p1"]: ItemOutcome(refs["p1"], ItemStatus.SUCCESS),
            refs["p2"]: ItemOutcome(refs["p2"], ItemStatus.PENDING),
        }

        record = await world.reconciler.execute(TENANT, package.package_id)

        assert record.status == SyncStatus.PROCESSING
        assert record.success_count == 1
        assert record.pending_count == 1
        assert world.prop("p1").is_published
        assert world.notifier.events == []

    async def test_no_news_writes_nothing(self, world):
        package = await _acknowledged(world, ["p1"])
        saves = len(world.sync_repo.outcomes)

        record = await world.reconciler.execute(TENANT, package.package_id)

        assert record.status == SyncStatus.PROCESSING
        assert len(world.sync_repo.outcomes) == saves

    async def test_terminal_package_is_not_polled(self, world):
        """Reconciling a terminal package changes nothing."""
        package = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)
        await world.submitter.execute(package)

        record = await world.reconciler.execute(TENANT, package.package_id)

        assert record.status == SyncStatus.SUCCESS
        assert world.gateway.status_calls == []

    async def test_idempotent(self, world):
        package = await _acknowledged(world, ["p1"])
        ref = _refs(package)["p1"]
        world.gateway.status_outcomes = {ref: ItemOutcome(ref, ItemStatus.SUCCESS)}

        first = await world.reconciler.execute(TENANT, package.package_id)
        second = await world.reconciler.execute(TENANT, package.package_id)

        assert first.status == second.status == SyncStatus.SUCCESS
        assert len(world.gateway.status_calls) == 1
        assert len(world.notifier.events) == 1

    async def test_transport_error_leaves_package(self, world):
        package = await _acknowledged(world, ["p1"])
        world.gateway.status_error = ConnectionError(host="api.xe.gr")

        record = await world.reconciler.execute(TENANT, package.package_id)

        assert record.status == SyncStatus.PROCESSING
        assert world.sync_repo.packages[package.package_id].status == SyncStatus.PROCESSING

    async def test_unknown_pending_package_fails(self, world):
        """A PENDING package the portal never received is failed."""
        package = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)
        await world.sync_repo.create_package(*_pending_rows(package))
        world.gateway.status_known = False

        record = await world.reconciler.execute(TENANT, package.package_id)

        assert record.status == SyncStatus.FAILED
        assert record.error_message == UNKNOWN_TO_PORTAL
        items = world.sync_repo.items[package.package_id]
        assert [i.error_message for i in items] == [UNKNOWN_TO_PORTAL]
        assert not world.prop("p1").is_published

    async def test_recovers_package_left_pending(self, world):
        """Only the first transaction ran before a crash; the portal later
        reports success and the property is published."""
        package = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)
        await world.sync_repo.create_package(*_pending_rows(package))
        ref = _refs(package)["p1"]
        world.gateway.status_outcomes = {ref: ItemOutcome(ref, ItemStatus.SUCCESS)}

        record = await world.reconciler.execute(TENANT, package.package_id)

        assert record.status == SyncStatus.SUCCESS
        assert world.prop("p1").is_published is True
        assert world.prop("p1").xe_ref_id == ref
        assert world.prop("p1").last_package_id == package.package_id

    async def test_recovered_package_replaces_older_result(self, world):
        first = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)
        await world.submitter.execute(first)
        assert world.prop("p1").is_published

        package = await world.builder.execute(TENANT, ["p1"], RequestType.REMOVE_ITEMS)
        await world.sync_repo.create_package(*_pending_rows(package))
        ref = _refs(package)["p1"]
        world.gateway.status_outcomes = {ref: ItemOutcome(ref, ItemStatus.SUCCESS)}

        await world.reconciler.execute(TENANT, package.package_id)

        assert world.prop("p1").is_published is False
        assert world.prop("p1").xe_ref_id is None
        assert world.prop("p1").last_package_id == package.package_id

    async def test_unknown_processing_package_is_kept(self, world):
        package = await _acknowledged(world, ["p1"])
        world.gateway.status_known = False

        record = await world.reconciler.execute(TENANT, package.package_id)

        assert record.status == SyncStatus.PROCESSING

    async def test_missing_integration(self, world):
        package = await _acknowledged(world, ["p1"])
        del world.integrations.configs[TENANT]

        record = await world.reconciler.execute(TENANT, package.package_id)

        assert record.status == SyncStatus.PROCESSING
        assert world.gateway.status_calls == []

    async def test_unknown_package(self, world):
        with pytest.raises(NotFoundError):
            await world.reconciler.execute(TENANT, "OIKION-NOPE")

    async def test_other_tenant_package(self, world):
        package = await _acknowledged(world, ["p1"])
        with pytest.raises(NotFoundError):
            await world.reconciler.execute(OTHER_TENANT, package.package_id)


class TestReconcileQueue:
    async def test_poll_marks_package_checked(self, world):
        package = await _acknowledged(world, ["p1"])

        await world.reconciler.execute(TENANT, package.package_id)

        assert package.package_id in world.sync_repo.checked

    async def test_unresolvable_package_does_not_starve_newer_ones(self, world, monkeypatch):
        monkeypatch.setenv("RECONCILE_BATCH_SIZE", "1")
        monkeypatch.setenv("RECONCILE_MIN_AGE_SECONDS", "0")
        stuck = await _acknowledged(world, ["p1"])
        world.gateway.status_known = False
        config = ReconcilerConfig()

        await reconcile_once(config, world.sync_repo, world.reconciler)
        assert world.gateway.status_calls == [stuck.package_id]

        fresh = await _acknowledged(world, ["p2"])
        ref = _refs(fresh)["p2"]
        world.gateway.status_known = True
        world.gateway.status_outcomes = {ref: ItemOutcome(ref, ItemStatus.SUCCESS)}

        results = await reconcile_once(config, world.sync_repo, world.reconciler)

        assert results["resolved"] == 1
        assert world.gateway.status_calls[-1] == fresh.package_id
        assert world.sync_repo.packages[stuck.package_id].status == SyncStatus.PROCESSING
        assert world.sync_repo.packages[fresh.package_id].status == SyncStatus.SUCCESS


class TestCallback:
    async def test_apply_outcomes(self, world):
        package = await _acknowledged(world, ["p1", "p2"])
        refs = _refs(package)

        record = await world.reconciler.apply_outcomes(
            TENANT,
            package.package_id,
            [
                ItemOutcome(refs["p1"], ItemStatus.SUCCESS),
                ItemOutcome(refs["p2"], ItemStatus.SUCCESS),
            ],
        )

        assert record.status == SyncStatus.SUCCESS
        assert record.success_count == 2
        assert world.prop("p2").is_published

    async def test_unknown_refs_are_ignored(self, world):
        package = await _acknowledged(world, ["p1"])

        record = await world.reconciler.apply_outcomes(
            TENANT, package.package_id, [ItemOutcome("SOMETHING-ELSE", ItemStatus.SUCCESS)]
        )

        assert record.status == SyncStatus.PROCESSING

    async def test_callback_after_poll_is_noop(self, world):
        """Whichever path resolves first wins; the other changes nothing."""
        package = await _acknowledged(world, ["p1"])
        ref = _refs(package)["p1"]
        world.gateway.status_outcomes = {ref: ItemOutcome(ref, ItemStatus.SUCCESS)}
        await world.reconciler.execute(TENANT, package.package_id)

        record = await world.reconciler.apply_outcomes(
            TENANT, package.package_id, [ItemOutcome(ref, ItemStatus.FAILED, "late")]
        )

        assert record.status == SyncStatus.SUCCESS
        assert world.prop("p1").is_published

    async def test_older_package_does_not_overwrite_newer(self, world):
        """Late outcomes of an older package never touch a property resubmitted since."""
        old = await _acknowledged(world, ["p1"])

        world.prop("p1").xe_ref_id = "REF-NEW"
        newer = await world.builder.execute(TENANT, ["p1"], RequestType.REMOVE_ITEMS)
        await world.submitter.execute(newer)
        assert world.prop("p1").last_package_id == newer.package_id

        old_ref = _refs(old)["p1"]
        record = await world.reconciler.apply_outcomes(
            TENANT, old.package_id, [ItemOutcome(old_ref, ItemStatus.SUCCESS)]
        )

        assert record.status == SyncStatus.SUCCESS
        assert world.prop("p1").is_published is False
        assert world.prop("p1").last_package_id == newer.package_id


def _pending_rows(package):
    """Package and item rows as the first transaction writes them."""
    items = [
        SyncItemRecord(
            package_id=package.package_id,
            property_id=item.property_id,
            property_name=item.property_name,
            ref_id=item.ref_id,
            status=ItemStatus.PENDING,
        )
        for item in package.items
    ]
    record = SyncPackageRecord(
        package_id=package.package_id,
        tenant_id=package.tenant_id,
        request_type=package.request_type,
        policy=package.policy,
        status=SyncStatus.PENDING,
        total_items=len(items),
        submitted_at=package.created_at,
    )
    return record, items
