"""Tests for SubmitPackageUseCase.

Covers synchronous partial success, transport failure, removals of
unpublished properties, acknowledgement-only submissions and locking.
"""

import asyncio

import pytest

from src.oikion.api.exceptions import InvalidStateError, ServerError, TimeoutError, ValidationError
from src.oikion.xe.domain.entities import ItemStatus, RequestType, SyncStatus
from src.oikion.xe.domain.ports import INotifier
from src.oikion.xe.use_cases.build_package import NOT_PUBLISHED
from src.oikion.xe.use_cases.submit_package import NO_ELIGIBLE_ITEMS

from .conftest import OTHER_TENANT, TENANT


async def _publish(world, ids, request_type=RequestType.ADD_ITEMS):
    package = await world.builder.execute(TENANT, ids, request_type)
    return package, await world.submitter.execute(package)


class TestSynchronousResults:
    async def test_partial_success(self, world):
        """Two accepted and one rejected item give a SUCCESS package with accurate counts."""
        world.gateway.item_status["p3"] = ItemStatus.FAILED
        world.gateway.item_errors["p3"] = "Invalid area code"

        package, result = await _publish(world, ["p1", "p2", "p3"])

        assert result.status == SyncStatus.SUCCESS
        assert result.success is True
        assert (result.total_items, result.success_count, result.failure_count) == (3, 2, 1)
        assert result.errors == [{"property_id": "p3", "error": "Invalid area code"}]

        stored = world.sync_repo.packages[package.package_id]
        assert stored.status == SyncStatus.SUCCESS
        assert stored.processed_at is not None

        assert world.prop("p1").is_published
        assert world.prop("p2").is_published
        assert not world.prop("p3").is_published
        assert world.prop("p3").last_sync_status == ItemStatus.FAILED
        assert sum(p.is_published for p in world.properties.properties.values()) == 2

    async def test_ref_id_persisted_on_success(self, world):
        package, _ = await _publish(world, ["p1"])

        item = world.sync_repo.items[package.package_id][0]
        assert item.status == ItemStatus.SUCCESS
        assert item.xe_ad_id == "xe-p1"
        assert world.prop("p1").xe_ref_id == package.items[0].ref_id
        assert world.prop("p1").last_package_id == package.package_id

    async def test_all_rejected_is_failed(self, world):
        world.gateway.item_status.update(p1=ItemStatus.FAILED, p2=ItemStatus.FAILED)
        _, result = await _publish(world, ["p1", "p2"])

        assert result.status == SyncStatus.FAILED
        assert result.errors[0]["error"] == "Rejected by XE.gr"

    async def test_rejection_message_is_sanitized(self, world):
        world.gateway.item_status["p1"] = ItemStatus.FAILED
        world.gateway.item_errors["p1"] = "bad login password=hunter2"

        package, _ = await _publish(world, ["p1"])

        item = world.sync_repo.items[package.package_id][0]
        assert "hunter2" not in item.error_message

    async def test_integration_is_touched(self, world):
        package, _ = await _publish(world, ["p1"])
        config = world.integrations.configs[TENANT]
        assert config.last_package_id == package.package_id
        assert config.last_sync_at is not None

    async def test_pre_failed_items_are_not_sent(self, world):
        world.add_property("bad", price=None)
        package, result = await _publish(world, ["p1", "bad"])

        sent = world.gateway.submitted[0]
        assert [i.property_id for i in sent.eligible_items] == ["p1"]
        assert result.status == SyncStatus.SUCCESS
        assert result.failure_count == 1


class TestTransportFailure:
    async def test_timeout_fails_package(self, world):
        """A transport error fails the package and leaves properties untouched."""
        world.gateway.error = TimeoutError(timeout_seconds=30)
        before = {pid: (p.is_published, p.xe_ref_id, p.last_sync_at) for pid, p in world.properties.properties.items()}

        package, result = await _publish(world, ["p1", "p2", "p3"])

        assert result.status == SyncStatus.FAILED
        assert result.error_message == "TimeoutError: Request timed out"
        assert result.failure_count == 3

        stored = world.sync_repo.packages[package.package_id]
        assert stored.status == SyncStatus.FAILED
        assert stored.error_message == result.error_message
        assert all(i.status == ItemStatus.FAILED for i in world.sync_repo.items[package.package_id])

        after = {pid: (p.is_published, p.xe_ref_id, p.last_sync_at) for pid, p in world.properties.properties.items()}
        assert after == before
        assert world.sync_repo.outcomes[-1].publication_updates == []

    async def test_server_error_does_not_raise(self, world):
        world.gateway.error = ServerError("XE.gr returned 503", status_code=503)
        _, result = await _publish(world, ["p1"])
        assert result.status == SyncStatus.FAILED
        assert "503" in result.error_message

    async def test_transport_failure_notifies(self, world):
        world.gateway.error = TimeoutError()
        package, _ = await _publish(world, ["p1"])

        assert len(world.notifier.events) == 1
        assert world.notifier.events[0].package_id == package.package_id
        assert world.notifier.events[0].category == "xe_sync_failed"


class TestRemoval:
    async def test_unpublished_property(self, world):
        """Removing a never-published property fails without calling the portal."""
        package, result = await _publish(world, ["p1"], RequestType.REMOVE_ITEMS)

        assert world.gateway.submitted == []
        assert result.status == SyncStatus.FAILED
        assert result.error_message == NO_ELIGIBLE_ITEMS
        assert result.errors == [{"property_id": "p1", "error": NOT_PUBLISHED}]
        assert world.sync_repo.packages[package.package_id].status == SyncStatus.FAILED

    async def test_published_property_is_unpublished(self, world):
        await _publish(world, ["p1"])
        assert world.prop("p1").is_published

        package, result = await _publish(world, ["p1"], RequestType.REMOVE_ITEMS)

        assert result.status == SyncStatus.SUCCESS
        assert package.package_id.startswith("OIKION-DEL-")
        assert world.prop("p1").is_published is False
        assert world.prop("p1").xe_ref_id is None


class TestAcknowledgement:
    async def test_ack_leaves_package_processing(self, world):
        """An acknowledgement without results keeps items PENDING."""
        world.gateway.ack = True

        package, result = await _publish(world, ["p1", "p2"])

        assert result.status == SyncStatus.PROCESSING
        assert result.success_count == 0
        stored = world.sync_repo.packages[package.package_id]
        assert stored.status == SyncStatus.PROCESSING
        assert stored.processed_at is None
        assert world.notifier.events == []
        assert not world.prop("p1").is_published
        assert world.prop("p1").last_sync_status == ItemStatus.PENDING
        assert world.prop("p1").last_package_id == package.package_id

    async def test_ack_with_pre_failed_item(self, world):
        world.gateway.ack = True
        world.add_property("bad", area_sqm=None)

        _, result = await _publish(world, ["p1", "bad"])

        assert result.status == SyncStatus.PROCESSING
        assert result.failure_count == 1


class TestPreconditions:
    async def test_missing_integration(self, world):
        package = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)
        del world.integrations.configs[TENANT]

        with pytest.raises(ValidationError):
            await world.submitter.execute(package)
        assert world.sync_repo.packages == {}

    async def test_lock_timeout(self, world):
        """A concurrent holder of a property lock makes the submission give up."""
        package = await world.builder.execute(TENANT, ["p1", "p2"], RequestType.ADD_ITEMS)
        world.submitter.lock_timeout = 0.05

        async with world.locks.hold(TENANT, ["p2"], 1.0):
            with pytest.raises(InvalidStateError) as exc_info:
                await world.submitter.execute(package)

        assert exc_info.value.current_state == "LOCKED"
        assert world.sync_repo.packages == {}

    async def test_submissions_on_same_property_serialize(self, world):
        first = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)
        second = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)

        results = await asyncio.gather(
            world.submitter.execute(first), world.submitter.execute(second)
        )

        assert [r.status for r in results] == [SyncStatus.SUCCESS, SyncStatus.SUCCESS]
        assert world.prop("p1").last_package_id in {first.package_id, second.package_id}

    async def test_other_tenant_lock_does_not_block(self, world):
        package = await world.builder.execute(TENANT, ["p1"], RequestType.ADD_ITEMS)
        world.submitter.lock_timeout = 0.05

        async with world.locks.hold(OTHER_TENANT, ["p1"], 1.0):
            result = await world.submitter.execute(package)

        assert result.status == SyncStatus.SUCCESS


class TestNotification:
    async def test_success_notifies_once(self, world):
        package, _ = await _publish(world, ["p1"])
        assert [e.package_id for e in world.notifier.events] == [package.package_id]
        assert world.notifier.events[0].category == "xe_sync_completed"

    async def test_notifier_failure_is_not_fatal(self, world):
        class BrokenNotifier(INotifier):
            async def notify(self, event):
                raise RuntimeError("smtp down")

        world.submitter.notifier = BrokenNotifier()
        _, result = await _publish(world, ["p1"])
        assert result.status == SyncStatus.SUCCESS
