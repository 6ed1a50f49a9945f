"""Submit Package Use Case - sends a built package to XE.gr and records it.

Workflow:
1. Take per-property locks for every property in the package
2. Record the package as PENDING with its items (first transaction)
3. Send the eligible items to the portal (via IPortalGateway)
4. Apply item outcomes, derive the package status, and write package,
   items, and property publication fields together (second transaction)
5. Notify once the package is terminal

Transport failures never raise out of this use case: the package is
recorded FAILED with a sanitized message and properties are left alone.
"""

import logging
from datetime import datetime, timezone

from ...api.error_sanitizer import sanitize_error_message
from ...api.exceptions import OikionError, TransportError, ValidationError
from ..domain.entities import (
    IntegrationConfig,
    ItemStatus,
    PackageOutcome,
    PackageResult,
    PublicationUpdate,
    SubmissionResponse,
    SyncEvent,
    SyncItemRecord,
    SyncPackage,
    SyncPackageRecord,
    SyncStatus,
    derive_package_status,
)
from ..domain.ports import (
    IIntegrationRepository,
    ILockManager,
    INotifier,
    IPortalGateway,
    ISyncRepository,
)

logger = logging.getLogger(__name__)

NO_ELIGIBLE_ITEMS = "No valid properties to sync"


class SubmitPackageUseCase:
    """Submits a SyncPackage and persists every outcome.

    Example:
        use_case = SubmitPackageUseCase(
            sync_repo=PostgresSyncRepository(pool),
            integration_repo=PostgresIntegrationRepository(pool),
            gateway=XePortalGateway(client),
            lock_manager=PostgresAdvisoryLockManager(pool),
            notifier=LoggingNotifier(),
        )
        result = await use_case.execute(package)
    """

    def __init__(
        self,
        sync_repo: ISyncRepository,
        integration_repo: IIntegrationRepository,
        gateway: IPortalGateway,
        lock_manager: ILockManager,
        notifier: INotifier,
        lock_timeout: float = 30.0,
    ):
        """Initialize the use case with its dependencies.

        Args:
            sync_repo: Port for package/item persistence
            integration_repo: Port for reading the tenant's credentials
            gateway: Port for the XE.gr import API
            lock_manager: Port for per-property mutual exclusion
            notifier: Port for terminal-state notifications
            lock_timeout: Seconds to wait for property locks
        """
        self.sync_repo = sync_repo
        self.integrations = integration_repo
        self.gateway = gateway
        self.locks = lock_manager
        self.notifier = notifier
        self.lock_timeout = lock_timeout

    async def execute(self, package: SyncPackage) -> PackageResult:
        """Submit ``package`` and return its recorded result.

        Raises:
            ValidationError: The tenant has no integration configured.
            InvalidStateError: Property locks could not be taken in time.
            DatabaseError: Persisting the package or its outcome failed.
        """
        config = await self.integrations.get_config(package.tenant_id)
        if config is None:
            raise ValidationError("XE integration not configured")

        async with self.locks.hold(
            package.tenant_id, package.property_ids, self.lock_timeout
        ):
            return await self._submit(config, package)

    async def _submit(
        self, config: IntegrationConfig, package: SyncPackage
    ) -> PackageResult:
        submitted_at = datetime.now(timezone.utc)

        # Step 1: Record PENDING package
        items = [
            SyncItemRecord(
                package_id=package.package_id,
                property_id=item.property_id,
                property_name=item.property_name,
                ref_id=item.ref_id,
                status=ItemStatus.PENDING if item.is_eligible else ItemStatus.FAILED,
                item_type=item.item_type,
                error_message=item.failure_reason,
                updated_at=submitted_at,
            )
            for item in package.items
        ]
        record = SyncPackageRecord(
            package_id=package.package_id,
            tenant_id=package.tenant_id,
            request_type=package.request_type,
            policy=package.policy,
            status=SyncStatus.PENDING,
            total_items=package.total_items,
            submitted_at=submitted_at,
            retry_of=package.retry_of,
        )
        record.recount(items)
        await self.sync_repo.create_package(record, items)

        logger.info(
            f"Submitting package {package.package_id} "
            f"({package.request_type.value}, {len(package.eligible_items)}/{package.total_items} eligible)"
        )

        # Step 2: Call the portal
        if not package.eligible_items:
            record.error_message = NO_ELIGIBLE_ITEMS
            return await self._finish(record, items)

        try:
            response = await self.gateway.submit(config, package)
        except (TransportError, ValidationError) as e:
            return await self._record_transport_failure(record, items, e)

        # Step 3: Apply outcomes
        if response.is_synchronous:
            applied = self._apply_response(items, response)
            logger.info(
                f"Package {package.package_id} returned {len(applied)} synchronous results"
            )
        else:
            logger.info(f"Package {package.package_id} acknowledged by XE.gr")

        return await self._finish(record, items)

    @staticmethod
    def _apply_response(
        items: list[SyncItemRecord], response: SubmissionResponse
    ) -> list[SyncItemRecord]:
        """Copy portal outcomes onto PENDING items; returns the items that changed."""
        changed = []
        now = datetime.now(timezone.utc)
        for item in items:
            if item.status != ItemStatus.PENDING or item.ref_id is None:
                continue
            outcome = response.outcomes.get(item.ref_id)
            if outcome is None:
                continue
            item.status = outcome.status
            item.xe_ad_id = outcome.xe_ad_id
            item.updated_at = now
            if outcome.status == ItemStatus.FAILED:
                item.error_message = sanitize_error_message(
                    outcome.error_message or "Rejected by XE.gr"
                )
            changed.append(item)
        return changed

    async def _finish(
        self,
        record: SyncPackageRecord,
        items: list[SyncItemRecord],
    ) -> PackageResult:
        """Derive status and write package, items and property fields at once."""
        now = datetime.now(timezone.utc)
        record.recount(items)
        record.transition_to(derive_package_status(items))
        if record.is_terminal:
            record.processed_at = now

        await self.sync_repo.save_outcome(
            PackageOutcome(
                package=record,
                items=items,
                publication_updates=[
                    PublicationUpdate.from_item(item, record.request_type, now)
                    for item in items
                ],
                touch_integration=True,
            )
        )

        logger.info(
            f"Package {record.package_id} {record.status.value}: "
            f"{record.success_count} succeeded, {record.failure_count} failed, "
            f"{record.pending_count} pending"
        )
        await self._notify(record)
        return PackageResult.from_record(record, items)

    async def _record_transport_failure(
        self,
        record: SyncPackageRecord,
        items: list[SyncItemRecord],
        error: OikionError,
    ) -> PackageResult:
        """Mark the whole package FAILED without touching any property."""
        message = sanitize_error_message(error.message, type(error).__name__)
        logger.error(f"Package {record.package_id} failed to reach XE.gr: {message}")

        now = datetime.now(timezone.utc)
        for item in items:
            if item.status == ItemStatus.PENDING:
                item.status = ItemStatus.FAILED
                item.error_message = message
                item.updated_at = now

        record.recount(items)
        record.transition_to(SyncStatus.FAILED)
        record.error_message = message
        record.processed_at = now

        await self.sync_repo.save_outcome(
            PackageOutcome(package=record, items=items, touch_integration=True)
        )
        await self._notify(record)
        return PackageResult.from_record(record, items)

    async def _notify(self, record: SyncPackageRecord) -> None:
        if not record.is_terminal:
            return
        try:
            await self.notifier.notify(SyncEvent.from_record(record))
        except Exception as e:
            logger.warning(f"Notification for package {record.package_id} failed: {e}")
