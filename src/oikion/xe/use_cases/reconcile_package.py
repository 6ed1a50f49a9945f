"""Reconcile Package Use Case - resolves PENDING/PROCESSING packages.

Outcomes arrive either by polling the portal (``execute``) or through the
portal's callback (``apply_outcomes``). Both paths are idempotent:
terminal packages are never changed, only PENDING items take new
outcomes, and property updates skip properties that a newer package has
resubmitted since.
"""

import logging
from datetime import datetime, timezone

from ...api.error_sanitizer import sanitize_error_message
from ...api.exceptions import InvalidStateError, NotFoundError, TransportError
from ..domain.entities import (
    ItemOutcome,
    ItemStatus,
    PackageOutcome,
    PublicationUpdate,
    SyncEvent,
    SyncPackageRecord,
    SyncStatus,
    derive_package_status,
)
from ..domain.ports import (
    IIntegrationRepository,
    INotifier,
    IPortalGateway,
    ISyncRepository,
)

logger = logging.getLogger(__name__)

UNKNOWN_TO_PORTAL = "Package was not received by XE.gr"


class ReconcilePackageUseCase:
    """Applies late portal outcomes to a stored package.

    Example:
        use_case = ReconcilePackageUseCase(sync_repo, integration_repo, gateway, notifier)
        record = await use_case.execute(tenant_id, "OIKION-ABCD1234-...")
    """

    def __init__(
        self,
        sync_repo: ISyncRepository,
        integration_repo: IIntegrationRepository,
        gateway: IPortalGateway,
        notifier: INotifier,
    ):
        self.sync_repo = sync_repo
        self.integrations = integration_repo
        self.gateway = gateway
        self.notifier = notifier

    async def execute(self, tenant_id: str, package_id: str) -> SyncPackageRecord:
        """Poll the portal for ``package_id`` and apply what it reports.

        Every poll moves the package to the back of the reconcile queue.
        A transport failure leaves its status untouched for the next run.

        Raises:
            NotFoundError: The package does not exist for this tenant.
        """
        record = await self._load(tenant_id, package_id)
        if record.is_terminal:
            logger.debug(f"Package {package_id} already {record.status.value}, skipping")
            return record

        await self.sync_repo.mark_checked(package_id)

        config = await self.integrations.get_config(tenant_id)
        if config is None:
            logger.warning(
                f"Cannot reconcile {package_id}: tenant {tenant_id} has no XE integration"
            )
            return record

        try:
            response = await self.gateway.fetch_status(config, package_id)
        except TransportError as e:
            logger.warning(
                f"Status check for {package_id} failed, will retry: "
                f"{sanitize_error_message(str(e))}"
            )
            return record

        if not response.known:
            if record.status != SyncStatus.PENDING:
                logger.warning(f"XE.gr no longer reports package {package_id}")
                return record
            record.error_message = UNKNOWN_TO_PORTAL
            return await self._apply(record, {}, fail_unresolved=UNKNOWN_TO_PORTAL)

        return await self._apply(record, response.outcomes)

    async def apply_outcomes(
        self,
        tenant_id: str,
        package_id: str,
        outcomes: list[ItemOutcome],
    ) -> SyncPackageRecord:
        """Apply outcomes pushed by the portal callback.

        Raises:
            NotFoundError: The package does not exist for this tenant.
        """
        record = await self._load(tenant_id, package_id)
        if record.is_terminal:
            logger.info(f"Ignoring callback for terminal package {package_id}")
            return record
        return await self._apply(record, {o.ref_id: o for o in outcomes})

    async def _load(self, tenant_id: str, package_id: str) -> SyncPackageRecord:
        record = await self.sync_repo.get_package(tenant_id, package_id)
        if record is None:
            raise NotFoundError("Sync package", package_id)
        return record

    async def _apply(
        self,
        record: SyncPackageRecord,
        outcomes: dict[str, ItemOutcome],
        fail_unresolved: str | None = None,
    ) -> SyncPackageRecord:
        items = await self.sync_repo.get_items(record.package_id)
        now = datetime.now(timezone.utc)

        changed = []
        for item in items:
            if item.status != ItemStatus.PENDING:
                continue
            outcome = outcomes.get(item.ref_id or "")
            if outcome is not None and outcome.status != ItemStatus.PENDING:
                item.status = outcome.status
                item.xe_ad_id = outcome.xe_ad_id
                if outcome.status == ItemStatus.FAILED:
                    item.error_message = sanitize_error_message(
                        outcome.error_message or "Rejected by XE.gr"
                    )
            elif fail_unresolved:
                item.status = ItemStatus.FAILED
                item.error_message = fail_unresolved
            else:
                continue
            item.updated_at = now
            changed.append(item)

        if not changed and not fail_unresolved:
            logger.debug(f"No new outcomes for package {record.package_id}")
            return record

        record.recount(items)
        record.transition_to(derive_package_status(items))
        if record.is_terminal:
            record.processed_at = now

        try:
            await self.sync_repo.save_outcome(
                PackageOutcome(
                    package=record,
                    items=changed,
                    publication_updates=[
                        PublicationUpdate.from_item(item, record.request_type, now)
                        for item in changed
                    ],
                    skip_superseded=True,
                )
            )
        except InvalidStateError:
            logger.info(f"Package {record.package_id} was resolved concurrently")
            return await self._load(record.tenant_id, record.package_id)

        logger.info(
            f"Reconciled package {record.package_id}: {record.status.value} "
            f"({record.success_count} succeeded, {record.failure_count} failed)"
        )

        if record.is_terminal:
            try:
                await self.notifier.notify(SyncEvent.from_record(record))
            except Exception as e:
                logger.warning(f"Notification for package {record.package_id} failed: {e}")

        return record
