"""Retry Package Use Case - resubmits the properties of a FAILED package.

The retry is a brand new package built from current property data with
the original request type and policy. The original package is never
modified; the new one points back to it through ``retry_of``.
"""

import logging

from ...api.exceptions import InvalidStateError, NotFoundError, ValidationError
from ..domain.entities import PackageResult, SyncStatus
from ..domain.ports import ISyncRepository
from .build_package import BuildPackageUseCase
from .submit_package import SubmitPackageUseCase

logger = logging.getLogger(__name__)


class RetryPackageUseCase:
    """Example:
        use_case = RetryPackageUseCase(sync_repo, builder, submitter)
        result = await use_case.execute(tenant_id, failed_package_id)
    """

    def __init__(
        self,
        sync_repo: ISyncRepository,
        builder: BuildPackageUseCase,
        submitter: SubmitPackageUseCase,
    ):
        self.sync_repo = sync_repo
        self.builder = builder
        self.submitter = submitter

    async def execute(self, tenant_id: str, package_id: str) -> PackageResult:
        """Retry ``package_id``.

        Raises:
            NotFoundError: The package does not exist for this tenant.
            InvalidStateError: The package is not FAILED.
            ValidationError: A property of the package no longer exists.
        """
        original = await self.sync_repo.get_package(tenant_id, package_id)
        if original is None:
            raise NotFoundError("Sync package", package_id)
        if original.status != SyncStatus.FAILED:
            raise InvalidStateError(
                f"Only FAILED packages can be retried (package is {original.status.value})",
                current_state=original.status.value,
            )

        items = await self.sync_repo.get_items(package_id)
        property_ids = [item.property_id for item in items]
        if not property_ids:
            raise ValidationError(f"Package {package_id} has no properties to retry")

        logger.info(f"Retrying package {package_id} with {len(property_ids)} properties")

        package = await self.builder.execute(
            tenant_id,
            property_ids,
            original.request_type,
            policy=original.policy,
            retry_of=original.package_id,
        )
        return await self.submitter.execute(package)
