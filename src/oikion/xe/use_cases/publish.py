"""Publish Properties Use Case - the CRM-facing publishing entry points.

- publish: ADD package for the given properties, or for every ACTIVE and
  PUBLIC property of the tenant when none are given
- unpublish: REMOVE package for the given properties
- auto_publish: single-property ADD triggered by a property save, only
  when the integration and the agent allow it
"""

import logging
from typing import Optional

from ...api.exceptions import NotFoundError, ValidationError
from ..domain.entities import PackageResult, RequestType, SyncPolicy
from ..domain.ports import IIntegrationRepository, IPropertyRepository
from .build_package import BuildPackageUseCase
from .submit_package import SubmitPackageUseCase

logger = logging.getLogger(__name__)


class PublishPropertiesUseCase:
    """Example:
        use_case = PublishPropertiesUseCase(property_repo, integration_repo, builder, submitter)
        result = await use_case.publish(tenant_id)
    """

    def __init__(
        self,
        property_repo: IPropertyRepository,
        integration_repo: IIntegrationRepository,
        builder: BuildPackageUseCase,
        submitter: SubmitPackageUseCase,
    ):
        self.properties = property_repo
        self.integrations = integration_repo
        self.builder = builder
        self.submitter = submitter

    async def publish(
        self,
        tenant_id: str,
        property_ids: Optional[list[str]] = None,
        policy: SyncPolicy = SyncPolicy.INCREMENTAL,
    ) -> PackageResult:
        """Build and submit an ADD package.

        Raises:
            ValidationError: No properties given and none are publishable,
                or the integration is missing or inactive.
        """
        if not property_ids:
            await self.builder.get_active_config(tenant_id)
            publishable = await self.properties.list_publishable(tenant_id)
            if not publishable:
                raise ValidationError("No properties found to sync")
            property_ids = [p.id for p in publishable]
            logger.info(f"Publishing all {len(property_ids)} public properties of {tenant_id}")

        package = await self.builder.execute(
            tenant_id, property_ids, RequestType.ADD_ITEMS, policy=policy
        )
        return await self.submitter.execute(package)

    async def unpublish(self, tenant_id: str, property_ids: list[str]) -> PackageResult:
        """Build and submit a REMOVE package."""
        package = await self.builder.execute(
            tenant_id, property_ids, RequestType.REMOVE_ITEMS
        )
        return await self.submitter.execute(package)

    async def auto_publish(
        self, tenant_id: str, property_id: str
    ) -> Optional[PackageResult]:
        """Publish one property if auto publishing applies; otherwise None.

        Raises:
            NotFoundError: The property does not exist for this tenant.
        """
        prop = await self.properties.get_by_id(tenant_id, property_id)
        if prop is None:
            raise NotFoundError("Property", property_id)

        config = await self.integrations.get_config(tenant_id)
        if config is None or not config.is_active or not config.auto_publish:
            logger.debug(f"Auto publish disabled for tenant {tenant_id}")
            return None

        if not prop.is_publicly_listable:
            logger.debug(f"Property {property_id} is not public and active, skipping")
            return None

        if prop.assigned_agent_id:
            settings = await self.integrations.get_agent_settings(
                tenant_id, prop.assigned_agent_id
            )
            if settings is not None and not (settings.is_active and settings.auto_publish):
                logger.debug(f"Auto publish disabled for agent {prop.assigned_agent_id}")
                return None

        return await self.publish(tenant_id, [property_id])
