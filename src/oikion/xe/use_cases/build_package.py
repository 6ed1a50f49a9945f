"""Build Package Use Case - turns property ids into a portal package.

Construction is pure: nothing is persisted and the portal is not
contacted. Per-property problems never abort the batch; they become
pre-failed items that the submitter records without sending.
"""

import logging
import random
import string
import time
from datetime import datetime, timezone

from ...api.exceptions import ValidationError
from ..domain.entities import (
    AgentSettings,
    IntegrationConfig,
    PackageItem,
    Property,
    RequestType,
    SyncPackage,
    SyncPolicy,
)
from ..domain.ports import IIntegrationRepository, IPropertyMapper, IPropertyRepository

logger = logging.getLogger(__name__)

NOT_PUBLISHED = "Property is not published on XE.gr"


def generate_package_id(tenant_id: str, request_type: RequestType) -> str:
    """``OIKION-<TENANT8>-<ms>-<RAND6>``; removals use the ``OIKION-DEL`` prefix."""
    prefix = "OIKION-DEL" if request_type == RequestType.REMOVE_ITEMS else "OIKION"
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"{prefix}-{tenant_id[:8].upper()}-{int(time.time() * 1000)}-{suffix}"


def _dedupe(property_ids: list[str]) -> list[str]:
    return list(dict.fromkeys(property_ids))


class BuildPackageUseCase:
    """Builds an in-memory SyncPackage.

    Example:
        builder = BuildPackageUseCase(property_repo, integration_repo, XePropertyMapper())
        package = await builder.execute(tenant_id, ["p1", "p2"], RequestType.ADD_ITEMS)
    """

    def __init__(
        self,
        property_repo: IPropertyRepository,
        integration_repo: IIntegrationRepository,
        mapper: IPropertyMapper,
    ):
        self.properties = property_repo
        self.integrations = integration_repo
        self.mapper = mapper

    async def execute(
        self,
        tenant_id: str,
        property_ids: list[str],
        request_type: RequestType,
        policy: SyncPolicy = SyncPolicy.INCREMENTAL,
        retry_of: str | None = None,
    ) -> SyncPackage:
        """Build a package for ``property_ids``.

        Raises:
            ValidationError: Empty id list, missing or inactive integration,
                or an id that does not resolve within the tenant.
        """
        if not property_ids:
            raise ValidationError("At least one property is required", field="property_ids")

        ids = _dedupe(property_ids)
        config = await self.get_active_config(tenant_id)

        properties = await self.properties.get_by_ids(tenant_id, ids)
        by_id = {p.id: p for p in properties}
        missing = [pid for pid in ids if pid not in by_id]
        if missing:
            raise ValidationError(
                f"{len(missing)} propert{'y' if len(missing) == 1 else 'ies'} not found",
                field="property_ids",
                details={"missing": missing},
            )

        ordered = [by_id[pid] for pid in ids]
        if request_type == RequestType.ADD_ITEMS:
            items = await self._add_items(config, ordered)
        else:
            items = [self._remove_item(p) for p in ordered]

        package = SyncPackage(
            package_id=generate_package_id(tenant_id, request_type),
            tenant_id=tenant_id,
            request_type=request_type,
            policy=policy,
            items=items,
            created_at=datetime.now(timezone.utc),
            retry_of=retry_of,
        )

        logger.info(
            f"Built package {package.package_id}: {len(package.eligible_items)} eligible, "
            f"{len(package.pre_failed_items)} pre-failed"
        )
        return package

    async def get_active_config(self, tenant_id: str) -> IntegrationConfig:
        config = await self.integrations.get_config(tenant_id)
        if config is None:
            raise ValidationError("XE integration not configured")
        if not config.is_active:
            raise ValidationError("XE integration is not active")
        return config

    async def _add_items(
        self, config: IntegrationConfig, properties: list[Property]
    ) -> list[PackageItem]:
        agent_settings = {
            s.agent_id: s for s in await self.integrations.list_agent_settings(config.tenant_id)
        }
        default_settings = None
        if config.default_phone:
            default_settings = AgentSettings(
                tenant_id=config.tenant_id,
                agent_id=config.agent_id,
                xe_owner_id=config.agent_id,
                major_phone=config.default_phone,
                publication_type=config.publication_type,
            )

        items = []
        taken: set[str] = set()
        for prop in properties:
            errors = self.mapper.validate(prop)

            settings = agent_settings.get(prop.assigned_agent_id or "")
            if settings is not None and not settings.is_active:
                errors.append(f"XE publishing is disabled for agent {prop.assigned_agent_id}")
            elif settings is None:
                settings = default_settings
                if settings is None:
                    errors.append(
                        f"No XE settings configured for agent {prop.assigned_agent_id or '(unassigned)'}"
                    )

            item_type = self.mapper.item_type(prop)
            if errors:
                items.append(
                    PackageItem(
                        property_id=prop.id,
                        property_name=_snapshot_name(prop),
                        ref_id=prop.xe_ref_id,
                        item_type=item_type,
                        failure_reason="; ".join(errors),
                    )
                )
                continue

            ref_id = prop.xe_ref_id or self._fresh_ref_id(prop, taken)
            taken.add(ref_id)
            items.append(
                PackageItem(
                    property_id=prop.id,
                    property_name=_snapshot_name(prop),
                    ref_id=ref_id,
                    item_type=item_type,
                    payload=self.mapper.to_item(
                        prop, ref_id, settings, settings.publication_type.value
                    ),
                )
            )
        return items

    def _fresh_ref_id(self, prop: Property, taken: set[str]) -> str:
        """A generated ref id no other item of the batch uses."""
        ref_id = self.mapper.generate_ref_id(prop)
        while ref_id in taken:
            ref_id = self.mapper.generate_ref_id(prop)
        return ref_id

    def _remove_item(self, prop: Property) -> PackageItem:
        return PackageItem(
            property_id=prop.id,
            property_name=_snapshot_name(prop),
            ref_id=prop.xe_ref_id,
            item_type=self.mapper.item_type(prop),
            failure_reason=None if prop.xe_ref_id else NOT_PUBLISHED,
        )


def _snapshot_name(prop: Property) -> str:
    return prop.name or prop.id
