"""Publication status and sync statistics queries."""

from ...api.exceptions import NotFoundError
from ..domain.entities import PropertyPublishStatus, SyncStats
from ..domain.ports import IPropertyRepository, ISyncRepository


class GetPropertyStatusUseCase:
    """Reads the publication fields of one or many properties."""

    def __init__(self, property_repo: IPropertyRepository):
        self.properties = property_repo

    async def execute(self, tenant_id: str, property_id: str) -> PropertyPublishStatus:
        """Raises NotFoundError for unknown or foreign properties."""
        prop = await self.properties.get_by_id(tenant_id, property_id)
        if prop is None:
            raise NotFoundError("Property", property_id)
        return PropertyPublishStatus.from_property(prop)

    async def execute_many(
        self, tenant_id: str, property_ids: list[str]
    ) -> dict[str, PropertyPublishStatus]:
        """Statuses keyed by property id; unknown ids are left out."""
        if not property_ids:
            return {}
        props = await self.properties.get_by_ids(tenant_id, list(dict.fromkeys(property_ids)))
        return {p.id: PropertyPublishStatus.from_property(p) for p in props}


class GetSyncStatsUseCase:
    def __init__(self, sync_repo: ISyncRepository, property_repo: IPropertyRepository):
        self.sync_repo = sync_repo
        self.properties = property_repo

    async def execute(self, tenant_id: str) -> SyncStats:
        stats = await self.sync_repo.get_stats(tenant_id)
        stats.total_properties_synced = await self.properties.count_published(tenant_id)
        return stats
