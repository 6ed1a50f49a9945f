"""Sync history queries."""

import logging

from ...api.exceptions import NotFoundError
from ..domain.entities import HistoryPage, PackageDetail, SyncStatus
from ..domain.ports import ISyncRepository

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def clamp_limit(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_LIMIT
    return max(1, min(limit, MAX_LIMIT))


class ListHistoryUseCase:
    """Newest-first, paginated list of a tenant's packages."""

    def __init__(self, sync_repo: ISyncRepository):
        self.sync_repo = sync_repo

    async def execute(
        self,
        tenant_id: str,
        status: SyncStatus | None = None,
        limit: int | None = DEFAULT_LIMIT,
        offset: int = 0,
    ) -> HistoryPage:
        limit = clamp_limit(limit)
        offset = max(offset, 0)
        records, total = await self.sync_repo.list_packages(tenant_id, status, limit, offset)
        return HistoryPage(items=records, total=total, limit=limit, offset=offset)


class GetPackageDetailUseCase:
    def __init__(self, sync_repo: ISyncRepository):
        self.sync_repo = sync_repo

    async def execute(self, tenant_id: str, package_id: str) -> PackageDetail:
        """Package with its items.

        Raises:
            NotFoundError: Unknown id, or an id owned by another tenant.
        """
        record = await self.sync_repo.get_package(tenant_id, package_id)
        if record is None:
            raise NotFoundError("Sync package", package_id)
        items = await self.sync_repo.get_items(package_id)
        return PackageDetail(package=record, items=items)
