"""Port interfaces for XE.gr synchronization.

Ports define the contracts between the use cases and the infrastructure.
Use cases depend only on these abstractions; PostgreSQL, the XE.gr HTTP
client, and notification delivery live behind them in the adapters layer.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import Any

from .entities import (
    AgentSettings,
    IntegrationConfig,
    PackageOutcome,
    Property,
    SubmissionResponse,
    SyncEvent,
    SyncItemRecord,
    SyncPackage,
    SyncPackageRecord,
    SyncStats,
    SyncStatus,
)


class IPropertyRepository(ABC):
    """Read access to the CRM's property store.

    Publication fields are written through ISyncRepository so they commit
    in the same transaction as the package and item rows.
    """

    @abstractmethod
    async def get_by_ids(self, tenant_id: str, property_ids: list[str]) -> list[Property]:
        """Fetch properties of a tenant. Unknown or foreign ids are omitted."""
        ...

    @abstractmethod
    async def get_by_id(self, tenant_id: str, property_id: str) -> Property | None:
        ...

    @abstractmethod
    async def list_publishable(self, tenant_id: str) -> list[Property]:
        """All ACTIVE properties with PUBLIC portal visibility."""
        ...

    @abstractmethod
    async def count_published(self, tenant_id: str) -> int:
        ...


class IIntegrationRepository(ABC):
    """Port for integration config and agent settings persistence."""

    @abstractmethod
    async def get_config(self, tenant_id: str) -> IntegrationConfig | None:
        ...

    @abstractmethod
    async def save_config(self, config: IntegrationConfig) -> IntegrationConfig:
        """Insert or update the tenant's integration config."""
        ...

    @abstractmethod
    async def delete_config(self, tenant_id: str) -> bool:
        """Delete the config and its agent settings. History is kept."""
        ...

    @abstractmethod
    async def list_agent_settings(self, tenant_id: str) -> list[AgentSettings]:
        ...

    @abstractmethod
    async def get_agent_settings(
        self, tenant_id: str, agent_id: str
    ) -> AgentSettings | None:
        ...

    @abstractmethod
    async def save_agent_settings(self, settings: AgentSettings) -> AgentSettings:
        """Insert or update settings, unique per (tenant, agent)."""
        ...

    @abstractmethod
    async def delete_agent_settings(self, tenant_id: str, agent_id: str) -> bool:
        ...


class ISyncRepository(ABC):
    """Port for package/item persistence.

    Each write method is a single database transaction.
    """

    @abstractmethod
    async def create_package(
        self, record: SyncPackageRecord, items: list[SyncItemRecord]
    ) -> None:
        """Persist a new package with all of its items."""
        ...

    @abstractmethod
    async def save_outcome(self, outcome: PackageOutcome) -> None:
        """Atomically write package status/counts, item outcomes, and
        property publication updates."""
        ...

    @abstractmethod
    async def get_package(
        self, tenant_id: str, package_id: str
    ) -> SyncPackageRecord | None:
        """Fetch a package scoped to the tenant."""
        ...

    @abstractmethod
    async def get_items(self, package_id: str) -> list[SyncItemRecord]:
        ...

    @abstractmethod
    async def list_packages(
        self,
        tenant_id: str,
        status: SyncStatus | None,
        limit: int,
        offset: int,
    ) -> tuple[list[SyncPackageRecord], int]:
        """Newest-first page of packages plus the total matching count."""
        ...

    @abstractmethod
    async def list_unresolved(
        self, older_than_seconds: float, limit: int
    ) -> list[SyncPackageRecord]:
        """PENDING/PROCESSING packages across tenants.

        Packages never polled come first, then the least recently polled,
        so packages the portal cannot resolve do not hold up newer ones.
        """
        ...

    @abstractmethod
    async def mark_checked(self, package_id: str) -> None:
        """Record that the reconciler polled ``package_id`` just now."""
        ...

    @abstractmethod
    async def get_stats(self, tenant_id: str) -> SyncStats:
        """Package counts by status and the latest submission time."""
        ...


class IPortalGateway(ABC):
    """Port for the XE.gr bulk import API."""

    @abstractmethod
    async def submit(
        self, config: IntegrationConfig, package: SyncPackage
    ) -> SubmissionResponse:
        """Send the eligible items of a package.

        Raises:
            TransportError: The call failed before any outcome was known.
        """
        ...

    @abstractmethod
    async def fetch_status(
        self, config: IntegrationConfig, package_id: str
    ) -> SubmissionResponse:
        """Ask the portal for per-item outcomes of an earlier package.

        ``known`` is False when the portal has no record of the package.
        """
        ...


class IPropertyMapper(ABC):
    """Port for turning CRM properties into portal items."""

    @abstractmethod
    def validate(self, prop: Property) -> list[str]:
        """Return blocking problems; empty means publishable."""
        ...

    @abstractmethod
    def item_type(self, prop: Property) -> str:
        ...

    @abstractmethod
    def generate_ref_id(self, prop: Property) -> str:
        ...

    @abstractmethod
    def to_item(
        self,
        prop: Property,
        ref_id: str,
        settings: AgentSettings,
        publication_type: str,
    ) -> dict[str, Any]:
        """Serialize a property into a Unified Ad item payload."""
        ...


class INotifier(ABC):
    """Port for terminal-state notifications."""

    @abstractmethod
    async def notify(self, event: SyncEvent) -> None:
        ...


class ILockManager(ABC):
    """Port for per-property mutual exclusion across submissions."""

    @abstractmethod
    def hold(
        self, tenant_id: str, property_ids: list[str], timeout: float
    ) -> AbstractAsyncContextManager[None]:
        """Hold locks on all properties for the duration of the block.

        Raises:
            InvalidStateError: A lock could not be taken within ``timeout``.
        """
        ...


__all__ = [
    "IPropertyRepository",
    "IIntegrationRepository",
    "ISyncRepository",
    "IPortalGateway",
    "IPropertyMapper",
    "INotifier",
    "ILockManager",
]
