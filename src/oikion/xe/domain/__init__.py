"""Domain layer - entities and port interfaces for XE.gr sync.

This layer contains:
- Entities: integration config, properties, packages, items, read models
- Ports: Abstract interfaces implemented by the adapters layer

No infrastructure dependencies allowed in this layer.
"""

from .entities import (
    AgentSettings,
    HistoryPage,
    IntegrationConfig,
    ItemOutcome,
    ItemStatus,
    PackageDetail,
    PackageItem,
    PackageOutcome,
    PackageResult,
    Property,
    PropertyPublishStatus,
    PublicationType,
    PublicationUpdate,
    RequestType,
    SubmissionResponse,
    SyncEvent,
    SyncItemRecord,
    SyncPackage,
    SyncPackageRecord,
    SyncPolicy,
    SyncStats,
    SyncStatus,
    derive_package_status,
    format_phone,
)
from .ports import (
    IIntegrationRepository,
    ILockManager,
    INotifier,
    IPortalGateway,
    IPropertyMapper,
    IPropertyRepository,
    ISyncRepository,
)

__all__ = [
    # Enums
    "ItemStatus",
    "PublicationType",
    "RequestType",
    "SyncPolicy",
    "SyncStatus",
    # Configuration
    "AgentSettings",
    "IntegrationConfig",
    "format_phone",
    # Properties
    "Property",
    "PublicationUpdate",
    # Packages
    "ItemOutcome",
    "PackageItem",
    "PackageOutcome",
    "SubmissionResponse",
    "SyncItemRecord",
    "SyncPackage",
    "SyncPackageRecord",
    "derive_package_status",
    # Results
    "HistoryPage",
    "PackageDetail",
    "PackageResult",
    "PropertyPublishStatus",
    "SyncEvent",
    "SyncStats",
    # Ports
    "IIntegrationRepository",
    "ILockManager",
    "INotifier",
    "IPortalGateway",
    "IPropertyMapper",
    "IPropertyRepository",
    "ISyncRepository",
]
