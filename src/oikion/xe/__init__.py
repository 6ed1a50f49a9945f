"""XE.gr sync module - publishes CRM properties to the XE.gr portal.

Architecture:
    domain/     - Pure domain entities and port interfaces
    use_cases/  - Business logic orchestration
    adapters/   - Infrastructure implementations (PostgreSQL, XE.gr API)
    api/        - FastAPI router, schemas and dependency wiring
"""

from .domain.entities import (
    IntegrationConfig,
    ItemStatus,
    PackageResult,
    Property,
    RequestType,
    SyncPackage,
    SyncPolicy,
    SyncStatus,
)
from .domain.ports import (
    IIntegrationRepository,
    ILockManager,
    INotifier,
    IPortalGateway,
    IPropertyMapper,
    IPropertyRepository,
    ISyncRepository,
)

__all__ = [
    # Entities
    "IntegrationConfig",
    "Property",
    "SyncPackage",
    "PackageResult",
    # Enums
    "RequestType",
    "SyncPolicy",
    "SyncStatus",
    "ItemStatus",
    # Ports
    "IPropertyRepository",
    "IIntegrationRepository",
    "ISyncRepository",
    "IPortalGateway",
    "IPropertyMapper",
    "INotifier",
    "ILockManager",
]
