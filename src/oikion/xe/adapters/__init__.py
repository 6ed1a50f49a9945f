"""Adapters layer - Infrastructure implementations for XE.gr sync.

Concrete implementations of the ports defined in the domain layer:
- PostgresPropertyRepository: IPropertyRepository over the CRM properties table
- PostgresSyncRepository: ISyncRepository for packages, items and outcomes
- PostgresIntegrationRepository: IIntegrationRepository for config/agent settings
- XePortalGateway: IPortalGateway over XeClient
- XePropertyMapper: IPropertyMapper producing Unified Ad items
- LoggingNotifier: INotifier writing to the log
- PostgresAdvisoryLockManager / InProcessLockManager: ILockManager
"""

from .locks import InProcessLockManager, PostgresAdvisoryLockManager
from .notifier import LoggingNotifier
from .postgres_integration_repo import PostgresIntegrationRepository
from .postgres_property_repo import PostgresPropertyRepository
from .postgres_sync_repo import PostgresSyncRepository
from .property_mapper import XePropertyMapper
from .xe_gateway import XePortalGateway

__all__ = [
    # Persistence
    "PostgresIntegrationRepository",
    "PostgresPropertyRepository",
    "PostgresSyncRepository",
    # Portal
    "XePortalGateway",
    "XePropertyMapper",
    # Infrastructure
    "InProcessLockManager",
    "LoggingNotifier",
    "PostgresAdvisoryLockManager",
]
