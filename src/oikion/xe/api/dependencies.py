"""FastAPI dependency injection for the XE.gr sync API.

Lifecycle Management:
- Database pool: Initialized at startup, shared across requests
- Lock pool: A separate pool whose connections hold advisory locks while a
  package is submitted, so lock holders never starve the repository writes
- XE.gr client: Initialized at startup, shared across requests
- All are closed at application shutdown

Tenant scoping:
- Every route receives the tenant explicitly through the X-Tenant-ID
  header; authentication happens upstream of this service.
"""

import logging
import os
from typing import Optional

import asyncpg
from fastapi import Depends, Header, HTTPException, status

from ...api.database import close_pool, create_pool
from ...api.exceptions import ConfigurationError
from ...api.xe_client import XeClient
from ..adapters import (
    LoggingNotifier,
    PostgresAdvisoryLockManager,
    PostgresIntegrationRepository,
    PostgresPropertyRepository,
    PostgresSyncRepository,
    XePortalGateway,
    XePropertyMapper,
)
from ..domain.ports import (
    IIntegrationRepository,
    ILockManager,
    INotifier,
    IPortalGateway,
    IPropertyMapper,
    IPropertyRepository,
    ISyncRepository,
)
from ..use_cases import (
    BuildPackageUseCase,
    GetPackageDetailUseCase,
    GetPropertyStatusUseCase,
    GetSyncStatsUseCase,
    ListHistoryUseCase,
    ManageIntegrationUseCase,
    PublishPropertiesUseCase,
    ReconcilePackageUseCase,
    RetryPackageUseCase,
    SubmitPackageUseCase,
)

logger = logging.getLogger(__name__)

# ========== Tenant ==========


async def get_tenant_id(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
) -> str:
    """Tenant the request acts for.

    Raises:
        HTTPException: 400 if the header is missing or blank
    """
    if not x_tenant_id or not x_tenant_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing X-Tenant-ID header",
        )
    return x_tenant_id.strip()


# ========== Global State ==========

# Global connection pool (initialized on startup)
_db_pool: Optional[asyncpg.Pool] = None

# Connections holding per-property advisory locks (initialized on startup)
_lock_pool: Optional[asyncpg.Pool] = None

# Global XE.gr client (initialized on startup)
_xe_client: Optional[XeClient] = None


async def init_db_pool():
    """Initialize the database connection pool.

    Should be called on application startup.
    """
    global _db_pool

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ConfigurationError(
            "DATABASE_URL environment variable is required",
            missing_keys=["DATABASE_URL"],
        )

    _db_pool = await create_pool(database_url, min_size=2, max_size=10)


async def init_lock_pool():
    """Initialize the pool used only by the advisory lock manager.

    Its size caps concurrent submissions. Should be called on application
    startup, after init_db_pool().
    """
    global _lock_pool

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ConfigurationError(
            "DATABASE_URL environment variable is required",
            missing_keys=["DATABASE_URL"],
        )

    size = int(os.getenv("XE_LOCK_POOL_SIZE", "5"))
    _lock_pool = await create_pool(database_url, min_size=1, max_size=size)


async def init_xe_client():
    """Initialize the shared XE.gr client.

    Should be called on application startup.
    """
    global _xe_client

    _xe_client = XeClient()
    await _xe_client.__aenter__()
    logger.info(f"XE.gr client initialized for {_xe_client.base_url}")


async def close_db_pool():
    """Close the database connection pool.

    Should be called on application shutdown.
    """
    global _db_pool
    await close_pool(_db_pool)
    _db_pool = None


async def close_lock_pool():
    """Close the advisory lock pool.

    Should be called on application shutdown.
    """
    global _lock_pool
    await close_pool(_lock_pool)
    _lock_pool = None


async def close_xe_client():
    """Close the XE.gr client.

    Should be called on application shutdown.
    """
    global _xe_client
    if _xe_client:
        await _xe_client.__aexit__(None, None, None)
        _xe_client = None
        logger.info("XE.gr client closed")


def get_db_pool() -> asyncpg.Pool:
    """Get the database connection pool."""
    if _db_pool is None:
        raise RuntimeError("Database pool not initialized. Call init_db_pool() first.")
    return _db_pool


def get_lock_pool() -> asyncpg.Pool:
    """Get the advisory lock pool."""
    if _lock_pool is None:
        raise RuntimeError("Lock pool not initialized. Call init_lock_pool() first.")
    return _lock_pool


def get_xe_client() -> Optional[XeClient]:
    return _xe_client


def current_db_pool() -> Optional[asyncpg.Pool]:
    """The pool if initialized, without raising."""
    return _db_pool


def lock_timeout_seconds() -> float:
    return float(os.getenv("XE_LOCK_TIMEOUT_SECONDS", "30"))


# ========== Port Providers ==========


def get_property_repo() -> IPropertyRepository:
    return PostgresPropertyRepository(get_db_pool())


def get_integration_repo() -> IIntegrationRepository:
    return PostgresIntegrationRepository(get_db_pool())


def get_sync_repo() -> ISyncRepository:
    return PostgresSyncRepository(get_db_pool())


def get_gateway() -> IPortalGateway:
    """Get a portal gateway over the shared XE.gr client."""
    if _xe_client is None:
        raise RuntimeError("XE.gr client not initialized. Call init_xe_client() first.")
    return XePortalGateway(_xe_client)


def get_lock_manager() -> ILockManager:
    return PostgresAdvisoryLockManager(get_lock_pool())


def get_notifier() -> INotifier:
    return LoggingNotifier()


def get_mapper() -> IPropertyMapper:
    return XePropertyMapper()


# ========== Use Case Providers ==========


def get_builder(
    property_repo: IPropertyRepository = Depends(get_property_repo),
    integration_repo: IIntegrationRepository = Depends(get_integration_repo),
    mapper: IPropertyMapper = Depends(get_mapper),
) -> BuildPackageUseCase:
    return BuildPackageUseCase(property_repo, integration_repo, mapper)


def get_submitter(
    sync_repo: ISyncRepository = Depends(get_sync_repo),
    integration_repo: IIntegrationRepository = Depends(get_integration_repo),
    gateway: IPortalGateway = Depends(get_gateway),
    lock_manager: ILockManager = Depends(get_lock_manager),
    notifier: INotifier = Depends(get_notifier),
) -> SubmitPackageUseCase:
    return SubmitPackageUseCase(
        sync_repo=sync_repo,
        integration_repo=integration_repo,
        gateway=gateway,
        lock_manager=lock_manager,
        notifier=notifier,
        lock_timeout=lock_timeout_seconds(),
    )


def get_reconciler(
    sync_repo: ISyncRepository = Depends(get_sync_repo),
    integration_repo: IIntegrationRepository = Depends(get_integration_repo),
    gateway: IPortalGateway = Depends(get_gateway),
    notifier: INotifier = Depends(get_notifier),
) -> ReconcilePackageUseCase:
    return ReconcilePackageUseCase(sync_repo, integration_repo, gateway, notifier)


def get_publisher(
    property_repo: IPropertyRepository = Depends(get_property_repo),
    integration_repo: IIntegrationRepository = Depends(get_integration_repo),
    builder: BuildPackageUseCase = Depends(get_builder),
    submitter: SubmitPackageUseCase = Depends(get_submitter),
) -> PublishPropertiesUseCase:
    return PublishPropertiesUseCase(property_repo, integration_repo, builder, submitter)


def get_retry(
    sync_repo: ISyncRepository = Depends(get_sync_repo),
    builder: BuildPackageUseCase = Depends(get_builder),
    submitter: SubmitPackageUseCase = Depends(get_submitter),
) -> RetryPackageUseCase:
    return RetryPackageUseCase(sync_repo, builder, submitter)


def get_history(
    sync_repo: ISyncRepository = Depends(get_sync_repo),
) -> ListHistoryUseCase:
    return ListHistoryUseCase(sync_repo)


def get_package_detail(
    sync_repo: ISyncRepository = Depends(get_sync_repo),
) -> GetPackageDetailUseCase:
    return GetPackageDetailUseCase(sync_repo)


def get_property_status(
    property_repo: IPropertyRepository = Depends(get_property_repo),
) -> GetPropertyStatusUseCase:
    return GetPropertyStatusUseCase(property_repo)


def get_stats(
    sync_repo: ISyncRepository = Depends(get_sync_repo),
    property_repo: IPropertyRepository = Depends(get_property_repo),
) -> GetSyncStatsUseCase:
    return GetSyncStatsUseCase(sync_repo, property_repo)


def get_integration_manager(
    integration_repo: IIntegrationRepository = Depends(get_integration_repo),
) -> ManageIntegrationUseCase:
    return ManageIntegrationUseCase(integration_repo)
