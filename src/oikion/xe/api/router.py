"""FastAPI router for XE.gr sync endpoints.

Service errors (ValidationError, NotFoundError, InvalidStateError, ...)
propagate to the application's exception handlers, which map them to
HTTP status codes with sanitized messages.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..adapters.xe_gateway import parse_item_outcome
from ..domain.entities import SyncStatus
from ..use_cases import (
    GetPackageDetailUseCase,
    GetPropertyStatusUseCase,
    GetSyncStatsUseCase,
    ListHistoryUseCase,
    ManageIntegrationUseCase,
    PublishPropertiesUseCase,
    ReconcilePackageUseCase,
    RetryPackageUseCase,
)
from .dependencies import (
    get_history,
    get_integration_manager,
    get_package_detail,
    get_property_status as provide_property_status,
    get_publisher,
    get_reconciler,
    get_retry,
    get_stats,
    get_tenant_id,
)
from .schemas import (
    AgentSettingsDTO,
    AgentSettingsRequest,
    AutoPublishResponse,
    HistoryResponse,
    IntegrationConfigDTO,
    IntegrationConfigRequest,
    PackageDetailResponse,
    PackageResultDTO,
    PropertyStatusBulkResponse,
    PropertyStatusDTO,
    PropertyStatusRequest,
    RemoveRequest,
    StatsResponse,
    SyncPackageDTO,
    SyncRequest,
    ToggleRequest,
    WebhookRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/xe", tags=["XE.gr Sync"])


# ========== Integration ==========


@router.get("/integration", response_model=IntegrationConfigDTO)
async def get_integration(
    tenant_id: str = Depends(get_tenant_id),
    manager: ManageIntegrationUseCase = Depends(get_integration_manager),
):
    """Get the tenant's XE.gr integration (password omitted, token masked)."""
    return IntegrationConfigDTO.from_domain(await manager.get_config(tenant_id))


@router.put("/integration", response_model=IntegrationConfigDTO)
async def save_integration(
    request: IntegrationConfigRequest,
    tenant_id: str = Depends(get_tenant_id),
    manager: ManageIntegrationUseCase = Depends(get_integration_manager),
):
    """Create or update the integration credentials and defaults."""
    config = await manager.save_config(
        tenant_id,
        username=request.username,
        password=request.password,
        auth_token=request.auth_token,
        agent_id=request.agent_id,
        is_active=request.is_active,
        auto_publish=request.auto_publish,
        publication_type=request.publication_type,
        trademark=request.trademark,
        default_phone=request.default_phone,
    )
    return IntegrationConfigDTO.from_domain(config)


@router.post("/integration/toggle", response_model=IntegrationConfigDTO)
async def toggle_integration(
    request: ToggleRequest,
    tenant_id: str = Depends(get_tenant_id),
    manager: ManageIntegrationUseCase = Depends(get_integration_manager),
):
    return IntegrationConfigDTO.from_domain(
        await manager.set_active(tenant_id, request.is_active)
    )


@router.delete("/integration", status_code=status.HTTP_204_NO_CONTENT)
async def delete_integration(
    tenant_id: str = Depends(get_tenant_id),
    manager: ManageIntegrationUseCase = Depends(get_integration_manager),
):
    """Delete the integration. Portal listings and sync history are kept."""
    await manager.delete_config(tenant_id)


# ========== Agent Settings ==========


@router.get("/agents", response_model=list[AgentSettingsDTO])
async def list_agents(
    tenant_id: str = Depends(get_tenant_id),
    manager: ManageIntegrationUseCase = Depends(get_integration_manager),
):
    return [AgentSettingsDTO.from_domain(s) for s in await manager.list_agents(tenant_id)]


@router.get("/agents/{agent_id}", response_model=AgentSettingsDTO)
async def get_agent(
    agent_id: str,
    tenant_id: str = Depends(get_tenant_id),
    manager: ManageIntegrationUseCase = Depends(get_integration_manager),
):
    return AgentSettingsDTO.from_domain(await manager.get_agent(tenant_id, agent_id))


@router.put("/agents/{agent_id}", response_model=AgentSettingsDTO)
async def save_agent(
    agent_id: str,
    request: AgentSettingsRequest,
    tenant_id: str = Depends(get_tenant_id),
    manager: ManageIntegrationUseCase = Depends(get_integration_manager),
):
    settings = await manager.save_agent(
        tenant_id,
        agent_id=agent_id,
        xe_owner_id=request.xe_owner_id,
        major_phone=request.major_phone,
        other_phones=request.other_phones,
        is_active=request.is_active,
        auto_publish=request.auto_publish,
        publication_type=request.publication_type,
    )
    return AgentSettingsDTO.from_domain(settings)


@router.delete("/agents/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(
    agent_id: str,
    tenant_id: str = Depends(get_tenant_id),
    manager: ManageIntegrationUseCase = Depends(get_integration_manager),
):
    await manager.delete_agent(tenant_id, agent_id)


# ========== Sync ==========


@router.post("/sync", response_model=PackageResultDTO)
async def sync_properties(
    request: SyncRequest,
    tenant_id: str = Depends(get_tenant_id),
    publisher: PublishPropertiesUseCase = Depends(get_publisher),
):
    """Publish properties to XE.gr.

    Without ``property_ids`` every ACTIVE and PUBLIC property is sent.
    Portal failures are reported in the result body, not as HTTP errors.
    """
    result = await publisher.publish(tenant_id, request.property_ids, request.policy)
    return PackageResultDTO.from_domain(result)


@router.post("/remove", response_model=PackageResultDTO)
async def remove_properties(
    request: RemoveRequest,
    tenant_id: str = Depends(get_tenant_id),
    publisher: PublishPropertiesUseCase = Depends(get_publisher),
):
    """Withdraw properties from XE.gr."""
    result = await publisher.unpublish(tenant_id, request.property_ids)
    return PackageResultDTO.from_domain(result)


# ========== History ==========


@router.get("/history", response_model=HistoryResponse)
async def list_history(
    status_filter: Optional[SyncStatus] = Query(None, alias="status"),
    limit: int = Query(20),
    offset: int = Query(0),
    tenant_id: str = Depends(get_tenant_id),
    use_case: ListHistoryUseCase = Depends(get_history),
):
    """Newest-first sync history. ``limit`` is clamped to 1..100."""
    page = await use_case.execute(tenant_id, status_filter, limit, offset)
    return HistoryResponse.from_domain(page)


@router.get("/history/{package_id}", response_model=PackageDetailResponse)
async def get_history_detail(
    package_id: str,
    tenant_id: str = Depends(get_tenant_id),
    use_case: GetPackageDetailUseCase = Depends(get_package_detail),
):
    return PackageDetailResponse.from_domain(await use_case.execute(tenant_id, package_id))


@router.post("/history/{package_id}/retry", response_model=PackageResultDTO)
async def retry_package(
    package_id: str,
    tenant_id: str = Depends(get_tenant_id),
    use_case: RetryPackageUseCase = Depends(get_retry),
):
    """Resubmit a FAILED package as a new package."""
    return PackageResultDTO.from_domain(await use_case.execute(tenant_id, package_id))


@router.post("/history/{package_id}/reconcile", response_model=SyncPackageDTO)
async def reconcile_package(
    package_id: str,
    tenant_id: str = Depends(get_tenant_id),
    use_case: ReconcilePackageUseCase = Depends(get_reconciler),
):
    """Ask XE.gr for outcomes of a PENDING/PROCESSING package."""
    return SyncPackageDTO.from_domain(await use_case.execute(tenant_id, package_id))


@router.post("/webhook/{package_id}", response_model=SyncPackageDTO)
async def package_webhook(
    package_id: str,
    request: WebhookRequest,
    tenant_id: str = Depends(get_tenant_id),
    use_case: ReconcilePackageUseCase = Depends(get_reconciler),
):
    """Receive per-item outcomes pushed by XE.gr."""
    outcomes = [o for o in (parse_item_outcome(raw) for raw in request.items) if o]
    logger.info(f"Webhook for {package_id}: {len(outcomes)} outcomes")
    record = await use_case.apply_outcomes(tenant_id, package_id, outcomes)
    return SyncPackageDTO.from_domain(record)


# ========== Status / Stats ==========


@router.get("/stats", response_model=StatsResponse)
async def get_sync_stats(
    tenant_id: str = Depends(get_tenant_id),
    use_case: GetSyncStatsUseCase = Depends(get_stats),
):
    return StatsResponse.from_domain(await use_case.execute(tenant_id))


@router.get("/properties/{property_id}/status", response_model=PropertyStatusDTO)
async def get_property_status(
    property_id: str,
    tenant_id: str = Depends(get_tenant_id),
    use_case: GetPropertyStatusUseCase = Depends(provide_property_status),
):
    return PropertyStatusDTO.from_domain(await use_case.execute(tenant_id, property_id))


@router.post("/properties/status", response_model=PropertyStatusBulkResponse)
async def get_properties_status(
    request: PropertyStatusRequest,
    tenant_id: str = Depends(get_tenant_id),
    use_case: GetPropertyStatusUseCase = Depends(provide_property_status),
):
    """Publication badges for many properties; unknown ids are omitted."""
    statuses = await use_case.execute_many(tenant_id, request.property_ids)
    return PropertyStatusBulkResponse(
        statuses={pid: PropertyStatusDTO.from_domain(s) for pid, s in statuses.items()}
    )


@router.post("/properties/{property_id}/auto-publish", response_model=AutoPublishResponse)
async def auto_publish_property(
    property_id: str,
    tenant_id: str = Depends(get_tenant_id),
    publisher: PublishPropertiesUseCase = Depends(get_publisher),
):
    """Called by the CRM after a property save."""
    result = await publisher.auto_publish(tenant_id, property_id)
    if result is None:
        return AutoPublishResponse(published=False)
    return AutoPublishResponse(published=True, result=PackageResultDTO.from_domain(result))
