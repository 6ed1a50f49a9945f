"""Pydantic schemas for API request/response validation."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..domain.entities import (
    AgentSettings,
    HistoryPage,
    IntegrationConfig,
    PackageDetail,
    PackageResult,
    PropertyPublishStatus,
    SyncItemRecord,
    SyncPackageRecord,
    SyncPolicy,
    SyncStats,
)


def _mask(secret: str) -> str:
    if len(secret) <= 4:
        return "****"
    return "*" * (len(secret) - 4) + secret[-4:]


# ========== Integration ==========


class IntegrationConfigRequest(BaseModel):
    """Create or update the tenant's XE.gr integration.

    ``password`` may be omitted on update to keep the stored one.
    """

    username: str
    password: Optional[str] = None
    auth_token: str
    agent_id: str = Field(..., description="Store/agent id assigned by XE.gr")
    is_active: Optional[bool] = None
    auto_publish: Optional[bool] = None
    publication_type: Optional[str] = Field(None, description="BASIC or GOLD")
    trademark: Optional[str] = None
    default_phone: Optional[str] = None


class ToggleRequest(BaseModel):
    is_active: bool


class IntegrationConfigDTO(BaseModel):
    """Integration config as returned to clients. The password is never included."""

    tenant_id: str
    username: str
    auth_token: str = Field(..., description="Masked; only the last 4 characters")
    agent_id: str
    is_active: bool
    auto_publish: bool
    publication_type: str
    trademark: Optional[str] = None
    default_phone: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_package_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, config: IntegrationConfig) -> "IntegrationConfigDTO":
        return cls(
            tenant_id=config.tenant_id,
            username=config.username,
            auth_token=_mask(config.auth_token),
            agent_id=config.agent_id,
            is_active=config.is_active,
            auto_publish=config.auto_publish,
            publication_type=config.publication_type.value,
            trademark=config.trademark,
            default_phone=config.default_phone,
            last_sync_at=config.last_sync_at,
            last_package_id=config.last_package_id,
            created_at=config.created_at,
            updated_at=config.updated_at,
        )


class AgentSettingsRequest(BaseModel):
    xe_owner_id: str
    major_phone: str
    other_phones: list[str] = Field(default_factory=list)
    is_active: bool = True
    auto_publish: bool = True
    publication_type: str = "BASIC"


class AgentSettingsDTO(BaseModel):
    agent_id: str
    xe_owner_id: str
    major_phone: str
    other_phones: list[str] = Field(default_factory=list)
    is_active: bool
    auto_publish: bool
    publication_type: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, settings: AgentSettings) -> "AgentSettingsDTO":
        return cls(
            agent_id=settings.agent_id,
            xe_owner_id=settings.xe_owner_id,
            major_phone=settings.major_phone,
            other_phones=settings.other_phones,
            is_active=settings.is_active,
            auto_publish=settings.auto_publish,
            publication_type=settings.publication_type.value,
            created_at=settings.created_at,
            updated_at=settings.updated_at,
        )


# ========== Sync ==========


class SyncRequest(BaseModel):
    """Publish properties. No ids means every ACTIVE and PUBLIC property."""

    property_ids: Optional[list[str]] = None
    policy: SyncPolicy = SyncPolicy.INCREMENTAL


class RemoveRequest(BaseModel):
    property_ids: list[str] = Field(default_factory=list)


class ItemErrorDTO(BaseModel):
    property_id: str
    error: str


class PackageResultDTO(BaseModel):
    package_id: str
    status: str
    success: bool
    total_items: int
    success_count: int
    failure_count: int
    error_message: Optional[str] = None
    errors: list[ItemErrorDTO] = Field(default_factory=list)
    retry_of: Optional[str] = None

    @classmethod
    def from_domain(cls, result: PackageResult) -> "PackageResultDTO":
        return cls(**result.to_dict())


class AutoPublishResponse(BaseModel):
    published: bool
    result: Optional[PackageResultDTO] = None


# ========== History ==========


class SyncPackageDTO(BaseModel):
    package_id: str
    request_type: str
    policy: str
    status: str
    total_items: int
    success_count: int
    failure_count: int
    submitted_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_of: Optional[str] = None

    @classmethod
    def from_domain(cls, record: SyncPackageRecord) -> "SyncPackageDTO":
        return cls(
            package_id=record.package_id,
            request_type=record.request_type.value,
            policy=record.policy.value,
            status=record.status.value,
            total_items=record.total_items,
            success_count=record.success_count,
            failure_count=record.failure_count,
            submitted_at=record.submitted_at,
            processed_at=record.processed_at,
            error_message=record.error_message,
            retry_of=record.retry_of,
        )


class SyncItemDTO(BaseModel):
    property_id: str
    property_name: str
    ref_id: Optional[str] = None
    item_type: Optional[str] = None
    status: str
    error_message: Optional[str] = None
    xe_ad_id: Optional[str] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, item: SyncItemRecord) -> "SyncItemDTO":
        return cls(
            property_id=item.property_id,
            property_name=item.property_name,
            ref_id=item.ref_id,
            item_type=item.item_type,
            status=item.status.value,
            error_message=item.error_message,
            xe_ad_id=item.xe_ad_id,
            updated_at=item.updated_at,
        )


class HistoryResponse(BaseModel):
    items: list[SyncPackageDTO] = Field(default_factory=list)
    total: int
    limit: int
    offset: int
    has_more: bool

    @classmethod
    def from_domain(cls, page: HistoryPage) -> "HistoryResponse":
        return cls(
            items=[SyncPackageDTO.from_domain(r) for r in page.items],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
            has_more=page.has_more,
        )


class PackageDetailResponse(BaseModel):
    package: SyncPackageDTO
    items: list[SyncItemDTO] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, detail: PackageDetail) -> "PackageDetailResponse":
        return cls(
            package=SyncPackageDTO.from_domain(detail.package),
            items=[SyncItemDTO.from_domain(i) for i in detail.items],
        )


class WebhookRequest(BaseModel):
    """Per-item results pushed by XE.gr.

    Each entry carries ``refId`` and either ``status`` or ``success``, plus
    optional ``error`` and ``xeAdId``.
    """

    items: list[dict[str, Any]] = Field(default_factory=list)


# ========== Status / Stats ==========


class PropertyStatusDTO(BaseModel):
    property_id: str
    is_published: bool
    xe_ref_id: Optional[str] = None
    last_sync_at: Optional[datetime] = None
    last_sync_status: Optional[str] = None

    @classmethod
    def from_domain(cls, status: PropertyPublishStatus) -> "PropertyStatusDTO":
        return cls(
            property_id=status.property_id,
            is_published=status.is_published,
            xe_ref_id=status.xe_ref_id,
            last_sync_at=status.last_sync_at,
            last_sync_status=status.last_sync_status.value if status.last_sync_status else None,
        )


class PropertyStatusRequest(BaseModel):
    property_ids: list[str] = Field(default_factory=list)


class PropertyStatusBulkResponse(BaseModel):
    statuses: dict[str, PropertyStatusDTO] = Field(default_factory=dict)


class StatsResponse(BaseModel):
    total_syncs: int
    successful_syncs: int
    failed_syncs: int
    pending_syncs: int
    total_properties_synced: int
    last_sync_at: Optional[datetime] = None
    success_rate: float

    @classmethod
    def from_domain(cls, stats: SyncStats) -> "StatsResponse":
        return cls(
            total_syncs=stats.total_syncs,
            successful_syncs=stats.successful_syncs,
            failed_syncs=stats.failed_syncs,
            pending_syncs=stats.pending_syncs,
            total_properties_synced=stats.total_properties_synced,
            last_sync_at=stats.last_sync_at,
            success_rate=stats.success_rate,
        )
