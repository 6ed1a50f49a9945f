"""Domain entities for XE.gr portal synchronization.

These are pure data structures with no infrastructure dependencies.
They represent the integration configuration, the properties being
published, and the packages/items that record every exchange with the
portal.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ...api.exceptions import InvalidStateError


def format_phone(phone: str) -> str:
    """Normalize a phone number for the portal.

    Keeps digits and ``+``; numbers without a country code get the Greek
    ``+30`` prefix.
    """
    cleaned = re.sub(r"[^\d+]", "", phone)
    if cleaned and not cleaned.startswith("+") and not cleaned.startswith("00"):
        return "+30" + cleaned
    return cleaned


class RequestType(str, Enum):
    """Which portal endpoint a package targets."""

    ADD_ITEMS = "ADD_ITEMS"
    REMOVE_ITEMS = "REMOVE_ITEMS"


class SyncPolicy(str, Enum):
    """Portal policy applied to a package.

    RENEW_ALL_STOCK tells the portal that the package is the complete
    inventory, so listings absent from it are withdrawn.
    """

    INCREMENTAL = "INCREMENTAL"
    RENEW_ALL_STOCK = "RENEW_ALL_STOCK"


class PublicationType(str, Enum):
    BASIC = "BASIC"
    GOLD = "GOLD"


class SyncStatus(str, Enum):
    """Package lifecycle: PENDING -> PROCESSING -> {SUCCESS, FAILED}."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStatus.SUCCESS, SyncStatus.FAILED)


class ItemStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


# Allowed package transitions. Terminal states have no outgoing edges.
_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.PENDING: frozenset(
        {SyncStatus.PROCESSING, SyncStatus.SUCCESS, SyncStatus.FAILED}
    ),
    SyncStatus.PROCESSING: frozenset({SyncStatus.SUCCESS, SyncStatus.FAILED}),
    SyncStatus.SUCCESS: frozenset(),
    SyncStatus.FAILED: frozenset(),
}


# ============================================
# Configuration
# ============================================

@dataclass
class IntegrationConfig:
    """Per-tenant XE.gr credentials and publishing defaults.

    ``agent_id`` is the store/agent identifier the portal assigned to the
    agency; it is sent as the package ``storeId``.
    """

    tenant_id: str
    username: str
    password: str
    auth_token: str
    agent_id: str

    is_active: bool = False
    auto_publish: bool = False
    publication_type: PublicationType = PublicationType.BASIC
    trademark: str | None = None
    default_phone: str | None = None

    last_sync_at: datetime | None = None
    last_package_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class AgentSettings:
    """Per-agent publishing identity on the portal."""

    tenant_id: str
    agent_id: str
    xe_owner_id: str
    major_phone: str
    other_phones: list[str] = field(default_factory=list)
    is_active: bool = True
    auto_publish: bool = True
    publication_type: PublicationType = PublicationType.BASIC
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ============================================
# Property (externally owned)
# ============================================

@dataclass
class Property:
    """A listing owned by the CRM.

    Only the publication fields at the bottom are written by this service;
    everything else is read-only input to the package builder.
    """

    id: str
    tenant_id: str
    name: str | None = None

    property_type: str | None = None
    transaction_type: str | None = None
    price: float | None = None
    area_sqm: float | None = None
    plot_size_sqm: float | None = None
    year_built: int | None = None
    floor: str | None = None
    floors_total: int | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    elevator: bool | None = None
    energy_class: str | None = None
    heating_type: str | None = None
    furnished: str | None = None
    condition: str | None = None
    orientation: list[str] = field(default_factory=list)
    description: str | None = None

    # Location
    address_street: str | None = None
    postal_code: str | None = None
    district: str | None = None
    city: str | None = None
    municipality: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    amenities: dict[str, Any] = field(default_factory=dict)
    images: list[str] = field(default_factory=list)

    status: str = "ACTIVE"
    portal_visibility: str = "PRIVATE"
    assigned_agent_id: str | None = None

    # Publication fields
    is_published: bool = False
    xe_ref_id: str | None = None
    last_sync_at: datetime | None = None
    last_sync_status: ItemStatus | None = None
    last_package_id: str | None = None

    @property
    def is_publicly_listable(self) -> bool:
        """Business rule: only active, public properties go to the portal in bulk."""
        return self.status == "ACTIVE" and self.portal_visibility == "PUBLIC"


# ============================================
# Package under construction
# ============================================

@dataclass
class PackageItem:
    """One property inside a package.

    ``payload`` is the serialized Unified Ad item for eligible ADD items.
    ``failure_reason`` is set when the builder already knows the item
    cannot be sent; such items never reach the portal.
    """

    property_id: str
    property_name: str
    ref_id: str | None
    item_type: str
    payload: dict[str, Any] | None = None
    failure_reason: str | None = None

    @property
    def is_eligible(self) -> bool:
        return self.failure_reason is None


@dataclass
class SyncPackage:
    """In-memory package descriptor produced by the builder."""

    package_id: str
    tenant_id: str
    request_type: RequestType
    policy: SyncPolicy
    items: list[PackageItem]
    created_at: datetime
    retry_of: str | None = None

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def eligible_items(self) -> list[PackageItem]:
        return [item for item in self.items if item.is_eligible]

    @property
    def pre_failed_items(self) -> list[PackageItem]:
        return [item for item in self.items if not item.is_eligible]

    @property
    def property_ids(self) -> list[str]:
        return [item.property_id for item in self.items]


# ============================================
# Portal responses
# ============================================

@dataclass
class ItemOutcome:
    """Portal verdict for a single listing, keyed by ref id."""

    ref_id: str
    status: ItemStatus
    error_message: str | None = None
    xe_ad_id: str | None = None


@dataclass
class SubmissionResponse:
    """What the portal told us about a package.

    An empty ``outcomes`` map means the portal only acknowledged receipt;
    final results arrive later through reconciliation.
    """

    package_id: str
    outcomes: dict[str, ItemOutcome] = field(default_factory=dict)
    status_code: int | None = None
    message: str | None = None
    known: bool = True

    @property
    def is_synchronous(self) -> bool:
        return bool(self.outcomes)


# ============================================
# Persisted records
# ============================================

@dataclass
class SyncItemRecord:
    package_id: str
    property_id: str
    property_name: str
    ref_id: str | None
    status: ItemStatus
    item_type: str | None = None
    error_message: str | None = None
    xe_ad_id: str | None = None
    updated_at: datetime | None = None


@dataclass
class SyncPackageRecord:
    """Stored package row.

    Counts satisfy ``success_count + failure_count <= total_items`` and reach
    equality once the status is terminal.
    """

    package_id: str
    tenant_id: str
    request_type: RequestType
    policy: SyncPolicy
    status: SyncStatus
    total_items: int
    success_count: int = 0
    failure_count: int = 0
    submitted_at: datetime | None = None
    processed_at: datetime | None = None
    error_message: str | None = None
    retry_of: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def pending_count(self) -> int:
        return self.total_items - self.success_count - self.failure_count

    def transition_to(self, status: SyncStatus) -> None:
        """Move to ``status``, refusing to leave a terminal state."""
        if status == self.status:
            return
        if status not in _TRANSITIONS[self.status]:
            raise InvalidStateError(
                f"Package {self.package_id} cannot move from "
                f"{self.status.value} to {status.value}",
                current_state=self.status.value,
            )
        self.status = status

    def recount(self, items: list[SyncItemRecord]) -> None:
        self.total_items = len(items)
        self.success_count = sum(1 for i in items if i.status == ItemStatus.SUCCESS)
        self.failure_count = sum(1 for i in items if i.status == ItemStatus.FAILED)


def derive_package_status(items: list[SyncItemRecord]) -> SyncStatus:
    """Package status implied by its items.

    Any PENDING item keeps the package PROCESSING. Otherwise the package is
    FAILED only if every item failed; partial success is SUCCESS with
    accurate counts. Transport failures are handled by the submitter
    before this rule applies.
    """
    if not items:
        return SyncStatus.FAILED
    if any(item.status == ItemStatus.PENDING for item in items):
        return SyncStatus.PROCESSING
    if all(item.status == ItemStatus.FAILED for item in items):
        return SyncStatus.FAILED
    return SyncStatus.SUCCESS


@dataclass
class PublicationUpdate:
    """Change to a property's publication fields caused by one item outcome."""

    property_id: str
    package_id: str
    request_type: RequestType
    status: ItemStatus
    ref_id: str | None
    synced_at: datetime

    @classmethod
    def from_item(
        cls,
        item: SyncItemRecord,
        request_type: RequestType,
        synced_at: datetime,
    ) -> "PublicationUpdate":
        return cls(
            property_id=item.property_id,
            package_id=item.package_id,
            request_type=request_type,
            status=item.status,
            ref_id=item.ref_id,
            synced_at=synced_at,
        )

    def apply_to(self, prop: Property) -> None:
        """Apply this update to an in-memory property.

        SUCCESS flips publication state and the ref id. FAILED and PENDING
        only touch the sync timestamp and status.
        """
        prop.last_sync_at = self.synced_at
        prop.last_sync_status = self.status
        prop.last_package_id = self.package_id
        if self.status != ItemStatus.SUCCESS:
            return
        if self.request_type == RequestType.ADD_ITEMS:
            prop.is_published = True
            prop.xe_ref_id = self.ref_id
        else:
            prop.is_published = False
            prop.xe_ref_id = None


@dataclass
class PackageOutcome:
    """Everything a single outcome transaction writes.

    ``skip_superseded`` leaves alone any property whose latest submission is
    a package submitted after this one, so late reconciliation of an older
    package never overwrites a newer result. Properties last touched by this
    package, an older one, or none at all are updated.
    """

    package: SyncPackageRecord
    items: list[SyncItemRecord]
    publication_updates: list[PublicationUpdate] = field(default_factory=list)
    skip_superseded: bool = False
    touch_integration: bool = False


# ============================================
# Results and read models
# ============================================

@dataclass
class PackageResult:
    """Result object returned by submit and retry operations."""

    package_id: str
    status: SyncStatus
    total_items: int
    success_count: int
    failure_count: int
    error_message: str | None = None
    errors: list[dict[str, str]] = field(default_factory=list)
    retry_of: str | None = None

    @property
    def success(self) -> bool:
        return self.status != SyncStatus.FAILED

    @classmethod
    def from_record(
        cls, record: SyncPackageRecord, items: list[SyncItemRecord]
    ) -> "PackageResult":
        return cls(
            package_id=record.package_id,
            status=record.status,
            total_items=record.total_items,
            success_count=record.success_count,
            failure_count=record.failure_count,
            error_message=record.error_message,
            errors=[
                {"property_id": i.property_id, "error": i.error_message or ""}
                for i in items
                if i.status == ItemStatus.FAILED
            ],
            retry_of=record.retry_of,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "package_id": self.package_id,
            "status": self.status.value,
            "success": self.success,
            "total_items": self.total_items,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "error_message": self.error_message,
            "errors": self.errors,
            "retry_of": self.retry_of,
        }


@dataclass
class PackageDetail:
    package: SyncPackageRecord
    items: list[SyncItemRecord]


@dataclass
class HistoryPage:
    items: list[SyncPackageRecord]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


@dataclass
class PropertyPublishStatus:
    property_id: str
    is_published: bool
    xe_ref_id: str | None
    last_sync_at: datetime | None
    last_sync_status: ItemStatus | None

    @classmethod
    def from_property(cls, prop: Property) -> "PropertyPublishStatus":
        return cls(
            property_id=prop.id,
            is_published=prop.is_published,
            xe_ref_id=prop.xe_ref_id,
            last_sync_at=prop.last_sync_at,
            last_sync_status=prop.last_sync_status,
        )


@dataclass
class SyncStats:
    """Aggregate package counts for a tenant."""

    total_syncs: int = 0
    successful_syncs: int = 0
    failed_syncs: int = 0
    pending_syncs: int = 0
    total_properties_synced: int = 0
    last_sync_at: datetime | None = None

    @property
    def success_rate(self) -> float:
        if self.total_syncs == 0:
            return 0.0
        return self.successful_syncs / self.total_syncs

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_syncs": self.total_syncs,
            "successful_syncs": self.successful_syncs,
            "failed_syncs": self.failed_syncs,
            "pending_syncs": self.pending_syncs,
            "total_properties_synced": self.total_properties_synced,
            "last_sync_at": self.last_sync_at.isoformat() if self.last_sync_at else None,
            "success_rate": round(self.success_rate, 4),
        }


@dataclass
class SyncEvent:
    """Notification emitted when a package reaches a terminal state."""

    tenant_id: str
    package_id: str
    request_type: RequestType
    status: SyncStatus
    total_items: int
    success_count: int
    failure_count: int
    error_message: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def category(self) -> str:
        return "xe_sync_completed" if self.status == SyncStatus.SUCCESS else "xe_sync_failed"

    @classmethod
    def from_record(cls, record: SyncPackageRecord) -> "SyncEvent":
        return cls(
            tenant_id=record.tenant_id,
            package_id=record.package_id,
            request_type=record.request_type,
            status=record.status,
            total_items=record.total_items,
            success_count=record.success_count,
            failure_count=record.failure_count,
            error_message=record.error_message,
        )
