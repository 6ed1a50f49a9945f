"""In-memory port implementations and fixtures for XE.gr sync tests."""

import copy
import itertools
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from src.oikion.api.exceptions import InvalidStateError
from src.oikion.xe.adapters import InProcessLockManager, XePropertyMapper
from src.oikion.xe.domain.entities import (
    AgentSettings,
    IntegrationConfig,
    ItemOutcome,
    ItemStatus,
    PackageOutcome,
    Property,
    SubmissionResponse,
    SyncEvent,
    SyncPackage,
    SyncStats,
    SyncStatus,
)
from src.oikion.xe.domain.ports import (
    IIntegrationRepository,
    INotifier,
    IPortalGateway,
    IPropertyRepository,
    ISyncRepository,
)
from src.oikion.xe.use_cases import (
    BuildPackageUseCase,
    PublishPropertiesUseCase,
    ReconcilePackageUseCase,
    RetryPackageUseCase,
    SubmitPackageUseCase,
)

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


class InMemoryPropertyRepository(IPropertyRepository):
    def __init__(self):
        self.properties: dict[str, Property] = {}

    def add(self, prop: Property) -> Property:
        self.properties[prop.id] = prop
        return prop

    async def get_by_ids(self, tenant_id, property_ids):
        return [
            copy.deepcopy(p)
            for pid in property_ids
            if (p := self.properties.get(pid)) and p.tenant_id == tenant_id
        ]

    async def get_by_id(self, tenant_id, property_id):
        found = await self.get_by_ids(tenant_id, [property_id])
        return found[0] if found else None

    async def list_publishable(self, tenant_id):
        return [
            copy.deepcopy(p)
            for p in self.properties.values()
            if p.tenant_id == tenant_id and p.is_publicly_listable
        ]

    async def count_published(self, tenant_id):
        return sum(
            1 for p in self.properties.values() if p.tenant_id == tenant_id and p.is_published
        )


class InMemoryIntegrationRepository(IIntegrationRepository):
    def __init__(self):
        self.configs: dict[str, IntegrationConfig] = {}
        self.agents: dict[tuple[str, str], AgentSettings] = {}

    async def get_config(self, tenant_id):
        config = self.configs.get(tenant_id)
        return copy.deepcopy(config) if config else None

    async def save_config(self, config):
        stored = copy.deepcopy(config)
        stored.updated_at = datetime.now(timezone.utc)
        stored.created_at = stored.created_at or stored.updated_at
        self.configs[config.tenant_id] = stored
        return copy.deepcopy(stored)

    async def delete_config(self, tenant_id):
        if tenant_id not in self.configs:
            return False
        del self.configs[tenant_id]
        for key in [k for k in self.agents if k[0] == tenant_id]:
            del self.agents[key]
        return True

    async def list_agent_settings(self, tenant_id):
        return [copy.deepcopy(s) for (t, _), s in sorted(self.agents.items()) if t == tenant_id]

    async def get_agent_settings(self, tenant_id, agent_id):
        settings = self.agents.get((tenant_id, agent_id))
        return copy.deepcopy(settings) if settings else None

    async def save_agent_settings(self, settings):
        self.agents[(settings.tenant_id, settings.agent_id)] = copy.deepcopy(settings)
        return copy.deepcopy(settings)

    async def delete_agent_settings(self, tenant_id, agent_id):
        return self.agents.pop((tenant_id, agent_id), None) is not None


class InMemorySyncRepository(ISyncRepository):
    """Mirrors PostgresSyncRepository, including the terminal-state guard
    and the superseded-package guard on property updates."""

    def __init__(self, properties: InMemoryPropertyRepository, integrations: InMemoryIntegrationRepository):
        self.property_store = properties
        self.integration_store = integrations
        self.packages = {}
        self.items = {}
        self.outcomes: list[PackageOutcome] = []
        self.checked: dict[str, int] = {}
        self._polls = itertools.count()

    async def create_package(self, record, items):
        self.packages[record.package_id] = copy.deepcopy(record)
        self.items[record.package_id] = copy.deepcopy(items)

    async def save_outcome(self, outcome):
        package = outcome.package
        stored = self.packages[package.package_id]
        if stored.is_terminal:
            raise InvalidStateError(
                f"Package {package.package_id} is already terminal", current_state="TERMINAL"
            )
        self.packages[package.package_id] = copy.deepcopy(package)

        by_property = {i.property_id: i for i in self.items[package.package_id]}
        for item in outcome.items:
            by_property[item.property_id].__dict__.update(copy.deepcopy(item).__dict__)

        for update in outcome.publication_updates:
            prop = self.property_store.properties.get(update.property_id)
            if prop is None or prop.tenant_id != package.tenant_id:
                continue
            if outcome.skip_superseded and self._superseded(prop, package):
                continue
            update.apply_to(prop)

        if outcome.touch_integration:
            config = self.integration_store.configs.get(package.tenant_id)
            if config:
                config.last_sync_at = package.submitted_at
                config.last_package_id = package.package_id

        self.outcomes.append(copy.deepcopy(outcome))

    async def get_package(self, tenant_id, package_id):
        record = self.packages.get(package_id)
        if record is None or record.tenant_id != tenant_id:
            return None
        return copy.deepcopy(record)

    async def get_items(self, package_id):
        return copy.deepcopy(self.items.get(package_id, []))

    async def list_packages(self, tenant_id, status, limit, offset):
        records = [
            r
            for r in self.packages.values()
            if r.tenant_id == tenant_id and (status is None or r.status == status)
        ]
        records.sort(key=lambda r: (r.submitted_at, r.package_id), reverse=True)
        return copy.deepcopy(records[offset:offset + limit]), len(records)

    async def list_unresolved(self, older_than_seconds, limit):
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=older_than_seconds)
        records = [
            r for r in self.packages.values() if not r.is_terminal and r.submitted_at <= cutoff
        ]
        records.sort(
            key=lambda r: (
                r.package_id in self.checked,
                self.checked.get(r.package_id, 0),
                r.submitted_at,
            )
        )
        return copy.deepcopy(records[:limit])

    async def mark_checked(self, package_id):
        self.checked[package_id] = next(self._polls)

    def _superseded(self, prop, package):
        latest = self.packages.get(prop.last_package_id)
        return (
            latest is not None
            and latest.package_id != package.package_id
            and latest.submitted_at > package.submitted_at
        )

    async def get_stats(self, tenant_id):
        records = [r for r in self.packages.values() if r.tenant_id == tenant_id]
        return SyncStats(
            total_syncs=len(records),
            successful_syncs=sum(1 for r in records if r.status == SyncStatus.SUCCESS),
            failed_syncs=sum(1 for r in records if r.status == SyncStatus.FAILED),
            pending_syncs=sum(1 for r in records if not r.is_terminal),
            last_sync_at=max((r.submitted_at for r in records), default=None),
        )


class FakeGateway(IPortalGateway):
    """Scriptable portal.

    By default every eligible item succeeds synchronously. Set ``ack`` for
    an acknowledgement without results, ``error`` to fail the transport,
    or ``item_status`` to decide per property id.
    """

    def __init__(self):
        self.ack = False
        self.error: Exception | None = None
        self.item_status: dict[str, ItemStatus] = {}
        self.item_errors: dict[str, str] = {}
        self.submitted: list[SyncPackage] = []

        self.status_outcomes: dict[str, ItemOutcome] = {}
        self.status_known = True
        self.status_error: Exception | None = None
        self.status_calls: list[str] = []

    async def submit(self, config, package):
        self.submitted.append(package)
        if self.error:
            raise self.error
        if self.ack:
            return SubmissionResponse(package_id=package.package_id, status_code=202)

        outcomes = {}
        for item in package.eligible_items:
            status = self.item_status.get(item.property_id, ItemStatus.SUCCESS)
            outcomes[item.ref_id] = ItemOutcome(
                ref_id=item.ref_id,
                status=status,
                error_message=self.item_errors.get(item.property_id),
                xe_ad_id=f"xe-{item.property_id}" if status == ItemStatus.SUCCESS else None,
            )
        return SubmissionResponse(package_id=package.package_id, outcomes=outcomes, status_code=200)

    async def fetch_status(self, config, package_id):
        self.status_calls.append(package_id)
        if self.status_error:
            raise self.status_error
        return SubmissionResponse(
            package_id=package_id,
            outcomes=dict(self.status_outcomes),
            known=self.status_known,
        )


class RecordingNotifier(INotifier):
    def __init__(self):
        self.events: list[SyncEvent] = []

    async def notify(self, event):
        self.events.append(event)


@dataclass
class SyncWorld:
    """All fakes plus the use cases wired over them."""

    properties: InMemoryPropertyRepository
    integrations: InMemoryIntegrationRepository
    sync_repo: InMemorySyncRepository
    gateway: FakeGateway
    notifier: RecordingNotifier
    locks: InProcessLockManager
    builder: BuildPackageUseCase
    submitter: SubmitPackageUseCase
    reconciler: ReconcilePackageUseCase
    retry: RetryPackageUseCase
    publisher: PublishPropertiesUseCase

    def prop(self, property_id: str) -> Property:
        return self.properties.properties[property_id]

    def add_property(self, property_id: str, tenant_id: str = TENANT, **overrides) -> Property:
        return self.properties.add(make_property(property_id, tenant_id, **overrides))

    def add_agent(self, agent_id: str, tenant_id: str = TENANT, **overrides) -> AgentSettings:
        settings = make_agent(agent_id, tenant_id, **overrides)
        self.integrations.agents[(tenant_id, agent_id)] = settings
        return settings

    def set_config(self, tenant_id: str = TENANT, **overrides) -> IntegrationConfig:
        config = make_config(tenant_id, **overrides)
        self.integrations.configs[tenant_id] = config
        return config


def make_property(property_id: str, tenant_id: str = TENANT, **overrides) -> Property:
    values = dict(
        id=property_id,
        tenant_id=tenant_id,
        name=f"Apartment {property_id}",
        property_type="APARTMENT",
        transaction_type="SALE",
        price=150000.0,
        area_sqm=85.0,
        bedrooms=2,
        floor="3",
        city="Athens",
        district="Kolonaki",
        images=["https://cdn.example.com/a.jpg"],
        status="ACTIVE",
        portal_visibility="PUBLIC",
        assigned_agent_id="agent-1",
    )
    values.update(overrides)
    return Property(**values)


def make_config(tenant_id: str = TENANT, **overrides) -> IntegrationConfig:
    values = dict(
        tenant_id=tenant_id,
        username="agency",
        password="s3cret-pass",
        auth_token="token-1234567890",
        agent_id="store-77",
        is_active=True,
        auto_publish=True,
    )
    values.update(overrides)
    return IntegrationConfig(**values)


def make_agent(agent_id: str = "agent-1", tenant_id: str = TENANT, **overrides) -> AgentSettings:
    values = dict(
        tenant_id=tenant_id,
        agent_id=agent_id,
        xe_owner_id=f"owner-{agent_id}",
        major_phone="+302101234567",
    )
    values.update(overrides)
    return AgentSettings(**values)


@pytest.fixture
def world() -> SyncWorld:
    """A tenant with an active integration, one agent, and three properties."""
    properties = InMemoryPropertyRepository()
    integrations = InMemoryIntegrationRepository()
    sync_repo = InMemorySyncRepository(properties, integrations)
    gateway = FakeGateway()
    notifier = RecordingNotifier()
    locks = InProcessLockManager()

    integrations.configs[TENANT] = make_config()
    integrations.agents[(TENANT, "agent-1")] = make_agent()
    for pid in ("p1", "p2", "p3"):
        properties.add(make_property(pid))

    builder = BuildPackageUseCase(properties, integrations, XePropertyMapper())
    submitter = SubmitPackageUseCase(
        sync_repo=sync_repo,
        integration_repo=integrations,
        gateway=gateway,
        lock_manager=locks,
        notifier=notifier,
        lock_timeout=1.0,
    )
    return SyncWorld(
        properties=properties,
        integrations=integrations,
        sync_repo=sync_repo,
        gateway=gateway,
        notifier=notifier,
        locks=locks,
        builder=builder,
        submitter=submitter,
        reconciler=ReconcilePackageUseCase(sync_repo, integrations, gateway, notifier),
        retry=RetryPackageUseCase(sync_repo, builder, submitter),
        publisher=PublishPropertiesUseCase(properties, integrations, builder, submitter),
    )
