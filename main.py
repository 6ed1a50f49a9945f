#!/usr/bin/env python3
"""Oikion XE.gr Sync CLI.

Operator tooling for inspecting and repairing a tenant's XE.gr sync
history from the command line.

Architecture:
    - Same use cases and adapters as the HTTP API
    - XeClient as the shared HTTP layer for portal calls
    - PostgreSQL through an asyncpg pool

Environment Variables Required:
    - DATABASE_URL: PostgreSQL connection string
    - XE_GR_BASE_URL: XE.gr import API base URL (optional)

Example Usage:
    $ python main.py --tenant t1 history --status FAILED
    $ python main.py --tenant t1 detail OIKION-T1-1700000000000-ABC123
    $ python main.py --tenant t1 retry OIKION-T1-1700000000000-ABC123
    $ python main.py --tenant t1 reconcile OIKION-T1-1700000000000-ABC123
    $ python main.py --tenant t1 stats
    $ python main.py --tenant t1 sync p1 p2
"""
import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timezone

from dotenv import load_dotenv

load_dotenv()

from src.oikion.api import OikionError, XeClient, close_pool, create_pool
from src.oikion.xe.adapters import (
    LoggingNotifier,
    PostgresAdvisoryLockManager,
    PostgresIntegrationRepository,
    PostgresPropertyRepository,
    PostgresSyncRepository,
    XePortalGateway,
    XePropertyMapper,
)
from src.oikion.xe.domain.entities import PackageResult, SyncPolicy, SyncStatus
from src.oikion.xe.use_cases import (
    BuildPackageUseCase,
    GetPackageDetailUseCase,
    GetSyncStatsUseCase,
    ListHistoryUseCase,
    PublishPropertiesUseCase,
    ReconcilePackageUseCase,
    RetryPackageUseCase,
    SubmitPackageUseCase,
)


def _fmt(value) -> str:
    if value is None:
        return "-"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M:%S")
    return str(value)


def print_result(result: PackageResult) -> None:
    print(f"Package:   {result.package_id}")
    print(f"Status:    {result.status.value}")
    print(f"Items:     {result.success_count} succeeded, {result.failure_count} failed "
          f"of {result.total_items}")
    if result.retry_of:
        print(f"Retry of:  {result.retry_of}")
    if result.error_message:
        print(f"Error:     {result.error_message}")
    for error in result.errors:
        print(f"  - {error['property_id']}: {error['error']}")


class Services:
    """Use cases wired to PostgreSQL and the XE.gr client."""

    def __init__(self, pool, client: XeClient):
        self.sync_repo = PostgresSyncRepository(pool)
        property_repo = PostgresPropertyRepository(pool)
        integration_repo = PostgresIntegrationRepository(pool)
        gateway = XePortalGateway(client)
        notifier = LoggingNotifier()

        self.builder = BuildPackageUseCase(property_repo, integration_repo, XePropertyMapper())
        self.submitter = SubmitPackageUseCase(
            sync_repo=self.sync_repo,
            integration_repo=integration_repo,
            gateway=gateway,
            lock_manager=PostgresAdvisoryLockManager(pool),
            notifier=notifier,
            lock_timeout=float(os.getenv("XE_LOCK_TIMEOUT_SECONDS", "30")),
        )
        self.history = ListHistoryUseCase(self.sync_repo)
        self.detail = GetPackageDetailUseCase(self.sync_repo)
        self.retry = RetryPackageUseCase(self.sync_repo, self.builder, self.submitter)
        self.reconcile = ReconcilePackageUseCase(
            self.sync_repo, integration_repo, gateway, notifier
        )
        self.stats = GetSyncStatsUseCase(self.sync_repo, property_repo)
        self.publisher = PublishPropertiesUseCase(
            property_repo, integration_repo, self.builder, self.submitter
        )


async def run_command(args: argparse.Namespace, services: Services) -> None:
    tenant = args.tenant

    if args.command == "history":
        status = SyncStatus(args.status) if args.status else None
        page = await services.history.execute(tenant, status, args.limit, args.offset)
        print(f"{'Package':<45} {'Type':<13} {'Status':<11} {'OK':>4} {'Fail':>5} {'Submitted':<20}")
        print("-" * 102)
        for p in page.items:
            print(f"{p.package_id:<45} {p.request_type.value:<13} {p.status.value:<11} "
                  f"{p.success_count:>4} {p.failure_count:>5} {_fmt(p.submitted_at):<20}")
        print(f"\n{len(page.items)} of {page.total} packages"
              + (" (more available)" if page.has_more else ""))

    elif args.command == "detail":
        detail = await services.detail.execute(tenant, args.package_id)
        p = detail.package
        print(f"Package:   {p.package_id}")
        print(f"Type:      {p.request_type.value} ({p.policy.value})")
        print(f"Status:    {p.status.value}")
        print(f"Submitted: {_fmt(p.submitted_at)}   Processed: {_fmt(p.processed_at)}")
        if p.error_message:
            print(f"Error:     {p.error_message}")
        print()
        for item in detail.items:
            print(f"  {item.status.value:<8} {item.property_id:<38} {_fmt(item.ref_id):<40} "
                  f"{_fmt(item.error_message)}")

    elif args.command == "retry":
        print_result(await services.retry.execute(tenant, args.package_id))

    elif args.command == "reconcile":
        record = await services.reconcile.execute(tenant, args.package_id)
        print(f"{record.package_id}: {record.status.value} "
              f"({record.success_count} succeeded, {record.failure_count} failed, "
              f"{record.pending_count} pending)")

    elif args.command == "stats":
        for key, value in (await services.stats.execute(tenant)).to_dict().items():
            print(f"{key:<25} {_fmt(value)}")

    elif args.command == "sync":
        policy = SyncPolicy.RENEW_ALL_STOCK if args.renew_all else SyncPolicy.INCREMENTAL
        print_result(await services.publisher.publish(tenant, args.property_ids or None, policy))


async def run(args: argparse.Namespace) -> int:
    start_time = datetime.now(timezone.utc)

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        print("[Main] DATABASE_URL environment variable is required")
        return 1

    pool = await create_pool(database_url, min_size=1, max_size=4)
    try:
        async with XeClient() as client:
            await run_command(args, Services(pool, client))
    except OikionError as e:
        print(f"[Main] {e.__class__.__name__}: {e.message}")
        return 1
    finally:
        await close_pool(pool)

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    print(f"\n[Main] Completed in {duration:.1f} seconds")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspect and repair XE.gr sync packages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --tenant t1 history                 # Latest 20 packages
  python main.py --tenant t1 history --status FAILED # Failed packages only
  python main.py --tenant t1 retry PACKAGE_ID        # Resubmit a FAILED package
  python main.py --tenant t1 stats                   # Sync statistics
        """
    )
    parser.add_argument("--tenant", required=True, help="Tenant (organization) id")
    parser.add_argument("--log-level", default=os.getenv("LOG_LEVEL", "WARNING"))

    commands = parser.add_subparsers(dest="command", required=True)

    history = commands.add_parser("history", help="List sync packages, newest first")
    history.add_argument("--status", choices=[s.value for s in SyncStatus])
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--offset", type=int, default=0)

    for name, help_text in (
        ("detail", "Show a package and its items"),
        ("retry", "Retry a FAILED package"),
        ("reconcile", "Fetch outcomes for a PENDING/PROCESSING package"),
    ):
        command = commands.add_parser(name, help=help_text)
        command.add_argument("package_id")

    commands.add_parser("stats", help="Show sync statistics")

    sync = commands.add_parser("sync", help="Publish properties (all public ones if none given)")
    sync.add_argument("property_ids", nargs="*")
    sync.add_argument("--renew-all", action="store_true", help="Use the RENEW_ALL_STOCK policy")

    return parser


def main():
    args = build_parser().parse_args()
    logging.basicConfig(
        level=args.log_level.upper(),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
