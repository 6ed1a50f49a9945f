#!/usr/bin/env python3
"""Background reconciler for XE.gr sync packages.

Long-running process that periodically asks XE.gr for the outcome of
packages still PENDING or PROCESSING and applies them. Designed to run
next to the API server as its own container.

Architecture:
    - Simple asyncio loop with sleep (no external scheduler)
    - Graceful shutdown on SIGTERM/SIGINT
    - Configurable via environment variables
    - Health check endpoint via optional HTTP server

Environment Variables:
    RECONCILE_INTERVAL_SECONDS: Seconds between runs (default: 300)
    RECONCILE_MIN_AGE_SECONDS: Only packages submitted at least this long ago (default: 60)
    RECONCILE_BATCH_SIZE: Packages per run (default: 50)
    RECONCILE_ON_STARTUP: Run immediately on startup (default: true)
    HEALTH_CHECK_PORT: Port for health check endpoint (default: 8080, 0 to disable)
    DATABASE_URL, XE_GR_BASE_URL, XE_GR_TIMEOUT_SECONDS, XE_GR_MAX_RETRIES

Example:
    RECONCILE_INTERVAL_SECONDS=120 python reconciler.py
"""
import asyncio
import json
import logging
import os
import signal
import sys
from datetime import datetime, timedelta, timezone
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from src.oikion.api import ConfigurationError, OikionError, XeClient, close_pool, create_pool
from src.oikion.xe.adapters import (
    LoggingNotifier,
    PostgresIntegrationRepository,
    PostgresSyncRepository,
    XePortalGateway,
)
from src.oikion.xe.domain.ports import ISyncRepository
from src.oikion.xe.use_cases import ReconcilePackageUseCase

logger = logging.getLogger(__name__)

# ============================================
# Configuration
# ============================================

class ReconcilerConfig:
    """Configuration loaded from environment variables."""

    def __init__(self):
        try:
            self.interval_seconds = int(os.getenv("RECONCILE_INTERVAL_SECONDS", "300"))
            self.min_age_seconds = int(os.getenv("RECONCILE_MIN_AGE_SECONDS", "60"))
            self.batch_size = int(os.getenv("RECONCILE_BATCH_SIZE", "50"))
            self.health_check_port = int(os.getenv("HEALTH_CHECK_PORT", "8080"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid reconciler setting: {e}", cause=e)
        self.run_on_startup = os.getenv("RECONCILE_ON_STARTUP", "true").lower() == "true"

        if self.interval_seconds <= 0 or self.batch_size <= 0:
            raise ConfigurationError(
                "RECONCILE_INTERVAL_SECONDS and RECONCILE_BATCH_SIZE must be positive"
            )

    def __repr__(self):
        return (
            f"ReconcilerConfig("
            f"interval={self.interval_seconds}s, "
            f"min_age={self.min_age_seconds}s, "
            f"batch={self.batch_size}, "
            f"startup={self.run_on_startup}, "
            f"health_port={self.health_check_port})"
        )


# ============================================
# Reconcile Logic
# ============================================

async def reconcile_once(
    config: ReconcilerConfig,
    sync_repo: ISyncRepository,
    use_case: ReconcilePackageUseCase,
) -> dict:
    """Run a single reconcile pass.

    A failure on one package is logged and does not stop the pass.

    Returns:
        Dict with counts for the pass
    """
    start_time = datetime.now(timezone.utc)
    results = {
        "started_at": start_time.isoformat(),
        "checked": 0,
        "resolved": 0,
        "errors": 0,
        "success": True,
    }

    packages = await sync_repo.list_unresolved(config.min_age_seconds, config.batch_size)
    logger.info(f"Reconciling {len(packages)} unresolved packages")

    for package in packages:
        results["checked"] += 1
        try:
            record = await use_case.execute(package.tenant_id, package.package_id)
            if record.is_terminal:
                results["resolved"] += 1
        except OikionError as e:
            results["errors"] += 1
            logger.error(f"Reconcile of {package.package_id} failed: {e}")

    results["success"] = results["errors"] == 0
    end_time = datetime.now(timezone.utc)
    results["completed_at"] = end_time.isoformat()
    results["duration_seconds"] = (end_time - start_time).total_seconds()
    return results


# ============================================
# Health Check Server
# ============================================

class HealthState:
    """Shared state for health checks."""

    def __init__(self):
        self.last_run_at: Optional[datetime] = None
        self.last_run_success: bool = False
        self.total_runs: int = 0
        self.failed_runs: int = 0
        self.started_at: datetime = datetime.now(timezone.utc)

    def record(self, results: dict) -> None:
        self.total_runs += 1
        self.last_run_at = datetime.now(timezone.utc)
        self.last_run_success = results["success"]
        if not results["success"]:
            self.failed_runs += 1


async def health_check_handler(reader, writer, state: HealthState):
    """Handle HTTP health check requests."""
    await reader.read(1024)

    uptime = (datetime.now(timezone.utc) - state.started_at).total_seconds()
    status = "healthy" if state.last_run_success or state.total_runs == 0 else "unhealthy"

    body = json.dumps({
        "status": status,
        "uptime_seconds": round(uptime),
        "total_runs": state.total_runs,
        "failed_runs": state.failed_runs,
        "last_run_at": state.last_run_at.isoformat() if state.last_run_at else "never",
    })

    http_status = 200 if status == "healthy" else 503
    response = (
        f"HTTP/1.1 {http_status} {'OK' if http_status == 200 else 'Service Unavailable'}\r\n"
        f"Content-Type: application/json\r\n"
        f"Content-Length: {len(body)}\r\n"
        f"Connection: close\r\n"
        f"\r\n"
        f"{body}"
    )

    writer.write(response.encode())
    await writer.drain()
    writer.close()
    await writer.wait_closed()


async def start_health_server(port: int, state: HealthState):
    """Start the health check HTTP server."""
    if port <= 0:
        return None

    async def handler(reader, writer):
        await health_check_handler(reader, writer, state)

    server = await asyncio.start_server(handler, "0.0.0.0", port)
    logger.info(f"Health check server listening on port {port}")
    return server


# ============================================
# Main Loop
# ============================================

async def reconciler_loop(
    config: ReconcilerConfig,
    sync_repo: ISyncRepository,
    use_case: ReconcilePackageUseCase,
    health_state: HealthState,
    shutdown_event: asyncio.Event,
):
    """Main loop: run, then wait for the interval or shutdown."""

    async def run():
        try:
            results = await reconcile_once(config, sync_repo, use_case)
        except OikionError as e:
            logger.error(f"Reconcile pass failed: {e}")
            results = {"success": False, "error": str(e)}
        health_state.record(results)
        logger.info(f"Reconcile pass complete: {results}")

    if config.run_on_startup:
        await run()

    while not shutdown_event.is_set():
        next_run = datetime.now(timezone.utc) + timedelta(seconds=config.interval_seconds)
        logger.info(f"Next reconcile at {next_run.isoformat()}")
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=config.interval_seconds)
            break
        except asyncio.TimeoutError:
            pass

        await run()

    logger.info("Shutdown requested, exiting loop")


# ============================================
# Main Entry Point
# ============================================

async def main():
    """Main entry point for the reconciler."""
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    try:
        config = ReconcilerConfig()
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)
    logger.info(f"Config: {config}")

    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        logger.error("DATABASE_URL environment variable is required")
        sys.exit(1)

    db_pool = await create_pool(database_url)
    health_state = HealthState()
    shutdown_event = asyncio.Event()

    def handle_shutdown(signum, frame):
        logger.info(f"Received signal {signum}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGTERM, handle_shutdown)
    signal.signal(signal.SIGINT, handle_shutdown)

    health_server = await start_health_server(config.health_check_port, health_state)

    try:
        async with XeClient() as client:
            sync_repo = PostgresSyncRepository(db_pool)
            use_case = ReconcilePackageUseCase(
                sync_repo=sync_repo,
                integration_repo=PostgresIntegrationRepository(db_pool),
                gateway=XePortalGateway(client),
                notifier=LoggingNotifier(),
            )
            await reconciler_loop(config, sync_repo, use_case, health_state, shutdown_event)
    finally:
        logger.info("Cleaning up...")

        if health_server:
            health_server.close()
            await health_server.wait_closed()

        await close_pool(db_pool)
        logger.info("Shutdown complete")


if __name__ == "__main__":
    asyncio.run(main())
