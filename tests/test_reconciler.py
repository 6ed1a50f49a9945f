#!/usr/bin/env python3
"""Tests for the background reconciler.

Tests cover:
    - Environment-driven configuration and validation
    - A reconcile pass over unresolved packages (resolved / still open / errors)
    - Loop behavior on startup and shutdown
    - Health check responses
"""
import asyncio
import json
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from reconciler import (
    HealthState,
    ReconcilerConfig,
    health_check_handler,
    reconcile_once,
    reconciler_loop,
)
from src.oikion.api.exceptions import ConfigurationError, DatabaseError, NotFoundError


# ============================================
# Test Fixtures
# ============================================

@pytest.fixture
def config(monkeypatch):
    for name in (
        "RECONCILE_INTERVAL_SECONDS",
        "RECONCILE_MIN_AGE_SECONDS",
        "RECONCILE_BATCH_SIZE",
        "RECONCILE_ON_STARTUP",
        "HEALTH_CHECK_PORT",
    ):
        monkeypatch.delenv(name, raising=False)
    return ReconcilerConfig()


def _package(package_id, tenant_id="tenant-a"):
    package = MagicMock()
    package.package_id = package_id
    package.tenant_id = tenant_id
    return package


def _record(is_terminal):
    record = MagicMock()
    record.is_terminal = is_terminal
    return record


@pytest.fixture
def sync_repo():
    repo = MagicMock()
    repo.list_unresolved = AsyncMock(return_value=[])
    return repo


@pytest.fixture
def use_case():
    case = MagicMock()
    case.execute = AsyncMock()
    return case


# ============================================
# Configuration
# ============================================

class TestReconcilerConfig:
    def test_defaults(self, config):
        assert config.interval_seconds == 300
        assert config.min_age_seconds == 60
        assert config.batch_size == 50
        assert config.health_check_port == 8080
        assert config.run_on_startup is True

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("RECONCILE_INTERVAL_SECONDS", "120")
        monkeypatch.setenv("RECONCILE_BATCH_SIZE", "5")
        monkeypatch.setenv("RECONCILE_ON_STARTUP", "false")
        monkeypatch.setenv("HEALTH_CHECK_PORT", "0")

        config = ReconcilerConfig()

        assert config.interval_seconds == 120
        assert config.batch_size == 5
        assert config.run_on_startup is False
        assert config.health_check_port == 0
        assert "interval=120s" in repr(config)

    def test_not_a_number(self, monkeypatch):
        monkeypatch.setenv("RECONCILE_BATCH_SIZE", "lots")
        with pytest.raises(ConfigurationError):
            ReconcilerConfig()

    @pytest.mark.parametrize("name", ["RECONCILE_INTERVAL_SECONDS", "RECONCILE_BATCH_SIZE"])
    def test_must_be_positive(self, monkeypatch, name):
        monkeypatch.setenv(name, "0")
        with pytest.raises(ConfigurationError):
            ReconcilerConfig()


# ============================================
# Reconcile Pass
# ============================================

class TestReconcileOnce:
    @pytest.mark.asyncio
    async def test_counts_resolved_packages(self, config, sync_repo, use_case):
        sync_repo.list_unresolved.return_value = [_package("P1"), _package("P2", "tenant-b")]
        use_case.execute.side_effect = [_record(True), _record(False)]

        results = await reconcile_once(config, sync_repo, use_case)

        assert results["checked"] == 2
        assert results["resolved"] == 1
        assert results["errors"] == 0
        assert results["success"] is True
        sync_repo.list_unresolved.assert_awaited_once_with(60, 50)
        assert [c.args for c in use_case.execute.await_args_list] == [
            ("tenant-a", "P1"),
            ("tenant-b", "P2"),
        ]

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_the_pass(self, config, sync_repo, use_case):
        sync_repo.list_unresolved.return_value = [_package("P1"), _package("P2")]
        use_case.execute.side_effect = [NotFoundError("Sync package", "P1"), _record(True)]

        results = await reconcile_once(config, sync_repo, use_case)

        assert results["checked"] == 2
        assert results["resolved"] == 1
        assert results["errors"] == 1
        assert results["success"] is False

    @pytest.mark.asyncio
    async def test_nothing_to_do(self, config, sync_repo, use_case):
        results = await reconcile_once(config, sync_repo, use_case)

        assert results["checked"] == 0
        assert results["success"] is True
        assert "duration_seconds" in results
        use_case.execute.assert_not_awaited()


# ============================================
# Main Loop
# ============================================

class TestReconcilerLoop:
    @pytest.mark.asyncio
    async def test_runs_on_startup_then_stops(self, config, sync_repo, use_case):
        state = HealthState()
        shutdown = asyncio.Event()
        shutdown.set()

        await reconciler_loop(config, sync_repo, use_case, state, shutdown)

        assert state.total_runs == 1
        assert state.last_run_success is True
        sync_repo.list_unresolved.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_startup_run(self, config, sync_repo, use_case):
        config.run_on_startup = False
        state = HealthState()
        shutdown = asyncio.Event()
        shutdown.set()

        await reconciler_loop(config, sync_repo, use_case, state, shutdown)

        assert state.total_runs == 0
        sync_repo.list_unresolved.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_pass_is_recorded(self, config, sync_repo, use_case):
        sync_repo.list_unresolved.side_effect = DatabaseError("pool closed")
        state = HealthState()
        shutdown = asyncio.Event()
        shutdown.set()

        await reconciler_loop(config, sync_repo, use_case, state, shutdown)

        assert state.total_runs == 1
        assert state.failed_runs == 1
        assert state.last_run_success is False

    @pytest.mark.asyncio
    async def test_runs_again_after_interval(self, config, sync_repo, use_case):
        config.interval_seconds = 0.01
        state = HealthState()
        shutdown = asyncio.Event()

        async def stop_after_second_pass(*args):
            if sync_repo.list_unresolved.await_count >= 2:
                shutdown.set()
            return []

        sync_repo.list_unresolved.side_effect = stop_after_second_pass

        await asyncio.wait_for(
            reconciler_loop(config, sync_repo, use_case, state, shutdown), timeout=2
        )

        assert state.total_runs == 2


# ============================================
# Health Check
# ============================================

async def _health_response(state: HealthState) -> tuple[str, dict]:
    reader = MagicMock()
    reader.read = AsyncMock(return_value=b"GET / HTTP/1.1\r\n\r\n")
    writer = MagicMock()
    writer.drain = AsyncMock()
    writer.wait_closed = AsyncMock()

    await health_check_handler(reader, writer, state)

    raw = writer.write.call_args.args[0].decode()
    head, body = raw.split("\r\n\r\n", 1)
    return head.split("\r\n")[0], json.loads(body)


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_healthy_before_first_run(self):
        status_line, body = await _health_response(HealthState())

        assert status_line == "HTTP/1.1 200 OK"
        assert body["status"] == "healthy"
        assert body["last_run_at"] == "never"

    @pytest.mark.asyncio
    async def test_unhealthy_after_failed_run(self):
        state = HealthState()
        state.record({"success": False})

        status_line, body = await _health_response(state)

        assert status_line == "HTTP/1.1 503 Service Unavailable"
        assert body["failed_runs"] == 1
        assert body["total_runs"] == 1
