#!/usr/bin/env python3
"""Tests for the operator CLI argument parsing and output."""
import sys

import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from main import build_parser, print_result
from src.oikion.xe.domain.entities import PackageResult, SyncStatus


class TestParser:
    def test_history_defaults(self):
        args = build_parser().parse_args(["--tenant", "t1", "history"])
        assert (args.command, args.status, args.limit, args.offset) == ("history", None, 20, 0)

    def test_history_rejects_unknown_status(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--tenant", "t1", "history", "--status", "DONE"])

    @pytest.mark.parametrize("command", ["detail", "retry", "reconcile"])
    def test_package_commands(self, command):
        args = build_parser().parse_args(["--tenant", "t1", command, "OIKION-T1-1-ABCDEF"])
        assert args.package_id == "OIKION-T1-1-ABCDEF"

    def test_sync(self):
        args = build_parser().parse_args(["--tenant", "t1", "sync", "p1", "p2", "--renew-all"])
        assert args.property_ids == ["p1", "p2"]
        assert args.renew_all is True

    def test_tenant_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["stats"])


def test_print_result(capsys):
    print_result(
        PackageResult(
            package_id="OIKION-T1-1-ABCDEF",
            status=SyncStatus.SUCCESS,
            total_items=2,
            success_count=1,
            failure_count=1,
            errors=[{"property_id": "p2", "error": "Price is required"}],
            retry_of="OIKION-T1-0-ZZZZZZ",
        )
    )

    out = capsys.readouterr().out
    assert "1 succeeded, 1 failed of 2" in out
    assert "Retry of:  OIKION-T1-0-ZZZZZZ" in out
    assert "  - p2: Price is required" in out
