"""Tests for the payroll-sync command line."""

import json

import pytest

from payroll_sync.cli import PayrollSyncCli
from payroll_sync.metrics import sync_metrics


@pytest.fixture
def cli(settings) -> PayrollSyncCli:
    return PayrollSyncCli(settings_factory=lambda: settings)


class TestPeriodCommand:
    def test_text_output(self, cli, capsys):
        assert cli.run(["period", "2025-01-17"]) == 0
        out = capsys.readouterr().out
        assert "2024-12-26 .. 2025-01-08" in out
        assert "Payroll group: B" in out

    def test_json_output(self, cli, capsys):
        assert cli.run(["period", "2025-01-10", "--json"]) == 0
        period = json.loads(capsys.readouterr().out)
        assert period["payrollGroup"] == "A"

    def test_non_friday_warns(self, cli, capsys):
        assert cli.run(["period", "2025-01-16"]) == 0
        assert "not a Friday" in capsys.readouterr().err

    def test_invalid_date_exits(self, cli):
        with pytest.raises(SystemExit):
            cli.run(["period", "tomorrow"])


class TestMetricsCommand:
    def test_prometheus(self, cli, capsys):
        sync_metrics.poll_failures.inc()
        assert cli.run(["metrics", "--format", "prometheus"]) == 0
        assert "payroll_sync_poll_failures_total 1" in capsys.readouterr().out

    def test_json(self, cli, capsys):
        assert cli.run(["metrics"]) == 0
        assert json.loads(capsys.readouterr().out)["submission_rollbacks"]["value"] == 0


class TestPollCommand:
    def test_missing_api_key(self, settings, capsys):
        from dataclasses import replace

        cli = PayrollSyncCli(settings_factory=lambda: replace(settings, connecteam_api_key=""))
        args = ["poll", "--location", "Manheim", "--start", "2025-01-01", "--end", "2025-01-14"]
        assert cli.run(args) == 2
        assert "VALIDATION_ERROR" in capsys.readouterr().err

    def test_no_command(self, cli):
        assert cli.run([]) == 1
