"""Tests for the monitor-provisioner CLI."""

import json
from pathlib import Path
from unittest.mock import MagicMock, patch

from click.testing import CliRunner

from monitor_provisioner import __version__
from monitor_provisioner.cli.main import cli
from monitor_provisioner.cloud.memory import InMemoryCloudApi
from monitor_provisioner.config import CONFIG_FILENAME
from monitor_provisioner.errors import CloudApiError

PROVISION = ["provision", "-g", "rg-x", "-n", "app-y", "-e", "a@b.com"]


def runner() -> CliRunner:
    return CliRunner()


def _fake_api() -> InMemoryCloudApi:
    api = InMemoryCloudApi()
    api.add_application("rg-x", "app-y")
    return api


class TestVersion:
    def test_version(self):
        result = runner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output


# --- provision command ---


class TestProvisionCommand:
    def test_dry_run_success(self):
        result = runner().invoke(cli, [*PROVISION, "--dry-run"])
        assert result.exit_code == 0
        assert "[dry-run]" in result.output
        assert "Monitoring provisioning: SUCCESS" in result.output
        assert "alert-app-y-http-5xx" in result.output

    def test_dry_run_json(self):
        result = runner().invoke(cli, [*PROVISION, "--dry-run", "--json-output"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["status"] == "success"
        assert len(data["alert_rule_ids"]) == 4
        assert data["diagnostics_enabled"] is True

    def test_invalid_email_exit_1(self):
        result = runner().invoke(cli, [
            "provision", "-g", "rg-x", "-n", "app-y", "-e", "not-an-email", "--dry-run",
        ])
        assert result.exit_code == 1
        assert "validate-input" in result.output

    def test_region_option(self):
        result = runner().invoke(cli, [
            *PROVISION, "--region", "West Europe", "--dry-run", "--json-output",
        ])
        assert result.exit_code == 0
        assert json.loads(result.output)["request"]["region"] == "westeurope"

    def test_bad_retention_exit_1(self):
        result = runner().invoke(cli, [*PROVISION, "--retention-days", "5", "--dry-run"])
        assert result.exit_code == 1
        assert "retention_days" in result.output

    def test_config_file_used(self, tmp_path: Path):
        cfg = tmp_path / CONFIG_FILENAME
        cfg.write_text("region: northeurope\nretention_days: 60\n", encoding="utf-8")
        result = runner().invoke(cli, [
            *PROVISION, "--config", str(cfg), "--dry-run", "--json-output",
        ])
        assert result.exit_code == 0
        assert json.loads(result.output)["request"]["region"] == "northeurope"

    def test_missing_config_file_exit_1(self, tmp_path: Path):
        result = runner().invoke(cli, [
            *PROVISION, "--config", str(tmp_path / "nope.yaml"), "--dry-run",
        ])
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    @patch("monitor_provisioner.cli.main.AzureSdkClient")
    def test_sdk_backend_is_default(self, mock_client: MagicMock):
        mock_client.return_value = _fake_api()
        result = runner().invoke(cli, [*PROVISION, "--subscription", "sub-123"])
        assert result.exit_code == 0
        assert mock_client.call_args[1]["subscription_id"] == "sub-123"

    @patch("monitor_provisioner.cli.main.AzureSdkClient")
    @patch("monitor_provisioner.cli.main.AzCliClient")
    def test_uses_az_client_options(self, mock_az: MagicMock, mock_sdk: MagicMock):
        mock_az.return_value = _fake_api()
        result = runner().invoke(cli, [
            *PROVISION, "--backend", "az", "--az-path", "/opt/az", "--subscription", "dev-sub",
        ])
        assert result.exit_code == 0
        kwargs = mock_az.call_args[1]
        assert kwargs["az_path"] == "/opt/az"
        assert kwargs["subscription"] == "dev-sub"
        mock_sdk.assert_not_called()

    def test_unknown_backend_rejected(self):
        result = runner().invoke(cli, [*PROVISION, "--backend", "terraform"])
        assert result.exit_code == 2
        assert "Invalid value" in result.output

    @patch("monitor_provisioner.cli.main.AzureSdkClient")
    def test_partial_failure_exit_2(self, mock_client: MagicMock):
        api = _fake_api()
        api.fail_on("create_or_get_alert_rule", CloudApiError("bad metric"))
        mock_client.return_value = api
        result = runner().invoke(cli, PROVISION)
        assert result.exit_code == 2
        assert "PARTIAL FAILURE" in result.output
        assert "re-run to resume" in result.output

    @patch("monitor_provisioner.cli.main.AzureSdkClient")
    def test_not_logged_in_exit_1(self, mock_client: MagicMock):
        mock_client.return_value = InMemoryCloudApi(account=None)
        result = runner().invoke(cli, [*PROVISION, "--json-output"])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["status"] == "failure"
        assert data["failed_step"] == "verify-preconditions"

    @patch("monitor_provisioner.cli.main.AzureSdkClient")
    def test_audit_log_written(self, mock_client: MagicMock, tmp_path: Path):
        mock_client.return_value = _fake_api()
        log = tmp_path / "audit.jsonl"
        result = runner().invoke(cli, [*PROVISION, "--audit-log", str(log)])
        assert result.exit_code == 0
        lines = log.read_text(encoding="utf-8").strip().split("\n")
        assert len(lines) == 8

    @patch("monitor_provisioner.cli.main.AzureSdkClient")
    def test_corrupt_audit_log_exit_1(self, mock_client: MagicMock, tmp_path: Path):
        mock_client.return_value = _fake_api()
        log = tmp_path / "audit.jsonl"
        log.write_text("{not json\n", encoding="utf-8")
        result = runner().invoke(cli, [*PROVISION, "--audit-log", str(log)])
        assert result.exit_code == 1
        assert "Corrupt audit log" in result.output
        assert mock_client.return_value.create_call_count() == 0

    def test_dry_run_skips_audit_log(self, tmp_path: Path):
        log = tmp_path / "audit.jsonl"
        result = runner().invoke(cli, [*PROVISION, "--audit-log", str(log), "--dry-run"])
        assert result.exit_code == 0
        assert not log.exists()


# --- names / rules ---


class TestNamesCommand:
    def test_names(self):
        result = runner().invoke(cli, ["names", "app-y"])
        assert result.exit_code == 0
        assert "log-app-y" in result.output
        assert "appi-app-y" in result.output
        assert "alert-app-y-response-time" in result.output

    def test_names_json(self):
        result = runner().invoke(cli, ["names", "app-y", "--json-output"])
        data = json.loads(result.output)
        assert data["workspace"] == "log-app-y"
        assert len(data["notification_short_name"]) <= 12
        assert set(data["alert_rules"]) == {"cpu-high", "memory-high", "http-5xx", "response-time"}

    def test_names_blank(self):
        result = runner().invoke(cli, ["names", "  "])
        assert result.exit_code == 1


class TestRulesCommand:
    def test_rules(self):
        result = runner().invoke(cli, ["rules"])
        assert result.exit_code == 0
        assert "4 rule(s)." in result.output
        assert "CpuPercentage" in result.output

    def test_rules_json(self):
        result = runner().invoke(cli, ["rules", "--json-output"])
        data = json.loads(result.output)
        assert [r["scope"] for r in data] == ["plan", "plan", "application", "application"]
        assert data[0]["window_minutes"] == 5
        assert data[0]["frequency_minutes"] == 1


# --- init ---


class TestInitCommand:
    def test_init_creates_config(self, tmp_path: Path):
        result = runner().invoke(cli, ["init", str(tmp_path)])
        assert result.exit_code == 0
        assert (tmp_path / CONFIG_FILENAME).exists()
        assert "Next steps" in result.output

    def test_init_skips_existing(self, tmp_path: Path):
        (tmp_path / CONFIG_FILENAME).write_text("region: eastus\n", encoding="utf-8")
        result = runner().invoke(cli, ["init", str(tmp_path)])
        assert result.exit_code == 0
        assert "already exists" in result.output
        assert (tmp_path / CONFIG_FILENAME).read_text(encoding="utf-8") == "region: eastus\n"

    def test_generated_config_loads(self, tmp_path: Path):
        runner().invoke(cli, ["init", str(tmp_path)])
        result = runner().invoke(cli, [
            *PROVISION, "--config", str(tmp_path / CONFIG_FILENAME),
            "--dry-run", "--json-output",
        ])
        assert result.exit_code == 0


# --- audit commands ---


def _write_log(tmp_path: Path) -> Path:
    log = tmp_path / "audit.jsonl"
    with patch("monitor_provisioner.cli.main.AzureSdkClient") as mock_client:
        mock_client.return_value = _fake_api()
        runner().invoke(cli, [*PROVISION, "--audit-log", str(log)])
    return log


class TestAuditCommands:
    def test_verify_valid(self, tmp_path: Path):
        log = _write_log(tmp_path)
        result = runner().invoke(cli, ["audit", "verify", str(log)])
        assert result.exit_code == 0
        assert "VALID" in result.output

    def test_verify_tampered(self, tmp_path: Path):
        log = _write_log(tmp_path)
        lines = log.read_text(encoding="utf-8").strip().split("\n")
        entry = json.loads(lines[0])
        entry["application"] = "someone-else"
        lines[0] = json.dumps(entry, sort_keys=True)
        log.write_text("\n".join(lines) + "\n", encoding="utf-8")

        result = runner().invoke(cli, ["audit", "verify", str(log)])
        assert result.exit_code == 1
        assert "INVALID" in result.output

    def test_verify_missing(self, tmp_path: Path):
        result = runner().invoke(cli, ["audit", "verify", str(tmp_path / "none.jsonl")])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_show(self, tmp_path: Path):
        log = _write_log(tmp_path)
        result = runner().invoke(cli, ["audit", "show", str(log)])
        assert result.exit_code == 0
        assert "8 event(s) shown" in result.output
        assert "app-settings" in result.output

    def test_show_last_json(self, tmp_path: Path):
        log = _write_log(tmp_path)
        result = runner().invoke(cli, ["audit", "show", str(log), "--last", "2", "--json-output"])
        data = json.loads(result.output)
        assert [e["step"] for e in data] == ["alert-rules", "diagnostics"]
        assert data[-1]["modifies_target"] is True

    def test_show_unknown_run(self, tmp_path: Path):
        log = _write_log(tmp_path)
        result = runner().invoke(cli, ["audit", "show", str(log), "--run", "run-nope"])
        assert result.exit_code == 0
        assert "No audit entries found." in result.output
