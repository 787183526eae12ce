"""monitor-provisioner CLI — command-line interface for the provisioner.

Commands:
    provision       Attach logging, telemetry, alerts and diagnostics to a web app
    names           Show the resource names derived for an application
    rules           Show the built-in alert rules
    init            Scaffold a monitor-provisioner.yaml
    audit verify    Verify audit log chain integrity
    audit show      Show recent audit log entries
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from monitor_provisioner import __version__
from monitor_provisioner.audit.logger import AuditError, AuditLogger, verify_log
from monitor_provisioner.cloud.api import CloudApi
from monitor_provisioner.cloud.az_cli import AzCliClient
from monitor_provisioner.cloud.azure_sdk import AzureSdkClient
from monitor_provisioner.cloud.memory import InMemoryCloudApi
from monitor_provisioner.config import (
    BACKENDS,
    CONFIG_FILENAME,
    ProvisionerConfig,
    load_config,
    merge_overrides,
)
from monitor_provisioner.errors import ConfigurationError
from monitor_provisioner.models import ProvisioningStatus
from monitor_provisioner.naming import derive_names
from monitor_provisioner.report import describe_threshold, format_summary, result_to_json
from monitor_provisioner.rules import DEFAULT_ALERT_RULES
from monitor_provisioner.workflow import Provisioner

# --- Defaults ---

DEFAULT_AUDIT_LOG = "./provisioning-audit.jsonl"

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_PARTIAL_FAILURE = 2

_EXIT_CODES = {
    ProvisioningStatus.SUCCESS: EXIT_SUCCESS,
    ProvisioningStatus.FAILURE: EXIT_FAILURE,
    ProvisioningStatus.PARTIAL_FAILURE: EXIT_PARTIAL_FAILURE,
}


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load_cfg(config_path: str | None) -> ProvisionerConfig:
    """Load config; exit with an error message if it is broken."""
    try:
        return load_config(config_path)
    except (FileNotFoundError, ConfigurationError) as e:
        click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
        sys.exit(EXIT_FAILURE)


def _build_api(cfg: ProvisionerConfig) -> CloudApi:
    if cfg.backend == "az":
        return AzCliClient(
            az_path=cfg.az_path,
            subscription=cfg.subscription,
            timeout=cfg.command_timeout,
        )
    return AzureSdkClient(subscription_id=cfg.subscription)


def _status_badge(status: ProvisioningStatus) -> str:
    color = {
        ProvisioningStatus.SUCCESS: "green",
        ProvisioningStatus.PARTIAL_FAILURE: "yellow",
        ProvisioningStatus.FAILURE: "red",
    }[status]
    return click.style(status.value.upper(), fg=color, bold=True)


# --- Root group ---


@click.group()
@click.version_option(version=__version__)
@click.option("-v", "--verbose", count=True, help="Log progress (-v info, -vv debug)")
def cli(verbose: int) -> None:
    """Monitoring provisioner: logging, telemetry and alerts for web apps."""
    _configure_logging(verbose)


# --- provision command ---


@cli.command()
@click.option("--resource-group", "-g", required=True, help="Resource group of the app")
@click.option("--app", "-n", "app_name", required=True, help="Web application name")
@click.option("--email", "-e", required=True, help="Address that receives alerts")
@click.option("--region", "-l", default=None, help="Region code (default from config, else eastus)")
@click.option("--config", "config_path", default=None, help=f"Path to {CONFIG_FILENAME}")
@click.option("--retention-days", type=int, default=None, help="Workspace retention in days")
@click.option("--retries", type=int, default=None, help="Attempts per step for transient errors")
@click.option(
    "--concurrent/--sequential", "concurrent", default=None,
    help="Create alert rules in parallel (default) or one by one",
)
@click.option("--audit-log", default=None, help="Append step events to this JSONL file")
@click.option(
    "--backend", type=click.Choice(BACKENDS), default=None,
    help="Cloud API: management SDK (default) or the az CLI",
)
@click.option("--az-path", default=None, help="Path to the az executable (az backend)")
@click.option("--subscription", default=None, help="Subscription id (name also accepted by az)")
@click.option(
    "--dry-run", is_flag=True,
    help="Simulate against an in-memory cloud; nothing is changed",
)
@click.option("--json-output", is_flag=True, help="Output as JSON")
def provision(
    resource_group: str,
    app_name: str,
    email: str,
    region: str | None,
    config_path: str | None,
    retention_days: int | None,
    retries: int | None,
    concurrent: bool | None,
    audit_log: str | None,
    backend: str | None,
    az_path: str | None,
    subscription: str | None,
    dry_run: bool,
    json_output: bool,
) -> None:
    """Provision monitoring for an existing web application.

    Creates (or finds) a log workspace, a telemetry component, an email
    notification group and four metric alerts, then writes telemetry
    settings and diagnostic forwarding onto the application. Safe to
    re-run: existing resources are reused.

    Exit code: 0 success, 1 failure, 2 partial failure.
    """
    cfg = _load_cfg(config_path)
    try:
        cfg = merge_overrides(
            cfg,
            region=region,
            retention_days=retention_days,
            max_attempts=retries,
            concurrent_alerts=concurrent,
            audit_log=audit_log,
            backend=backend,
            az_path=az_path,
            subscription=subscription,
        )
    except ConfigurationError as e:
        click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
        sys.exit(EXIT_FAILURE)

    if dry_run:
        memory = InMemoryCloudApi()
        memory.add_application(resource_group, app_name, region=cfg.region)
        api: CloudApi = memory
    else:
        api = _build_api(cfg)

    audit_logger = None
    if cfg.audit_log and not dry_run:
        try:
            audit_logger = AuditLogger(cfg.audit_log)
        except AuditError as e:
            click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
            sys.exit(EXIT_FAILURE)

    provisioner = Provisioner(api, config=cfg, audit_logger=audit_logger)
    result = provisioner.run(resource_group, app_name, email, region=cfg.region)

    if json_output:
        click.echo(result_to_json(result))
    else:
        if dry_run:
            click.echo(click.style("[dry-run]", fg="cyan") + " no cloud resources were touched")
        click.echo(format_summary(result))
        click.echo(_status_badge(result.status))

    sys.exit(_EXIT_CODES[result.status])


# --- names command ---


@cli.command()
@click.argument("application_name")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def names(application_name: str, json_output: bool) -> None:
    """Show the monitoring resource names derived for APPLICATION_NAME."""
    try:
        derived = derive_names(application_name)
    except ConfigurationError as e:
        click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
        sys.exit(EXIT_FAILURE)

    if json_output:
        click.echo(json.dumps(derived.model_dump(mode="json"), indent=2))
        return

    click.echo(f"  workspace:           {derived.workspace}")
    click.echo(f"  telemetry:           {derived.telemetry}")
    click.echo(f"  notification group:  {derived.notification_group}")
    click.echo(f"  short name:          {derived.notification_short_name}")
    click.echo(f"  diagnostic setting:  {derived.diagnostic_setting}")
    for role, name in derived.alert_rules.items():
        click.echo(f"  alert ({role}):{' ' * max(1, 14 - len(role))}{name}")


# --- rules command ---


@cli.command()
@click.option("--json-output", is_flag=True, help="Output as JSON")
def rules(json_output: bool) -> None:
    """Show the built-in alert rules."""
    if json_output:
        data = [
            {
                "role": t.role,
                "title": t.title,
                "scope": str(t.scope),
                "metric": t.metric_name,
                "aggregation": str(t.aggregation),
                "operator": str(t.operator),
                "threshold": t.threshold,
                "window_minutes": int(t.window.total_seconds() // 60),
                "frequency_minutes": int(t.frequency.total_seconds() // 60),
                "severity": t.severity,
            }
            for t in DEFAULT_ALERT_RULES
        ]
        click.echo(json.dumps(data, indent=2))
        return

    for t in DEFAULT_ALERT_RULES:
        scope = click.style(f"[{t.scope}]", fg="cyan")
        click.echo(f"  {t.title:<15} sev {t.severity}  {describe_threshold(t):<42} {scope}")
    click.echo(f"\n{len(DEFAULT_ALERT_RULES)} rule(s).")


# --- init command ---


_INIT_CONFIG = """\
# monitor-provisioner configuration
# CLI flags override anything set here.

region: eastus
retention_days: 30

# Written onto the application as telemetry settings
extension_version: "~3"
instrumentation_mode: recommended

# Create the four alert rules in parallel
concurrent_alerts: true

# Attempts per step for transient API errors (1 = no retry)
max_attempts: 1
backoff_seconds: 2.0

# Cloud API: "sdk" (management SDKs) or "az" (az CLI)
backend: sdk
# subscription: 00000000-0000-0000-0000-000000000000

# az backend only
az_path: az
command_timeout: 300

# Step audit trail (relative to this file)
audit_log: ./provisioning-audit.jsonl
"""


@cli.command()
@click.argument("directory", default=".")
def init(directory: str) -> None:
    """Scaffold a monitor-provisioner.yaml with the defaults."""
    root = Path(directory)
    root.mkdir(parents=True, exist_ok=True)

    config_file = root / CONFIG_FILENAME
    if config_file.exists():
        click.echo(f"  skip  {CONFIG_FILENAME} (already exists)")
        return

    config_file.write_text(_INIT_CONFIG, encoding="utf-8")
    click.echo(click.style("Created:", fg="green", bold=True))
    click.echo(f"  + {CONFIG_FILENAME}")
    click.echo("\n" + click.style("Next steps:", bold=True))
    click.echo("  monitor-provisioner rules")
    click.echo(
        "  monitor-provisioner provision -g rg-myapp-dev -n webapp-myapp-dev"
        " -e ops@example.com --dry-run"
    )


# --- audit commands ---


@cli.group()
def audit() -> None:
    """Inspect the provisioning audit log."""


@audit.command("verify")
@click.argument("log_file", default=DEFAULT_AUDIT_LOG)
def audit_verify(log_file: str) -> None:
    """Verify the hash chain of LOG_FILE."""
    path = Path(log_file)
    if not path.exists():
        click.echo(f"Audit log not found: {path}")
        sys.exit(EXIT_FAILURE)

    is_valid, errors = verify_log(path)
    if is_valid:
        click.echo(click.style("VALID", fg="green", bold=True)
                    + f" — audit log chain is intact ({path})")
    else:
        click.echo(click.style("INVALID", fg="red", bold=True)
                    + f" — {len(errors)} error(s) found:")
        for error in errors:
            click.echo(f"  - {error}")
        sys.exit(EXIT_FAILURE)


@audit.command("show")
@click.argument("log_file", default=DEFAULT_AUDIT_LOG)
@click.option("--last", "count", default=20, help="Number of entries to show")
@click.option("--run", "run_id", default=None, help="Only show events of this run")
@click.option("--json-output", is_flag=True, help="Output as JSON")
def audit_show(log_file: str, count: int, run_id: str | None, json_output: bool) -> None:
    """Show recent audit log entries."""
    path = Path(log_file)
    if not path.exists():
        click.echo(f"Audit log not found: {path}")
        sys.exit(EXIT_FAILURE)

    try:
        events = AuditLogger(path).read_events(run_id=run_id)
    except AuditError as e:
        click.echo(click.style("ERROR", fg="red") + f"  {e}", err=True)
        sys.exit(EXIT_FAILURE)

    events = events[-count:]

    if json_output:
        data = [e.model_dump(mode="json") for e in events]
        click.echo(json.dumps(data, indent=2))
        return

    if not events:
        click.echo("No audit entries found.")
        return
    for event in events:
        label = click.style("OK    ", fg="green") if event.ok else click.style("FAILED", fg="red")
        marker = click.style(" *", fg="yellow") if event.modifies_target else ""
        click.echo(
            f"  {event.timestamp.isoformat()[:19]}  {label} "
            f"{event.step.value:<22} {event.application:<25} run={event.run_id}{marker}"
        )
        if event.error:
            click.echo(f"      {event.error}")
    click.echo(f"\n{len(events)} event(s) shown. (* = modified the application)")
