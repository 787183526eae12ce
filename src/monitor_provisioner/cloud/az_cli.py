"""AzCliClient — drives the ``az`` command-line tool via subprocess.

Maps each CloudApi call to one or two ``az`` command templates and runs
them with ``subprocess.run``. Create-or-get is a ``show`` followed by a
``create`` only when the show reports the resource missing. Output is
always requested as JSON.
"""

from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from monitor_provisioner.errors import CloudApiError
from monitor_provisioner.models import (
    Account,
    AlertRuleDescriptor,
    AlertRuleSpec,
    ApplicationDescriptor,
    EmailChannel,
    NotificationGroupDescriptor,
    TelemetryDescriptor,
    WorkspaceDescriptor,
)

NOT_FOUND_MARKERS = (
    "ResourceNotFound",
    "ResourceGroupNotFound",
    "could not be found",
    "was not found",
    "(NotFound)",
)

TRANSIENT_MARKERS = (
    "TooManyRequests",
    "Throttl",
    "ServiceUnavailable",
    "GatewayTimeout",
    "InternalServerError",
    "Connection aborted",
    "timed out",
)

LOGIN_MARKERS = (
    "az login",
    "No subscription found",
    "AADSTS",
)


@dataclass
class AzTemplate:
    """Maps an operation to an ``az`` command."""

    verb: str
    args: list[str] = field(default_factory=list)


AZ_COMMANDS: dict[str, AzTemplate] = {
    "account-show": AzTemplate(verb="account show"),
    "webapp-show": AzTemplate(
        verb="webapp show",
        args=["--name", "{name}", "--resource-group", "{resource_group}"],
    ),
    "workspace-show": AzTemplate(
        verb="monitor log-analytics workspace show",
        args=["--workspace-name", "{name}", "--resource-group", "{resource_group}"],
    ),
    "workspace-create": AzTemplate(
        verb="monitor log-analytics workspace create",
        args=[
            "--workspace-name", "{name}",
            "--resource-group", "{resource_group}",
            "--location", "{region}",
            "--retention-time", "{retention_days}",
        ],
    ),
    "component-show": AzTemplate(
        verb="monitor app-insights component show",
        args=["--app", "{name}", "--resource-group", "{resource_group}"],
    ),
    "component-create": AzTemplate(
        verb="monitor app-insights component create",
        args=[
            "--app", "{name}",
            "--resource-group", "{resource_group}",
            "--location", "{region}",
            "--workspace", "{workspace_id}",
            "--kind", "web",
            "--application-type", "web",
        ],
    ),
    "appsettings-set": AzTemplate(
        verb="webapp config appsettings set",
        args=["--ids", "{app_id}", "--settings"],
    ),
    "action-group-show": AzTemplate(
        verb="monitor action-group show",
        args=["--name", "{name}", "--resource-group", "{resource_group}"],
    ),
    "action-group-create": AzTemplate(
        verb="monitor action-group create",
        args=[
            "--name", "{name}",
            "--resource-group", "{resource_group}",
            "--short-name", "{short_name}",
            "--action", "email", "{receiver}", "{email}",
        ],
    ),
    "metric-alert-show": AzTemplate(
        verb="monitor metrics alert show",
        args=["--name", "{name}", "--resource-group", "{resource_group}"],
    ),
    "metric-alert-create": AzTemplate(
        verb="monitor metrics alert create",
        args=[
            "--name", "{name}",
            "--resource-group", "{resource_group}",
            "--scopes", "{scope}",
            "--condition", "{condition}",
            "--window-size", "{window}",
            "--evaluation-frequency", "{frequency}",
            "--severity", "{severity}",
            "--action", "{action_group_id}",
            "--description", "{description}",
        ],
    ),
    "diagnostic-settings-create": AzTemplate(
        verb="monitor diagnostic-settings create",
        args=[
            "--name", "{name}",
            "--resource", "{resource_id}",
            "--workspace", "{workspace_id}",
            "--logs", "{logs}",
            "--metrics", "{metrics}",
        ],
    ),
}


def build_az_args(
    template: AzTemplate,
    params: dict[str, Any],
    az_path: str = "az",
    subscription: str | None = None,
    extra: list[str] | None = None,
) -> list[str]:
    """Build an az command line from a template and params."""
    args: list[str] = [az_path]
    args.extend(template.verb.split())
    for arg in template.args:
        args.append(arg.format(**params))
    if extra:
        args.extend(extra)
    if subscription:
        args.extend(["--subscription", subscription])
    args.extend(["--output", "json"])
    return args


def format_duration(value: timedelta) -> str:
    """Render a window/frequency the way az expects (``5m``, ``1h``)."""
    seconds = int(value.total_seconds())
    if seconds % 3600 == 0:
        return f"{seconds // 3600}h"
    if seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


class AzCliClient:
    """CloudApi backed by the Azure CLI.

    Requires ``az`` on PATH (or *az_path*) and a logged-in session. The
    ``application-insights`` CLI extension must be installed for the
    telemetry component commands.
    """

    def __init__(
        self,
        az_path: str = "az",
        subscription: str | None = None,
        timeout: float | None = 300.0,
    ) -> None:
        self._az_path = az_path
        self._subscription = subscription
        self._timeout = timeout

    # --- CloudApi ---

    def get_current_account(self) -> Account | None:
        try:
            data = self._run("account-show", {})
        except CloudApiError as exc:
            if exc.transient or not _is_login_required(exc.stderr):
                raise
            return None
        if not data:
            return None
        user = data.get("user") or {}
        return Account(
            id=data.get("id", ""),
            name=data.get("name", ""),
            tenant_id=data.get("tenantId", ""),
            user=user.get("name", ""),
        )

    def get_application(self, resource_group: str, name: str) -> ApplicationDescriptor | None:
        data = self._show("webapp-show", {"name": name, "resource_group": resource_group})
        if data is None:
            return None
        return ApplicationDescriptor(
            id=data.get("id", ""),
            name=data.get("name", name),
            resource_group=data.get("resourceGroup", resource_group),
            plan_id=data.get("serverFarmId") or "",
            region=data.get("location", ""),
            default_host_name=data.get("defaultHostName") or "",
        )

    def create_or_get_workspace(
        self,
        resource_group: str,
        name: str,
        region: str,
        retention_days: int,
    ) -> WorkspaceDescriptor:
        params = {
            "name": name,
            "resource_group": resource_group,
            "region": region,
            "retention_days": retention_days,
        }
        data, created = self._show_or_create("workspace-show", "workspace-create", params)
        return WorkspaceDescriptor(
            id=data.get("id", ""),
            name=data.get("name", name),
            retention_days=data.get("retentionInDays"),
            customer_id=data.get("customerId") or "",
            created=created,
        )

    def create_or_get_telemetry_component(
        self,
        resource_group: str,
        name: str,
        region: str,
        workspace_id: str,
    ) -> TelemetryDescriptor:
        params = {
            "name": name,
            "resource_group": resource_group,
            "region": region,
            "workspace_id": workspace_id,
        }
        data, created = self._show_or_create("component-show", "component-create", params)
        return TelemetryDescriptor(
            id=data.get("id", ""),
            name=data.get("name", name),
            connection_string=data.get("connectionString") or "",
            instrumentation_key=data.get("instrumentationKey") or "",
            workspace_id=data.get("workspaceResourceId") or "",
            created=created,
        )

    def set_application_config(self, app_id: str, settings: dict[str, str]) -> None:
        pairs = [f"{key}={value}" for key, value in settings.items()]
        self._run("appsettings-set", {"app_id": app_id}, extra=pairs)

    def create_or_get_notification_group(
        self,
        resource_group: str,
        name: str,
        short_name: str,
        email_channel: EmailChannel,
    ) -> NotificationGroupDescriptor:
        params = {
            "name": name,
            "resource_group": resource_group,
            "short_name": short_name,
            "receiver": email_channel.name,
            "email": email_channel.address,
        }
        data, created = self._show_or_create(
            "action-group-show", "action-group-create", params,
        )
        return NotificationGroupDescriptor(
            id=data.get("id", ""),
            name=data.get("name", name),
            short_name=data.get("groupShortName") or short_name,
            created=created,
        )

    def create_or_get_alert_rule(self, spec: AlertRuleSpec) -> AlertRuleDescriptor:
        params = {
            "name": spec.name,
            "resource_group": spec.resource_group,
            "scope": spec.scope_resource_id,
            "condition": spec.condition,
            "window": format_duration(spec.evaluation_window),
            "frequency": format_duration(spec.evaluation_frequency),
            "severity": spec.severity,
            "action_group_id": spec.notification_target_id,
            "description": spec.description,
        }
        data, created = self._show_or_create(
            "metric-alert-show", "metric-alert-create", params,
        )
        return AlertRuleDescriptor(
            id=data.get("id", ""),
            name=data.get("name", spec.name),
            created=created,
        )

    def set_diagnostic_forwarding(
        self,
        resource_id: str,
        workspace_id: str,
        log_categories: list[str],
        metric_categories: list[str],
        setting_name: str,
    ) -> None:
        logs = [{"category": c, "enabled": True} for c in log_categories]
        metrics = [{"category": c, "enabled": True} for c in metric_categories]
        self._run("diagnostic-settings-create", {
            "name": setting_name,
            "resource_id": resource_id,
            "workspace_id": workspace_id,
            "logs": json.dumps(logs),
            "metrics": json.dumps(metrics),
        })

    # --- Private ---

    def _show(self, operation: str, params: dict[str, Any]) -> dict[str, Any] | None:
        """Run a show command; None when the resource doesn't exist."""
        try:
            data = self._run(operation, params)
        except CloudApiError as exc:
            if _is_not_found(exc.stderr):
                return None
            raise
        return data or None

    def _show_or_create(
        self,
        show_op: str,
        create_op: str,
        params: dict[str, Any],
    ) -> tuple[dict[str, Any], bool]:
        existing = self._show(show_op, params)
        if existing is not None:
            return existing, False
        return self._run(create_op, params) or {}, True

    def _run(
        self,
        operation: str,
        params: dict[str, Any],
        extra: list[str] | None = None,
    ) -> Any:
        template = AZ_COMMANDS[operation]
        args = build_az_args(
            template, params,
            az_path=self._az_path,
            subscription=self._subscription,
            extra=extra,
        )

        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise CloudApiError(
                f"{operation} timed out after {self._timeout}s",
                command=args,
                transient=True,
            ) from exc
        except OSError as exc:
            raise CloudApiError(
                f"Could not run {self._az_path}: {exc}",
                command=args,
            ) from exc

        if result.returncode != 0:
            stderr = result.stderr.strip()
            raise CloudApiError(
                f"{operation} failed (exit {result.returncode}): {stderr}",
                command=args,
                stderr=stderr,
                transient=_is_transient(stderr),
            )

        output = result.stdout.strip()
        if not output:
            return None
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise CloudApiError(
                f"{operation} returned invalid JSON: {output[:200]}",
                command=args,
            ) from exc


def _is_not_found(stderr: str) -> bool:
    return any(marker in stderr for marker in NOT_FOUND_MARKERS)


def _is_transient(stderr: str) -> bool:
    return any(marker in stderr for marker in TRANSIENT_MARKERS)


def _is_login_required(stderr: str) -> bool:
    return any(marker in stderr for marker in LOGIN_MARKERS)
