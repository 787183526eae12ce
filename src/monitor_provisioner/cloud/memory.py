"""InMemoryCloudApi — a stateful stand-in for the cloud backend.

Keeps every resource in dicts keyed by name, so create-or-get behaves
like the real provider: the second call with the same name finds the
first call's resource. Records every call in ``calls`` and lets tests
inject failures per method. Also backs ``provision --dry-run``.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
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

DEFAULT_SUBSCRIPTION = "00000000-0000-0000-0000-000000000000"

CREATE_METHODS: frozenset[str] = frozenset({
    "create_or_get_workspace",
    "create_or_get_telemetry_component",
    "set_application_config",
    "create_or_get_notification_group",
    "create_or_get_alert_rule",
    "set_diagnostic_forwarding",
})


@dataclass
class DiagnosticSetting:
    name: str
    resource_id: str
    workspace_id: str
    log_categories: list[str]
    metric_categories: list[str]


@dataclass
class _Failure:
    error: Exception
    times: int | None = None


@dataclass
class InMemoryCloudApi:
    """Fake cloud backend with find-or-create semantics."""

    subscription_id: str = DEFAULT_SUBSCRIPTION
    account: Account | None = field(
        default_factory=lambda: Account(id=DEFAULT_SUBSCRIPTION, name="dev-subscription"),
    )
    applications: dict[tuple[str, str], ApplicationDescriptor] = field(default_factory=dict)
    workspaces: dict[str, WorkspaceDescriptor] = field(default_factory=dict)
    telemetry: dict[str, TelemetryDescriptor] = field(default_factory=dict)
    app_settings: dict[str, dict[str, str]] = field(default_factory=dict)
    notification_groups: dict[str, NotificationGroupDescriptor] = field(default_factory=dict)
    notification_channels: dict[str, list[EmailChannel]] = field(default_factory=dict)
    alert_rules: dict[str, AlertRuleSpec] = field(default_factory=dict)
    diagnostic_settings: dict[tuple[str, str], DiagnosticSetting] = field(default_factory=dict)
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    _failures: dict[str, _Failure] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    # --- Test helpers ---

    def add_application(
        self,
        resource_group: str,
        name: str,
        plan_name: str | None = None,
        region: str = "eastus",
    ) -> ApplicationDescriptor:
        """Register an existing web app (and its plan) in the fake."""
        plan = plan_name or f"asp-{name}"
        app = ApplicationDescriptor(
            id=self._resource_id(resource_group, "Microsoft.Web/sites", name),
            name=name,
            resource_group=resource_group,
            plan_id=self._resource_id(resource_group, "Microsoft.Web/serverfarms", plan),
            region=region,
            default_host_name=f"{name}.azurewebsites.net",
        )
        self.applications[(resource_group, name)] = app
        return app

    def fail_on(self, method: str, error: Exception | None = None, times: int | None = None) -> None:
        """Make *method* raise *error* (``times`` calls, or forever)."""
        self._failures[method] = _Failure(
            error=error or CloudApiError(f"{method} failed"),
            times=times,
        )

    def call_count(self, method: str | None = None) -> int:
        if method is None:
            return len(self.calls)
        return sum(1 for name, _ in self.calls if name == method)

    def create_call_count(self) -> int:
        return sum(1 for name, _ in self.calls if name in CREATE_METHODS)

    # --- CloudApi ---

    def get_current_account(self) -> Account | None:
        self._record("get_current_account")
        return self.account

    def get_application(self, resource_group: str, name: str) -> ApplicationDescriptor | None:
        self._record("get_application", resource_group=resource_group, name=name)
        return self.applications.get((resource_group, name))

    def create_or_get_workspace(
        self,
        resource_group: str,
        name: str,
        region: str,
        retention_days: int,
    ) -> WorkspaceDescriptor:
        self._record(
            "create_or_get_workspace",
            resource_group=resource_group, name=name,
            region=region, retention_days=retention_days,
        )
        with self._lock:
            existing = self.workspaces.get(name)
            if existing is not None:
                return existing.model_copy(update={"created": False})
            ws = WorkspaceDescriptor(
                id=self._resource_id(
                    resource_group, "Microsoft.OperationalInsights/workspaces", name,
                ),
                name=name,
                retention_days=retention_days,
                customer_id=str(uuid.uuid4()),
                created=True,
            )
            self.workspaces[name] = ws
            return ws

    def create_or_get_telemetry_component(
        self,
        resource_group: str,
        name: str,
        region: str,
        workspace_id: str,
    ) -> TelemetryDescriptor:
        self._record(
            "create_or_get_telemetry_component",
            resource_group=resource_group, name=name,
            region=region, workspace_id=workspace_id,
        )
        with self._lock:
            existing = self.telemetry.get(name)
            if existing is not None:
                return existing.model_copy(update={"created": False})
            key = str(uuid.uuid4())
            component = TelemetryDescriptor(
                id=self._resource_id(resource_group, "Microsoft.Insights/components", name),
                name=name,
                instrumentation_key=key,
                connection_string=(
                    f"InstrumentationKey={key};"
                    f"IngestionEndpoint=https://{region}-0.in.applicationinsights.azure.com/"
                ),
                workspace_id=workspace_id,
                created=True,
            )
            self.telemetry[name] = component
            return component

    def set_application_config(self, app_id: str, settings: dict[str, str]) -> None:
        self._record("set_application_config", app_id=app_id, settings=dict(settings))
        with self._lock:
            self.app_settings.setdefault(app_id, {}).update(settings)

    def create_or_get_notification_group(
        self,
        resource_group: str,
        name: str,
        short_name: str,
        email_channel: EmailChannel,
    ) -> NotificationGroupDescriptor:
        self._record(
            "create_or_get_notification_group",
            resource_group=resource_group, name=name,
            short_name=short_name, email_channel=email_channel,
        )
        with self._lock:
            existing = self.notification_groups.get(name)
            if existing is not None:
                return existing.model_copy(update={"created": False})
            group = NotificationGroupDescriptor(
                id=self._resource_id(resource_group, "Microsoft.Insights/actionGroups", name),
                name=name,
                short_name=short_name,
                created=True,
            )
            self.notification_groups[name] = group
            self.notification_channels[name] = [email_channel]
            return group

    def create_or_get_alert_rule(self, spec: AlertRuleSpec) -> AlertRuleDescriptor:
        self._record("create_or_get_alert_rule", spec=spec)
        rule_id = self._resource_id(
            spec.resource_group or "default", "Microsoft.Insights/metricAlerts", spec.name,
        )
        with self._lock:
            created = spec.name not in self.alert_rules
            if created:
                self.alert_rules[spec.name] = spec
        return AlertRuleDescriptor(id=rule_id, name=spec.name, created=created)

    def set_diagnostic_forwarding(
        self,
        resource_id: str,
        workspace_id: str,
        log_categories: list[str],
        metric_categories: list[str],
        setting_name: str,
    ) -> None:
        self._record(
            "set_diagnostic_forwarding",
            resource_id=resource_id, workspace_id=workspace_id,
            log_categories=list(log_categories),
            metric_categories=list(metric_categories),
            setting_name=setting_name,
        )
        with self._lock:
            self.diagnostic_settings[(resource_id, setting_name)] = DiagnosticSetting(
                name=setting_name,
                resource_id=resource_id,
                workspace_id=workspace_id,
                log_categories=list(log_categories),
                metric_categories=list(metric_categories),
            )

    # --- Private ---

    def _record(self, method: str, **kwargs: Any) -> None:
        with self._lock:
            self.calls.append((method, kwargs))
            failure = self._failures.get(method)
            if failure is None:
                return
            if failure.times is not None:
                failure.times -= 1
                if failure.times <= 0:
                    del self._failures[method]
        raise failure.error

    def _resource_id(self, resource_group: str, provider_type: str, name: str) -> str:
        return (
            f"/subscriptions/{self.subscription_id}/resourceGroups/{resource_group}"
            f"/providers/{provider_type}/{name}"
        )
