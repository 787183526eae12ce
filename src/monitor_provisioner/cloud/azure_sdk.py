"""AzureSdkClient — provisions monitoring through the Azure management SDKs.

Uses the typed management clients instead of ``az`` subprocess calls.
Create-or-get is a ``get`` followed by a create only when the get raises
``ResourceNotFoundError``. Throttling (429), server errors (5xx) and
connection failures are marked transient.

Authentication goes through ``DefaultAzureCredential`` (environment,
managed identity, or an ``az login`` session) unless a credential is
passed in. Management clients can be injected; missing ones are built
on first use.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.identity import DefaultAzureCredential
from azure.mgmt.applicationinsights import ApplicationInsightsManagementClient
from azure.mgmt.applicationinsights.v2020_02_02.models import ApplicationInsightsComponent
from azure.mgmt.core.tools import parse_resource_id
from azure.mgmt.loganalytics import LogAnalyticsManagementClient
from azure.mgmt.loganalytics.models import Workspace, WorkspaceSku
from azure.mgmt.monitor import MonitorManagementClient
from azure.mgmt.monitor.models import (
    ActionGroupResource,
    DiagnosticSettingsResource,
    EmailReceiver,
    LogSettings,
    MetricAlertAction,
    MetricAlertResource,
    MetricAlertSingleResourceMultipleMetricCriteria,
    MetricCriteria,
    MetricSettings,
)
from azure.mgmt.web import WebSiteManagementClient
from azure.mgmt.web.models import StringDictionary

from monitor_provisioner.errors import CloudApiError, ConfigurationError
from monitor_provisioner.models import (
    Account,
    Aggregation,
    AlertRuleDescriptor,
    AlertRuleSpec,
    AlertScope,
    ApplicationDescriptor,
    EmailChannel,
    NotificationGroupDescriptor,
    TelemetryDescriptor,
    WorkspaceDescriptor,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

ARM_SCOPE = "https://management.azure.com/.default"
SUBSCRIPTION_ENV = "AZURE_SUBSCRIPTION_ID"

WORKSPACE_SKU = "PerGB2018"
ACTION_GROUP_LOCATION = "Global"
ALERT_LOCATION = "global"

_AGGREGATIONS: dict[Aggregation, str] = {
    Aggregation.AVERAGE: "Average",
    Aggregation.TOTAL: "Total",
}

_METRIC_NAMESPACES: dict[AlertScope, str] = {
    AlertScope.PLAN: "Microsoft.Web/serverfarms",
    AlertScope.APPLICATION: "Microsoft.Web/sites",
}


def _management_client(kind: str, credential: Any, subscription_id: str) -> Any:
    factories: dict[str, Callable[[Any, str], Any]] = {
        "web": WebSiteManagementClient,
        "log_analytics": LogAnalyticsManagementClient,
        "insights": ApplicationInsightsManagementClient,
        "monitor": MonitorManagementClient,
    }
    return factories[kind](credential, subscription_id)


def is_transient_status(status_code: int | None) -> bool:
    """True for HTTP statuses worth retrying (timeouts, throttling, 5xx)."""
    if status_code is None:
        return False
    return status_code in (408, 429) or status_code >= 500


@contextmanager
def _translate(operation: str) -> Iterator[None]:
    """Turn SDK exceptions raised inside the block into CloudApiError."""
    try:
        yield
    except HttpResponseError as exc:
        status = exc.status_code
        raise CloudApiError(
            f"{operation} failed (HTTP {status if status is not None else '?'}): {exc.message}",
            command=[operation],
            transient=is_transient_status(status),
            status_code=status,
        ) from exc
    except (ServiceRequestError, ServiceResponseError) as exc:
        raise CloudApiError(
            f"{operation} failed: {exc}",
            command=[operation],
            transient=True,
        ) from exc
    except AzureError as exc:
        raise CloudApiError(f"{operation} failed: {exc}", command=[operation]) from exc


class AzureSdkClient:
    """CloudApi backed by the Azure management SDKs.

    ``subscription_id`` falls back to ``$AZURE_SUBSCRIPTION_ID``. Pass
    ``web_client``, ``log_analytics_client``, ``insights_client`` or
    ``monitor_client`` to reuse existing clients.
    """

    def __init__(
        self,
        subscription_id: str | None = None,
        credential: Any | None = None,
        *,
        web_client: Any | None = None,
        log_analytics_client: Any | None = None,
        insights_client: Any | None = None,
        monitor_client: Any | None = None,
    ) -> None:
        self._subscription_id = subscription_id or os.environ.get(SUBSCRIPTION_ENV) or None
        self._credential = credential
        self._lock = threading.Lock()
        injected = {
            "web": web_client,
            "log_analytics": log_analytics_client,
            "insights": insights_client,
            "monitor": monitor_client,
        }
        self._clients: dict[str, Any] = {k: v for k, v in injected.items() if v is not None}

    @property
    def subscription_id(self) -> str | None:
        return self._subscription_id

    # --- CloudApi ---

    def get_current_account(self) -> Account | None:
        subscription_id = self._require_subscription()
        with _translate("get-token"):
            try:
                self._get_credential().get_token(ARM_SCOPE)
            except ClientAuthenticationError as exc:
                logger.info("No usable Azure credential: %s", exc)
                return None
        return Account(id=subscription_id)

    def get_application(self, resource_group: str, name: str) -> ApplicationDescriptor | None:
        web_apps = self._client("web").web_apps
        site = self._get_or_none("webapp-get", lambda: web_apps.get(resource_group, name))
        if site is None:
            return None
        return ApplicationDescriptor(
            id=site.id or "",
            name=site.name or name,
            resource_group=site.resource_group or resource_group,
            plan_id=site.server_farm_id or "",
            region=site.location or "",
            default_host_name=site.default_host_name or "",
        )

    def create_or_get_workspace(
        self,
        resource_group: str,
        name: str,
        region: str,
        retention_days: int,
    ) -> WorkspaceDescriptor:
        workspaces = self._client("log_analytics").workspaces
        body = Workspace(
            location=region,
            sku=WorkspaceSku(name=WORKSPACE_SKU),
            retention_in_days=retention_days,
        )
        ws, created = self._get_or_create(
            "workspace",
            lambda: workspaces.get(resource_group, name),
            lambda: workspaces.begin_create_or_update(resource_group, name, body).result(),
        )
        return WorkspaceDescriptor(
            id=ws.id or "",
            name=ws.name or name,
            retention_days=ws.retention_in_days,
            customer_id=ws.customer_id or "",
            created=created,
        )

    def create_or_get_telemetry_component(
        self,
        resource_group: str,
        name: str,
        region: str,
        workspace_id: str,
    ) -> TelemetryDescriptor:
        components = self._client("insights").components
        body = ApplicationInsightsComponent(
            location=region,
            kind="web",
            application_type="web",
            workspace_resource_id=workspace_id,
            ingestion_mode="LogAnalytics",
        )
        component, created = self._get_or_create(
            "component",
            lambda: components.get(resource_group, name),
            lambda: components.create_or_update(resource_group, name, body),
        )
        return TelemetryDescriptor(
            id=component.id or "",
            name=component.name or name,
            connection_string=component.connection_string or "",
            instrumentation_key=component.instrumentation_key or "",
            workspace_id=component.workspace_resource_id or "",
            created=created,
        )

    def set_application_config(self, app_id: str, settings: dict[str, str]) -> None:
        """Merge *settings* into the app's settings; other keys are kept."""
        resource_group, name = _split_resource_id(app_id)
        web_apps = self._client("web").web_apps
        with _translate("appsettings-update"):
            current = web_apps.list_application_settings(resource_group, name)
            merged = dict(current.properties or {})
            merged.update(settings)
            web_apps.update_application_settings(
                resource_group, name, StringDictionary(properties=merged),
            )

    def create_or_get_notification_group(
        self,
        resource_group: str,
        name: str,
        short_name: str,
        email_channel: EmailChannel,
    ) -> NotificationGroupDescriptor:
        action_groups = self._client("monitor").action_groups
        body = ActionGroupResource(
            location=ACTION_GROUP_LOCATION,
            group_short_name=short_name,
            enabled=True,
            email_receivers=[
                EmailReceiver(
                    name=email_channel.name,
                    email_address=email_channel.address,
                    use_common_alert_schema=True,
                ),
            ],
        )
        group, created = self._get_or_create(
            "action-group",
            lambda: action_groups.get(resource_group, name),
            lambda: action_groups.create_or_update(resource_group, name, body),
        )
        return NotificationGroupDescriptor(
            id=group.id or "",
            name=group.name or name,
            short_name=group.group_short_name or short_name,
            created=created,
        )

    def create_or_get_alert_rule(self, spec: AlertRuleSpec) -> AlertRuleDescriptor:
        metric_alerts = self._client("monitor").metric_alerts
        body = build_metric_alert(spec)
        rule, created = self._get_or_create(
            "metric-alert",
            lambda: metric_alerts.get(spec.resource_group, spec.name),
            lambda: metric_alerts.create_or_update(spec.resource_group, spec.name, body),
        )
        return AlertRuleDescriptor(
            id=rule.id or "",
            name=rule.name or spec.name,
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
        body = DiagnosticSettingsResource(
            workspace_id=workspace_id,
            logs=[LogSettings(category=c, enabled=True) for c in log_categories],
            metrics=[MetricSettings(category=c, enabled=True) for c in metric_categories],
        )
        with _translate("diagnostic-settings-update"):
            self._client("monitor").diagnostic_settings.create_or_update(
                resource_id, setting_name, body,
            )

    # --- Private ---

    def _require_subscription(self) -> str:
        if not self._subscription_id:
            raise ConfigurationError(
                f"No subscription id: pass --subscription or set {SUBSCRIPTION_ENV}"
            )
        return self._subscription_id

    def _get_credential(self) -> Any:
        with self._lock:
            if self._credential is None:
                self._credential = DefaultAzureCredential()
            return self._credential

    def _client(self, kind: str) -> Any:
        """Return the management client for *kind*, building it on first use."""
        client = self._clients.get(kind)
        if client is not None:
            return client
        subscription_id = self._require_subscription()
        credential = self._get_credential()
        with self._lock:
            client = self._clients.get(kind)
            if client is None:
                client = _management_client(kind, credential, subscription_id)
                self._clients[kind] = client
            return client

    def _get_or_none(self, operation: str, get: Callable[[], T]) -> T | None:
        with _translate(operation):
            try:
                return get()
            except ResourceNotFoundError:
                return None

    def _get_or_create(
        self,
        resource: str,
        get: Callable[[], T],
        create: Callable[[], T],
    ) -> tuple[T, bool]:
        existing = self._get_or_none(f"{resource}-get", get)
        if existing is not None:
            return existing, False
        logger.info("Creating %s", resource)
        with _translate(f"{resource}-create"):
            return create(), True


def build_metric_alert(spec: AlertRuleSpec) -> MetricAlertResource:
    """Typed metric alert body for *spec*."""
    return MetricAlertResource(
        location=ALERT_LOCATION,
        description=spec.description,
        severity=spec.severity,
        enabled=True,
        scopes=[spec.scope_resource_id],
        evaluation_frequency=spec.evaluation_frequency,
        window_size=spec.evaluation_window,
        auto_mitigate=True,
        criteria=MetricAlertSingleResourceMultipleMetricCriteria(
            all_of=[
                MetricCriteria(
                    name=spec.role,
                    metric_name=spec.metric_name,
                    metric_namespace=_METRIC_NAMESPACES[spec.scope],
                    operator=str(spec.operator),
                    time_aggregation=_AGGREGATIONS[spec.aggregation],
                    threshold=spec.threshold,
                ),
            ],
        ),
        actions=[MetricAlertAction(action_group_id=spec.notification_target_id)],
    )


def _split_resource_id(resource_id: str) -> tuple[str, str]:
    parts = parse_resource_id(resource_id)
    resource_group = parts.get("resource_group")
    name = parts.get("name")
    if not resource_group or not name:
        raise CloudApiError(f"Not a resource id: {resource_id!r}")
    return resource_group, name
